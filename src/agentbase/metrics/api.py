"""
Metrics API service.

Serves the dashboard: REST endpoints over the agents' broker records and a
WebSocket that pushes activity events and metrics updates as they arrive on
the broker. The service only reads agent records; it never writes them.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..broker import BrokerConnection
from ..config.settings import Settings
from ..models import AgentMetrics, AgentStatus, SystemMetrics, SystemStats
from ..task_router import ACTIVITY_CHANNEL, agent_id_from_key
from ..utils.clock import now_ms
from .collector import MetricsCollector
from .problem_details import setup_problem_detail_handlers


class ConnectionHub:
    """Connected dashboard WebSockets."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def add(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)

    def discard(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for websocket in list(self._clients):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping dashboard client: {e}")
                self.discard(websocket)


class MetricsService:
    """Broker subscriptions and push fan-out behind the HTTP app."""

    def __init__(self, broker: BrokerConnection, activity_buffer: int = 500):
        self.broker = broker
        self.collector = MetricsCollector(broker, activity_buffer=activity_buffer)
        self.hub = ConnectionHub()

    async def start(self) -> None:
        await self.broker.connect()
        await self.broker.subscribe(ACTIVITY_CHANNEL, self.handle_activity)
        await self.broker.psubscribe("agent:*:activity", self.handle_metrics_update)
        logger.info("Subscribed to Redis channels")

    async def stop(self) -> None:
        await self.broker.disconnect()

    async def handle_activity(self, channel: str, data: str) -> None:
        try:
            activity = json.loads(data)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed activity event on {channel}")
            return
        self.collector.record_activity(activity)
        await self.hub.broadcast({"type": "activity", "data": activity})

    async def handle_metrics_update(self, channel: str, data: str) -> None:
        metrics = await self.collector.get_agent_metrics(agent_id_from_key(channel))
        if metrics is None:
            return
        await self.hub.broadcast(
            {"type": "metrics_update", "data": metrics.model_dump(by_alias=True)}
        )

    async def initial_metrics(self) -> dict[str, Any]:
        metrics = await self.collector.get_all_metrics()
        return {"type": "initial_metrics", "data": metrics.model_dump(by_alias=True)}


def create_app(
    settings: Optional[Settings] = None,
    broker: Optional[BrokerConnection] = None,
) -> FastAPI:
    """
    Build the metrics FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when omitted
        broker: Broker connection to read from; built from ``settings`` when omitted
    """
    settings = settings or Settings()
    broker = broker or BrokerConnection(
        settings.redis.url,
        poll_interval=settings.redis.poll_interval,
        socket_timeout=settings.redis.socket_timeout,
        name="metrics",
    )
    service = MetricsService(broker, activity_buffer=settings.metrics.activity_buffer)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            logger.info("Shutting down Metrics API...")
            await service.stop()

    app = FastAPI(
        title="Agentbase Metrics API",
        description="Agent status and activity metrics for the monitoring dashboard",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    origins = [origin.strip() for origin in settings.metrics.cors_origin.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_credentials=True,
    )
    setup_problem_detail_handlers(app)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": now_ms()}

    @app.get("/api/metrics", response_model=SystemMetrics, tags=["metrics"])
    async def get_all_metrics() -> SystemMetrics:
        return await service.collector.get_all_metrics()

    @app.get("/api/metrics/{agent_id}", response_model=AgentMetrics, tags=["metrics"])
    async def get_agent_metrics(agent_id: str) -> AgentMetrics:
        metrics = await service.collector.get_agent_metrics(agent_id)
        if metrics is None:
            raise HTTPException(status_code=404, detail="Agent not found")
        return metrics

    @app.get("/api/activity", tags=["activity"])
    async def get_activity(limit: int = Query(default=50, ge=1, le=1000)) -> dict[str, Any]:
        activities = service.collector.recent_activity(limit)
        return {"activities": activities, "count": len(activities)}

    @app.get("/api/stats", response_model=SystemStats, tags=["metrics"])
    async def get_stats() -> SystemStats:
        return await service.collector.get_system_stats()

    @app.get("/api/agents", response_model=list[AgentStatus], tags=["agents"])
    async def get_agents() -> list[AgentStatus]:
        return await service.collector.get_agent_statuses()

    @app.websocket("/ws")
    async def dashboard_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        logger.info("Dashboard client connected")
        service.hub.add(websocket)
        try:
            await websocket.send_json(await service.initial_metrics())
            while True:
                # Clients only listen; reading detects the disconnect
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Dashboard client disconnected")
        finally:
            service.hub.discard(websocket)

    return app
