"""
Command line interface for agentbase.

    agentbase agent run               run one agent (coordinator + heartbeat)
    agentbase task publish/status     route a task and inspect its status
    agentbase broadcast TYPE          send a control message to every agent
    agentbase status                  list published agent statuses
    agentbase lock acquire/release    manage shared-resource leases
    agentbase metrics serve           run the dashboard metrics API
    agentbase workforce validate/compose
"""

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..broker import BrokerConnection
from ..config.config_manager import get_config
from ..config.settings import Settings
from ..config.workforce import (
    missing_agent_environment,
    parse_workforce_config,
    validate_agent_environment,
    write_compose,
)
from ..coordinator import Coordinator
from ..errors import AgentbaseError, ConfigurationError, LockAcquireTimeout
from ..metrics.api import create_app
from ..models import TaskStatus
from ..runtime import AgentRuntime
from ..task_router import normalize_agent_id
from ..utils.logging import setup_logging

app = typer.Typer(name="agentbase", help="Multi-agent coordination over Redis")
agent_app = typer.Typer(name="agent", help="Agent processes")
task_app = typer.Typer(name="task", help="Task routing")
lock_app = typer.Typer(name="lock", help="Shared-resource locks")
metrics_app = typer.Typer(name="metrics", help="Metrics API")
workforce_app = typer.Typer(name="workforce", help="Fleet configuration")
app.add_typer(agent_app)
app.add_typer(task_app)
app.add_typer(lock_app)
app.add_typer(metrics_app)
app.add_typer(workforce_app)

console = Console()
T = TypeVar("T")


class _State:
    settings: Optional[Settings] = None


state = _State()


@app.callback()
def main(
    environment: Optional[str] = typer.Option(None, "--env", "-e", help="Configuration environment"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    """Multi-agent coordination over Redis."""
    state.settings = get_config(environment)
    setup_logging(state.settings.logging, level=log_level)


def _settings() -> Settings:
    if state.settings is None:
        state.settings = get_config()
    return state.settings


def build_broker(settings: Settings, name: str = "cli") -> BrokerConnection:
    return BrokerConnection(
        settings.redis.url,
        poll_interval=settings.redis.poll_interval,
        socket_timeout=settings.redis.socket_timeout,
        name=name,
    )


def _agent_id(agent_id: Optional[str]) -> str:
    if agent_id is None:
        return _settings().agent.id or "cli"
    try:
        return normalize_agent_id(agent_id)
    except ConfigurationError as e:
        raise typer.BadParameter(str(e), param_hint="'--agent-id'")


def _parse_data(data: Optional[str]) -> dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: --data is not valid JSON: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    if not isinstance(parsed, dict):
        console.print("[red]Error: --data must be a JSON object[/red]")
        raise typer.Exit(1)
    return parsed


def _run_with_coordinator(agent_id: str, action: Callable[[Coordinator], Awaitable[T]]) -> T:
    """Run ``action`` with a coordinator whose broker is connected but not subscribed."""

    async def _runner() -> T:
        coordinator = Coordinator(
            agent_id, build_broker(_settings(), name=f"cli:{agent_id}"), lock_ttl=_settings().agent.lock_ttl
        )
        await coordinator.broker.connect()
        try:
            return await action(coordinator)
        finally:
            await coordinator.broker.disconnect()

    try:
        return asyncio.run(_runner())
    except (AgentbaseError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


@agent_app.command("run")
def agent_run(
    agent_id: Optional[str] = typer.Option(None, "--agent-id", "-a", help="Agent id (defaults to AGENT_ID)"),
) -> None:
    """Run an agent until SIGINT/SIGTERM or a shutdown broadcast."""
    try:
        runtime = AgentRuntime.from_settings(_settings(), _agent_id(agent_id) if agent_id else None)
        asyncio.run(runtime.run_forever())
    except AgentbaseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


@task_app.command("publish")
def task_publish(
    target: str = typer.Argument(..., help="Target agent id"),
    task_type: str = typer.Argument(..., help="Payload type used for handler dispatch"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Extra payload fields as a JSON object"),
    priority: int = typer.Option(5, "--priority", "-p", help="Advisory priority"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Wait for a terminal status"),
    timeout: float = typer.Option(30.0, "--timeout", "-t", help="Seconds to wait with --wait"),
    agent_id: Optional[str] = typer.Option(None, "--agent-id", "-a", help="Publishing agent id"),
) -> None:
    """Publish a task to an agent."""
    payload = {**_parse_data(data), "type": task_type}

    async def _publish(coordinator: Coordinator) -> tuple[str, Optional[TaskStatus]]:
        task_id = await coordinator.publish_task(target, payload, priority)
        if not wait:
            return task_id, await coordinator.get_task_status(task_id)
        return task_id, await coordinator.wait_for_task(task_id, timeout=timeout)

    task_id, status = _run_with_coordinator(_agent_id(agent_id), _publish)
    console.print(Panel(
        f"Task ID: {task_id}\nTarget: {target}\nType: {task_type}\n"
        f"Status: {status.value if status else 'unknown'}",
        title="Task Published",
        border_style="green" if status is not TaskStatus.FAILED else "red",
    ))
    if status is TaskStatus.FAILED:
        raise typer.Exit(1)


@task_app.command("status")
def task_status(task_id: str = typer.Argument(..., help="Task id")) -> None:
    """Show a task's registry status."""
    status = _run_with_coordinator(_agent_id(None), lambda c: c.get_task_status(task_id))
    if status is None:
        console.print(f"[yellow]Task not found: {task_id}[/yellow]")
        raise typer.Exit(1)
    console.print(f"{task_id}: {status.value}")


@app.command("broadcast")
def broadcast(
    message_type: str = typer.Argument(..., help="Broadcast type, e.g. status_check or shutdown"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Extra fields as a JSON object"),
    agent_id: Optional[str] = typer.Option(None, "--agent-id", "-a", help="Sender id"),
) -> None:
    """Send a control message on the broadcast channel."""
    message = {**_parse_data(data), "type": message_type}
    receivers = _run_with_coordinator(_agent_id(agent_id), lambda c: c.broadcast_message(message))
    console.print(f"Broadcast '{message_type}' delivered to {receivers} subscriber(s)")


@app.command("status")
def status(
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List the status records published by agents."""
    statuses = _run_with_coordinator(_agent_id(None), lambda c: c.get_all_agent_statuses())

    if as_json:
        console.print_json(json.dumps([s.model_dump(by_alias=True) for s in statuses]))
        return

    if not statuses:
        console.print("[yellow]No agent statuses published.[/yellow]")
        return

    table = Table(title="Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Status")
    table.add_column("Current Task")
    table.add_column("Completed", justify="right")
    table.add_column("Uptime")
    for agent in sorted(statuses, key=lambda s: s.agent_id):
        table.add_row(
            agent.agent_id,
            agent.status.value,
            agent.current_task or "-",
            str(agent.tasks_completed),
            agent.uptime,
        )
    console.print(table)


@lock_app.command("acquire")
def lock_acquire(
    resource: str = typer.Argument(..., help="Resource name"),
    ttl: Optional[float] = typer.Option(None, "--ttl", help="Lease in seconds"),
    wait: Optional[float] = typer.Option(None, "--wait", help="Retry for up to this many seconds"),
    agent_id: Optional[str] = typer.Option(None, "--agent-id", "-a", help="Holder id"),
) -> None:
    """Take a lease on a shared resource."""

    async def _acquire(coordinator: Coordinator) -> bool:
        if wait is None:
            return await coordinator.acquire_lock(resource, ttl)
        try:
            return await coordinator.locks.acquire_with_retry(resource, ttl, timeout=wait)
        except LockAcquireTimeout:
            return False

    holder = _agent_id(agent_id)
    if _run_with_coordinator(holder, _acquire):
        console.print(f"[green]✓ {holder} holds {resource}[/green]")
    else:
        console.print(f"[red]✗ {resource} is held by another agent[/red]")
        raise typer.Exit(1)


@lock_app.command("release")
def lock_release(
    resource: str = typer.Argument(..., help="Resource name"),
    agent_id: Optional[str] = typer.Option(None, "--agent-id", "-a", help="Holder id"),
) -> None:
    """Release a lease held by this agent id."""
    holder = _agent_id(agent_id)
    if _run_with_coordinator(holder, lambda c: c.release_lock(resource)):
        console.print(f"[green]✓ Released {resource}[/green]")
    else:
        console.print(f"[yellow]{holder} does not hold {resource}; nothing released[/yellow]")


@lock_app.command("holder")
def lock_holder(resource: str = typer.Argument(..., help="Resource name")) -> None:
    """Show who holds a resource."""
    holder = _run_with_coordinator(_agent_id(None), lambda c: c.locks.holder(resource))
    console.print(f"{resource}: {holder or 'free'}")


@metrics_app.command("serve")
def metrics_serve(
    host: Optional[str] = typer.Option(None, help="Host to bind (defaults to METRICS_HOST)"),
    port: Optional[int] = typer.Option(None, help="Port to bind (defaults to METRICS_PORT)"),
) -> None:
    """Run the metrics REST/WebSocket API."""
    settings = _settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.metrics.host,
        port=port or settings.metrics.port,
        log_level=settings.logging.level.lower() if settings.logging.level != "SUCCESS" else "info",
    )


@workforce_app.command("validate")
def workforce_validate(
    config: Path = typer.Argument(..., help="Workforce YAML file"),
    strict: bool = typer.Option(
        False, "--strict", help="Fail when an agent is missing required credentials"
    ),
) -> None:
    """Validate a workforce file and report missing agent credentials."""
    try:
        workforce = parse_workforce_config(config)
    except ConfigurationError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Workforce {workforce.version}")
    table.add_column("Agent", style="cyan")
    table.add_column("Config Path")
    table.add_column("Env Vars", justify="right")
    table.add_column("Credentials")
    for agent in workforce.agents:
        missing = missing_agent_environment(agent, os.environ)
        credentials = "[green]ok[/green]" if not missing else f"[yellow]missing {', '.join(missing)}[/yellow]"
        table.add_row(agent.agent_id, agent.config_path, str(len(agent.env)), credentials)
    console.print(table)

    if strict:
        try:
            for agent in workforce.agents:
                validate_agent_environment(agent, os.environ)
        except ConfigurationError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise typer.Exit(1)


@workforce_app.command("compose")
def workforce_compose(
    config: Path = typer.Argument(..., help="Workforce YAML file"),
    output: Path = typer.Option(Path("docker-compose.yml"), "--output", "-o", help="Compose file to write"),
) -> None:
    """Generate a compose file with one service per agent."""
    try:
        workforce = parse_workforce_config(config)
    except ConfigurationError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1)
    path = write_compose(workforce, output)
    console.print(f"[green]✓ Generated {path} ({len(workforce.agents)} agents)[/green]")


if __name__ == "__main__":
    app()
