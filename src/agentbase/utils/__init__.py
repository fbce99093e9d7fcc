"""Utility helpers for agentbase."""

from .clock import format_uptime, now_ms
from .logging import setup_logging

__all__ = ["format_uptime", "now_ms", "setup_logging"]
