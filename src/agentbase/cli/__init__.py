"""Command line interface for agentbase."""

from .main import app

__all__ = ["app"]
