"""
Error taxonomy for agentbase.

Broker failures surface to the caller of the operation that triggered them.
Message and handler failures are logged by the coordinator and never escape
a subscription callback.
"""

from typing import Optional


class AgentbaseError(Exception):
    """Base class for all agentbase errors."""


class BrokerConnectionError(AgentbaseError, ConnectionError):
    """Broker unreachable, or used before connect / after disconnect."""


class DeserializationError(AgentbaseError, ValueError):
    """A message received from the broker could not be parsed."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class HandlerExecutionError(AgentbaseError):
    """A registered task handler raised."""

    def __init__(self, task_id: str, task_type: str, cause: BaseException):
        super().__init__(f"Handler for '{task_type}' failed on task {task_id}: {cause}")
        self.task_id = task_id
        self.task_type = task_type
        self.cause = cause


class UnknownTaskTypeError(AgentbaseError, LookupError):
    """No handler is registered for a task's payload type."""

    def __init__(self, task_type: str):
        super().__init__(f"No handler registered for task type: {task_type}")
        self.task_type = task_type


class InvalidTransitionError(AgentbaseError):
    """A task status change that would move backwards or leave a terminal state."""

    def __init__(self, task_id: str, current: Optional[str], requested: str):
        super().__init__(
            f"Task {task_id} cannot move from {current or 'unknown'} to {requested}"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class LockAcquireTimeout(AgentbaseError, TimeoutError):
    """A retrying lock acquisition gave up."""

    def __init__(self, resource: str, timeout: float):
        super().__init__(f"Could not acquire lock '{resource}' within {timeout}s")
        self.resource = resource
        self.timeout = timeout


class ConfigurationError(AgentbaseError, ValueError):
    """Invalid workforce or agent configuration."""
