"""
Exception hierarchy for llamactl.

Subprocess-affecting failures propagate to the caller; bookkeeping failures
(state file I/O) are caught and logged by the component that owns them.
"""
from typing import Optional, Sequence


class LlamactlError(Exception):
    """Base class for all llamactl errors."""


class LaunchConflictError(LlamactlError):
    """A detached start was refused because the model is already tracked as running."""

    def __init__(self, model: str, pid: Optional[int] = None, port: Optional[int] = None):
        self.model = model
        self.pid = pid
        self.port = port
        details = []
        if port is not None:
            details.append(f"port {port}")
        if pid is not None:
            details.append(f"pid {pid}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(
            f"{model} is already running{suffix}. Stop it first with: llamactl stop {model}"
        )


class SpawnFailureError(LlamactlError):
    """The llama-server subprocess could not be created."""

    def __init__(self, model: str, cause: BaseException):
        self.model = model
        self.cause = cause
        super().__init__(f"Failed to start {model}: {cause}")


class SignalResolutionError(LlamactlError):
    """No PID could be resolved for a server that was asked to stop."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"no PID found for {model}; cannot send signal")


class StateIOError(LlamactlError):
    """Reading or writing the state file failed."""


class ConfigError(LlamactlError):
    """The configuration file is missing required data or is malformed."""


class ModelNotFoundError(LlamactlError):
    """No local model matches the query."""

    def __init__(self, query: str, available: Sequence[str] = ()):
        self.query = query
        self.available = list(available)
        super().__init__(f"No model found matching: {query}")


class AmbiguousModelError(LlamactlError):
    """More than one local model matches the query."""

    def __init__(self, query: str, matches: Sequence[str]):
        self.query = query
        self.matches = list(matches)
        super().__init__(f"Multiple models match '{query}': {', '.join(self.matches)}")
