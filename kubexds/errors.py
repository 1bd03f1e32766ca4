"""
Error hierarchy for the data stack provisioner.

Every failure surfaced by a component is a ``ProvisionerError`` subclass.
Cancellation is not modelled here: ``asyncio.CancelledError`` propagates
untouched through every layer.
"""

from typing import Any, Dict, Optional


class ProvisionerError(RuntimeError):
    """Base class for all provisioner failures."""

    def __init__(self, message: str, service: Optional[str] = None):
        self.service = service
        if service:
            message = f"[{service}] {message}"
        super().__init__(message)


class ConfigInvalid(ProvisionerError):
    """Missing or malformed configuration fields."""


class NotInitialized(ProvisionerError):
    """A required dependency was not injected."""


class ConnectFailed(ProvisionerError):
    """Network or authentication failure while connecting to a backend."""


class PingFailed(ProvisionerError):
    """The liveness probe issued right after connecting failed."""


class NotReady(ProvisionerError):
    """The readiness gate exhausted its budget."""

    def __init__(
        self, message: str, service: Optional[str] = None, attempts: int = 0
    ):
        super().__init__(message, service)
        self.attempts = attempts


class ScriptReadFailed(ProvisionerError):
    """A migration script could not be read from the script tree."""

    def __init__(self, message: str, script: str, service: Optional[str] = None):
        super().__init__(message, service)
        self.script = script


class StatementFailed(ProvisionerError):
    """A single SQL statement failed to execute."""

    def __init__(
        self,
        message: str,
        script: str = "",
        line: int = 0,
        service: Optional[str] = None,
    ):
        if script:
            message = f"{script}:{line}: {message}"
        super().__init__(message, service)
        self.script = script
        self.line = line


class ContainerOpFailed(ProvisionerError):
    """A container runtime operation (pull/create/start/stop) failed."""


class PortExhausted(ContainerOpFailed):
    """No free host port was found inside the probe window."""


class CompositeError(ProvisionerError):
    """Aggregates per-service failures collected across a multi-service call."""

    def __init__(
        self,
        operation: str,
        errors: Dict[str, Exception],
        completed: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.errors = dict(errors)
        # Per-service results of the calls that did succeed.
        self.completed = dict(completed or {})
        details = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(f"{operation} failed for {len(self.errors)} service(s): {details}")

    def __len__(self) -> int:
        return len(self.errors)
