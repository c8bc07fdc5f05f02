"""Error taxonomy for image builds.

Every error raised by the core derives from ImageBuildError and carries an
ErrorKind plus a context mapping with the resource identifiers needed to
continue debugging by hand (resource group, VM name, ...). Whether an
error aborts the build is decided by the orchestrator's stage policy, not
by the error itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from imgops.core.build import CleanupResult, PowerState, ResourceRef, RunResult


class ErrorKind(str, Enum):
    """Classification of build failures."""

    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVISIONING = "provisioning"
    REMOTE_EXECUTION = "remote_execution"
    SHUTDOWN_TIMEOUT = "shutdown_timeout"
    MONITOR_CANCELLED = "monitor_cancelled"
    CAPTURE = "capture"
    CLEANUP = "cleanup"


class ImageBuildError(RuntimeError):
    """Base class for all image build failures."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        kind: ErrorKind | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        if kind is not None:
            self.kind = kind

    def describe(self) -> str:
        """Return the message followed by the known resource identifiers."""
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items() if v)
        return f"{self.message} ({details})" if details else self.message


class AuthenticationError(ImageBuildError):
    """Raised when Azure authentication or tenant/subscription lookup fails."""

    kind = ErrorKind.AUTHENTICATION


class ConfigurationError(ImageBuildError):
    """Raised for invalid invocation parameters or unreadable local inputs."""

    kind = ErrorKind.CONFIGURATION


class QuotaExceededError(ImageBuildError):
    """Raised when the target scope already holds the allowed number of resources."""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(
        self,
        message: str,
        existing: Sequence[ResourceRef] = (),
        *,
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.existing = list(existing)


@dataclass(frozen=True)
class ProvisioningFailure:
    """A per-resource operation failure reported by a template deployment."""

    resource: str
    code: str | None
    message: str


class ProvisioningError(ImageBuildError):
    """Raised when the resource group or template deployment fails."""

    kind = ErrorKind.PROVISIONING

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        failures: Sequence[ProvisioningFailure] = (),
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.code = code
        self.failures = list(failures)

    def describe(self) -> str:
        lines = [super().describe()]
        if self.code:
            lines[0] = f"[{self.code}] {lines[0]}"
        for f in self.failures:
            lines.append(f"  - {f.resource}: {f.code or 'error'}: {f.message}")
        return "\n".join(lines)


class RemoteExecutionError(ImageBuildError):
    """Raised when an in-guest script cannot be dispatched or exits non-zero."""

    kind = ErrorKind.REMOTE_EXECUTION

    def __init__(
        self,
        message: str,
        *,
        result: RunResult | None = None,
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.result = result


class ShutdownTimeoutError(ImageBuildError):
    """Raised when the VM does not reach a stopped state within the maximum wait."""

    kind = ErrorKind.SHUTDOWN_TIMEOUT

    def __init__(
        self,
        message: str,
        *,
        elapsed: float,
        last_state: PowerState,
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.elapsed = elapsed
        self.last_state = last_state


class MonitorCancelledError(ImageBuildError):
    """Raised when a power-state wait is cancelled locally. The VM is left as-is."""

    kind = ErrorKind.MONITOR_CANCELLED

    def __init__(
        self,
        message: str,
        *,
        last_state: PowerState | None = None,
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.last_state = last_state


class CaptureError(ImageBuildError):
    """Raised when generalize or image creation fails. The VM is retained."""

    kind = ErrorKind.CAPTURE


class CleanupError(ImageBuildError):
    """Aggregates per-resource cleanup failures. Never aborts a build."""

    kind = ErrorKind.CLEANUP

    def __init__(
        self,
        message: str,
        results: Sequence[CleanupResult] = (),
        *,
        context: Mapping[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.results = list(results)
