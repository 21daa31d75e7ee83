"""Error taxonomy for flow execution.

Every error carries a machine-readable ``reason`` so callers can tell a
deadline from a user cancel from a remote failure without parsing messages.
"""


class ErrorReason:
    """Machine-readable failure reasons surfaced in node error states."""

    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NODE_ERROR = "node_error"
    UPSTREAM_FAILED = "upstream_failed"  # Never ran: a required upstream did not succeed


class FlowError(Exception):
    """Base class for all flow execution errors."""

    reason = ErrorReason.NODE_ERROR

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class FlowValidationError(FlowError):
    """Unsafe or oversized code, missing required input, invalid graph."""

    reason = ErrorReason.VALIDATION


class NetworkError(FlowError):
    """Transport failure or non-success response from a provider."""

    reason = ErrorReason.NETWORK

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        status_code: int | None = None,
        remote_reason: str | None = None,
    ):
        super().__init__(message, node_id)
        self.status_code = status_code
        self.remote_reason = remote_reason


class DeadlineExceededError(FlowError):
    """The per-operation deadline elapsed before the node finished."""

    reason = ErrorReason.TIMEOUT


class CancellationError(FlowError):
    """The run was cancelled by the user or the system."""

    reason = ErrorReason.CANCELLED


class NodeExecutionError(FlowError):
    """Generic handler failure."""

    reason = ErrorReason.NODE_ERROR


class PendingInputConflictError(FlowError):
    """A second wait was registered for a node that already has one pending."""

    reason = ErrorReason.VALIDATION


class RunInProgressError(FlowError):
    """A run was started while another run is still active."""

    reason = ErrorReason.VALIDATION


class ConfigError(FlowError):
    """Invalid engine configuration."""

    reason = ErrorReason.VALIDATION


def reason_for(exc: BaseException) -> str:
    """Return the machine-readable reason for any exception."""
    if isinstance(exc, FlowError):
        return exc.reason
    return ErrorReason.NODE_ERROR
