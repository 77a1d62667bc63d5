"""
Error hierarchy for Cloudify

Every error raised by the orchestration core carries a stable ``code`` so
outer surfaces (CLI, HTTP adapters) can map it without inspecting messages.
"""

from typing import Optional, Sequence


class CloudifyError(Exception):
    """Base class for all Cloudify errors."""

    code = "cloudify_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# -----------------------------
# Request / Domain Errors
# -----------------------------

class ValidationError(CloudifyError):
    """Malformed or missing input. Raised before any mutation."""

    code = "validation_failed"


class NotFoundError(CloudifyError):
    """Referenced resource group, environment or resource does not exist."""

    code = "not_found"


class ConflictError(CloudifyError):
    """Requested port or name is already taken."""

    code = "conflict"


# -----------------------------
# Port Allocation Errors
# -----------------------------

class PortAllocationError(CloudifyError):
    """Port allocation could not be satisfied."""

    code = "port_allocation_failed"


class PortConflictError(ConflictError, PortAllocationError):
    """Requested port is allocated in the environment or bound on the host."""

    code = "conflict"


class AllocationExhaustedError(PortAllocationError):
    """No automatic port could be found after range or attempt exhaustion."""

    code = "allocation_exhausted"


# -----------------------------
# Persistence Errors
# -----------------------------

class StateStoreError(CloudifyError):
    """State store backend failure."""

    code = "state_store_error"


# -----------------------------
# Process Errors
# -----------------------------

class ProcessError(CloudifyError):
    """Base class for child process failures."""

    code = "process_error"


class ProcessExecutionError(ProcessError):
    """Child process exited non-zero or could not be started."""

    code = "process_failed"

    def __init__(self, command: str, arguments: Sequence[str], result):
        self.command = command
        self.arguments = list(arguments)
        self.result = result
        args = " ".join(self.arguments)
        exit_code = result.exit_code if result.exit_code is not None else "n/a"
        super().__init__(
            f"Process '{command} {args}' failed with {result.outcome.value} (exit {exit_code})."
        )


class ProcessTimeoutError(ProcessError):
    """Child process exceeded its timeout. It may still be running externally."""

    code = "timeout"

    def __init__(self, command: str, timeout: Optional[float] = None):
        self.command = command
        self.timeout = timeout
        suffix = f" of {timeout:g}s" if timeout else ""
        super().__init__(f"Process '{command}' exceeded the configured timeout{suffix}.")


class ProcessCancelledError(ProcessError):
    """Caller cancelled the child process before it finished."""

    code = "cancelled"

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Process '{command}' was cancelled.")
