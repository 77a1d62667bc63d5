"""
Process execution for Cloudify

Runs an external program with captured output, an optional timeout and an
optional cancellation event. Every run ends in one of five classified
outcomes; on timeout or cancellation the whole process group is killed
before the result is returned, together with whatever output was produced
up to that point.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

from .errors import ProcessCancelledError, ProcessExecutionError, ProcessTimeoutError
from .logging_config import SubprocessLogHandler, mask_sensitive_data

logger = logging.getLogger(__name__)


class ProcessOutcome(Enum):
    """Classification of a finished process run."""

    SUCCESS = "success"
    NON_ZERO_EXIT = "non_zero_exit"
    START_FAILED = "start_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProcessExecutionRequest:
    """What to run. ``timeout`` of None means wait indefinitely."""

    file_name: str
    arguments: Tuple[str, ...] = ()
    working_directory: Optional[str] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "arguments", tuple(self.arguments))

    @property
    def command_line(self) -> str:
        return " ".join((self.file_name,) + self.arguments)


@dataclass
class ProcessExecutionResult:
    """Outcome of a process run with the output captured so far."""

    outcome: ProcessOutcome
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timeout: Optional[float] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.outcome is ProcessOutcome.SUCCESS

    def ensure_success(self, command: str, arguments: Sequence[str] = ()) -> "ProcessExecutionResult":
        """
        Raise a distinguishable error for every non-success outcome.

        Returns:
            self, so calls can be chained

        Raises:
            ProcessTimeoutError: the process exceeded its timeout
            ProcessCancelledError: the caller cancelled the run
            ProcessExecutionError: non-zero exit or start failure
        """
        if self.outcome is ProcessOutcome.SUCCESS:
            return self
        if self.outcome is ProcessOutcome.TIMEOUT:
            raise ProcessTimeoutError(command, self.timeout)
        if self.outcome is ProcessOutcome.CANCELLED:
            raise ProcessCancelledError(command)
        raise ProcessExecutionError(command, arguments, self)


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ProcessRunner:
    """
    Runs child processes and classifies their outcome.

    Children are started in their own session on POSIX so that a timeout or
    cancellation can kill the whole tree with one ``killpg``.
    """

    def __init__(
        self,
        poll_interval: float = 0.1,
        kill_grace_seconds: float = 5.0,
        log_dir: Optional[str] = None,
    ):
        self.poll_interval = poll_interval
        self.kill_grace_seconds = kill_grace_seconds
        self.log_dir = log_dir

    def run(
        self,
        request: ProcessExecutionRequest,
        cancel_event: Optional[threading.Event] = None,
        operation: Optional[str] = None,
    ) -> ProcessExecutionResult:
        """
        Run a process to completion, timeout or cancellation.

        Args:
            request: Program, arguments, working directory and timeout
            cancel_event: Set by the caller to abandon the run
            operation: Name for the dedicated process log (needs ``log_dir``)

        Returns:
            Classified result; never raises for process failures
        """
        log_handler = None
        if self.log_dir and operation:
            log_handler = SubprocessLogHandler(operation, self.log_dir)

        try:
            result = self._run(request, cancel_event, log_handler)
        finally:
            if log_handler is not None:
                log_handler.close()

        logger.debug(
            f"Process finished with {result.outcome.value} "
            f"(exit {result.exit_code}) in {result.duration:.2f}s: "
            f"{mask_sensitive_data(request.command_line)}"
        )
        return result

    def _run(
        self,
        request: ProcessExecutionRequest,
        cancel_event: Optional[threading.Event],
        log_handler: Optional[SubprocessLogHandler],
    ) -> ProcessExecutionResult:
        command = [request.file_name, *request.arguments]
        timeout = request.timeout if request.timeout and request.timeout > 0 else None
        start_time = time.monotonic()

        if log_handler:
            log_handler.log_command(command)

        if cancel_event is not None and cancel_event.is_set():
            return ProcessExecutionResult(ProcessOutcome.CANCELLED, timeout=timeout)

        popen_kwargs = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "text": True,
            "cwd": request.working_directory,
        }
        if os.name == "posix":
            popen_kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(command, **popen_kwargs)
        except OSError as e:
            logger.error(f"Failed to start {request.file_name}: {e}")
            result = ProcessExecutionResult(
                ProcessOutcome.START_FAILED,
                stderr=str(e),
                duration=time.monotonic() - start_time,
                timeout=timeout,
            )
            if log_handler:
                log_handler.log_output(str(e), logging.ERROR)
                log_handler.log_completion(result.outcome.value, None, result.duration)
            return result

        deadline = start_time + timeout if timeout is not None else None
        outcome = None
        stdout = stderr = ""

        while outcome is None:
            if cancel_event is not None and cancel_event.is_set():
                outcome = ProcessOutcome.CANCELLED
                break

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    outcome = ProcessOutcome.TIMEOUT
                    break
                wait = min(wait, remaining)

            try:
                stdout, stderr = process.communicate(timeout=wait)
            except subprocess.TimeoutExpired:
                continue

            outcome = (
                ProcessOutcome.SUCCESS if process.returncode == 0 else ProcessOutcome.NON_ZERO_EXIT
            )

        if outcome in (ProcessOutcome.TIMEOUT, ProcessOutcome.CANCELLED):
            logger.warning(
                f"Killing process tree of {request.file_name} (pid {process.pid}) after {outcome.value}"
            )
            self._kill_process_tree(process)
            stdout, stderr = self._collect_remaining_output(process)

        result = ProcessExecutionResult(
            outcome=outcome,
            exit_code=process.returncode,
            stdout=_as_text(stdout),
            stderr=_as_text(stderr),
            duration=time.monotonic() - start_time,
            timeout=timeout,
        )

        if log_handler:
            log_handler.log_output(result.stdout)
            log_handler.log_output(result.stderr, logging.WARNING)
            log_handler.log_completion(result.outcome.value, result.exit_code, result.duration)

        return result

    @staticmethod
    def _kill_process_tree(process: subprocess.Popen) -> None:
        """Kill the child and everything in its process group."""
        if os.name == "posix":
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except (ProcessLookupError, PermissionError) as e:
                logger.debug(f"killpg({process.pid}) failed, killing child only: {e}")
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _collect_remaining_output(self, process: subprocess.Popen) -> Tuple[str, str]:
        """Drain the pipes of a killed process."""
        try:
            stdout, stderr = process.communicate(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Process {process.pid} did not release its pipes after kill")
            stdout, stderr = e.stdout, e.stderr
            process.wait(timeout=self.kill_grace_seconds)
        return _as_text(stdout), _as_text(stderr)
