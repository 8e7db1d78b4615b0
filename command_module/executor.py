"""
Command execution and output forwarding.

CommandRunner runs a resolved command line with a timeout and classifies
the result; OutputForwarder splits captured output into lines and pushes
each one to the event queue through the shared rate limiter.
"""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from command_module.transport import LOCALFILE_MQ

logger = logging.getLogger(__name__)

# Seconds allowed for draining output after a timed-out command is killed
KILL_GRACE_SECONDS = 1


class Outcome(str, Enum):
    """How a single execution ended."""
    SUCCESS = 'success'
    NONZERO_EXIT = 'nonzero_exit'
    TIMEOUT = 'timeout'
    SPAWN_ERROR = 'spawn_error'


@dataclass
class ExecutionResult:
    """Result of one command execution."""
    outcome: Outcome
    exit_status: Optional[int] = None
    output: Optional[str] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def forwardable(self) -> bool:
        """Only normal returns carry output worth forwarding."""
        return self.outcome in (Outcome.SUCCESS, Outcome.NONZERO_EXIT)


class CommandRunner:
    """
    Runs shell commands with a timeout.

    stdout and stderr are captured together when output is wanted and
    discarded otherwise. On timeout the whole process group is killed so
    that children of the shell do not outlive the execution.
    """

    def run(
        self,
        command: str,
        capture_output: bool = True,
        timeout: Optional[int] = 3600,
        log_prefix: str = ""
    ) -> ExecutionResult:
        """
        Execute a command line.

        Args:
            command: Shell command to execute
            capture_output: Capture stdout/stderr if True
            timeout: Timeout in seconds (None or 0 for no limit)
            log_prefix: Prefix for log lines

        Returns:
            ExecutionResult; spawn failures and timeouts are reported through
            its outcome rather than raised
        """
        logger.debug(f"{log_prefix}Executing command: {command}")
        started = time.monotonic()

        stream = subprocess.PIPE if capture_output else subprocess.DEVNULL
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                stdout=stream,
                stderr=subprocess.STDOUT if capture_output else subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding='utf-8',
                errors='replace',
                start_new_session=True
            )
        except (OSError, ValueError) as e:
            return ExecutionResult(
                outcome=Outcome.SPAWN_ERROR,
                duration_seconds=time.monotonic() - started,
                error=str(e)
            )

        try:
            output, _ = process.communicate(timeout=timeout or None)
        except subprocess.TimeoutExpired:
            self._kill(process)
            self._reap(process)
            return ExecutionResult(
                outcome=Outcome.TIMEOUT,
                duration_seconds=time.monotonic() - started,
                error=f"Command timed out after {timeout}s"
            )

        returncode = process.returncode
        return ExecutionResult(
            outcome=Outcome.SUCCESS if returncode == 0 else Outcome.NONZERO_EXIT,
            exit_status=returncode,
            output=output if capture_output else None,
            duration_seconds=time.monotonic() - started
        )

    @staticmethod
    def _reap(process: subprocess.Popen):
        try:
            process.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            # A descendant outside the process group still holds the pipe.
            if process.stdout is not None:
                process.stdout.close()
            process.wait()

    @staticmethod
    def _kill(process: subprocess.Popen):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            process.kill()


def split_output_lines(output: Optional[str]) -> List[str]:
    """Split captured output into non-empty lines, keeping their order."""
    if not output:
        return []
    return [line for line in output.split('\n') if line]


class OutputForwarder:
    """Sends command output to the event queue one line at a time."""

    def __init__(self, transport, limiter, location: str, category: str = LOCALFILE_MQ):
        """
        Args:
            transport: Connected queue transport
            limiter: Shared EventRateLimiter
            location: Label attached to every line (the extended tag)
            category: Queue category of the events
        """
        self.transport = transport
        self.limiter = limiter
        self.location = location
        self.category = category

    def forward(self, output: Optional[str]) -> int:
        """
        Forward every line of output.

        A failed send is logged and the remaining lines are still attempted.

        Returns:
            Number of lines sent successfully
        """
        sent = 0
        for line in split_output_lines(output):
            self.limiter.acquire()
            try:
                self.transport.send(line, self.location, self.category)
                sent += 1
            except OSError as e:
                logger.error(f"{self.location}: Failed to send output line to queue: {e}")
        return sent
