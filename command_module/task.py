"""
A single scheduled command.

CommandTask owns one configured command for the lifetime of its worker
thread: it resolves and verifies the binary, restores the persisted
schedule, connects to the event queue, then alternates between running the
command and sleeping so that runs start every `interval` seconds measured
from the previous scheduled start (fixed-rate, not fixed-delay).
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from command_module.config import CommandConfig
from command_module.errors import CommandModuleError, PersistenceError
from command_module.executor import CommandRunner, ExecutionResult, Outcome, OutputForwarder
from command_module.resolver import ResolvedCommand, resolve_command, verify_command
from command_module.state import ScheduleState, StateStore
from command_module.transport import EventRateLimiter, QueueTransport, connect_with_retry

logger = logging.getLogger(__name__)

MODULE_NAME = "command"


def extended_tag(tag: str) -> str:
    """Label used both as the state key and as the location of forwarded lines."""
    return f"{MODULE_NAME}_{tag}"


class StartupStatus(str, Enum):
    READY = 'ready'
    DISABLED = 'disabled'
    FAILED = 'failed'


@dataclass
class StartupResult:
    """Outcome of task initialization, returned instead of killing the worker."""
    status: StartupStatus
    error: Optional[CommandModuleError] = None

    @property
    def ok(self) -> bool:
        return self.status == StartupStatus.READY


class CommandTask:
    """
    Runs one command on a fixed-rate schedule.

    Collaborators are injected so that the supervisor can share the rate
    limiter and state store between tasks, and so tests can replace the
    clock, sleep, runner and transport.
    """

    def __init__(
        self,
        config: CommandConfig,
        state_store: StateStore,
        limiter: EventRateLimiter,
        transport=None,
        runner: Optional[CommandRunner] = None,
        remote_commands: bool = False,
        connect_attempts: int = 3,
        connect_wait_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the task.

        Args:
            config: Command configuration
            state_store: Shared schedule state store
            limiter: Shared event rate limiter
            transport: Event queue transport (only connected if output is forwarded)
            runner: Command runner (default: CommandRunner)
            remote_commands: Whether remotely pushed commands may run
            connect_attempts: Queue connection attempts at startup
            connect_wait_seconds: Delay between connection attempts
            clock: Wall-clock time source in seconds
            sleep: Sleep function
        """
        self.config = config
        self.tag = config.tag
        self.extended_tag = extended_tag(config.tag)
        self.state_store = state_store
        self.limiter = limiter
        self.transport = transport if transport is not None else QueueTransport()
        self.runner = runner or CommandRunner()
        self.remote_commands = remote_commands
        self.connect_attempts = connect_attempts
        self.connect_wait_seconds = connect_wait_seconds
        self._clock = clock
        self._sleep = sleep

        self.resolved: Optional[ResolvedCommand] = None
        self.state = ScheduleState()
        self.forwarder: Optional[OutputForwarder] = None
        self.runs = 0

    @property
    def resolved_command(self) -> Optional[str]:
        return self.resolved.full_command if self.resolved else None

    def _now(self) -> int:
        return int(self._clock())

    def initialize(self) -> StartupResult:
        """
        Prepare the task for scheduling.

        Resolution, verification and queue connection failures are fatal for
        this task and are returned in the result; nothing is retried.
        """
        if not self.config.enabled:
            logger.warning(f"Module command:{self.tag} is disabled. Exiting.")
            return StartupResult(StartupStatus.DISABLED)

        if self.config.remote and not self.remote_commands:
            logger.warning(f"Remote commands are disabled. Ignoring '{self.tag}'.")
            return StartupResult(StartupStatus.DISABLED)

        try:
            self.resolved = resolve_command(self.config.command)
            checksums = self.config.checksums
            if checksums:
                verify_command(self.resolved, checksums, self.config.skip_verification)
        except CommandModuleError as e:
            logger.error(f"{self.tag}: {e}")
            return StartupResult(StartupStatus.FAILED, error=e)

        logger.info(f"Module command:{self.tag} started")

        self.state = self.state_store.load(self.extended_tag) or ScheduleState()

        if not self.config.ignore_output:
            try:
                connect_with_retry(
                    self.transport,
                    attempts=self.connect_attempts,
                    wait_seconds=self.connect_wait_seconds,
                    sleep=self._sleep
                )
            except CommandModuleError as e:
                logger.error(f"{self.tag}: {e}")
                return StartupResult(StartupStatus.FAILED, error=e)
            self.forwarder = OutputForwarder(self.transport, self.limiter, self.extended_tag)

        return StartupResult(StartupStatus.READY)

    def initial_delay(self) -> int:
        """
        Seconds to wait before the first run.

        With run_on_start the first run is immediate. Otherwise a fresh state
        defers it by one full interval and a persisted future deadline is
        honoured.
        """
        if self.config.run_on_start:
            return 0

        now = self._now()
        if self.config.interval and self.state.next_run_time == 0:
            self.state.next_run_time = now + self.config.interval

        if self.state.next_run_time > now:
            return self.state.next_run_time - now
        return 0

    def execute(self) -> ExecutionResult:
        """Run the command once and forward its output."""
        result = self.runner.run(
            self.resolved.full_command,
            capture_output=not self.config.ignore_output,
            timeout=self.config.timeout,
            log_prefix=f"[{self.tag}] "
        )

        if result.outcome == Outcome.SPAWN_ERROR:
            logger.error(f"Command '{self.tag}' failed: {result.error}")
        elif result.outcome == Outcome.TIMEOUT:
            logger.error(
                f"{self.tag}: Timeout overtaken ({self.config.timeout}s). "
                f"You can modify the command timeout in the configuration."
            )
        elif result.outcome == Outcome.NONZERO_EXIT:
            logger.warning(f"Command '{self.tag}' returned exit code {result.exit_status}.")
            if not self.config.ignore_output:
                logger.debug(f"OUTPUT: {result.output}")

        if self.forwarder is not None and result.forwardable:
            self.forwarder.forward(result.output)

        return result

    def next_sleep(self, start_time: int) -> int:
        """
        Compute the sleep after a run that started at start_time.

        Updates and persists the schedule when an interval is configured.
        """
        interval = self.config.interval
        if not interval:
            return 0

        elapsed = self._now() - start_time
        if elapsed <= interval:
            time_sleep = interval - elapsed
            self.state.next_run_time = start_time + interval
        else:
            logger.warning(f"{self.tag}: Interval overtaken.")
            time_sleep = 0
            self.state.next_run_time = 0

        try:
            self.state_store.save(self.extended_tag, self.state)
        except PersistenceError as e:
            logger.error(f"{self.tag}: Couldn't save running state: {e}")

        return time_sleep

    def run_once(self) -> int:
        """Run one iteration and return the seconds to sleep before the next."""
        logger.debug(f"Starting command '{self.tag}'.")
        start_time = self._now()
        self.execute()
        self.runs += 1
        logger.debug(f"Command '{self.tag}' finished.")
        return self.next_sleep(start_time)

    def run(self, max_runs: Optional[int] = None) -> StartupResult:
        """
        Worker entry point. Never returns once started unless max_runs is set.

        Args:
            max_runs: Stop after this many iterations (None runs forever)

        Returns:
            The StartupResult when initialization did not succeed, or after
            max_runs iterations
        """
        result = self.initialize()
        if not result.ok:
            return result

        delay = self.initial_delay()
        if delay > 0:
            logger.info(f"{self.tag}: Waiting for turn to evaluate.")
            self._sleep(delay)

        while max_runs is None or self.runs < max_runs:
            time_sleep = self.run_once()
            # A zero sleep still yields the thread.
            self._sleep(time_sleep)

        return result
