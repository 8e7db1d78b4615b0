"""
Supervisor for the configured command tasks.

Each task gets a dedicated worker thread from an APScheduler thread pool;
its run() is submitted once and then keeps its own schedule. The rate
limiter and state store are built here and shared by every task.
"""

import logging
from typing import Any, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from command_module.config import CommandModuleConfig
from command_module.state import StateStore
from command_module.task import CommandTask, StartupResult, extended_tag
from command_module.transport import EventRateLimiter, QueueTransport

logger = logging.getLogger(__name__)


class CommandModuleService:
    """
    Starts one worker per enabled command.

    Workers never return once their scheduling loop is running, so the
    pool is never joined; the process is expected to be terminated.
    """

    def __init__(
        self,
        config: Optional[CommandModuleConfig] = None,
        config_path: Optional[str] = None,
        state_store: Optional[StateStore] = None,
        transport_factory=None
    ):
        """
        Initialize the service.

        Args:
            config: Loaded configuration (loaded from config_path if None)
            config_path: Path to configuration file
            state_store: Schedule state store (default: SQLite at config.state_db)
            transport_factory: Callable returning a transport per task
        """
        self.config = config or CommandModuleConfig(config_path)
        self.state_store = state_store or StateStore(self.config.state_db)
        self.limiter = EventRateLimiter(self.config.max_eps)
        self.transport_factory = transport_factory or (
            lambda: QueueTransport(self.config.queue_path)
        )
        self.tasks: List[CommandTask] = []
        self.scheduler: Optional[BackgroundScheduler] = None

    def build_tasks(self) -> List[CommandTask]:
        """Create a CommandTask for every runnable command in the configuration."""
        tasks = []
        for command in self.config.commands:
            if not command.enabled:
                logger.warning(f"Module command:{command.tag} is disabled. Skipping.")
                continue
            if command.remote and not self.config.remote_commands:
                logger.warning(f"Remote commands are disabled. Ignoring '{command.tag}'.")
                continue

            tasks.append(CommandTask(
                command,
                state_store=self.state_store,
                limiter=self.limiter,
                transport=self.transport_factory(),
                remote_commands=self.config.remote_commands,
                connect_attempts=self.config.connect_attempts,
                connect_wait_seconds=self.config.connect_wait_seconds
            ))
        return tasks

    def _setup_event_listeners(self):
        """Log workers that stop, which only happens when startup failed."""

        def worker_returned_listener(event):
            result = event.retval
            if isinstance(result, StartupResult) and result.error is not None:
                logger.error(f"Worker '{event.job_id}' did not start: {result.error}")
            else:
                logger.info(f"Worker '{event.job_id}' exited")

        def worker_error_listener(event):
            logger.error(
                f"Worker '{event.job_id}' raised exception: {event.exception}\n"
                f"{event.traceback}"
            )

        self.scheduler.add_listener(worker_returned_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(worker_error_listener, EVENT_JOB_ERROR)

    def start(self) -> bool:
        """
        Validate the configuration and start every task.

        Returns:
            False if the configuration is invalid or no task could be created
        """
        errors = self.config.validate()
        if errors:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return False

        self.tasks = self.build_tasks()
        if not self.tasks:
            logger.warning("No commands to run")
            return False

        self.scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(len(self.tasks))},
            job_defaults={'max_instances': 1, 'misfire_grace_time': None}
        )
        self._setup_event_listeners()

        for task in self.tasks:
            self.scheduler.add_job(
                task.run,
                trigger='date',
                id=task.extended_tag,
                name=task.tag
            )

        self.scheduler.start()
        logger.info(f"Started {len(self.tasks)} command worker(s)")
        return True

    def stop(self):
        """Stop dispatching; running workers are left to process exit."""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Command module stopped")

    def describe(self) -> List[Dict[str, Any]]:
        """Summarize configured commands with their persisted next run time."""
        rows = []
        for command in self.config.commands:
            state = self.state_store.load(extended_tag(command.tag))
            rows.append({
                'tag': command.tag,
                'command': command.command,
                'enabled': command.enabled,
                'interval': command.interval,
                'next_run_time': state.next_run_time if state else None
            })
        return rows
