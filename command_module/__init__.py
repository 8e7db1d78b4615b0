"""
Command Module

Runs operator-configured commands on a fixed-rate schedule and forwards
their output, line by line, to the event pipeline.

Features:
- Binary resolution and MD5/SHA1/SHA256 verification before first use
- Fixed-rate scheduling that survives restarts (persisted next run time)
- Timeout-bounded execution with output forwarding
- Global events-per-second budget shared by all commands
"""

from command_module.config import CommandConfig, CommandModuleConfig
from command_module.service import CommandModuleService
from command_module.task import CommandTask, StartupResult, StartupStatus

__version__ = "0.1.0"
__all__ = [
    "CommandConfig",
    "CommandModuleConfig",
    "CommandModuleService",
    "CommandTask",
    "StartupResult",
    "StartupStatus",
]
