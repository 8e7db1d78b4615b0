"""
Command module configuration management.

Handles loading, saving, and validating the JSON configuration that lists
the commands to run and the settings they share (event rate budget, queue
socket, state database, logging).
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from command_module.resolver import Checksum, checksums_from_config
from command_module.transport import DEFAULT_MAX_EPS, DEFAULT_QUEUE_PATH

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 86400  # one day
DEFAULT_TIMEOUT = 3600
MAX_EPS_LIMIT = 1000

_HEX_LENGTHS = {'verify_md5': 32, 'verify_sha1': 40, 'verify_sha256': 64}
_HEX_RE = re.compile(r'^[0-9a-fA-F]+$')


def get_data_dir() -> Path:
    """Get the data directory from environment or default."""
    data_dir = os.environ.get('COMMAND_MODULE_DATA_DIR')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".command_module"


def _get_default_log_file() -> str:
    if os.environ.get('COMMAND_MODULE_LOG_DIR'):
        return str(Path(os.environ['COMMAND_MODULE_LOG_DIR']).expanduser() / "command_module.log")
    return str(get_data_dir() / "logs" / "command_module.log")


@dataclass
class CommandConfig:
    """
    One scheduled command.

    The module doesn't know what the command does; it resolves, verifies
    and runs it every `interval` seconds and forwards its output.
    """
    tag: str
    command: str
    enabled: bool = True
    interval: int = DEFAULT_INTERVAL  # seconds, 0 only with continuous
    run_on_start: bool = True
    ignore_output: bool = False
    skip_verification: bool = False
    timeout: int = DEFAULT_TIMEOUT
    verify_md5: Optional[str] = None
    verify_sha1: Optional[str] = None
    verify_sha256: Optional[str] = None
    continuous: bool = False  # permits interval 0 (free-running)
    remote: bool = False  # pushed by a central manager

    @property
    def checksums(self) -> List[Checksum]:
        return checksums_from_config(self.verify_md5, self.verify_sha1, self.verify_sha256)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = None  # Set dynamically in __post_init__
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


class CommandModuleConfig:
    """
    Configuration manager.

    Configuration path priority:
    1. Explicit config_path argument
    2. COMMAND_MODULE_CONFIG_PATH environment variable
    3. Default: ~/.command_module/config.json
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get('COMMAND_MODULE_CONFIG_PATH'):
            self.config_path = Path(os.environ['COMMAND_MODULE_CONFIG_PATH']).expanduser()
        else:
            self.config_path = get_data_dir() / "config.json"

        self.commands: List[CommandConfig] = []
        self.max_eps: int = DEFAULT_MAX_EPS
        self.queue_path: str = DEFAULT_QUEUE_PATH
        self.state_db: str = str(get_data_dir() / "state.db")
        self.remote_commands: bool = False
        self.connect_attempts: int = 3
        self.connect_wait_seconds: float = 1.0
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")

    def load(self):
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            self.commands = [self._parse_command(entry) for entry in data.get('commands', [])]

            self.max_eps = int(data.get('max_eps', self.max_eps))
            self.queue_path = data.get('queue_path', self.queue_path)
            if data.get('state_db'):
                self.state_db = str(Path(data['state_db']).expanduser())
            self.remote_commands = bool(data.get('remote_commands', self.remote_commands))
            self.connect_attempts = int(data.get('connect_attempts', self.connect_attempts))
            self.connect_wait_seconds = float(
                data.get('connect_wait_seconds', self.connect_wait_seconds)
            )

            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])

            logger.info(f"Loaded {len(self.commands)} command(s) from {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise

    @staticmethod
    def _parse_command(entry: Dict[str, Any]) -> CommandConfig:
        known = CommandConfig.__dataclass_fields__
        unknown = set(entry) - set(known)
        if unknown:
            logger.warning(
                f"Ignoring unknown option(s) for command '{entry.get('tag')}': "
                f"{', '.join(sorted(unknown))}"
            )
        return CommandConfig(**{k: v for k, v in entry.items() if k in known})

    def save(self):
        """Save configuration to JSON file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'max_eps': self.max_eps,
            'queue_path': self.queue_path,
            'state_db': self.state_db,
            'remote_commands': self.remote_commands,
            'connect_attempts': self.connect_attempts,
            'connect_wait_seconds': self.connect_wait_seconds,
            'commands': [asdict(command) for command in self.commands],
            'logging': asdict(self.logging)
        }

        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def add_command(self, command: CommandConfig):
        """Add a command to the configuration."""
        if any(c.tag == command.tag for c in self.commands):
            raise ValueError(f"Command with tag '{command.tag}' already exists")
        self.commands.append(command)

    def get_command(self, tag: str) -> Optional[CommandConfig]:
        """Get command configuration by tag."""
        for command in self.commands:
            if command.tag == tag:
                return command
        return None

    def get_enabled_commands(self) -> List[CommandConfig]:
        return [c for c in self.commands if c.enabled]

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not 1 <= self.max_eps <= MAX_EPS_LIMIT:
            errors.append(f"'max_eps' must be between 1 and {MAX_EPS_LIMIT}")
        if self.connect_attempts < 1:
            errors.append("'connect_attempts' must be at least 1")
        if self.connect_wait_seconds < 0:
            errors.append("'connect_wait_seconds' cannot be negative")

        seen = set()
        for command in self.commands:
            name = command.tag or '<untagged>'

            if not command.tag or not command.tag.strip():
                errors.append("Command: 'tag' cannot be empty")
            elif command.tag in seen:
                errors.append(f"Command {name}: duplicate tag")
            seen.add(command.tag)

            if not command.command or not command.command.strip():
                errors.append(f"Command {name}: 'command' cannot be empty")

            if command.interval < 0:
                errors.append(f"Command {name}: 'interval' cannot be negative")
            elif command.interval == 0 and not command.continuous:
                errors.append(
                    f"Command {name}: 'interval' of 0 runs the command back to back; "
                    f"set 'continuous' to true to allow it"
                )

            if command.timeout < 1:
                errors.append(f"Command {name}: 'timeout' must be positive")

            for option, length in _HEX_LENGTHS.items():
                value = getattr(command, option)
                if not value:
                    continue
                if len(value.strip()) != length or not _HEX_RE.match(value.strip()):
                    errors.append(
                        f"Command {name}: '{option}' must be {length} hexadecimal characters"
                    )

        return errors

    def __repr__(self):
        return f"CommandModuleConfig(commands={len(self.commands)}, path={self.config_path})"
