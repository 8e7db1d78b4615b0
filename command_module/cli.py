"""
Command-line interface for the command module.

Provides CLI commands for:
- Starting the command workers in the foreground
- Validating the configuration
- Listing configured commands and their next scheduled run
- Writing an initial configuration file
"""

import argparse
import logging
import os
import signal
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from command_module.config import CommandConfig, CommandModuleConfig, LoggingConfig
from command_module.service import CommandModuleService

logger = logging.getLogger(__name__)


def setup_logging(log_config: LoggingConfig = None, log_file: str = None, verbose: bool = False):
    """Setup logging configuration."""
    log_config = log_config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, log_config.level.upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # APScheduler is chatty at INFO
    logging.getLogger('apscheduler').setLevel(logging.DEBUG if verbose else logging.WARNING)


def cmd_start(args):
    """Start every configured command and block until terminated."""
    try:
        config = CommandModuleConfig(args.config)
    except Exception as e:
        setup_logging(verbose=args.verbose)
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    setup_logging(
        config.logging,
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose
    )

    logger.info("Starting command module...")
    service = CommandModuleService(config=config)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        service.stop()
        # Workers never return; exit without joining them.
        os._exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not service.start():
        sys.exit(1)

    logger.info("Running in foreground mode. Press Ctrl+C to stop.")
    while True:
        time.sleep(60)


def cmd_validate(args):
    """Validate the configuration file."""
    setup_logging(verbose=args.verbose)

    try:
        config = CommandModuleConfig(args.config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    errors = config.validate()
    if errors:
        print(f"\nConfiguration {config.config_path} has {len(errors)} error(s):\n")
        for error in errors:
            print(f"  ✗ {error}")
        print()
        sys.exit(1)

    print(f"\n✓ Configuration {config.config_path} is valid ({len(config.commands)} command(s))\n")


def cmd_list(args):
    """List configured commands with their next scheduled run."""
    setup_logging(verbose=args.verbose)

    try:
        service = CommandModuleService(config_path=args.config)
        rows = service.describe()
    except Exception as e:
        logger.error(f"Failed to list commands: {e}")
        sys.exit(1)

    print(f"\n=== Configured Commands ({len(rows)}) ===\n")

    for row in rows:
        status = "✓" if row['enabled'] else "✗"
        print(f"{status} {row['tag']}")
        print(f"    Command:  {row['command']}")
        print(f"    Interval: {row['interval']}s")

        next_run = row['next_run_time']
        if next_run:
            print(f"    Next Run: {datetime.fromtimestamp(next_run).isoformat(sep=' ')}")
        elif next_run == 0:
            print("    Next Run: immediately")
        else:
            print("    Next Run: N/A (no saved state)")
        print()


def cmd_init(args):
    """Write an initial configuration file."""
    setup_logging(verbose=args.verbose)

    try:
        config = CommandModuleConfig(args.config)
        if config.config_path.exists() and not args.force:
            logger.error(f"Configuration already exists at {config.config_path} (use --force)")
            sys.exit(1)

        if not config.commands:
            config.add_command(CommandConfig(
                tag="uptime",
                command="uptime",
                interval=300,
                ignore_output=False
            ))
        config.save()

        log_dir = Path(config.logging.file).expanduser().parent
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized configuration at: {config.config_path}")

    except (OSError, ValueError) as e:
        logger.error(f"Failed to initialize: {e}")
        sys.exit(1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Command module - run commands on a fixed-rate schedule and forward their output",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='action', help='Commands')

    start_parser = subparsers.add_parser('start', help='Start the command workers')
    start_parser.add_argument('--log-file', type=str, help='Log file path')
    start_parser.set_defaults(func=cmd_start)

    validate_parser = subparsers.add_parser('validate', help='Validate the configuration')
    validate_parser.set_defaults(func=cmd_validate)

    list_parser = subparsers.add_parser('list', help='List configured commands')
    list_parser.set_defaults(func=cmd_list)

    init_parser = subparsers.add_parser('init', help='Write an initial configuration')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')
    init_parser.set_defaults(func=cmd_init)

    args = parser.parse_args()

    if not args.action:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
