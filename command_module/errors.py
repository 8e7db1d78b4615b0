"""
Exception hierarchy for the command module.

Startup errors (resolution, verification, connect) end a task before its
scheduling loop begins. Persistence errors are reported by the state store
and only logged by the task.
"""


class CommandModuleError(Exception):
    """Base class for all command module errors."""
    pass


class ResolutionError(CommandModuleError):
    """Raised when the command binary cannot be located or stat'd."""
    pass


class VerificationError(CommandModuleError):
    """Raised when a checksum of the command binary does not match."""

    def __init__(self, message: str, algorithm: str = None):
        super().__init__(message)
        self.algorithm = algorithm


class ConnectError(CommandModuleError):
    """Raised when the event queue cannot be reached after all attempts."""
    pass


class PersistenceError(CommandModuleError):
    """Raised when the schedule state cannot be written."""
    pass
