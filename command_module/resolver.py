"""
Command resolution and binary verification.

The configured command line is split into its binary and argument
remainder, the binary is resolved to an absolute path, and the file at that
path is optionally checked against MD5, SHA1 and SHA256 digests before the
task is allowed to schedule anything.
"""

import hashlib
import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

from command_module.errors import ResolutionError, VerificationError

logger = logging.getLogger(__name__)

# Verification always runs in this order, whatever order the config lists.
CHECKSUM_ALGORITHMS = ("md5", "sha1", "sha256")

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Checksum:
    """An expected digest for one algorithm."""
    algorithm: str  # 'md5', 'sha1' or 'sha256'
    expected: str


@dataclass(frozen=True)
class ResolvedCommand:
    """A command line whose binary has been replaced by an absolute path."""
    binary: str
    path: str
    arguments: str
    full_command: str


def split_command(raw_command: str) -> tuple:
    """
    Split a command line into its binary token and the untouched remainder.

    Quoting in the binary token is honoured; the remainder is returned
    exactly as written so the shell sees the operator's own arguments.

    Raises:
        ResolutionError: If the command is empty or cannot be tokenized
    """
    stripped = (raw_command or "").strip()
    if not stripped:
        raise ResolutionError("Could not split command: empty command")

    lexer = shlex.shlex(stripped, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ''
    try:
        binary = lexer.get_token()
    except ValueError as e:
        raise ResolutionError(f"Could not split command '{raw_command}': {e}") from e

    if not binary:
        raise ResolutionError(f"Could not split command: '{raw_command}'")

    remainder = stripped[lexer.instream.tell():].strip()
    return binary, remainder


def locate_binary(binary: str) -> str:
    """
    Resolve a binary token to an absolute path.

    Tokens containing a path separator are taken as paths and only need to
    be stat'able; bare names are looked up on PATH.

    Raises:
        ResolutionError: If the binary cannot be found
    """
    separators = [os.sep] + ([os.altsep] if os.altsep else [])
    if any(sep in binary for sep in separators):
        path = os.path.abspath(os.path.expanduser(binary))
        try:
            os.stat(path)
        except OSError as e:
            raise ResolutionError(
                f"Cannot check binary: '{binary}'. Cannot stat binary file: {e}"
            ) from e
        return path

    found = shutil.which(binary)
    if not found:
        raise ResolutionError(
            f"Cannot check binary: '{binary}'. Not found in PATH."
        )
    return os.path.abspath(found)


def resolve_command(raw_command: str) -> ResolvedCommand:
    """
    Resolve the binary of a command line to an absolute path.

    Args:
        raw_command: Operator-supplied command line

    Returns:
        ResolvedCommand with the rebuilt full command line

    Raises:
        ResolutionError: If the command cannot be split or the binary located
    """
    binary, remainder = split_command(raw_command)
    path = locate_binary(binary)

    full_command = shlex.quote(path)
    if remainder:
        full_command = f"{full_command} {remainder}"

    return ResolvedCommand(
        binary=binary,
        path=path,
        arguments=remainder,
        full_command=full_command
    )


def file_digest(path: str, algorithm: str) -> str:
    """Compute the hex digest of a file."""
    digest = hashlib.new(algorithm)
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def checksums_from_config(
    md5: Optional[str] = None,
    sha1: Optional[str] = None,
    sha256: Optional[str] = None
) -> List[Checksum]:
    """Build the ordered checksum list, skipping empty entries."""
    configured: Dict[str, Optional[str]] = {'md5': md5, 'sha1': sha1, 'sha256': sha256}
    return [
        Checksum(algorithm=name, expected=configured[name].strip())
        for name in CHECKSUM_ALGORITHMS
        if configured[name] and configured[name].strip()
    ]


def verify_checksum(path: str, checksum: Checksum) -> bool:
    """
    Check one digest of a file.

    Returns:
        True on match, False on mismatch or when the file cannot be read
    """
    try:
        actual = file_digest(path, checksum.algorithm)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot compute {checksum.algorithm.upper()} of '{path}': {e}")
        return False
    return actual.lower() == checksum.expected.lower()


def verify_command(
    resolved: ResolvedCommand,
    checksums: List[Checksum],
    skip_on_mismatch: bool = False
) -> List[str]:
    """
    Verify the resolved binary against every configured checksum.

    Algorithms are checked independently in MD5, SHA1, SHA256 order. A
    mismatch either aborts verification or, with skip_on_mismatch, is
    logged and the remaining algorithms are still checked.

    Args:
        resolved: The resolved command
        checksums: Expected digests
        skip_on_mismatch: Log mismatches instead of failing

    Returns:
        Names of the algorithms that did not match (only when skipping)

    Raises:
        VerificationError: On the first mismatch when not skipping
    """
    order = {name: i for i, name in enumerate(CHECKSUM_ALGORITHMS)}
    mismatched = []

    for checksum in sorted(checksums, key=lambda c: order.get(c.algorithm, len(order))):
        if not checksum.expected:
            continue
        if checksum.algorithm not in order:
            raise VerificationError(
                f"Unsupported checksum algorithm '{checksum.algorithm}'",
                algorithm=checksum.algorithm
            )

        name = checksum.algorithm.upper()
        if verify_checksum(resolved.path, checksum):
            logger.debug(
                f"{name} checksum verification succeeded for command '{resolved.full_command}'."
            )
            continue

        if not skip_on_mismatch:
            logger.error(
                f"{name} checksum verification failed for command '{resolved.full_command}'."
            )
            raise VerificationError(
                f"{name} checksum verification failed for '{resolved.path}'",
                algorithm=checksum.algorithm
            )

        logger.warning(
            f"{name} checksum verification failed for command "
            f"'{resolved.full_command}'. Skipping..."
        )
        mismatched.append(checksum.algorithm)

    return mismatched
