"""
Tests for command resolution and checksum verification.
"""

import hashlib
import os
import tempfile
from pathlib import Path

import pytest

from command_module.errors import ResolutionError, VerificationError
from command_module.resolver import (
    Checksum,
    checksums_from_config,
    resolve_command,
    split_command,
    verify_command,
)

TOOL_CONTENT = b"#!/bin/sh\necho tool\n"


@pytest.fixture
def tool_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir) / "tool"
        path.write_bytes(TOOL_CONTENT)
        path.chmod(0o755)
        yield path


def test_split_command_keeps_remainder_verbatim():
    assert split_command("/usr/bin/foo -a 'b c'") == ("/usr/bin/foo", "-a 'b c'")
    assert split_command("  uptime  ") == ("uptime", "")


def test_split_command_honours_quoted_binary():
    assert split_command("'/opt/my tool/x' -v") == ("/opt/my tool/x", "-v")


def test_split_command_keeps_hash_in_binary():
    assert split_command("/opt/c#/tool -v") == ("/opt/c#/tool", "-v")
    assert split_command("tool --tag '#1' # not a comment") == ("tool", "--tag '#1' # not a comment")


def test_split_command_rejects_empty():
    with pytest.raises(ResolutionError):
        split_command("   ")


def test_resolve_bare_name_from_path():
    resolved = resolve_command("echo hello")
    assert os.path.isabs(resolved.path)
    assert resolved.binary == "echo"
    assert resolved.arguments == "hello"
    assert resolved.full_command == f"{resolved.path} hello"


def test_resolve_explicit_path_without_arguments(tool_path):
    resolved = resolve_command(str(tool_path))
    assert resolved.path == str(tool_path)
    assert resolved.full_command == str(tool_path)


def test_resolve_missing_binary():
    with pytest.raises(ResolutionError):
        resolve_command("definitely-not-a-real-binary-7f3a --help")

    with pytest.raises(ResolutionError):
        resolve_command("/nonexistent/bin/tool --help")


def test_checksums_from_config_orders_and_skips_empty():
    checksums = checksums_from_config(md5=" ", sha1=None, sha256="ABC")
    assert checksums == [Checksum(algorithm="sha256", expected="ABC")]

    checksums = checksums_from_config(md5="a", sha1="b", sha256="c")
    assert [c.algorithm for c in checksums] == ["md5", "sha1", "sha256"]


def test_verify_matching_sha256(tool_path):
    resolved = resolve_command(f"{tool_path} --flag")
    expected = hashlib.sha256(TOOL_CONTENT).hexdigest().upper()

    assert verify_command(resolved, [Checksum("sha256", expected)]) == []


def test_verify_mismatch_is_fatal(tool_path):
    resolved = resolve_command(str(tool_path))
    checksums = [
        Checksum("md5", "0" * 32),
        Checksum("sha256", hashlib.sha256(TOOL_CONTENT).hexdigest()),
    ]

    with pytest.raises(VerificationError) as excinfo:
        verify_command(resolved, checksums, skip_on_mismatch=False)
    assert excinfo.value.algorithm == "md5"


def test_verify_mismatch_skipped_checks_remaining(tool_path, caplog):
    resolved = resolve_command(str(tool_path))
    # Deliberately listed out of order; verification still runs md5, sha1, sha256.
    checksums = [
        Checksum("sha256", "f" * 64),
        Checksum("sha1", hashlib.sha1(TOOL_CONTENT).hexdigest()),
        Checksum("md5", "0" * 32),
    ]

    mismatched = verify_command(resolved, checksums, skip_on_mismatch=True)

    assert mismatched == ["md5", "sha256"]
    assert "Skipping" in caplog.text


def test_verify_unreadable_file_counts_as_mismatch(tool_path):
    resolved = resolve_command(str(tool_path))
    tool_path.unlink()

    with pytest.raises(VerificationError):
        verify_command(resolved, [Checksum("sha1", "0" * 40)])
