"""
Tests for the schedule state store.
"""

import struct
import tempfile
from pathlib import Path

import pytest
from sqlalchemy import insert

from command_module.errors import PersistenceError
from command_module.state import STATE_SIZE, ScheduleState, StateStore, module_state


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as temp_dir:
        state_store = StateStore(str(Path(temp_dir) / "nested" / "state.db"))
        yield state_store
        state_store.close()


def test_record_is_one_signed_64bit_integer():
    assert STATE_SIZE == 8
    assert ScheduleState(-1).pack() == struct.pack('<q', -1)
    assert ScheduleState.unpack(ScheduleState(1700000000).pack()).next_run_time == 1700000000


def test_load_absent_key(store):
    assert store.load("command_missing") is None


def test_save_and_overwrite(store):
    store.save("command_a", ScheduleState(100))
    store.save("command_a", ScheduleState(200))
    store.save("command_b", ScheduleState(5))

    assert store.load("command_a").next_run_time == 200
    assert store.load("command_b").next_run_time == 5


def test_state_survives_reopen():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = str(Path(temp_dir) / "state.db")

        first = StateStore(db_path)
        first.save("command_x", ScheduleState(42))
        first.close()

        second = StateStore(db_path)
        assert second.load("command_x") == ScheduleState(42)
        second.close()


def test_corrupted_record_is_discarded(store):
    with store.engine.begin() as conn:
        conn.execute(insert(module_state).values(key="command_bad", state=b"\x01\x02", updated_at=0.0))

    assert store.load("command_bad") is None


def test_save_failure_raises_persistence_error(store):
    with store.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE module_state")

    with pytest.raises(PersistenceError):
        store.save("command_a", ScheduleState(1))
