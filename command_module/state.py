"""
Persistent schedule state.

Each task keeps a single fixed-size record, the next scheduled run as a
signed 64-bit UNIX timestamp, keyed by its extended tag. Records live in a
small SQLite table accessed through SQLAlchemy so that every task thread can
share one store.
"""

import logging
import struct
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Float, LargeBinary, MetaData, String, Table, create_engine, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from command_module.errors import PersistenceError

logger = logging.getLogger(__name__)

# Little-endian signed 64-bit integer: next_run_time
_STATE_FORMAT = '<q'
STATE_SIZE = struct.calcsize(_STATE_FORMAT)

metadata = MetaData()

module_state = Table(
    'module_state',
    metadata,
    Column('key', String(255), primary_key=True),
    Column('state', LargeBinary, nullable=False),
    Column('updated_at', Float, nullable=False),
)


@dataclass
class ScheduleState:
    """Persisted scheduling state of one task."""
    next_run_time: int = 0

    def pack(self) -> bytes:
        return struct.pack(_STATE_FORMAT, int(self.next_run_time))

    @classmethod
    def unpack(cls, blob: bytes) -> 'ScheduleState':
        """
        Decode a stored record.

        Raises:
            ValueError: If the blob is not exactly one record long
        """
        if blob is None or len(blob) != STATE_SIZE:
            raise ValueError(
                f"Invalid state record size: expected {STATE_SIZE}, "
                f"got {None if blob is None else len(blob)}"
            )
        (next_run_time,) = struct.unpack(_STATE_FORMAT, blob)
        return cls(next_run_time=next_run_time)


class StateStore:
    """
    SQLite-backed key/value store for schedule state.

    load() never raises: a missing or unreadable record is reported as None
    and the caller starts from a zero state. save() raises PersistenceError
    so the caller can decide how loudly to complain.
    """

    def __init__(self, db_path: str):
        """
        Initialize the state store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f'sqlite:///{self.db_path}',
            connect_args={'check_same_thread': False}
        )
        metadata.create_all(self.engine)
        logger.debug(f"State store ready: {self.db_path}")

    def load(self, key: str) -> Optional[ScheduleState]:
        """
        Read the state stored under key.

        Returns:
            The stored ScheduleState, or None if absent or unreadable
        """
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(module_state.c.state).where(module_state.c.key == key)
                ).first()
        except SQLAlchemyError as e:
            logger.error(f"{key}: Couldn't read running state: {e}")
            return None

        if row is None:
            return None

        try:
            return ScheduleState.unpack(row[0])
        except ValueError as e:
            logger.warning(f"{key}: Discarding corrupted running state: {e}")
            return None

    def save(self, key: str, state: ScheduleState):
        """
        Write state under key, replacing any previous record.

        Raises:
            PersistenceError: If the record cannot be written
        """
        blob = state.pack()
        stmt = sqlite_insert(module_state).values(key=key, state=blob, updated_at=time.time())
        stmt = stmt.on_conflict_do_update(
            index_elements=[module_state.c.key],
            set_={'state': stmt.excluded.state, 'updated_at': stmt.excluded.updated_at}
        )

        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Couldn't save running state for '{key}': {e}") from e

    def close(self):
        """Release pooled connections."""
        self.engine.dispose()
