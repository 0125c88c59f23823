"""
Shared SQLite plumbing for the persisted stores.

The cache, the rate limiter and the layer repository each keep their state in
their own SQLite file; this base class owns path handling, schema bootstrap
and the connection context manager.
"""

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

from geolayers.core.exceptions import GeoLayersError

Clock = Callable[[], float]


class SQLiteStore:
    """Base class for SQLite-backed stores.

    Subclasses set ``SCHEMA`` and ``ERROR`` (a GeoLayersError subclass whose
    constructor takes ``(operation, details)``).
    """

    SCHEMA = ""
    ERROR: type[GeoLayersError] = GeoLayersError

    def __init__(self, db_path: Path, clock: Clock | None = None):
        self.db_path = Path(db_path).expanduser()
        self.clock = clock or time.time

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        try:
            with self._connection() as conn:
                conn.executescript(self.SCHEMA)
        except sqlite3.Error as e:
            raise self.ERROR("initialization", str(e))

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection context manager.

        Yields:
            sqlite3.Connection that auto-commits on success.
        """
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise self.ERROR("connect", str(e))

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise self.ERROR("database operation", str(e))
        finally:
            conn.close()

    def now(self) -> float:
        """Return the current time from the injected clock."""
        return self.clock()
