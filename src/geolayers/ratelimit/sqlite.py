"""
Fixed-window rate limiter backed by SQLite.

Each identifier (a provider name) owns one row holding the JSON list of its
call timestamps from the last 24 hours. The per-minute budget is checked
against the calendar minute the current time falls in.
"""

import json
import math
from pathlib import Path
from typing import Any, Optional

from geolayers.core.exceptions import CacheError
from geolayers.core.logging import get_logger
from geolayers.core.storage import Clock, SQLiteStore

logger = get_logger(__name__)

WINDOW_SECONDS = 60
RETENTION_SECONDS = 86400  # 24 hours


class RateLimiter(SQLiteStore):
    """Per-identifier call budget tracker.

    Reads fail open: a window that cannot be loaded counts as empty.
    """

    DEFAULT_LIMIT = 60

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS rate_windows (
            identifier TEXT PRIMARY KEY,
            timestamps TEXT NOT NULL
        );
    """
    ERROR = CacheError

    def __init__(
        self,
        db_path: Optional[Path] = None,
        limits: Optional[dict[str, int]] = None,
        daily_limits: Optional[dict[str, int]] = None,
        default_limit: int = DEFAULT_LIMIT,
        enabled: bool = True,
        clock: Optional[Clock] = None,
    ):
        """Initialize the rate limiter.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.geolayers/rate_limits.db
            limits: Per-identifier calls-per-minute caps.
            daily_limits: Optional per-identifier caps over the retained 24h window.
            default_limit: Cap applied to identifiers missing from ``limits``.
            enabled: When False every call is admitted and nothing is recorded.
            clock: Callable returning the current epoch time.
        """
        if db_path is None:
            db_path = Path.home() / ".geolayers" / "rate_limits.db"

        self.limits = dict(limits or {})
        self.daily_limits = dict(daily_limits or {})
        self.default_limit = default_limit
        self.enabled = enabled

        super().__init__(db_path, clock)

    def limit_for(self, identifier: str) -> int:
        return self.limits.get(identifier, self.default_limit)

    def check_rate_limit(self, identifier: str) -> bool:
        """Return True if another call fits in the current window.

        Does not record the call.
        """
        if not self.enabled:
            return True

        now = self.now()
        timestamps = self._retained(self._load(identifier), now)

        if self._in_current_minute(timestamps, now) >= self.limit_for(identifier):
            return False

        daily = self.daily_limits.get(identifier)
        if daily is not None and len(timestamps) >= daily:
            return False

        return True

    def record_call(self, identifier: str) -> None:
        """Append the current time to the identifier's window and persist it."""
        if not self.enabled:
            return

        now = self.now()
        timestamps = self._load(identifier)
        timestamps.append(now)
        timestamps = self._retained(timestamps, now)

        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO rate_windows (identifier, timestamps) VALUES (?, ?)",
                    (identifier, json.dumps(timestamps)),
                )
        except CacheError as e:
            logger.warning("ratelimit.record_failed", identifier=identifier, error=str(e))

    def retry_after(self, identifier: str) -> int:
        """Seconds until the current minute window elapses."""
        now = self.now()
        next_window = (math.floor(now / WINDOW_SECONDS) + 1) * WINDOW_SECONDS
        return max(1, math.ceil(next_window - now))

    def usage(self, identifier: str) -> dict[str, Any]:
        """Return current usage counters for an identifier."""
        now = self.now()
        timestamps = self._retained(self._load(identifier), now)
        return {
            "identifier": identifier,
            "minute": self._in_current_minute(timestamps, now),
            "day": len(timestamps),
            "limit_per_minute": self.limit_for(identifier),
            "limit_per_day": self.daily_limits.get(identifier),
        }

    def reset(self, identifier: Optional[str] = None) -> int:
        """Clear one identifier's window, or every window.

        Returns:
            Number of windows removed.
        """
        with self._connection() as conn:
            if identifier is None:
                cursor = conn.execute("DELETE FROM rate_windows")
            else:
                cursor = conn.execute(
                    "DELETE FROM rate_windows WHERE identifier = ?",
                    (identifier,),
                )
            return cursor.rowcount

    def _load(self, identifier: str) -> list[float]:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT timestamps FROM rate_windows WHERE identifier = ?",
                    (identifier,),
                ).fetchone()
        except CacheError as e:
            logger.warning("ratelimit.read_failed", identifier=identifier, error=str(e))
            return []

        if row is None:
            return []

        try:
            data = json.loads(row["timestamps"])
            return [float(ts) for ts in data]
        except (TypeError, ValueError):
            logger.warning("ratelimit.corrupted_window", identifier=identifier)
            return []

    @staticmethod
    def _retained(timestamps: list[float], now: float) -> list[float]:
        return [ts for ts in timestamps if now - ts < RETENTION_SECONDS]

    @staticmethod
    def _in_current_minute(timestamps: list[float], now: float) -> int:
        bucket = math.floor(now / WINDOW_SECONDS)
        return sum(1 for ts in timestamps if math.floor(ts / WINDOW_SECONDS) == bucket)
