"""
SQLite-based cache implementation.

Provides persistent caching for provider responses with TTL-based expiration,
deterministic keys derived from (service, endpoint, params), lazy removal of
expired or corrupted entries and a size budget with oldest-first eviction.
"""

import hashlib
import json
import math
import random
from pathlib import Path
from typing import Any, Optional

from geolayers.core.exceptions import CacheError, ValidationError
from geolayers.core.logging import get_logger
from geolayers.core.models import CacheEntry
from geolayers.core.storage import Clock, SQLiteStore

logger = get_logger(__name__)


class CacheLayer(SQLiteStore):
    """SQLite-based cache for provider responses.

    One row per key; ``set`` overwrites. Reads never raise for missing,
    expired or malformed entries.
    """

    DEFAULT_TTL = 3600  # 1 hour
    DEFAULT_MAX_SIZE = 100 * 1024 * 1024  # 100 MB
    DEFAULT_CLEANUP_PROBABILITY = 0.1
    EVICTION_FRACTION = 0.25

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS cache (
            key TEXT PRIMARY KEY,
            service TEXT NOT NULL,
            endpoint TEXT NOT NULL,
            params TEXT NOT NULL,
            payload TEXT NOT NULL,
            created_at REAL NOT NULL,
            expires_at REAL NOT NULL,
            size INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_cache_expires
        ON cache(expires_at);

        CREATE INDEX IF NOT EXISTS idx_cache_created
        ON cache(created_at);
    """
    ERROR = CacheError

    def __init__(
        self,
        db_path: Optional[Path] = None,
        default_ttl: int = DEFAULT_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        cleanup_probability: float = DEFAULT_CLEANUP_PROBABILITY,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the cache layer.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.geolayers/cache.db
            default_ttl: Default time-to-live in seconds for cached entries.
            max_size: Size budget in bytes enforced by check_size_limit().
            cleanup_probability: Chance (0-1) of sweeping expired entries on construction.
            clock: Callable returning the current epoch time.
            rng: Random source for the construction-time sweep.
        """
        if db_path is None:
            db_path = Path.home() / ".geolayers" / "cache.db"

        self.default_ttl = default_ttl
        self.max_size = max_size
        self.cleanup_probability = cleanup_probability
        self._rng = rng or random.Random()

        super().__init__(db_path, clock)

        if self.cleanup_probability > 0 and self._rng.random() < self.cleanup_probability:
            removed = self.cleanup()
            logger.debug("cache.sweep", removed=removed)

    @staticmethod
    def make_key(service: str, endpoint: str, params: Optional[dict[str, Any]] = None) -> str:
        """Create a deterministic cache key.

        The key is independent of the insertion order of ``params``.

        Args:
            service: Provider name (e.g. "weather").
            endpoint: Provider operation (e.g. "current").
            params: Request parameters.

        Returns:
            Hex md5 digest of the canonical JSON encoding.
        """
        key_data = {
            "service": service,
            "endpoint": endpoint,
            "params": params or {},
        }
        canonical = json.dumps(key_data, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()

    def set(
        self,
        service: str,
        endpoint: str,
        params: Optional[dict[str, Any]],
        payload: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """Store a payload in the cache.

        Args:
            service: Provider name.
            endpoint: Provider operation.
            params: Request parameters.
            payload: Value to cache (must be JSON-serializable).
            ttl: Time-to-live in seconds. Uses default if not specified.

        Returns:
            True if the entry was written, False on a write failure.
        """
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            raise ValidationError("ttl", str(ttl), "TTL must be positive")

        key = self.make_key(service, endpoint, params)
        now = self.now()

        try:
            payload_json = json.dumps(payload)
            params_json = json.dumps(params or {}, sort_keys=True, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("cache.set_failed", service=service, endpoint=endpoint, error=str(e))
            return False

        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cache
                        (key, service, endpoint, params, payload, created_at, expires_at, size)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        key,
                        service,
                        endpoint,
                        params_json,
                        payload_json,
                        now,
                        now + ttl,
                        len(payload_json.encode("utf-8")),
                    ),
                )
        except CacheError as e:
            logger.warning("cache.set_failed", service=service, endpoint=endpoint, error=str(e))
            return False

        return True

    def get(
        self,
        service: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Optional[Any]:
        """Get a cached payload if present and not expired.

        Expired and corrupted entries are deleted on read.

        Returns:
            The cached payload, or None.
        """
        key = self.make_key(service, endpoint, params)

        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT payload, expires_at FROM cache WHERE key = ?",
                    (key,),
                ).fetchone()

                if row is None:
                    return None

                try:
                    expires_at = float(row["expires_at"])
                    payload = json.loads(row["payload"])
                except (TypeError, ValueError):
                    logger.warning("cache.corrupted_entry", key=key, service=service)
                    conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                    return None

                if self.now() > expires_at:
                    conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                    return None

                return payload

        except CacheError as e:
            logger.warning("cache.get_failed", key=key, service=service, error=str(e))
            return None

    def has(
        self,
        service: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Return True if a valid entry exists."""
        return self.get(service, endpoint, params) is not None

    def get_entry(
        self,
        service: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Optional[CacheEntry]:
        """Return the raw stored entry (expired or not), or None."""
        key = self.make_key(service, endpoint, params)

        with self._connection() as conn:
            row = conn.execute("SELECT * FROM cache WHERE key = ?", (key,)).fetchone()

        if row is None:
            return None

        try:
            return CacheEntry(
                key=row["key"],
                service=row["service"],
                endpoint=row["endpoint"],
                params=json.loads(row["params"]),
                payload=json.loads(row["payload"]),
                created_at=float(row["created_at"]),
                expires_at=float(row["expires_at"]),
                size=row["size"],
            )
        except (TypeError, ValueError):
            return None

    def delete(
        self,
        service: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Delete a specific cache entry.

        Returns:
            True if entry was deleted, False if not found.
        """
        key = self.make_key(service, endpoint, params)

        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def invalidate_service(self, service: str) -> int:
        """Remove every entry belonging to one service.

        Returns:
            Number of entries deleted.
        """
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE service = ?", (service,))
            return cursor.rowcount

    def clear(self) -> int:
        """Clear all cache entries.

        Returns:
            Number of entries removed.
        """
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM cache")
            return cursor.rowcount

    def cleanup(self) -> int:
        """Remove expired and corrupted entries.

        Returns:
            Number of entries removed.
        """
        now = self.now()

        with self._connection() as conn:
            rows = conn.execute("SELECT key, payload, expires_at FROM cache").fetchall()

            doomed = []
            for row in rows:
                try:
                    expired = now > float(row["expires_at"])
                    if not expired:
                        json.loads(row["payload"])
                except (TypeError, ValueError):
                    expired = True
                if expired:
                    doomed.append((row["key"],))

            conn.executemany("DELETE FROM cache WHERE key = ?", doomed)

        if doomed:
            logger.info("cache.cleanup", removed=len(doomed))
        return len(doomed)

    def total_size(self) -> int:
        """Return the summed payload size of all stored entries in bytes."""
        with self._connection() as conn:
            return conn.execute("SELECT COALESCE(SUM(size), 0) FROM cache").fetchone()[0]

    def check_size_limit(self) -> bool:
        """Enforce the size budget.

        When the stored entries exceed ``max_size``, expired entries are
        removed first; if the cache is still over budget the oldest 25% of the
        remaining entries (by creation time) are evicted.

        Returns:
            True if the budget was exceeded and cleanup ran.
        """
        if self.total_size() <= self.max_size:
            return False

        expired = self.cleanup()

        evicted = 0
        if self.total_size() > self.max_size:
            evicted = self._evict_oldest()

        logger.info("cache.size_limit", expired=expired, evicted=evicted, max_size=self.max_size)
        return True

    def _evict_oldest(self) -> int:
        with self._connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM cache").fetchone()[0]
            to_remove = math.ceil(count * self.EVICTION_FRACTION)
            if to_remove == 0:
                return 0

            cursor = conn.execute(
                """
                DELETE FROM cache WHERE key IN (
                    SELECT key FROM cache ORDER BY created_at ASC, key ASC LIMIT ?
                )
                """,
                (to_remove,),
            )
            return cursor.rowcount

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with entry counts, stored size and per-service breakdown.
        """
        now = self.now()

        with self._connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM cache").fetchone()[0]

            total_size = conn.execute(
                "SELECT COALESCE(SUM(size), 0) FROM cache"
            ).fetchone()[0]

            expired = conn.execute(
                "SELECT COUNT(*) FROM cache WHERE expires_at < ?",
                (now,),
            ).fetchone()[0]

            services = conn.execute(
                "SELECT service, COUNT(*) AS count FROM cache GROUP BY service"
            ).fetchall()

        return {
            "total_files": total,
            "total_size": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "expired_count": expired,
            "per_service_counts": {row["service"]: row["count"] for row in services},
            "max_size": self.max_size,
            "db_path": str(self.db_path),
        }
