"""
SQLite-backed store for normalized layer data.

Keeps the latest normalized payload per (layer type, source, latitude,
longitude, radius) and answers the bounding-box and area aggregate queries
used by the gateways.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from geolayers.core.exceptions import RepositoryError
from geolayers.core.logging import get_logger
from geolayers.core.models import Bounds, DataQuality, LayerRecord, LayerType
from geolayers.core.normalizer import LayerNormalizer
from geolayers.core.storage import Clock, SQLiteStore
from geolayers.core.validation import parse_timeframe

logger = get_logger(__name__)


def _to_datetime(epoch: Optional[float]) -> Optional[datetime]:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def _to_epoch(value: datetime | float | None) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


class LayerRepository(SQLiteStore):
    """Persist and query normalized layer records.

    Every store is an upsert on the uniqueness key; quality is recomputed from
    the payload each time.
    """

    # Approximately 1 km of latitude
    NEARBY_DELTA = 0.01
    NEARBY_LIMIT = 10
    DEFAULT_RADIUS = 1000

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS layer_data (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            layer_type TEXT NOT NULL,
            source TEXT NOT NULL,
            latitude REAL NOT NULL,
            longitude REAL NOT NULL,
            radius INTEGER NOT NULL DEFAULT 1000,
            payload TEXT NOT NULL,
            quality TEXT NOT NULL DEFAULT 'unknown',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            expires_at REAL,
            UNIQUE(layer_type, source, latitude, longitude, radius)
        );

        CREATE INDEX IF NOT EXISTS idx_layer_position
        ON layer_data(layer_type, latitude, longitude);

        CREATE INDEX IF NOT EXISTS idx_layer_expires
        ON layer_data(expires_at);
    """
    ERROR = RepositoryError

    def __init__(
        self,
        db_path: Optional[Path] = None,
        normalizer: Optional[LayerNormalizer] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the repository.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.geolayers/layers.db
            normalizer: Supplies the quality function applied on store.
            clock: Callable returning the current epoch time.
        """
        if db_path is None:
            db_path = Path.home() / ".geolayers" / "layers.db"

        self.normalizer = normalizer or LayerNormalizer(clock=clock)
        super().__init__(db_path, clock)

    def store(
        self,
        layer_type: LayerType,
        source: str,
        lat: float,
        lon: float,
        payload: Any,
        radius: int = DEFAULT_RADIUS,
        expires_at: datetime | float | None = None,
    ) -> LayerRecord:
        """Insert or update the record for a coordinate and radius.

        Args:
            layer_type: Layer of the payload.
            source: Provider id.
            lat: Latitude of the query point.
            lon: Longitude of the query point.
            payload: Normalized payload.
            radius: Radius in metres the payload covers.
            expires_at: Expiry as a datetime or epoch seconds (None never expires).

        Returns:
            The stored record.

        Raises:
            RepositoryError: If the write fails.
        """
        now = self.now()
        quality = self.normalizer.assess_quality(payload)
        expires_epoch = _to_epoch(expires_at)

        try:
            payload_json = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise RepositoryError("store", f"Payload is not JSON-serializable: {e}")

        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO layer_data
                    (layer_type, source, latitude, longitude, radius,
                     payload, quality, created_at, updated_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(layer_type, source, latitude, longitude, radius)
                DO UPDATE SET
                    payload = excluded.payload,
                    quality = excluded.quality,
                    updated_at = excluded.updated_at,
                    expires_at = excluded.expires_at
                """,
                (
                    layer_type.value,
                    source,
                    lat,
                    lon,
                    radius,
                    payload_json,
                    quality.value,
                    now,
                    now,
                    expires_epoch,
                ),
            )
            row = conn.execute(
                """
                SELECT * FROM layer_data
                WHERE layer_type = ? AND source = ? AND latitude = ?
                  AND longitude = ? AND radius = ?
                """,
                (layer_type.value, source, lat, lon, radius),
            ).fetchone()

        return self._row_to_record(row)

    def get(
        self,
        layer_type: LayerType,
        lat: float,
        lon: float,
        radius: int = DEFAULT_RADIUS,
    ) -> list[LayerRecord]:
        """Return non-expired records near a point.

        Uses a fixed 0.01 degree box around the point rather than true
        distance; ``radius`` is accepted for symmetry with ``store`` and does
        not narrow the query.

        Returns:
            Up to 10 records, most recently updated first.
        """
        box = Bounds.around(lat, lon, self.NEARBY_DELTA)

        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM layer_data
                WHERE layer_type = ?
                  AND latitude BETWEEN ? AND ?
                  AND longitude BETWEEN ? AND ?
                  AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY updated_at DESC, id DESC
                LIMIT ?
                """,
                (
                    layer_type.value,
                    box.south,
                    box.north,
                    box.west,
                    box.east,
                    self.now(),
                    self.NEARBY_LIMIT,
                ),
            ).fetchall()

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (TypeError, ValueError):
                logger.warning("repository.corrupted_record", record_id=row["id"])
        return records

    def get_area_stats(
        self,
        layer_type: LayerType,
        bounds: Bounds,
        timeframe: str = "24h",
    ) -> dict[str, Any]:
        """Aggregate the records inside an area updated within a timeframe.

        Args:
            layer_type: Layer to aggregate.
            bounds: Area to aggregate over.
            timeframe: Recency window such as "24h", "7d" or "1m".

        Returns:
            Dict with data_points, quality_score (percentage of high-quality
            records), oldest_data and newest_data (ISO-8601 or None).
        """
        hours = parse_timeframe(timeframe)
        since = self.now() - hours * 3600

        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS data_points,
                    AVG(quality = 'high') * 100 AS quality_score,
                    MIN(updated_at) AS oldest_data,
                    MAX(updated_at) AS newest_data
                FROM layer_data
                WHERE layer_type = ?
                  AND latitude BETWEEN ? AND ?
                  AND longitude BETWEEN ? AND ?
                  AND updated_at > ?
                """,
                (
                    layer_type.value,
                    bounds.south,
                    bounds.north,
                    bounds.west,
                    bounds.east,
                    since,
                ),
            ).fetchone()

        oldest = _to_datetime(row["oldest_data"])
        newest = _to_datetime(row["newest_data"])
        quality_score = row["quality_score"]

        return {
            "data_points": row["data_points"],
            "quality_score": round(quality_score, 1) if quality_score is not None else 0.0,
            "oldest_data": oldest.isoformat() if oldest else None,
            "newest_data": newest.isoformat() if newest else None,
            "timeframe_hours": hours,
        }

    def cleanup(self) -> int:
        """Delete records past their expiry.

        Returns:
            Number of records removed.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM layer_data WHERE expires_at IS NOT NULL AND expires_at < ?",
                (self.now(),),
            )
            removed = cursor.rowcount

        if removed:
            logger.info("repository.cleanup", removed=removed)
        return removed

    def count(self, layer_type: Optional[LayerType] = None) -> int:
        """Return the number of stored records, optionally for one layer."""
        with self._connection() as conn:
            if layer_type is None:
                return conn.execute("SELECT COUNT(*) FROM layer_data").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM layer_data WHERE layer_type = ?",
                (layer_type.value,),
            ).fetchone()[0]

    @staticmethod
    def _row_to_record(row) -> LayerRecord:
        return LayerRecord(
            layer_type=LayerType(row["layer_type"]),
            source=row["source"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            radius=row["radius"],
            payload=json.loads(row["payload"]),
            quality=DataQuality(row["quality"]),
            created_at=_to_datetime(row["created_at"]),
            updated_at=_to_datetime(row["updated_at"]),
            expires_at=_to_datetime(row["expires_at"]),
        )
