"""
Station Snapshot Store
======================

Append-only SQLite history of every station analysis:

- station_snapshots: one row per pipeline run
- anomaly_events:    one row per run whose live anomaly severity is not "none"
- station_cache:     per-station query counter and last-seen time

Reads aggregate the history into per-station trends and a platform-wide
summary. Timestamps are stored as fixed-width UTC ISO strings so that
string comparison orders them chronologically.
"""

import logging
import math
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd

from hydro_ai_impact.ontology.object_types import SnapshotRecord
from hydro_ai_impact.utils.constants import (
    ANOMALY_EVENT_SCHEMA,
    SNAPSHOT_SCHEMA,
    HistoryConfig,
)
from hydro_ai_impact.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

_SQL_TYPES = {
    "string": "TEXT",
    "timestamp": "TEXT",
    "double": "REAL",
    "integer": "INTEGER",
}

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _columns_ddl(schema: Dict[str, str]) -> str:
    return ",\n".join(f"    {name} {_SQL_TYPES[kind]}" for name, kind in schema.items())


def format_timestamp(dt: datetime) -> str:
    """Fixed-width UTC timestamp used for every stored time column."""
    return dt.strftime(_TIMESTAMP_FORMAT)


class SnapshotStore:
    """
    SQLite-backed snapshot history.

    A new connection is opened per operation, so one store can be shared
    by the pipeline's background writer and foreground readers.

    Example:
        store = SnapshotStore("hydro_history.db")
        store.write_snapshot(SnapshotRecord(station_id="01646500", ...))
        store.get_station_history("01646500", days=30)["score_trend"]
    """

    def __init__(self, db_path: str = HistoryConfig.DEFAULT_DB_PATH):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @classmethod
    def from_settings(cls, settings) -> "SnapshotStore":
        return cls(settings.history_db_path)

    def _init_db(self):
        """Initialize database schema."""
        with self._get_conn() as conn:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS station_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                {_columns_ddl(SNAPSHOT_SCHEMA)}
                );

                CREATE INDEX IF NOT EXISTS idx_snapshots_station_time
                    ON station_snapshots (station_id, observed_at);

                CREATE TABLE IF NOT EXISTS anomaly_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                {_columns_ddl(ANOMALY_EVENT_SCHEMA)}
                );

                CREATE INDEX IF NOT EXISTS idx_anomaly_station_time
                    ON anomaly_events (station_id, detected_at);

                CREATE TABLE IF NOT EXISTS station_cache (
                    station_id TEXT PRIMARY KEY,
                    total_queries INTEGER NOT NULL DEFAULT 0,
                    last_seen TEXT NOT NULL
                );
            """)

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # WRITES
    # =========================================================================

    def write_snapshot(self, record: SnapshotRecord, observed_at: Optional[datetime] = None):
        """
        Persist one analysis run.

        Inserts the snapshot, an anomaly event when the severity is set and
        not "none", and bumps the station's query counter, all in one
        transaction.

        Raises:
            sqlite3.Error: on any database failure
        """
        timestamp = format_timestamp(observed_at or utc_now())

        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO station_snapshots
                (station_id, observed_at, flow_value, flow_unit, sustainability_score,
                 anomaly_severity, drought_severity, current_percentile,
                 moving_avg_7, moving_avg_30, volatility_index)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.station_id,
                timestamp,
                record.flow_value,
                record.flow_unit,
                record.sustainability_score,
                record.anomaly_severity,
                record.drought_severity,
                record.current_percentile,
                record.moving_avg_7,
                record.moving_avg_30,
                record.volatility_index,
            ))

            if record.anomaly_severity and record.anomaly_severity != "none":
                conn.execute("""
                    INSERT INTO anomaly_events
                    (station_id, detected_at, severity, flow_value, message,
                     drought_severity, sustainability_score)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.station_id,
                    timestamp,
                    record.anomaly_severity,
                    record.flow_value,
                    record.anomaly_message,
                    record.drought_severity,
                    record.sustainability_score,
                ))

            conn.execute("""
                INSERT INTO station_cache (station_id, total_queries, last_seen)
                VALUES (?, 1, ?)
                ON CONFLICT (station_id) DO UPDATE SET
                    total_queries = station_cache.total_queries + 1,
                    last_seen = excluded.last_seen
            """, (record.station_id, timestamp))

        logger.debug(f"Wrote snapshot for {record.station_id} at {timestamp}")

    # =========================================================================
    # READS
    # =========================================================================

    def get_station_history(
        self, station_id: str, days: int = HistoryConfig.DEFAULT_HISTORY_DAYS
    ) -> Dict[str, Any]:
        """
        Snapshot history for one station over the last ``days`` days.

        Returns:
            Dict with station_id, total_snapshots, snapshots (oldest first),
            anomaly_events (newest first) and score_trend (one point per
            calendar day with avg/min/max score and sample count)
        """
        since = format_timestamp(utc_now() - timedelta(days=days))

        with self._get_conn() as conn:
            snapshots = [dict(row) for row in conn.execute("""
                SELECT observed_at, flow_value, flow_unit, sustainability_score,
                       anomaly_severity, drought_severity, current_percentile,
                       moving_avg_7, moving_avg_30, volatility_index
                FROM station_snapshots
                WHERE station_id = ? AND observed_at > ?
                ORDER BY observed_at ASC, id ASC
                LIMIT ?
            """, (station_id, since, HistoryConfig.MAX_SNAPSHOTS))]

            anomaly_events = [dict(row) for row in conn.execute("""
                SELECT detected_at, severity, flow_value, message,
                       drought_severity, sustainability_score
                FROM anomaly_events
                WHERE station_id = ? AND detected_at > ?
                ORDER BY detected_at DESC, id DESC
                LIMIT ?
            """, (station_id, since, HistoryConfig.MAX_ANOMALY_EVENTS))]

        return {
            "station_id": station_id,
            "total_snapshots": len(snapshots),
            "snapshots": snapshots,
            "anomaly_events": anomaly_events,
            "score_trend": score_trend(snapshots),
        }

    def get_platform_summary(self) -> Dict[str, Any]:
        """Platform-wide counts, most queried stations and recent anomalies."""
        now = utc_now()
        last_24h = format_timestamp(now - timedelta(hours=24))
        last_7d = format_timestamp(now - timedelta(days=7))

        with self._get_conn() as conn:
            def count(sql: str, params: tuple = ()) -> int:
                return conn.execute(sql, params).fetchone()[0]

            summary = {
                "total_snapshots": count("SELECT COUNT(*) FROM station_snapshots"),
                "total_anomaly_events": count("SELECT COUNT(*) FROM anomaly_events"),
                "total_stations_tracked": count("SELECT COUNT(*) FROM station_cache"),
                "snapshots_last_24h": count(
                    "SELECT COUNT(*) FROM station_snapshots WHERE observed_at > ?", (last_24h,)
                ),
                "snapshots_last_7d": count(
                    "SELECT COUNT(*) FROM station_snapshots WHERE observed_at > ?", (last_7d,)
                ),
            }

            summary["most_queried_stations"] = [dict(row) for row in conn.execute("""
                SELECT station_id, total_queries, last_seen
                FROM station_cache
                ORDER BY total_queries DESC, last_seen DESC
                LIMIT ?
            """, (HistoryConfig.TOP_STATIONS,))]

            summary["recent_anomalies"] = [dict(row) for row in conn.execute("""
                SELECT station_id, detected_at, severity, flow_value, message,
                       drought_severity, sustainability_score
                FROM anomaly_events
                ORDER BY detected_at DESC, id DESC
                LIMIT ?
            """, (HistoryConfig.RECENT_ANOMALIES,))]

        return summary


def score_trend(snapshots: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Aggregate snapshot scores by calendar day (UTC).

    Snapshots without a score are ignored. The daily average is rounded
    half up to an integer.
    """
    if not snapshots:
        return []

    df = pd.DataFrame(snapshots, columns=["observed_at", "sustainability_score"])
    df = df.dropna(subset=["sustainability_score"])
    if df.empty:
        return []

    df = df.assign(date=df["observed_at"].str[:10])
    daily = (
        df.groupby("date")["sustainability_score"]
        .agg(["mean", "min", "max", "count"])
        .sort_index()
    )

    return [
        {
            "date": day,
            "avg_score": int(math.floor(row["mean"] + 0.5)),
            "min_score": int(row["min"]),
            "max_score": int(row["max"]),
            "sample_count": int(row["count"]),
        }
        for day, row in daily.iterrows()
    ]
