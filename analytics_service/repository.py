"""Repositorio de ``session_analytics`` (Aggregate Store).

Una fila por sesión. El merge-upsert es read-modify-write dentro de una
transacción; en PostgreSQL la fila se bloquea con ``FOR UPDATE`` para que
dos flushes solapados no pierdan actualizaciones.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from .merge import merge_analytics
from .models import MergeOutcome, SessionAnalytics

logger = logging.getLogger(__name__)

TABLE = "session_analytics"

_COLUMNS = (
    "session_id",
    "session_start",
    "session_end",
    "last_updated",
    "duration_seconds",
    "total_events",
    "total_lines",
    "files_modified",
    "unique_files_count",
    "lines_per_minute",
    "events_per_minute",
    "average_inter_event_gap_ms",
    "lines_per_file",
    "most_edited_file",
    "most_edited_file_lines",
    "events_by_source",
    "first_observed_time",
    "last_observed_time",
)

_SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        session_id VARCHAR(255) PRIMARY KEY,
        session_start BIGINT,
        session_end BIGINT,
        last_updated BIGINT,
        duration_seconds BIGINT,
        total_events INTEGER NOT NULL DEFAULT 0,
        total_lines INTEGER NOT NULL DEFAULT 0,
        files_modified TEXT NOT NULL,
        unique_files_count INTEGER NOT NULL DEFAULT 0,
        lines_per_minute DOUBLE PRECISION,
        events_per_minute DOUBLE PRECISION,
        average_inter_event_gap_ms DOUBLE PRECISION,
        lines_per_file TEXT NOT NULL,
        most_edited_file VARCHAR(1024),
        most_edited_file_lines INTEGER,
        events_by_source TEXT NOT NULL,
        first_observed_time BIGINT,
        last_observed_time BIGINT
    )
    """,
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE}_last_updated ON {TABLE} (last_updated)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE}_total_events ON {TABLE} (total_events)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE}_lines_per_minute ON {TABLE} (lines_per_minute)",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM {TABLE}"

_INSERT = f"""
    INSERT INTO {TABLE} ({', '.join(_COLUMNS)})
    VALUES ({', '.join(':' + c for c in _COLUMNS)})
"""

_UPDATE = f"""
    UPDATE {TABLE} SET
    {', '.join(f'{c} = :{c}' for c in _COLUMNS if c != 'session_id')}
    WHERE session_id = :session_id
"""


def _dumps(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode()


def _to_params(analytics: SessionAnalytics) -> dict:
    return {
        "session_id": analytics.session_id,
        "session_start": analytics.session_start,
        "session_end": analytics.session_end,
        "last_updated": analytics.last_updated,
        "duration_seconds": analytics.duration_seconds,
        "total_events": analytics.total_events,
        "total_lines": analytics.total_lines,
        "files_modified": _dumps(sorted(analytics.files_modified)),
        "unique_files_count": analytics.unique_files_count,
        "lines_per_minute": analytics.lines_per_minute,
        "events_per_minute": analytics.events_per_minute,
        "average_inter_event_gap_ms": analytics.average_inter_event_gap_ms,
        "lines_per_file": _dumps(analytics.lines_per_file),
        "most_edited_file": analytics.most_edited_file,
        "most_edited_file_lines": analytics.most_edited_file_lines,
        "events_by_source": _dumps(analytics.events_by_source),
        "first_observed_time": analytics.first_observed_time,
        "last_observed_time": analytics.last_observed_time,
    }


def _from_row(row: Mapping[str, Any]) -> SessionAnalytics:
    def _opt_float(v):
        return None if v is None else float(v)

    def _opt_int(v):
        return None if v is None else int(v)

    return SessionAnalytics(
        session_id=row["session_id"],
        session_start=_opt_int(row["session_start"]),
        session_end=_opt_int(row["session_end"]),
        last_updated=_opt_int(row["last_updated"]),
        duration_seconds=_opt_int(row["duration_seconds"]),
        total_events=int(row["total_events"] or 0),
        total_lines=int(row["total_lines"] or 0),
        files_modified=set(orjson.loads(row["files_modified"] or "[]")),
        unique_files_count=int(row["unique_files_count"] or 0),
        lines_per_minute=_opt_float(row["lines_per_minute"]),
        events_per_minute=_opt_float(row["events_per_minute"]),
        average_inter_event_gap_ms=_opt_float(row["average_inter_event_gap_ms"]),
        lines_per_file=orjson.loads(row["lines_per_file"] or "{}"),
        most_edited_file=row["most_edited_file"],
        most_edited_file_lines=_opt_int(row["most_edited_file_lines"]),
        events_by_source=orjson.loads(row["events_by_source"] or "{}"),
        first_observed_time=_opt_int(row["first_observed_time"]),
        last_observed_time=_opt_int(row["last_observed_time"]),
    )


class SessionAnalyticsRepository:
    """Acceso a ``session_analytics`` con SQL explícito."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._row_lock = engine.dialect.name in ("postgresql", "mysql")

    def create_schema(self) -> None:
        """Crea tabla e índices si no existen. Idempotente."""
        with self._engine.begin() as conn:
            for stmt in _SCHEMA:
                conn.execute(text(stmt))
        logger.info("[DB] Schema ready table=%s", TABLE)

    def _select_one(self, conn: Connection, session_id: str, for_update: bool = False) -> Optional[SessionAnalytics]:
        sql = _SELECT + " WHERE session_id = :session_id"
        if for_update and self._row_lock:
            sql += " FOR UPDATE"
        row = conn.execute(text(sql), {"session_id": session_id}).mappings().first()
        return _from_row(row) if row else None

    def find_by_session_id(self, session_id: str) -> Optional[SessionAnalytics]:
        with self._engine.connect() as conn:
            return self._select_one(conn, session_id)

    def merge_upsert(self, session_id: str, partial: SessionAnalytics, now_ms: int) -> MergeOutcome:
        """Inserta si no existe; si existe, fusiona aditivamente.

        Si otra escritura inserta la misma sesión entre el SELECT y el
        INSERT (violación de PK), se reintenta una vez por la rama de merge.
        """
        if partial.session_id != session_id:
            raise ValueError(f"session mismatch: {session_id!r} != {partial.session_id!r}")
        try:
            return self._merge_upsert_once(partial, now_ms)
        except IntegrityError:
            logger.info("[DB] Concurrent insert detected, retrying as merge session=%s", session_id)
            return self._merge_upsert_once(partial, now_ms)

    def _merge_upsert_once(self, partial: SessionAnalytics, now_ms: int) -> MergeOutcome:
        with self._engine.begin() as conn:
            existing = self._select_one(conn, partial.session_id, for_update=True)
            if existing is None:
                conn.execute(text(_INSERT), _to_params(partial))
                return MergeOutcome.INSERTED

            merged = merge_analytics(existing, partial, now_ms)
            conn.execute(text(_UPDATE), _to_params(merged))
            return MergeOutcome.MERGED

    def find_by_last_updated_after(self, timestamp_ms: int) -> List[SessionAnalytics]:
        """Sesiones actualizadas después de ``timestamp_ms`` (procesamiento incremental)."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(_SELECT + " WHERE last_updated > :ts ORDER BY last_updated"),
                {"ts": timestamp_ms},
            ).mappings().all()
        return [_from_row(r) for r in rows]

    def find_top_by_total_events(self, limit: int = 10) -> List[SessionAnalytics]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(_SELECT + " ORDER BY total_events DESC, session_id LIMIT :limit"),
                {"limit": limit},
            ).mappings().all()
        return [_from_row(r) for r in rows]

    def find_by_lines_per_minute_greater_than(self, threshold: float) -> List[SessionAnalytics]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(_SELECT + " WHERE lines_per_minute > :threshold ORDER BY lines_per_minute DESC"),
                {"threshold": threshold},
            ).mappings().all()
        return [_from_row(r) for r in rows]

    def count(self) -> int:
        with self._engine.connect() as conn:
            return int(conn.execute(text(f"SELECT COUNT(*) FROM {TABLE}")).scalar_one())
