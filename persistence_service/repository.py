"""Repositorio de eventos crudos (tabla ``code_events``)."""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy import text
from sqlalchemy.engine import Engine

from common.events import CodeEvent

logger = logging.getLogger(__name__)

TABLE = "code_events"

_SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        event_id VARCHAR(64) PRIMARY KEY,
        session_id VARCHAR(255) NOT NULL,
        client_timestamp_ms BIGINT NOT NULL,
        server_timestamp_ms BIGINT,
        file_uri VARCHAR(2048),
        file_name VARCHAR(1024),
        line_number INTEGER,
        text_normalized TEXT,
        source VARCHAR(64),
        saved_timestamp_ms BIGINT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE}_session ON {TABLE} (session_id, client_timestamp_ms)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE}_session_file ON {TABLE} (session_id, file_uri)",
]

_COLUMNS = (
    "event_id, session_id, client_timestamp_ms, server_timestamp_ms, file_uri, "
    "file_name, line_number, text_normalized, source, saved_timestamp_ms"
)


class EventRepository:
    """Guarda y consulta eventos crudos.

    ``save`` es idempotente por ``event_id``: una reentrega del mismo
    evento (at-least-once) no crea una segunda fila.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def create_schema(self) -> None:
        with self._engine.begin() as conn:
            for stmt in _SCHEMA:
                conn.execute(text(stmt))
        logger.info("[DB] Schema ready table=%s", TABLE)

    def save(self, event: CodeEvent, saved_timestamp_ms: int) -> bool:
        """Inserta el evento.

        Returns:
            True si se insertó, False si ya existía.
        """
        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    f"""
                    INSERT INTO {TABLE} ({_COLUMNS})
                    VALUES (:event_id, :session_id, :client_ts, :server_ts, :file_uri,
                            :file_name, :line_number, :text_normalized, :source, :saved_ts)
                    ON CONFLICT (event_id) DO NOTHING
                    """
                ),
                {
                    "event_id": event.event_id(),
                    "session_id": event.session_id,
                    "client_ts": event.client_timestamp_ms,
                    "server_ts": event.server_timestamp_ms,
                    "file_uri": event.file_uri,
                    "file_name": event.file_name,
                    "line_number": event.line_number,
                    "text_normalized": event.text_normalized,
                    "source": event.source,
                    "saved_ts": saved_timestamp_ms,
                },
            )
            return result.rowcount == 1

    def find_by_session_id(self, session_id: str) -> List[dict]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"""
                    SELECT {_COLUMNS} FROM {TABLE}
                    WHERE session_id = :session_id
                    ORDER BY client_timestamp_ms, event_id
                    """
                ),
                {"session_id": session_id},
            ).mappings().all()
        return [dict(r) for r in rows]

    def find_by_session_id_and_file_uri(self, session_id: str, file_uri: str) -> List[dict]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"""
                    SELECT {_COLUMNS} FROM {TABLE}
                    WHERE session_id = :session_id AND file_uri = :file_uri
                    ORDER BY client_timestamp_ms, event_id
                    """
                ),
                {"session_id": session_id, "file_uri": file_uri},
            ).mappings().all()
        return [dict(r) for r in rows]

    def count_by_session_id(self, session_id: str) -> int:
        with self._engine.connect() as conn:
            return int(
                conn.execute(
                    text(f"SELECT COUNT(*) FROM {TABLE} WHERE session_id = :session_id"),
                    {"session_id": session_id},
                ).scalar_one()
            )
