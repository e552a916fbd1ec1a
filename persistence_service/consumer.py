"""Handler del consumer group de persistencia."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError

from common.events import CodeEvent
from common.stream import ItemResult

from .repository import EventRepository

logger = logging.getLogger(__name__)

PERSISTENCE_EVENTS = Counter(
    "persistence_events_total",
    "Stream entries handled by the persistence consumer",
    ["status"],  # saved, duplicate, skipped, failed
)


class EventPersistenceHandler:
    """Guarda cada evento del log en ``code_events``.

    - Entrada ilegible o sin sesión → skipped (se confirma, no se reintenta)
    - Error de BD → failed (queda pendiente y se reentrega)
    - Reentrega de un evento ya guardado → ok (duplicado ignorado)
    """

    def __init__(self, repository: EventRepository, clock: Callable[[], float] = time.time):
        self._repository = repository
        self._clock = clock

    def __call__(self, fields: Mapping[Any, Any]) -> ItemResult:
        try:
            event = CodeEvent.from_stream_fields(fields)
        except ValueError as e:
            logger.warning("[PERSIST] Malformed stream entry err=%s", e)
            PERSISTENCE_EVENTS.labels(status="skipped").inc()
            return ItemResult.skipped("malformed_event")

        if not (event.session_id or "").strip():
            logger.warning("[PERSIST] Event without session id ts=%s", event.client_timestamp_ms)
            PERSISTENCE_EVENTS.labels(status="skipped").inc()
            return ItemResult.skipped("empty_session_id")

        try:
            inserted = self._repository.save(event, saved_timestamp_ms=int(self._clock() * 1000))
        except SQLAlchemyError as e:
            logger.error(
                "[PERSIST] Error saving event session=%s file=%s err=%s",
                event.session_id, event.file_name, e,
            )
            PERSISTENCE_EVENTS.labels(status="failed").inc()
            return ItemResult.failed(f"db_error:{type(e).__name__}")

        if inserted:
            logger.debug(
                "[PERSIST] Saved event session=%s file=%s line=%s",
                event.session_id, event.file_name, event.line_number,
            )
            PERSISTENCE_EVENTS.labels(status="saved").inc()
        else:
            logger.debug("[PERSIST] Duplicate event ignored session=%s id=%s", event.session_id, event.event_id())
            PERSISTENCE_EVENTS.labels(status="duplicate").inc()
        return ItemResult.ok()
