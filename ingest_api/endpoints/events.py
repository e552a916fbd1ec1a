"""Endpoint de ingesta de eventos de actividad de código."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from prometheus_client import Counter

from common.stream import EventLogProducer

from ..auth import require_api_key
from ..schemas import CodeEventIn, EventAccepted

router = APIRouter(tags=["ingest"])
logger = logging.getLogger(__name__)

INGEST_EVENTS = Counter(
    "ingest_events_total",
    "Code events received by the gateway",
    ["status"],  # accepted, unavailable
)


def get_producer(request: Request) -> EventLogProducer:
    return request.app.state.producer


@router.post(
    "/api/events",
    response_model=EventAccepted,
    dependencies=[Depends(require_api_key)],
)
def ingest_event(payload: CodeEventIn, producer: EventLogProducer = Depends(get_producer)):
    """Valida el evento, le pone ``serverTimestampMs`` y lo añade al log."""
    event = payload.to_event(server_timestamp_ms=int(time.time() * 1000))

    appended = producer.append(event)
    if appended is None:
        INGEST_EVENTS.labels(status="unavailable").inc()
        raise HTTPException(status_code=503, detail="Event log unavailable")

    INGEST_EVENTS.labels(status="accepted").inc()
    logger.info(
        "[INGEST] Event received session=%s file=%s line=%d partition=%d",
        event.session_id, event.file_name, event.line_number, appended.partition,
    )
    return EventAccepted(session_id=event.session_id)
