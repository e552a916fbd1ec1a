"""Endpoints HTTP del servicio de analytics."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .service import AnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter()


def _service(request: Request) -> AnalyticsService:
    return request.app.state.service


@router.get("/health", tags=["health"])
def health(request: Request):
    """Liveness: el proceso responde. ``degraded`` si no hay consumo activo."""
    service = _service(request)
    pool = service.consumer_pool
    consuming = bool(pool and pool.running)
    return {
        "status": "ok" if consuming else "degraded",
        "consumer_running": consuming,
        "flush_running": service.scheduler.running,
    }


@router.get("/metrics", tags=["health"])
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/analytics/state", tags=["analytics"])
def analytics_state(request: Request):
    """Sesiones del working set todavía no volcadas al store."""
    state = _service(request).get_state()
    return {"sessions": len(state), "state": state}


@router.get("/analytics/stats", tags=["analytics"])
def analytics_stats(request: Request):
    return _service(request).get_stats()


@router.post("/analytics/flush", tags=["analytics"])
def analytics_flush(request: Request):
    result = _service(request).flush(trigger="manual")
    return result.to_dict()


@router.get("/analytics/sessions/top", tags=["analytics"])
def top_sessions(request: Request, limit: int = Query(default=10, ge=1, le=1000)) -> List[dict]:
    rows = _service(request).repository.find_top_by_total_events(limit)
    return [r.to_dict() for r in rows]


@router.get("/analytics/sessions/updated-after", tags=["analytics"])
def sessions_updated_after(request: Request, timestamp_ms: int = Query(..., ge=0)) -> List[dict]:
    rows = _service(request).repository.find_by_last_updated_after(timestamp_ms)
    return [r.to_dict() for r in rows]


@router.get("/analytics/sessions/high-activity", tags=["analytics"])
def high_activity_sessions(request: Request, lines_per_minute: float = Query(default=50.0, ge=0)) -> List[dict]:
    rows = _service(request).repository.find_by_lines_per_minute_greater_than(lines_per_minute)
    return [r.to_dict() for r in rows]


@router.get("/analytics/sessions/{session_id}", tags=["analytics"])
def session_analytics(request: Request, session_id: str):
    row = _service(request).repository.find_by_session_id(session_id)
    if row is None:
        raise HTTPException(status_code=404, detail="session not found")
    return row.to_dict()
