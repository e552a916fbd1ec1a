"""Health y métricas del gateway."""

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    """Liveness: siempre ok si el proceso responde; incluye el estado de Redis."""
    connection = getattr(request.app.state, "redis_connection", None)
    redis_status = connection.health_check() if connection is not None else {"connected": False}
    return {
        "status": "ok" if redis_status.get("connected") else "degraded",
        "redis": redis_status,
    }


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
