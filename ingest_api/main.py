"""Gateway HTTP de ingesta de eventos de código.

Arranque:
    uvicorn ingest_api.main:app --port 8001
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import get_settings
from common.stream import EventLogProducer, RedisConnection

from .endpoints import events_router, health_router

logger = logging.getLogger(__name__)


def create_app(producer: Optional[EventLogProducer] = None) -> FastAPI:
    """Crea la app. Con ``producer`` explícito no se abre conexión a Redis."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        connection = None
        if producer is not None:
            app.state.producer = producer
        else:
            settings = get_settings()
            connection = RedisConnection(settings.redis_url)
            if not connection.connect():
                # Arranca igual; /api/events responde 503 hasta que Redis vuelva.
                logger.error("[INGEST] Redis not available url=%s", connection.display_url)
            app.state.producer = EventLogProducer(
                connection,
                prefix=settings.stream_prefix,
                partitions=settings.stream_partitions,
                max_len=settings.stream_max_len,
            )
            logger.info(
                "[INGEST] Producer ready prefix=%s partitions=%d",
                settings.stream_prefix, settings.stream_partitions,
            )
        app.state.redis_connection = connection
        try:
            yield
        finally:
            if connection is not None:
                connection.disconnect()

    application = FastAPI(title="Code Activity Ingest", version="1.0.0", lifespan=lifespan)
    application.include_router(health_router)
    application.include_router(events_router)
    return application


app = create_app()


def main() -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    p = argparse.ArgumentParser(description="Code activity ingestion gateway")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8001)
    args = p.parse_args()

    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
