"""Proceso del agregador de analytics.

Arranque:
    uvicorn analytics_service.main:app --port 8002
    python -m analytics_service.main --port 8002 --flush-interval 60
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import Settings, get_settings, parse_partitions
from common.db import create_db_engine
from common.stream import ConsumerWorkerPool, RedisConnection, stream_names

from .api import router
from .repository import SessionAnalyticsRepository
from .service import AnalyticsService

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> AnalyticsService:
    """Construye el servicio: store + working set + consumer group."""
    engine = create_db_engine(settings)
    repository = SessionAnalyticsRepository(engine)
    repository.create_schema()

    service = AnalyticsService(repository, flush_interval=settings.flush_interval_seconds)

    connection = RedisConnection(settings.redis_url)
    if not connection.connect():
        logger.error(
            "[ANALYTICS] Redis not available url=%s, running without consumer",
            connection.display_url,
        )
        return service

    streams = stream_names(settings.stream_prefix, settings.stream_partitions, settings.consumer_partitions)
    pool = ConsumerWorkerPool(
        connection.client,
        settings.analytics_group_id,
        streams,
        service.handle_entry,
        workers=settings.consumer_workers,
        block_ms=settings.consumer_block_ms,
        batch_size=settings.consumer_batch_size,
        max_attempts=settings.consumer_max_attempts,
    )
    service.attach_consumer(pool)
    logger.info(
        "[ANALYTICS] Consumer configured group=%s streams=%s workers=%d",
        settings.analytics_group_id, ",".join(streams), settings.consumer_workers,
    )
    return service


def create_app(service: Optional[AnalyticsService] = None, manage_lifecycle: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or build_service(get_settings())
        app.state.service = svc
        if manage_lifecycle:
            svc.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                svc.stop()

    application = FastAPI(title="Code Activity Analytics", version="1.0.0", lifespan=lifespan)
    application.include_router(router)
    return application


app = create_app()


def main() -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    p = argparse.ArgumentParser(description="Session analytics aggregator")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8002)
    p.add_argument("--flush-interval", type=float, default=settings.flush_interval_seconds)
    p.add_argument("--workers", type=int, default=settings.consumer_workers)
    p.add_argument("--partitions", default="", help="comma separated partitions to own (default: all)")
    args = p.parse_args()

    settings = dataclasses.replace(
        settings,
        flush_interval_seconds=args.flush_interval,
        consumer_workers=args.workers,
        consumer_partitions=(
            parse_partitions(args.partitions, settings.stream_partitions)
            if args.partitions
            else settings.consumer_partitions
        ),
    )

    import uvicorn

    logger.info(
        "[ANALYTICS] Starting flush_interval=%.1fs workers=%d partitions=%s",
        settings.flush_interval_seconds, settings.consumer_workers,
        settings.consumer_partitions or "all",
    )
    uvicorn.run(create_app(build_service(settings)), host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
