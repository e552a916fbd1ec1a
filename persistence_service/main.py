"""Proceso de persistencia de eventos crudos.

Arranque:
    python -m persistence_service.main --workers 2 --metrics-port 9102
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from prometheus_client import start_http_server

from common.config import get_settings, parse_partitions
from common.db import create_db_engine
from common.stream import ConsumerWorkerPool, RedisConnection, stream_names

from .consumer import EventPersistenceHandler
from .repository import EventRepository

logger = logging.getLogger(__name__)

STATS_INTERVAL_SECONDS = 60.0


def main() -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    p = argparse.ArgumentParser(description="Raw code event persistence consumer")
    p.add_argument("--workers", type=int, default=settings.consumer_workers)
    p.add_argument("--partitions", default="", help="comma separated partitions to own (default: all)")
    p.add_argument("--metrics-port", type=int, default=0, help="expose Prometheus metrics (0 = off)")
    args = p.parse_args()

    partitions = (
        parse_partitions(args.partitions, settings.stream_partitions)
        if args.partitions
        else settings.consumer_partitions
    )

    engine = create_db_engine(settings)
    repository = EventRepository(engine)
    repository.create_schema()

    connection = RedisConnection(settings.redis_url)
    if not connection.connect():
        logger.error("[PERSIST] Redis not available url=%s", connection.display_url)
        raise SystemExit(1)

    streams = stream_names(settings.stream_prefix, settings.stream_partitions, partitions)
    pool = ConsumerWorkerPool(
        connection.client,
        settings.persistence_group_id,
        streams,
        EventPersistenceHandler(repository),
        workers=args.workers,
        block_ms=settings.consumer_block_ms,
        batch_size=settings.consumer_batch_size,
        max_attempts=settings.consumer_max_attempts,
    )

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info("[PERSIST] Metrics on :%d/metrics", args.metrics_port)

    stop = threading.Event()

    def _on_signal(signum, _frame):
        logger.info("[PERSIST] Signal %s received, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    logger.info(
        "[PERSIST] Starting group=%s streams=%s workers=%d",
        settings.persistence_group_id, ",".join(streams), args.workers,
    )
    pool.start()
    try:
        while not stop.wait(STATS_INTERVAL_SECONDS):
            logger.info("[PERSIST] %s", pool.stats)
    finally:
        pool.stop()
        connection.disconnect()
        engine.dispose()


if __name__ == "__main__":
    main()
