"""Flush periódico del working set al Aggregate Store.

Cada ciclo:
1. ``snapshot_and_clear`` del working set (atómico respecto a los folds)
2. ``build_analytics`` + ``merge_upsert`` por sesión capturada
3. Un fallo en una sesión se registra y no aborta el resto del ciclo

Un ciclo sin sesiones no toca el store.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .merge import build_analytics
from .metrics import (
    ANALYTICS_ACTIVE_SESSIONS,
    ANALYTICS_FLUSH_CYCLES,
    ANALYTICS_FLUSH_DURATION,
    ANALYTICS_SESSIONS_FLUSHED,
)
from .models import FlushCycleResult, MergeOutcome
from .repository import SessionAnalyticsRepository
from .working_set import SessionWorkingSet

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 60.0


class SessionFlusher:
    """Ejecuta ciclos de flush. Los ciclos nunca se solapan entre sí."""

    def __init__(
        self,
        working_set: SessionWorkingSet,
        repository: SessionAnalyticsRepository,
        clock: Callable[[], float] = time.time,
    ):
        self._working_set = working_set
        self._repository = repository
        self._clock = clock
        self._cycle_lock = threading.Lock()

        self._cycles = 0
        self._sessions_saved = 0
        self._sessions_failed = 0
        self._last_result: Optional[FlushCycleResult] = None

    def flush(self, trigger: str = "scheduled") -> FlushCycleResult:
        with self._cycle_lock:
            result = self._run_cycle()
            self._cycles += 1
            self._sessions_saved += result.saved
            self._sessions_failed += result.failed
            self._last_result = result

        ANALYTICS_FLUSH_CYCLES.labels(trigger=trigger).inc()
        ANALYTICS_ACTIVE_SESSIONS.set(len(self._working_set))
        if result.duration_ms is not None:
            ANALYTICS_FLUSH_DURATION.observe(result.duration_ms / 1000.0)
        return result

    def _run_cycle(self) -> FlushCycleResult:
        result = FlushCycleResult(started_at=self._clock())
        aggregates = self._working_set.snapshot_and_clear()
        result.captured = len(aggregates)

        if not aggregates:
            result.finished_at = self._clock()
            logger.debug("[FLUSH] Nothing to flush")
            return result

        now_ms = int(self._clock() * 1000)
        for aggregate in aggregates:
            try:
                partial = build_analytics(aggregate, now_ms)
                outcome = self._repository.merge_upsert(aggregate.session_id, partial, now_ms)
            except Exception as e:
                result.failed += 1
                result.failed_sessions.append(aggregate.session_id)
                ANALYTICS_SESSIONS_FLUSHED.labels(outcome="failed").inc()
                logger.error(
                    "[FLUSH] Failed to save session=%s events=%d err=%s",
                    aggregate.session_id, aggregate.total_events, e,
                    exc_info=True,
                )
                continue

            if outcome is MergeOutcome.INSERTED:
                result.inserted += 1
            else:
                result.merged += 1
            ANALYTICS_SESSIONS_FLUSHED.labels(outcome=outcome.value).inc()

        result.finished_at = self._clock()
        logger.info(
            "[FLUSH] Flushed analytics: %d saved, %d failed (inserted=%d merged=%d duration_ms=%s)",
            result.saved, result.failed, result.inserted, result.merged, result.duration_ms,
        )
        return result

    def get_stats(self) -> dict:
        return {
            "cycles": self._cycles,
            "sessions_saved": self._sessions_saved,
            "sessions_failed": self._sessions_failed,
            "last_cycle": self._last_result.to_dict() if self._last_result else None,
        }


class FlushScheduler:
    """Thread que dispara ``SessionFlusher.flush`` cada ``interval`` segundos.

    Tasa fija: los disparos se programan contra un deadline monotónico, así
    que la duración de un ciclo no desplaza el periodo. Si un ciclo dura más
    que el intervalo, el siguiente arranca en cuanto termina.
    """

    def __init__(
        self,
        flusher: SessionFlusher,
        interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("flush interval must be > 0")
        self._flusher = flusher
        self._interval = interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="analytics-flush")
        self._thread.start()
        logger.info("[FLUSH] Scheduler started interval=%.1fs", self._interval)

    def stop(self, flush_remaining: bool = True, timeout: float = 30.0) -> Optional[FlushCycleResult]:
        """Detiene el scheduler.

        Si el ciclo en curso no termina dentro de ``timeout`` se conserva la
        referencia al thread: ``running`` sigue en True y ``start()`` no
        lanza un segundo loop.

        Args:
            flush_remaining: Si True, ejecuta un último flush con lo acumulado.
            timeout: Espera máxima por el ciclo en curso.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("[FLUSH] Flush thread still running after stop timeout=%.1fs", timeout)
            else:
                self._thread = None

        final = None
        if flush_remaining:
            final = self._flusher.flush(trigger="shutdown")
        logger.info("[FLUSH] Scheduler stopped %s", self._flusher.get_stats())
        return final

    def _loop(self) -> None:
        next_run = self._clock() + self._interval
        # wait() vuelve True en cuanto se activa el stop.
        while not self._stop_event.wait(max(0.0, next_run - self._clock())):
            try:
                self._flusher.flush(trigger="scheduled")
            except Exception:
                logger.exception("[FLUSH] Unexpected error in flush cycle")
            next_run = max(next_run + self._interval, self._clock())
