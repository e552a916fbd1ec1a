"""Estadísticas de consumo."""

from __future__ import annotations

import threading
import time
from collections import Counter
from datetime import datetime, timezone

from .results import ItemResult, ItemStatus


class ConsumerStats:
    """Contadores por consumer group, compartidos entre workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self.received = 0
        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self.dropped = 0
        self.last_message_at: float = 0
        self.started_at = datetime.now(timezone.utc)
        self._reasons: Counter = Counter()

    def record(self, result: ItemResult) -> None:
        with self._lock:
            self.received += 1
            self.last_message_at = time.time()
            if result.status is ItemStatus.OK:
                self.processed += 1
            elif result.status is ItemStatus.SKIPPED:
                self.skipped += 1
                self._reasons[result.reason or "unknown"] += 1
            else:
                self.failed += 1
                self._reasons[result.reason or "unknown"] += 1

    def record_dropped(self) -> None:
        with self._lock:
            self.dropped += 1

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"skipped={self.skipped} failed={self.failed} dropped={self.dropped}"
        )

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "skipped": self.skipped,
                "failed": self.failed,
                "dropped": self.dropped,
                "reasons": dict(self._reasons),
                "last_message_at": self.last_message_at,
                "started_at": self.started_at.isoformat(),
            }
