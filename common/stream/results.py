"""Resultado por entrada procesada."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ItemStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"  # descartado a propósito, se confirma (XACK)
    FAILED = "failed"  # queda pendiente para reentrega


@dataclass(frozen=True)
class ItemResult:
    status: ItemStatus
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ItemResult":
        return cls(ItemStatus.OK)

    @classmethod
    def skipped(cls, reason: str) -> "ItemResult":
        return cls(ItemStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, reason: str) -> "ItemResult":
        return cls(ItemStatus.FAILED, reason)

    @property
    def should_ack(self) -> bool:
        return self.status is not ItemStatus.FAILED
