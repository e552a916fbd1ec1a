"""Asignación sesión → partición.

Todas las entradas de una sesión van al mismo stream, así que un único
worker las ve en el orden en que el gateway las escribió.
"""

from __future__ import annotations

import zlib
from typing import Iterable, List, Optional


def partition_for(key: Optional[str], partitions: int) -> int:
    # crc32 y no hash(): tiene que ser estable entre procesos.
    if partitions <= 1 or not key:
        return 0
    return zlib.crc32(key.encode("utf-8")) % partitions


def stream_name(prefix: str, partition: int) -> str:
    return f"{prefix}:{partition}"


def stream_names(
    prefix: str,
    partitions: int,
    assigned: Optional[Iterable[int]] = None,
) -> List[str]:
    indexes = range(partitions) if assigned is None else sorted(set(assigned))
    return [stream_name(prefix, p) for p in indexes]
