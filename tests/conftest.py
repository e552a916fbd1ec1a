"""Fixtures compartidas."""

from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from common.events import CodeEvent


@pytest.fixture
def engine():
    """SQLite en memoria compartido entre threads (una sola conexión)."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def make_event():
    """Factory de eventos con valores por defecto razonables."""

    def _make(
        session_id: Optional[str] = "S",
        ts: int = 1000,
        file_name: Optional[str] = "A.java",
        source: Optional[str] = "manual",
        line: int = 1,
        text: str = "int x = 1;",
    ) -> CodeEvent:
        return CodeEvent(
            session_id=session_id,
            client_timestamp_ms=ts,
            server_timestamp_ms=ts + 5,
            file_uri=f"file:///repo/{file_name}" if file_name else None,
            file_name=file_name,
            line_number=line,
            text_normalized=text,
            source=source,
        )

    return _make


class FakeClock:
    """Reloj controlable para tests de flush."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
