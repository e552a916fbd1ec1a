from __future__ import annotations

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings

logger = logging.getLogger(__name__)


def safe_url(url: str) -> str:
    """URL sin contraseña, apta para logs."""
    return make_url(url).render_as_string(hide_password=True)


def create_db_engine(settings: Settings) -> Engine:
    logger.info("[DB] Creating engine url=%s", safe_url(settings.database_url))

    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        future=True,
    )

    # Test de conexión: solo para que quede registrado en logs, no aborta el arranque.
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection test OK")
    except Exception:
        logger.exception("[DB] Connection test FAILED")

    return engine
