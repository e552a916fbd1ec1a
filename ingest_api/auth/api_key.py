"""Autenticación por API Key (cabecera ``X-API-Key``).

SECURITY: En producción, INGEST_API_KEY debe estar configurado.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException

from common.config import get_settings

logger = logging.getLogger(__name__)


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key")
) -> None:
    """Valida la API key del request.

    En modo desarrollo, sin INGEST_API_KEY se permite el acceso con warning.
    """
    settings = get_settings()
    expected = settings.ingest_api_key

    if not expected:
        if settings.is_production:
            logger.error("[AUTH] INGEST_API_KEY missing with ENVIRONMENT=%s", settings.environment)
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API key not set",
            )
        logger.warning("[AUTH] INGEST_API_KEY not set, accepting unauthenticated event (dev mode)")
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("[AUTH] Rejected event with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
