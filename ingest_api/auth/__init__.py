"""Autenticación de los endpoints de ingesta."""

from .api_key import require_api_key

__all__ = ["require_api_key"]
