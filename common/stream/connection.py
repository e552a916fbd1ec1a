"""Conexión a Redis."""

from __future__ import annotations

import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class RedisConnection:
    """Gestiona la conexión a Redis."""

    def __init__(self, url: str = "redis://localhost:6379/0", socket_timeout: float = 10.0):
        self._url = url
        self._socket_timeout = socket_timeout
        self._client: Optional[redis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def display_url(self) -> str:
        return self._url.split("@")[-1]

    def connect(self) -> bool:
        """Conecta a Redis."""
        try:
            # socket_timeout tiene que superar el BLOCK de XREADGROUP.
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=False,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=5.0,
            )
            self._client.ping()
            self._connected = True
            logger.info("[REDIS] Connected: %s", self.display_url)
            return True
        except redis.RedisError as e:
            self._connected = False
            logger.warning("[REDIS] Connection failed url=%s err=%s", self.display_url, e)
            return False

    def disconnect(self) -> None:
        """Desconecta de Redis."""
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.debug("[REDIS] Close error: %s", e)
        self._client = None
        self._connected = False

    def health_check(self) -> dict:
        if self._client is None:
            return {"connected": False, "url": self.display_url}
        try:
            self._client.ping()
            return {"connected": True, "url": self.display_url}
        except redis.RedisError as e:
            return {"connected": False, "url": self.display_url, "error": type(e).__name__}
