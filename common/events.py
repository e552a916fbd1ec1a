"""Contrato del evento de actividad de código que viaja por el log.

Un evento = una línea editada. El gateway lo valida y le pone
``serverTimestampMs``; a partir de ahí es inmutable y ambos consumer
groups lo leen tal cual.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, Mapping, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field

STREAM_FIELD = "event"


class CodeEvent(BaseModel):
    """Evento en tránsito.

    Acepta eventos sin ``fileName`` ni ``source``; la validación estricta
    está en el gateway (``ingest_api.schemas``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    client_timestamp_ms: int = Field(..., alias="clientTimestampMs")
    server_timestamp_ms: Optional[int] = Field(default=None, alias="serverTimestampMs")
    file_uri: Optional[str] = Field(default=None, alias="fileUri")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    line_number: Optional[int] = Field(default=None, alias="lineNumber")
    text_normalized: Optional[str] = Field(default=None, alias="textNormalized")
    source: Optional[str] = None

    def event_id(self) -> str:
        """Identidad natural del evento.

        FORMATO: SHA256(session:client_ts:file_uri:line:text:source)[:32]
        Dos entregas del mismo evento producen el mismo id, lo que hace
        idempotente el guardado de eventos crudos.
        """
        data = "\x1f".join(
            [
                self.session_id or "",
                str(self.client_timestamp_ms),
                self.file_uri or "",
                "" if self.line_number is None else str(self.line_number),
                self.text_normalized or "",
                self.source or "",
            ]
        )
        return hashlib.sha256(data.encode("utf-8")).hexdigest()[:32]

    def to_stream_fields(self) -> Dict[str, bytes]:
        """Campos para XADD."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return {STREAM_FIELD: orjson.dumps(payload)}

    @classmethod
    def from_stream_fields(cls, fields: Mapping[Any, Any]) -> "CodeEvent":
        """Reconstruye el evento desde una entrada del stream.

        Raises:
            ValueError: si falta el campo o el JSON no es un evento válido
                (pydantic.ValidationError hereda de ValueError).
        """
        raw = fields.get(STREAM_FIELD)
        if raw is None:
            raw = fields.get(STREAM_FIELD.encode())
        if raw is None:
            raise ValueError(f"stream entry without '{STREAM_FIELD}' field")
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"invalid event JSON: {e}") from e
        return cls.model_validate(data)
