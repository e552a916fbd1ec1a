from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.events import CodeEvent


class CodeEventIn(BaseModel):
    """Evento tal como lo envía la extensión del editor.

    Formato esperado:
    {
        "sessionId": "s-123",
        "clientTimestampMs": 1717000000000,
        "fileUri": "file:///repo/src/app.py",
        "fileName": "app.py",
        "lineNumber": 42,
        "textNormalized": "return total",
        "source": "typing"
    }
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    client_timestamp_ms: int = Field(..., alias="clientTimestampMs", ge=0)
    file_uri: str = Field(..., alias="fileUri")
    file_name: str = Field(..., alias="fileName")
    line_number: int = Field(..., alias="lineNumber", ge=0)
    text_normalized: str = Field(..., alias="textNormalized")
    source: str

    @field_validator("session_id", "file_uri", "file_name", "text_normalized", "source")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    def to_event(self, server_timestamp_ms: int) -> CodeEvent:
        return CodeEvent(
            session_id=self.session_id,
            client_timestamp_ms=self.client_timestamp_ms,
            server_timestamp_ms=server_timestamp_ms,
            file_uri=self.file_uri,
            file_name=self.file_name,
            line_number=self.line_number,
            text_normalized=self.text_normalized,
            source=self.source,
        )


class EventAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "Event received successfully"
    session_id: str = Field(..., alias="sessionId")
