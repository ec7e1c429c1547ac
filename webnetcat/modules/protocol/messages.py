"""
webnetcat wire messages.

Outbound (server -> client): status, error, info, data.
Inbound (client -> server): send.

Messages are JSON objects tagged by "type". There are no sequence numbers
or acknowledgements; ordering comes from the WebSocket itself.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Enums


class MessageType(str, Enum):
    """Discriminator of a wire message."""

    STATUS = "status"
    ERROR = "error"
    INFO = "info"
    DATA = "data"
    SEND = "send"


class SendMode(str, Enum):
    """How the payload of a send message is encoded."""

    TEXT = "text"
    HEX = "hex"
    BASE64 = "base64"


# Outbound Models


class StatusMessage(BaseModel):
    """Informational notice (connected, remote closed)."""

    type: Literal["status"] = "status"
    message: str


class ErrorMessage(BaseModel):
    """Failure report. Fatal unless it answers a malformed inbound message."""

    type: Literal["error"] = "error"
    message: str


class InfoMessage(BaseModel):
    """Non-fatal notice (idle timeout, shutdown)."""

    type: Literal["info"] = "info"
    message: str


class DataMessage(BaseModel):
    """Bytes received from the target, base64 encoded."""

    type: Literal["data"] = "data"
    direction: Literal["in"] = "in"
    payload: str


# Inbound Models


class SendRequest(BaseModel):
    """
    Request to write bytes to the target.

    The payload is read from "payload", falling back to the field named
    after the mode ("text", "hex" or "base64").
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: Literal["send"]
    mode: SendMode
    payload: Optional[str] = None
    text: Optional[str] = None
    hex: Optional[str] = None
    base64_payload: Optional[str] = Field(None, alias="base64")

    def raw_payload(self) -> str:
        """Return the encoded payload for the selected mode ("" when absent)."""
        if self.payload is not None:
            return self.payload
        fallback = {
            SendMode.TEXT: self.text,
            SendMode.HEX: self.hex,
            SendMode.BASE64: self.base64_payload,
        }[self.mode]
        return fallback or ""
