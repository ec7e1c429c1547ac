import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from .messages import (
    DataMessage,
    ErrorMessage,
    InfoMessage,
    MessageType,
    SendMode,
    SendRequest,
    StatusMessage,
)

HEX_SEPARATORS = re.compile(r"[\s:]")
WHITESPACE = re.compile(r"\s")
SEND_MODES = tuple(mode.value for mode in SendMode)


class ProtocolError(Exception):
    """Raised when an inbound message cannot be decoded."""


@dataclass(frozen=True)
class SendInstruction:
    """Decoded send request: bytes to write to the target."""

    mode: SendMode
    data: bytes


# Outbound


def encode_status(message: str) -> str:
    return json.dumps(StatusMessage(message=message).model_dump())


def encode_error(message: str) -> str:
    return json.dumps(ErrorMessage(message=message).model_dump())


def encode_info(message: str) -> str:
    return json.dumps(InfoMessage(message=message).model_dump())


def encode_data(chunk: bytes) -> str:
    """
    Encode bytes received from the target as a data message.

    The payload is mirrored in "base64" for clients that read that field.
    """
    encoded = base64.b64encode(chunk).decode("ascii")
    message = DataMessage(payload=encoded).model_dump()
    message["base64"] = encoded
    return json.dumps(message)


# Inbound


def decode_payload(mode: SendMode, payload: str) -> bytes:
    """
    Turn a send payload into bytes.

    - text: UTF-8 bytes of the string as-is
    - hex: whitespace and ':' separators removed, then hex digit pairs
    - base64: whitespace removed, standard alphabet, padding optional

    Raises:
        ProtocolError: If the payload is not valid for the mode
    """
    if mode == SendMode.TEXT:
        return payload.encode("utf-8")

    if mode == SendMode.HEX:
        cleaned = HEX_SEPARATORS.sub("", payload)
        try:
            return bytes.fromhex(cleaned)
        except ValueError as e:
            raise ProtocolError(f"invalid hex payload: {e}") from e

    cleaned = WHITESPACE.sub("", payload)
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"invalid base64 payload: {e}") from e


def decode_inbound(raw: Union[str, bytes]) -> Optional[SendInstruction]:
    """
    Decode one inbound channel message.

    Args:
        raw: Text or binary frame received from the client

    Returns:
        SendInstruction for a send message, None for anything that is
        well-formed but not a send request (ignored)

    Raises:
        ProtocolError: If the message is not valid JSON, or is a send
            request with a recognised mode but an unusable payload
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"message is not valid UTF-8: {e}") from e

    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(str(e)) from e

    if not isinstance(message, dict) or message.get("type") != MessageType.SEND.value:
        return None

    mode = message.get("mode")
    if not isinstance(mode, str) or mode not in SEND_MODES:
        return None

    try:
        request = SendRequest.model_validate(message)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ProtocolError(errors) from e

    return SendInstruction(mode=request.mode, data=decode_payload(request.mode, request.raw_payload()))
