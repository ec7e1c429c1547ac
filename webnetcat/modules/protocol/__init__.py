"""
Protocol Module - Black Box Interface

Purpose: Encode/decode the JSON messages carried over the WebSocket
Interface: encode_status(), encode_error(), encode_info(), encode_data(), decode_inbound()
Hidden: Message models, payload encodings

Decoding never takes a session down: bad input raises ProtocolError,
which the relay reports back to the client.
"""

from .codec import (
    ProtocolError,
    SendInstruction,
    decode_inbound,
    decode_payload,
    encode_data,
    encode_error,
    encode_info,
    encode_status,
)
from .messages import (
    DataMessage,
    ErrorMessage,
    InfoMessage,
    MessageType,
    SendMode,
    SendRequest,
    StatusMessage,
)

__all__ = [
    "ProtocolError",
    "SendInstruction",
    "decode_inbound",
    "decode_payload",
    "encode_data",
    "encode_error",
    "encode_info",
    "encode_status",
    "DataMessage",
    "ErrorMessage",
    "InfoMessage",
    "MessageType",
    "SendMode",
    "SendRequest",
    "StatusMessage",
]
