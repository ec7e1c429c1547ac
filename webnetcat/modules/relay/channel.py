"""Message channel interface and its WebSocket adapter."""
import logging
from typing import Protocol, Union

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = logging.getLogger("webnetcat.relay.channel")


class ChannelClosed(Exception):
    """Raised when the client side of the message channel is gone."""


class MessageChannel(Protocol):
    """Protocol for duplex message channels - allows swappable transports."""

    async def send_text(self, data: str) -> None:
        """
        Send one text message.

        Raises:
            ChannelClosed: If the channel is no longer open
        """
        ...

    async def receive(self) -> Union[str, bytes]:
        """
        Wait for the next inbound message.

        Raises:
            ChannelClosed: If the client closed the channel
        """
        ...

    async def close(self, code: int = 1000) -> None:
        """Close the channel. Closing twice is a no-op."""
        ...


class WebSocketChannel:
    """MessageChannel over an accepted Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        if not self.is_open:
            raise ChannelClosed("websocket is not connected")
        try:
            await self.websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise ChannelClosed(str(e)) from e

    async def receive(self) -> Union[str, bytes]:
        if not self.is_open:
            raise ChannelClosed("websocket is not connected")
        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise ChannelClosed(str(e)) from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ChannelClosed(f"client disconnected (code {message.get('code')})")
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def close(self, code: int = 1000) -> None:
        if not self.is_open:
            self._closed = True
            return
        self._closed = True
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as e:
            logger.debug(f"WebSocket already closed: {e}")
