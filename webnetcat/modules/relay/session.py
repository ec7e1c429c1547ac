"""
Relay session: one WebSocket paired with one TCP connection.

States: handshaking -> connecting -> open -> closing -> closed

Three tasks run while the session is open (target pump, client pump and the
idle watchdog). The first one to finish ends the session. Teardown is
single-shot: it cancels the watchdog, closes the TCP connection and the
channel, and releases the registry slot exactly once, whichever path
triggered it.
"""

import asyncio
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Set, Tuple

from ..protocol import (
    ProtocolError,
    decode_inbound,
    encode_data,
    encode_error,
    encode_info,
    encode_status,
)
from ..registry import SessionRegistry
from ...config.provider import RelayConfig
from .channel import ChannelClosed, MessageChannel
from .watchdog import IdleWatchdog

logger = logging.getLogger("webnetcat.relay.session")

IDLE_NOTICE = "Idle timeout."

Connector = Callable[[str, int], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class SessionState(str, Enum):
    """Lifecycle state of a relay session."""

    HANDSHAKING = "handshaking"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a session ended."""

    CONNECT_FAILED = "connect_failed"
    REMOTE_CLOSED = "remote_closed"
    TARGET_ERROR = "target_error"
    CLIENT_CLOSED = "client_closed"
    IDLE_TIMEOUT = "idle_timeout"
    SHUTDOWN = "shutdown"


async def open_tcp_connection(host: str, port: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Default connector: plain asyncio TCP connection."""
    return await asyncio.open_connection(host, port)


def describe_os_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class RelaySession:
    def __init__(
        self,
        session_id: str,
        host: str,
        port: int,
        channel: MessageChannel,
        registry: SessionRegistry,
        config: Optional[RelayConfig] = None,
        connector: Optional[Connector] = None,
    ):
        """
        Initialize a relay session.

        The registry slot for session_id must already be held; the session
        releases it on teardown.

        Args:
            session_id: Identifier the registry slot was acquired under
            host: Target host
            port: Target port
            channel: Client message channel (already accepted)
            registry: Registry holding this session's slot
            config: Relay limits
            connector: Coroutine function opening the TCP connection
        """
        self.session_id = session_id
        self.host = host
        self.port = port
        self.channel = channel
        self.registry = registry
        self.config = config or RelayConfig()
        self._connector = connector or open_tcp_connection

        self.state = SessionState.HANDSHAKING
        self.close_reason: Optional[CloseReason] = None
        self.created_at = datetime.now(UTC)
        self.closed_at: Optional[datetime] = None
        self.bytes_in = 0
        self.bytes_out = 0

        self.watchdog = IdleWatchdog(self.config.idle_timeout)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._tasks: Set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._teardown_started = False
        self._closed = asyncio.Event()

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def last_activity(self) -> datetime:
        return self.watchdog.last_activity or self.created_at

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def snapshot(self) -> dict:
        """Describe the session for monitoring."""
        return {
            "session_id": self.session_id,
            "host": self.host,
            "port": self.port,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
            "close_reason": self.close_reason.value if self.close_reason else None,
        }

    async def run(self) -> CloseReason:
        """
        Drive the session from connecting to closed.

        Returns:
            The reason the session ended
        """
        reason = CloseReason.CLIENT_CLOSED
        notice: Optional[str] = None
        try:
            if not await self._connect():
                reason = CloseReason.CONNECT_FAILED
                return reason
            if self._teardown_started:
                # Closed while the connection attempt was in flight
                self._writer.close()
                return self.close_reason

            self.state = SessionState.OPEN
            logger.info(f"Session {self.session_id} connected to {self.target}")
            await self._send(encode_status(f"Connected to {self.target}"))
            if self._teardown_started:
                return self.close_reason

            self.watchdog.start()
            target_pump = asyncio.create_task(self._pump_target_to_client())
            client_pump = asyncio.create_task(self._pump_client_to_target())
            idle_wait = asyncio.create_task(self.watchdog.wait())
            self._tasks = {target_pump, client_pump, idle_wait}

            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)

            if self.close_reason is not None:
                # Closed from outside (shutdown)
                reason = self.close_reason
            elif idle_wait in done:
                reason = CloseReason.IDLE_TIMEOUT
                notice = IDLE_NOTICE
            elif target_pump in done and not target_pump.cancelled():
                reason = target_pump.result()
            elif client_pump in done and not client_pump.cancelled():
                reason = client_pump.result()
            return reason
        finally:
            await self.close(reason, notice=notice)

    async def close(self, reason: CloseReason = CloseReason.SHUTDOWN, notice: Optional[str] = None) -> None:
        """
        Tear the session down. Idempotent: later calls wait for the first.

        Args:
            reason: Recorded close reason (first caller wins)
            notice: Optional info message, sent once both pumps have stopped so
                it is the last message before the channel closes
        """
        if self._teardown_started:
            await self._closed.wait()
            return
        self._teardown_started = True
        self.close_reason = self.close_reason or reason
        self.state = SessionState.CLOSING

        try:
            self.watchdog.cancel()

            current = asyncio.current_task()
            pending = [task for task in self._tasks if task is not current and not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            if notice:
                await self._send(encode_info(notice))

            if self._writer is not None:
                self._writer.close()
                try:
                    await asyncio.wait_for(self._writer.wait_closed(), timeout=1.0)
                except (OSError, asyncio.TimeoutError) as e:
                    logger.debug(f"Session {self.session_id}: TCP close: {describe_os_error(e)}")

            await self.channel.close()
        finally:
            if not self.registry.release(self.session_id):
                logger.warning(f"Session {self.session_id} was not registered at teardown")
            self.state = SessionState.CLOSED
            self.closed_at = datetime.now(UTC)
            self._closed.set()
            logger.info(
                f"Session {self.session_id} to {self.target} closed "
                f"({self.close_reason.value}, in={self.bytes_in}B out={self.bytes_out}B)"
            )

    async def _send(self, text: str) -> bool:
        """Send a message to the client. Returns False once the channel is gone."""
        async with self._send_lock:
            try:
                await self.channel.send_text(text)
                return True
            except ChannelClosed as e:
                logger.debug(f"Session {self.session_id}: dropped message, channel closed: {e}")
                return False

    async def _connect(self) -> bool:
        self.state = SessionState.CONNECTING
        try:
            self._reader, self._writer = await asyncio.wait_for(
                self._connector(self.host, self.port), timeout=self.config.connect_timeout
            )
            return True
        except asyncio.TimeoutError:
            error = f"connection to {self.target} timed out"
        except OSError as e:
            error = describe_os_error(e)

        logger.info(f"Session {self.session_id} failed to connect to {self.target}: {error}")
        await self._send(encode_error(f"TCP error: {error}"))
        return False

    async def _pump_target_to_client(self) -> CloseReason:
        """Relay every chunk read from the target as a data message."""
        while True:
            try:
                chunk = await self._reader.read(self.config.read_chunk_size)
            except OSError as e:
                await self._send(encode_error(f"TCP error: {describe_os_error(e)}"))
                return CloseReason.TARGET_ERROR

            if not chunk:
                await self._send(encode_status("Remote closed."))
                return CloseReason.REMOTE_CLOSED

            self.watchdog.touch()
            self.bytes_in += len(chunk)
            if not await self._send(encode_data(chunk)):
                return CloseReason.CLIENT_CLOSED

    async def _pump_client_to_target(self) -> CloseReason:
        """Decode inbound messages and write send payloads to the target."""
        while True:
            try:
                raw = await self.channel.receive()
            except ChannelClosed:
                return CloseReason.CLIENT_CLOSED

            self.watchdog.touch()
            try:
                instruction = decode_inbound(raw)
            except ProtocolError as e:
                logger.debug(f"Session {self.session_id}: bad message: {e}")
                await self._send(encode_error(f"Bad message: {e}"))
                continue

            if instruction is None or not instruction.data:
                continue

            try:
                self._writer.write(instruction.data)
                await self._writer.drain()
            except OSError as e:
                await self._send(encode_error(f"TCP error: {describe_os_error(e)}"))
                return CloseReason.TARGET_ERROR
            self.bytes_out += len(instruction.data)
