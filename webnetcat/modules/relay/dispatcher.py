import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from ..admission import AdmissionPolicy, parse_port
from ..protocol import encode_error
from ..registry import SessionRegistry
from ...config.provider import RelayConfig
from .channel import ChannelClosed, MessageChannel
from .session import CloseReason, Connector, RelaySession

logger = logging.getLogger("webnetcat.relay.dispatcher")

NOT_ALLOWED_MESSAGE = "Host/port not allowed."
BUSY_MESSAGE = "Server busy."
SHUTDOWN_NOTICE = "Server shutting down."


class RelayDispatcher:
    def __init__(
        self,
        policy: AdmissionPolicy,
        registry: SessionRegistry,
        config: Optional[RelayConfig] = None,
        connector: Optional[Connector] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            policy: Admission policy consulted for every handshake
            registry: Process-wide session registry
            config: Relay limits passed to each session
            connector: Optional TCP connector override (tests, proxies)
        """
        self.policy = policy
        self.registry = registry
        self.config = config or RelayConfig()
        self.connector = connector
        self._sessions: Dict[str, RelaySession] = {}

    async def handle(self, channel: MessageChannel, host: Optional[str], port: Any) -> Optional[RelaySession]:
        """
        Admit a handshake and run its session to completion.

        Args:
            channel: Accepted client channel
            host: Requested target host
            port: Requested target port, as received (usually a string)

        Returns:
            The finished session, or None if the handshake was rejected

        Logic:
        1. Parse port, check host/port against the admission policy
        2. Take a registry slot (capacity check and insert are atomic)
        3. Run the session; it releases the slot on teardown
        """
        host = (host or "").strip()
        target_port = parse_port(port)

        if not host or target_port is None or not self.policy.allows(host, target_port):
            self.registry.record_rejection()
            logger.info(f"Rejected relay request to {host!r}:{port!r}: not allowed")
            await self._reject(channel, NOT_ALLOWED_MESSAGE)
            return None

        session_id = str(uuid.uuid4())
        if not self.registry.try_acquire(session_id, {"host": host, "port": target_port}):
            logger.info(f"Rejected relay request to {host}:{target_port}: server busy")
            await self._reject(channel, BUSY_MESSAGE)
            return None

        session = RelaySession(
            session_id,
            host,
            target_port,
            channel,
            self.registry,
            config=self.config,
            connector=self.connector,
        )
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} admitted for {host}:{target_port}")
        try:
            await session.run()
        finally:
            self._sessions.pop(session_id, None)
        return session

    async def _reject(self, channel: MessageChannel, message: str) -> None:
        try:
            await channel.send_text(encode_error(message))
        except ChannelClosed as e:
            logger.debug(f"Could not deliver rejection, channel closed: {e}")
        await channel.close()

    @property
    def active_sessions(self) -> List[RelaySession]:
        return list(self._sessions.values())

    async def shutdown(self) -> None:
        """Close every live session (server shutdown)."""
        sessions = self.active_sessions
        if not sessions:
            return
        logger.info(f"Closing {len(sessions)} active session(s)")
        results = await asyncio.gather(
            *(session.close(CloseReason.SHUTDOWN, notice=SHUTDOWN_NOTICE) for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to close session {session.session_id}: {result}")
