"""
Relay Module - Black Box Interface

Purpose: Pair a client message channel with a TCP connection and pump bytes
Interface: RelayDispatcher.handle(), RelaySession.run(), RelaySession.close()
Hidden: State machine, idle timer, byte pumps, teardown ordering

Every session is isolated: its failures are reported on its own channel
and never reach the server or other sessions.
"""

from .channel import ChannelClosed, MessageChannel, WebSocketChannel
from .dispatcher import RelayDispatcher
from .session import CloseReason, Connector, RelaySession, SessionState, open_tcp_connection
from .watchdog import IdleWatchdog

__all__ = [
    "ChannelClosed",
    "MessageChannel",
    "WebSocketChannel",
    "RelayDispatcher",
    "CloseReason",
    "Connector",
    "RelaySession",
    "SessionState",
    "open_tcp_connection",
    "IdleWatchdog",
]
