"""
Shared pytest fixtures for webnetcat tests.

This module provides common fixtures including:
- FakeChannel: in-memory message channel standing in for the WebSocket
- TcpTarget: asyncio TCP server acting as the relay target
- echo_server: threaded echo server for TestClient end-to-end tests
"""

import asyncio
import json
import os
import socketserver
import sys
import threading
from typing import Callable, List, Optional, Tuple, Union

import pytest
import pytest_asyncio

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from webnetcat.config.provider import RelayConfig
from webnetcat.modules.registry import SessionRegistry
from webnetcat.modules.relay import ChannelClosed


# =============================================================================
# Helpers
# =============================================================================

async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll predicate until it is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


# =============================================================================
# Message Channel Fake
# =============================================================================

_DISCONNECT = object()


class FakeChannel:
    """
    In-memory MessageChannel.

    Usage:
        channel.push({"type": "send", "mode": "text", "payload": "hi"})
        channel.disconnect()               # client goes away
        channel.messages                   # decoded outbound messages
    """

    def __init__(self):
        self.sent: List[str] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self._inbound: asyncio.Queue = asyncio.Queue()

    def push(self, message: Union[dict, str, bytes]) -> None:
        """Queue an inbound message (dicts are JSON encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbound.put_nowait(message)

    def disconnect(self) -> None:
        """Simulate the client closing the channel."""
        self._inbound.put_nowait(_DISCONNECT)

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise ChannelClosed("fake channel closed")
        self.sent.append(data)

    async def receive(self) -> Union[str, bytes]:
        if self.closed:
            raise ChannelClosed("fake channel closed")
        item = await self._inbound.get()
        if item is _DISCONNECT:
            self.closed = True
            raise ChannelClosed("client disconnected")
        return item

    async def close(self, code: int = 1000) -> None:
        if not self.closed:
            self.close_code = code
        self.closed = True

    @property
    def messages(self) -> List[dict]:
        return [json.loads(text) for text in self.sent]

    def of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.messages if m["type"] == message_type]


@pytest.fixture
def channel():
    return FakeChannel()


# =============================================================================
# TCP Targets
# =============================================================================

class TcpTarget:
    """Asyncio TCP server that records what it receives and can talk back."""

    def __init__(self):
        self.received = bytearray()
        self.writers: List[asyncio.StreamWriter] = []
        self.connected = asyncio.Event()
        self.eof = asyncio.Event()
        self.server: Optional[asyncio.AbstractServer] = None
        self.port: Optional[int] = None

    async def start(self) -> "TcpTarget":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writers.append(writer)
        self.connected.set()
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received.extend(data)
        except ConnectionError:
            pass
        finally:
            self.eof.set()
            writer.close()

    async def send(self, data: bytes) -> None:
        writer = self.writers[-1]
        writer.write(data)
        await writer.drain()

    def close_clients(self) -> None:
        for writer in self.writers:
            writer.close()

    async def stop(self) -> None:
        self.close_clients()
        self.server.close()
        try:
            await asyncio.wait_for(self.server.wait_closed(), timeout=2.0)
        except asyncio.TimeoutError:
            pass


@pytest_asyncio.fixture
async def tcp_target():
    """Local TCP target on an ephemeral port."""
    target = await TcpTarget().start()
    yield target
    await target.stop()


def redirect_connector(port: int, calls: Optional[List[Tuple[str, int]]] = None):
    """
    Build a connector that records the requested target and connects to
    127.0.0.1:port instead (loopback is never admitted by the policy).
    """

    async def connector(host: str, requested_port: int):
        if calls is not None:
            calls.append((host, requested_port))
        return await asyncio.open_connection("127.0.0.1", port)

    return connector


class _EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while True:
            try:
                data = self.request.recv(65536)
            except ConnectionError:
                return
            if not data:
                return
            self.request.sendall(data)


class _EchoServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


@pytest.fixture
def echo_server():
    """Threaded TCP echo server; yields its port."""
    server = _EchoServer(("127.0.0.1", 0), _EchoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


# =============================================================================
# Relay Components
# =============================================================================

@pytest.fixture
def relay_config():
    """Relay limits with short timeouts for tests."""
    return RelayConfig(
        idle_timeout_ms=5_000,
        max_connections=5,
        connect_timeout_ms=1_000,
        read_chunk_size=65536,
    )


@pytest.fixture
def registry(relay_config):
    return SessionRegistry(max_sessions=relay_config.max_connections)


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Tests that open real local TCP connections"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
