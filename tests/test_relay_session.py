"""
Relay session tests.

Sessions run against a local asyncio TCP target and an in-memory channel,
so every transition can be observed from both ends.
"""

import asyncio
import base64
from unittest.mock import patch

import pytest

from conftest import redirect_connector, wait_until
from webnetcat.config.provider import RelayConfig
from webnetcat.modules.relay import CloseReason, RelaySession, SessionState

pytestmark = pytest.mark.integration


def make_session(channel, registry, config, connector, session_id="s-1"):
    assert registry.try_acquire(session_id, {"host": "10.0.0.5", "port": 80})
    return RelaySession(
        session_id,
        "10.0.0.5",
        80,
        channel,
        registry,
        config=config,
        connector=connector,
    )


async def start_open_session(channel, registry, config, tcp_target):
    session = make_session(channel, registry, config, redirect_connector(tcp_target.port))
    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.OPEN and bool(channel.sent))
    await asyncio.wait_for(tcp_target.connected.wait(), timeout=2.0)
    return session, task


@pytest.mark.asyncio
async def test_connect_announces_status(channel, registry, relay_config, tcp_target):
    """Test a successful connect sends status and arms the watchdog."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    assert channel.messages[0] == {"type": "status", "message": "Connected to 10.0.0.5:80"}
    assert session.watchdog.armed
    assert registry.active_count == 1

    channel.disconnect()
    assert await asyncio.wait_for(task, timeout=2.0) == CloseReason.CLIENT_CLOSED


@pytest.mark.asyncio
async def test_hex_send_reaches_target(channel, registry, relay_config, tcp_target):
    """Test send{mode: hex} writes the decoded bytes to the target."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    channel.push({"type": "send", "mode": "hex", "payload": "68 65 6c 6c 6f"})
    await wait_until(lambda: bytes(tcp_target.received) == b"hello")

    channel.push({"type": "send", "mode": "text", "payload": " world"})
    channel.push({"type": "send", "mode": "base64", "payload": "IQ=="})
    await wait_until(lambda: bytes(tcp_target.received) == b"hello world!")
    assert session.bytes_out == 12

    channel.disconnect()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_target_bytes_relayed_as_data(channel, registry, relay_config, tcp_target):
    """Test bytes from the target arrive as base64 data messages, in order."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    await tcp_target.send(b"hello")
    await wait_until(lambda: len(channel.of_type("data")) >= 1)

    message = channel.of_type("data")[0]
    assert message["direction"] == "in"
    assert base64.b64decode(message["payload"]) == b"hello"

    for i in range(20):
        await tcp_target.send(f"{i},".encode())
    expected = b"hello" + b"".join(f"{i},".encode() for i in range(20))
    await wait_until(
        lambda: b"".join(base64.b64decode(m["payload"]) for m in channel.of_type("data")) == expected
    )
    assert session.bytes_in == len(expected)

    channel.disconnect()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_remote_close(channel, registry, relay_config, tcp_target):
    """Test remote EOF sends status and tears everything down."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    tcp_target.close_clients()
    reason = await asyncio.wait_for(task, timeout=2.0)

    assert reason == CloseReason.REMOTE_CLOSED
    assert channel.messages[-1] == {"type": "status", "message": "Remote closed."}
    assert channel.closed
    assert session.state == SessionState.CLOSED
    assert not session.watchdog.armed
    assert registry.active_count == 0


@pytest.mark.asyncio
async def test_client_close_closes_target(channel, registry, relay_config, tcp_target):
    """Test closing the channel closes the TCP connection and frees the slot."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    channel.disconnect()
    reason = await asyncio.wait_for(task, timeout=2.0)

    assert reason == CloseReason.CLIENT_CLOSED
    await asyncio.wait_for(tcp_target.eof.wait(), timeout=2.0)
    assert registry.active_count == 0
    assert not session.watchdog.armed
    assert session.snapshot()["close_reason"] == "client_closed"


@pytest.mark.asyncio
async def test_idle_timeout(channel, registry, tcp_target):
    """Test an idle session gets exactly one info message and closes."""
    config = RelayConfig(idle_timeout_ms=100, max_connections=5)
    session, task = await start_open_session(channel, registry, config, tcp_target)

    reason = await asyncio.wait_for(task, timeout=2.0)

    assert reason == CloseReason.IDLE_TIMEOUT
    assert channel.of_type("info") == [{"type": "info", "message": "Idle timeout."}]
    assert channel.messages[-1]["type"] == "info"
    assert channel.closed
    assert registry.active_count == 0
    await asyncio.wait_for(tcp_target.eof.wait(), timeout=2.0)


@pytest.mark.asyncio
async def test_activity_keeps_session_alive(channel, registry, tcp_target):
    """Test traffic in either direction resets the idle timer."""
    config = RelayConfig(idle_timeout_ms=300, max_connections=5)
    session, task = await start_open_session(channel, registry, config, tcp_target)

    for _ in range(3):
        await asyncio.sleep(0.15)
        channel.push({"type": "ping"})
    for _ in range(3):
        await asyncio.sleep(0.15)
        await tcp_target.send(b".")

    assert not task.done()
    assert session.state == SessionState.OPEN

    channel.disconnect()
    await asyncio.wait_for(task, timeout=2.0)
    assert channel.of_type("info") == []


@pytest.mark.asyncio
async def test_malformed_message_is_soft_failure(channel, registry, relay_config, tcp_target):
    """Test bad input yields an error reply while the session keeps running."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    channel.push("{not json")
    channel.push({"type": "send", "mode": "hex", "payload": "zz"})
    await wait_until(lambda: len(channel.of_type("error")) == 2)

    errors = channel.of_type("error")
    assert all(error["message"].startswith("Bad message: ") for error in errors)
    assert session.state == SessionState.OPEN

    channel.push({"type": "send", "mode": "text", "payload": "still here"})
    await wait_until(lambda: bytes(tcp_target.received) == b"still here")

    channel.disconnect()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_unrecognised_messages_ignored(channel, registry, relay_config, tcp_target):
    """Test other message types produce no reply and no bytes."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    channel.push({"type": "ping"})
    channel.push({"type": "send", "mode": "rot13", "payload": "uryyb"})
    channel.push({"type": "send", "mode": {"x": 1}, "payload": "68"})
    channel.push({"type": "send", "mode": ["hex"], "payload": "68"})
    channel.push({"type": "send", "mode": "text", "payload": "x"})
    await wait_until(lambda: bytes(tcp_target.received) == b"x")

    assert [m["type"] for m in channel.messages] == ["status"]

    channel.disconnect()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_connect_refused(channel, registry, relay_config):
    """Test connect failure reports an error and releases the slot."""

    async def refusing_connector(host, port):
        raise ConnectionRefusedError(111, "Connection refused")

    session = make_session(channel, registry, relay_config, refusing_connector)
    reason = await asyncio.wait_for(session.run(), timeout=2.0)

    assert reason == CloseReason.CONNECT_FAILED
    assert len(channel.messages) == 1
    assert channel.messages[0]["type"] == "error"
    assert channel.messages[0]["message"].startswith("TCP error: ")
    assert "Connection refused" in channel.messages[0]["message"]
    assert channel.closed
    assert registry.active_count == 0
    assert not session.watchdog.armed
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_connect_timeout(channel, registry):
    """Test a hanging connect is bounded by the connect timeout."""
    config = RelayConfig(connect_timeout_ms=50)

    async def hanging_connector(host, port):
        await asyncio.sleep(10)

    session = make_session(channel, registry, config, hanging_connector)
    reason = await asyncio.wait_for(session.run(), timeout=2.0)

    assert reason == CloseReason.CONNECT_FAILED
    assert channel.messages == [{"type": "error", "message": "TCP error: connection to 10.0.0.5:80 timed out"}]
    assert registry.active_count == 0


@pytest.mark.asyncio
async def test_teardown_is_single_shot(channel, registry, relay_config, tcp_target):
    """Test simultaneous triggers release the registry slot exactly once."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    with patch.object(registry, "release", wraps=registry.release) as release_spy:
        tcp_target.close_clients()
        channel.disconnect()
        await asyncio.gather(
            session.close(CloseReason.TARGET_ERROR),
            session.close(CloseReason.CLIENT_CLOSED),
        )
        await asyncio.wait_for(task, timeout=2.0)
        await session.close()

    assert release_spy.call_count == 1
    assert registry.active_count == 0
    assert session.is_closed
    assert not session.watchdog.armed


@pytest.mark.asyncio
async def test_close_with_notice(channel, registry, relay_config, tcp_target):
    """Test an external close sends the notice before closing."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    await session.close(CloseReason.SHUTDOWN, notice="Server shutting down.")
    reason = await asyncio.wait_for(task, timeout=2.0)

    assert reason == CloseReason.SHUTDOWN
    assert channel.messages[-1] == {"type": "info", "message": "Server shutting down."}
    assert registry.active_count == 0


@pytest.mark.asyncio
async def test_close_during_connect(channel, registry, relay_config, tcp_target):
    """Test a session closed mid-connect does not leak the connection."""
    proceed = asyncio.Event()

    async def slow_connector(host, port):
        await proceed.wait()
        return await asyncio.open_connection("127.0.0.1", tcp_target.port)

    session = make_session(channel, registry, relay_config, slow_connector)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.CONNECTING)

    await session.close(CloseReason.SHUTDOWN)
    proceed.set()
    reason = await asyncio.wait_for(task, timeout=2.0)

    assert reason == CloseReason.SHUTDOWN
    await asyncio.wait_for(tcp_target.eof.wait(), timeout=2.0)
    assert registry.active_count == 0
    assert channel.of_type("status") == []


@pytest.mark.asyncio
async def test_notice_is_last_message_while_target_streams(channel, registry, relay_config, tcp_target):
    """Test no data message follows the closing notice, even mid-stream."""
    session, task = await start_open_session(channel, registry, relay_config, tcp_target)

    async def stream():
        try:
            while True:
                await tcp_target.send(b"x" * 512)
                await asyncio.sleep(0)
        except (ConnectionError, RuntimeError):
            pass

    streamer = asyncio.create_task(stream())
    await wait_until(lambda: len(channel.of_type("data")) >= 3)

    await session.close(CloseReason.SHUTDOWN, notice="Server shutting down.")
    await asyncio.wait_for(task, timeout=2.0)
    streamer.cancel()
    await asyncio.gather(streamer, return_exceptions=True)

    assert channel.messages[-1] == {"type": "info", "message": "Server shutting down."}
    assert channel.of_type("info") == [channel.messages[-1]]
