#!/usr/bin/env python3
"""
webnetcat - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Serves the WebSocket relay, probes and the static client

All relay logic is in the modules, following black box principles.
"""

import logging
import logging.config as log_config
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Query, Response, WebSocket
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from webnetcat import __version__
from webnetcat.config.provider import ConfigProvider, EnvConfigProvider
from webnetcat.logging_config import get_logging_config

# Import modules through their black box interfaces
from webnetcat.modules.admission import AdmissionPolicy
from webnetcat.modules.config import get_config
from webnetcat.modules.protocol import encode_error
from webnetcat.modules.registry import SessionRegistry
from webnetcat.modules.relay import (
    ChannelClosed,
    Connector,
    RelayDispatcher,
    WebSocketChannel,
)

# Get configuration
config = get_config()

log_config.dictConfig(get_logging_config(config.get("log_level")))
logger = logging.getLogger(__name__)


async def close_with_error(channel: WebSocketChannel, message: str, code: int = 1011) -> None:
    """Send a terminal error message and close the channel."""
    try:
        await channel.send_text(encode_error(message))
    except ChannelClosed as e:
        logger.debug(f"Could not deliver error, channel closed: {e}")
    await channel.close(code=code)


def create_app(
    config_provider: Optional[ConfigProvider] = None,
    connector: Optional[Connector] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config_provider: Configuration source (defaults to environment)
        connector: Optional TCP connector override passed to every session

    Returns:
        Configured FastAPI app; relay components are created in its lifespan
    """
    provider: ConfigProvider = config_provider or EnvConfigProvider(config)
    api_config = provider.get_api_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle - initialize and cleanup resources.
        """
        logger.info("Starting webnetcat relay...")

        admission = provider.get_admission_config()
        relay_config = provider.get_relay_config()

        registry = SessionRegistry(max_sessions=relay_config.max_connections)
        app.state.registry = registry
        app.state.dispatcher = RelayDispatcher(
            AdmissionPolicy(admission), registry, relay_config, connector=connector
        )

        logger.info(
            f"Admission: allow_any={admission.allow_any}, "
            f"allow_hosts={list(admission.allow_hosts)}, "
            f"ports {admission.min_port}-{admission.max_port}"
        )
        logger.info(
            f"Limits: max_connections={relay_config.max_connections}, "
            f"idle_timeout={relay_config.idle_timeout_ms}ms, "
            f"connect_timeout={relay_config.connect_timeout_ms}ms"
        )
        logger.info("webnetcat relay started successfully")

        yield

        # Shutdown
        logger.info("Shutting down webnetcat relay...")
        await app.state.dispatcher.shutdown()
        app.state.dispatcher = None
        logger.info("webnetcat relay shutdown complete")

    app = FastAPI(
        title="webnetcat",
        description="webnetcat - TCP relay for the browser",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = None
    app.state.dispatcher = None

    # Relay Endpoint

    @app.websocket("/ws")
    async def relay_socket(
        websocket: WebSocket,
        host: str = Query("", description="Target host"),
        port: str = Query("", description="Target port"),
    ):
        """
        Relay a TCP connection to host:port over this WebSocket.

        Outbound messages: status, error, info, data.
        Inbound messages: send (text, hex or base64 payload).
        """
        await websocket.accept()
        channel = WebSocketChannel(websocket)

        dispatcher: Optional[RelayDispatcher] = app.state.dispatcher
        if dispatcher is None:
            await close_with_error(channel, "Service not initialized")
            return

        try:
            await dispatcher.handle(channel, host, port)
        except Exception as e:
            logger.error(f"Relay session for {host}:{port} failed: {e}", exc_info=True)
            await close_with_error(channel, f"Internal error: {e}")

    # Health/Monitoring Endpoints

    @app.get("/healthz")
    async def healthz():
        """
        Minimal health check endpoint for liveness probes.

        Returns:
            200: Service is running
        """
        return {"status": "ok"}

    @app.get("/health")
    async def health_check():
        """
        Readiness check with session usage and the live session list.

        Returns:
            200: Service ready
            503: Relay not initialized
        """
        registry: Optional[SessionRegistry] = app.state.registry
        if app.state.dispatcher is None or registry is None:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "modules": "not initialized"},
            )
        return {
            "status": "healthy",
            "modules": "initialized",
            "active_sessions": registry.active_count,
            "max_sessions": registry.max_sessions,
            "sessions": registry.snapshot(),
            "version": __version__,
        }

    @app.get("/metrics")
    async def metrics():
        """
        Prometheus-compatible metrics endpoint.

        Returns basic metrics about the relay.
        """
        registry: Optional[SessionRegistry] = app.state.registry
        if registry is None:
            return Response(content="", status_code=503)

        metrics_text = f"""# HELP webnetcat_active_sessions Number of active relay sessions
# TYPE webnetcat_active_sessions gauge
webnetcat_active_sessions {registry.active_count}
# HELP webnetcat_max_sessions Maximum number of concurrent relay sessions
# TYPE webnetcat_max_sessions gauge
webnetcat_max_sessions {registry.max_sessions}
# HELP webnetcat_sessions_total Relay sessions admitted since start
# TYPE webnetcat_sessions_total counter
webnetcat_sessions_total {registry.admitted_total}
# HELP webnetcat_sessions_rejected_total Relay requests rejected since start
# TYPE webnetcat_sessions_rejected_total counter
webnetcat_sessions_rejected_total {registry.rejected_total}
"""

        return Response(content=metrics_text, media_type="text/plain")

    # Static client, mounted last so API routes take precedence
    if api_config.static_dir and os.path.isdir(api_config.static_dir):
        app.mount("/", StaticFiles(directory=api_config.static_dir, html=True), name="static")
        logger.info(f"Serving static client from {api_config.static_dir}")

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    uvicorn.run(
        "webnetcat.main:app",
        host=config.get("host"),
        port=config.get("port"),
        log_level=config.get("log_level").lower(),
        reload=config.get("debug"),
        log_config=get_logging_config(config.get("log_level")),
    )


if __name__ == "__main__":
    run()
