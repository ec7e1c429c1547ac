"""
Logging configuration for webnetcat.

Relay loggers live under "webnetcat.*" and share the console handler with
uvicorn. Access lines for probe and scrape endpoints are dropped so session
events stay readable.
"""

import logging
import logging.config
from typing import Any, Dict, Iterable, Optional

QUIET_PATHS = ("/health", "/healthz", "/metrics")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ProbeRequestFilter(logging.Filter):
    """Drop uvicorn access records for GET requests to quiet paths."""

    def __init__(self, paths: Iterable[str] = QUIET_PATHS):
        super().__init__()
        self.paths = frozenset(paths)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name != "uvicorn.access":
            return True

        # uvicorn passes (client, method, path, http_version, status)
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            method, path = args[1], str(args[2]).split("?", 1)[0]
            return not (method == "GET" and path in self.paths)

        message = record.getMessage()
        return not ("GET" in message and any(f"{path} " in message for path in self.paths))


def _console(formatter: str, filters: Optional[list] = None) -> Dict[str, Any]:
    handler = {
        "class": "logging.StreamHandler",
        "formatter": formatter,
        "stream": "ext://sys.stdout",
    }
    if filters:
        handler["filters"] = filters
    return handler


def get_logging_config(level: str = "INFO", access_log: bool = True) -> Dict[str, Any]:
    """
    Build a dictConfig mapping.

    Args:
        level: Level for the webnetcat loggers
        access_log: Whether uvicorn access lines are emitted at all
    """
    level = level.upper()
    loggers: Dict[str, Dict[str, Any]] = {
        name: {"handlers": ["default"], "level": "INFO", "propagate": False}
        for name in ("uvicorn", "uvicorn.error")
    }
    loggers["uvicorn.access"] = {
        "handlers": ["access"] if access_log else [],
        "level": "INFO",
        "propagate": False,
    }
    loggers["webnetcat"] = {"handlers": ["default"], "level": level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"quiet_probes": {"()": ProbeRequestFilter}},
        "formatters": {
            "default": {"format": DEFAULT_FORMAT},
            "access": {"format": "%(message)s"},
        },
        "handlers": {
            "default": _console("default"),
            "access": _console("access", ["quiet_probes"]),
        },
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": ["default"]},
    }
