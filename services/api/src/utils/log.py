"""
Environment-aware logging.

- development: human-readable, coloured lines
- staging/production: one JSON object per line for log aggregation

``init`` configures the root logger once; modules get plain ``logging.Logger``
instances from ``get_logger`` (or ``logging.getLogger(__name__)``) and inherit
the handler.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

STRUCTURED_ENVIRONMENTS = ("production", "prod", "staging")


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    ENDC = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module_name = record.name if record.name != "__main__" else "main"

        line = f"[{timestamp}] {level_color}{record.levelname:8s}{self.ENDC} [{module_name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    def __init__(self, environment: str):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            "environment": self.environment,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def get_environment() -> str:
    return os.getenv("ENVIRONMENT", "development").lower()


def build_formatter(environment: str) -> logging.Formatter:
    if environment in STRUCTURED_ENVIRONMENTS:
        return JsonFormatter(environment)
    return ColoredFormatter()


def init(level: str = "INFO", environment: str | None = None) -> None:
    environment = environment or get_environment()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(environment))
    root.addHandler(handler)

    # uvicorn installs its own handlers; route its records through ours instead
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
