"""
Logging helpers for common HiveChat patterns:
- timing a slow collaborator call
- logging HTTP requests and WebSocket lifecycle events
"""

import logging
import time
from typing import Any, Dict, Optional

from HiveChat.core.logging import get_logger


class LogTimer:
    """
    Context manager that logs how long a block took.

    Works around awaited calls too:

        with LogTimer("assistant.answer", logger):
            answer = await assistant.answer(query)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG
    ):
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.level = level
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self) -> 'LogTimer':
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.warning(
                "Operation '%s' failed after %.4f seconds: %s",
                self.operation, self.duration, exc_val
            )
        else:
            self.logger.log(
                self.level,
                "Operation '%s' completed in %.4f seconds",
                self.operation, self.duration
            )


class RequestLogger:
    """Logs HTTP requests and WebSocket lifecycle events with consistent levels."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(__name__)

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration: float,
        user: Optional[str] = None
    ) -> None:
        """Log an HTTP request; 4xx/5xx responses are logged as warnings."""
        level = logging.INFO if status_code < 400 else logging.WARNING
        message = "%s %s - %d (%.4fs)"
        args: list = [method, path, status_code, duration]
        if user:
            message += " - Principal: %s"
            args.append(user)
        self.logger.log(level, message, *args)

    def log_websocket_event(
        self,
        event_type: str,
        principal: str,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log a WebSocket lifecycle event.

        Args:
            event_type: connect, disconnect, error or any inbound event name
            principal: Principal id or display name
            data: Extra fields, attached as ``extra_data`` for the JSON formatter
        """
        if event_type in ("connect", "disconnect"):
            level = logging.INFO
        elif event_type == "error":
            level = logging.ERROR
        else:
            level = logging.DEBUG
        self.logger.log(
            level, "WebSocket %s - Principal: %s", event_type, principal,
            extra={"extra_data": data or {}}
        )
