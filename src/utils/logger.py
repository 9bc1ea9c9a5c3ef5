"""
Structured logging utilities using structlog.

Provides JSON-formatted logging for production and
human-readable logging for development.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog


def setup_logger(
    log_level: str = "INFO",
    log_dir: str = "logs",
    log_format: str = "json",
    service_name: str = "adaptive-digit-bot"
) -> structlog.BoundLogger:
    """
    Configure and return a structured logger.

    JSON output goes to a dated file under ``log_dir``; console format
    writes colored lines to stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        log_format: "json" for production, "console" for development
        service_name: Name of the service for log context

    Returns:
        Configured structlog logger instance
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if log_format == "json":
        # Create log directory if it doesn't exist
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Generate log filename with current date
        log_filename = f"bot_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.log"
        log_file = open(log_path / log_filename, "a")

        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    else:  # console format for development
        log_file = sys.stdout

        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True)
        ]

    # Configure structlog
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=log_file),
        cache_logger_on_first_use=True,
    )

    # Get logger with service context
    return structlog.get_logger(service=service_name)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a logger instance with optional name context.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Logger instance
    """
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


# Event type constants for structured logging
class EventType:
    """Standard event types for bot logging."""

    # Trading events
    PROPOSAL_SENT = "PROPOSAL_SENT"
    CONTRACT_BOUGHT = "CONTRACT_BOUGHT"
    TRADE_RESOLVED = "TRADE_RESOLVED"

    # System events
    STATUS = "STATUS"
    STARTUP = "STARTUP"
    SHUTDOWN = "SHUTDOWN"
    STATE_FLUSHED = "STATE_FLUSHED"

    # Connection events
    WEBSOCKET_CONNECTED = "WEBSOCKET_CONNECTED"
    API_ERROR = "API_ERROR"


def log_trade_event(
    logger: structlog.BoundLogger,
    event_type: str,
    symbol: str,
    **kwargs
) -> None:
    """
    Log a trade-related event with standard fields.

    Args:
        logger: Logger instance
        event_type: Event type from EventType class
        symbol: Trading symbol
        **kwargs: Additional event-specific fields
    """
    logger.info(
        event_type,
        event_type=event_type,
        symbol=symbol,
        timestamp=datetime.now(timezone.utc).isoformat(),
        **kwargs
    )


def log_system_event(
    logger: structlog.BoundLogger,
    event_type: str,
    message: str,
    **kwargs
) -> None:
    """
    Log a system event.

    Args:
        logger: Logger instance
        event_type: Event type from EventType class
        message: Event message
        **kwargs: Additional context
    """
    logger.info(
        message,
        event_type=event_type,
        timestamp=datetime.now(timezone.utc).isoformat(),
        **kwargs
    )
