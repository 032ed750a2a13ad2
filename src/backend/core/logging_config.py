"""
Logging configuration for the SEIDO intervention API.
Provides structured logging with different levels and formats.

File handlers are fed through a QueueHandler so log writes never block the
event loop; a QueueListener performs the file I/O in a separate thread.
"""

import atexit
import logging
import logging.handlers
import queue
import sys
from pathlib import Path
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


# Global queue listener for cleanup
_queue_listener: Optional[logging.handlers.QueueListener] = None


class LogConfig(BaseModel):
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_file_logging: bool = True
    log_dir: str = "logs"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    enable_console: bool = True
    enable_query_logging: bool = False


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    grey = "\x1b[38;21m"
    yellow = "\x1b[33;21m"
    red = "\x1b[31;21m"
    bold_red = "\x1b[31;1m"
    blue = "\x1b[34;21m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: blue,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record):
        # Work on a copy so file handlers sharing the record see the plain level
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, self.grey)
        record.levelname = f"{color}{record.levelname}{self.reset}"
        return f"{super().format(record)}{self.reset}"


class _LoggerPrefixFilter(logging.Filter):
    """Accept only records whose logger name starts with one of the prefixes."""

    def __init__(self, *prefixes: str):
        super().__init__()
        self.prefixes = prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(self.prefixes)


def _rotating_handler(config: LogConfig, filename: str, formatter: logging.Formatter):
    handler = logging.handlers.RotatingFileHandler(
        Path(config.log_dir) / filename,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, config.level.upper()))
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Setup application logging with configuration.

    - Console handler writes directly (stdout is non-blocking)
    - app.log receives everything, interventions.log the workflow loggers,
      database.log the SQLAlchemy and decorator loggers
    - All file handlers sit behind one QueueListener thread
    """
    global _queue_listener

    if config is None:
        config = LogConfig()

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
                datefmt=config.date_format,
            )
        )
        root_logger.addHandler(console_handler)

    file_handlers = []

    if config.enable_file_logging:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)

        file_formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt=config.date_format,
        )

        file_handlers.append(_rotating_handler(config, "app.log", file_formatter))

        workflow_handler = _rotating_handler(config, "interventions.log", file_formatter)
        workflow_handler.addFilter(_LoggerPrefixFilter("intervention.", "services."))
        file_handlers.append(workflow_handler)

        db_handler = _rotating_handler(config, "database.log", file_formatter)
        db_handler.addFilter(_LoggerPrefixFilter("sqlalchemy", "core.decorators", "core.database"))
        file_handlers.append(db_handler)

    if file_handlers:
        log_queue = queue.Queue(-1)
        root_logger.addHandler(logging.handlers.QueueHandler(log_queue))

        # respect_handler_level=True ensures only relevant logs are processed
        _queue_listener = logging.handlers.QueueListener(
            log_queue,
            *file_handlers,
            respect_handler_level=True,
        )
        _queue_listener.start()
        atexit.register(stop_queue_listener)

    sqlalchemy_logger = logging.getLogger("sqlalchemy.engine")
    if config.enable_query_logging:
        sqlalchemy_logger.setLevel(level)
    else:
        sqlalchemy_logger.setLevel(logging.WARNING)


def stop_queue_listener() -> None:
    """Stop the queue listener gracefully.

    Called automatically on exit via atexit.
    Can also be called manually during shutdown.
    """
    global _queue_listener

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None


class InterventionLogger:
    """Structured logger for intervention workflow operations."""

    def __init__(self, name: str = "workflow"):
        self.logger = logging.getLogger(f"intervention.{name}")

    def transition_applied(
        self,
        intervention_id: UUID,
        action: str,
        from_status: str,
        to_status: str,
        actor_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful status change."""
        actor = f"User ID: {actor_id}" if actor_id else "System"
        self.logger.info(
            f"Transition applied | Intervention: {intervention_id} | Action: {action} | "
            f"From: {from_status} | To: {to_status} | {actor}"
        )

    def transition_refused(
        self,
        intervention_id: UUID,
        action: str,
        current_status: str,
        reason: str,
        actor_id: Optional[UUID] = None,
    ) -> None:
        """Log a transition refused by the table, a guard or validation."""
        self.logger.warning(
            f"Transition refused | Intervention: {intervention_id} | Action: {action} | "
            f"Status: {current_status} | User ID: {actor_id} | Reason: {reason}"
        )

    def confirmation_recorded(
        self,
        intervention_id: UUID,
        assignment_id: UUID,
        user_id: UUID,
        confirmed: bool,
    ) -> None:
        """Log a participant confirmation or rejection."""
        outcome = "confirmed" if confirmed else "rejected"
        self.logger.info(
            f"Participation {outcome} | Intervention: {intervention_id} | "
            f"Assignment: {assignment_id} | User ID: {user_id}"
        )

    def aggregation_evaluated(
        self,
        intervention_id: UUID,
        confirmed: int,
        required: int,
        advanced: bool,
    ) -> None:
        """Log the outcome of an all-confirmed evaluation."""
        self.logger.info(
            f"Confirmations evaluated | Intervention: {intervention_id} | "
            f"Confirmed: {confirmed}/{required} | Advanced: {advanced}"
        )

    def compensation_executed(
        self,
        object_key: str,
        deleted: bool,
        error: str = "",
    ) -> None:
        """Log the undo step of the upload saga."""
        if error:
            self.logger.error(
                f"Upload compensation FAILED | Object: {object_key} | Error: {error}"
            )
        else:
            self.logger.warning(
                f"Upload compensated | Object: {object_key} | Deleted: {deleted}"
            )

    def notification_failed(
        self,
        intervention_id: Optional[UUID],
        user_id: UUID,
        event_type: str,
        error: str,
    ) -> None:
        """Log a notification that could not be dispatched."""
        self.logger.warning(
            f"Notification dispatch failed | Intervention: {intervention_id} | "
            f"User ID: {user_id} | Event: {event_type} | Error: {error}"
        )
