"""
Logging Infrastructure

Structured JSON logging with log rotation and a separate audit trail for
gas price update events.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import structlog
from structlog.types import EventDict, Processor

from .types import UpdateEvent, UpdateEventType


# ============================================================================
# Custom Processors
# ============================================================================

def add_module_name(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add module name to log record"""
    event_dict["module"] = getattr(logger, "name", None)
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 timestamp to log record"""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def add_log_level(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add log level to log record"""
    event_dict["level"] = method_name.upper()
    return event_dict


def add_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Ensure context field exists"""
    if "context" not in event_dict:
        event_dict["context"] = {}
    return event_dict


# ============================================================================
# Logging Configuration
# ============================================================================

AUDIT_LOGGER_NAME = "fee_updater.audit"


class LoggingConfig:
    """
    Centralized logging configuration.

    Features:
    - Structured JSON logging through structlog
    - Console and rotating file output
    - Separate rotating audit file for update events
    """

    def __init__(
        self,
        log_dir: Path = Path("logs"),
        log_level: str = "INFO",
        enable_files: bool = True
    ):
        self.log_dir = log_dir
        self.log_level = log_level.upper()
        self.enable_files = enable_files

        if self.enable_files:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._configure_structlog()
        self._configure_stdlib_logging()

    def _configure_structlog(self):
        """Configure structlog with custom processors"""
        processors: list[Processor] = [
            structlog.contextvars.merge_contextvars,
            add_module_name,
            add_timestamp,
            add_log_level,
            add_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ]

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                logging.getLevelName(self.log_level)
            ),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self):
        """Configure standard library logging handlers"""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        root_logger.addHandler(console_handler)

        if not self.enable_files:
            return

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "fee_updater.log",
            maxBytes=50 * 1024 * 1024,  # 50 MB
            backupCount=10,
            encoding='utf-8'
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        root_logger.addHandler(file_handler)

        # Audit trail: update events only, kept longer
        audit_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "updates.log",
            maxBytes=50 * 1024 * 1024,
            backupCount=50,
            encoding='utf-8'
        )
        audit_handler.setLevel(logging.INFO)
        audit_handler.setFormatter(logging.Formatter('%(message)s'))
        audit_handler.addFilter(lambda record: record.name == AUDIT_LOGGER_NAME)
        root_logger.addHandler(audit_handler)

    def get_logger(self, name: str) -> structlog.stdlib.BoundLogger:
        """
        Get a logger instance for a specific module.

        Args:
            name: Module name (e.g., 'main', 'control_loop')

        Returns:
            Configured structlog logger
        """
        return structlog.get_logger(name)


# ============================================================================
# Global Logger Instance
# ============================================================================

_logging_config: Optional[LoggingConfig] = None


def init_logging(
    log_dir: Path = Path("logs"),
    log_level: str = "INFO",
    enable_files: bool = True
) -> LoggingConfig:
    """
    Initialize global logging configuration.

    Args:
        log_dir: Directory for log files
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_files: Write rotating log files in addition to stdout

    Returns:
        LoggingConfig instance
    """
    global _logging_config
    _logging_config = LoggingConfig(
        log_dir=log_dir,
        log_level=log_level,
        enable_files=enable_files
    )
    return _logging_config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance for a specific module.

    Auto-initializes console-only logging if init_logging() was not called.
    """
    global _logging_config
    if _logging_config is None:
        init_logging(enable_files=False)
    return _logging_config.get_logger(name)


# ============================================================================
# Convenience Functions
# ============================================================================

_EVENT_LEVELS = {
    UpdateEventType.DECISION_MADE: "info",
    UpdateEventType.UPDATE_SUBMITTED: "info",
    UpdateEventType.UPDATE_CONFIRMED: "info",
    UpdateEventType.UPDATE_RETRIED: "warning",
    UpdateEventType.UPDATE_TIMED_OUT: "warning",
    UpdateEventType.UPDATE_FAILED_PERMANENTLY: "error",
}


def log_update_event(
    logger: structlog.stdlib.BoundLogger,
    event: UpdateEvent
):
    """
    Log a gas price update lifecycle event for the audit trail.

    Args:
        logger: Logger instance (normally get_logger(AUDIT_LOGGER_NAME))
        event: Event produced by the control loop or lifecycle manager
    """
    level = _EVENT_LEVELS.get(event.event_type, "info")
    getattr(logger, level)(
        event.event_type.value,
        context={
            "event_type": event.event_type.value,
            **event.to_dict()
        }
    )
