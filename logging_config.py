"""
Logging configuration for the chatstream client core.
Provides JSON-formatted logging to stderr with configurable log levels.
"""
import json
import logging
import os
import sys
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


ENV_LOG_LEVEL = "CHATSTREAM_LOG_LEVEL"


@dataclass
class LogPayload:
    """Structured log payload for consistent logging."""
    component: Optional[str] = None
    step: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    exception: Optional[str] = None
    traceback: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured stream-client logs."""

    STRUCTURED_FIELDS = ("component", "step", "data", "duration_ms", "exception", "traceback")

    def __init__(self, session_tag: str = None):
        super().__init__()
        self.session_tag = session_tag or str(uuid.uuid4())[:8]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as one JSON line."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_tag": self.session_tag,
        }

        for field_name in self.STRUCTURED_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                log_entry[field_name] = value

        if record.exc_info:
            log_entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ClientLogger:
    """Singleton that owns root logger configuration for the client process."""
    _instance = None
    _initialized = False

    def __new__(cls, session_tag: str = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, session_tag: str = None):
        if not self._initialized:
            self.session_tag = session_tag or str(uuid.uuid4())[:8]
            self._configured = False
            ClientLogger._initialized = True

    def configure_logging(self, log_level: str = "INFO") -> None:
        """Configure the root logger with JSON formatting to stderr."""
        if self._configured:
            return

        numeric_level = getattr(logging, log_level.upper(), logging.INFO)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(JSONFormatter(session_tag=self.session_tag))
        stderr_handler.setLevel(numeric_level)

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.addHandler(stderr_handler)

        self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger with the specified name."""
        return logging.getLogger(name)

    def log_with_context(self, logger: logging.Logger, level: Union[int, str], message: str,
                         payload: LogPayload = None, **kwargs) -> None:
        """Log a message carrying structured context fields."""
        if isinstance(level, str):
            numeric_level = getattr(logging, level.upper(), logging.INFO)
        else:
            numeric_level = level

        if not logger.isEnabledFor(numeric_level):
            return

        if payload is None:
            payload = LogPayload(**{key: kwargs.get(key) for key in JSONFormatter.STRUCTURED_FIELDS})

        extra = {
            key: value
            for key, value in vars(payload).items()
            if value is not None
        }
        logger.log(numeric_level, message, extra=extra)


def get_log_level_from_env_and_args(args_log_level: str = None, verbose: bool = False,
                                    config_log_level: str = None) -> str:
    """
    Determine log level from CLI args, environment and configuration.

    Priority:
    1. CLI --verbose flag (sets DEBUG)
    2. CLI --log-level argument
    3. CHATSTREAM_LOG_LEVEL environment variable
    4. log_level from client.yaml
    5. Default (INFO)
    """
    if verbose:
        return "DEBUG"

    if args_log_level:
        return args_log_level.upper()

    env_level = os.getenv(ENV_LOG_LEVEL)
    if env_level:
        return env_level.upper()

    if config_log_level:
        return config_log_level.upper()

    return "INFO"


def setup_logging(log_level: str = None, verbose: bool = False,
                  config_log_level: str = None, session_tag: str = None) -> ClientLogger:
    """
    Set up process-wide logging.

    Args:
        log_level: Log level string (DEBUG, INFO, WARNING, ERROR)
        verbose: If True, sets log level to DEBUG
        config_log_level: Level taken from the loaded client configuration
        session_tag: Optional tag attached to every log line

    Returns:
        Configured ClientLogger instance
    """
    final_log_level = get_log_level_from_env_and_args(log_level, verbose, config_log_level)
    client_logger = ClientLogger(session_tag)
    client_logger.configure_logging(final_log_level)
    return client_logger


_client_logger = ClientLogger()


def log_step_start(logger: logging.Logger, component: str, step: str, message: str,
                   data: Dict[str, Any] = None) -> None:
    """Log the start of a processing step."""
    _client_logger.log_with_context(
        logger, logging.INFO, message,
        component=component, step=step, data=data
    )


def log_step_complete(logger: logging.Logger, component: str, step: str, message: str,
                      data: Dict[str, Any] = None, duration_ms: float = None) -> None:
    """Log the completion of a processing step."""
    _client_logger.log_with_context(
        logger, logging.INFO, message,
        component=component, step=step, data=data, duration_ms=duration_ms
    )


def log_debug(logger: logging.Logger, message: str, component: str = None,
              data: Dict[str, Any] = None) -> None:
    """Log a debug message with optional context."""
    _client_logger.log_with_context(
        logger, logging.DEBUG, message,
        component=component, data=data
    )


def log_warning(logger: logging.Logger, message: str, component: str = None,
                data: Dict[str, Any] = None) -> None:
    """Log a recoverable anomaly (dropped frame, rejected transition, ...)."""
    _client_logger.log_with_context(
        logger, logging.WARNING, message,
        component=component, data=data
    )


def log_error(logger: logging.Logger, message: str, component: str = None,
              error: Exception = None, data: Dict[str, Any] = None) -> None:
    """Log an error message with optional exception info."""
    _client_logger.log_with_context(
        logger, logging.ERROR, message,
        component=component,
        data=data,
        exception=str(error) if error else None,
        traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)) if error else None
    )
