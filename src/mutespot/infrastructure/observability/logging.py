"""Structured logging configuration with JSON formatting, correlation and batch ids."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from typing import Any

from pythonjsonlogger.json import JsonFormatter

# Hey future me, correlation ids follow one HTTP request through every log line. The
# contextvars module is asyncio-safe - each task gets its own copy, so concurrent verb
# groups of one batch still log the right ids. default="" covers startup/background logs.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
# The batch currently being executed. Set by the executor for the duration of a run.
batch_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("batch_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID ("" if not set)."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID in context, generating a UUID when None.

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


def get_batch_id() -> str:
    return batch_id_var.get()


def set_batch_id(batch_id: str) -> contextvars.Token[str]:
    """Bind a batch id to the current context. Keep the token to reset it afterwards."""
    return batch_id_var.set(batch_id)


def reset_batch_id(token: contextvars.Token[str]) -> None:
    batch_id_var.reset(token)


# Hey future me, this filter INJECTS correlation_id and batch_id into EVERY log record.
# Return True is important - False would drop the message. Keep it cheap, it runs for
# every single log call.
class ContextFilter(logging.Filter):
    """Add correlation ID and batch ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.batch_id = get_batch_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Human formatter that prints exception chains compactly.

    Every exception in the chain gets one "╰─►" header line followed by the frames
    from our own package only, root cause first:

    WARNING │ batch_executor:210 │ Chunk failed
    ╰─► httpx.ConnectTimeout: timed out
    ╰─► ProviderCallError: Spotify request timed out: DELETE /me/tracks
        File "spotify_client.py", line 190, in _request
          raise ProviderCallError(
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        batch_id = getattr(record, "batch_id", "")
        if batch_id:
            message = f"{message} [batch={batch_id}]"
        return message

    def formatException(self, ei: Any) -> str:
        _exc_type, exc_value, _exc_tb = ei
        if exc_value is None:
            return ""

        exceptions: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in exceptions:
            exceptions.append(current)
            current = current.__cause__ or current.__context__
        exceptions.reverse()

        lines: list[str] = []
        for exc in exceptions:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if not exc.__traceback__:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                if "/site-packages/" in frame.filename or "mutespot" not in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")
        return "\n".join(lines)


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id
        batch_id = getattr(record, "batch_id", "")
        if batch_id:
            log_record["batch_id"] = batch_id

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)


# Listen future me, this is THE logging setup function - call it ONCE at startup (the app
# lifespan does). It resets the root logger's handlers, so calling it again in tests is fine.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "mutespot",
) -> None:
    """Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for logs (recommended for production)
        app_name: Application name to include in logs
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(ContextFilter())

    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # HTTP libraries are chatty, one line per request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "app_name": app_name,
            "log_level": log_level,
            "json_format": json_format,
        },
    )
