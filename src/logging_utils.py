"""Logging setup shared by the backfill CLI and the API.

A backfill can outlive its terminal: the API server may reload while a run
is in flight, and CLI output is often piped into `head` or `tee`. Console
output goes through SafeStreamHandler so a vanished stdout drops log lines
instead of failing the run.

The level comes from BACKFILL_LOG_LEVEL (a name such as DEBUG or WARNING)
unless the caller passes one explicitly.
"""
import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_LEVEL_ENV = "BACKFILL_LOG_LEVEL"

# Chatty at DEBUG/INFO on every connection and 429 retry
NOISY_LOGGERS = ("urllib3", "requests")


class SafeStreamHandler(logging.StreamHandler):
    """Console handler that drops records once its stream has gone away."""

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # reader exited
        except ValueError:
            pass  # stream already closed


def resolve_log_level(default=logging.INFO) -> int:
    """Level named by BACKFILL_LOG_LEVEL, or `default` when unset or unknown."""
    name = (os.getenv(LOG_LEVEL_ENV) or "").strip().upper()
    level = logging.getLevelName(name) if name else None
    return level if isinstance(level, int) else default


def make_formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def configure_safe_logging(level=None) -> int:
    """Route root logging to a SafeStreamHandler and return the level used.

    Repeated calls reuse the existing handler. The root level is only ever
    lowered, so a caller that already asked for DEBUG keeps it.
    """
    if level is None:
        level = resolve_log_level()

    root = logging.getLogger()
    handler = next((h for h in root.handlers if isinstance(h, SafeStreamHandler)), None)
    if handler is None:
        handler = SafeStreamHandler()
        handler.setFormatter(make_formatter())
        root.addHandler(handler)
    handler.setLevel(level)
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return level
