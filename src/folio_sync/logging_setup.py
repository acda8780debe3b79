# src/folio_sync/logging_setup.py

from __future__ import annotations

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "folio.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Credentials that can show up inside URLs or provider error messages.
_SECRET_PARAM_RE = re.compile(r"\b(request_token|access_token|sess_id|checksum)=([^&\s\"']+)")

# Third-party loggers that only matter when something is wrong.
_QUIET_LIBRARIES = ("httpx", "httpcore")


class _RedactSecretsFilter(logging.Filter):
    """Mask token-like query parameters in the rendered message (every handler)."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PARAM_RE.sub(lambda m: f"{m.group(1)}={m.group(2)[:4]}...", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console shows:
    - every folio_sync record at or above the console level
    - captured Python warnings only when ERROR+
    - anything else only when WARNING+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("folio_sync.") or record.name == "__main__":
            return True
        if record.name == "py.warnings":
            return record.levelno >= logging.ERROR
        return record.levelno >= logging.WARNING


def setup_logging(
    *,
    log_dir: str | Path = ".local/folio",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Route everything through the root logger:
    console (stderr, filtered) plus a rotating debug file under log_dir.

    Meant to run once at process start; calling it again replaces the handlers.
    Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    redact = _RedactSecretsFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    console.addFilter(redact)
    console.addFilter(_ConsoleNoiseFilter())

    logfile = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    logfile.setLevel(file_level)
    logfile.setFormatter(formatter)
    logfile.addFilter(redact)

    root.addHandler(console)
    root.addHandler(logfile)

    logging.captureWarnings(True)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file
