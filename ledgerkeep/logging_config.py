"""
Logging configuration for ledgerkeep.

HTTP and provider libraries are chatty at INFO; quiet them by default.
Unexpected CLI failures go to a per-store error log.
"""

import logging
import sqlite3
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .blob_store import BlobStoreError
from .config import default_store_path
from .ledger import LedgerError

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    This silences:
    - per-request logging from httpx/httpcore
    - provider SDK retry chatter
    - Library warnings (deprecation, etc.)

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("ledgerkeep").setLevel(logging.DEBUG)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(store_path) -> logging.Handler:
    """Configure a persistent operations log for a store.

    Writes to {store_path}/ledgerkeep-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "ledgerkeep-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    pkg_logger = logging.getLogger("ledgerkeep")
    pkg_logger.addHandler(handler)
    # INFO must get through even in quiet mode
    if pkg_logger.level == logging.NOTSET or pkg_logger.level > logging.INFO:
        pkg_logger.setLevel(logging.INFO)

    return handler


# -----------------------------------------------------------------------------
# Error log
# -----------------------------------------------------------------------------

ERROR_LOG_NAME = "ledgerkeep-errors.log"


def failing_backend(exc: BaseException) -> Optional[str]:
    """Name the external collaborator behind ``exc``, following its causes."""
    seen: Optional[BaseException] = exc
    while seen is not None:
        if isinstance(seen, LedgerError):
            return "ledger"
        if isinstance(seen, BlobStoreError):
            return "blob store"
        if isinstance(seen, sqlite3.Error):
            return "local cache"
        seen = seen.__cause__ or seen.__context__
    return None


def log_exception(exc: BaseException, store_path=None, context: str = "") -> Path:
    """
    Append ``exc`` and its traceback to the store's error log.

    The log lives beside the ops log, in ``store_path`` or the default
    store. The entry names the failing backend when there is one.

    Returns:
        Path to the error log file
    """
    base = Path(store_path).expanduser() if store_path else default_store_path()
    log_path = base / ERROR_LOG_NAME

    header = type(exc).__name__
    if context:
        header += f" in {context}"
    backend = failing_backend(exc)
    if backend:
        header += f" (backend: {backend})"

    error_logger = logging.getLogger("ledgerkeep.errors")
    error_logger.propagate = False
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(log_path), encoding="utf-8")
    except OSError as e:
        logging.getLogger(__name__).debug("Error log %s unavailable: %s", log_path, e)
        return log_path
    handler.setFormatter(logging.Formatter(
        f"{'=' * 60}\n[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    error_logger.addHandler(handler)
    try:
        error_logger.error(header, exc_info=(type(exc), exc, exc.__traceback__))
    finally:
        error_logger.removeHandler(handler)
        handler.close()
    return log_path
