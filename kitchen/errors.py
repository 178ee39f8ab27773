"""
Error types and error logging for kitchen.

Data-layer errors (validation, not found, duplicate, no change) propagate to
the caller. Processing errors are recorded on the queue item that caused
them and never escape the processor loop.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class KitchenError(Exception):
    """Base class for all kitchen errors."""


class ValidationError(KitchenError, ValueError):
    """Malformed input (title/content length, short id charset, ...)."""


class NotFoundError(KitchenError, LookupError):
    """Missing recipe, version, or queue item."""


class DuplicateError(KitchenError):
    """Short id collision with another live recipe."""


class NoChangeError(KitchenError):
    """Save with content identical to the current version.

    Not a failure: signals that no new version was created.
    """


class ConcurrencyConflict(KitchenError):
    """Two saves raced on the same version number."""


class ProcessingError(KitchenError):
    """Enrichment failed (provider error, network, timeout)."""


ERROR_LOG_NAME = "kitchen-errors.log"


def _error_log_path() -> Path:
    # Errors can happen before any config is loaded, so go by the env only
    store = os.environ.get("KITCHEN_STORE_PATH")
    base = Path(store) if store else Path.home() / ".kitchen"
    return base / ERROR_LOG_NAME


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Append `exc` with its traceback to the store's kitchen-errors.log.

    The file is created owner-only. Failure to write is ignored; the
    caller still gets the path so it can point the user at it.
    """
    log_path = _error_log_path()
    header = datetime.now(timezone.utc).isoformat()
    if context:
        header = f"{header} {context}"
    entry = "".join([
        "\n", "=" * 60, "\n",
        f"[{header}]\n",
        *traceback.format_exception(type(exc), exc, exc.__traceback__),
    ])
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(entry)
    except OSError:
        pass
    return log_path
