"""
Logging setup shared by the CLI, the MCP server and the Kitchen facade.

By default the provider SDKs are kept quiet; `--verbose` turns everything
up to DEBUG on stderr. Independently, each store keeps its own rotating
operations log.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_NAME = "kitchen-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Loggers that report every HTTP request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """Hide SDK request logging and library warnings unless `quiet` is False."""
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send DEBUG records from kitchen and the SDKs to stderr."""
    warnings.filterwarnings("default")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setLevel(logging.DEBUG)
        stderr.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S",
        ))
        root.addHandler(stderr)

    for name in ("kitchen", *_NOISY_LOGGERS):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> logging.Handler:
    """
    Attach a rotating INFO log at `<store>/kitchen-ops.log`.

    The log records saves, enrichment outcomes and retries whether or not
    --verbose is set. The caller keeps the returned handler and passes it
    to remove_ops_log() on close.
    """
    log_path = Path(store_path) / OPS_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        str(log_path), maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S",
    ))

    logger = logging.getLogger("kitchen")
    logger.addHandler(handler)
    # Quiet mode leaves the level unset; INFO must still reach the file
    if logger.level == logging.NOTSET or logger.level > logging.INFO:
        logger.setLevel(logging.INFO)
    return handler


def remove_ops_log(handler: logging.Handler) -> None:
    logging.getLogger("kitchen").removeHandler(handler)
    handler.close()
