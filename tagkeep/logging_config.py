"""
Logging configuration for tagkeep.

Quiet by default; debug output to stderr on request; a persistent
operations log in every store directory.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose output.

    Args:
        quiet: If True, only warnings and errors reach the console.
    """
    if quiet:
        # Suppress Python warnings (including deprecation warnings)
        warnings.filterwarnings("ignore")
        logging.getLogger("tagkeep").setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")
        logging.getLogger("tagkeep").setLevel(logging.INFO)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    # Configure root logger for debug output
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("tagkeep").setLevel(logging.DEBUG)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a tag store.

    Writes to {store_path}/tagkeep-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "tagkeep-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    tagkeep_logger = logging.getLogger("tagkeep")
    tagkeep_logger.addHandler(handler)
    # Ensure tagkeep logger allows INFO through even in quiet mode
    if tagkeep_logger.level == logging.NOTSET or tagkeep_logger.level > logging.INFO:
        tagkeep_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger("tagkeep").removeHandler(handler)
    handler.close()
