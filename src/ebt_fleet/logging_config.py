from __future__ import annotations

import logging
import logging.handlers
import os
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
LOG_FILE = "ebt_fleet.log"


def _default_log_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".ebt_fleet", "logs")


def _already_configured(root: logging.Logger) -> bool:
    return any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)


def configure_logging(log_dir: str | None = None, verbose: bool = False) -> str:
    """Send every run to a rotating file; only router trouble reaches the terminal.

    Per-router work happens on pool threads, so the thread name is part of
    each record. ``verbose`` lowers both the root and the console level.
    """
    directory = log_dir or _default_log_dir()
    os.makedirs(directory, exist_ok=True)
    log_path = os.path.join(directory, LOG_FILE)

    root = logging.getLogger()
    if _already_configured(root):
        return log_path

    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(console)

    run_id = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    logging.getLogger(__name__).info(
        "ebt_fleet run %s started (pid %d, console level %s)",
        run_id,
        os.getpid(),
        logging.getLevelName(console.level),
    )
    return log_path
