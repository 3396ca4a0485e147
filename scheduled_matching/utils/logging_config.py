"""Logging setup shared by the API server and the CLI."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(name)s: %(message)s"
LOG_FILE = "scheduled_matching.log"

# Third-party loggers routed through our handlers, with their own floor
FOREIGN_LOGGERS = {
    "apscheduler": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


def parse_level(level) -> int:
    """Accept 10 / "debug" / "DEBUG"; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    log_dir: str | None = "logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the ``scheduled_matching`` logger tree.

    Batches run on scheduler and ``batch-<country>`` threads, so the thread
    name is part of every line. Pass ``log_dir=None`` for console only.
    """
    level = parse_level(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = []
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path / LOG_FILE,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logger = logging.getLogger("scheduled_matching")
    logger.setLevel(level)
    # Re-init (tests, reloads) must not stack handlers
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    for handler in handlers:
        logger.addHandler(handler)

    for name, floor in FOREIGN_LOGGERS.items():
        foreign = logging.getLogger(name)
        foreign.setLevel(max(floor, level))
        foreign.handlers = list(handlers)
        foreign.propagate = False

    return logger
