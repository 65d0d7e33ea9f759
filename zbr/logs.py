"""Logging setup: session log file, syslog and console handlers."""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime

# Between INFO and WARNING, as syslog's "notice"
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

LOGGER_NAME = "zbr"
SESSION_LOG_FORMAT = "%(asctime)s [%(process)d] {%(levelname)s} %(message)s"
SYSLOG_ADDRESS = "/dev/log"


def run_identifier(program_name: str, when: datetime) -> str:
    """Return '<program>_<YYYY-mm-dd-HHMM>', the session log and report name."""
    return f"{program_name}_{when.strftime('%Y-%m-%d-%H%M')}"


def session_log_path(log_dir: str, run_id: str) -> str:
    return os.path.join(log_dir, f"{run_id}.txt")


def _syslog_handler(program_name: str) -> logging.Handler | None:
    if not os.path.exists(SYSLOG_ADDRESS):
        return None
    handler = logging.handlers.SysLogHandler(
        address=SYSLOG_ADDRESS,
        facility=logging.handlers.SysLogHandler.LOG_USER,
    )
    # Map our level name onto the syslog priority of the same name
    handler.priority_map = dict(handler.priority_map, NOTICE="notice")
    handler.setFormatter(logging.Formatter(f"{program_name}[%(process)d]: %(message)s"))
    handler.setLevel(NOTICE)
    return handler


def setup_logging(
    program_name: str,
    log_path: str | None = None,
    verbose: bool = False,
    syslog: bool = True,
) -> logging.Logger:
    """Attach the run's handlers to the package logger and return it."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(message)s"))
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console)

    if log_path is not None:
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter(SESSION_LOG_FORMAT))
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        logger.addHandler(handler)

    if syslog:
        handler = _syslog_handler(program_name)
        if handler is not None:
            logger.addHandler(handler)

    return logger


def teardown_logging() -> None:
    """Close and detach every handler added by setup_logging."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
