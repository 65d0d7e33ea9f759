"""Deliver the session log to an operator."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zbr.executor import ExecutorError
from zbr.models import ReportTransport

if TYPE_CHECKING:
    from zbr.executor import Executor

log = logging.getLogger(__name__)


def report_command(transport: ReportTransport, subject: str, recipient: str) -> list[str] | None:
    if transport is ReportTransport.NONE:
        return None
    # mailx and mail share the same synopsis
    return [transport.value, "-s", subject, recipient]


def send_report(
    log_path: str,
    run_id: str,
    recipient: str,
    transport: ReportTransport,
    executor: "Executor",
) -> bool:
    """Mail the session log with run_id as the subject. Return True if sent."""
    cmd = report_command(transport, run_id, recipient)
    if cmd is None:
        log.info("Report transport is 'none', not mailing %s", log_path)
        return False
    try:
        with open(log_path, "rb") as f:
            proc = executor.popen(cmd, stdin=f)
            rc = proc.wait()
    except OSError as e:
        log.error("Failed to mail %s to %s: %s", log_path, recipient, e)
        return False
    if rc != 0:
        log.error("%s", ExecutorError(cmd, rc, "report delivery failed"))
        return False
    return True
