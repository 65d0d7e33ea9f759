"""Retention: destroy snapshots older than a job's retention period."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zbr import zfs
from zbr.executor import ExecutorError
from zbr.logs import NOTICE
from zbr.models import Snapshot

if TYPE_CHECKING:
    from zbr.executor import Executor

log = logging.getLogger(__name__)


def expired_snapshots(
    snapshots: list[Snapshot],
    retention_days: int,
    now: int,
) -> list[Snapshot]:
    """Return the snapshots whose age has reached the retention period."""
    threshold = retention_days * 86400
    return [s for s in snapshots if now - s.creation >= threshold]


def enforce_retention(
    snapshots: list[Snapshot],
    retention_days: int,
    now: int,
    src_executor: "Executor",
    dst_executor: "Executor",
    dst_dataset: str,
    zfs_cmd: str = "zfs",
    dry_run: bool = False,
) -> list[Snapshot]:
    """
    Destroy expired snapshots locally and their namesakes under dst_dataset.

    Only the snapshots listed before this run's snapshot was taken may be
    passed in. Each deletion is attempted independently on each side; a
    failure is logged and the remaining deletions proceed.
    Returns the local snapshots that were destroyed.
    """
    destroyed = []
    for snap in expired_snapshots(snapshots, retention_days, now):
        age_days = (now - snap.creation) // 86400
        log.info("%s is %d day(s) old, retention is %d", snap.full_name, age_days, retention_days)
        try:
            zfs.destroy_snapshot(snap, src_executor, zfs=zfs_cmd, dry_run=dry_run)
            destroyed.append(snap)
        except ExecutorError as e:
            log.log(NOTICE, "failed to destroy %s: %s", snap.full_name, e)

        remote = Snapshot(dataset=dst_dataset, name=snap.name)
        try:
            zfs.destroy_snapshot(remote, dst_executor, zfs=zfs_cmd, dry_run=dry_run)
        except ExecutorError as e:
            log.log(NOTICE, "failed to destroy %s on %s: %s", remote.full_name, dst_executor.label, e)

    return destroyed
