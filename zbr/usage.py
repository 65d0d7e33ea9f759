"""Account for the space a backup run allocates or frees in snapshots."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zbr import zfs
from zbr.executor import ExecutorError
from zbr.logs import NOTICE
from zbr.models import UsageSample

if TYPE_CHECKING:
    from zbr.executor import Executor

log = logging.getLogger(__name__)

SIZE_SUFFIXES = "KMGTEPYZ"


def format_size(num_bytes: int) -> str:
    """Scale a byte count by 1024 until it drops under 1000, e.g. '500.00M'."""
    value = num_bytes / 1024
    index = 0
    while value >= 1000 and index < len(SIZE_SUFFIXES) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f}{SIZE_SUFFIXES[index]}"


def sample_usage(dataset: str, executor: "Executor", zfs_cmd: str = "zfs") -> int:
    """Return bytes used by the dataset's snapshots; 0 when unavailable."""
    try:
        value = zfs.get_property(dataset, "usedbysnapshots", executor, zfs=zfs_cmd)
    except ExecutorError as e:
        log.debug("cannot sample usedbysnapshots of %s: %s", dataset, e)
        return 0
    try:
        return int(value)
    except ValueError:
        log.debug("usedbysnapshots of %s is not a number: %r", dataset, value)
        return 0


def take_sample(
    src_dataset: str,
    dst_dataset: str,
    src_executor: "Executor",
    dst_executor: "Executor",
    zfs_cmd: str = "zfs",
) -> UsageSample:
    return UsageSample(
        local=sample_usage(src_dataset, src_executor, zfs_cmd),
        remote=sample_usage(dst_dataset, dst_executor, zfs_cmd),
    )


def report_deltas(
    before: UsageSample,
    after: UsageSample,
    local_where: str,
    remote_where: str,
    dataset: str,
) -> list[tuple[str, int]]:
    """Log the signed change on each end and return the non-zero ones."""
    deltas = []
    for where, delta in (
        (local_where, after.local - before.local),
        (remote_where, after.remote - before.remote),
    ):
        if delta == 0:
            continue
        what = "freed" if delta < 0 else "allocated"
        log.log(NOTICE, '%s %s in "%s" by backing up "%s"', format_size(abs(delta)), what, where, dataset)
        deltas.append((where, delta))
    return deltas
