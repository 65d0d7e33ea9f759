"""Detect which optional ZFS capabilities a transfer may use."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zbr import zfs
from zbr.executor import ExecutorError
from zbr.models import Capabilities

if TYPE_CHECKING:
    from zbr.executor import Executor
    from zbr.models import Settings

log = logging.getLogger(__name__)


def pool_of(dataset: str) -> str:
    return dataset.split("/")[0]


def is_pool_feature_enabled(pool: str, feature: str, executor: "Executor", zpool: str = "zpool") -> bool:
    """Return True if feature@<feature> is enabled or active on the pool."""
    try:
        output = executor.run([zpool, "get", "-H", "-o", "value", f"feature@{feature}", pool])
    except ExecutorError as e:
        log.debug("cannot read feature@%s on %s: %s", feature, pool, e)
        return False
    return output.strip() in ("enabled", "active")


def is_encryption_active(dataset: str, executor: "Executor", zfs_cmd: str = "zfs") -> bool:
    try:
        value = zfs.get_property(dataset, "encryption", executor, zfs=zfs_cmd)
    except ExecutorError:
        return False
    return value not in ("", "-", "off")


def detect_capabilities(
    src_dataset: str,
    dst_dataset: str,
    src_executor: "Executor",
    dst_executor: "Executor",
    settings: "Settings",
) -> Capabilities:
    """Read the pool features both ends of a job depend on.

    zfs recv -s needs the extensible_dataset feature on the receiving pool.
    """
    if settings.force_resumable is not None:
        resumable = settings.force_resumable
    else:
        resumable = is_pool_feature_enabled(
            pool_of(dst_dataset), "extensible_dataset", dst_executor, settings.zpool
        )
    return Capabilities(
        encryption_feature=is_pool_feature_enabled(
            pool_of(src_dataset), "encryption", src_executor, settings.zpool
        ),
        resumable_receive=resumable,
    )


def requires_raw_send(
    dataset: str,
    capabilities: Capabilities,
    executor: "Executor",
    settings: "Settings",
) -> bool:
    """Encrypted datasets are sent as ciphertext, never decrypted in transit."""
    if settings.force_raw is not None:
        return settings.force_raw
    return capabilities.encryption_feature and is_encryption_active(dataset, executor, settings.zfs)


def receive_resume_token(dataset: str, executor: "Executor", zfs_cmd: str = "zfs") -> str | None:
    """Return the token of an interrupted resumable receive, if any."""
    try:
        value = zfs.get_property(dataset, "receive_resume_token", executor, zfs=zfs_cmd)
    except ExecutorError:
        return None
    if value in ("", "-"):
        return None
    return value
