"""Decide which send streams bring the destination up to date."""
from __future__ import annotations

from zbr.models import SendStream, Snapshot, StreamKind, TransferPlan


def find_common_snapshot(
    src_snaps: list[Snapshot],
    dst_snaps: list[Snapshot],
) -> Snapshot | None:
    """Return the most recent source snapshot also present on the destination.

    Both lists are newest first; matching is by snapshot name only since the
    datasets differ on each end.
    """
    dst_names = {s.name for s in dst_snaps}
    for snap in src_snaps:
        if snap.name in dst_names:
            return snap
    return None


def _bridge_base(
    local_snaps: list[Snapshot],
    remote_snaps: list[Snapshot],
    src_dataset: str,
) -> Snapshot:
    """Pick the snapshot a bridging stream starts from.

    That is the destination's newest snapshot the source still has. When the
    histories share nothing, the destination's newest name is used as is and
    the send fails rather than rewriting the destination.
    """
    common = find_common_snapshot(local_snaps, remote_snaps)
    if common is not None:
        return common
    return Snapshot(dataset=src_dataset, name=remote_snaps[0].name)


def plan_transfer(
    local_snaps: list[Snapshot],
    new_snapshot: Snapshot,
    remote_snaps: list[Snapshot],
    raw: bool = False,
    resumable: bool = False,
    resume_token: str | None = None,
    seed_empty_destination: bool = False,
) -> TransferPlan:
    """
    Plan the streams for one job.

    local_snaps are the source snapshots that existed before new_snapshot was
    taken, remote_snaps those of the mirrored destination dataset, both newest
    first. Every stream but a resume uses the same raw mode.
    """
    streams: list[SendStream] = []

    if resume_token and resumable:
        streams.append(SendStream(kind=StreamKind.RESUME, token=resume_token))

    if not local_snaps:
        streams.append(SendStream(kind=StreamKind.FULL, target=new_snapshot, raw=raw))
        return TransferPlan(new_snapshot, streams, raw=raw, resumable=resumable)

    last_local = local_snaps[0]
    remote_names = {s.name for s in remote_snaps}

    if last_local.name not in remote_names:
        if remote_snaps:
            base = _bridge_base(local_snaps, remote_snaps, new_snapshot.dataset)
            streams.append(SendStream(
                kind=StreamKind.BRIDGE, target=last_local, base=base, raw=raw,
            ))
        elif seed_empty_destination:
            streams.append(SendStream(kind=StreamKind.FULL, target=last_local, raw=raw))

    streams.append(SendStream(
        kind=StreamKind.INCREMENTAL, target=new_snapshot, base=last_local, raw=raw,
    ))
    return TransferPlan(new_snapshot, streams, raw=raw, resumable=resumable)
