"""Backup job orchestration: snapshot, replicate, age out, account.

Each job walks a small state machine. Every stage takes the job's context,
does its work and returns the next state; the driver loops until a terminal
state is reached, so a failing job never affects the next one.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Callable

from zbr import detect, zfs
from zbr.executor import ExecutorError, SSHExecutor
from zbr.logs import NOTICE
from zbr.models import (
    Endpoint,
    JobOutcome,
    JobResult,
    JobState,
    Snapshot,
    StreamKind,
    UsageSample,
)
from zbr.planner import plan_transfer
from zbr.retention import enforce_retention
from zbr.usage import report_deltas, take_sample

if TYPE_CHECKING:
    from zbr.executor import Executor
    from zbr.models import ReplicationJob, Settings, TransferPlan

log = logging.getLogger(__name__)

SNAPSHOT_LABEL_FORMAT = "%Y-%m-%d-%H%M"

# (endpoint, elevate) -> executor for that remote end
Connect = Callable[[Endpoint, bool], "Executor"]


class ClockError(Exception):
    """The current time cannot be trusted; no retention math is possible."""


def ssh_connect(settings: "Settings") -> Connect:
    def connect(endpoint: Endpoint, elevate: bool) -> "Executor":
        return SSHExecutor(
            host=endpoint.host,
            user=endpoint.user,
            port=endpoint.port,
            elevate=elevate,
            elevate_command=settings.elevate_command,
        )
    return connect


def snapshot_label(now: int) -> str:
    return time.strftime(SNAPSHOT_LABEL_FORMAT, time.localtime(now))


@dataclass
class JobContext:
    job: "ReplicationJob"
    settings: "Settings"
    now: int
    src: "Executor"
    connect: Connect
    log_stream: IO[bytes] | None = None
    dry_run: bool = False
    # Filled in as the job advances
    endpoint: Endpoint | None = None
    dst_reader: "Executor | None" = None
    dst_writer: "Executor | None" = None
    local_snaps: list[Snapshot] = field(default_factory=list)
    remote_snaps: list[Snapshot] = field(default_factory=list)
    new_snapshot: Snapshot | None = None
    plan: "TransferPlan | None" = None
    outcome: JobOutcome | None = None
    usage_before: UsageSample | None = None
    destroyed: list[Snapshot] = field(default_factory=list)
    deltas: list[tuple[str, int]] = field(default_factory=list)

    @property
    def mirror(self) -> str:
        """The destination dataset that receives the job's source dataset."""
        return self.endpoint.mirror_of(self.job.source)

    @property
    def mirror_label(self) -> str:
        if self.endpoint.is_remote:
            return f"{self.endpoint.user_host}:{self.mirror}"
        return self.mirror


def probe(executor: "Executor") -> bool:
    """Return True if the executor's host is reachable and accepts the user."""
    try:
        executor.run(["true"])
    except ExecutorError as e:
        log.debug("probe of %s failed: %s", executor.label, e)
        return False
    return True


def resolve_target(
    specifier: str,
    settings: "Settings",
    local: "Executor",
    connect: Connect,
) -> tuple[Endpoint, "Executor", "Executor"] | None:
    """
    Return (endpoint, reader, writer) for a destination specifier.

    The writer runs mutating commands (receive, destroy) and is elevated
    unless the remote user is the administrative account. Returns None when
    a remote host cannot be reached.
    """
    endpoint = Endpoint.parse(specifier, port=settings.ssh_port)
    if not endpoint.is_remote:
        return endpoint, local, local

    reader = connect(endpoint, False)
    if not probe(reader):
        log.log(NOTICE, "%s is unreachable as %s", endpoint.host, endpoint.user)
        return None
    if settings.needs_elevation(endpoint):
        writer = connect(endpoint, True)
    else:
        writer = reader
    return endpoint, reader, writer


def execute_plan(
    plan: "TransferPlan",
    src_executor: "Executor",
    dst_executor: "Executor",
    dst_root: str,
    dst_dataset: str,
    zfs_cmd: str = "zfs",
    log_stream: IO[bytes] | None = None,
    dry_run: bool = False,
    replan: Callable[[], "TransferPlan"] | None = None,
) -> JobOutcome:
    """
    Run the plan's streams in order and return the outcome of the last one.

    A failed resume is discarded and the plan goes on; a failed bridge
    stops the plan before the main stream is attempted. After a resume
    completes, the remaining streams come from replan().
    """
    recv_cmd = plan.recv_args(dst_root, zfs_cmd)
    streams = list(plan.streams)
    while streams:
        stream = streams.pop(0)
        log.info("Sending %s", stream.describe())
        try:
            rc = zfs.send_stream(
                stream.send_args(zfs_cmd),
                recv_cmd,
                src_executor,
                dst_executor,
                log_stream=log_stream,
                dry_run=dry_run,
            )
        except ExecutorError as e:
            log.error("  %s", e)
            rc = e.returncode
        if rc == 0:
            if stream.kind is StreamKind.RESUME and replan is not None:
                plan = replan()
                streams = [s for s in plan.streams if s.kind is not StreamKind.RESUME]
            continue

        if stream is plan.main:
            return JobOutcome(transfer_succeeded=False, exit_code=rc)
        if stream.kind is StreamKind.RESUME:
            log.log(NOTICE, "resuming the interrupted receive into %s failed (exit %d), discarding it",
                    dst_dataset, rc)
            try:
                zfs.abort_resumable_receive(dst_dataset, dst_executor, zfs=zfs_cmd, dry_run=dry_run)
            except ExecutorError as e:
                log.log(NOTICE, "failed to discard the interrupted receive into %s: %s", dst_dataset, e)
            continue
        log.log(NOTICE, "failed to realign %s with %s (exit %d), not sending @%s",
                dst_dataset, stream.describe(), rc, plan.new_snapshot.name)
        return JobOutcome(transfer_succeeded=False, exit_code=rc)

    return JobOutcome(transfer_succeeded=True, exit_code=0)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _validate(ctx: JobContext) -> JobState:
    if not zfs.dataset_exists(ctx.job.source, ctx.src, ctx.settings.zfs):
        log.log(NOTICE, 'source dataset "%s" in configuration entry #%d does not exist; omitting',
                ctx.job.source, ctx.job.ordinal)
        return JobState.SKIPPED_MISSING_SOURCE
    return JobState.RESOLVING_TARGET


def _resolve_target(ctx: JobContext) -> JobState:
    resolved = resolve_target(ctx.job.destination, ctx.settings, ctx.src, ctx.connect)
    if resolved is None:
        return JobState.SKIPPED_UNREACHABLE_TARGET
    ctx.endpoint, ctx.dst_reader, ctx.dst_writer = resolved

    if not zfs.dataset_exists(ctx.endpoint.dataset, ctx.dst_reader, ctx.settings.zfs):
        log.log(NOTICE, 'target dataset "%s" in configuration entry #%d does not exist; omitting',
                ctx.endpoint.dataset, ctx.job.ordinal)
        return JobState.SKIPPED_MISSING_TARGET
    return JobState.SNAPSHOTTING


def _snapshot(ctx: JobContext) -> JobState:
    zfs_cmd = ctx.settings.zfs
    ctx.local_snaps = zfs.list_snapshots(ctx.job.source, ctx.src, zfs_cmd)
    ctx.remote_snaps = zfs.list_snapshots(ctx.mirror, ctx.dst_reader, zfs_cmd)
    ctx.usage_before = take_sample(ctx.job.source, ctx.mirror, ctx.src, ctx.dst_reader, zfs_cmd)
    log.debug("%s: %d local, %d remote snapshots",
              ctx.job.source, len(ctx.local_snaps), len(ctx.remote_snaps))

    ctx.new_snapshot = Snapshot(ctx.job.source, snapshot_label(ctx.now), creation=ctx.now)
    try:
        zfs.create_snapshot(ctx.new_snapshot, ctx.src, zfs=zfs_cmd, dry_run=ctx.dry_run)
    except ExecutorError as e:
        log.log(NOTICE, "failed to create snapshot %s, no aging: %s", ctx.new_snapshot.full_name, e)
        ctx.outcome = JobOutcome(transfer_succeeded=False, exit_code=e.returncode)
        return JobState.SKIPPING_RETENTION
    return JobState.PLANNING


def _plan(ctx: JobContext) -> JobState:
    settings = ctx.settings
    caps = detect.detect_capabilities(
        ctx.job.source, ctx.endpoint.dataset, ctx.src, ctx.dst_reader, settings
    )
    raw = detect.requires_raw_send(ctx.job.source, caps, ctx.src, settings)
    token = None
    if caps.resumable_receive:
        token = detect.receive_resume_token(ctx.mirror, ctx.dst_reader, settings.zfs)

    ctx.plan = plan_transfer(
        ctx.local_snaps,
        ctx.new_snapshot,
        ctx.remote_snaps,
        raw=raw,
        resumable=caps.resumable_receive,
        resume_token=token,
        seed_empty_destination=settings.seed_empty_destination,
    )
    log.info("Plan for %s -> %s: %s%s%s",
             ctx.job.source, ctx.mirror_label,
             ", then ".join(s.describe() for s in ctx.plan.streams),
             " (raw)" if raw else "",
             " (resumable)" if caps.resumable_receive else "")
    return JobState.TRANSFERRING


def _replan(ctx: JobContext) -> "TransferPlan":
    """Plan again from the destination's snapshots after a resumed receive."""
    ctx.remote_snaps = zfs.list_snapshots(ctx.mirror, ctx.dst_reader, ctx.settings.zfs)
    ctx.plan = plan_transfer(
        ctx.local_snaps,
        ctx.new_snapshot,
        ctx.remote_snaps,
        raw=ctx.plan.raw,
        resumable=ctx.plan.resumable,
        seed_empty_destination=ctx.settings.seed_empty_destination,
    )
    log.info("Replanned %s -> %s after resuming: %s",
             ctx.job.source, ctx.mirror_label,
             ", then ".join(s.describe() for s in ctx.plan.streams))
    return ctx.plan


def _transfer(ctx: JobContext) -> JobState:
    ctx.outcome = execute_plan(
        ctx.plan,
        ctx.src,
        ctx.dst_writer,
        ctx.endpoint.dataset,
        ctx.mirror,
        zfs_cmd=ctx.settings.zfs,
        log_stream=ctx.log_stream,
        dry_run=ctx.dry_run,
        replan=lambda: _replan(ctx),
    )
    if ctx.outcome.transfer_succeeded:
        return JobState.RETENTION_ENFORCING
    log.log(NOTICE, "failed to replicate %s to %s, no aging (exit %d)",
            ctx.new_snapshot.full_name, ctx.endpoint.label, ctx.outcome.exit_code)
    return JobState.SKIPPING_RETENTION


def _enforce_retention(ctx: JobContext) -> JobState:
    ctx.destroyed = enforce_retention(
        ctx.local_snaps,
        ctx.job.retention_days,
        ctx.now,
        ctx.src,
        ctx.dst_writer,
        ctx.mirror,
        zfs_cmd=ctx.settings.zfs,
        dry_run=ctx.dry_run,
    )
    return JobState.ACCOUNTING


def _skip_retention(ctx: JobContext) -> JobState:
    log.info("Skipping retention for %s", ctx.job.source)
    return JobState.ACCOUNTING


def _account(ctx: JobContext) -> JobState:
    after = take_sample(ctx.job.source, ctx.mirror, ctx.src, ctx.dst_reader, ctx.settings.zfs)
    # Locations as configured: the source's parent and the destination specifier
    local_where = ctx.job.source.rsplit("/", 1)[0]
    ctx.deltas = report_deltas(
        ctx.usage_before, after, local_where, ctx.job.destination, ctx.job.source
    )
    return JobState.DONE


_STAGES: dict[JobState, Callable[[JobContext], JobState]] = {
    JobState.VALIDATING: _validate,
    JobState.RESOLVING_TARGET: _resolve_target,
    JobState.SNAPSHOTTING: _snapshot,
    JobState.PLANNING: _plan,
    JobState.TRANSFERRING: _transfer,
    JobState.RETENTION_ENFORCING: _enforce_retention,
    JobState.SKIPPING_RETENTION: _skip_retention,
    JobState.ACCOUNTING: _account,
}


def run_job(ctx: JobContext) -> JobResult:
    """Drive one job from VALIDATING to a terminal state."""
    state = JobState.VALIDATING
    while not state.is_terminal:
        try:
            state = _STAGES[state](ctx)
        except ExecutorError as e:
            log.log(NOTICE, "configuration entry #%d (%s) aborted while %s: %s",
                    ctx.job.ordinal, ctx.job.source, state.value, e)
            if ctx.new_snapshot is not None and ctx.outcome is None:
                ctx.outcome = JobOutcome(transfer_succeeded=False, exit_code=e.returncode)
            state = JobState.ABORTED
    return JobResult(
        job=ctx.job,
        state=state,
        outcome=ctx.outcome,
        plan=ctx.plan,
        destroyed=ctx.destroyed,
        deltas=ctx.deltas,
    )


def current_epoch(clock: Callable[[], float]) -> int:
    try:
        now = int(clock())
    except (OSError, OverflowError, ValueError) as e:
        raise ClockError(f"failed to determine current time: {e}") from e
    if now <= 0:
        raise ClockError(f"failed to determine current time: got {now}")
    return now


def run_batch(
    jobs: list["ReplicationJob"],
    settings: "Settings",
    src_executor: "Executor",
    connect: Connect,
    clock: Callable[[], float] = time.time,
    log_stream: IO[bytes] | None = None,
    dry_run: bool = False,
) -> list[JobResult]:
    """
    Run every enabled job in order and return their results.

    Raises ClockError before any job runs when the time is unknown.
    """
    now = current_epoch(clock)

    results = []
    for job in jobs:
        if not job.enabled:
            log.debug("configuration entry #%d (%s) is disabled", job.ordinal, job.source)
            continue
        log.info("%s", "=" * 60)
        log.info("Job #%d: %s -> %s (keep %d day(s))",
                 job.ordinal, job.source, job.destination, job.retention_days)
        ctx = JobContext(
            job=job,
            settings=settings,
            now=now,
            src=src_executor,
            connect=connect,
            log_stream=log_stream,
            dry_run=dry_run,
        )
        results.append(run_job(ctx))

    replicated = sum(1 for r in results if r.outcome and r.outcome.transfer_succeeded)
    failed = sum(1 for r in results if r.outcome and not r.outcome.transfer_succeeded)
    skipped = len(results) - replicated - failed
    prefix = "[dry-run] " if dry_run else ""
    log.info("%s", "=" * 60)
    log.info("%sBackup complete: %d replicated, %d failed, %d skipped",
             prefix, replicated, failed, skipped)
    return results
