"""ZFS operations using an Executor for dependency injection."""
from __future__ import annotations

import logging
import shlex
import subprocess
from typing import IO, TYPE_CHECKING

from zbr.executor import ExecutorError
from zbr.models import Snapshot

if TYPE_CHECKING:
    from zbr.executor import Executor

log = logging.getLogger(__name__)


def dataset_exists(dataset: str, executor: "Executor", zfs: str = "zfs") -> bool:
    """Return True if the dataset exists and answers a property query.

    The creation property is present on every dataset, so an empty answer or
    an error both mean the dataset is missing or unreachable.
    """
    try:
        output = executor.run([zfs, "get", "-Hp", "-o", "value", "creation", dataset])
    except ExecutorError:
        return False
    return bool(output.strip())


def list_snapshots(dataset: str, executor: "Executor", zfs: str = "zfs") -> list[Snapshot]:
    """Return snapshots for a dataset, newest first."""
    try:
        output = executor.run([
            zfs, "list", "-Hp", "-t", "snapshot", "-r", "-d", "1",
            "-o", "name,creation", "-S", "creation", dataset,
        ])
    except ExecutorError:
        # No dataset means no snapshots yet
        return []
    results = []
    for line in output.splitlines():
        if not line.strip():
            continue
        name, _, creation = line.partition("\t")
        name = name.strip()
        # Only include snapshots directly on this dataset (not children)
        if "@" in name and name.split("@")[0] == dataset:
            results.append(Snapshot.parse(name, creation=int(creation or 0)))
    return results


def get_property(dataset: str, prop: str, executor: "Executor", zfs: str = "zfs") -> str:
    """Return the parsable value of a dataset property."""
    output = executor.run([zfs, "get", "-Hp", "-o", "value", prop, dataset])
    return output.strip()


def create_snapshot(
    snapshot: Snapshot,
    executor: "Executor",
    zfs: str = "zfs",
    dry_run: bool = False,
) -> None:
    """Take a recursive snapshot of the dataset and its children."""
    cmd = [zfs, "snapshot", "-r", snapshot.full_name]
    if dry_run:
        print(f"  [dry-run] {shlex.join(cmd)}")
        return
    executor.run(cmd)


def send_stream(
    send_cmd: list[str],
    recv_cmd: list[str],
    src_executor: "Executor",
    dst_executor: "Executor",
    log_stream: IO[bytes] | None = None,
    dry_run: bool = False,
) -> int:
    """
    Pipe send_cmd into recv_cmd and return the pipeline's exit status.

    The stream flows through an OS pipe, never through this process.
    Diagnostics of both sides go to log_stream (the session log) when given.
    The receive side's status wins; a send failure surfaces when the receive
    side reports success.
    """
    log.info("[send] %s", shlex.join(send_cmd))
    log.info("[recv (%s)] %s", dst_executor.label, shlex.join(recv_cmd))

    if dry_run:
        print(f"  [dry-run] {shlex.join(send_cmd)} | {shlex.join(recv_cmd)}")
        return 0

    if log_stream is not None:
        log_stream.flush()

    try:
        send_proc = src_executor.popen(send_cmd, stdout=subprocess.PIPE, stderr=log_stream)
    except OSError as e:
        raise ExecutorError(send_cmd, 1, str(e)) from e
    try:
        recv_proc = dst_executor.popen(
            recv_cmd,
            stdin=send_proc.stdout,
            stdout=log_stream,
            stderr=subprocess.STDOUT if log_stream is not None else None,
        )
    except OSError as e:
        send_proc.kill()
        send_proc.wait()
        raise ExecutorError(recv_cmd, 1, str(e)) from e
    # Allow send_proc to receive SIGPIPE if recv_proc dies
    send_proc.stdout.close()

    recv_rc = recv_proc.wait()
    send_rc = send_proc.wait()

    if recv_rc != 0:
        return recv_rc
    return send_rc


def abort_resumable_receive(
    dataset: str,
    executor: "Executor",
    zfs: str = "zfs",
    dry_run: bool = False,
) -> None:
    """Discard the saved state of an interrupted resumable receive."""
    cmd = [zfs, "recv", "-A", dataset]
    if dry_run:
        print(f"  [dry-run] {shlex.join(cmd)}")
        return
    executor.run(cmd)


def destroy_snapshot(
    snapshot: Snapshot,
    executor: "Executor",
    zfs: str = "zfs",
    dry_run: bool = False,
) -> None:
    """Destroy a snapshot and the same-named snapshots of all children."""
    cmd = [zfs, "destroy", "-r", snapshot.full_name]
    if dry_run:
        print(f"  [dry-run] {shlex.join(cmd)}")
        return
    log.info("[destroy (%s)] %s", executor.label, shlex.join(cmd))
    executor.run(cmd)
