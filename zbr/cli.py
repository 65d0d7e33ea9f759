"""CLI entry point for zfs-backup-replicator."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime

from zbr.backup import ClockError, resolve_target, run_batch, ssh_connect
from zbr.config import ConfigError, load_jobs, load_settings
from zbr.executor import LocalExecutor
from zbr.logs import (
    NOTICE,
    run_identifier,
    session_log_path,
    setup_logging,
    teardown_logging,
)
from zbr.report import send_report

log = logging.getLogger(__name__)


def _load_settings(args):
    """Return the settings, or None after printing the config error."""
    try:
        return load_settings(args.settings)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return None


def _load_jobs(args):
    """Return the jobs, or None when the job file cannot be read.

    Call after logging is set up so skipped entries are recorded.
    """
    try:
        return load_jobs(args.jobs)
    except OSError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return None


def cmd_run(args) -> int:
    settings = _load_settings(args)
    if settings is None:
        return 1

    run_id = run_identifier(settings.program_name, datetime.now())
    log_path = session_log_path(settings.log_dir, run_id)
    try:
        setup_logging(settings.program_name, log_path, verbose=args.verbose)
    except OSError as e:
        print(f"Cannot open session log {log_path}: {e}", file=sys.stderr)
        teardown_logging()
        return 1

    try:
        jobs = _load_jobs(args)
        if jobs is None:
            return 1

        with open(log_path, "ab") as log_stream:
            try:
                run_batch(
                    jobs,
                    settings,
                    LocalExecutor(),
                    ssh_connect(settings),
                    log_stream=log_stream,
                    dry_run=args.dry_run,
                )
            except ClockError as e:
                log.log(NOTICE, "%s", e)
                return 1

        if args.mail:
            send_report(log_path, run_id, args.mail, settings.report_transport, LocalExecutor())
        return 0
    finally:
        teardown_logging()


def _resolve(job, settings):
    return resolve_target(job.destination, settings, LocalExecutor(), ssh_connect(settings))


def cmd_status(args) -> int:
    """Show, per job, whether the destination holds the latest local snapshot."""
    from zbr import zfs
    from zbr.planner import find_common_snapshot

    settings = _load_settings(args)
    if settings is None:
        return 1
    setup_logging(settings.program_name, syslog=False)
    try:
        jobs = _load_jobs(args)
        if jobs is None:
            return 1
        src_exec = LocalExecutor()

        for job in jobs:
            if not job.enabled:
                print(f"#{job.ordinal} {job.source}: DISABLED")
                continue
            resolved = _resolve(job, settings)
            if resolved is None:
                print(f"#{job.ordinal} {job.source}: UNREACHABLE ({job.destination})")
                continue
            endpoint, dst_exec, _ = resolved
            dst_dataset = endpoint.mirror_of(job.source)
            src_snaps = zfs.list_snapshots(job.source, src_exec, settings.zfs)
            dst_snaps = zfs.list_snapshots(dst_dataset, dst_exec, settings.zfs)
            common = find_common_snapshot(src_snaps, dst_snaps)

            if not src_snaps:
                status = "NO SNAPSHOTS"
            elif common is None:
                status = "NO COMMON SNAPSHOT (next run sends a full or bridging stream)"
            else:
                behind = src_snaps.index(common)
                status = "UP TO DATE" if behind == 0 else f"{behind} snapshot(s) behind"
                status += f" (latest @{src_snaps[0].name})"

            print(f"#{job.ordinal} {job.source}: {status}")

        return 0
    finally:
        teardown_logging()


def cmd_list(args) -> int:
    """List jobs and snapshot counts on source and destination."""
    from zbr import zfs

    settings = _load_settings(args)
    if settings is None:
        return 1
    setup_logging(settings.program_name, syslog=False)
    try:
        jobs = _load_jobs(args)
        if jobs is None:
            return 1
        src_exec = LocalExecutor()

        print(f"{'#':>3} {'Dataset':<35} {'Destination':<35} {'Src snaps':>10} {'Dst snaps':>10}")
        print("-" * 97)
        for job in jobs:
            src_count = len(zfs.list_snapshots(job.source, src_exec, settings.zfs))
            resolved = _resolve(job, settings)
            if resolved is None:
                dst_count = "unreachable"
            else:
                endpoint, dst_exec, _ = resolved
                dst_dataset = endpoint.mirror_of(job.source)
                if zfs.dataset_exists(dst_dataset, dst_exec, settings.zfs):
                    dst_count = str(len(zfs.list_snapshots(dst_dataset, dst_exec, settings.zfs)))
                else:
                    dst_count = "missing"
            print(f"{job.ordinal:>3} {job.source:<35} {job.destination:<35} {src_count:>10} {dst_count:>10}")

        return 0
    finally:
        teardown_logging()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        prog="zbr",
        description="ZFS Backup & Retention: snapshot, replicate and age out datasets",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # Shared options
    def add_common(p):
        p.add_argument("jobs", help="Path to the job file (source destination days Y/N per line)")
        p.add_argument("--settings", "-s", metavar="PATH",
                       help="Path to a YAML settings file")

    p_run = sub.add_parser("run", help="Snapshot, replicate and age out every enabled job")
    add_common(p_run)
    p_run.add_argument("--mail", "-m", metavar="ADDRESS",
                       help="Mail the session log to this address")
    p_run.add_argument("--dry-run", "-n", action="store_true",
                       help="Show what would happen without making changes")
    p_run.add_argument("--verbose", "-v", action="store_true",
                       help="Show every command that is run")
    p_run.set_defaults(func=cmd_run)

    p_status = sub.add_parser("status", help="Show replication state for each job")
    add_common(p_status)
    p_status.set_defaults(func=cmd_status)

    p_list = sub.add_parser("list", help="List jobs and snapshot counts")
    add_common(p_list)
    p_list.set_defaults(func=cmd_list)

    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
