"""Data models for zfs-backup-replicator."""
from __future__ import annotations

import enum
import posixpath
import re
from dataclasses import dataclass, field

# A destination specifier names a remote host when it starts with "user@".
# Dataset names cannot contain '@', so this never matches a local dataset.
_REMOTE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*@")


@dataclass(frozen=True, order=True)
class Snapshot:
    """A ZFS snapshot: pool/dataset@name."""
    dataset: str
    name: str  # just the snapshot name after '@'
    creation: int = field(default=0, compare=False)  # epoch seconds

    @property
    def full_name(self) -> str:
        return f"{self.dataset}@{self.name}"

    @classmethod
    def parse(cls, full_name: str, creation: int = 0) -> "Snapshot":
        dataset, _, name = full_name.partition("@")
        if not name:
            raise ValueError(f"Not a snapshot: {full_name!r}")
        return cls(dataset=dataset, name=name, creation=creation)


@dataclass(frozen=True)
class Endpoint:
    """Where a job's snapshots are received: a local or remote dataset."""
    dataset: str
    host: str | None = None
    user: str | None = None
    port: int = 22

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    @property
    def user_host(self) -> str:
        return f"{self.user}@{self.host}"

    @property
    def label(self) -> str:
        if self.is_remote:
            return f"{self.user_host}:{self.dataset}"
        return self.dataset

    def mirror_of(self, src_dataset: str) -> str:
        """Return the dataset that receives src_dataset under this root.

        Example: tank/home/data -> backup/pool/data (zfs recv -e)
        """
        return f"{self.dataset}/{posixpath.basename(src_dataset)}"

    @classmethod
    def parse(cls, specifier: str, port: int = 22) -> "Endpoint":
        """Parse 'dataset' or 'user@host:dataset'."""
        if not _REMOTE_RE.match(specifier):
            return cls(dataset=specifier)
        netloc, sep, dataset = specifier.partition(":")
        user, _, host = netloc.partition("@")
        if not sep or not dataset or not host:
            raise ValueError(f"Invalid remote destination: {specifier!r}")
        return cls(dataset=dataset, host=host, user=user, port=port)


@dataclass(frozen=True)
class ReplicationJob:
    """One line of the job file."""
    source: str
    destination: str
    retention_days: int
    enabled: bool
    ordinal: int  # 1-based position in the job file

    @property
    def retention_seconds(self) -> int:
        return self.retention_days * 86400


class ReportTransport(str, enum.Enum):
    NONE = "none"
    MAILX = "mailx"
    MAIL = "mail"


@dataclass
class Settings:
    tool_path_prefix: str = ""
    always_elevate_remote: bool = False
    admin_user: str = "root"
    elevate_command: str = "sudo"
    ssh_port: int = 22
    log_dir: str = "/var/log"
    program_name: str = "zfs-backup"
    report_transport: ReportTransport = ReportTransport.MAILX
    seed_empty_destination: bool = False
    # None means detect on the pool
    force_raw: bool | None = None
    force_resumable: bool | None = None

    @property
    def zfs(self) -> str:
        return f"{self.tool_path_prefix}zfs"

    @property
    def zpool(self) -> str:
        return f"{self.tool_path_prefix}zpool"

    def needs_elevation(self, endpoint: Endpoint) -> bool:
        if not endpoint.is_remote:
            return False
        return self.always_elevate_remote or endpoint.user != self.admin_user


@dataclass(frozen=True)
class Capabilities:
    encryption_feature: bool = False
    resumable_receive: bool = False


class StreamKind(enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    BRIDGE = "bridge"
    RESUME = "resume"


@dataclass(frozen=True)
class SendStream:
    """A single zfs send | zfs recv pipeline."""
    kind: StreamKind
    target: Snapshot | None = None
    base: Snapshot | None = None
    raw: bool = False
    token: str | None = None

    def send_args(self, zfs: str = "zfs") -> list[str]:
        if self.kind is StreamKind.RESUME:
            return [zfs, "send", "-t", self.token]
        cmd = [zfs, "send", "-R"]
        if self.raw:
            cmd.append("-w")
        if self.base is not None:
            # -I carries every intermediate snapshot, -i only the endpoints
            flag = "-I" if self.kind is StreamKind.BRIDGE else "-i"
            cmd += [flag, self.base.full_name]
        cmd.append(self.target.full_name)
        return cmd

    def describe(self) -> str:
        if self.kind is StreamKind.RESUME:
            return "resume of interrupted receive"
        if self.base is None:
            return f"full stream of @{self.target.name}"
        return f"{self.kind.value} @{self.base.name} -> @{self.target.name}"


@dataclass
class TransferPlan:
    new_snapshot: Snapshot
    streams: list[SendStream]
    raw: bool = False
    resumable: bool = False

    @property
    def main(self) -> SendStream:
        """The stream that delivers new_snapshot; its status gates retention."""
        return self.streams[-1]

    @property
    def bridge(self) -> SendStream | None:
        for stream in self.streams[:-1]:
            if stream.kind in (StreamKind.BRIDGE, StreamKind.FULL):
                return stream
        return None

    @property
    def baseline(self) -> str | None:
        """None for a full send, else 'incremental' or 'bridging'."""
        if self.main.base is None:
            return None
        return "bridging" if self.bridge is not None else "incremental"

    def recv_args(self, dst_root: str, zfs: str = "zfs") -> list[str]:
        cmd = [zfs, "recv", "-F", "-e", "-u", "-v"]
        if self.resumable:
            cmd.append("-s")
        cmd.append(dst_root)
        return cmd


@dataclass(frozen=True)
class UsageSample:
    """Bytes used by snapshots on each end."""
    local: int = 0
    remote: int = 0


@dataclass(frozen=True)
class JobOutcome:
    transfer_succeeded: bool
    exit_code: int


class JobState(enum.Enum):
    VALIDATING = "validating"
    RESOLVING_TARGET = "resolving-target"
    SNAPSHOTTING = "snapshotting"
    PLANNING = "planning"
    TRANSFERRING = "transferring"
    RETENTION_ENFORCING = "retention-enforcing"
    SKIPPING_RETENTION = "skipping-retention"
    ACCOUNTING = "accounting"
    DONE = "done"
    SKIPPED_MISSING_SOURCE = "skipped-missing-source"
    SKIPPED_UNREACHABLE_TARGET = "skipped-unreachable-target"
    SKIPPED_MISSING_TARGET = "skipped-missing-target"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (
            JobState.DONE,
            JobState.SKIPPED_MISSING_SOURCE,
            JobState.SKIPPED_UNREACHABLE_TARGET,
            JobState.SKIPPED_MISSING_TARGET,
            JobState.ABORTED,
        )


@dataclass
class JobResult:
    job: ReplicationJob
    state: JobState
    outcome: JobOutcome | None = None
    plan: TransferPlan | None = None
    destroyed: list[Snapshot] = field(default_factory=list)
    # (where, delta bytes) for each side
    deltas: list[tuple[str, int]] = field(default_factory=list)
