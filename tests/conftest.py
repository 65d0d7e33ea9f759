"""MockExecutor and shared fixtures for testing."""
from __future__ import annotations

import io
import subprocess
from unittest.mock import MagicMock

from zbr.backup import snapshot_label

# 2025-10-09, well after every snapshot below
NOW = 1_760_000_000
DAY = 86400


class MockExecutor:
    """
    Executor that returns pre-scripted responses for commands.

    responses: dict mapping tuple(cmd) -> stdout string, an Exception to
    raise, or a list of those returned one per call (the last one repeats).
    If the command isn't found, raises KeyError (to catch unexpected calls in tests).

    popen_returncodes maps tuple(cmd) -> exit status of a piped command.
    """

    def __init__(
        self,
        responses: dict | None = None,
        popen_returncodes: dict | None = None,
        label: str = "mock",
    ):
        self.responses: dict = responses or {}
        self.popen_returncodes: dict = popen_returncodes or {}
        self._label = label
        self.calls: list[list[str]] = []  # record of all commands run
        self.popen_calls: list[list[str]] = []

    @property
    def label(self) -> str:
        return self._label

    def run(self, cmd: list[str]) -> str:
        self.calls.append(cmd)
        key = tuple(cmd)
        if key not in self.responses:
            raise KeyError(f"MockExecutor: unexpected command: {cmd}")
        result = self.responses[key]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    def popen(self, cmd: list[str], **_kwargs) -> subprocess.Popen:
        """
        For send/recv pipe tests: record the call and return a mock Popen
        that exits with the scripted status (0 by default).
        """
        self.calls.append(cmd)
        self.popen_calls.append(cmd)
        rc = self.popen_returncodes.get(tuple(cmd), 0)

        mock_proc = MagicMock(spec=subprocess.Popen)
        mock_proc.stdout = io.BytesIO(b"")
        mock_proc.stdin = io.BytesIO(b"")
        mock_proc.returncode = rc
        mock_proc.wait.return_value = rc
        return mock_proc

    def destroyed(self) -> list[str]:
        return [c[-1] for c in self.calls if c[:2] == ["zfs", "destroy"]]


# ---------------------------------------------------------------------------
# Command keys
# ---------------------------------------------------------------------------

def exists_key(dataset: str) -> tuple:
    return ("zfs", "get", "-Hp", "-o", "value", "creation", dataset)


def list_key(dataset: str) -> tuple:
    return (
        "zfs", "list", "-Hp", "-t", "snapshot", "-r", "-d", "1",
        "-o", "name,creation", "-S", "creation", dataset,
    )


def prop_key(dataset: str, prop: str) -> tuple:
    return ("zfs", "get", "-Hp", "-o", "value", prop, dataset)


def feature_key(pool: str, feature: str) -> tuple:
    return ("zpool", "get", "-H", "-o", "value", f"feature@{feature}", pool)


def snap_list_output(snaps: list[tuple[str, int]]) -> str:
    """Render (full_name, creation) pairs the way zfs list -Hp prints them."""
    return "".join(f"{name}\t{creation}\n" for name, creation in snaps)


def make_job_responses(
    src: str = "tank/data",
    dst_root: str = "pool/backups",
    src_snaps: list[tuple[str, int]] | None = None,
    dst_snaps: list[tuple[str, int]] | None = None,
    usage_before: tuple[int, int] = (0, 0),
    usage_after: tuple[int, int] = (0, 0),
    encryption: str = "off",
    encryption_feature: str = "enabled",
    extensible_dataset: str = "active",
    resume_token: str = "-",
    now: int = NOW,
) -> tuple[dict, dict]:
    """
    Return (src_responses, dst_responses) for one full job run.

    Snapshot lists are newest first. Every destroy of a listed snapshot
    succeeds.
    """
    src_snaps = src_snaps or []
    dst_snaps = dst_snaps or []
    mirror = f"{dst_root}/{src.rsplit('/', 1)[-1]}"
    new_snap = f"{src}@{snapshot_label(now)}"

    src_responses = {
        exists_key(src): "1700000000\n",
        list_key(src): snap_list_output(src_snaps),
        prop_key(src, "usedbysnapshots"): [f"{usage_before[0]}\n", f"{usage_after[0]}\n"],
        prop_key(src, "encryption"): f"{encryption}\n",
        feature_key(src.split("/")[0], "encryption"): f"{encryption_feature}\n",
        ("zfs", "snapshot", "-r", new_snap): "",
    }
    for name, _ in src_snaps:
        src_responses[("zfs", "destroy", "-r", name)] = ""

    dst_responses = {
        ("true",): "",
        exists_key(dst_root): "1700000000\n",
        list_key(mirror): snap_list_output(dst_snaps),
        prop_key(mirror, "usedbysnapshots"): [f"{usage_before[1]}\n", f"{usage_after[1]}\n"],
        prop_key(mirror, "receive_resume_token"): f"{resume_token}\n",
        feature_key(dst_root.split("/")[0], "extensible_dataset"): f"{extensible_dataset}\n",
    }
    for name, _ in src_snaps:
        label = name.split("@", 1)[1]
        dst_responses[("zfs", "destroy", "-r", f"{mirror}@{label}")] = ""

    return src_responses, dst_responses
