"""Tests for zbr.zfs module."""
from __future__ import annotations

import io

from zbr import zfs
from zbr.executor import ExecutorError
from zbr.models import Snapshot
from tests.conftest import MockExecutor, exists_key, list_key, prop_key


def test_dataset_exists_true():
    exec_ = MockExecutor({exists_key("tank/data"): "1700000000\n"})
    assert zfs.dataset_exists("tank/data", exec_) is True


def test_dataset_exists_false_on_error():
    exec_ = MockExecutor({
        exists_key("tank/nonexistent"):
            ExecutorError(["zfs", "get"], 1, "dataset does not exist"),
    })
    assert zfs.dataset_exists("tank/nonexistent", exec_) is False


def test_dataset_exists_false_on_empty_output():
    exec_ = MockExecutor({exists_key("tank/data"): "\n"})
    assert zfs.dataset_exists("tank/data", exec_) is False


def test_dataset_exists_uses_tool_path():
    exec_ = MockExecutor({
        ("/usr/sbin/zfs", "get", "-Hp", "-o", "value", "creation", "tank/data"): "1\n",
    })
    assert zfs.dataset_exists("tank/data", exec_, zfs="/usr/sbin/zfs") is True


def test_list_snapshots_newest_first_with_creation():
    exec_ = MockExecutor({
        list_key("tank/data"): (
            "tank/data@2025-10-08-0300\t1759892400\n"
            "tank/data@2025-10-07-0300\t1759806000\n"
        ),
    })
    snaps = zfs.list_snapshots("tank/data", exec_)
    assert [s.name for s in snaps] == ["2025-10-08-0300", "2025-10-07-0300"]
    assert snaps[0].creation == 1759892400
    assert snaps[0].dataset == "tank/data"


def test_list_snapshots_filters_children():
    """Snapshots from child datasets should not appear in parent's list."""
    exec_ = MockExecutor({
        list_key("tank/data"): (
            "tank/data@snap-a\t3\n"
            "tank/data/child@snap-a\t3\n"
            "tank/data@snap-b\t2\n"
        ),
    })
    snaps = zfs.list_snapshots("tank/data", exec_)
    assert len(snaps) == 2
    assert all(s.dataset == "tank/data" for s in snaps)


def test_list_snapshots_empty_when_none():
    exec_ = MockExecutor({list_key("tank/data"): ""})
    assert zfs.list_snapshots("tank/data", exec_) == []


def test_list_snapshots_empty_when_dataset_missing():
    exec_ = MockExecutor({
        list_key("pool/backups/data"): ExecutorError(["zfs", "list"], 1, "does not exist"),
    })
    assert zfs.list_snapshots("pool/backups/data", exec_) == []


def test_get_property_strips_output():
    exec_ = MockExecutor({prop_key("tank/data", "usedbysnapshots"): "4096\n"})
    assert zfs.get_property("tank/data", "usedbysnapshots", exec_) == "4096"


def test_create_snapshot_is_recursive():
    exec_ = MockExecutor({("zfs", "snapshot", "-r", "tank/data@now"): ""})
    zfs.create_snapshot(Snapshot("tank/data", "now"), exec_)
    assert exec_.calls == [["zfs", "snapshot", "-r", "tank/data@now"]]


def test_create_snapshot_dry_run(capsys):
    exec_ = MockExecutor({})
    zfs.create_snapshot(Snapshot("tank/data", "now"), exec_, dry_run=True)
    assert exec_.calls == []
    assert "zfs snapshot -r tank/data@now" in capsys.readouterr().out


def test_send_stream_pipes_send_into_recv():
    src_exec = MockExecutor({})
    dst_exec = MockExecutor({})
    send = ["zfs", "send", "-R", "tank/data@b"]
    recv = ["zfs", "recv", "-F", "-e", "-u", "-v", "pool/backups"]
    rc = zfs.send_stream(send, recv, src_exec, dst_exec, log_stream=io.BytesIO())
    assert rc == 0
    assert src_exec.popen_calls == [send]
    assert dst_exec.popen_calls == [recv]


def test_send_stream_reports_recv_status():
    recv = ["zfs", "recv", "-F", "-e", "-u", "-v", "pool/backups"]
    src_exec = MockExecutor({})
    dst_exec = MockExecutor(popen_returncodes={tuple(recv): 1})
    rc = zfs.send_stream(["zfs", "send", "-R", "tank/data@b"], recv, src_exec, dst_exec)
    assert rc == 1


def test_send_stream_reports_send_status_when_recv_succeeds():
    send = ["zfs", "send", "-R", "tank/data@b"]
    src_exec = MockExecutor(popen_returncodes={tuple(send): 141})
    dst_exec = MockExecutor({})
    rc = zfs.send_stream(send, ["zfs", "recv", "pool/backups"], src_exec, dst_exec)
    assert rc == 141


def test_send_stream_dry_run(capsys):
    src_exec = MockExecutor({})
    dst_exec = MockExecutor({})
    rc = zfs.send_stream(
        ["zfs", "send", "-R", "tank/data@b"],
        ["zfs", "recv", "pool/backups"],
        src_exec, dst_exec, dry_run=True,
    )
    assert rc == 0
    assert src_exec.popen_calls == []
    captured = capsys.readouterr()
    assert "zfs send -R tank/data@b | zfs recv pool/backups" in captured.out


def test_destroy_snapshot_is_recursive():
    exec_ = MockExecutor({("zfs", "destroy", "-r", "tank/data@old"): ""})
    zfs.destroy_snapshot(Snapshot("tank/data", "old"), exec_)
    assert exec_.destroyed() == ["tank/data@old"]


def test_destroy_snapshot_dry_run(capsys):
    exec_ = MockExecutor({})
    zfs.destroy_snapshot(Snapshot("tank/data", "old"), exec_, dry_run=True)
    assert exec_.calls == []
    assert "zfs destroy -r tank/data@old" in capsys.readouterr().out


def test_abort_resumable_receive():
    exec_ = MockExecutor({("zfs", "recv", "-A", "pool/backups/data"): ""})
    zfs.abort_resumable_receive("pool/backups/data", exec_)
    assert exec_.calls == [["zfs", "recv", "-A", "pool/backups/data"]]
