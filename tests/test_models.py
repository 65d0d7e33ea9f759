"""Tests for zbr.models module."""
from __future__ import annotations

import pytest

from zbr.models import Endpoint, JobState, Settings, Snapshot


def test_snapshot_parse():
    snap = Snapshot.parse("tank/data@2025-10-08-0300", creation=5)
    assert snap.dataset == "tank/data"
    assert snap.name == "2025-10-08-0300"
    assert snap.creation == 5
    assert snap.full_name == "tank/data@2025-10-08-0300"


def test_snapshot_equality_ignores_creation():
    assert Snapshot("tank/data", "a", creation=1) == Snapshot("tank/data", "a", creation=2)


def test_snapshot_parse_rejects_dataset():
    with pytest.raises(ValueError):
        Snapshot.parse("tank/data")


def test_endpoint_local():
    endpoint = Endpoint.parse("pool/backups")
    assert not endpoint.is_remote
    assert endpoint.dataset == "pool/backups"
    assert endpoint.label == "pool/backups"


def test_endpoint_remote():
    endpoint = Endpoint.parse("backup-host@remote:pool/backups")
    assert endpoint.is_remote
    assert endpoint.user == "backup-host"
    assert endpoint.host == "remote"
    assert endpoint.dataset == "pool/backups"
    assert endpoint.port == 22


def test_endpoint_remote_simple_user():
    endpoint = Endpoint.parse("backup@nas.example.com:pool/backups", port=2222)
    assert endpoint.is_remote
    assert endpoint.user == "backup"
    assert endpoint.host == "nas.example.com"
    assert endpoint.dataset == "pool/backups"
    assert endpoint.port == 2222
    assert endpoint.label == "backup@nas.example.com:pool/backups"


def test_endpoint_dataset_keeps_later_colons():
    endpoint = Endpoint.parse("root@host:pool/a:b")
    assert endpoint.dataset == "pool/a:b"


def test_endpoint_remote_requires_dataset():
    with pytest.raises(ValueError):
        Endpoint.parse("root@host:")


def test_endpoint_mirror_uses_basename():
    assert Endpoint.parse("pool/backups").mirror_of("tank/home/data") == "pool/backups/data"


def test_needs_elevation_for_non_admin_user():
    settings = Settings()
    assert settings.needs_elevation(Endpoint.parse("backup@host:pool/b"))
    assert not settings.needs_elevation(Endpoint.parse("root@host:pool/b"))
    assert not settings.needs_elevation(Endpoint.parse("pool/b"))


def test_always_elevate_remote():
    settings = Settings(always_elevate_remote=True)
    assert settings.needs_elevation(Endpoint.parse("root@host:pool/b"))
    assert not settings.needs_elevation(Endpoint.parse("pool/b"))


def test_terminal_states():
    terminal = {s for s in JobState if s.is_terminal}
    assert terminal == {
        JobState.DONE,
        JobState.SKIPPED_MISSING_SOURCE,
        JobState.SKIPPED_UNREACHABLE_TARGET,
        JobState.SKIPPED_MISSING_TARGET,
        JobState.ABORTED,
    }
