"""Load the job file and validate the YAML settings file."""
from __future__ import annotations

import logging

import yaml

from zbr.logs import NOTICE
from zbr.models import Endpoint, ReplicationJob, ReportTransport, Settings

log = logging.getLogger(__name__)


class ConfigError(Exception):
    pass


_TRI_STATE = {"auto": None, True: True, False: False}

_SETTINGS_KEYS = {
    "tool_path_prefix",
    "always_elevate_remote",
    "admin_user",
    "elevate_command",
    "ssh_port",
    "log_dir",
    "program_name",
    "report_transport",
    "seed_empty_destination",
    "capabilities",
}


def parse_job_line(line: str, ordinal: int) -> ReplicationJob:
    """Parse 'source destination retention_days enabled'."""
    fields = line.split()
    if len(fields) != 4:
        raise ConfigError(
            f"Job #{ordinal}: expected 4 fields "
            f"(source destination days enabled), got {len(fields)}"
        )
    source, destination, keep, enabled = fields
    try:
        retention_days = int(keep)
    except ValueError:
        raise ConfigError(f"Job #{ordinal}: retention {keep!r} is not an integer")
    if retention_days < 0:
        raise ConfigError(f"Job #{ordinal}: retention must be >= 0, got {retention_days}")
    try:
        Endpoint.parse(destination)
    except ValueError as e:
        raise ConfigError(f"Job #{ordinal}: {e}")
    return ReplicationJob(
        source=source,
        destination=destination,
        retention_days=retention_days,
        enabled=enabled == "Y",
        ordinal=ordinal,
    )


def load_jobs(path: str) -> list[ReplicationJob]:
    """Return every job in the file, disabled ones included.

    Blank lines and lines starting with '#' are skipped and do not count
    towards the job ordinal. A malformed line is logged and skipped; it
    keeps its ordinal so the entries after it are numbered as in the file.
    Only a file that cannot be read is an error.
    """
    jobs = []
    ordinal = 0
    with open(path) as f:
        for line in f:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            ordinal += 1
            try:
                jobs.append(parse_job_line(stripped, ordinal))
            except ConfigError as e:
                log.log(NOTICE, "%s: %s; omitting", path, e)
    return jobs


def _bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _str(raw: dict, key: str, default: str) -> str:
    value = raw.get(key, default)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return value


def _tri_state(caps: dict, key: str) -> bool | None:
    value = caps.get(key, "auto")
    if value not in _TRI_STATE:
        raise ConfigError(f"capabilities.{key} must be auto, true or false, got {value!r}")
    return _TRI_STATE[value]


def load_settings(path: str | None) -> Settings:
    if path is None:
        return Settings()

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return Settings()
    if not isinstance(raw, dict):
        raise ConfigError(f"Settings must be a YAML mapping: {path}")

    unknown = sorted(set(raw) - _SETTINGS_KEYS)
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(unknown)}")

    try:
        transport = ReportTransport(raw.get("report_transport", "mailx"))
    except ValueError:
        choices = ", ".join(t.value for t in ReportTransport)
        raise ConfigError(f"report_transport must be one of: {choices}")

    port = raw.get("ssh_port", 22)
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigError(f"ssh_port must be a port number, got {port!r}")

    program_name = _str(raw, "program_name", "zfs-backup")
    if not program_name:
        raise ConfigError("program_name must not be empty")

    caps = raw.get("capabilities") or {}
    if not isinstance(caps, dict):
        raise ConfigError("capabilities must be a mapping")

    return Settings(
        tool_path_prefix=_str(raw, "tool_path_prefix", ""),
        always_elevate_remote=_bool(raw, "always_elevate_remote", False),
        admin_user=_str(raw, "admin_user", "root"),
        elevate_command=_str(raw, "elevate_command", "sudo"),
        ssh_port=port,
        log_dir=_str(raw, "log_dir", "/var/log") or "/tmp",
        program_name=program_name,
        report_transport=transport,
        seed_empty_destination=_bool(raw, "seed_empty_destination", False),
        force_raw=_tri_state(caps, "raw"),
        force_resumable=_tri_state(caps, "resumable"),
    )
