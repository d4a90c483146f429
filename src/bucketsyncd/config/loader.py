"""
Configuration file loading.

Reads a YAML document shaped like::

    log_level: info
    log_json: false
    remotes:
      - {name: minio1, endpoint: minio.example.lan, accessKey: ..., secretKey: ...}
    outbound:
      - {name: KSK1, source: "/data/out/*.csv", destination: "s3://minio.example.lan/bucket/prefix"}
    inbound:
      - {name: SCANS, source: "amqp://user:pw@broker/vhost", exchange: scans,
         queue: scans-to-desktop, remote: minio1, destination: /data/in}

and turns it into a validated SyncConfig.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from bucketsyncd.config.resolver import resolve_config
from bucketsyncd.connections.webdav import is_webdav_scheme
from bucketsyncd.exceptions import ConfigurationError
from bucketsyncd.sync.destinations import OBJECT_STORE_SCHEMES
from bucketsyncd.sync.types import AckPolicy, InboundWorkflow, OutboundWorkflow, Remote, SyncConfig

DEFAULT_CONFIG_PATH = Path("config.yaml")

BROKER_SCHEMES = ("amqp", "amqps")


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> SyncConfig:
    """
    Load and validate a configuration file.

    Args:
        path: YAML file (default: ./config.yaml)

    Raises:
        ConfigurationError: Missing/unreadable file, malformed YAML or invalid entries
    """
    config_path = Path(path).expanduser().resolve()
    if not config_path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}\n"
            f"  Suggestion: pass --config or create config.yaml in the working directory"
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        if hasattr(e, "problem_mark") and e.problem_mark is not None:
            mark = e.problem_mark
            raise ConfigurationError(
                f"Error parsing {config_path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                f"  {e}\n"
                f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes"
            ) from e
        raise ConfigurationError(f"Error parsing {config_path.name}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {config_path}: {e}") from e

    return parse_config(data)


def parse_config(data: Any) -> SyncConfig:
    """
    Build a SyncConfig from an already-parsed document.

    Every problem is collected before raising, so one run reports them all.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

    data = resolve_config(data)
    problems: list[str] = []

    remotes = [r for r in (_remote(i, raw, problems) for i, raw in enumerate(_section(data, "remotes", problems))) if r]
    outbound = [
        w for w in (_outbound(i, raw, problems) for i, raw in enumerate(_section(data, "outbound", problems))) if w
    ]
    inbound = [
        w for w in (_inbound(i, raw, problems) for i, raw in enumerate(_section(data, "inbound", problems))) if w
    ]

    _check_unique("remotes", [r.name for r in remotes], problems)
    _check_unique("workflows", [w.name for w in outbound] + [w.name for w in inbound], problems)

    remote_names = {r.name for r in remotes}
    for w in inbound:
        if w.remote not in remote_names:
            problems.append(f"inbound '{w.name}': unknown remote '{w.remote}'")

    log_level = str(data.get("log_level", "info"))
    if log_level.lower() not in ("debug", "info", "warn", "warning", "error"):
        problems.append(f"log_level: unknown level '{log_level}'")

    if problems:
        raise ConfigurationError(
            "Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems),
            problems=problems,
        )

    return SyncConfig(
        remotes=tuple(remotes),
        outbound=tuple(outbound),
        inbound=tuple(inbound),
        log_level=log_level.lower(),
        log_json=bool(data.get("log_json", False)),
        log_file=data.get("log_file"),
    )


def _section(data: dict[str, Any], name: str, problems: list[str]) -> list[Any]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        problems.append(f"{name}: must be a list, got {type(value).__name__}")
        return []
    return value


def _fields(
    section: str,
    index: int,
    raw: Any,
    required: tuple[str, ...],
    problems: list[str],
) -> tuple[str, dict[str, Any]] | None:
    if not isinstance(raw, dict):
        problems.append(f"{section}[{index}]: must be a mapping")
        return None
    label = f"{section} '{raw['name']}'" if raw.get("name") else f"{section}[{index}]"
    missing = [key for key in required if raw.get(key) in (None, "")]
    if missing:
        problems.append(f"{label}: missing {', '.join(missing)}")
        return None
    return label, raw


def _remote(index: int, raw: Any, problems: list[str]) -> Remote | None:
    parsed = _fields("remotes", index, raw, ("name", "endpoint", "accessKey", "secretKey"), problems)
    if parsed is None:
        return None
    _, raw = parsed
    return Remote(
        name=str(raw["name"]),
        endpoint=str(raw["endpoint"]),
        access_key=str(raw["accessKey"]),
        secret_key=str(raw["secretKey"]),
        secure=bool(raw.get("secure", True)),
    )


def _outbound(index: int, raw: Any, problems: list[str]) -> OutboundWorkflow | None:
    parsed = _fields("outbound", index, raw, ("name", "source", "destination"), problems)
    if parsed is None:
        return None
    label, raw = parsed

    destination = str(raw["destination"])
    scheme = urlsplit(destination).scheme.lower()
    if scheme not in OBJECT_STORE_SCHEMES and not is_webdav_scheme(scheme):
        problems.append(f"{label}: unsupported destination scheme '{scheme}'")
        return None

    attempts = raw.get("upload_attempts", 1)
    if not isinstance(attempts, int) or isinstance(attempts, bool) or attempts < 1:
        problems.append(f"{label}: upload_attempts must be a positive integer")
        return None

    return OutboundWorkflow(
        name=str(raw["name"]),
        description=str(raw.get("description", "")),
        sensitive=bool(raw.get("sensitive", False)),
        source=str(raw["source"]),
        destination=destination,
        process_with=raw.get("process_with") or raw.get("processWith") or None,
        upload_attempts=attempts,
    )


def _inbound(index: int, raw: Any, problems: list[str]) -> InboundWorkflow | None:
    parsed = _fields(
        "inbound", index, raw, ("name", "source", "exchange", "queue", "remote", "destination"), problems
    )
    if parsed is None:
        return None
    label, raw = parsed

    source = str(raw["source"])
    if urlsplit(source).scheme.lower() not in BROKER_SCHEMES:
        problems.append(f"{label}: source must be an amqp:// or amqps:// URL")
        return None

    try:
        ack_policy = AckPolicy(str(raw.get("ack_policy", AckPolicy.ALWAYS.value)))
    except ValueError:
        allowed = ", ".join(p.value for p in AckPolicy)
        problems.append(f"{label}: ack_policy must be one of {allowed}")
        return None

    return InboundWorkflow(
        name=str(raw["name"]),
        description=str(raw.get("description", "")),
        source=source,
        exchange=str(raw["exchange"]),
        queue=str(raw["queue"]),
        remote=str(raw["remote"]),
        destination=str(raw["destination"]),
        ack_policy=ack_policy,
    )


def _check_unique(kind: str, names: list[str], problems: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            problems.append(f"{kind}: duplicate name '{name}'")
        seen.add(name)
