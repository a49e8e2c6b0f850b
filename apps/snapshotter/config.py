"""Load snapshot rules from a YAML (or JSON) config file.

The file is either a list of rules or a mapping with a ``rules`` list::

    rules:
      - labels:
          key: snapshot-policy
          value: hourly
        intervalSeconds: 3600
        retentionPeriodHours: 168

``retentionPeriodHours`` may be omitted, in which case the process-wide
default retention applies.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from snapshotter.errors import ConfigError
from snapshotter.models import Label, SnapshotRule

DEFAULT_CONFIG_PATH = Path("/config/config.yaml")
DEFAULT_RETENTION_HOURS = 168


def resolve_config_path(cli_path: str | None) -> Path:
    """Determine which config file to use.

    Precedence: CLI path > ``VOLUME_SNAPSHOT_CONFIG_FILE`` > ``APP_CONFIG`` >
    ``/config/config.yaml``.
    """
    if cli_path:
        return Path(cli_path)
    for var in ("VOLUME_SNAPSHOT_CONFIG_FILE", "APP_CONFIG"):
        env_path = os.getenv(var)
        if env_path:
            return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Path) -> Any:
    """Read and parse the config file without enforcing a schema."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc


def _positive_int(rule: dict[str, Any], field: str, position: int) -> int:
    value = rule.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"Rule {position}: {field} must be a positive integer, got {value!r}")
    return value


def parse_rule(
    rule: Any,
    position: int,
    default_retention_hours: int = DEFAULT_RETENTION_HOURS,
) -> SnapshotRule:
    """Build a ``SnapshotRule`` from one config entry.

    Args:
        rule: Raw mapping from the config file
        position: Index of the rule, used in error messages
        default_retention_hours: Used when the rule has no retentionPeriodHours

    Raises:
        ConfigError: If the entry is not a valid rule
    """
    if not isinstance(rule, dict):
        raise ConfigError(f"Rule {position} must be a mapping")

    labels = rule.get("labels")
    if not isinstance(labels, dict) or not labels.get("key") or "value" not in labels:
        raise ConfigError(f"Rule {position}: labels.key and labels.value are required")
    for field in ("key", "value"):
        if not isinstance(labels[field], str):
            raise ConfigError(
                f"Rule {position}: labels.{field} must be a string, got {labels[field]!r}"
            )

    interval = _positive_int(rule, "intervalSeconds", position)
    if "retentionPeriodHours" in rule:
        retention = _positive_int(rule, "retentionPeriodHours", position)
    else:
        retention = default_retention_hours

    return SnapshotRule(
        labels=Label(key=labels["key"], value=labels["value"]),
        interval=timedelta(seconds=interval),
        retention_period=timedelta(hours=retention),
    )


def parse_rules(
    data: Any,
    default_retention_hours: int = DEFAULT_RETENTION_HOURS,
) -> list[SnapshotRule]:
    """Validate parsed config data and return its rules."""
    if data is None:
        return []
    if isinstance(data, dict):
        if not data:
            return []
        if "rules" not in data:
            found = ", ".join(map(str, data))
            raise ConfigError(f"Config mapping has no 'rules' entry (found: {found})")
        data = data["rules"] or []
    if not isinstance(data, list):
        raise ConfigError("Config root must be a list of rules or a mapping with 'rules'")
    return [parse_rule(rule, i, default_retention_hours) for i, rule in enumerate(data)]


def load_rules(
    path: Path,
    default_retention_hours: int = DEFAULT_RETENTION_HOURS,
) -> list[SnapshotRule]:
    """Load and validate the snapshot rules stored at ``path``."""
    return parse_rules(load_config(path), default_retention_hours)
