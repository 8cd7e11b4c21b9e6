"""Settings storage for replication defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gpt_replicator.domain import ExpansionPolicy, TargetPolicy


SETTINGS_PATH = Path(
    os.environ.get(
        "GPT_REPLICATOR_SETTINGS_PATH",
        Path.home() / ".config" / "gpt-replicator" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SOURCE_DEVICE = "/dev/mmcblk0"
DEFAULT_DESTINATION_DEVICE = "/dev/nvme0n1"
DEFAULT_RESERVED_BACKUP_SECTORS = 34
DEFAULT_EXPANSION_THRESHOLD_SECTORS = 1_000_000
DEFAULT_EXPAND_PERCENT = 90
DEFAULT_TARGET_TAG = "APP"

DEFAULT_SETTINGS: dict[str, Any] = {
    "source_device": DEFAULT_SOURCE_DEVICE,
    "destination_device": DEFAULT_DESTINATION_DEVICE,
    "reserved_backup_sectors": DEFAULT_RESERVED_BACKUP_SECTORS,
    "expansion_threshold_sectors": DEFAULT_EXPANSION_THRESHOLD_SECTORS,
    "expand_percent": DEFAULT_EXPAND_PERCENT,
    "target_policy": TargetPolicy.APP_THEN_LAST.value,
    "target_tag": DEFAULT_TARGET_TAG,
    "zap_destination": True,
    "settle_timeout_seconds": 30,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


@dataclass(frozen=True)
class ReplicationConfig:
    """Everything one replication run needs to know."""

    source: str = DEFAULT_SOURCE_DEVICE
    destination: str = DEFAULT_DESTINATION_DEVICE
    reserved_backup_sectors: int = DEFAULT_RESERVED_BACKUP_SECTORS
    expansion_threshold_sectors: int = DEFAULT_EXPANSION_THRESHOLD_SECTORS
    expand_percent: int = DEFAULT_EXPAND_PERCENT
    target_policy: TargetPolicy = TargetPolicy.APP_THEN_LAST
    target_tag: str = DEFAULT_TARGET_TAG
    zap_destination: bool = True
    settle_timeout_seconds: float = 30.0

    def expansion_policy(self) -> ExpansionPolicy:
        return ExpansionPolicy(
            threshold_sectors=self.expansion_threshold_sectors,
            expand_percent=self.expand_percent,
            target_policy=self.target_policy,
            target_tag=self.target_tag,
        )


def _check_ranges(config: ReplicationConfig) -> None:
    if config.reserved_backup_sectors < 0:
        raise ValueError(
            f"reserved_backup_sectors must not be negative (got {config.reserved_backup_sectors})"
        )
    if config.expansion_threshold_sectors < 0:
        raise ValueError(
            "expansion_threshold_sectors must not be negative "
            f"(got {config.expansion_threshold_sectors})"
        )
    if not 0 <= config.expand_percent <= 100:
        raise ValueError(f"expand_percent must be between 0 and 100 (got {config.expand_percent})")
    if config.settle_timeout_seconds < 0:
        raise ValueError(
            f"settle_timeout_seconds must not be negative (got {config.settle_timeout_seconds})"
        )


def load_replication_config(**overrides: Any) -> ReplicationConfig:
    """Build a ReplicationConfig from stored settings; non-None overrides win.

    Raises:
        ValueError: If a setting has the wrong type, is out of range or names
            an unknown target policy
    """
    values = dict(DEFAULT_SETTINGS)
    values.update(settings_store.values)
    values.update({key: value for key, value in overrides.items() if value is not None})
    config = ReplicationConfig(
        source=str(values["source_device"]),
        destination=str(values["destination_device"]),
        reserved_backup_sectors=int(values["reserved_backup_sectors"]),
        expansion_threshold_sectors=int(values["expansion_threshold_sectors"]),
        expand_percent=int(values["expand_percent"]),
        target_policy=TargetPolicy(str(values["target_policy"]).lower()),
        target_tag=str(values["target_tag"]),
        zap_destination=bool(values["zap_destination"]),
        settle_timeout_seconds=float(values["settle_timeout_seconds"]),
    )
    _check_ranges(config)
    return config


load_settings()
