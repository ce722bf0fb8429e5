"""Policy settings storage on the shared JSON config file."""

from __future__ import annotations

import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Mapping

from equipment_rental.config import (
    InsurancePolicy,
    LateFeePolicy,
    PolicySettings,
    WaiverActivityPolicy,
    WaiverPolicy,
)
from equipment_rental.utils.config_store import load_config_data, save_config_data

POLICY_KEY = "policy"
logger = logging.getLogger(__name__)


def _build(policy_cls: type, defaults: Any, data: Any, section: str) -> Any:
    """Build a policy dataclass, keeping the default for every bad value."""
    if not isinstance(data, Mapping):
        return defaults
    values: dict[str, Any] = {}
    for item in fields(policy_cls):
        default_value = getattr(defaults, item.name)
        raw = data.get(item.name, default_value)
        if isinstance(default_value, bool):
            valid = isinstance(raw, bool)
        else:
            valid = isinstance(raw, (int, float)) and not isinstance(raw, bool)
        if not valid:
            logger.warning(
                "Invalid value for %s.%s: %r. Using default.", section, item.name, raw
            )
            raw = default_value
        values[item.name] = raw
    try:
        return policy_cls(**values)
    except ValueError:
        logger.warning("Invalid %s policy in config. Using defaults.", section)
        return defaults


def policy_from_dict(data: Mapping[str, Any]) -> PolicySettings:
    """Build policy settings from a plain mapping."""
    defaults = PolicySettings()
    waiver_data = data.get("waiver") if isinstance(data.get("waiver"), Mapping) else {}
    return PolicySettings(
        late_fees=_build(
            LateFeePolicy, defaults.late_fees, data.get("late_fees"), "late_fees"
        ),
        waiver=WaiverPolicy(
            rental=_build(
                WaiverActivityPolicy,
                defaults.waiver.rental,
                waiver_data.get("rental"),
                "waiver.rental",
            ),
            lesson=_build(
                WaiverActivityPolicy,
                defaults.waiver.lesson,
                waiver_data.get("lesson"),
                "waiver.lesson",
            ),
        ),
        insurance=_build(
            InsurancePolicy, defaults.insurance, data.get("insurance"), "insurance"
        ),
    )


def load_policy_settings(config_path: Path) -> PolicySettings:
    """Load policy settings from config JSON."""
    data = load_config_data(config_path)
    section = data.get(POLICY_KEY)
    if not isinstance(section, Mapping):
        return PolicySettings()
    return policy_from_dict(section)


def save_policy_settings(config_path: Path, settings: PolicySettings) -> None:
    """Persist policy settings to config JSON."""
    payload = load_config_data(config_path)
    payload[POLICY_KEY] = asdict(settings)
    save_config_data(config_path, payload)
