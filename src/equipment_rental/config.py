"""Application configuration."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from equipment_rental.domain.models import ActivityType
from equipment_rental.version import __app_name__, __company__

APP_NAME = __app_name__
APP_DATA_DIRNAME = "EquipmentRental"
APP_HOME_ENV = "RENTAL_ENGINE_HOME"
DB_FILENAME = "equipment_rental.db"
DB_BUSY_TIMEOUT = 10.0
LOGS_DIRNAME = "logs"
LOG_FILENAME = "engine.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3
CONFIG_FILENAME = "config.json"

EQUIPMENT_RENTAL_ACTIVITY = "Equipment Rental"
DAMAGE_DOWNTIME_HOURS = 24
SYSTEM_STAFF_MEMBER = "System"


def _check_fields(target: object, changes: dict[str, Any]) -> None:
    known = {item.name for item in fields(target)}
    unknown = sorted(set(changes) - known)
    if unknown:
        raise ValueError(
            f"Unknown {type(target).__name__} setting(s): {', '.join(unknown)}"
        )


@dataclass(frozen=True)
class LateFeePolicy:
    """Late return fee rules.

    ``grace_hours`` is stored and round-tripped but the fee formula does not
    subtract it.
    """

    enabled: bool = True
    grace_hours: float = 1.0
    hourly_rate: float = 10.0
    max_fee: float = 50.0

    def __post_init__(self) -> None:
        if self.grace_hours < 0:
            raise ValueError("grace_hours must not be negative.")
        if self.hourly_rate < 0:
            raise ValueError("hourly_rate must not be negative.")
        if self.max_fee < 0:
            raise ValueError("max_fee must not be negative.")


@dataclass(frozen=True)
class WaiverActivityPolicy:
    """Waiver rules for one activity type."""

    expiry_period_days: int
    require_new_waiver_per_activity: bool = False

    def __post_init__(self) -> None:
        if self.expiry_period_days < 0:
            raise ValueError("expiry_period_days must not be negative.")


@dataclass(frozen=True)
class WaiverPolicy:
    """Waiver rules per activity type."""

    rental: WaiverActivityPolicy = field(
        default_factory=lambda: WaiverActivityPolicy(365, False)
    )
    lesson: WaiverActivityPolicy = field(
        default_factory=lambda: WaiverActivityPolicy(30, True)
    )

    def for_activity(self, activity_type: ActivityType | str) -> WaiverActivityPolicy:
        if ActivityType(activity_type) == ActivityType.LESSON:
            return self.lesson
        return self.rental

    def requires_new_waiver(self, activity_type: ActivityType | str) -> bool:
        return self.for_activity(activity_type).require_new_waiver_per_activity

    def expiry_period_days(self, activity_type: ActivityType | str) -> int:
        return self.for_activity(activity_type).expiry_period_days


@dataclass(frozen=True)
class InsurancePolicy:
    """Damage insurance pricing."""

    unit_cost_per_day: float = 5.0

    def __post_init__(self) -> None:
        if self.unit_cost_per_day < 0:
            raise ValueError("unit_cost_per_day must not be negative.")


@dataclass(frozen=True)
class PolicySettings:
    """Read-only business policy consumed by the engine."""

    late_fees: LateFeePolicy = field(default_factory=LateFeePolicy)
    waiver: WaiverPolicy = field(default_factory=WaiverPolicy)
    insurance: InsurancePolicy = field(default_factory=InsurancePolicy)

    def with_late_fees(self, **changes: Any) -> PolicySettings:
        _check_fields(self.late_fees, changes)
        return replace(self, late_fees=replace(self.late_fees, **changes))

    def with_waiver(
        self, activity_type: ActivityType | str, **changes: Any
    ) -> PolicySettings:
        current = self.waiver.for_activity(activity_type)
        _check_fields(current, changes)
        updated = replace(current, **changes)
        if ActivityType(activity_type) == ActivityType.LESSON:
            return replace(self, waiver=replace(self.waiver, lesson=updated))
        return replace(self, waiver=replace(self.waiver, rental=updated))

    def with_insurance(self, **changes: Any) -> PolicySettings:
        _check_fields(self.insurance, changes)
        return replace(self, insurance=replace(self.insurance, **changes))


DEFAULT_POLICY = PolicySettings()


@dataclass(frozen=True)
class AppConfig:
    """Static configuration values for the engine."""

    app_name: str = APP_NAME
    organization_name: str = __company__
