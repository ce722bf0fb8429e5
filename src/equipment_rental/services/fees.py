"""Late fee, damage charge and rental pricing calculations.

Everything here is pure: no connection, no clock. Dates may be passed as ISO
strings, ``date`` or ``datetime`` values; a bare date is read as midnight.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from dateutil import parser

from equipment_rental.config import InsurancePolicy, LateFeePolicy
from equipment_rental.domain.models import DamageAssessment
from equipment_rental.services.errors import ValidationError

SECONDS_PER_DAY = 86_400
HOURS_PER_DAY = 24

DateLike = str | date | datetime


def to_datetime(value: DateLike) -> datetime:
    """Normalize a date-like value to a naive local datetime."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        try:
            moment = parser.isoparse(str(value))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid date: {value!r}.") from exc
    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)
    return moment


def to_date(value: DateLike) -> date:
    return to_datetime(value).date()


def rental_days(start_date: DateLike, end_date: DateLike) -> int:
    """Billable days: whole days rounded up, never less than one."""
    elapsed = (to_datetime(end_date) - to_datetime(start_date)).total_seconds()
    return max(1, math.ceil(elapsed / SECONDS_PER_DAY))


@dataclass(frozen=True)
class PricedLine:
    inventory_item_id: int
    quantity: int
    daily_rate: float
    insurance_selected: bool = False


@dataclass(frozen=True)
class RentalQuote:
    days: int
    items_total: float
    insurance_cost: float

    @property
    def total_amount(self) -> float:
        return round(self.items_total + self.insurance_cost, 2)


def price_rental(
    lines: Iterable[PricedLine], days: int, insurance: InsurancePolicy
) -> RentalQuote:
    """Price a rental: rate x quantity x days, plus insurance per insured unit-day."""
    items_total = 0.0
    insurance_cost = 0.0
    for line in lines:
        items_total += line.daily_rate * line.quantity * days
        if line.insurance_selected:
            insurance_cost += insurance.unit_cost_per_day * line.quantity * days
    return RentalQuote(
        days=days,
        items_total=round(items_total, 2),
        insurance_cost=round(insurance_cost, 2),
    )


@dataclass(frozen=True)
class LateFeeBreakdown:
    days_late: int
    raw_fee: float
    fee: float


def late_fee_breakdown(
    end_date: DateLike, now: DateLike, policy: LateFeePolicy
) -> LateFeeBreakdown:
    """Compute the late fee with its intermediate values.

    ``policy.grace_hours`` is not subtracted: fees accrue from the first
    second after the end date.
    """
    end = to_datetime(end_date)
    moment = to_datetime(now)
    if moment <= end:
        return LateFeeBreakdown(days_late=0, raw_fee=0.0, fee=0.0)
    days_late = math.ceil((moment - end).total_seconds() / SECONDS_PER_DAY)
    if not policy.enabled:
        return LateFeeBreakdown(days_late=days_late, raw_fee=0.0, fee=0.0)
    raw_fee = days_late * HOURS_PER_DAY * policy.hourly_rate
    return LateFeeBreakdown(
        days_late=days_late,
        raw_fee=round(raw_fee, 2),
        fee=round(min(raw_fee, policy.max_fee), 2),
    )


def late_fee(end_date: DateLike, now: DateLike, policy: LateFeePolicy) -> float:
    return late_fee_breakdown(end_date, now, policy).fee


def validate_damage(assessment: DamageAssessment) -> None:
    """Damaged items need a description and a positive repair estimate."""
    if not assessment.is_damaged:
        return
    if not assessment.damage_description.strip():
        raise ValidationError(
            f"Describe the damage for item {assessment.item_id}."
        )
    if assessment.estimated_repair_cost <= 0:
        raise ValidationError(
            f"Repair cost for item {assessment.item_id} must be greater than zero."
        )


def damage_charge(assessments: Iterable[DamageAssessment]) -> float:
    """Sum the repair cost of damaged items not covered by insurance."""
    total = 0.0
    for assessment in assessments:
        if not assessment.is_damaged:
            continue
        if assessment.estimated_repair_cost <= 0:
            raise ValidationError(
                f"Repair cost for item {assessment.item_id} must be greater than zero."
            )
        if not assessment.covered_by_insurance:
            total += assessment.estimated_repair_cost
    return round(total, 2)
