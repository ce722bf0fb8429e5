from datetime import date, datetime

import pytest

from equipment_rental.config import InsurancePolicy, LateFeePolicy
from equipment_rental.domain.models import DamageAssessment, ReturnCondition
from equipment_rental.services.errors import ValidationError
from equipment_rental.services.fees import (
    PricedLine,
    damage_charge,
    late_fee,
    late_fee_breakdown,
    price_rental,
    rental_days,
    to_datetime,
)


def test_late_fee_is_capped_at_max_fee():
    breakdown = late_fee_breakdown(
        date(2024, 1, 1), datetime(2024, 1, 3), LateFeePolicy()
    )
    assert breakdown.days_late == 2
    assert breakdown.raw_fee == 480
    assert breakdown.fee == 50


def test_late_fee_is_zero_on_or_before_end_date():
    policy = LateFeePolicy()
    assert late_fee("2024-01-01", datetime(2024, 1, 1), policy) == 0
    assert late_fee("2024-01-05", datetime(2023, 12, 31, 18), policy) == 0


def test_late_fee_ignores_grace_hours():
    policy = LateFeePolicy(grace_hours=48, hourly_rate=1.0, max_fee=1000)
    # 30 minutes late still counts as a whole day.
    assert late_fee("2024-01-01", datetime(2024, 1, 1, 0, 30), policy) == 24


def test_late_fee_disabled():
    policy = LateFeePolicy(enabled=False)
    breakdown = late_fee_breakdown("2024-01-01", "2024-01-10", policy)
    assert breakdown.days_late == 9
    assert breakdown.fee == 0


def test_damage_charge_sums_uncovered_damage_only():
    assessments = [
        DamageAssessment(
            item_id=1,
            condition=ReturnCondition.DAMAGED,
            damage_description="Cracked fin",
            estimated_repair_cost=60,
        ),
        DamageAssessment(
            item_id=2,
            condition=ReturnCondition.DAMAGED,
            damage_description="Ding on rail",
            estimated_repair_cost=40,
            covered_by_insurance=True,
        ),
        DamageAssessment(item_id=3, condition=ReturnCondition.GOOD),
    ]
    assert damage_charge(assessments) == 60


def test_damage_charge_rejects_damaged_item_without_cost():
    with pytest.raises(ValidationError):
        damage_charge(
            [
                DamageAssessment(
                    item_id=1,
                    condition=ReturnCondition.DAMAGED,
                    damage_description="Torn leash",
                )
            ]
        )


def test_rental_days_rounds_up_and_has_a_minimum_of_one():
    assert rental_days("2024-01-01", "2024-01-01") == 1
    assert rental_days("2024-01-01T09:00", "2024-01-02T10:00") == 2
    assert rental_days(date(2024, 1, 1), date(2024, 1, 4)) == 3


def test_price_rental_adds_insurance_per_unit_day():
    quote = price_rental(
        [
            PricedLine(inventory_item_id=1, quantity=2, daily_rate=10.0, insurance_selected=True),
            PricedLine(inventory_item_id=2, quantity=1, daily_rate=30.0),
        ],
        days=3,
        insurance=InsurancePolicy(unit_cost_per_day=5.0),
    )
    assert quote.items_total == 150
    assert quote.insurance_cost == 30
    assert quote.total_amount == 180


def test_to_datetime_rejects_garbage():
    with pytest.raises(ValidationError):
        to_datetime("not a date")
