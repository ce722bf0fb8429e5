"""Waiver validity policy and waiver lifecycle."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from equipment_rental.config import DEFAULT_POLICY, PolicySettings, WaiverPolicy
from equipment_rental.db.connection import transaction
from equipment_rental.domain.models import ActivityType, Waiver, WaiverStatus
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.customer_repo import CustomerRepo
from equipment_rental.repositories.waiver_repo import WaiverRepository
from equipment_rental.services.errors import NotFoundError, ValidationError
from equipment_rental.services.fees import to_date

LESSON_KEYWORDS = ("lesson", "instruction")


def activity_type_for(activities: Iterable[str]) -> ActivityType:
    """Lesson waivers cover anything mentioning lessons or instruction."""
    for activity in activities:
        lowered = activity.lower()
        if any(keyword in lowered for keyword in LESSON_KEYWORDS):
            return ActivityType.LESSON
    return ActivityType.RENTAL


def compute_expiry_date(
    signed_on: date, activities: Iterable[str], policy: WaiverPolicy
) -> date:
    activity_type = activity_type_for(activities)
    return signed_on + timedelta(days=policy.expiry_period_days(activity_type))


def is_waiver_valid(
    waiver: Optional[Waiver],
    requested_activities: Iterable[str],
    policy: WaiverPolicy,
    today: date,
) -> bool:
    """Decide whether ``waiver`` covers the requested activities on ``today``.

    A policy requiring a fresh waiver per activity wins over any prior one.
    """
    requested = [str(activity) for activity in requested_activities]
    if policy.requires_new_waiver(activity_type_for(requested)):
        return False
    if waiver is None or waiver.status != WaiverStatus.SIGNED:
        return False
    if not waiver.expiry_date or to_date(waiver.expiry_date) < today:
        return False
    return set(requested).issubset(waiver.activities)


class WaiverService:
    """Service for waiver creation, expiry and validity checks."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        policy: PolicySettings = DEFAULT_POLICY,
    ) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._policy = policy
        self._repo = WaiverRepository(connection)
        self._customer_repo = CustomerRepo(connection)
        self._logger = get_logger(self.__class__.__name__)

    def get_latest_waiver(self, customer_id: int) -> Optional[Waiver]:
        return self._repo.get_latest(customer_id)

    def has_valid_waiver(
        self,
        customer_id: int,
        activities: Iterable[str],
        today: Optional[date] = None,
    ) -> bool:
        today = today or date.today()
        activities = list(activities)
        waiver = self._repo.get_latest_signed(customer_id, today.isoformat())
        valid = is_waiver_valid(waiver, activities, self._policy.waiver, today)
        self._logger.info(
            "Waiver check customer_id=%s activities=%s valid=%s",
            customer_id,
            activities,
            valid,
        )
        return valid

    def create_waiver(
        self,
        customer_name: str,
        activities: Iterable[str],
        *,
        customer_id: Optional[int] = None,
        rental_id: Optional[int] = None,
        notes: str = "",
        signed_at: Optional[datetime] = None,
    ) -> Waiver:
        """Record a signed waiver; expiry follows the policy for its activity type."""
        activities = [activity.strip() for activity in activities if activity.strip()]
        if not customer_name.strip():
            raise ValidationError("Customer name is required to sign a waiver.")
        if not activities:
            raise ValidationError("Select at least one activity for the waiver.")
        if customer_id is not None and self._customer_repo.get_by_id(customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found.")
        signed_at = signed_at or datetime.now()
        expiry = compute_expiry_date(signed_at.date(), activities, self._policy.waiver)
        with transaction(self._connection):
            waiver = self._repo.create(
                customer_id,
                customer_name.strip(),
                activities,
                WaiverStatus.SIGNED,
                signed_date=signed_at.isoformat(timespec="seconds"),
                expiry_date=expiry.isoformat(),
                rental_id=rental_id,
                notes=notes,
            )
        self._logger.info(
            "Waiver %s signed for %s, expires %s", waiver.id, waiver.customer_name, expiry
        )
        return waiver

    def save_draft(
        self,
        customer_name: str,
        activities: Iterable[str],
        *,
        customer_id: Optional[int] = None,
        notes: str = "",
    ) -> Waiver:
        """Store an unsigned waiver. Drafts never count as valid."""
        if not customer_name.strip():
            raise ValidationError("Customer name is required to save a draft waiver.")
        with transaction(self._connection):
            return self._repo.create(
                customer_id,
                customer_name.strip(),
                list(activities),
                WaiverStatus.PENDING,
                notes=f"{notes} [Draft saved]".strip(),
            )

    def mark_expired_waivers(self, today: Optional[date] = None) -> list[int]:
        """Flip signed waivers past their expiry to expired. One-way."""
        today = today or date.today()
        with transaction(self._connection):
            expired_ids = self._repo.expire_signed_before(today.isoformat())
        if expired_ids:
            self._logger.info("Marked %s waiver(s) as expired", len(expired_ids))
        return expired_ids

    def waivers_expiring_soon(
        self, days: int = 30, today: Optional[date] = None
    ) -> list[Waiver]:
        today = today or date.today()
        return self._repo.list_signed_expiring_between(
            today.isoformat(), (today + timedelta(days=days)).isoformat()
        )
