"""Rental service for business rules."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Mapping, Optional

from equipment_rental.config import (
    DEFAULT_POLICY,
    EQUIPMENT_RENTAL_ACTIVITY,
    PolicySettings,
)
from equipment_rental.db.connection import immediate_transaction, transaction
from equipment_rental.domain.models import Rental, RentalStatus
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.customer_repo import CustomerRepo
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.rental_repo import NewRentalLine, RentalRepository
from equipment_rental.services.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from equipment_rental.services.fees import (
    DateLike,
    PricedLine,
    price_rental,
    rental_days,
    to_date,
    to_datetime,
)
from equipment_rental.services.waiver_service import WaiverService

WAIVER_MISSING = "waiver_missing"


@dataclass(frozen=True)
class RentalCreation:
    rental: Rental
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RentalStats:
    total: int
    active: int
    overdue: int
    returned: int
    cancelled: int
    revenue: float


def computed_status(rental: Rental, now: DateLike) -> RentalStatus:
    """Overdue is derived from the end date and never stored."""
    if rental.status in (RentalStatus.CANCELLED, RentalStatus.RETURNED):
        return rental.status
    if to_date(now) > to_date(rental.end_date):
        return RentalStatus.OVERDUE
    return RentalStatus.ACTIVE


def _normalize_moment(value: DateLike) -> str:
    return to_datetime(value).isoformat(timespec="seconds")


class RentalService:
    """Service for rental business rules."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        policy: PolicySettings = DEFAULT_POLICY,
    ) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._policy = policy
        self._repo = RentalRepository(connection)
        self._inventory_repo = InventoryRepository(connection)
        self._customer_repo = CustomerRepo(connection)
        self._waiver_service = WaiverService(connection, policy)
        self._logger = get_logger(self.__class__.__name__)

    def _build_lines(
        self, items: Iterable[Mapping[str, object]]
    ) -> list[NewRentalLine]:
        lines: list[NewRentalLine] = []
        seen: set[int] = set()
        for raw in items:
            try:
                item_id = int(raw["inventory_item_id"])
                quantity = int(raw.get("quantity", 1))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("Each rental item needs an inventory item id.") from exc
            if quantity < 1:
                raise ValidationError(f"Quantity for item {item_id} must be at least 1.")
            if item_id in seen:
                raise ValidationError(f"Item {item_id} appears more than once.")
            seen.add(item_id)
            inventory_item = self._inventory_repo.get(item_id)
            if inventory_item is None:
                raise NotFoundError(f"Inventory item {item_id} not found.")
            daily_rate = raw.get("daily_rate")
            daily_rate = (
                inventory_item.rental_price if daily_rate is None else float(daily_rate)
            )
            if daily_rate < 0:
                raise ValidationError(f"Daily rate for item {item_id} cannot be negative.")
            lines.append(
                NewRentalLine(
                    inventory_item_id=item_id,
                    quantity=quantity,
                    daily_rate=daily_rate,
                    insurance_selected=bool(raw.get("insurance_selected", False)),
                    item_notes=str(raw.get("item_notes") or ""),
                )
            )
        if not lines:
            raise ValidationError("A rental needs at least one item.")
        return lines

    def create_rental(
        self,
        customer_id: int,
        start_date: DateLike,
        end_date: DateLike,
        items: Iterable[Mapping[str, object]],
        notes: str = "",
        require_waiver: bool = False,
        today: Optional[date] = None,
    ) -> RentalCreation:
        """Create an active rental and claim its items atomically.

        Either every item moves from available to rented together with the
        rental rows, or nothing is written and ConflictError is raised.
        """
        start = _normalize_moment(start_date)
        end = _normalize_moment(end_date)
        if to_datetime(end) < to_datetime(start):
            raise ValidationError("The end date must not be before the start date.")
        customer = self._customer_repo.get_by_id(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found.")
        lines = self._build_lines(items)

        warnings: list[str] = []
        waiver_ok = self._waiver_service.has_valid_waiver(
            customer_id, [EQUIPMENT_RENTAL_ACTIVITY], today=today
        )
        if not waiver_ok:
            if require_waiver:
                raise PolicyViolation(
                    f"Customer {customer.full_name} has no valid waiver for equipment rental."
                )
            warnings.append(WAIVER_MISSING)
            self._logger.warning(
                "Creating rental for customer %s without a valid waiver", customer_id
            )

        days = rental_days(start, end)
        quote = price_rental(
            [
                PricedLine(
                    inventory_item_id=line.inventory_item_id,
                    quantity=line.quantity,
                    daily_rate=line.daily_rate,
                    insurance_selected=line.insurance_selected,
                )
                for line in lines
            ],
            days,
            self._policy.insurance,
        )

        with immediate_transaction(self._connection):
            rental = self._repo.create(
                customer.id,
                customer.full_name,
                start,
                end,
                lines,
                total_amount=quote.total_amount,
                insurance_cost=quote.insurance_cost,
                waiver_collected=waiver_ok,
                notes=notes,
            )
            for line in lines:
                claimed = self._inventory_repo.mark_rented_if_available(
                    line.inventory_item_id, customer.full_name, end
                )
                if not claimed:
                    raise ConflictError(
                        f"Item {line.inventory_item_id} is no longer available."
                    )
        self._logger.info(
            "Rental %s created for %s: %s item(s), %s day(s), total %.2f",
            rental.id,
            customer.full_name,
            len(lines),
            days,
            rental.total_amount,
        )
        return RentalCreation(rental=rental, warnings=tuple(warnings))

    def computed_status(self, rental: Rental, now: Optional[DateLike] = None) -> RentalStatus:
        return computed_status(rental, now or datetime.now())

    def get_rental(self, rental_id: int) -> Rental:
        rental = self._repo.get(rental_id)
        if rental is None:
            raise NotFoundError(f"Rental {rental_id} not found.")
        return rental

    def list_active_rentals(self) -> list[Rental]:
        return self._repo.list_active()

    def list_overdue_rentals(self, now: Optional[DateLike] = None) -> list[Rental]:
        now = now or datetime.now()
        return [
            rental
            for rental in self._repo.list_active()
            if computed_status(rental, now) == RentalStatus.OVERDUE
        ]

    def list_rentals_by_customer(self, customer_id: int) -> list[Rental]:
        return self._repo.list_by_customer(customer_id)

    def mark_waiver_collected(self, rental_id: int, collected: bool = True) -> Rental:
        self.get_rental(rental_id)
        with transaction(self._connection):
            self._repo.update(rental_id, waiver_collected=collected)
        return self.get_rental(rental_id)

    def cancel_rental(self, rental_id: int, reason: Optional[str] = None) -> Rental:
        """Cancel an active rental and release its items.

        Items that another active rental also holds stay rented.

        Cancelling twice is a no-op; returned rentals cannot be cancelled.
        """
        with immediate_transaction(self._connection):
            rental = self.get_rental(rental_id)
            if rental.status == RentalStatus.CANCELLED:
                return rental
            if rental.status == RentalStatus.RETURNED:
                raise ValidationError(f"Rental {rental_id} was already returned.")
            note = f"Cancelled: {reason}" if reason else "Cancelled"
            notes = f"{rental.notes}\n{note}" if rental.notes else note
            self._repo.update(rental_id, status=RentalStatus.CANCELLED, notes=notes)
            released = [
                item.inventory_item_id
                for item in rental.items
                if self._inventory_repo.release_if_unclaimed(
                    item.inventory_item_id, rental_id
                )
            ]
        self._logger.info(
            "Rental %s cancelled, released items %s", rental_id, released
        )
        return self.get_rental(rental_id)

    def rental_stats(self, now: Optional[DateLike] = None) -> RentalStats:
        now = now or datetime.now()
        counts = {status: 0 for status in RentalStatus}
        revenue = 0.0
        rentals = self._repo.list_all()
        for rental in rentals:
            counts[computed_status(rental, now)] += 1
            if rental.status != RentalStatus.CANCELLED:
                revenue += rental.total_amount + rental.late_fees + rental.damage_charges
        return RentalStats(
            total=len(rentals),
            active=counts[RentalStatus.ACTIVE],
            overdue=counts[RentalStatus.OVERDUE],
            returned=counts[RentalStatus.RETURNED],
            cancelled=counts[RentalStatus.CANCELLED],
            revenue=round(revenue, 2),
        )
