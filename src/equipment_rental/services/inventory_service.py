"""Inventory queries and reconciliation against active rentals."""

from __future__ import annotations

import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from equipment_rental.db.connection import transaction
from equipment_rental.domain.models import InventoryItem, ItemStatus, Rental
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.rental_repo import RentalRepository
from equipment_rental.services.errors import NotFoundError
from equipment_rental.services.fees import to_date

BLOCKED_STATUSES = (ItemStatus.MAINTENANCE, ItemStatus.RETIRED)


@dataclass(frozen=True)
class InventoryConflict:
    """An item claimed by an active rental while out of service."""

    item_id: int
    status: ItemStatus
    rental_ids: tuple[int, ...]


@dataclass(frozen=True)
class DoubleBooking:
    item_id: int
    rental_ids: tuple[int, ...]
    kept_rental_id: int


@dataclass
class ReconciliationReport:
    released: list[int] = field(default_factory=list)
    claimed: list[int] = field(default_factory=list)
    conflicts: list[InventoryConflict] = field(default_factory=list)
    double_booked: list[DoubleBooking] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.released) + len(self.claimed)


@dataclass(frozen=True)
class InventoryStats:
    total: int
    available: int
    rented: int
    maintenance: int
    retired: int
    total_revenue: float


class InventoryService:
    """Service for inventory state and its repair from the rental ledger."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._repo = InventoryRepository(connection)
        self._rental_repo = RentalRepository(connection)
        self._logger = get_logger(self.__class__.__name__)

    def get_item(self, item_id: int) -> InventoryItem:
        item = self._repo.get(item_id)
        if item is None:
            raise NotFoundError(f"Inventory item {item_id} not found.")
        return item

    def list_items_by_status(self, status: ItemStatus | str) -> list[InventoryItem]:
        return self._repo.list_by_status(status)

    def list_overdue_items(self, today: Optional[date] = None) -> list[InventoryItem]:
        """Rented items whose expected return date has passed."""
        today = today or date.today()
        return [
            item
            for item in self._repo.list_by_status(ItemStatus.RENTED)
            if item.expected_return and to_date(item.expected_return) < today
        ]

    def inventory_stats(self) -> InventoryStats:
        items = self._repo.list_all()
        counts = {status: 0 for status in ItemStatus}
        for item in items:
            counts[item.status] += 1
        return InventoryStats(
            total=len(items),
            available=counts[ItemStatus.AVAILABLE],
            rented=counts[ItemStatus.RENTED],
            maintenance=counts[ItemStatus.MAINTENANCE],
            retired=counts[ItemStatus.RETIRED],
            total_revenue=round(sum(item.total_revenue for item in items), 2),
        )

    def release_items(self, item_ids: Iterable[int]) -> list[int]:
        """Set rented items back to available. Items in other states are skipped."""
        released: list[int] = []
        with transaction(self._connection):
            for item_id in item_ids:
                if self._repo.release_if_rented(item_id):
                    released.append(item_id)
        return released

    def reconcile(self) -> ReconciliationReport:
        """Make item statuses agree with the set of active rentals.

        Active rentals are authoritative. When several active rentals claim
        the same item, the most recent one (highest id) keeps it. Each item is
        written in its own transaction and only when a field differs, so a
        second run reports no changes.
        """
        report = ReconciliationReport()
        claims: dict[int, list[Rental]] = defaultdict(list)
        for rental in self._rental_repo.list_active():
            for rental_item in rental.items:
                holders = claims[rental_item.inventory_item_id]
                if all(holder.id != rental.id for holder in holders):
                    holders.append(rental)

        for item in self._repo.list_by_status(ItemStatus.RENTED):
            if item.id in claims:
                continue
            with transaction(self._connection):
                released = self._repo.release_if_unclaimed(item.id)
            if released:
                report.released.append(item.id)
                self._logger.info("Released item %s with no active rental", item.id)
            else:
                self._logger.info("Item %s was claimed while reconciling; kept rented", item.id)

        items = self._repo.get_many(claims)
        for item_id in sorted(claims):
            holders = claims[item_id]
            rental_ids = tuple(rental.id for rental in holders)
            owner = holders[-1]
            if len(holders) > 1:
                report.double_booked.append(
                    DoubleBooking(item_id=item_id, rental_ids=rental_ids, kept_rental_id=owner.id)
                )
                self._logger.warning(
                    "Item %s is held by rentals %s; keeping rental %s",
                    item_id,
                    rental_ids,
                    owner.id,
                )
            item = items.get(item_id)
            if item is None:
                report.missing.append(item_id)
                self._logger.warning(
                    "Rentals %s reference missing item %s", rental_ids, item_id
                )
                continue
            if item.status in BLOCKED_STATUSES:
                report.conflicts.append(
                    InventoryConflict(item_id=item_id, status=item.status, rental_ids=rental_ids)
                )
                self._logger.warning(
                    "Item %s is %s but held by active rentals %s; left untouched",
                    item_id,
                    item.status.value,
                    rental_ids,
                )
                continue
            if (
                item.status == ItemStatus.RENTED
                and item.current_renter == owner.customer_name
                and item.expected_return == owner.end_date
            ):
                continue
            with transaction(self._connection):
                assigned = self._repo.assign_renter(
                    item_id, owner.id, owner.customer_name, owner.end_date
                )
            if assigned:
                report.claimed.append(item_id)
                self._logger.info(
                    "Item %s assigned to rental %s (%s)",
                    item_id,
                    owner.id,
                    owner.customer_name,
                )
            else:
                self._logger.info(
                    "Item %s changed while reconciling; not assigned to rental %s", item_id, owner.id
                )

        self._logger.info(
            "Reconciliation finished: released=%s claimed=%s conflicts=%s double_booked=%s",
            len(report.released),
            len(report.claimed),
            len(report.conflicts),
            len(report.double_booked),
        )
        return report
