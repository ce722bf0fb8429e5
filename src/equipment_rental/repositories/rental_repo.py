"""Repository helpers for rental persistence."""

from __future__ import annotations

import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from equipment_rental.domain.models import Rental, RentalItem, RentalStatus
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.mappers import (
    build_assignments,
    rental_from_row,
    rental_item_from_row,
)

UPDATABLE_COLUMNS = (
    "status",
    "return_date",
    "late_fees",
    "damage_charges",
    "waiver_collected",
    "notes",
)

# Stored "overdue" rows predate the derived status and still hold their items.
OPEN_STATUSES = (RentalStatus.ACTIVE.value, RentalStatus.OVERDUE.value)


@dataclass(frozen=True)
class NewRentalLine:
    inventory_item_id: int
    quantity: int
    daily_rate: float
    insurance_selected: bool = False
    item_notes: str = ""


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class RentalRepository:
    """Data access for rentals and their items.

    Writes do not commit; callers own the transaction.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def create(
        self,
        customer_id: int,
        customer_name: str,
        start_date: str,
        end_date: str,
        lines: Iterable[NewRentalLine],
        *,
        total_amount: float,
        insurance_cost: float,
        waiver_collected: bool,
        notes: str = "",
    ) -> Rental:
        """Insert a rental and its items."""
        created_at = _now_iso()
        lines = list(lines)
        try:
            cursor = self._connection.execute(
                """
                INSERT INTO rentals (
                    customer_id,
                    customer_name,
                    start_date,
                    end_date,
                    status,
                    total_amount,
                    insurance_cost,
                    late_fees,
                    damage_charges,
                    waiver_collected,
                    notes,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?)
                """,
                (
                    customer_id,
                    customer_name,
                    start_date,
                    end_date,
                    RentalStatus.ACTIVE.value,
                    total_amount,
                    insurance_cost,
                    int(waiver_collected),
                    notes,
                    created_at,
                    created_at,
                ),
            )
            rental_id = int(cursor.lastrowid)
            items: list[RentalItem] = []
            for line in lines:
                item_cursor = self._connection.execute(
                    """
                    INSERT INTO rental_items (
                        rental_id,
                        inventory_item_id,
                        quantity,
                        daily_rate,
                        insurance_selected,
                        item_notes,
                        created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rental_id,
                        line.inventory_item_id,
                        line.quantity,
                        line.daily_rate,
                        int(line.insurance_selected),
                        line.item_notes,
                        created_at,
                    ),
                )
                items.append(
                    RentalItem(
                        id=int(item_cursor.lastrowid),
                        rental_id=rental_id,
                        inventory_item_id=line.inventory_item_id,
                        quantity=line.quantity,
                        daily_rate=line.daily_rate,
                        insurance_selected=line.insurance_selected,
                        item_notes=line.item_notes,
                        created_at=created_at,
                    )
                )
        except Exception:
            self._logger.exception("Failed to create rental customer_id=%s", customer_id)
            raise

        return Rental(
            id=rental_id,
            customer_id=customer_id,
            customer_name=customer_name,
            start_date=start_date,
            end_date=end_date,
            status=RentalStatus.ACTIVE,
            total_amount=total_amount,
            insurance_cost=insurance_cost,
            waiver_collected=waiver_collected,
            notes=notes,
            items=items,
            created_at=created_at,
            updated_at=created_at,
        )

    def get(self, rental_id: int) -> Optional[Rental]:
        try:
            row = self._connection.execute(
                "SELECT * FROM rentals WHERE id = ?",
                (rental_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to fetch rental id=%s", rental_id)
            raise
        if not row:
            return None
        rental = rental_from_row(row)
        rental.items = self._items_for([rental_id]).get(rental_id, [])
        return rental

    def update(self, rental_id: int, **fields: Any) -> bool:
        clause, params = build_assignments("rentals", UPDATABLE_COLUMNS, fields)
        try:
            cursor = self._connection.execute(
                f"UPDATE rentals SET {clause}, updated_at = ? WHERE id = ?",
                (*params, _now_iso(), rental_id),
            )
        except Exception:
            self._logger.exception("Failed to update rental id=%s", rental_id)
            raise
        return cursor.rowcount > 0

    def list_active(self) -> list[Rental]:
        """Rentals that currently hold their items, oldest first."""
        placeholders = ", ".join(["?"] * len(OPEN_STATUSES))
        return self._list(
            f"SELECT * FROM rentals WHERE status IN ({placeholders}) ORDER BY id",
            OPEN_STATUSES,
        )

    def list_by_customer(self, customer_id: int) -> list[Rental]:
        return self._list(
            "SELECT * FROM rentals WHERE customer_id = ? ORDER BY created_at DESC, id DESC",
            (customer_id,),
        )

    def list_all(self) -> list[Rental]:
        return self._list("SELECT * FROM rentals ORDER BY id", ())

    def _list(self, query: str, params: Iterable[object]) -> list[Rental]:
        try:
            rows = self._connection.execute(query, tuple(params)).fetchall()
        except Exception:
            self._logger.exception("Failed to list rentals")
            raise
        rentals = [rental_from_row(row) for row in rows]
        items_by_rental = self._items_for([rental.id for rental in rentals])
        for rental in rentals:
            rental.items = items_by_rental.get(rental.id, [])
        return rentals

    def _items_for(self, rental_ids: Iterable[Optional[int]]) -> dict[int, list[RentalItem]]:
        ids = sorted({int(rental_id) for rental_id in rental_ids if rental_id is not None})
        if not ids:
            return {}
        placeholders = ", ".join(["?"] * len(ids))
        try:
            rows = self._connection.execute(
                f"""
                SELECT *
                FROM rental_items
                WHERE rental_id IN ({placeholders})
                ORDER BY rental_id, id
                """,
                ids,
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to fetch rental items rental_ids=%s", ids)
            raise
        grouped: dict[int, list[RentalItem]] = defaultdict(list)
        for row in rows:
            item = rental_item_from_row(row)
            grouped[item.rental_id].append(item)
        return grouped
