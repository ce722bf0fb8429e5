"""Repository for inventory item persistence."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Iterable, List, Optional

from equipment_rental.db.connection import transaction
from equipment_rental.domain.models import InventoryItem, ItemCondition, ItemStatus
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.mappers import (
    build_assignments,
    inventory_item_from_row,
)
from equipment_rental.repositories.rental_repo import OPEN_STATUSES

UPDATABLE_COLUMNS = (
    "name",
    "category",
    "brand",
    "status",
    "condition",
    "rental_price",
    "current_renter",
    "expected_return",
    "total_rentals",
    "total_revenue",
    "notes",
)

_OPEN_PLACEHOLDERS = ", ".join(["?"] * len(OPEN_STATUSES))

# Matches when an active rental other than the excluded one holds the item.
_HELD_BY_OPEN_RENTAL = f"""
    EXISTS (
        SELECT 1
        FROM rental_items ri
        JOIN rentals r ON r.id = ri.rental_id
        WHERE ri.inventory_item_id = inventory_items.id
          AND r.id != ?
          AND r.status IN ({_OPEN_PLACEHOLDERS})
    )
"""


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class InventoryRepository:
    """Data access for inventory items.

    Writes do not commit; callers own the transaction.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def create(
        self,
        item_code: str,
        name: str,
        rental_price: float,
        *,
        category: Optional[str] = None,
        brand: Optional[str] = None,
        status: ItemStatus = ItemStatus.AVAILABLE,
        condition: ItemCondition = ItemCondition.GOOD,
        notes: Optional[str] = None,
    ) -> InventoryItem:
        """Register an inventory item. Commits, as equipment setup is a separate flow."""
        created_at = _now_iso()
        try:
            with transaction(self._connection):
                cursor = self._connection.execute(
                    """
                    INSERT INTO inventory_items (
                        item_code,
                        name,
                        category,
                        brand,
                        status,
                        condition,
                        rental_price,
                        notes,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item_code,
                        name,
                        category,
                        brand,
                        ItemStatus(status).value,
                        ItemCondition(condition).value,
                        rental_price,
                        notes,
                        created_at,
                        created_at,
                    ),
                )
        except Exception:
            self._logger.exception("Failed to create inventory item code=%s", item_code)
            raise
        item = self.get(int(cursor.lastrowid))
        if item is None:
            raise RuntimeError(f"Inventory item {item_code} vanished after insert.")
        return item

    def get(self, item_id: int) -> Optional[InventoryItem]:
        try:
            row = self._connection.execute(
                "SELECT * FROM inventory_items WHERE id = ?",
                (item_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to fetch inventory item id=%s", item_id)
            raise
        return inventory_item_from_row(row) if row else None

    def get_many(self, item_ids: Iterable[int]) -> dict[int, InventoryItem]:
        ids = sorted({int(item_id) for item_id in item_ids})
        if not ids:
            return {}
        placeholders = ", ".join(["?"] * len(ids))
        try:
            rows = self._connection.execute(
                f"SELECT * FROM inventory_items WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to fetch inventory items ids=%s", ids)
            raise
        return {int(row["id"]): inventory_item_from_row(row) for row in rows}

    def list_by_status(self, status: ItemStatus | str) -> List[InventoryItem]:
        try:
            rows = self._connection.execute(
                "SELECT * FROM inventory_items WHERE status = ? ORDER BY id",
                (ItemStatus(status).value,),
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list inventory items status=%s", status)
            raise
        return [inventory_item_from_row(row) for row in rows]

    def list_all(self) -> List[InventoryItem]:
        try:
            rows = self._connection.execute(
                "SELECT * FROM inventory_items ORDER BY id"
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list inventory items")
            raise
        return [inventory_item_from_row(row) for row in rows]

    def update(self, item_id: int, **fields: Any) -> bool:
        """Update whitelisted columns of one item.

        Setting status to available always clears the renter fields.
        """
        return self._update(item_id, fields)

    def update_unless_held(self, item_id: int, rental_id: int, **fields: Any) -> bool:
        """Like :meth:`update`, but only while no active rental besides ``rental_id`` holds the item.

        Returns False when another rental has claimed the item in the meantime.
        """
        return self._update(
            item_id,
            fields,
            f"AND NOT {_HELD_BY_OPEN_RENTAL}",
            (rental_id, *OPEN_STATUSES),
        )

    def _update(
        self,
        item_id: int,
        fields: dict[str, Any],
        guard: str = "",
        guard_params: tuple[Any, ...] = (),
    ) -> bool:
        if fields.get("status") is not None and ItemStatus(fields["status"]) != ItemStatus.RENTED:
            fields["current_renter"] = None
            fields["expected_return"] = None
        clause, params = build_assignments("inventory_items", UPDATABLE_COLUMNS, fields)
        try:
            cursor = self._connection.execute(
                f"UPDATE inventory_items SET {clause}, updated_at = ? WHERE id = ? {guard}",
                (*params, _now_iso(), item_id, *guard_params),
            )
        except Exception:
            self._logger.exception("Failed to update inventory item id=%s", item_id)
            raise
        return cursor.rowcount > 0

    def mark_rented_if_available(
        self, item_id: int, renter: str, expected_return: str
    ) -> bool:
        """Claim an item in a single conditional write.

        Returns False when the item is missing or no longer available.
        """
        try:
            cursor = self._connection.execute(
                """
                UPDATE inventory_items
                SET status = ?,
                    current_renter = ?,
                    expected_return = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status = ?
                """,
                (
                    ItemStatus.RENTED.value,
                    renter,
                    expected_return,
                    _now_iso(),
                    item_id,
                    ItemStatus.AVAILABLE.value,
                ),
            )
        except Exception:
            self._logger.exception("Failed to claim inventory item id=%s", item_id)
            raise
        return cursor.rowcount == 1

    def release_if_rented(self, item_id: int) -> bool:
        """Return a rented item to available; other statuses stay untouched."""
        try:
            cursor = self._connection.execute(
                """
                UPDATE inventory_items
                SET status = ?,
                    current_renter = NULL,
                    expected_return = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND status = ?
                """,
                (
                    ItemStatus.AVAILABLE.value,
                    _now_iso(),
                    item_id,
                    ItemStatus.RENTED.value,
                ),
            )
        except Exception:
            self._logger.exception("Failed to release inventory item id=%s", item_id)
            raise
        return cursor.rowcount == 1

    def release_if_unclaimed(self, item_id: int, ignore_rental_id: int = 0) -> bool:
        """Release a rented item unless an active rental still holds it.

        The check runs inside the write, so a rental committed after the
        caller looked at the item keeps its claim.
        """
        try:
            cursor = self._connection.execute(
                f"""
                UPDATE inventory_items
                SET status = ?,
                    current_renter = NULL,
                    expected_return = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND status = ?
                  AND NOT {_HELD_BY_OPEN_RENTAL}
                """,
                (
                    ItemStatus.AVAILABLE.value,
                    _now_iso(),
                    item_id,
                    ItemStatus.RENTED.value,
                    ignore_rental_id,
                    *OPEN_STATUSES,
                ),
            )
        except Exception:
            self._logger.exception("Failed to release inventory item id=%s", item_id)
            raise
        return cursor.rowcount == 1

    def assign_renter(
        self, item_id: int, rental_id: int, renter: str, expected_return: str
    ) -> bool:
        """Mark an item as rented to ``renter`` while ``rental_id`` is still active and holds it.

        Items in maintenance or retirement are never touched.
        """
        try:
            cursor = self._connection.execute(
                f"""
                UPDATE inventory_items
                SET status = ?,
                    current_renter = ?,
                    expected_return = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status IN (?, ?)
                  AND EXISTS (
                      SELECT 1
                      FROM rental_items ri
                      JOIN rentals r ON r.id = ri.rental_id
                      WHERE ri.inventory_item_id = inventory_items.id
                        AND r.id = ?
                        AND r.status IN ({_OPEN_PLACEHOLDERS})
                  )
                """,
                (
                    ItemStatus.RENTED.value,
                    renter,
                    expected_return,
                    _now_iso(),
                    item_id,
                    ItemStatus.AVAILABLE.value,
                    ItemStatus.RENTED.value,
                    rental_id,
                    *OPEN_STATUSES,
                ),
            )
        except Exception:
            self._logger.exception("Failed to assign renter to item id=%s", item_id)
            raise
        return cursor.rowcount == 1
