"""Repository for customer lookups."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional

from equipment_rental.db.connection import transaction
from equipment_rental.domain.models import Customer
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.mappers import customer_from_row


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class CustomerRepo:
    """Customer records as seen by the rental engine.

    Customer management lives elsewhere; ``create`` exists for imports and
    fixtures and commits on its own.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def create(
        self,
        full_name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Customer:
        created_at = _now_iso()
        try:
            with transaction(self._connection):
                cursor = self._connection.execute(
                    """
                    INSERT INTO customers (full_name, email, phone, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (full_name, email, phone, created_at),
                )
        except Exception:
            self._logger.exception("Failed to create customer")
            raise
        return Customer(
            id=cursor.lastrowid,
            full_name=full_name,
            email=email,
            phone=phone,
            created_at=created_at,
        )

    def get_by_id(self, customer_id: int) -> Optional[Customer]:
        try:
            row = self._connection.execute(
                "SELECT * FROM customers WHERE id = ?",
                (customer_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to get customer id=%s", customer_id)
            raise
        return customer_from_row(row) if row else None

    def list_all(self) -> List[Customer]:
        try:
            rows = self._connection.execute(
                "SELECT * FROM customers ORDER BY full_name"
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list customers")
            raise
        return [customer_from_row(row) for row in rows]
