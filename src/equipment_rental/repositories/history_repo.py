"""Repository for append-only maintenance and customer transaction history."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from equipment_rental.domain.models import CustomerTransaction, MaintenanceRecord
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.mappers import (
    customer_transaction_from_row,
    customer_transaction_to_record,
    maintenance_record_from_row,
    maintenance_record_to_record,
)


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class HistoryRepository:
    """Append-only ledgers. Records are never updated or deleted.

    Appends carrying an idempotency key that was already stored return the
    stored record instead of inserting a second one. Writes do not commit.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def _insert_or_ignore(self, table: str, record: dict[str, object]) -> int:
        columns = list(record)
        placeholders = ", ".join(["?"] * len(columns))
        cursor = self._connection.execute(
            f"INSERT OR IGNORE INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [record[column] for column in columns],
        )
        if cursor.rowcount == 1:
            return int(cursor.lastrowid)
        row = self._connection.execute(
            f"SELECT id FROM {table} WHERE idempotency_key = ?",
            (record["idempotency_key"],),
        ).fetchone()
        if row is None:
            raise sqlite3.IntegrityError(f"Insert into {table} was ignored.")
        return int(row["id"])

    def append_maintenance_record(self, record: MaintenanceRecord) -> MaintenanceRecord:
        stored = replace(record, created_at=record.created_at or _now_iso())
        try:
            record_id = self._insert_or_ignore(
                "maintenance_records", maintenance_record_to_record(stored)
            )
        except Exception:
            self._logger.exception(
                "Failed to append maintenance record equipment_id=%s",
                record.equipment_id,
            )
            raise
        existing = self.get_maintenance_record(record_id)
        return existing if existing else replace(stored, id=record_id)

    def append_customer_transaction(self, txn: CustomerTransaction) -> CustomerTransaction:
        stored = replace(txn, created_at=txn.created_at or _now_iso())
        try:
            txn_id = self._insert_or_ignore(
                "customer_transactions", customer_transaction_to_record(stored)
            )
        except Exception:
            self._logger.exception(
                "Failed to append customer transaction customer_id=%s", txn.customer_id
            )
            raise
        existing = self.get_customer_transaction(txn_id)
        return existing if existing else replace(stored, id=txn_id)

    def get_maintenance_record(self, record_id: int) -> Optional[MaintenanceRecord]:
        row = self._connection.execute(
            "SELECT * FROM maintenance_records WHERE id = ?",
            (record_id,),
        ).fetchone()
        return maintenance_record_from_row(row) if row else None

    def get_customer_transaction(self, txn_id: int) -> Optional[CustomerTransaction]:
        row = self._connection.execute(
            "SELECT * FROM customer_transactions WHERE id = ?",
            (txn_id,),
        ).fetchone()
        return customer_transaction_from_row(row) if row else None

    def list_maintenance_records(self, equipment_id: int) -> List[MaintenanceRecord]:
        try:
            rows = self._connection.execute(
                """
                SELECT *
                FROM maintenance_records
                WHERE equipment_id = ?
                ORDER BY maintenance_date DESC, id DESC
                """,
                (equipment_id,),
            ).fetchall()
        except Exception:
            self._logger.exception(
                "Failed to list maintenance records equipment_id=%s", equipment_id
            )
            raise
        return [maintenance_record_from_row(row) for row in rows]

    def list_customer_transactions(
        self, customer_id: int, reference_id: Optional[int] = None
    ) -> List[CustomerTransaction]:
        query = "SELECT * FROM customer_transactions WHERE customer_id = ?"
        params: list[object] = [customer_id]
        if reference_id is not None:
            query += " AND reference_id = ?"
            params.append(reference_id)
        query += " ORDER BY transaction_date DESC, id DESC"
        try:
            rows = self._connection.execute(query, params).fetchall()
        except Exception:
            self._logger.exception(
                "Failed to list customer transactions customer_id=%s", customer_id
            )
            raise
        return [customer_transaction_from_row(row) for row in rows]
