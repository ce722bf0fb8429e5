"""Repository for waiver persistence."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional

from equipment_rental.domain.models import Waiver, WaiverStatus
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.mappers import waiver_from_row


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class WaiverRepository:
    """Data access for waivers. Writes do not commit."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def create(
        self,
        customer_id: Optional[int],
        customer_name: str,
        activities: Iterable[str],
        status: WaiverStatus,
        *,
        signed_date: Optional[str] = None,
        expiry_date: Optional[str] = None,
        rental_id: Optional[int] = None,
        notes: str = "",
    ) -> Waiver:
        activity_list = [str(activity) for activity in activities]
        created_at = _now_iso()
        try:
            cursor = self._connection.execute(
                """
                INSERT INTO waivers (
                    customer_id,
                    customer_name,
                    activities,
                    status,
                    signed_date,
                    expiry_date,
                    rental_id,
                    notes,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    customer_id,
                    customer_name,
                    json.dumps(activity_list, ensure_ascii=False),
                    WaiverStatus(status).value,
                    signed_date,
                    expiry_date,
                    rental_id,
                    notes,
                    created_at,
                ),
            )
        except Exception:
            self._logger.exception("Failed to create waiver customer_id=%s", customer_id)
            raise
        return Waiver(
            id=int(cursor.lastrowid),
            customer_id=customer_id,
            customer_name=customer_name,
            activities=tuple(activity_list),
            status=WaiverStatus(status),
            signed_date=signed_date,
            expiry_date=expiry_date,
            rental_id=rental_id,
            notes=notes,
            created_at=created_at,
        )

    def get(self, waiver_id: int) -> Optional[Waiver]:
        try:
            row = self._connection.execute(
                "SELECT * FROM waivers WHERE id = ?",
                (waiver_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to fetch waiver id=%s", waiver_id)
            raise
        return waiver_from_row(row) if row else None

    def get_latest(self, customer_id: int) -> Optional[Waiver]:
        """Most recent waiver of a customer, whatever its status."""
        try:
            row = self._connection.execute(
                """
                SELECT *
                FROM waivers
                WHERE customer_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (customer_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to fetch latest waiver customer_id=%s", customer_id)
            raise
        return waiver_from_row(row) if row else None

    def get_latest_signed(self, customer_id: int, today: str) -> Optional[Waiver]:
        """Most recent signed waiver that has not expired on ``today``."""
        try:
            row = self._connection.execute(
                """
                SELECT *
                FROM waivers
                WHERE customer_id = ?
                  AND status = ?
                  AND expiry_date >= ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (customer_id, WaiverStatus.SIGNED.value, today),
            ).fetchone()
        except Exception:
            self._logger.exception(
                "Failed to fetch latest signed waiver customer_id=%s", customer_id
            )
            raise
        return waiver_from_row(row) if row else None

    def list_by_customer(self, customer_id: int) -> List[Waiver]:
        try:
            rows = self._connection.execute(
                """
                SELECT *
                FROM waivers
                WHERE customer_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (customer_id,),
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list waivers customer_id=%s", customer_id)
            raise
        return [waiver_from_row(row) for row in rows]

    def list_signed_expiring_between(self, start: str, end: str) -> List[Waiver]:
        try:
            rows = self._connection.execute(
                """
                SELECT *
                FROM waivers
                WHERE status = ?
                  AND expiry_date >= ?
                  AND expiry_date <= ?
                ORDER BY expiry_date, id
                """,
                (WaiverStatus.SIGNED.value, start, end),
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list waivers expiring soon")
            raise
        return [waiver_from_row(row) for row in rows]

    def expire_signed_before(self, today: str) -> List[int]:
        """Flip signed waivers past their expiry date to expired."""
        try:
            rows = self._connection.execute(
                """
                SELECT id
                FROM waivers
                WHERE status = ?
                  AND expiry_date < ?
                ORDER BY id
                """,
                (WaiverStatus.SIGNED.value, today),
            ).fetchall()
            ids = [int(row["id"]) for row in rows]
            if ids:
                placeholders = ", ".join(["?"] * len(ids))
                self._connection.execute(
                    f"UPDATE waivers SET status = ? WHERE id IN ({placeholders})",
                    (WaiverStatus.EXPIRED.value, *ids),
                )
        except Exception:
            self._logger.exception("Failed to expire waivers before %s", today)
            raise
        return ids
