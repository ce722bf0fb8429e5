"""Repository for the return completion outbox."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from equipment_rental.logging_config import get_logger


@dataclass(frozen=True)
class ReturnIntent:
    id: int
    rental_id: int
    mode: str
    payload: dict[str, Any]
    created_at: str
    completed_at: Optional[str]


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _intent_from_row(row: sqlite3.Row) -> ReturnIntent:
    return ReturnIntent(
        id=int(row["id"]),
        rental_id=int(row["rental_id"]),
        mode=row["mode"],
        payload=json.loads(row["payload"]),
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )


class ReturnIntentRepository:
    """Intent records and per-step markers. Writes do not commit."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._logger = get_logger(self.__class__.__name__)

    def create(self, rental_id: int, mode: str, payload: dict[str, Any]) -> ReturnIntent:
        created_at = _now_iso()
        try:
            cursor = self._connection.execute(
                """
                INSERT INTO return_intents (rental_id, mode, payload, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (rental_id, mode, json.dumps(payload, ensure_ascii=False), created_at),
            )
        except Exception:
            self._logger.exception("Failed to create return intent rental_id=%s", rental_id)
            raise
        return ReturnIntent(
            id=int(cursor.lastrowid),
            rental_id=rental_id,
            mode=mode,
            payload=payload,
            created_at=created_at,
            completed_at=None,
        )

    def get_by_rental(self, rental_id: int) -> Optional[ReturnIntent]:
        try:
            row = self._connection.execute(
                "SELECT * FROM return_intents WHERE rental_id = ?",
                (rental_id,),
            ).fetchone()
        except Exception:
            self._logger.exception("Failed to fetch return intent rental_id=%s", rental_id)
            raise
        return _intent_from_row(row) if row else None

    def list_pending(self) -> List[ReturnIntent]:
        try:
            rows = self._connection.execute(
                "SELECT * FROM return_intents WHERE completed_at IS NULL ORDER BY id"
            ).fetchall()
        except Exception:
            self._logger.exception("Failed to list pending return intents")
            raise
        return [_intent_from_row(row) for row in rows]

    def applied_steps(self, intent_id: int) -> set[str]:
        rows = self._connection.execute(
            "SELECT step FROM return_intent_steps WHERE intent_id = ?",
            (intent_id,),
        ).fetchall()
        return {row["step"] for row in rows}

    def mark_step(self, intent_id: int, step: str) -> None:
        self._connection.execute(
            """
            INSERT OR IGNORE INTO return_intent_steps (intent_id, step, applied_at)
            VALUES (?, ?, ?)
            """,
            (intent_id, step, _now_iso()),
        )

    def mark_completed(self, intent_id: int) -> None:
        self._connection.execute(
            """
            UPDATE return_intents
            SET completed_at = ?
            WHERE id = ?
              AND completed_at IS NULL
            """,
            (_now_iso(), intent_id),
        )
