"""SQLite row mappers for domain models."""

from __future__ import annotations

import json
import sqlite3
from enum import Enum
from typing import Any, Dict, Iterable

from equipment_rental.domain.models import (
    Customer,
    CustomerTransaction,
    InventoryItem,
    ItemCondition,
    ItemStatus,
    MaintenanceRecord,
    MaintenanceType,
    Rental,
    RentalItem,
    RentalStatus,
    Waiver,
    WaiverStatus,
)


def _row_value(row: sqlite3.Row, key: str) -> Any:
    return row[key] if key in row.keys() else None


def _load_json_list(raw: Any) -> list:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return []
    return data if isinstance(data, list) else []


def to_column_value(value: Any) -> Any:
    """Convert a domain value into something SQLite stores."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def build_assignments(
    table: str, allowed: Iterable[str], values: Dict[str, Any]
) -> tuple[str, list[Any]]:
    """Build a SET clause for whitelisted columns.

    Unknown columns raise ``ValueError`` instead of reaching the SQL text.
    """
    allowed_columns = set(allowed)
    unknown = sorted(set(values) - allowed_columns)
    if unknown:
        raise ValueError(f"Unknown {table} field(s): {', '.join(unknown)}")
    if not values:
        raise ValueError(f"No {table} fields to update.")
    columns = sorted(values)
    clause = ", ".join(f"{column} = ?" for column in columns)
    return clause, [to_column_value(values[column]) for column in columns]


def customer_from_row(row: sqlite3.Row) -> Customer:
    return Customer(
        id=_row_value(row, "id"),
        full_name=row["full_name"],
        email=_row_value(row, "email"),
        phone=_row_value(row, "phone"),
        created_at=_row_value(row, "created_at"),
    )


def inventory_item_from_row(row: sqlite3.Row) -> InventoryItem:
    return InventoryItem(
        id=_row_value(row, "id"),
        item_code=row["item_code"],
        name=row["name"],
        category=_row_value(row, "category"),
        brand=_row_value(row, "brand"),
        status=ItemStatus(row["status"]),
        condition=ItemCondition(row["condition"]),
        rental_price=float(row["rental_price"] or 0),
        current_renter=_row_value(row, "current_renter"),
        expected_return=_row_value(row, "expected_return"),
        total_rentals=int(_row_value(row, "total_rentals") or 0),
        total_revenue=float(_row_value(row, "total_revenue") or 0),
        notes=_row_value(row, "notes"),
        created_at=_row_value(row, "created_at"),
        updated_at=_row_value(row, "updated_at"),
    )


def rental_from_row(row: sqlite3.Row) -> Rental:
    return Rental(
        id=_row_value(row, "id"),
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        status=RentalStatus(row["status"]),
        total_amount=float(row["total_amount"] or 0),
        insurance_cost=float(_row_value(row, "insurance_cost") or 0),
        late_fees=float(_row_value(row, "late_fees") or 0),
        damage_charges=float(_row_value(row, "damage_charges") or 0),
        return_date=_row_value(row, "return_date"),
        waiver_collected=bool(_row_value(row, "waiver_collected") or 0),
        notes=_row_value(row, "notes") or "",
        created_at=_row_value(row, "created_at"),
        updated_at=_row_value(row, "updated_at"),
    )


def rental_item_from_row(row: sqlite3.Row) -> RentalItem:
    return RentalItem(
        id=_row_value(row, "id"),
        rental_id=row["rental_id"],
        inventory_item_id=row["inventory_item_id"],
        quantity=int(row["quantity"]),
        daily_rate=float(row["daily_rate"]),
        insurance_selected=bool(_row_value(row, "insurance_selected") or 0),
        item_notes=_row_value(row, "item_notes") or "",
        created_at=_row_value(row, "created_at"),
    )


def waiver_from_row(row: sqlite3.Row) -> Waiver:
    return Waiver(
        id=_row_value(row, "id"),
        customer_id=_row_value(row, "customer_id"),
        customer_name=row["customer_name"],
        activities=tuple(str(item) for item in _load_json_list(row["activities"])),
        status=WaiverStatus(row["status"]),
        signed_date=_row_value(row, "signed_date"),
        expiry_date=_row_value(row, "expiry_date"),
        rental_id=_row_value(row, "rental_id"),
        notes=_row_value(row, "notes") or "",
        created_at=_row_value(row, "created_at"),
    )


def maintenance_record_from_row(row: sqlite3.Row) -> MaintenanceRecord:
    return MaintenanceRecord(
        id=_row_value(row, "id"),
        equipment_id=row["equipment_id"],
        maintenance_type=MaintenanceType(row["maintenance_type"]),
        maintenance_date=row["maintenance_date"],
        performed_by=row["performed_by"],
        description=row["description"],
        cost=float(row["cost"]),
        condition_before=row["condition_before"],
        condition_after=row["condition_after"],
        downtime_hours=int(row["downtime_hours"]),
        warranty_work=bool(_row_value(row, "warranty_work") or 0),
        maintenance_notes=_row_value(row, "maintenance_notes") or "",
        photos_taken=bool(_row_value(row, "photos_taken") or 0),
        idempotency_key=_row_value(row, "idempotency_key"),
        created_at=_row_value(row, "created_at"),
    )


def maintenance_record_to_record(record: MaintenanceRecord) -> Dict[str, Any]:
    return {
        "equipment_id": record.equipment_id,
        "maintenance_type": to_column_value(record.maintenance_type),
        "maintenance_date": record.maintenance_date,
        "performed_by": record.performed_by,
        "description": record.description,
        "cost": record.cost,
        "condition_before": record.condition_before,
        "condition_after": record.condition_after,
        "downtime_hours": record.downtime_hours,
        "warranty_work": int(record.warranty_work),
        "maintenance_notes": record.maintenance_notes,
        "photos_taken": int(record.photos_taken),
        "idempotency_key": record.idempotency_key,
        "created_at": record.created_at,
    }


def customer_transaction_from_row(row: sqlite3.Row) -> CustomerTransaction:
    return CustomerTransaction(
        id=_row_value(row, "id"),
        customer_id=row["customer_id"],
        transaction_type=row["transaction_type"],
        transaction_date=row["transaction_date"],
        amount=float(row["amount"]),
        payment_method=row["payment_method"],
        reference_id=_row_value(row, "reference_id"),
        reference_type=_row_value(row, "reference_type"),
        description=row["description"],
        items=_load_json_list(_row_value(row, "items_json")),
        staff_member=_row_value(row, "staff_member"),
        notes=_row_value(row, "notes") or "",
        idempotency_key=_row_value(row, "idempotency_key"),
        created_at=_row_value(row, "created_at"),
    )


def customer_transaction_to_record(txn: CustomerTransaction) -> Dict[str, Any]:
    return {
        "customer_id": txn.customer_id,
        "transaction_type": txn.transaction_type,
        "transaction_date": txn.transaction_date,
        "amount": txn.amount,
        "payment_method": txn.payment_method,
        "reference_id": txn.reference_id,
        "reference_type": txn.reference_type,
        "description": txn.description,
        "items_json": json.dumps(txn.items, ensure_ascii=False),
        "staff_member": txn.staff_member,
        "notes": txn.notes,
        "idempotency_key": txn.idempotency_key,
        "created_at": txn.created_at,
    }
