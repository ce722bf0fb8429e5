"""Domain dataclasses and enums."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RentalStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class ItemCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_REPAIR = "needs-repair"
    RETIRED = "retired"


class ReturnCondition(str, Enum):
    """Condition assigned to an item during return inspection."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    DAMAGED = "damaged"


class WaiverStatus(str, Enum):
    SIGNED = "signed"
    PENDING = "pending"
    EXPIRED = "expired"


class ActivityType(str, Enum):
    RENTAL = "rental"
    LESSON = "lesson"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH = "cash"


class MaintenanceType(str, Enum):
    CLEANING = "cleaning"
    REPAIR = "repair"
    INSPECTION = "inspection"
    REPLACEMENT = "replacement"
    UPGRADE = "upgrade"


@dataclass(slots=True)
class Customer:
    id: Optional[int]
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(slots=True)
class InventoryItem:
    id: Optional[int]
    item_code: str
    name: str
    category: Optional[str]
    brand: Optional[str]
    status: ItemStatus
    condition: ItemCondition
    rental_price: float
    current_renter: Optional[str] = None
    expected_return: Optional[str] = None
    total_rentals: int = 0
    total_revenue: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(slots=True)
class RentalItem:
    id: Optional[int]
    rental_id: int
    inventory_item_id: int
    quantity: int
    daily_rate: float
    insurance_selected: bool = False
    item_notes: str = ""
    created_at: Optional[str] = None


@dataclass(slots=True)
class Rental:
    id: Optional[int]
    customer_id: int
    customer_name: str
    start_date: str
    end_date: str
    status: RentalStatus
    total_amount: float
    insurance_cost: float = 0.0
    late_fees: float = 0.0
    damage_charges: float = 0.0
    return_date: Optional[str] = None
    waiver_collected: bool = False
    notes: str = ""
    items: list[RentalItem] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(slots=True)
class Waiver:
    id: Optional[int]
    customer_id: Optional[int]
    customer_name: str
    activities: tuple[str, ...]
    status: WaiverStatus
    signed_date: Optional[str] = None
    expiry_date: Optional[str] = None
    rental_id: Optional[int] = None
    notes: str = ""
    created_at: Optional[str] = None


@dataclass(slots=True)
class MaintenanceRecord:
    id: Optional[int]
    equipment_id: int
    maintenance_type: MaintenanceType
    maintenance_date: str
    performed_by: str
    description: str
    cost: float
    condition_before: str
    condition_after: str
    downtime_hours: int
    warranty_work: bool = False
    maintenance_notes: str = ""
    photos_taken: bool = False
    idempotency_key: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(slots=True)
class CustomerTransaction:
    id: Optional[int]
    customer_id: int
    transaction_type: str
    transaction_date: str
    amount: float
    payment_method: str
    reference_id: Optional[int]
    reference_type: Optional[str]
    description: str
    items: list[dict[str, object]] = field(default_factory=list)
    staff_member: Optional[str] = None
    notes: str = ""
    idempotency_key: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DamageAssessment:
    """Inspection outcome for one returned inventory item."""

    item_id: int
    condition: ReturnCondition = ReturnCondition.GOOD
    damage_description: str = ""
    estimated_repair_cost: float = 0.0
    covered_by_insurance: bool = False
    photos_uploaded: bool = False

    @property
    def is_damaged(self) -> bool:
        return self.condition == ReturnCondition.DAMAGED
