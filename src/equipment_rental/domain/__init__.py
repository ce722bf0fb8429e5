"""Domain models for the equipment rental engine."""

from equipment_rental.domain.models import (
    ActivityType,
    Customer,
    CustomerTransaction,
    DamageAssessment,
    InventoryItem,
    ItemCondition,
    ItemStatus,
    MaintenanceRecord,
    MaintenanceType,
    PaymentMethod,
    Rental,
    RentalItem,
    RentalStatus,
    ReturnCondition,
    Waiver,
    WaiverStatus,
)

__all__ = [
    "ActivityType",
    "Customer",
    "CustomerTransaction",
    "DamageAssessment",
    "InventoryItem",
    "ItemCondition",
    "ItemStatus",
    "MaintenanceRecord",
    "MaintenanceType",
    "PaymentMethod",
    "Rental",
    "RentalItem",
    "RentalStatus",
    "ReturnCondition",
    "Waiver",
    "WaiverStatus",
]
