"""Repositories for data access."""

from equipment_rental.repositories.customer_repo import CustomerRepo
from equipment_rental.repositories.history_repo import HistoryRepository
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.mappers import (
    customer_from_row,
    customer_transaction_from_row,
    inventory_item_from_row,
    maintenance_record_from_row,
    rental_from_row,
    rental_item_from_row,
    waiver_from_row,
)
from equipment_rental.repositories.rental_repo import NewRentalLine, RentalRepository
from equipment_rental.repositories.return_intent_repo import (
    ReturnIntent,
    ReturnIntentRepository,
)
from equipment_rental.repositories.waiver_repo import WaiverRepository

__all__ = [
    "CustomerRepo",
    "customer_from_row",
    "customer_transaction_from_row",
    "HistoryRepository",
    "inventory_item_from_row",
    "InventoryRepository",
    "maintenance_record_from_row",
    "NewRentalLine",
    "rental_from_row",
    "rental_item_from_row",
    "RentalRepository",
    "ReturnIntent",
    "ReturnIntentRepository",
    "waiver_from_row",
    "WaiverRepository",
]
