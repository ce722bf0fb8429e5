"""Shared fixtures: a migrated temporary database and seed helpers."""

from datetime import date, datetime, timedelta

import pytest

from equipment_rental.config import DEFAULT_POLICY, EQUIPMENT_RENTAL_ACTIVITY
from equipment_rental.db.connection import get_connection
from equipment_rental.db.migrations import apply_migrations
from equipment_rental.domain.models import ItemStatus
from equipment_rental.repositories.customer_repo import CustomerRepo
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.services.rental_service import RentalService
from equipment_rental.services.waiver_service import WaiverService


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "rental_engine.db"
    connection = get_connection(path)
    apply_migrations(connection)
    connection.close()
    return path


@pytest.fixture
def connection(db_path):
    connection = get_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def policy():
    return DEFAULT_POLICY


@pytest.fixture
def customer(connection):
    return CustomerRepo(connection).create("Maria Silva", email="maria@example.com")


@pytest.fixture
def make_item(connection):
    repo = InventoryRepository(connection)
    counter = {"value": 0}

    def _make(name="Surfboard", rental_price=25.0, status=ItemStatus.AVAILABLE, **kwargs):
        counter["value"] += 1
        return repo.create(
            f"EQ-{counter['value']:03d}",
            name,
            rental_price,
            status=status,
            **kwargs,
        )

    return _make


@pytest.fixture
def sign_waiver(connection):
    def _sign(customer, activities=(EQUIPMENT_RENTAL_ACTIVITY,), signed_at=None):
        return WaiverService(connection).create_waiver(
            customer.full_name,
            list(activities),
            customer_id=customer.id,
            signed_at=signed_at,
        )

    return _sign


@pytest.fixture
def rent(connection):
    """Create a rental for the given items, ending ``days`` days after ``start``."""

    def _rent(customer, items, start=None, days=2, **item_options):
        start = start or datetime.combine(date.today(), datetime.min.time())
        payload = [
            {"inventory_item_id": item.id, "quantity": 1, **item_options}
            for item in items
        ]
        return RentalService(connection).create_rental(
            customer.id, start, start + timedelta(days=days), payload
        ).rental

    return _rent
