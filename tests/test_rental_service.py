import threading
from datetime import date, datetime

import pytest

from equipment_rental.db.connection import get_connection
from equipment_rental.domain.models import ItemStatus, RentalStatus
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.rental_repo import RentalRepository
from equipment_rental.services.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from equipment_rental.services.rental_service import (
    WAIVER_MISSING,
    RentalService,
    computed_status,
)


def test_create_rental_prices_and_claims_items(connection, customer, make_item, sign_waiver):
    board = make_item("Surfboard", rental_price=25.0)
    wetsuit = make_item("Wetsuit", rental_price=10.0)
    sign_waiver(customer)

    creation = RentalService(connection).create_rental(
        customer.id,
        "2024-07-01T09:00",
        "2024-07-04T09:00",
        [
            {"inventory_item_id": board.id, "quantity": 1, "insurance_selected": True},
            {"inventory_item_id": wetsuit.id, "quantity": 2, "daily_rate": 8.0},
        ],
        today=date(2024, 7, 1),
    )

    rental = creation.rental
    assert creation.warnings == ()
    assert rental.waiver_collected is True
    assert rental.status == RentalStatus.ACTIVE
    # 3 days: 25*1*3 + 8*2*3 = 123, insurance 5*1*3 = 15
    assert rental.insurance_cost == 15
    assert rental.total_amount == 138
    assert len(rental.items) == 2

    items = InventoryRepository(connection)
    for item_id in (board.id, wetsuit.id):
        stored = items.get(item_id)
        assert stored.status == ItemStatus.RENTED
        assert stored.current_renter == customer.full_name
        assert stored.expected_return == rental.end_date


def test_create_rental_without_waiver_warns(connection, customer, make_item):
    board = make_item()
    creation = RentalService(connection).create_rental(
        customer.id, "2024-07-01", "2024-07-02", [{"inventory_item_id": board.id}]
    )
    assert creation.warnings == (WAIVER_MISSING,)
    assert creation.rental.waiver_collected is False


def test_create_rental_can_require_waiver(connection, customer, make_item):
    board = make_item()
    with pytest.raises(PolicyViolation):
        RentalService(connection).create_rental(
            customer.id,
            "2024-07-01",
            "2024-07-02",
            [{"inventory_item_id": board.id}],
            require_waiver=True,
        )
    assert InventoryRepository(connection).get(board.id).status == ItemStatus.AVAILABLE


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"inventory_item_id": 1, "quantity": 0}],
        [{"inventory_item_id": 1, "daily_rate": -1}],
        [{"inventory_item_id": 1}, {"inventory_item_id": 1}],
    ],
)
def test_create_rental_rejects_bad_items(connection, customer, make_item, items):
    make_item()
    with pytest.raises(ValidationError):
        RentalService(connection).create_rental(customer.id, "2024-07-01", "2024-07-02", items)


def test_create_rental_rejects_end_before_start(connection, customer, make_item):
    board = make_item()
    with pytest.raises(ValidationError):
        RentalService(connection).create_rental(
            customer.id, "2024-07-05", "2024-07-02", [{"inventory_item_id": board.id}]
        )


def test_create_rental_unknown_customer_or_item(connection, customer, make_item):
    board = make_item()
    service = RentalService(connection)
    with pytest.raises(NotFoundError):
        service.create_rental(999, "2024-07-01", "2024-07-02", [{"inventory_item_id": board.id}])
    with pytest.raises(NotFoundError):
        service.create_rental(customer.id, "2024-07-01", "2024-07-02", [{"inventory_item_id": 999}])


def test_unavailable_item_conflicts_and_nothing_persists(connection, customer, make_item):
    free = make_item("Bodyboard")
    busy = make_item("Surfboard", status=ItemStatus.MAINTENANCE)

    with pytest.raises(ConflictError):
        RentalService(connection).create_rental(
            customer.id,
            "2024-07-01",
            "2024-07-02",
            [{"inventory_item_id": free.id}, {"inventory_item_id": busy.id}],
        )

    assert RentalRepository(connection).list_all() == []
    assert InventoryRepository(connection).get(free.id).status == ItemStatus.AVAILABLE


def test_concurrent_creates_for_the_last_item(db_path, customer, make_item):
    board = make_item()
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _attempt():
        connection = get_connection(db_path)
        try:
            barrier.wait()
            RentalService(connection).create_rental(
                customer.id, "2024-07-01", "2024-07-02", [{"inventory_item_id": board.id}]
            )
            outcome = "created"
        except ConflictError:
            outcome = "conflict"
        finally:
            connection.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict", "created"]
    connection = get_connection(db_path)
    try:
        assert len(RentalRepository(connection).list_active()) == 1
    finally:
        connection.close()


def test_computed_status_derives_overdue(connection, customer, make_item, rent):
    rental = rent(customer, [make_item()], start=datetime(2024, 7, 1), days=2)

    assert computed_status(rental, datetime(2024, 7, 3, 23, 0)) == RentalStatus.ACTIVE
    assert computed_status(rental, datetime(2024, 7, 4, 0, 1)) == RentalStatus.OVERDUE
    # Never written back.
    assert RentalRepository(connection).get(rental.id).status == RentalStatus.ACTIVE

    service = RentalService(connection)
    assert [r.id for r in service.list_overdue_rentals(date(2024, 7, 10))] == [rental.id]
    assert service.list_overdue_rentals(date(2024, 7, 2)) == []


def test_terminal_statuses_pass_through(connection, customer, make_item, rent):
    rental = rent(customer, [make_item()], start=datetime(2024, 7, 1))
    cancelled = RentalService(connection).cancel_rental(rental.id)
    assert computed_status(cancelled, datetime(2030, 1, 1)) == RentalStatus.CANCELLED


def test_cancel_rental_releases_items(connection, customer, make_item, rent):
    board = make_item()
    rental = rent(customer, [board])
    service = RentalService(connection)

    cancelled = service.cancel_rental(rental.id, reason="Bad weather")

    assert cancelled.status == RentalStatus.CANCELLED
    assert cancelled.notes.endswith("Cancelled: Bad weather")
    item = InventoryRepository(connection).get(board.id)
    assert item.status == ItemStatus.AVAILABLE
    assert item.current_renter is None
    assert item.expected_return is None

    again = service.cancel_rental(rental.id, reason="Twice")
    assert again.notes == cancelled.notes


def test_cancel_returned_rental_is_rejected(connection, customer, make_item, rent):
    rental = rent(customer, [make_item()])
    RentalRepository(connection).update(rental.id, status=RentalStatus.RETURNED)
    connection.commit()
    with pytest.raises(ValidationError):
        RentalService(connection).cancel_rental(rental.id)


def test_get_rental_missing(connection):
    with pytest.raises(NotFoundError):
        RentalService(connection).get_rental(42)


def test_mark_waiver_collected(connection, customer, make_item, rent):
    rental = rent(customer, [make_item()])
    assert rental.waiver_collected is False
    updated = RentalService(connection).mark_waiver_collected(rental.id)
    assert updated.waiver_collected is True


def test_rental_stats(connection, customer, make_item, rent):
    service = RentalService(connection)
    first = rent(customer, [make_item()], start=datetime(2024, 7, 1), days=1)
    rent(customer, [make_item()], start=datetime(2024, 7, 20), days=1)
    third = rent(customer, [make_item()], start=datetime(2024, 7, 20), days=1)
    service.cancel_rental(third.id)

    stats = service.rental_stats(datetime(2024, 7, 10))

    assert stats.total == 3
    assert stats.overdue == 1
    assert stats.active == 1
    assert stats.cancelled == 1
    assert stats.revenue == round(first.total_amount * 2, 2)
    assert [r.id for r in service.list_rentals_by_customer(customer.id)][-1] == first.id
