from datetime import datetime

import pytest

from equipment_rental.domain.models import (
    ItemCondition,
    ItemStatus,
    ReturnCondition,
    RentalStatus,
)
from equipment_rental.repositories.history_repo import HistoryRepository
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.rental_repo import RentalRepository
from equipment_rental.repositories.return_intent_repo import ReturnIntentRepository
from equipment_rental.services.errors import (
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from equipment_rental.services.inventory_service import InventoryService
from equipment_rental.services.rental_service import RentalService
from equipment_rental.services.return_workflow import (
    REFERENCE_DAMAGE,
    REFERENCE_LATE_FEE,
    ReturnService,
    ReturnStep,
    advance,
    amount_due,
    choose_payment_method,
    damage_charges,
    go_back,
    set_condition,
    set_damage_details,
    set_return_date,
    set_return_notes,
)

LATE_RETURN = datetime(2024, 7, 5, 10, 0)


@pytest.fixture
def rented(customer, make_item, rent):
    board = make_item("Surfboard", rental_price=25.0)
    leash = make_item("Leash", rental_price=3.0)
    rental = rent(customer, [board, leash], start=datetime(2024, 7, 1), days=2)
    return rental, board, leash


def _damaged_state(service, rental, board, leash, notes=""):
    state = service.start_return(rental.id, return_date=LATE_RETURN)
    state = set_condition(state, board.id, "damaged")
    state = set_condition(state, leash.id, ReturnCondition.EXCELLENT)
    state = advance(state)
    state = set_damage_details(state, board.id, "Cracked fin", 60)
    state = advance(state)
    state = set_return_notes(choose_payment_method(state, "card"), notes)
    return advance(state)


def test_inspection_without_damage_skips_damage_step(connection, rented):
    rental, _, _ = rented
    state = ReturnService(connection).start_return(rental.id, return_date=datetime(2024, 7, 2))
    assert state.step == ReturnStep.INSPECTION
    assert state.late_fee == 0
    state = advance(state)
    assert state.step == ReturnStep.PAYMENT
    assert go_back(state).step == ReturnStep.INSPECTION
    state = advance(state)
    assert state.step == ReturnStep.COMPLETE
    with pytest.raises(ValidationError):
        advance(state)


def test_damage_step_requires_description_and_cost(connection, rented):
    rental, board, _ = rented
    state = ReturnService(connection).start_return(rental.id, return_date=datetime(2024, 7, 2))
    state = advance(set_condition(state, board.id, "damaged"))
    assert state.step == ReturnStep.DAMAGE
    with pytest.raises(ValidationError):
        advance(state)

    state = set_damage_details(state, board.id, "Cracked fin", 0)
    with pytest.raises(ValidationError):
        advance(state)

    state = set_damage_details(state, board.id, "Cracked fin", 60)
    state = advance(state)
    assert state.step == ReturnStep.PAYMENT
    assert damage_charges(state) == 60


def test_payment_requires_method_when_money_is_owed(connection, rented):
    rental, _, _ = rented
    state = ReturnService(connection).start_return(rental.id, return_date=LATE_RETURN)
    state = advance(state)
    assert amount_due(state) == 50
    with pytest.raises(PolicyViolation):
        advance(state)
    state = advance(choose_payment_method(state, "cash"))
    assert state.step == ReturnStep.COMPLETE


def test_leaving_damaged_clears_details(connection, rented):
    rental, board, _ = rented
    state = ReturnService(connection).start_return(rental.id)
    state = set_condition(state, board.id, "damaged")
    state = set_damage_details(state, board.id, "Dent", 20, photos_uploaded=True)
    state = set_condition(state, board.id, "fair")
    assessment = state.assessment_for(board.id)
    assert assessment.damage_description == ""
    assert assessment.estimated_repair_cost == 0
    assert not state.has_damage


def test_condition_input_is_checked(connection, rented):
    rental, board, leash = rented
    state = ReturnService(connection).start_return(rental.id)
    with pytest.raises(NotFoundError):
        set_condition(state, 999, "good")
    with pytest.raises(ValidationError):
        set_condition(state, board.id, "shiny")
    with pytest.raises(ValidationError):
        set_damage_details(state, leash.id, "Not damaged", 10)
    with pytest.raises(ValidationError):
        choose_payment_method(state, "voucher")


def test_return_date_drives_late_fee(connection, rented):
    rental, _, _ = rented
    state = ReturnService(connection).start_return(rental.id, return_date=datetime(2024, 7, 2))
    assert state.late_fee == 0
    state = set_return_date(state, "2024-07-03T12:00")
    assert state.late_fee == 50


def test_full_completion_records_everything(connection, customer, rented):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = _damaged_state(service, rental, board, leash, notes="Wax missing")

    result = service.complete_return(state)

    returned = result.rental
    assert returned.status == RentalStatus.RETURNED
    assert returned.late_fees == 50
    assert returned.damage_charges == 60
    assert returned.return_date == LATE_RETURN.isoformat(timespec="seconds")
    assert returned.notes.endswith("\n\nReturn notes: Wax missing")

    items = InventoryRepository(connection)
    damaged = items.get(board.id)
    assert damaged.status == ItemStatus.MAINTENANCE
    assert damaged.condition == ItemCondition.NEEDS_REPAIR
    assert damaged.current_renter is None
    assert "Damage reported on return (2024-07-05): Cracked fin" in damaged.notes
    clean = items.get(leash.id)
    assert clean.status == ItemStatus.AVAILABLE
    assert clean.condition == ItemCondition.EXCELLENT
    assert clean.expected_return is None

    history = HistoryRepository(connection)
    records = history.list_maintenance_records(board.id)
    assert len(records) == 1
    assert records[0].performed_by == "System (Damage Report)"
    assert records[0].cost == 60
    assert records[0].downtime_hours == 24
    assert records[0].condition_after == "needs-repair"
    assert "Not covered by insurance." in records[0].maintenance_notes
    assert history.list_maintenance_records(leash.id) == []

    transactions = {
        txn.reference_type: txn
        for txn in history.list_customer_transactions(customer.id, reference_id=rental.id)
    }
    assert set(transactions) == {REFERENCE_DAMAGE, REFERENCE_LATE_FEE}
    assert transactions[REFERENCE_DAMAGE].amount == 60
    assert transactions[REFERENCE_DAMAGE].payment_method == "card"
    assert transactions[REFERENCE_DAMAGE].items == [
        {"name": "Surfboard", "description": "Cracked fin", "price": 60.0}
    ]
    assert transactions[REFERENCE_LATE_FEE].amount == 50
    assert transactions[REFERENCE_LATE_FEE].staff_member == "System"


def test_insured_damage_is_not_charged(connection, customer, make_item, rent):
    board = make_item("Surfboard")
    rental = rent(customer, [board], start=datetime(2024, 7, 1), days=2, insurance_selected=True)
    service = ReturnService(connection)
    state = service.start_return(rental.id, return_date=datetime(2024, 7, 2))
    state = advance(set_condition(state, board.id, "damaged"))
    state = advance(set_damage_details(state, board.id, "Snapped leash plug", 35))
    assert amount_due(state) == 0
    state = advance(state)

    result = service.complete_return(state)

    assert result.rental.damage_charges == 0
    history = HistoryRepository(connection)
    assert history.list_customer_transactions(customer.id) == []
    record = history.list_maintenance_records(board.id)[0]
    assert "Covered by rental insurance." in record.maintenance_notes


def test_completing_twice_does_not_charge_twice(connection, customer, rented):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = _damaged_state(service, rental, board, leash)

    service.complete_return(state)
    again = service.complete_return(state)

    assert again.applied_steps == ()
    history = HistoryRepository(connection)
    assert len(history.list_customer_transactions(customer.id)) == 2
    assert len(history.list_maintenance_records(board.id)) == 1


def test_resume_finishes_after_a_failed_step(connection, customer, rented, monkeypatch):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = _damaged_state(service, rental, board, leash)

    def _ledger_down(self, txn):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(HistoryRepository, "append_customer_transaction", _ledger_down)
    with pytest.raises(RuntimeError):
        service.complete_return(state)
    monkeypatch.undo()

    history = HistoryRepository(connection)
    assert RentalService(connection).get_rental(rental.id).status == RentalStatus.RETURNED
    assert len(history.list_maintenance_records(board.id)) == 1
    assert history.list_customer_transactions(customer.id) == []
    assert len(ReturnIntentRepository(connection).list_pending()) == 1

    resumed = ReturnService(connection).resume_pending_returns()

    assert [result.applied_steps for result in resumed] == [("damage_charge", "late_fee")]
    assert len(history.list_customer_transactions(customer.id)) == 2
    assert len(history.list_maintenance_records(board.id)) == 1
    assert ReturnIntentRepository(connection).list_pending() == []
    assert ReturnService(connection).resume_return(rental.id).applied_steps == ()


def test_quick_return_round_trip_skips_late_fees(connection, customer, make_item, rented):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = service.start_return(rental.id, return_date=LATE_RETURN)
    assert state.late_fee == 50

    result = service.quick_complete(state)

    assert result.rental.status == RentalStatus.RETURNED
    assert result.rental.late_fees == 0
    assert result.rental.damage_charges == 0
    assert result.applied_steps == ("rental", "inventory")
    assert HistoryRepository(connection).list_customer_transactions(customer.id) == []
    for item_id in (board.id, leash.id):
        item = InventoryRepository(connection).get(item_id)
        assert item.status == ItemStatus.AVAILABLE
        assert item.current_renter is None

    again = RentalService(connection).create_rental(
        customer.id, "2024-08-01", "2024-08-02", [{"inventory_item_id": board.id}]
    )
    assert again.rental.status == RentalStatus.ACTIVE


def test_quick_return_keeps_recorded_condition(connection, customer, make_item, rent):
    longboard = make_item("Longboard", condition=ItemCondition.EXCELLENT)
    wetsuit = make_item("Wetsuit", condition=ItemCondition.FAIR)
    rental = rent(customer, [longboard, wetsuit], start=datetime(2024, 7, 1))
    service = ReturnService(connection)

    state = service.start_return(rental.id, return_date=datetime(2024, 7, 2))
    assert state.assessment_for(longboard.id).condition == ReturnCondition.EXCELLENT
    assert state.assessment_for(wetsuit.id).condition == ReturnCondition.FAIR

    service.quick_complete(state)

    items = InventoryRepository(connection)
    assert items.get(longboard.id).condition == ItemCondition.EXCELLENT
    assert items.get(wetsuit.id).condition == ItemCondition.FAIR


def test_quick_return_leaves_existing_charges(connection, rented):
    rental, _, _ = rented
    RentalRepository(connection).update(rental.id, late_fees=15.0, damage_charges=5.0)
    connection.commit()
    service = ReturnService(connection)

    result = service.quick_complete(service.start_return(rental.id, return_date=LATE_RETURN))

    assert result.rental.status == RentalStatus.RETURNED
    assert result.rental.late_fees == 15
    assert result.rental.damage_charges == 5


def test_resumed_return_leaves_a_newer_rental_alone(connection, customer, rented, monkeypatch):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = service.start_return(rental.id, return_date=datetime(2024, 7, 3))

    def _stock_down(self, state):
        raise RuntimeError("inventory unavailable")

    monkeypatch.setattr(ReturnService, "_apply_inventory", _stock_down)
    with pytest.raises(RuntimeError):
        service.quick_complete(state)
    monkeypatch.undo()

    assert InventoryService(connection).reconcile().released == [board.id, leash.id]
    follow_up = RentalService(connection).create_rental(
        customer.id, "2024-07-10", "2024-07-12", [{"inventory_item_id": board.id}]
    ).rental

    resumed = ReturnService(connection).resume_pending_returns()

    assert [result.skipped_items for result in resumed] == [(board.id,)]
    items = InventoryRepository(connection)
    kept = items.get(board.id)
    assert kept.status == ItemStatus.RENTED
    assert kept.current_renter == customer.full_name
    assert kept.expected_return == follow_up.end_date
    assert items.get(leash.id).status == ItemStatus.AVAILABLE
    assert ReturnIntentRepository(connection).list_pending() == []


def test_quick_return_refuses_damage(connection, rented):
    rental, board, _ = rented
    service = ReturnService(connection)
    state = set_condition(service.start_return(rental.id), board.id, "damaged")
    with pytest.raises(ValidationError):
        service.quick_complete(state)
    with pytest.raises(ValidationError):
        service.quick_complete(advance(state))


def test_incomplete_state_cannot_be_applied(connection, rented):
    rental, _, _ = rented
    service = ReturnService(connection)
    with pytest.raises(ValidationError):
        service.complete_return(service.start_return(rental.id))


def test_abandoned_return_changes_nothing(connection, rented):
    rental, board, leash = rented
    service = ReturnService(connection)
    _damaged_state(service, rental, board, leash)

    assert ReturnIntentRepository(connection).get_by_rental(rental.id) is None
    assert RentalService(connection).get_rental(rental.id).status == RentalStatus.ACTIVE
    assert InventoryRepository(connection).get(board.id).status == ItemStatus.RENTED


def test_cancelled_rental_cannot_be_returned(connection, rented):
    rental, board, leash = rented
    service = ReturnService(connection)
    state = _damaged_state(service, rental, board, leash)
    RentalService(connection).cancel_rental(rental.id, reason="Storm")

    with pytest.raises(ValidationError):
        service.complete_return(state)
    with pytest.raises(ValidationError):
        service.start_return(rental.id)
