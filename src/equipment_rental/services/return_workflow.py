"""Equipment return workflow.

The return is modelled as an immutable ``ReturnState`` moved through its
steps (inspection, damage, payment, complete) by pure functions. Nothing is
written until ``ReturnService.complete_return`` or
``ReturnService.quick_complete`` is called, so abandoning a return leaves the
store untouched.

Completion is recorded as an intent holding a snapshot of the final state.
Its steps are then applied one by one, each in its own transaction together
with a marker row, which makes a retry or a resume after a crash finish the
remaining steps without charging the customer twice.
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

from equipment_rental.config import (
    DAMAGE_DOWNTIME_HOURS,
    DEFAULT_POLICY,
    SYSTEM_STAFF_MEMBER,
    LateFeePolicy,
    PolicySettings,
)
from equipment_rental.db.connection import immediate_transaction, transaction
from equipment_rental.domain.models import (
    CustomerTransaction,
    DamageAssessment,
    InventoryItem,
    ItemCondition,
    ItemStatus,
    MaintenanceRecord,
    MaintenanceType,
    PaymentMethod,
    Rental,
    RentalStatus,
    ReturnCondition,
)
from equipment_rental.logging_config import get_logger
from equipment_rental.repositories.history_repo import HistoryRepository
from equipment_rental.repositories.inventory_repo import InventoryRepository
from equipment_rental.repositories.rental_repo import OPEN_STATUSES, RentalRepository
from equipment_rental.repositories.return_intent_repo import (
    ReturnIntent,
    ReturnIntentRepository,
)
from equipment_rental.services.errors import (
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from equipment_rental.services.fees import (
    DateLike,
    damage_charge,
    late_fee,
    to_date,
    to_datetime,
    validate_damage,
)

DAMAGE_REPORTER = "System (Damage Report)"
TRANSACTION_TYPE = "rental"
REFERENCE_DAMAGE = "rental_damage"
REFERENCE_LATE_FEE = "rental_late_fee"

MODE_FULL = "full"
MODE_QUICK = "quick"

STEP_RENTAL = "rental"
STEP_INVENTORY = "inventory"
STEP_MAINTENANCE = "maintenance"
STEP_DAMAGE_CHARGE = "damage_charge"
STEP_LATE_FEE = "late_fee"

FULL_STEPS = (
    STEP_RENTAL,
    STEP_INVENTORY,
    STEP_MAINTENANCE,
    STEP_DAMAGE_CHARGE,
    STEP_LATE_FEE,
)
QUICK_STEPS = (STEP_RENTAL, STEP_INVENTORY)


class ReturnStep(str, Enum):
    INSPECTION = "inspection"
    DAMAGE = "damage"
    PAYMENT = "payment"
    COMPLETE = "complete"


EDITABLE_STEPS = (ReturnStep.INSPECTION, ReturnStep.DAMAGE, ReturnStep.PAYMENT)
INSPECTABLE_CONDITIONS = (ItemCondition.EXCELLENT, ItemCondition.GOOD, ItemCondition.FAIR)


@dataclass(frozen=True)
class ReturnLine:
    item_id: int
    name: str
    quantity: int = 1
    insurance_selected: bool = False


@dataclass(frozen=True)
class ReturnState:
    rental_id: int
    customer_id: int
    customer_name: str
    end_date: str
    return_date: str
    lines: tuple[ReturnLine, ...]
    assessments: tuple[DamageAssessment, ...]
    late_fee_policy: LateFeePolicy = field(default_factory=LateFeePolicy)
    step: ReturnStep = ReturnStep.INSPECTION
    late_fee: float = 0.0
    payment_method: Optional[PaymentMethod] = None
    return_notes: str = ""

    def assessment_for(self, item_id: int) -> DamageAssessment:
        for assessment in self.assessments:
            if assessment.item_id == item_id:
                return assessment
        raise NotFoundError(f"Item {item_id} is not part of rental {self.rental_id}.")

    def line_for(self, item_id: int) -> ReturnLine:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        raise NotFoundError(f"Item {item_id} is not part of rental {self.rental_id}.")

    @property
    def damaged(self) -> tuple[DamageAssessment, ...]:
        return tuple(a for a in self.assessments if a.is_damaged)

    @property
    def has_damage(self) -> bool:
        return bool(self.damaged)


def _replace_assessment(state: ReturnState, assessment: DamageAssessment) -> ReturnState:
    assessments = tuple(
        assessment if current.item_id == assessment.item_id else current
        for current in state.assessments
    )
    return replace(state, assessments=assessments)


def _require_editable(state: ReturnState) -> None:
    if state.step == ReturnStep.COMPLETE:
        raise ValidationError(f"Return of rental {state.rental_id} is already complete.")


def _starting_condition(item: Optional[InventoryItem]) -> ReturnCondition:
    if item is not None and item.condition in INSPECTABLE_CONDITIONS:
        return ReturnCondition(item.condition.value)
    return ReturnCondition.GOOD


def start_return(
    rental: Rental,
    items: Mapping[int, InventoryItem] | Iterable[InventoryItem],
    policy: PolicySettings | LateFeePolicy = DEFAULT_POLICY,
    return_date: Optional[DateLike] = None,
) -> ReturnState:
    """Open a return for an active rental.

    Each item starts at its current recorded condition, or good when that
    condition has no inspection counterpart.
    """
    if rental.status not in (RentalStatus.ACTIVE, RentalStatus.OVERDUE):
        raise ValidationError(
            f"Rental {rental.id} is {rental.status.value} and cannot be returned."
        )
    if not isinstance(items, Mapping):
        items = {item.id: item for item in items}
    late_fee_policy = policy.late_fees if isinstance(policy, PolicySettings) else policy
    moment = to_datetime(return_date or datetime.now())
    lines = []
    seeded: dict[int, ReturnCondition] = {}
    for rental_item in rental.items:
        inventory_item = items.get(rental_item.inventory_item_id)
        seeded[rental_item.inventory_item_id] = _starting_condition(inventory_item)
        lines.append(
            ReturnLine(
                item_id=rental_item.inventory_item_id,
                name=inventory_item.name if inventory_item else "Equipment",
                quantity=rental_item.quantity,
                insurance_selected=rental_item.insurance_selected,
            )
        )
    return ReturnState(
        rental_id=rental.id,
        customer_id=rental.customer_id,
        customer_name=rental.customer_name,
        end_date=rental.end_date,
        return_date=moment.isoformat(timespec="seconds"),
        lines=tuple(lines),
        assessments=tuple(
            DamageAssessment(
                item_id=line.item_id,
                condition=seeded[line.item_id],
                covered_by_insurance=line.insurance_selected,
            )
            for line in lines
        ),
        late_fee_policy=late_fee_policy,
        late_fee=late_fee(rental.end_date, moment, late_fee_policy),
    )


def set_condition(
    state: ReturnState, item_id: int, condition: ReturnCondition | str
) -> ReturnState:
    """Record the inspected condition. Leaving damaged clears the damage details."""
    if state.step != ReturnStep.INSPECTION:
        raise ValidationError("Item conditions can only be changed during inspection.")
    try:
        condition = ReturnCondition(condition)
    except ValueError as exc:
        raise ValidationError(f"Invalid condition: {condition!r}.") from exc
    current = state.assessment_for(item_id)
    if condition == ReturnCondition.DAMAGED:
        updated = replace(current, condition=condition)
    else:
        updated = replace(
            current,
            condition=condition,
            damage_description="",
            estimated_repair_cost=0.0,
            photos_uploaded=False,
        )
    return _replace_assessment(state, updated)


def set_damage_details(
    state: ReturnState,
    item_id: int,
    description: str,
    repair_cost: float,
    covered_by_insurance: Optional[bool] = None,
    photos_uploaded: Optional[bool] = None,
) -> ReturnState:
    if state.step not in (ReturnStep.INSPECTION, ReturnStep.DAMAGE):
        raise ValidationError("Damage details are entered before payment.")
    current = state.assessment_for(item_id)
    if not current.is_damaged:
        raise ValidationError(f"Item {item_id} is not marked as damaged.")
    try:
        repair_cost = float(repair_cost)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid repair cost: {repair_cost!r}.") from exc
    if repair_cost < 0:
        raise ValidationError("Repair cost cannot be negative.")
    updated = replace(
        current,
        damage_description=description.strip(),
        estimated_repair_cost=round(repair_cost, 2),
        covered_by_insurance=(
            current.covered_by_insurance
            if covered_by_insurance is None
            else bool(covered_by_insurance)
        ),
        photos_uploaded=(
            current.photos_uploaded if photos_uploaded is None else bool(photos_uploaded)
        ),
    )
    return _replace_assessment(state, updated)


def damage_charges(state: ReturnState) -> float:
    return damage_charge(state.assessments)


def amount_due(state: ReturnState) -> float:
    return round(state.late_fee + damage_charges(state), 2)


def advance(state: ReturnState) -> ReturnState:
    """Move to the next step, enforcing the guard of the current one."""
    if state.step == ReturnStep.INSPECTION:
        next_step = ReturnStep.DAMAGE if state.has_damage else ReturnStep.PAYMENT
        return replace(state, step=next_step)
    if state.step == ReturnStep.DAMAGE:
        for assessment in state.damaged:
            validate_damage(assessment)
        return replace(state, step=ReturnStep.PAYMENT)
    if state.step == ReturnStep.PAYMENT:
        if amount_due(state) > 0 and state.payment_method is None:
            raise PolicyViolation(
                f"Choose a payment method to collect {amount_due(state):.2f}."
            )
        return replace(state, step=ReturnStep.COMPLETE)
    raise ValidationError(f"Return of rental {state.rental_id} is already complete.")


def go_back(state: ReturnState) -> ReturnState:
    if state.step == ReturnStep.DAMAGE:
        return replace(state, step=ReturnStep.INSPECTION)
    if state.step == ReturnStep.PAYMENT:
        previous = ReturnStep.DAMAGE if state.has_damage else ReturnStep.INSPECTION
        return replace(state, step=previous)
    raise ValidationError(f"Cannot go back from {state.step.value}.")


def choose_payment_method(
    state: ReturnState, method: PaymentMethod | str | None
) -> ReturnState:
    _require_editable(state)
    if method is None:
        return replace(state, payment_method=None)
    try:
        method = PaymentMethod(method)
    except ValueError as exc:
        raise ValidationError(f"Invalid payment method: {method!r}.") from exc
    return replace(state, payment_method=method)


def set_return_notes(state: ReturnState, notes: str) -> ReturnState:
    _require_editable(state)
    return replace(state, return_notes=notes.strip())


def set_return_date(state: ReturnState, return_date: DateLike) -> ReturnState:
    """Change the return date; the late fee follows it."""
    if state.step not in EDITABLE_STEPS:
        raise ValidationError("The return date is fixed once the return is complete.")
    moment = to_datetime(return_date)
    return replace(
        state,
        return_date=moment.isoformat(timespec="seconds"),
        late_fee=late_fee(state.end_date, moment, state.late_fee_policy),
    )


def state_to_payload(state: ReturnState) -> dict[str, Any]:
    payload = asdict(state)
    payload["step"] = state.step.value
    payload["payment_method"] = state.payment_method.value if state.payment_method else None
    payload["assessments"] = [
        {**asdict(assessment), "condition": assessment.condition.value}
        for assessment in state.assessments
    ]
    return payload


def state_from_payload(payload: Mapping[str, Any]) -> ReturnState:
    method = payload.get("payment_method")
    return ReturnState(
        rental_id=int(payload["rental_id"]),
        customer_id=int(payload["customer_id"]),
        customer_name=payload["customer_name"],
        end_date=payload["end_date"],
        return_date=payload["return_date"],
        lines=tuple(ReturnLine(**line) for line in payload["lines"]),
        assessments=tuple(
            DamageAssessment(
                item_id=int(entry["item_id"]),
                condition=ReturnCondition(entry["condition"]),
                damage_description=entry.get("damage_description", ""),
                estimated_repair_cost=float(entry.get("estimated_repair_cost", 0.0)),
                covered_by_insurance=bool(entry.get("covered_by_insurance", False)),
                photos_uploaded=bool(entry.get("photos_uploaded", False)),
            )
            for entry in payload["assessments"]
        ),
        late_fee_policy=LateFeePolicy(**payload["late_fee_policy"]),
        step=ReturnStep(payload["step"]),
        late_fee=float(payload["late_fee"]),
        payment_method=PaymentMethod(method) if method else None,
        return_notes=payload.get("return_notes", ""),
    )


@dataclass(frozen=True)
class ReturnResult:
    rental: Rental
    intent_id: int
    mode: str
    applied_steps: tuple[str, ...]
    late_fees: float
    damage_charges: float
    skipped_items: tuple[int, ...] = ()


class ReturnService:
    """Applies completed returns to the store."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        policy: PolicySettings = DEFAULT_POLICY,
    ) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._policy = policy
        self._rental_repo = RentalRepository(connection)
        self._inventory_repo = InventoryRepository(connection)
        self._history_repo = HistoryRepository(connection)
        self._intent_repo = ReturnIntentRepository(connection)
        self._logger = get_logger(self.__class__.__name__)

    def start_return(
        self, rental_id: int, return_date: Optional[DateLike] = None
    ) -> ReturnState:
        rental = self._rental_repo.get(rental_id)
        if rental is None:
            raise NotFoundError(f"Rental {rental_id} not found.")
        items = self._inventory_repo.get_many(
            item.inventory_item_id for item in rental.items
        )
        return start_return(rental, items, self._policy, return_date)

    def complete_return(self, state: ReturnState) -> ReturnResult:
        """Apply a full return: rental, items, maintenance and charges."""
        if state.step != ReturnStep.COMPLETE:
            raise ValidationError(
                f"Return of rental {state.rental_id} is at {state.step.value}, not complete."
            )
        intent = self._open_intent(state, MODE_FULL)
        return self._apply(intent)

    def quick_complete(self, state: ReturnState) -> ReturnResult:
        """Return every item in its inspected condition without charging anything.

        Only available from inspection with no damaged item. Late fees are not
        recorded, even for a late return.
        """
        if state.step != ReturnStep.INSPECTION:
            raise ValidationError("Quick return is only available during inspection.")
        if state.has_damage:
            raise ValidationError("Damaged items need the full return workflow.")
        intent = self._open_intent(
            replace(state, step=ReturnStep.COMPLETE, late_fee=0.0), MODE_QUICK
        )
        return self._apply(intent)

    def resume_return(self, rental_id: int) -> ReturnResult:
        intent = self._intent_repo.get_by_rental(rental_id)
        if intent is None:
            raise NotFoundError(f"No return in progress for rental {rental_id}.")
        return self._apply(intent)

    def resume_pending_returns(self) -> list[ReturnResult]:
        """Finish every intent left incomplete. Failures are logged and re-raised."""
        results = []
        for intent in self._intent_repo.list_pending():
            self._logger.info(
                "Resuming return intent %s for rental %s", intent.id, intent.rental_id
            )
            results.append(self._apply(intent))
        return results

    def _open_intent(self, state: ReturnState, mode: str) -> ReturnIntent:
        with immediate_transaction(self._connection):
            existing = self._intent_repo.get_by_rental(state.rental_id)
            if existing is not None:
                self._logger.info(
                    "Rental %s already has return intent %s; resuming it",
                    state.rental_id,
                    existing.id,
                )
                return existing
            rental = self._rental_repo.get(state.rental_id)
            if rental is None:
                raise NotFoundError(f"Rental {state.rental_id} not found.")
            if rental.status.value not in OPEN_STATUSES:
                raise ValidationError(
                    f"Rental {rental.id} is {rental.status.value} and cannot be returned."
                )
            return self._intent_repo.create(
                state.rental_id, mode, state_to_payload(state)
            )

    def _apply(self, intent: ReturnIntent) -> ReturnResult:
        state = state_from_payload(intent.payload)
        steps = FULL_STEPS if intent.mode == MODE_FULL else QUICK_STEPS
        skipped: list[int] = []
        handlers: dict[str, Callable[[ReturnState], None]] = {
            STEP_RENTAL: lambda current: self._apply_rental(
                current, with_charges=intent.mode == MODE_FULL
            ),
            STEP_INVENTORY: lambda current: skipped.extend(self._apply_inventory(current)),
            STEP_MAINTENANCE: self._apply_maintenance,
            STEP_DAMAGE_CHARGE: self._apply_damage_charge,
            STEP_LATE_FEE: self._apply_late_fee,
        }
        done = self._intent_repo.applied_steps(intent.id)
        applied: list[str] = []
        for step in steps:
            if step in done:
                continue
            with immediate_transaction(self._connection):
                handlers[step](state)
                self._intent_repo.mark_step(intent.id, step)
            applied.append(step)
            self._logger.info("Return of rental %s: %s step applied", state.rental_id, step)
        if intent.completed_at is None:
            with transaction(self._connection):
                self._intent_repo.mark_completed(intent.id)
        rental = self._rental_repo.get(state.rental_id)
        if rental is None:
            raise NotFoundError(f"Rental {state.rental_id} not found.")
        return ReturnResult(
            rental=rental,
            intent_id=intent.id,
            mode=intent.mode,
            applied_steps=tuple(applied),
            late_fees=state.late_fee,
            damage_charges=damage_charges(state),
            skipped_items=tuple(skipped),
        )

    def _apply_rental(self, state: ReturnState, with_charges: bool = True) -> None:
        rental = self._rental_repo.get(state.rental_id)
        if rental is None:
            raise NotFoundError(f"Rental {state.rental_id} not found.")
        notes = rental.notes
        if state.return_notes:
            notes = f"{notes}\n\nReturn notes: {state.return_notes}"
        fields: dict[str, Any] = {
            "status": RentalStatus.RETURNED,
            "return_date": state.return_date,
            "notes": notes,
        }
        # Quick returns keep whatever charges the rental already carries.
        if with_charges:
            fields["late_fees"] = state.late_fee
            fields["damage_charges"] = damage_charges(state)
        self._rental_repo.update(state.rental_id, **fields)

    def _apply_inventory(self, state: ReturnState) -> list[int]:
        """Put returned items back in stock. Returns the items another rental now holds."""
        returned_on = to_date(state.return_date).isoformat()
        skipped: list[int] = []
        for assessment in state.assessments:
            item = self._inventory_repo.get(assessment.item_id)
            if item is None:
                self._logger.warning(
                    "Returned item %s of rental %s no longer exists",
                    assessment.item_id,
                    state.rental_id,
                )
                continue
            if assessment.is_damaged:
                description = assessment.damage_description or "no description"
                damage_note = f"Damage reported on return ({returned_on}): {description}"
                written = self._inventory_repo.update_unless_held(
                    item.id,
                    state.rental_id,
                    status=ItemStatus.MAINTENANCE,
                    condition=ItemCondition.NEEDS_REPAIR,
                    notes=f"{item.notes}\n{damage_note}" if item.notes else damage_note,
                )
            else:
                written = self._inventory_repo.update_unless_held(
                    item.id,
                    state.rental_id,
                    status=ItemStatus.AVAILABLE,
                    condition=ItemCondition(assessment.condition.value),
                )
            if not written:
                skipped.append(item.id)
                self._logger.warning(
                    "Item %s returned by rental %s is held by another rental; left untouched",
                    item.id,
                    state.rental_id,
                )
        return skipped

    def _apply_maintenance(self, state: ReturnState) -> None:
        returned_on = to_date(state.return_date).isoformat()
        for assessment in state.damaged:
            coverage = (
                "Covered by rental insurance."
                if assessment.covered_by_insurance
                else "Not covered by insurance."
            )
            self._history_repo.append_maintenance_record(
                MaintenanceRecord(
                    id=None,
                    equipment_id=assessment.item_id,
                    maintenance_type=MaintenanceType.REPAIR,
                    maintenance_date=returned_on,
                    performed_by=DAMAGE_REPORTER,
                    description=assessment.damage_description or "Damage reported on return",
                    cost=assessment.estimated_repair_cost,
                    condition_before=ReturnCondition.DAMAGED.value,
                    condition_after=ItemCondition.NEEDS_REPAIR.value,
                    downtime_hours=DAMAGE_DOWNTIME_HOURS,
                    maintenance_notes=f"Damage reported during rental return. {coverage}",
                    photos_taken=assessment.photos_uploaded,
                    idempotency_key=(
                        f"return:{state.rental_id}:maintenance:{assessment.item_id}"
                    ),
                )
            )

    def _payment_method(self, state: ReturnState) -> str:
        return (state.payment_method or PaymentMethod.CASH).value

    def _apply_damage_charge(self, state: ReturnState) -> None:
        total = damage_charges(state)
        if total <= 0:
            return
        self._history_repo.append_customer_transaction(
            CustomerTransaction(
                id=None,
                customer_id=state.customer_id,
                transaction_type=TRANSACTION_TYPE,
                transaction_date=datetime.now().isoformat(timespec="seconds"),
                amount=total,
                payment_method=self._payment_method(state),
                reference_id=state.rental_id,
                reference_type=REFERENCE_DAMAGE,
                description="Damage charges for rental equipment",
                items=[
                    {
                        "name": state.line_for(assessment.item_id).name,
                        "description": assessment.damage_description,
                        "price": assessment.estimated_repair_cost,
                    }
                    for assessment in state.damaged
                    if not assessment.covered_by_insurance
                ],
                staff_member=SYSTEM_STAFF_MEMBER,
                notes="Damage charges collected during equipment return",
                idempotency_key=f"return:{state.rental_id}:damage",
            )
        )

    def _apply_late_fee(self, state: ReturnState) -> None:
        if state.late_fee <= 0:
            return
        self._history_repo.append_customer_transaction(
            CustomerTransaction(
                id=None,
                customer_id=state.customer_id,
                transaction_type=TRANSACTION_TYPE,
                transaction_date=datetime.now().isoformat(timespec="seconds"),
                amount=state.late_fee,
                payment_method=self._payment_method(state),
                reference_id=state.rental_id,
                reference_type=REFERENCE_LATE_FEE,
                description="Late fees for rental equipment",
                items=[
                    {
                        "name": "Late Return Fee",
                        "description": f"Late return fee for rental #{state.rental_id}",
                        "price": state.late_fee,
                    }
                ],
                staff_member=SYSTEM_STAFF_MEMBER,
                notes="Late fees collected during equipment return",
                idempotency_key=f"return:{state.rental_id}:late_fee",
            )
        )
