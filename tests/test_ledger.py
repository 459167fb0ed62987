from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from app.src import exceptions
from app.src.db import DispatchRecord
from app.src.dispatch import ledger
from app.src.enums import DispatchStatus, PaymentMethod, PermitStatus

from tests.helpers import (
    T0,
    approve,
    leave,
    naive,
    newDispatch,
    orderDeparture,
    pay,
    reject,
)


def test_full_visit_reaches_departed(session, registry):
    record = newDispatch(session, registry)
    assert record.current_status == DispatchStatus.ENTERED
    assert record.entry_by == registry.operator_id

    record = approve(session, record.id, registry)
    assert record.current_status == DispatchStatus.PERMIT_ISSUED
    assert record.permit_status == PermitStatus.APPROVED
    assert record.transport_order_code == "PL-001"
    assert record.seat_count == 40

    record = pay(session, record.id, registry)
    assert record.current_status == DispatchStatus.PAID
    assert record.payment_amount == Decimal("150000")
    assert record.payment_by == registry.cashier_id

    record = orderDeparture(session, record.id, registry, passengers_departing=38)
    assert record.current_status == DispatchStatus.DEPARTURE_ORDERED
    assert record.passengers_departing == 38

    record = leave(session, record.id, registry)
    assert record.current_status == DispatchStatus.DEPARTED
    assert naive(record.exit_time) == naive(T0 + timedelta(minutes=40))

    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.recordExit(
            session,
            record.id,
            actor_id=registry.cashier_id,
            now=T0 + timedelta(hours=2),
        )
    reloaded = ledger.getDispatch(session, record.id)
    assert reloaded.current_status == DispatchStatus.DEPARTED
    assert reloaded.exit_by == registry.operator_id
    assert naive(reloaded.exit_time) == naive(T0 + timedelta(minutes=40))


def test_rejected_permit_can_be_approved_later(session, registry):
    record = newDispatch(session, registry)
    record = reject(session, record.id, registry)
    assert record.current_status == DispatchStatus.PERMIT_REJECTED
    assert record.permit_status == PermitStatus.REJECTED
    assert record.rejection_reason == "expired license"

    record = approve(session, record.id, registry)
    assert record.current_status == DispatchStatus.PERMIT_ISSUED
    assert record.permit_status == PermitStatus.APPROVED
    assert record.rejection_reason is None


def test_rejection_may_be_repeated(session, registry):
    record = newDispatch(session, registry)
    reject(session, record.id, registry, reason="no inspection")
    record = reject(session, record.id, registry, reason="no insurance")
    assert record.current_status == DispatchStatus.PERMIT_REJECTED
    assert record.rejection_reason == "no insurance"


def test_rejection_requires_reason(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        reject(session, record.id, registry, reason="  ")


@pytest.mark.parametrize(
    "missing", ["transport_order_code", "planned_departure_time", "seat_count"]
)
def test_approval_requires_all_permit_fields(session, registry, missing):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        approve(session, record.id, registry, **{missing: None})

    reloaded = ledger.getDispatch(session, record.id)
    assert reloaded.current_status == DispatchStatus.ENTERED
    assert reloaded.permit_status is None
    assert reloaded.transport_order_code is None
    assert reloaded.boarding_permit_time is None


def test_approval_rejects_invalid_seat_count(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        approve(session, record.id, registry, seat_count=0)


def test_unknown_permit_decision(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        approve(session, record.id, registry, decision=9)


def test_approval_is_not_revisited(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        reject(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        approve(session, record.id, registry, transport_order_code="PL-002")


@pytest.mark.parametrize("stage", ["paid", "departure_ordered", "departed"])
def test_permit_not_allowed_once_paid(session, registry, stage):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    pay(session, record.id, registry)
    if stage in ("departure_ordered", "departed"):
        orderDeparture(session, record.id, registry)
    if stage == "departed":
        leave(session, record.id, registry)

    with pytest.raises(exceptions.InvalidTransitionError):
        approve(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        reject(session, record.id, registry)


def test_eligibility_override_is_recorded_on_its_own(session, registry):
    record = newDispatch(session, registry)
    record = approve(
        session,
        record.id,
        registry,
        override_eligibility=True,
        eligibility_notes="insurance renewal in progress",
    )
    assert record.eligibility_override is True
    assert record.eligibility_notes == "insurance renewal in progress"
    assert record.rejection_reason is None


def test_eligibility_override_needs_notes(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        approve(session, record.id, registry, override_eligibility=True)


def test_eligibility_notes_need_the_override(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.InvalidValue):
        approve(session, record.id, registry, eligibility_notes="looks fine")

    record = ledger.getDispatch(session, record.id)
    assert record.current_status == DispatchStatus.ENTERED
    assert record.eligibility_notes is None


def test_transport_order_code_must_be_text(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.InvalidValue):
        approve(session, record.id, registry, transport_order_code=1001)
    assert ledger.getDispatch(session, record.id).permit_status is None


def test_payment_only_from_permit_issued(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        pay(session, record.id, registry)

    reject(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        pay(session, record.id, registry)

    approve(session, record.id, registry)
    pay(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        pay(session, record.id, registry)


@pytest.mark.parametrize("amount", [0, -5, "abc", "10.005", None])
def test_payment_amount_must_be_positive(session, registry, amount):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    with pytest.raises(exceptions.ValidationError):
        pay(session, record.id, registry, amount=amount)

    reloaded = ledger.getDispatch(session, record.id)
    assert reloaded.current_status == DispatchStatus.PERMIT_ISSUED
    assert reloaded.payment_time is None


def test_payment_defaults_to_cash(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    record = pay(session, record.id, registry, invoice_number="INV-1")
    assert record.payment_method == PaymentMethod.CASH
    assert record.invoice_number == "INV-1"


def test_payment_with_transfer(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    record = pay(
        session, record.id, registry, amount="99.90", method=PaymentMethod.BANK_TRANSFER
    )
    assert record.payment_method == PaymentMethod.BANK_TRANSFER
    assert record.payment_amount == Decimal("99.90")


def test_passenger_drop_is_single_shot(session, registry):
    record = newDispatch(session, registry)
    dropTime = T0 + timedelta(minutes=2)
    record = ledger.recordPassengerDrop(
        session,
        record.id,
        passengers_arrived=30,
        actor_id=registry.operator_id,
        now=dropTime,
    )
    assert record.current_status == DispatchStatus.PASSENGERS_DROPPED
    assert record.passengers_arrived == 30

    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.recordPassengerDrop(
            session, record.id, actor_id=registry.cashier_id, now=T0 + timedelta(hours=1)
        )

    # A rejection does not reopen the drop
    reject(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.recordPassengerDrop(
            session, record.id, actor_id=registry.cashier_id, now=T0 + timedelta(hours=1)
        )

    reloaded = ledger.getDispatch(session, record.id)
    assert naive(reloaded.passenger_drop_time) == naive(dropTime)
    assert reloaded.passenger_drop_by == registry.operator_id


def test_passenger_drop_after_rejection(session, registry):
    record = newDispatch(session, registry)
    reject(session, record.id, registry)
    record = ledger.recordPassengerDrop(
        session, record.id, actor_id=registry.operator_id, now=T0
    )
    assert record.current_status == DispatchStatus.PASSENGERS_DROPPED
    assert record.permit_status == PermitStatus.REJECTED

    record = approve(session, record.id, registry)
    assert record.current_status == DispatchStatus.PERMIT_ISSUED


def test_passenger_drop_not_allowed_after_approval(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.recordPassengerDrop(
            session, record.id, actor_id=registry.operator_id, now=T0
        )


def test_passenger_count_cannot_be_negative(session, registry):
    record = newDispatch(session, registry)
    with pytest.raises(exceptions.ValidationError):
        ledger.recordPassengerDrop(
            session,
            record.id,
            passengers_arrived=-1,
            actor_id=registry.operator_id,
            now=T0,
        )


def test_departure_order_requires_payment(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        orderDeparture(session, record.id, registry)


def test_departure_order_requires_approved_permit(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    pay(session, record.id, registry)
    # Corrupt the permit outcome behind the ledger's back
    stored = ledger.getDispatch(session, record.id)
    stored.permit_status = PermitStatus.REJECTED
    session.commit()

    with pytest.raises(exceptions.InvalidTransitionError):
        orderDeparture(session, record.id, registry)
    assert ledger.getDispatch(session, record.id).current_status == DispatchStatus.PAID


def test_exit_directly_after_payment(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    pay(session, record.id, registry)
    exitTime = T0 + timedelta(minutes=25)
    record = leave(session, record.id, registry, exit_time=exitTime)
    assert record.current_status == DispatchStatus.DEPARTED
    assert naive(record.exit_time) == naive(exitTime)
    assert record.departure_order_time is None


def test_exit_requires_payment(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        leave(session, record.id, registry)


def test_departed_record_is_terminal(session, registry):
    record = newDispatch(session, registry)
    approve(session, record.id, registry)
    pay(session, record.id, registry)
    leave(session, record.id, registry)

    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.recordPassengerDrop(
            session, record.id, actor_id=registry.operator_id, now=T0
        )
    with pytest.raises(exceptions.InvalidTransitionError):
        pay(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        orderDeparture(session, record.id, registry)
    with pytest.raises(exceptions.InvalidTransitionError):
        ledger.updateAnnotations(
            session, record.id, notes="late", actor_id=registry.operator_id
        )


def test_unknown_record(session, registry):
    with pytest.raises(exceptions.NotFoundError):
        pay(session, 404, registry)
    with pytest.raises(exceptions.NotFoundError):
        ledger.getDispatch(session, 404)


@pytest.mark.parametrize("field", ["vehicle_id", "driver_id", "route_id", "entry_time"])
def test_create_requires_references(session, registry, field):
    with pytest.raises(exceptions.MissingParameter):
        newDispatch(session, registry, **{field: None})
    assert session.query(DispatchRecord).count() == 0


def test_create_rejects_malformed_values(session, registry):
    with pytest.raises(exceptions.InvalidValue):
        newDispatch(session, registry, vehicle_id="bus")
    with pytest.raises(exceptions.InvalidValue):
        newDispatch(session, registry, entry_time="yesterday")
    with pytest.raises(exceptions.InvalidValue):
        newDispatch(session, registry, meta=["monthly"])


@pytest.mark.parametrize("field", ["vehicle_id", "driver_id", "route_id"])
def test_create_rejects_unknown_references(session, registry, field):
    with pytest.raises(exceptions.UnknownValue):
        newDispatch(session, registry, **{field: 9999})


def test_vehicle_holds_one_open_visit(session, registry):
    first = newDispatch(session, registry)
    with pytest.raises(exceptions.ActiveDispatchExists):
        newDispatch(session, registry, entry_time=T0 + timedelta(minutes=1))

    # Another vehicle is not affected
    newDispatch(session, registry, vehicle_id=registry.other_vehicle_id)

    approve(session, first.id, registry)
    pay(session, first.id, registry)
    orderDeparture(session, first.id, registry)
    second = newDispatch(session, registry, entry_time=T0 + timedelta(hours=3))
    assert second.current_status == DispatchStatus.ENTERED


def test_annotations_are_merged(session, registry):
    record = newDispatch(session, registry, meta={"gate": "north"})
    record = ledger.updateAnnotations(
        session,
        record.id,
        notes="driver asked for water",
        meta={"paymentType": "monthly"},
        actor_id=registry.operator_id,
    )
    assert record.notes == "driver asked for water"
    assert record.meta == {"gate": "north", "paymentType": "monthly"}
    assert record.current_status == DispatchStatus.ENTERED


def test_concurrent_payments_only_one_succeeds(makeSession, registry):
    setup = makeSession()
    record = newDispatch(setup, registry)
    approve(setup, record.id, registry)
    setup.close()

    first, second = makeSession(), makeSession()
    # Both requests observe the record before either one writes
    assert ledger.getDispatch(first, record.id).version == 2
    assert ledger.getDispatch(second, record.id).version == 2

    ledger.processPayment(
        first,
        record.id,
        amount=150000,
        actor_id=registry.cashier_id,
        now=T0 + timedelta(minutes=20),
    )
    with pytest.raises((exceptions.ConflictError, exceptions.InvalidTransitionError)):
        ledger.processPayment(
            second,
            record.id,
            amount=150000,
            actor_id=registry.operator_id,
            now=T0 + timedelta(minutes=21),
        )
    first.close()
    second.close()

    check = makeSession()
    stored = ledger.getDispatch(check, record.id)
    assert stored.current_status == DispatchStatus.PAID
    assert stored.payment_by == registry.cashier_id
    assert stored.version == 3
    check.close()


def test_version_race_surfaces_as_concurrent_update(
    makeSession, registry, monkeypatch
):
    setup = makeSession()
    record = newDispatch(setup, registry)
    approve(setup, record.id, registry)
    setup.close()

    session, other = makeSession(), makeSession()
    lockDispatch = ledger.lockDispatch

    def lockThenRace(lockSession, recordId):
        locked = lockDispatch(lockSession, recordId)
        # Another writer commits after the row was read
        other.execute(
            text("UPDATE dispatch_record SET version = version + 1 WHERE id = :id"),
            {"id": recordId},
        )
        other.commit()
        return locked

    monkeypatch.setattr(ledger, "lockDispatch", lockThenRace)
    with pytest.raises(exceptions.ConcurrentUpdate):
        pay(session, record.id, registry)
    session.close()
    other.close()

    check = makeSession()
    stored = ledger.getDispatch(check, record.id)
    assert stored.current_status == DispatchStatus.PERMIT_ISSUED
    assert stored.payment_time is None
    assert stored.version == 3
    check.close()
