"""
Dispatch record state machine.

Every operation takes the acting operator and the current time explicitly,
locks the record row, validates the requested transition and its fields,
and only then writes. A failed call leaves the record untouched.

    ENTERED            -> PASSENGERS_DROPPED, PERMIT_ISSUED, PERMIT_REJECTED
    PASSENGERS_DROPPED -> PERMIT_ISSUED, PERMIT_REJECTED
    PERMIT_REJECTED    -> PASSENGERS_DROPPED, PERMIT_ISSUED, PERMIT_REJECTED
    PERMIT_ISSUED      -> PAID
    PAID               -> DEPARTURE_ORDERED, DEPARTED
    DEPARTURE_ORDERED  -> DEPARTED
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.session import Session

from app.src import exceptions, getters, validators
from app.src.constants import DEFAULT_PAYMENT_METHOD, MAX_NOTES_LENGTH
from app.src.db import DispatchRecord
from app.src.enums import DispatchStatus, PaymentMethod, PermitStatus

logger = logging.getLogger(__name__)

DISPATCH_TRANSITIONS = {
    DispatchStatus.ENTERED: [
        DispatchStatus.PASSENGERS_DROPPED,
        DispatchStatus.PERMIT_ISSUED,
        DispatchStatus.PERMIT_REJECTED,
    ],
    DispatchStatus.PASSENGERS_DROPPED: [
        DispatchStatus.PERMIT_ISSUED,
        DispatchStatus.PERMIT_REJECTED,
    ],
    DispatchStatus.PERMIT_REJECTED: [
        DispatchStatus.PASSENGERS_DROPPED,
        DispatchStatus.PERMIT_ISSUED,
        DispatchStatus.PERMIT_REJECTED,
    ],
    DispatchStatus.PERMIT_ISSUED: [DispatchStatus.PAID],
    DispatchStatus.PAID: [DispatchStatus.DEPARTURE_ORDERED, DispatchStatus.DEPARTED],
    DispatchStatus.DEPARTURE_ORDERED: [DispatchStatus.DEPARTED],
    DispatchStatus.DEPARTED: [],
}

# A vehicle may open a new visit once its last one reached these states
CLOSED_STATUSES = (DispatchStatus.DEPARTURE_ORDERED, DispatchStatus.DEPARTED)


# ---------------------------------------------------------------------------
# Record access
# ---------------------------------------------------------------------------
def getDispatch(session: Session, recordId: int) -> DispatchRecord:
    record = session.query(DispatchRecord).filter(DispatchRecord.id == recordId).first()
    if record is None:
        raise exceptions.InvalidIdentifier()
    return record


def lockDispatch(session: Session, recordId: int) -> DispatchRecord:
    """
    Load a dispatch record with a row lock held until the transaction ends.

    Raises:
        exceptions.InvalidIdentifier: If no record has the given id.
    """
    record = (
        session.query(DispatchRecord)
        .filter(DispatchRecord.id == recordId)
        .with_for_update()
        .first()
    )
    if record is None:
        raise exceptions.InvalidIdentifier()
    return record


def openDispatch(session: Session, vehicleId: int) -> Optional[DispatchRecord]:
    """The visit of the vehicle that is still in the station, if any."""
    return (
        session.query(DispatchRecord)
        .filter(DispatchRecord.vehicle_id == vehicleId)
        .filter(DispatchRecord.current_status.notin_(CLOSED_STATUSES))
        .order_by(DispatchRecord.entry_time.desc())
        .first()
    )


def commit(session: Session) -> None:
    """Commit, translating a lost version race into ConcurrentUpdate."""
    try:
        session.commit()
    except StaleDataError:
        session.rollback()
        raise exceptions.ConcurrentUpdate()


@contextmanager
def transition(
    session: Session, recordId: int, newStatus: DispatchStatus, actorId: int
) -> Iterator[DispatchRecord]:
    """
    Lock a record, check that it may move to `newStatus` and yield it.

    The body fills in the fields of the transition. On a clean exit the
    status is set and the transaction committed; any exception rolls the
    whole transaction back.
    """
    try:
        record = lockDispatch(session, recordId)
        oldStatus = DispatchStatus(record.current_status)
        validators.stateTransition(
            DISPATCH_TRANSITIONS, oldStatus, newStatus, DispatchRecord.current_status
        )
        yield record
        record.current_status = newStatus
        commit(session)
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Dispatch record %s moved from %s to %s by operator %s",
        recordId,
        oldStatus.name,
        newStatus.name,
        actorId,
    )


# ---------------------------------------------------------------------------
# Field guards
# ---------------------------------------------------------------------------
def _notes(value: Optional[str], column) -> Optional[str]:
    if value is not None and len(value) > MAX_NOTES_LENGTH:
        raise exceptions.InvalidValue(column)
    return value


def _meta(value: Optional[dict]) -> Optional[dict]:
    if value is not None and not isinstance(value, dict):
        raise exceptions.InvalidValue(DispatchRecord.meta)
    return value


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def createDispatch(
    session: Session,
    *,
    vehicle_id: int,
    driver_id: int,
    route_id: int,
    entry_time: datetime,
    actor_id: int,
    schedule_id: Optional[int] = None,
    notes: Optional[str] = None,
    meta: Optional[dict] = None,
) -> DispatchRecord:
    """
    Register a vehicle at the gate.

    Args:
        vehicle_id, driver_id, route_id (int): Registry references, all required.
        entry_time (datetime): Gate time. Naive values are taken as UTC.
        actor_id (int): Operator who registered the entry.
        schedule_id (int, optional): Schedule reference.
        notes (str, optional), meta (dict, optional): Operator annotations.

    Returns:
        DispatchRecord: The new record in ENTERED status.

    Raises:
        exceptions.MissingParameter: A required reference or the entry time is absent.
        exceptions.InvalidValue: A reference or field is malformed.
        exceptions.UnknownValue: A reference does not exist in its registry.
        exceptions.ActiveDispatchExists: The vehicle has not left from its last visit.
    """
    try:
        validators.positiveInteger(vehicle_id, DispatchRecord.vehicle_id)
        validators.positiveInteger(driver_id, DispatchRecord.driver_id)
        validators.positiveInteger(route_id, DispatchRecord.route_id)
        entry_time = validators.timestamp(entry_time, DispatchRecord.entry_time)
        if schedule_id is not None:
            validators.positiveInteger(schedule_id, DispatchRecord.schedule_id)
        _notes(notes, DispatchRecord.notes)
        _meta(meta)

        if getters.vehicle(session, vehicle_id) is None:
            raise exceptions.UnknownValue(DispatchRecord.vehicle_id)
        if getters.driver(session, driver_id) is None:
            raise exceptions.UnknownValue(DispatchRecord.driver_id)
        if getters.route(session, route_id) is None:
            raise exceptions.UnknownValue(DispatchRecord.route_id)
        if openDispatch(session, vehicle_id) is not None:
            raise exceptions.ActiveDispatchExists()

        record = DispatchRecord(
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            route_id=route_id,
            schedule_id=schedule_id,
            entry_time=entry_time,
            entry_by=actor_id,
            current_status=DispatchStatus.ENTERED,
            notes=notes,
            meta=meta,
        )
        session.add(record)
        commit(session)
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Dispatch record %s opened for vehicle %s by operator %s",
        record.id,
        vehicle_id,
        actor_id,
    )
    return record


def recordPassengerDrop(
    session: Session,
    recordId: int,
    *,
    actor_id: int,
    now: datetime,
    passengers_arrived: Optional[int] = None,
) -> DispatchRecord:
    """
    Record that the arriving passengers left the vehicle.

    Allowed once per visit, before any permit is approved. The drop does not
    block a later permit decision.
    """
    with transition(
        session, recordId, DispatchStatus.PASSENGERS_DROPPED, actor_id
    ) as record:
        if record.passenger_drop_time is not None:
            raise exceptions.InvalidStateTransition(DispatchRecord.passenger_drop_time)
        validators.nonNegativeInteger(
            passengers_arrived, DispatchRecord.passengers_arrived
        )
        record.passenger_drop_time = validators.timestamp(
            now, DispatchRecord.passenger_drop_time
        )
        record.passengers_arrived = passengers_arrived
        record.passenger_drop_by = actor_id
    return record


def issuePermit(
    session: Session,
    recordId: int,
    *,
    decision: PermitStatus,
    actor_id: int,
    now: datetime,
    transport_order_code: Optional[str] = None,
    planned_departure_time: Optional[datetime] = None,
    seat_count: Optional[int] = None,
    rejection_reason: Optional[str] = None,
    schedule_id: Optional[int] = None,
    override_eligibility: bool = False,
    eligibility_notes: Optional[str] = None,
) -> DispatchRecord:
    """
    Decide the boarding permit of an in-station vehicle.

    An approval needs the transport order code, the planned departure time
    and the seat count; it clears any earlier rejection reason. A rejection
    needs only the reason and sends the vehicle back to the in-station pool,
    from where the permit may be decided again.

    Document compliance is not checked here. When the operator approves a
    non compliant vehicle, `override_eligibility` and `eligibility_notes`
    record that decision on the permit. Notes are accepted only together
    with the override.

    Raises:
        exceptions.InvalidValue: Unknown decision or malformed field.
        exceptions.MissingParameter: A field required by the decision is absent.
        exceptions.InvalidStateTransition: The record is paid or later.
    """
    if decision not in list(PermitStatus):
        raise exceptions.InvalidValue(DispatchRecord.permit_status)
    decision = PermitStatus(decision)
    if decision == PermitStatus.APPROVED:
        newStatus = DispatchStatus.PERMIT_ISSUED
    else:
        newStatus = DispatchStatus.PERMIT_REJECTED

    with transition(session, recordId, newStatus, actor_id) as record:
        permitTime = validators.timestamp(now, DispatchRecord.boarding_permit_time)
        if schedule_id is not None:
            validators.positiveInteger(schedule_id, DispatchRecord.schedule_id)

        if decision == PermitStatus.APPROVED:
            validators.required(
                transport_order_code, DispatchRecord.transport_order_code
            )
            if not isinstance(transport_order_code, str):
                raise exceptions.InvalidValue(DispatchRecord.transport_order_code)
            planned_departure_time = validators.timestamp(
                planned_departure_time, DispatchRecord.planned_departure_time
            )
            validators.positiveInteger(seat_count, DispatchRecord.seat_count)
            _notes(eligibility_notes, DispatchRecord.eligibility_notes)
            if override_eligibility and eligibility_notes is None:
                raise exceptions.MissingParameter(DispatchRecord.eligibility_notes)
            if not override_eligibility and eligibility_notes is not None:
                raise exceptions.InvalidValue(DispatchRecord.eligibility_notes)

            record.transport_order_code = transport_order_code.strip()
            record.planned_departure_time = planned_departure_time
            record.seat_count = seat_count
            record.rejection_reason = None
            record.eligibility_override = bool(override_eligibility)
            record.eligibility_notes = eligibility_notes
        else:
            validators.required(rejection_reason, DispatchRecord.rejection_reason)
            _notes(rejection_reason, DispatchRecord.rejection_reason)
            record.rejection_reason = rejection_reason

        if schedule_id is not None:
            record.schedule_id = schedule_id
        record.permit_status = decision
        record.boarding_permit_time = permitTime
        record.boarding_permit_by = actor_id
    return record


def processPayment(
    session: Session,
    recordId: int,
    *,
    amount,
    actor_id: int,
    now: datetime,
    method: Optional[PaymentMethod] = None,
    invoice_number: Optional[str] = None,
) -> DispatchRecord:
    """
    Record the payment of a vehicle holding an approved permit.

    The amount is taken as given. The charge total is the expected amount
    but is not enforced.
    """
    with transition(session, recordId, DispatchStatus.PAID, actor_id) as record:
        paymentAmount = validators.amount(amount, DispatchRecord.payment_amount)
        if method is None:
            method = DEFAULT_PAYMENT_METHOD
        if method not in list(PaymentMethod):
            raise exceptions.InvalidValue(DispatchRecord.payment_method)

        record.payment_time = validators.timestamp(now, DispatchRecord.payment_time)
        record.payment_amount = paymentAmount
        record.payment_method = PaymentMethod(method)
        record.invoice_number = invoice_number
        record.payment_by = actor_id
    return record


def issueDepartureOrder(
    session: Session,
    recordId: int,
    *,
    actor_id: int,
    now: datetime,
    passengers_departing: Optional[int] = None,
) -> DispatchRecord:
    """Clear a paid vehicle for departure. The permit must have been approved."""
    with transition(
        session, recordId, DispatchStatus.DEPARTURE_ORDERED, actor_id
    ) as record:
        if record.permit_status != PermitStatus.APPROVED:
            raise exceptions.InvalidStateTransition(DispatchRecord.permit_status)
        validators.nonNegativeInteger(
            passengers_departing, DispatchRecord.passengers_departing
        )
        record.departure_order_time = validators.timestamp(
            now, DispatchRecord.departure_order_time
        )
        record.passengers_departing = passengers_departing
        record.departure_order_by = actor_id
    return record


def recordExit(
    session: Session,
    recordId: int,
    *,
    actor_id: int,
    now: datetime,
    exit_time: Optional[datetime] = None,
) -> DispatchRecord:
    """
    Record the physical exit of the vehicle. DEPARTED is terminal.

    `exit_time` defaults to `now`.
    """
    with transition(session, recordId, DispatchStatus.DEPARTED, actor_id) as record:
        if exit_time is None:
            exit_time = now
        record.exit_time = validators.timestamp(exit_time, DispatchRecord.exit_time)
        record.exit_by = actor_id
    return record


def updateAnnotations(
    session: Session,
    recordId: int,
    *,
    actor_id: int,
    notes: Optional[str] = None,
    meta: Optional[dict] = None,
) -> DispatchRecord:
    """
    Update the operator notes and merge keys into the record metadata.

    Annotations stay editable until the vehicle has departed.
    """
    try:
        record = lockDispatch(session, recordId)
        if record.current_status == DispatchStatus.DEPARTED:
            raise exceptions.RecordClosed()
        _notes(notes, DispatchRecord.notes)
        _meta(meta)
        if notes is not None:
            record.notes = notes
        if meta:
            record.meta = {**(record.meta or {}), **meta}
        commit(session)
    except Exception:
        session.rollback()
        raise
    logger.info("Dispatch record %s annotated by operator %s", recordId, actor_id)
    return record
