from datetime import datetime, timedelta, timezone

from app.src.dispatch import ledger
from app.src.enums import PermitStatus

T0 = datetime(2025, 1, 10, 7, 30, tzinfo=timezone.utc)


def newDispatch(session, registry, **kwargs):
    params = dict(
        vehicle_id=registry.vehicle_id,
        driver_id=registry.driver_id,
        route_id=registry.route_id,
        entry_time=T0,
        actor_id=registry.operator_id,
    )
    params.update(kwargs)
    return ledger.createDispatch(session, **params)


def approve(session, recordId, registry, **kwargs):
    params = dict(
        decision=PermitStatus.APPROVED,
        actor_id=registry.operator_id,
        now=T0 + timedelta(minutes=10),
        transport_order_code="PL-001",
        planned_departure_time=T0 + timedelta(hours=1),
        seat_count=40,
    )
    params.update(kwargs)
    return ledger.issuePermit(session, recordId, **params)


def reject(session, recordId, registry, reason="expired license"):
    return ledger.issuePermit(
        session,
        recordId,
        decision=PermitStatus.REJECTED,
        rejection_reason=reason,
        actor_id=registry.operator_id,
        now=T0 + timedelta(minutes=5),
    )


def pay(session, recordId, registry, amount=150000, **kwargs):
    return ledger.processPayment(
        session,
        recordId,
        amount=amount,
        actor_id=registry.cashier_id,
        now=T0 + timedelta(minutes=20),
        **kwargs,
    )


def orderDeparture(session, recordId, registry, **kwargs):
    return ledger.issueDepartureOrder(
        session,
        recordId,
        actor_id=registry.operator_id,
        now=T0 + timedelta(minutes=30),
        **kwargs,
    )


def leave(session, recordId, registry, **kwargs):
    return ledger.recordExit(
        session,
        recordId,
        actor_id=registry.operator_id,
        now=T0 + timedelta(minutes=40),
        **kwargs,
    )


def naive(value):
    return value.replace(tzinfo=None)
