"""
Service charges attached to a dispatch record.

The unit price is copied from the service catalog when the charge is added,
so later catalog changes never alter existing charges. Charges are frozen
once the record is paid.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.orm.session import Session

from app.src import exceptions, getters, validators
from app.src.db import DispatchRecord, ServiceCharge, ServiceType
from app.src.dispatch.ledger import commit, getDispatch, lockDispatch
from app.src.enums import DispatchStatus
from app.src.functions import toDecimal

logger = logging.getLogger(__name__)

FROZEN_STATUSES = (
    DispatchStatus.PAID,
    DispatchStatus.DEPARTURE_ORDERED,
    DispatchStatus.DEPARTED,
)


class ChargeLine(BaseModel):
    id: int
    dispatch_record_id: int
    service_type_id: int
    service_type_code: Optional[str] = None
    service_type_name: Optional[str] = None
    unit: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal
    created_on: Optional[datetime] = None


def _assertOpen(record: DispatchRecord) -> None:
    if record.current_status in FROZEN_STATUSES:
        raise exceptions.ChargesFrozen()


def addCharge(
    session: Session,
    recordId: int,
    *,
    service_type_id: int,
    quantity,
    actor_id: int,
    unit_price=None,
    total_amount=None,
) -> ServiceCharge:
    """
    Add a priced line item to a dispatch record.

    Args:
        recordId (int): Owning dispatch record.
        service_type_id (int): Active catalog entry.
        quantity: Number of units, greater than zero.
        actor_id (int): Operator adding the charge.
        unit_price (optional): Price per unit. Defaults to the catalog base price.
        total_amount (optional): Client computed total. When given it must
            equal quantity * unit_price.

    Returns:
        ServiceCharge: The stored charge.

    Raises:
        exceptions.InvalidIdentifier: The record does not exist.
        exceptions.ChargesFrozen: The record is paid or later.
        exceptions.UnknownValue: The service type does not exist.
        exceptions.InvalidValue: Inactive service type, bad quantity, price or total.
    """
    try:
        record = lockDispatch(session, recordId)
        _assertOpen(record)

        validators.positiveInteger(service_type_id, ServiceCharge.service_type_id)
        serviceType = getters.serviceType(session, service_type_id)
        if serviceType is None:
            raise exceptions.UnknownValue(ServiceCharge.service_type_id)
        if not serviceType.is_active:
            raise exceptions.InvalidValue(ServiceCharge.service_type_id)

        quantity = validators.amount(quantity, ServiceCharge.quantity)
        if unit_price is None:
            unit_price = serviceType.base_price
        unit_price = validators.amount(
            unit_price, ServiceCharge.unit_price, allowZero=True
        )
        total = quantity * unit_price
        if total_amount is not None and toDecimal(total_amount) != total:
            raise exceptions.InvalidValue(ServiceCharge.total_amount)

        charge = ServiceCharge(
            dispatch_record_id=record.id,
            service_type_id=serviceType.id,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=total,
        )
        session.add(charge)
        commit(session)
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Charge %s of %s added to dispatch record %s by operator %s",
        charge.id,
        total,
        recordId,
        actor_id,
    )
    return charge


def removeCharge(session: Session, chargeId: int, *, actor_id: int) -> ServiceCharge:
    """
    Delete a charge while its record is still unpaid.

    Raises:
        exceptions.InvalidIdentifier: The charge does not exist.
        exceptions.ChargesFrozen: The owning record is paid or later.
    """
    try:
        charge = session.query(ServiceCharge).filter(ServiceCharge.id == chargeId).first()
        if charge is None:
            raise exceptions.InvalidIdentifier()
        record = lockDispatch(session, charge.dispatch_record_id)
        _assertOpen(record)
        session.delete(charge)
        commit(session)
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Charge %s removed from dispatch record %s by operator %s",
        chargeId,
        charge.dispatch_record_id,
        actor_id,
    )
    return charge


def listCharges(session: Session, recordId: int) -> List[ChargeLine]:
    """Charges of a record, newest first, with their catalog names."""
    getDispatch(session, recordId)

    rows = (
        session.query(ServiceCharge, ServiceType)
        .join(ServiceType, ServiceType.id == ServiceCharge.service_type_id)
        .filter(ServiceCharge.dispatch_record_id == recordId)
        .order_by(ServiceCharge.created_on.desc(), ServiceCharge.id.desc())
        .all()
    )
    return [
        ChargeLine(
            id=charge.id,
            dispatch_record_id=charge.dispatch_record_id,
            service_type_id=charge.service_type_id,
            service_type_code=serviceType.code,
            service_type_name=serviceType.name,
            unit=serviceType.unit,
            quantity=charge.quantity,
            unit_price=charge.unit_price,
            total_amount=charge.total_amount,
            created_on=charge.created_on,
        )
        for charge, serviceType in rows
    ]


def chargeTotal(session: Session, recordId: int) -> Decimal:
    """Sum of the charge totals of a record, the expected payment amount."""
    amounts = (
        session.query(ServiceCharge.total_amount)
        .filter(ServiceCharge.dispatch_record_id == recordId)
        .all()
    )
    return sum((row.total_amount for row in amounts), Decimal("0"))
