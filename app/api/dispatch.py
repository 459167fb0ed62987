import json
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.api.bearer import bearer_operator
from app.src.db import DispatchRecord, Vehicle, sessionMaker
from app.src.constants import MAX_LIST_LIMIT, TMZ_PRIMARY
from app.src import exceptions, validators, getters
from app.src.dispatch import ledger, query
from app.src.dispatch.query import Board, DispatchSearch, DispatchView
from app.src.loggers import logEvent
from app.src.enums import DispatchStatus, PaymentMethod, PermitStatus
from app.src.functions import enumStr, makeExceptionResponses
from app.src.redis import acquireLock, releaseLock
from app.src.urls import (
    URL_DISPATCH,
    URL_DISPATCH_BOARD,
    URL_DISPATCH_DEPARTURE_ORDER,
    URL_DISPATCH_EXIT,
    URL_DISPATCH_PASSENGER_DROP,
    URL_DISPATCH_PAYMENT,
    URL_DISPATCH_PERMIT,
)

route_operator = APIRouter()


## Input Forms
class CreateForm(BaseModel):
    vehicle_id: int = Field(Form())
    driver_id: int = Field(Form())
    route_id: int = Field(Form())
    schedule_id: int | None = Field(Form(default=None))
    entry_time: datetime | None = Field(
        Form(default=None, description="Defaults to the time of the request")
    )
    notes: str | None = Field(Form(default=None))
    meta: str | None = Field(Form(default=None, description="JSON object"))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    notes: str | None = Field(Form(default=None))
    meta: str | None = Field(
        Form(default=None, description="JSON object, merged into the metadata")
    )


class PassengerDropForm(BaseModel):
    id: int = Field(Form())
    passengers_arrived: int | None = Field(Form(default=None))


class PermitForm(BaseModel):
    id: int = Field(Form())
    permit_status: PermitStatus = Field(Form(description=enumStr(PermitStatus)))
    # Approval
    transport_order_code: str | None = Field(Form(default=None))
    planned_departure_time: datetime | None = Field(Form(default=None))
    seat_count: int | None = Field(Form(default=None))
    override_eligibility: bool = Field(Form(default=False))
    eligibility_notes: str | None = Field(
        Form(default=None, description="Accepted only with override_eligibility")
    )
    # Rejection
    rejection_reason: str | None = Field(Form(default=None))
    schedule_id: int | None = Field(Form(default=None))


class PaymentForm(BaseModel):
    id: int = Field(Form())
    amount: Decimal = Field(Form())
    payment_method: PaymentMethod | None = Field(
        Form(default=None, description=enumStr(PaymentMethod))
    )
    invoice_number: str | None = Field(Form(default=None, max_length=64))


class DepartureOrderForm(BaseModel):
    id: int = Field(Form())
    passengers_departing: int | None = Field(Form(default=None))


class ExitForm(BaseModel):
    id: int = Field(Form())
    exit_time: datetime | None = Field(
        Form(default=None, description="Defaults to the time of the request")
    )


## Query Params
class QueryParams(BaseModel):
    # Filters
    vehicle_id: int | None = Field(Query(default=None))
    driver_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    # status based
    status: DispatchStatus | None = Field(
        Query(default=None, description=enumStr(DispatchStatus))
    )
    status_list: List[DispatchStatus] | None = Field(
        Query(default=None, description=enumStr(DispatchStatus))
    )
    # entry_time based
    entry_time_ge: datetime | None = Field(Query(default=None))
    entry_time_le: datetime | None = Field(Query(default=None))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=MAX_LIST_LIMIT))


class BoardQueryParams(BaseModel):
    text: str | None = Field(
        Query(default=None, description="Plate number, driver name or route name")
    )
    vehicle_id: int | None = Field(Query(default=None))
    driver_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))


# Functions
def parseMeta(value: Optional[str]) -> Optional[dict]:
    if value is None:
        return None
    try:
        meta = json.loads(value)
    except ValueError:
        raise exceptions.InvalidValue(DispatchRecord.meta)
    if not isinstance(meta, dict):
        raise exceptions.InvalidValue(DispatchRecord.meta)
    return meta


def runTransition(bearer, request_info, recordId: int, operation, **kwargs):
    """
    Run a ledger operation on one record under its Redis mutex, log the
    new state of the record and return it.
    """
    recordLock = None
    try:
        session = sessionMaker()
        token = validators.operatorToken(bearer.credentials, session)
        recordLock = acquireLock(DispatchRecord.__tablename__, recordId)

        record = operation(
            session,
            recordId,
            actor_id=token.operator_id,
            now=datetime.now(TMZ_PRIMARY),
            **kwargs,
        )

        dispatchData = jsonable_encoder(query.viewDispatch(session, record))
        logEvent(token, request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(recordLock)
        session.close()


## API endpoints [Operator]
@route_operator.post(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=DispatchView,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.MissingParameter(DispatchRecord.vehicle_id),
            exceptions.InvalidValue(DispatchRecord.meta),
            exceptions.UnknownValue(DispatchRecord.vehicle_id),
            exceptions.ActiveDispatchExists,
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Register a vehicle entering the station.
    The vehicle, driver and route must exist in the station registries.
    A vehicle can hold only one open visit; a new one is accepted once the previous visit has a departure order or has exited.
    The entry time defaults to the time of the request.
    The record is created in the ENTERED status.
    Log the dispatch creation activity with the associated token.
    """,
)
async def create_dispatch(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    vehicleLock = None
    try:
        session = sessionMaker()
        token = validators.operatorToken(bearer.credentials, session)
        vehicleLock = acquireLock(Vehicle.__tablename__, fParam.vehicle_id)

        currentTime = datetime.now(TMZ_PRIMARY)
        record = ledger.createDispatch(
            session,
            vehicle_id=fParam.vehicle_id,
            driver_id=fParam.driver_id,
            route_id=fParam.route_id,
            schedule_id=fParam.schedule_id,
            entry_time=fParam.entry_time or currentTime,
            actor_id=token.operator_id,
            notes=fParam.notes,
            meta=parseMeta(fParam.meta),
        )

        dispatchData = jsonable_encoder(query.viewDispatch(session, record))
        logEvent(token, request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(vehicleLock)
        session.close()


@route_operator.patch(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.InvalidValue(DispatchRecord.meta),
            exceptions.RecordClosed,
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Update the operator notes and metadata of a dispatch record.
    Keys of the metadata object are merged into the stored metadata.
    Set `paymentType` to `monthly` to flag a monthly payer.
    Annotations can not be changed once the vehicle has exited.
    Log the update activity with the associated token.
    """,
)
async def update_dispatch(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    recordLock = None
    try:
        session = sessionMaker()
        token = validators.operatorToken(bearer.credentials, session)
        recordLock = acquireLock(DispatchRecord.__tablename__, fParam.id)

        record = ledger.updateAnnotations(
            session,
            fParam.id,
            actor_id=token.operator_id,
            notes=fParam.notes,
            meta=parseMeta(fParam.meta),
        )

        dispatchData = jsonable_encoder(query.viewDispatch(session, record))
        logEvent(token, request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(recordLock)
        session.close()


@route_operator.patch(
    URL_DISPATCH_PASSENGER_DROP,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.InvalidValue(DispatchRecord.passengers_arrived),
            exceptions.InvalidStateTransition(DispatchRecord.current_status),
            exceptions.InvalidStateTransition(DispatchRecord.passenger_drop_time),
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Record that the arriving passengers left the vehicle.
    Allowed from the ENTERED and PERMIT_REJECTED statuses, once per visit.
    Moves the record to PASSENGERS_DROPPED. A permit can still be decided afterwards.
    Log the activity with the associated token.
    """,
)
async def record_passenger_drop(
    fParam: PassengerDropForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    return runTransition(
        bearer,
        request_info,
        fParam.id,
        ledger.recordPassengerDrop,
        passengers_arrived=fParam.passengers_arrived,
    )


@route_operator.patch(
    URL_DISPATCH_PERMIT,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.MissingParameter(DispatchRecord.transport_order_code),
            exceptions.MissingParameter(DispatchRecord.rejection_reason),
            exceptions.InvalidStateTransition(DispatchRecord.current_status),
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Decide the boarding permit of a vehicle in the station.
    Allowed from the ENTERED, PASSENGERS_DROPPED and PERMIT_REJECTED statuses.
    APPROVED requires transport_order_code, planned_departure_time and seat_count and moves the record to PERMIT_ISSUED.
    REJECTED requires rejection_reason and moves the record to PERMIT_REJECTED; the permit may be decided again later.
    Vehicle documents are not checked. Set override_eligibility with eligibility_notes when approving a vehicle whose documents are not compliant.
    Log the activity with the associated token.
    """,
)
async def issue_permit(
    fParam: PermitForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    return runTransition(
        bearer,
        request_info,
        fParam.id,
        ledger.issuePermit,
        decision=fParam.permit_status,
        transport_order_code=fParam.transport_order_code,
        planned_departure_time=fParam.planned_departure_time,
        seat_count=fParam.seat_count,
        rejection_reason=fParam.rejection_reason,
        schedule_id=fParam.schedule_id,
        override_eligibility=fParam.override_eligibility,
        eligibility_notes=fParam.eligibility_notes,
    )


@route_operator.patch(
    URL_DISPATCH_PAYMENT,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.InvalidValue(DispatchRecord.payment_amount),
            exceptions.InvalidStateTransition(DispatchRecord.current_status),
            exceptions.ConcurrentUpdate,
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Record the payment of a vehicle holding an approved permit.
    Allowed only from the PERMIT_ISSUED status. The amount must be greater than zero.
    The payment method defaults to CASH.
    Moves the record to PAID. Service charges are frozen from then on.
    Log the activity with the associated token.
    """,
)
async def process_payment(
    fParam: PaymentForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    return runTransition(
        bearer,
        request_info,
        fParam.id,
        ledger.processPayment,
        amount=fParam.amount,
        method=fParam.payment_method,
        invoice_number=fParam.invoice_number,
    )


@route_operator.patch(
    URL_DISPATCH_DEPARTURE_ORDER,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition(DispatchRecord.current_status),
            exceptions.InvalidStateTransition(DispatchRecord.permit_status),
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Issue the departure order of a paid vehicle.
    Allowed only from the PAID status and only when the permit was approved.
    Moves the record to DEPARTURE_ORDERED.
    Log the activity with the associated token.
    """,
)
async def issue_departure_order(
    fParam: DepartureOrderForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    return runTransition(
        bearer,
        request_info,
        fParam.id,
        ledger.issueDepartureOrder,
        passengers_departing=fParam.passengers_departing,
    )


@route_operator.patch(
    URL_DISPATCH_EXIT,
    tags=["Dispatch"],
    response_model=DispatchView,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition(DispatchRecord.current_status),
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Record the exit of a vehicle from the station.
    Allowed from the PAID and DEPARTURE_ORDERED statuses.
    The exit time defaults to the time of the request.
    Moves the record to DEPARTED, which is final.
    Log the activity with the associated token.
    """,
)
async def record_exit(
    fParam: ExitForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    return runTransition(
        bearer,
        request_info,
        fParam.id,
        ledger.recordExit,
        exit_time=fParam.exit_time,
    )


@route_operator.get(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=list[DispatchView],
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Fetch dispatch records with vehicle plate, driver name and route name.
    Supports filtering and pagination. Most recent entries come first.
    """,
)
async def get_dispatches(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        records = query.searchDispatch(
            session, DispatchSearch(**qParam.model_dump())
        )
        return query.viewDispatches(session, records)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_operator.get(
    URL_DISPATCH_BOARD,
    tags=["Dispatch"],
    response_model=Board,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Fetch the operator board.
    Records are grouped into the IN_STATION, PERMIT_ISSUED, PAID and DEPARTURE_ORDERED columns with a count per column.
    Departed vehicles are not shown.
    The text filter matches plate number, driver name or route name.
    """,
)
async def get_board(
    qParam: BoardQueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        return query.board(session, DispatchSearch(**qParam.model_dump()))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
