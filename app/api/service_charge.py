from decimal import Decimal
from fastapi import APIRouter, Depends, Query, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.api.bearer import bearer_operator
from app.src.db import DispatchRecord, ServiceCharge, sessionMaker
from app.src import exceptions, validators, getters
from app.src.dispatch import charges, ledger
from app.src.dispatch.charges import ChargeLine
from app.src.loggers import logEvent
from app.src.functions import makeExceptionResponses
from app.src.redis import acquireLock, releaseLock
from app.src.urls import URL_SERVICE_CHARGE, URL_SERVICE_CHARGE_TOTAL

route_operator = APIRouter()


## Output Schema
class ServiceChargeSchema(BaseModel):
    id: int
    dispatch_record_id: int
    service_type_id: int
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal


class ChargeTotalSchema(BaseModel):
    dispatch_record_id: int
    charge_count: int
    total_amount: Decimal


## Input Forms
class CreateForm(BaseModel):
    dispatch_record_id: int = Field(Form())
    service_type_id: int = Field(Form())
    quantity: Decimal = Field(Form(default=Decimal("1")))
    unit_price: Decimal | None = Field(
        Form(default=None, description="Defaults to the catalog base price")
    )
    total_amount: Decimal | None = Field(
        Form(default=None, description="Checked against quantity * unit_price")
    )


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Params
class QueryParams(BaseModel):
    dispatch_record_id: int = Field(Query())


## API endpoints [Operator]
@route_operator.post(
    URL_SERVICE_CHARGE,
    tags=["Service Charge"],
    response_model=ServiceChargeSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.UnknownValue(ServiceCharge.service_type_id),
            exceptions.InvalidValue(ServiceCharge.quantity),
            exceptions.InvalidValue(ServiceCharge.total_amount),
            exceptions.ChargesFrozen,
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Add a service charge to a dispatch record.
    The service type must be active. The unit price is copied from the catalog unless given.
    The quantity must be greater than zero and the unit price can not be negative, both with at most two decimal places.
    The total amount is always quantity * unit_price.
    Charges can not be added once the record is paid.
    Log the charge creation activity with the associated token.
    """,
)
async def create_service_charge(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    recordLock = None
    try:
        session = sessionMaker()
        token = validators.operatorToken(bearer.credentials, session)
        recordLock = acquireLock(
            DispatchRecord.__tablename__, fParam.dispatch_record_id
        )

        charge = charges.addCharge(
            session,
            fParam.dispatch_record_id,
            service_type_id=fParam.service_type_id,
            quantity=fParam.quantity,
            unit_price=fParam.unit_price,
            total_amount=fParam.total_amount,
            actor_id=token.operator_id,
        )

        chargeData = jsonable_encoder(
            ServiceChargeSchema.model_validate(charge, from_attributes=True)
        )
        logEvent(token, request_info, chargeData)
        return chargeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(recordLock)
        session.close()


@route_operator.delete(
    URL_SERVICE_CHARGE,
    tags=["Service Charge"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.InvalidIdentifier,
            exceptions.ChargesFrozen,
            exceptions.LockAcquireTimeout,
        ]
    ),
    description="""
    Delete a service charge by ID.
    Charges can not be removed once the record is paid.
    Log the deletion event with the associated token.
    """,
)
async def delete_service_charge(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_operator),
    request_info=Depends(getters.requestInfo),
):
    recordLock = None
    try:
        session = sessionMaker()
        token = validators.operatorToken(bearer.credentials, session)

        charge = (
            session.query(ServiceCharge).filter(ServiceCharge.id == fParam.id).first()
        )
        if charge is None:
            raise exceptions.InvalidIdentifier()
        recordLock = acquireLock(
            DispatchRecord.__tablename__, charge.dispatch_record_id
        )

        charge = charges.removeCharge(session, fParam.id, actor_id=token.operator_id)
        chargeData = jsonable_encoder(
            ServiceChargeSchema.model_validate(charge, from_attributes=True)
        )
        logEvent(token, request_info, chargeData)
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(recordLock)
        session.close()


@route_operator.get(
    URL_SERVICE_CHARGE,
    tags=["Service Charge"],
    response_model=list[ChargeLine],
    responses=makeExceptionResponses(
        [exceptions.InvalidToken, exceptions.InvalidIdentifier]
    ),
    description="""
    Fetch the service charges of a dispatch record, newest first.
    Each charge carries the code, name and unit of its service type.
    """,
)
async def get_service_charges(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        return charges.listCharges(session, qParam.dispatch_record_id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_operator.get(
    URL_SERVICE_CHARGE_TOTAL,
    tags=["Service Charge"],
    response_model=ChargeTotalSchema,
    responses=makeExceptionResponses(
        [exceptions.InvalidToken, exceptions.InvalidIdentifier]
    ),
    description="""
    Fetch the payable total of a dispatch record, the sum of its service charges.
    The payment step does not enforce this amount.
    """,
)
async def get_service_charge_total(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        ledger.getDispatch(session, qParam.dispatch_record_id)
        chargeCount = (
            session.query(ServiceCharge)
            .filter(ServiceCharge.dispatch_record_id == qParam.dispatch_record_id)
            .count()
        )
        return ChargeTotalSchema(
            dispatch_record_id=qParam.dispatch_record_id,
            charge_count=chargeCount,
            total_amount=charges.chargeTotal(session, qParam.dispatch_record_id),
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
