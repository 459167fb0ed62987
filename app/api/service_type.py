from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.bearer import bearer_operator
from app.src.db import ServiceType, sessionMaker
from app.src import exceptions, validators
from app.src.functions import makeExceptionResponses
from app.src.urls import URL_SERVICE_TYPE

route_operator = APIRouter()


## Output Schema
class ServiceTypeSchema(BaseModel):
    id: int
    code: str
    name: str
    base_price: Decimal
    unit: Optional[str]
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


## Query Params
class QueryParams(BaseModel):
    is_active: bool | None = Field(Query(default=None))
    code: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))


# Functions
def searchServiceType(session, qParam: QueryParams) -> List[ServiceType]:
    query = session.query(ServiceType)

    # Filters
    if qParam.is_active is not None:
        query = query.filter(ServiceType.is_active == qParam.is_active)
    if qParam.code is not None:
        query = query.filter(ServiceType.code == qParam.code)
    # id based filters
    if qParam.id is not None:
        query = query.filter(ServiceType.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(ServiceType.id.in_(qParam.id_list))

    # Ordering
    query = query.order_by(ServiceType.code.asc())
    return query.all()


## API endpoints [Operator]
@route_operator.get(
    URL_SERVICE_TYPE,
    tags=["Service Type"],
    response_model=list[ServiceTypeSchema],
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Fetch the service type catalog used to price service charges.
    The catalog is maintained outside the dispatch service and is read only here.
    """,
)
async def get_service_types(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        return searchServiceType(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
