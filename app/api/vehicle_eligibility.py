from datetime import date, datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.bearer import bearer_operator
from app.src.db import sessionMaker
from app.src.constants import TMZ_STATION
from app.src import exceptions, validators, getters
from app.src.dispatch.eligibility import EligibilityResult, evaluate
from app.src.functions import makeExceptionResponses
from app.src.urls import URL_VEHICLE_ELIGIBILITY

route_operator = APIRouter()


## Query Params
class QueryParams(BaseModel):
    vehicle_id: int = Field(Query())
    on_date: date | None = Field(
        Query(default=None, description="Defaults to today in the station timezone")
    )


## API endpoints [Operator]
@route_operator.get(
    URL_VEHICLE_ELIGIBILITY,
    tags=["Vehicle"],
    response_model=EligibilityResult,
    responses=makeExceptionResponses(
        [exceptions.InvalidToken, exceptions.InvalidIdentifier]
    ),
    description="""
    Evaluate the document compliance of a vehicle.
    Registration, inspection, insurance and operation permit must all be present and not expired.
    A document expiring on the evaluated day is still valid.
    The result is advisory, permits can be approved with an eligibility override.
    """,
)
async def get_vehicle_eligibility(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_operator)
):
    try:
        session = sessionMaker()
        validators.operatorToken(bearer.credentials, session)

        if getters.vehicle(session, qParam.vehicle_id) is None:
            raise exceptions.InvalidIdentifier()
        today = qParam.on_date or datetime.now(TMZ_STATION).date()
        return evaluate(getters.vehicleDocuments(session, qParam.vehicle_id), today)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
