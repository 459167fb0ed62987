from fastapi import FastAPI
from app.api import dispatch, service_charge, service_type, vehicle_eligibility
from app.src.enums import AppID


# ------------------------------------------------------
# Station operator app
# ------------------------------------------------------
app_operator = FastAPI(title="Operator APP")

# Tag the app with its AppID
app_operator.state.id = AppID.OPERATOR


# ------------------------------------------------------
# Operator routers
# ------------------------------------------------------
app_operator.include_router(dispatch.route_operator)
app_operator.include_router(service_charge.route_operator)
app_operator.include_router(service_type.route_operator)
app_operator.include_router(vehicle_eligibility.route_operator)
