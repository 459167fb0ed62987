"""
Read-only lookups into the station registries.

The dispatch core never writes vehicle, driver, route, service type or
operator data; everything it needs from them goes through this module.
"""

from typing import Dict, Iterable, Optional
from fastapi import Request
from sqlalchemy.orm.session import Session

from app.src import schemas
from app.src.db import (
    Driver,
    Route,
    ServiceType,
    Vehicle,
    VehicleDocument,
)
from app.src.enums import DocumentType
from app.src.dispatch.eligibility import DocumentSnapshot, VehicleDocumentSnapshot


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - app_id (int): Application ID from app state.
    """
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        app_id=request.scope["app"].state.id,
    )


def vehicle(session: Session, vehicleId: int) -> Optional[Vehicle]:
    return session.query(Vehicle).filter(Vehicle.id == vehicleId).first()


def driver(session: Session, driverId: int) -> Optional[Driver]:
    return session.query(Driver).filter(Driver.id == driverId).first()


def route(session: Session, routeId: int) -> Optional[Route]:
    return session.query(Route).filter(Route.id == routeId).first()


def serviceType(session: Session, serviceTypeId: int) -> Optional[ServiceType]:
    return session.query(ServiceType).filter(ServiceType.id == serviceTypeId).first()


def vehicleDocuments(session: Session, vehicleId: int) -> VehicleDocumentSnapshot:
    """
    Build the document snapshot of a vehicle.

    Document kinds the vehicle has never registered are simply absent
    from the snapshot.
    """
    documents = (
        session.query(VehicleDocument)
        .filter(VehicleDocument.vehicle_id == vehicleId)
        .all()
    )
    return VehicleDocumentSnapshot(
        vehicle_id=vehicleId,
        documents={
            DocumentType(document.document_type): DocumentSnapshot(
                document_number=document.document_number,
                issue_date=document.issue_date,
                expiry_date=document.expiry_date,
            )
            for document in documents
        },
    )


def displayNames(
    session: Session,
    vehicleIds: Iterable[int],
    driverIds: Iterable[int],
    routeIds: Iterable[int],
) -> tuple[Dict[int, str], Dict[int, str], Dict[int, str]]:
    """
    Fetch plate numbers, driver names and route names in one query per registry.

    Returns:
        tuple: (vehicle id -> plate number, driver id -> full name,
        route id -> route name). Unknown ids are left out.
    """
    vehicleIds, driverIds, routeIds = set(vehicleIds), set(driverIds), set(routeIds)
    plates, drivers, routes = {}, {}, {}
    if vehicleIds:
        rows = (
            session.query(Vehicle.id, Vehicle.plate_number)
            .filter(Vehicle.id.in_(vehicleIds))
            .all()
        )
        plates = {row.id: row.plate_number for row in rows}
    if driverIds:
        rows = (
            session.query(Driver.id, Driver.full_name)
            .filter(Driver.id.in_(driverIds))
            .all()
        )
        drivers = {row.id: row.full_name for row in rows}
    if routeIds:
        rows = session.query(Route.id, Route.name).filter(Route.id.in_(routeIds)).all()
        routes = {row.id: row.name for row in rows}
    return plates, drivers, routes
