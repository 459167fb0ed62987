from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.src.db import (
    Driver,
    ORMbase,
    Operator,
    OperatorToken,
    Route,
    ServiceType,
    Vehicle,
    VehicleDocument,
)
from app.src.enums import DocumentType


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'dispatch.db'}")
    ORMbase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def makeSession(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(makeSession):
    session = makeSession()
    yield session
    session.close()


@pytest.fixture
def registry(makeSession):
    """Operators, vehicles, a driver, a route and the service catalog."""
    session = makeSession()
    operator = Operator(username="gate", full_name="Gate operator")
    cashier = Operator(username="cashier", full_name="Cashier")
    session.add_all([operator, cashier])
    session.flush()

    token = OperatorToken(
        operator_id=operator.id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )
    bus = Vehicle(plate_number="51B-123.45", seat_capacity=45, company_name="Phuong")
    otherBus = Vehicle(plate_number="29A-678.90", seat_capacity=29)
    driver = Driver(full_name="Nguyen Van An", phone_number="+84900000001")
    route = Route(code="SGN-DLT", name="Saigon - Da Lat")
    stationFee = ServiceType(
        code="STATION_FEE", name="Station fee", base_price=50000, unit="visit"
    )
    parking = ServiceType(code="PARKING", name="Parking", base_price=12500.50)
    retired = ServiceType(
        code="OLD_FEE", name="Retired fee", base_price=1000, is_active=False
    )
    session.add_all(
        [token, bus, otherBus, driver, route, stationFee, parking, retired]
    )
    session.flush()

    for documentType in DocumentType:
        session.add(
            VehicleDocument(
                vehicle_id=bus.id,
                document_type=documentType,
                document_number=f"{documentType.name}-1",
                issue_date=date(2024, 1, 1),
                expiry_date=date(2026, 1, 1),
            )
        )
    session.commit()

    ids = SimpleNamespace(
        operator_id=operator.id,
        cashier_id=cashier.id,
        access_token=token.access_token,
        vehicle_id=bus.id,
        other_vehicle_id=otherBus.id,
        driver_id=driver.id,
        route_id=route.id,
        station_fee_id=stationFee.id,
        parking_id=parking.id,
        retired_id=retired.id,
    )
    session.close()
    return ids
