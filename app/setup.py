import argparse
from http import HTTPStatus
from requests import get, patch, post
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from app.src.enums import DocumentType, PermitStatus, PaymentMethod
from app.src.urls import (
    URL_DISPATCH,
    URL_DISPATCH_BOARD,
    URL_DISPATCH_DEPARTURE_ORDER,
    URL_DISPATCH_EXIT,
    URL_DISPATCH_PASSENGER_DROP,
    URL_DISPATCH_PAYMENT,
    URL_DISPATCH_PERMIT,
    URL_SERVICE_CHARGE,
    URL_SERVICE_CHARGE_TOTAL,
)
from app.src.db import (
    Driver,
    Operator,
    OperatorToken,
    Route,
    ServiceType,
    Vehicle,
    VehicleDocument,
    sessionMaker,
    engine,
    ORMbase,
)


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    session = sessionMaker()
    ORMbase.metadata.drop_all(engine)
    session.commit()
    print("* All tables deleted")
    session.close()


def createTables():
    session = sessionMaker()
    ORMbase.metadata.create_all(engine)
    session.commit()
    print("* All tables created")
    session.close()


def initDB():
    session = sessionMaker()
    admin = Operator(username="admin", full_name="Station admin")
    session.add(admin)
    session.flush()

    token = OperatorToken(
        operator_id=admin.id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )
    session.add(token)

    serviceTypes = [
        ServiceType(
            code="STATION_FEE", name="Station fee", base_price=50000, unit="visit"
        ),
        ServiceType(
            code="PARKING", name="Parking", base_price=20000, unit="hour"
        ),
        ServiceType(
            code="CLEANING", name="Bus cleaning", base_price=30000, unit="visit"
        ),
        ServiceType(
            code="WATER", name="Water refill", base_price=5000, unit="litre"
        ),
    ]
    session.add_all(serviceTypes)

    session.commit()
    print(f"* Operator token for admin: {token.access_token}")
    print("* Initialization completed")
    session.close()


def POST(URL: str, header: dict = {}, status_code: int = HTTPStatus.CREATED, **kwargs):
    response = post(URL, headers=header, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def PATCH(URL: str, header: dict = {}, status_code: int = HTTPStatus.OK, **kwargs):
    response = patch(URL, headers=header, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def GET(URL: str, header: dict = {}, status_code: int = HTTPStatus.OK, **kwargs):
    response = get(URL, headers=header, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def testDB():
    # Base URL
    BASE_URL = "http://127.0.0.1:8080/operator"

    # Registry data, normally owned by the surrounding station systems
    session = sessionMaker()
    today = date.today()
    vehicle = Vehicle(
        plate_number="51B-123.45", seat_capacity=45, company_name="Test lines"
    )
    session.add(vehicle)
    session.flush()
    for documentType in DocumentType:
        session.add(
            VehicleDocument(
                vehicle_id=vehicle.id,
                document_type=documentType,
                document_number=f"{documentType.name}-0001",
                issue_date=today - timedelta(days=365),
                expiry_date=today + timedelta(days=365),
            )
        )
    driver = Driver(full_name="Test driver", phone_number="+84900000000")
    route = Route(code="SGN-DLT", name="Saigon - Da Lat")
    session.add_all([driver, route])
    session.flush()
    token = (
        session.query(OperatorToken)
        .filter(OperatorToken.expires_at > datetime.now(timezone.utc))
        .first()
    )
    stationFee = (
        session.query(ServiceType).filter(ServiceType.code == "STATION_FEE").first()
    )
    session.commit()
    print("* Created vehicle, driver and route")
    accessToken = {"Authorization": f"Bearer {token.access_token}"}

    # Entry
    dispatchData = {
        "vehicle_id": vehicle.id,
        "driver_id": driver.id,
        "route_id": route.id,
    }
    dispatch = POST((BASE_URL + URL_DISPATCH), header=accessToken, data=dispatchData)
    dispatchId = dispatch.json()["id"]
    print("* Registered vehicle entry")

    # Passenger drop-off
    PATCH(
        (BASE_URL + URL_DISPATCH_PASSENGER_DROP),
        header=accessToken,
        data={"id": dispatchId, "passengers_arrived": 30},
    )
    print("* Recorded passenger drop-off")

    # Service charge
    POST(
        (BASE_URL + URL_SERVICE_CHARGE),
        header=accessToken,
        data={
            "dispatch_record_id": dispatchId,
            "service_type_id": stationFee.id,
            "quantity": 1,
        },
    )
    total = GET(
        (BASE_URL + URL_SERVICE_CHARGE_TOTAL),
        header=accessToken,
        params={"dispatch_record_id": dispatchId},
    )
    print(f"* Added service charge, total {total.json()['total_amount']}")

    # Permit
    permitData = {
        "id": dispatchId,
        "permit_status": int(PermitStatus.APPROVED),
        "transport_order_code": "PL-001",
        "planned_departure_time": (
            datetime.now(timezone.utc) + timedelta(hours=1)
        ).isoformat(),
        "seat_count": 40,
    }
    PATCH((BASE_URL + URL_DISPATCH_PERMIT), header=accessToken, data=permitData)
    print("* Issued boarding permit")

    # Payment
    paymentData = {
        "id": dispatchId,
        "amount": str(Decimal(str(total.json()["total_amount"]))),
        "payment_method": int(PaymentMethod.CASH),
        "invoice_number": "INV-0001",
    }
    PATCH((BASE_URL + URL_DISPATCH_PAYMENT), header=accessToken, data=paymentData)
    print("* Processed payment")

    # Departure order and exit
    PATCH(
        (BASE_URL + URL_DISPATCH_DEPARTURE_ORDER),
        header=accessToken,
        data={"id": dispatchId, "passengers_departing": 38},
    )
    print("* Issued departure order")
    board = GET((BASE_URL + URL_DISPATCH_BOARD), header=accessToken)
    print(f"* Board counts {board.json()['counts']}")
    PATCH((BASE_URL + URL_DISPATCH_EXIT), header=accessToken, data={"id": dispatchId})
    print("* Recorded vehicle exit")
    session.close()


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="run a demo visit")
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB()
    if args.rm:
        removeTables()
