from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.src.constants import MAX_LIST_LIMIT
from app.src.db import Driver, Route, Vehicle
from app.src.dispatch import ledger, query
from app.src.dispatch.query import DispatchSearch
from app.src.enums import BoardColumn, DispatchStatus

from tests.helpers import T0, approve, leave, newDispatch, orderDeparture, pay, reject


@pytest.mark.parametrize(
    "status, column",
    [
        (DispatchStatus.ENTERED, BoardColumn.IN_STATION),
        (DispatchStatus.PASSENGERS_DROPPED, BoardColumn.IN_STATION),
        (DispatchStatus.PERMIT_REJECTED, BoardColumn.IN_STATION),
        (DispatchStatus.PERMIT_ISSUED, BoardColumn.PERMIT_ISSUED),
        (DispatchStatus.PAID, BoardColumn.PAID),
        (DispatchStatus.DEPARTURE_ORDERED, BoardColumn.DEPARTURE_ORDERED),
        (DispatchStatus.DEPARTED, None),
    ],
)
def test_classify(status, column):
    assert query.classify(SimpleNamespace(current_status=status)) == column


def test_monthly_payment_flag():
    flagged = SimpleNamespace(
        current_status=DispatchStatus.PAID,
        meta={"paymentType": "monthly"},
        transport_order_code=None,
    )
    assert query.isMonthlyPayment(flagged) is True

    preApproved = SimpleNamespace(
        current_status=DispatchStatus.ENTERED, meta=None, transport_order_code="PL-9"
    )
    assert query.isMonthlyPayment(preApproved) is True

    regular = SimpleNamespace(
        current_status=DispatchStatus.PERMIT_ISSUED,
        meta={"paymentType": "cash"},
        transport_order_code="PL-1",
    )
    assert query.isMonthlyPayment(regular) is False


@pytest.fixture
def station(session, registry):
    """Three vehicles at different stages of their visit."""
    thirdBus = Vehicle(plate_number="30F-555.55", seat_capacity=16)
    otherDriver = Driver(full_name="Tran Thi Binh")
    otherRoute = Route(code="SGN-VTU", name="Saigon - Vung Tau")
    session.add_all([thirdBus, otherDriver, otherRoute])
    session.commit()

    entered = newDispatch(session, registry)
    permitted = newDispatch(
        session,
        registry,
        vehicle_id=registry.other_vehicle_id,
        driver_id=otherDriver.id,
        entry_time=T0 + timedelta(minutes=5),
    )
    approve(session, permitted.id, registry)
    gone = newDispatch(
        session,
        registry,
        vehicle_id=thirdBus.id,
        route_id=otherRoute.id,
        entry_time=T0 - timedelta(hours=1),
    )
    approve(session, gone.id, registry)
    pay(session, gone.id, registry)
    leave(session, gone.id, registry)
    return SimpleNamespace(
        entered=entered.id,
        permitted=permitted.id,
        gone=gone.id,
        third_vehicle_id=thirdBus.id,
    )


def test_search_orders_by_entry_time(session, station):
    records = query.searchDispatch(session, DispatchSearch())
    assert [record.id for record in records] == [
        station.permitted,
        station.entered,
        station.gone,
    ]


def test_search_filters(session, registry, station):
    byStatus = query.searchDispatch(
        session, DispatchSearch(status=DispatchStatus.DEPARTED)
    )
    assert [record.id for record in byStatus] == [station.gone]

    byVehicle = query.searchDispatch(
        session, DispatchSearch(vehicle_id=registry.other_vehicle_id)
    )
    assert [record.id for record in byVehicle] == [station.permitted]

    byRoute = query.searchDispatch(
        session, DispatchSearch(route_id=registry.route_id)
    )
    assert {record.id for record in byRoute} == {station.entered, station.permitted}

    byDriver = query.searchDispatch(
        session, DispatchSearch(driver_id=registry.driver_id)
    )
    assert {record.id for record in byDriver} == {station.entered, station.gone}

    page = query.searchDispatch(session, DispatchSearch(offset=1, limit=1))
    assert [record.id for record in page] == [station.entered]


def test_views_carry_display_names(session, registry, station):
    record = ledger.getDispatch(session, station.entered)
    view = query.viewDispatch(session, record)
    assert view.vehicle_plate_number == "51B-123.45"
    assert view.driver_name == "Nguyen Van An"
    assert view.route_name == "Saigon - Da Lat"
    assert view.board_column == BoardColumn.IN_STATION
    assert view.monthly_payment is False

    gone = query.viewDispatch(session, ledger.getDispatch(session, station.gone))
    assert gone.board_column is None
    assert gone.route_name == "Saigon - Vung Tau"


def test_board_groups_in_station_records(session, registry, station):
    board = query.board(session)
    assert board.counts == {
        "IN_STATION": 1,
        "PERMIT_ISSUED": 1,
        "PAID": 0,
        "DEPARTURE_ORDERED": 0,
    }
    assert [view.id for view in board.columns["IN_STATION"]] == [station.entered]
    assert [view.id for view in board.columns["PERMIT_ISSUED"]] == [station.permitted]
    assert sorted(board.active_vehicle_ids) == sorted(
        [registry.vehicle_id, registry.other_vehicle_id]
    )


def test_board_follows_transitions(session, registry, station):
    reject(session, station.entered, registry)
    pay(session, station.permitted, registry)
    orderDeparture(session, station.permitted, registry)

    board = query.board(session)
    assert board.counts["IN_STATION"] == 1
    assert board.counts["PERMIT_ISSUED"] == 0
    assert board.counts["DEPARTURE_ORDERED"] == 1


@pytest.mark.parametrize(
    "text, expected",
    [
        ("51b", "entered"),
        ("tran thi", "permitted"),
        ("Da Lat", "both"),
        ("Vung Tau", "none"),
    ],
)
def test_board_text_search(session, station, text, expected):
    board = query.board(session, DispatchSearch(text=text))
    found = {view.id for views in board.columns.values() for view in views}
    wanted = {
        "entered": {station.entered},
        "permitted": {station.permitted},
        "both": {station.entered, station.permitted},
        "none": set(),
    }
    assert found == wanted[expected]


def test_active_vehicles(session, registry, station):
    assert query.activeVehicleIds(session) == sorted(
        [registry.vehicle_id, registry.other_vehicle_id]
    )

    # Released vehicles stay on the board but are no longer in the station
    pay(session, station.permitted, registry)
    orderDeparture(session, station.permitted, registry)
    assert query.activeVehicleIds(session) == [registry.vehicle_id]
    assert query.board(session).counts["DEPARTURE_ORDERED"] == 1

    # The gate accepts the released vehicle again
    newDispatch(session, registry, vehicle_id=registry.other_vehicle_id)
    assert query.activeVehicleIds(session) == sorted(
        [registry.vehicle_id, registry.other_vehicle_id]
    )


def test_board_is_not_paginated(session, registry):
    fleet = [
        Vehicle(plate_number=f"60B-{number:03d}.00", seat_capacity=29)
        for number in range(MAX_LIST_LIMIT + 5)
    ]
    session.add_all(fleet)
    session.commit()
    for number, vehicle in enumerate(fleet):
        newDispatch(
            session,
            registry,
            vehicle_id=vehicle.id,
            entry_time=T0 + timedelta(minutes=number),
        )

    board = query.board(session, DispatchSearch(limit=10, offset=3))
    assert board.counts["IN_STATION"] == MAX_LIST_LIMIT + 5
    assert len(board.columns["IN_STATION"]) == MAX_LIST_LIMIT + 5
    assert len(board.active_vehicle_ids) == MAX_LIST_LIMIT + 5

    # Lists stay paginated
    assert len(query.searchDispatch(session, DispatchSearch())) == MAX_LIST_LIMIT
