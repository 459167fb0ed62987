"""
Read side of the dispatch workflow.

Lists enriched with registry display names, and the operator board which
groups in-station records into workflow columns. Nothing here takes a lock;
reads see the latest committed state.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from sqlalchemy import or_, select
from sqlalchemy.orm.session import Session

from app.src import getters
from app.src.constants import MONTHLY_PAYMENT_TYPE, PAYMENT_TYPE_KEY, MAX_LIST_LIMIT
from app.src.db import DispatchRecord, Driver, Route, Vehicle
from app.src.dispatch.ledger import CLOSED_STATUSES
from app.src.enums import BoardColumn, DispatchStatus

BOARD_COLUMNS = {
    DispatchStatus.ENTERED: BoardColumn.IN_STATION,
    DispatchStatus.PASSENGERS_DROPPED: BoardColumn.IN_STATION,
    DispatchStatus.PERMIT_REJECTED: BoardColumn.IN_STATION,
    DispatchStatus.PERMIT_ISSUED: BoardColumn.PERMIT_ISSUED,
    DispatchStatus.PAID: BoardColumn.PAID,
    DispatchStatus.DEPARTURE_ORDERED: BoardColumn.DEPARTURE_ORDERED,
}


class DispatchView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    driver_id: int
    route_id: int
    schedule_id: Optional[int] = None
    entry_time: datetime
    entry_by: Optional[int] = None
    passenger_drop_time: Optional[datetime] = None
    passengers_arrived: Optional[int] = None
    passenger_drop_by: Optional[int] = None
    boarding_permit_time: Optional[datetime] = None
    boarding_permit_by: Optional[int] = None
    permit_status: Optional[int] = None
    transport_order_code: Optional[str] = None
    planned_departure_time: Optional[datetime] = None
    seat_count: Optional[int] = None
    rejection_reason: Optional[str] = None
    eligibility_override: bool = False
    eligibility_notes: Optional[str] = None
    payment_time: Optional[datetime] = None
    payment_amount: Optional[Decimal] = None
    payment_method: Optional[int] = None
    invoice_number: Optional[str] = None
    payment_by: Optional[int] = None
    departure_order_time: Optional[datetime] = None
    passengers_departing: Optional[int] = None
    departure_order_by: Optional[int] = None
    exit_time: Optional[datetime] = None
    exit_by: Optional[int] = None
    current_status: int
    notes: Optional[str] = None
    meta: Optional[dict] = None
    version: int
    updated_on: Optional[datetime] = None
    created_on: Optional[datetime] = None
    # Derived
    vehicle_plate_number: Optional[str] = None
    driver_name: Optional[str] = None
    route_name: Optional[str] = None
    board_column: Optional[int] = None
    monthly_payment: bool = False


class DispatchSearch(BaseModel):
    status: Optional[DispatchStatus] = None
    status_list: Optional[List[DispatchStatus]] = None
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    route_id: Optional[int] = None
    id: Optional[int] = None
    entry_time_ge: Optional[datetime] = None
    entry_time_le: Optional[datetime] = None
    # Plate number, driver name or route name
    text: Optional[str] = None
    offset: int = 0
    # None lifts the limit
    limit: Optional[int] = MAX_LIST_LIMIT


class Board(BaseModel):
    columns: Dict[str, List[DispatchView]]
    counts: Dict[str, int]
    active_vehicle_ids: List[int]


def classify(record: DispatchRecord) -> Optional[BoardColumn]:
    """
    Board column of a record. Departed records have left the station and
    belong to no column.
    """
    return BOARD_COLUMNS.get(DispatchStatus(record.current_status))


def isMonthlyPayment(record: DispatchRecord) -> bool:
    """
    Monthly payers are flagged in the record metadata. An in-station record
    that already carries a transport order code is also treated as one.
    """
    meta = record.meta or {}
    if meta.get(PAYMENT_TYPE_KEY) == MONTHLY_PAYMENT_TYPE:
        return True
    return classify(record) == BoardColumn.IN_STATION and bool(
        record.transport_order_code
    )


def viewDispatches(session: Session, records: List[DispatchRecord]) -> List[DispatchView]:
    """Attach registry display names and derived flags to records."""
    plates, drivers, routes = getters.displayNames(
        session,
        [record.vehicle_id for record in records],
        [record.driver_id for record in records],
        [record.route_id for record in records],
    )
    views = []
    for record in records:
        view = DispatchView.model_validate(record)
        view.vehicle_plate_number = plates.get(record.vehicle_id)
        view.driver_name = drivers.get(record.driver_id)
        view.route_name = routes.get(record.route_id)
        column = classify(record)
        view.board_column = None if column is None else int(column)
        view.monthly_payment = isMonthlyPayment(record)
        views.append(view)
    return views


def viewDispatch(session: Session, record: DispatchRecord) -> DispatchView:
    return viewDispatches(session, [record])[0]


def searchDispatch(session: Session, search: DispatchSearch) -> List[DispatchRecord]:
    """Filter records, most recent entry first."""
    query = session.query(DispatchRecord)

    # Filters
    if search.id is not None:
        query = query.filter(DispatchRecord.id == search.id)
    if search.status is not None:
        query = query.filter(DispatchRecord.current_status == search.status)
    if search.status_list is not None:
        query = query.filter(DispatchRecord.current_status.in_(search.status_list))
    if search.vehicle_id is not None:
        query = query.filter(DispatchRecord.vehicle_id == search.vehicle_id)
    if search.driver_id is not None:
        query = query.filter(DispatchRecord.driver_id == search.driver_id)
    if search.route_id is not None:
        query = query.filter(DispatchRecord.route_id == search.route_id)
    # entry_time based filters
    if search.entry_time_ge is not None:
        query = query.filter(DispatchRecord.entry_time >= search.entry_time_ge)
    if search.entry_time_le is not None:
        query = query.filter(DispatchRecord.entry_time <= search.entry_time_le)
    # text based filter
    if search.text and search.text.strip():
        pattern = f"%{search.text.strip()}%"
        query = query.filter(
            or_(
                DispatchRecord.vehicle_id.in_(
                    select(Vehicle.id).where(Vehicle.plate_number.ilike(pattern))
                ),
                DispatchRecord.driver_id.in_(
                    select(Driver.id).where(Driver.full_name.ilike(pattern))
                ),
                DispatchRecord.route_id.in_(
                    select(Route.id).where(Route.name.ilike(pattern))
                ),
            )
        )

    # Ordering
    query = query.order_by(DispatchRecord.entry_time.desc(), DispatchRecord.id.desc())

    # Pagination
    query = query.offset(search.offset).limit(search.limit)
    return query.all()


def board(session: Session, search: Optional[DispatchSearch] = None) -> Board:
    """
    Group the in-station records into the operator board columns.

    Only records that belong to a column are fetched; `status` and
    `status_list` of the search are ignored. The board is not paginated.
    `offset` and `limit` are ignored too.
    """
    search = (search or DispatchSearch()).model_copy(
        update={
            "status": None,
            "status_list": list(BOARD_COLUMNS),
            "offset": 0,
            "limit": None,
        }
    )
    views = viewDispatches(session, searchDispatch(session, search))
    columns = {column.name: [] for column in BoardColumn}
    for view in views:
        columns[BoardColumn(view.board_column).name].append(view)
    return Board(
        columns=columns,
        counts={name: len(items) for name, items in columns.items()},
        active_vehicle_ids=activeVehicleIds(session),
    )


def activeVehicleIds(session: Session) -> List[int]:
    """
    Vehicles still in the station. A vehicle holding a departure order has
    been released and is no longer counted, matching the entry check of
    the ledger.
    """
    rows = (
        session.query(DispatchRecord.vehicle_id)
        .filter(DispatchRecord.current_status.notin_(CLOSED_STATUSES))
        .distinct()
        .all()
    )
    return sorted(row.vehicle_id for row in rows)
