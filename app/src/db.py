from secrets import token_hex
from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.dialects.postgresql import JSONB

from app.src.constants import (
    PSQL_DB_DRIVER,
    PSQL_DB_HOST,
    PSQL_DB_PASSWORD,
    PSQL_DB_NAME,
    PSQL_DB_PORT,
    PSQL_DB_USERNAME,
)
from app.src.enums import DispatchStatus


# Global DBMS variables
dbURL = f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}"
engine = create_engine(url=dbURL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONData = JSON().with_variant(JSONB(), "postgresql")


# ----------------------------------- Registry DB Models --------------------------------------#
# These tables are owned by the surrounding station systems.
# The dispatch core only reads them.
class Operator(ORMbase):
    """
    Represents a station staff member who performs dispatch actions.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the operator.

        username (String(32)):
            Login name of the operator.
            Must be unique and not null.

        full_name (String(32)):
            Display name of the operator.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the operator was created.
    """

    __tablename__ = "operator"

    id = Column(Integer, primary_key=True)
    username = Column(String(32), nullable=False, unique=True)
    full_name = Column(String(32))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class OperatorToken(ORMbase):
    """
    Access token issued to an operator by the identity system.

    Used to resolve the acting operator of a request.

    Columns:
        id (Integer):
            Primary key.

        operator_id (Integer):
            Foreign key referencing `operator.id`.
            Deletion of the operator cascades to its tokens.

        access_token (String(64)):
            Bearer token value. Unique and indexed.

        expires_at (DateTime):
            The token is rejected after this time.

        created_on (DateTime):
            Timestamp indicating when the token was issued.
    """

    __tablename__ = "operator_token"

    id = Column(Integer, primary_key=True)
    operator_id = Column(
        Integer, ForeignKey("operator.id", ondelete="CASCADE"), nullable=False
    )
    access_token = Column(
        String(64), nullable=False, unique=True, index=True, default=lambda: token_hex(32)
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Vehicle(ORMbase):
    """
    Represents a bus registered with the station.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the vehicle.

        plate_number (String(16)):
            Vehicle registration plate.
            Must be unique and non-null. Indexed for fast lookup.

        seat_capacity (Integer):
            Number of seats of the vehicle.

        company_name (String(128)):
            Name of the transport company operating the vehicle.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the vehicle was registered.
    """

    __tablename__ = "vehicle"

    id = Column(Integer, primary_key=True)
    plate_number = Column(String(16), nullable=False, unique=True, index=True)
    seat_capacity = Column(Integer, nullable=False)
    company_name = Column(String(128))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class VehicleDocument(ORMbase):
    """
    A legal document held by a vehicle (registration, inspection, insurance,
    operation permit, emblem).

    One row per document kind and vehicle.

    Columns:
        id (Integer):
            Primary key.

        vehicle_id (Integer):
            Foreign key referencing `vehicle.id`.
            Deletion of the vehicle cascades to its documents.

        document_type (Integer):
            Kind of document, mapped from the `DocumentType` enum.

        document_number (String(64)):
            Number printed on the document.

        issue_date (Date):
            Date on which the document was issued.

        expiry_date (Date):
            Last calendar day on which the document is valid.
    """

    __tablename__ = "vehicle_document"
    __table_args__ = (UniqueConstraint("vehicle_id", "document_type"),)

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(
        Integer,
        ForeignKey("vehicle.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type = Column(Integer, nullable=False)
    document_number = Column(String(64))
    issue_date = Column(Date)
    expiry_date = Column(Date, nullable=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Driver(ORMbase):
    """
    Represents a bus driver known to the station.

    Columns:
        id (Integer):
            Primary key.

        full_name (String(64)):
            Display name of the driver. Must be non-null.

        phone_number (String(32)):
            Contact number of the driver.

        license_number (String(32)):
            Driving license number.
    """

    __tablename__ = "driver"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(64), nullable=False)
    phone_number = Column(String(32))
    license_number = Column(String(32))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Route(ORMbase):
    """
    Represents a route served from the station.

    Columns:
        id (Integer):
            Primary key.

        code (String(32)):
            Short route code. Unique.

        name (String(128)):
            Display name of the route. Must be non-null.
    """

    __tablename__ = "route"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True)
    name = Column(String(128), nullable=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class ServiceType(ORMbase):
    """
    Catalog entry for a priced station service (station fee, parking, washing, ...).

    Columns:
        id (Integer):
            Primary key.

        code (String(32)):
            Short service code. Unique and non-null.

        name (String(128)):
            Display name of the service.

        base_price (Numeric):
            Current unit price. Copied into each charge at charge time,
            later changes never alter existing charges.

        unit (String(32)):
            Unit in which the quantity is counted (trip, hour, seat, ...).

        is_active (Boolean):
            Inactive services cannot be charged.
    """

    __tablename__ = "service_type"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(128), nullable=False)
    base_price = Column(Numeric(14, 2), nullable=False, default=0)
    unit = Column(String(32))
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Dispatch DB Models --------------------------------------#
class DispatchRecord(ORMbase):
    """
    One station visit of one vehicle, from entry to exit.

    The record is append-only: every transition sets a new group of columns
    and never clears earlier ones. `current_status` is the single source of
    truth for the workflow position.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the visit.

        vehicle_id, driver_id, route_id (Integer):
            References into the station registries. Required at creation.

        schedule_id (Integer):
            Optional schedule reference, set at creation or at permit time.

        entry_time, entry_by:
            When and by whom the vehicle was registered at the gate. Immutable.

        passenger_drop_time, passengers_arrived, passenger_drop_by:
            Passenger drop-off. Written at most once.

        boarding_permit_time, boarding_permit_by, permit_status:
            Outcome of the last permit decision.

        transport_order_code, planned_departure_time, seat_count:
            Required for an approved permit.

        rejection_reason (TEXT):
            Reason of the last rejection. Cleared on approval.

        eligibility_override (Boolean), eligibility_notes (TEXT):
            Set when a permit was approved although the vehicle documents
            were not compliant.

        payment_time, payment_amount, payment_method, invoice_number, payment_by:
            Payment. Written once.

        departure_order_time, passengers_departing, departure_order_by:
            Departure order. Written once.

        exit_time, exit_by:
            Physical exit. Terminal.

        current_status (Integer):
            Workflow position, mapped from the `DispatchStatus` enum.
            Indexed for filtering.

        notes (TEXT), meta (JSON, column "metadata"):
            Operator annotations. `meta["paymentType"]` flags monthly payers.

        version (Integer):
            Row version. Every UPDATE is guarded by the version that was read,
            a concurrent writer fails with a stale data error.
    """

    __tablename__ = "dispatch_record"

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(Integer, ForeignKey("vehicle.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("driver.id"), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("route.id"), nullable=False, index=True)
    schedule_id = Column(Integer)
    # Entry
    entry_time = Column(DateTime(timezone=True), nullable=False, index=True)
    entry_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    # Passenger drop-off
    passenger_drop_time = Column(DateTime(timezone=True))
    passengers_arrived = Column(Integer)
    passenger_drop_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    # Boarding permit
    boarding_permit_time = Column(DateTime(timezone=True))
    boarding_permit_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    permit_status = Column(Integer)
    transport_order_code = Column(String(64))
    planned_departure_time = Column(DateTime(timezone=True))
    seat_count = Column(Integer)
    rejection_reason = Column(TEXT)
    eligibility_override = Column(Boolean, nullable=False, default=False)
    eligibility_notes = Column(TEXT)
    # Payment
    payment_time = Column(DateTime(timezone=True))
    payment_amount = Column(Numeric(14, 2))
    payment_method = Column(Integer)
    invoice_number = Column(String(64))
    payment_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    # Departure order
    departure_order_time = Column(DateTime(timezone=True))
    passengers_departing = Column(Integer)
    departure_order_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    # Exit
    exit_time = Column(DateTime(timezone=True))
    exit_by = Column(Integer, ForeignKey("operator.id", ondelete="SET NULL"))
    # Status
    current_status = Column(
        Integer, nullable=False, default=DispatchStatus.ENTERED, index=True
    )
    notes = Column(TEXT)
    meta = Column("metadata", JSONData)
    version = Column(Integer, nullable=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __mapper_args__ = {"version_id_col": version}


class ServiceCharge(ORMbase):
    """
    A priced line item attached to a dispatch record.

    Columns:
        id (Integer):
            Primary key.

        dispatch_record_id (Integer):
            Foreign key referencing `dispatch_record.id`.
            Deletion of the record cascades to its charges.

        service_type_id (Integer):
            Foreign key referencing `service_type.id`.

        quantity (Numeric):
            Number of units charged. Always greater than zero.

        unit_price (Numeric):
            Price per unit copied from the catalog at charge time. Never negative.

        total_amount (Numeric):
            Always equal to quantity * unit_price.

        created_on (DateTime):
            Timestamp indicating when the charge was added.
    """

    __tablename__ = "service_charge"

    id = Column(Integer, primary_key=True)
    dispatch_record_id = Column(
        Integer,
        ForeignKey("dispatch_record.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_type_id = Column(Integer, ForeignKey("service_type.id"), nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    total_amount = Column(Numeric(18, 4), nullable=False)
    # Metadata
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
