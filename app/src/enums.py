from enum import IntEnum


class AppID(IntEnum):
    OPERATOR = 1


class DispatchStatus(IntEnum):
    ENTERED = 1
    PASSENGERS_DROPPED = 2
    PERMIT_ISSUED = 3
    PERMIT_REJECTED = 4
    PAID = 5
    DEPARTURE_ORDERED = 6
    DEPARTED = 7


class PermitStatus(IntEnum):
    APPROVED = 1
    REJECTED = 2


class PaymentMethod(IntEnum):
    CASH = 1
    BANK_TRANSFER = 2
    CARD = 3


class DocumentType(IntEnum):
    REGISTRATION = 1
    INSPECTION = 2
    INSURANCE = 3
    OPERATION_PERMIT = 4
    EMBLEM = 5


class BoardColumn(IntEnum):
    IN_STATION = 1
    PERMIT_ISSUED = 2
    PAID = 3
    DEPARTURE_ORDERED = 4
