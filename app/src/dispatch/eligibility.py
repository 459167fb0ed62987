"""
Document compliance of a vehicle.

A vehicle is compliant when its registration, inspection, insurance and
operation permit are all present and unexpired. Validity is decided per
calendar day: a document expiring today is still valid today.

The evaluation is advisory. Issuing a permit never consults it; callers
show the result to the operator, who may approve anyway and record the
override on the permit.
"""

from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, field_validator

from app.src.enums import DocumentType

REQUIRED_DOCUMENTS = (
    DocumentType.REGISTRATION,
    DocumentType.INSPECTION,
    DocumentType.INSURANCE,
    DocumentType.OPERATION_PERMIT,
)


def documentKind(documentType: DocumentType) -> str:
    return DocumentType(documentType).name.lower()


def calendarDay(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


class DocumentSnapshot(BaseModel):
    document_number: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: date

    @field_validator("issue_date", "expiry_date", mode="before")
    @classmethod
    def _dropTimeOfDay(cls, value):
        if isinstance(value, datetime):
            return value.date()
        return value

    def isValid(self, today: date | datetime) -> bool:
        return self.expiry_date >= calendarDay(today)


class VehicleDocumentSnapshot(BaseModel):
    vehicle_id: Optional[int] = None
    documents: Dict[DocumentType, DocumentSnapshot] = {}


class EligibilityResult(BaseModel):
    vehicle_id: Optional[int] = None
    compliant: bool
    per_document: Dict[str, bool]
    missing: List[str]
    expired: List[str]


def evaluate(
    snapshot: VehicleDocumentSnapshot, today: date | datetime
) -> EligibilityResult:
    """
    Evaluate the document compliance of a vehicle on a given day.

    Args:
        snapshot (VehicleDocumentSnapshot): Documents of the vehicle.
        today (date | datetime): The station's current day. A datetime is
            reduced to its date, time of day is ignored.

    Returns:
        EligibilityResult: `per_document` holds one entry for every required
        kind plus any other kind present in the snapshot. Missing required
        documents count as invalid.

    Example:
        >>> result = evaluate(snapshot, date(2025, 1, 10))
        >>> result.compliant, result.per_document["insurance"]
        (False, False)
    """
    today = calendarDay(today)
    perDocument, missing, expired = {}, [], []

    for documentType in REQUIRED_DOCUMENTS:
        document = snapshot.documents.get(documentType)
        kind = documentKind(documentType)
        if document is None:
            perDocument[kind] = False
            missing.append(kind)
        else:
            perDocument[kind] = document.isValid(today)
            if not perDocument[kind]:
                expired.append(kind)

    # Optional documents are reported but never affect compliance
    for documentType, document in snapshot.documents.items():
        if documentType not in REQUIRED_DOCUMENTS:
            perDocument[documentKind(documentType)] = document.isValid(today)

    return EligibilityResult(
        vehicle_id=snapshot.vehicle_id,
        compliant=not missing and not expired,
        per_document=perDocument,
        missing=missing,
        expired=expired,
    )
