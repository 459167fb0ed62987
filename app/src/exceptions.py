"""
Centralized exception handling for the Station Dispatch API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- The error kinds of the dispatch core (validation, invalid transition,
  not found, conflict, invalid state) and their specific subclasses.
- Utility functions for formatting DB errors, logging, and routing exceptions.

Usage:
    - Raise specific exceptions in the dispatch core or in route handlers.
    - Use `handle()` to normalize raw exceptions (DB, Redis, Pydantic) into API-friendly responses.
"""

from traceback import format_exception
from logging import getLogger
from fastapi import status, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from psycopg2.errorcodes import UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError
from sqlalchemy import Column


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def formatIntegrityError(e: IntegrityError) -> str:
    """
    Format a database integrity error into a user-friendly message.
    """
    errorMessage: str = e.orig.diag.message_detail
    errorMessage = errorMessage.translate({ord(i): None for i in '\\"\\.\\(\\)'})
    errorMessage = errorMessage.replace("Key ", "For ")
    errorMessage = errorMessage.replace("=", " value ")
    return errorMessage


def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = str(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


def _columnName(column) -> str:
    if isinstance(column, str):
        return column
    return getattr(column, "key", None) or column.name


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = None
    headers = None

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from DB, Pydantic, Redis, etc. into
    corresponding APIException subclasses.
    """
    if isinstance(e, IntegrityError) and hasattr(e.orig, "diag"):
        if e.orig.diag.sqlstate == UNIQUE_VIOLATION:
            raise UniqueViolation(formatIntegrityError(e))
        if e.orig.diag.sqlstate == FOREIGN_KEY_VIOLATION:
            raise ForeignKeyViolation(formatIntegrityError(e))
    if isinstance(e, StaleDataError):
        raise ConcurrentUpdate()
    if isinstance(e, PydanticValidationError):
        raise PydanticError(detail=e.errors())
    if isinstance(e, APIException):
        raise e
    if isinstance(e, RedisError):
        raise RedisDBError(detail=str(e))

    logException(e)
    raise e


# ---------------------------------------------------------------------------
# Error kinds
# ---------------------------------------------------------------------------
class ValidationError(APIException):
    """A required field is missing or malformed for the requested operation."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Invalid input provided"
    headers = {"X-Error": "ValidationError"}


class InvalidTransitionError(APIException):
    """The operation is not permitted from the current workflow state."""

    status_code = status.HTTP_409_CONFLICT
    detail = "The operation is not allowed in the current state"
    headers = {"X-Error": "InvalidTransitionError"}


class NotFoundError(APIException):
    """The addressed record or charge does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    detail = "The requested resource does not exist"
    headers = {"X-Error": "NotFoundError"}


class ConflictError(APIException):
    """A concurrent write was detected by the locking/versioning mechanism."""

    status_code = status.HTTP_409_CONFLICT
    detail = "The resource was modified concurrently"
    headers = {"X-Error": "ConflictError"}


class InvalidStateError(APIException):
    """The owning resource is in a state that forbids the change."""

    status_code = status.HTTP_409_CONFLICT
    detail = "The resource is in a state that forbids this change"
    headers = {"X-Error": "InvalidStateError"}


# ---------------------------------------------------------------------------
# Exception Classes
# ---------------------------------------------------------------------------
class PydanticError(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    headers = {"X-Error": "PydanticError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class UniqueViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "UniqueViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class ForeignKeyViolation(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    headers = {"X-Error": "ForeignKeyViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class MissingParameter(ValidationError):
    headers = {"X-Error": "MissingParameter"}

    def __init__(self, column_name: Column | str):
        detail = f"The {_columnName(column_name)} is missing"
        super().__init__(detail=detail)


class InvalidValue(ValidationError):
    headers = {"X-Error": "InvalidValue"}

    def __init__(self, column_name: Column | str):
        detail = f"Invalid {_columnName(column_name)} is provided"
        super().__init__(detail=detail)


class UnknownValue(ValidationError):
    headers = {"X-Error": "UnknownValue"}

    def __init__(self, column_name: Column | str):
        detail = f"Unknown {_columnName(column_name)} is provided"
        super().__init__(detail=detail)


class InvalidStateTransition(InvalidTransitionError):
    headers = {"X-Error": "InvalidStateTransition"}

    def __init__(self, column_name: Column | str):
        detail = f"The {_columnName(column_name)} cannot be set to the provided value"
        super().__init__(detail=detail)


class ActiveDispatchExists(InvalidTransitionError):
    detail = "The vehicle already has an open dispatch record in the station"
    headers = {"X-Error": "ActiveDispatchExists"}


class InvalidIdentifier(NotFoundError):
    detail = "Invalid ID provided"
    headers = {"X-Error": "InvalidIdentifier"}


class ConcurrentUpdate(ConflictError):
    detail = "The record was modified by another request, reload and retry"
    headers = {"X-Error": "ConcurrentUpdate"}


class LockAcquireTimeout(ConflictError):
    detail = "Lock acquisition timed out"
    headers = {"X-Error": "LockAcquireTimeout"}


class RecordClosed(InvalidTransitionError):
    detail = "The dispatch record is closed"
    headers = {"X-Error": "RecordClosed"}


class ChargesFrozen(InvalidStateError):
    detail = "Service charges cannot be changed after payment"
    headers = {"X-Error": "ChargesFrozen"}


class InvalidToken(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid token"
    headers = {"X-Error": "InvalidToken"}


class RedisDBError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "RedisAPIError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)
