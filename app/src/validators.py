"""
Validation guards for the Station Dispatch API.

This module centralizes guard logic such as:
- Operator token validation
- State transition enforcement
- Required field and numeric range checks

All functions raise appropriate exceptions from `app.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.orm.session import Session
from sqlalchemy import Column
from typing import Any, Optional

from app.src.db import OperatorToken
from app.src import exceptions
from app.src.constants import DECIMAL_PLACES
from app.src.functions import isValidTransition, toDecimal, decimalPlaces


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------
def operatorToken(access_token: str, session: Session) -> OperatorToken:
    """
    Resolve a bearer token to the acting operator's token row.

    Args:
        access_token (str): The bearer token string provided by the client.
        session (Session): Active SQLAlchemy session for DB lookup.

    Returns:
        OperatorToken: The valid token object from the database.

    Raises:
        exceptions.InvalidToken: If the token is not found or has expired.
    """
    currentTime = datetime.now(timezone.utc)
    token = (
        session.query(OperatorToken)
        .filter(
            OperatorToken.access_token == access_token,
            OperatorToken.expires_at > currentTime,
        )
        .first()
    )
    if token is None:
        raise exceptions.InvalidToken()
    return token


# ---------------------------------------------------------------------------
# State validation
# ---------------------------------------------------------------------------
def stateTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any, state: Column
) -> bool:
    """
    Validate whether a state transition is allowed.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.
        state (Column): Column holding the state (used to format error messages).

    Returns:
        bool: True if the transition is valid.

    Raises:
        exceptions.InvalidStateTransition: If the transition is not permitted.
    """
    if not isValidTransition(transitions, old_state, new_state):
        raise exceptions.InvalidStateTransition(state)
    return True


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------
def required(value: Any, column: Column) -> Any:
    """Reject None and blank strings."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise exceptions.MissingParameter(column)
    return value


def nonNegativeInteger(value: Optional[int], column: Column) -> Optional[int]:
    """Accept None or an integer >= 0."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise exceptions.InvalidValue(column)
    return value


def positiveInteger(value: Optional[int], column: Column) -> int:
    """Require an integer > 0."""
    required(value, column)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise exceptions.InvalidValue(column)
    return value


def amount(
    value: Any, column: Column, allowZero: bool = False, places: int = DECIMAL_PLACES
) -> Decimal:
    """
    Parse a money or quantity value.

    Args:
        value (Any): Number, numeric string or Decimal.
        column (Column): Column used to format error messages.
        allowZero (bool): Accept 0 (unit prices) or require > 0 (payments, quantities).
        places (int): Maximum number of decimal places.

    Returns:
        Decimal: The parsed value.

    Raises:
        exceptions.MissingParameter: If the value is missing.
        exceptions.InvalidValue: If the value is not a number, out of range
            or carries too many decimal places.
    """
    required(value, column)
    if isinstance(value, bool):
        raise exceptions.InvalidValue(column)
    number = toDecimal(value)
    if number is None:
        raise exceptions.InvalidValue(column)
    if number < 0 or (number == 0 and not allowZero):
        raise exceptions.InvalidValue(column)
    if decimalPlaces(number) > places:
        raise exceptions.InvalidValue(column)
    return number


def timestamp(value: Optional[datetime], column: Column) -> datetime:
    """Require a datetime. Naive values are taken as UTC."""
    required(value, column)
    if not isinstance(value, datetime):
        raise exceptions.InvalidValue(column)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
