from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional

from app.src import schemas
from app.src.exceptions import APIException


def makeExceptionResponses(exceptions: List[APIException | type]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation by fusing multiple APIException
    classes or instances.

    Args:
        exceptions (List[APIException | type]): Exception classes, or instances
            when the detail depends on constructor arguments.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        if isinstance(exception, type):
            example_key = exception.__name__
        else:
            example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"detail": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Example:
        >>> enumStr(PermitStatus)
        'APPROVED: 1, REJECTED: 2'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def isValidTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
            Example:
                {
                    DispatchStatus.PERMIT_ISSUED: [DispatchStatus.PAID],
                    DispatchStatus.PAID: [DispatchStatus.DEPARTURE_ORDERED],
                }
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.

    Returns:
        bool: True if transition is valid, False otherwise.

    Notes:
        - If `old_state` is not in the transitions mapping, this will return False.
    """
    if not transitions:
        return False
    if old_state not in transitions:
        return False
    return new_state in transitions[old_state]


def toDecimal(value: Any) -> Optional[Decimal]:
    """
    Convert a number or numeric string into a Decimal without float noise.

    Returns None for None and for values that are not finite numbers.

    Example:
        >>> toDecimal(0.1)
        Decimal('0.1')
        >>> toDecimal("abc") is None
        True
    """
    if value is None:
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def decimalPlaces(value: Decimal) -> int:
    """Number of digits after the decimal point, ignoring trailing zeros."""
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent)
