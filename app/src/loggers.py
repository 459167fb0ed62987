from app.src.db import OperatorToken
from app.src import openobserve
from app.src.schemas import RequestInfo


def logEvent(token: OperatorToken, requestInfo: RequestInfo, data: dict) -> None:
    """
    Log an audit event to OpenObserve with request and operator context.

    Args:
        token (OperatorToken): Token of the operator who performed the action.
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): JSON encoded state of the affected record.

    Notes:
        - Automatically attaches `_app_id`, `_method`, `_path` and `_operator_id`.
        - Request context keys take precedence over keys in `data`.
    """
    logDetails = dict(data)
    logDetails.update(
        {
            "_method": requestInfo.method,
            "_path": requestInfo.path,
            "_app_id": requestInfo.app_id,
            "_operator_id": token.operator_id,
        }
    )
    openobserve.logEvent(logDetails)
