import base64, logging, requests
from typing import Optional
from requests import Response

from app.src.constants import (
    OPENOBSERVE_ENABLED,
    OPENOBSERVE_HOST,
    OPENOBSERVE_ORG,
    OPENOBSERVE_PASSWORD,
    OPENOBSERVE_PORT,
    OPENOBSERVE_PROTOCOL,
    OPENOBSERVE_STREAM,
    OPENOBSERVE_TIMEOUT,
    OPENOBSERVE_USERNAME,
)

logger = logging.getLogger(__name__)

# Prepare Basic Auth credentials
credentials = base64.b64encode(
    bytes(OPENOBSERVE_USERNAME + ":" + OPENOBSERVE_PASSWORD, "utf-8")
).decode("utf-8")

# Default headers for all requests
headers = {"Content-type": "application/json", "Authorization": "Basic " + credentials}

# Construct OpenObserve endpoint URL
openobserve_host = f"{OPENOBSERVE_PROTOCOL}://{OPENOBSERVE_HOST}:{OPENOBSERVE_PORT}"
openobserve_url = f"{openobserve_host}/api/{OPENOBSERVE_ORG}/{OPENOBSERVE_STREAM}/_json"


def logEvent(eventData: dict) -> Optional[Response]:
    """
    Ship an audit event to the configured OpenObserve stream.

    The event is posted as a JSON array with a single document. By the time
    an event is shipped the dispatch transition is already committed, so a
    delivery failure is reported on the module logger instead of failing the
    request.

    Args:
        eventData (dict): JSON serializable event document.
            Example:
                {
                    "_method": "PATCH",
                    "_path": "/operator/station/dispatch/payment",
                    "_app_id": 1,
                    "_operator_id": 7,
                    "current_status": 5
                }

    Returns:
        requests.Response | None: The OpenObserve response, None when shipping
        is disabled or failed.
    """
    if not OPENOBSERVE_ENABLED:
        return None
    try:
        response = requests.post(
            openobserve_url,
            headers=headers,
            json=[eventData],
            timeout=OPENOBSERVE_TIMEOUT,
        )
        response.raise_for_status()
        return response
    except requests.RequestException:
        logger.exception(f"Failed to ship audit event to {openobserve_url}")
        return None
