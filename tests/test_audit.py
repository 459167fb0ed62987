from types import SimpleNamespace

import requests

from app.src import loggers, openobserve
from app.src.enums import AppID
from app.src.schemas import RequestInfo


def refuse(reason):
    raise AssertionError(reason)


def test_event_carries_request_context(monkeypatch):
    shipped = []
    monkeypatch.setattr(openobserve, "logEvent", shipped.append)

    requestInfo = RequestInfo(
        method="PATCH", path="/operator/station/dispatch/exit", app_id=AppID.OPERATOR
    )
    loggers.logEvent(
        SimpleNamespace(operator_id=7), requestInfo, {"id": 3, "_method": "GET"}
    )

    assert shipped == [
        {
            "id": 3,
            "_method": "PATCH",
            "_path": "/operator/station/dispatch/exit",
            "_app_id": AppID.OPERATOR,
            "_operator_id": 7,
        }
    ]


def test_disabled_shipping(monkeypatch):
    monkeypatch.setattr(openobserve, "OPENOBSERVE_ENABLED", False)
    monkeypatch.setattr(
        requests, "post", lambda *args, **kwargs: refuse("posted")
    )
    assert openobserve.logEvent({"id": 1}) is None


def test_failed_shipping_does_not_raise(monkeypatch):
    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(openobserve, "OPENOBSERVE_ENABLED", True)
    monkeypatch.setattr(requests, "post", unreachable)
    assert openobserve.logEvent({"id": 1}) is None