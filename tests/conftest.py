import json
from typing import Any, List, Optional

import pytest
import requests

from arcrelay.config import ArcRelayConfig


class FakeResponse:
    """Subset of :class:`requests.Response` used by arcrelay."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeHttp:
    """Stands in for ``requests.Session``; replays queued responses or raises them."""

    def __init__(self, *responses):
        self.responses: List[Any] = list(responses)
        self.calls: List[dict] = []

    def _next(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def close(self):
        pass


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def fake_http():
    return FakeHttp


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")


@pytest.fixture
def settings() -> dict:
    return {
        "TenantId": "tenant-1",
        "ClientId": "client-1",
        "ClientSecret": "s3cret",
        "SubscriptionId": "sub-1",
        "ResourceGroup": "rg-1",
        "ArcServerName": "server-1",
        "ArcServerLocation": "eastus",
        "ArcServerClientId": "5fa47195-e890-485e-a90c-3d417cfcb1e2",
        "ArcServerprincipalId": "c579b537-d28b-491a-98b0-fccd193c2d05",
        "ArceeApiUrl": "https://localhost:5001",
    }


@pytest.fixture
def config(settings) -> ArcRelayConfig:
    return ArcRelayConfig.model_validate(settings)
