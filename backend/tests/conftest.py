from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse
from unittest.mock import MagicMock, patch

import pytest

from adsproxy.auth_flow import AuthFlowController
from adsproxy.config import Settings
from adsproxy.integrations.meta_client import MetaGraphClient
from adsproxy.proxy import UpstreamProxy
from adsproxy.sessions import CredentialStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def fake_response(status_code=200, body=None, headers=None):
    """Stand-in for requests.Response with the attributes the client reads."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 400
    resp.headers = headers or {}
    if isinstance(body, (dict, list)):
        resp.json.return_value = body
        resp.text = str(body)
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
        resp.text = body or ""
    return resp


def state_from(url):
    return parse_qs(urlparse(url).query)["state"][0]


@pytest.fixture
def settings():
    return Settings(
        app_id="1234",
        app_secret="shh",
        redirect_uri="http://localhost:8000/auth/callback",
        frontend_url="http://localhost:3000",
        session_secret="test-secret",
        upstream_timeout_seconds=12,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return CredentialStore()


@pytest.fixture
def client(settings):
    return MetaGraphClient(settings)


@pytest.fixture
def auth(store, client, clock):
    return AuthFlowController(store, client, clock=clock)


@pytest.fixture
def proxy(auth, client):
    return UpstreamProxy(auth, client)


@pytest.fixture
def http_get():
    with patch("adsproxy.integrations.meta_client.requests.get") as mock_get:
        yield mock_get


@pytest.fixture
def signed_in(auth, store, http_get):
    """A session that completed the OAuth callback."""
    session_id = store.new_session()
    http_get.return_value = fake_response(200, {"access_token": "EAAB-token", "expires_in": 3600})
    state = state_from(auth.initiate(session_id))
    outcome = auth.complete_callback(session_id, "good-code", state=state)
    assert outcome.ok
    http_get.reset_mock()
    return session_id
