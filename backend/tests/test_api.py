"""
HTTP-level tests for the Campaign Proxy API.

Upstream Graph API calls are patched at `requests.get`; the FastAPI app runs
in-process through TestClient.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from adsproxy.api import create_app

from conftest import fake_response, state_from

CAMPAIGNS = {
    "campaigns": {
        "data": [
            {"id": "1", "name": "Spring Sale", "objective": "OUTCOME_SALES", "status": "ACTIVE",
             "daily_budget": "1050", "created_time": "2024-03-01T09:30:00+0000"},
            {"id": "2", "name": "Brand, EU", "status": "PAUSED", "daily_budget": None,
             "created_time": "2024-02-01T09:30:00+0000"},
        ]
    }
}


@pytest.fixture
def api(settings):
    with TestClient(create_app(settings)) as c:
        yield c


def _login_state(api):
    return state_from(api.get("/auth/start", follow_redirects=False).headers["location"])


def _sign_in(api, http_get):
    state = _login_state(api)
    http_get.return_value = fake_response(200, {"access_token": "tok", "expires_in": 3600})
    resp = api.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert resp.status_code == 302
    http_get.reset_mock()
    return resp


def test_root_and_health(api):
    assert api.get("/").json()["message"] == "Campaign Proxy API"
    assert api.get("/health").json()["status"] == "healthy"


def test_auth_start_redirects_to_dialog(api):
    resp = api.get("/auth/start", follow_redirects=False)
    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert location.netloc == "www.facebook.com"
    assert parse_qs(location.query)["client_id"] == ["1234"]


def test_legacy_start_route(api):
    assert api.get("/auth/meta", follow_redirects=False).status_code == 302


def test_status_before_login(api):
    assert api.get("/auth/status").json() == {"authenticated": False, "expiresAt": None}


def test_callback_success_then_status(api, http_get):
    resp = _sign_in(api, http_get)
    assert resp.headers["location"] == "http://localhost:3000/?authSuccess=true"

    body = api.get("/auth/status").json()
    assert body["authenticated"] is True
    assert body["expiresAt"]


def test_callback_denied_redirects_with_reason(api, http_get):
    resp = api.get(
        "/auth/callback",
        params={"error": "access_denied", "error_reason": "user_denied"},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:3000/?authError=user_denied"
    http_get.assert_not_called()


def test_callback_exchange_failure(api, http_get):
    state = _login_state(api)
    http_get.return_value = fake_response(400, {"error": {"message": "Code was already redeemed."}})
    resp = api.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    location = urlparse(resp.headers["location"])
    assert "already redeemed" in parse_qs(location.query)["authError"][0]
    assert api.get("/auth/status").json()["authenticated"] is False


def test_logout_twice(api, http_get):
    _sign_in(api, http_get)
    for _ in range(2):
        resp = api.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {}
        assert api.get("/auth/status").json()["authenticated"] is False


def test_campaigns_requires_login(api, http_get):
    resp = api.get("/campaigns", params={"accountId": "42"})
    assert resp.status_code == 401
    assert resp.json()["kind"] == "Unauthenticated"
    http_get.assert_not_called()


def test_campaigns_requires_account_id(api, http_get):
    _sign_in(api, http_get)
    resp = api.get("/campaigns")
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidRequest"
    http_get.assert_not_called()


def test_campaigns_success(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(200, CAMPAIGNS)

    resp = api.get("/campaigns", params={"accountId": "42", "pageSize": 100})

    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"] == {"total": 2, "pageSize": 100}
    first = body["campaigns"][0]
    assert first["dailyBudgetMajorUnits"] == "10.50"
    assert first["status"] == "ACTIVE"
    assert first["createdAt"].startswith("2024-03-01T09:30:00")
    assert body["campaigns"][1]["dailyBudgetMajorUnits"] == "N/A"
    assert body["campaigns"][1]["objective"] == "N/A"


def test_empty_account(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(200, {"campaigns": {"data": []}})

    resp = api.get("/campaigns", params={"accountId": "42", "pageSize": 25})

    assert resp.status_code == 200
    assert resp.json() == {"campaigns": [], "pagination": {"total": 0, "pageSize": 25}}


def test_upstream_401_logs_the_session_out(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(401, {"error": {"message": "Session has expired", "code": 190}})

    resp = api.get("/campaigns", params={"accountId": "42"})

    assert resp.status_code == 401
    assert resp.json()["kind"] == "Unauthenticated"
    assert api.get("/auth/status").json()["authenticated"] is False


def test_rate_limit_response(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(429, {}, {"retry-after": "30"})

    resp = api.get("/campaigns", params={"accountId": "42"})

    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "30"
    assert resp.json()["retryAfterSeconds"] == 30


def test_legacy_campaigns_route(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(200, CAMPAIGNS)

    resp = api.get("/api/campaigns", params={"advertiser_id": "act_42", "page_size": 5})

    assert resp.status_code == 200
    assert resp.json()["pagination"]["pageSize"] == 5
    assert http_get.call_args[0][0].endswith("/act_42")


def test_export_csv(api, http_get):
    _sign_in(api, http_get)
    http_get.return_value = fake_response(200, CAMPAIGNS)

    resp = api.get("/campaigns/export", params={"accountId": "42", "sortBy": "name", "order": "ascending"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attachment" in resp.headers["content-disposition"]
    lines = resp.content.decode("utf-8-sig").split("\n")
    assert lines[0].startswith("Campaign ID,Campaign Name")
    assert lines[1].startswith('2,"Brand, EU"')
    assert lines[2].startswith("1,Spring Sale")


def test_export_rejects_bad_sort(api, http_get):
    _sign_in(api, http_get)
    assert api.get("/campaigns/export", params={"accountId": "42", "sortBy": "spend"}).status_code == 400


def test_sessions_are_isolated(settings, http_get):
    app = create_app(settings)
    with TestClient(app) as alice, TestClient(app) as bob:
        _sign_in(alice, http_get)
        assert alice.get("/auth/status").json()["authenticated"] is True
        assert bob.get("/auth/status").json()["authenticated"] is False


def test_callback_with_forged_state_is_rejected(api, http_get):
    _login_state(api)
    resp = api.get("/auth/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False)

    assert resp.headers["location"] == "http://localhost:3000/?authError=invalid_state"
    assert api.get("/auth/status").json()["authenticated"] is False
    http_get.assert_not_called()


@pytest.mark.parametrize("page_size", ["0", "-3", "abc"])
def test_bad_page_size_is_invalid_request(api, http_get, page_size):
    _sign_in(api, http_get)

    resp = api.get("/campaigns", params={"accountId": "42", "pageSize": page_size})

    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "InvalidRequest"
    assert body["error"]
    assert "pageSize" in body["message"]
    http_get.assert_not_called()


def test_legacy_route_falls_back_to_configured_advertiser(settings, http_get):
    app = create_app(settings.model_copy(update={"advertiser_id": "777"}))
    with TestClient(app) as api:
        _sign_in(api, http_get)
        http_get.return_value = fake_response(200, {"campaigns": {"data": []}})

        assert api.get("/api/campaigns").status_code == 200
        assert http_get.call_args[0][0].endswith("/act_777")

        http_get.reset_mock()
        resp = api.get("/campaigns")
        assert resp.status_code == 400
        assert resp.json()["kind"] == "InvalidRequest"
        http_get.assert_not_called()


def test_cookieless_requests_leave_no_server_state(settings):
    app = create_app(settings)
    with TestClient(app) as api:
        for _ in range(50):
            api.cookies.clear()
            assert api.get("/auth/status").json()["authenticated"] is False
        assert app.state.store._slots == {}
