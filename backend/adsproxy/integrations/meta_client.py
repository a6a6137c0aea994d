"""
Meta Graph API client for the OAuth dialog, token exchange and campaign reads.

Each call is a single blocking round trip with a bounded timeout. Non-2xx
responses and malformed payloads raise ``UpstreamAPIError``; transport
failures surface as ``requests`` exceptions and are turned into
``UpstreamFailure`` objects by ``failure_from_exception``.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from adsproxy.config import FACEBOOK_LOGIN_BASE, GRAPH_API_BASE, Settings
from adsproxy.integrations.errors import UpstreamFailure
from adsproxy.integrations.exceptions import UpstreamAPIError

logger = logging.getLogger(__name__)

ACCOUNT_PREFIX = "act_"
CAMPAIGN_FIELDS = ["id", "name", "objective", "status", "daily_budget", "created_time"]


def normalize_account_id(account_id: str) -> str:
    """Prefix the ad-account marker unless it is already there."""
    if account_id.startswith(ACCOUNT_PREFIX):
        return account_id
    return f"{ACCOUNT_PREFIX}{account_id}"


def failure_from_exception(exc: Exception) -> UpstreamFailure:
    if isinstance(exc, UpstreamAPIError):
        return UpstreamFailure.from_response(exc.status_code, exc.headers, exc.body)
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return UpstreamFailure.network(exc.__class__.__name__)
    return UpstreamFailure.local(str(exc) or exc.__class__.__name__)


def _decode(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class MetaGraphClient:
    """Thin wrapper over the Graph API endpoints this service needs."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def timeout(self) -> float:
        return self.settings.upstream_timeout_seconds

    def authorization_url(self, state: str) -> str:
        self.settings.require_client()
        query = urlencode({
            "state": state,
            "client_id": self.settings.app_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": ",".join(self.settings.scopes),
            "response_type": "code",
        })
        return f"{FACEBOOK_LOGIN_BASE}/{self.settings.graph_api_version}/dialog/oauth?{query}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for an access token payload."""
        self.settings.require_secret()
        url = f"{GRAPH_API_BASE}/{self.settings.graph_api_version}/oauth/access_token"
        resp = requests.get(
            url,
            params={
                "client_id": self.settings.app_id,
                "redirect_uri": self.settings.redirect_uri,
                "client_secret": self.settings.app_secret,
                "code": code,
            },
            timeout=self.timeout,
        )
        payload = self._checked_payload(resp)
        if not payload.get("access_token"):
            raise UpstreamAPIError(
                "Token exchange response has no access_token",
                status_code=resp.status_code,
                headers=resp.headers,
                body=payload,
            )
        return payload

    def get_account_campaigns(self, access_token: str, account_id: str) -> List[Dict[str, Any]]:
        """Read the campaign list of one ad account.

        Returns the raw campaign items; an account without campaigns yields
        an empty list.
        """
        act_id = normalize_account_id(account_id)
        url = f"{GRAPH_API_BASE}/{self.settings.graph_api_version}/{act_id}"
        resp = requests.get(
            url,
            params={"fields": "campaigns{%s}" % ",".join(CAMPAIGN_FIELDS)},
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )
        payload = self._checked_payload(resp)

        campaigns = payload.get("campaigns") or {}
        if not isinstance(campaigns, dict):
            raise UpstreamAPIError("Unexpected campaigns container", resp.status_code, resp.headers, payload)
        items = campaigns.get("data") or []
        if not isinstance(items, list):
            raise UpstreamAPIError("Unexpected campaigns data", resp.status_code, resp.headers, payload)
        logger.info(f"Fetched {len(items)} campaigns for {act_id}")
        return items

    def _checked_payload(self, resp: requests.Response) -> Dict[str, Any]:
        body = _decode(resp)
        if not resp.ok:
            raise UpstreamAPIError(
                f"Graph API returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                headers=resp.headers,
                body=body,
            )
        if not isinstance(body, dict):
            raise UpstreamAPIError(
                "Graph API returned a non-object payload",
                status_code=resp.status_code,
                headers=resp.headers,
                body=body,
            )
        return body
