import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

import requests
from pydantic import ValidationError

from adsproxy.auth_flow import AuthFlowController
from adsproxy.integrations.errors import ErrorKind, ProxyError, UpstreamFailure, classify
from adsproxy.integrations.exceptions import UpstreamAPIError
from adsproxy.integrations.meta_client import MetaGraphClient, failure_from_exception
from adsproxy.models.entities import CampaignPage, CampaignRecord, CampaignStatus, Pagination

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


def budget_to_major_units(raw: Any) -> str:
    """Convert a minor-unit budget ("1050") to major units ("10.50")."""
    if raw is None or raw == "":
        return NOT_AVAILABLE
    try:
        minor = Decimal(str(raw))
        if not minor.is_finite():
            return NOT_AVAILABLE
        return str((minor / 100).quantize(Decimal("0.01")))
    except (InvalidOperation, ValueError):
        return NOT_AVAILABLE


def parse_created_time(raw: Any, now: datetime) -> datetime:
    if not raw:
        return now
    text = str(raw)
    # Graph API timestamps look like 2024-05-01T10:20:30+0000
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable created_time {raw!r}; using current time")
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    return parsed


def normalize_campaign(item: Dict[str, Any], now: datetime) -> CampaignRecord:
    status = item.get("status")
    try:
        status = CampaignStatus(status) if status else CampaignStatus.UNKNOWN
    except ValueError:
        status = CampaignStatus.UNKNOWN
    return CampaignRecord(
        id=str(item.get("id", "")),
        name=str(item.get("name") or ""),
        objective=str(item.get("objective") or NOT_AVAILABLE),
        status=status,
        daily_budget_major_units=budget_to_major_units(item.get("daily_budget")),
        created_at=parse_created_time(item.get("created_time"), now),
    )


class UpstreamProxy:
    """Forwards the campaign listing query for an authenticated session."""

    def __init__(self, auth: AuthFlowController, client: MetaGraphClient):
        self.auth = auth
        self.client = client

    def fetch_campaigns(
        self,
        session_id: Optional[str],
        account_id: Optional[str],
        page_size: int,
    ) -> Union[CampaignPage, ProxyError]:
        token = self.auth.access_token(session_id)
        if token is None:
            return ProxyError(
                kind=ErrorKind.UNAUTHENTICATED,
                message="Not Authenticated. Please complete the OAuth flow first.",
            )

        account_id = (account_id or "").strip()
        if not account_id:
            return ProxyError(kind=ErrorKind.INVALID_REQUEST, message="accountId is required.")

        try:
            items = self.client.get_account_campaigns(token, account_id)
        except (UpstreamAPIError, requests.RequestException) as e:
            error = classify(failure_from_exception(e))
            logger.warning(f"Campaign fetch failed for {account_id}: {error.kind.value} - {error.message}")
            if error.kind == ErrorKind.UNAUTHENTICATED:
                # Upstream no longer accepts the token; force a fresh login
                self.auth.logout(session_id)
            return error

        now = self.auth.clock()
        try:
            campaigns = [normalize_campaign(item, now) for item in items if isinstance(item, dict)]
        except ValidationError as e:
            logger.warning(f"Malformed campaign item for {account_id}: {e.error_count()} validation errors")
            return classify(UpstreamFailure.from_response(200, {}, {"campaigns": {"data": items}}))
        return CampaignPage(
            campaigns=campaigns,
            pagination=Pagination(total=len(campaigns), page_size=page_size),
        )
