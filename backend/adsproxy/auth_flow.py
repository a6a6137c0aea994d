"""OAuth 2.0 authorization-code flow against Meta, one credential per session.

The flow moves a session from UNAUTHENTICATED to AUTHENTICATED:

1. ``initiate`` builds the consent-dialog URL the browser is redirected to.
2. ``complete_callback`` receives the provider's answer and, when it carries
   a code and the ``state`` issued by ``initiate``, exchanges the code for an
   access token stored in the session.
3. ``status`` is the single place that decides whether a session is
   authenticated; everything else asks it.

There is no refresh flow. An expired credential means the user goes through
the consent dialog again.
"""

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import requests
from pydantic import BaseModel

from adsproxy.integrations.errors import ProxyError, classify
from adsproxy.integrations.exceptions import UpstreamAPIError
from adsproxy.integrations.meta_client import MetaGraphClient, failure_from_exception
from adsproxy.models.entities import AuthStatus, Credential
from adsproxy.sessions import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 7200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    EXCHANGE_FAILED = "exchange_failed"


class CallbackOutcome(BaseModel):
    kind: OutcomeKind
    reason: Optional[str] = None
    error: Optional[ProxyError] = None
    expires_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


class AuthFlowController:
    def __init__(
        self,
        store: CredentialStore,
        client: MetaGraphClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.clock = clock

    def initiate(self, session_id: str) -> str:
        """Consent-dialog URL carrying a fresh one-time ``state`` for this session."""
        state = secrets.token_urlsafe(24)
        self.store.remember_state(session_id, state)
        url = self.client.authorization_url(state)
        logger.info("Initiating OAuth login...")
        return url

    def complete_callback(
        self,
        session_id: str,
        code: Optional[str],
        error: Optional[str] = None,
        error_reason: Optional[str] = None,
        state: Optional[str] = None,
    ) -> CallbackOutcome:
        expected_state = self.store.pop_state(session_id)

        if error:
            reason = error_reason or error
            logger.warning(f"Meta auth denied: {reason}")
            return CallbackOutcome(kind=OutcomeKind.DENIED, reason=reason)

        if not code:
            logger.warning("OAuth callback arrived without a code")
            return CallbackOutcome(
                kind=OutcomeKind.EXCHANGE_FAILED,
                reason="missing_code",
            )

        if not state or expected_state is None or not secrets.compare_digest(state.encode(), expected_state.encode()):
            logger.warning("OAuth callback state does not match this session")
            return CallbackOutcome(
                kind=OutcomeKind.EXCHANGE_FAILED,
                reason="invalid_state",
            )

        try:
            payload = self.client.exchange_code(code)
        except (UpstreamAPIError, requests.RequestException) as e:
            proxy_error = classify(failure_from_exception(e))
            logger.error(f"Token exchange failed: {proxy_error.kind.value} {proxy_error.provider_detail or proxy_error.message}")
            return CallbackOutcome(
                kind=OutcomeKind.EXCHANGE_FAILED,
                reason=_failure_reason(proxy_error),
                error=proxy_error,
            )

        obtained_at = self.clock()
        expires_in = _expires_in(payload.get("expires_in"))
        credential = Credential(
            access_token=payload["access_token"],
            obtained_at=obtained_at,
            expires_at=obtained_at + timedelta(seconds=expires_in),
        )
        self.store.put(session_id, credential)
        logger.info("Access token acquired and stored on the server.")
        return CallbackOutcome(kind=OutcomeKind.SUCCESS, expires_at=credential.expires_at)

    def _valid_credential(self, session_id: Optional[str]) -> Optional[Credential]:
        # One read of the slot, so a racing logout cannot pull it away mid-check
        credential = self.store.get(session_id)
        if credential is None or not credential.is_valid(self.clock()):
            return None
        return credential

    def status(self, session_id: Optional[str]) -> AuthStatus:
        credential = self._valid_credential(session_id)
        if credential is None:
            return AuthStatus(authenticated=False)
        return AuthStatus(authenticated=True, expires_at=credential.expires_at)

    def access_token(self, session_id: Optional[str]) -> Optional[str]:
        """Token of an authenticated session, or None."""
        credential = self._valid_credential(session_id)
        return credential.access_token if credential is not None else None

    def logout(self, session_id: Optional[str]) -> None:
        self.store.clear(session_id)


def _expires_in(raw) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN_SECONDS
    # A non-positive lifetime would break expires_at > obtained_at
    return value if value > 0 else DEFAULT_EXPIRES_IN_SECONDS


def _failure_reason(proxy_error: ProxyError) -> str:
    detail = proxy_error.provider_detail
    if detail is None:
        return proxy_error.message
    if isinstance(detail, str):
        return detail
    return json.dumps(detail, default=str)
