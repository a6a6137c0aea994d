"""In-memory credential store keyed by session id.

Each session owns at most one credential slot. There is no expiry sweep and
no locking: readers check expiry lazily, and concurrent writers on the same
session simply overwrite each other. A slot only exists while a credential
(or a pending OAuth ``state``) is held for the session.
"""

import logging
import secrets
from typing import Dict, Optional

from adsproxy.models.entities import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self):
        self._slots: Dict[str, Credential] = {}
        self._pending_states: Dict[str, str] = {}

    def new_session(self) -> str:
        """Mint a session id; nothing is stored until a credential is written."""
        return secrets.token_urlsafe(24)

    def get(self, session_id: Optional[str]) -> Optional[Credential]:
        if not session_id:
            return None
        return self._slots.get(session_id)

    def put(self, session_id: str, credential: Credential) -> None:
        self._slots[session_id] = credential

    def clear(self, session_id: Optional[str]) -> None:
        """Drop the session's credential; a no-op if there is none."""
        if session_id and self._slots.pop(session_id, None) is not None:
            logger.info("Credential cleared for session")

    def remember_state(self, session_id: str, state: str) -> None:
        self._pending_states[session_id] = state

    def pop_state(self, session_id: Optional[str]) -> Optional[str]:
        """Consume the pending OAuth state; it can be checked only once."""
        if not session_id:
            return None
        return self._pending_states.pop(session_id, None)
