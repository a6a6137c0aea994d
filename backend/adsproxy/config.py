import os
import secrets
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from adsproxy.integrations.exceptions import IntegrationError

# Load variables from .env into environment
load_dotenv()

FACEBOOK_LOGIN_BASE = "https://www.facebook.com"
GRAPH_API_BASE = "https://graph.facebook.com"
DEFAULT_SCOPES = "ads_read,ads_management,business_management"


class Settings(BaseModel):
    app_id: Optional[str] = None
    app_secret: Optional[str] = None
    redirect_uri: str = "http://localhost:8000/auth/callback"
    frontend_url: str = "http://localhost:3000"
    advertiser_id: str = ""
    session_secret: str = ""
    graph_api_version: str = "v24.0"
    scopes: List[str] = DEFAULT_SCOPES.split(",")
    upstream_timeout_seconds: float = 15.0
    default_page_size: int = 25

    model_config = {"frozen": True}

    def require_client(self) -> None:
        """Raise if the OAuth client is not configured."""
        if not self.app_id:
            raise IntegrationError("META_APP_ID not set. Please add it to your .env file.")
        if not self.redirect_uri:
            raise IntegrationError("REDIRECT_URI not set. Please add it to your .env file.")

    def require_secret(self) -> None:
        self.require_client()
        if not self.app_secret:
            raise IntegrationError("META_APP_SECRET not set. Please add it to your .env file.")


def get_settings() -> Settings:
    scopes = os.getenv("META_SCOPES", DEFAULT_SCOPES)
    timeout = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "15"))
    if timeout <= 0:
        raise IntegrationError("UPSTREAM_TIMEOUT_SECONDS must be a positive number")
    return Settings(
        app_id=os.getenv("META_APP_ID"),
        app_secret=os.getenv("META_APP_SECRET"),
        redirect_uri=os.getenv("REDIRECT_URI", "http://localhost:8000/auth/callback"),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        advertiser_id=os.getenv("ADVERTISER_ID", ""),
        # A random key means sessions do not survive a restart, which matches
        # the in-memory credential store.
        session_secret=os.getenv("SESSION_SECRET") or secrets.token_urlsafe(32),
        graph_api_version=os.getenv("GRAPH_API_VERSION", "v24.0"),
        scopes=[s.strip() for s in scopes.split(",") if s.strip()],
        upstream_timeout_seconds=timeout,
        default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "25")),
    )
