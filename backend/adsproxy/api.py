import secrets
from datetime import date
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.middleware.sessions import SessionMiddleware
import logging

from adsproxy import presentation
from adsproxy.auth_flow import AuthFlowController
from adsproxy.config import Settings, get_settings
from adsproxy.integrations.errors import ErrorKind, ProxyError, status_for_kind
from adsproxy.integrations.exceptions import IntegrationError
from adsproxy.integrations.meta_client import MetaGraphClient
from adsproxy.proxy import UpstreamProxy
from adsproxy.sessions import CredentialStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SESSION_KEY = "sid"

router = APIRouter()


def get_session_id(request: Request) -> str:
    """Opaque session id from the signed cookie, created on first use."""
    session_id = request.session.get(SESSION_KEY)
    if not session_id:
        session_id = request.app.state.store.new_session()
        request.session[SESSION_KEY] = session_id
    return session_id


def get_auth(request: Request) -> AuthFlowController:
    return request.app.state.auth


def get_proxy(request: Request) -> UpstreamProxy:
    return request.app.state.proxy


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error_response(error: ProxyError) -> JSONResponse:
    headers = {}
    if error.kind == ErrorKind.RATE_LIMITED and error.retry_after_seconds is not None:
        headers["Retry-After"] = str(error.retry_after_seconds)
    return JSONResponse(status_code=status_for_kind(error.kind), content=error.to_body(), headers=headers)


@router.get("/")
def root():
    return {
        "message": "Campaign Proxy API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "auth_start": "/auth/start",
            "auth_status": "/auth/status",
            "campaigns": "/campaigns",
            "export": "/campaigns/export",
            "docs": "/docs",
        },
    }


@router.get("/health")
def health():
    return {"status": "healthy", "service": "Campaign Proxy"}


# ==========================================================
# Authentication (OAuth 2.0 server-side flow)
# ==========================================================

@router.get("/auth/start")
@router.get("/auth/meta", include_in_schema=False)
def auth_start(
    session_id: str = Depends(get_session_id),
    auth: AuthFlowController = Depends(get_auth),
):
    """Redirect the browser to the Meta consent dialog."""
    return RedirectResponse(auth.initiate(session_id), status_code=302)


@router.get("/auth/callback")
@router.get("/auth/meta/callback", include_in_schema=False)
def auth_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    error_reason: Optional[str] = None,
    state: Optional[str] = None,
    session_id: str = Depends(get_session_id),
    auth: AuthFlowController = Depends(get_auth),
    settings: Settings = Depends(get_app_settings),
):
    """
    Provider callback. Exchanges the code for a token and sends the browser
    back to the frontend with either `authSuccess=true` or `authError=<reason>`.
    """
    outcome = auth.complete_callback(
        session_id, code, error=error, error_reason=error_reason, state=state
    )
    if outcome.ok:
        return RedirectResponse(f"{settings.frontend_url}/?authSuccess=true", status_code=302)
    reason = quote(outcome.reason or "Token_exchange_failed", safe="")
    return RedirectResponse(f"{settings.frontend_url}/?authError={reason}", status_code=302)


@router.get("/auth/status")
def auth_status(
    session_id: str = Depends(get_session_id),
    auth: AuthFlowController = Depends(get_auth),
):
    return auth.status(session_id).model_dump(mode="json", by_alias=True)


@router.post("/auth/logout")
def auth_logout(
    session_id: str = Depends(get_session_id),
    auth: AuthFlowController = Depends(get_auth),
):
    auth.logout(session_id)
    return {}


# ==========================================================
# Campaigns
# ==========================================================

def _fetch(proxy: UpstreamProxy, settings: Settings, session_id: str, account_id: Optional[str], page_size: Optional[int]):
    size = page_size or settings.default_page_size
    logger.info(f"Fetching campaigns for account {account_id or '<none>'} (page size {size})")
    return proxy.fetch_campaigns(session_id, account_id, size)


@router.get("/campaigns")
def list_campaigns(
    account_id: Optional[str] = Query(None, alias="accountId"),
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1),
    session_id: str = Depends(get_session_id),
    proxy: UpstreamProxy = Depends(get_proxy),
    settings: Settings = Depends(get_app_settings),
):
    result = _fetch(proxy, settings, session_id, account_id, page_size)
    if isinstance(result, ProxyError):
        return _error_response(result)
    return result.model_dump(mode="json", by_alias=True)


@router.get("/api/campaigns", include_in_schema=False)
def list_campaigns_legacy(
    advertiser_id: Optional[str] = None,
    page_size: Optional[int] = Query(None, ge=1),
    session_id: str = Depends(get_session_id),
    proxy: UpstreamProxy = Depends(get_proxy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Legacy endpoint - use /campaigns for new integrations.
    Falls back to the configured ADVERTISER_ID when advertiser_id is omitted.
    """
    account_id = advertiser_id or settings.advertiser_id or None
    return list_campaigns(account_id, page_size, session_id, proxy, settings)


@router.get("/campaigns/export")
def export_campaigns(
    account_id: Optional[str] = Query(None, alias="accountId"),
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = "descending",
    session_id: str = Depends(get_session_id),
    proxy: UpstreamProxy = Depends(get_proxy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Download the (searched, filtered, sorted) campaign list as CSV.

    - **search**: substring matched against name, objective and status
    - **status**: exact campaign status, e.g. ACTIVE
    - **sortBy**: one of name, objective, status, daily_budget, created_at
    - **order**: ascending or descending
    """
    if sort_by not in presentation.SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"Unsupported sortBy: {sort_by}")
    if order not in ("ascending", "descending"):
        raise HTTPException(status_code=400, detail="order must be 'ascending' or 'descending'")

    result = _fetch(proxy, settings, session_id, account_id, None)
    if isinstance(result, ProxyError):
        return _error_response(result)

    records = presentation.search(result.campaigns, search)
    records = presentation.filter_by_status(records, status)
    records = presentation.sort_records(records, sort_by, descending=(order == "descending"))
    csv_text = presentation.to_csv(records)

    filename = f"campaigns-{date.today().isoformat()}.csv"
    return Response(
        content="\ufeff" + csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def integration_error_handler(request: Request, exc: IntegrationError):
    logger.error(f"Integration misconfigured: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Server misconfigured", "message": str(exc), "kind": ErrorKind.UNKNOWN.value},
    )


CAMPAIGN_PATHS = ("/campaigns", "/api/campaigns")


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Bad query parameters on campaign routes get the same error body as upstream failures."""
    if not request.url.path.startswith(CAMPAIGN_PATHS):
        return await request_validation_exception_handler(request, exc)
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ())[1:])}: {err.get('msg')}" for err in exc.errors()
    )
    error = ProxyError(kind=ErrorKind.INVALID_REQUEST, message=f"Invalid query parameters: {problems}")
    return _error_response(error)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Campaign Proxy API",
        description="OAuth-authenticated proxy for Meta ad campaign listings",
        version="1.0.0",
    )

    store = CredentialStore()
    client = MetaGraphClient(settings)
    auth = AuthFlowController(store, client)
    app.state.settings = settings
    app.state.store = store
    app.state.auth = auth
    app.state.proxy = UpstreamProxy(auth, client)

    app.include_router(router)
    app.add_exception_handler(IntegrationError, integration_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it wraps everything that reads request.session
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret or secrets.token_urlsafe(32),
        same_site="lax",
    )

    logger.info(f"Redirect URI set to: {settings.redirect_uri}")
    return app


app = create_app()
