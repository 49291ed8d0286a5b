"""
web/routes.py -- Browser-facing routes: hub login and the authorize redirect.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores, audit logger and rate limiter) but return HTML or
redirects instead of JSON.

Route registration order matters. GET /login/oauth/{provider} and
GET /login/callback/{provider} are registered before GET /login.

Routes:
  GET  /authorize                   -- issue a code and 302 back to the client app
  GET  /login/oauth/{provider}      -- redirect to the identity provider
  GET  /login/callback/{provider}   -- provider callback; sets the hub cookie
  GET  /login                       -- login page
  POST /logout                      -- clear the hub cookie, redirect /login
  GET  /                            -- the signed-in user's projects

Security:
  [W1] ?next= is only followed when it is a server-local path.
  [W2] ?error= is mapped through a whitelist; the raw value never reaches a
       template.
  [W3] Authorization failures render authorize_error.html with the matching
       status code. The browser is never sent to an unvalidated redirect_uri.
  [W4] The callback counts against the database "auth" limit (10 per 15
       minutes per IP) before any identity work is done.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import request_info, try_get_current_user
from auth.login import complete_login
from auth.oauth import get_enabled_providers, get_verified_identity, parse_provider
from auth.tokens import clear_auth_cookie, create_access_token, set_auth_cookie
from core.errors import AccessDenied, HubError, RateLimited
from oauth2.authorize import issue_authorization_code
from security.models import AuditAction
from security.rate_limit import enforce_rate_limit

logger = logging.getLogger("logincenter.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can show the
# signed-in user without every handler passing it in.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

_NEXT_SESSION_KEY = "login_next"

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login [W2].
_ERROR_MESSAGES: dict[str, str] = {
    "oauth_failed": "Sign-in with the identity provider failed. Please try again.",
    "domain_not_allowed": "Accounts from this email domain are not allowed to sign in.",
    "not_registered": "Your account has not been registered. Contact an administrator.",
    "identity_conflict": "This email is already linked to a different account.",
    "rate_limited": "Too many sign-in attempts. Please wait a few minutes and try again.",
}

# Titles for the authorize error page, by error code [W3].
_AUTHORIZE_ERRORS: dict[str, str] = {
    "invalid_request": "Invalid request",
    "unknown_client": "Unknown application",
    "redirect_mismatch": "Redirect URI mismatch",
    "access_denied": "Access denied",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [W1]

    Rejects absolute URLs and protocol-relative URLs ("//attacker.com"),
    both of which would send the browser off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return "/"


def _login_redirect(request: Request) -> RedirectResponse:
    """Send an anonymous browser to /login, preserving the full current URL as next."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return RedirectResponse(f"/login?next={quote(target, safe='')}", status_code=302)


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


@router.get("/authorize", response_class=HTMLResponse)
def authorize(
    request: Request,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    state: Optional[str] = None,
):
    """Issue an authorization code for a signed-in user and redirect back."""
    user = try_get_current_user(request)
    if user is None:
        return _login_redirect(request)

    try:
        grant = issue_authorization_code(
            request.app.state.project_store,
            request.app.state.auth_codes,
            request.app.state.audit,
            user,
            client_id,
            redirect_uri,
            request_info(request),
            state=state,
        )
    except HubError as exc:  # [W3]
        return templates.TemplateResponse(
            request,
            "authorize_error.html",
            {
                "title": _AUTHORIZE_ERRORS.get(exc.code, "Sign-in failed"),
                "message": exc.message,
                "client_id": client_id,
            },
            status_code=exc.status_code,
        )

    resp = RedirectResponse(grant.redirect_to, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Hub login
# ---------------------------------------------------------------------------


@router.get("/login/oauth/{provider}", response_class=HTMLResponse)
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the identity provider's authorization page.

    The provider name is checked against the enabled list first, so a spoofed
    name cannot select an arbitrary client.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    request.session[_NEXT_SESSION_KEY] = _safe_next(request.query_params.get("next"))  # [W1]
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/login/callback/{provider}", response_class=HTMLResponse, name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and issue the hub session cookie.

    Flow:
      1. Count the attempt against the "auth" rate limit [W4].
      2. Exchange the provider code for a token (authlib checks state).
      3. Extract a verified identity; unverified email is rejected.
      4. complete_login() applies the domain allow-list and registration policy.
      5. Issue the JWT (with the current token_version), set the cookie,
         redirect to the saved next path.
    """
    idp = parse_provider(provider)
    enabled = {p["name"] for p in get_enabled_providers()}
    if idp is None or provider not in enabled:
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    state = request.app.state
    info = request_info(request)
    try:
        enforce_rate_limit(state.rate_limiter, state.audit, info, "auth", "login/callback")
    except RateLimited:
        return RedirectResponse("/login?error=rate_limited", status_code=302)

    client = state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Provider token exchange failed for %r", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    try:
        identity = get_verified_identity(idp, token)
    except ValueError:
        logger.warning("Login rejected: unverified or missing email from %r", provider)
        state.audit.log_failure(
            AuditAction.LOGIN,
            info=info,
            metadata={"provider": provider, "reason": "email_not_verified"},
        )
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    try:
        user = complete_login(state.user_store, state.audit, identity, info)
    except AccessDenied as exc:
        error = exc.reason if exc.reason in _ERROR_MESSAGES else "oauth_failed"
        return RedirectResponse(f"/login?error={error}", status_code=302)

    token_str = create_access_token(user.id, user.email, user.role, user.token_version)
    next_url = _safe_next(request.session.pop(_NEXT_SESSION_KEY, None))  # [W1]
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token_str)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request):
    """Render the login page with one button per identity provider."""
    next_url = _safe_next(request.query_params.get("next"))
    if try_get_current_user(request) is not None:
        return RedirectResponse(next_url, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))  # [W2]
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": error_msg,
            "providers": get_enabled_providers(),
            "next_url": next_url,
        },
    )


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the hub cookie and redirect to the login page."""
    user = try_get_current_user(request)
    if user is not None:
        request.app.state.audit.log_success(
            AuditAction.LOGOUT,
            user_id=user.id,
            info=request_info(request),
            metadata={"endpoint": "web"},
        )
    resp = RedirectResponse("/login", status_code=302)
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    """List the projects the signed-in user owns or belongs to."""
    user = try_get_current_user(request)
    if user is None:
        return _login_redirect(request)
    store = request.app.state.project_store
    owned = store.list_owned(user.id)
    owned_ids = {p.id for p in owned}
    member_of = [p for p in store.list_member_of(user.id) if p.id not in owned_ids]
    return templates.TemplateResponse(
        request,
        "home.html",
        {"user": user, "owned": owned, "member_of": member_of},
    )
