"""
api/routes/v1/exchange.py -- Server-to-server endpoints for client backends.

Routes:
  POST /api/v1/token           -- redeem an authorization code (x-api-key)
  POST /api/v1/session/verify  -- re-validate a tokenVersion (x-api-key)

Security:
  [E1] The API key is resolved before anything else; a missing key is 401,
       an unknown key is 403 and audited.
  [E2] Both routes count against the database rate limiter (shared by all
       workers), keyed by client IP: 30/min for exchange, 100/min for verify.
  [E3] Responses carry Cache-Control: no-store; they contain identity data.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import SessionVerifyRequest, TokenExchangeRequest
from auth.dependencies import request_info, require_project_api_key
from core.errors import InvalidRequest
from oauth2.exchange import exchange_code, verify_session
from projects.models import Project
from security.rate_limit import enforce_rate_limit

router = APIRouter()


def _no_store(content: dict) -> JSONResponse:
    resp = JSONResponse(content=content)
    resp.headers["Cache-Control"] = "no-store"  # [E3]
    return resp


@router.post("/token")
def token(
    request: Request,
    body: TokenExchangeRequest,
    project: Project = Depends(require_project_api_key),
) -> JSONResponse:
    """Exchange a one-time authorization code for the user's identity."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(state.rate_limiter, state.audit, info, "token_exchange", "api/v1/token")  # [E2]
    payload = exchange_code(
        state.project_store,
        state.user_store,
        state.auth_codes,
        state.audit,
        project,
        body.code,
        body.redirect_uri,
        info,
    )
    return _no_store(payload)


@router.post("/session/verify")
def session_verify(
    request: Request,
    body: SessionVerifyRequest,
    project: Project = Depends(require_project_api_key),
) -> JSONResponse:
    """Answer {valid: true} while the caller's tokenVersion is current."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(state.rate_limiter, state.audit, info, "session_verify", "api/v1/session/verify")  # [E2]
    if not body.user_id:
        raise InvalidRequest("Missing userId")
    result = verify_session(
        state.project_store,
        state.user_store,
        state.audit,
        project,
        body.user_id,
        body.token_version or 1,
        info,
    )
    return _no_store(result)
