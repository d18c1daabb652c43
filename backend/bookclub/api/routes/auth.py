from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from bookclub.api.deps import AuthContext, get_auth_ctx, get_oidc_client, require_csrf
from bookclub.core.cookies import clear_auth_cookies, set_auth_cookies
from bookclub.core.errors import AuthError, IdentityVerificationFailed, InvalidReturnUrl
from bookclub.core.time import isoformat_z
from bookclub.db.session import get_db
from bookclub.providers.oidc import OidcClient
from bookclub.services.login import complete_login, start_login
from bookclub.services.sessions import revoke, revoke_all_for_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Only these query parameters are handed to the provider adapter.
_CALLBACK_PARAMS = ("state", "code", "error", "error_description")


class MeResponse(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    created_at: datetime


class SessionResponse(BaseModel):
    user_id: int
    created_at: str
    expires_at: str


@router.get("/login")
def login(
    return_url: str,
    db: Session = Depends(get_db),
    client: OidcClient = Depends(get_oidc_client),
) -> RedirectResponse:
    try:
        authorize_url = start_login(db, client, return_url)
    except InvalidReturnUrl as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.public_message) from e
    except IdentityVerificationFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Identity provider unavailable") from e
    return RedirectResponse(url=authorize_url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
def callback(
    request: Request,
    db: Session = Depends(get_db),
    client: OidcClient = Depends(get_oidc_client),
) -> RedirectResponse:
    params = {k: request.query_params.get(k) for k in _CALLBACK_PARAMS}
    try:
        result = complete_login(db, client, params)
    except AuthError as e:
        logger.info("Login callback rejected: %s", type(e).__name__)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Login failed") from e

    resp = RedirectResponse(url=result.return_url, status_code=status.HTTP_302_FOUND)
    cred = result.credential
    set_auth_cookies(resp, token=cred.token, csrf_token=cred.csrf_token, expires_at=cred.expires_at)
    return resp


@router.get("/me", response_model=MeResponse)
def me(auth: AuthContext = Depends(get_auth_ctx)) -> MeResponse:
    u = auth.user
    return MeResponse(id=u.id, email=u.email, first_name=u.first_name, last_name=u.last_name, created_at=u.created_at)


@router.get("/session", response_model=SessionResponse)
def current_session(auth: AuthContext = Depends(get_auth_ctx)) -> SessionResponse:
    s = auth.session
    return SessionResponse(user_id=s.user_id, created_at=isoformat_z(s.created_at), expires_at=isoformat_z(s.expires_at))


@router.post("/logout")
def logout(
    response: Response,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_ctx),
    _: None = Depends(require_csrf),
) -> dict:
    revoke(db, auth.session.session_token_p1)
    clear_auth_cookies(response)
    return {"ok": True}


@router.post("/logout-all")
def logout_all(
    response: Response,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_ctx),
    _: None = Depends(require_csrf),
) -> dict:
    revoked = revoke_all_for_user(db, auth.user.id)
    clear_auth_cookies(response)
    return {"ok": True, "revoked": revoked}
