"""
api/routes/v1/auth.py -- Account activation, password reset and session endpoints.

Routes:
  POST /api/v1/auth/signup                 -- create inactive account, mail activation code
  POST /api/v1/auth/activate/{token}       -- activation secret + passcode -> session
  POST /api/v1/auth/activation/resend      -- another activation secret for an inactive account
  POST /api/v1/auth/login                  -- email/password -> session
  POST /api/v1/auth/refresh                -- refresh cookie -> rotated session
  POST /api/v1/auth/logout                 -- revoke refresh credentials, clear cookie; 204
  POST /api/v1/auth/forgot-password        -- mail a password reset link
  POST /api/v1/auth/reset-password/{token} -- reset secret + new password
  GET  /api/v1/auth/whoami                 -- current user or null (optional identity)
  GET  /api/v1/auth/me                     -- current user (requires an activated account)
  GET  /api/v1/auth/check-email            -- is an email taken
  GET  /api/v1/auth/check-username         -- is a username taken

Session delivery:
  The access credential is returned in the JSON body (and, with
  AUTH_TRANSPORT=cookie, also as an HttpOnly access cookie). The refresh
  credential is ONLY ever set as an HttpOnly, Secure, SameSite=Strict cookie
  whose path is the refresh endpoint, with Max-Age equal to its TTL.

Security:
  [H2] login, signup, resend and forgot-password are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a credential.
  Mail is sent through the BackgroundTaskRunner; the plaintext secret never
  appears in logs.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Path, Query, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    TOKEN_PATTERN,
    ActivateRequest,
    EmailRequest,
    ExistsResponse,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
    UserResponse,
    WhoAmIResponse,
)
from auth.dependencies import inactive_account_error, require_activated_user, try_get_current_user
from auth.errors import DuplicateKey, InvalidPasscode, NotFound, TokenVerificationError
from auth.issuer import TokenIssuer
from auth.models import SecretPurpose, SessionTokens, User
from auth.passwords import authenticate_user, hash_password
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("offerland.api.auth")

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/v1/auth/refresh"

# Auth policy:
# - signup, activate, resend, login, refresh, forgot/reset password, checks: public
# - logout:  optional identity; a rejected credential is a 401, not a silent 204
# - whoami:  optional identity
# - me:      requires an activated account (require_activated_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _issuer(request: Request) -> TokenIssuer:
    return request.app.state.issuer


def _users(request: Request) -> UserStore:
    return request.app.state.user_store


def _field_error(field: str, message: str, status_code: int = 422) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"code": "failed_validation", "message": message, "field": field},
    )


def _set_refresh_cookie(resp: Response, tokens: SessionTokens) -> None:
    resp.set_cookie(
        REFRESH_COOKIE,
        value=tokens.refresh_token,
        max_age=tokens.refresh_ttl_seconds,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=get_settings().secure_cookies,
        samesite="strict",
    )


def _clear_session_cookies(resp: Response, request: Request) -> None:
    settings = get_settings()
    config = request.app.state.token_config
    resp.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )
    if config.transport == "cookie":
        resp.delete_cookie(
            config.access_cookie_name,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite="strict",
        )


def _session_response(request: Request, tokens: SessionTokens, user: Optional[User] = None) -> JSONResponse:
    """Body carries the access credential; the refresh credential goes in its cookie only."""
    settings = get_settings()
    config = request.app.state.token_config
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=tokens.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=config.access_ttl_seconds,
            user=UserResponse.from_user(user) if user is not None else None,
        ).model_dump(),
    )
    _set_refresh_cookie(resp, tokens)
    if config.transport == "cookie":
        resp.set_cookie(
            config.access_cookie_name,
            value=tokens.access_token,
            max_age=config.access_ttl_seconds,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite="strict",
        )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Signup and activation
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an inactive account and mail its activation passcode.

    An existing account with the same email that was never activated is
    replaced, together with its outstanding activation secrets. The response
    carries the opaque activation token; the passcode only travels by mail.
    """
    users = _users(request)
    issuer = _issuer(request)

    existing = users.get_by_email(body.email)
    if existing is not None:
        if existing.activated:
            raise _field_error("email", "This email address is already in use.")
        issuer.tokens.delete_one_time_secrets_for_user(existing.id, SecretPurpose.ACTIVATION)
        users.delete(existing.id)
        logger.info("Replaced never-activated account %s", existing.id)

    if users.get_by_username(body.username) is not None:
        raise _field_error("username", "This username is already in use.")

    try:
        user = users.insert(User(username=body.username, email=body.email, hashed_password=hash_password(body.password)))
    except DuplicateKey as exc:
        # Lost a race with a concurrent signup for the same email/username.
        raise _field_error(exc.constraint or "email", f"This {exc.constraint or 'email'} is already in use.") from exc

    issued = issuer.issue_activation(user.id)
    request.app.state.runner.run(request.app.state.notifier.send_activation, user, issued)

    resp = JSONResponse(
        status_code=201,
        content=SignupResponse(
            user_id=user.id,
            activation_token=issued.plaintext,
            expires_at=issued.expires_at.isoformat(),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/activate/{token}", response_model=TokenResponse)
def activate(
    request: Request,
    body: ActivateRequest,
    token: str = Path(pattern=TOKEN_PATTERN),
) -> JSONResponse:
    """Activate with the opaque token from the link plus the mailed passcode, then start a session.

    A wrong passcode leaves the token usable until it expires.
    """
    issuer = _issuer(request)
    try:
        user = issuer.activate(token, body.passcode)
    except NotFound as exc:
        raise _field_error("token", "Invalid or expired activation token.") from exc
    except InvalidPasscode as exc:
        raise _field_error("passcode", exc.message) from exc
    return _session_response(request, issuer.issue_session(user.id), user)


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/activation/resend", response_model=SignupResponse, status_code=201)
def resend_activation(request: Request, body: EmailRequest) -> JSONResponse:
    """Issue another activation secret. Earlier ones stay valid until one is used."""
    users = _users(request)
    user = users.get_by_email(body.email)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "email_not_found", "message": "The email address you entered could not be found."},
        )
    if user.activated:
        raise _field_error("email", "This account is already activated.")

    issued = _issuer(request).issue_activation(user.id)
    request.app.state.runner.run(request.app.state.notifier.send_activation, user, issued)
    resp = JSONResponse(
        status_code=201,
        content=SignupResponse(
            user_id=user.id,
            activation_token=issued.plaintext,
            expires_at=issued.expires_at.isoformat(),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; start a session.

    Wrong email and wrong password share one generic error so the response
    does not reveal which accounts exist.
    """
    user = authenticate_user(_users(request), body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email address or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    if not user.activated:
        raise inactive_account_error()
    return _session_response(request, _issuer(request).issue_session(user.id), user)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    refresh_token: Optional[str] = Cookie(default=None),
) -> JSONResponse:
    """Rotate the session: the presented refresh credential is replaced by a new one.

    Presenting a credential that was already rotated away is rejected even if
    its signature is still valid. Any rejection also clears the cookie.
    """
    if not refresh_token:
        return _refresh_rejected(request, "invalid_authentication_token", "Invalid or missing authentication token.")
    try:
        tokens = _issuer(request).refresh_session(refresh_token)
    except TokenVerificationError as exc:
        return _refresh_rejected(request, exc.code, exc.message)
    except NotFound:
        logger.warning("Rejected refresh credential with no live store record (possible replay)")
        return _refresh_rejected(request, "invalid_authentication_token", "Invalid or missing authentication token.")
    return _session_response(request, tokens)


def _refresh_rejected(request: Request, code: str, message: str) -> JSONResponse:
    resp = JSONResponse(status_code=401, content={"error": {"code": code, "message": message}})
    _clear_session_cookies(resp, request)
    resp.headers["WWW-Authenticate"] = "Bearer"
    return resp


@router.post("/auth/logout", status_code=204)
def logout(request: Request, user: Optional[User] = Depends(try_get_current_user)) -> Response:
    """Revoke the caller's refresh credentials and clear session cookies.

    An anonymous request only clears the cookies. A rejected access credential
    (expired or invalid) is answered with its 401 and the refresh cookie is
    left in place, so the client can refresh and log out again.
    """
    if user is not None:
        _issuer(request).logout(user.id)
    resp = Response(status_code=204)
    _clear_session_cookies(resp, request)
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse, status_code=201)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Mail a reset link to an activated account."""
    user = _users(request).get_by_email(body.email)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "email_not_found", "message": "The email address you entered could not be found."},
        )
    if not user.activated:
        raise inactive_account_error()
    issued = _issuer(request).issue_password_reset(user.id)
    request.app.state.runner.run(request.app.state.notifier.send_password_reset, user, issued)
    return MessageResponse(message="Email sent.")


@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    token: str = Path(pattern=TOKEN_PATTERN),
) -> JSONResponse:
    """Set a new password. Every other reset link and every session of the account stops working."""
    try:
        _issuer(request).reset_password(token, body.password)
    except NotFound as exc:
        raise _field_error("token", "Invalid or expired reset token.") from exc
    resp = JSONResponse(content=MessageResponse(message="Password updated successfully.").model_dump())
    _clear_session_cookies(resp, request)
    return resp


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@router.get("/auth/whoami", response_model=WhoAmIResponse)
def whoami(user: Optional[User] = Depends(try_get_current_user)) -> WhoAmIResponse:
    """Return the current user, or {"user": null} for an anonymous request."""
    return WhoAmIResponse(user=UserResponse.from_user(user) if user is not None else None)


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(require_activated_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.get("/auth/check-email", response_model=ExistsResponse)
def check_email(request: Request, email: str = Query(min_length=1, max_length=255)) -> ExistsResponse:
    return ExistsResponse(exists=_users(request).get_by_email(email) is not None)


@router.get("/auth/check-username", response_model=ExistsResponse)
def check_username(request: Request, username: str = Query(min_length=1, max_length=50)) -> ExistsResponse:
    return ExistsResponse(exists=_users(request).get_by_username(username) is not None)
