"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The decision itself is made by auth.middleware.Authenticator (stored on
app.state.authenticator at startup). This module adapts it to FastAPI:

  get_verdict()          runs the Authenticator once per request and caches
                         the AuthVerdict on request.state
  try_get_current_user() public-with-optional-identity routes: Anonymous ->
                         None; Rejected -> HTTP error
  get_current_user()     identity required: Anonymous is treated like
                         Rejected (401)
  require_activated_user() additionally 403s accounts not yet activated
  inactive_account_error() the 403 shared with login and forgot-password

A Rejected verdict is always answered with its error, even on routes where
identity is optional: a client that sends a broken credential learns so
instead of silently being served as anonymous.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from auth.middleware import Authenticator
from auth.models import AuthVerdict, RejectReason, User

_REJECTIONS: dict[RejectReason, tuple[int, str]] = {
    RejectReason.INVALID_AUTHENTICATION_TOKEN: (401, "Invalid or missing authentication token."),
    RejectReason.EXPIRED_TOKEN: (401, "Your token has expired, please try again."),
    RejectReason.SERVER_ERROR: (500, "The server encountered a problem and could not process your request."),
}


def get_verdict(request: Request) -> AuthVerdict:
    """Authenticate the request (once) and return the verdict."""
    verdict: Optional[AuthVerdict] = getattr(request.state, "auth_verdict", None)
    if verdict is None:
        authenticator: Authenticator = request.app.state.authenticator
        verdict = authenticator.authenticate(request.headers, request.cookies)
        request.state.auth_verdict = verdict
    return verdict


def _reject(reason: RejectReason) -> HTTPException:
    status_code, message = _REJECTIONS[reason]
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail={"code": reason.value, "message": message},
        headers=headers,
    )


def try_get_current_user(request: Request) -> Optional[User]:
    """Return the authenticated User, or None for an anonymous request.

    Raises the mapped HTTP error for a Rejected verdict.
    """
    verdict = get_verdict(request)
    if verdict.is_rejected:
        raise _reject(verdict.reason)
    return verdict.user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request carries no valid credential.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise _reject(RejectReason.INVALID_AUTHENTICATION_TOKEN)
    return user


def inactive_account_error() -> HTTPException:
    """The 403 answered to an account that exists but is not activated yet."""
    return HTTPException(
        status_code=403,
        detail={
            "code": "inactive_account",
            "message": "Your user account must be activated to access this resource.",
        },
    )


def require_activated_user(request: Request) -> User:
    """Require an authenticated AND activated account. HTTP 403 for inactive accounts."""
    user = get_current_user(request)
    if not user.activated:
        raise inactive_account_error()
    return user
