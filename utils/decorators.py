"""
HTTP boundary for the dual-token guard.

The guard itself only returns a Decision; these decorators pull credentials
off the request, apply the Decision to the response (new-token headers,
cookies) and expose the caller on flask.g:

    g.current_user    identity claims {id, email, name, role} or None
    g.access_token    the access token in force after this request
    g.refresh_token   the refresh token in force after this request
    g.rotated_tokens  {"access_token": ..., "refresh_token": ...} minted here, if any
"""
from __future__ import annotations

from functools import wraps
from typing import Iterable, Optional

from flask import after_this_request, current_app, g, request

from api.errors import error_response
from services.guard import AuthorizeAndRotate, PresentedCredentials, Reject, check_roles
from services.sessions import ClientInfo

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
NEW_ACCESS_HEADER = "X-New-Access-Token"
NEW_REFRESH_HEADER = "X-New-Refresh-Token"


def identity():
    """The IdentityServices bundle registered by create_app."""
    return current_app.extensions["identity"]


def client_info() -> ClientInfo:
    return ClientInfo(device_info=request.headers.get("User-Agent"), ip_address=request.remote_addr)


def extract_credentials() -> PresentedCredentials:
    auth = request.headers.get("Authorization", "")
    access = auth.split(" ", 1)[1].strip() if auth.startswith("Bearer ") else None
    refresh = request.headers.get("x-refresh-token")
    return PresentedCredentials(
        access_token=access or request.cookies.get(ACCESS_COOKIE) or None,
        refresh_token=refresh or request.cookies.get(REFRESH_COOKIE) or None,
        client=client_info(),
    )


def set_token_cookies(response, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
    """Attach tokens as headers and cookies; max_age follows the configured TTLs."""
    settings = identity().settings
    if access_token:
        response.headers[NEW_ACCESS_HEADER] = access_token
        response.set_cookie(
            ACCESS_COOKIE,
            access_token,
            max_age=settings.access_token_ttl_ms // 1000,
            secure=settings.cookie_secure,
            samesite="Lax",
            httponly=False,
        )
    if refresh_token:
        response.headers[NEW_REFRESH_HEADER] = refresh_token
        response.set_cookie(
            REFRESH_COOKIE,
            refresh_token,
            max_age=settings.refresh_token_ttl_ms // 1000,
            secure=settings.cookie_secure,
            samesite="Lax",
            httponly=False,
        )
    return response


def clear_token_cookies(response):
    """Expire both cookies and drop any rotation this request was about to hand out."""
    g.suppress_rotation = True
    response.headers.pop(NEW_ACCESS_HEADER, None)
    response.headers.pop(NEW_REFRESH_HEADER, None)
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return response


def _reject(reason: str):
    body, status = error_response("UNAUTHORIZED", reason, 401)
    return clear_token_cookies(body), status


def _authenticate(optional: bool):
    """
    Run the guard for this request. Returns a response to send instead of
    calling the view, or None to carry on.
    """
    presented = extract_credentials()
    g.current_user = None
    g.rotated_tokens = {}
    g.access_token = presented.access_token
    g.refresh_token = presented.refresh_token

    if optional and presented.is_empty:
        return None

    decision = identity().guard.evaluate(presented)

    if isinstance(decision, Reject):
        if optional:
            @after_this_request
            def _clear(response):
                return clear_token_cookies(response)

            return None
        return _reject(decision.reason)

    g.current_user = decision.claims
    if isinstance(decision, AuthorizeAndRotate):
        if decision.new_access:
            g.access_token = decision.new_access
            g.rotated_tokens["access_token"] = decision.new_access
        if decision.new_refresh:
            g.refresh_token = decision.new_refresh
            g.rotated_tokens["refresh_token"] = decision.new_refresh

        @after_this_request
        def _attach(response):
            if g.get("suppress_rotation"):
                return response
            return set_token_cookies(response, decision.new_access, decision.new_refresh)

    return None


def auth_required():
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rejection = _authenticate(optional=False)
            if rejection is not None:
                return rejection
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def auth_optional():
    """Like auth_required, but an anonymous or rejected caller still reaches the view with g.current_user = None."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            _authenticate(optional=True)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def roles_required(required_roles: Iterable[str]):
    """
    Allow access if the user's role is ANY of the required roles.
    Deny (403) otherwise.
    """
    req = set(required_roles or [])

    def decorator(fn):
        @wraps(fn)
        @auth_required()
        def wrapper(*args, **kwargs):
            role = (g.current_user or {}).get("role")
            if not check_roles(req, role):
                return error_response("FORBIDDEN", f"Only {', '.join(sorted(req))} can access this resource", 403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
