"""
Authentication blueprint (mounted under /api/v1):

- POST   /auth/register
- POST   /auth/login
- POST   /auth/social-login
- GET    /auth/discord-auth-url
- GET    /auth/discord
- GET    /auth/discord/callback
- GET    /auth/me
- GET    /auth/sessions
- DELETE /auth/sessions/<session_id>
- DELETE /auth/logout
- DELETE /auth/logout-all            (ADMIN / SUPERADMIN)
- POST   /auth/verify-email
- POST   /auth/resend-verification-otp
- POST   /auth/forgot-password
- POST   /auth/verify-reset-otp
- POST   /auth/resend-reset-otp
- POST   /auth/reset-password
- PUT    /auth/change-password

Token checks and rotation happen in utils.decorators; the views only talk to
the AccountService and shape JSON.
"""
from __future__ import annotations

import json
import logging
from urllib.parse import urlencode

from flask import Blueprint, current_app, g, jsonify, redirect, request

from models.schemas.auth import (
    ChangePasswordSchema,
    EmailSchema,
    LogoutAllSchema,
    OtpSchema,
    ResetPasswordSchema,
    SessionOutSchema,
    SocialLoginSchema,
)
from models.schemas.user import LoginSchema, RegisterSchema, UserOutSchema
from services.errors import ServiceError
from utils.decorators import (
    auth_required,
    clear_token_cookies,
    client_info,
    identity,
    roles_required,
    set_token_cookies,
)

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

register_schema = RegisterSchema()
login_schema = LoginSchema()
social_login_schema = SocialLoginSchema()
email_schema = EmailSchema()
otp_schema = OtpSchema()
reset_password_schema = ResetPasswordSchema()
change_password_schema = ChangePasswordSchema()
logout_all_schema = LogoutAllSchema()
user_out_schema = UserOutSchema()
session_list_schema = SessionOutSchema(many=True)


def _json():
    return request.get_json(silent=True) or {}


def _signed_in(user, tokens, message, status=200, **extra):
    body = {
        "success": True,
        "message": message,
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "user": user_out_schema.dump(user),
        **extra,
    }
    response = jsonify(body)
    response.status_code = status
    return set_token_cookies(response, tokens.access_token, tokens.refresh_token)


@bp.post("/register")
def register():
    """
    Register a new account.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [name, email, password]
          properties:
            name: { type: string }
            email: { type: string }
            password: { type: string }
            username: { type: string }
            avatar: { type: string }
    responses:
      201:
        description: Created
      409:
        description: Email already in use
      422:
        description: Validation error
    """
    data = register_schema.load(_json())
    result = identity().accounts.register(data, client_info())
    if not result["success"]:
        return jsonify(result), 409

    tokens = result.get("tokens")
    if tokens is None:
        return jsonify(
            {"success": True, "message": result["message"], "user": user_out_schema.dump(result["user"])}
        ), 201
    return _signed_in(result["user"], tokens, result["message"], status=201)


@bp.post("/login")
def login():
    """
    Login with email or username; returns access_token and refresh_token
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email_or_username: { type: string }
            password: { type: string }
    responses:
      200:
        description: OK (returns tokens and user)
      401:
        description: Invalid credentials
    """
    data = login_schema.load(_json())
    result = identity().accounts.login(data["email_or_username"], data["password"], client_info())
    return _signed_in(result.user, result.tokens, result.message)


@bp.post("/social-login")
def social_login():
    """
    Sign in with a Firebase (google) ID token or a Discord access token
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            provider: { type: string, enum: [google, discord] }
            token: { type: string }
    responses:
      200:
        description: OK (returns tokens and user)
      401:
        description: Provider token rejected
    """
    data = social_login_schema.load(_json())
    result = identity().accounts.social_login(data["provider"], data["token"], client_info())
    return _signed_in(result.user, result.tokens, result.message, isNewAccount=result.is_new_account)


@bp.get("/discord-auth-url")
def discord_auth_url():
    """
    Discord OAuth authorization URL, for a frontend that redirects on its own
    ---
    tags:
      - Auth
    responses:
      200:
        description: OK (returns url)
      400:
        description: Discord OAuth is not configured
    """
    url = identity().accounts.discord_authorize_url()
    return jsonify({"success": True, "message": "Discord OAuth URL generated successfully", "url": url}), 200


@bp.get("/discord")
def discord_login():
    """
    Start Discord sign-in by redirecting the browser to Discord
    ---
    tags:
      - Auth
    responses:
      302:
        description: Redirect to Discord
    """
    return redirect(identity().accounts.discord_authorize_url())


@bp.get("/discord/callback")
def discord_callback():
    """
    Discord redirects back here with ?code=...; on success the browser goes to
    FRONTEND_URL with the tokens, otherwise to FRONTEND_URL?error=discord_auth_failed
    ---
    tags:
      - Auth
    parameters:
      - in: query
        name: code
        type: string
    responses:
      302:
        description: Redirect to the frontend
    """
    frontend = current_app.config.get("FRONTEND_URL") or "http://localhost:3000"
    failed = f"{frontend}?{urlencode({'error': 'discord_auth_failed'})}"

    code = request.args.get("code")
    if not code or request.args.get("error"):
        logger.info("Discord callback without a code (error=%s)", request.args.get("error"))
        return redirect(failed)
    try:
        result = identity().accounts.discord_callback(code, client_info())
    except ServiceError as exc:
        logger.warning("Discord sign-in failed: %s", exc.message)
        return redirect(failed)

    query = urlencode(
        {
            "access_token": result.tokens.access_token,
            "refresh_token": result.tokens.refresh_token,
            "user": json.dumps(user_out_schema.dump(result.user)),
        }
    )
    response = redirect(f"{frontend}?{query}")
    return set_token_cookies(response, result.tokens.access_token, result.tokens.refresh_token)


@bp.get("/me")
@auth_required()
def me():
    """
    Current user profile, echoing any tokens rotated by this request
    ---
    tags:
      - Auth
    security:
      - Bearer: []
      - RefreshToken: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    user = identity().accounts.get_user(g.current_user["id"])
    body = {"success": True, "user": user_out_schema.dump(user)}
    if g.rotated_tokens.get("access_token"):
        body["accessToken"] = g.rotated_tokens["access_token"]
    if g.rotated_tokens.get("refresh_token"):
        body["refreshToken"] = g.rotated_tokens["refresh_token"]
    return jsonify(body), 200


@bp.get("/sessions")
@auth_required()
def list_sessions():
    """
    Active sessions of the caller (metadata only)
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: OK
    """
    rows = identity().accounts.list_sessions(g.current_user["id"], g.refresh_token)
    return jsonify({"success": True, "data": session_list_schema.dump(rows)}), 200


@bp.delete("/sessions/<session_id>")
@auth_required()
def revoke_session(session_id: str):
    return jsonify(identity().accounts.revoke_session(g.current_user["id"], session_id)), 200


@bp.delete("/logout")
@auth_required()
def logout():
    """
    Logout: revokes the current session and clears cookies
    ---
    tags:
      - Auth
    security:
      - Bearer: []
      - RefreshToken: []
    responses:
      200:
        description: Logged out
      401:
        description: Unauthorized
    """
    result = identity().accounts.logout(g.current_user["id"], g.refresh_token)
    return clear_token_cookies(jsonify(result)), 200


@bp.delete("/logout-all")
@roles_required(["ADMIN", "SUPERADMIN"])
def logout_all():
    """
    Revoke every session of the caller, or of user_id
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: false
        schema:
          type: object
          properties:
            user_id: { type: string }
    responses:
      200:
        description: Sessions revoked
      403:
        description: Forbidden
    """
    data = logout_all_schema.load(_json())
    result = identity().accounts.logout_all(g.current_user, data.get("user_id"))
    response = jsonify(result)
    if not data.get("user_id") or data["user_id"] == g.current_user["id"]:
        clear_token_cookies(response)
    return response, 200


@bp.post("/verify-email")
def verify_email():
    data = otp_schema.load(_json())
    return jsonify(identity().accounts.verify_email(data["email"], data["otp"])), 200


@bp.post("/resend-verification-otp")
def resend_verification_otp():
    data = email_schema.load(_json())
    return jsonify(identity().accounts.resend_verification_otp(data["email"])), 200


@bp.post("/forgot-password")
def forgot_password():
    """
    Send a password reset code. The answer is the same whether or not the email exists.
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
    responses:
      200:
        description: OK
    """
    data = email_schema.load(_json())
    return jsonify(identity().accounts.forgot_password(data["email"])), 200


@bp.post("/verify-reset-otp")
def verify_reset_otp():
    data = otp_schema.load(_json())
    return jsonify(identity().accounts.verify_reset_otp(data["email"], data["otp"])), 200


@bp.post("/resend-reset-otp")
def resend_reset_otp():
    data = email_schema.load(_json())
    return jsonify(identity().accounts.resend_reset_otp(data["email"])), 200


@bp.post("/reset-password")
def reset_password():
    """
    Set a new password after verify-reset-otp; revokes all sessions
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
            new_password: { type: string }
    responses:
      200:
        description: Password reset
      400:
        description: Reset code not verified
    """
    data = reset_password_schema.load(_json())
    result = identity().accounts.reset_password(data["email"], data["new_password"])
    return clear_token_cookies(jsonify(result)), 200


@bp.put("/change-password")
@auth_required()
def change_password():
    data = change_password_schema.load(_json())
    result = identity().accounts.change_password(
        g.current_user["id"], data["current_password"], data["new_password"]
    )
    return jsonify(result), 200
