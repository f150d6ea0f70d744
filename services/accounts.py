"""
Account flows: registration, password and social login, email verification,
password reset/change, username management and session management.

Handlers in api/ call these and turn the returned envelopes into JSON; any
failure is raised as a services.errors.ServiceError.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from models.user import Role, User
from services.errors import BadRequest, Conflict, Forbidden, NotFound, ServiceError, Unauthorized
from services.identity import IdentityLinker, SocialLoginResult
from services.issuer import TokenIssuer, TokenPair
from services.mailer import EmailService
from services.otp import OtpEngine, OtpPurpose
from services.sessions import ClientInfo, SessionStore
from services.settings import AuthSettings
from services.usernames import UsernameAllocator, normalize_username
from utils.security import hash_password, hash_token, verify_password

logger = logging.getLogger(__name__)

GENERIC_RESET_MESSAGE = "If the email is registered, a password reset code has been sent"
GENERIC_USERNAME_MESSAGE = "If the email is registered, the username has been sent"


@dataclass
class AuthResult:
    user: User
    tokens: Optional[TokenPair]
    message: str


class AccountService:
    def __init__(
        self,
        storage,
        settings: AuthSettings,
        issuer: TokenIssuer,
        sessions: SessionStore,
        otp: OtpEngine,
        emails: EmailService,
        usernames: UsernameAllocator,
        linker: IdentityLinker,
    ):
        self.storage = storage
        self.settings = settings
        self.issuer = issuer
        self.sessions = sessions
        self.otp = otp
        self.emails = emails
        self.usernames = usernames
        self.linker = linker

    # lookups

    def _query(self):
        return self.storage.get_session().query(User)

    def find_by_email(self, email: str) -> Optional[User]:
        return self._query().filter(User.email == (email or "").strip().lower()).first()

    def get_user(self, user_id: str) -> User:
        user = self.storage.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _require_by_email(self, email: str) -> User:
        user = self.find_by_email(email)
        if user is None:
            raise NotFound("User not found")
        return user

    # registration & login

    def register(self, data: Dict[str, Any], client: Optional[ClientInfo] = None) -> Dict[str, Any]:
        """
        Returns the response envelope. An email that is already registered is
        not an error: the envelope says success=False and names the field.
        A taken username is not a conflict either, it gets a numeric suffix.
        """
        email = data["email"]
        if self.find_by_email(email) is not None:
            return {
                "success": False,
                "message": "Email already in use in another account",
                "field": "email",
            }

        user = User(
            email=email,
            name=data.get("name"),
            avatar=data.get("avatar"),
            username=self.usernames.allocate(data.get("username") or data.get("name")),
            password_hash=hash_password(data["password"]),
            role=Role.USER.value,
            email_verified=False,
        )
        self.storage.new(user)
        self.storage.save()
        logger.info("Registered user %s", user.id)

        if self.settings.email_verification_required:
            issued = self.otp.issue(user, OtpPurpose.VERIFICATION)
            try:
                self.emails.send_verification_otp(user.email, issued.code, user.name)
            except Exception:
                # the account exists; the user can ask for another code
                logger.exception("Verification email for user %s failed", user.id)
            return {
                "success": True,
                "message": "User registered successfully. Please check your email for verification code.",
                "user": user,
            }

        tokens = self.issuer.start_session(user, client)
        return {
            "success": True,
            "message": "User registered successfully",
            "user": user,
            "tokens": tokens,
        }

    def authenticate(self, identifier: str, password: str) -> User:
        identifier = (identifier or "").strip()
        user = (
            self._query()
            .filter(or_(User.email == identifier.lower(), User.username == identifier.lower()))
            .first()
        )
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        if not user.is_active:
            raise Unauthorized("Account is disabled")
        return user

    def login(self, identifier: str, password: str, client: Optional[ClientInfo] = None) -> AuthResult:
        user = self.authenticate(identifier, password)
        if self.settings.email_verification_required and not user.email_verified:
            raise Unauthorized("Please verify your email before logging in")
        tokens = self.issuer.start_session(user, client)
        return AuthResult(user=user, tokens=tokens, message="Login successful")

    def social_login(self, provider_name: str, token: str, client: Optional[ClientInfo] = None) -> SocialLoginResult:
        provider = self.linker.provider(provider_name)
        try:
            profile = provider.verify(token)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("%s token verification crashed", provider_name)
            raise Unauthorized("Could not verify identity provider token") from exc
        return self.linker.sign_in(provider_name, profile, client)

    def discord_authorize_url(self) -> str:
        return self.linker.provider("discord").authorize_url()

    def discord_callback(self, code: str, client: Optional[ClientInfo] = None) -> SocialLoginResult:
        """Authorization-code callback: exchange the code, then sign in like social_login."""
        provider = self.linker.provider("discord")
        try:
            access_token = provider.exchange_code(code)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Discord code exchange crashed")
            raise Unauthorized("Could not complete Discord sign-in") from exc
        return self.social_login("discord", access_token, client)

    # email verification

    def verify_email(self, email: str, code: str) -> Dict[str, Any]:
        user = self._require_by_email(email)
        if user.email_verified:
            raise BadRequest("Email already verified")
        self.otp.verify(user, OtpPurpose.VERIFICATION, code)
        return {"success": True, "message": "Email verified successfully"}

    def resend_verification_otp(self, email: str) -> Dict[str, Any]:
        user = self._require_by_email(email)
        if user.email_verified:
            raise BadRequest("Email already verified")
        issued = self.otp.resend(user, OtpPurpose.VERIFICATION)
        self.emails.send_verification_otp(user.email, issued.code, user.name)
        return {"success": True, "message": "Verification OTP sent successfully"}

    # password reset

    def forgot_password(self, email: str) -> Dict[str, Any]:
        user = self.find_by_email(email)
        if user is not None:
            issued = self.otp.issue(user, OtpPurpose.RESET)
            try:
                self.emails.send_password_reset_otp(user.email, issued.code, user.name)
            except Exception:
                # a 500 here would tell the caller the account exists
                logger.exception("Password reset email for user %s failed", user.id)
        return {"success": True, "message": GENERIC_RESET_MESSAGE}

    def resend_reset_otp(self, email: str) -> Dict[str, Any]:
        self.forgot_password(email)
        return {"success": True, "message": "Reset OTP sent successfully"}

    def verify_reset_otp(self, email: str, code: str) -> Dict[str, Any]:
        user = self._require_by_email(email)
        self.otp.verify(user, OtpPurpose.RESET, code)
        return {"success": True, "message": "OTP verified successfully. You can now reset your password."}

    def reset_password(self, email: str, new_password: str) -> Dict[str, Any]:
        user = self._require_by_email(email)
        self.otp.consume_reset(user)
        user.password_hash = hash_password(new_password)
        self.storage.new(user)
        self.storage.save()
        self.sessions.revoke_all(user.id)
        self.emails.notify_password_changed(user.email, user.name)
        return {"success": True, "message": "Password reset successfully"}

    def change_password(self, user_id: str, current_password: str, new_password: str) -> Dict[str, Any]:
        user = self.get_user(user_id)
        if not user.has_password:
            raise NotFound("User not found or no password set")
        if not verify_password(current_password, user.password_hash):
            raise BadRequest("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        self.storage.new(user)
        self.storage.save()
        self.emails.notify_password_changed(user.email, user.name)
        return {"success": True, "message": "Password changed successfully"}

    # usernames

    def check_username(self, username: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        username = normalize_username(username)
        owner = self._query().filter(User.username == username).first()
        if owner is not None and user_id is not None and owner.id == user_id:
            return {"available": True, "message": "You already own this username"}
        if owner is not None:
            return {"available": False, "message": "Username already taken"}
        return {"available": True, "message": "Username is available"}

    def update_username(self, user_id: str, username: str) -> Dict[str, Any]:
        if not (username or "").strip():
            raise BadRequest("Username cannot be empty", details={"field": "username"})
        username = normalize_username(username)
        user = self.get_user(user_id)
        if user.username == username:
            return {"success": True, "message": "You already own this username"}
        if self.usernames.is_taken(username):
            raise Conflict("Username already taken", details={"field": "username"})
        user.username = username
        self.storage.new(user)
        self.storage.save()
        return {"success": True, "message": "Username updated successfully"}

    def forgot_username(self, email: str) -> Dict[str, Any]:
        user = self.find_by_email(email)
        if user is not None and user.username:
            try:
                self.emails.send_username_reminder(user.email, user.username, user.name)
            except Exception:
                logger.exception("Username reminder for user %s failed", user.id)
        return {"success": True, "message": GENERIC_USERNAME_MESSAGE}

    # profile

    def update_profile(self, user_id: str, data: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        for field in ("name", "avatar"):
            if field in data:
                setattr(user, field, data[field])
        self.storage.new(user)
        self.storage.save()
        return user

    def set_role(self, user_id: str, role: str) -> User:
        if role not in {r.value for r in Role}:
            raise BadRequest(f"Role must be one of {[r.value for r in Role]}")
        user = self.get_user(user_id)
        user.role = role
        self.storage.new(user)
        self.storage.save()
        return user

    # sessions

    def list_sessions(self, user_id: str, current_refresh: Optional[str] = None) -> List[Dict[str, Any]]:
        current_hash = hash_token(current_refresh) if current_refresh else None
        return [
            {
                "id": s.id,
                "device_info": s.device_info,
                "ip_address": s.ip_address,
                "created_at": s.created_at,
                "last_activity": s.last_activity,
                "expires_at": s.expires_at,
                "current": s.refresh_token_hash == current_hash,
            }
            for s in self.sessions.list_for_user(user_id)
        ]

    def revoke_session(self, user_id: str, session_id: str) -> Dict[str, Any]:
        if not self.sessions.revoke_by_id(user_id, session_id):
            raise NotFound("Session not found")
        return {"success": True, "message": "Session revoked"}

    def logout(self, user_id: str, refresh_token: Optional[str]) -> Dict[str, Any]:
        if refresh_token:
            self.sessions.revoke(refresh_token)
        return {"success": True, "message": "Logged out successfully", "userId": user_id}

    def logout_all(self, actor: Dict[str, Any], target_user_id: Optional[str] = None) -> Dict[str, Any]:
        """Revoke every session of the actor, or of target_user_id when the actor may manage others."""
        user_id = target_user_id or actor["id"]
        if user_id != actor["id"] and actor.get("role") not in (Role.ADMIN.value, Role.SUPERADMIN.value):
            raise Forbidden("Only administrators can revoke another account's sessions")
        if user_id != actor["id"]:
            self.get_user(user_id)
        count = self.sessions.revoke_all(user_id)
        return {"success": True, "message": "Logged out from all devices", "revoked": count}
