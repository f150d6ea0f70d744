"""
Social sign-in: identity providers and the linker that maps an external
identity onto a local account.

Lookup order is the provider's external-id column first, then email. A miss
creates an account with a generated password (mailed to the user in the
background); a hit on email alone links the external id without touching the
password.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol
from urllib.parse import quote, urlencode

import httpx
import jwt

from models.user import User
from services.errors import BadRequest, ProviderTokenError, Unauthorized
from services.issuer import TokenIssuer, TokenPair
from services.mailer import EmailService
from services.sessions import ClientInfo
from services.usernames import UsernameAllocator
from utils.security import generate_strong_password, hash_password

logger = logging.getLogger(__name__)

# provider name -> User column holding that provider's external id
PROVIDER_COLUMNS = {
    "google": "google_id",
    "discord": "discord_id",
}


@dataclass(frozen=True)
class ExternalProfile:
    external_id: str
    email: str
    name: Optional[str] = None
    email_verified: bool = False
    avatar: Optional[str] = None


class IdentityProvider(Protocol):
    name: str

    def verify(self, token: str) -> ExternalProfile: ...


class FirebaseIdentityProvider:
    """Firebase Auth ID tokens (Google, Apple, ... through Firebase), RS256 against Google's JWKS."""

    name = "google"
    JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"

    def __init__(self, project_id: str, jwks_client: Optional[jwt.PyJWKClient] = None):
        self.project_id = project_id
        self.jwks_client = jwks_client or jwt.PyJWKClient(self.JWKS_URL)

    def verify(self, token: str) -> ExternalProfile:
        if not token:
            raise ProviderTokenError("Firebase token is required")
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
            )
        except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
            raise ProviderTokenError(f"Invalid Firebase token: {exc}") from exc

        if not claims.get("email"):
            raise ProviderTokenError("Firebase token carries no email")
        return ExternalProfile(
            external_id=claims["sub"],
            email=claims["email"].strip().lower(),
            name=claims.get("name"),
            email_verified=bool(claims.get("email_verified")),
            avatar=claims.get("picture"),
        )


class DiscordIdentityProvider:
    """
    Discord sign-in.

    verify() resolves an OAuth2 access token through /users/@me. With client
    credentials configured the provider also runs the authorization-code
    flow: authorize_url() for the redirect and exchange_code() for the
    callback.
    """

    name = "discord"
    API_URL = "https://discord.com/api/v10"
    AUTHORIZE_URL = "https://discord.com/api/oauth2/authorize"
    TOKEN_URL = "https://discord.com/api/oauth2/token"
    SCOPE = "identify email"

    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ):
        self.http = http or httpx.Client(timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def oauth_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def authorize_url(self) -> str:
        if not self.oauth_configured:
            raise BadRequest("Discord OAuth is not configured")
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": self.SCOPE,
            },
            quote_via=quote,
        )
        return f"{self.AUTHORIZE_URL}?{query}"

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for a user access token."""
        if not self.oauth_configured:
            raise BadRequest("Discord OAuth is not configured")
        if not code:
            raise ProviderTokenError("Discord authorization code is required")
        try:
            resp = self.http.post(
                self.TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
            )
        except httpx.HTTPError as exc:
            raise ProviderTokenError(f"Discord token exchange failed: {exc.__class__.__name__}") from exc
        if resp.status_code != 200:
            logger.warning("Discord token exchange answered %s", resp.status_code)
            raise ProviderTokenError("Invalid Discord authorization code")
        access_token = resp.json().get("access_token")
        if not access_token:
            raise ProviderTokenError("Discord token response carries no access token")
        return access_token

    def verify(self, token: str) -> ExternalProfile:
        if not token:
            raise ProviderTokenError("Discord token is required")
        try:
            resp = self.http.get(f"{self.API_URL}/users/@me", headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise ProviderTokenError(f"Discord lookup failed: {exc.__class__.__name__}") from exc
        if resp.status_code != 200:
            raise ProviderTokenError("Invalid Discord token")

        data = resp.json()
        if not data.get("email"):
            raise ProviderTokenError("Discord account has no email (missing 'email' scope?)")
        avatar = None
        if data.get("avatar"):
            avatar = f"https://cdn.discordapp.com/avatars/{data['id']}/{data['avatar']}.png"
        return ExternalProfile(
            external_id=str(data["id"]),
            email=data["email"].strip().lower(),
            name=data.get("global_name") or data.get("username"),
            email_verified=bool(data.get("verified")),
            avatar=avatar,
        )


@dataclass
class LinkResult:
    user: User
    is_new_account: bool
    linked: bool = False


@dataclass
class SocialLoginResult:
    user: User
    tokens: TokenPair
    message: str
    is_new_account: bool


class IdentityLinker:
    def __init__(
        self,
        storage,
        issuer: TokenIssuer,
        emails: EmailService,
        usernames: UsernameAllocator,
        providers: Optional[Dict[str, IdentityProvider]] = None,
    ):
        self.storage = storage
        self.issuer = issuer
        self.emails = emails
        self.usernames = usernames
        self.providers = providers or {}

    def provider(self, name: str) -> IdentityProvider:
        provider = self.providers.get(name)
        if provider is None or name not in PROVIDER_COLUMNS:
            raise BadRequest(f"Unsupported identity provider: {name}")
        return provider

    def resolve(self, provider_name: str, profile: ExternalProfile) -> LinkResult:
        column = getattr(User, PROVIDER_COLUMNS[provider_name])
        session = self.storage.get_session()

        user = session.query(User).filter(column == profile.external_id).first()
        if user is None:
            user = session.query(User).filter(User.email == profile.email).first()

        if user is None:
            return LinkResult(user=self._create(provider_name, profile), is_new_account=True)

        if getattr(user, column.key) is None:
            setattr(user, column.key, profile.external_id)
            user.email_verified = True
            self.storage.new(user)
            self.storage.save()
            logger.info("Linked %s identity to user %s", provider_name, user.id)
            return LinkResult(user=user, is_new_account=False, linked=True)

        return LinkResult(user=user, is_new_account=False)

    def _create(self, provider_name: str, profile: ExternalProfile) -> User:
        generated = generate_strong_password()
        user = User(
            email=profile.email,
            name=profile.name or "User",
            avatar=profile.avatar,
            username=self.usernames.allocate(profile.name or "user"),
            password_hash=hash_password(generated),
            email_verified=True,
        )
        setattr(user, PROVIDER_COLUMNS[provider_name], profile.external_id)
        self.storage.new(user)
        self.storage.save()
        logger.info("Created user %s from %s sign-in", user.id, provider_name)

        # delivery problems are logged inside notify(); the account stays
        self.emails.notify_generated_password(user.email, generated, user.username, user.name)
        return user

    def sign_in(self, provider_name: str, profile: ExternalProfile, client: Optional[ClientInfo] = None) -> SocialLoginResult:
        result = self.resolve(provider_name, profile)
        if not result.user.is_active:
            raise Unauthorized("Account is disabled")

        tokens = self.issuer.start_session(result.user, client)
        if result.is_new_account:
            message = "Account created successfully. Check your email for password details."
        elif result.linked:
            message = "Account linked successfully"
        else:
            message = "Login successful"
        return SocialLoginResult(
            user=result.user, tokens=tokens, message=message, is_new_account=result.is_new_account
        )
