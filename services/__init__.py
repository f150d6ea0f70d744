"""
Wiring for the identity services.

build_services() constructs every component once per app, from immutable
AuthSettings and the shared DBStorage, in dependency order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from services.accounts import AccountService
from services.guard import DualTokenGuard
from services.identity import IdentityLinker, IdentityProvider
from services.issuer import TokenIssuer
from services.mailer import EmailService, Mailer
from services.otp import OtpEngine
from services.sessions import SessionStore
from services.settings import AuthSettings
from services.usernames import UsernameAllocator
from utils.security import TokenCodec, _now


@dataclass
class IdentityServices:
    settings: AuthSettings
    codec: TokenCodec
    sessions: SessionStore
    issuer: TokenIssuer
    guard: DualTokenGuard
    otp: OtpEngine
    emails: EmailService
    linker: IdentityLinker
    accounts: AccountService


def build_services(
    settings: AuthSettings,
    storage,
    mailer: Mailer,
    providers: Optional[Dict[str, IdentityProvider]] = None,
    clock=_now,
) -> IdentityServices:
    codec = TokenCodec(settings.jwt_secret, settings.jwt_algorithm, clock=clock)
    sessions = SessionStore(storage, settings, clock=clock)
    issuer = TokenIssuer(codec, sessions, settings)
    guard = DualTokenGuard(codec, issuer, sessions, settings)
    otp = OtpEngine(storage, clock=clock)
    emails = EmailService(mailer, background=settings.mail_async)
    usernames = UsernameAllocator(storage, max_attempts=settings.username_max_attempts)
    linker = IdentityLinker(storage, issuer, emails, usernames, providers)
    accounts = AccountService(storage, settings, issuer, sessions, otp, emails, usernames, linker)
    return IdentityServices(
        settings=settings,
        codec=codec,
        sessions=sessions,
        issuer=issuer,
        guard=guard,
        otp=otp,
        emails=emails,
        linker=linker,
        accounts=accounts,
    )
