import os
import re

# In-memory database and synchronous mail before anything imports models
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MAIL_ASYNC"] = "false"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")

import pytest  # noqa: E402

from api import create_app  # noqa: E402
from models import storage  # noqa: E402
from models.user import User  # noqa: E402
from services import build_services  # noqa: E402
from services.errors import MailDeliveryError, ProviderTokenError  # noqa: E402
from services.identity import ExternalProfile  # noqa: E402
from services.settings import AuthSettings  # noqa: E402
from utils.security import hash_password  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-only"
_CODE = re.compile(r">(\d{6})<")


class RecordingMailer:
    """Keeps every message in memory; set fail=True to simulate an SMTP outage."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html_body):
        if self.fail:
            raise MailDeliveryError("smtp down")
        self.sent.append({"to": to, "subject": subject, "html": html_body})

    def to(self, address):
        return [m for m in self.sent if m["to"] == address]

    def last_code(self, address):
        for message in reversed(self.to(address)):
            match = _CODE.search(message["html"])
            if match:
                return match.group(1)
        return None


class FakeProvider:
    """Identity provider that accepts only the tokens registered in profiles."""

    def __init__(self, name):
        self.name = name
        self.profiles = {}

    def verify(self, token):
        try:
            return self.profiles[token]
        except KeyError:
            raise ProviderTokenError("Invalid token")

    def register(self, token, external_id, email, name="Social User"):
        self.profiles[token] = ExternalProfile(
            external_id=external_id, email=email, name=name, email_verified=True
        )


@pytest.fixture(autouse=True)
def fresh_db():
    storage.reset()
    yield
    storage.close()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def providers():
    return {"google": FakeProvider("google"), "discord": FakeProvider("discord")}


@pytest.fixture
def make_services(mailer, providers):
    """Build the service graph directly, without Flask; keyword overrides go to AuthSettings."""

    def _build(**overrides):
        options = {"jwt_secret": TEST_SECRET, "mail_async": False}
        options.update(overrides)
        return build_services(AuthSettings(**options), storage, mailer, providers=providers)

    return _build


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def make_user():
    def _create(email="jane@example.com", password="secret123", username=None, name="Jane Doe", **extra):
        user = User(
            email=email,
            username=username or email.split("@")[0],
            name=name,
            password_hash=hash_password(password),
            **extra,
        )
        storage.new(user)
        storage.save()
        return user

    return _create


@pytest.fixture
def app(mailer, providers):
    app = create_app("testing", mailer=mailer, identity_providers=providers)
    yield app


@pytest.fixture
def client(app):
    return app.test_client(use_cookies=False)
