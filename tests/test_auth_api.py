"""HTTP-level tests for /api/v1/auth through the Flask test client."""
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from services.identity import DiscordIdentityProvider

API = "/api/v1"


def register(client, email="jane@example.com", username=None, password="secret123", name="Jane Doe"):
    payload = {"email": email, "password": password, "name": name}
    if username:
        payload["username"] = username
    return client.post(f"{API}/auth/register", json=payload)


def login(client, identifier="jane@example.com", password="secret123"):
    resp = client.post(f"{API}/auth/login", json={"email_or_username": identifier, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()


def bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}", "x-refresh-token": tokens["refresh_token"]}


def refresh_only(tokens):
    return {"x-refresh-token": tokens["refresh_token"]}


def cookies_cleared(resp):
    set_cookies = resp.headers.getlist("Set-Cookie")
    return any(c.startswith("access_token=;") for c in set_cookies) and any(
        c.startswith("refresh_token=;") for c in set_cookies
    )


def test_health(client):
    resp = client.get(f"{API}/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


class TestRegister:
    def test_register_returns_user_and_tokens(self, client):
        resp = register(client)
        body = resp.get_json()

        assert resp.status_code == 201
        assert body["success"] is True
        assert body["access_token"] and body["refresh_token"]
        assert body["user"]["email"] == "jane@example.com"
        assert "password_hash" not in body["user"]
        assert "email_verification_otp" not in body["user"]

    def test_same_username_twice(self, client):
        first = register(client, email="a@x.com", username="john").get_json()
        second = register(client, email="b@x.com", username="john").get_json()

        assert first["user"]["username"] == "john"
        assert second["user"]["username"].startswith("john")
        assert second["user"]["username"] != "john"

    def test_duplicate_email(self, client):
        register(client)
        resp = register(client, email="JANE@example.com")
        assert resp.status_code == 409
        assert resp.get_json() == {
            "success": False,
            "message": "Email already in use in another account",
            "field": "email",
        }

    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "jane@example.com", "password": "123", "name": "Jane"},
            {"email": "not-an-email", "password": "secret123", "name": "Jane"},
            {"email": "jane@example.com", "password": "secret123", "name": "J"},
            {"password": "secret123", "name": "Jane"},
        ],
    )
    def test_invalid_payload(self, client, payload):
        resp = client.post(f"{API}/auth/register", json=payload)
        assert resp.status_code == 422
        assert resp.get_json()["error"] == "VALIDATION_ERROR"


class TestLogin:
    def test_login_returns_tokens_without_password(self, client):
        register(client)
        resp = client.post(f"{API}/auth/login", json={"email_or_username": "jane@example.com", "password": "secret123"})
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["access_token"] and body["refresh_token"]
        assert "password" not in body["user"]
        assert "password_hash" not in body["user"]
        assert resp.headers["X-New-Access-Token"] == body["access_token"]
        assert resp.headers["X-New-Refresh-Token"] == body["refresh_token"]
        assert any(c.startswith("access_token=") for c in resp.headers.getlist("Set-Cookie"))

    def test_login_accepts_email_or_username_keys(self, client):
        register(client, username="jane")
        by_email = client.post(f"{API}/auth/login", json={"email": "jane@example.com", "password": "secret123"})
        by_username = client.post(f"{API}/auth/login", json={"username": "jane", "password": "secret123"})
        assert by_email.status_code == 200
        assert by_username.status_code == 200

    def test_bad_credentials(self, client):
        register(client)
        resp = client.post(f"{API}/auth/login", json={"email_or_username": "jane@example.com", "password": "wrong!"})
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False


class TestGuardOverHttp:
    def test_me_with_both_tokens(self, client):
        register(client)
        tokens = login(client)
        resp = client.get(f"{API}/auth/me", headers=bearer(tokens))
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["user"]["email"] == "jane@example.com"
        assert "accessToken" not in body
        assert "X-New-Access-Token" not in resp.headers

    def test_me_with_refresh_only_rotates_both(self, client):
        register(client)
        tokens = login(client)
        resp = client.get(f"{API}/auth/me", headers=refresh_only(tokens))
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["accessToken"] == resp.headers["X-New-Access-Token"]
        assert body["refreshToken"] == resp.headers["X-New-Refresh-Token"]
        assert body["refreshToken"] != tokens["refresh_token"]

        # the rotated-out refresh token is spent
        replay = client.get(f"{API}/auth/me", headers=refresh_only(tokens))
        assert replay.status_code == 401

    def test_me_with_cookies(self, client):
        register(client)
        tokens = login(client)
        cookie = f"access_token={tokens['access_token']}; refresh_token={tokens['refresh_token']}"
        resp = client.get(f"{API}/auth/me", headers={"Cookie": cookie})
        assert resp.status_code == 200

    def test_no_credentials_rejected_and_cookies_cleared(self, client):
        resp = client.get(f"{API}/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "UNAUTHORIZED"
        assert cookies_cleared(resp)

    def test_garbage_tokens_rejected(self, client):
        resp = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer nope", "x-refresh-token": "nope"})
        assert resp.status_code == 401
        assert cookies_cleared(resp)


class TestSessionsAndLogout:
    def test_logout_spends_refresh_token(self, client):
        register(client)
        tokens = login(client)

        resp = client.delete(f"{API}/auth/logout", headers=bearer(tokens))
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True
        assert cookies_cleared(resp)

        assert client.get(f"{API}/auth/me", headers=refresh_only(tokens)).status_code == 401

    def test_logout_with_refresh_only_hands_out_nothing(self, client):
        register(client)
        tokens = login(client)

        resp = client.delete(f"{API}/auth/logout", headers=refresh_only(tokens))
        assert resp.status_code == 200
        assert "X-New-Access-Token" not in resp.headers
        assert "X-New-Refresh-Token" not in resp.headers
        set_cookies = resp.headers.getlist("Set-Cookie")
        assert not any(c.startswith("access_token=ey") or c.startswith("refresh_token=ey") for c in set_cookies)
        assert cookies_cleared(resp)

        assert client.get(f"{API}/auth/me", headers=refresh_only(tokens)).status_code == 401

    def test_logout_with_access_only_leaves_no_live_session(self, client, app):
        register(client)
        tokens = login(client)
        user_id = client.get(f"{API}/auth/me", headers=bearer(tokens)).get_json()["user"]["id"]
        before = len(app.extensions["identity"].sessions.list_for_user(user_id))

        resp = client.delete(f"{API}/auth/logout", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert resp.status_code == 200
        assert "X-New-Refresh-Token" not in resp.headers
        # the refresh session minted for this request is revoked with it
        assert len(app.extensions["identity"].sessions.list_for_user(user_id)) == before

    def test_list_and_revoke_sessions(self, client):
        register(client)
        current = login(client)
        login(client)

        listing = client.get(f"{API}/auth/sessions", headers=bearer(current)).get_json()["data"]
        # registration, two logins
        assert len(listing) == 3
        other = next(s for s in listing if not s["current"])

        resp = client.delete(f"{API}/auth/sessions/{other['id']}", headers=bearer(current))
        assert resp.status_code == 200
        missing = client.delete(f"{API}/auth/sessions/{other['id']}", headers=bearer(current))
        assert missing.status_code == 404

    def test_logout_all_requires_admin(self, client):
        register(client)
        tokens = login(client)
        resp = client.delete(f"{API}/auth/logout-all", headers=bearer(tokens))
        assert resp.status_code == 403

    def test_logout_all_invalidates_old_refresh_tokens(self, client, make_user):
        make_user(email="boss@example.com", username="boss", role="ADMIN")
        old = login(client, "boss@example.com")
        current = login(client, "boss@example.com")

        resp = client.delete(f"{API}/auth/logout-all", headers=bearer(current))
        assert resp.status_code == 200
        assert resp.get_json()["revoked"] >= 2

        assert client.get(f"{API}/auth/me", headers=refresh_only(old)).status_code == 401

    def test_logout_all_with_refresh_only_hands_out_nothing(self, client, make_user):
        make_user(email="boss@example.com", username="boss", role="ADMIN")
        tokens = login(client, "boss@example.com")

        resp = client.delete(f"{API}/auth/logout-all", headers=refresh_only(tokens))
        assert resp.status_code == 200
        assert "X-New-Access-Token" not in resp.headers
        assert cookies_cleared(resp)
        assert not any(c.startswith("access_token=ey") for c in resp.headers.getlist("Set-Cookie"))

    def test_admin_can_logout_another_user(self, client, make_user):
        make_user(email="boss@example.com", username="boss", role="ADMIN")
        register(client)
        victim = login(client)
        admin = login(client, "boss@example.com")
        victim_id = client.get(f"{API}/auth/me", headers=bearer(victim)).get_json()["user"]["id"]

        resp = client.delete(f"{API}/auth/logout-all", headers=bearer(admin), json={"user_id": victim_id})
        assert resp.status_code == 200
        assert client.get(f"{API}/auth/me", headers=refresh_only(victim)).status_code == 401


class TestPasswordFlows:
    def test_reset_password_revokes_sessions(self, client, mailer):
        register(client)
        tokens = login(client)

        forgot = client.post(f"{API}/auth/forgot-password", json={"email": "jane@example.com"})
        assert forgot.status_code == 200
        code = mailer.last_code("jane@example.com")

        verified = client.post(f"{API}/auth/verify-reset-otp", json={"email": "jane@example.com", "otp": code})
        assert verified.status_code == 200
        reset = client.post(
            f"{API}/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-pw"}
        )
        assert reset.status_code == 200

        assert client.get(f"{API}/auth/me", headers=refresh_only(tokens)).status_code == 401
        login(client, password="brand-new-pw")

    def test_reset_without_verified_code(self, client):
        register(client)
        client.post(f"{API}/auth/forgot-password", json={"email": "jane@example.com"})
        resp = client.post(
            f"{API}/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-pw"}
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Please verify OTP first"

    def test_wrong_otp(self, client, mailer):
        register(client)
        client.post(f"{API}/auth/forgot-password", json={"email": "jane@example.com"})
        code = mailer.last_code("jane@example.com")
        wrong = "123456" if code != "123456" else "654321"
        resp = client.post(f"{API}/auth/verify-reset-otp", json={"email": "jane@example.com", "otp": wrong})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid OTP"

    @pytest.mark.parametrize("otp", ["١٢٣٤٥٦", "１２３４５６", "12345"])
    def test_otp_must_be_ascii_digits(self, client, otp):
        register(client)
        client.post(f"{API}/auth/forgot-password", json={"email": "jane@example.com"})
        resp = client.post(f"{API}/auth/verify-reset-otp", json={"email": "jane@example.com", "otp": otp})
        assert resp.status_code == 422
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_forgot_password_same_answer_for_unknown_email(self, client):
        register(client)
        known = client.post(f"{API}/auth/forgot-password", json={"email": "jane@example.com"})
        unknown = client.post(f"{API}/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()

    def test_change_password(self, client):
        register(client)
        tokens = login(client)
        bad = client.put(
            f"{API}/auth/change-password",
            headers=bearer(tokens),
            json={"current_password": "wrong-one", "new_password": "another-pw"},
        )
        assert bad.status_code == 400

        ok = client.put(
            f"{API}/auth/change-password",
            headers=bearer(tokens),
            json={"current_password": "secret123", "new_password": "another-pw"},
        )
        assert ok.status_code == 200
        login(client, password="another-pw")


class TestSocialLogin:
    def test_existing_account_is_linked(self, client, providers):
        register(client, email="sam@example.com")
        providers["google"].register("google-token", "g-1", "sam@example.com", name="Sam")

        resp = client.post(f"{API}/auth/social-login", json={"provider": "google", "token": "google-token"})
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["message"] == "Account linked successfully"
        assert body["isNewAccount"] is False
        assert body["user"]["google_linked"] is True
        assert body["access_token"]

    def test_new_account_is_created(self, client, providers, mailer):
        providers["discord"].register("discord-token", "d-1", "new@example.com", name="Newbie")

        resp = client.post(f"{API}/auth/social-login", json={"provider": "discord", "token": "discord-token"})
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["isNewAccount"] is True
        assert body["message"] == "Account created successfully. Check your email for password details."
        assert mailer.to("new@example.com")

    def test_bad_provider_token(self, client):
        resp = client.post(f"{API}/auth/social-login", json={"provider": "google", "token": "forged"})
        assert resp.status_code == 401


class TestDiscordOAuth:
    FRONTEND = "http://localhost:3000"

    @pytest.fixture
    def discord(self, providers):
        """Swap the fake for a real provider whose Discord endpoints answer from a MockTransport."""

        def handler(request):
            if "oauth2/token" in str(request.url):
                fields = parse_qs(request.content.decode())
                if fields["code"] == ["good-code"]:
                    return httpx.Response(200, json={"access_token": "discord-user-token"})
                return httpx.Response(400, json={"error": "invalid_grant"})
            if request.headers.get("Authorization") == "Bearer discord-user-token":
                return httpx.Response(
                    200, json={"id": "77", "email": "dee@example.com", "username": "dee", "verified": True}
                )
            return httpx.Response(401)

        provider = DiscordIdentityProvider(
            http=httpx.Client(transport=httpx.MockTransport(handler)),
            client_id="client-1",
            client_secret="shh",
            redirect_uri="http://localhost:8000/api/v1/auth/discord/callback",
        )
        providers["discord"] = provider
        return provider

    def test_auth_url(self, client, discord):
        resp = client.get(f"{API}/auth/discord-auth-url")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["success"] is True
        assert body["url"].startswith("https://discord.com/api/oauth2/authorize?")

    def test_auth_url_without_client_credentials(self, client):
        resp = client.get(f"{API}/auth/discord-auth-url")
        assert resp.status_code == 400

    def test_login_redirects_to_discord(self, client, discord):
        resp = client.get(f"{API}/auth/discord")
        assert resp.status_code == 302
        assert resp.headers["Location"].startswith("https://discord.com/api/oauth2/authorize?")

    def test_callback_signs_in_and_redirects_with_tokens(self, client, discord):
        resp = client.get(f"{API}/auth/discord/callback?code=good-code")

        assert resp.status_code == 302
        location = resp.headers["Location"]
        assert location.startswith(f"{self.FRONTEND}?access_token=")
        query = parse_qs(urlparse(location).query)
        assert json.loads(query["user"][0])["email"] == "dee@example.com"
        assert any(c.startswith("access_token=ey") for c in resp.headers.getlist("Set-Cookie"))

        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {query['access_token'][0]}"})
        assert me.status_code == 200
        assert me.get_json()["user"]["email"] == "dee@example.com"

    def test_callback_with_rejected_code(self, client, discord):
        resp = client.get(f"{API}/auth/discord/callback?code=stale-code")

        assert resp.status_code == 302
        assert resp.headers["Location"] == f"{self.FRONTEND}?error=discord_auth_failed"
        assert not resp.headers.getlist("Set-Cookie")

    @pytest.mark.parametrize("query", ["", "?error=access_denied", "?error=access_denied&code=good-code"])
    def test_callback_without_grant(self, client, discord, query):
        resp = client.get(f"{API}/auth/discord/callback{query}")

        assert resp.status_code == 302
        assert resp.headers["Location"] == f"{self.FRONTEND}?error=discord_auth_failed"
