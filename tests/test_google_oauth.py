from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from sqlalchemy import func, select

from app.config import get_settings
from app.db.models import User
from app.db.session import get_sessionmaker
from app.models.schemas import GoogleUserInfo
from app.services import user_service
from app.services.google_oauth_service import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL, set_oauth_http_client


def _google(
    userinfo: dict | None = None,
    token_status: int = 200,
    token_response: httpx.Response | None = None,
    userinfo_response: httpx.Response | None = None,
    unreachable: bool = False,
) -> httpx.AsyncClient:
    info = userinfo or {
        "id": "g-123",
        "email": "g@example.com",
        "name": "G User",
        "picture": "https://example.com/g.png",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        if url == GOOGLE_TOKEN_URL:
            if token_response is not None:
                return token_response
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            assert b"code=the-code" in request.content
            return httpx.Response(200, json={"access_token": "google-at"})
        if url == GOOGLE_USERINFO_URL:
            assert request.headers["authorization"] == "Bearer google-at"
            if userinfo_response is not None:
                return userinfo_response
            return httpx.Response(200, json=info)
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def google_configured(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "client-secret")
    get_settings.cache_clear()


async def _start_login(api_client) -> str:
    resp = await api_client.get("/api/auth/google")
    assert resp.status_code == 307
    location = httpx.URL(resp.headers["location"])
    assert location.host == "accounts.google.com"
    assert location.params["client_id"] == "client-id"
    assert location.params["scope"] == "openid email profile"
    state = location.params["state"]
    assert api_client.cookies.get("oauth_state") == state
    return state


def _assert_state_cleared(resp: httpx.Response) -> None:
    set_cookie = resp.headers.get("set-cookie", "")
    assert set_cookie.startswith("oauth_state=")
    assert "Max-Age=0" in set_cookie


async def test_google_login_requires_configuration(api_client) -> None:
    resp = await api_client.get("/api/auth/google")
    assert resp.status_code == 503
    assert resp.json()["success"] is False


async def test_callback_rejects_state_mismatch(api_client, google_configured) -> None:
    await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": "forged"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid OAuth state"
    _assert_state_cleared(resp)
    assert api_client.cookies.get("oauth_state") is None


async def test_callback_creates_google_user_and_redirects_with_token(api_client, google_configured) -> None:
    set_oauth_http_client(_google())
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 302
    target = httpx.URL(resp.headers["location"])
    assert target.path == "/profile/index_login.html"
    assert target.params["login_success"] == "true"
    token = target.params["token"]

    profile = await api_client.get("/api/auth/google/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    user = profile.json()["user"]
    assert user["email"] == "g@example.com"
    assert user["name"] == "G User"
    assert user["avatar_url"] == "https://example.com/g.png"
    assert user["is_google_user"] is True

    # A Google-only account has no password to log in with.
    login = await api_client.post("/api/auth/login", json={"email": "g@example.com", "password": "password123"})
    assert login.status_code == 401


async def test_callback_links_existing_local_account(api_client, google_configured) -> None:
    register = await api_client.post("/api/auth/register", json={"email": "g@example.com", "password": "password123"})
    assert register.status_code == 200

    set_oauth_http_client(_google())
    state = await _start_login(api_client)
    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 302
    token = httpx.URL(resp.headers["location"]).params["token"]

    me = await api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["user"]["email"] == "g@example.com"
    assert me.json()["user"]["auth_provider"] == "local"

    profile = await api_client.get("/api/auth/google/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.json()["user"]["is_google_user"] is True

    # Password login keeps working for the linked account.
    login = await api_client.post("/api/auth/login", json={"email": "g@example.com", "password": "password123"})
    assert login.status_code == 200
    assert login.json()["token"]


async def test_callback_reports_failed_token_exchange(api_client, google_configured) -> None:
    set_oauth_http_client(_google(token_status=400))
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Could not obtain access token"
    _assert_state_cleared(resp)


async def test_callback_requires_code(api_client, google_configured) -> None:
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"state": state})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing authorization code"


async def test_callback_rejects_non_json_token_response(api_client, google_configured) -> None:
    set_oauth_http_client(_google(token_response=httpx.Response(200, text="<html>oops</html>")))
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Could not obtain access token"}


async def test_callback_reports_failed_userinfo_fetch(api_client, google_configured) -> None:
    set_oauth_http_client(_google(userinfo_response=httpx.Response(401, json={"error": "invalid_token"})))
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Could not fetch user info"
    _assert_state_cleared(resp)


async def test_callback_rejects_incomplete_profile(api_client, google_configured) -> None:
    set_oauth_http_client(_google(userinfo={"id": "g-1"}))
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Could not fetch user info"


async def test_callback_transport_error_is_500(api_client, google_configured) -> None:
    set_oauth_http_client(_google(unreachable=True))
    state = await _start_login(api_client)

    resp = await api_client.get("/api/auth/google/callback", params={"code": "the-code", "state": state})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "OAuth authentication failed"}
    _assert_state_cleared(resp)


async def test_profile_rejects_token_for_vanished_user(api_client) -> None:
    stale = jwt.encode(
        {"id": 4242, "email": "gone@example.com", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        "test-secret",
        algorithm="HS256",
    )

    resp = await api_client.get("/api/auth/google/profile", headers={"Authorization": f"Bearer {stale}"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "User not found"}


def test_google_upsert_reuses_row_created_concurrently(monkeypatch) -> None:
    info = GoogleUserInfo(id="g-9", email="race@example.com", name="Racer", picture=None)
    SessionLocal = get_sessionmaker()
    with SessionLocal() as db:
        first_id = user_service.upsert_google_user(db, info).id

    real_match = user_service.find_google_match
    lookups: list[str] = []

    def match_after_first_miss(db, email, google_id):
        # The first lookup runs before the other callback's commit lands.
        lookups.append(email)
        return None if len(lookups) == 1 else real_match(db, email, google_id)

    monkeypatch.setattr(user_service, "find_google_match", match_after_first_miss)
    with SessionLocal() as db:
        upsert_id = user_service.upsert_google_user(db, info).id
        count = db.execute(select(func.count()).select_from(User)).scalar_one()

    assert upsert_id == first_id
    assert len(lookups) == 2
    assert count == 1
