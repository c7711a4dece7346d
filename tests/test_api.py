import base64
import urllib.parse

import httpx
import pytest
from core.authentication import AUTH_COOKIE_NAME, generate_jwt_token
from core.orm import Database
from fastapi.testclient import TestClient
from integrations.oauth import STATE_COOKIE_NAME, OAuthClient
from main import create_app
from services.app_services import AppServices
from services.meeting_workflow import MeetingWorkflow
from services.ocr import MAX_IMAGE_BYTES
from services.repository import MeetingRepository

from lib.fakes import (
    HELLO_IN_SPANISH,
    HELLO_MESSAGE,
    DummyBlobStore,
    DummyOcr,
    DummySummarizer,
    DummyTranslator,
)

pytestmark = pytest.mark.api

IMAGE_BASE64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode("ascii")


def _identity_provider(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/token":
        form = urllib.parse.parse_qs(request.content.decode())
        if form.get("code") != ["good-code"]:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "grace-token"})
    if request.url.path == "/userinfo":
        assert request.headers["Authorization"] == "Bearer grace-token"
        return httpx.Response(
            200, json={"sub": "oauth|grace", "name": "Grace", "email": "grace@example.com"}
        )
    return httpx.Response(404)


def _oauth_client() -> OAuthClient:
    oauth = OAuthClient(
        authorize_url="https://id.example.com/authorize",
        token_url="https://id.example.com/token",
        userinfo_url="https://id.example.com/userinfo",
        client_id="notes-app",
        client_secret="notes-secret",
        app_base_url="http://testserver",
    )
    oauth.http = httpx.AsyncClient(transport=httpx.MockTransport(_identity_provider))
    return oauth


@pytest.fixture
def services(tmp_path) -> AppServices:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    repository = MeetingRepository(database)
    translator = DummyTranslator()
    workflow = MeetingWorkflow(
        repository=repository,
        translator=translator,
        summarizer=DummySummarizer(),
        ocr=DummyOcr(),
        blob_store=DummyBlobStore(),
    )
    return AppServices(
        workflow=workflow,
        repository=repository,
        translator=translator,
        translation_mode="cloud",
        cloud_fallback_enabled=False,
        database=database,
        blob_store=workflow.blob_store,
        oauth=_oauth_client(),
    )


@pytest.fixture
def anonymous_client(services):
    with TestClient(create_app(services)) as client:
        client.portal.call(services.database.init)
        yield client
        client.portal.call(services.database.close)


@pytest.fixture
def ada(anonymous_client, services):
    return anonymous_client.portal.call(
        services.repository.upsert_user, "oauth|ada", "Ada", "ada@example.com"
    )


@pytest.fixture
def client(anonymous_client, ada):
    anonymous_client.cookies.set(AUTH_COOKIE_NAME, generate_jwt_token(ada.id))
    return anonymous_client


def _create_meeting(client, content=HELLO_MESSAGE) -> int:
    resp = client.post("/api/meetings", json={"title": "Weekly sync", "content": content})
    assert resp.status_code == 200, resp.text
    return resp.json()["id"]


# Purpose: verify meeting routes reject requests without a valid auth cookie.
def test_requires_authentication(anonymous_client):
    resp = anonymous_client.get("/api/meetings")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Not authenticated"}

    anonymous_client.cookies.set(AUTH_COOKIE_NAME, "not-a-jwt")
    resp = anonymous_client.get("/api/meetings")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Invalid token"}


# Purpose: verify creating a text meeting returns its id and detected language.
def test_create_and_get_meeting(client, ada):
    resp = client.post("/api/meetings", json={"title": "Weekly sync", "content": HELLO_MESSAGE})

    assert resp.status_code == 200
    body = resp.json()
    assert body["detectedLanguage"] == "en"

    meeting = client.get(f"/api/meetings/{body['id']}").json()
    assert meeting["userId"] == ada.id
    assert meeting["title"] == "Weekly sync"
    assert meeting["originalContent"] == HELLO_MESSAGE
    assert meeting["imageUrl"] is None

    listing = client.get("/api/meetings").json()
    assert [m["id"] for m in listing] == [body["id"]]


# Purpose: verify validation failures map to 400 with the error message.
def test_create_meeting_rejects_empty_content(client):
    resp = client.post("/api/meetings", json={"title": "Weekly sync", "content": "   "})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Content is required"}


# Purpose: verify a missing meeting reads as null.
def test_get_missing_meeting_returns_null(client):
    resp = client.get("/api/meetings/999")
    assert resp.status_code == 200
    assert resp.json() is None


# Purpose: verify translate returns the cached record and a repeat call reuses it.
def test_translate_and_cache(client, services):
    meeting_id = _create_meeting(client)

    assert client.get(
        f"/api/meetings/{meeting_id}/translation", params={"targetLanguage": "es"}
    ).json() is None

    first = client.post(f"/api/meetings/{meeting_id}/translate", json={"targetLanguage": "es"})
    second = client.post(f"/api/meetings/{meeting_id}/translate", json={"targetLanguage": "es"})

    assert first.status_code == 200
    body = first.json()
    assert set(body) == {
        "id",
        "meetingId",
        "targetLanguage",
        "translatedContent",
        "summary",
        "actionItems",
    }
    assert body["meetingId"] == meeting_id
    assert body["translatedContent"] == HELLO_IN_SPANISH
    assert body["summary"] == "Short overview."
    assert second.json() == body
    assert len(services.translator.translate_calls) == 1

    cached = client.get(
        f"/api/meetings/{meeting_id}/translation", params={"targetLanguage": "es"}
    ).json()
    assert cached["id"] == body["id"]


# Purpose: verify a provider failure maps to 502.
def test_translate_provider_failure(client, services):
    meeting_id = _create_meeting(client)
    services.translator.fail_translate = True

    resp = client.post(f"/api/meetings/{meeting_id}/translate", json={"targetLanguage": "fr"})

    assert resp.status_code == 502
    assert "upstream unavailable" in resp.json()["detail"]


# Purpose: verify batch translation returns results in request order.
def test_batch_translate(client):
    meeting_id = _create_meeting(client)

    resp = client.post(
        f"/api/meetings/{meeting_id}/translate/batch",
        json={"targetLanguages": ["fr", "de", "ja"]},
    )

    assert resp.status_code == 200
    assert [t["targetLanguage"] for t in resp.json()] == ["fr", "de", "ja"]
    translations = client.get(f"/api/meetings/{meeting_id}/translations").json()
    assert {t["targetLanguage"] for t in translations} == {"fr", "de", "ja"}


# Purpose: verify export needs a cached translation and then returns the Markdown document.
def test_export(client):
    meeting_id = _create_meeting(client)

    resp = client.get(f"/api/meetings/{meeting_id}/export", params={"targetLanguage": "es"})
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Translation not found"}

    client.post(f"/api/meetings/{meeting_id}/translate", json={"targetLanguage": "es"})
    resp = client.get(f"/api/meetings/{meeting_id}/export", params={"targetLanguage": "es"})

    assert resp.status_code == 200
    content = resp.json()["content"]
    assert content.startswith("# Meeting Summary")
    assert "**Languages:** EN → ES" in content
    assert HELLO_IN_SPANISH in content


# Purpose: verify export and translate on a missing meeting return 404.
def test_missing_meeting_is_not_found(client):
    resp = client.get("/api/meetings/999/export", params={"targetLanguage": "es"})
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Meeting not found"}

    resp = client.post("/api/meetings/999/translate", json={"targetLanguage": "es"})
    assert resp.status_code == 404


# Purpose: verify deleting a meeting reports success once and removes its translations.
def test_delete_meeting(client):
    meeting_id = _create_meeting(client)
    client.post(f"/api/meetings/{meeting_id}/translate", json={"targetLanguage": "es"})

    assert client.delete(f"/api/meetings/{meeting_id}").json() == {"success": True}
    assert client.delete(f"/api/meetings/{meeting_id}").json() == {"success": False}
    assert client.get(f"/api/meetings/{meeting_id}").json() is None
    assert client.get(f"/api/meetings/{meeting_id}/translations").json() == []


# Purpose: verify meetings owned by another user are invisible to the caller.
def test_other_users_meetings_are_hidden(client, services):
    bob = client.portal.call(services.repository.upsert_user, "oauth|bob", "Bob", None)
    foreign = client.portal.call(
        services.workflow.create_from_text, bob.id, "Bob's notes", "Private agenda"
    )

    assert client.get(f"/api/meetings/{foreign.id}").json() is None
    assert client.get("/api/meetings").json() == []
    resp = client.post(f"/api/meetings/{foreign.id}/translate", json={"targetLanguage": "es"})
    assert resp.status_code == 404
    assert client.delete(f"/api/meetings/{foreign.id}").json() == {"success": False}


# Purpose: verify image meetings return the OCR text and reject oversized uploads.
def test_create_meeting_from_image(client, services):
    resp = client.post(
        "/api/meetings/image",
        json={
            "title": "Whiteboard",
            "imageData": f"data:image/png;base64,{IMAGE_BASE64}",
            "mimeType": "image/png",
            "fileSize": MAX_IMAGE_BYTES,
        },
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["extractedText"] == "Whiteboard: ship v2 on Friday"
    assert body["detectedLanguage"] == "en"
    assert body["imageUrl"].startswith("https://files.example.com/meetings/")

    resp = client.post(
        "/api/meetings/image",
        json={
            "title": "Whiteboard",
            "imageData": IMAGE_BASE64,
            "mimeType": "image/png",
            "fileSize": MAX_IMAGE_BYTES + 1,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Image too large")
    assert len(services.blob_store.puts) == 1


# Purpose: verify /me returns the caller's profile and logout clears the cookie.
def test_auth_me_and_logout(client, ada):
    me = client.get("/api/auth/me")
    assert me.json() == {"id": ada.id, "name": "Ada", "email": "ada@example.com"}

    resp = client.post("/api/auth/logout")
    assert resp.json() == {"success": True}
    assert resp.headers["set-cookie"].startswith(f"{AUTH_COOKIE_NAME}=")
    assert "Max-Age=0" in resp.headers["set-cookie"]


# Purpose: verify the health report includes database and translation status.
def test_health(anonymous_client):
    resp = anonymous_client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "database": "ok",
        "translation": {"mode": "cloud", "cloudFallbackEnabled": False},
    }


def _sign_in(client, code="good-code"):
    client.cookies.set(STATE_COOKIE_NAME, "state-123")
    return client.get(
        "/api/auth/oauth/callback",
        params={"code": code, "state": "state-123"},
        follow_redirects=False,
    )


# Purpose: verify login redirects to the identity provider and stores the state cookie.
def test_login_redirects_to_identity_provider(anonymous_client):
    resp = anonymous_client.get("/api/auth/login", follow_redirects=False)

    assert resp.status_code == 307
    location = urllib.parse.urlparse(resp.headers["location"])
    query = urllib.parse.parse_qs(location.query)
    assert location.netloc == "id.example.com"
    assert query["client_id"] == ["notes-app"]
    assert query["redirect_uri"] == ["http://testserver/api/auth/oauth/callback"]
    assert query["state"] == [resp.cookies[STATE_COOKIE_NAME]]


# Purpose: verify a first-time sign-in provisions the user so meeting creation succeeds.
def test_oauth_callback_provisions_user_and_allows_meeting_creation(anonymous_client):
    resp = _sign_in(anonymous_client)

    assert resp.status_code == 307
    assert resp.headers["location"] == "/"
    assert AUTH_COOKIE_NAME in resp.cookies

    me = anonymous_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["name"] == "Grace"
    assert me.json()["email"] == "grace@example.com"

    meeting_id = _create_meeting(anonymous_client)
    meeting = anonymous_client.get(f"/api/meetings/{meeting_id}").json()
    assert meeting["userId"] == me.json()["id"]

    # Signing in again reuses the same user row.
    again = _sign_in(anonymous_client)
    assert again.status_code == 307
    assert anonymous_client.get("/api/auth/me").json()["id"] == me.json()["id"]


# Purpose: verify the callback rejects a mismatched state and a rejected authorization code.
def test_oauth_callback_rejects_bad_state_and_code(anonymous_client):
    anonymous_client.cookies.set(STATE_COOKIE_NAME, "state-123")
    mismatch = anonymous_client.get(
        "/api/auth/oauth/callback",
        params={"code": "good-code", "state": "other"},
        follow_redirects=False,
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "Auth state mismatch."

    rejected = _sign_in(anonymous_client, code="bad-code")
    assert rejected.status_code == 400
    assert rejected.json()["detail"] == "Failed to retrieve access token."
    assert AUTH_COOKIE_NAME not in anonymous_client.cookies


# Purpose: verify login reports 503 when no identity provider is configured.
def test_login_without_oauth_configured(services):
    services.oauth = None
    with TestClient(create_app(services)) as client:
        resp = client.get("/api/auth/login", follow_redirects=False)
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Login is not configured."
