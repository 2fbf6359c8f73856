import json
import os
import tempfile
import time

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "viralscope-test.db"),
)
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

JWT_SECRET = "test-secret"


def make_user_token(sub: str, secret: str = JWT_SECRET, **claims) -> str:
    payload = {
        "sub": sub,
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
        "email": f"{sub}@example.com",
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class FakeGoogle:
    """Answers the token, Vertex AI, Speech and video-page requests."""

    def __init__(self):
        self.calls: list[str] = []
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.text_output = (
            'Here you go: {"viralityScore": 72, "emotionalTone": "Excitement", '
            '"suggestions": ["Add a hook", "Use a hashtag"]}'
        )
        self.transcript_output = (
            '{"viralityScore": 64, "emotionalTone": "Informative", '
            '"suggestions": ["Shorten the intro"]}'
        )
        self.vision_output = "A person unboxing a gadget in bright light."
        self.transcript = "hey everyone check out my new gadget"
        self.embedding = [i / 100 for i in range(768)]
        self.page_html = (
            "<html><head>"
            '<meta property="og:image" content="https://cdn.example.com/thumb.jpg">'
            '<meta property="og:video" content="https://cdn.example.com/clip.mp4">'
            "</head><body></body></html>"
        )
        self.fail: set[str] = set()

    def _respond(self, name: str, body) -> httpx.Response:
        self.calls.append(name)
        if name in self.fail:
            return httpx.Response(503, json={"error": {"message": f"{name} unavailable"}})
        if isinstance(body, str):
            return httpx.Response(200, text=body, headers={"content-type": "text/html"})
        return httpx.Response(200, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        if host == "oauth2.googleapis.com":
            self.calls.append("token")
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "ya29.test", "expires_in": 3600})

        if host == "speech.googleapis.com":
            return self._respond(
                "speech", {"results": [{"alternatives": [{"transcript": self.transcript}]}]}
            )

        if host.endswith("aiplatform.googleapis.com"):
            if path.endswith(":predict"):
                return self._respond(
                    "embedding", {"predictions": [{"embeddings": {"values": self.embedding}}]}
                )
            prompt = json.dumps(json.loads(request.content))
            if "Analyze this video frame" in prompt:
                return self._respond("vision", gemini_body(self.vision_output))
            if "Transcribe the spoken audio" in prompt:
                return self._respond("transcription", gemini_body(self.transcript))
            if "transcript from a video" in prompt:
                return self._respond("transcript-analysis", gemini_body(self.transcript_output))
            return self._respond("text-analysis", gemini_body(self.text_output))

        return self._respond("page", self.page_html)


class FakeAuthServer:
    """GoTrue-style password sign-in."""

    def __init__(self):
        self.users = {"ada@example.com": ("correct-horse", "user-ada")}
        self.confirm_signups = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        email, password = body["email"], body["password"]
        if request.url.path == "/auth/v1/signup":
            user_id = f"user-{email.split('@')[0]}"
            self.users[email] = (password, user_id)
            if self.confirm_signups:
                return httpx.Response(200, json={"id": user_id, "email": email})
            return httpx.Response(200, json=self._session(email, user_id))

        known = self.users.get(email)
        if known is None or known[0] != password:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
            )
        return httpx.Response(200, json=self._session(email, known[1]))

    @staticmethod
    def _session(email: str, user_id: str) -> dict:
        return {
            "access_token": make_user_token(user_id, email=email),
            "token_type": "bearer",
            "user": {"id": user_id, "email": email},
        }


@pytest.fixture
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def service_account(rsa_private_key, monkeypatch):
    pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    data = {
        "type": "service_account",
        "project_id": "viral-test",
        "private_key_id": "key-1",
        "private_key": pem,
        "client_email": "analyzer@viral-test.iam.gserviceaccount.com",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    monkeypatch.setenv("GOOGLE_CLOUD_KEY", json.dumps(data))
    return data


@pytest.fixture
def auth_env(monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("AUTH_URL", "https://auth.example.com")
    monkeypatch.setenv("AUTH_ANON_KEY", "anon-key")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    monkeypatch.delenv("AUTH_ALLOW_UNVERIFIED_TOKENS", raising=False)
    monkeypatch.delenv("ANALYSIS_SERVICE_URL", raising=False)


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest.fixture
def fake_auth():
    return FakeAuthServer()


@pytest.fixture
def db_engine(tmp_path):
    from viralscope.database import make_engine

    return make_engine(f"sqlite+aiosqlite:///{tmp_path / 'viralscope.db'}")


@pytest.fixture
def app_client(db_engine, fake_google, fake_auth, service_account, auth_env):
    from viralscope import main

    original = main.app.state.engine
    main.configure(
        main.app,
        db_engine,
        upstream_transport=httpx.MockTransport(fake_google.handler),
        auth_transport=httpx.MockTransport(fake_auth.handler),
    )
    with TestClient(main.app) as client:
        yield client
    main.configure(main.app, original)
