"""Tests for token issuance and identity attachment."""
from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from jose import jwt

from app.auth.middleware import IdentityMiddleware, extract_bearer_token, get_identity, require_user
from app.auth.service import Identity, TokenService
from app.config import AuthSettings


@pytest.fixture
def settings():
    return AuthSettings(secret_key="test-secret")


@pytest.fixture
def tokens(settings):
    return TokenService(settings)


class TestTokenService:

    def test_generate_and_resolve(self, tokens):
        token = tokens.generate_token("u1", "alice")
        identity = tokens.resolve(token)

        assert identity == Identity(user_id="u1", username="alice", claims=identity.claims)
        assert identity.claims["sub"] == "u1"
        assert identity.claims["iss"] == "presence-relay"
        assert identity.claims["aud"] == "presence-relay"

    def test_expired_token_is_invalid(self, tokens):
        token = tokens.generate_token("u1", "alice", expires_delta=timedelta(seconds=-10))
        assert tokens.validate_token(token) is None
        assert tokens.resolve(token) is None

    def test_wrong_secret_is_invalid(self, tokens):
        other = TokenService(AuthSettings(secret_key="someone-else"))
        assert tokens.resolve(other.generate_token("u1", "alice")) is None

    def test_wrong_issuer_is_invalid(self, tokens):
        other = TokenService(AuthSettings(secret_key="test-secret", issuer="elsewhere"))
        assert tokens.resolve(other.generate_token("u1", "alice")) is None

    def test_garbage_is_invalid(self, tokens):
        assert tokens.resolve("not.a.token") is None

    def test_token_without_user_claim_is_rejected(self, tokens, settings):
        token = jwt.encode(
            {"iss": settings.issuer, "aud": settings.issuer, "name": "alice"},
            settings.secret_key,
            algorithm=settings.algorithm,
        )
        assert tokens.validate_token(token) is not None
        assert tokens.resolve(token) is None


class TestExtractBearerToken:

    def test_reads_bearer_header(self):
        scope = {"headers": [(b"authorization", b"Bearer abc.def")]}
        assert extract_bearer_token(scope) == "abc.def"

    def test_header_name_is_case_insensitive(self):
        scope = {"headers": [(b"Authorization", b"Bearer abc")]}
        assert extract_bearer_token(scope) == "abc"

    def test_other_schemes_are_ignored(self):
        scope = {"headers": [(b"authorization", b"Basic dXNlcjpwYXNz")]}
        assert extract_bearer_token(scope) is None

    def test_missing_header(self):
        assert extract_bearer_token({"headers": []}) is None
        assert extract_bearer_token({"headers": [(b"authorization", b"Bearer ")]}) is None


def build_app(tokens, reject_invalid_tokens=False):
    app = FastAPI()
    app.add_middleware(
        IdentityMiddleware, token_service=tokens, reject_invalid_tokens=reject_invalid_tokens
    )

    @app.get("/whoami")
    async def whoami(request: Request):
        identity = get_identity(request)
        return {"userId": identity.user_id if identity else None}

    @app.get("/protected")
    async def protected(identity: Identity = Depends(require_user)):
        return {"userId": identity.user_id, "username": identity.username}

    return app


class TestIdentityMiddleware:

    def test_valid_token_attaches_identity(self, tokens):
        client = TestClient(build_app(tokens))
        headers = {"Authorization": f"Bearer {tokens.generate_token('u1', 'alice')}"}

        assert client.get("/whoami", headers=headers).json() == {"userId": "u1"}
        assert client.get("/protected", headers=headers).json() == {"userId": "u1", "username": "alice"}

    def test_missing_token_is_anonymous(self, tokens):
        client = TestClient(build_app(tokens))
        assert client.get("/whoami").json() == {"userId": None}

    def test_invalid_token_is_anonymous_by_default(self, tokens):
        client = TestClient(build_app(tokens))
        headers = {"Authorization": "Bearer garbage"}
        assert client.get("/whoami", headers=headers).json() == {"userId": None}

    def test_protected_route_requires_identity(self, tokens):
        client = TestClient(build_app(tokens))
        response = client.get("/protected")
        assert response.status_code == 401

    def test_invalid_token_rejected_when_configured(self, tokens):
        client = TestClient(build_app(tokens, reject_invalid_tokens=True))
        response = client.get("/whoami", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid bearer token"}

    def test_missing_token_allowed_when_rejecting_invalid(self, tokens):
        client = TestClient(build_app(tokens, reject_invalid_tokens=True))
        assert client.get("/whoami").json() == {"userId": None}
