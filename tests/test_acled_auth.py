"""Tests for odin.ingestion.acled_auth — OAuth2 token state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from odin.errors import AuthenticationError, CredentialsMissingError, FetchError
from odin.ingestion.acled_auth import (
    REFRESH_BUFFER,
    REFRESH_TOKEN_TTL,
    AcledTokenManager,
    TokenState,
    token_state,
)
from odin.storage.settings import AcledToken

T = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TokenServer:
    """Mock token endpoint that records each form it receives."""

    def __init__(self, responses=None):
        self.forms: list[dict[str, str]] = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.forms.append(form)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{len(self.forms)}",
                "refresh_token": f"refresh-{len(self.forms)}",
                "expires_in": 86400,
            },
        )

    @property
    def grants(self) -> list[str]:
        return [f["grant_type"] for f in self.forms]


def _token(access_expires_at=T, refresh_expires_at=None):
    return AcledToken(
        access_token="access-0",
        refresh_token="refresh-0",
        access_expires_at=access_expires_at,
        refresh_expires_at=refresh_expires_at or T + timedelta(days=10),
    )


def _manager(server, token=None, now=T, email="a@example.com", password="secret"):
    client = httpx.Client(transport=httpx.MockTransport(server))
    return AcledTokenManager(email, password, token, client=client, clock=lambda: now)


class TestTokenState:
    def test_no_token(self):
        assert token_state(None, T) is TokenState.NO_TOKEN

    def test_valid_until_buffer(self):
        token = _token()
        assert token_state(token, T - REFRESH_BUFFER - timedelta(seconds=1)) is TokenState.AUTHENTICATED
        assert token_state(token, T - REFRESH_BUFFER + timedelta(seconds=1)) is TokenState.NEAR_EXPIRY

    def test_expired_when_refresh_token_is_near_its_end(self):
        token = _token(
            access_expires_at=T - timedelta(hours=1),
            refresh_expires_at=T + timedelta(seconds=30),
        )
        assert token_state(token, T) is TokenState.EXPIRED


class TestEnsureValidToken:
    def test_well_before_expiry_makes_no_token_call(self):
        server = TokenServer()
        manager = _manager(server, _token(), now=T - REFRESH_BUFFER - timedelta(seconds=1))
        assert manager.ensure_valid_token().access_token == "access-0"
        assert server.forms == []

    def test_inside_buffer_refreshes(self):
        server = TokenServer()
        now = T - REFRESH_BUFFER + timedelta(seconds=1)
        manager = _manager(server, _token(), now=now)
        token = manager.ensure_valid_token()
        assert server.grants == ["refresh_token"]
        assert server.forms[0]["refresh_token"] == "refresh-0"
        assert server.forms[0]["client_id"] == "acled"
        assert token.access_token == "access-1"
        assert token.access_expires_at == now + timedelta(seconds=86400)

    def test_no_token_logs_in(self):
        server = TokenServer()
        manager = _manager(server)
        token = manager.ensure_valid_token()
        assert server.grants == ["password"]
        assert server.forms[0]["username"] == "a@example.com"
        assert server.forms[0]["password"] == "secret"
        assert token.refresh_expires_at == T + REFRESH_TOKEN_TTL

    def test_refresh_rejected_falls_back_to_login(self):
        server = TokenServer([httpx.Response(400, json={"error": "invalid_grant"})])
        manager = _manager(server, _token(), now=T)
        token = manager.ensure_valid_token()
        assert server.grants == ["refresh_token", "password"]
        assert token.access_token == "access-2"

    def test_refresh_network_failure_falls_back_to_login(self):
        server = TokenServer([httpx.Response(502)])
        manager = _manager(server, _token(), now=T)
        manager.ensure_valid_token()
        assert server.grants == ["refresh_token", "password"]

    def test_expired_refresh_token_goes_straight_to_login(self):
        server = TokenServer()
        token = _token(access_expires_at=T - timedelta(days=1), refresh_expires_at=T + timedelta(seconds=10))
        manager = _manager(server, token, now=T)
        manager.ensure_valid_token()
        assert server.grants == ["password"]


class TestRefresh:
    def test_keeps_old_refresh_token_when_none_returned(self):
        server = TokenServer([httpx.Response(200, json={"access_token": "new", "expires_in": 3600})])
        original = _token()
        manager = _manager(server, original, now=T)
        token = manager.refresh()
        assert token.access_token == "new"
        assert token.refresh_token == "refresh-0"
        assert token.refresh_expires_at == original.refresh_expires_at


class TestLoginFailures:
    def test_missing_credentials(self):
        server = TokenServer()
        manager = _manager(server, email="", password="")
        with pytest.raises(CredentialsMissingError):
            manager.ensure_valid_token()
        assert server.forms == []

    def test_rejected_credentials(self):
        server = TokenServer([httpx.Response(401)])
        manager = _manager(server)
        with pytest.raises(AuthenticationError, match="HTTP 401"):
            manager.login()

    def test_server_error_is_retryable(self):
        server = TokenServer([httpx.Response(500)])
        manager = _manager(server)
        with pytest.raises(FetchError):
            manager.login()

    def test_response_without_access_token(self):
        server = TokenServer([httpx.Response(200, json={"token_type": "Bearer"})])
        manager = _manager(server)
        with pytest.raises(AuthenticationError, match="access_token"):
            manager.login()


def test_invalidate_forces_login():
    server = TokenServer()
    manager = _manager(server, _token(access_expires_at=T + timedelta(hours=1)))
    manager.invalidate()
    assert manager.state() is TokenState.NO_TOKEN
    manager.ensure_valid_token()
    assert server.grants == ["password"]
