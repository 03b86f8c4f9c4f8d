"""OAuth2 token lifecycle for the ACLED API.

A token pair moves through these states on every authenticated request:

    NO_TOKEN      -> login (password grant)
    AUTHENTICATED -> use as-is
    NEAR_EXPIRY   -> refresh grant; on failure fall back to login
    EXPIRED       -> refresh token unusable too, so login

Login and refresh rejections raise AuthenticationError, which the retry
wrapper never retries. Network failures during either exchange raise
FetchError and are retried like any other page failure.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx

from odin.errors import AuthenticationError, CredentialsMissingError, FetchError
from odin.storage.settings import AcledToken

logger = logging.getLogger(__name__)

ACLED_TOKEN_URL = "https://acleddata.com/oauth/token"
ACLED_CLIENT_ID = "acled"
REFRESH_BUFFER = timedelta(seconds=60)
REFRESH_TOKEN_TTL = timedelta(days=14)
_TOKEN_TIMEOUT = 30.0


class TokenState(enum.Enum):
    NO_TOKEN = "no_token"
    AUTHENTICATED = "authenticated"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_state(
    token: AcledToken | None,
    now: datetime,
    buffer: timedelta = REFRESH_BUFFER,
) -> TokenState:
    """Classify a token pair at wall-clock time `now`."""
    if token is None or not token.access_token or token.is_expired(now):
        return TokenState.NO_TOKEN
    if now < token.access_expires_at - buffer:
        return TokenState.AUTHENTICATED
    if token.refresh_token and now < token.refresh_expires_at - buffer:
        return TokenState.NEAR_EXPIRY
    return TokenState.EXPIRED


class AcledTokenManager:
    """Holds the current token pair and keeps it valid.

    The caller reads `token` after a run to persist it, whether or not any
    records were fetched.
    """

    def __init__(
        self,
        email: str,
        password: str,
        token: AcledToken | None = None,
        *,
        client: httpx.Client,
        clock: Callable[[], datetime] = utcnow,
        token_url: str = ACLED_TOKEN_URL,
    ) -> None:
        self._email = email
        self._password = password
        self._token = token
        self._client = client
        self._clock = clock
        self._token_url = token_url

    @property
    def token(self) -> AcledToken | None:
        return self._token

    @property
    def has_credentials(self) -> bool:
        return bool(self._email and self._password)

    def state(self) -> TokenState:
        return token_state(self._token, self._clock())

    def ensure_valid_token(self) -> AcledToken:
        """Return a token usable for the next request, refreshing or logging in as needed."""
        state = self.state()
        if state is TokenState.AUTHENTICATED:
            return self._token
        if state is TokenState.NEAR_EXPIRY:
            try:
                return self.refresh()
            except (AuthenticationError, FetchError) as exc:
                logger.warning("ACLED token refresh failed, re-authenticating: %s", exc)
        return self.login()

    def invalidate(self) -> None:
        """Forget the access token so the next request logs in again."""
        self._token = None

    def login(self) -> AcledToken:
        """Password-grant login. Establishes both tokens from scratch."""
        if not self.has_credentials:
            raise CredentialsMissingError(
                "ACLED email and password are required. Configure them in Settings "
                "(register at acleddata.com to obtain credentials)."
            )
        now = self._clock()
        body = self._post_token_form(
            {
                "grant_type": "password",
                "username": self._email,
                "password": self._password,
                "client_id": ACLED_CLIENT_ID,
            },
            failure="ACLED authentication failed: HTTP {status}. "
            "Check your email and password in Settings.",
        )
        self._token = AcledToken(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or "",
            access_expires_at=now + timedelta(seconds=int(body.get("expires_in") or 0)),
            refresh_expires_at=now + REFRESH_TOKEN_TTL,
        )
        logger.info("ACLED OAuth2 authentication successful")
        return self._token

    def refresh(self) -> AcledToken:
        """Refresh-grant exchange. Keeps the old refresh token if none is returned."""
        current = self._token
        if current is None or not current.refresh_token:
            raise AuthenticationError("No ACLED refresh token is held")
        now = self._clock()
        body = self._post_token_form(
            {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
                "client_id": ACLED_CLIENT_ID,
            },
            failure="ACLED token refresh failed: HTTP {status}. "
            "Please re-enter your credentials in Settings.",
        )
        new_refresh = body.get("refresh_token")
        self._token = AcledToken(
            access_token=body["access_token"],
            refresh_token=new_refresh or current.refresh_token,
            access_expires_at=now + timedelta(seconds=int(body.get("expires_in") or 0)),
            refresh_expires_at=now + REFRESH_TOKEN_TTL if new_refresh else current.refresh_expires_at,
        )
        logger.info("ACLED access token refreshed")
        return self._token

    def _post_token_form(self, form: dict[str, str], failure: str) -> dict:
        try:
            response = self._client.post(self._token_url, data=form, timeout=_TOKEN_TIMEOUT)
        except httpx.HTTPError as exc:
            raise FetchError(f"ACLED token request failed: {exc}") from exc
        if response.status_code >= 500:
            raise FetchError(f"ACLED token endpoint returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise AuthenticationError(failure.format(status=response.status_code))
        try:
            body = response.json()
        except ValueError as exc:
            raise AuthenticationError("ACLED token response was not valid JSON") from exc
        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthenticationError("ACLED token response missing access_token")
        return body
