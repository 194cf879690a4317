"""Shared plumbing for the Google REST clients: OAuth and retrying requests."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from newsdesk.config import Settings
from newsdesk.errors import ConfigurationError, GoogleApiError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"

# Refresh this many seconds before Google's stated expiry
_EXPIRY_MARGIN = 60


def _is_retryable(exc: BaseException) -> bool:
    """Transport failures, 429 and 5xx responses are retried; other 4xx are final."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, GoogleApiError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500
    return False


class GoogleAuth:
    """Exchange a long-lived refresh token for short-lived access tokens."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http: httpx.AsyncClient,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._http = http
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> GoogleAuth:
        return cls(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_refresh_token,
            http,
        )

    def _check_credentials(self) -> None:
        if not (self._client_id and self._client_secret and self._refresh_token):
            raise ConfigurationError(
                "Missing Google OAuth2 credentials. Set GOOGLE_CLIENT_ID, "
                "GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN in your .env file."
            )

    async def access_token(self) -> str:
        """Return a valid access token, refreshing it when close to expiry."""
        self._check_credentials()
        if self._token and time.monotonic() < self._expires_at:
            return self._token

        async with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token

            resp = await self._http.post(
                TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            if resp.is_error:
                raise GoogleApiError(
                    f"Google token refresh failed ({resp.status_code}): {resp.text}",
                    status_code=resp.status_code,
                )
            data = resp.json()
            self._token = data["access_token"]
            self._expires_at = time.monotonic() + int(data.get("expires_in", 3600)) - _EXPIRY_MARGIN
            logger.debug("Refreshed Google access token")
            return self._token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


class GoogleApiClient:
    """Base class adding auth headers, error mapping and retries."""

    def __init__(self, http: httpx.AsyncClient, auth: GoogleAuth) -> None:
        self._http = http
        self._auth = auth

    def _error(self, resp: httpx.Response) -> GoogleApiError:
        return GoogleApiError(describe_error(resp), status_code=resp.status_code)

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        token = await self._auth.access_token()
        headers = {**kwargs.pop("headers", {}), "Authorization": f"Bearer {token}"}
        resp = await self._http.request(method, url, headers=headers, **kwargs)
        if resp.status_code == 401:
            self._auth.invalidate()
        if resp.is_error:
            raise self._error(resp)
        return resp


def describe_error(resp: httpx.Response) -> str:
    """Pull Google's error message out of a response, falling back to the body."""
    try:
        message = resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        message = resp.text[:300]
    return f"{resp.request.method} {resp.request.url.path} failed ({resp.status_code}): {message}"
