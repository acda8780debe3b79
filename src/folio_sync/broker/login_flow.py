# src/folio_sync/broker/login_flow.py

"""
Browser login emulation for the broker's Connect flow.

The provider has no refresh endpoint, so a new request token is minted by
replaying what a browser does:

1. GET /connect/login?api_key=..&v=3       -> 302, Location carries sess_id
2. POST /api/login (user_id, password)     -> JSON {status, data.request_id}
3. POST /api/twofa (TOTP)                  -> JSON {status}
4. GET /connect/login?..&sess_id=..        -> 302 to /connect/finish
   GET /connect/finish?..                  -> 302 to the app callback
5. request_token=... from the callback URL

All steps of one attempt share a single httpx.Client, i.e. a single cookie jar.
There is no retry in here: the token manager decides whether to run another cycle.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx

from ..errors import AuthenticationError, ProtocolError
from .accounts import BrokerAccount
from .totp import generate_totp

logger = logging.getLogger(__name__)

_SESS_ID_RE = re.compile(r"sess_id=([^&]+)")
_REQUEST_TOKEN_RE = re.compile(r"request_token=([^&]+)")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
_ACCEPT_JSON = "application/json, text/plain, */*"


def manual_login_url(web_url: str, api_key: str) -> str:
    return f"{web_url.rstrip('/')}/connect/login?{urlencode({'api_key': api_key, 'v': '3'})}"


def mask(token: str | None) -> str:
    if not token:
        return "<none>"
    return f"{token[:4]}..." if len(token) > 4 else "***"


def announce_manual_login(web_url: str, account: BrokerAccount) -> str:
    """Log the operator fallback instructions and return the login URL."""
    url = manual_login_url(web_url, account.api_key)
    logger.warning("--------------------------------")
    logger.warning("Automatic login unavailable for account %s.", account.name)
    logger.warning("Please log in to the broker by visiting: %s", url)
    logger.warning(
        "After authentication copy the request_token from the callback URL into the "
        "accounts file (field request_token) before the next scheduled run."
    )
    logger.warning("--------------------------------")
    return url


class LoginFlowEmulator:
    """Runs one full login attempt per login() call and returns a fresh request token."""

    def __init__(
        self,
        *,
        web_url: str = "https://kite.zerodha.com",
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._web_url = web_url.rstrip("/")
        self._timeout = float(timeout_seconds)
        self._transport = transport
        self._clock = clock

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self._timeout,
            follow_redirects=False,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT, "Accept-Language": "en-US,en;q=0.9"},
        )

    def _send(self, client: httpx.Client, step: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProtocolError(f"login step '{step}' failed: {exc}") from exc

    @staticmethod
    def _json(step: str, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProtocolError(
                f"login step '{step}' returned non-JSON body (HTTP {response.status_code})"
            ) from exc
        if not isinstance(payload, dict):
            raise ProtocolError(f"login step '{step}' returned unexpected JSON")
        return payload

    @staticmethod
    def _location(step: str, response: httpx.Response) -> str:
        location = response.headers.get("location")
        if not location:
            raise ProtocolError(
                f"login step '{step}' expected a redirect, got HTTP {response.status_code} without Location"
            )
        # Relative redirects are resolved against the request URL.
        return str(response.url.join(location))

    def login(self, account: BrokerAccount) -> str:
        account.require_secrets()
        login_url = manual_login_url(self._web_url, account.api_key)

        with self._client() as client:
            # Step 1: session id from the initial redirect.
            resp = self._send(client, "session", "GET", login_url, headers={"Accept": _ACCEPT_HTML})
            location = self._location("session", resp)
            m = _SESS_ID_RE.search(location)
            if not m:
                raise ProtocolError(f"session id not found in redirect URL: {location}")
            sess_id = m.group(1)
            logger.debug("Login session established account=%s", account.name)

            session_url = (
                f"{self._web_url}/connect/login?"
                f"{urlencode({'api_key': account.api_key, 'sess_id': sess_id})}"
            )
            json_headers = {
                "Accept": _ACCEPT_JSON,
                "Referer": session_url,
                "Origin": self._web_url,
            }

            # Step 2: primary credentials.
            resp = self._send(
                client,
                "credentials",
                "POST",
                f"{self._web_url}/api/login",
                data={"user_id": account.user_id, "password": account.password},
                headers=json_headers,
            )
            payload = self._json("credentials", resp)
            if payload.get("status") != "success":
                raise AuthenticationError(
                    f"login rejected for account {account.name}: {payload.get('message') or payload.get('status')}"
                )
            data = payload.get("data")
            request_id = data.get("request_id") if isinstance(data, dict) else None
            if not request_id:
                raise ProtocolError("login response did not include data.request_id")

            # Step 3: TOTP second factor.
            code = generate_totp(account.totp_secret, for_time=self._clock())
            resp = self._send(
                client,
                "twofa",
                "POST",
                f"{self._web_url}/api/twofa",
                data={
                    "user_id": account.user_id,
                    "request_id": request_id,
                    "twofa_value": code,
                    "twofa_type": "totp",
                },
                headers=json_headers,
            )
            payload = self._json("twofa", resp)
            if payload.get("status") != "success":
                raise AuthenticationError(
                    f"2FA rejected for account {account.name}: {payload.get('message') or payload.get('status')}"
                )
            logger.info("2FA successful for account %s", account.name)

            # Step 4: finish redirect, then the callback redirect.
            resp = self._send(client, "finish", "GET", session_url, headers={"Accept": _ACCEPT_HTML})
            finish_url = self._location("finish", resp)

            resp = self._send(
                client,
                "callback",
                "GET",
                finish_url,
                headers={"Accept": _ACCEPT_HTML, "Referer": session_url},
            )
            callback_url = self._location("callback", resp)

        # Step 5: request token from the callback query string.
        m = _REQUEST_TOKEN_RE.search(callback_url)
        if not m:
            raise ProtocolError("request token not found in final redirect URL")
        request_token = m.group(1)
        logger.info("Obtained request token %s for account %s", mask(request_token), account.name)
        return request_token
