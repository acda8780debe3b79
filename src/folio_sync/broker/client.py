# src/folio_sync/broker/client.py

from __future__ import annotations

import hashlib
import logging
from typing import Any

import httpx

from ..errors import AuthenticationError, TaskError

logger = logging.getLogger(__name__)

API_VERSION_HEADER = {"X-Kite-Version": "3"}


def exchange_checksum(api_key: str, request_token: str, api_secret: str) -> str:
    """SHA-256 hex of api_key + request_token + api_secret."""
    return hashlib.sha256(f"{api_key}{request_token}{api_secret}".encode("utf-8")).hexdigest()


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class BrokerClient:
    """
    Blocking client for the broker REST API (session exchange, profile probe, trades).

    Every call uses its own short-lived httpx.Client bounded by timeout_seconds.
    A timeout is a failed call; retrying is the caller's business.
    """

    def __init__(
        self,
        *,
        api_url: str = "https://api.kite.trade",
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = float(timeout_seconds)
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport, headers=API_VERSION_HEADER)

    @staticmethod
    def _auth_header(api_key: str, access_token: str) -> dict[str, str]:
        return {"Authorization": f"token {api_key}:{access_token}"}

    def probe_access_token(self, api_key: str, access_token: str) -> bool:
        """
        True only when the profile endpoint answers 200.

        Anything else (TokenException, other statuses, transport errors) is reported as
        expired. This fails closed: an outage looks like an expired token.
        """
        try:
            with self._client() as client:
                resp = client.get(f"{self._api_url}/user/profile", headers=self._auth_header(api_key, access_token))
        except httpx.HTTPError as exc:
            logger.error("Access token probe failed: %s", exc)
            return False

        if resp.status_code == 200:
            logger.debug("Access token is valid")
            return True

        payload = _safe_json(resp)
        if (
            resp.status_code == 403
            and isinstance(payload, dict)
            and payload.get("status") == "error"
            and payload.get("error_type") == "TokenException"
        ):
            logger.info("Access token is expired (TokenException)")
        else:
            logger.warning("Unexpected status code %d from profile probe, assuming token is expired", resp.status_code)
        return False

    def exchange_request_token(self, api_key: str, api_secret: str, request_token: str) -> str:
        """Trade a request token for an access token. Raises AuthenticationError on any failure."""
        form = {
            "api_key": api_key,
            "request_token": request_token,
            "checksum": exchange_checksum(api_key, request_token, api_secret),
        }
        try:
            with self._client() as client:
                resp = client.post(f"{self._api_url}/session/token", data=form)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"session token request failed: {exc}") from exc

        payload = _safe_json(resp)
        if not isinstance(payload, dict) or payload.get("status") != "success":
            message = payload.get("message") if isinstance(payload, dict) else None
            raise AuthenticationError(
                f"session generation failed (HTTP {resp.status_code}): {message or 'unexpected response'}"
            )

        data = payload.get("data")
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise AuthenticationError("session response did not include data.access_token")
        return str(access_token)

    def fetch_trades(self, api_key: str, access_token: str) -> list[dict[str, Any]]:
        """Raw trade dicts for the current trading day."""
        try:
            with self._client() as client:
                resp = client.get(f"{self._api_url}/trades", headers=self._auth_header(api_key, access_token))
        except httpx.HTTPError as exc:
            raise TaskError(f"trades request failed: {exc}") from exc

        if resp.status_code == 403:
            raise AuthenticationError("trades request rejected with HTTP 403")
        if resp.status_code != 200:
            raise TaskError(f"trades request failed with status {resp.status_code}: {resp.text[:200]}")

        payload = _safe_json(resp)
        if not isinstance(payload, dict):
            raise TaskError("trades response is not a JSON object")
        if payload.get("status") != "success":
            raise TaskError(f"trades API returned non-success status: {payload.get('status')}")

        data = payload.get("data") or []
        if not isinstance(data, list):
            raise TaskError("trades response data is not a list")
        return [t for t in data if isinstance(t, dict)]
