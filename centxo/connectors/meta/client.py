"""Centxo — Meta API Client.

Thin async transport over the Graph API. Each call carries the access token
of the credential acting on that account, so one client serves every
credential in a pool. Retry decisions live in RetryPolicy, not here.
"""

import hashlib
import hmac
from typing import Any, Dict, Optional

import httpx

from centxo.config import settings
from centxo.connectors.meta.retry import RATE_LIMIT_CODES
from centxo.core.logging import get_logger

logger = get_logger("meta.client")

# error_subcode returned when the app is still in development mode
APP_NOT_LIVE_SUBCODE = 1885183


class MetaAPIError(Exception):
    """Raised when Meta API returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: int = 0,
        error_subcode: int = 0,
        error_user_msg: str = "",
        error_user_title: str = "",
        error_type: str = "",
        fbtrace_id: str = "",
        transport: bool = False,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        self.error_user_msg = error_user_msg
        self.error_user_title = error_user_title
        self.error_type = error_type
        self.fbtrace_id = fbtrace_id
        self.transport = transport
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "MetaAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error", {}) if isinstance(body, dict) else {}
        return cls(
            error.get("message") or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_code=int(error.get("code") or 0),
            error_subcode=int(error.get("error_subcode") or 0),
            error_user_msg=error.get("error_user_msg", ""),
            error_user_title=error.get("error_user_title", ""),
            error_type=error.get("type", ""),
            fbtrace_id=error.get("fbtrace_id", ""),
        )

    @property
    def is_transient(self) -> bool:
        return (
            self.transport
            or self.status_code >= 500
            or self.status_code == 429
            or self.error_code in RATE_LIMIT_CODES
        )

    @property
    def is_app_not_live(self) -> bool:
        return self.error_subcode == APP_NOT_LIVE_SUBCODE

    @property
    def detail(self) -> str:
        """Human-readable message combining the platform's structured fields."""
        parts = [self.error_user_msg, str(self), self.error_user_title]
        seen = []
        for p in parts:
            if p and p not in seen:
                seen.append(p)
        text = " — ".join(seen) or "Unknown error"
        if self.error_code:
            text += f" (code {self.error_code})"
        return text


def appsecret_proof(access_token: str) -> Optional[str]:
    """HMAC-SHA256 of the token with the app secret, when one is configured."""
    if not settings.meta_app_secret:
        return None
    return hmac.new(
        settings.meta_app_secret.encode("utf-8"),
        access_token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class MetaClient:
    """Async HTTP client for Meta Marketing API."""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self.base_url = settings.meta_graph_url
        self._client: Optional[httpx.AsyncClient] = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.meta_timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _auth_params(self, access_token: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"access_token": access_token}
        proof = appsecret_proof(access_token)
        if proof:
            params["appsecret_proof"] = proof
        return params

    # ── Core Request Method ──

    async def request(
        self,
        method: str,
        url: str,
        access_token: str | None = None,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
        files: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a single request. Raises MetaAPIError on any failure."""
        params = dict(params or {})
        if access_token:
            params.update(self._auth_params(access_token))

        client = await self._get_client()
        try:
            resp = await client.request(
                method, url, params=params, json=json, data=data, files=files
            )
        except httpx.RequestError as e:
            raise MetaAPIError(f"Connection failed: {e}", transport=True) from e

        if resp.status_code >= 400:
            raise MetaAPIError.from_response(resp)
        try:
            body = resp.json()
        except ValueError as e:
            raise MetaAPIError(
                "Malformed JSON response", status_code=resp.status_code
            ) from e
        if isinstance(body, dict) and "error" in body:
            raise MetaAPIError.from_response(resp)
        return body

    async def get(
        self, path: str, access_token: str, params: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        return await self.request("GET", self.url(path), access_token, params=params)

    async def get_url(self, url: str) -> Dict[str, Any]:
        """GET an absolute URL, e.g. a paging cursor that already embeds the token."""
        return await self.request("GET", url)

    async def post(
        self, path: str, access_token: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self.request("POST", self.url(path), access_token, json=payload)

    async def post_files(
        self,
        path: str,
        access_token: str,
        files: Dict[str, Any],
        data: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        return await self.request(
            "POST", self.url(path), access_token, data=data, files=files
        )


_shared_client: Optional[MetaClient] = None


def get_shared_meta_client() -> MetaClient:
    """App-scoped client, shared with background cache refreshes."""
    global _shared_client
    if _shared_client is None:
        _shared_client = MetaClient()
    return _shared_client


async def close_shared_meta_client() -> None:
    global _shared_client
    if _shared_client is not None:
        await _shared_client.close()
        _shared_client = None
