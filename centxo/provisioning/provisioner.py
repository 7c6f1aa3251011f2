"""Centxo — Resource Provisioner.

One remote call per operation against a single ad account, wrapped in the
retry policy. Low-level MetaAPIErrors leave this module enriched as
RemoteTransientError / RemoteFatalError / AppNotLiveError. No caching here.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from centxo.config import settings
from centxo.connectors.meta.client import MetaAPIError, MetaClient
from centxo.connectors.meta.endpoints import (
    ACCOUNT_FIELDS,
    BENEFICIARY_FIELDS,
    CREATE_EDGES,
    PARENT_FIELDS,
    VIDEO_COVER_FIELDS,
    normalize_account_id,
)
from centxo.connectors.meta.retry import RetryPolicy
from centxo.core.errors import (
    AppNotLiveError,
    RemoteError,
    RemoteFatalError,
    RemoteTransientError,
)
from centxo.core.logging import get_logger
from centxo.models.domain import AdAccount, Credential, IceBreaker, RemoteKind

logger = get_logger("provisioning")


@dataclass
class ListingResult:
    """Items gathered before pagination stopped. `error` is set if a page failed."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    transient: bool = False
    pages: int = 0


def enrich_error(exc: MetaAPIError, description: str) -> RemoteError:
    """Map a raw Graph error onto the surfaced taxonomy."""
    codes = dict(
        status_code=exc.status_code,
        error_code=exc.error_code,
        error_subcode=exc.error_subcode,
    )
    if exc.is_app_not_live:
        return AppNotLiveError(
            f"{description} failed: the Meta app is in development mode. "
            "Switch it to Live in Meta for Developers to create ads.",
            **codes,
        )
    if exc.is_transient:
        return RemoteTransientError(f"{description} failed after retries: {exc.detail}", **codes)
    return RemoteFatalError(f"{description} failed: {exc.detail}", **codes)


class ResourceProvisioner:
    def __init__(
        self,
        account_id: str,
        client: MetaClient,
        retry_policy: RetryPolicy | None = None,
        max_pages: int | None = None,
    ):
        self.account_id = normalize_account_id(account_id)
        self.client = client
        self.retry = retry_policy or RetryPolicy.for_creates()
        self.max_pages = max_pages or settings.meta_max_pages

    async def _call(
        self, operation: Callable[[], Awaitable[Dict[str, Any]]], description: str
    ) -> Dict[str, Any]:
        try:
            return await self.retry.run(operation, description)
        except MetaAPIError as e:
            logger.error(
                f"{description} failed: {e.detail}",
                extra={"account_id": self.account_id, "status_code": e.status_code},
            )
            raise enrich_error(e, description) from e

    # ── Creation ──

    async def create(
        self,
        kind: RemoteKind,
        parent_id: Optional[str],
        payload: Dict[str, Any],
        credential: Credential,
    ) -> str:
        """Create one remote object and return its id."""
        body = dict(payload)
        parent_field = PARENT_FIELDS[kind]
        if parent_field and parent_id:
            body[parent_field] = parent_id
        path = f"{self.account_id}/{CREATE_EDGES[kind]}"
        description = f"Create {kind.value}"

        result = await self._call(
            lambda: self.client.post(path, credential.token, body), description
        )
        remote_id = result.get("id")
        if not remote_id:
            raise RemoteFatalError(f"{description} failed: response carried no id")
        logger.info(
            f"{description} OK",
            extra={"account_id": self.account_id, "remote_id": str(remote_id)},
        )
        return str(remote_id)

    # ── Listing ──

    async def list_all(
        self,
        endpoint: str,
        credential: Credential,
        params: Dict[str, Any] | None = None,
    ) -> ListingResult:
        """Follow paging cursors under the account, up to `max_pages` pages.

        A failed page ends the listing with what was gathered so far.
        """
        result = ListingResult()
        path = f"{self.account_id}/{endpoint.lstrip('/')}"
        description = f"List {endpoint}"
        fetch: Callable[[], Awaitable[Dict[str, Any]]] = lambda: self.client.get(
            path, credential.token, params
        )

        while result.pages < self.max_pages:
            try:
                page = await self._call(fetch, description)
            except RemoteError as e:
                result.error = e.message
                result.transient = isinstance(e, RemoteTransientError)
                break
            result.pages += 1
            result.items.extend(page.get("data") or [])
            next_url = (page.get("paging") or {}).get("next")
            if not next_url:
                break
            fetch = lambda url=next_url: self.client.get_url(url)
        else:
            logger.warning(
                f"{description}: stopped at {self.max_pages} pages",
                extra={"account_id": self.account_id},
            )
        return result

    # ── Account metadata ──

    async def fetch_account(self, credential: Credential) -> AdAccount:
        data = await self._call(
            lambda: self.client.get(
                self.account_id, credential.token, {"fields": ACCOUNT_FIELDS}
            ),
            "Fetch ad account",
        )
        return AdAccount(
            id=self.account_id,
            currency=data.get("currency") or "USD",
            country_code=data.get("business_country_code") or "",
            name=data.get("name") or "",
        )

    async def find_beneficiary(self, credential: Credential) -> Optional[str]:
        """Account's default DSA beneficiary, else its first agency. None if neither."""
        account_res, agencies_res = await asyncio.gather(
            self.client.get(self.account_id, credential.token, {"fields": BENEFICIARY_FIELDS}),
            self.client.get(f"{self.account_id}/agencies", credential.token),
            return_exceptions=True,
        )
        if isinstance(account_res, dict):
            value = str(account_res.get("default_dsa_beneficiary") or "").strip()
            if value:
                return value
        elif isinstance(account_res, MetaAPIError):
            logger.info(f"No default_dsa_beneficiary: {account_res.detail}")
        elif isinstance(account_res, BaseException):
            raise account_res

        if isinstance(agencies_res, dict):
            agencies = agencies_res.get("data") or []
            if agencies and agencies[0].get("id"):
                return str(agencies[0]["id"])
        elif isinstance(agencies_res, BaseException) and not isinstance(
            agencies_res, MetaAPIError
        ):
            raise agencies_res
        return None

    # ── Targeting ──

    async def search_interest(self, name: str, credential: Credential) -> Optional[Dict[str, str]]:
        try:
            data = await self.client.get(
                "search",
                credential.token,
                {"type": "adinterest", "q": name, "limit": 1},
            )
        except MetaAPIError as e:
            logger.warning(f"Interest search failed for '{name}': {e.detail}")
            return None
        rows = data.get("data") or []
        if not rows or not rows[0].get("id"):
            return None
        return {"id": str(rows[0]["id"]), "name": rows[0].get("name") or name}

    async def resolve_interests(
        self, names: List[str], credential: Credential
    ) -> List[Dict[str, str]]:
        """Taxonomy ids for interest names. Unknown names are dropped."""
        found = await asyncio.gather(*(self.search_interest(n, credential) for n in names))
        resolved = [f for f in found if f is not None]
        if len(resolved) < len(names):
            logger.info(f"Resolved {len(resolved)}/{len(names)} interests")
        return resolved

    # ── Media ──

    async def upload_image(self, filename: str, content: bytes, credential: Credential) -> str:
        """Upload to /adimages and return the image hash."""
        data = await self._call(
            lambda: self.client.post_files(
                f"{self.account_id}/adimages",
                credential.token,
                files={"filename": (filename, content)},
            ),
            "Upload image",
        )
        for image in (data.get("images") or {}).values():
            if image.get("hash"):
                return image["hash"]
        raise RemoteFatalError("Upload image failed: response carried no hash")

    async def upload_video(self, filename: str, content: bytes, credential: Credential) -> str:
        data = await self._call(
            lambda: self.client.post_files(
                f"{self.account_id}/advideos",
                credential.token,
                files={"source": (filename, content)},
            ),
            "Upload video",
        )
        if not data.get("id"):
            raise RemoteFatalError("Upload video failed: response carried no id")
        return str(data["id"])

    async def fetch_video_cover(self, video_id: str, credential: Credential) -> Optional[str]:
        """Cover image URL Meta generated for a video, if any."""
        try:
            data = await self.client.get(
                video_id, credential.token, {"fields": VIDEO_COVER_FIELDS}
            )
        except MetaAPIError as e:
            logger.warning(f"Video cover lookup failed for {video_id}: {e.detail}")
            return None
        if data.get("picture"):
            return data["picture"]
        thumbs = (data.get("thumbnails") or {}).get("data") or []
        return thumbs[0].get("uri") if thumbs else None

    # ── Page ──

    async def set_ice_breakers(
        self, page_id: str, ice_breakers: List[IceBreaker], credential: Credential
    ) -> bool:
        """Register page-level conversation starters. Returns False if unchanged."""
        desired = [{"question": b.question, "payload": b.payload} for b in ice_breakers[:4]]
        path = f"{page_id}/messenger_profile"
        current = await self.client.get(path, credential.token, {"fields": "ice_breakers"})
        existing = ((current.get("data") or [{}])[0] or {}).get("ice_breakers") or []
        if existing == desired:
            logger.info(f"Ice breakers already up to date for page {page_id}")
            return False
        await self._call(
            lambda: self.client.post(path, credential.token, {"ice_breakers": desired}),
            "Set ice breakers",
        )
        return True
