"""Centxo — Campaign & Ad Rosters.

Multi-account read paths behind the SWR cache. Accounts are fetched in
small concurrent batches with a short pause between batches; one failing
account is reported in `errors` without sinking the rest. Rosters with a
retryable (transient) account error are served but not cached.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from centxo.cache.store import user_cache_key
from centxo.cache.swr import SWRCache
from centxo.config import settings
from centxo.connectors.meta.client import MetaClient
from centxo.connectors.meta.endpoints import ad_fields, campaign_fields, normalize_account_id
from centxo.connectors.meta.retry import RetryPolicy
from centxo.connectors.meta.transformer import sort_newest_first, transform_ad, transform_campaign
from centxo.core.errors import CentxoError, RemoteTransientError
from centxo.core.logging import get_logger
from centxo.credentials.resolver import CredentialResolver
from centxo.models.domain import Credential
from centxo.provisioning.provisioner import ResourceProvisioner

logger = get_logger("reporting")

ROSTER_VERSION = "v2"


def _no_retryable_errors(value: Dict[str, Any]) -> bool:
    # Transient account errors are retried on the next read
    return not any(e.get("retryable") for e in value["errors"])


class RosterService:
    def __init__(
        self,
        client: MetaClient,
        cache: SWRCache,
        resolver: CredentialResolver,
        retry_policy: RetryPolicy | None = None,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.cache = cache
        self.resolver = resolver
        self.retry_policy = retry_policy or RetryPolicy.for_creates()
        self.sleep = sleep

    async def list_campaigns(
        self,
        user_id: str,
        account_ids: List[str],
        pool: List[Credential],
        force_refresh: bool = False,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        fields = campaign_fields(date_from, date_to)
        return await self._roster(
            user_id, "campaigns", account_ids, pool, force_refresh, date_from, date_to,
            transform_campaign,
            fields,
        )

    async def list_ads(
        self,
        user_id: str,
        account_ids: List[str],
        pool: List[Credential],
        force_refresh: bool = False,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        fields = ad_fields(date_from, date_to)
        return await self._roster(
            user_id, "ads", account_ids, pool, force_refresh, date_from, date_to,
            transform_ad,
            fields,
        )

    # ── Internals ──

    async def _roster(
        self,
        user_id: str,
        edge: str,
        account_ids: List[str],
        pool: List[Credential],
        force_refresh: bool,
        date_from: Optional[str],
        date_to: Optional[str],
        transform: Callable[[Dict[str, Any], str, str], Dict[str, Any]],
        fields: str,
    ) -> Dict[str, Any]:
        accounts = sorted({normalize_account_id(a) for a in account_ids if a.strip()})
        key = user_cache_key(
            user_id, edge, ROSTER_VERSION, ",".join(accounts), date_from or "", date_to or ""
        )
        if force_refresh:
            await self.cache.delete_cache(key)

        async def compute() -> Dict[str, Any]:
            return await self._fetch_all(edge, accounts, pool, transform, fields)

        result = await self.cache.get_or_compute(
            key, settings.listing_fresh_ttl, settings.listing_stale_ttl, compute,
            cacheable=_no_retryable_errors,
        )
        return {**result.value, "is_stale": result.is_stale, "revalidating": result.revalidating}

    async def _fetch_all(
        self,
        edge: str,
        accounts: List[str],
        pool: List[Credential],
        transform: Callable[[Dict[str, Any], str, str], Dict[str, Any]],
        fields: str,
    ) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = []
        errors: List[Dict[str, str]] = []
        size = max(1, settings.listing_batch_size)

        for start in range(0, len(accounts), size):
            if start > 0:
                await self.sleep(settings.listing_batch_pause)
            batch = accounts[start:start + size]
            results = await asyncio.gather(
                *(self._fetch_account(edge, acc, pool, transform, fields) for acc in batch)
            )
            for acc, (rows, error, retryable) in zip(batch, results):
                items.extend(rows)
                if error:
                    errors.append({"account_id": acc, "error": error, "retryable": retryable})

        logger.info(f"Fetched {len(items)} {edge} from {len(accounts)} accounts ({len(errors)} errors)")
        return {
            "items": sort_newest_first(items),
            "errors": errors,
            "fetched_at": datetime.now(timezone.utc).isoformat(),
        }

    async def _fetch_account(
        self,
        edge: str,
        account_id: str,
        pool: List[Credential],
        transform: Callable[[Dict[str, Any], str, str], Dict[str, Any]],
        fields: str,
    ) -> tuple:
        credential = await self.resolver.resolve(account_id, pool)
        if credential is None:
            return [], "Ad account not connected", False

        provisioner = ResourceProvisioner(account_id, self.client, self.retry_policy)
        account, listing = await asyncio.gather(
            provisioner.fetch_account(credential),
            provisioner.list_all(edge, credential, {"fields": fields, "limit": 100}),
            return_exceptions=True,
        )
        for outcome in (account, listing):
            if isinstance(outcome, CentxoError):
                logger.warning(f"Roster fetch failed: {outcome.message}", extra={"account_id": account_id})
                return [], outcome.message, isinstance(outcome, RemoteTransientError)
            if isinstance(outcome, BaseException):
                raise outcome

        rows = [transform(row, account_id, account.currency) for row in listing.items]
        return rows, listing.error, listing.transient
