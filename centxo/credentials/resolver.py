"""Centxo — Credential Resolver.

Finds which credential in a pool Meta accepts for an ad account and caches
the answer per account. Probes are sequential, one attempt each, stopping at
the first success.
"""

from datetime import datetime, timezone
from typing import List, Optional

from centxo.cache.store import CacheStore, generate_cache_key, get_cache_store
from centxo.config import settings
from centxo.connectors.meta.client import MetaAPIError, MetaClient
from centxo.connectors.meta.endpoints import ACCOUNT_PROBE_FIELDS, normalize_account_id
from centxo.core.crypto import TokenDecryptionError, decrypt_token, encrypt_token
from centxo.core.errors import AuthenticationError
from centxo.core.logging import get_logger
from centxo.models.domain import Credential, CredentialResolution

logger = get_logger("credentials.resolver")

TOKEN_CACHE_PREFIX = "meta:account_token"


class CredentialResolver:
    def __init__(
        self,
        client: MetaClient,
        store: CacheStore | None = None,
        ttl_seconds: int | None = None,
    ):
        self.client = client
        self.store = store if store is not None else get_cache_store()
        self.ttl_seconds = ttl_seconds or settings.token_cache_ttl

    @staticmethod
    def cache_key(account_id: str) -> str:
        return generate_cache_key(TOKEN_CACHE_PREFIX, normalize_account_id(account_id))

    async def resolve(self, account_id: str, pool: List[Credential]) -> Optional[Credential]:
        """Credential Meta accepts for `account_id`, or None if no candidate works."""
        act_id = normalize_account_id(account_id)
        key = self.cache_key(act_id)

        cached = await self._load(key, pool)
        if cached is not None:
            logger.debug(f"Token cache hit ({cached.owner_label})", extra={"account_id": act_id})
            return cached

        for candidate in pool:
            if await self._probe(act_id, candidate):
                await self._save(key, act_id, candidate)
                logger.info(
                    f"Resolved token via {candidate.owner_label}", extra={"account_id": act_id}
                )
                return candidate

        logger.warning(
            f"No credential in pool of {len(pool)} can access account",
            extra={"account_id": act_id},
        )
        return None

    async def require(self, account_id: str, pool: List[Credential]) -> Credential:
        credential = await self.resolve(account_id, pool)
        if credential is None:
            raise AuthenticationError(
                f"Ad account {normalize_account_id(account_id)} is not connected. "
                "Reconnect a Facebook identity that can manage it."
            )
        return credential

    async def forget(self, account_id: str) -> None:
        await self.store.delete(self.cache_key(account_id))

    # ── Internals ──

    async def _probe(self, act_id: str, candidate: Credential) -> bool:
        try:
            await self.client.get(act_id, candidate.token, {"fields": ACCOUNT_PROBE_FIELDS})
        except MetaAPIError as e:
            logger.debug(
                f"Probe rejected for {candidate.owner_label}: {e}",
                extra={"account_id": act_id, "status_code": e.status_code},
            )
            return False
        return True

    async def _load(self, key: str, pool: List[Credential]) -> Optional[Credential]:
        entry = await self.store.get(key)
        if not entry:
            return None
        try:
            token = decrypt_token(entry["token"])
        except (TokenDecryptionError, KeyError):
            await self.store.delete(key)
            return None
        # A token that has left the caller's pool is not theirs to use
        for cred in pool:
            if cred.token == token:
                return cred
        return None

    async def _save(self, key: str, act_id: str, credential: Credential) -> None:
        resolution = CredentialResolution(
            account_id=act_id,
            credential=credential,
            resolved_at=datetime.now(timezone.utc),
        )
        await self.store.set(
            key,
            {
                "account_id": resolution.account_id,
                "token": encrypt_token(credential.token),
                "owner_label": credential.owner_label,
                "resolved_at": resolution.resolved_at.isoformat(),
            },
            self.ttl_seconds,
        )
