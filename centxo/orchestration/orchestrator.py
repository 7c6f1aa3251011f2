"""Centxo — Campaign Orchestrator.

Drives one provisioning run:
  PLANNING → CREATING_CAMPAIGN(i) → CREATING_ADSET(i,s)
           → CREATING_CREATIVE(i,s,a) → CREATING_AD(i,s,a) → DONE
with FAILED(stage, detail) reachable from any state.

Creation is serial. Siblings at one level are separated by a random
150-300 ms pause. The first hard failure stops the run; whatever was already
created stays live on Meta and is reported back, never deleted.
"""

import asyncio
import random
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlmodel import Session

from centxo.ai.base_provider import AIProvider
from centxo.cache.swr import SWRCache
from centxo.config import settings
from centxo.connectors.meta.client import MetaAPIError, MetaClient
from centxo.connectors.meta.endpoints import normalize_account_id
from centxo.connectors.meta.retry import RetryPolicy
from centxo.core.errors import CentxoError, InvalidRequestError, ProvisioningFailure, RemoteError
from centxo.core.logging import get_logger
from centxo.credentials.pool import build_pool, load_credential_sources
from centxo.credentials.resolver import CredentialResolver
from centxo.media.storage import MediaAsset, MediaKind, MediaStorage
from centxo.models.domain import (
    AdInsights,
    CopyOverride,
    CopyVariant,
    Credential,
    IceBreaker,
    RemoteKind,
    RemoteResource,
    StructureCounts,
    StructurePlan,
    TargetingGroup,
)
from centxo.orchestration import payloads
from centxo.planning.planner import StructurePlanner, validate_counts
from centxo.provisioning.provisioner import ResourceProvisioner
from centxo.services.audit import (
    ACTION_BOOST_POST,
    ACTION_CREATE_CAMPAIGN,
    past_interests,
    record_audit,
    record_remote_resource,
)

logger = get_logger("orchestrator")


class OrchestratorState(str, Enum):
    PLANNING = "PLANNING"
    CREATING_CAMPAIGN = "CREATING_CAMPAIGN"
    CREATING_ADSET = "CREATING_ADSET"
    CREATING_CREATIVE = "CREATING_CREATIVE"
    CREATING_AD = "CREATING_AD"
    DONE = "DONE"
    FAILED = "FAILED"


class CreateStructureRequest(BaseModel):
    """Everything a run needs besides the acting user."""

    account_id: str
    page_id: str
    media: MediaAsset
    counts: StructureCounts = Field(default_factory=StructureCounts)
    objective: str = "OUTCOME_ENGAGEMENT"
    daily_budget: Optional[float] = None
    country: str = "TH"
    placements: List[str] = Field(default_factory=lambda: ["facebook", "instagram", "messenger"])
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    exclusion_audience_ids: List[str] = Field(default_factory=list)
    copy_override: Optional[CopyOverride] = None
    targeting_groups: Optional[List[TargetingGroup]] = None
    copy_variants: Optional[List[CopyVariant]] = None
    ice_breakers: Optional[List[IceBreaker]] = None
    greeting: Optional[str] = None
    beneficiary_id: Optional[str] = None
    product_context: Optional[str] = None


class CampaignOrchestrator:
    def __init__(
        self,
        session: Session,
        client: MetaClient,
        cache: SWRCache,
        media_storage: MediaStorage,
        ai_provider: Optional[AIProvider] = None,
        resolver: CredentialResolver | None = None,
        planner: StructurePlanner | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.session = session
        self.client = client
        self.cache = cache
        self.media_storage = media_storage
        self.ai_provider = ai_provider
        self.resolver = resolver or CredentialResolver(client, cache.store)
        self.planner = planner or StructurePlanner()
        self.retry_policy = retry_policy or RetryPolicy.for_creates()
        self.sleep = sleep
        self.rng = rng or random.Random()

        self.state = OrchestratorState.PLANNING
        self.stage = OrchestratorState.PLANNING.value
        self.created: List[Dict[str, Any]] = []

    # ── State ──

    def _enter(self, state: OrchestratorState, *indices: int) -> None:
        self.state = state
        self.stage = f"{state.value}({','.join(str(i) for i in indices)})" if indices else state.value
        logger.debug(f"→ {self.stage}", extra={"stage": self.stage})

    async def _pace(self) -> None:
        delay = self.rng.uniform(settings.pacing_min_ms, settings.pacing_max_ms) / 1000
        await self.sleep(delay)

    # ── Entry point ──

    async def create_structure(
        self,
        user_id: str,
        request: CreateStructureRequest,
        session_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create campaigns → ad sets → creatives → ads for one ad account.

        Raises:
            InvalidRequestError: bad counts, age range or media, before any call.
            AuthenticationError: no credential in the user's pool can act on the account.
            ProvisioningFailure: a remote step failed. `created` lists what is live.
        """
        started = time.monotonic()
        run_id = uuid.uuid4().hex
        account_id = normalize_account_id(request.account_id)
        self.created = []
        self._enter(OrchestratorState.PLANNING)

        validate_counts(request.counts)
        request.media.validate_source()
        if not request.page_id:
            raise InvalidRequestError("page_id is required")

        pool = build_pool(load_credential_sources(self.session, user_id, session_token))
        credential = await self.resolver.require(account_id, pool)
        provisioner = ResourceProvisioner(account_id, self.client, self.retry_policy)

        try:
            result = await self._run(user_id, run_id, request, provisioner, credential)
        except ProvisioningFailure:
            raise
        except CentxoError as e:
            raise await self._fail(user_id, run_id, account_id, e.message, e) from e
        except Exception as e:
            logger.exception(f"Run {run_id} hit an unexpected error", extra={"stage": self.stage})
            raise await self._fail(user_id, run_id, account_id, str(e), None) from e

        logger.info(
            f"Run {run_id} done: {result['structure']}",
            extra={"account_id": account_id, "duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return result

    async def _fail(
        self,
        user_id: str,
        run_id: str,
        account_id: str,
        detail: str,
        cause: Optional[CentxoError],
    ) -> ProvisioningFailure:
        failure = ProvisioningFailure(self.stage, detail, list(self.created), cause)
        self._enter(OrchestratorState.FAILED)
        logger.error(
            f"Run {run_id} failed: {failure.message}; {len(self.created)} resources left live",
            extra={"account_id": account_id, "stage": failure.stage},
        )
        if self.created:
            await self.cache.invalidate_namespace(user_id)
        return failure

    # ── Run ──

    async def _run(
        self,
        user_id: str,
        run_id: str,
        request: CreateStructureRequest,
        provisioner: ResourceProvisioner,
        credential: Credential,
    ) -> Dict[str, Any]:
        account = await provisioner.fetch_account(credential)
        country = (request.country or account.country_code or "US").upper()

        beneficiary_id = None
        if payloads.requires_beneficiary(country):
            beneficiary_id = request.beneficiary_id or await provisioner.find_beneficiary(credential)
            if not beneficiary_id:
                raise InvalidRequestError(
                    f"Ads targeting {country} need a beneficiary. Set a default DSA "
                    "beneficiary on the ad account or pass beneficiary_id."
                )

        insights = await self._insights(user_id, request)
        plan = self.planner.plan(
            request.counts,
            insights.interest_groups or [],
            insights.ad_copy_variations or [],
            request.daily_budget,
            account.currency,
            (request.age_min or insights.age_min, request.age_max or insights.age_max),
            base_interests=insights.interests,
            copy_override=request.copy_override,
        )
        media = await self._prepare_media(request.media, provisioner, credential)
        welcome = payloads.welcome_message(insights.ice_breakers or [], insights.greeting)

        campaign_ids = await self._create_tree(
            user_id, run_id, request, plan, media, welcome, insights,
            provisioner, credential, country, beneficiary_id,
        )

        self._enter(OrchestratorState.DONE)
        if insights.ice_breakers and not media.post_id:
            await self._register_ice_breakers(request.page_id, insights.ice_breakers, provisioner, credential)

        boost = request.media.kind == MediaKind.EXISTING_POST
        structure = {
            "campaigns": len(plan.campaigns),
            "ad_sets": plan.total_ad_sets,
            "ads": plan.total_ads,
        }
        record_audit(
            self.session,
            user_id,
            ACTION_BOOST_POST if boost else ACTION_CREATE_CAMPAIGN,
            campaign_ids[0],
            {
                "run_id": run_id,
                "account_id": provisioner.account_id,
                "structure": structure,
                "category": insights.product_category,
                "age_range": f"{plan.age_min}-{plan.age_max}",
                "media_type": media.media_type,
            },
        )
        await self.cache.invalidate_namespace(user_id)

        return {
            "run_id": run_id,
            "campaign_id": campaign_ids[0],
            "campaign_ids": campaign_ids,
            "structure": structure,
            "ai_insights": {
                "category": insights.product_category,
                "headline": insights.headline,
                "primary_text": insights.primary_text,
                "interests": insights.interests,
                "age_min": plan.age_min,
                "age_max": plan.age_max,
                "confidence": insights.confidence,
                "targeting_groups": [g.name for g in plan.targeting_groups],
            },
            "media_type": media.media_type,
        }

    async def _create_tree(
        self,
        user_id: str,
        run_id: str,
        request: CreateStructureRequest,
        plan: StructurePlan,
        media: payloads.CreativeMedia,
        welcome: Any,
        insights: AdInsights,
        provisioner: ResourceProvisioner,
        credential: Credential,
        country: str,
        beneficiary_id: Optional[str],
    ) -> List[str]:
        boost = media.post_id is not None
        campaign_ids: List[str] = []

        for campaign in plan.campaigns:
            c = campaign.index
            if c > 0:
                await self._pace()
            self._enter(OrchestratorState.CREATING_CAMPAIGN, c)
            campaign_id = await provisioner.create(
                RemoteKind.CAMPAIGN, None,
                payloads.campaign_payload(c, request.objective, boost=boost),
                credential,
            )
            self._record(run_id, user_id, provisioner, RemoteKind.CAMPAIGN, campaign_id, None)
            campaign_ids.append(campaign_id)

            for ad_set in campaign.ad_sets:
                s = ad_set.local_index
                if s > 0:
                    await self._pace()
                self._enter(OrchestratorState.CREATING_ADSET, c, s)
                interests = (
                    await provisioner.resolve_interests(ad_set.targeting.interests, credential)
                    if ad_set.targeting.interests
                    else []
                )
                adset_id = await provisioner.create(
                    RemoteKind.ADSET, campaign_id,
                    payloads.adset_payload(
                        plan, ad_set, interests, request.page_id, country,
                        request.placements, request.exclusion_audience_ids, beneficiary_id,
                    ),
                    credential,
                )
                self._record(
                    run_id, user_id, provisioner, RemoteKind.ADSET, adset_id, campaign_id,
                    {"targeting_group": ad_set.targeting.name, "interests": [i["name"] for i in interests]},
                )

                for ad in ad_set.ads:
                    a = ad.local_index
                    if a > 0:
                        await self._pace()
                    self._enter(OrchestratorState.CREATING_CREATIVE, c, s, a)
                    creative_id = await provisioner.create(
                        RemoteKind.CREATIVE, None,
                        payloads.creative_payload(request.page_id, media, ad, welcome, f" - {run_id[:8]}"),
                        credential,
                    )
                    self._record(run_id, user_id, provisioner, RemoteKind.CREATIVE, creative_id, None)

                    self._enter(OrchestratorState.CREATING_AD, c, s, a)
                    ad_id = await provisioner.create(
                        RemoteKind.AD, adset_id,
                        payloads.ad_payload(ad, creative_id, insights.product_category or ""),
                        credential,
                    )
                    self._record(
                        run_id, user_id, provisioner, RemoteKind.AD, ad_id, adset_id,
                        {"creative_id": creative_id, "copy_index": ad.copy_index},
                    )
        return campaign_ids

    def _record(
        self,
        run_id: str,
        user_id: str,
        provisioner: ResourceProvisioner,
        kind: RemoteKind,
        remote_id: str,
        parent_id: Optional[str],
        details: Dict[str, Any] | None = None,
    ) -> None:
        resource = RemoteResource(kind=kind, remote_id=remote_id, parent_remote_id=parent_id)
        self.created.append(resource.model_dump(mode="json"))
        record_remote_resource(self.session, run_id, user_id, provisioner.account_id, resource, details)

    # ── Collaborators ──

    async def _insights(self, user_id: str, request: CreateStructureRequest) -> AdInsights:
        """AI suggestions merged with manual overrides, always fully populated."""
        manual_targeting = [g for g in request.targeting_groups or [] if g.interests]
        manual_copy = [v for v in request.copy_variants or [] if v.primary_text or v.headline]

        raw = AdInsights()
        if self.ai_provider is not None and not (manual_targeting and manual_copy):
            raw = await self._analyze(user_id, request)

        updates: Dict[str, Any] = {}
        if manual_targeting:
            updates["interest_groups"] = manual_targeting
        if manual_copy:
            updates["ad_copy_variations"] = manual_copy
        if request.ice_breakers:
            updates["ice_breakers"] = request.ice_breakers
        if request.greeting:
            updates["greeting"] = request.greeting
        return raw.model_copy(update=updates).with_defaults()

    async def _analyze(self, user_id: str, request: CreateStructureRequest) -> AdInsights:
        media = request.media
        image_path = media.thumbnail_path if media.is_video else media.path
        try:
            image_bytes = await self.media_storage.read_bytes(image_path) if image_path else None
            mime = self.media_storage.mime_type(image_path) if image_path else None
            return await self.ai_provider.analyze_media(
                image_bytes,
                mime,
                request.counts,
                product_context=request.product_context,
                past_interests=past_interests(self.session, user_id),
            )
        except Exception as e:
            # Copy and targeting fall back to defaults; the run goes on
            logger.warning(f"AI analysis unavailable, using defaults: {e}")
            return AdInsights()

    async def _prepare_media(
        self, asset: MediaAsset, provisioner: ResourceProvisioner, credential: Credential
    ) -> payloads.CreativeMedia:
        if asset.kind == MediaKind.EXISTING_POST:
            return payloads.CreativeMedia(post_id=asset.post_id)

        if asset.kind == MediaKind.IMAGE:
            content = await self.media_storage.read_bytes(asset.path)
            image_hash = await provisioner.upload_image(_filename(asset.path), content, credential)
            return payloads.CreativeMedia(image_hash=image_hash)

        if asset.kind == MediaKind.VIDEO:
            content = await self.media_storage.read_bytes(asset.path)
            video_id = await provisioner.upload_video(_filename(asset.path), content, credential)
        else:
            video_id = asset.remote_video_id

        media = payloads.CreativeMedia(video_id=video_id)
        if asset.thumbnail_path:
            thumb = await self.media_storage.read_bytes(asset.thumbnail_path)
            media.thumbnail_hash = await provisioner.upload_image(
                _filename(asset.thumbnail_path), thumb, credential
            )
        else:
            media.cover_url = await provisioner.fetch_video_cover(video_id, credential)
        if not media.thumbnail_hash and not media.cover_url:
            raise InvalidRequestError(
                "Video creatives need a cover image. Upload a thumbnail with the video."
            )
        return media

    async def _register_ice_breakers(
        self,
        page_id: str,
        ice_breakers: List[IceBreaker],
        provisioner: ResourceProvisioner,
        credential: Credential,
    ) -> None:
        try:
            await provisioner.set_ice_breakers(page_id, ice_breakers, credential)
        except (MetaAPIError, RemoteError) as e:
            logger.warning(f"Ice breaker registration skipped for page {page_id}: {e}")


def _filename(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]
