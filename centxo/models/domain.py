"""Centxo — Domain Schemas (request-scoped, not persisted)."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────
# CREDENTIALS
# ─────────────────────────────────────────────


class Credential(BaseModel):
    """An access token plus the label of the connected identity that owns it."""

    token: str
    owner_label: str = ""

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"<Credential {self.owner_label} ****{self.token[-4:]}>"


class CredentialResolution(BaseModel):
    """Which credential the platform accepted for an account."""

    account_id: str
    credential: Credential
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# REMOTE REFERENCES
# ─────────────────────────────────────────────


class AdAccount(BaseModel):
    id: str
    currency: str = "USD"
    country_code: str = ""
    name: str = ""


class RemoteKind(str, Enum):
    CAMPAIGN = "campaign"
    ADSET = "adset"
    CREATIVE = "creative"
    AD = "ad"


class RemoteResource(BaseModel):
    """A remote object created by a run."""

    kind: RemoteKind
    remote_id: str
    parent_remote_id: Optional[str] = None


# ─────────────────────────────────────────────
# AI COLLABORATOR OUTPUT
# ─────────────────────────────────────────────


class TargetingGroup(BaseModel):
    name: str = ""
    interests: List[str] = []


class CopyVariant(BaseModel):
    primary_text: str = ""
    headline: str = ""


class IceBreaker(BaseModel):
    question: str
    payload: str = ""


DEFAULT_PRIMARY_TEXT = "Interested? Send us a message and we'll reply right away 💬"
DEFAULT_HEADLINE = "✨ Message us to learn more!"
DEFAULT_CTA = "Send message"
DEFAULT_CATEGORY = "General products"
DEFAULT_AGE_MIN = 20
DEFAULT_AGE_MAX = 65


class AdInsights(BaseModel):
    """Copy and targeting suggested by the AI collaborator.

    Every field is optional because the collaborator may return any subset,
    or nothing at all. Call `with_defaults()` once before planning; the
    result is fully populated.
    """

    primary_text: Optional[str] = None
    headline: Optional[str] = None
    cta_message: Optional[str] = None
    interests: Optional[List[str]] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    product_category: Optional[str] = None
    confidence: Optional[float] = None
    interest_groups: Optional[List[TargetingGroup]] = None
    ad_copy_variations: Optional[List[CopyVariant]] = None
    ice_breakers: Optional[List[IceBreaker]] = None
    greeting: Optional[str] = None

    def with_defaults(self) -> "AdInsights":
        primary_text = (self.primary_text or "").strip() or DEFAULT_PRIMARY_TEXT
        headline = (self.headline or "").strip() or DEFAULT_HEADLINE
        interests = [i for i in (self.interests or []) if i]
        groups = [g for g in (self.interest_groups or []) if g.interests]
        if not groups:
            groups = [TargetingGroup(name="General", interests=interests)]
        variants = [
            CopyVariant(
                primary_text=v.primary_text or primary_text,
                headline=v.headline or headline,
            )
            for v in (self.ad_copy_variations or [])
            if v.primary_text or v.headline
        ]
        if not variants:
            variants = [CopyVariant(primary_text=primary_text, headline=headline)]

        age_min, age_max = self.age_min, self.age_max
        if not age_min or not age_max:
            age_min, age_max = DEFAULT_AGE_MIN, DEFAULT_AGE_MAX

        return AdInsights(
            primary_text=primary_text,
            headline=headline,
            cta_message=self.cta_message or DEFAULT_CTA,
            interests=interests,
            age_min=age_min,
            age_max=age_max,
            product_category=self.product_category or DEFAULT_CATEGORY,
            confidence=self.confidence if self.confidence is not None else 0.5,
            interest_groups=groups,
            ad_copy_variations=variants,
            ice_breakers=[b for b in (self.ice_breakers or []) if b.question.strip()],
            greeting=(self.greeting or "").strip() or None,
        )


# ─────────────────────────────────────────────
# PLANNING
# ─────────────────────────────────────────────


class StructureCounts(BaseModel):
    campaigns: int = 1
    ad_sets: int = 1
    ads: int = 1


class CopyOverride(BaseModel):
    """User-typed copy. An empty string (not None) means "send it empty"."""

    primary_text: Optional[str] = None
    headline: Optional[str] = None


class AdPlan(BaseModel):
    global_index: int
    local_index: int
    copy_index: int
    primary_text: str
    headline: str


class AdSetPlan(BaseModel):
    global_index: int
    local_index: int
    targeting_index: int
    targeting: TargetingGroup
    ads: List[AdPlan] = []


class CampaignPlan(BaseModel):
    index: int
    ad_sets: List[AdSetPlan] = []


class StructurePlan(BaseModel):
    ad_sets_per_campaign: int
    ads_per_ad_set: int
    budget_minor_units: int
    currency: str
    age_min: int
    age_max: int
    targeting_groups: List[TargetingGroup]
    copy_variants: List[CopyVariant]
    campaigns: List[CampaignPlan]

    @property
    def total_ad_sets(self) -> int:
        return sum(len(c.ad_sets) for c in self.campaigns)

    @property
    def total_ads(self) -> int:
        return sum(len(s.ads) for c in self.campaigns for s in c.ad_sets)


# ─────────────────────────────────────────────
# CACHE
# ─────────────────────────────────────────────


class CacheResult(BaseModel):
    value: Any = None
    is_stale: bool = False
    revalidating: bool = False
