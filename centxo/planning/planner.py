"""Centxo — Structure Planner.

Turns requested counts plus copy/targeting variants into an index-addressable
CampaignPlan → AdSetPlan → AdPlan tree. Pure: no I/O, no AI, no clock.

Fan-out is uniform ceiling division, so totals may exceed what was asked for:
    C=1, S=3, A=2  →  3 ad sets × 1 ad = 3 ads
"""

import math
from typing import Dict, List, Optional, Tuple

from centxo.core.errors import InvalidRequestError
from centxo.core.logging import get_logger
from centxo.models.domain import (
    DEFAULT_AGE_MAX,
    DEFAULT_AGE_MIN,
    AdPlan,
    AdSetPlan,
    CampaignPlan,
    CopyOverride,
    CopyVariant,
    StructureCounts,
    StructurePlan,
    TargetingGroup,
)

logger = get_logger("planning")

# Daily budgets in minor units
DEFAULT_BUDGETS: Dict[str, int] = {"THB": 40000, "USD": 1000}
FALLBACK_BUDGET = 1000
MINIMUM_BUDGETS: Dict[str, int] = {"THB": 4000}
GLOBAL_FLOOR_THRESHOLD = 50
GLOBAL_FLOOR = 500

MAX_INTERESTS_PER_GROUP = 5
FALLBACK_INTERESTS = 3


# ── Indexing ──


def fan_out(counts: StructureCounts) -> Tuple[int, int]:
    """(ad sets per campaign, ads per ad set)."""
    validate_counts(counts)
    return (
        math.ceil(counts.ad_sets / counts.campaigns),
        math.ceil(counts.ads / counts.ad_sets),
    )


def validate_counts(counts: StructureCounts) -> None:
    bad = [
        name
        for name, value in (
            ("campaigns", counts.campaigns),
            ("ad_sets", counts.ad_sets),
            ("ads", counts.ads),
        )
        if value < 1
    ]
    if bad:
        raise InvalidRequestError(
            "Counts must be at least 1", details=[f"{name} must be >= 1" for name in bad]
        )


def global_ad_set_index(campaign_index: int, local_index: int, ad_sets_per_campaign: int) -> int:
    return campaign_index * ad_sets_per_campaign + local_index


def global_ad_index(
    campaign_index: int,
    ad_set_index: int,
    ad_index: int,
    ad_sets_per_campaign: int,
    ads_per_ad_set: int,
) -> int:
    return (
        campaign_index * ad_sets_per_campaign * ads_per_ad_set
        + ad_set_index * ads_per_ad_set
        + ad_index
    )


def copy_index(global_index: int, variant_count: int) -> int:
    """Variant for global ad index `g` is `g mod k`."""
    if variant_count < 1:
        raise InvalidRequestError("At least one copy variant is required")
    return global_index % variant_count


def targeting_index(global_ad_set: int, group_count: int) -> int:
    return min(global_ad_set, group_count - 1)


# ── Targeting ──


def _interest_pool(groups: List[TargetingGroup], base_interests: List[str]) -> List[str]:
    pool: List[str] = []
    for name in [i for g in groups for i in g.interests] + list(base_interests):
        name = (name or "").strip()
        if name and name not in pool:
            pool.append(name)
    return pool


def expand_targeting(
    groups: List[TargetingGroup],
    total_ad_sets: int,
    base_interests: Optional[List[str]] = None,
) -> List[TargetingGroup]:
    """Make at least `total_ad_sets` groups out of however many were supplied.

    Pool element j goes to synthesized group j mod total, at most five per
    group. A group left empty borrows the pool's first three interests.
    """
    if len(groups) >= total_ad_sets:
        return list(groups)

    pool = _interest_pool(groups, base_interests or [])
    expanded: List[TargetingGroup] = []
    for i in range(total_ad_sets):
        interests = [pool[j] for j in range(len(pool)) if j % total_ad_sets == i]
        interests = interests[:MAX_INTERESTS_PER_GROUP] or pool[:FALLBACK_INTERESTS]
        name = groups[i].name if i < len(groups) and groups[i].name else f"Targeting Group {i + 1}"
        expanded.append(TargetingGroup(name=name, interests=interests))

    logger.info(
        f"Expanded {len(groups)} targeting groups to {total_ad_sets} "
        f"from a pool of {len(pool)} interests"
    )
    return expanded


# ── Normalization ──


def normalize_budget(amount: Optional[float], currency: str) -> int:
    """Major-unit amount → integer minor units, clamped to the currency minimum."""
    currency = (currency or "USD").upper()
    if amount is None or amount <= 0:
        minor = DEFAULT_BUDGETS.get(currency, FALLBACK_BUDGET)
    else:
        minor = math.floor(amount * 100 + 0.5)

    minimum = MINIMUM_BUDGETS.get(currency)
    if minimum is not None and minor < minimum:
        logger.info(f"Budget {minor} below {currency} minimum, raised to {minimum}")
        minor = minimum
    if minor < GLOBAL_FLOOR_THRESHOLD:
        minor = GLOBAL_FLOOR
    return minor


def normalize_age(age_min: Optional[int], age_max: Optional[int]) -> Tuple[int, int]:
    lo = age_min if age_min else DEFAULT_AGE_MIN
    hi = age_max if age_max else DEFAULT_AGE_MAX
    if lo > hi:
        lo, hi = hi, lo
    return lo, hi


# ── Planner ──


class StructurePlanner:
    """Builds a StructurePlan. Callers fill AI defaults before calling `plan`."""

    def plan(
        self,
        counts: StructureCounts,
        targeting_groups: List[TargetingGroup],
        copy_variants: List[CopyVariant],
        budget_amount: Optional[float],
        currency: str,
        age_range: Tuple[Optional[int], Optional[int]] = (None, None),
        base_interests: Optional[List[str]] = None,
        copy_override: Optional[CopyOverride] = None,
    ) -> StructurePlan:
        ad_sets_per_campaign, ads_per_ad_set = fan_out(counts)
        if not copy_variants:
            raise InvalidRequestError("At least one copy variant is required")

        total_ad_sets = counts.campaigns * ad_sets_per_campaign
        groups = expand_targeting(targeting_groups, total_ad_sets, base_interests)
        if not groups:
            groups = [TargetingGroup(name="Targeting Group 1", interests=[])]
        age_min, age_max = normalize_age(*age_range)

        override = copy_override if counts.ads == 1 else None

        campaigns: List[CampaignPlan] = []
        for c in range(counts.campaigns):
            ad_sets: List[AdSetPlan] = []
            for s in range(ad_sets_per_campaign):
                g = global_ad_set_index(c, s, ad_sets_per_campaign)
                t_idx = targeting_index(g, len(groups))
                ads: List[AdPlan] = []
                for a in range(ads_per_ad_set):
                    ad_g = global_ad_index(c, s, a, ad_sets_per_campaign, ads_per_ad_set)
                    k = copy_index(ad_g, len(copy_variants))
                    variant = copy_variants[k]
                    primary_text, headline = variant.primary_text, variant.headline
                    if override is not None:
                        if override.primary_text is not None:
                            primary_text = override.primary_text
                        if override.headline is not None:
                            headline = override.headline
                    ads.append(
                        AdPlan(
                            global_index=ad_g,
                            local_index=a,
                            copy_index=k,
                            primary_text=primary_text,
                            headline=headline,
                        )
                    )
                ad_sets.append(
                    AdSetPlan(
                        global_index=g,
                        local_index=s,
                        targeting_index=t_idx,
                        targeting=groups[t_idx],
                        ads=ads,
                    )
                )
            campaigns.append(CampaignPlan(index=c, ad_sets=ad_sets))

        plan = StructurePlan(
            ad_sets_per_campaign=ad_sets_per_campaign,
            ads_per_ad_set=ads_per_ad_set,
            budget_minor_units=normalize_budget(budget_amount, currency),
            currency=(currency or "USD").upper(),
            age_min=age_min,
            age_max=age_max,
            targeting_groups=groups,
            copy_variants=list(copy_variants),
            campaigns=campaigns,
        )
        logger.info(
            f"Planned {counts.campaigns} campaigns, {plan.total_ad_sets} ad sets, "
            f"{plan.total_ads} ads"
        )
        return plan
