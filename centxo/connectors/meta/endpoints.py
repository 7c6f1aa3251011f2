"""Centxo — Meta API Endpoints.

Edge names and field sets for every Graph API resource Centxo touches.
"""

from typing import Dict, Optional

from centxo.models.domain import RemoteKind

# Creation edges hang off the ad account: /act_<id>/<edge>
CREATE_EDGES: Dict[RemoteKind, str] = {
    RemoteKind.CAMPAIGN: "campaigns",
    RemoteKind.ADSET: "adsets",
    RemoteKind.CREATIVE: "adcreatives",
    RemoteKind.AD: "ads",
}

# Payload key that links a child to its parent's remote id
PARENT_FIELDS: Dict[RemoteKind, Optional[str]] = {
    RemoteKind.CAMPAIGN: None,
    RemoteKind.ADSET: "campaign_id",
    RemoteKind.CREATIVE: None,
    RemoteKind.AD: "adset_id",
}

ACCOUNT_FIELDS = "id,name,currency,business_country_code"
ACCOUNT_PROBE_FIELDS = "id,currency"
BENEFICIARY_FIELDS = "default_dsa_beneficiary"
VIDEO_COVER_FIELDS = "picture,thumbnails"

INSIGHT_FIELDS = "spend,actions,cost_per_action_type,reach,impressions,clicks"

CAMPAIGN_LITE_FIELDS = "id,name,status,effective_status,configured_status,created_time"


def insights_range(date_from: Optional[str], date_to: Optional[str]) -> str:
    """Graph field-expansion modifier for an insights date window."""
    if date_from and date_to:
        return f"time_range({{'since':'{date_from}','until':'{date_to}'}})"
    return "date_preset(last_30d)"


def campaign_fields(date_from: Optional[str] = None, date_to: Optional[str] = None) -> str:
    return (
        "id,name,status,effective_status,configured_status,objective,"
        "daily_budget,lifetime_budget,spend_cap,issues_info,"
        "adsets{effective_status,ads{effective_status}},created_time,"
        f"insights.{insights_range(date_from, date_to)}{{{INSIGHT_FIELDS}}}"
    )


def ad_fields(date_from: Optional[str] = None, date_to: Optional[str] = None) -> str:
    return (
        "id,name,status,effective_status,adset_id,campaign_id,created_time,"
        "adset{name,targeting},campaign{name},"
        "creative{thumbnail_url,image_url,body,title},"
        f"insights.{insights_range(date_from, date_to)}{{{INSIGHT_FIELDS}}}"
    )


def normalize_account_id(account_id: str) -> str:
    """`123`, `act_123` → `act_123`."""
    raw = account_id.strip()
    if raw.startswith("act_"):
        raw = raw[len("act_"):]
    return f"act_{raw}"
