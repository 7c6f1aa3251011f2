"""Centxo — Graph API request bodies for each level of the tree."""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Union

from centxo.models.domain import AdPlan, AdSetPlan, IceBreaker, StructurePlan

CTA_MESSAGE_PAGE = "MESSAGE_PAGE"
DEFAULT_GREETING = "Hi! How can we help you today?"
REGULATED_COUNTRIES = {"TH": "THAILAND_UNIVERSAL"}

MAX_ICE_BREAKERS = 4
MAX_ICE_BREAKER_TITLE = 80
MAX_ICE_BREAKER_RESPONSE = 300
MAX_GREETING = 300


@dataclass
class CreativeMedia:
    """Remote media ids the creatives point at. Exactly one source is set."""

    image_hash: Optional[str] = None
    video_id: Optional[str] = None
    thumbnail_hash: Optional[str] = None
    cover_url: Optional[str] = None
    post_id: Optional[str] = None

    @property
    def media_type(self) -> str:
        if self.post_id:
            return "existing_post"
        return "video" if self.video_id else "image"


def requires_beneficiary(country: str) -> bool:
    return country.upper() in REGULATED_COUNTRIES


def campaign_payload(index: int, objective: str, boost: bool = False, today: date | None = None) -> Dict[str, Any]:
    stamp = (today or date.today()).isoformat()
    label = "Boost Post" if boost else "Auto Campaign"
    return {
        "name": f"{label} {index + 1} - {stamp}",
        "objective": objective,
        "status": "ACTIVE",
        "special_ad_categories": ["NONE"],
        "is_adset_budget_sharing_enabled": False,
    }


def adset_payload(
    plan: StructurePlan,
    ad_set: AdSetPlan,
    interests: List[Dict[str, str]],
    page_id: str,
    country: str,
    placements: List[str],
    exclusion_audience_ids: List[str] | None = None,
    beneficiary_id: Optional[str] = None,
    today: date | None = None,
) -> Dict[str, Any]:
    targeting: Dict[str, Any] = {
        "geo_locations": {"countries": [country.upper()]},
        "age_min": plan.age_min,
        "age_max": plan.age_max,
        "publisher_platforms": placements,
        "targeting_automation": {"advantage_audience": 0},
    }
    if exclusion_audience_ids:
        targeting["excluded_custom_audiences"] = [{"id": a} for a in exclusion_audience_ids]
    if interests:
        targeting["flexible_spec"] = [
            {"interests": [{"id": i["id"], "name": i["name"]} for i in interests]}
        ]

    label = ad_set.targeting.name if interests else "Broad Targeting"
    payload: Dict[str, Any] = {
        "name": f"AdSet {ad_set.global_index + 1} - {label} - {(today or date.today()).isoformat()}",
        "optimization_goal": "CONVERSATIONS",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
        "daily_budget": plan.budget_minor_units,
        "status": "ACTIVE",
        "destination_type": "MESSENGER",
        "targeting": targeting,
        "promoted_object": {"page_id": page_id},
    }
    category = REGULATED_COUNTRIES.get(country.upper())
    if category and beneficiary_id:
        payload["regional_regulated_categories"] = [category]
        payload["regional_regulation_identities"] = {
            "universal_beneficiary": beneficiary_id,
            "universal_payer": beneficiary_id,
        }
    return payload


def welcome_message(
    ice_breakers: List[IceBreaker], greeting: Optional[str]
) -> Union[str, Dict[str, Any], None]:
    """Messenger welcome screen: ice breakers if any, else the plain greeting."""
    breakers = [b for b in ice_breakers if b.question.strip()][:MAX_ICE_BREAKERS]
    if breakers:
        return {
            "type": "VISUAL_EDITOR",
            "version": 2,
            "landing_screen_type": "welcome_message",
            "media_type": "text",
            "text_format": {
                "customer_action_type": "ice_breakers",
                "message": {
                    "ice_breakers": [
                        {
                            "title": b.question[:MAX_ICE_BREAKER_TITLE],
                            "response": b.payload[:MAX_ICE_BREAKER_RESPONSE],
                        }
                        for b in breakers
                    ],
                    "quick_replies": [],
                    "text": (greeting or DEFAULT_GREETING)[:MAX_GREETING],
                },
            },
            "user_edit": False,
            "surface": "visual_editor_new",
        }
    return greeting[:MAX_GREETING] if greeting else None


def creative_payload(
    page_id: str,
    media: CreativeMedia,
    ad: AdPlan,
    welcome: Union[str, Dict[str, Any], None] = None,
    name_suffix: str = "",
) -> Dict[str, Any]:
    name = f"Creative {ad.global_index + 1}{name_suffix}"
    if media.post_id:
        return {"name": name, "object_story_id": media.post_id}

    page_link = f"https://facebook.com/{page_id}"
    cta = {"type": CTA_MESSAGE_PAGE, "value": {"link": page_link}}
    if media.video_id:
        data: Dict[str, Any] = {
            "video_id": media.video_id,
            "message": ad.primary_text,
            "title": ad.headline,
            "call_to_action": cta,
        }
        if media.thumbnail_hash:
            data["image_hash"] = media.thumbnail_hash
        elif media.cover_url:
            data["image_url"] = media.cover_url
        spec_key = "video_data"
    else:
        data = {
            "image_hash": media.image_hash,
            "message": ad.primary_text,
            "link": page_link,
            "name": ad.headline,
            "call_to_action": cta,
        }
        spec_key = "link_data"
    if welcome:
        data["page_welcome_message"] = welcome
    return {"name": name, "object_story_spec": {"page_id": page_id, spec_key: data}}


def ad_payload(ad: AdPlan, creative_id: str, category: str) -> Dict[str, Any]:
    return {
        "name": f"Ad {ad.global_index + 1} - {category}",
        "creative": {"creative_id": creative_id},
        "status": "ACTIVE",
    }
