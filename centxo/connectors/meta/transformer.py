"""Centxo — Meta Raw → Roster Transformer.

Converts raw Graph API campaign / ad rows (with their embedded insights
sub-resource) into the flat records served by the read paths.
"""

from typing import Any, Dict, List

MESSAGING_STARTED = "onsite_conversion.messaging_conversation_started_7d"
MESSAGING_FIRST_REPLY = "onsite_conversion.messaging_first_reply"
POST_ENGAGEMENT = "post_engagement"


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _action_value(actions: List[Dict[str, Any]], action_type: str) -> int:
    for action in actions:
        if action.get("action_type") == action_type:
            return _safe_int(action.get("value", 0))
    return 0


def _first_insight(row: Dict[str, Any]) -> Dict[str, Any]:
    data = (row.get("insights") or {}).get("data") or []
    return data[0] if data else {}


def _extract_metrics(row: Dict[str, Any]) -> Dict[str, Any]:
    """Spend, reach and messaging results from an embedded insights row."""
    insight = _first_insight(row)
    actions = insight.get("actions") or []
    spend = _safe_float(insight.get("spend", 0))
    messages = _action_value(actions, MESSAGING_STARTED)
    return {
        "spend": spend,
        "messages": messages,
        "results": messages,
        "cost_per_result": spend / messages if messages > 0 else 0.0,
        "reach": _safe_int(insight.get("reach", 0)),
        "impressions": _safe_int(insight.get("impressions", 0)),
        "clicks": _safe_int(insight.get("clicks", 0)),
        "post_engagements": _action_value(actions, POST_ENGAGEMENT),
        "messaging_contacts": _action_value(actions, MESSAGING_FIRST_REPLY),
    }


def _from_minor(value: Any) -> float:
    return _safe_float(value or 0) / 100


def transform_campaign(
    row: Dict[str, Any], account_id: str, currency: str, lite: bool = False
) -> Dict[str, Any]:
    """Flatten one campaign row."""
    base = {
        "id": row.get("id", ""),
        "name": row.get("name", ""),
        "status": row.get("status", ""),
        "effective_status": row.get("effective_status", ""),
        "created_time": row.get("created_time", ""),
        "ad_account_id": account_id,
        "currency": currency,
    }
    if lite:
        base["metrics"] = {"spend": 0.0, "messages": 0, "results": 0, "cost_per_result": 0.0}
        return base

    ad_sets = [
        {
            "effective_status": a.get("effective_status", ""),
            "ads": [
                {"effective_status": ad.get("effective_status", "")}
                for ad in (a.get("ads") or {}).get("data", [])
            ],
        }
        for a in (row.get("adsets") or {}).get("data", [])
    ]
    metrics = _extract_metrics(row)
    metrics["budget"] = _from_minor(row.get("daily_budget") or row.get("lifetime_budget"))
    base.update(
        {
            "configured_status": row.get("configured_status", ""),
            "objective": row.get("objective", ""),
            "daily_budget": _from_minor(row.get("daily_budget")),
            "lifetime_budget": _from_minor(row.get("lifetime_budget")),
            "spend_cap": _from_minor(row.get("spend_cap")),
            "issues_info": row.get("issues_info") or [],
            "ad_sets": ad_sets,
            "metrics": metrics,
        }
    )
    return base


def transform_ad(row: Dict[str, Any], account_id: str, currency: str) -> Dict[str, Any]:
    """Flatten one ad row."""
    creative = row.get("creative") or {}
    targeting = (row.get("adset") or {}).get("targeting") or {}
    interests = [
        i.get("name", "")
        for spec in targeting.get("flexible_spec") or []
        for i in spec.get("interests") or []
    ]
    return {
        "id": row.get("id", ""),
        "name": row.get("name", ""),
        "status": row.get("status", ""),
        "effective_status": row.get("effective_status", ""),
        "adset_id": row.get("adset_id", ""),
        "adset_name": (row.get("adset") or {}).get("name", ""),
        "campaign_id": row.get("campaign_id", ""),
        "campaign_name": (row.get("campaign") or {}).get("name", ""),
        "created_time": row.get("created_time", ""),
        "thumbnail": creative.get("thumbnail_url") or creative.get("image_url") or "",
        "primary_text": creative.get("body", ""),
        "headline": creative.get("title", ""),
        "targeting": {
            "countries": (targeting.get("geo_locations") or {}).get("countries", []),
            "age_min": targeting.get("age_min"),
            "age_max": targeting.get("age_max"),
            "interests": interests,
        },
        "metrics": _extract_metrics(row),
        "ad_account_id": account_id,
        "currency": currency,
    }


def sort_newest_first(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Graph timestamps are ISO-8601 with a fixed offset, so they sort lexically
    return sorted(rows, key=lambda r: r.get("created_time") or "", reverse=True)
