import httpx
import pytest

from centxo.connectors.meta.client import MetaAPIError
from centxo.connectors.meta.retry import RetryPolicy, fixed_delay
from centxo.core.errors import (
    AppNotLiveError,
    ErrorCategory,
    RemoteFatalError,
    RemoteTransientError,
)
from centxo.models.domain import Credential, IceBreaker, RemoteKind
from centxo.provisioning.provisioner import ResourceProvisioner

from conftest import body_of, graph_error

TOKEN = Credential(token="tok", owner_label="own")


def provisioner(graph, fake_sleep, max_pages=None):
    policy = RetryPolicy(max_attempts=2, delay=fixed_delay(2.5), sleep=fake_sleep)
    return ResourceProvisioner("123", graph.client(), policy, max_pages=max_pages)


# ── Retry policy ──


async def test_retry_policy_retries_transient_once(fake_sleep):
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise MetaAPIError("Service unavailable", status_code=503)
        return "ok"

    policy = RetryPolicy(max_attempts=2, delay=fixed_delay(2.5), sleep=fake_sleep)
    assert await policy.run(flaky) == "ok"
    assert len(attempts) == 2
    assert fake_sleep.calls == [2.5]


async def test_retry_policy_does_not_retry_fatal(fake_sleep):
    attempts = []

    async def rejected():
        attempts.append(1)
        raise MetaAPIError("Invalid parameter", status_code=400, error_code=100)

    with pytest.raises(MetaAPIError):
        await RetryPolicy(sleep=fake_sleep).run(rejected)
    assert len(attempts) == 1
    assert fake_sleep.calls == []


def test_throttling_codes_count_as_transient():
    assert MetaAPIError("limit", status_code=400, error_code=17).is_transient
    assert MetaAPIError("limit", status_code=429).is_transient
    assert not MetaAPIError("bad", status_code=400, error_code=100).is_transient


# ── create ──


async def test_create_sets_parent_field_and_returns_id(graph, fake_sleep):
    graph.on("POST", r"act_123/adsets", {"id": "as_1"})
    remote_id = await provisioner(graph, fake_sleep).create(
        RemoteKind.ADSET, "c_1", {"name": "AdSet 1"}, TOKEN
    )
    assert remote_id == "as_1"
    sent = body_of(graph.calls("POST", r"act_123/adsets")[0])
    assert sent == {"name": "AdSet 1", "campaign_id": "c_1"}


async def test_create_fails_fast_with_platform_detail(graph, fake_sleep):
    graph.on(
        "POST", r"act_123/campaigns",
        graph_error(
            "Invalid parameter", code=100,
            error_user_msg="Budget is too low", error_user_title="Budget Too Low",
        ),
    )
    with pytest.raises(RemoteFatalError) as exc:
        await provisioner(graph, fake_sleep).create(RemoteKind.CAMPAIGN, None, {}, TOKEN)

    assert "Budget is too low — Invalid parameter — Budget Too Low (code 100)" in exc.value.message
    assert exc.value.category == ErrorCategory.FIX_INPUT
    assert len(graph.calls("POST", r"act_123/campaigns")) == 1
    assert fake_sleep.calls == []


async def test_app_not_live_is_distinguished(graph, fake_sleep):
    graph.on("POST", r"act_123/adcreatives", graph_error("Not live", code=100, subcode=1885183))
    with pytest.raises(AppNotLiveError) as exc:
        await provisioner(graph, fake_sleep).create(RemoteKind.CREATIVE, None, {}, TOKEN)
    assert exc.value.category == ErrorCategory.CONTACT_SUPPORT
    assert exc.value.error_subcode == 1885183


async def test_transient_error_retried_then_surfaced(graph, fake_sleep):
    graph.on("POST", r"act_123/ads", graph_error("Temporary", code=2, status=500))
    with pytest.raises(RemoteTransientError) as exc:
        await provisioner(graph, fake_sleep).create(RemoteKind.AD, "as_1", {}, TOKEN)
    assert exc.value.category == ErrorCategory.TRY_AGAIN_LATER
    assert len(graph.calls("POST", r"act_123/ads")) == 2
    assert fake_sleep.calls == [2.5]


async def test_transient_error_then_success(graph, fake_sleep):
    graph.on("POST", r"act_123/ads", graph_error("Busy", code=17), {"id": "ad_1"})
    assert await provisioner(graph, fake_sleep).create(RemoteKind.AD, "as_1", {}, TOKEN) == "ad_1"


# ── list_all ──


async def test_list_all_follows_cursors(graph, fake_sleep):
    next_url = "https://graph.facebook.com/v22.0/act_123/campaigns?after=abc"
    graph.on(
        "GET", r"act_123/campaigns",
        {"data": [{"id": "1"}], "paging": {"next": next_url}},
        {"data": [{"id": "2"}]},
    )
    result = await provisioner(graph, fake_sleep).list_all("campaigns", TOKEN)
    assert [r["id"] for r in result.items] == ["1", "2"]
    assert result.error is None
    assert result.pages == 2


async def test_list_all_keeps_partial_results_on_page_error(graph, fake_sleep):
    next_url = "https://graph.facebook.com/v22.0/act_123/campaigns?after=abc"
    graph.on(
        "GET", r"act_123/campaigns",
        {"data": [{"id": "1"}], "paging": {"next": next_url}},
        graph_error("Unsupported get request", code=100),
    )
    result = await provisioner(graph, fake_sleep).list_all("campaigns", TOKEN)
    assert [r["id"] for r in result.items] == ["1"]
    assert "Unsupported get request" in result.error


async def test_list_all_stops_at_page_limit(graph, fake_sleep):
    next_url = "https://graph.facebook.com/v22.0/act_123/ads?after=x"
    graph.on("GET", r"act_123/ads", {"data": [{"id": "a"}], "paging": {"next": next_url}})
    result = await provisioner(graph, fake_sleep, max_pages=3).list_all("ads", TOKEN)
    assert result.pages == 3
    assert len(result.items) == 3


# ── Supporting calls ──


async def test_resolve_interests_drops_unknown_names(graph, fake_sleep):
    def search(request):
        q = request.url.params["q"]
        data = [{"id": "600", "name": "Cooking"}] if q == "Cooking" else []
        return httpx.Response(200, json={"data": data})

    graph.on("GET", r"search", search)
    found = await provisioner(graph, fake_sleep).resolve_interests(["Cooking", "Nonsense"], TOKEN)
    assert found == [{"id": "600", "name": "Cooking"}]


async def test_beneficiary_falls_back_to_first_agency(graph, fake_sleep):
    graph.on("GET", r"act_123", {"id": "act_123"})
    graph.on("GET", r"act_123/agencies", {"data": [{"id": "987", "name": "Agency"}]})
    assert await provisioner(graph, fake_sleep).find_beneficiary(TOKEN) == "987"


async def test_beneficiary_prefers_dsa_default(graph, fake_sleep):
    graph.on("GET", r"act_123", {"default_dsa_beneficiary": "Shop Co"})
    graph.on("GET", r"act_123/agencies", {"data": [{"id": "987"}]})
    assert await provisioner(graph, fake_sleep).find_beneficiary(TOKEN) == "Shop Co"


async def test_upload_image_returns_hash(graph, fake_sleep):
    graph.on("POST", r"act_123/adimages", {"images": {"photo.jpg": {"hash": "h123"}}})
    assert await provisioner(graph, fake_sleep).upload_image("photo.jpg", b"\xff\xd8", TOKEN) == "h123"


async def test_video_cover_uses_thumbnail_when_no_picture(graph, fake_sleep):
    graph.on("GET", r"v_1", {"thumbnails": {"data": [{"uri": "https://cdn/thumb.jpg"}]}})
    assert await provisioner(graph, fake_sleep).fetch_video_cover("v_1", TOKEN) == "https://cdn/thumb.jpg"


async def test_ice_breakers_skip_when_unchanged(graph, fake_sleep):
    current = [{"question": "Price?", "payload": "PRICE"}]
    graph.on("GET", r"page_1/messenger_profile", {"data": [{"ice_breakers": current}]})
    changed = await provisioner(graph, fake_sleep).set_ice_breakers(
        "page_1", [IceBreaker(question="Price?", payload="PRICE")], TOKEN
    )
    assert changed is False
    assert graph.calls("POST", r"page_1/messenger_profile") == []
