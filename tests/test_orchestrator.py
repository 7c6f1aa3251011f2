import json
import random

import httpx
import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from centxo.cache.store import user_cache_key
from centxo.connectors.meta.retry import RetryPolicy
from centxo.core.crypto import encrypt_token
from centxo.core.errors import (
    AuthenticationError,
    ErrorCategory,
    InvalidRequestError,
    ProvisioningFailure,
)
from centxo.media.storage import LocalMediaStorage, MediaAsset, MediaKind
from centxo.models.db_models import AuditRecord, MetaAccount, RemoteResourceRecord, User
from centxo.models.domain import (
    DEFAULT_PRIMARY_TEXT,
    CopyVariant,
    IceBreaker,
    StructureCounts,
    TargetingGroup,
)
from centxo.orchestration import orchestrator as orchestrator_module
from centxo.orchestration.orchestrator import CampaignOrchestrator, CreateStructureRequest

from conftest import body_of, graph_error

ACCOUNT = {"id": "act_123", "currency": "USD", "business_country_code": "US", "name": "Shop"}


def interest_search(request):
    q = request.url.params["q"]
    return httpx.Response(200, json={"data": [{"id": f"id-{q}", "name": q}]})


@pytest.fixture
def user(session):
    session.add_all([
        User(id="u1", email="u1@example.com"),
        MetaAccount(user_id="u1", encrypted_access_token=encrypt_token("tok")),
    ])
    session.commit()
    return "u1"


@pytest.fixture
def storage(tmp_path):
    (tmp_path / "photo.jpg").write_bytes(b"\xff\xd8\xff\xe0")
    return LocalMediaStorage(str(tmp_path))


@pytest.fixture
def meta(graph):
    graph.on("GET", r"act_123", ACCOUNT)
    graph.on("GET", r"search", interest_search)
    graph.on("POST", r"act_123/adimages", {"images": {"photo.jpg": {"hash": "h1"}}})
    graph.on("POST", r"act_123/campaigns", {"id": "c_1"})
    graph.on("POST", r"act_123/adsets", {"id": "as_1"})
    graph.on("POST", r"act_123/adcreatives", {"id": "cr_1"})
    graph.on("POST", r"act_123/ads", {"id": "ad_1"})
    return graph


def make_orchestrator(session, graph, cache, storage, fake_sleep, ai_provider=None):
    return CampaignOrchestrator(
        session=session,
        client=graph.client(),
        cache=cache,
        media_storage=storage,
        ai_provider=ai_provider,
        retry_policy=RetryPolicy(sleep=fake_sleep),
        sleep=fake_sleep,
        rng=random.Random(7),
    )


def make_request(**overrides):
    fields = dict(
        account_id="123",
        page_id="page_1",
        media=MediaAsset(kind=MediaKind.IMAGE, path="photo.jpg"),
        counts=StructureCounts(campaigns=1, ad_sets=2, ads=2),
        country="US",
        targeting_groups=[
            TargetingGroup(name="Cooks", interests=["Cooking"]),
            TargetingGroup(name="Bakers", interests=["Baking"]),
        ],
        copy_variants=[
            CopyVariant(primary_text="Fresh bread daily", headline="Bakery"),
            CopyVariant(primary_text="Order a cake", headline="Cakes"),
        ],
    )
    fields.update(overrides)
    return CreateStructureRequest(**fields)


async def test_successful_run_creates_tree_in_order(session, user, meta, cache, storage, fake_sleep):
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    result = await orchestrator.create_structure(user, make_request())

    assert result["campaign_id"] == "c_1"
    assert result["structure"] == {"campaigns": 1, "ad_sets": 2, "ads": 2}
    assert result["media_type"] == "image"

    order = [
        r.url.path.rsplit("/", 1)[-1]
        for r in meta.requests
        if r.method == "POST" and "adimages" not in r.url.path
    ]
    assert order == ["campaigns", "adsets", "adcreatives", "ads", "adsets", "adcreatives", "ads"]

    adsets = [body_of(r) for r in meta.calls("POST", r"act_123/adsets")]
    assert adsets[0]["campaign_id"] == "c_1"
    assert adsets[0]["daily_budget"] == 1000
    assert adsets[0]["targeting"]["flexible_spec"] == [
        {"interests": [{"id": "id-Cooking", "name": "Cooking"}]}
    ]
    assert adsets[1]["targeting"]["flexible_spec"][0]["interests"][0]["name"] == "Baking"

    creatives = [body_of(r) for r in meta.calls("POST", r"act_123/adcreatives")]
    messages = [c["object_story_spec"]["link_data"]["message"] for c in creatives]
    assert messages == ["Fresh bread daily", "Order a cake"]
    assert creatives[0]["object_story_spec"]["link_data"]["image_hash"] == "h1"


async def test_siblings_are_paced_with_jitter(session, user, meta, cache, storage, fake_sleep):
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    await orchestrator.create_structure(user, make_request())
    # One pause before the second ad set; ads are one per ad set
    assert len(fake_sleep.calls) == 1
    assert 0.15 <= fake_sleep.calls[0] <= 0.3


async def test_success_writes_audit_and_invalidates_cache(session, user, meta, cache, store, storage, fake_sleep):
    key = user_cache_key(user, "campaigns", "v2", "act_123")
    await store.set(key, {"value": [], "computed_at": 0}, 3600)

    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    await orchestrator.create_structure(user, make_request())

    audit = session.exec(select(AuditRecord)).all()
    assert [(a.action, a.entity_id) for a in audit] == [("CREATE_CAMPAIGN", "c_1")]
    assert json.loads(audit[0].details_json)["structure"]["ads"] == 2
    assert await store.get(key) is None

    kinds = [r.kind for r in session.exec(select(RemoteResourceRecord)).all()]
    assert kinds == ["campaign", "adset", "creative", "ad", "adset", "creative", "ad"]


async def test_partial_failure_reports_created_ids_without_deleting(session, user, meta, cache, storage, fake_sleep):
    meta.on(
        "POST", r"act_123/adsets",
        {"id": "as_1"},
        graph_error("Invalid targeting spec", code=100, error_user_msg="Audience too narrow"),
    )
    request = make_request(counts=StructureCounts(campaigns=1, ad_sets=3, ads=3))
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)

    with pytest.raises(ProvisioningFailure) as exc:
        await orchestrator.create_structure(user, request)

    failure = exc.value
    assert failure.stage == "CREATING_ADSET(0,1)"
    assert "as_1" in failure.created_ids
    assert failure.created_ids == ["c_1", "as_1", "cr_1", "ad_1"]
    assert "Audience too narrow" in failure.detail
    assert failure.category == ErrorCategory.FIX_INPUT
    assert not [r for r in meta.requests if r.method == "DELETE"]
    assert len(meta.calls("POST", r"act_123/adsets")) == 2

    rows = session.exec(select(RemoteResourceRecord)).all()
    assert [r.remote_id for r in rows] == ["c_1", "as_1", "cr_1", "ad_1"]
    assert session.exec(select(AuditRecord)).all() == []


async def test_thai_ad_sets_carry_beneficiary(session, user, meta, cache, storage, fake_sleep):
    meta.on("GET", r"act_123/agencies", {"data": [{"id": "987"}]})
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    await orchestrator.create_structure(
        user, make_request(country="TH", counts=StructureCounts(), daily_budget=10)
    )

    adset = body_of(meta.calls("POST", r"act_123/adsets")[0])
    assert adset["regional_regulated_categories"] == ["THAILAND_UNIVERSAL"]
    assert adset["regional_regulation_identities"] == {
        "universal_beneficiary": "987",
        "universal_payer": "987",
    }
    assert adset["targeting"]["geo_locations"] == {"countries": ["TH"]}


async def test_thai_run_without_beneficiary_fails_before_creating(session, user, meta, cache, storage, fake_sleep):
    meta.on("GET", r"act_123/agencies", {"data": []})
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    with pytest.raises(ProvisioningFailure) as exc:
        await orchestrator.create_structure(user, make_request(country="TH"))
    assert exc.value.category == ErrorCategory.FIX_INPUT
    assert exc.value.created == []
    assert meta.calls("POST", r"act_123/campaigns") == []


async def test_invalid_counts_make_no_remote_calls(session, user, meta, cache, storage, fake_sleep):
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    with pytest.raises(InvalidRequestError):
        await orchestrator.create_structure(user, make_request(counts=StructureCounts(ads=0)))
    assert meta.requests == []


async def test_unconnected_account_raises_authentication_error(session, user, graph, cache, storage, fake_sleep):
    graph.on("GET", r"act_123", graph_error("(#200) No permission", code=200, status=403))
    orchestrator = make_orchestrator(session, graph, cache, storage, fake_sleep)
    with pytest.raises(AuthenticationError):
        await orchestrator.create_structure(user, make_request())
    assert graph.calls("POST", r".*") == []


class BrokenAI:
    name = "broken"

    def is_available(self):
        return True

    async def analyze_media(self, *args, **kwargs):
        raise RuntimeError("model overloaded")


async def test_ai_failure_falls_back_to_default_copy(session, user, meta, cache, storage, fake_sleep):
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep, ai_provider=BrokenAI())
    result = await orchestrator.create_structure(
        user,
        make_request(
            counts=StructureCounts(), targeting_groups=None, copy_variants=None,
            ice_breakers=[IceBreaker(question="Price?", payload="PRICE")],
        ),
    )
    creative = body_of(meta.calls("POST", r"act_123/adcreatives")[0])
    link_data = creative["object_story_spec"]["link_data"]
    assert link_data["message"] == DEFAULT_PRIMARY_TEXT
    assert link_data["page_welcome_message"]["text_format"]["message"]["ice_breakers"] == [
        {"title": "Price?", "response": "PRICE"}
    ]
    assert result["ai_insights"]["age_min"] == 20
    adset = body_of(meta.calls("POST", r"act_123/adsets")[0])
    assert "flexible_spec" not in adset["targeting"]
    assert adset["name"].startswith("AdSet 1 - Broad Targeting")


async def test_boosting_existing_post_skips_upload(session, user, meta, cache, storage, fake_sleep):
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)
    result = await orchestrator.create_structure(
        user,
        make_request(
            counts=StructureCounts(),
            media=MediaAsset(kind=MediaKind.EXISTING_POST, post_id="page_1_555"),
        ),
    )
    assert result["media_type"] == "existing_post"
    assert meta.calls("POST", r"act_123/adimages") == []
    creative = body_of(meta.calls("POST", r"act_123/adcreatives")[0])
    assert creative["object_story_id"] == "page_1_555"
    audit = session.exec(select(AuditRecord)).one()
    assert audit.action == "BOOST_POST"


async def test_persistence_failure_mid_tree_reports_created_ids(
    session, user, meta, cache, storage, fake_sleep, monkeypatch
):
    writes = []
    real_record = orchestrator_module.record_remote_resource

    def flaky_record(*args, **kwargs):
        writes.append(args)
        if len(writes) == 2:
            raise OperationalError("INSERT INTO remote_resources", {}, Exception("db down"))
        return real_record(*args, **kwargs)

    monkeypatch.setattr(orchestrator_module, "record_remote_resource", flaky_record)
    orchestrator = make_orchestrator(session, meta, cache, storage, fake_sleep)

    with pytest.raises(ProvisioningFailure) as exc:
        await orchestrator.create_structure(user, make_request())

    failure = exc.value
    assert failure.stage == "CREATING_ADSET(0,0)"
    assert failure.created_ids == ["c_1", "as_1"]
    assert failure.category == ErrorCategory.CONTACT_SUPPORT
    assert "db down" in failure.detail
    assert meta.calls("POST", r"act_123/adcreatives") == []
