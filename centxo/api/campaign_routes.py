"""Centxo — Campaign Routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlmodel import Session

from centxo.ai.registry import select_provider
from centxo.cache.swr import SWRCache, get_swr_cache
from centxo.connectors.meta.client import MetaClient, get_shared_meta_client
from centxo.core.errors import (
    CentxoError,
    ErrorCategory,
    ProvisioningFailure,
    RemoteFatalError,
)
from centxo.core.logging import get_logger
from centxo.credentials.pool import build_pool, load_credential_sources
from centxo.credentials.resolver import CredentialResolver
from centxo.database import get_session
from centxo.media.storage import LocalMediaStorage
from centxo.orchestration.orchestrator import CampaignOrchestrator, CreateStructureRequest
from centxo.reporting.listings import RosterService

logger = get_logger("api.campaigns")

router = APIRouter(tags=["Campaigns"])

STATUS_BY_CATEGORY = {
    ErrorCategory.FIX_INPUT: 400,
    ErrorCategory.RECONNECT: 401,
    ErrorCategory.CONTACT_SUPPORT: 502,
    ErrorCategory.TRY_AGAIN_LATER: 503,
}


# ── Dependencies ──


def get_meta_client() -> MetaClient:
    return get_shared_meta_client()


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def session_token(x_meta_token: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_meta_token or None


def to_http_error(error: CentxoError) -> HTTPException:
    """Category → status. Meta rejecting a payload is a 502, not the caller's 400."""
    root = error.cause if isinstance(error, ProvisioningFailure) and error.cause else error
    status = 502 if isinstance(root, RemoteFatalError) else STATUS_BY_CATEGORY[error.category]
    detail = {"message": error.message, "category": error.category.value}
    if isinstance(error, ProvisioningFailure):
        detail["stage"] = error.stage
        detail["created"] = error.created
    if getattr(error, "details", None):
        detail["details"] = error.details
    return HTTPException(status_code=status, detail=detail)


# ── Endpoints ──


@router.post("/campaigns/structure")
async def create_structure(
    request: CreateStructureRequest,
    provider: str = Query(default="auto", description="claude | sarvam | auto"),
    user_id: str = Depends(current_user_id),
    token: Optional[str] = Depends(session_token),
    session: Session = Depends(get_session),
    client: MetaClient = Depends(get_meta_client),
    cache: SWRCache = Depends(get_swr_cache),
):
    """Create campaigns → ad sets → creatives → ads in one ad account."""
    orchestrator = CampaignOrchestrator(
        session=session,
        client=client,
        cache=cache,
        media_storage=LocalMediaStorage(),
        ai_provider=select_provider(provider),
    )
    try:
        result = await orchestrator.create_structure(user_id, request, session_token=token)
    except CentxoError as e:
        logger.error(f"Create structure failed: {e.message}")
        raise to_http_error(e)
    return {"status": "success", **result}


async def _roster(
    kind: str,
    user_id: str,
    account_ids: List[str],
    force_refresh: bool,
    date_from: Optional[str],
    date_to: Optional[str],
    token: Optional[str],
    session: Session,
    client: MetaClient,
    cache: SWRCache,
):
    if not account_ids:
        raise HTTPException(status_code=400, detail="ad_account_ids is required")
    pool = build_pool(load_credential_sources(session, user_id, token))
    service = RosterService(client, cache, CredentialResolver(client, cache.store))
    lister = service.list_campaigns if kind == "campaigns" else service.list_ads
    try:
        data = await lister(user_id, account_ids, pool, force_refresh, date_from, date_to)
    except CentxoError as e:
        raise to_http_error(e)
    return {"status": "success", **data}


@router.get("/campaigns")
async def list_campaigns(
    ad_account_ids: List[str] = Query(...),
    force_refresh: bool = False,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    token: Optional[str] = Depends(session_token),
    session: Session = Depends(get_session),
    client: MetaClient = Depends(get_meta_client),
    cache: SWRCache = Depends(get_swr_cache),
):
    """Campaign roster across ad accounts, newest first."""
    return await _roster(
        "campaigns", user_id, ad_account_ids, force_refresh, date_from, date_to,
        token, session, client, cache,
    )


@router.get("/ads")
async def list_ads(
    ad_account_ids: List[str] = Query(...),
    force_refresh: bool = False,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    token: Optional[str] = Depends(session_token),
    session: Session = Depends(get_session),
    client: MetaClient = Depends(get_meta_client),
    cache: SWRCache = Depends(get_swr_cache),
):
    """Ad roster across ad accounts, newest first."""
    return await _roster(
        "ads", user_id, ad_account_ids, force_refresh, date_from, date_to,
        token, session, client, cache,
    )
