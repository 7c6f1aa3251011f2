"""Centxo — Audit Trail.

Append-only. A failed audit write is logged and does not undo the action it
describes.
"""

import json
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from centxo.core.logging import get_logger
from centxo.models.db_models import AuditRecord, RemoteResourceRecord
from centxo.models.domain import RemoteResource

logger = get_logger("services.audit")

ACTION_CREATE_CAMPAIGN = "CREATE_CAMPAIGN"
ACTION_BOOST_POST = "BOOST_POST"


def record_audit(
    session: Session,
    user_id: str,
    action: str,
    entity_id: str,
    details: Dict[str, Any],
    entity_type: str = "campaign",
) -> Optional[AuditRecord]:
    record = AuditRecord(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details, ensure_ascii=False, default=str),
    )
    try:
        session.add(record)
        session.commit()
        session.refresh(record)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Audit write failed for {action} {entity_id}: {e}")
        return None
    logger.info(f"Audit {action} {entity_id}")
    return record


def record_remote_resource(
    session: Session,
    run_id: str,
    user_id: str,
    account_id: str,
    resource: RemoteResource,
    details: Dict[str, Any] | None = None,
) -> RemoteResourceRecord:
    """Persist one created remote object straight away."""
    row = RemoteResourceRecord(
        run_id=run_id,
        user_id=user_id,
        account_id=account_id,
        kind=resource.kind.value,
        remote_id=resource.remote_id,
        parent_remote_id=resource.parent_remote_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    )
    try:
        session.add(row)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.error(f"Could not record {resource.kind.value} {resource.remote_id} for run {run_id}")
        raise
    return row


def past_interests(session: Session, user_id: str, limit: int = 20, scan: int = 50) -> List[str]:
    """Distinct interest names from the user's most recent ad sets."""
    rows = session.exec(
        select(RemoteResourceRecord)
        .where(RemoteResourceRecord.user_id == user_id, RemoteResourceRecord.kind == "adset")
        .order_by(RemoteResourceRecord.created_at.desc())
        .limit(scan)
    ).all()
    seen: List[str] = []
    for row in rows:
        try:
            details = json.loads(row.details_json or "{}")
        except ValueError:
            continue
        for name in details.get("interests") or []:
            if name and name not in seen:
                seen.append(name)
            if len(seen) >= limit:
                return seen
    return seen
