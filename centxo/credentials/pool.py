"""Centxo — Credential Pool Builder.

Collects every token the acting user might act with: their own, their team
owner's, and the Facebook identities connected to the team. Reads the
relational store only; nothing here talks to Meta.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlmodel import Session, select

from centxo.core.crypto import TokenDecryptionError, decrypt_token
from centxo.core.logging import get_logger
from centxo.models.db_models import MetaAccount, OAuthAccount, TeamMember, User
from centxo.models.domain import Credential

logger = get_logger("credentials.pool")


@dataclass
class CredentialSources:
    """Decrypted credentials grouped by relationship to the acting user."""

    own: List[Credential] = field(default_factory=list)
    team_owner: List[Credential] = field(default_factory=list)
    teammates: List[Credential] = field(default_factory=list)
    session_token: Optional[str] = None


def build_pool(sources: CredentialSources) -> List[Credential]:
    """Ordered probe list, de-duplicated by raw token.

    Order: own tokens, team owner's tokens, teammates' tokens, session token.
    The first occurrence of a token keeps its label.
    """
    candidates: List[Credential] = [*sources.own, *sources.team_owner, *sources.teammates]
    if sources.session_token:
        candidates.append(Credential(token=sources.session_token, owner_label="session"))

    pool: List[Credential] = []
    seen = set()
    for cred in candidates:
        if not cred.token or cred.token in seen:
            continue
        seen.add(cred.token)
        pool.append(cred)
    return pool


# ── Relational store ──


def _decrypt(encrypted: Optional[str], label: str) -> Optional[Credential]:
    if not encrypted:
        return None
    try:
        return Credential(token=decrypt_token(encrypted), owner_label=label)
    except TokenDecryptionError:
        logger.warning(f"Skipping undecryptable token for {label}")
        return None


def _identity_credentials(session: Session, user_id: str, label: str) -> List[Credential]:
    """A user's MetaAccount token followed by their OAuth provider tokens."""
    found: List[Optional[Credential]] = []
    meta = session.exec(select(MetaAccount).where(MetaAccount.user_id == user_id)).first()
    if meta:
        found.append(_decrypt(meta.encrypted_access_token, f"{label}:meta"))
    oauth_rows = session.exec(
        select(OAuthAccount).where(
            OAuthAccount.user_id == user_id, OAuthAccount.provider == "facebook"
        )
    ).all()
    for row in oauth_rows:
        found.append(_decrypt(row.encrypted_access_token, f"{label}:oauth"))
    return [c for c in found if c is not None]


def _facebook_members(session: Session, owner_ids: Iterable[str]) -> List[Credential]:
    creds: List[Credential] = []
    for owner_id in owner_ids:
        members = session.exec(
            select(TeamMember).where(
                TeamMember.owner_id == owner_id, TeamMember.member_type == "facebook"
            )
        ).all()
        for m in members:
            label = f"teammate:{m.facebook_name or m.facebook_user_id or m.id}"
            cred = _decrypt(m.encrypted_access_token, label)
            if cred:
                creds.append(cred)
    return creds


def load_credential_sources(
    session: Session, user_id: str, session_token: Optional[str] = None
) -> CredentialSources:
    """Read the user's credentials and those reachable through team membership."""
    sources = CredentialSources(session_token=session_token)
    user = session.get(User, user_id)
    if user is None:
        logger.warning(f"Unknown user {user_id}; pool limited to session token")
        return sources

    sources.own = _identity_credentials(session, user.id, "own")

    owner_ids: List[str] = []
    if user.email:
        memberships = session.exec(
            select(TeamMember).where(
                TeamMember.member_type == "email", TeamMember.member_email == user.email
            )
        ).all()
        owner_ids = list(dict.fromkeys(m.owner_id for m in memberships if m.owner_id != user.id))
    for owner_id in owner_ids:
        sources.team_owner.extend(_identity_credentials(session, owner_id, f"owner:{owner_id}"))

    sources.teammates = _facebook_members(session, [user.id, *owner_ids])

    logger.info(
        f"Credential sources for {user_id}: own={len(sources.own)} "
        f"owner={len(sources.team_owner)} teammates={len(sources.teammates)}"
    )
    return sources
