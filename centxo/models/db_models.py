"""Centxo — Relational Store Models.

Users, their connected Meta identities and team relationships are read to
build credential pools. RemoteResource and AuditRecord rows are append-only:
nothing in this codebase updates or deletes them.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: str = Field(default="", index=True)
    name: str = Field(default="")
    created_at: datetime = Field(default_factory=_utcnow)


class MetaAccount(SQLModel, table=True):
    """The user's primary Meta connection. Token stored encrypted."""

    __tablename__ = "meta_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, foreign_key="users.id")
    encrypted_access_token: str = Field(description="Fernet-encrypted user token")
    facebook_user_id: str = Field(default="")
    updated_at: datetime = Field(default_factory=_utcnow)


class OAuthAccount(SQLModel, table=True):
    """Login-provider accounts (e.g. Facebook login) that carry their own token."""

    __tablename__ = "oauth_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, foreign_key="users.id")
    provider: str = Field(index=True, description="facebook | google")
    encrypted_access_token: Optional[str] = Field(default=None)


class TeamMember(SQLModel, table=True):
    """Membership of a team owned by `owner_id`.

    memberType "email" links another user by email; "facebook" links a
    Facebook identity connected by the owner, with its own token.
    """

    __tablename__ = "team_members"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True, foreign_key="users.id")
    member_type: str = Field(default="email", description="email | facebook")
    member_email: Optional[str] = Field(default=None, index=True)
    facebook_user_id: Optional[str] = Field(default=None)
    facebook_name: Optional[str] = Field(default=None)
    encrypted_access_token: Optional[str] = Field(default=None)


class RemoteResourceRecord(SQLModel, table=True):
    """A remote object created by a provisioning run. Append-only."""

    __tablename__ = "remote_resources"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(index=True)
    user_id: str = Field(index=True)
    account_id: str = Field(index=True)
    kind: str = Field(index=True, description="campaign | adset | creative | ad")
    remote_id: str = Field(index=True)
    parent_remote_id: Optional[str] = Field(default=None)
    details_json: str = Field(default="{}", description="e.g. targeting for ad sets")
    created_at: datetime = Field(default_factory=_utcnow)


class AuditRecord(SQLModel, table=True):
    """Append-only audit trail."""

    __tablename__ = "audit_records"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    action: str = Field(index=True)
    entity_type: str = Field(default="")
    entity_id: str = Field(default="")
    details_json: str = Field(default="{}")
    timestamp: datetime = Field(default_factory=_utcnow)
