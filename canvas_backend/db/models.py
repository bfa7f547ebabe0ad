"""SQLAlchemy ORM models, dual-dialect (Postgres/SQLite)."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..permissions import Visibility
from .types import GUID, JSONB, UTCDateTime, utcnow


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """Provides created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class ArtifactKind(str, enum.Enum):
    TEXT = "text"
    TABLE = "table"
    CHARTS = "charts"
    DASHBOARD = "dashboard"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class PermissionLevel(str, enum.Enum):
    USE = "use"
    EDIT = "edit"


def _values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum_column(enum_cls: type[enum.Enum], length: int = 32) -> Enum:
    # Stored as plain strings; rows written before an enum change stay readable
    # until a data migration rewrites them.
    return Enum(
        enum_cls,
        values_callable=_values,
        native_enum=False,
        create_constraint=False,
        validate_strings=True,
        length=length,
    )


# ---------------------------------------------------------------------------
# 1. users
# ---------------------------------------------------------------------------
class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False, default=UserRole.USER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sessions: Mapped[list[AuthSession]] = relationship(back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ---------------------------------------------------------------------------
# 2. auth_sessions
# ---------------------------------------------------------------------------
class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    user_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(back_populates="sessions")


# ---------------------------------------------------------------------------
# 3. agent
# ---------------------------------------------------------------------------
class Agent(TimestampMixin, Base):
    __tablename__ = "agent"

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    user_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    visibility: Mapped[Visibility] = mapped_column(
        _enum_column(Visibility), nullable=False, default=Visibility.PRIVATE
    )

    permissions: Mapped[list[AgentUserPermission]] = relationship(
        back_populates="agent", cascade="all, delete-orphan", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# 4. agent_user_permission
# ---------------------------------------------------------------------------
class AgentUserPermission(Base):
    __tablename__ = "agent_user_permission"
    __table_args__ = (
        UniqueConstraint("agent_id", "user_id", name="uq_agent_user_permission"),
        Index("ix_agent_user_permission_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    agent_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("agent.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    granted_by: Mapped[str | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    permission_level: Mapped[PermissionLevel] = mapped_column(
        _enum_column(PermissionLevel), nullable=False, default=PermissionLevel.USE
    )

    agent: Mapped[Agent] = relationship(back_populates="permissions")


# ---------------------------------------------------------------------------
# 5. document (artifact)
# ---------------------------------------------------------------------------
class Document(TimestampMixin, Base):
    __tablename__ = "document"
    __table_args__ = (Index("ix_document_user_kind", "user_id", "kind"),)

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    user_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[ArtifactKind] = mapped_column(_enum_column(ArtifactKind), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    # Mirrors the content of the highest version; empty until one exists.
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    versions: Mapped[list[DocumentVersion]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentVersion.version",
    )


# ---------------------------------------------------------------------------
# 6. document_version
# ---------------------------------------------------------------------------
class DocumentVersion(Base):
    __tablename__ = "document_version"
    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version_number"),)

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    document_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("document.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    document: Mapped[Document] = relationship(back_populates="versions")


# ---------------------------------------------------------------------------
# 7. tool_customization
# ---------------------------------------------------------------------------
class ToolCustomization(Base):
    __tablename__ = "tool_customization"
    __table_args__ = (UniqueConstraint("user_id", "provider_id", name="uq_tool_customization_provider"),)

    id: Mapped[str] = mapped_column(GUID(), primary_key=True, default=GUID.new)
    user_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    tool_prompts: Mapped[dict] = mapped_column(JSONB(), nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )
