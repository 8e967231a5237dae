from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class UtcDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on storage, so values read back without one are
    treated as UTC; bound values are converted to UTC before storage so
    string comparisons stay ordered.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Store only the bcrypt hash.
    password_hash: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="pending")
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
    last_active_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String)
    logo: Mapped[str | None] = mapped_column(String, nullable=True)
    # Plan label mirrored from the subscription cache for display.
    plan: Mapped[str] = mapped_column(String, default="free")
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="uq_team_members_user_team"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String, ForeignKey("teams.id"), index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(String, default="member")
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, onupdate=utc_now)


class TeamInvite(Base):
    __tablename__ = "team_invites"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String, ForeignKey("teams.id"), index=True)
    code: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, default="member")
    # Optional target address for emailed invites; link invites leave it empty.
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime())
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class Subscription(Base):
    __tablename__ = "subscriptions"

    # Local cache of the billing provider's subscription state, one row per team.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String, ForeignKey("teams.id"), unique=True)
    plan: Mapped[str] = mapped_column(String, default="free")
    interval: Mapped[str] = mapped_column(String, default="monthly")
    status: Mapped[str] = mapped_column(String, default="active")
    trial_ends_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, onupdate=utc_now)


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    domain: Mapped[str] = mapped_column(String, unique=True, index=True)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    team_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("teams.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class SiteUser(Base):
    __tablename__ = "site_users"

    # Direct site membership; also carries the per-user pin flag.
    site_id: Mapped[str] = mapped_column(String, ForeignKey("sites.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), primary_key=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class QAReport(Base):
    __tablename__ = "qa_reports"
    __table_args__ = (
        UniqueConstraint("site_id", "slug", name="uq_qa_reports_site_slug"),
        Index("ix_qa_reports_user_archived", "user_id", "archived"),
        Index("ix_qa_reports_user_due", "user_id", "due_date"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    domain: Mapped[str] = mapped_column(String, index=True)
    site_name: Mapped[str | None] = mapped_column(String, nullable=True)
    page_path: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(String)
    comment: Mapped[str] = mapped_column(Text)
    x: Mapped[int] = mapped_column(Integer)
    y: Mapped[int] = mapped_column(Integer)
    # Object-storage key of the screenshot; URLs are signed at read time.
    image_key: Mapped[str] = mapped_column(String)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
    status: Mapped[str] = mapped_column(String, default="new")
    priority: Mapped[str] = mapped_column(String, default="medium")
    type: Mapped[str] = mapped_column(String, default="bug")
    resolved_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    # Minutes from creation to first resolution.
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_name: Mapped[str] = mapped_column(String, default="")
    due_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    site_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("sites.id"), nullable=True, index=True
    )


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    content: Mapped[str] = mapped_column(Text)
    report_id: Mapped[str] = mapped_column(String, ForeignKey("qa_reports.id"), index=True)
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    parent_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("comments.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, onupdate=utc_now)


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    key: Mapped[str] = mapped_column(String)
    thumbnail_key: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String)
    size: Mapped[int] = mapped_column(Integer)
    content_type: Mapped[str] = mapped_column(String)
    comment_id: Mapped[str] = mapped_column(String, ForeignKey("comments.id"), index=True)
    report_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("qa_reports.id"), nullable=True
    )
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_user_created", "user_id", "created_at"),
    )

    # Write-once event addressed to user_id and authored by actor_id.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"))
    actor_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"))
    type: Mapped[str] = mapped_column(String)
    report_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("qa_reports.id"), nullable=True
    )
    message: Mapped[str] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[str | None] = mapped_column(String, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"))
    type: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(Text)
    site_id: Mapped[str | None] = mapped_column(String, ForeignKey("sites.id"), nullable=True)
    report_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("qa_reports.id"), nullable=True
    )
    comment_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("comments.id"), nullable=True
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now)
