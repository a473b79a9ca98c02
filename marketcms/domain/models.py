from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketcms.core.clock import utc_now


# JSONB on Postgres keeps containment operators available; other dialects store plain JSON.
JSONType = JSON().with_variant(JSONB(), "postgresql")

STATUS_DRAFT = "draft"
STATUS_REVIEW = "review"
STATUS_PUBLISHED = "published"
CONTENT_STATUSES = (STATUS_DRAFT, STATUS_REVIEW, STATUS_PUBLISHED)

FORM_CATEGORY_CONTACT = "contact"
FORM_CATEGORY_REQUEST_SAMPLE = "request-sample"
FORM_CATEGORIES = (FORM_CATEGORY_CONTACT, FORM_CATEGORY_REQUEST_SAMPLE)

FORM_STATUS_PENDING = "pending"
FORM_STATUS_PROCESSED = "processed"
FORM_STATUS_ARCHIVED = "archived"
FORM_STATUSES = (FORM_STATUS_PENDING, FORM_STATUS_PROCESSED, FORM_STATUS_ARCHIVED)

AUDIT_SUCCESS = "success"
AUDIT_FAILURE = "failure"


def _live_slug_index(table: str) -> Index:
    # Slugs only need to be unique among rows that are not soft-deleted.
    return Index(
        f"uq_{table}_slug_live",
        "slug",
        unique=True,
        postgresql_where=text("deleted_at IS NULL"),
        sqlite_where=text("deleted_at IS NULL"),
    )


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stored as entered; lookups compare lower(email).
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="viewer", server_default="viewer")
    # Deactivation is the only form of user deletion.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Category(TimestampMixin, Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))


class Author(TimestampMixin, Base):
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    linkedin_url: Mapped[str | None] = mapped_column(String(500), nullable=True)


class PublishableMixin(TimestampMixin):
    # Lifecycle columns shared by every workflow-managed content kind.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500))
    slug: Mapped[str] = mapped_column(String(250))
    status: Mapped[str] = mapped_column(
        String(20), default=STATUS_DRAFT, server_default=STATUS_DRAFT, index=True
    )
    publish_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    scheduled_publish_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class Report(PublishableMixin, Base):
    __tablename__ = "reports"
    __table_args__ = (
        _live_slug_index("reports"),
        Index("ix_reports_scheduled", "scheduled_publish_enabled", "status", "publish_date"),
    )

    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str] = mapped_column(Text)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    discounted_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD", server_default="USD")
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    formats: Mapped[list[str]] = mapped_column(JSONType, default=list)
    geography: Mapped[list[str]] = mapped_column(JSONType, default=list)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    author_ids: Mapped[list[int]] = mapped_column(JSONType, default=list)
    market_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    key_players: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    sections: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    faqs: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_keywords: Mapped[str | None] = mapped_column(Text, nullable=True)


class ReportVersion(Base):
    __tablename__ = "report_versions"
    __table_args__ = (
        # Concurrent publishes race on max()+1; the loser retries against this constraint.
        UniqueConstraint("report_id", "version_number", name="uq_report_versions_report_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reports.id", ondelete="CASCADE"), index=True
    )
    version_number: Mapped[int] = mapped_column(Integer)
    published_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    sections: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_keywords: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class ReportImage(TimestampMixin, Base):
    __tablename__ = "report_images"
    __table_args__ = (Index("ix_report_images_report_active", "report_id", "is_active"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reports.id", ondelete="CASCADE"), index=True
    )
    image_url: Mapped[str] = mapped_column(String(500))
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Soft delete keeps the CDN asset around for a later restore.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"), index=True)
    uploaded_by: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)


class Blog(PublishableMixin, Base):
    __tablename__ = "blogs"
    __table_args__ = (
        _live_slug_index("blogs"),
        Index("ix_blogs_scheduled", "scheduled_publish_enabled", "status", "publish_date"),
    )

    excerpt: Mapped[str] = mapped_column(String(500))
    content: Mapped[str] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), index=True)
    # Comma-delimited tag list.
    tags: Mapped[str | None] = mapped_column(String(500), nullable=True)
    author_id: Mapped[int] = mapped_column(Integer, ForeignKey("authors.id"), index=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seo_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PressRelease(PublishableMixin, Base):
    __tablename__ = "press_releases"
    __table_args__ = (
        _live_slug_index("press_releases"),
        Index("ix_press_releases_scheduled", "scheduled_publish_enabled", "status", "publish_date"),
    )

    excerpt: Mapped[str] = mapped_column(String(500))
    content: Mapped[str] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), index=True)
    tags: Mapped[str | None] = mapped_column(String(500), nullable=True)
    author_id: Mapped[int] = mapped_column(Integer, ForeignKey("authors.id"), index=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seo_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class FormSubmission(TimestampMixin, Base):
    __tablename__ = "form_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(20), index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=FORM_STATUS_PENDING, server_default=FORM_STATUS_PENDING, index=True
    )
    # Opaque per-category payload; validated before insert.
    data: Mapped[dict[str, Any]] = mapped_column(JSONType)
    submission_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    # Append-only: rows are never updated or deleted by the application.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    action: Mapped[str] = mapped_column(String(100), index=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=AUDIT_SUCCESS, server_default=AUDIT_SUCCESS)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), index=True
    )
