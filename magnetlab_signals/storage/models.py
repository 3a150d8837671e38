"""SQLAlchemy ORM models for workspaces, monitors, signal leads and events."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from magnetlab_signals.storage.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class WorkspaceEvent(Base):
    """Append-only run log for scans, pushes and enrichment."""

    __tablename__ = "workspace_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_workspace_events_workspace_created_at", "workspace_id", "created_at"),)


class SignalConfig(Base):
    """Per-workspace ICP filters plus enrichment/push switches.

    List criteria are stored as JSON arrays; an empty array means the
    criterion is not configured.
    """

    __tablename__ = "signal_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    job_title_keywords_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    excluded_job_titles_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    excluded_companies_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    industry_keywords_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    target_countries_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    min_company_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_company_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    required_seniority: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    enrichment_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sentiment_scoring_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outbound_campaign_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (UniqueConstraint("workspace_id", name="uq_signal_configs_workspace"),)


class SignalMonitor(Base):
    __tablename__ = "signal_monitors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    target_value: Mapped[str] = mapped_column(String(512), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cadence_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=720)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    posts_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leads_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "kind", "target_value", name="uq_signal_monitors_workspace_kind_target"),
        CheckConstraint("kind IN ('keyword', 'company', 'profile')", name="ck_signal_monitors_kind"),
        Index("ix_signal_monitors_kind_active", "kind", "is_active"),
    )


class SignalLead(Base):
    __tablename__ = "signal_leads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    linkedin_url: Mapped[str] = mapped_column(String(512), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    profile_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icp_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icp_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="new")
    signal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compound_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_sentiment: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    enriched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pushed_to_outbound: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_attempted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    push_error: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    outbound_campaign_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "linkedin_url", name="uq_signal_leads_workspace_url"),
        CheckConstraint("icp_score BETWEEN 0 AND 100", name="ck_signal_leads_icp_score_range"),
        Index("ix_signal_leads_workspace_push_queue", "workspace_id", "icp_match", "pushed_to_outbound"),
        Index("ix_signal_leads_workspace_status", "workspace_id", "status"),
    )


class SignalEvent(Base):
    """Immutable engagement occurrence; rows are inserted, never updated."""

    __tablename__ = "signal_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    lead_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signal_leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    monitor_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("signal_monitors.id", ondelete="SET NULL"),
        nullable=True,
    )
    monitor_kind: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    signal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    sentiment: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    keyword_matched: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "lead_id",
            "signal_type",
            "source_url",
            name="uq_signal_events_occurrence",
        ),
        CheckConstraint(
            "signal_type IN ('comment', 'reaction', 'post_authorship')",
            name="ck_signal_events_signal_type",
        ),
        Index("ix_signal_events_workspace_lead", "workspace_id", "lead_id"),
        Index("ix_signal_events_workspace_occurred_at", "workspace_id", "occurred_at"),
    )
