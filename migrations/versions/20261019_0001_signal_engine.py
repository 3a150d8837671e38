"""signal engine core: workspaces, monitors, leads, events

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


WORKSPACE_SCOPED_TABLES = ["workspace_events", "signal_configs", "signal_monitors", "signal_leads", "signal_events"]
# Schedulers enumerate these without a workspace context bound.
DISCOVERABLE_TABLES = {"signal_monitors"}


def _is_postgresql() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="inactive"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "workspace_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workspace_events_workspace_created_at",
        "workspace_events",
        ["workspace_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "signal_configs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("job_title_keywords_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("excluded_job_titles_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("excluded_companies_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("industry_keywords_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("target_countries_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("min_company_size", sa.Integer(), nullable=True),
        sa.Column("max_company_size", sa.Integer(), nullable=True),
        sa.Column("required_seniority", sa.String(length=16), nullable=True),
        sa.Column("enrichment_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sentiment_scoring_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_push_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("outbound_campaign_id", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", name="uq_signal_configs_workspace"),
    )

    op.create_table(
        "signal_monitors",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("target_value", sa.String(length=512), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cadence_minutes", sa.Integer(), nullable=False, server_default=sa.text("720")),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("posts_found", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("leads_found", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "kind", "target_value", name="uq_signal_monitors_workspace_kind_target"),
        sa.CheckConstraint("kind IN ('keyword', 'company', 'profile')", name="ck_signal_monitors_kind"),
    )
    op.create_index("ix_signal_monitors_kind_active", "signal_monitors", ["kind", "is_active"], unique=False)

    op.create_table(
        "signal_leads",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("linkedin_url", sa.String(length=512), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("headline", sa.String(length=512), nullable=True),
        sa.Column("job_title", sa.String(length=255), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("country", sa.String(length=8), nullable=True),
        sa.Column("profile_json", sa.Text(), nullable=True),
        sa.Column("icp_score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("icp_match", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="new"),
        sa.Column("signal_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("compound_score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("best_sentiment", sa.String(length=16), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("enriched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pushed_to_outbound", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("push_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("push_error", sa.String(length=255), nullable=True),
        sa.Column("outbound_campaign_id", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "linkedin_url", name="uq_signal_leads_workspace_url"),
        sa.CheckConstraint("icp_score BETWEEN 0 AND 100", name="ck_signal_leads_icp_score_range"),
    )
    op.create_index(
        "ix_signal_leads_workspace_push_queue",
        "signal_leads",
        ["workspace_id", "icp_match", "pushed_to_outbound"],
        unique=False,
    )
    op.create_index("ix_signal_leads_workspace_status", "signal_leads", ["workspace_id", "status"], unique=False)

    op.create_table(
        "signal_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=36), nullable=False),
        sa.Column("lead_id", sa.String(length=36), nullable=False),
        sa.Column("monitor_id", sa.String(length=36), nullable=True),
        sa.Column("monitor_kind", sa.String(length=16), nullable=True),
        sa.Column("signal_type", sa.String(length=32), nullable=False),
        sa.Column("sentiment", sa.String(length=16), nullable=True),
        sa.Column("source_url", sa.String(length=512), nullable=True),
        sa.Column("keyword_matched", sa.String(length=255), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lead_id"], ["signal_leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["monitor_id"], ["signal_monitors.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "lead_id",
            "signal_type",
            "source_url",
            name="uq_signal_events_occurrence",
        ),
        sa.CheckConstraint(
            "signal_type IN ('comment', 'reaction', 'post_authorship')",
            name="ck_signal_events_signal_type",
        ),
    )
    op.create_index("ix_signal_events_workspace_lead", "signal_events", ["workspace_id", "lead_id"], unique=False)
    op.create_index(
        "ix_signal_events_workspace_occurred_at",
        "signal_events",
        ["workspace_id", "occurred_at"],
        unique=False,
    )

    if _is_postgresql():
        op.execute(
            """
            CREATE OR REPLACE FUNCTION app_current_workspace_id()
            RETURNS text
            LANGUAGE sql
            STABLE
            AS $$
                SELECT NULLIF(current_setting('app.current_workspace_id', true), '');
            $$;
            """
        )

        op.execute("ALTER TABLE workspaces ENABLE ROW LEVEL SECURITY;")
        op.execute("ALTER TABLE workspaces FORCE ROW LEVEL SECURITY;")
        op.execute(
            """
            CREATE POLICY workspaces_select_policy ON workspaces
            FOR SELECT USING (app_current_workspace_id() IS NULL OR id = app_current_workspace_id());
            """
        )
        op.execute(
            """
            CREATE POLICY workspaces_insert_policy ON workspaces
            FOR INSERT WITH CHECK (
                app_current_workspace_id() IS NULL OR id = app_current_workspace_id()
            );
            """
        )
        op.execute(
            """
            CREATE POLICY workspaces_update_policy ON workspaces
            FOR UPDATE USING (id = app_current_workspace_id())
            WITH CHECK (id = app_current_workspace_id());
            """
        )

        for table_name in WORKSPACE_SCOPED_TABLES:
            select_check = "workspace_id = app_current_workspace_id()"
            if table_name in DISCOVERABLE_TABLES:
                select_check = f"app_current_workspace_id() IS NULL OR {select_check}"
            op.execute(f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY;")
            op.execute(f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY;")
            op.execute(
                f"""
                CREATE POLICY {table_name}_select_policy ON {table_name}
                FOR SELECT USING ({select_check});
                """
            )
            op.execute(
                f"""
                CREATE POLICY {table_name}_insert_policy ON {table_name}
                FOR INSERT WITH CHECK (
                    app_current_workspace_id() IS NULL OR workspace_id = app_current_workspace_id()
                );
                """
            )
            op.execute(
                f"""
                CREATE POLICY {table_name}_update_policy ON {table_name}
                FOR UPDATE USING (workspace_id = app_current_workspace_id())
                WITH CHECK (workspace_id = app_current_workspace_id());
                """
            )
            op.execute(
                f"""
                CREATE POLICY {table_name}_delete_policy ON {table_name}
                FOR DELETE USING (workspace_id = app_current_workspace_id());
                """
            )


def downgrade() -> None:
    if _is_postgresql():
        for table_name in reversed(WORKSPACE_SCOPED_TABLES):
            op.execute(f"DROP POLICY IF EXISTS {table_name}_select_policy ON {table_name};")
            op.execute(f"DROP POLICY IF EXISTS {table_name}_insert_policy ON {table_name};")
            op.execute(f"DROP POLICY IF EXISTS {table_name}_update_policy ON {table_name};")
            op.execute(f"DROP POLICY IF EXISTS {table_name}_delete_policy ON {table_name};")
        op.execute("DROP POLICY IF EXISTS workspaces_select_policy ON workspaces;")
        op.execute("DROP POLICY IF EXISTS workspaces_insert_policy ON workspaces;")
        op.execute("DROP POLICY IF EXISTS workspaces_update_policy ON workspaces;")

    op.drop_index("ix_signal_events_workspace_occurred_at", table_name="signal_events")
    op.drop_index("ix_signal_events_workspace_lead", table_name="signal_events")
    op.drop_table("signal_events")

    op.drop_index("ix_signal_leads_workspace_status", table_name="signal_leads")
    op.drop_index("ix_signal_leads_workspace_push_queue", table_name="signal_leads")
    op.drop_table("signal_leads")

    op.drop_index("ix_signal_monitors_kind_active", table_name="signal_monitors")
    op.drop_table("signal_monitors")

    op.drop_table("signal_configs")

    op.drop_index("ix_workspace_events_workspace_created_at", table_name="workspace_events")
    op.drop_table("workspace_events")
    op.drop_table("workspaces")

    if _is_postgresql():
        op.execute("DROP FUNCTION IF EXISTS app_current_workspace_id;")
