"""Funnel analytics and onboarding schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "system_config",
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("key", name="pk_system_config"),
    )
    op.create_index("ix_system_config_category", "system_config", ["category"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("resource", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        _timestamp("timestamp"),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index(
        "ix_audit_logs_user_timestamp", "audit_logs", ["user_id", "timestamp"], unique=False
    )
    op.create_index(
        "ix_audit_logs_action_timestamp", "audit_logs", ["action", "timestamp"], unique=False
    )

    op.create_table(
        "onboarding_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("order", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("content", sa.JSON(), nullable=True),
        sa.Column("component", sa.String(length=120), nullable=True),
        sa.Column("required", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("estimated_minutes", sa.Integer(), nullable=True),
        sa.Column("skip_allowed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_onboarding_steps"),
        sa.UniqueConstraint("key", name="uq_onboarding_steps_key"),
    )
    op.create_index(
        "ix_onboarding_steps_active_order", "onboarding_steps", ["active", "order"], unique=False
    )

    op.create_table(
        "user_onboarding_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("step_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="NOT_STARTED", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("skipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("progress_data", sa.JSON(), nullable=True),
        sa.Column("completion_data", sa.JSON(), nullable=True),
        sa.Column("variant_id", sa.String(length=64), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("help_used", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("errors", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(
            ["step_id"],
            ["onboarding_steps.id"],
            name="fk_user_onboarding_progress_step_id_onboarding_steps",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_user_onboarding_progress"),
        sa.UniqueConstraint("user_id", "step_id", name="uq_user_onboarding_progress_step"),
    )
    op.create_index(
        "ix_user_onboarding_progress_user", "user_onboarding_progress", ["user_id"], unique=False
    )

    op.create_table(
        "onboarding_templates",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("target_audience", sa.JSON(), nullable=False),
        sa.Column("industry", sa.String(length=64), nullable=True),
        sa.Column("company_size", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=64), nullable=True),
        sa.Column("weight", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("conversion_rate", sa.Float(), nullable=True),
        sa.Column("completion_rate", sa.Float(), nullable=True),
        sa.Column("avg_time_to_complete", sa.Float(), nullable=True),
        sa.Column("active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_onboarding_templates"),
    )

    op.create_table(
        "user_onboarding_templates",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("template_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assignment_data", sa.JSON(), nullable=True),
        _timestamp("assigned_at"),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["onboarding_templates.id"],
            name="fk_user_onboarding_templates_template_id_onboarding_templates",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_user_onboarding_templates"),
    )
    op.create_index(
        "ix_user_onboarding_templates_user_time",
        "user_onboarding_templates",
        ["user_id", "assigned_at"],
        unique=False,
    )

    op.create_table(
        "onboarding_analytics",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("step_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("variant_id", sa.String(length=64), nullable=True),
        sa.Column("experiment_id", sa.String(length=64), nullable=True),
        sa.Column("page_load_time", sa.Float(), nullable=True),
        sa.Column("interaction_time", sa.Float(), nullable=True),
        sa.Column("conversion_step", sa.String(length=64), nullable=True),
        sa.Column("conversion_value", sa.Float(), nullable=True),
        _timestamp("timestamp"),
        sa.ForeignKeyConstraint(
            ["step_id"],
            ["onboarding_steps.id"],
            name="fk_onboarding_analytics_step_id_onboarding_steps",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_onboarding_analytics"),
    )
    op.create_index(
        "ix_onboarding_analytics_type_time",
        "onboarding_analytics",
        ["event_type", "timestamp"],
        unique=False,
    )
    op.create_index(
        "ix_onboarding_analytics_user_time",
        "onboarding_analytics",
        ["user_id", "timestamp"],
        unique=False,
    )
    op.create_index(
        "ix_onboarding_analytics_step_time",
        "onboarding_analytics",
        ["step_id", "timestamp"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_onboarding_analytics_step_time", table_name="onboarding_analytics")
    op.drop_index("ix_onboarding_analytics_user_time", table_name="onboarding_analytics")
    op.drop_index("ix_onboarding_analytics_type_time", table_name="onboarding_analytics")
    op.drop_table("onboarding_analytics")
    op.drop_index(
        "ix_user_onboarding_templates_user_time", table_name="user_onboarding_templates"
    )
    op.drop_table("user_onboarding_templates")
    op.drop_table("onboarding_templates")
    op.drop_index("ix_user_onboarding_progress_user", table_name="user_onboarding_progress")
    op.drop_table("user_onboarding_progress")
    op.drop_index("ix_onboarding_steps_active_order", table_name="onboarding_steps")
    op.drop_table("onboarding_steps")
    op.drop_index("ix_audit_logs_action_timestamp", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_timestamp", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_system_config_category", table_name="system_config")
    op.drop_table("system_config")
