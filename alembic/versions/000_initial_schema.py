"""Initial database schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared by several tables, so created once up front
tier_enum = postgresql.ENUM("community", "top", name="tier", create_type=False)
plan_enum = postgresql.ENUM("commission", "monthly", "annual", name="billingplan", create_type=False)


def upgrade() -> None:
    """Create billing, audit and commission tables."""
    bind = op.get_bind()
    tier_enum.create(bind, checkfirst=True)
    plan_enum.create(bind, checkfirst=True)

    # Subscription plans (versioned)
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("billing_entity_id", sa.String(255), nullable=False),
        sa.Column("plan", plan_enum, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_subscription_plans_billing_entity_id", "subscription_plans", ["billing_entity_id"])

    # Expert tiers (versioned)
    op.create_table(
        "expert_tiers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("expert_id", sa.String(255), nullable=False),
        sa.Column("tier", tier_enum, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_expert_tiers_expert_id", "expert_tiers", ["expert_id"])

    # Payout destinations
    op.create_table(
        "expert_accounts",
        sa.Column("expert_id", sa.String(255), primary_key=True),
        sa.Column("destination_account_id", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "clinic_settings",
        sa.Column("clinic_id", sa.String(255), primary_key=True),
        sa.Column("clinic_fee_rate_bps", sa.Integer(), nullable=False),
        sa.Column("destination_account_id", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("clinic_fee_rate_bps BETWEEN 0 AND 10000", name="ck_clinic_settings_fee_rate_bps"),
    )

    # Audit logs
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("action", sa.Enum(
            "commission_recorded", "split_rejected", "transfer_failed",
            "commission_reversed", "plan_changed",
            name="auditaction"
        ), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", sa.String(255), nullable=True),
        sa.Column("action_metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Commission records (insert-only)
    op.create_table(
        "commission_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.String(255), nullable=False),
        sa.Column("kind", sa.Enum("charge", "reversal", name="recordkind"), nullable=False),
        sa.Column("reverses_record_id", sa.Integer(), sa.ForeignKey("commission_records.id"), nullable=True),
        sa.Column("payer_id", sa.String(255), nullable=True),
        sa.Column("expert_id", sa.String(255), nullable=False),
        sa.Column("clinic_id", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("charge_reference", sa.String(255), nullable=True),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("platform_rate_bps", sa.Integer(), nullable=False),
        sa.Column("platform_amount", sa.Integer(), nullable=False),
        sa.Column("clinic_rate_bps", sa.Integer(), nullable=True),
        sa.Column("clinic_amount", sa.Integer(), nullable=True),
        sa.Column("expert_amount", sa.Integer(), nullable=False),
        sa.Column("tier_snapshot", tier_enum, nullable=True),
        sa.Column("plan_snapshot", plan_enum, nullable=True),
        sa.Column("recurring_fee_minor_units", sa.Integer(), nullable=True),
        sa.Column("rate_table_version", sa.String(50), nullable=True),
        sa.Column("validation_status", sa.Enum("accepted", "rejected", name="validationstatus"), nullable=False),
        sa.Column("rejection_reason", sa.String(50), nullable=True),
        sa.Column("rejection_detail", sa.Text(), nullable=True),
        sa.Column(
            "transfer_status",
            sa.Enum("succeeded", "failed", "not_attempted", name="transferstatus"),
            nullable=False,
        ),
        sa.Column("transfer_failure_reason", sa.Text(), nullable=True),
        sa.Column("transfer_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processor_transfer_ids", sa.JSON(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("audit_log_id", sa.Integer(), sa.ForeignKey("audit_logs.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_commission_records_transaction_id", "commission_records", ["transaction_id"], unique=True)
    op.create_index("ix_commission_records_reverses_record_id", "commission_records", ["reverses_record_id"])
    op.create_index("ix_commission_records_expert_id", "commission_records", ["expert_id"])
    op.create_index("ix_commission_records_clinic_id", "commission_records", ["clinic_id"])
    op.create_index("ix_commission_records_validation_status", "commission_records", ["validation_status"])
    op.create_index("ix_commission_records_transfer_status", "commission_records", ["transfer_status"])


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_table("commission_records")
    op.drop_table("audit_logs")
    op.drop_table("clinic_settings")
    op.drop_table("expert_accounts")
    op.drop_table("expert_tiers")
    op.drop_table("subscription_plans")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS transferstatus")
    op.execute("DROP TYPE IF EXISTS validationstatus")
    op.execute("DROP TYPE IF EXISTS recordkind")
    op.execute("DROP TYPE IF EXISTS auditaction")
    op.execute("DROP TYPE IF EXISTS billingplan")
    op.execute("DROP TYPE IF EXISTS tier")
