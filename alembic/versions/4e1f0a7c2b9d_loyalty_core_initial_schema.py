"""loyalty core initial schema

Revision ID: 4e1f0a7c2b9d
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "4e1f0a7c2b9d"
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamps():
    return [
        sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if not insp.has_table("tenants"):
        op.create_table(
            "tenants",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("vertical", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not insp.has_table("customers"):
        op.create_table(
            "customers",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("last_interaction_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("deleted_at", sa.TIMESTAMP(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"], unique=False)

    if not insp.has_table("loyalty_programs"):
        op.create_table(
            "loyalty_programs",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False, unique=True),
            sa.Column("program_name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("tokens_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("membership_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("tokens_name", sa.String(length=50), nullable=False, server_default="Point"),
            sa.Column("tokens_name_plural", sa.String(length=50), nullable=False, server_default="Points"),
            sa.Column("tokens_per_currency", sa.Numeric(10, 4), nullable=False, server_default="1"),
            sa.Column("tokens_currency_threshold", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("tokens_expiry_days", sa.Integer(), nullable=False, server_default="365"),
            sa.Column("reactivation_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("reactivation_months", sa.Integer(), nullable=False, server_default="12"),
            sa.Column("reactivation_offer_type", sa.String(length=30), nullable=True),
            sa.Column("reactivation_offer_value", sa.Numeric(10, 2), nullable=True),
            sa.Column("membership_reminder_days", sa.Integer(), nullable=False, server_default="7"),
            sa.Column("tier_thresholds", sa.JSON(), nullable=True),
            *_timestamps(),
        )

    if not insp.has_table("loyalty_token_rules"):
        op.create_table(
            "loyalty_token_rules",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("action_type", sa.String(length=30), nullable=False),
            sa.Column("action_name", sa.String(length=200), nullable=False),
            sa.Column("action_description", sa.String(length=1000), nullable=True),
            sa.Column("tokens_amount", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("tokens_multiplier", sa.Numeric(5, 2), nullable=False, server_default="1"),
            sa.Column("max_per_period", sa.Integer(), nullable=True),
            sa.Column("period_type", sa.String(length=20), nullable=True),
            sa.Column("conditions", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("ix_loyalty_token_rules_program_id", "loyalty_token_rules", ["program_id"], unique=False)

    if not insp.has_table("loyalty_transactions"):
        op.create_table(
            "loyalty_transactions",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("tokens", sa.Integer(), nullable=False),
            sa.Column("transaction_type", sa.String(length=20), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("reference_type", sa.String(length=30), nullable=True),
            sa.Column("reference_id", _uuid(), nullable=True),
            sa.Column("action_type", sa.String(length=30), nullable=True),
            sa.Column("purchase_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("expires_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )
        op.create_index(
            "ix_loyalty_transactions_program_customer",
            "loyalty_transactions",
            ["program_id", "customer_id", "created_at"],
            unique=False,
        )

    if not insp.has_table("loyalty_balances"):
        op.create_table(
            "loyalty_balances",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("current_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_expired", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("lifetime_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("tier", sa.String(length=20), nullable=False, server_default="bronze"),
            sa.Column("tier_updated_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("last_earn_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("last_redeem_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("next_expiry_at", sa.TIMESTAMP(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("program_id", "customer_id", name="uq_loyalty_balances_program_customer"),
        )

    if not insp.has_table("loyalty_rewards"):
        op.create_table(
            "loyalty_rewards",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("reward_name", sa.String(length=200), nullable=False),
            sa.Column("reward_description", sa.String(length=1000), nullable=True),
            sa.Column("tokens_required", sa.Integer(), nullable=False),
            sa.Column("reward_type", sa.String(length=30), nullable=False),
            sa.Column("discount_value", sa.Numeric(10, 2), nullable=True),
            sa.Column("stock_limit", sa.Integer(), nullable=True),
            sa.Column("stock_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("valid_days", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("terms_conditions", sa.String(length=2000), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint("stock_limit IS NULL OR stock_used <= stock_limit", name="ck_loyalty_rewards_stock"),
        )
        op.create_index("ix_loyalty_rewards_program_id", "loyalty_rewards", ["program_id"], unique=False)

    if not insp.has_table("loyalty_redemptions"):
        op.create_table(
            "loyalty_redemptions",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("reward_id", _uuid(), sa.ForeignKey("loyalty_rewards.id"), nullable=False),
            sa.Column("redemption_code", sa.String(length=20), nullable=False, unique=True),
            sa.Column("tokens_used", sa.Integer(), nullable=False),
            sa.Column("reward_snapshot", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("expires_at", sa.TIMESTAMP(), nullable=False),
            sa.Column("used_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not insp.has_table("loyalty_membership_plans"):
        op.create_table(
            "loyalty_membership_plans",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("plan_name", sa.String(length=200), nullable=False),
            sa.Column("plan_description", sa.String(length=1000), nullable=True),
            sa.Column("price_monthly", sa.Numeric(10, 2), nullable=False),
            sa.Column("price_annual", sa.Numeric(10, 2), nullable=True),
            sa.Column("benefits", sa.JSON(), nullable=False),
            sa.Column("discount_percent", sa.Numeric(5, 2), nullable=True, server_default="0"),
            sa.Column("priority_booking", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("tokens_multiplier", sa.Numeric(5, 2), nullable=False, server_default="1"),
            sa.Column("max_members", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("ix_loyalty_membership_plans_program_id", "loyalty_membership_plans", ["program_id"], unique=False)

    if not insp.has_table("loyalty_memberships"):
        op.create_table(
            "loyalty_memberships",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("plan_id", _uuid(), sa.ForeignKey("loyalty_membership_plans.id"), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("billing_cycle", sa.String(length=20), nullable=False, server_default="monthly"),
            sa.Column("start_date", sa.TIMESTAMP(), nullable=True),
            sa.Column("end_date", sa.TIMESTAMP(), nullable=True),
            sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("renewed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("payment_method", sa.String(length=30), nullable=True),
            sa.Column("payment_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            sa.Column("cancelled_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_loyalty_memberships_program_id", "loyalty_memberships", ["program_id"], unique=False)
        op.create_index("ix_loyalty_memberships_customer_id", "loyalty_memberships", ["customer_id"], unique=False)
        op.create_index("ix_loyalty_memberships_end_date", "loyalty_memberships", ["end_date"], unique=False)

    if not insp.has_table("loyalty_message_templates"):
        op.create_table(
            "loyalty_message_templates",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("message_type", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("template_content", sa.String(length=2000), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.UniqueConstraint("program_id", "message_type", name="uq_loyalty_message_templates_program_type"),
        )

    if not insp.has_table("loyalty_notification_logs"):
        op.create_table(
            "loyalty_notification_logs",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id"), nullable=False),
            sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("message_type", sa.String(length=30), nullable=False),
            sa.Column("dedupe_key", sa.String(length=30), nullable=False),
            sa.Column("message_text", sa.String(length=2000), nullable=False),
            sa.Column("channel", sa.String(length=20), nullable=False, server_default="whatsapp"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("personalized", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("error_message", sa.String(length=2000), nullable=True),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint(
                "program_id",
                "customer_id",
                "message_type",
                "dedupe_key",
                name="uq_loyalty_notification_logs_dedupe",
            ),
        )
        op.create_index(
            "ix_loyalty_notification_logs_lookback",
            "loyalty_notification_logs",
            ["customer_id", "message_type", "created_at"],
            unique=False,
        )

    if not insp.has_table("internal_jobs"):
        op.create_table(
            "internal_jobs",
            sa.Column("id", _uuid(), primary_key=True),
            sa.Column("job_key", sa.String(length=100), nullable=False, unique=True),
            sa.Column("job_type", sa.String(length=50), nullable=False),
            sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("schedule", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column("next_run_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("last_run_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_by", sa.String(length=100), nullable=True),
            sa.Column("last_status", sa.String(length=20), nullable=True),
            sa.Column("last_error", sa.String(length=2000), nullable=True),
            sa.Column("last_stats", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_internal_jobs_next_run_at", "internal_jobs", ["next_run_at"], unique=False)


def downgrade() -> None:
    for index_name, table in (
        ("ix_internal_jobs_next_run_at", "internal_jobs"),
        ("ix_loyalty_notification_logs_lookback", "loyalty_notification_logs"),
        ("ix_loyalty_memberships_end_date", "loyalty_memberships"),
        ("ix_loyalty_memberships_customer_id", "loyalty_memberships"),
        ("ix_loyalty_memberships_program_id", "loyalty_memberships"),
        ("ix_loyalty_membership_plans_program_id", "loyalty_membership_plans"),
        ("ix_loyalty_rewards_program_id", "loyalty_rewards"),
        ("ix_loyalty_transactions_program_customer", "loyalty_transactions"),
        ("ix_loyalty_token_rules_program_id", "loyalty_token_rules"),
        ("ix_customers_tenant_id", "customers"),
    ):
        op.drop_index(index_name, table_name=table)

    for table in (
        "internal_jobs",
        "loyalty_notification_logs",
        "loyalty_message_templates",
        "loyalty_memberships",
        "loyalty_membership_plans",
        "loyalty_redemptions",
        "loyalty_rewards",
        "loyalty_balances",
        "loyalty_transactions",
        "loyalty_token_rules",
        "loyalty_programs",
        "customers",
        "tenants",
    ):
        op.drop_table(table)
