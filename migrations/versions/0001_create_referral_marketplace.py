"""create referral marketplace tables

Revision ID: 0001_create_referral_marketplace
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_referral_marketplace"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns are stored as member names in plain strings (native_enum=False).
ENUM_STRING = sa.String(length=32)
MONEY = sa.Numeric(12, 2)
OPEN_REQUEST_PREDICATE = "status IN ('CLAIMED', 'COMPLETED', 'PENDING')"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("tier", ENUM_STRING, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_organizations"),
        sa.UniqueConstraint("name", name="uq_organizations_name"),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("status", ENUM_STRING, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_jobs"),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name="fk_jobs_organization_id_organizations",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_jobs_organization_status", "jobs", ["organization_id", "status"]
    )

    op.create_table(
        "employments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False),
        sa.Column("open_to_refer", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_employments"),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name="fk_employments_organization_id_organizations",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_employments_user_id", "employments", ["user_id"])
    op.create_index(
        "ix_employments_org_current", "employments", ["organization_id", "is_current"]
    )

    op.create_table(
        "pricing_settings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("tier", ENUM_STRING, nullable=True),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_pricing_settings"),
        sa.UniqueConstraint("key", "tier", name="uq_pricing_settings_key_tier"),
    )
    op.create_index("ix_pricing_settings_key", "pricing_settings", ["key"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", ENUM_STRING, nullable=False),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_wallets"),
        sa.UniqueConstraint("owner_id", name="uq_wallets_owner_id"),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    op.create_table(
        "wallet_holds",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("reference_id", sa.Uuid(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("status", ENUM_STRING, nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_holds"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["wallets.id"],
            name="fk_wallet_holds_wallet_id_wallets",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("amount > 0", name="ck_wallet_holds_amount_positive"),
    )
    op.create_index("ix_wallet_holds_owner_id", "wallet_holds", ["owner_id"])
    op.create_index(
        "ix_wallet_holds_reference_status", "wallet_holds", ["reference_id", "status"]
    )
    op.create_index(
        "ix_wallet_holds_wallet_status", "wallet_holds", ["wallet_id", "status"]
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("type", ENUM_STRING, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance_before", MONEY, nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("source", ENUM_STRING, nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("hold_id", sa.Uuid(), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("status", ENUM_STRING, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_transactions"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["wallets.id"],
            name="fk_wallet_transactions_wallet_id_wallets",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["hold_id"],
            ["wallet_holds.id"],
            name="fk_wallet_transactions_hold_id_wallet_holds",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("reference", name="uq_wallet_transactions_reference"),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
    )
    op.create_index(
        "ix_wallet_transactions_owner_id", "wallet_transactions", ["owner_id"]
    )
    op.create_index(
        "ix_wallet_transactions_wallet_created",
        "wallet_transactions",
        ["wallet_id", "created_at"],
    )

    op.create_table(
        "wallet_hold_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("hold_id", sa.Uuid(), nullable=False),
        sa.Column("action", ENUM_STRING, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("available_balance_after", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_hold_events"),
        sa.ForeignKeyConstraint(
            ["hold_id"],
            ["wallet_holds.id"],
            name="fk_wallet_hold_events_hold_id_wallet_holds",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_wallet_hold_events_hold_id", "wallet_hold_events", ["hold_id"])

    op.create_table(
        "wallet_withdrawals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("processing_fee", MONEY, nullable=False),
        sa.Column("net_amount", MONEY, nullable=False),
        sa.Column("status", ENUM_STRING, nullable=False),
        sa.Column("upi_id", sa.String(length=100), nullable=True),
        sa.Column("bank_account_number", sa.String(length=34), nullable=True),
        sa.Column("bank_ifsc", sa.String(length=11), nullable=True),
        sa.Column("account_holder_name", sa.String(length=200), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.Uuid(), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_withdrawals"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["wallets.id"],
            name="fk_wallet_withdrawals_wallet_id_wallets",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("amount > 0", name="ck_wallet_withdrawals_amount_positive"),
        sa.CheckConstraint(
            "processing_fee >= 0",
            name="ck_wallet_withdrawals_processing_fee_non_negative",
        ),
        sa.CheckConstraint(
            "upi_id IS NOT NULL OR bank_account_number IS NOT NULL",
            name="ck_wallet_withdrawals_payout_destination_present",
        ),
    )
    op.create_index(
        "ix_wallet_withdrawals_owner_requested",
        "wallet_withdrawals",
        ["owner_id", "requested_at"],
    )
    op.create_index(
        "ix_wallet_withdrawals_status_requested",
        "wallet_withdrawals",
        ["status", "requested_at"],
    )

    op.create_table(
        "referral_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requester_id", sa.Uuid(), nullable=False),
        sa.Column("resume_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("ext_job_id", sa.String(length=128), nullable=True),
        sa.Column("job_title", sa.String(length=200), nullable=True),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("status", ENUM_STRING, nullable=False),
        sa.Column("tier", ENUM_STRING, nullable=False),
        sa.Column("cost", MONEY, nullable=False),
        sa.Column("message", sa.String(length=1000), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_referrer_id", sa.Uuid(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_referral_requests"),
        sa.ForeignKeyConstraint(
            ["job_id"],
            ["jobs.id"],
            name="fk_referral_requests_job_id_jobs",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name="fk_referral_requests_organization_id_organizations",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "(job_id IS NOT NULL AND ext_job_id IS NULL)"
            " OR (job_id IS NULL AND ext_job_id IS NOT NULL)",
            name="ck_referral_requests_exactly_one_target",
        ),
    )
    op.create_index(
        "ix_referral_requests_status_requested",
        "referral_requests",
        ["status", "requested_at"],
    )
    op.create_index(
        "ix_referral_requests_org_status",
        "referral_requests",
        ["organization_id", "status"],
    )
    op.create_index(
        "ix_referral_requests_requester_status",
        "referral_requests",
        ["requester_id", "status"],
    )
    op.create_index(
        "ix_referral_requests_referrer", "referral_requests", ["assigned_referrer_id"]
    )
    internal_open = sa.text(f"job_id IS NOT NULL AND {OPEN_REQUEST_PREDICATE}")
    op.create_index(
        "uq_referral_requests_open_internal",
        "referral_requests",
        ["requester_id", "job_id"],
        unique=True,
        postgresql_where=internal_open,
        sqlite_where=internal_open,
    )
    external_open = sa.text(f"ext_job_id IS NOT NULL AND {OPEN_REQUEST_PREDICATE}")
    op.create_index(
        "uq_referral_requests_open_external",
        "referral_requests",
        ["requester_id", "organization_id", "ext_job_id"],
        unique=True,
        postgresql_where=external_open,
        sqlite_where=external_open,
    )

    op.create_table(
        "referral_proofs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("file_url", sa.String(length=1024), nullable=False),
        sa.Column("file_type", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_referral_proofs"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["referral_requests.id"],
            name="fk_referral_proofs_request_id_referral_requests",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "request_id", "referrer_id", name="uq_referral_proofs_request_referrer"
        ),
    )

    op.create_table(
        "referral_status_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("from_status", ENUM_STRING, nullable=True),
        sa.Column("to_status", ENUM_STRING, nullable=False),
        sa.Column("changed_by", sa.Uuid(), nullable=True),
        sa.Column("changed_by_role", ENUM_STRING, nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_referral_status_history"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["referral_requests.id"],
            name="fk_referral_status_history_request_id_referral_requests",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "request_id",
            "sequence",
            name="uq_referral_status_history_request_sequence",
        ),
    )
    op.create_index(
        "ix_referral_status_history_request",
        "referral_status_history",
        ["request_id", "created_at"],
    )

    op.create_table(
        "referral_rewards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False),
        sa.Column("points_type", ENUM_STRING, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("awarded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_referral_rewards"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["referral_requests.id"],
            name="fk_referral_rewards_request_id_referral_requests",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "referrer_id",
            "request_id",
            "points_type",
            name="uq_referral_rewards_referrer_request_type",
        ),
    )
    op.create_index(
        "ix_referral_rewards_referrer_awarded",
        "referral_rewards",
        ["referrer_id", "awarded_at"],
    )

    op.create_table(
        "referrer_points",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False),
        sa.Column("lifetime_points", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_referrer_points"),
        sa.UniqueConstraint("referrer_id", name="uq_referrer_points_referrer_id"),
        sa.CheckConstraint(
            "points_balance >= 0", name="ck_referrer_points_points_balance_non_negative"
        ),
    )

    op.create_table(
        "referrer_stats",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("pending_count", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_referrer_stats"),
        sa.UniqueConstraint("referrer_id", name="uq_referrer_stats_referrer_id"),
        sa.CheckConstraint(
            "pending_count >= 0", name="ck_referrer_stats_pending_count_non_negative"
        ),
    )

    op.create_table(
        "referral_expiration_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("trigger", ENUM_STRING, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("days_old", sa.Integer(), nullable=False),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("found", sa.Integer(), nullable=False),
        sa.Column("expired", sa.Integer(), nullable=False),
        sa.Column("holds_released", sa.Integer(), nullable=False),
        sa.Column("amount_released", MONEY, nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column(
            "errors",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_referral_expiration_runs"),
        sa.UniqueConstraint(
            "execution_id", name="uq_referral_expiration_runs_execution_id"
        ),
    )
    op.create_index(
        "ix_referral_expiration_runs_started",
        "referral_expiration_runs",
        ["started_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_referral_expiration_runs_started", table_name="referral_expiration_runs"
    )
    op.drop_table("referral_expiration_runs")
    op.drop_table("referrer_stats")
    op.drop_table("referrer_points")
    op.drop_index(
        "ix_referral_rewards_referrer_awarded", table_name="referral_rewards"
    )
    op.drop_table("referral_rewards")
    op.drop_index(
        "ix_referral_status_history_request", table_name="referral_status_history"
    )
    op.drop_table("referral_status_history")
    op.drop_table("referral_proofs")
    op.drop_index(
        "uq_referral_requests_open_external", table_name="referral_requests"
    )
    op.drop_index(
        "uq_referral_requests_open_internal", table_name="referral_requests"
    )
    op.drop_index("ix_referral_requests_referrer", table_name="referral_requests")
    op.drop_index(
        "ix_referral_requests_requester_status", table_name="referral_requests"
    )
    op.drop_index("ix_referral_requests_org_status", table_name="referral_requests")
    op.drop_index(
        "ix_referral_requests_status_requested", table_name="referral_requests"
    )
    op.drop_table("referral_requests")
    op.drop_index(
        "ix_wallet_withdrawals_status_requested", table_name="wallet_withdrawals"
    )
    op.drop_index(
        "ix_wallet_withdrawals_owner_requested", table_name="wallet_withdrawals"
    )
    op.drop_table("wallet_withdrawals")
    op.drop_index("ix_wallet_hold_events_hold_id", table_name="wallet_hold_events")
    op.drop_table("wallet_hold_events")
    op.drop_index(
        "ix_wallet_transactions_wallet_created", table_name="wallet_transactions"
    )
    op.drop_index("ix_wallet_transactions_owner_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_index("ix_wallet_holds_wallet_status", table_name="wallet_holds")
    op.drop_index("ix_wallet_holds_reference_status", table_name="wallet_holds")
    op.drop_index("ix_wallet_holds_owner_id", table_name="wallet_holds")
    op.drop_table("wallet_holds")
    op.drop_table("wallets")
    op.drop_index("ix_pricing_settings_key", table_name="pricing_settings")
    op.drop_table("pricing_settings")
    op.drop_index("ix_employments_org_current", table_name="employments")
    op.drop_index("ix_employments_user_id", table_name="employments")
    op.drop_table("employments")
    op.drop_index("ix_jobs_organization_status", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("organizations")
