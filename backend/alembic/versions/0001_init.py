"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

# amounts are integer ten-thousandths on SQLite
MONEY = sa.Numeric(20, 4).with_variant(sa.BigInteger(), "sqlite")


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("profiles")
    if "ix_profiles_email" not in idxs:
        op.create_index("ix_profiles_email", "profiles", ["email"])
    if "ix_profiles_role" not in idxs:
        op.create_index("ix_profiles_role", "profiles", ["role"])

    if "wallets" not in existing_tables:
        op.create_table(
            "wallets",
            sa.Column("account_id", sa.String(), primary_key=True),
            sa.Column("balance", MONEY, nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        )

    if "ledger_entries" not in existing_tables:
        op.create_table(
            "ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), nullable=False),
            sa.Column("type", sa.String(length=16), nullable=False),
            sa.Column("amount", MONEY, nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False),
            sa.Column("balance_after", MONEY, nullable=False),
            sa.Column("reference_type", sa.String(length=32), nullable=False),
            sa.Column("reference_id", sa.String(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("ledger_entries")
    if "ix_ledger_entries_account_id" not in idxs:
        op.create_index("ix_ledger_entries_account_id", "ledger_entries", ["account_id"])
    if "ix_ledger_entries_reference_type" not in idxs:
        op.create_index("ix_ledger_entries_reference_type", "ledger_entries", ["reference_type"])
    if "ix_ledger_entries_account_created" not in idxs:
        op.create_index("ix_ledger_entries_account_created", "ledger_entries", ["account_id", "created_at"])
    if "ix_ledger_entries_reference" not in idxs:
        op.create_index("ix_ledger_entries_reference", "ledger_entries", ["reference_type", "reference_id"])

    if "media_items" not in existing_tables:
        op.create_table(
            "media_items",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("owner_account_id", sa.String(), nullable=False),
            sa.Column("file_name", sa.String(), nullable=True),
            sa.Column("token_cost", MONEY, nullable=False, server_default="0"),
            sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("media_items")
    if "ix_media_items_owner_account_id" not in idxs:
        op.create_index("ix_media_items_owner_account_id", "media_items", ["owner_account_id"])

    if "media_unlocks" not in existing_tables:
        op.create_table(
            "media_unlocks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), nullable=False),
            sa.Column("media_id", sa.String(), nullable=False),
            sa.Column("tokens_paid", MONEY, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("account_id", "media_id", name="uq_media_unlocks_account_media"),
        )
    idxs = existing_indexes("media_unlocks")
    if "ix_media_unlocks_account_id" not in idxs:
        op.create_index("ix_media_unlocks_account_id", "media_unlocks", ["account_id"])
    if "ix_media_unlocks_media_id" not in idxs:
        op.create_index("ix_media_unlocks_media_id", "media_unlocks", ["media_id"])

    if "payments" not in existing_tables:
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), nullable=False),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("provider_ref", sa.String(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("amount", MONEY, nullable=True),
            sa.Column("currency", sa.String(length=8), nullable=True),
            sa.Column("credits", MONEY, nullable=False),
            sa.Column("webhook_data", sa.JSON(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("payments")
    if "ix_payments_account_id" not in idxs:
        op.create_index("ix_payments_account_id", "payments", ["account_id"])
    if "ix_payments_provider_ref" not in idxs:
        op.create_index("ix_payments_provider_ref", "payments", ["provider_ref"], unique=True)
    if "ix_payments_status" not in idxs:
        op.create_index("ix_payments_status", "payments", ["status"])

    if "withdrawal_requests" not in existing_tables:
        op.create_table(
            "withdrawal_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), nullable=False),
            sa.Column("amount", MONEY, nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("reviewed_by", sa.String(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("review_note", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("withdrawal_requests")
    if "ix_withdrawal_requests_account_id" not in idxs:
        op.create_index("ix_withdrawal_requests_account_id", "withdrawal_requests", ["account_id"])
    if "ix_withdrawal_requests_status" not in idxs:
        op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])
    if "uq_withdrawal_requests_one_pending" not in idxs:
        op.create_index(
            "uq_withdrawal_requests_one_pending",
            "withdrawal_requests",
            ["account_id"],
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        )

    if "streams" not in existing_tables:
        op.create_table(
            "streams",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("model_account_id", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("streams")
    if "ix_streams_model_account_id" not in idxs:
        op.create_index("ix_streams_model_account_id", "streams", ["model_account_id"])
    if "ix_streams_status" not in idxs:
        op.create_index("ix_streams_status", "streams", ["status"])


def downgrade() -> None:
    op.drop_index("ix_streams_status", table_name="streams")
    op.drop_index("ix_streams_model_account_id", table_name="streams")
    op.drop_table("streams")

    op.drop_index("uq_withdrawal_requests_one_pending", table_name="withdrawal_requests")
    op.drop_index("ix_withdrawal_requests_status", table_name="withdrawal_requests")
    op.drop_index("ix_withdrawal_requests_account_id", table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")

    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_provider_ref", table_name="payments")
    op.drop_index("ix_payments_account_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_media_unlocks_media_id", table_name="media_unlocks")
    op.drop_index("ix_media_unlocks_account_id", table_name="media_unlocks")
    op.drop_table("media_unlocks")

    op.drop_index("ix_media_items_owner_account_id", table_name="media_items")
    op.drop_table("media_items")

    op.drop_index("ix_ledger_entries_reference", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_account_created", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_reference_type", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_account_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")

    op.drop_table("wallets")

    op.drop_index("ix_profiles_role", table_name="profiles")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")
