# ruff: noqa: I001
"""Ledger core tables: statements, transactions, balance checkpoints.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2025-11-02
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ledger_statements
    op.create_table(
        "ledger_statements",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("file_hash", sa.CHAR(64), nullable=True),
        sa.Column(
            "processed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_ledger_statements_user_hash",
        "ledger_statements",
        ["user_id", "file_hash"],
        unique=False,
    )

    # ledger_transactions
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("account_type", sa.Text(), nullable=False),
        sa.Column("bank_name", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("statement_id", sa.BigInteger(), nullable=True),
        sa.Column("external_ref", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["statement_id"],
            ["ledger_statements.id"],
            name="fk_ledger_tx_statement",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("type in ('expense','income')", name="ck_ledger_tx_type"),
        sa.CheckConstraint(
            "account_type in ('BankAccount','CreditCard')",
            name="ck_ledger_tx_account_type",
        ),
        sa.CheckConstraint(
            "source in ('statement','email','manual')",
            name="ck_ledger_tx_source",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_ledger_tx_amount_magnitude"),
        sa.UniqueConstraint(
            "user_id",
            "source",
            "date",
            "description",
            "amount",
            "type",
            "bank_name",
            name="uq_ledger_tx_same_source_key",
        ),
    )
    op.create_index(
        "ix_ledger_tx_user_account_date",
        "ledger_transactions",
        ["user_id", "account_type", "bank_name", "date"],
        unique=False,
    )
    op.create_index(
        "ix_ledger_tx_user_description_date",
        "ledger_transactions",
        ["user_id", "description", "date"],
        unique=False,
    )

    # ledger_balance_checkpoints
    op.create_table(
        "ledger_balance_checkpoints",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("account_type", sa.Text(), nullable=False),
        sa.Column("bank_name", sa.Text(), nullable=False),
        sa.Column("statement_year", sa.Integer(), nullable=False),
        sa.Column("statement_month", sa.SmallInteger(), nullable=False),
        sa.Column("statement_label", sa.Text(), nullable=False),
        sa.Column("closing_balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("credit_card_amount_due", sa.Numeric(18, 2), nullable=True),
        sa.Column("reward_points", sa.Integer(), nullable=True),
        sa.Column("last_transaction_id", sa.BigInteger(), nullable=True),
        sa.Column("statement_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["statement_id"],
            ["ledger_statements.id"],
            name="fk_ledger_cp_statement",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint(
            "account_type in ('BankAccount','CreditCard')",
            name="ck_ledger_cp_account_type",
        ),
        sa.CheckConstraint(
            "statement_month >= 1 AND statement_month <= 12",
            name="ck_ledger_cp_month",
        ),
        sa.UniqueConstraint(
            "user_id",
            "account_type",
            "bank_name",
            "statement_year",
            "statement_month",
            name="uq_ledger_cp_account_period",
        ),
    )


def downgrade() -> None:
    op.drop_table("ledger_balance_checkpoints")
    op.drop_index("ix_ledger_tx_user_description_date", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_user_account_date", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_index("ix_ledger_statements_user_hash", table_name="ledger_statements")
    op.drop_table("ledger_statements")
