from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only autoincrements INTEGER PRIMARY KEY (rowid) columns.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Uploads: ledger_statements
# ---------------------------


class LedgerStatement(Base):
    __tablename__ = "ledger_statements"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # sha256 hexdigest of the uploaded bytes; NULL only for legacy rows.
    file_hash: Mapped[str | None] = mapped_column(CHAR(64), nullable=True)
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_ledger_statements_user_hash", "user_id", "file_hash"),
    )


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # Calendar day only; timestamps are truncated before insert.
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Positive magnitude; the sign lives in ``type``.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[str] = mapped_column(String, nullable=False)
    bank_name: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    statement_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("ledger_statements.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Provider reference (Gmail message id, statement reference number).
    # Informational; never used for matching.
    external_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("type in ('expense','income')", name="ck_ledger_tx_type"),
        CheckConstraint(
            "account_type in ('BankAccount','CreditCard')", name="ck_ledger_tx_account_type"
        ),
        CheckConstraint(
            "source in ('statement','email','manual')", name="ck_ledger_tx_source"
        ),
        CheckConstraint("amount >= 0", name="ck_ledger_tx_amount_magnitude"),
        # Same-source duplicate key. Inserts that violate it are skipped as
        # duplicates by the ingestion layer.
        UniqueConstraint(
            "user_id",
            "source",
            "date",
            "description",
            "amount",
            "type",
            "bank_name",
            name="uq_ledger_tx_same_source_key",
        ),
        Index(
            "ix_ledger_tx_user_account_date",
            "user_id",
            "account_type",
            "bank_name",
            "date",
        ),
        Index("ix_ledger_tx_user_description_date", "user_id", "description", "date"),
    )


# ---------------------------
# Checkpoints: ledger_balance_checkpoints
# ---------------------------


class LedgerBalanceCheckpoint(Base):
    __tablename__ = "ledger_balance_checkpoints"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[str] = mapped_column(String, nullable=False)
    bank_name: Mapped[str] = mapped_column(Text, nullable=False)
    # The period key always carries an explicit year; the label is kept for display.
    statement_year: Mapped[int] = mapped_column(Integer, nullable=False)
    statement_month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    statement_label: Mapped[str] = mapped_column(Text, nullable=False)
    closing_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    credit_card_amount_due: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    reward_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Not a foreign key: transactions can be deleted independently and a
    # dangling id is reported as a referential inconsistency at read time.
    last_transaction_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    statement_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("ledger_statements.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "account_type in ('BankAccount','CreditCard')", name="ck_ledger_cp_account_type"
        ),
        CheckConstraint(
            "statement_month >= 1 AND statement_month <= 12", name="ck_ledger_cp_month"
        ),
        UniqueConstraint(
            "user_id",
            "account_type",
            "bank_name",
            "statement_year",
            "statement_month",
            name="uq_ledger_cp_account_period",
        ),
    )


__all__ = [
    "Base",
    "LedgerStatement",
    "LedgerTransaction",
    "LedgerBalanceCheckpoint",
]
