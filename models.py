from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    bank = "bank"
    cash = "cash"
    broker = "broker"
    roboadvisor = "roboadvisor"
    ewallet = "ewallet"
    credit_card = "credit_card"


class CategoryKind(str, Enum):
    income = "income"
    expense = "expense"


class MovementType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class FixedFlag(str, Enum):
    fixed = "fixed"
    variable = "variable"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    opening_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    snapshots: Mapped[list["Snapshot"]] = relationship(
        "Snapshot", back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_accounts_owner_name", "owner_id", "name"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[CategoryKind] = mapped_column(SAEnum(CategoryKind), nullable=False)
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    movements: Mapped[list["Movement"]] = relationship(
        "Movement", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "kind", "name", name="uq_category_owner_kind_name"),
    )


class Movement(Base, TimestampMixin):
    __tablename__ = "movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[MovementType] = mapped_column(SAEnum(MovementType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    account_from_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    account_to_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    fixed_var: Mapped[Optional[FixedFlag]] = mapped_column(SAEnum(FixedFlag))
    note: Mapped[Optional[str]] = mapped_column(Text)
    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_templates.id")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[account_id]
    )
    account_from: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[account_from_id]
    )
    account_to: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[account_to_id]
    )
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="movements"
    )
    template: Mapped[Optional["RecurringTemplate"]] = relationship(
        "RecurringTemplate", back_populates="movements"
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "template_id",
            "occurrence_date",
            name="uq_movement_template_occurrence",
        ),
        Index("ix_movements_owner_date", "owner_id", "date"),
        Index("ix_movements_owner_type_date", "owner_id", "type", "date"),
        Index("ix_movements_owner_category_date", "owner_id", "category_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        CheckConstraint(
            "(type != 'transfer' AND account_id IS NOT NULL"
            " AND account_from_id IS NULL AND account_to_id IS NULL)"
            " OR (type = 'transfer' AND account_id IS NULL AND category_id IS NULL"
            " AND account_from_id IS NOT NULL AND account_to_id IS NOT NULL"
            " AND account_from_id != account_to_id)",
            name="ck_movements_account_shape",
        ),
    )


class Snapshot(Base, TimestampMixin):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint("account_id", "date", name="uq_snapshot_account_date"),
        Index("ix_snapshots_owner_date", "owner_id", "date"),
    )


class DayNote(Base, TimestampMixin):
    __tablename__ = "day_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("owner_id", "date", name="uq_day_note_owner_date"),
    )


class RecurringTemplate(Base, TimestampMixin):
    __tablename__ = "recurring_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[MovementType] = mapped_column(SAEnum(MovementType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    fixed_var: Mapped[Optional[FixedFlag]] = mapped_column(SAEnum(FixedFlag))
    note: Mapped[Optional[str]] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_occurrence: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped["Account"] = relationship("Account")
    category: Mapped["Category"] = relationship("Category")
    movements: Mapped[list["Movement"]] = relationship(
        "Movement", back_populates="template"
    )

    __table_args__ = (
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_template_day_of_month"
        ),
        CheckConstraint("amount_cents > 0", name="ck_template_amount_positive"),
        CheckConstraint("type != 'transfer'", name="ck_template_not_transfer"),
    )
