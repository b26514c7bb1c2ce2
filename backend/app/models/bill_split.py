"""
models/bill_split.py — BillSplit and Participant table definitions.

No business logic. No imports from services or routes.

Key design points:
  - Monetary columns use Numeric(12, 2) — never Float.
  - `revision` is SQLAlchemy's version_id_col. Every UPDATE of a bill_splits
    row carries `WHERE revision = <loaded value>`; a concurrent writer that
    got there first makes the UPDATE match zero rows and the flush raises
    StaleDataError. The repository retries on that (split_service.py).
    Participant rows live in another table, so any write that only touches
    participants must also touch the split row (updated_at) to bump it.
  - `deleted_at` is NULL for live splits. Splits are soft-deleted so that
    settlements, which are append-only, keep a valid split_id.
  - Participants are ordered by `position` (input order). The first one
    absorbs the rounding residual of the allocation calculator.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


# ── Enum Definitions ───────────────────────────────────────────────────────
# Imported by schemas and services; do not duplicate as string literals.

class SplitMethod(str, enum.Enum):
    EQUAL      = "equal"
    EXACT      = "exact"
    PERCENTAGE = "percentage"


class Category(str, enum.Enum):
    DINING_OUT    = "Dining Out"
    GROCERIES     = "Groceries"
    DRINKS        = "Drinks"
    TRANSPORT     = "Transport"
    RIDE_SHARE    = "Ride Share"
    TRAVEL        = "Travel"
    HOTEL         = "Hotel"
    ENTERTAINMENT = "Entertainment"
    ACTIVITIES    = "Activities"
    SHOPPING      = "Shopping"
    UTILITIES     = "Utilities"
    RENT          = "Rent"
    OTHER         = "Other"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'equal'), not names ('EQUAL')."""
    return [member.value for member in enum_cls]


# ── Models ─────────────────────────────────────────────────────────────────

class BillSplit(db.Model):
    __tablename__ = "bill_splits"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_bill_splits_total_positive"),
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_bill_splits_name_nonempty",
        ),
        Index(
            "idx_bill_splits_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    category: Mapped[Category | None] = mapped_column(
        Enum(
            Category,
            name="category_enum",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    creator_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="splits",
    )

    creator: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[creator_user_id],
    )

    participants: Mapped[list["Participant"]] = relationship(
        "Participant",
        back_populates="split",
        order_by="Participant.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def participant_for(self, user_id: int) -> "Participant | None":
        return next((p for p in self.participants if p.user_id == user_id), None)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<BillSplit id={self.id} "
            f"group_id={self.group_id} "
            f"total={self.total_amount} "
            f"rev={self.revision}>"
        )


class Participant(db.Model):
    __tablename__ = "participants"

    __table_args__ = (
        UniqueConstraint("split_id", "user_id", name="uq_participants_split_user"),
        CheckConstraint("share_amount >= 0", name="ck_participants_share_nonneg"),
        CheckConstraint("paid_amount >= 0", name="ck_participants_paid_nonneg"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE — participants are owned by their split.
    split_id: Mapped[int] = mapped_column(
        ForeignKey("bill_splits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # What this user owes toward the split. Only create/replace write it.
    share_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # What this user has put in: fronted at creation plus settlements since.
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    split_method: Mapped[SplitMethod] = mapped_column(
        Enum(
            SplitMethod,
            name="split_method_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitMethod.EQUAL,
    )

    # Raw percentage weight; 1 for equal/exact.
    split_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("1"),
    )

    split: Mapped["BillSplit"] = relationship(
        "BillSplit",
        back_populates="participants",
    )

    @property
    def amount_owed(self) -> Decimal:
        """Positive: still owes into the split. Negative: is owed back."""
        return self.share_amount - self.paid_amount

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Participant split_id={self.split_id} "
            f"user_id={self.user_id} "
            f"share={self.share_amount} "
            f"paid={self.paid_amount}>"
        )
