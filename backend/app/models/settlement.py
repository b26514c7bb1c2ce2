"""
models/settlement.py — Settlement table definition.

No business logic. No imports from services or routes.

Key design points:
  - Append-only. A settlement row is never updated or deleted through the API.
  - `split_id` is NULL for a direct settlement not attributed to any split.
  - `split_name` is denormalized so history still reads well after the split
    is renamed or deleted.
  - CHECK(payer_user_id <> payee_user_id) backs the SELF_SETTLEMENT check in
    settlement_service.py.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Settlement(db.Model):
    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        CheckConstraint(
            "payer_user_id <> payee_user_id",
            name="ck_settlements_no_self_settlement",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    split_id: Mapped[int | None] = mapped_column(
        ForeignKey("bill_splits.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    split_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payer_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    payee_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    split: Mapped["BillSplit | None"] = relationship(  # noqa: F821
        "BillSplit",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Settlement id={self.id} "
            f"split_id={self.split_id} "
            f"from={self.payer_user_id} "
            f"to={self.payee_user_id} "
            f"amount={self.amount}>"
        )
