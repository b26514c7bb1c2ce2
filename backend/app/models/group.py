"""
models/group.py — Group table definition.

No business logic. No imports from services or routes.

Key design points:
  - `deleted_at` is NULL for live groups. Deleting a group is a soft delete:
    its splits stay in the table but become orphaned, and every balance
    query filters them out through the group's deleted_at.
  - Members are ordered by Membership.position; the creator is position 0.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class GroupType(str, enum.Enum):
    TRIP   = "Trip"
    HOME   = "Home"
    EVENT  = "Event"
    CUSTOM = "Custom"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'Trip'), not names ('TRIP')."""
    return [member.value for member in enum_cls]


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    type: Mapped[GroupType] = mapped_column(
        Enum(
            GroupType,
            name="group_type_enum",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=GroupType.CUSTOM,
    )

    # ON DELETE RESTRICT — cannot delete a user who created a group.
    creator_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # NULL = live; NOT NULL = deleted by its creator.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    creator: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[creator_user_id],
    )

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
        order_by="Membership.position",
        cascade="all, delete-orphan",
    )

    splits: Mapped[list["BillSplit"]] = relationship(  # noqa: F821
        "BillSplit",
        back_populates="group",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def member_ids(self) -> list[int]:
        """Member user ids in their stored order (creator first)."""
        return [m.user_id for m in self.memberships]

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r} type={self.type}>"
