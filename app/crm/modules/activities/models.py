from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.crm.constants import ACTIVITY_ENTITY_TYPES, ACTIVITY_TYPES
from app.crm.models import Base


class Activity(Base):
    """
    Note/call/email/meeting/task attached to either a customer or a deal.

    entity_id has no foreign key (it points at one of two tables); the data
    client checks the reference on insert.
    """

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_entity", "entity_type", "entity_id"),
        Index("idx_activities_created_at", "created_at"),
        CheckConstraint(
            "type IN (" + ", ".join(f"'{t}'" for t in ACTIVITY_TYPES) + ")",
            name="ck_activities_type",
        ),
        CheckConstraint(
            "entity_type IN (" + ", ".join(f"'{t}'" for t in ACTIVITY_ENTITY_TYPES) + ")",
            name="ck_activities_entity_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
