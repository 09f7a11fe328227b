from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.crm.constants import DEAL_STAGES
from app.crm.models import Base


class Deal(Base):
    __tablename__ = "deals"
    __table_args__ = (
        Index("idx_deals_customer_id", "customer_id"),
        Index("idx_deals_stage", "stage"),
        CheckConstraint(
            "stage IN (" + ", ".join(f"'{s}'" for s in DEAL_STAGES) + ")",
            name="ck_deals_stage",
        ),
        CheckConstraint("amount IS NULL OR amount >= 0", name="ck_deals_amount_non_negative"),
        CheckConstraint("probability IS NULL OR (probability >= 0 AND probability <= 100)", name="ck_deals_probability"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    stage: Mapped[str] = mapped_column(String(32), nullable=False, default="lead")
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    probability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    customer = relationship("Customer", foreign_keys=[customer_id], lazy="selectin")
