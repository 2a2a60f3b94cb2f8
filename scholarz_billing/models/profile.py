import datetime as dt
from sqlalchemy import String, DateTime, JSON, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from scholarz_billing.models.base import Base


class UserProfile(Base):
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    role: Mapped[str | None] = mapped_column(String(8), nullable=True)
    plan_type: Mapped[str | None] = mapped_column(String(16), nullable=True)  # free | monthly | annual
    plan_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    plan_expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    plan_requires_payment: Mapped[bool] = mapped_column(Boolean, default=False)
    plan_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plan_issue: Mapped[str | None] = mapped_column(String(64), nullable=True)
    billing_profile: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        onupdate=lambda: dt.datetime.now(dt.timezone.utc),
    )

    __table_args__ = (
        Index("ix_userprofile_plan_expires_at", "plan_expires_at"),
    )
