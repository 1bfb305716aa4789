from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, DateTime, ForeignKey
from repair_tracker.models.base import Base


class StatusChangeLog(Base):
    """One row per status transition, used for audit and to avoid duplicate sends."""
    __tablename__ = 'status_change_logs'
    ACTOR_CUSTOMER = 'customer'
    ACTOR_SYSTEM = 'system'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    repair_pk: Mapped[int] = mapped_column(ForeignKey('repairs.id', ondelete='CASCADE'), nullable=False, index=True)
    repair_id: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    old_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @staticmethod
    def staff_actor(user_id) -> str:
        return f"staff:{user_id}"
