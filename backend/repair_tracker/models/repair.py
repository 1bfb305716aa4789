from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Boolean, DateTime, Numeric, Text, ForeignKey, func
from repair_tracker.models.base import Base
from repair_tracker.constants.statuses import RepairStatus, EstimateStatus, NotificationPreference


class Repair(Base):
    __tablename__ = 'repairs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    repair_id: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey('customers.id', ondelete='SET NULL'), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=RepairStatus.RECEIVED.value, index=True)

    # Customer snapshot taken at submission time
    patient_name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    company: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notification_preference: Mapped[str] = mapped_column(String(16), nullable=False, default=NotificationPreference.NONE.value)

    # Product
    model_item_name: Mapped[str] = mapped_column(String(128), nullable=False)
    serial_no: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    warranty: Mapped[str] = mapped_column(String(32), nullable=False)
    ear: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    mould: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)

    # Stage timestamps, each stamped once
    date_of_receipt: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    date_out_to_manufacturer: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    date_received_from_manufacturer: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    date_out_to_customer: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Estimate approval; approval date set iff estimate_status is Approved/Declined
    repair_estimate: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    estimate_status: Mapped[str] = mapped_column(String(16), nullable=False, default=EstimateStatus.NOT_REQUIRED.value, index=True)
    estimate_approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    customer_paid: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    payment_mode: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    programming_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    status_changes = relationship('StatusChangeLog', cascade='all, delete-orphan', order_by='StatusChangeLog.id')

    __mapper_args__ = {'version_id_col': version}

    @property
    def status_enum(self) -> Optional[RepairStatus]:
        return RepairStatus.parse(self.status)

    @property
    def estimate_enum(self) -> Optional[EstimateStatus]:
        return EstimateStatus.parse(self.estimate_status)

    @property
    def wants_email(self) -> bool:
        return self.notification_preference == NotificationPreference.EMAIL.value and bool(self.email)

# Status flow: Received -> Sent to Manufacturer -> Returned from Manufacturer -> Ready for Pickup -> Completed
# A declined estimate moves Sent to Manufacturer straight to Returned from Manufacturer.
