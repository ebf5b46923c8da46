from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import CHAR, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class BookingStatus(str, PyEnum):
    pending_payment = "pending_payment"
    confirmed = "confirmed"
    completed = "completed"
    unattended = "unattended"
    cancelled = "cancelled"
    reschedule_requested = "reschedule_requested"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    availability_slot_id: Mapped[int] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), default=BookingStatus.pending_payment
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), default="USD")
    meeting_link: Mapped[str | None] = mapped_column(String(255))
    teacher_feedback: Mapped[str | None] = mapped_column(Text)
    proposed_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    proposed_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    student = relationship("User", foreign_keys=[student_id])
    teacher = relationship("User", foreign_keys=[teacher_id])
    slot = relationship("AvailabilitySlot", back_populates="bookings")
    payment = relationship("Payment", back_populates="booking", uselist=False)
