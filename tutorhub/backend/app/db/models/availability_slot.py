from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class SlotStatus(str, PyEnum):
    available = "available"
    booked = "booked"
    full = "full"


class AvailabilitySlot(Base):
    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("max_students > 0", name="ck_slot_max_students_positive"),
        CheckConstraint(
            "current_students >= 0 AND current_students <= max_students",
            name="ck_slot_capacity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    language_id: Mapped[int] = mapped_column(ForeignKey("languages.id"))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[SlotStatus] = mapped_column(Enum(SlotStatus), default=SlotStatus.available)
    max_students: Mapped[int] = mapped_column(Integer, default=1)
    current_students: Mapped[int] = mapped_column(Integer, default=0)

    teacher = relationship("User")
    language = relationship("Language")
    bookings = relationship("Booking", back_populates="slot")

    def refresh_status(self) -> None:
        """Recompute the cached status from the seat counter."""
        if self.current_students < self.max_students:
            self.status = SlotStatus.available
        elif self.max_students > 1:
            self.status = SlotStatus.full
        else:
            self.status = SlotStatus.booked
