from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import Boolean, CHAR, DateTime, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class StudentBundleStatus(str, PyEnum):
    pending_payment = "pending_payment"
    active = "active"


class Bundle(Base):
    __tablename__ = "bundles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    language_id: Mapped[int] = mapped_column(ForeignKey("languages.id"))
    number_of_classes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    language = relationship("Language")


class StudentBundle(Base):
    __tablename__ = "student_bundles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    bundle_id: Mapped[int] = mapped_column(ForeignKey("bundles.id"))
    purchase_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    remaining_classes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[StudentBundleStatus] = mapped_column(
        Enum(StudentBundleStatus), default=StudentBundleStatus.pending_payment
    )

    student = relationship("User")
    bundle = relationship("Bundle")
    payment = relationship("Payment", back_populates="student_bundle", uselist=False)
