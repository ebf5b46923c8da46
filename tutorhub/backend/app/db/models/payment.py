from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import (
    CHAR,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class PaymentStatus(str, PyEnum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    refunded = "refunded"


class PaymentProvider(str, PyEnum):
    credit = "credit"
    mpesa = "mpesa"
    paypal = "paypal"


class RefundStatus(str, PyEnum):
    requested = "requested"
    approved = "approved"
    rejected = "rejected"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "(booking_id IS NULL) <> (student_bundle_id IS NULL)",
            name="ck_payment_single_target",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), unique=True
    )
    student_bundle_id: Mapped[int | None] = mapped_column(
        ForeignKey("student_bundles.id", ondelete="CASCADE"), unique=True
    )
    provider_order_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    provider_txn_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), default="USD")
    provider: Mapped[PaymentProvider] = mapped_column(Enum(PaymentProvider))
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.pending)
    refund_status: Mapped[RefundStatus | None] = mapped_column(Enum(RefundStatus))
    refund_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    booking = relationship("Booking", back_populates="payment")
    student_bundle = relationship("StudentBundle", back_populates="payment")
