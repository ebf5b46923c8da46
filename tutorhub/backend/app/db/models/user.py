from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class UserRole(str, PyEnum):
    student = "student"
    teacher = "teacher"
    admin = "admin"


class TeacherStatus(str, PyEnum):
    pending = "pending"
    active = "active"
    rejected = "rejected"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.student)
    credit_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    referral_code: Mapped[str | None] = mapped_column(String(10), unique=True)
    referred_by_code: Mapped[str | None] = mapped_column(String(10))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    teacher_profile = relationship("TeacherProfile", back_populates="user", uselist=False)


class TeacherProfile(Base):
    __tablename__ = "teachers"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    headline: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[TeacherStatus] = mapped_column(Enum(TeacherStatus), default=TeacherStatus.pending)
    current_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))

    user = relationship("User", back_populates="teacher_profile")
