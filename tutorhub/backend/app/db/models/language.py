from decimal import Decimal
from sqlalchemy import CHAR, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from ..session import Base


class Language(Base):
    __tablename__ = "languages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    price_per_session: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(CHAR(3), default="USD")
