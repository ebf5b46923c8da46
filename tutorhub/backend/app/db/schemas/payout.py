from datetime import datetime
from decimal import Decimal
from typing import Literal
from pydantic import BaseModel, Field

from ..models import PayoutStatus


class PayoutCreate(BaseModel):
    amount: Decimal = Field(gt=0)


class PayoutDecision(BaseModel):
    decision: Literal["complete", "reject"]
    admin_notes: str | None = None


class PayoutRequest(BaseModel):
    id: int
    teacher_id: int
    amount: Decimal
    status: PayoutStatus
    admin_notes: str | None = None
    requested_at: datetime
    processed_at: datetime | None = None

    class Config:
        from_attributes = True


class Earnings(BaseModel):
    teacher_id: int
    current_balance: Decimal
