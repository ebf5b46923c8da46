from datetime import datetime
from pydantic import BaseModel, Field

from ..models import SlotStatus


class AvailabilitySlotCreate(BaseModel):
    language_id: int
    start_time: datetime
    end_time: datetime
    max_students: int = Field(default=1, gt=0)


class AvailabilitySlot(BaseModel):
    id: int
    teacher_id: int
    language_id: int
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    max_students: int
    current_students: int

    class Config:
        from_attributes = True
