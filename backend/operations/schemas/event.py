from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..models.common import ObjectType
from ..models.event import EventStatus, EventType


class EventResponse(BaseModel):
    event_id: str
    tenant_id: str
    type: EventType
    object_type: ObjectType
    object_id: str
    actor: str
    occurred: datetime
    status: EventStatus
    processing_attempts: int = 0
    last_processed: Optional[datetime] = None
    next_processing_attempt: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True
