from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

from .common import ObjectType, generate_id


class EventType(str, Enum):
    WORKFLOW_DOCUMENT_REQUESTED = "workflow_document_requested"
    WORKFLOW_DOCUMENT_PROVIDED = "workflow_document_provided"
    WORKFLOW_DOCUMENT_VERIFIED = "workflow_document_verified"
    WORKFLOW_DOCUMENT_REJECTED = "workflow_document_rejected"
    WORKFLOW_DOCUMENT_WAIVED = "workflow_document_waived"
    WORKFLOW_STEP_COMPLETED = "workflow_step_completed"


class EventStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class Event(Document):
    """Something that happened to an object, queued for asynchronous processing"""
    event_id: str = Field(default_factory=generate_id, description="Unique event identifier")
    tenant_id: str
    type: EventType
    object_type: ObjectType
    object_id: str
    actor: str = Field(..., description="User or system that caused the event")
    occurred: datetime = Field(default_factory=datetime.utcnow)
    status: EventStatus = EventStatus.QUEUED

    # Processing
    lock_name: Optional[str] = None
    processing_attempts: int = 0
    last_processed: Optional[datetime] = None
    next_processing_attempt: Optional[datetime] = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "events"
        indexes = [
            IndexModel([("event_id", 1)], unique=True),
            IndexModel([("status", 1), ("next_processing_attempt", 1)]),
            IndexModel([("object_type", 1), ("object_id", 1)]),
        ]
