import base64
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from ..models.common import FileType
from ..models.interaction import (
    InteractionDirection,
    InteractionMimeType,
    InteractionPriority,
    InteractionSourceAttribute,
    InteractionSourcePermission,
    InteractionSourceType,
    InteractionStatus,
    InteractionType,
)
from .common import PagedListResponse, decode_base64_data


# Sources

class InteractionSourceCreate(BaseModel):
    source_id: Optional[str] = Field(None, max_length=50, description="Generated when not given")
    type: InteractionSourceType
    name: str = Field(..., min_length=1, max_length=100)
    attributes: List[InteractionSourceAttribute] = Field(default_factory=list)
    permissions: List[InteractionSourcePermission] = Field(default_factory=list)


class InteractionSourceUpdate(BaseModel):
    type: InteractionSourceType
    name: str = Field(..., min_length=1, max_length=100)
    attributes: List[InteractionSourceAttribute] = Field(default_factory=list)
    permissions: List[InteractionSourcePermission] = Field(default_factory=list)


class InteractionSourceResponse(BaseModel):
    source_id: str
    tenant_id: str
    type: InteractionSourceType
    name: str
    attributes: List[InteractionSourceAttribute] = Field(default_factory=list)
    permissions: List[InteractionSourcePermission] = Field(default_factory=list)

    class Config:
        from_attributes = True
        use_enum_values = True


class InteractionSourceSummary(BaseModel):
    source_id: str
    tenant_id: str
    type: InteractionSourceType
    name: str

    class Config:
        from_attributes = True
        use_enum_values = True


class InteractionSourceListResponse(PagedListResponse):
    sources: List[InteractionSourceSummary]


# Interactions

class CreateInteractionRequest(BaseModel):
    source_id: str
    source_reference: Optional[str] = Field(None, max_length=255)
    conversation_id: Optional[str] = Field(None, max_length=30, description="Taken from the subject when not given")
    party_id: Optional[str] = None
    status: Optional[InteractionStatus] = None
    type: InteractionType
    direction: InteractionDirection
    sender: str = Field(..., min_length=1, max_length=255)
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = Field(None, max_length=2000)
    mime_type: InteractionMimeType = InteractionMimeType.TEXT_PLAIN
    content: Optional[str] = None
    priority: InteractionPriority = InteractionPriority.NORMAL
    occurred: Optional[datetime] = None


class UpdateInteractionRequest(BaseModel):
    """Fields left as None are not changed"""
    status: Optional[InteractionStatus] = None
    party_id: Optional[str] = None
    subject: Optional[str] = Field(None, max_length=2000)
    mime_type: Optional[InteractionMimeType] = None
    content: Optional[str] = None
    priority: Optional[InteractionPriority] = None


class AssignInteractionRequest(BaseModel):
    assigned_to: str = Field(..., min_length=1, max_length=100)


class TransferInteractionRequest(BaseModel):
    source_id: str


class LinkPartyRequest(BaseModel):
    party_id: str = Field(..., min_length=1)


class InteractionResponse(BaseModel):
    interaction_id: str
    tenant_id: str
    source_id: str
    source_reference: Optional[str] = None
    conversation_id: str
    party_id: Optional[str] = None
    status: InteractionStatus
    type: InteractionType
    direction: InteractionDirection
    sender: str
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    mime_type: InteractionMimeType
    content: Optional[str] = None
    priority: InteractionPriority
    occurred: datetime
    assigned: Optional[datetime] = None
    assigned_to: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class InteractionSummary(BaseModel):
    interaction_id: str
    source_id: str
    conversation_id: str
    party_id: Optional[str] = None
    status: InteractionStatus
    type: InteractionType
    direction: InteractionDirection
    sender: str
    subject: Optional[str] = None
    priority: InteractionPriority
    occurred: datetime
    assigned_to: Optional[str] = None
    attachment_count: int = 0
    note_count: int = 0

    class Config:
        from_attributes = True
        use_enum_values = True


class InteractionListResponse(PagedListResponse):
    interactions: List[InteractionSummary]
    source_id: Optional[str] = None
    status: Optional[InteractionStatus] = None
    direction: Optional[InteractionDirection] = None


# Attachments

class InteractionAttachmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    file_type: FileType = FileType.UNKNOWN
    data: bytes = Field(..., description="Base64 encoded attachment data")

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class InteractionAttachmentSummary(BaseModel):
    attachment_id: str
    interaction_id: str
    name: str
    file_type: FileType
    hash: str

    class Config:
        from_attributes = True
        use_enum_values = True


class InteractionAttachmentResponse(InteractionAttachmentSummary):
    tenant_id: str
    data: bytes

    @field_serializer("data")
    def serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")


class InteractionAttachmentListResponse(PagedListResponse):
    attachments: List[InteractionAttachmentSummary]


# Notes

class InteractionNoteRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class InteractionNoteResponse(BaseModel):
    note_id: str
    tenant_id: str
    interaction_id: str
    content: str
    created: datetime
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class InteractionNoteListResponse(PagedListResponse):
    notes: List[InteractionNoteResponse]
