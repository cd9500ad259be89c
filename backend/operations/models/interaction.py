"""
Interaction models: messages (emails, WhatsApp, SMS, web chat) received from
or sent through interaction sources, with their attachments and notes.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from beanie import Document
from pydantic import BaseModel, Field, field_validator
from pymongo import IndexModel

from .common import FileType, coerce_bytes, generate_id


class InteractionSourceType(str, Enum):
    MAILBOX = "mailbox"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    WEB = "web"
    VIRTUAL = "virtual"


class InteractionSourceAttributeCode(str, Enum):
    """Attribute codes used to configure mailbox sources"""
    PROTOCOL = "protocol"
    HOST = "host"
    PORT = "port"
    PRINCIPAL = "principal"
    CREDENTIAL = "credential"
    EMAIL_ADDRESS = "email_address"
    DELETE_MAIL = "delete_mail"
    ARCHIVE_MAIL = "archive_mail"


class MailboxProtocol(str, Enum):
    IMAP = "imap"
    IMAPS = "imaps"


class InteractionPermissionType(str, Enum):
    ASSIGN_INTERACTION = "assign_interaction"
    CREATE_INTERACTION = "create_interaction"
    CREATE_INTERACTION_NOTE = "create_interaction_note"
    DELETE_INTERACTION = "delete_interaction"
    LINK_PARTY_TO_INTERACTION = "link_party_to_interaction"
    RETRIEVE_INTERACTION = "retrieve_interaction"
    RETRIEVE_INTERACTION_NOTE = "retrieve_interaction_note"
    TRANSFER_INTERACTION = "transfer_interaction"
    UPDATE_INTERACTION = "update_interaction"
    UPDATE_INTERACTION_NOTE = "update_interaction_note"


class InteractionStatus(str, Enum):
    RECEIVED = "received"
    QUEUED = "queued"
    PROCESSING = "processing"
    AVAILABLE = "available"
    FAILED = "failed"


class InteractionType(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    WEB_CHAT = "web_chat"
    OTHER = "other"


class InteractionDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class InteractionMimeType(str, Enum):
    TEXT_PLAIN = "text/plain"
    TEXT_HTML = "text/html"


class InteractionPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class InteractionSourceAttribute(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    value: str = Field(..., max_length=1000)


class InteractionSourcePermission(BaseModel):
    role_code: str = Field(..., min_length=1, max_length=100)
    type: InteractionPermissionType


class InteractionSource(Document):
    source_id: str = Field(default_factory=generate_id, description="Unique interaction source identifier")
    tenant_id: str
    type: InteractionSourceType
    name: str = Field(..., min_length=1, max_length=100)
    attributes: List[InteractionSourceAttribute] = Field(default_factory=list)
    permissions: List[InteractionSourcePermission] = Field(default_factory=list)

    class Settings:
        name = "interaction_sources"
        indexes = [
            IndexModel([("source_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("name", 1)]),
        ]

    def get_attribute(self, code: str) -> Optional[str]:
        for attribute in self.attributes:
            if attribute.code == code:
                return attribute.value
        return None


class Interaction(Document):
    interaction_id: str = Field(default_factory=generate_id, description="Unique interaction identifier")
    tenant_id: str
    source_id: str
    source_reference: Optional[str] = Field(None, max_length=255, description="ID of the message at the source")
    conversation_id: str = Field(..., max_length=30)
    party_id: Optional[str] = None
    status: InteractionStatus = InteractionStatus.QUEUED
    type: InteractionType
    direction: InteractionDirection
    sender: str = Field(..., min_length=1, max_length=255)
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = Field(None, max_length=2000)
    mime_type: InteractionMimeType = InteractionMimeType.TEXT_PLAIN
    content: Optional[str] = None
    priority: InteractionPriority = InteractionPriority.NORMAL
    occurred: datetime = Field(default_factory=datetime.utcnow)
    assigned: Optional[datetime] = None
    assigned_to: Optional[str] = None

    # Processing
    lock_name: Optional[str] = Field(None, description="Name of the instance processing the interaction")
    processing_attempts: int = 0
    last_processed: Optional[datetime] = None
    next_processing_attempt: Optional[datetime] = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "interactions"
        indexes = [
            IndexModel([("interaction_id", 1)], unique=True),
            IndexModel(
                [("source_id", 1), ("source_reference", 1)],
                unique=True,
                partialFilterExpression={"source_reference": {"$type": "string"}}
            ),
            IndexModel([("tenant_id", 1), ("status", 1), ("next_processing_attempt", 1)]),
            IndexModel([("conversation_id", 1)]),
            IndexModel([("occurred", -1)]),
        ]


class InteractionAttachment(Document):
    attachment_id: str = Field(default_factory=generate_id)
    tenant_id: str
    interaction_id: str
    name: str = Field(..., min_length=1, max_length=255)
    file_type: FileType = FileType.UNKNOWN
    data: bytes
    hash: str

    coerce_data = field_validator("data", mode="before")(coerce_bytes)

    class Settings:
        name = "interaction_attachments"
        indexes = [
            IndexModel([("attachment_id", 1)], unique=True),
            IndexModel([("interaction_id", 1), ("hash", 1)], unique=True),
        ]


class InteractionNote(Document):
    note_id: str = Field(default_factory=generate_id)
    tenant_id: str
    interaction_id: str
    content: str = Field(..., min_length=1, max_length=4000)

    created: datetime = Field(default_factory=datetime.utcnow)
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Settings:
        name = "interaction_notes"
        indexes = [
            IndexModel([("note_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("interaction_id", 1)]),
        ]
