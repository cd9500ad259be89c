"""
Document models for the operations service.
Document definitions describe the kinds of documents a tenant works with, and
documents are the files (with attributes and external references) captured
against those definitions.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from beanie import Document
from pydantic import BaseModel, Field, field_validator
from pymongo import IndexModel

from .common import Attribute, AttributeType, ExternalReference, FileType, ObjectType, coerce_bytes, generate_id


class RequiredDocumentAttribute(str, Enum):
    """Built-in document attributes a definition can make mandatory"""
    EXPIRY_DATE = "expiry_date"
    EXTERNAL_REFERENCE = "external_reference"
    ISSUE_DATE = "issue_date"


class DocumentAttributeDefinition(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    required: bool = False
    pattern: Optional[str] = Field(None, description="Regular expression the value must fully match")
    type: AttributeType = AttributeType.STRING


class DocumentDefinitionCategory(Document):
    """Groups document definitions, either globally or for a tenant"""
    category_id: str = Field(..., min_length=1, max_length=50, description="Unique category identifier")
    tenant_id: Optional[str] = Field(None, description="Tenant, or None for a global category")
    name: str = Field(..., min_length=1, max_length=100)

    class Settings:
        name = "document_definition_categories"
        indexes = [
            IndexModel([("category_id", 1)], unique=True),
            IndexModel([("tenant_id", 1)]),
        ]


class DocumentTemplate(Document):
    template_id: str = Field(..., min_length=1, max_length=50, description="Unique template identifier")
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    file_type: FileType
    data: bytes
    hash: Optional[str] = Field(None, description="Base64 encoded SHA-256 hash of the template data")

    coerce_data = field_validator("data", mode="before")(coerce_bytes)

    created: datetime = Field(default_factory=datetime.utcnow)
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Settings:
        name = "document_templates"
        indexes = [
            IndexModel([("template_id", 1)], unique=True),
            IndexModel([("tenant_id", 1)]),
        ]


class DocumentDefinition(Document):
    definition_id: str = Field(..., min_length=1, max_length=50, description="Unique definition identifier")
    tenant_id: Optional[str] = None
    category_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    template_id: Optional[str] = None
    required_document_attributes: List[RequiredDocumentAttribute] = Field(default_factory=list)
    attribute_definitions: List[DocumentAttributeDefinition] = Field(default_factory=list)

    class Settings:
        name = "document_definitions"
        indexes = [
            IndexModel([("definition_id", 1)], unique=True),
            IndexModel([("category_id", 1)]),
            IndexModel([("tenant_id", 1)]),
        ]

    def requires(self, attribute: RequiredDocumentAttribute) -> bool:
        return attribute in self.required_document_attributes

    def get_attribute_definition(self, code: str) -> Optional[DocumentAttributeDefinition]:
        for attribute_definition in self.attribute_definitions:
            if attribute_definition.code == code:
                return attribute_definition
        return None


class DocumentModel(Document):
    """A document captured against a document definition"""
    document_id: str = Field(default_factory=generate_id, description="Unique document identifier")
    tenant_id: str
    definition_id: str
    name: Optional[str] = Field(None, max_length=100)
    file_type: FileType
    data: bytes
    hash: str
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    source_document_id: Optional[str] = None
    attributes: List[Attribute] = Field(default_factory=list)
    external_references: List[ExternalReference] = Field(default_factory=list)

    created: datetime = Field(default_factory=datetime.utcnow)
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    coerce_data = field_validator("data", mode="before")(coerce_bytes)

    class Settings:
        name = "documents"
        indexes = [
            IndexModel([("document_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("definition_id", 1)]),
            IndexModel([("hash", 1)]),
        ]


class DocumentNote(Document):
    note_id: str = Field(default_factory=generate_id)
    tenant_id: str
    document_id: str
    content: str = Field(..., min_length=1, max_length=4000)

    created: datetime = Field(default_factory=datetime.utcnow)
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Settings:
        name = "document_notes"
        indexes = [
            IndexModel([("note_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("document_id", 1)]),
        ]


class ExternalReferenceType(Document):
    """An external reference type that may be attached to objects of a given type"""
    code: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)
    object_type: Optional[ObjectType] = Field(None, description="Object type, or None for every object type")

    class Settings:
        name = "external_reference_types"
        indexes = [
            IndexModel([("code", 1), ("tenant_id", 1)], unique=True),
            IndexModel([("object_type", 1)]),
        ]

    def applies_to(self, object_type: ObjectType) -> bool:
        return self.object_type is None or self.object_type == object_type
