import base64
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from ..models.common import Attribute, ExternalReference, FileType, ObjectType
from ..models.document import DocumentAttributeDefinition, RequiredDocumentAttribute
from .common import PagedListResponse, decode_base64_data


class DocumentDefinitionCategorySchema(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)

    class Config:
        from_attributes = True


class DocumentTemplateCreate(BaseModel):
    template_id: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    file_type: FileType
    data: bytes = Field(..., description="Base64 encoded template data")

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class DocumentTemplateUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    file_type: FileType
    data: bytes

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class DocumentTemplateSummary(BaseModel):
    template_id: str
    tenant_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    file_type: FileType
    hash: str
    created: datetime
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class DocumentTemplateResponse(DocumentTemplateSummary):
    data: bytes

    @field_serializer("data")
    def serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")


class DocumentDefinitionSchema(BaseModel):
    definition_id: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    category_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    template_id: Optional[str] = None
    required_document_attributes: List[RequiredDocumentAttribute] = Field(default_factory=list)
    attribute_definitions: List[DocumentAttributeDefinition] = Field(default_factory=list)

    class Config:
        from_attributes = True
        use_enum_values = True


class DocumentDefinitionSummary(BaseModel):
    definition_id: str
    tenant_id: Optional[str] = None
    category_id: str
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class CreateDocumentRequest(BaseModel):
    definition_id: str
    name: Optional[str] = Field(None, max_length=100)
    file_type: FileType
    data: bytes = Field(..., description="Base64 encoded document data")
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    source_document_id: Optional[str] = None
    attributes: List[Attribute] = Field(default_factory=list)
    external_references: List[ExternalReference] = Field(default_factory=list)

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class UpdateDocumentRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    file_type: FileType
    data: bytes
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    attributes: List[Attribute] = Field(default_factory=list)
    external_references: List[ExternalReference] = Field(default_factory=list)

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class DocumentResponse(BaseModel):
    document_id: str
    tenant_id: str
    definition_id: str
    name: Optional[str] = None
    file_type: FileType
    data: bytes
    hash: str
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    source_document_id: Optional[str] = None
    attributes: List[Attribute] = Field(default_factory=list)
    external_references: List[ExternalReference] = Field(default_factory=list)
    created: datetime
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True

    @field_serializer("data")
    def serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")


class DocumentNoteRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class DocumentNoteResponse(BaseModel):
    note_id: str
    tenant_id: str
    document_id: str
    content: str
    created: datetime
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class DocumentNoteListResponse(PagedListResponse):
    notes: List[DocumentNoteResponse]


class ExternalReferenceTypeSchema(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)
    object_type: Optional[ObjectType] = None

    class Config:
        from_attributes = True
        use_enum_values = True
