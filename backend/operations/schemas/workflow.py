from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.common import Attribute, ExternalReference, FileType, SortDirection
from ..models.workflow import (
    ValidationSchemaType,
    WorkflowAttributeDefinition,
    WorkflowDefinitionDocumentDefinition,
    WorkflowDefinitionPermission,
    WorkflowDocumentStatus,
    WorkflowEngineAttribute,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepDefinition,
    WorkflowStepStatus,
    WorkflowVariable,
    WorkflowVariableDefinition,
)
from .common import PagedListResponse, decode_base64_data


# Engines and definitions

class WorkflowEngineSchema(BaseModel):
    engine_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    connector_type: str = Field(..., min_length=1, max_length=50)
    attributes: List[WorkflowEngineAttribute] = Field(default_factory=list)

    class Config:
        from_attributes = True


class WorkflowDefinitionCategorySchema(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)

    class Config:
        from_attributes = True


class WorkflowDefinitionSchema(BaseModel):
    definition_id: str = Field(..., min_length=1, max_length=50)
    version: int = Field(..., ge=1)
    tenant_id: Optional[str] = None
    category_id: str
    engine_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    validation_schema_type: Optional[ValidationSchemaType] = None
    validation_schema: Optional[str] = None
    attribute_definitions: List[WorkflowAttributeDefinition] = Field(default_factory=list)
    variable_definitions: List[WorkflowVariableDefinition] = Field(default_factory=list)
    step_definitions: List[WorkflowStepDefinition] = Field(default_factory=list)
    document_definitions: List[WorkflowDefinitionDocumentDefinition] = Field(default_factory=list)
    permissions: List[WorkflowDefinitionPermission] = Field(default_factory=list)
    attributes: List[Attribute] = Field(default_factory=list)

    class Config:
        from_attributes = True
        use_enum_values = True


class WorkflowDefinitionSummary(BaseModel):
    definition_id: str
    version: int
    tenant_id: Optional[str] = None
    category_id: str
    engine_id: str
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


# Workflows

class InitiateWorkflowRequest(BaseModel):
    definition_id: str
    parent_id: Optional[str] = None
    party_id: Optional[str] = None
    external_reference: Optional[str] = Field(None, max_length=100)
    attributes: List[Attribute] = Field(default_factory=list)
    variables: List[WorkflowVariable] = Field(default_factory=list)
    data: Optional[str] = None
    interaction_id: Optional[str] = Field(None, description="Interaction to link to the new workflow")
    pend: bool = Field(False, description="Leave the workflow initiated until it is started")


class UpdateWorkflowRequest(BaseModel):
    """Fields left as None are not changed"""
    status: Optional[WorkflowStatus] = None
    party_id: Optional[str] = None
    external_reference: Optional[str] = Field(None, max_length=100)
    attributes: Optional[List[Attribute]] = None
    variables: Optional[List[WorkflowVariable]] = None
    data: Optional[str] = None


class FinalizeWorkflowRequest(BaseModel):
    status: WorkflowStatus


class CancelWorkflowRequest(BaseModel):
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class SearchWorkflowsRequest(BaseModel):
    definition_id: Optional[str] = None
    status: Optional[WorkflowStatus] = None
    party_id: Optional[str] = None
    parent_id: Optional[str] = None
    interaction_id: Optional[str] = None
    external_reference: Optional[str] = None
    initiated_by: Optional[str] = None
    attributes: List[Attribute] = Field(default_factory=list, description="Attributes that must all match")
    sort_by: Optional[str] = None
    sort_direction: Optional[SortDirection] = None
    page_index: Optional[int] = None
    page_size: Optional[int] = None


class WorkflowResponse(BaseModel):
    workflow_id: str
    tenant_id: str
    parent_id: Optional[str] = None
    party_id: Optional[str] = None
    definition_id: str
    definition_version: int
    engine_instance_id: Optional[str] = None
    status: WorkflowStatus
    external_reference: Optional[str] = None
    attributes: List[Attribute] = Field(default_factory=list)
    variables: List[WorkflowVariable] = Field(default_factory=list)
    data: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    initiated: datetime
    initiated_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    suspended: Optional[datetime] = None
    suspended_by: Optional[str] = None
    finalized: Optional[datetime] = None
    finalized_by: Optional[str] = None
    canceled: Optional[datetime] = None
    canceled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class WorkflowSummary(BaseModel):
    workflow_id: str
    tenant_id: str
    parent_id: Optional[str] = None
    party_id: Optional[str] = None
    definition_id: str
    definition_version: int
    status: WorkflowStatus
    external_reference: Optional[str] = None
    initiated: datetime
    initiated_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    finalized: Optional[datetime] = None
    finalized_by: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class WorkflowListResponse(PagedListResponse):
    workflows: List[WorkflowSummary]
    definition_id: Optional[str] = None
    status: Optional[WorkflowStatus] = None


# Steps

class InitiateWorkflowStepRequest(BaseModel):
    step: str = Field(..., min_length=1, max_length=50)


class FinalizeWorkflowStepRequest(BaseModel):
    step: str = Field(..., min_length=1, max_length=50)
    status: WorkflowStepStatus
    next_step: Optional[str] = Field(None, max_length=50)


class WorkflowStepRequest(BaseModel):
    step: str = Field(..., min_length=1, max_length=50)


# Workflow documents

class RequestWorkflowDocumentRequest(BaseModel):
    document_definition_id: str
    description: Optional[str] = Field(None, max_length=500)
    requested_from_party_id: Optional[str] = None


class ProvideWorkflowDocumentRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    file_type: FileType
    data: bytes = Field(..., description="Base64 encoded document data")
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    attributes: List[Attribute] = Field(default_factory=list)
    external_references: List[ExternalReference] = Field(default_factory=list)

    decode_data = field_validator("data", mode="before")(decode_base64_data)


class RejectWorkflowDocumentRequest(BaseModel):
    rejection_reason: str = Field(..., min_length=1, max_length=500)


class WorkflowDocumentResponse(BaseModel):
    workflow_document_id: str
    tenant_id: str
    workflow_id: str
    document_definition_id: str
    document_id: Optional[str] = None
    status: WorkflowDocumentStatus
    description: Optional[str] = None
    internal: bool = False
    requested_from_party_id: Optional[str] = None
    requested: datetime
    requested_by: str
    provided: Optional[datetime] = None
    provided_by: Optional[str] = None
    verified: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejected: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    waived: Optional[datetime] = None
    waived_by: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class WorkflowDocumentListResponse(PagedListResponse):
    workflow_documents: List[WorkflowDocumentResponse]


# Notes and links

class WorkflowNoteRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class WorkflowNoteResponse(BaseModel):
    note_id: str
    tenant_id: str
    workflow_id: str
    content: str
    created: datetime
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class WorkflowNoteListResponse(PagedListResponse):
    notes: List[WorkflowNoteResponse]


class LinkInteractionRequest(BaseModel):
    interaction_id: str


class WorkflowInteractionLinkResponse(BaseModel):
    workflow_id: str
    interaction_id: str
    tenant_id: str
    conversation_id: Optional[str] = None
    linked: datetime
    linked_by: str

    class Config:
        from_attributes = True
