from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from beanie import Document
from pydantic import BaseModel, ConfigDict, Field
from pymongo import IndexModel

from .common import Attribute, AttributeType, generate_id


# ISO 8601 duration, e.g. P3D or PT12H
ISO_8601_DURATION_PATTERN = (
    r"^P(?!$)(\d+Y)?(\d+M)?(\d+W)?(\d+D)?(T(?=\d)(\d+H)?(\d+M)?(\d+(\.\d+)?S)?)?$"
)


class WorkflowStatus(str, Enum):
    INITIATED = "initiated"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELED = "canceled"
    TERMINATED = "terminated"
    FAILED = "failed"

    @classmethod
    def finalized_statuses(cls) -> List["WorkflowStatus"]:
        return [cls.COMPLETED, cls.TERMINATED, cls.FAILED]

    @classmethod
    def closed_statuses(cls) -> List["WorkflowStatus"]:
        return cls.finalized_statuses() + [cls.CANCELED]


class WorkflowStepStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    FAILED = "failed"
    CANCELED = "canceled"

    @classmethod
    def open_statuses(cls) -> List["WorkflowStepStatus"]:
        return [cls.ACTIVE, cls.SUSPENDED]


class WorkflowDocumentStatus(str, Enum):
    REQUESTED = "requested"
    PROVIDED = "provided"
    VERIFIABLE = "verifiable"
    VERIFIED = "verified"
    REJECTED = "rejected"
    WAIVED = "waived"

    @classmethod
    def outstanding_statuses(cls) -> List["WorkflowDocumentStatus"]:
        return [cls.REQUESTED, cls.REJECTED]


class WorkflowPermissionType(str, Enum):
    INITIATE_WORKFLOW = "initiate_workflow"
    RETRIEVE_WORKFLOW = "retrieve_workflow"
    UPDATE_WORKFLOW = "update_workflow"
    CANCEL_WORKFLOW = "cancel_workflow"
    SUSPEND_WORKFLOW = "suspend_workflow"
    MANAGE_WORKFLOW_DOCUMENTS = "manage_workflow_documents"
    MANAGE_WORKFLOW_NOTES = "manage_workflow_notes"


class ValidationSchemaType(str, Enum):
    JSON = "json"


# Workflow engines

class WorkflowEngineAttribute(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    value: str = Field(..., max_length=1000)


class WorkflowEngine(Document):
    """An external (or the internal) engine that executes workflows"""
    engine_id: str = Field(..., min_length=1, max_length=50, description="Unique engine identifier")
    name: str = Field(..., min_length=1, max_length=100)
    connector_type: str = Field(..., description="Connector used to talk to the engine, e.g. internal")
    attributes: List[WorkflowEngineAttribute] = Field(default_factory=list, description="Connector configuration")

    class Settings:
        name = "workflow_engines"
        indexes = [
            IndexModel([("engine_id", 1)], unique=True),
        ]

    def get_attribute(self, code: str) -> Optional[str]:
        for attribute in self.attributes:
            if attribute.code == code:
                return attribute.value
        return None


# Workflow definitions

class WorkflowDefinitionCategory(Document):
    category_id: str = Field(..., min_length=1, max_length=50)
    tenant_id: Optional[str] = Field(None, description="Tenant, or None for a global category")
    name: str = Field(..., min_length=1, max_length=100)

    class Settings:
        name = "workflow_definition_categories"
        indexes = [
            IndexModel([("category_id", 1)], unique=True),
            IndexModel([("tenant_id", 1)]),
        ]


class WorkflowStepDefinition(BaseModel):
    model_config = ConfigDict(regex_engine="python-re")

    sequence: int = Field(..., ge=0, description="Order of the step within the workflow")
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    optional: bool = False
    internal: bool = False
    external: bool = False
    time_to_complete: Optional[str] = Field(
        None, pattern=ISO_8601_DURATION_PATTERN, description="ISO 8601 duration"
    )


class WorkflowDefinitionDocumentDefinition(BaseModel):
    """A document definition configured on a workflow definition"""
    model_config = ConfigDict(regex_engine="python-re")

    document_definition_id: str
    required: bool = False
    singular: bool = False
    verifiable: bool = False
    internal: bool = False
    validity_period: Optional[str] = Field(
        None, pattern=ISO_8601_DURATION_PATTERN, description="ISO 8601 duration"
    )


class WorkflowAttributeDefinition(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    required: bool = False
    pattern: Optional[str] = None
    type: AttributeType = AttributeType.STRING


class WorkflowVariableDefinition(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AttributeType = AttributeType.STRING
    required: bool = False


class WorkflowDefinitionPermission(BaseModel):
    role_code: str = Field(..., min_length=1, max_length=100)
    type: WorkflowPermissionType


class WorkflowDefinition(Document):
    """A version of a workflow definition, unique by (definition_id, version)"""
    definition_id: str = Field(..., min_length=1, max_length=50)
    version: int = Field(..., ge=1)
    tenant_id: Optional[str] = None
    category_id: str
    engine_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    validation_schema_type: Optional[ValidationSchemaType] = None
    validation_schema: Optional[str] = Field(None, description="Schema the workflow data must satisfy")

    attribute_definitions: List[WorkflowAttributeDefinition] = Field(default_factory=list)
    variable_definitions: List[WorkflowVariableDefinition] = Field(default_factory=list)
    step_definitions: List[WorkflowStepDefinition] = Field(default_factory=list)
    document_definitions: List[WorkflowDefinitionDocumentDefinition] = Field(default_factory=list)
    permissions: List[WorkflowDefinitionPermission] = Field(default_factory=list)
    attributes: List[Attribute] = Field(default_factory=list, description="Engine specific attributes")

    class Settings:
        name = "workflow_definitions"
        indexes = [
            IndexModel([("definition_id", 1), ("version", -1)], unique=True),
            IndexModel([("category_id", 1)]),
            IndexModel([("engine_id", 1)]),
            IndexModel([("tenant_id", 1)]),
        ]

    def get_step_definition(self, code: str) -> Optional[WorkflowStepDefinition]:
        for step_definition in self.step_definitions:
            if step_definition.code == code:
                return step_definition
        return None

    def get_document_definition(self, document_definition_id: str) -> Optional[WorkflowDefinitionDocumentDefinition]:
        for document_definition in self.document_definitions:
            if document_definition.document_definition_id == document_definition_id:
                return document_definition
        return None

    def get_attribute_definition(self, code: str) -> Optional[WorkflowAttributeDefinition]:
        for attribute_definition in self.attribute_definitions:
            if attribute_definition.code == code:
                return attribute_definition
        return None

    def get_variable_definition(self, name: str) -> Optional[WorkflowVariableDefinition]:
        for variable_definition in self.variable_definitions:
            if variable_definition.name.lower() == name.lower():
                return variable_definition
        return None


# Workflows

class WorkflowStep(BaseModel):
    code: str
    status: WorkflowStepStatus = WorkflowStepStatus.ACTIVE
    initiated: datetime = Field(default_factory=datetime.utcnow)
    suspended: Optional[datetime] = None
    finalized: Optional[datetime] = None

    def activate(self):
        self.status = WorkflowStepStatus.ACTIVE
        self.initiated = datetime.utcnow()
        self.suspended = None
        self.finalized = None

    def suspend(self):
        self.status = WorkflowStepStatus.SUSPENDED
        self.suspended = datetime.utcnow()

    def unsuspend(self):
        self.status = WorkflowStepStatus.ACTIVE
        self.suspended = None

    def finalize(self, status: WorkflowStepStatus):
        self.status = status
        self.finalized = datetime.utcnow()


class WorkflowVariable(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AttributeType = AttributeType.STRING
    value: Any = None


class Workflow(Document):
    """A workflow instance initiated from a workflow definition version"""
    workflow_id: str = Field(default_factory=generate_id, description="Unique workflow identifier")
    tenant_id: str
    parent_id: Optional[str] = Field(None, description="Parent workflow ID")
    party_id: Optional[str] = Field(None, description="Party the workflow is for")
    definition_id: str
    definition_version: int
    engine_instance_id: Optional[str] = Field(None, description="Instance ID assigned by the workflow engine")
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    external_reference: Optional[str] = Field(None, max_length=100)
    attributes: List[Attribute] = Field(default_factory=list)
    variables: List[WorkflowVariable] = Field(default_factory=list)
    data: Optional[str] = Field(None, description="Workflow data, validated against the definition schema")
    steps: List[WorkflowStep] = Field(default_factory=list)

    initiated: datetime = Field(default_factory=datetime.utcnow)
    initiated_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    suspended: Optional[datetime] = None
    suspended_by: Optional[str] = None
    finalized: Optional[datetime] = None
    finalized_by: Optional[str] = None
    canceled: Optional[datetime] = None
    canceled_by: Optional[str] = None
    cancellation_reason: Optional[str] = Field(None, max_length=500)

    class Settings:
        name = "workflows"
        indexes = [
            IndexModel([("workflow_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("definition_id", 1)]),
            IndexModel([("tenant_id", 1), ("status", 1)]),
            IndexModel([("parent_id", 1)]),
            IndexModel([("initiated", -1)]),
        ]

    def get_step(self, code: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.code == code:
                return step
        return None

    def get_attribute(self, code: str) -> Optional[Attribute]:
        for attribute in self.attributes:
            if attribute.code == code:
                return attribute
        return None

    def get_variable(self, name: str) -> Optional[WorkflowVariable]:
        for variable in self.variables:
            if variable.name.lower() == name.lower():
                return variable
        return None

    def is_closed(self) -> bool:
        return self.status in WorkflowStatus.closed_statuses()


class WorkflowDocument(Document):
    """A document requested for, and provided to, a workflow"""
    workflow_document_id: str = Field(default_factory=generate_id)
    tenant_id: str
    workflow_id: str
    document_definition_id: str
    document_id: Optional[str] = Field(None, description="Document provided for the request")
    status: WorkflowDocumentStatus = WorkflowDocumentStatus.REQUESTED
    description: Optional[str] = Field(None, max_length=500)
    internal: bool = False
    requested_from_party_id: Optional[str] = None

    requested: datetime = Field(default_factory=datetime.utcnow)
    requested_by: str
    provided: Optional[datetime] = None
    provided_by: Optional[str] = None
    verified: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejected: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = Field(None, max_length=500)
    waived: Optional[datetime] = None
    waived_by: Optional[str] = None

    class Settings:
        name = "workflow_documents"
        indexes = [
            IndexModel([("workflow_document_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("workflow_id", 1)]),
            IndexModel([("document_id", 1)]),
            IndexModel([("status", 1)]),
        ]

    def is_outstanding(self) -> bool:
        return self.status in WorkflowDocumentStatus.outstanding_statuses()


class WorkflowNote(Document):
    note_id: str = Field(default_factory=generate_id)
    tenant_id: str
    workflow_id: str
    content: str = Field(..., min_length=1, max_length=4000)

    created: datetime = Field(default_factory=datetime.utcnow)
    created_by: str
    updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Settings:
        name = "workflow_notes"
        indexes = [
            IndexModel([("note_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("workflow_id", 1)]),
        ]


class WorkflowInteractionLink(Document):
    """Links an interaction (e.g. an email) to a workflow"""
    workflow_id: str
    interaction_id: str
    tenant_id: str
    conversation_id: Optional[str] = None
    linked: datetime = Field(default_factory=datetime.utcnow)
    linked_by: str

    class Settings:
        name = "workflow_interaction_links"
        indexes = [
            IndexModel([("workflow_id", 1), ("interaction_id", 1)], unique=True),
            IndexModel([("interaction_id", 1)]),
            IndexModel([("conversation_id", 1)]),
        ]

