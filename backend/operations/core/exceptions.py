"""
Service errors for the operations module.
Every error maps to an HTTP status code and a problem type that the API layer
renders as an RFC 7807 problem document.
"""

from typing import Any, Dict, Optional

PROBLEM_TYPE_BASE = "https://operations.local/problems"


class ServiceError(Exception):
    """Base class for all errors raised by the operations services"""

    status_code: int = 500
    problem_type: str = f"{PROBLEM_TYPE_BASE}/service-error"
    title: str = "Service Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_problem(self) -> Dict[str, Any]:
        return {
            "type": self.problem_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.message,
        }


class ServiceUnavailableError(ServiceError):
    status_code = 500
    problem_type = f"{PROBLEM_TYPE_BASE}/service-unavailable"
    title = "Service Unavailable"


class InvalidArgumentError(ServiceError):
    status_code = 400
    problem_type = f"{PROBLEM_TYPE_BASE}/invalid-argument"
    title = "Invalid Argument"

    def __init__(self, parameter: str, message: Optional[str] = None):
        if message:
            detail = f"Invalid argument ({parameter}): {message}"
        else:
            detail = f"Invalid argument ({parameter})"
        super().__init__(detail)
        self.parameter = parameter

    def to_problem(self) -> Dict[str, Any]:
        problem = super().to_problem()
        problem["parameter"] = self.parameter
        return problem


class AccessDeniedError(ServiceError):
    status_code = 403
    problem_type = f"{PROBLEM_TYPE_BASE}/access-denied"
    title = "Access Denied"


class NotFoundError(ServiceError):
    """Raised when an entity identified by its natural key does not exist"""

    status_code = 404
    entity: str = "object"

    def __init__(self, object_id: Any, tenant_id: Optional[str] = None):
        if tenant_id:
            message = f"The {self.entity} ({object_id}) for the tenant ({tenant_id}) could not be found"
        else:
            message = f"The {self.entity} ({object_id}) could not be found"
        super().__init__(message)
        self.object_id = object_id
        self.tenant_id = tenant_id

    @property
    def problem_type(self) -> str:
        return f"{PROBLEM_TYPE_BASE}/{self.entity.replace(' ', '-')}-not-found"

    @property
    def title(self) -> str:
        return f"{self.entity.title()} Not Found"


class DuplicateError(ServiceError):
    """Raised when an entity with the same natural key already exists"""

    status_code = 409
    entity: str = "object"

    def __init__(self, object_id: Any):
        super().__init__(f"The {self.entity} ({object_id}) already exists")
        self.object_id = object_id

    @property
    def problem_type(self) -> str:
        return f"{PROBLEM_TYPE_BASE}/duplicate-{self.entity.replace(' ', '-')}"

    @property
    def title(self) -> str:
        return f"Duplicate {self.entity.title()}"


# Documents

class DocumentNotFoundError(NotFoundError):
    entity = "document"


class DocumentDefinitionNotFoundError(NotFoundError):
    entity = "document definition"


class DocumentDefinitionCategoryNotFoundError(NotFoundError):
    entity = "document definition category"


class DocumentTemplateNotFoundError(NotFoundError):
    entity = "document template"


class DocumentNoteNotFoundError(NotFoundError):
    entity = "document note"


class ExternalReferenceTypeNotFoundError(NotFoundError):
    entity = "external reference type"


class DuplicateDocumentDefinitionError(DuplicateError):
    entity = "document definition"


class DuplicateDocumentDefinitionCategoryError(DuplicateError):
    entity = "document definition category"


class DuplicateDocumentTemplateError(DuplicateError):
    entity = "document template"


class DuplicateExternalReferenceTypeError(DuplicateError):
    entity = "external reference type"


# Workflows

class WorkflowNotFoundError(NotFoundError):
    entity = "workflow"


class WorkflowDefinitionNotFoundError(NotFoundError):
    entity = "workflow definition"


class WorkflowDefinitionVersionNotFoundError(NotFoundError):
    entity = "workflow definition version"

    def __init__(self, workflow_definition_id: str, workflow_definition_version: int):
        super().__init__(f"{workflow_definition_id} v{workflow_definition_version}")
        self.workflow_definition_id = workflow_definition_id
        self.workflow_definition_version = workflow_definition_version


class WorkflowDefinitionCategoryNotFoundError(NotFoundError):
    entity = "workflow definition category"


class WorkflowEngineNotFoundError(NotFoundError):
    entity = "workflow engine"


class WorkflowDocumentNotFoundError(NotFoundError):
    entity = "workflow document"


class WorkflowNoteNotFoundError(NotFoundError):
    entity = "workflow note"


class WorkflowStepNotFoundError(NotFoundError):
    entity = "workflow step"

    def __init__(self, workflow_id: str, step: str, tenant_id: Optional[str] = None):
        super().__init__(f"{step}", tenant_id)
        self.message = (
            f"The workflow step ({step}) for the workflow ({workflow_id}) could not be found"
        )
        self.args = (self.message,)
        self.workflow_id = workflow_id
        self.step = step


class WorkflowInteractionLinkNotFoundError(NotFoundError):
    entity = "workflow interaction link"

    def __init__(self, workflow_id: str, interaction_id: str):
        super().__init__(f"{workflow_id}/{interaction_id}")
        self.workflow_id = workflow_id
        self.interaction_id = interaction_id


class DuplicateWorkflowDefinitionVersionError(DuplicateError):
    entity = "workflow definition version"

    def __init__(self, workflow_definition_id: str, workflow_definition_version: int):
        super().__init__(f"{workflow_definition_id} v{workflow_definition_version}")


class DuplicateWorkflowDefinitionCategoryError(DuplicateError):
    entity = "workflow definition category"


class DuplicateWorkflowEngineError(DuplicateError):
    entity = "workflow engine"


class InvalidWorkflowStatusError(ServiceError):
    status_code = 409
    problem_type = f"{PROBLEM_TYPE_BASE}/invalid-workflow-status"
    title = "Invalid Workflow Status"

    def __init__(self, workflow_id: str, status: Any, operation: str):
        super().__init__(
            f"The workflow ({workflow_id}) with status ({getattr(status, 'value', status)}) "
            f"does not support the operation ({operation})"
        )
        self.workflow_id = workflow_id
        self.status = status


class InvalidWorkflowDocumentStatusError(ServiceError):
    status_code = 409
    problem_type = f"{PROBLEM_TYPE_BASE}/invalid-workflow-document-status"
    title = "Invalid Workflow Document Status"

    def __init__(self, workflow_document_id: str, status: Any, operation: str):
        super().__init__(
            f"The workflow document ({workflow_document_id}) with status "
            f"({getattr(status, 'value', status)}) does not support the operation ({operation})"
        )
        self.workflow_document_id = workflow_document_id
        self.status = status


# Interactions

class InteractionNotFoundError(NotFoundError):
    entity = "interaction"


class InteractionSourceNotFoundError(NotFoundError):
    entity = "interaction source"


class InteractionAttachmentNotFoundError(NotFoundError):
    entity = "interaction attachment"


class InteractionNoteNotFoundError(NotFoundError):
    entity = "interaction note"


class DuplicateInteractionError(DuplicateError):
    entity = "interaction"


class DuplicateInteractionSourceError(DuplicateError):
    entity = "interaction source"


class DuplicateInteractionAttachmentError(DuplicateError):
    entity = "interaction attachment"


# Events

class EventNotFoundError(NotFoundError):
    entity = "event"
