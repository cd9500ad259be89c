# Models package

from .common import (
    SortDirection,
    ObjectType,
    AttributeType,
    FileType,
    ExternalReference,
    Attribute
)
from .document import (
    DocumentDefinitionCategory,
    DocumentTemplate,
    DocumentDefinition,
    DocumentModel,
    DocumentNote,
    ExternalReferenceType
)
from .workflow import (
    WorkflowEngine,
    WorkflowDefinitionCategory,
    WorkflowDefinition,
    Workflow,
    WorkflowDocument,
    WorkflowNote,
    WorkflowInteractionLink
)
from .interaction import (
    InteractionSource,
    Interaction,
    InteractionAttachment,
    InteractionNote
)
from .event import Event

__all__ = [
    "SortDirection",
    "ObjectType",
    "AttributeType",
    "FileType",
    "ExternalReference",
    "Attribute",
    "DocumentDefinitionCategory",
    "DocumentTemplate",
    "DocumentDefinition",
    "DocumentModel",
    "DocumentNote",
    "ExternalReferenceType",
    "WorkflowEngine",
    "WorkflowDefinitionCategory",
    "WorkflowDefinition",
    "Workflow",
    "WorkflowDocument",
    "WorkflowNote",
    "WorkflowInteractionLink",
    "InteractionSource",
    "Interaction",
    "InteractionAttachment",
    "InteractionNote",
    "Event",
]
