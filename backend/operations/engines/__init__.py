from .base import WorkflowEngineConnector
from .internal import InternalWorkflowEngineConnector
from .registry import ConnectorRegistry, connector_registry

__all__ = [
    "WorkflowEngineConnector",
    "InternalWorkflowEngineConnector",
    "ConnectorRegistry",
    "connector_registry",
]
