"""
Registry for looking up workflow engine connectors by connector type.
"""

from typing import Dict, List, Type

from ..core.exceptions import InvalidArgumentError
from ..models.workflow import WorkflowEngine
from .base import WorkflowEngineConnector
from .internal import InternalWorkflowEngineConnector


class ConnectorRegistry:
    """Registry of the connector classes available to workflow engines"""

    def __init__(self):
        self._connectors: Dict[str, Type[WorkflowEngineConnector]] = {}

    def register(self, connector_type: str, connector_class: Type[WorkflowEngineConnector]):
        """Register a connector class for a connector type"""
        self._connectors[connector_type] = connector_class

    def unregister(self, connector_type: str):
        self._connectors.pop(connector_type, None)

    def is_registered(self, connector_type: str) -> bool:
        return connector_type in self._connectors

    def list_connector_types(self) -> List[str]:
        return sorted(self._connectors)

    def get_connector(self, engine: WorkflowEngine) -> WorkflowEngineConnector:
        """Create the connector for a workflow engine"""
        connector_class = self._connectors.get(engine.connector_type)
        if connector_class is None:
            raise InvalidArgumentError(
                "connector_type", f"no connector is registered for the type ({engine.connector_type})"
            )
        return connector_class(engine)


connector_registry = ConnectorRegistry()
connector_registry.register("internal", InternalWorkflowEngineConnector)
