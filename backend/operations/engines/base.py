"""
Base class for workflow engine connectors.
A connector links the workflows held by the operations service to the engine
that executes them.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models.event import EventType
from ..models.workflow import Workflow, WorkflowDefinition, WorkflowEngine


class WorkflowEngineConnector(ABC):
    """Interface every workflow engine connector implements"""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine

    @abstractmethod
    async def initiate_workflow(
        self,
        workflow_definition: WorkflowDefinition,
        workflow: Workflow
    ) -> Optional[str]:
        """
        Start the workflow in the engine.

        Returns:
            The ID of the engine instance for the workflow, if the engine assigns one
        """

    @abstractmethod
    async def process_workflow_document_event(
        self,
        workflow_definition: WorkflowDefinition,
        tenant_id: str,
        workflow_id: str,
        engine_instance_id: Optional[str],
        workflow_document_id: str,
        event_type: EventType
    ):
        """Notify the engine that a workflow document was requested, provided, verified, rejected or waived"""

    async def process_workflow_event(
        self,
        workflow_definition: WorkflowDefinition,
        tenant_id: str,
        workflow_id: str,
        engine_instance_id: Optional[str],
        event_type: EventType
    ):
        """Notify the engine of a workflow level event such as a completed step"""
        return None
