import logging
from typing import Optional

from ..models.event import EventType
from ..models.workflow import Workflow, WorkflowDefinition
from .base import WorkflowEngineConnector

logger = logging.getLogger(__name__)


class InternalWorkflowEngineConnector(WorkflowEngineConnector):
    """
    Connector for workflows managed entirely through the operations API.
    The workflow state held by the operations service is the only state, so
    the connector only logs what it is told.
    """

    async def initiate_workflow(
        self,
        workflow_definition: WorkflowDefinition,
        workflow: Workflow
    ) -> Optional[str]:
        logger.debug(
            f"Initiated workflow {workflow.workflow_id} ({workflow_definition.definition_id} "
            f"v{workflow_definition.version}) on the internal engine {self.engine.engine_id}"
        )
        return None

    async def process_workflow_document_event(
        self,
        workflow_definition: WorkflowDefinition,
        tenant_id: str,
        workflow_id: str,
        engine_instance_id: Optional[str],
        workflow_document_id: str,
        event_type: EventType
    ):
        logger.debug(
            f"Internal engine received {event_type.value} for workflow document "
            f"{workflow_document_id} of workflow {workflow_id}"
        )
