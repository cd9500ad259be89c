"""
Workflow service for the operations module.
Holds the platform side of every workflow: definitions, status, steps,
requested documents, notes and links to interactions. The engine that
executes a workflow is reached through its connector.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ..core.exceptions import (
    DuplicateWorkflowDefinitionCategoryError,
    DuplicateWorkflowDefinitionVersionError,
    DuplicateWorkflowEngineError,
    InvalidArgumentError,
    InvalidWorkflowDocumentStatusError,
    InvalidWorkflowStatusError,
    WorkflowDefinitionCategoryNotFoundError,
    WorkflowDefinitionNotFoundError,
    WorkflowDefinitionVersionNotFoundError,
    WorkflowDocumentNotFoundError,
    WorkflowEngineNotFoundError,
    WorkflowInteractionLinkNotFoundError,
    WorkflowNotFoundError,
    WorkflowNoteNotFoundError,
    WorkflowStepNotFoundError,
)
from ..core.logging_config import set_operations_context
from ..engines.base import WorkflowEngineConnector
from ..engines.registry import connector_registry
from ..models.common import ObjectType, SortDirection
from ..models.event import EventType
from ..models.interaction import Interaction
from ..models.workflow import (
    ValidationSchemaType,
    Workflow,
    WorkflowDefinition,
    WorkflowDefinitionCategory,
    WorkflowDefinitionPermission,
    WorkflowDocument,
    WorkflowDocumentStatus,
    WorkflowEngine,
    WorkflowInteractionLink,
    WorkflowNote,
    WorkflowPermissionType,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepStatus,
)
from ..schemas.document import CreateDocumentRequest
from ..schemas.workflow import (
    InitiateWorkflowRequest,
    ProvideWorkflowDocumentRequest,
    RequestWorkflowDocumentRequest,
    SearchWorkflowsRequest,
    UpdateWorkflowRequest,
)
from .common import any_field_filter, content_filter, resolve_page, resolve_sort, service_operation
from .document_service import document_service
from .event_service import event_service
from .validation_service import validation_service

logger = logging.getLogger(__name__)

SYSTEM_USER = "SYSTEM"

WORKFLOW_SORT_FIELDS = {
    "definition_id": "definition_id",
    "initiated": "initiated",
    "initiated_by": "initiated_by",
    "updated": "updated",
    "updated_by": "updated_by",
    "finalized": "finalized",
    "finalized_by": "finalized_by",
}

WORKFLOW_DOCUMENT_SORT_FIELDS = {
    "requested": "requested",
    "requested_by": "requested_by",
    "provided": "provided",
    "provided_by": "provided_by",
    "verified": "verified",
    "verified_by": "verified_by",
}

NOTE_SORT_FIELDS = {
    "created": "created",
    "created_by": "created_by",
    "updated": "updated",
    "updated_by": "updated_by",
}

# Step status a workflow's open steps take when the workflow reaches a status
STEP_STATUS_FOR_WORKFLOW_STATUS = {
    WorkflowStatus.COMPLETED: WorkflowStepStatus.COMPLETED,
    WorkflowStatus.TERMINATED: WorkflowStepStatus.TERMINATED,
    WorkflowStatus.FAILED: WorkflowStepStatus.FAILED,
    WorkflowStatus.CANCELED: WorkflowStepStatus.CANCELED,
}

FINALIZED_STEP_STATUSES = [
    WorkflowStepStatus.COMPLETED,
    WorkflowStepStatus.TERMINATED,
    WorkflowStepStatus.FAILED,
]


def _tenant_or_global(tenant_id: Optional[str]) -> dict:
    return {"$or": [{"tenant_id": None}, {"tenant_id": tenant_id}]}


class WorkflowService:
    """Service for workflow engines, definitions, workflows and their documents, notes and links"""

    # Workflow engines

    @service_operation("create the workflow engine ({engine.engine_id})")
    async def create_workflow_engine(self, engine: WorkflowEngine) -> WorkflowEngine:
        if await self.workflow_engine_exists(engine.engine_id):
            raise DuplicateWorkflowEngineError(engine.engine_id)
        if not connector_registry.is_registered(engine.connector_type):
            raise InvalidArgumentError(
                "connector_type", f"no connector is registered for the type ({engine.connector_type})"
            )
        await engine.insert()
        logger.info(f"Created workflow engine: {engine.engine_id} ({engine.connector_type})")
        return engine

    @service_operation("retrieve the workflow engine ({engine_id})")
    async def get_workflow_engine(self, engine_id: str) -> WorkflowEngine:
        engine = await WorkflowEngine.find_one({"engine_id": engine_id})
        if not engine:
            raise WorkflowEngineNotFoundError(engine_id)
        return engine

    @service_operation("retrieve the workflow engines")
    async def get_workflow_engines(self) -> List[WorkflowEngine]:
        return await WorkflowEngine.find({}).sort([("name", 1)]).to_list()

    @service_operation("update the workflow engine ({engine.engine_id})")
    async def update_workflow_engine(self, engine: WorkflowEngine) -> WorkflowEngine:
        existing = await self.get_workflow_engine(engine.engine_id)
        if not connector_registry.is_registered(engine.connector_type):
            raise InvalidArgumentError(
                "connector_type", f"no connector is registered for the type ({engine.connector_type})"
            )
        existing.name = engine.name
        existing.connector_type = engine.connector_type
        existing.attributes = engine.attributes
        await existing.save()
        return existing

    @service_operation("delete the workflow engine ({engine_id})")
    async def delete_workflow_engine(self, engine_id: str):
        engine = await self.get_workflow_engine(engine_id)
        if await WorkflowDefinition.find({"engine_id": engine_id}).count() > 0:
            raise InvalidArgumentError("engine_id", f"the workflow engine ({engine_id}) is still in use")
        await engine.delete()
        logger.info(f"Deleted workflow engine: {engine_id}")

    @service_operation("check whether the workflow engine ({engine_id}) exists")
    async def workflow_engine_exists(self, engine_id: str) -> bool:
        return await WorkflowEngine.find({"engine_id": engine_id}).count() > 0

    @service_operation("retrieve the connector for the workflow engine ({engine_id})")
    async def get_workflow_engine_connector(self, engine_id: str) -> WorkflowEngineConnector:
        engine = await self.get_workflow_engine(engine_id)
        return connector_registry.get_connector(engine)

    # Workflow definition categories

    @service_operation("create the workflow definition category ({category.category_id})")
    async def create_workflow_definition_category(
        self, category: WorkflowDefinitionCategory
    ) -> WorkflowDefinitionCategory:
        if await self.workflow_definition_category_exists(category.category_id):
            raise DuplicateWorkflowDefinitionCategoryError(category.category_id)
        await category.insert()
        logger.info(f"Created workflow definition category: {category.category_id}")
        return category

    @service_operation("retrieve the workflow definition category ({category_id})")
    async def get_workflow_definition_category(self, category_id: str) -> WorkflowDefinitionCategory:
        category = await WorkflowDefinitionCategory.find_one({"category_id": category_id})
        if not category:
            raise WorkflowDefinitionCategoryNotFoundError(category_id)
        return category

    @service_operation("retrieve the workflow definition categories for the tenant ({tenant_id})")
    async def get_workflow_definition_categories(self, tenant_id: Optional[str]) -> List[WorkflowDefinitionCategory]:
        return await WorkflowDefinitionCategory.find(_tenant_or_global(tenant_id)).sort([("name", 1)]).to_list()

    @service_operation("update the workflow definition category ({category.category_id})")
    async def update_workflow_definition_category(
        self, category: WorkflowDefinitionCategory
    ) -> WorkflowDefinitionCategory:
        existing = await self.get_workflow_definition_category(category.category_id)
        existing.tenant_id = category.tenant_id
        existing.name = category.name
        await existing.save()
        return existing

    @service_operation("delete the workflow definition category ({category_id})")
    async def delete_workflow_definition_category(self, category_id: str):
        category = await self.get_workflow_definition_category(category_id)
        if await WorkflowDefinition.find({"category_id": category_id}).count() > 0:
            raise InvalidArgumentError(
                "category_id", f"the workflow definition category ({category_id}) is still in use"
            )
        await category.delete()
        logger.info(f"Deleted workflow definition category: {category_id}")

    @service_operation("check whether the workflow definition category ({category_id}) exists")
    async def workflow_definition_category_exists(self, category_id: str) -> bool:
        return await WorkflowDefinitionCategory.find({"category_id": category_id}).count() > 0

    # Workflow definitions

    async def _check_workflow_definition(self, definition: WorkflowDefinition):
        if not await self.workflow_definition_category_exists(definition.category_id):
            raise WorkflowDefinitionCategoryNotFoundError(definition.category_id)
        if not await self.workflow_engine_exists(definition.engine_id):
            raise WorkflowEngineNotFoundError(definition.engine_id)

        for document_definition in definition.document_definitions:
            if not await document_service.document_definition_exists(document_definition.document_definition_id):
                raise InvalidArgumentError(
                    "document_definitions",
                    f"the document definition ({document_definition.document_definition_id}) could not be found"
                )

        self._check_unique(
            [dd.document_definition_id for dd in definition.document_definitions], "document_definitions"
        )
        self._check_unique([sd.code for sd in definition.step_definitions], "step_definitions")
        self._check_unique([ad.code for ad in definition.attribute_definitions], "attribute_definitions")
        self._check_unique([vd.name.lower() for vd in definition.variable_definitions], "variable_definitions")

        if definition.validation_schema_type == ValidationSchemaType.JSON and definition.validation_schema:
            try:
                json.loads(definition.validation_schema)
            except ValueError as e:
                raise InvalidArgumentError("validation_schema", f"the schema is not valid JSON: {e}")

    @staticmethod
    def _check_unique(values: List[str], parameter: str):
        seen = set()
        for value in values:
            if value in seen:
                raise InvalidArgumentError(parameter, f"duplicate entry ({value})")
            seen.add(value)

    @service_operation(
        "create the workflow definition ({definition.definition_id}) version ({definition.version})"
    )
    async def create_workflow_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if await self.workflow_definition_version_exists(definition.definition_id, definition.version):
            raise DuplicateWorkflowDefinitionVersionError(definition.definition_id, definition.version)
        await self._check_workflow_definition(definition)
        await definition.insert()
        logger.info(f"Created workflow definition: {definition.definition_id} v{definition.version}")
        return definition

    @service_operation(
        "update the workflow definition ({definition.definition_id}) version ({definition.version})"
    )
    async def update_workflow_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        existing = await self.get_workflow_definition_version(definition.definition_id, definition.version)
        await self._check_workflow_definition(definition)
        definition.id = existing.id
        await definition.replace()
        return definition

    @service_operation("retrieve the latest version of the workflow definition ({definition_id})")
    async def get_workflow_definition(self, definition_id: str) -> WorkflowDefinition:
        definitions = await WorkflowDefinition.find({"definition_id": definition_id})\
            .sort([("version", -1)])\
            .limit(1)\
            .to_list()
        if not definitions:
            raise WorkflowDefinitionNotFoundError(definition_id)
        return definitions[0]

    @service_operation("retrieve the workflow definition ({definition_id}) to initiate for the tenant ({tenant_id})")
    async def get_workflow_definition_to_initiate(self, tenant_id: str, definition_id: str) -> WorkflowDefinition:
        """Latest version of the definition that is global or belongs to the tenant"""
        definitions = await WorkflowDefinition.find(
            {"definition_id": definition_id, **_tenant_or_global(tenant_id)}
        ).sort([("version", -1)]).limit(1).to_list()
        if not definitions:
            raise InvalidArgumentError("definition_id", f"the workflow definition ({definition_id}) could not be found")
        return definitions[0]

    @service_operation("retrieve the workflow definition ({definition_id}) version ({version})")
    async def get_workflow_definition_version(self, definition_id: str, version: int) -> WorkflowDefinition:
        definition = await WorkflowDefinition.find_one({"definition_id": definition_id, "version": version})
        if not definition:
            raise WorkflowDefinitionVersionNotFoundError(definition_id, version)
        return definition

    @service_operation("delete the workflow definition ({definition_id})")
    async def delete_workflow_definition(self, definition_id: str):
        if not await self.workflow_definition_exists(definition_id):
            raise WorkflowDefinitionNotFoundError(definition_id)
        await WorkflowDefinition.find({"definition_id": definition_id}).delete()
        logger.info(f"Deleted all versions of workflow definition: {definition_id}")

    @service_operation("delete the workflow definition ({definition_id}) version ({version})")
    async def delete_workflow_definition_version(self, definition_id: str, version: int):
        definition = await self.get_workflow_definition_version(definition_id, version)
        await definition.delete()
        logger.info(f"Deleted workflow definition: {definition_id} v{version}")

    @service_operation("check whether the workflow definition ({definition_id}) exists")
    async def workflow_definition_exists(self, definition_id: str, category_id: Optional[str] = None) -> bool:
        query = {"definition_id": definition_id}
        if category_id:
            query["category_id"] = category_id
        return await WorkflowDefinition.find(query).count() > 0

    @service_operation("check whether the workflow definition ({definition_id}) version ({version}) exists")
    async def workflow_definition_version_exists(self, definition_id: str, version: int) -> bool:
        return await WorkflowDefinition.find({"definition_id": definition_id, "version": version}).count() > 0

    @service_operation("retrieve the workflow definition summaries for the tenant ({tenant_id})")
    async def get_workflow_definition_summaries(
        self,
        tenant_id: Optional[str],
        category_id: Optional[str] = None
    ) -> List[WorkflowDefinition]:
        """The latest version of every workflow definition visible to the tenant"""
        query = _tenant_or_global(tenant_id)
        if category_id:
            query["category_id"] = category_id
        definitions = await WorkflowDefinition.find(query).sort([("definition_id", 1), ("version", -1)]).to_list()

        latest = {}
        for definition in definitions:
            latest.setdefault(definition.definition_id, definition)
        return sorted(latest.values(), key=lambda d: d.name.lower())

    @service_operation("retrieve the permissions for the workflow definition ({definition_id}) version ({version})")
    async def get_workflow_definition_permissions(
        self, definition_id: str, version: int
    ) -> List[WorkflowDefinitionPermission]:
        definition = await self.get_workflow_definition_version(definition_id, version)
        return definition.permissions

    def has_workflow_permission(
        self,
        definition: WorkflowDefinition,
        roles: Iterable[str],
        permission_type: WorkflowPermissionType
    ) -> bool:
        """A definition without permissions is open to everyone"""
        if not definition.permissions:
            return True
        roles = set(roles)
        return any(
            permission.type == permission_type and permission.role_code in roles
            for permission in definition.permissions
        )

    # Attribute checks

    @service_operation("validate the workflow attribute ({code}) for the workflow definition ({definition_id})")
    async def is_valid_workflow_attribute(self, definition_id: str, code: str, value: Optional[str]) -> bool:
        definition = await self.get_workflow_definition(definition_id)
        return validation_service.is_valid_attribute(definition.attribute_definitions, code, value)

    @service_operation("validate the required workflow attributes for the workflow definition ({definition_id})")
    async def validate_required_workflow_attributes(self, definition_id: str, codes: Iterable[str]):
        definition = await self.get_workflow_definition(definition_id)
        validation_service.validate_required_attributes(definition.attribute_definitions, codes)

    # Workflows

    @service_operation("initiate the workflow ({request.definition_id}) for the tenant ({tenant_id})")
    async def initiate_workflow(
        self,
        tenant_id: str,
        request: InitiateWorkflowRequest,
        initiated_by: str
    ) -> Workflow:
        set_operations_context(tenant=tenant_id, user=initiated_by)

        definition = await self.get_workflow_definition_to_initiate(tenant_id, request.definition_id)

        if request.parent_id and not await self.workflow_exists(tenant_id, request.parent_id):
            raise InvalidArgumentError("parent_id", f"the parent workflow ({request.parent_id}) could not be found")

        interaction = None
        if request.interaction_id:
            interaction = await Interaction.find_one(
                {"tenant_id": tenant_id, "interaction_id": request.interaction_id}
            )
            if not interaction:
                raise InvalidArgumentError(
                    "interaction_id", f"the interaction ({request.interaction_id}) could not be found"
                )

        validation_service.validate_attributes(definition.attribute_definitions, request.attributes)
        validation_service.validate_variables(definition.variable_definitions, request.variables)
        validation_service.validate_data(definition.validation_schema_type, definition.validation_schema, request.data)

        workflow = Workflow(
            tenant_id=tenant_id,
            parent_id=request.parent_id,
            party_id=request.party_id,
            definition_id=definition.definition_id,
            definition_version=definition.version,
            status=WorkflowStatus.INITIATED if request.pend else WorkflowStatus.ACTIVE,
            external_reference=request.external_reference,
            attributes=request.attributes,
            variables=request.variables,
            data=request.data,
            initiated_by=initiated_by
        )
        set_operations_context(workflow_id=workflow.workflow_id)

        connector = await self.get_workflow_engine_connector(definition.engine_id)
        workflow.engine_instance_id = await connector.initiate_workflow(definition, workflow)

        await workflow.insert()

        for document_definition in definition.document_definitions:
            if document_definition.required:
                await self._request_workflow_document(
                    workflow,
                    document_definition.document_definition_id,
                    document_definition.internal,
                    None,
                    None,
                    initiated_by
                )

        if interaction:
            await self._link_interaction(workflow, interaction, initiated_by)

        logger.info(
            f"Initiated workflow {workflow.workflow_id} ({definition.definition_id} v{definition.version})",
            extra={"workflow_definition_id": definition.definition_id}
        )
        return workflow

    @service_operation("retrieve the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def get_workflow(self, tenant_id: str, workflow_id: str) -> Workflow:
        workflow = await Workflow.find_one({"tenant_id": tenant_id, "workflow_id": workflow_id})
        if not workflow:
            raise WorkflowNotFoundError(workflow_id, tenant_id)
        return workflow

    @service_operation("check whether the workflow ({workflow_id}) exists for the tenant ({tenant_id})")
    async def workflow_exists(self, tenant_id: str, workflow_id: str) -> bool:
        return await Workflow.find({"tenant_id": tenant_id, "workflow_id": workflow_id}).count() > 0

    def _change_status(self, workflow: Workflow, status: WorkflowStatus, actor: str, operation: str):
        """Apply a status transition and cascade it to the workflow's open steps"""
        current = workflow.status
        now = datetime.utcnow()

        if status == WorkflowStatus.INITIATED:
            if current != WorkflowStatus.INITIATED:
                raise InvalidWorkflowStatusError(workflow.workflow_id, current, operation)
            return

        if status == WorkflowStatus.ACTIVE:
            if current == WorkflowStatus.SUSPENDED:
                for step in workflow.steps:
                    if step.status == WorkflowStepStatus.SUSPENDED:
                        step.unsuspend()
                workflow.suspended = None
                workflow.suspended_by = None
            elif current not in (WorkflowStatus.INITIATED, WorkflowStatus.ACTIVE):
                raise InvalidWorkflowStatusError(workflow.workflow_id, current, operation)
            workflow.status = WorkflowStatus.ACTIVE
            return

        if status == WorkflowStatus.SUSPENDED:
            if current == WorkflowStatus.SUSPENDED:
                return
            if current != WorkflowStatus.ACTIVE:
                raise InvalidWorkflowStatusError(workflow.workflow_id, current, operation)
            for step in workflow.steps:
                if step.status == WorkflowStepStatus.ACTIVE:
                    step.suspend()
            workflow.status = WorkflowStatus.SUSPENDED
            workflow.suspended = now
            workflow.suspended_by = actor
            return

        # Finalized and canceled statuses close the workflow
        if workflow.is_closed():
            raise InvalidWorkflowStatusError(workflow.workflow_id, current, operation)
        step_status = STEP_STATUS_FOR_WORKFLOW_STATUS[status]
        for step in workflow.steps:
            if step.status in WorkflowStepStatus.open_statuses():
                step.finalize(step_status)
        workflow.status = status
        if status == WorkflowStatus.CANCELED:
            workflow.canceled = now
            workflow.canceled_by = actor
        else:
            workflow.finalized = now
            workflow.finalized_by = actor

    async def _save_workflow(self, workflow: Workflow, updated_by: str) -> Workflow:
        workflow.updated = datetime.utcnow()
        workflow.updated_by = updated_by
        await workflow.save()
        return workflow

    @service_operation("start the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def start_workflow(self, tenant_id: str, workflow_id: str, started_by: str) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        if workflow.status != WorkflowStatus.INITIATED:
            raise InvalidWorkflowStatusError(workflow_id, workflow.status, "start")
        self._change_status(workflow, WorkflowStatus.ACTIVE, started_by, "start")
        return await self._save_workflow(workflow, started_by)

    @service_operation("update the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def update_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        request: UpdateWorkflowRequest,
        updated_by: str
    ) -> Workflow:
        set_operations_context(tenant=tenant_id, user=updated_by, workflow_id=workflow_id)
        workflow = await self.get_workflow(tenant_id, workflow_id)
        definition = await self.get_workflow_definition_version(workflow.definition_id, workflow.definition_version)

        if request.attributes is not None:
            validation_service.validate_attributes(definition.attribute_definitions, request.attributes)
            workflow.attributes = request.attributes
        if request.variables is not None:
            validation_service.validate_variables(definition.variable_definitions, request.variables)
            workflow.variables = request.variables
        if request.data is not None:
            validation_service.validate_data(
                definition.validation_schema_type, definition.validation_schema, request.data
            )
            workflow.data = request.data
        if request.external_reference is not None:
            workflow.external_reference = request.external_reference
        if request.party_id is not None:
            workflow.party_id = request.party_id
        if request.status is not None and request.status != workflow.status:
            self._change_status(workflow, request.status, updated_by, "update")

        return await self._save_workflow(workflow, updated_by)

    @service_operation("suspend the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def suspend_workflow(self, tenant_id: str, workflow_id: str, suspended_by: str) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise InvalidWorkflowStatusError(workflow_id, workflow.status, "suspend")
        self._change_status(workflow, WorkflowStatus.SUSPENDED, suspended_by, "suspend")
        return await self._save_workflow(workflow, suspended_by)

    @service_operation("unsuspend the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def unsuspend_workflow(self, tenant_id: str, workflow_id: str, unsuspended_by: str) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        if workflow.status != WorkflowStatus.SUSPENDED:
            raise InvalidWorkflowStatusError(workflow_id, workflow.status, "unsuspend")
        self._change_status(workflow, WorkflowStatus.ACTIVE, unsuspended_by, "unsuspend")
        return await self._save_workflow(workflow, unsuspended_by)

    @service_operation("finalize the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def finalize_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        finalized_by: str
    ) -> Workflow:
        if status not in WorkflowStatus.finalized_statuses():
            raise InvalidArgumentError("status", f"the status ({status.value}) is not a finalized status")
        workflow = await self.get_workflow(tenant_id, workflow_id)
        self._change_status(workflow, status, finalized_by, "finalize")
        return await self._save_workflow(workflow, finalized_by)

    @service_operation("cancel the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def cancel_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        cancellation_reason: Optional[str],
        canceled_by: str
    ) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        self._change_status(workflow, WorkflowStatus.CANCELED, canceled_by, "cancel")
        workflow.cancellation_reason = cancellation_reason
        return await self._save_workflow(workflow, canceled_by)

    @service_operation("set the status of the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def set_workflow_status(self, tenant_id: str, workflow_id: str, status: WorkflowStatus) -> Workflow:
        """Used by workflow engines to report status changes"""
        workflow = await self.get_workflow(tenant_id, workflow_id)
        if status != workflow.status:
            self._change_status(workflow, status, SYSTEM_USER, "set status")
        return await self._save_workflow(workflow, SYSTEM_USER)

    @service_operation("delete the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def delete_workflow(self, tenant_id: str, workflow_id: str):
        workflow = await self.get_workflow(tenant_id, workflow_id)

        workflow_documents = await WorkflowDocument.find(
            {"tenant_id": tenant_id, "workflow_id": workflow_id}
        ).to_list()
        for workflow_document in workflow_documents:
            await workflow_document.delete()
            if workflow_document.document_id:
                await self._delete_document_if_unreferenced(tenant_id, workflow_document.document_id)

        await WorkflowNote.find({"tenant_id": tenant_id, "workflow_id": workflow_id}).delete()
        await WorkflowInteractionLink.find({"tenant_id": tenant_id, "workflow_id": workflow_id}).delete()
        await workflow.delete()
        logger.info(f"Deleted workflow: {workflow_id}", extra={"workflow_id": workflow_id})

    def _workflow_search_query(self, tenant_id: str, request: SearchWorkflowsRequest) -> dict:
        query = {"tenant_id": tenant_id}
        if request.definition_id:
            query["definition_id"] = request.definition_id
        if request.status:
            query["status"] = request.status.value
        if request.party_id:
            query["party_id"] = request.party_id
        if request.parent_id:
            query["parent_id"] = request.parent_id
        if request.external_reference:
            query["external_reference"] = request.external_reference
        if request.initiated_by:
            query["initiated_by"] = request.initiated_by
        if request.attributes:
            query["$and"] = [
                {"attributes": {"$elemMatch": {"code": attribute.code, "value": attribute.value}}}
                for attribute in request.attributes
            ]
        return query

    async def _find_workflows(
        self,
        query: dict,
        sort_by: Optional[str],
        sort_direction: Optional[SortDirection],
        page_index: Optional[int],
        page_size: Optional[int]
    ) -> Tuple[List[Workflow], int]:
        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, WORKFLOW_SORT_FIELDS, "initiated")

        total = await Workflow.find(query).count()
        workflows = await Workflow.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return workflows, total

    @service_operation("search for workflows for the tenant ({tenant_id})")
    async def search_workflows(
        self,
        tenant_id: str,
        request: SearchWorkflowsRequest
    ) -> Tuple[List[Workflow], int]:
        query = self._workflow_search_query(tenant_id, request)
        if request.interaction_id:
            links = await WorkflowInteractionLink.find(
                {"tenant_id": tenant_id, "interaction_id": request.interaction_id}
            ).to_list()
            query["workflow_id"] = {"$in": [link.workflow_id for link in links]}
        return await self._find_workflows(
            query, request.sort_by, request.sort_direction, request.page_index, request.page_size
        )

    @service_operation("retrieve the workflow summaries for the tenant ({tenant_id})")
    async def get_workflow_summaries(
        self,
        tenant_id: str,
        definition_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[Workflow], int]:
        query = {"tenant_id": tenant_id}
        if definition_id:
            query["definition_id"] = definition_id
        if status:
            query["status"] = status.value
        query.update(any_field_filter(["attributes.value", "external_reference", "initiated_by"], filter))
        return await self._find_workflows(query, sort_by, sort_direction, page_index, page_size)

    @service_operation("retrieve the active workflows for the workflow engine ({engine_id})")
    async def get_active_workflow_ids_for_workflow_engine(self, engine_id: str) -> List[str]:
        # The engine is chosen per definition version
        definitions = await WorkflowDefinition.find({"engine_id": engine_id}).to_list()
        if not definitions:
            return []
        workflows = await Workflow.find({
            "$or": [
                {"definition_id": d.definition_id, "definition_version": d.version} for d in definitions
            ],
            "status": WorkflowStatus.ACTIVE.value
        }).to_list()
        return [workflow.workflow_id for workflow in workflows]

    # Steps

    def _get_step(self, workflow: Workflow, code: str, status: WorkflowStepStatus) -> WorkflowStep:
        step = workflow.get_step(code)
        if step is None or step.status != status:
            raise WorkflowStepNotFoundError(workflow.workflow_id, code, workflow.tenant_id)
        return step

    async def _initiate_step(self, workflow: Workflow, code: str) -> WorkflowStep:
        if workflow.is_closed():
            raise InvalidWorkflowStatusError(workflow.workflow_id, workflow.status, "initiate step")
        definition = await self.get_workflow_definition_version(workflow.definition_id, workflow.definition_version)
        if definition.get_step_definition(code) is None:
            raise InvalidArgumentError(
                "step", f"the step ({code}) is not defined for the workflow definition ({definition.definition_id})"
            )

        step = workflow.get_step(code)
        if step is None:
            step = WorkflowStep(code=code)
            workflow.steps.append(step)
        else:
            step.activate()
        return step

    @service_operation("initiate the step ({step}) for the workflow ({workflow_id})")
    async def initiate_workflow_step(
        self,
        tenant_id: str,
        workflow_id: str,
        step: str,
        initiated_by: str = SYSTEM_USER
    ) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        await self._initiate_step(workflow, step)
        return await self._save_workflow(workflow, initiated_by)

    @service_operation("finalize the step ({step}) for the workflow ({workflow_id})")
    async def finalize_workflow_step(
        self,
        tenant_id: str,
        workflow_id: str,
        step: str,
        status: WorkflowStepStatus,
        next_step: Optional[str] = None,
        finalized_by: str = SYSTEM_USER
    ) -> Workflow:
        if status not in FINALIZED_STEP_STATUSES:
            raise InvalidArgumentError("status", f"the status ({status.value}) is not a finalized step status")

        workflow = await self.get_workflow(tenant_id, workflow_id)
        self._get_step(workflow, step, WorkflowStepStatus.ACTIVE).finalize(status)
        if next_step:
            await self._initiate_step(workflow, next_step)
        await self._save_workflow(workflow, finalized_by)

        if status == WorkflowStepStatus.COMPLETED:
            await event_service.publish_event(
                tenant_id, EventType.WORKFLOW_STEP_COMPLETED, ObjectType.WORKFLOW, workflow_id, finalized_by
            )
        return workflow

    @service_operation("suspend the step ({step}) for the workflow ({workflow_id})")
    async def suspend_workflow_step(
        self,
        tenant_id: str,
        workflow_id: str,
        step: str,
        suspended_by: str = SYSTEM_USER
    ) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        self._get_step(workflow, step, WorkflowStepStatus.ACTIVE).suspend()
        return await self._save_workflow(workflow, suspended_by)

    @service_operation("unsuspend the step ({step}) for the workflow ({workflow_id})")
    async def unsuspend_workflow_step(
        self,
        tenant_id: str,
        workflow_id: str,
        step: str,
        unsuspended_by: str = SYSTEM_USER
    ) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        self._get_step(workflow, step, WorkflowStepStatus.SUSPENDED).unsuspend()
        return await self._save_workflow(workflow, unsuspended_by)

    # Workflow documents

    async def _request_workflow_document(
        self,
        workflow: Workflow,
        document_definition_id: str,
        internal: bool,
        description: Optional[str],
        requested_from_party_id: Optional[str],
        requested_by: str
    ) -> WorkflowDocument:
        workflow_document = WorkflowDocument(
            tenant_id=workflow.tenant_id,
            workflow_id=workflow.workflow_id,
            document_definition_id=document_definition_id,
            description=description,
            internal=internal,
            requested_from_party_id=requested_from_party_id,
            requested_by=requested_by
        )
        await workflow_document.insert()
        await event_service.publish_event(
            workflow.tenant_id,
            EventType.WORKFLOW_DOCUMENT_REQUESTED,
            ObjectType.WORKFLOW_DOCUMENT,
            workflow_document.workflow_document_id,
            requested_by
        )
        return workflow_document

    @service_operation("request a workflow document for the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def request_workflow_document(
        self,
        tenant_id: str,
        workflow_id: str,
        request: RequestWorkflowDocumentRequest,
        requested_by: str
    ) -> WorkflowDocument:
        workflow = await self._get_open_workflow(tenant_id, workflow_id, "request document")

        definition = await self.get_workflow_definition_version(workflow.definition_id, workflow.definition_version)
        document_definition = definition.get_document_definition(request.document_definition_id)
        if document_definition is None:
            raise InvalidArgumentError(
                "document_definition_id",
                f"the document definition ({request.document_definition_id}) is not configured for the "
                f"workflow definition ({definition.definition_id})"
            )

        if document_definition.singular:
            outstanding = await WorkflowDocument.find({
                "tenant_id": tenant_id,
                "workflow_id": workflow_id,
                "document_definition_id": request.document_definition_id,
                "status": {"$in": [s.value for s in WorkflowDocumentStatus.outstanding_statuses()]}
            }).count()
            if outstanding:
                raise InvalidArgumentError(
                    "document_definition_id",
                    f"the document definition ({request.document_definition_id}) has already been requested"
                )

        return await self._request_workflow_document(
            workflow,
            request.document_definition_id,
            document_definition.internal,
            request.description,
            request.requested_from_party_id,
            requested_by
        )

    async def _get_open_workflow(self, tenant_id: str, workflow_id: str, operation: str) -> Workflow:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        if workflow.is_closed():
            raise InvalidWorkflowStatusError(workflow_id, workflow.status, operation)
        return workflow

    async def _delete_document_if_unreferenced(self, tenant_id: str, document_id: str):
        references = await WorkflowDocument.find({"tenant_id": tenant_id, "document_id": document_id}).count()
        if references == 0 and await document_service.document_exists(tenant_id, document_id):
            await document_service.delete_document(tenant_id, document_id)

    @service_operation("provide the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def provide_workflow_document(
        self,
        tenant_id: str,
        workflow_document_id: str,
        request: ProvideWorkflowDocumentRequest,
        provided_by: str
    ) -> WorkflowDocument:
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        if workflow_document.status == WorkflowDocumentStatus.WAIVED:
            raise InvalidWorkflowDocumentStatusError(workflow_document_id, workflow_document.status, "provide")

        workflow = await self._get_open_workflow(tenant_id, workflow_document.workflow_id, "provide document")
        definition = await self.get_workflow_definition_version(workflow.definition_id, workflow.definition_version)
        document_definition = definition.get_document_definition(workflow_document.document_definition_id)
        verifiable = document_definition is not None and document_definition.verifiable

        document = await document_service.create_document(
            tenant_id,
            CreateDocumentRequest(
                definition_id=workflow_document.document_definition_id,
                name=request.name,
                file_type=request.file_type,
                data=request.data,
                issue_date=request.issue_date,
                expiry_date=request.expiry_date,
                attributes=request.attributes,
                external_references=request.external_references
            ),
            provided_by
        )

        previous_document_id = workflow_document.document_id
        workflow_document.document_id = document.document_id
        workflow_document.status = WorkflowDocumentStatus.VERIFIABLE if verifiable else WorkflowDocumentStatus.PROVIDED
        workflow_document.provided = datetime.utcnow()
        workflow_document.provided_by = provided_by
        workflow_document.verified = None
        workflow_document.verified_by = None
        workflow_document.rejected = None
        workflow_document.rejected_by = None
        workflow_document.rejection_reason = None

        try:
            await workflow_document.save()
        except Exception:
            await document_service.delete_document(tenant_id, document.document_id)
            raise

        if previous_document_id and previous_document_id != document.document_id:
            await self._delete_document_if_unreferenced(tenant_id, previous_document_id)

        await event_service.publish_event(
            tenant_id,
            EventType.WORKFLOW_DOCUMENT_PROVIDED,
            ObjectType.WORKFLOW_DOCUMENT,
            workflow_document_id,
            provided_by
        )
        return workflow_document

    @service_operation("verify the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def verify_workflow_document(
        self,
        tenant_id: str,
        workflow_document_id: str,
        verified_by: str
    ) -> WorkflowDocument:
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        if workflow_document.status != WorkflowDocumentStatus.VERIFIABLE:
            raise InvalidWorkflowDocumentStatusError(workflow_document_id, workflow_document.status, "verify")
        await self._get_open_workflow(tenant_id, workflow_document.workflow_id, "verify document")

        workflow_document.status = WorkflowDocumentStatus.VERIFIED
        workflow_document.verified = datetime.utcnow()
        workflow_document.verified_by = verified_by
        await workflow_document.save()

        await event_service.publish_event(
            tenant_id,
            EventType.WORKFLOW_DOCUMENT_VERIFIED,
            ObjectType.WORKFLOW_DOCUMENT,
            workflow_document_id,
            verified_by
        )
        return workflow_document

    @service_operation("reject the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def reject_workflow_document(
        self,
        tenant_id: str,
        workflow_document_id: str,
        rejection_reason: str,
        rejected_by: str
    ) -> WorkflowDocument:
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        if workflow_document.status not in (
            WorkflowDocumentStatus.PROVIDED,
            WorkflowDocumentStatus.VERIFIABLE,
            WorkflowDocumentStatus.VERIFIED
        ):
            raise InvalidWorkflowDocumentStatusError(workflow_document_id, workflow_document.status, "reject")
        await self._get_open_workflow(tenant_id, workflow_document.workflow_id, "reject document")

        workflow_document.status = WorkflowDocumentStatus.REJECTED
        workflow_document.rejected = datetime.utcnow()
        workflow_document.rejected_by = rejected_by
        workflow_document.rejection_reason = rejection_reason
        await workflow_document.save()

        await event_service.publish_event(
            tenant_id,
            EventType.WORKFLOW_DOCUMENT_REJECTED,
            ObjectType.WORKFLOW_DOCUMENT,
            workflow_document_id,
            rejected_by
        )
        return workflow_document

    @service_operation("waive the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def waive_workflow_document(
        self,
        tenant_id: str,
        workflow_document_id: str,
        waived_by: str
    ) -> WorkflowDocument:
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        if not workflow_document.is_outstanding():
            raise InvalidWorkflowDocumentStatusError(workflow_document_id, workflow_document.status, "waive")
        await self._get_open_workflow(tenant_id, workflow_document.workflow_id, "waive document")

        workflow_document.status = WorkflowDocumentStatus.WAIVED
        workflow_document.waived = datetime.utcnow()
        workflow_document.waived_by = waived_by
        await workflow_document.save()

        await event_service.publish_event(
            tenant_id,
            EventType.WORKFLOW_DOCUMENT_WAIVED,
            ObjectType.WORKFLOW_DOCUMENT,
            workflow_document_id,
            waived_by
        )
        return workflow_document

    @service_operation("delete the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def delete_workflow_document(self, tenant_id: str, workflow_document_id: str):
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        await workflow_document.delete()
        if workflow_document.document_id:
            await self._delete_document_if_unreferenced(tenant_id, workflow_document.document_id)

    @service_operation("retrieve the workflow document ({workflow_document_id}) for the tenant ({tenant_id})")
    async def get_workflow_document(self, tenant_id: str, workflow_document_id: str) -> WorkflowDocument:
        workflow_document = await WorkflowDocument.find_one(
            {"tenant_id": tenant_id, "workflow_document_id": workflow_document_id}
        )
        if not workflow_document:
            raise WorkflowDocumentNotFoundError(workflow_document_id, tenant_id)
        return workflow_document

    @service_operation("check whether the workflow document ({workflow_document_id}) exists")
    async def workflow_document_exists(self, tenant_id: str, workflow_document_id: str) -> bool:
        return await WorkflowDocument.find(
            {"tenant_id": tenant_id, "workflow_document_id": workflow_document_id}
        ).count() > 0

    @service_operation("retrieve the workflow for the workflow document ({workflow_document_id})")
    async def get_workflow_id_for_workflow_document(self, tenant_id: str, workflow_document_id: str) -> str:
        workflow_document = await self.get_workflow_document(tenant_id, workflow_document_id)
        return workflow_document.workflow_id

    @service_operation("retrieve the workflow documents for the workflow ({workflow_id})")
    async def get_workflow_documents(
        self,
        tenant_id: str,
        workflow_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[WorkflowDocument], int]:
        if not await self.workflow_exists(tenant_id, workflow_id):
            raise WorkflowNotFoundError(workflow_id, tenant_id)

        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, WORKFLOW_DOCUMENT_SORT_FIELDS, "requested")

        query = {
            "tenant_id": tenant_id,
            "workflow_id": workflow_id,
            **any_field_filter(["requested_by", "provided_by", "verified_by"], filter)
        }
        total = await WorkflowDocument.find(query).count()
        workflow_documents = await WorkflowDocument.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return workflow_documents, total

    @service_operation("retrieve the outstanding workflow documents for the workflow ({workflow_id})")
    async def get_outstanding_workflow_documents(self, tenant_id: str, workflow_id: str) -> List[WorkflowDocument]:
        if not await self.workflow_exists(tenant_id, workflow_id):
            raise WorkflowNotFoundError(workflow_id, tenant_id)
        return await WorkflowDocument.find({
            "tenant_id": tenant_id,
            "workflow_id": workflow_id,
            "status": {"$in": [s.value for s in WorkflowDocumentStatus.outstanding_statuses()]}
        }).sort([("requested", 1)]).to_list()

    # Notes

    @service_operation("create the note for the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def create_workflow_note(
        self,
        tenant_id: str,
        workflow_id: str,
        content: str,
        created_by: str
    ) -> WorkflowNote:
        if not await self.workflow_exists(tenant_id, workflow_id):
            raise WorkflowNotFoundError(workflow_id, tenant_id)
        note = WorkflowNote(tenant_id=tenant_id, workflow_id=workflow_id, content=content, created_by=created_by)
        await note.insert()
        return note

    @service_operation("retrieve the workflow note ({note_id}) for the tenant ({tenant_id})")
    async def get_workflow_note(self, tenant_id: str, note_id: str) -> WorkflowNote:
        note = await WorkflowNote.find_one({"tenant_id": tenant_id, "note_id": note_id})
        if not note:
            raise WorkflowNoteNotFoundError(note_id, tenant_id)
        return note

    @service_operation("update the workflow note ({note_id}) for the tenant ({tenant_id})")
    async def update_workflow_note(
        self,
        tenant_id: str,
        note_id: str,
        content: str,
        updated_by: str
    ) -> WorkflowNote:
        note = await self.get_workflow_note(tenant_id, note_id)
        note.content = content
        note.updated = datetime.utcnow()
        note.updated_by = updated_by
        await note.save()
        return note

    @service_operation("delete the workflow note ({note_id}) for the tenant ({tenant_id})")
    async def delete_workflow_note(self, tenant_id: str, note_id: str):
        note = await self.get_workflow_note(tenant_id, note_id)
        await note.delete()

    @service_operation("check whether the workflow note ({note_id}) exists for the tenant ({tenant_id})")
    async def workflow_note_exists(self, tenant_id: str, note_id: str) -> bool:
        return await WorkflowNote.find({"tenant_id": tenant_id, "note_id": note_id}).count() > 0

    @service_operation("retrieve the notes for the workflow ({workflow_id}) for the tenant ({tenant_id})")
    async def get_workflow_notes(
        self,
        tenant_id: str,
        workflow_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[WorkflowNote], int]:
        if not await self.workflow_exists(tenant_id, workflow_id):
            raise WorkflowNotFoundError(workflow_id, tenant_id)

        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, NOTE_SORT_FIELDS, "created")

        query = {"tenant_id": tenant_id, "workflow_id": workflow_id, **content_filter("content", filter)}
        total = await WorkflowNote.find(query).count()
        notes = await WorkflowNote.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return notes, total

    # Interaction links

    async def _link_interaction(
        self,
        workflow: Workflow,
        interaction: Interaction,
        linked_by: str
    ) -> WorkflowInteractionLink:
        link = await WorkflowInteractionLink.find_one(
            {"workflow_id": workflow.workflow_id, "interaction_id": interaction.interaction_id}
        )
        if link:
            return link

        link = WorkflowInteractionLink(
            workflow_id=workflow.workflow_id,
            interaction_id=interaction.interaction_id,
            tenant_id=workflow.tenant_id,
            conversation_id=interaction.conversation_id,
            linked_by=linked_by
        )
        await link.insert()
        logger.info(
            f"Linked interaction {interaction.interaction_id} to workflow {workflow.workflow_id}",
            extra={"interaction_id": interaction.interaction_id}
        )
        return link

    @service_operation("link the interaction ({interaction_id}) to the workflow ({workflow_id})")
    async def link_interaction_to_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        interaction_id: str,
        linked_by: str
    ) -> WorkflowInteractionLink:
        workflow = await self.get_workflow(tenant_id, workflow_id)
        interaction = await Interaction.find_one({"tenant_id": tenant_id, "interaction_id": interaction_id})
        if not interaction:
            raise InvalidArgumentError("interaction_id", f"the interaction ({interaction_id}) could not be found")
        return await self._link_interaction(workflow, interaction, linked_by)

    @service_operation("delink the interaction ({interaction_id}) from the workflow ({workflow_id})")
    async def delink_interaction_from_workflow(self, tenant_id: str, workflow_id: str, interaction_id: str):
        link = await WorkflowInteractionLink.find_one(
            {"tenant_id": tenant_id, "workflow_id": workflow_id, "interaction_id": interaction_id}
        )
        if not link:
            raise WorkflowInteractionLinkNotFoundError(workflow_id, interaction_id)
        await link.delete()

    @service_operation("retrieve the interaction links for the workflow ({workflow_id})")
    async def get_workflow_interaction_links(self, tenant_id: str, workflow_id: str) -> List[WorkflowInteractionLink]:
        if not await self.workflow_exists(tenant_id, workflow_id):
            raise WorkflowNotFoundError(workflow_id, tenant_id)
        return await WorkflowInteractionLink.find(
            {"tenant_id": tenant_id, "workflow_id": workflow_id}
        ).sort([("linked", 1)]).to_list()

    @service_operation("retrieve the workflows linked to the conversation ({conversation_id})")
    async def get_workflow_ids_for_conversation(self, tenant_id: str, conversation_id: str) -> List[str]:
        return await WorkflowInteractionLink.distinct(
            "workflow_id", {"tenant_id": tenant_id, "conversation_id": conversation_id}
        )


# Global service instance
workflow_service = WorkflowService()
