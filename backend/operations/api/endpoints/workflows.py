from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.exceptions import AccessDeniedError
from ...models.common import ObjectType, SortDirection
from ...models.workflow import (
    WorkflowDefinition,
    WorkflowDefinitionCategory,
    WorkflowDefinitionPermission,
    WorkflowEngine,
    WorkflowPermissionType,
    WorkflowStatus,
)
from ...schemas.event import EventResponse
from ...schemas.workflow import (
    CancelWorkflowRequest,
    FinalizeWorkflowRequest,
    FinalizeWorkflowStepRequest,
    InitiateWorkflowRequest,
    InitiateWorkflowStepRequest,
    LinkInteractionRequest,
    ProvideWorkflowDocumentRequest,
    RejectWorkflowDocumentRequest,
    RequestWorkflowDocumentRequest,
    SearchWorkflowsRequest,
    UpdateWorkflowRequest,
    WorkflowDefinitionCategorySchema,
    WorkflowDefinitionSchema,
    WorkflowDefinitionSummary,
    WorkflowDocumentListResponse,
    WorkflowDocumentResponse,
    WorkflowEngineSchema,
    WorkflowInteractionLinkResponse,
    WorkflowListResponse,
    WorkflowNoteListResponse,
    WorkflowNoteRequest,
    WorkflowNoteResponse,
    WorkflowResponse,
    WorkflowStepRequest,
    WorkflowSummary,
)
from ...services.event_service import event_service
from ...services.workflow_service import workflow_service
from ..dependencies import get_request_context

router = APIRouter()


# Workflow engines

@router.post("/engines", response_model=WorkflowEngineSchema)
async def create_workflow_engine(engine_data: WorkflowEngineSchema):
    """Register a workflow engine"""
    engine = await workflow_service.create_workflow_engine(WorkflowEngine(**engine_data.model_dump()))
    return WorkflowEngineSchema.model_validate(engine)


@router.get("/engines", response_model=List[WorkflowEngineSchema])
async def get_workflow_engines():
    engines = await workflow_service.get_workflow_engines()
    return [WorkflowEngineSchema.model_validate(e) for e in engines]


@router.get("/engines/{engine_id}", response_model=WorkflowEngineSchema)
async def get_workflow_engine(engine_id: str):
    engine = await workflow_service.get_workflow_engine(engine_id)
    return WorkflowEngineSchema.model_validate(engine)


@router.put("/engines/{engine_id}", response_model=WorkflowEngineSchema)
async def update_workflow_engine(engine_id: str, engine_data: WorkflowEngineSchema):
    engine = WorkflowEngine(**{**engine_data.model_dump(), "engine_id": engine_id})
    engine = await workflow_service.update_workflow_engine(engine)
    return WorkflowEngineSchema.model_validate(engine)


@router.delete("/engines/{engine_id}")
async def delete_workflow_engine(engine_id: str):
    await workflow_service.delete_workflow_engine(engine_id)
    return {"message": f"Workflow engine {engine_id} deleted"}


# Workflow definition categories

@router.post("/categories", response_model=WorkflowDefinitionCategorySchema)
async def create_workflow_definition_category(category_data: WorkflowDefinitionCategorySchema):
    category = await workflow_service.create_workflow_definition_category(
        WorkflowDefinitionCategory(**category_data.model_dump())
    )
    return WorkflowDefinitionCategorySchema.model_validate(category)


@router.get("/categories", response_model=List[WorkflowDefinitionCategorySchema])
async def get_workflow_definition_categories(context: dict = Depends(get_request_context)):
    categories = await workflow_service.get_workflow_definition_categories(context["tenant_id"])
    return [WorkflowDefinitionCategorySchema.model_validate(c) for c in categories]


@router.get("/categories/{category_id}", response_model=WorkflowDefinitionCategorySchema)
async def get_workflow_definition_category(category_id: str):
    category = await workflow_service.get_workflow_definition_category(category_id)
    return WorkflowDefinitionCategorySchema.model_validate(category)


@router.put("/categories/{category_id}", response_model=WorkflowDefinitionCategorySchema)
async def update_workflow_definition_category(category_id: str, category_data: WorkflowDefinitionCategorySchema):
    category = WorkflowDefinitionCategory(**{**category_data.model_dump(), "category_id": category_id})
    category = await workflow_service.update_workflow_definition_category(category)
    return WorkflowDefinitionCategorySchema.model_validate(category)


@router.delete("/categories/{category_id}")
async def delete_workflow_definition_category(category_id: str):
    await workflow_service.delete_workflow_definition_category(category_id)
    return {"message": f"Workflow definition category {category_id} deleted"}


# Workflow definitions

@router.post("/definitions", response_model=WorkflowDefinitionSchema)
async def create_workflow_definition(definition_data: WorkflowDefinitionSchema):
    """Create a version of a workflow definition"""
    definition = await workflow_service.create_workflow_definition(
        WorkflowDefinition(**definition_data.model_dump())
    )
    return WorkflowDefinitionSchema.model_validate(definition)


@router.get("/definitions", response_model=List[WorkflowDefinitionSummary])
async def get_workflow_definition_summaries(
    category_id: Optional[str] = Query(None, description="Filter by workflow definition category"),
    context: dict = Depends(get_request_context)
):
    """Get the latest version of each workflow definition"""
    definitions = await workflow_service.get_workflow_definition_summaries(context["tenant_id"], category_id)
    return [WorkflowDefinitionSummary.model_validate(d) for d in definitions]


@router.get("/definitions/{definition_id}", response_model=WorkflowDefinitionSchema)
async def get_workflow_definition(definition_id: str):
    definition = await workflow_service.get_workflow_definition(definition_id)
    return WorkflowDefinitionSchema.model_validate(definition)


@router.delete("/definitions/{definition_id}")
async def delete_workflow_definition(definition_id: str):
    await workflow_service.delete_workflow_definition(definition_id)
    return {"message": f"Workflow definition {definition_id} deleted"}


@router.get("/definitions/{definition_id}/versions/{version}", response_model=WorkflowDefinitionSchema)
async def get_workflow_definition_version(definition_id: str, version: int):
    definition = await workflow_service.get_workflow_definition_version(definition_id, version)
    return WorkflowDefinitionSchema.model_validate(definition)


@router.put("/definitions/{definition_id}/versions/{version}", response_model=WorkflowDefinitionSchema)
async def update_workflow_definition(definition_id: str, version: int, definition_data: WorkflowDefinitionSchema):
    definition = WorkflowDefinition(
        **{**definition_data.model_dump(), "definition_id": definition_id, "version": version}
    )
    definition = await workflow_service.update_workflow_definition(definition)
    return WorkflowDefinitionSchema.model_validate(definition)


@router.delete("/definitions/{definition_id}/versions/{version}")
async def delete_workflow_definition_version(definition_id: str, version: int):
    await workflow_service.delete_workflow_definition_version(definition_id, version)
    return {"message": f"Workflow definition {definition_id} version {version} deleted"}


@router.get(
    "/definitions/{definition_id}/versions/{version}/permissions",
    response_model=List[WorkflowDefinitionPermission]
)
async def get_workflow_definition_permissions(definition_id: str, version: int):
    return await workflow_service.get_workflow_definition_permissions(definition_id, version)


# Workflow documents

@router.get("/documents/{workflow_document_id}", response_model=WorkflowDocumentResponse)
async def get_workflow_document(workflow_document_id: str, context: dict = Depends(get_request_context)):
    workflow_document = await workflow_service.get_workflow_document(context["tenant_id"], workflow_document_id)
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.post("/documents/{workflow_document_id}/provide", response_model=WorkflowDocumentResponse)
async def provide_workflow_document(
    workflow_document_id: str,
    document_data: ProvideWorkflowDocumentRequest,
    context: dict = Depends(get_request_context)
):
    workflow_document = await workflow_service.provide_workflow_document(
        context["tenant_id"], workflow_document_id, document_data, context["user"]["id"]
    )
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.post("/documents/{workflow_document_id}/verify", response_model=WorkflowDocumentResponse)
async def verify_workflow_document(workflow_document_id: str, context: dict = Depends(get_request_context)):
    workflow_document = await workflow_service.verify_workflow_document(
        context["tenant_id"], workflow_document_id, context["user"]["id"]
    )
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.post("/documents/{workflow_document_id}/reject", response_model=WorkflowDocumentResponse)
async def reject_workflow_document(
    workflow_document_id: str,
    reject_data: RejectWorkflowDocumentRequest,
    context: dict = Depends(get_request_context)
):
    workflow_document = await workflow_service.reject_workflow_document(
        context["tenant_id"], workflow_document_id, reject_data.rejection_reason, context["user"]["id"]
    )
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.post("/documents/{workflow_document_id}/waive", response_model=WorkflowDocumentResponse)
async def waive_workflow_document(workflow_document_id: str, context: dict = Depends(get_request_context)):
    workflow_document = await workflow_service.waive_workflow_document(
        context["tenant_id"], workflow_document_id, context["user"]["id"]
    )
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.delete("/documents/{workflow_document_id}")
async def delete_workflow_document(workflow_document_id: str, context: dict = Depends(get_request_context)):
    await workflow_service.delete_workflow_document(context["tenant_id"], workflow_document_id)
    return {"message": f"Workflow document {workflow_document_id} deleted"}


@router.get("/documents/{workflow_document_id}/events", response_model=List[EventResponse])
async def get_workflow_document_events(workflow_document_id: str, context: dict = Depends(get_request_context)):
    events = await event_service.get_events_for_object(
        context["tenant_id"], ObjectType.WORKFLOW_DOCUMENT, workflow_document_id
    )
    return [EventResponse.model_validate(e) for e in events]


# Workflow notes

@router.get("/notes/{note_id}", response_model=WorkflowNoteResponse)
async def get_workflow_note(note_id: str, context: dict = Depends(get_request_context)):
    note = await workflow_service.get_workflow_note(context["tenant_id"], note_id)
    return WorkflowNoteResponse.model_validate(note)


@router.put("/notes/{note_id}", response_model=WorkflowNoteResponse)
async def update_workflow_note(
    note_id: str,
    note_data: WorkflowNoteRequest,
    context: dict = Depends(get_request_context)
):
    note = await workflow_service.update_workflow_note(
        context["tenant_id"], note_id, note_data.content, context["user"]["id"]
    )
    return WorkflowNoteResponse.model_validate(note)


@router.delete("/notes/{note_id}")
async def delete_workflow_note(note_id: str, context: dict = Depends(get_request_context)):
    await workflow_service.delete_workflow_note(context["tenant_id"], note_id)
    return {"message": f"Workflow note {note_id} deleted"}


# Workflows

@router.post("", response_model=WorkflowResponse)
async def initiate_workflow(workflow_data: InitiateWorkflowRequest, context: dict = Depends(get_request_context)):
    """Initiate a workflow from the latest version of a workflow definition"""
    definition = await workflow_service.get_workflow_definition_to_initiate(
        context["tenant_id"], workflow_data.definition_id
    )
    if not workflow_service.has_workflow_permission(
        definition, context["user"]["roles"], WorkflowPermissionType.INITIATE_WORKFLOW
    ):
        raise AccessDeniedError(
            f"Access denied: initiating the workflow definition ({workflow_data.definition_id}) is not permitted"
        )

    workflow = await workflow_service.initiate_workflow(context["tenant_id"], workflow_data, context["user"]["id"])
    return WorkflowResponse.model_validate(workflow)


@router.get("", response_model=WorkflowListResponse)
async def get_workflow_summaries(
    definition_id: Optional[str] = Query(None, description="Filter by workflow definition"),
    status: Optional[WorkflowStatus] = Query(None, description="Filter by workflow status"),
    filter: Optional[str] = Query(None, description="Match attribute values, external reference or initiator"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of workflows per page"),
    context: dict = Depends(get_request_context)
):
    workflows, total = await workflow_service.get_workflow_summaries(
        context["tenant_id"], definition_id, status, filter, sort_by, sort_direction, page_index, page_size
    )
    return WorkflowListResponse(
        workflows=[WorkflowSummary.model_validate(w) for w in workflows],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter,
        definition_id=definition_id,
        status=status
    )


@router.post("/search", response_model=WorkflowListResponse)
async def search_workflows(search_data: SearchWorkflowsRequest, context: dict = Depends(get_request_context)):
    workflows, total = await workflow_service.search_workflows(context["tenant_id"], search_data)
    return WorkflowListResponse(
        workflows=[WorkflowSummary.model_validate(w) for w in workflows],
        total=total,
        page_index=search_data.page_index or 0,
        page_size=search_data.page_size or 10,
        sort_by=search_data.sort_by,
        sort_direction=search_data.sort_direction,
        definition_id=search_data.definition_id,
        status=search_data.status
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(workflow_id: str, context: dict = Depends(get_request_context)):
    workflow = await workflow_service.get_workflow(context["tenant_id"], workflow_id)
    return WorkflowResponse.model_validate(workflow)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    workflow_data: UpdateWorkflowRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.update_workflow(
        context["tenant_id"], workflow_id, workflow_data, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: str, context: dict = Depends(get_request_context)):
    await workflow_service.delete_workflow(context["tenant_id"], workflow_id)
    return {"message": f"Workflow {workflow_id} deleted"}


@router.post("/{workflow_id}/start", response_model=WorkflowResponse)
async def start_workflow(workflow_id: str, context: dict = Depends(get_request_context)):
    workflow = await workflow_service.start_workflow(context["tenant_id"], workflow_id, context["user"]["id"])
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/suspend", response_model=WorkflowResponse)
async def suspend_workflow(workflow_id: str, context: dict = Depends(get_request_context)):
    workflow = await workflow_service.suspend_workflow(context["tenant_id"], workflow_id, context["user"]["id"])
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/unsuspend", response_model=WorkflowResponse)
async def unsuspend_workflow(workflow_id: str, context: dict = Depends(get_request_context)):
    workflow = await workflow_service.unsuspend_workflow(context["tenant_id"], workflow_id, context["user"]["id"])
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/finalize", response_model=WorkflowResponse)
async def finalize_workflow(
    workflow_id: str,
    finalize_data: FinalizeWorkflowRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.finalize_workflow(
        context["tenant_id"], workflow_id, finalize_data.status, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/cancel", response_model=WorkflowResponse)
async def cancel_workflow(
    workflow_id: str,
    cancel_data: CancelWorkflowRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.cancel_workflow(
        context["tenant_id"], workflow_id, cancel_data.cancellation_reason, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.get("/{workflow_id}/events", response_model=List[EventResponse])
async def get_workflow_events(workflow_id: str, context: dict = Depends(get_request_context)):
    events = await event_service.get_events_for_object(context["tenant_id"], ObjectType.WORKFLOW, workflow_id)
    return [EventResponse.model_validate(e) for e in events]


# Steps

@router.post("/{workflow_id}/steps/initiate", response_model=WorkflowResponse)
async def initiate_workflow_step(
    workflow_id: str,
    step_data: InitiateWorkflowStepRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.initiate_workflow_step(
        context["tenant_id"], workflow_id, step_data.step, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/steps/finalize", response_model=WorkflowResponse)
async def finalize_workflow_step(
    workflow_id: str,
    step_data: FinalizeWorkflowStepRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.finalize_workflow_step(
        context["tenant_id"],
        workflow_id,
        step_data.step,
        step_data.status,
        step_data.next_step,
        context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/steps/suspend", response_model=WorkflowResponse)
async def suspend_workflow_step(
    workflow_id: str,
    step_data: WorkflowStepRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.suspend_workflow_step(
        context["tenant_id"], workflow_id, step_data.step, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


@router.post("/{workflow_id}/steps/unsuspend", response_model=WorkflowResponse)
async def unsuspend_workflow_step(
    workflow_id: str,
    step_data: WorkflowStepRequest,
    context: dict = Depends(get_request_context)
):
    workflow = await workflow_service.unsuspend_workflow_step(
        context["tenant_id"], workflow_id, step_data.step, context["user"]["id"]
    )
    return WorkflowResponse.model_validate(workflow)


# Documents requested for a workflow

@router.post("/{workflow_id}/documents", response_model=WorkflowDocumentResponse)
async def request_workflow_document(
    workflow_id: str,
    request_data: RequestWorkflowDocumentRequest,
    context: dict = Depends(get_request_context)
):
    workflow_document = await workflow_service.request_workflow_document(
        context["tenant_id"], workflow_id, request_data, context["user"]["id"]
    )
    return WorkflowDocumentResponse.model_validate(workflow_document)


@router.get("/{workflow_id}/documents", response_model=WorkflowDocumentListResponse)
async def get_workflow_documents(
    workflow_id: str,
    filter: Optional[str] = Query(None, description="Match the requesting, providing or verifying user"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of workflow documents per page"),
    context: dict = Depends(get_request_context)
):
    workflow_documents, total = await workflow_service.get_workflow_documents(
        context["tenant_id"], workflow_id, filter, sort_by, sort_direction, page_index, page_size
    )
    return WorkflowDocumentListResponse(
        workflow_documents=[WorkflowDocumentResponse.model_validate(d) for d in workflow_documents],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )


@router.get("/{workflow_id}/documents/outstanding", response_model=List[WorkflowDocumentResponse])
async def get_outstanding_workflow_documents(workflow_id: str, context: dict = Depends(get_request_context)):
    workflow_documents = await workflow_service.get_outstanding_workflow_documents(
        context["tenant_id"], workflow_id
    )
    return [WorkflowDocumentResponse.model_validate(d) for d in workflow_documents]


# Notes for a workflow

@router.post("/{workflow_id}/notes", response_model=WorkflowNoteResponse)
async def create_workflow_note(
    workflow_id: str,
    note_data: WorkflowNoteRequest,
    context: dict = Depends(get_request_context)
):
    note = await workflow_service.create_workflow_note(
        context["tenant_id"], workflow_id, note_data.content, context["user"]["id"]
    )
    return WorkflowNoteResponse.model_validate(note)


@router.get("/{workflow_id}/notes", response_model=WorkflowNoteListResponse)
async def get_workflow_notes(
    workflow_id: str,
    filter: Optional[str] = Query(None, description="Case-insensitive match on the note content"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of notes per page"),
    context: dict = Depends(get_request_context)
):
    notes, total = await workflow_service.get_workflow_notes(
        context["tenant_id"], workflow_id, filter, sort_by, sort_direction, page_index, page_size
    )
    return WorkflowNoteListResponse(
        notes=[WorkflowNoteResponse.model_validate(n) for n in notes],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )


# Interaction links

@router.post("/{workflow_id}/interactions", response_model=WorkflowInteractionLinkResponse)
async def link_interaction_to_workflow(
    workflow_id: str,
    link_data: LinkInteractionRequest,
    context: dict = Depends(get_request_context)
):
    link = await workflow_service.link_interaction_to_workflow(
        context["tenant_id"], workflow_id, link_data.interaction_id, context["user"]["id"]
    )
    return WorkflowInteractionLinkResponse.model_validate(link)


@router.get("/{workflow_id}/interactions", response_model=List[WorkflowInteractionLinkResponse])
async def get_workflow_interaction_links(workflow_id: str, context: dict = Depends(get_request_context)):
    links = await workflow_service.get_workflow_interaction_links(context["tenant_id"], workflow_id)
    return [WorkflowInteractionLinkResponse.model_validate(link) for link in links]


@router.delete("/{workflow_id}/interactions/{interaction_id}")
async def delink_interaction_from_workflow(
    workflow_id: str,
    interaction_id: str,
    context: dict = Depends(get_request_context)
):
    await workflow_service.delink_interaction_from_workflow(context["tenant_id"], workflow_id, interaction_id)
    return {"message": f"Interaction {interaction_id} delinked from workflow {workflow_id}"}
