from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.exceptions import AccessDeniedError
from ...models.common import ObjectType, SortDirection
from ...models.interaction import (
    InteractionDirection,
    InteractionPermissionType,
    InteractionSource,
    InteractionSourcePermission,
    InteractionStatus,
)
from ...schemas.event import EventResponse
from ...schemas.interaction import (
    AssignInteractionRequest,
    CreateInteractionRequest,
    InteractionAttachmentListResponse,
    InteractionAttachmentRequest,
    InteractionAttachmentResponse,
    InteractionAttachmentSummary,
    InteractionListResponse,
    InteractionNoteListResponse,
    InteractionNoteRequest,
    InteractionNoteResponse,
    InteractionResponse,
    InteractionSourceCreate,
    InteractionSourceListResponse,
    InteractionSourceResponse,
    InteractionSourceSummary,
    InteractionSourceUpdate,
    InteractionSummary,
    LinkPartyRequest,
    TransferInteractionRequest,
    UpdateInteractionRequest,
)
from ...services.event_service import event_service
from ...services.interaction_service import interaction_service
from ..dependencies import get_request_context

router = APIRouter()


async def check_source_permission(
    context: dict,
    source_id: str,
    permission_type: InteractionPermissionType
):
    """Raise AccessDeniedError unless the caller holds the permission on the source"""
    source = await interaction_service.get_interaction_source(context["tenant_id"], source_id)
    if not interaction_service.has_interaction_permission(source, context["user"]["roles"], permission_type):
        raise AccessDeniedError(
            f"Access denied: {permission_type.value} is not permitted for the interaction source ({source_id})"
        )


async def check_interaction_permission(
    context: dict,
    interaction_id: str,
    permission_type: InteractionPermissionType
):
    source_id = await interaction_service.get_interaction_source_id_for_interaction(
        context["tenant_id"], interaction_id
    )
    await check_source_permission(context, source_id, permission_type)


# Interaction sources

@router.post("/sources", response_model=InteractionSourceResponse)
async def create_interaction_source(
    source_data: InteractionSourceCreate,
    context: dict = Depends(get_request_context)
):
    """Create an interaction source for the tenant"""
    values = source_data.model_dump(exclude_none=True)
    source = await interaction_service.create_interaction_source(
        InteractionSource(**values, tenant_id=context["tenant_id"])
    )
    return InteractionSourceResponse.model_validate(source)


@router.get("/sources", response_model=InteractionSourceListResponse)
async def get_interaction_source_summaries(
    filter: Optional[str] = Query(None, description="Case-insensitive match on the source name"),
    sort_by: Optional[str] = Query(None, description="name or type"),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of sources per page"),
    context: dict = Depends(get_request_context)
):
    sources, total = await interaction_service.get_interaction_source_summaries(
        context["tenant_id"], filter, sort_by, sort_direction, page_index, page_size
    )
    return InteractionSourceListResponse(
        sources=[InteractionSourceSummary.model_validate(s) for s in sources],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )


@router.get("/sources/{source_id}", response_model=InteractionSourceResponse)
async def get_interaction_source(source_id: str, context: dict = Depends(get_request_context)):
    source = await interaction_service.get_interaction_source(context["tenant_id"], source_id)
    return InteractionSourceResponse.model_validate(source)


@router.put("/sources/{source_id}", response_model=InteractionSourceResponse)
async def update_interaction_source(
    source_id: str,
    source_data: InteractionSourceUpdate,
    context: dict = Depends(get_request_context)
):
    source = InteractionSource(**source_data.model_dump(), source_id=source_id, tenant_id=context["tenant_id"])
    source = await interaction_service.update_interaction_source(source)
    return InteractionSourceResponse.model_validate(source)


@router.delete("/sources/{source_id}")
async def delete_interaction_source(source_id: str, context: dict = Depends(get_request_context)):
    await interaction_service.delete_interaction_source(context["tenant_id"], source_id)
    return {"message": f"Interaction source {source_id} deleted"}


@router.get("/sources/{source_id}/permissions", response_model=List[InteractionSourcePermission])
async def get_interaction_source_permissions(source_id: str, context: dict = Depends(get_request_context)):
    return await interaction_service.get_interaction_source_permissions(context["tenant_id"], source_id)


@router.post("/sources/{source_id}/synchronize")
async def synchronize_mailbox_interaction_source(source_id: str, context: dict = Depends(get_request_context)):
    """Receive new messages from a mailbox source now instead of waiting for the synchronizer"""
    await check_source_permission(context, source_id, InteractionPermissionType.CREATE_INTERACTION)
    new_interactions = await interaction_service.synchronize_mailbox_interaction_source(
        context["tenant_id"], source_id
    )
    return {
        "message": f"Interaction source {source_id} synchronized",
        "new_interactions": new_interactions
    }


# Attachments

@router.get("/attachments/{attachment_id}", response_model=InteractionAttachmentResponse)
async def get_interaction_attachment(attachment_id: str, context: dict = Depends(get_request_context)):
    attachment = await interaction_service.get_interaction_attachment(context["tenant_id"], attachment_id)
    await check_interaction_permission(
        context, attachment.interaction_id, InteractionPermissionType.RETRIEVE_INTERACTION
    )
    return InteractionAttachmentResponse.model_validate(attachment)


@router.put("/attachments/{attachment_id}", response_model=InteractionAttachmentSummary)
async def update_interaction_attachment(
    attachment_id: str,
    attachment_data: InteractionAttachmentRequest,
    context: dict = Depends(get_request_context)
):
    attachment = await interaction_service.get_interaction_attachment(context["tenant_id"], attachment_id)
    await check_interaction_permission(
        context, attachment.interaction_id, InteractionPermissionType.UPDATE_INTERACTION
    )
    attachment = await interaction_service.update_interaction_attachment(
        context["tenant_id"], attachment_id, attachment_data.name, attachment_data.file_type, attachment_data.data
    )
    return InteractionAttachmentSummary.model_validate(attachment)


@router.delete("/attachments/{attachment_id}")
async def delete_interaction_attachment(attachment_id: str, context: dict = Depends(get_request_context)):
    attachment = await interaction_service.get_interaction_attachment(context["tenant_id"], attachment_id)
    await check_interaction_permission(
        context, attachment.interaction_id, InteractionPermissionType.UPDATE_INTERACTION
    )
    await interaction_service.delete_interaction_attachment(context["tenant_id"], attachment_id)
    return {"message": f"Interaction attachment {attachment_id} deleted"}


# Notes

@router.get("/notes/{note_id}", response_model=InteractionNoteResponse)
async def get_interaction_note(note_id: str, context: dict = Depends(get_request_context)):
    source_id = await interaction_service.get_interaction_source_id_for_interaction_note(
        context["tenant_id"], note_id
    )
    await check_source_permission(context, source_id, InteractionPermissionType.RETRIEVE_INTERACTION_NOTE)
    note = await interaction_service.get_interaction_note(context["tenant_id"], note_id)
    return InteractionNoteResponse.model_validate(note)


@router.put("/notes/{note_id}", response_model=InteractionNoteResponse)
async def update_interaction_note(
    note_id: str,
    note_data: InteractionNoteRequest,
    context: dict = Depends(get_request_context)
):
    source_id = await interaction_service.get_interaction_source_id_for_interaction_note(
        context["tenant_id"], note_id
    )
    await check_source_permission(context, source_id, InteractionPermissionType.UPDATE_INTERACTION_NOTE)
    note = await interaction_service.update_interaction_note(
        context["tenant_id"], note_id, note_data.content, context["user"]["id"]
    )
    return InteractionNoteResponse.model_validate(note)


@router.delete("/notes/{note_id}")
async def delete_interaction_note(note_id: str, context: dict = Depends(get_request_context)):
    source_id = await interaction_service.get_interaction_source_id_for_interaction_note(
        context["tenant_id"], note_id
    )
    await check_source_permission(context, source_id, InteractionPermissionType.UPDATE_INTERACTION_NOTE)
    await interaction_service.delete_interaction_note(context["tenant_id"], note_id)
    return {"message": f"Interaction note {note_id} deleted"}


# Interactions

@router.post("", response_model=InteractionResponse)
async def create_interaction(interaction_data: CreateInteractionRequest, context: dict = Depends(get_request_context)):
    """Create an interaction, queued for linking to the workflows of its conversation"""
    if await interaction_service.interaction_source_exists(context["tenant_id"], interaction_data.source_id):
        await check_source_permission(
            context, interaction_data.source_id, InteractionPermissionType.CREATE_INTERACTION
        )
    interaction = await interaction_service.create_interaction(context["tenant_id"], interaction_data)
    return InteractionResponse.model_validate(interaction)


@router.get("", response_model=InteractionListResponse)
async def get_interaction_summaries(
    source_id: Optional[str] = Query(None, description="Filter by interaction source"),
    status: Optional[InteractionStatus] = Query(None, description="Filter by interaction status"),
    direction: Optional[InteractionDirection] = Query(None, description="Filter by direction"),
    filter: Optional[str] = Query(None, description="Case-insensitive match on the sender or subject"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of interactions per page"),
    context: dict = Depends(get_request_context)
):
    if source_id:
        await check_source_permission(context, source_id, InteractionPermissionType.RETRIEVE_INTERACTION)
    interactions, total = await interaction_service.get_interaction_summaries(
        context["tenant_id"], source_id, status, direction, filter, sort_by, sort_direction, page_index, page_size
    )
    return InteractionListResponse(
        interactions=[InteractionSummary.model_validate(i) for i in interactions],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter,
        source_id=source_id,
        status=status,
        direction=direction
    )


@router.get("/{interaction_id}", response_model=InteractionResponse)
async def get_interaction(interaction_id: str, context: dict = Depends(get_request_context)):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.RETRIEVE_INTERACTION)
    interaction = await interaction_service.get_interaction(context["tenant_id"], interaction_id)
    return InteractionResponse.model_validate(interaction)


@router.put("/{interaction_id}", response_model=InteractionResponse)
async def update_interaction(
    interaction_id: str,
    interaction_data: UpdateInteractionRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.UPDATE_INTERACTION)
    interaction = await interaction_service.update_interaction(context["tenant_id"], interaction_id, interaction_data)
    return InteractionResponse.model_validate(interaction)


@router.delete("/{interaction_id}")
async def delete_interaction(interaction_id: str, context: dict = Depends(get_request_context)):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.DELETE_INTERACTION)
    await interaction_service.delete_interaction(context["tenant_id"], interaction_id)
    return {"message": f"Interaction {interaction_id} deleted"}


@router.post("/{interaction_id}/assign", response_model=InteractionResponse)
async def assign_interaction(
    interaction_id: str,
    assign_data: AssignInteractionRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.ASSIGN_INTERACTION)
    interaction = await interaction_service.assign_interaction(
        context["tenant_id"], interaction_id, assign_data.assigned_to
    )
    return InteractionResponse.model_validate(interaction)


@router.post("/{interaction_id}/transfer", response_model=InteractionResponse)
async def transfer_interaction(
    interaction_id: str,
    transfer_data: TransferInteractionRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.TRANSFER_INTERACTION)
    interaction = await interaction_service.transfer_interaction(
        context["tenant_id"], interaction_id, transfer_data.source_id
    )
    return InteractionResponse.model_validate(interaction)


@router.post("/{interaction_id}/party", response_model=InteractionResponse)
async def link_party_to_interaction(
    interaction_id: str,
    party_data: LinkPartyRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.LINK_PARTY_TO_INTERACTION)
    interaction = await interaction_service.link_party_to_interaction(
        context["tenant_id"], interaction_id, party_data.party_id
    )
    return InteractionResponse.model_validate(interaction)


@router.delete("/{interaction_id}/party", response_model=InteractionResponse)
async def delink_party_from_interaction(interaction_id: str, context: dict = Depends(get_request_context)):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.LINK_PARTY_TO_INTERACTION)
    interaction = await interaction_service.delink_party_from_interaction(context["tenant_id"], interaction_id)
    return InteractionResponse.model_validate(interaction)


@router.get("/{interaction_id}/events", response_model=List[EventResponse])
async def get_interaction_events(interaction_id: str, context: dict = Depends(get_request_context)):
    events = await event_service.get_events_for_object(
        context["tenant_id"], ObjectType.INTERACTION, interaction_id
    )
    return [EventResponse.model_validate(e) for e in events]


@router.post("/{interaction_id}/attachments", response_model=InteractionAttachmentSummary)
async def create_interaction_attachment(
    interaction_id: str,
    attachment_data: InteractionAttachmentRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.UPDATE_INTERACTION)
    attachment = await interaction_service.create_interaction_attachment(
        context["tenant_id"], interaction_id, attachment_data.name, attachment_data.file_type, attachment_data.data
    )
    return InteractionAttachmentSummary.model_validate(attachment)


@router.get("/{interaction_id}/attachments", response_model=InteractionAttachmentListResponse)
async def get_interaction_attachment_summaries(
    interaction_id: str,
    filter: Optional[str] = Query(None, description="Case-insensitive match on the attachment name"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of attachments per page"),
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.RETRIEVE_INTERACTION)
    attachments, total = await interaction_service.get_interaction_attachment_summaries(
        context["tenant_id"], interaction_id, filter, sort_by, sort_direction, page_index, page_size
    )
    return InteractionAttachmentListResponse(
        attachments=[InteractionAttachmentSummary.model_validate(a) for a in attachments],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )


@router.post("/{interaction_id}/notes", response_model=InteractionNoteResponse)
async def create_interaction_note(
    interaction_id: str,
    note_data: InteractionNoteRequest,
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.CREATE_INTERACTION_NOTE)
    note = await interaction_service.create_interaction_note(
        context["tenant_id"], interaction_id, note_data.content, context["user"]["id"]
    )
    return InteractionNoteResponse.model_validate(note)


@router.get("/{interaction_id}/notes", response_model=InteractionNoteListResponse)
async def get_interaction_notes(
    interaction_id: str,
    filter: Optional[str] = Query(None, description="Case-insensitive match on the note content"),
    sort_by: Optional[str] = Query(None),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of notes per page"),
    context: dict = Depends(get_request_context)
):
    await check_interaction_permission(context, interaction_id, InteractionPermissionType.RETRIEVE_INTERACTION_NOTE)
    notes, total = await interaction_service.get_interaction_notes(
        context["tenant_id"], interaction_id, filter, sort_by, sort_direction, page_index, page_size
    )
    return InteractionNoteListResponse(
        notes=[InteractionNoteResponse.model_validate(n) for n in notes],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )
