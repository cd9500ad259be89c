from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...models.common import ObjectType, SortDirection
from ...models.document import DocumentDefinition, DocumentDefinitionCategory, DocumentTemplate, ExternalReferenceType
from ...schemas.document import (
    CreateDocumentRequest,
    DocumentDefinitionCategorySchema,
    DocumentDefinitionSchema,
    DocumentDefinitionSummary,
    DocumentNoteListResponse,
    DocumentNoteRequest,
    DocumentNoteResponse,
    DocumentResponse,
    DocumentTemplateCreate,
    DocumentTemplateResponse,
    DocumentTemplateSummary,
    DocumentTemplateUpdate,
    ExternalReferenceTypeSchema,
    UpdateDocumentRequest,
)
from ...services.document_service import document_service
from ..dependencies import get_request_context

router = APIRouter()


# Document definition categories

@router.post("/categories", response_model=DocumentDefinitionCategorySchema)
async def create_document_definition_category(category_data: DocumentDefinitionCategorySchema):
    """Create a document definition category"""
    category = await document_service.create_document_definition_category(
        DocumentDefinitionCategory(**category_data.model_dump())
    )
    return DocumentDefinitionCategorySchema.model_validate(category)


@router.get("/categories", response_model=List[DocumentDefinitionCategorySchema])
async def get_document_definition_categories(context: dict = Depends(get_request_context)):
    """Get the global and tenant document definition categories"""
    categories = await document_service.get_document_definition_categories(context["tenant_id"])
    return [DocumentDefinitionCategorySchema.model_validate(c) for c in categories]


@router.get("/categories/{category_id}", response_model=DocumentDefinitionCategorySchema)
async def get_document_definition_category(category_id: str):
    category = await document_service.get_document_definition_category(category_id)
    return DocumentDefinitionCategorySchema.model_validate(category)


@router.put("/categories/{category_id}", response_model=DocumentDefinitionCategorySchema)
async def update_document_definition_category(category_id: str, category_data: DocumentDefinitionCategorySchema):
    category = DocumentDefinitionCategory(**{**category_data.model_dump(), "category_id": category_id})
    category = await document_service.update_document_definition_category(category)
    return DocumentDefinitionCategorySchema.model_validate(category)


@router.delete("/categories/{category_id}")
async def delete_document_definition_category(category_id: str):
    await document_service.delete_document_definition_category(category_id)
    return {"message": f"Document definition category {category_id} deleted"}


# Document templates

@router.post("/templates", response_model=DocumentTemplateSummary)
async def create_document_template(
    template_data: DocumentTemplateCreate,
    context: dict = Depends(get_request_context)
):
    """Upload a document template"""
    template = DocumentTemplate(**template_data.model_dump(), created_by=context["user"]["id"])
    template = await document_service.create_document_template(template)
    return DocumentTemplateSummary.model_validate(template)


@router.get("/templates", response_model=List[DocumentTemplateSummary])
async def get_document_templates(context: dict = Depends(get_request_context)):
    templates = await document_service.get_document_templates(context["tenant_id"])
    return [DocumentTemplateSummary.model_validate(t) for t in templates]


@router.get("/templates/{template_id}", response_model=DocumentTemplateResponse)
async def get_document_template(template_id: str):
    template = await document_service.get_document_template(template_id)
    return DocumentTemplateResponse.model_validate(template)


@router.put("/templates/{template_id}", response_model=DocumentTemplateSummary)
async def update_document_template(
    template_id: str,
    template_data: DocumentTemplateUpdate,
    context: dict = Depends(get_request_context)
):
    template = await document_service.update_document_template(
        template_id,
        template_data.name,
        template_data.description,
        template_data.file_type,
        template_data.data,
        context["user"]["id"]
    )
    return DocumentTemplateSummary.model_validate(template)


@router.delete("/templates/{template_id}")
async def delete_document_template(template_id: str):
    await document_service.delete_document_template(template_id)
    return {"message": f"Document template {template_id} deleted"}


# Document definitions

@router.post("/definitions", response_model=DocumentDefinitionSchema)
async def create_document_definition(definition_data: DocumentDefinitionSchema):
    definition = await document_service.create_document_definition(
        DocumentDefinition(**definition_data.model_dump())
    )
    return DocumentDefinitionSchema.model_validate(definition)


@router.get("/definitions", response_model=List[DocumentDefinitionSummary])
async def get_document_definitions(
    category_id: Optional[str] = Query(None, description="Filter by document definition category"),
    context: dict = Depends(get_request_context)
):
    definitions = await document_service.get_document_definitions(context["tenant_id"], category_id)
    return [DocumentDefinitionSummary.model_validate(d) for d in definitions]


@router.get("/definitions/{definition_id}", response_model=DocumentDefinitionSchema)
async def get_document_definition(definition_id: str):
    definition = await document_service.get_document_definition(definition_id)
    return DocumentDefinitionSchema.model_validate(definition)


@router.put("/definitions/{definition_id}", response_model=DocumentDefinitionSchema)
async def update_document_definition(definition_id: str, definition_data: DocumentDefinitionSchema):
    definition = DocumentDefinition(**{**definition_data.model_dump(), "definition_id": definition_id})
    definition = await document_service.update_document_definition(definition)
    return DocumentDefinitionSchema.model_validate(definition)


@router.delete("/definitions/{definition_id}")
async def delete_document_definition(definition_id: str):
    await document_service.delete_document_definition(definition_id)
    return {"message": f"Document definition {definition_id} deleted"}


# External reference types

@router.post("/external-reference-types", response_model=ExternalReferenceTypeSchema)
async def create_external_reference_type(external_reference_type_data: ExternalReferenceTypeSchema):
    external_reference_type = await document_service.create_external_reference_type(
        ExternalReferenceType(**external_reference_type_data.model_dump())
    )
    return ExternalReferenceTypeSchema.model_validate(external_reference_type)


@router.get("/external-reference-types", response_model=List[ExternalReferenceTypeSchema])
async def get_external_reference_types(
    object_type: Optional[ObjectType] = Query(None, description="Only types that apply to this object type"),
    context: dict = Depends(get_request_context)
):
    external_reference_types = await document_service.get_external_reference_types(
        context["tenant_id"], object_type
    )
    return [ExternalReferenceTypeSchema.model_validate(t) for t in external_reference_types]


# Document notes

@router.get("/notes/{note_id}", response_model=DocumentNoteResponse)
async def get_document_note(note_id: str, context: dict = Depends(get_request_context)):
    note = await document_service.get_document_note(context["tenant_id"], note_id)
    return DocumentNoteResponse.model_validate(note)


@router.put("/notes/{note_id}", response_model=DocumentNoteResponse)
async def update_document_note(
    note_id: str,
    note_data: DocumentNoteRequest,
    context: dict = Depends(get_request_context)
):
    note = await document_service.update_document_note(
        context["tenant_id"], note_id, note_data.content, context["user"]["id"]
    )
    return DocumentNoteResponse.model_validate(note)


@router.delete("/notes/{note_id}")
async def delete_document_note(note_id: str, context: dict = Depends(get_request_context)):
    await document_service.delete_document_note(context["tenant_id"], note_id)
    return {"message": f"Document note {note_id} deleted"}


# Documents

@router.post("", response_model=DocumentResponse)
async def create_document(document_data: CreateDocumentRequest, context: dict = Depends(get_request_context)):
    """Create a document for the tenant"""
    document = await document_service.create_document(context["tenant_id"], document_data, context["user"]["id"])
    return DocumentResponse.model_validate(document)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: str, context: dict = Depends(get_request_context)):
    document = await document_service.get_document(context["tenant_id"], document_id)
    return DocumentResponse.model_validate(document)


@router.put("/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: str,
    document_data: UpdateDocumentRequest,
    context: dict = Depends(get_request_context)
):
    document = await document_service.update_document(
        context["tenant_id"], document_id, document_data, context["user"]["id"]
    )
    return DocumentResponse.model_validate(document)


@router.delete("/{document_id}")
async def delete_document(document_id: str, context: dict = Depends(get_request_context)):
    await document_service.delete_document(context["tenant_id"], document_id)
    return {"message": f"Document {document_id} deleted"}


@router.post("/{document_id}/notes", response_model=DocumentNoteResponse)
async def create_document_note(
    document_id: str,
    note_data: DocumentNoteRequest,
    context: dict = Depends(get_request_context)
):
    note = await document_service.create_document_note(
        context["tenant_id"], document_id, note_data.content, context["user"]["id"]
    )
    return DocumentNoteResponse.model_validate(note)


@router.get("/{document_id}/notes", response_model=DocumentNoteListResponse)
async def get_document_notes(
    document_id: str,
    filter: Optional[str] = Query(None, description="Case-insensitive match on the note content"),
    sort_by: Optional[str] = Query(None, description="created, created_by, updated or updated_by"),
    sort_direction: Optional[SortDirection] = Query(None),
    page_index: int = Query(0, description="Zero-based page index"),
    page_size: int = Query(10, description="Number of notes per page"),
    context: dict = Depends(get_request_context)
):
    notes, total = await document_service.get_document_notes(
        context["tenant_id"], document_id, filter, sort_by, sort_direction, page_index, page_size
    )
    return DocumentNoteListResponse(
        notes=[DocumentNoteResponse.model_validate(n) for n in notes],
        total=total,
        page_index=page_index,
        page_size=page_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        filter=filter
    )
