"""
Document service for the operations module.
Manages document definition categories, templates and definitions, and the
documents (with their notes) captured against them.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from ..core.config import settings
from ..core.exceptions import (
    DocumentDefinitionCategoryNotFoundError,
    DocumentDefinitionNotFoundError,
    DocumentNotFoundError,
    DocumentNoteNotFoundError,
    DocumentTemplateNotFoundError,
    DuplicateDocumentDefinitionCategoryError,
    DuplicateDocumentDefinitionError,
    DuplicateDocumentTemplateError,
    DuplicateExternalReferenceTypeError,
    InvalidArgumentError,
)
from ..core.logging_config import set_operations_context
from ..models.common import Attribute, ExternalReference, FileType, ObjectType, SortDirection, calculate_hash
from ..models.document import (
    DocumentDefinition,
    DocumentDefinitionCategory,
    DocumentModel,
    DocumentNote,
    DocumentTemplate,
    ExternalReferenceType,
    RequiredDocumentAttribute,
)
from ..schemas.document import CreateDocumentRequest, UpdateDocumentRequest
from .common import content_filter, resolve_page, resolve_sort, service_operation
from .validation_service import validation_service

logger = logging.getLogger(__name__)

NOTE_SORT_FIELDS = {
    "created": "created",
    "created_by": "created_by",
    "updated": "updated",
    "updated_by": "updated_by",
}


def _tenant_or_global(tenant_id: Optional[str]) -> dict:
    return {"$or": [{"tenant_id": None}, {"tenant_id": tenant_id}]}


class DocumentService:
    """Service for document definitions, templates, documents and document notes"""

    def __init__(self):
        self.max_document_size = settings.MAX_DOCUMENT_SIZE_MB * 1024 * 1024

    # Document definition categories

    @service_operation("create the document definition category ({category.category_id})")
    async def create_document_definition_category(
        self, category: DocumentDefinitionCategory
    ) -> DocumentDefinitionCategory:
        if await self.document_definition_category_exists(category.category_id):
            raise DuplicateDocumentDefinitionCategoryError(category.category_id)
        await category.insert()
        logger.info(f"Created document definition category: {category.category_id}")
        return category

    @service_operation("retrieve the document definition category ({category_id})")
    async def get_document_definition_category(self, category_id: str) -> DocumentDefinitionCategory:
        category = await DocumentDefinitionCategory.find_one({"category_id": category_id})
        if not category:
            raise DocumentDefinitionCategoryNotFoundError(category_id)
        return category

    @service_operation("retrieve the document definition categories for the tenant ({tenant_id})")
    async def get_document_definition_categories(self, tenant_id: Optional[str]) -> List[DocumentDefinitionCategory]:
        return await DocumentDefinitionCategory.find(_tenant_or_global(tenant_id)).sort([("name", 1)]).to_list()

    @service_operation("update the document definition category ({category.category_id})")
    async def update_document_definition_category(
        self, category: DocumentDefinitionCategory
    ) -> DocumentDefinitionCategory:
        existing = await self.get_document_definition_category(category.category_id)
        existing.tenant_id = category.tenant_id
        existing.name = category.name
        await existing.save()
        return existing

    @service_operation("delete the document definition category ({category_id})")
    async def delete_document_definition_category(self, category_id: str):
        category = await self.get_document_definition_category(category_id)
        if await DocumentDefinition.find({"category_id": category_id}).count() > 0:
            raise InvalidArgumentError(
                "category_id", f"the document definition category ({category_id}) is still in use"
            )
        await category.delete()
        logger.info(f"Deleted document definition category: {category_id}")

    @service_operation("check whether the document definition category ({category_id}) exists")
    async def document_definition_category_exists(self, category_id: str) -> bool:
        return await DocumentDefinitionCategory.find({"category_id": category_id}).count() > 0

    # Document templates

    @service_operation("create the document template ({template.template_id})")
    async def create_document_template(self, template: DocumentTemplate) -> DocumentTemplate:
        if await self.document_template_exists(template.template_id):
            raise DuplicateDocumentTemplateError(template.template_id)
        template.hash = calculate_hash(template.data)
        await template.insert()
        logger.info(f"Created document template: {template.template_id}")
        return template

    @service_operation("retrieve the document template ({template_id})")
    async def get_document_template(self, template_id: str) -> DocumentTemplate:
        template = await DocumentTemplate.find_one({"template_id": template_id})
        if not template:
            raise DocumentTemplateNotFoundError(template_id)
        return template

    @service_operation("retrieve the document templates for the tenant ({tenant_id})")
    async def get_document_templates(self, tenant_id: Optional[str]) -> List[DocumentTemplate]:
        return await DocumentTemplate.find(_tenant_or_global(tenant_id)).sort([("name", 1)]).to_list()

    @service_operation("update the document template ({template_id})")
    async def update_document_template(
        self,
        template_id: str,
        name: str,
        description: Optional[str],
        file_type: FileType,
        data: bytes,
        updated_by: str
    ) -> DocumentTemplate:
        template = await self.get_document_template(template_id)
        template.name = name
        template.description = description
        template.file_type = file_type
        template.data = data
        template.hash = calculate_hash(data)
        template.updated = datetime.utcnow()
        template.updated_by = updated_by
        await template.save()
        return template

    @service_operation("delete the document template ({template_id})")
    async def delete_document_template(self, template_id: str):
        template = await self.get_document_template(template_id)
        await template.delete()
        logger.info(f"Deleted document template: {template_id}")

    @service_operation("check whether the document template ({template_id}) exists")
    async def document_template_exists(self, template_id: str) -> bool:
        return await DocumentTemplate.find({"template_id": template_id}).count() > 0

    # Document definitions

    async def _check_document_definition_references(self, definition: DocumentDefinition):
        if not await self.document_definition_category_exists(definition.category_id):
            raise DocumentDefinitionCategoryNotFoundError(definition.category_id)
        if definition.template_id and not await self.document_template_exists(definition.template_id):
            raise DocumentTemplateNotFoundError(definition.template_id)
        codes = [attribute_definition.code for attribute_definition in definition.attribute_definitions]
        if len(codes) != len(set(codes)):
            raise InvalidArgumentError("attribute_definitions", "attribute definition codes must be unique")

    @service_operation("create the document definition ({definition.definition_id})")
    async def create_document_definition(self, definition: DocumentDefinition) -> DocumentDefinition:
        if await self.document_definition_exists(definition.definition_id):
            raise DuplicateDocumentDefinitionError(definition.definition_id)
        await self._check_document_definition_references(definition)
        await definition.insert()
        logger.info(f"Created document definition: {definition.definition_id}")
        return definition

    @service_operation("retrieve the document definition ({definition_id})")
    async def get_document_definition(self, definition_id: str) -> DocumentDefinition:
        definition = await DocumentDefinition.find_one({"definition_id": definition_id})
        if not definition:
            raise DocumentDefinitionNotFoundError(definition_id)
        return definition

    @service_operation(
        "retrieve the document definitions for the tenant ({tenant_id}) and category ({category_id})"
    )
    async def get_document_definitions(
        self,
        tenant_id: Optional[str],
        category_id: Optional[str] = None
    ) -> List[DocumentDefinition]:
        query = _tenant_or_global(tenant_id)
        if category_id:
            query["category_id"] = category_id
        return await DocumentDefinition.find(query).sort([("name", 1)]).to_list()

    @service_operation("update the document definition ({definition.definition_id})")
    async def update_document_definition(self, definition: DocumentDefinition) -> DocumentDefinition:
        existing = await self.get_document_definition(definition.definition_id)
        await self._check_document_definition_references(definition)
        definition.id = existing.id
        await definition.replace()
        return definition

    @service_operation("delete the document definition ({definition_id})")
    async def delete_document_definition(self, definition_id: str):
        definition = await self.get_document_definition(definition_id)
        if await DocumentModel.find({"definition_id": definition_id}).count() > 0:
            raise InvalidArgumentError(
                "definition_id", f"the document definition ({definition_id}) is still in use"
            )
        await definition.delete()
        logger.info(f"Deleted document definition: {definition_id}")

    @service_operation("check whether the document definition ({definition_id}) exists")
    async def document_definition_exists(self, definition_id: str) -> bool:
        return await DocumentDefinition.find({"definition_id": definition_id}).count() > 0

    # Documents

    async def validate_document(
        self,
        tenant_id: str,
        definition_id: str,
        data: bytes,
        issue_date: Optional[datetime],
        expiry_date: Optional[datetime],
        attributes: List[Attribute],
        external_references: List[ExternalReference]
    ) -> DocumentDefinition:
        """Check a document against its definition, returning the definition"""
        definition = await DocumentDefinition.find_one(
            {"definition_id": definition_id, **_tenant_or_global(tenant_id)}
        )
        if not definition:
            raise InvalidArgumentError(
                "definition_id", f"the document definition ({definition_id}) could not be found"
            )

        if not data:
            raise InvalidArgumentError("data", "the document data is empty")
        if len(data) > self.max_document_size:
            raise InvalidArgumentError(
                "data", f"the document exceeds the maximum size of {settings.MAX_DOCUMENT_SIZE_MB} MB"
            )

        if definition.requires(RequiredDocumentAttribute.ISSUE_DATE) and issue_date is None:
            raise InvalidArgumentError("issue_date", "the issue date is required")
        if definition.requires(RequiredDocumentAttribute.EXPIRY_DATE) and expiry_date is None:
            raise InvalidArgumentError("expiry_date", "the expiry date is required")
        if definition.requires(RequiredDocumentAttribute.EXTERNAL_REFERENCE) and not external_references:
            raise InvalidArgumentError("external_references", "an external reference is required")
        if issue_date and expiry_date and expiry_date <= issue_date:
            raise InvalidArgumentError("expiry_date", "the expiry date must be after the issue date")

        validation_service.validate_attributes(definition.attribute_definitions, attributes)
        await validation_service.validate_external_references(
            tenant_id, ObjectType.DOCUMENT, external_references
        )
        return definition

    @service_operation("create the document for the tenant ({tenant_id})")
    async def create_document(
        self,
        tenant_id: str,
        request: CreateDocumentRequest,
        created_by: str
    ) -> DocumentModel:
        set_operations_context(tenant=tenant_id, user=created_by)

        await self.validate_document(
            tenant_id,
            request.definition_id,
            request.data,
            request.issue_date,
            request.expiry_date,
            request.attributes,
            request.external_references
        )
        if request.source_document_id and not await self.document_exists(tenant_id, request.source_document_id):
            raise InvalidArgumentError(
                "source_document_id", f"the source document ({request.source_document_id}) could not be found"
            )

        document = DocumentModel(
            tenant_id=tenant_id,
            definition_id=request.definition_id,
            name=request.name,
            file_type=request.file_type,
            data=request.data,
            hash=calculate_hash(request.data),
            issue_date=request.issue_date,
            expiry_date=request.expiry_date,
            source_document_id=request.source_document_id,
            attributes=request.attributes,
            external_references=request.external_references,
            created_by=created_by
        )
        await document.insert()
        logger.info(f"Created document: {document.document_id}", extra={"document_id": document.document_id})
        return document

    @service_operation("retrieve the document ({document_id}) for the tenant ({tenant_id})")
    async def get_document(self, tenant_id: str, document_id: str) -> DocumentModel:
        document = await DocumentModel.find_one({"tenant_id": tenant_id, "document_id": document_id})
        if not document:
            raise DocumentNotFoundError(document_id, tenant_id)
        return document

    @service_operation("update the document ({document_id}) for the tenant ({tenant_id})")
    async def update_document(
        self,
        tenant_id: str,
        document_id: str,
        request: UpdateDocumentRequest,
        updated_by: str
    ) -> DocumentModel:
        document = await self.get_document(tenant_id, document_id)
        await self.validate_document(
            tenant_id,
            document.definition_id,
            request.data,
            request.issue_date,
            request.expiry_date,
            request.attributes,
            request.external_references
        )

        document.name = request.name
        document.file_type = request.file_type
        document.data = request.data
        document.hash = calculate_hash(request.data)
        document.issue_date = request.issue_date
        document.expiry_date = request.expiry_date
        document.attributes = request.attributes
        document.external_references = request.external_references
        document.updated = datetime.utcnow()
        document.updated_by = updated_by
        await document.save()
        return document

    @service_operation("delete the document ({document_id}) for the tenant ({tenant_id})")
    async def delete_document(self, tenant_id: str, document_id: str):
        document = await self.get_document(tenant_id, document_id)
        await DocumentNote.find({"tenant_id": tenant_id, "document_id": document_id}).delete()
        await document.delete()
        logger.info(f"Deleted document: {document_id}", extra={"document_id": document_id})

    @service_operation("check whether the document ({document_id}) exists for the tenant ({tenant_id})")
    async def document_exists(self, tenant_id: str, document_id: str) -> bool:
        return await DocumentModel.find({"tenant_id": tenant_id, "document_id": document_id}).count() > 0

    # Document notes

    @service_operation("create the note for the document ({document_id}) for the tenant ({tenant_id})")
    async def create_document_note(
        self,
        tenant_id: str,
        document_id: str,
        content: str,
        created_by: str
    ) -> DocumentNote:
        if not await self.document_exists(tenant_id, document_id):
            raise DocumentNotFoundError(document_id, tenant_id)
        note = DocumentNote(
            tenant_id=tenant_id,
            document_id=document_id,
            content=content,
            created_by=created_by
        )
        await note.insert()
        return note

    @service_operation("retrieve the document note ({note_id}) for the tenant ({tenant_id})")
    async def get_document_note(self, tenant_id: str, note_id: str) -> DocumentNote:
        note = await DocumentNote.find_one({"tenant_id": tenant_id, "note_id": note_id})
        if not note:
            raise DocumentNoteNotFoundError(note_id, tenant_id)
        return note

    @service_operation("update the document note ({note_id}) for the tenant ({tenant_id})")
    async def update_document_note(
        self,
        tenant_id: str,
        note_id: str,
        content: str,
        updated_by: str
    ) -> DocumentNote:
        note = await self.get_document_note(tenant_id, note_id)
        note.content = content
        note.updated = datetime.utcnow()
        note.updated_by = updated_by
        await note.save()
        return note

    @service_operation("delete the document note ({note_id}) for the tenant ({tenant_id})")
    async def delete_document_note(self, tenant_id: str, note_id: str):
        note = await self.get_document_note(tenant_id, note_id)
        await note.delete()

    @service_operation("check whether the document note ({note_id}) exists for the tenant ({tenant_id})")
    async def document_note_exists(self, tenant_id: str, note_id: str) -> bool:
        return await DocumentNote.find({"tenant_id": tenant_id, "note_id": note_id}).count() > 0

    @service_operation("retrieve the notes for the document ({document_id}) for the tenant ({tenant_id})")
    async def get_document_notes(
        self,
        tenant_id: str,
        document_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[DocumentNote], int]:
        if not await self.document_exists(tenant_id, document_id):
            raise DocumentNotFoundError(document_id, tenant_id)

        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, NOTE_SORT_FIELDS, "created")

        query = {"tenant_id": tenant_id, "document_id": document_id, **content_filter("content", filter)}
        total = await DocumentNote.find(query).count()
        notes = await DocumentNote.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return notes, total

    # External reference types

    @service_operation("create the external reference type ({external_reference_type.code})")
    async def create_external_reference_type(
        self, external_reference_type: ExternalReferenceType
    ) -> ExternalReferenceType:
        existing = await ExternalReferenceType.find(
            {"code": external_reference_type.code, "tenant_id": external_reference_type.tenant_id}
        ).count()
        if existing:
            raise DuplicateExternalReferenceTypeError(external_reference_type.code)
        await external_reference_type.insert()
        return external_reference_type

    @service_operation("retrieve the external reference types for the tenant ({tenant_id})")
    async def get_external_reference_types(
        self,
        tenant_id: Optional[str],
        object_type: Optional[ObjectType] = None
    ) -> List[ExternalReferenceType]:
        return await validation_service.get_external_reference_types(tenant_id, object_type)


# Global service instance
document_service = DocumentService()
