from datetime import datetime

import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID, USER
from operations.core.exceptions import (
    DocumentDefinitionCategoryNotFoundError,
    DocumentDefinitionNotFoundError,
    DocumentNotFoundError,
    DocumentNoteNotFoundError,
    DocumentTemplateNotFoundError,
    DuplicateDocumentDefinitionCategoryError,
    DuplicateDocumentDefinitionError,
    DuplicateExternalReferenceTypeError,
    InvalidArgumentError,
)
from operations.models.common import Attribute, ExternalReference, FileType, ObjectType, SortDirection, calculate_hash
from operations.models.document import (
    DocumentDefinition,
    DocumentDefinitionCategory,
    DocumentTemplate,
    ExternalReferenceType,
    RequiredDocumentAttribute,
)
from operations.schemas.document import CreateDocumentRequest, UpdateDocumentRequest
from operations.services.document_service import document_service


async def create_passport(data=b"%PDF-1.4 passport", **kwargs):
    request = CreateDocumentRequest(
        definition_id="passport",
        name="Passport",
        file_type=FileType.PDF,
        data=data,
        attributes=[Attribute(code="passport_number", value="A12345678")],
        **kwargs
    )
    return await document_service.create_document(TENANT_ID, request, USER)


class TestDocumentDefinitions:
    async def test_duplicate_category(self, document_definitions):
        with pytest.raises(DuplicateDocumentDefinitionCategoryError):
            await document_service.create_document_definition_category(
                DocumentDefinitionCategory(category_id="identity", name="Again")
            )

    async def test_definition_requires_existing_category(self, db):
        with pytest.raises(DocumentDefinitionCategoryNotFoundError):
            await document_service.create_document_definition(
                DocumentDefinition(definition_id="payslip", category_id="income", name="Payslip")
            )

    async def test_definition_requires_existing_template(self, document_definitions):
        with pytest.raises(DocumentTemplateNotFoundError):
            await document_service.create_document_definition(
                DocumentDefinition(
                    definition_id="payslip", category_id="identity", name="Payslip", template_id="missing"
                )
            )

    async def test_duplicate_definition(self, document_definitions):
        with pytest.raises(DuplicateDocumentDefinitionError):
            await document_service.create_document_definition(
                DocumentDefinition(definition_id="passport", category_id="identity", name="Passport")
            )

    async def test_tenant_definitions_are_not_shared(self, document_definitions):
        await document_service.create_document_definition(
            DocumentDefinition(
                definition_id="tenant_letter", tenant_id=OTHER_TENANT_ID, category_id="identity", name="Letter"
            )
        )
        definitions = await document_service.get_document_definitions(TENANT_ID)
        assert [d.definition_id for d in definitions] == ["passport", "proof_of_address"]

        definitions = await document_service.get_document_definitions(OTHER_TENANT_ID, "identity")
        assert "tenant_letter" in [d.definition_id for d in definitions]

    async def test_update_definition(self, document_definitions):
        definition = await document_service.get_document_definition("proof_of_address")
        definition.name = "Utility Bill"
        definition.required_document_attributes = [RequiredDocumentAttribute.ISSUE_DATE]
        await document_service.update_document_definition(definition)

        updated = await document_service.get_document_definition("proof_of_address")
        assert updated.name == "Utility Bill"
        assert updated.requires(RequiredDocumentAttribute.ISSUE_DATE)

    async def test_delete_definition_in_use(self, document_definitions):
        await create_passport()
        with pytest.raises(InvalidArgumentError):
            await document_service.delete_document_definition("passport")

    async def test_delete_category_in_use(self, document_definitions):
        with pytest.raises(InvalidArgumentError):
            await document_service.delete_document_definition_category("identity")

    async def test_delete_definition(self, document_definitions):
        await document_service.delete_document_definition("proof_of_address")
        assert not await document_service.document_definition_exists("proof_of_address")
        with pytest.raises(DocumentDefinitionNotFoundError):
            await document_service.get_document_definition("proof_of_address")


class TestDocumentTemplates:
    async def test_template_hash_is_calculated(self, db):
        template = await document_service.create_document_template(
            DocumentTemplate(
                template_id="letter", name="Letter", file_type=FileType.WORD, data=b"template", created_by=USER
            )
        )
        assert template.hash == calculate_hash(b"template")

        retrieved = await document_service.get_document_template("letter")
        assert type(retrieved.data) is bytes
        assert retrieved.data == b"template"

        updated = await document_service.update_document_template(
            "letter", "Letter", None, FileType.WORD, b"changed", USER
        )
        assert updated.hash == calculate_hash(b"changed")
        assert updated.updated_by == USER


class TestDocuments:
    async def test_create_and_retrieve(self, document_definitions):
        document = await create_passport()

        retrieved = await document_service.get_document(TENANT_ID, document.document_id)
        assert retrieved.definition_id == "passport"
        assert type(retrieved.data) is bytes
        assert retrieved.data == b"%PDF-1.4 passport"
        assert retrieved.hash == calculate_hash(b"%PDF-1.4 passport")
        assert retrieved.created_by == USER

    async def test_documents_are_isolated_by_tenant(self, document_definitions):
        document = await create_passport()
        with pytest.raises(DocumentNotFoundError):
            await document_service.get_document(OTHER_TENANT_ID, document.document_id)

    async def test_unknown_definition(self, document_definitions):
        request = CreateDocumentRequest(definition_id="visa", file_type=FileType.PDF, data=b"data")
        with pytest.raises(InvalidArgumentError) as exc_info:
            await document_service.create_document(TENANT_ID, request, USER)
        assert exc_info.value.parameter == "definition_id"

    async def test_empty_data(self, document_definitions):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await create_passport(data=b"")
        assert exc_info.value.parameter == "data"

    async def test_invalid_attribute(self, document_definitions):
        request = CreateDocumentRequest(
            definition_id="passport",
            file_type=FileType.PDF,
            data=b"data",
            attributes=[Attribute(code="passport_number", value="12345")]
        )
        with pytest.raises(InvalidArgumentError) as exc_info:
            await document_service.create_document(TENANT_ID, request, USER)
        assert exc_info.value.parameter == "attributes"

    async def test_expiry_date_must_follow_issue_date(self, document_definitions):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await create_passport(issue_date=datetime(2024, 1, 1), expiry_date=datetime(2023, 1, 1))
        assert exc_info.value.parameter == "expiry_date"

    async def test_required_issue_date(self, document_definitions):
        definition = await document_service.get_document_definition("passport")
        definition.required_document_attributes = [RequiredDocumentAttribute.ISSUE_DATE]
        await document_service.update_document_definition(definition)

        with pytest.raises(InvalidArgumentError) as exc_info:
            await create_passport()
        assert exc_info.value.parameter == "issue_date"

    async def test_unknown_external_reference_type(self, document_definitions):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await create_passport(external_references=[ExternalReference(type="crm_id", value="42")])
        assert exc_info.value.parameter == "external_references"

    async def test_external_reference(self, document_definitions):
        await document_service.create_external_reference_type(
            ExternalReferenceType(code="crm_id", name="CRM ID", object_type=ObjectType.DOCUMENT)
        )
        document = await create_passport(external_references=[ExternalReference(type="crm_id", value="42")])
        assert document.external_references[0].value == "42"

    async def test_duplicate_external_reference_type(self, db):
        await document_service.create_external_reference_type(ExternalReferenceType(code="crm_id", name="CRM ID"))
        with pytest.raises(DuplicateExternalReferenceTypeError):
            await document_service.create_external_reference_type(
                ExternalReferenceType(code="crm_id", name="CRM ID")
            )

    async def test_missing_source_document(self, document_definitions):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await create_passport(source_document_id="missing")
        assert exc_info.value.parameter == "source_document_id"

    async def test_update(self, document_definitions):
        document = await create_passport()
        request = UpdateDocumentRequest(
            name="Renewed Passport",
            file_type=FileType.PDF,
            data=b"%PDF-1.4 renewed",
            attributes=[Attribute(code="passport_number", value="B87654321")]
        )
        updated = await document_service.update_document(TENANT_ID, document.document_id, request, "asmith")
        assert updated.name == "Renewed Passport"
        assert updated.hash == calculate_hash(b"%PDF-1.4 renewed")
        assert updated.updated_by == "asmith"

    async def test_delete_removes_notes(self, document_definitions):
        document = await create_passport()
        note = await document_service.create_document_note(TENANT_ID, document.document_id, "Checked", USER)

        await document_service.delete_document(TENANT_ID, document.document_id)

        assert not await document_service.document_exists(TENANT_ID, document.document_id)
        assert not await document_service.document_note_exists(TENANT_ID, note.note_id)


class TestDocumentNotes:
    async def test_note_for_missing_document(self, db):
        with pytest.raises(DocumentNotFoundError):
            await document_service.create_document_note(TENANT_ID, "missing", "Checked", USER)

    async def test_update_and_delete(self, document_definitions):
        document = await create_passport()
        note = await document_service.create_document_note(TENANT_ID, document.document_id, "Checked", USER)

        updated = await document_service.update_document_note(TENANT_ID, note.note_id, "Rechecked", "asmith")
        assert updated.content == "Rechecked"
        assert updated.updated_by == "asmith"

        await document_service.delete_document_note(TENANT_ID, note.note_id)
        with pytest.raises(DocumentNoteNotFoundError):
            await document_service.get_document_note(TENANT_ID, note.note_id)

    async def test_paging_and_filtering(self, document_definitions):
        document = await create_passport()
        for content in ["First call", "Second call", "Email sent"]:
            await document_service.create_document_note(TENANT_ID, document.document_id, content, USER)

        notes, total = await document_service.get_document_notes(
            TENANT_ID, document.document_id, filter="CALL", page_index=0, page_size=1
        )
        assert total == 2
        assert len(notes) == 1

        notes, total = await document_service.get_document_notes(
            TENANT_ID, document.document_id, sort_by="created", sort_direction=SortDirection.DESCENDING
        )
        assert total == 3

    async def test_invalid_sort(self, document_definitions):
        document = await create_passport()
        with pytest.raises(InvalidArgumentError) as exc_info:
            await document_service.get_document_notes(TENANT_ID, document.document_id, sort_by="content")
        assert exc_info.value.parameter == "sort_by"

    async def test_invalid_page_size(self, document_definitions):
        document = await create_passport()
        with pytest.raises(InvalidArgumentError) as exc_info:
            await document_service.get_document_notes(TENANT_ID, document.document_id, page_size=0)
        assert exc_info.value.parameter == "page_size"
