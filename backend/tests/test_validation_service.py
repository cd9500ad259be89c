import json

import pytest

from operations.core.exceptions import InvalidArgumentError
from operations.models.common import Attribute, AttributeType, ExternalReference, ObjectType
from operations.models.document import DocumentAttributeDefinition, ExternalReferenceType
from operations.models.workflow import ValidationSchemaType, WorkflowVariable, WorkflowVariableDefinition
from operations.services.validation_service import validation_service


ATTRIBUTE_DEFINITIONS = [
    DocumentAttributeDefinition(code="id_number", name="ID Number", pattern=r"\d{13}", required=True),
    DocumentAttributeDefinition(code="notes", name="Notes"),
]

VARIABLE_DEFINITIONS = [
    WorkflowVariableDefinition(name="Amount", type=AttributeType.DECIMAL, required=True),
    WorkflowVariableDefinition(name="start_date", type=AttributeType.DATE),
    WorkflowVariableDefinition(name="count", type=AttributeType.INTEGER),
]


class TestAttributes:
    def test_attribute_matching_pattern_is_valid(self):
        assert validation_service.is_valid_attribute(ATTRIBUTE_DEFINITIONS, "id_number", "8001015009087")

    def test_pattern_must_match_the_whole_value(self):
        assert not validation_service.is_valid_attribute(ATTRIBUTE_DEFINITIONS, "id_number", "8001015009087X")

    def test_empty_value_fails_pattern(self):
        assert not validation_service.is_valid_attribute(ATTRIBUTE_DEFINITIONS, "id_number", "")

    def test_attribute_without_pattern_accepts_any_value(self):
        assert validation_service.is_valid_attribute(ATTRIBUTE_DEFINITIONS, "notes", None)

    def test_unknown_attribute_is_invalid(self):
        assert not validation_service.is_valid_attribute(ATTRIBUTE_DEFINITIONS, "colour", "red")

    def test_missing_required_attribute(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validation_service.validate_attributes(ATTRIBUTE_DEFINITIONS, [Attribute(code="notes", value="x")])
        assert exc_info.value.parameter == "attributes"
        assert "id_number" in exc_info.value.message

    def test_duplicate_attribute(self):
        with pytest.raises(InvalidArgumentError):
            validation_service.validate_attributes(
                ATTRIBUTE_DEFINITIONS,
                [Attribute(code="id_number", value="8001015009087"), Attribute(code="id_number", value="8001015009087")]
            )


class TestVariables:
    def test_names_match_case_insensitively(self):
        validation_service.validate_variables(
            VARIABLE_DEFINITIONS, [WorkflowVariable(name="amount", type=AttributeType.DECIMAL, value="12.50")]
        )

    def test_missing_required_variable(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validation_service.validate_variables(VARIABLE_DEFINITIONS, [])
        assert "Amount" in exc_info.value.message

    def test_unknown_variable(self):
        with pytest.raises(InvalidArgumentError):
            validation_service.validate_variables(
                VARIABLE_DEFINITIONS,
                [
                    WorkflowVariable(name="amount", type=AttributeType.DECIMAL, value=1),
                    WorkflowVariable(name="colour", type=AttributeType.STRING, value="red"),
                ]
            )

    def test_type_mismatch(self):
        with pytest.raises(InvalidArgumentError):
            validation_service.validate_variables(
                VARIABLE_DEFINITIONS, [WorkflowVariable(name="amount", type=AttributeType.STRING, value="1")]
            )

    @pytest.mark.parametrize("variable_type,value,expected", [
        (AttributeType.INTEGER, 3, True),
        (AttributeType.INTEGER, True, False),
        (AttributeType.DECIMAL, "abc", False),
        (AttributeType.DATE, "2024-02-29", True),
        (AttributeType.DATE, "29/02/2024", False),
        (AttributeType.BOOLEAN, "yes", False),
    ])
    def test_variable_values(self, variable_type, value, expected):
        assert validation_service.is_valid_variable_value(variable_type, value) is expected


class TestData:
    SCHEMA = json.dumps({
        "type": "object",
        "properties": {"name": {"type": "string"}},
        "required": ["name"]
    })

    def test_no_schema_accepts_anything(self):
        validation_service.validate_data(None, None, "not json")

    def test_valid_data(self):
        validation_service.validate_data(ValidationSchemaType.JSON, self.SCHEMA, '{"name": "Jane"}')

    def test_data_required_when_schema_defined(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validation_service.validate_data(ValidationSchemaType.JSON, self.SCHEMA, None)
        assert exc_info.value.parameter == "data"

    def test_data_violating_schema(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validation_service.validate_data(ValidationSchemaType.JSON, self.SCHEMA, '{"age": 3}')
        assert "name" in exc_info.value.message

    def test_malformed_data(self):
        with pytest.raises(InvalidArgumentError):
            validation_service.validate_data(ValidationSchemaType.JSON, self.SCHEMA, "{")


class TestExternalReferences:
    @pytest.fixture
    async def reference_types(self, db):
        await ExternalReferenceType(code="crm_id", name="CRM ID").insert()
        await ExternalReferenceType(
            code="case_number", tenant_id="tenant-1", name="Case Number", object_type=ObjectType.WORKFLOW
        ).insert()
        await ExternalReferenceType(code="legacy_id", tenant_id="tenant-2", name="Legacy ID").insert()

    async def test_global_and_tenant_types_are_visible(self, reference_types):
        types = await validation_service.get_external_reference_types("tenant-1")
        assert {t.code for t in types} == {"crm_id", "case_number"}

    async def test_object_type_filter(self, reference_types):
        types = await validation_service.get_external_reference_types("tenant-1", ObjectType.DOCUMENT)
        assert [t.code for t in types] == ["crm_id"]

    async def test_codes_compare_case_insensitively(self, reference_types):
        assert await validation_service.is_valid_external_reference_type("tenant-1", ObjectType.WORKFLOW, "CASE_NUMBER")

    async def test_other_tenant_type_rejected(self, reference_types):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await validation_service.validate_external_references(
                "tenant-1", ObjectType.DOCUMENT, [ExternalReference(type="legacy_id", value="42")]
            )
        assert exc_info.value.parameter == "external_references"
