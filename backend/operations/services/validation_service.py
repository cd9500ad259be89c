"""
Validation of attributes, variables, external references and workflow data
against the definitions that govern them.
"""

import json
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Sequence

import jsonschema

from ..core.exceptions import InvalidArgumentError
from ..models.common import Attribute, AttributeType, ExternalReference, ObjectType
from ..models.document import ExternalReferenceType
from ..models.workflow import ValidationSchemaType, WorkflowVariable, WorkflowVariableDefinition

logger = logging.getLogger(__name__)


class ValidationService:
    """Checks values supplied by callers against attribute, variable and schema definitions"""

    def is_valid_attribute(self, attribute_definitions: Sequence[Any], code: str, value: Optional[str]) -> bool:
        """
        An attribute is valid when its code is defined and, if the definition
        has a pattern, its value is non-empty and fully matches the pattern.
        """
        for attribute_definition in attribute_definitions:
            if attribute_definition.code != code:
                continue
            if not attribute_definition.pattern:
                return True
            if not value:
                return False
            try:
                return re.fullmatch(attribute_definition.pattern, value) is not None
            except re.error:
                logger.warning(
                    f"Invalid pattern ({attribute_definition.pattern}) for the attribute definition ({code})"
                )
                return False
        return False

    def validate_attributes(
        self,
        attribute_definitions: Sequence[Any],
        attributes: Iterable[Attribute],
        parameter: str = "attributes"
    ):
        """Raise InvalidArgumentError for unknown or invalid attributes and missing required ones"""
        codes = set()
        for attribute in attributes:
            if attribute.code in codes:
                raise InvalidArgumentError(parameter, f"duplicate attribute ({attribute.code})")
            codes.add(attribute.code)
            if not self.is_valid_attribute(attribute_definitions, attribute.code, attribute.value):
                raise InvalidArgumentError(parameter, f"invalid attribute ({attribute.code})")

        self.validate_required_attributes(attribute_definitions, codes, parameter)

    def validate_required_attributes(
        self,
        attribute_definitions: Sequence[Any],
        codes: Iterable[str],
        parameter: str = "attributes"
    ):
        codes = set(codes)
        for attribute_definition in attribute_definitions:
            if attribute_definition.required and attribute_definition.code not in codes:
                raise InvalidArgumentError(
                    parameter, f"the required attribute ({attribute_definition.code}) was not specified"
                )

    def is_valid_variable_value(self, variable_type: AttributeType, value: Any) -> bool:
        if value is None:
            return True
        if variable_type == AttributeType.STRING:
            return isinstance(value, str)
        if variable_type == AttributeType.BOOLEAN:
            return isinstance(value, bool)
        if variable_type == AttributeType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if variable_type == AttributeType.DECIMAL:
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float, Decimal)):
                return True
            try:
                Decimal(str(value))
                return True
            except InvalidOperation:
                return False
        if variable_type == AttributeType.DATE:
            if isinstance(value, date):
                return True
            try:
                date.fromisoformat(str(value))
                return True
            except ValueError:
                return False
        return False

    def validate_variables(
        self,
        variable_definitions: List[WorkflowVariableDefinition],
        variables: Iterable[WorkflowVariable],
        parameter: str = "variables"
    ):
        """Variable names are matched case-insensitively"""
        names = set()
        for variable in variables:
            name = variable.name.lower()
            if name in names:
                raise InvalidArgumentError(parameter, f"duplicate variable ({variable.name})")
            names.add(name)

            variable_definition = next(
                (vd for vd in variable_definitions if vd.name.lower() == name), None
            )
            if variable_definition is None:
                raise InvalidArgumentError(parameter, f"invalid variable ({variable.name})")
            if variable.type != variable_definition.type:
                raise InvalidArgumentError(
                    parameter, f"the variable ({variable.name}) must be of type ({variable_definition.type.value})"
                )
            if not self.is_valid_variable_value(variable_definition.type, variable.value):
                raise InvalidArgumentError(parameter, f"invalid value for the variable ({variable.name})")

        for variable_definition in variable_definitions:
            if variable_definition.required and variable_definition.name.lower() not in names:
                raise InvalidArgumentError(
                    parameter, f"the required variable ({variable_definition.name}) was not specified"
                )

    def validate_data(
        self,
        validation_schema_type: Optional[ValidationSchemaType],
        validation_schema: Optional[str],
        data: Optional[str],
        parameter: str = "data"
    ):
        """Validate workflow data against the JSON schema of its definition, if any"""
        if not validation_schema or validation_schema_type != ValidationSchemaType.JSON:
            return

        if not data:
            raise InvalidArgumentError(parameter, "data is required by the workflow definition")

        try:
            instance = json.loads(data)
        except ValueError as e:
            raise InvalidArgumentError(parameter, f"data is not valid JSON: {e}")

        try:
            schema = json.loads(validation_schema)
        except ValueError as e:
            raise InvalidArgumentError("validation_schema", f"the schema is not valid JSON: {e}")

        try:
            jsonschema.validate(instance=instance, schema=schema)
        except jsonschema.exceptions.ValidationError as e:
            raise InvalidArgumentError(parameter, e.message)
        except jsonschema.exceptions.SchemaError as e:
            raise InvalidArgumentError("validation_schema", e.message)

    async def get_external_reference_types(
        self,
        tenant_id: Optional[str],
        object_type: Optional[ObjectType] = None
    ) -> List[ExternalReferenceType]:
        """External reference types for the tenant plus global ones"""
        query = {"$or": [{"tenant_id": None}, {"tenant_id": tenant_id}]}
        external_reference_types = await ExternalReferenceType.find(query).sort([("name", 1)]).to_list()
        if object_type is None:
            return external_reference_types
        return [ert for ert in external_reference_types if ert.applies_to(object_type)]

    async def is_valid_external_reference_type(
        self,
        tenant_id: Optional[str],
        object_type: ObjectType,
        code: str
    ) -> bool:
        """Codes are compared case-insensitively"""
        external_reference_types = await self.get_external_reference_types(tenant_id, object_type)
        return any(ert.code.lower() == code.lower() for ert in external_reference_types)

    async def validate_external_references(
        self,
        tenant_id: Optional[str],
        object_type: ObjectType,
        external_references: Iterable[ExternalReference],
        parameter: str = "external_references"
    ):
        external_references = list(external_references)
        if not external_references:
            return

        allowed = {
            ert.code.lower() for ert in await self.get_external_reference_types(tenant_id, object_type)
        }
        for external_reference in external_references:
            if external_reference.type.lower() not in allowed:
                raise InvalidArgumentError(
                    parameter, f"invalid external reference type ({external_reference.type})"
                )


# Global service instance
validation_service = ValidationService()
