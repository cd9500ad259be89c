"""
Test Configuration and Fixtures
Every test runs against a fresh in-memory MongoDB initialised with Beanie.
"""

import base64
import logging
import uuid

import pytest
from mongomock_motor import AsyncMongoMockClient

from operations.core.database import init_database
from operations.models.document import DocumentAttributeDefinition, DocumentDefinition, DocumentDefinitionCategory
from operations.models.interaction import Interaction, InteractionSource, InteractionSourceType
from operations.models.workflow import (
    WorkflowAttributeDefinition,
    WorkflowDefinition,
    WorkflowDefinitionCategory,
    WorkflowDefinitionDocumentDefinition,
    WorkflowEngine,
    WorkflowStepDefinition,
    WorkflowVariableDefinition,
)
from operations.models.common import AttributeType
from operations.services.document_service import document_service
from operations.services.interaction_service import interaction_service
from operations.services.workflow_service import workflow_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
USER = "jdoe"


@pytest.fixture(autouse=True)
async def db():
    """Fresh database for every test"""
    client = AsyncMongoMockClient()
    database = client[f"operations_test_{uuid.uuid4().hex}"]
    await init_database(database)
    await _restore_partial_indexes(database)
    yield database


async def _restore_partial_indexes(database):
    """mongomock's create_indexes (used by Beanie) drops partialFilterExpression;
    recreate such indexes through create_index, which honors it."""
    for model in (Interaction,):
        collection = database[model.get_settings().name]
        for index in model.Settings.indexes:
            spec = dict(index.document)
            if "partialFilterExpression" not in spec:
                continue
            keys = list(spec.pop("key").items())
            await collection.drop_index(spec["name"])
            await collection.create_index(keys, **spec)


@pytest.fixture
def tenant_id():
    return TENANT_ID


@pytest.fixture
def pdf_data():
    return b"%PDF-1.4 test document"


@pytest.fixture
def pdf_data_base64(pdf_data):
    return base64.b64encode(pdf_data).decode("ascii")


@pytest.fixture
async def document_definitions(db):
    """An identity category with passport and proof of address definitions"""
    await document_service.create_document_definition_category(
        DocumentDefinitionCategory(category_id="identity", name="Identity Documents")
    )
    passport = await document_service.create_document_definition(
        DocumentDefinition(
            definition_id="passport",
            category_id="identity",
            name="Passport",
            attribute_definitions=[
                DocumentAttributeDefinition(code="passport_number", name="Passport Number", pattern=r"[A-Z]\d{8}")
            ]
        )
    )
    proof_of_address = await document_service.create_document_definition(
        DocumentDefinition(definition_id="proof_of_address", category_id="identity", name="Proof of Address")
    )
    return {"passport": passport, "proof_of_address": proof_of_address}


@pytest.fixture
async def workflow_definition(document_definitions):
    """Onboarding workflow definition on the internal engine"""
    await workflow_service.create_workflow_engine(
        WorkflowEngine(engine_id="internal", name="Internal Engine", connector_type="internal")
    )
    await workflow_service.create_workflow_definition_category(
        WorkflowDefinitionCategory(category_id="onboarding", name="Onboarding")
    )
    return await workflow_service.create_workflow_definition(
        WorkflowDefinition(
            definition_id="customer_onboarding",
            version=1,
            category_id="onboarding",
            engine_id="internal",
            name="Customer Onboarding",
            step_definitions=[
                WorkflowStepDefinition(sequence=1, code="capture", name="Capture Details"),
                WorkflowStepDefinition(sequence=2, code="review", name="Review Application"),
            ],
            document_definitions=[
                WorkflowDefinitionDocumentDefinition(
                    document_definition_id="passport", required=True, singular=True, verifiable=True
                ),
                WorkflowDefinitionDocumentDefinition(document_definition_id="proof_of_address"),
            ],
            attribute_definitions=[
                WorkflowAttributeDefinition(code="customer_number", name="Customer Number", pattern=r"\d{6}"),
                WorkflowAttributeDefinition(code="branch", name="Branch"),
            ],
            variable_definitions=[
                WorkflowVariableDefinition(name="amount", type=AttributeType.DECIMAL),
                WorkflowVariableDefinition(name="approved", type=AttributeType.BOOLEAN),
            ]
        )
    )


@pytest.fixture
async def interaction_source(db):
    return await interaction_service.create_interaction_source(
        InteractionSource(
            source_id="support-mailbox",
            tenant_id=TENANT_ID,
            type=InteractionSourceType.MAILBOX,
            name="Support Mailbox"
        )
    )
