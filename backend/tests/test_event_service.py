from datetime import datetime, timedelta

import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID, USER
from operations.core.exceptions import EventNotFoundError
from operations.engines.base import WorkflowEngineConnector
from operations.engines.registry import connector_registry
from operations.models.common import FileType, ObjectType
from operations.models.event import EventStatus, EventType
from operations.models.workflow import WorkflowDefinition, WorkflowEngine, WorkflowStepDefinition, WorkflowStepStatus
from operations.schemas.workflow import InitiateWorkflowRequest, ProvideWorkflowDocumentRequest
from operations.services.event_service import event_service
from operations.services.workflow_service import workflow_service


class RecordingConnector(WorkflowEngineConnector):
    """Connector that records what the engine is told"""

    calls = []

    async def initiate_workflow(self, workflow_definition, workflow):
        return f"instance-{workflow.workflow_id}"

    async def process_workflow_document_event(
        self, workflow_definition, tenant_id, workflow_id, engine_instance_id, workflow_document_id, event_type
    ):
        self.calls.append((event_type, workflow_id, engine_instance_id, workflow_document_id))

    async def process_workflow_event(
        self, workflow_definition, tenant_id, workflow_id, engine_instance_id, event_type
    ):
        self.calls.append((event_type, workflow_id, engine_instance_id, None))


@pytest.fixture
async def recording_workflow_definition(workflow_definition):
    connector_registry.register("recording", RecordingConnector)
    RecordingConnector.calls = []
    await workflow_service.create_workflow_engine(
        WorkflowEngine(engine_id="recording", name="Recording Engine", connector_type="recording")
    )
    definition = await workflow_service.create_workflow_definition(
        WorkflowDefinition(
            definition_id="recorded_onboarding",
            version=1,
            category_id="onboarding",
            engine_id="recording",
            name="Recorded Onboarding",
            step_definitions=[WorkflowStepDefinition(sequence=1, code="capture", name="Capture Details")],
            document_definitions=workflow_definition.document_definitions
        )
    )
    yield definition
    connector_registry.unregister("recording")


async def publish(tenant_id=TENANT_ID, object_id="wd-1"):
    return await event_service.publish_event(
        tenant_id, EventType.WORKFLOW_DOCUMENT_PROVIDED, ObjectType.WORKFLOW_DOCUMENT, object_id, USER
    )


async def process_next():
    event = await event_service.get_next_event_queued_for_processing()
    await event_service.process_event(event)
    await event_service.unlock_event(event.tenant_id, event.event_id, EventStatus.PROCESSED)
    return event


class TestEvents:
    async def test_publish(self, db):
        event = await publish()
        assert event.status == EventStatus.QUEUED
        assert event.actor == USER

        retrieved = await event_service.get_event(TENANT_ID, event.event_id)
        assert retrieved.type == EventType.WORKFLOW_DOCUMENT_PROVIDED

        with pytest.raises(EventNotFoundError):
            await event_service.get_event(OTHER_TENANT_ID, event.event_id)

    async def test_listeners_are_notified(self, db):
        calls = []

        def listener():
            calls.append(True)

        event_service.add_listener(listener)
        try:
            await publish()
        finally:
            event_service.remove_listener(listener)
        await publish()
        assert calls == [True]

    async def test_events_for_object(self, db):
        await publish(object_id="wd-1")
        await publish(object_id="wd-2")
        events = await event_service.get_events_for_object(TENANT_ID, ObjectType.WORKFLOW_DOCUMENT, "wd-1")
        assert len(events) == 1

    async def test_queued_tenants(self, db):
        await publish(tenant_id=OTHER_TENANT_ID)
        await publish(tenant_id=TENANT_ID)
        await publish(tenant_id=TENANT_ID)
        assert await event_service.get_tenant_ids_with_queued_events() == [TENANT_ID, OTHER_TENANT_ID]


class TestEventLocking:
    async def test_lock_oldest_event_for_tenant(self, db):
        await publish(tenant_id=OTHER_TENANT_ID)
        first = await publish()
        await publish()

        locked = await event_service.get_next_event_queued_for_processing(TENANT_ID)
        assert locked.event_id == first.event_id
        assert locked.status == EventStatus.PROCESSING
        assert locked.lock_name == event_service.lock_name
        assert locked.processing_attempts == 1
        assert locked.last_processed is not None

    async def test_locked_event_is_not_locked_again(self, db):
        await publish()
        assert await event_service.get_next_event_queued_for_processing() is not None
        assert await event_service.get_next_event_queued_for_processing() is None

    async def test_unlock_with_back_off(self, db):
        event = await publish()
        await event_service.get_next_event_queued_for_processing()
        await event_service.unlock_event(
            TENANT_ID, event.event_id, EventStatus.QUEUED, datetime.utcnow() + timedelta(minutes=1)
        )

        unlocked = await event_service.get_event(TENANT_ID, event.event_id)
        assert unlocked.status == EventStatus.QUEUED
        assert unlocked.lock_name is None
        assert await event_service.get_next_event_queued_for_processing() is None

    async def test_reset_locks(self, db):
        await publish()
        await publish()
        await event_service.get_next_event_queued_for_processing()

        assert await event_service.reset_event_locks(None, EventStatus.PROCESSING, EventStatus.QUEUED) == 1
        assert await event_service.reset_event_locks(None, EventStatus.PROCESSING, EventStatus.QUEUED) == 0


class TestEventProcessing:
    async def test_workflow_document_events_reach_the_engine(self, recording_workflow_definition):
        workflow = await workflow_service.initiate_workflow(
            TENANT_ID, InitiateWorkflowRequest(definition_id="recorded_onboarding"), USER
        )
        assert workflow.engine_instance_id == f"instance-{workflow.workflow_id}"
        workflow_document = (
            await workflow_service.get_outstanding_workflow_documents(TENANT_ID, workflow.workflow_id)
        )[0]

        await process_next()

        assert RecordingConnector.calls == [(
            EventType.WORKFLOW_DOCUMENT_REQUESTED,
            workflow.workflow_id,
            workflow.engine_instance_id,
            workflow_document.workflow_document_id
        )]

    async def test_step_completed_events_reach_the_engine(self, recording_workflow_definition):
        workflow = await workflow_service.initiate_workflow(
            TENANT_ID, InitiateWorkflowRequest(definition_id="recorded_onboarding"), USER
        )
        await workflow_service.initiate_workflow_step(TENANT_ID, workflow.workflow_id, "capture")
        await workflow_service.finalize_workflow_step(
            TENANT_ID, workflow.workflow_id, "capture", WorkflowStepStatus.COMPLETED
        )

        await process_next()
        await process_next()

        assert RecordingConnector.calls[-1] == (
            EventType.WORKFLOW_STEP_COMPLETED, workflow.workflow_id, workflow.engine_instance_id, None
        )

    async def test_events_for_deleted_workflow_documents_are_ignored(self, recording_workflow_definition):
        workflow = await workflow_service.initiate_workflow(
            TENANT_ID, InitiateWorkflowRequest(definition_id="recorded_onboarding"), USER
        )
        workflow_document = (
            await workflow_service.get_outstanding_workflow_documents(TENANT_ID, workflow.workflow_id)
        )[0]
        await workflow_service.provide_workflow_document(
            TENANT_ID,
            workflow_document.workflow_document_id,
            ProvideWorkflowDocumentRequest(file_type=FileType.PDF, data=b"%PDF-1.4 passport"),
            USER
        )
        await workflow_service.delete_workflow(TENANT_ID, workflow.workflow_id)

        event = await process_next()
        await process_next()

        assert RecordingConnector.calls == []
        processed = await event_service.get_event(TENANT_ID, event.event_id)
        assert processed.status == EventStatus.PROCESSED
