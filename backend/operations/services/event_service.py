"""
Event service for the operations module.
Events are published when workflow documents and steps change, queued, and
processed in the background by forwarding them to the workflow engine.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pymongo import ReturnDocument

from ..core.config import settings
from ..core.exceptions import EventNotFoundError, WorkflowDocumentNotFoundError, WorkflowNotFoundError
from ..models.common import ObjectType
from ..models.event import Event, EventStatus, EventType
from .common import service_operation

logger = logging.getLogger(__name__)

WORKFLOW_DOCUMENT_EVENT_TYPES = [
    EventType.WORKFLOW_DOCUMENT_REQUESTED,
    EventType.WORKFLOW_DOCUMENT_PROVIDED,
    EventType.WORKFLOW_DOCUMENT_VERIFIED,
    EventType.WORKFLOW_DOCUMENT_REJECTED,
    EventType.WORKFLOW_DOCUMENT_WAIVED,
]


class EventService:
    """Service for publishing, locking and processing events"""

    def __init__(self):
        self._listeners: List[Callable[[], None]] = []

    @property
    def lock_name(self) -> str:
        return settings.INSTANCE_NAME

    @property
    def maximum_processing_attempts(self) -> int:
        return settings.MAXIMUM_EVENT_PROCESSING_ATTEMPTS

    def add_listener(self, listener: Callable[[], None]):
        """Register a callback invoked whenever an event is published"""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    @service_operation("publish the {event_type.value} event for the {object_type.value} ({object_id})")
    async def publish_event(
        self,
        tenant_id: str,
        event_type: EventType,
        object_type: ObjectType,
        object_id: str,
        actor: str
    ) -> Event:
        event = Event(
            tenant_id=tenant_id,
            type=event_type,
            object_type=object_type,
            object_id=object_id,
            actor=actor
        )
        await event.insert()
        logger.debug(
            f"Published {event_type.value} event {event.event_id} for {object_type.value} {object_id}",
            extra={"event_id": event.event_id}
        )
        for listener in self._listeners:
            listener()
        return event

    @service_operation("retrieve the event ({event_id}) for the tenant ({tenant_id})")
    async def get_event(self, tenant_id: str, event_id: str) -> Event:
        event = await Event.find_one({"tenant_id": tenant_id, "event_id": event_id})
        if not event:
            raise EventNotFoundError(event_id, tenant_id)
        return event

    @service_operation("retrieve the events for the {object_type.value} ({object_id}) for the tenant ({tenant_id})")
    async def get_events_for_object(
        self,
        tenant_id: str,
        object_type: ObjectType,
        object_id: str
    ) -> List[Event]:
        return await Event.find({
            "tenant_id": tenant_id,
            "object_type": object_type.value,
            "object_id": object_id
        }).sort([("occurred", 1)]).to_list()

    @service_operation("retrieve the tenants with events queued for processing")
    async def get_tenant_ids_with_queued_events(self) -> List[str]:
        return sorted(await Event.distinct("tenant_id", {"status": EventStatus.QUEUED.value}))

    @service_operation("retrieve the next event queued for processing for the tenant ({tenant_id})")
    async def get_next_event_queued_for_processing(self, tenant_id: Optional[str] = None) -> Optional[Event]:
        """Lock the oldest queued event that is due for processing"""
        now = datetime.utcnow()
        query = {
            "status": EventStatus.QUEUED.value,
            "$or": [
                {"next_processing_attempt": None},
                {"next_processing_attempt": {"$lte": now}}
            ]
        }
        if tenant_id:
            query["tenant_id"] = tenant_id

        raw = await Event.get_motor_collection().find_one_and_update(
            query,
            {
                "$set": {
                    "status": EventStatus.PROCESSING.value,
                    "lock_name": self.lock_name,
                    "last_processed": now,
                },
                "$inc": {"processing_attempts": 1}
            },
            sort=[("occurred", 1)],
            return_document=ReturnDocument.AFTER
        )
        if raw is None:
            return None
        return await Event.get(raw["_id"])

    @service_operation("process the event ({event.event_id})")
    async def process_event(self, event: Event):
        logger.info(
            f"Processing the event ({event.event_id}) for the tenant ({event.tenant_id}) "
            f"with type ({event.type.value})"
        )

        if event.type in WORKFLOW_DOCUMENT_EVENT_TYPES:
            await self._process_workflow_document_event(event)
        elif event.type == EventType.WORKFLOW_STEP_COMPLETED:
            await self._process_workflow_event(event)

    async def _process_workflow_document_event(self, event: Event):
        from .workflow_service import workflow_service

        try:
            workflow_id = await workflow_service.get_workflow_id_for_workflow_document(
                event.tenant_id, event.object_id
            )
            workflow = await workflow_service.get_workflow(event.tenant_id, workflow_id)
            definition = await workflow_service.get_workflow_definition_version(
                workflow.definition_id, workflow.definition_version
            )
            connector = await workflow_service.get_workflow_engine_connector(definition.engine_id)
            await connector.process_workflow_document_event(
                definition,
                event.tenant_id,
                workflow_id,
                workflow.engine_instance_id,
                event.object_id,
                event.type
            )
        except (WorkflowNotFoundError, WorkflowDocumentNotFoundError):
            logger.info(
                f"Ignoring the event ({event.event_id}) for the deleted workflow document ({event.object_id})"
            )

    async def _process_workflow_event(self, event: Event):
        from .workflow_service import workflow_service

        try:
            workflow = await workflow_service.get_workflow(event.tenant_id, event.object_id)
            definition = await workflow_service.get_workflow_definition_version(
                workflow.definition_id, workflow.definition_version
            )
            connector = await workflow_service.get_workflow_engine_connector(definition.engine_id)
            await connector.process_workflow_event(
                definition,
                event.tenant_id,
                workflow.workflow_id,
                workflow.engine_instance_id,
                event.type
            )
        except WorkflowNotFoundError:
            logger.info(f"Ignoring the event ({event.event_id}) for the deleted workflow ({event.object_id})")

    @service_operation("unlock the event ({event_id}) for the tenant ({tenant_id})")
    async def unlock_event(
        self,
        tenant_id: str,
        event_id: str,
        status: EventStatus,
        next_processing_attempt: Optional[datetime] = None
    ):
        event = await self.get_event(tenant_id, event_id)
        event.status = status
        event.lock_name = None
        event.next_processing_attempt = next_processing_attempt
        await event.save()

    @service_operation("reset the event locks for the tenant ({tenant_id})")
    async def reset_event_locks(
        self,
        tenant_id: Optional[str],
        status: EventStatus,
        new_status: EventStatus
    ) -> int:
        """Release the locks this instance holds on events with the given status"""
        query = {"status": status.value, "lock_name": self.lock_name}
        if tenant_id:
            query["tenant_id"] = tenant_id
        result = await Event.get_motor_collection().update_many(
            query,
            {"$set": {"status": new_status.value, "lock_name": None}}
        )
        if result.modified_count:
            logger.info(f"Reset the locks for {result.modified_count} events with status ({status.value})")
        return result.modified_count


# Global service instance
event_service = EventService()
