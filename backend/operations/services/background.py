"""
Background processors that drain the event and interaction queues.
Each processor runs one loop per application instance. The database is the
source of truth: queued items are locked one at a time, processed, and
unlocked with their final status or re-queued with a back-off. The mailbox
synchronizer polls mailbox interaction sources for new messages.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional

from ..core.config import settings
from ..core.exceptions import ServiceError
from ..core.logging_config import clear_operations_context, set_operations_context
from ..models.event import Event, EventStatus
from ..models.interaction import Interaction, InteractionStatus
from .event_service import event_service
from .interaction_service import interaction_service

logger = logging.getLogger(__name__)


class ProcessorStatus(str, Enum):
    """Processor status"""
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class BackgroundProcessor:
    """
    Loop that processes queued items until none are due, then sleeps until
    it is triggered or the processing interval elapses.
    """

    name = "processor"

    def __init__(self, interval_seconds: float):
        self.interval_seconds = interval_seconds
        self.status = ProcessorStatus.IDLE
        self._task: Optional[asyncio.Task] = None
        self._should_stop = False
        self._work_available = asyncio.Event()

    async def start(self):
        """Release stale locks held by this instance and start the loop"""
        if self.status == ProcessorStatus.RUNNING:
            logger.warning(f"{self.name} already running")
            return

        self.status = ProcessorStatus.RUNNING
        self._should_stop = False
        await self.reset_locks()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"{self.name} started")

    async def stop(self):
        """Stop the loop, waiting for the current item to be abandoned"""
        self._should_stop = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.status = ProcessorStatus.STOPPED
        logger.info(f"{self.name} stopped")

    def trigger(self):
        """Wake the loop up because new work was queued"""
        self._work_available.set()

    async def _loop(self):
        while not self._should_stop:
            try:
                await self.process_all()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} failed to process the queue: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._work_available.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._work_available.clear()

    async def process_all(self) -> int:
        """
        Process every item that is due for every tenant.

        Returns:
            The number of items processed
        """
        processed = 0
        for tenant_id in await self.get_tenant_ids():
            while not self._should_stop:
                item = await self.lock_next(tenant_id)
                if item is None:
                    break
                await self._process_item(item)
                processed += 1
        return processed

    async def _process_item(self, item: Any):
        set_operations_context(tenant=item.tenant_id)
        try:
            await self.process(item)
            await self.unlock(item, self.success_status)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if item.processing_attempts >= self.maximum_processing_attempts:
                logger.error(
                    f"{self.name} failed to process {self.describe(item)} after "
                    f"{item.processing_attempts} attempts: {e}",
                    exc_info=True
                )
                await self.unlock(item, self.failure_status)
            else:
                delay = settings.PROCESSING_RETRY_DELAY_SECONDS * item.processing_attempts
                logger.warning(
                    f"{self.name} failed to process {self.describe(item)}, retrying in {delay} seconds: {e}"
                )
                await self.unlock(item, self.queued_status, datetime.utcnow() + timedelta(seconds=delay))
        finally:
            clear_operations_context()

    # Hooks implemented by each processor

    success_status: Any = None
    failure_status: Any = None
    queued_status: Any = None

    @property
    def maximum_processing_attempts(self) -> int:
        raise NotImplementedError

    async def reset_locks(self):
        raise NotImplementedError

    async def get_tenant_ids(self) -> List[str]:
        raise NotImplementedError

    async def lock_next(self, tenant_id: str):
        raise NotImplementedError

    async def process(self, item: Any):
        raise NotImplementedError

    async def unlock(self, item: Any, status: Any, next_processing_attempt: Optional[datetime] = None):
        raise NotImplementedError

    def describe(self, item: Any) -> str:
        return repr(item)


class EventProcessor(BackgroundProcessor):
    """Forwards queued events to the workflow engines"""

    name = "Event processor"
    success_status = EventStatus.PROCESSED
    failure_status = EventStatus.FAILED
    queued_status = EventStatus.QUEUED

    def __init__(self, interval_seconds: Optional[float] = None):
        super().__init__(interval_seconds or settings.EVENT_PROCESSING_INTERVAL_SECONDS)

    @property
    def maximum_processing_attempts(self) -> int:
        return event_service.maximum_processing_attempts

    async def reset_locks(self):
        await event_service.reset_event_locks(None, EventStatus.PROCESSING, EventStatus.QUEUED)

    async def get_tenant_ids(self) -> List[str]:
        return await event_service.get_tenant_ids_with_queued_events()

    async def lock_next(self, tenant_id: str) -> Optional[Event]:
        return await event_service.get_next_event_queued_for_processing(tenant_id)

    async def process(self, item: Event):
        await event_service.process_event(item)

    async def unlock(self, item: Event, status: EventStatus, next_processing_attempt: Optional[datetime] = None):
        await event_service.unlock_event(item.tenant_id, item.event_id, status, next_processing_attempt)

    def describe(self, item: Event) -> str:
        return f"the event ({item.event_id})"


class InteractionProcessor(BackgroundProcessor):
    """Links queued interactions to the workflows of their conversation"""

    name = "Interaction processor"
    success_status = InteractionStatus.AVAILABLE
    failure_status = InteractionStatus.FAILED
    queued_status = InteractionStatus.QUEUED

    def __init__(self, interval_seconds: Optional[float] = None):
        super().__init__(interval_seconds or settings.INTERACTION_PROCESSING_INTERVAL_SECONDS)

    @property
    def maximum_processing_attempts(self) -> int:
        return interaction_service.maximum_processing_attempts

    async def reset_locks(self):
        await interaction_service.reset_interaction_locks(
            None, InteractionStatus.PROCESSING, InteractionStatus.QUEUED
        )

    async def get_tenant_ids(self) -> List[str]:
        return await interaction_service.get_tenant_ids_with_queued_interactions()

    async def lock_next(self, tenant_id: str) -> Optional[Interaction]:
        return await interaction_service.get_next_interaction_queued_for_processing(tenant_id)

    async def process(self, item: Interaction):
        await interaction_service.process_interaction(item)

    async def unlock(
        self,
        item: Interaction,
        status: InteractionStatus,
        next_processing_attempt: Optional[datetime] = None
    ):
        await interaction_service.unlock_interaction(
            item.tenant_id, item.interaction_id, status, next_processing_attempt
        )

    def describe(self, item: Interaction) -> str:
        return f"the interaction ({item.interaction_id})"


class MailboxSynchronizer(BackgroundProcessor):
    """Receives new messages from every configured mailbox interaction source"""

    name = "Mailbox synchronizer"

    def __init__(self, interval_seconds: Optional[float] = None):
        super().__init__(interval_seconds or settings.MAILBOX_SYNCHRONIZATION_INTERVAL_SECONDS)

    async def reset_locks(self):
        pass

    async def process_all(self) -> int:
        """
        Synchronize each mailbox source in turn. A mailbox that cannot be
        reached is logged and retried on the next run.

        Returns:
            The number of new interactions
        """
        received = 0
        for source in await interaction_service.get_mailbox_interaction_sources():
            if self._should_stop:
                break
            set_operations_context(tenant=source.tenant_id)
            try:
                received += await interaction_service.synchronize_mailbox_interaction_source(
                    source.tenant_id, source.source_id
                )
            except ServiceError as e:
                logger.warning(f"{self.name} failed to synchronize the mailbox source ({source.source_id}): {e}")
            finally:
                clear_operations_context()
        return received


event_processor = EventProcessor()
interaction_processor = InteractionProcessor()
mailbox_synchronizer = MailboxSynchronizer()
