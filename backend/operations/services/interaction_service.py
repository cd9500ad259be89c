"""
Interaction service for the operations module.
Manages interaction sources and the interactions (emails, WhatsApp and SMS
messages, web chats) received from them, together with their attachments
and notes, and the background processing that links new interactions to
the workflows of their conversation.
"""

import asyncio
import logging
import re
import secrets
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..core.config import settings
from ..core.exceptions import (
    DuplicateInteractionAttachmentError,
    DuplicateInteractionError,
    DuplicateInteractionSourceError,
    InteractionAttachmentNotFoundError,
    InteractionNotFoundError,
    InteractionNoteNotFoundError,
    InteractionSourceNotFoundError,
    InvalidArgumentError,
)
from ..core.logging_config import set_operations_context
from ..models.common import FileType, SortDirection, calculate_hash
from ..models.interaction import (
    Interaction,
    InteractionAttachment,
    InteractionDirection,
    InteractionNote,
    InteractionPermissionType,
    InteractionSource,
    InteractionSourcePermission,
    InteractionSourceType,
    InteractionStatus,
    InteractionType,
)
from ..schemas.interaction import CreateInteractionRequest, UpdateInteractionRequest
from .common import any_field_filter, content_filter, resolve_page, resolve_sort, service_operation
from .mailbox import ImapMailbox, MailboxConfiguration, parse_mail_message

logger = logging.getLogger(__name__)

SYSTEM_USER = "SYSTEM"

CONVERSATION_ID_PATTERN = re.compile(r"\[CID:([A-Z0-9]+)\]")

# Characters that cannot be mistaken for one another when read back by a person
CONVERSATION_ID_CHARACTERS = "2346789ABCDEFGHJKLMNPQRSTUVWXYZ"

SOURCE_SORT_FIELDS = {
    "name": "name",
    "type": "type",
}

INTERACTION_SORT_FIELDS = {
    "occurred": "occurred",
    "sender": "sender",
    "subject": "subject",
    "priority": "priority",
}

ATTACHMENT_SORT_FIELDS = {
    "name": "name",
    "file_type": "file_type",
}

NOTE_SORT_FIELDS = {
    "created": "created",
    "created_by": "created_by",
    "updated": "updated",
    "updated_by": "updated_by",
}


def extract_conversation_id(subject: Optional[str]) -> Optional[str]:
    """Return the conversation ID in a [CID:XXXX] tag in the subject, if any"""
    if not subject:
        return None
    match = CONVERSATION_ID_PATTERN.search(subject)
    return match.group(1) if match else None


def generate_conversation_id() -> str:
    """Base-31 encoded millisecond timestamp followed by one random character"""
    timestamp = int(time.time() * 1000)
    base = len(CONVERSATION_ID_CHARACTERS)
    encoded = ""
    while timestamp > 0:
        timestamp, remainder = divmod(timestamp, base)
        encoded = CONVERSATION_ID_CHARACTERS[remainder] + encoded
    return encoded + secrets.choice(CONVERSATION_ID_CHARACTERS)


class InteractionService:
    """Service for interaction sources, interactions, attachments and notes"""

    def __init__(self):
        self._listeners: List[Callable[[], None]] = []
        # Opens the mailbox described by a MailboxConfiguration
        self.mailbox_factory = ImapMailbox.open

    @property
    def lock_name(self) -> str:
        return settings.INSTANCE_NAME

    @property
    def maximum_processing_attempts(self) -> int:
        return settings.MAXIMUM_INTERACTION_PROCESSING_ATTEMPTS

    def add_listener(self, listener: Callable[[], None]):
        """Register a callback invoked whenever an interaction is queued for processing"""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Interaction sources

    @service_operation("create the interaction source ({source.source_id}) for the tenant ({source.tenant_id})")
    async def create_interaction_source(self, source: InteractionSource) -> InteractionSource:
        if await InteractionSource.find({"source_id": source.source_id}).count() > 0:
            raise DuplicateInteractionSourceError(source.source_id)
        await source.insert()
        logger.info(f"Created interaction source: {source.source_id} ({source.type.value})")
        return source

    @service_operation("retrieve the interaction source ({source_id}) for the tenant ({tenant_id})")
    async def get_interaction_source(self, tenant_id: str, source_id: str) -> InteractionSource:
        source = await InteractionSource.find_one({"tenant_id": tenant_id, "source_id": source_id})
        if not source:
            raise InteractionSourceNotFoundError(source_id, tenant_id)
        return source

    @service_operation("retrieve the interaction sources for the tenant ({tenant_id})")
    async def get_interaction_sources(self, tenant_id: str) -> List[InteractionSource]:
        return await InteractionSource.find({"tenant_id": tenant_id}).sort([("name", 1)]).to_list()

    @service_operation("retrieve the interaction source summaries for the tenant ({tenant_id})")
    async def get_interaction_source_summaries(
        self,
        tenant_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[InteractionSource], int]:
        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, SOURCE_SORT_FIELDS, "name")

        query = {"tenant_id": tenant_id, **content_filter("name", filter)}
        total = await InteractionSource.find(query).count()
        sources = await InteractionSource.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return sources, total

    @service_operation("update the interaction source ({source.source_id}) for the tenant ({source.tenant_id})")
    async def update_interaction_source(self, source: InteractionSource) -> InteractionSource:
        existing = await self.get_interaction_source(source.tenant_id, source.source_id)
        existing.type = source.type
        existing.name = source.name
        existing.attributes = source.attributes
        existing.permissions = source.permissions
        await existing.save()
        return existing

    @service_operation("delete the interaction source ({source_id}) for the tenant ({tenant_id})")
    async def delete_interaction_source(self, tenant_id: str, source_id: str):
        source = await self.get_interaction_source(tenant_id, source_id)
        if await Interaction.find({"tenant_id": tenant_id, "source_id": source_id}).count() > 0:
            raise InvalidArgumentError(
                "source_id", f"the interaction source ({source_id}) still has interactions"
            )
        await source.delete()
        logger.info(f"Deleted interaction source: {source_id}")

    @service_operation("check whether the interaction source ({source_id}) exists for the tenant ({tenant_id})")
    async def interaction_source_exists(self, tenant_id: str, source_id: str) -> bool:
        return await InteractionSource.find({"tenant_id": tenant_id, "source_id": source_id}).count() > 0

    @service_operation("retrieve the permissions for the interaction source ({source_id})")
    async def get_interaction_source_permissions(
        self, tenant_id: str, source_id: str
    ) -> List[InteractionSourcePermission]:
        source = await self.get_interaction_source(tenant_id, source_id)
        return source.permissions

    def has_interaction_permission(
        self,
        source: InteractionSource,
        roles: Iterable[str],
        permission_type: InteractionPermissionType
    ) -> bool:
        """A source without permissions is open to everyone"""
        if not source.permissions:
            return True
        roles = set(roles)
        return any(
            permission.type == permission_type and permission.role_code in roles
            for permission in source.permissions
        )

    # Interactions

    @service_operation("create the interaction for the tenant ({tenant_id})")
    async def create_interaction(self, tenant_id: str, request: CreateInteractionRequest) -> Interaction:
        set_operations_context(tenant=tenant_id)

        if not await self.interaction_source_exists(tenant_id, request.source_id):
            raise InvalidArgumentError(
                "source_id", f"the interaction source ({request.source_id}) could not be found"
            )
        if request.source_reference and await self.interaction_exists_with_source_reference(
            tenant_id, request.source_id, request.source_reference
        ):
            raise DuplicateInteractionError(request.source_reference)

        conversation_id = (
            request.conversation_id
            or extract_conversation_id(request.subject)
            or generate_conversation_id()
        )

        interaction = Interaction(
            tenant_id=tenant_id,
            source_id=request.source_id,
            source_reference=request.source_reference,
            conversation_id=conversation_id,
            party_id=request.party_id,
            status=request.status or InteractionStatus.QUEUED,
            type=request.type,
            direction=request.direction,
            sender=request.sender,
            recipients=request.recipients,
            subject=request.subject,
            mime_type=request.mime_type,
            content=request.content,
            priority=request.priority,
            occurred=request.occurred or datetime.utcnow()
        )
        try:
            await interaction.insert()
        except DuplicateKeyError:
            raise DuplicateInteractionError(request.source_reference)
        logger.info(
            f"Created interaction {interaction.interaction_id} in conversation {conversation_id}",
            extra={"interaction_id": interaction.interaction_id}
        )
        if interaction.status == InteractionStatus.QUEUED:
            for listener in self._listeners:
                listener()
        return interaction

    @service_operation("retrieve the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def get_interaction(self, tenant_id: str, interaction_id: str) -> Interaction:
        interaction = await Interaction.find_one({"tenant_id": tenant_id, "interaction_id": interaction_id})
        if not interaction:
            raise InteractionNotFoundError(interaction_id, tenant_id)
        return interaction

    @service_operation("update the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def update_interaction(
        self,
        tenant_id: str,
        interaction_id: str,
        request: UpdateInteractionRequest
    ) -> Interaction:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        for field in ("status", "party_id", "subject", "mime_type", "content", "priority"):
            value = getattr(request, field)
            if value is not None:
                setattr(interaction, field, value)
        await interaction.save()
        return interaction

    @service_operation("delete the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def delete_interaction(self, tenant_id: str, interaction_id: str):
        interaction = await self.get_interaction(tenant_id, interaction_id)
        await InteractionAttachment.find({"tenant_id": tenant_id, "interaction_id": interaction_id}).delete()
        await InteractionNote.find({"tenant_id": tenant_id, "interaction_id": interaction_id}).delete()
        await interaction.delete()
        logger.info(f"Deleted interaction: {interaction_id}", extra={"interaction_id": interaction_id})

    @service_operation("check whether the interaction ({interaction_id}) exists for the tenant ({tenant_id})")
    async def interaction_exists(self, tenant_id: str, interaction_id: str) -> bool:
        return await Interaction.find({"tenant_id": tenant_id, "interaction_id": interaction_id}).count() > 0

    @service_operation("check whether the interaction ({source_reference}) exists for the source ({source_id})")
    async def interaction_exists_with_source_reference(
        self, tenant_id: str, source_id: str, source_reference: str
    ) -> bool:
        return await Interaction.find({
            "tenant_id": tenant_id,
            "source_id": source_id,
            "source_reference": source_reference
        }).count() > 0

    @service_operation("retrieve the interaction summaries for the tenant ({tenant_id})")
    async def get_interaction_summaries(
        self,
        tenant_id: str,
        source_id: Optional[str] = None,
        status: Optional[InteractionStatus] = None,
        direction: Optional[InteractionDirection] = None,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[Dict], int]:
        """
        Page through the interactions for the tenant.

        Returns:
            A list of dicts holding the interaction and its attachment and note
            counts, and the total number of matching interactions
        """
        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, INTERACTION_SORT_FIELDS, "occurred")

        query = {"tenant_id": tenant_id}
        if source_id:
            query["source_id"] = source_id
        if status:
            query["status"] = status.value
        if direction:
            query["direction"] = direction.value
        query.update(any_field_filter(["sender", "subject"], filter))

        total = await Interaction.find(query).count()
        interactions = await Interaction.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()

        summaries = []
        for interaction in interactions:
            summary = interaction.model_dump()
            summary["attachment_count"] = await InteractionAttachment.find(
                {"tenant_id": tenant_id, "interaction_id": interaction.interaction_id}
            ).count()
            summary["note_count"] = await InteractionNote.find(
                {"tenant_id": tenant_id, "interaction_id": interaction.interaction_id}
            ).count()
            summaries.append(summary)
        return summaries, total

    @service_operation("retrieve the source for the interaction ({interaction_id})")
    async def get_interaction_source_id_for_interaction(self, tenant_id: str, interaction_id: str) -> str:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        return interaction.source_id

    @service_operation("retrieve the source for the interaction note ({note_id})")
    async def get_interaction_source_id_for_interaction_note(self, tenant_id: str, note_id: str) -> str:
        note = await self.get_interaction_note(tenant_id, note_id)
        return await self.get_interaction_source_id_for_interaction(tenant_id, note.interaction_id)

    # Assignment, transfer and parties

    @service_operation("assign the interaction ({interaction_id}) to ({assigned_to})")
    async def assign_interaction(self, tenant_id: str, interaction_id: str, assigned_to: str) -> Interaction:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        interaction.assigned = datetime.utcnow()
        interaction.assigned_to = assigned_to
        await interaction.save()
        logger.info(f"Assigned interaction {interaction_id} to {assigned_to}", extra={"interaction_id": interaction_id})
        return interaction

    @service_operation("transfer the interaction ({interaction_id}) to the source ({source_id})")
    async def transfer_interaction(self, tenant_id: str, interaction_id: str, source_id: str) -> Interaction:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        if not await self.interaction_source_exists(tenant_id, source_id):
            raise InvalidArgumentError("source_id", f"the interaction source ({source_id}) could not be found")
        interaction.source_id = source_id
        interaction.assigned = None
        interaction.assigned_to = None
        await interaction.save()
        logger.info(f"Transferred interaction {interaction_id} to source {source_id}")
        return interaction

    @service_operation("link the party ({party_id}) to the interaction ({interaction_id})")
    async def link_party_to_interaction(self, tenant_id: str, interaction_id: str, party_id: str) -> Interaction:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        interaction.party_id = party_id
        await interaction.save()
        return interaction

    @service_operation("delink the party from the interaction ({interaction_id})")
    async def delink_party_from_interaction(self, tenant_id: str, interaction_id: str) -> Interaction:
        interaction = await self.get_interaction(tenant_id, interaction_id)
        interaction.party_id = None
        await interaction.save()
        return interaction

    # Attachments

    @service_operation("create the attachment for the interaction ({interaction_id})")
    async def create_interaction_attachment(
        self,
        tenant_id: str,
        interaction_id: str,
        name: str,
        file_type: FileType,
        data: bytes
    ) -> InteractionAttachment:
        if not await self.interaction_exists(tenant_id, interaction_id):
            raise InteractionNotFoundError(interaction_id, tenant_id)
        if not data:
            raise InvalidArgumentError("data", "the attachment data is empty")

        hash = calculate_hash(data)
        if await self.interaction_attachment_exists_with_hash(tenant_id, interaction_id, hash):
            raise DuplicateInteractionAttachmentError(hash)

        attachment = InteractionAttachment(
            tenant_id=tenant_id,
            interaction_id=interaction_id,
            name=name,
            file_type=file_type,
            data=data,
            hash=hash
        )
        await attachment.insert()
        return attachment

    @service_operation("retrieve the interaction attachment ({attachment_id}) for the tenant ({tenant_id})")
    async def get_interaction_attachment(self, tenant_id: str, attachment_id: str) -> InteractionAttachment:
        attachment = await InteractionAttachment.find_one({"tenant_id": tenant_id, "attachment_id": attachment_id})
        if not attachment:
            raise InteractionAttachmentNotFoundError(attachment_id, tenant_id)
        return attachment

    @service_operation("update the interaction attachment ({attachment_id}) for the tenant ({tenant_id})")
    async def update_interaction_attachment(
        self,
        tenant_id: str,
        attachment_id: str,
        name: str,
        file_type: FileType,
        data: bytes
    ) -> InteractionAttachment:
        attachment = await self.get_interaction_attachment(tenant_id, attachment_id)
        if not data:
            raise InvalidArgumentError("data", "the attachment data is empty")

        hash = calculate_hash(data)
        if hash != attachment.hash and await self.interaction_attachment_exists_with_hash(
            tenant_id, attachment.interaction_id, hash
        ):
            raise DuplicateInteractionAttachmentError(hash)

        attachment.name = name
        attachment.file_type = file_type
        attachment.data = data
        attachment.hash = hash
        await attachment.save()
        return attachment

    @service_operation("delete the interaction attachment ({attachment_id}) for the tenant ({tenant_id})")
    async def delete_interaction_attachment(self, tenant_id: str, attachment_id: str):
        attachment = await self.get_interaction_attachment(tenant_id, attachment_id)
        await attachment.delete()

    @service_operation("check whether the interaction attachment ({attachment_id}) exists")
    async def interaction_attachment_exists(self, tenant_id: str, attachment_id: str) -> bool:
        return await InteractionAttachment.find(
            {"tenant_id": tenant_id, "attachment_id": attachment_id}
        ).count() > 0

    @service_operation("check whether an attachment with the hash ({hash}) exists for the interaction ({interaction_id})")
    async def interaction_attachment_exists_with_hash(self, tenant_id: str, interaction_id: str, hash: str) -> bool:
        return await InteractionAttachment.find({
            "tenant_id": tenant_id,
            "interaction_id": interaction_id,
            "hash": hash
        }).count() > 0

    @service_operation("retrieve the attachment summaries for the interaction ({interaction_id})")
    async def get_interaction_attachment_summaries(
        self,
        tenant_id: str,
        interaction_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[InteractionAttachment], int]:
        if not await self.interaction_exists(tenant_id, interaction_id):
            raise InteractionNotFoundError(interaction_id, tenant_id)

        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, ATTACHMENT_SORT_FIELDS, "name")

        query = {"tenant_id": tenant_id, "interaction_id": interaction_id, **content_filter("name", filter)}
        total = await InteractionAttachment.find(query).count()
        attachments = await InteractionAttachment.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return attachments, total

    # Notes

    @service_operation("create the note for the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def create_interaction_note(
        self,
        tenant_id: str,
        interaction_id: str,
        content: str,
        created_by: str
    ) -> InteractionNote:
        if not await self.interaction_exists(tenant_id, interaction_id):
            raise InteractionNotFoundError(interaction_id, tenant_id)
        note = InteractionNote(
            tenant_id=tenant_id, interaction_id=interaction_id, content=content, created_by=created_by
        )
        await note.insert()
        return note

    @service_operation("retrieve the interaction note ({note_id}) for the tenant ({tenant_id})")
    async def get_interaction_note(self, tenant_id: str, note_id: str) -> InteractionNote:
        note = await InteractionNote.find_one({"tenant_id": tenant_id, "note_id": note_id})
        if not note:
            raise InteractionNoteNotFoundError(note_id, tenant_id)
        return note

    @service_operation("update the interaction note ({note_id}) for the tenant ({tenant_id})")
    async def update_interaction_note(
        self,
        tenant_id: str,
        note_id: str,
        content: str,
        updated_by: str
    ) -> InteractionNote:
        note = await self.get_interaction_note(tenant_id, note_id)
        note.content = content
        note.updated = datetime.utcnow()
        note.updated_by = updated_by
        await note.save()
        return note

    @service_operation("delete the interaction note ({note_id}) for the tenant ({tenant_id})")
    async def delete_interaction_note(self, tenant_id: str, note_id: str):
        note = await self.get_interaction_note(tenant_id, note_id)
        await note.delete()

    @service_operation("check whether the interaction note ({note_id}) exists for the tenant ({tenant_id})")
    async def interaction_note_exists(self, tenant_id: str, note_id: str) -> bool:
        return await InteractionNote.find({"tenant_id": tenant_id, "note_id": note_id}).count() > 0

    @service_operation("retrieve the notes for the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def get_interaction_notes(
        self,
        tenant_id: str,
        interaction_id: str,
        filter: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_direction: Optional[SortDirection] = None,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Tuple[List[InteractionNote], int]:
        if not await self.interaction_exists(tenant_id, interaction_id):
            raise InteractionNotFoundError(interaction_id, tenant_id)

        page_index, page_size = resolve_page(page_index, page_size)
        sort = resolve_sort(sort_by, sort_direction, NOTE_SORT_FIELDS, "created")

        query = {"tenant_id": tenant_id, "interaction_id": interaction_id, **content_filter("content", filter)}
        total = await InteractionNote.find(query).count()
        notes = await InteractionNote.find(query)\
            .sort(sort)\
            .skip(page_index * page_size)\
            .limit(page_size)\
            .to_list()
        return notes, total

    # Mailbox synchronization

    @service_operation("retrieve the mailbox interaction sources")
    async def get_mailbox_interaction_sources(self) -> List[InteractionSource]:
        """Mailbox sources of every tenant that have a host configured"""
        return await InteractionSource.find({
            "type": InteractionSourceType.MAILBOX.value,
            "attributes.code": "host"
        }).sort([("tenant_id", 1), ("name", 1)]).to_list()

    @service_operation("retrieve the interaction ({source_reference}) for the source ({source_id})")
    async def get_interaction_id_with_source_reference(
        self, tenant_id: str, source_id: str, source_reference: str
    ) -> Optional[str]:
        interaction = await Interaction.find_one({
            "tenant_id": tenant_id,
            "source_id": source_id,
            "source_reference": source_reference
        })
        return interaction.interaction_id if interaction else None

    @service_operation("synchronize the mailbox interaction source ({source_id}) for the tenant ({tenant_id})")
    async def synchronize_mailbox_interaction_source(self, tenant_id: str, source_id: str) -> int:
        """
        Receive the messages in the INBOX of a mailbox source.

        Each message becomes an interaction unless one with the same Message-ID
        was already received from the source, and each attachment is added
        unless the interaction already has one with the same hash. Messages are
        then archived or deleted when the source is configured to do so.

        Returns:
            The number of new interactions
        """
        set_operations_context(tenant=tenant_id)

        source = await self.get_interaction_source(tenant_id, source_id)
        if source.type != InteractionSourceType.MAILBOX:
            raise InvalidArgumentError("source_id", f"the interaction source ({source_id}) is not a mailbox")
        configuration = MailboxConfiguration.from_source(source)

        loop = asyncio.get_running_loop()
        mailbox = await loop.run_in_executor(None, self.mailbox_factory, configuration)
        new_interactions = 0
        try:
            for uid, raw in await loop.run_in_executor(None, mailbox.fetch_messages):
                message = parse_mail_message(raw)

                interaction_id = await self.get_interaction_id_with_source_reference(
                    tenant_id, source_id, message.message_id
                )
                if interaction_id is None:
                    interaction = await self.create_interaction(
                        tenant_id,
                        CreateInteractionRequest(
                            source_id=source_id,
                            source_reference=message.message_id,
                            type=InteractionType.EMAIL,
                            direction=InteractionDirection.INBOUND,
                            sender=message.sender,
                            recipients=message.recipients,
                            subject=message.subject,
                            mime_type=message.mime_type,
                            content=message.content,
                            occurred=message.occurred
                        )
                    )
                    interaction_id = interaction.interaction_id
                    new_interactions += 1

                for attachment in message.attachments:
                    if not await self.interaction_attachment_exists_with_hash(
                        tenant_id, interaction_id, attachment.hash
                    ):
                        await self.create_interaction_attachment(
                            tenant_id, interaction_id, attachment.name, attachment.file_type, attachment.data
                        )

                if configuration.archive_mail:
                    await loop.run_in_executor(None, mailbox.archive, uid)
                elif configuration.delete_mail:
                    await loop.run_in_executor(None, mailbox.delete, uid)

            await loop.run_in_executor(None, mailbox.expunge)
        finally:
            await loop.run_in_executor(None, mailbox.close)

        if new_interactions:
            logger.info(f"Received {new_interactions} new interactions from the mailbox source ({source_id})")
        return new_interactions

    # Processing

    @service_operation("retrieve the tenants with interactions queued for processing")
    async def get_tenant_ids_with_queued_interactions(self) -> List[str]:
        return sorted(await Interaction.distinct("tenant_id", {"status": InteractionStatus.QUEUED.value}))

    @service_operation("retrieve the next interaction queued for processing for the tenant ({tenant_id})")
    async def get_next_interaction_queued_for_processing(self, tenant_id: Optional[str] = None) -> Optional[Interaction]:
        """Lock the oldest queued interaction that is due for processing"""
        now = datetime.utcnow()
        query = {
            "status": InteractionStatus.QUEUED.value,
            "$or": [
                {"next_processing_attempt": None},
                {"next_processing_attempt": {"$lte": now}}
            ]
        }
        if tenant_id:
            query["tenant_id"] = tenant_id

        raw = await Interaction.get_motor_collection().find_one_and_update(
            query,
            {
                "$set": {
                    "status": InteractionStatus.PROCESSING.value,
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
        return await Interaction.get(raw["_id"])

    @service_operation("process the interaction ({interaction.interaction_id})")
    async def process_interaction(self, interaction: Interaction) -> List[str]:
        """
        Link the interaction to every workflow already linked to an interaction
        in the same conversation.

        Returns:
            The IDs of the workflows the interaction was linked to
        """
        from .workflow_service import workflow_service

        set_operations_context(tenant=interaction.tenant_id, interaction_id=interaction.interaction_id)
        workflow_ids = await workflow_service.get_workflow_ids_for_conversation(
            interaction.tenant_id, interaction.conversation_id
        )
        for workflow_id in workflow_ids:
            await workflow_service.link_interaction_to_workflow(
                interaction.tenant_id, workflow_id, interaction.interaction_id, SYSTEM_USER
            )

        logger.info(
            f"Processed interaction {interaction.interaction_id}, linked to {len(workflow_ids)} workflows",
            extra={"interaction_id": interaction.interaction_id}
        )
        return workflow_ids

    @service_operation("unlock the interaction ({interaction_id}) for the tenant ({tenant_id})")
    async def unlock_interaction(
        self,
        tenant_id: str,
        interaction_id: str,
        status: InteractionStatus,
        next_processing_attempt: Optional[datetime] = None
    ):
        interaction = await self.get_interaction(tenant_id, interaction_id)
        interaction.status = status
        interaction.lock_name = None
        interaction.next_processing_attempt = next_processing_attempt
        await interaction.save()

    @service_operation("reset the interaction locks for the tenant ({tenant_id})")
    async def reset_interaction_locks(
        self,
        tenant_id: Optional[str],
        status: InteractionStatus,
        new_status: InteractionStatus
    ) -> int:
        """Release the locks this instance holds on interactions with the given status"""
        query = {"status": status.value, "lock_name": self.lock_name}
        if tenant_id:
            query["tenant_id"] = tenant_id
        result = await Interaction.get_motor_collection().update_many(
            query,
            {"$set": {"status": new_status.value, "lock_name": None}}
        )
        if result.modified_count:
            logger.info(f"Reset the locks for {result.modified_count} interactions with status ({status.value})")
        return result.modified_count


# Global service instance
interaction_service = InteractionService()
