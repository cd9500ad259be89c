import re
from datetime import datetime, timedelta

import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID, USER
from operations.core.exceptions import (
    DuplicateInteractionAttachmentError,
    DuplicateInteractionError,
    DuplicateInteractionSourceError,
    InteractionAttachmentNotFoundError,
    InteractionNotFoundError,
    InteractionSourceNotFoundError,
    InvalidArgumentError,
)
from operations.models.common import FileType, calculate_hash
from operations.models.interaction import (
    Interaction,
    InteractionAttachment,
    InteractionDirection,
    InteractionNote,
    InteractionPermissionType,
    InteractionPriority,
    InteractionSource,
    InteractionSourcePermission,
    InteractionSourceType,
    InteractionStatus,
    InteractionType,
)
from operations.schemas.interaction import CreateInteractionRequest, UpdateInteractionRequest
from operations.schemas.workflow import InitiateWorkflowRequest
from operations.services.interaction_service import (
    CONVERSATION_ID_CHARACTERS,
    extract_conversation_id,
    generate_conversation_id,
    interaction_service,
)
from operations.services.workflow_service import workflow_service


async def receive_email(subject="Loan application", source_reference=None, **kwargs):
    request = CreateInteractionRequest(
        source_id="support-mailbox",
        source_reference=source_reference,
        type=InteractionType.EMAIL,
        direction=InteractionDirection.INBOUND,
        sender="customer@example.com",
        recipients=["support@example.com"],
        subject=subject,
        content="Please find my documents attached",
        **kwargs
    )
    return await interaction_service.create_interaction(TENANT_ID, request)


class TestConversationIds:
    def test_extract_from_subject(self):
        assert extract_conversation_id("RE: Your application [CID:7KQ2MX9A]") == "7KQ2MX9A"

    def test_extract_without_tag(self):
        assert extract_conversation_id("Your application") is None
        assert extract_conversation_id(None) is None

    def test_generated_ids_use_unambiguous_characters(self):
        conversation_id = generate_conversation_id()
        assert re.fullmatch(f"[{CONVERSATION_ID_CHARACTERS}]+", conversation_id)
        for ambiguous in "015IO":
            assert ambiguous not in conversation_id

    def test_generated_ids_fit_the_interaction_model(self):
        assert 2 <= len(generate_conversation_id()) <= 30


class TestInteractionSources:
    async def test_duplicate_source(self, interaction_source):
        with pytest.raises(DuplicateInteractionSourceError):
            await interaction_service.create_interaction_source(
                InteractionSource(
                    source_id="support-mailbox", tenant_id=TENANT_ID, type=InteractionSourceType.SMS, name="SMS"
                )
            )

    async def test_sources_are_isolated_by_tenant(self, interaction_source):
        with pytest.raises(InteractionSourceNotFoundError):
            await interaction_service.get_interaction_source(OTHER_TENANT_ID, "support-mailbox")
        assert await interaction_service.get_interaction_sources(OTHER_TENANT_ID) == []

    async def test_summaries(self, interaction_source):
        await interaction_service.create_interaction_source(
            InteractionSource(source_id="whatsapp", tenant_id=TENANT_ID, type=InteractionSourceType.WHATSAPP,
                              name="WhatsApp Business")
        )
        sources, total = await interaction_service.get_interaction_source_summaries(TENANT_ID, filter="whats")
        assert total == 1
        assert sources[0].source_id == "whatsapp"

    async def test_update(self, interaction_source):
        interaction_source.name = "Customer Support"
        interaction_source.permissions = [
            InteractionSourcePermission(role_code="agent", type=InteractionPermissionType.RETRIEVE_INTERACTION)
        ]
        await interaction_service.update_interaction_source(interaction_source)

        permissions = await interaction_service.get_interaction_source_permissions(TENANT_ID, "support-mailbox")
        assert [p.role_code for p in permissions] == ["agent"]

    async def test_permissions(self, interaction_source):
        assert interaction_service.has_interaction_permission(
            interaction_source, [], InteractionPermissionType.CREATE_INTERACTION
        )
        interaction_source.permissions = [
            InteractionSourcePermission(role_code="agent", type=InteractionPermissionType.CREATE_INTERACTION)
        ]
        assert interaction_service.has_interaction_permission(
            interaction_source, ["agent"], InteractionPermissionType.CREATE_INTERACTION
        )
        assert not interaction_service.has_interaction_permission(
            interaction_source, ["agent"], InteractionPermissionType.DELETE_INTERACTION
        )

    async def test_delete_source_with_interactions(self, interaction_source):
        await receive_email()
        with pytest.raises(InvalidArgumentError):
            await interaction_service.delete_interaction_source(TENANT_ID, "support-mailbox")

    async def test_delete_source(self, interaction_source):
        await interaction_service.delete_interaction_source(TENANT_ID, "support-mailbox")
        assert not await interaction_service.interaction_source_exists(TENANT_ID, "support-mailbox")


class TestInteractions:
    async def test_create(self, interaction_source):
        interaction = await receive_email(source_reference="<msg-1@example.com>")

        assert interaction.status == InteractionStatus.QUEUED
        assert interaction.conversation_id
        retrieved = await interaction_service.get_interaction(TENANT_ID, interaction.interaction_id)
        assert retrieved.sender == "customer@example.com"
        assert retrieved.recipients == ["support@example.com"]

    async def test_conversation_id_from_subject(self, interaction_source):
        interaction = await receive_email(subject="RE: Loan application [CID:7KQ2MX9A]")
        assert interaction.conversation_id == "7KQ2MX9A"

    async def test_explicit_conversation_id_wins(self, interaction_source):
        interaction = await receive_email(subject="RE: [CID:7KQ2MX9A]", conversation_id="ABC")
        assert interaction.conversation_id == "ABC"

    async def test_duplicate_source_reference(self, interaction_source):
        await receive_email(source_reference="<msg-1@example.com>")
        with pytest.raises(DuplicateInteractionError):
            await receive_email(source_reference="<msg-1@example.com>")

    async def test_source_reference_is_unique_when_check_is_raced(self, interaction_source, monkeypatch):
        """Test that the unique index catches a duplicate the existence check missed"""
        await receive_email(source_reference="<msg-1@example.com>")

        async def not_found(*args):
            return False

        monkeypatch.setattr(interaction_service, "interaction_exists_with_source_reference", not_found)
        with pytest.raises(DuplicateInteractionError):
            await receive_email(source_reference="<msg-1@example.com>")

        await receive_email()
        await receive_email()
        _, total = await interaction_service.get_interaction_summaries(TENANT_ID)
        assert total == 3

    async def test_unknown_source(self, db):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await receive_email()
        assert exc_info.value.parameter == "source_id"

    async def test_listeners_fire_for_queued_interactions(self, interaction_source):
        calls = []

        def listener():
            calls.append(True)

        interaction_service.add_listener(listener)
        try:
            await receive_email()
            await receive_email(status=InteractionStatus.AVAILABLE)
        finally:
            interaction_service.remove_listener(listener)
        assert calls == [True]

    async def test_update(self, interaction_source):
        interaction = await receive_email()
        updated = await interaction_service.update_interaction(
            TENANT_ID, interaction.interaction_id, UpdateInteractionRequest(priority=InteractionPriority.URGENT)
        )
        assert updated.priority == InteractionPriority.URGENT
        assert updated.subject == "Loan application"

    async def test_assign_and_transfer(self, interaction_source):
        await interaction_service.create_interaction_source(
            InteractionSource(source_id="escalations", tenant_id=TENANT_ID, type=InteractionSourceType.VIRTUAL,
                              name="Escalations")
        )
        interaction = await receive_email()

        assigned = await interaction_service.assign_interaction(TENANT_ID, interaction.interaction_id, "agent-7")
        assert assigned.assigned_to == "agent-7"
        assert assigned.assigned is not None

        transferred = await interaction_service.transfer_interaction(
            TENANT_ID, interaction.interaction_id, "escalations"
        )
        assert transferred.source_id == "escalations"
        assert transferred.assigned_to is None

        with pytest.raises(InvalidArgumentError):
            await interaction_service.transfer_interaction(TENANT_ID, interaction.interaction_id, "missing")

    async def test_party_link(self, interaction_source):
        interaction = await receive_email()
        linked = await interaction_service.link_party_to_interaction(TENANT_ID, interaction.interaction_id, "party-1")
        assert linked.party_id == "party-1"
        delinked = await interaction_service.delink_party_from_interaction(TENANT_ID, interaction.interaction_id)
        assert delinked.party_id is None

    async def test_summaries_include_counts(self, interaction_source):
        interaction = await receive_email()
        await receive_email(subject="Complaint")
        await interaction_service.create_interaction_note(TENANT_ID, interaction.interaction_id, "Called back", USER)
        await interaction_service.create_interaction_attachment(
            TENANT_ID, interaction.interaction_id, "id.pdf", FileType.PDF, b"%PDF-1.4 id"
        )

        summaries, total = await interaction_service.get_interaction_summaries(TENANT_ID, filter="loan")
        assert total == 1
        assert summaries[0]["attachment_count"] == 1
        assert summaries[0]["note_count"] == 1

        summaries, total = await interaction_service.get_interaction_summaries(
            TENANT_ID, direction=InteractionDirection.OUTBOUND
        )
        assert total == 0

    async def test_summary_counts_are_scoped_to_tenant(self, interaction_source):
        interaction = await receive_email()
        await InteractionNote(
            tenant_id=OTHER_TENANT_ID, interaction_id=interaction.interaction_id, content="Elsewhere", created_by=USER
        ).insert()
        await InteractionAttachment(
            tenant_id=OTHER_TENANT_ID,
            interaction_id=interaction.interaction_id,
            name="other.pdf",
            data=b"%PDF-1.4 other",
            hash=calculate_hash(b"%PDF-1.4 other")
        ).insert()

        summaries, _ = await interaction_service.get_interaction_summaries(TENANT_ID)
        assert summaries[0]["attachment_count"] == 0
        assert summaries[0]["note_count"] == 0

    async def test_delete_cascades(self, interaction_source):
        interaction = await receive_email()
        note = await interaction_service.create_interaction_note(TENANT_ID, interaction.interaction_id, "Noted", USER)
        attachment = await interaction_service.create_interaction_attachment(
            TENANT_ID, interaction.interaction_id, "id.pdf", FileType.PDF, b"%PDF-1.4 id"
        )

        await interaction_service.delete_interaction(TENANT_ID, interaction.interaction_id)

        assert not await interaction_service.interaction_exists(TENANT_ID, interaction.interaction_id)
        assert not await interaction_service.interaction_note_exists(TENANT_ID, note.note_id)
        assert not await interaction_service.interaction_attachment_exists(TENANT_ID, attachment.attachment_id)

    async def test_source_for_note(self, interaction_source):
        interaction = await receive_email()
        note = await interaction_service.create_interaction_note(TENANT_ID, interaction.interaction_id, "Noted", USER)
        assert await interaction_service.get_interaction_source_id_for_interaction_note(
            TENANT_ID, note.note_id
        ) == "support-mailbox"


class TestInteractionAttachments:
    async def test_create_and_update(self, interaction_source):
        interaction = await receive_email()
        attachment = await interaction_service.create_interaction_attachment(
            TENANT_ID, interaction.interaction_id, "id.pdf", FileType.PDF, b"%PDF-1.4 id"
        )
        assert attachment.hash == calculate_hash(b"%PDF-1.4 id")
        assert await interaction_service.interaction_attachment_exists_with_hash(
            TENANT_ID, interaction.interaction_id, attachment.hash
        )

        updated = await interaction_service.update_interaction_attachment(
            TENANT_ID, attachment.attachment_id, "id.png", FileType.PNG, b"\x89PNG id"
        )
        assert updated.name == "id.png"
        assert updated.hash == calculate_hash(b"\x89PNG id")

        retrieved = await interaction_service.get_interaction_attachment(TENANT_ID, attachment.attachment_id)
        assert type(retrieved.data) is bytes
        assert retrieved.data == b"\x89PNG id"

    async def test_duplicate_attachment(self, interaction_source):
        interaction = await receive_email()
        await interaction_service.create_interaction_attachment(
            TENANT_ID, interaction.interaction_id, "id.pdf", FileType.PDF, b"%PDF-1.4 id"
        )
        with pytest.raises(DuplicateInteractionAttachmentError):
            await interaction_service.create_interaction_attachment(
                TENANT_ID, interaction.interaction_id, "copy.pdf", FileType.PDF, b"%PDF-1.4 id"
            )

    async def test_empty_attachment(self, interaction_source):
        interaction = await receive_email()
        with pytest.raises(InvalidArgumentError) as exc_info:
            await interaction_service.create_interaction_attachment(
                TENANT_ID, interaction.interaction_id, "empty.txt", FileType.TEXT, b""
            )
        assert exc_info.value.parameter == "data"

    async def test_attachment_for_missing_interaction(self, interaction_source):
        with pytest.raises(InteractionNotFoundError):
            await interaction_service.create_interaction_attachment(
                TENANT_ID, "missing", "id.pdf", FileType.PDF, b"data"
            )

    async def test_delete(self, interaction_source):
        interaction = await receive_email()
        attachment = await interaction_service.create_interaction_attachment(
            TENANT_ID, interaction.interaction_id, "id.pdf", FileType.PDF, b"%PDF-1.4 id"
        )
        await interaction_service.delete_interaction_attachment(TENANT_ID, attachment.attachment_id)
        with pytest.raises(InteractionAttachmentNotFoundError):
            await interaction_service.get_interaction_attachment(TENANT_ID, attachment.attachment_id)

    async def test_summaries_sorted_by_name(self, interaction_source):
        interaction = await receive_email()
        for name in ["payslip.pdf", "bank.pdf", "id.pdf"]:
            await interaction_service.create_interaction_attachment(
                TENANT_ID, interaction.interaction_id, name, FileType.PDF, name.encode()
            )
        attachments, total = await interaction_service.get_interaction_attachment_summaries(
            TENANT_ID, interaction.interaction_id
        )
        assert total == 3
        assert [a.name for a in attachments] == ["bank.pdf", "id.pdf", "payslip.pdf"]


class TestInteractionProcessing:
    async def test_lock_next_queued_interaction(self, interaction_source):
        first = await receive_email(occurred=datetime.utcnow() - timedelta(minutes=5))
        await receive_email()

        locked = await interaction_service.get_next_interaction_queued_for_processing(TENANT_ID)
        assert locked.interaction_id == first.interaction_id
        assert locked.status == InteractionStatus.PROCESSING
        assert locked.lock_name == interaction_service.lock_name
        assert locked.processing_attempts == 1

    async def test_nothing_due(self, interaction_source):
        await receive_email(status=InteractionStatus.AVAILABLE)
        assert await interaction_service.get_next_interaction_queued_for_processing(TENANT_ID) is None
        assert await interaction_service.get_tenant_ids_with_queued_interactions() == []

    async def test_deferred_interaction_is_not_due(self, interaction_source):
        interaction = await receive_email()
        await interaction_service.unlock_interaction(
            TENANT_ID, interaction.interaction_id, InteractionStatus.QUEUED, datetime.utcnow() + timedelta(hours=1)
        )
        assert await interaction_service.get_next_interaction_queued_for_processing(TENANT_ID) is None

    async def test_reset_locks(self, interaction_source):
        await receive_email()
        locked = await interaction_service.get_next_interaction_queued_for_processing()

        reset = await interaction_service.reset_interaction_locks(
            None, InteractionStatus.PROCESSING, InteractionStatus.QUEUED
        )
        assert reset == 1
        interaction = await interaction_service.get_interaction(TENANT_ID, locked.interaction_id)
        assert interaction.status == InteractionStatus.QUEUED
        assert interaction.lock_name is None

    async def test_process_links_conversation_workflows(self, workflow_definition, interaction_source):
        original = await receive_email()
        workflow = await workflow_service.initiate_workflow(
            TENANT_ID,
            InitiateWorkflowRequest(definition_id="customer_onboarding", interaction_id=original.interaction_id),
            USER
        )

        reply = await receive_email(subject=f"RE: Loan application [CID:{original.conversation_id}]")
        workflow_ids = await interaction_service.process_interaction(reply)

        assert workflow_ids == [workflow.workflow_id]
        links = await workflow_service.get_workflow_interaction_links(TENANT_ID, workflow.workflow_id)
        assert {link.interaction_id for link in links} == {original.interaction_id, reply.interaction_id}

    async def test_process_unrelated_interaction(self, interaction_source):
        interaction = await receive_email()
        assert await interaction_service.process_interaction(interaction) == []
        assert await Interaction.find({"tenant_id": TENANT_ID, "status": "queued"}).count() == 1
