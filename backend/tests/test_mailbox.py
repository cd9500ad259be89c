from datetime import datetime
from email.message import EmailMessage

import pytest

from conftest import TENANT_ID
from operations.core.exceptions import InvalidArgumentError, ServiceUnavailableError
from operations.models.common import FileType, calculate_hash
from operations.models.interaction import (
    InteractionMimeType,
    InteractionSource,
    InteractionSourceAttribute,
    InteractionSourceType,
    InteractionStatus,
    InteractionType,
    MailboxProtocol,
)
from operations.services.background import MailboxSynchronizer
from operations.services.interaction_service import interaction_service
from operations.services.mailbox import MailboxConfiguration, MailboxError, parse_mail_message


def make_message(message_id="<claim-1@example.com>", subject="Claim 1001", attachment=b"%PDF-1.4 invoice", html=False):
    message = EmailMessage()
    message["From"] = "Jane Client <client@example.com>"
    message["To"] = "claims@example.com"
    message["Cc"] = "branch@example.com"
    message["Subject"] = subject
    message["Date"] = "Tue, 14 Oct 2025 09:30:00 +0200"
    if message_id:
        message["Message-ID"] = message_id
    message.set_content("Please find my invoice attached")
    if html:
        message.add_alternative("<p>Please find my invoice attached</p>", subtype="html")
    if attachment:
        message.add_attachment(attachment, maintype="application", subtype="pdf", filename="invoice.pdf")
    return message.as_bytes()


class FakeMailbox:
    """In-memory INBOX keyed by UID"""

    def __init__(self):
        self.messages = {}
        self.archived = []
        self.deleted = []
        self.expunged = False
        self.closed = False
        self.configuration = None
        self.fail_fetch = False

    def add(self, raw):
        self.messages[str(len(self.messages) + 1)] = raw

    def fetch_messages(self):
        if self.fail_fetch:
            raise MailboxError("The IMAP server refused to search the INBOX")
        return [(uid, raw) for uid, raw in self.messages.items() if uid not in self.deleted]

    def archive(self, uid):
        self.archived.append(uid)
        self.delete(uid)

    def delete(self, uid):
        self.deleted.append(uid)

    def expunge(self):
        self.expunged = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_mailbox(monkeypatch):
    mailbox = FakeMailbox()

    def open_mailbox(configuration):
        if configuration.host == "down.example.com":
            raise OSError("Connection refused")
        mailbox.configuration = configuration
        return mailbox

    monkeypatch.setattr(interaction_service, "mailbox_factory", open_mailbox)
    return mailbox


async def create_mailbox_source(source_id="claims-mailbox", host="imap.example.com", **attributes):
    values = {"protocol": "imaps", "host": host, "principal": "claims@example.com", "credential": "secret"}
    values.update(attributes)
    return await interaction_service.create_interaction_source(
        InteractionSource(
            source_id=source_id,
            tenant_id=TENANT_ID,
            type=InteractionSourceType.MAILBOX,
            name=source_id.replace("-", " ").title(),
            attributes=[InteractionSourceAttribute(code=code, value=value) for code, value in values.items()]
        )
    )


async def received_interactions(source_id="claims-mailbox"):
    summaries, _ = await interaction_service.get_interaction_summaries(TENANT_ID, source_id=source_id)
    return summaries


class TestParseMailMessage:
    def test_plain_message_with_attachment(self):
        message = parse_mail_message(make_message())

        assert message.message_id == "<claim-1@example.com>"
        assert message.sender == "client@example.com"
        assert message.recipients == ["claims@example.com", "branch@example.com"]
        assert message.subject == "Claim 1001"
        assert message.occurred == datetime(2025, 10, 14, 7, 30)
        assert message.mime_type == InteractionMimeType.TEXT_PLAIN
        assert message.content.strip() == "Please find my invoice attached"

        assert len(message.attachments) == 1
        attachment = message.attachments[0]
        assert attachment.name == "invoice.pdf"
        assert attachment.file_type == FileType.PDF
        assert attachment.data == b"%PDF-1.4 invoice"
        assert attachment.hash == calculate_hash(b"%PDF-1.4 invoice")

    def test_html_body_is_preferred(self):
        message = parse_mail_message(make_message(html=True, attachment=None))
        assert message.mime_type == InteractionMimeType.TEXT_HTML
        assert "<p>" in message.content
        assert message.attachments == []

    def test_message_without_message_id(self):
        raw = make_message(message_id=None)
        assert parse_mail_message(raw).message_id == calculate_hash(raw)


class TestMailboxConfiguration:
    async def test_from_source_attributes(self, db):
        source = await create_mailbox_source(protocol="imap", port="1143", archive_mail="true")
        configuration = MailboxConfiguration.from_source(source)

        assert configuration.protocol == MailboxProtocol.IMAP
        assert configuration.resolved_port == 1143
        assert configuration.archive_mail is True
        assert configuration.delete_mail is False

    async def test_default_port(self, db):
        configuration = MailboxConfiguration.from_source(await create_mailbox_source())
        assert configuration.resolved_port == 993


class TestSynchronizeMailbox:
    async def test_messages_become_interactions(self, fake_mailbox):
        await create_mailbox_source(archive_mail="true")
        fake_mailbox.add(make_message())
        fake_mailbox.add(make_message("<claim-2@example.com>", "RE: Claim 1001 [CID:7K3QX2]", attachment=None))

        assert await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "claims-mailbox") == 2
        assert fake_mailbox.configuration.principal == "claims@example.com"

        interactions = {i["source_reference"]: i for i in await received_interactions()}
        first = interactions["<claim-1@example.com>"]
        assert first["type"] == InteractionType.EMAIL
        assert first["status"] == InteractionStatus.QUEUED
        assert first["sender"] == "client@example.com"
        assert first["attachment_count"] == 1
        assert interactions["<claim-2@example.com>"]["conversation_id"] == "7K3QX2"

        attachments, _ = await interaction_service.get_interaction_attachment_summaries(
            TENANT_ID, first["interaction_id"]
        )
        assert attachments[0].name == "invoice.pdf"
        assert attachments[0].data == b"%PDF-1.4 invoice"

        assert fake_mailbox.archived == ["1", "2"]
        assert fake_mailbox.expunged
        assert fake_mailbox.closed

    async def test_messages_are_received_once(self, fake_mailbox):
        """Test that messages left in the INBOX are not received again"""
        await create_mailbox_source()
        fake_mailbox.add(make_message())

        assert await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "claims-mailbox") == 1
        assert await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "claims-mailbox") == 0

        interactions = await received_interactions()
        assert len(interactions) == 1
        assert interactions[0]["attachment_count"] == 1
        assert fake_mailbox.archived == []
        assert fake_mailbox.deleted == []

    async def test_delete_mail(self, fake_mailbox):
        await create_mailbox_source(delete_mail="true")
        fake_mailbox.add(make_message())

        await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "claims-mailbox")

        assert fake_mailbox.deleted == ["1"]
        assert fake_mailbox.archived == []

    async def test_source_must_be_a_mailbox(self, fake_mailbox):
        await interaction_service.create_interaction_source(
            InteractionSource(source_id="sms", tenant_id=TENANT_ID, type=InteractionSourceType.SMS, name="SMS")
        )
        with pytest.raises(InvalidArgumentError) as exc_info:
            await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "sms")
        assert exc_info.value.parameter == "source_id"

    async def test_mailbox_without_host(self, interaction_source, fake_mailbox):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "support-mailbox")
        assert exc_info.value.parameter == "host"

    async def test_mailbox_is_closed_when_fetch_fails(self, fake_mailbox):
        await create_mailbox_source()
        fake_mailbox.fail_fetch = True

        with pytest.raises(ServiceUnavailableError):
            await interaction_service.synchronize_mailbox_interaction_source(TENANT_ID, "claims-mailbox")
        assert fake_mailbox.closed


class TestMailboxSynchronizer:
    async def test_unreachable_mailbox_does_not_stop_the_others(self, interaction_source, fake_mailbox):
        await create_mailbox_source("broken-mailbox", host="down.example.com")
        await create_mailbox_source()
        fake_mailbox.add(make_message())

        sources = await interaction_service.get_mailbox_interaction_sources()
        assert sorted(s.source_id for s in sources) == ["broken-mailbox", "claims-mailbox"]

        assert await MailboxSynchronizer(interval_seconds=60).process_all() == 1
        assert len(await received_interactions()) == 1
