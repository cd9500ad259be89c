"""
IMAP access for mailbox interaction sources.
The IMAP client is blocking, so the interaction service calls the mailbox
through the default executor.
"""

import email
import email.policy
import email.utils
import imaplib
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..core.config import settings
from ..models.common import FileType, calculate_hash
from ..models.interaction import (
    InteractionMimeType,
    InteractionSource,
    InteractionSourceAttributeCode,
    MailboxProtocol,
)

logger = logging.getLogger(__name__)

INBOX_FOLDER = "INBOX"
ARCHIVE_FOLDER = "Archive"

MAXIMUM_SUBJECT_LENGTH = 2000
MAXIMUM_ATTACHMENT_NAME_LENGTH = 255
MAXIMUM_REFERENCE_LENGTH = 255

DEFAULT_PORTS = {
    MailboxProtocol.IMAP: 143,
    MailboxProtocol.IMAPS: 993,
}


class MailboxError(Exception):
    """Raised when the IMAP server refuses a command"""


class MailboxConfiguration(BaseModel):
    """Connection settings read from the attributes of a mailbox interaction source"""
    protocol: MailboxProtocol = MailboxProtocol.IMAPS
    host: str = Field(..., min_length=1)
    port: Optional[int] = Field(None, gt=0, lt=65536)
    principal: str = Field(..., min_length=1)
    credential: str
    email_address: Optional[str] = None
    delete_mail: bool = False
    archive_mail: bool = False

    @classmethod
    def from_source(cls, source: InteractionSource) -> "MailboxConfiguration":
        codes = {code.value for code in InteractionSourceAttributeCode}
        return cls(**{a.code: a.value for a in source.attributes if a.code in codes})

    @property
    def resolved_port(self) -> int:
        return self.port or DEFAULT_PORTS[self.protocol]


class MailAttachment(BaseModel):
    name: str
    file_type: FileType
    data: bytes

    @property
    def hash(self) -> str:
        return calculate_hash(self.data)


class MailMessage(BaseModel):
    """The parts of an email message that become an interaction"""
    message_id: str
    sender: str
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    mime_type: InteractionMimeType = InteractionMimeType.TEXT_PLAIN
    content: Optional[str] = None
    occurred: Optional[datetime] = None
    attachments: List[MailAttachment] = Field(default_factory=list)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_mail_message(raw: bytes) -> MailMessage:
    """
    Parse a raw RFC 822 message.

    Messages without a Message-ID are identified by the hash of their raw
    bytes so that the same message is only received once.
    """
    message = email.message_from_bytes(raw, policy=email.policy.default)

    senders = email.utils.getaddresses([str(message.get("From", ""))])
    sender = next((address for _, address in senders if address), "unknown")
    recipients = [
        address
        for _, address in email.utils.getaddresses(
            [str(value) for value in message.get_all("To", []) + message.get_all("Cc", [])]
        )
        if address
    ]

    subject = message.get("Subject")
    if subject is not None:
        subject = str(subject)[:MAXIMUM_SUBJECT_LENGTH]

    mime_type = InteractionMimeType.TEXT_PLAIN
    content = None
    body = message.get_body(preferencelist=("html", "plain"))
    if body is not None:
        content = body.get_content()
        if body.get_content_type() == "text/html":
            mime_type = InteractionMimeType.TEXT_HTML

    attachments = []
    for part in message.iter_attachments():
        data = part.get_payload(decode=True)
        if not data:
            continue
        attachments.append(
            MailAttachment(
                name=(part.get_filename() or "No Name")[:MAXIMUM_ATTACHMENT_NAME_LENGTH],
                file_type=FileType.from_mime_type(part.get_content_type()),
                data=data
            )
        )

    message_id = str(message.get("Message-ID", "")).strip()[:MAXIMUM_REFERENCE_LENGTH] or calculate_hash(raw)

    return MailMessage(
        message_id=message_id,
        sender=sender,
        recipients=recipients,
        subject=subject,
        mime_type=mime_type,
        content=content,
        occurred=_parse_date(message.get("Date")),
        attachments=attachments
    )


class ImapMailbox:
    """The INBOX of an IMAP account, opened for reading and writing"""

    def __init__(self, connection: imaplib.IMAP4):
        self.connection = connection
        self._archive_created = False

    @classmethod
    def open(cls, configuration: MailboxConfiguration) -> "ImapMailbox":
        if configuration.protocol == MailboxProtocol.IMAPS:
            connection = imaplib.IMAP4_SSL(
                configuration.host,
                configuration.resolved_port,
                timeout=settings.MAILBOX_CONNECTION_TIMEOUT_SECONDS
            )
        else:
            connection = imaplib.IMAP4(
                configuration.host,
                configuration.resolved_port,
                timeout=settings.MAILBOX_CONNECTION_TIMEOUT_SECONDS
            )

        mailbox = cls(connection)
        try:
            connection.login(configuration.principal, configuration.credential)
            mailbox._check(connection.select(INBOX_FOLDER), f"select {INBOX_FOLDER}")
        except Exception:
            mailbox.close()
            raise
        logger.debug(f"Opened the IMAP mailbox {configuration.principal}@{configuration.host}")
        return mailbox

    def _check(self, response: Tuple[str, list], action: str) -> list:
        status, data = response
        if status != "OK":
            raise MailboxError(f"The IMAP server refused to {action}: {data}")
        return data

    def fetch_messages(self) -> List[Tuple[str, bytes]]:
        """Return the (uid, raw message) pairs of every message in the INBOX"""
        data = self._check(self.connection.uid("SEARCH", None, "ALL"), "search the INBOX")
        uids = data[0].split() if data and data[0] else []

        messages = []
        for uid in uids:
            uid = uid.decode("ascii") if isinstance(uid, bytes) else uid
            data = self._check(self.connection.uid("FETCH", uid, "(RFC822)"), f"fetch the message ({uid})")
            raw = next((part[1] for part in data if isinstance(part, tuple)), None)
            if raw is not None:
                messages.append((uid, raw))
        return messages

    def archive(self, uid: str):
        """Copy the message to the Archive folder and mark it deleted in the INBOX"""
        if not self._archive_created:
            # Fails harmlessly when the folder already exists
            self.connection.create(ARCHIVE_FOLDER)
            self._archive_created = True
        self._check(self.connection.uid("COPY", uid, ARCHIVE_FOLDER), f"archive the message ({uid})")
        self.delete(uid)

    def delete(self, uid: str):
        self._check(self.connection.uid("STORE", uid, "+FLAGS", "(\\Deleted)"), f"delete the message ({uid})")

    def expunge(self):
        self._check(self.connection.expunge(), "expunge the INBOX")

    def close(self):
        try:
            if self.connection.state == "SELECTED":
                self.connection.close()
            self.connection.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.warning(f"Failed to close the IMAP mailbox cleanly: {e}")
