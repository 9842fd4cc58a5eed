"""File records created or reused by mailbox searches."""

from datetime import datetime
from typing import Callable, Optional
import hashlib
import logging

from ..integrations.mailbox import MailAttachment, MailMessage
from ..matching.attachment_scorer import extract_email_domain
from ..models.base import utcnow
from ..models.transaction import FileSourceType, PrecisionSearchHint, TaxFile, Transaction
from ..store import repository
from ..store.base import FILES, DocumentStore
from ..store.blobs import BlobStore
from .email_utils import sender_address

logger = logging.getLogger(__name__)

# Fields cleared when a soft-deleted file is revived so extraction reruns
_EXTRACTION_RESET = {
    "extraction_complete": False,
    "extracted_amount": None,
    "extracted_currency": None,
    "extracted_date": None,
    "extracted_partner": None,
    "extracted_iban": None,
    "extracted_text": None,
}


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileRegistry:
    """
    Looks up and creates files so each artifact exists only once.

    Natural keys are (message id, attachment id) for attachments and the
    message id for rendered mail invoices; the content hash catches the
    same document arriving through different messages.
    """

    def __init__(
        self,
        store: DocumentStore,
        blobs: BlobStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.blobs = blobs
        self._clock = clock

    def _first(self, filters: list) -> Optional[TaxFile]:
        found = repository.query_models(self.store, FILES, TaxFile, filters, limit=1)
        return found[0] if found else None

    def find_by_message(
        self, user_id: str, message_id: str, attachment_id: str
    ) -> Optional[TaxFile]:
        return self._first(
            [
                ("user_id", "==", user_id),
                ("gmail_message_id", "==", message_id),
                ("gmail_attachment_id", "==", attachment_id),
            ]
        )

    def find_html_invoice(self, user_id: str, message_id: str) -> Optional[TaxFile]:
        return self._first(
            [
                ("user_id", "==", user_id),
                ("gmail_message_id", "==", message_id),
                ("source_type", "==", FileSourceType.GMAIL_HTML_INVOICE.value),
            ]
        )

    def find_by_hash(self, user_id: str, digest: str) -> Optional[TaxFile]:
        """Find a file by content hash, including soft-deleted ones."""
        return self._first([("user_id", "==", user_id), ("content_hash", "==", digest)])

    def make_hint(
        self, transaction: Transaction, strategy: str, confidence: int
    ) -> PrecisionSearchHint:
        return PrecisionSearchHint(
            transaction_id=transaction.id,
            transaction_amount=transaction.amount,
            transaction_date=transaction.date,
            strategy=strategy,
            match_confidence=confidence,
            searched_at=self._clock(),
        )

    def set_hint(self, file: TaxFile, hint: PrecisionSearchHint) -> None:
        """Mark a file for re-evaluation by transaction matching."""
        file.precision_search_hint = hint
        file.transaction_match_complete = False
        self.store.update(
            FILES, file.id, repository.dump_fields(file, "precision_search_hint", "transaction_match_complete")
        )

    def revive(self, file: TaxFile, hint: PrecisionSearchHint) -> TaxFile:
        """Restore a soft-deleted file and queue it for extraction again."""
        file.deleted_at = None
        for field_name, value in _EXTRACTION_RESET.items():
            setattr(file, field_name, value)
        file.precision_search_hint = hint
        file.transaction_match_complete = False
        repository.save(self.store, FILES, file)
        logger.info(f"Revived soft-deleted file {file.id}")
        return file

    def create_from_attachment(
        self,
        user_id: str,
        message: MailMessage,
        attachment: MailAttachment,
        data: bytes,
        digest: str,
        integration_id: str,
        hint: PrecisionSearchHint,
    ) -> TaxFile:
        """Store downloaded attachment bytes and create its file record."""
        path = self.blobs.put(
            f"{user_id}/{message.message_id}/{attachment.attachment_id}/{attachment.filename}",
            data,
            attachment.mime_type,
        )
        mime_type = "application/pdf" if attachment.is_pdf else attachment.mime_type
        return self._create(
            user_id,
            message,
            integration_id,
            hint,
            file_name=attachment.filename,
            file_type=mime_type,
            file_size=len(data),
            content_hash=digest,
            storage_path=path,
            source_type=FileSourceType.GMAIL,
            gmail_attachment_id=attachment.attachment_id,
        )

    def create_from_rendered(
        self,
        user_id: str,
        message: MailMessage,
        file_name: str,
        data: bytes,
        mime_type: str,
        integration_id: str,
        hint: PrecisionSearchHint,
    ) -> TaxFile:
        """Create a file from a mail body rendered to a document."""
        path = self.blobs.put(f"{user_id}/{message.message_id}/{file_name}", data, mime_type)
        return self._create(
            user_id,
            message,
            integration_id,
            hint,
            file_name=file_name,
            file_type=mime_type,
            file_size=len(data),
            content_hash=content_hash(data),
            storage_path=path,
            source_type=FileSourceType.GMAIL_HTML_INVOICE,
        )

    def _create(
        self,
        user_id: str,
        message: MailMessage,
        integration_id: str,
        hint: PrecisionSearchHint,
        **fields,
    ) -> TaxFile:
        sender = sender_address(message.sender)
        file = TaxFile(
            user_id=user_id,
            gmail_message_id=message.message_id,
            gmail_integration_id=integration_id,
            gmail_subject=message.subject or None,
            gmail_sender_email=sender,
            gmail_sender_domain=extract_email_domain(sender),
            gmail_email_date=message.date,
            precision_search_hint=hint,
            created_at=self._clock(),
            **fields,
        )
        repository.save(self.store, FILES, file)
        logger.info(f"Created file {file.id} ({file.file_name}) from message {message.message_id}")
        return file
