"""Bank transaction and receipt file records."""

from datetime import datetime
from enum import Enum
from typing import Optional
import datetime as dt

from pydantic import BaseModel, Field

from .base import Document, utcnow


class PartnerType(str, Enum):
    """Which partner collection a partner belongs to."""

    USER = "user"
    GLOBAL = "global"


class MatchedBy(str, Enum):
    """Origin of a link between records, in increasing trust order."""

    SUGGESTION = "suggestion"
    AUTO = "auto"
    MANUAL = "manual"

    @property
    def trust(self) -> int:
        return _TRUST[self]


_TRUST = {MatchedBy.SUGGESTION: 0, MatchedBy.AUTO: 1, MatchedBy.MANUAL: 2}


class FileSourceType(str, Enum):
    """How a file entered the system."""

    UPLOAD = "upload"
    GMAIL = "gmail"
    GMAIL_HTML_INVOICE = "gmail_html_invoice"


class PartnerSuggestion(BaseModel):
    """A ranked partner candidate stored on a transaction."""

    partner_id: str
    partner_type: PartnerType
    confidence: int
    source: str


class CategorySuggestionRecord(BaseModel):
    """A ranked no-receipt category candidate stored on a transaction."""

    category_id: str
    confidence: float
    source: str


class TransactionSuggestion(BaseModel):
    """A ranked transaction candidate stored on a file."""

    transaction_id: str
    confidence: int
    match_sources: list[str] = Field(default_factory=list)
    breakdown: dict[str, int] = Field(default_factory=dict)


class PrecisionSearchHint(BaseModel):
    """Marker left by the search queue so file matching re-evaluates a file."""

    transaction_id: str
    transaction_amount: int
    transaction_date: dt.date
    strategy: str
    match_confidence: int
    searched_at: datetime = Field(default_factory=utcnow)


class Transaction(Document):
    """
    A bank transaction.

    Bank facts (date, amount, counterparty text, reference) are immutable;
    the remaining fields carry resolution state written by the matchers
    and by user action.
    """

    user_id: str

    # Bank facts
    date: dt.date
    # Amount in minor units (cents); negative for outgoing payments
    amount: int = 0
    currency: str = "EUR"
    name: str = ""
    description: Optional[str] = None
    partner: Optional[str] = None
    partner_iban: Optional[str] = None
    reference: Optional[str] = None

    # Partner resolution
    partner_id: Optional[str] = None
    partner_type: Optional[PartnerType] = None
    partner_match_confidence: Optional[int] = None
    partner_matched_by: Optional[MatchedBy] = None
    partner_suggestions: list[PartnerSuggestion] = Field(default_factory=list)
    rejected_partner_ids: list[str] = Field(default_factory=list)

    # File links
    file_ids: list[str] = Field(default_factory=list)
    rejected_file_ids: list[str] = Field(default_factory=list)

    # No-receipt category
    no_receipt_category_id: Optional[str] = None
    no_receipt_category_confidence: Optional[float] = None
    category_matched_by: Optional[MatchedBy] = None
    category_suggestions: list[CategorySuggestionRecord] = Field(default_factory=list)

    is_complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class TaxFile(Document):
    """
    A receipt or invoice file.

    Extracted fields are filled in by an external extraction step which
    sets ``extraction_complete`` when done.
    """

    user_id: str
    file_name: str
    file_type: str = "application/pdf"
    file_size: int = 0
    content_hash: Optional[str] = None
    storage_path: Optional[str] = None
    source_type: FileSourceType = FileSourceType.UPLOAD

    # Mailbox origin
    gmail_message_id: Optional[str] = None
    gmail_attachment_id: Optional[str] = None
    gmail_integration_id: Optional[str] = None
    gmail_subject: Optional[str] = None
    gmail_sender_email: Optional[str] = None
    gmail_sender_domain: Optional[str] = None
    gmail_email_date: Optional[datetime] = None

    # Extraction results
    extraction_complete: bool = False
    extracted_amount: Optional[int] = None
    extracted_currency: Optional[str] = None
    extracted_date: Optional[dt.date] = None
    extracted_partner: Optional[str] = None
    extracted_iban: Optional[str] = None
    extracted_text: Optional[str] = None

    # Partner resolution
    partner_id: Optional[str] = None
    partner_type: Optional[PartnerType] = None
    partner_match_confidence: Optional[int] = None
    partner_matched_by: Optional[MatchedBy] = None

    # Transaction links
    transaction_ids: list[str] = Field(default_factory=list)
    transaction_suggestions: list[TransactionSuggestion] = Field(default_factory=list)
    transaction_match_complete: bool = False
    precision_search_hint: Optional[PrecisionSearchHint] = None

    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
