"""Result types produced by the matchers and scorers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .transaction import PartnerType


@dataclass
class PartnerMatch:
    """A ranked partner candidate for a transaction."""

    partner_id: str
    partner_type: PartnerType
    partner_name: str

    # Confidence on a 0-100 scale
    confidence: int

    # Signal that produced the confidence: iban, pattern, website or name
    source: str

    @property
    def is_user_partner(self) -> bool:
        return self.partner_type == PartnerType.USER


@dataclass
class FileScoreBreakdown:
    """Per-component points of a file to transaction score."""

    amount: int = 0
    date: int = 0
    partner: int = 0
    iban: int = 0
    reference: int = 0
    hint: int = 0

    @property
    def total(self) -> int:
        return self.amount + self.date + self.partner + self.iban + self.reference + self.hint

    def as_dict(self) -> dict[str, int]:
        return {
            "amount": self.amount,
            "date": self.date,
            "partner": self.partner,
            "iban": self.iban,
            "reference": self.reference,
            "hint": self.hint,
        }


@dataclass
class FileMatchScore:
    """Score of one (file, transaction) pair."""

    transaction_id: str
    confidence: int
    breakdown: FileScoreBreakdown
    match_sources: list[str] = field(default_factory=list)


@dataclass
class AutoConnect:
    """A file to transaction pair strong enough to link without review."""

    file_id: str
    transaction_id: str
    score: FileMatchScore


@dataclass
class Suggestion:
    """A file to transaction pair offered to the user for review."""

    file_id: str
    transaction_id: str
    score: FileMatchScore


FileMatchOutcome = Union[AutoConnect, Suggestion]


@dataclass
class CategorySuggestion:
    """A ranked no-receipt category candidate."""

    category_id: str
    category_name: str
    confidence: float

    # partner, pattern or partner+pattern
    source: str


@dataclass
class AttachmentScore:
    """Relevance of an email attachment to a transaction."""

    # Percentage, 0-95
    score: int
    label: Optional[str] = None
    reasons: list[str] = field(default_factory=list)


class QueryType(Enum):
    """Kind of evidence a search query was derived from."""

    INVOICE_NUMBER = "invoice_number"
    COMPANY_NAME = "company_name"
    EMAIL_DOMAIN = "email_domain"
    VAT_ID = "vat_id"
    IBAN = "iban"
    PATTERN = "pattern"
    FALLBACK = "fallback"


@dataclass
class TypedQuery:
    """A ranked search term."""

    query: str
    type: QueryType
    score: int
    source: str


@dataclass
class EmailClassification:
    """Keyword-based classification of an email."""

    has_pdf_attachment: bool = False
    possible_mail_invoice: bool = False
    possible_invoice_link: bool = False
    confidence: int = 0
    matched_keywords: list[str] = field(default_factory=list)


@dataclass
class MatchingSummary:
    """Counts from a batch matching run."""

    processed: int = 0
    auto_applied: int = 0
    with_suggestions: int = 0
    skipped: int = 0

    @property
    def unmatched(self) -> int:
        return self.processed - self.auto_applied - self.with_suggestions
