"""Partner (counterparty) and no-receipt category records."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .base import Document, utcnow
from .transaction import PartnerType


class LearnedPattern(BaseModel):
    """
    A glob pattern with the confidence it earns when it matches.

    Learned patterns come from manual assignments; curated global
    patterns may also list ``exclude`` globs that veto a match.
    """

    pattern: str
    confidence: int = 80
    exclude: list[str] = Field(default_factory=list)
    source_transaction_ids: list[str] = Field(default_factory=list)


class FileSourcePattern(BaseModel):
    """Where files for a partner have been found before."""

    pattern: str
    source_type: str = "local"  # "local" or "gmail"
    integration_id: Optional[str] = None
    confidence: int = 0
    usage_count: int = 0


class InvoiceLink(BaseModel):
    """A link to an invoice portal discovered in an email body."""

    url: str
    anchor_text: Optional[str] = None
    message_id: Optional[str] = None
    discovered_at: datetime = Field(default_factory=utcnow)


class Partner(Document):
    """A counterparty. User partners carry ``user_id``; global ones do not."""

    user_id: Optional[str] = None
    partner_type: PartnerType = PartnerType.USER
    name: str
    aliases: list[str] = Field(default_factory=list)
    vat_id: Optional[str] = None
    ibans: list[str] = Field(default_factory=list)
    website: Optional[str] = None
    email_domains: list[str] = Field(default_factory=list)
    learned_patterns: list[LearnedPattern] = Field(default_factory=list)
    file_source_patterns: list[FileSourcePattern] = Field(default_factory=list)
    invoice_links: list[InvoiceLink] = Field(default_factory=list)
    # Transactions the user explicitly unassigned from this partner
    manual_removals: list[str] = Field(default_factory=list)
    is_active: bool = True


class Category(Document):
    """A recurring no-receipt bucket (bank fees, payroll, ...)."""

    user_id: str
    name: str
    template_id: Optional[str] = None
    matched_partner_ids: list[str] = Field(default_factory=list)
    learned_patterns: list[LearnedPattern] = Field(default_factory=list)
    manual_removals: list[str] = Field(default_factory=list)
    transaction_count: int = 0
    is_active: bool = True
