"""
Relevance scoring of email attachments (and mail bodies) for a transaction.

Signals are accumulated as fractions, scaled by how far the email date is
from the transaction date, capped at 0.95 and reported as a percentage.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Union
import logging
import re

from ..config import AttachmentScoringConfig
from ..models.partner import FileSourcePattern
from ..models.results import AttachmentScore
from .similarity import round_half_up

logger = logging.getLogger(__name__)

RECEIPT_KEYWORDS = [
    "invoice",
    "rechnung",
    "receipt",
    "beleg",
    "quittung",
    "faktura",
    "bon",
    "bill",
]

RECEIPT_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
}

DateLike = Union[date, datetime]


@dataclass
class AttachmentEvidence:
    """Everything known about one attachment candidate and its transaction."""

    filename: str
    mime_type: str

    # Email context
    email_subject: Optional[str] = None
    email_from: Optional[str] = None
    email_snippet: Optional[str] = None
    email_body_text: Optional[str] = None
    email_date: Optional[DateLike] = None
    integration_id: Optional[str] = None

    # Extracted data, when the file already exists
    file_extracted_amount: Optional[int] = None
    file_extracted_date: Optional[DateLike] = None
    file_extracted_partner: Optional[str] = None

    # Transaction
    transaction_amount: Optional[int] = None
    transaction_date: Optional[DateLike] = None
    transaction_name: Optional[str] = None
    transaction_reference: Optional[str] = None
    transaction_partner: Optional[str] = None

    # Assigned partner
    partner_name: Optional[str] = None
    partner_email_domains: list[str] = field(default_factory=list)
    partner_file_source_patterns: list[FileSourcePattern] = field(default_factory=list)


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def _day_distance(a: DateLike, b: DateLike) -> float:
    return abs((_as_datetime(a) - _as_datetime(b)).total_seconds()) / 86400


def build_amount_variants(amount_cents: Optional[int]) -> list[str]:
    """Textual renderings of an amount as it may appear in an email."""
    if amount_cents is None:
        return []
    amount = abs(amount_cents) / 100
    fixed = f"{amount:.2f}"
    en_us = f"{amount:,.2f}"
    de_de = en_us.replace(",", "_").replace(".", ",").replace("_", ".")
    variants = [fixed, fixed.replace(".", ","), en_us, de_de, str(round_half_up(amount))]
    return list(dict.fromkeys(variants))


def extract_tokens(text: Optional[str]) -> list[str]:
    """Lowercase alphanumeric tokens of at least three characters."""
    if not text:
        return []
    return [t for t in re.split(r"[^a-z0-9]+", text.lower()) if len(t) >= 3]


def extract_email_domain(email: Optional[str]) -> Optional[str]:
    """Domain part of an address, also inside "Name <addr>" headers."""
    if not email:
        return None
    match = re.search(r"@([a-z0-9.-]+\.[a-z]{2,})", email.lower())
    return match.group(1) if match else None


def _contains_any(haystack: str, needles: list[str]) -> bool:
    return any(needle in haystack for needle in needles)


def email_date_multiplier(
    email_date: DateLike,
    transaction_date: DateLike,
    config: Optional[AttachmentScoringConfig] = None,
) -> float:
    """
    Penalty for emails far from the transaction date.

    Invoices usually arrive before the payment, so emails before the
    transaction are penalized more gently than emails after it.
    """
    config = config or AttachmentScoringConfig()
    days = _day_distance(email_date, transaction_date)
    if _as_datetime(email_date) < _as_datetime(transaction_date):
        tiers, floor = config.date_before_tiers, config.date_before_floor
    else:
        tiers, floor = config.date_after_tiers, config.date_after_floor
    for limit, factor in tiers:
        if days <= limit:
            return factor
    return floor


class AttachmentScorer:
    """Scores attachment candidates and applies download/stop thresholds."""

    def __init__(self, config: Optional[AttachmentScoringConfig] = None):
        self.config = config or AttachmentScoringConfig()

    def is_match(self, score: int) -> bool:
        return score >= self.config.match_threshold

    def is_great(self, score: int) -> bool:
        return score >= self.config.great_match_threshold

    def score(self, evidence: AttachmentEvidence) -> AttachmentScore:
        """
        Score an attachment candidate.

        Args:
            evidence: Attachment, email, file and transaction facts

        Returns:
            AttachmentScore with a 0-95 percentage, a label and the reasons
        """
        config = self.config
        score = 0.0
        reasons: list[str] = []
        amount_mismatch = False

        filename = (evidence.filename or "").lower()
        subject = (evidence.email_subject or "").lower()
        combined = " ".join(
            part
            for part in (
                evidence.email_subject,
                evidence.email_snippet,
                evidence.email_from,
                evidence.email_body_text,
            )
            if part
        ).lower()

        if evidence.file_extracted_amount is not None and evidence.transaction_amount:
            file_amount = abs(evidence.file_extracted_amount)
            tx_amount = abs(evidence.transaction_amount)
            diff = abs(file_amount - tx_amount) / tx_amount
            if diff == 0:
                score += config.amount_exact_weight
                reasons.append("Exact amount match")
            elif diff > config.amount_mismatch_ratio:
                amount_mismatch = True
                reasons.append(f"Amount mismatch: {diff * 100:.0f}% diff")
            else:
                for tolerance, weight in config.amount_tiers:
                    if diff <= tolerance:
                        score += weight
                        reasons.append(f"Amount ±{tolerance * 100:.0f}%")
                        break

        if evidence.file_extracted_partner:
            file_partner = evidence.file_extracted_partner.lower()
            targets = [
                p.lower() for p in (evidence.partner_name, evidence.transaction_partner) if p
            ]
            if any(t in file_partner or file_partner in t for t in targets):
                score += config.file_partner_weight
                reasons.append("File partner matches transaction")

        if evidence.file_extracted_date and evidence.transaction_date:
            days = _day_distance(evidence.file_extracted_date, evidence.transaction_date)
            for max_days, weight in config.file_date_tiers:
                if days <= max_days:
                    score += weight
                    reasons.append("Same day" if max_days == 0 else f"Within {max_days} days")
                    break

        if (evidence.mime_type or "").lower() in RECEIPT_MIME_TYPES:
            score += config.mime_type_weight
            reasons.append("Likely receipt file type")

        if _contains_any(filename, RECEIPT_KEYWORDS):
            score += config.filename_keyword_weight
            reasons.append("Filename has invoice keyword")
        if _contains_any(subject, RECEIPT_KEYWORDS):
            score += config.subject_keyword_weight
            reasons.append("Subject has invoice keyword")
        if _contains_any(combined, RECEIPT_KEYWORDS):
            score += config.text_keyword_weight
            reasons.append("Email text has invoice keyword")

        amount_variants = build_amount_variants(evidence.transaction_amount)
        if amount_variants and _contains_any(f"{combined} {filename}", amount_variants):
            score += config.amount_text_weight
            reasons.append("Amount appears in email or filename")

        partner_tokens = extract_tokens(evidence.partner_name) + extract_tokens(
            evidence.transaction_partner
        )
        if partner_tokens and _contains_any(combined, partner_tokens):
            score += config.partner_text_weight
            reasons.append("Partner name appears in email")

        invoice_tokens = extract_tokens(evidence.transaction_name) + extract_tokens(
            evidence.transaction_reference
        )
        if invoice_tokens and _contains_any(f"{combined} {filename}", invoice_tokens):
            score += config.invoice_text_weight
            reasons.append("Invoice reference appears in email or filename")

        sender_domain = extract_email_domain(evidence.email_from)
        known_domains = [d.lower() for d in evidence.partner_email_domains]
        if sender_domain and sender_domain in known_domains:
            score += config.sender_domain_weight
            reasons.append(f"Sender domain matches {sender_domain}")

        if evidence.integration_id and any(
            p.source_type == "gmail" and p.integration_id == evidence.integration_id
            for p in evidence.partner_file_source_patterns
        ):
            score += config.learned_integration_weight
            reasons.append("Learned mailbox account pattern")

        if evidence.email_date and evidence.transaction_date:
            multiplier = email_date_multiplier(evidence.email_date, evidence.transaction_date, config)
            days = _day_distance(evidence.email_date, evidence.transaction_date)
            direction = (
                "before"
                if _as_datetime(evidence.email_date) < _as_datetime(evidence.transaction_date)
                else "after"
            )
            reasons.append(f"Date distance: {round_half_up(days)} days {direction} (x{multiplier:.2f})")
            score *= multiplier

        if amount_mismatch:
            score *= config.amount_mismatch_factor

        percent = round_half_up(min(score, config.max_score) * 100)
        if percent >= config.auto_connect_threshold:
            label = "Strong"
        elif percent >= config.likely_threshold:
            label = "Likely"
        else:
            label = None

        return AttachmentScore(score=percent, label=label, reasons=reasons)
