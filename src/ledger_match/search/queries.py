"""
Search query generation for mailbox and file searches.

Queries are ranked by the kind of evidence they come from:
invoice number > company name > email domain > IBAN / VAT > learned
pattern > generic fallback.
"""

from typing import Callable, Optional
import logging
import re

from ..models.partner import Partner
from ..models.results import QueryType, TypedQuery
from ..models.transaction import Transaction

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^(pp\*|sq\*|paypal\s*\*|ec\s+|sepa\s+|lastschrift\s+)", re.I)
_TLD_RE = re.compile(r"\.(com|de|at|ch|eu|net|org|io)(/.*)?$", re.I)
_NOISE_SUFFIX_RE = re.compile(
    r"\s+(gmbh|ag|inc|llc|ltd|sagt danke|marketplace|lastschrift|gutschrift|ab|bv|nv|ug)\b.*$",
    re.I,
)
_TRAILING_NUMBER_RE = re.compile(r"\s+\d{4,}.*$")
_MASKED_CARD_RE = re.compile(r"\d{6,}\*+\d+")
_STARS_RE = re.compile(r"\*{3,}")
_WORD_WITH_ID_RE = re.compile(r"([a-zA-Z]{3,})\d{6,}")

_LETTER_YEAR_RE = re.compile(r"\b([A-Z]{1,3})[-\s]*(\d{4})[./-](\d+)\b", re.I)
_PREFIXED_RE = re.compile(
    r"\b(inv|re|rg|rech|invoice|rechnung|bill|order|bestellung)[-_]?\s*#?\s*(\d{3,}[-_.\d]*)",
    re.I,
)
_YEAR_PREFIX_RE = re.compile(r"\b(20\d{2})[-/_](\d{4,})\b")
_ALPHA_NUM_RE = re.compile(r"\b([A-Z]{2,})/?(\d{10,})\b", re.I)
_LONG_NUMBER_RE = re.compile(r"\b(\d{7,})\b")
_UUID_RE = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.I)

MAX_QUERY_LENGTH = 60

BLOCKED_WORDS = {
    "money", "payment", "added", "from", "to", "the", "for", "and", "inc", "llc",
    "gmbh", "ag", "transfer", "bank", "credit", "debit", "card", "transaction",
    "purchase", "order",
}


def clean_text(text: Optional[str]) -> str:
    """
    Strip bank-statement noise from a counterparty string.

    Removes payment processor prefixes ("PP*", "SEPA "), domain endings,
    legal suffixes with everything after them, trailing reference numbers
    and masked card numbers.
    """
    if not text:
        return ""
    cleaned = _PREFIX_RE.sub("", text)
    cleaned = _TLD_RE.sub("", cleaned)
    cleaned = _NOISE_SUFFIX_RE.sub("", cleaned)
    cleaned = _TRAILING_NUMBER_RE.sub("", cleaned)
    cleaned = _MASKED_CARD_RE.sub("", cleaned)
    cleaned = _STARS_RE.sub("", cleaned)
    cleaned = _WORD_WITH_ID_RE.sub(r"\1", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def extract_first_word(text: Optional[str]) -> str:
    words = [w for w in clean_text(text).split() if len(w) >= 2]
    return words[0] if words else ""


def extract_invoice_numbers(text: Optional[str]) -> list[str]:
    """
    Find invoice-number-like tokens in free text.

    Args:
        text: Transaction name, reference or description

    Returns:
        Candidates of at least 4 characters, deduplicated case-insensitively
    """
    if not text:
        return []

    results: list[str] = []
    seen: set[str] = set()

    def add(candidate: str) -> None:
        cleaned = re.sub(r"^[-_#\s]+|[-_#\s]+$", "", candidate).strip()
        if len(cleaned) >= 4 and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            results.append(cleaned)

    # "RE-2024.014": search both the spaced and the compact form
    for match in _LETTER_YEAR_RE.finditer(text):
        add(f"{match.group(1)}- {match.group(2)}.{match.group(3)}")
        add(f"{match.group(1)}{match.group(2)}{match.group(3)}")

    for match in _PREFIXED_RE.finditer(text):
        add(re.sub(r"\s+", "", match.group(0)))

    for match in _YEAR_PREFIX_RE.finditer(text):
        add(f"{match.group(1)}-{match.group(2)}")

    for match in _ALPHA_NUM_RE.finditer(text):
        add(match.group(2))

    for match in _LONG_NUMBER_RE.finditer(text):
        surrounding = text[max(0, match.start() - 5) : match.end() + 5]
        # Hex letters nearby suggest a hash or id rather than an invoice number
        if not re.search(r"[a-f]", surrounding, re.I):
            add(match.group(1))

    return results


def is_valid_query(query: str) -> bool:
    """Reject generic banking words, UUIDs and overly long search terms."""
    normalized = query.lower().strip()
    if len(normalized) < 2 or len(normalized) > MAX_QUERY_LENGTH or normalized in BLOCKED_WORDS:
        return False
    if sum(1 for w in normalized.split() if w in BLOCKED_WORDS) >= 2:
        return False
    return not _UUID_RE.match(normalized)


class QueryGenerator:
    """Deterministic typed query generation from transaction and partner facts."""

    def __init__(self, max_queries: int = 8):
        self.max_queries = max_queries

    def generate(
        self,
        transaction: Transaction,
        partner: Optional[Partner] = None,
        max_queries: Optional[int] = None,
    ) -> list[TypedQuery]:
        """
        Build ranked search queries.

        Args:
            transaction: Transaction being searched for
            partner: Assigned partner, if any
            max_queries: Cap on returned queries

        Returns:
            Lowercased queries, highest score first; equal scores keep
            insertion order
        """
        limit = max_queries if max_queries is not None else self.max_queries
        collected: dict[str, tuple[TypedQuery, int]] = {}

        def add(text: str, query_type: QueryType, score: int, source: str) -> None:
            normalized = re.sub(r"\s+", " ", text.strip()).lower()
            if len(normalized) < 2:
                return
            existing = collected.get(normalized)
            if existing is None:
                collected[normalized] = (
                    TypedQuery(normalized, query_type, score, source),
                    len(collected),
                )
            elif score > existing[0].score:
                collected[normalized] = (TypedQuery(normalized, query_type, score, source), existing[1])

        for field_name in ("description", "name", "reference"):
            for number in extract_invoice_numbers(getattr(transaction, field_name)):
                add(number, QueryType.INVOICE_NUMBER, 100, field_name)

        if partner and partner.name:
            cleaned = clean_text(partner.name)
            add(cleaned, QueryType.COMPANY_NAME, 90, "partner")
            first = extract_first_word(partner.name)
            if first and first != cleaned.lower():
                add(first, QueryType.COMPANY_NAME, 88, "partner")

        if transaction.partner:
            add(clean_text(transaction.partner), QueryType.COMPANY_NAME, 85, "transaction")
            first = extract_first_word(transaction.partner)
            if len(first) >= 3:
                add(first, QueryType.COMPANY_NAME, 83, "transaction")

        if partner:
            for alias in partner.aliases:
                if "*" not in alias:
                    add(clean_text(alias), QueryType.COMPANY_NAME, 80, "alias")

            for domain in partner.email_domains:
                add(f"from:{domain}", QueryType.EMAIL_DOMAIN, 78, "email_domain")

            if partner.website:
                website = re.sub(r"^www\.", "", partner.website, flags=re.I)
                add(f"from:{website}", QueryType.EMAIL_DOMAIN, 75, "website")

            for iban in partner.ibans:
                add(re.sub(r"\s+", "", iban), QueryType.IBAN, 70, "iban")

            if partner.vat_id:
                add(partner.vat_id, QueryType.VAT_ID, 68, "vat_id")

            patterns = sorted(
                partner.file_source_patterns,
                key=lambda p: (p.usage_count, p.confidence),
                reverse=True,
            )
            for pattern in patterns[:3]:
                text = pattern.pattern
                if pattern.source_type == "local":
                    text = re.sub(r"\s+", " ", text.replace("*", " ")).strip()
                if text:
                    add(text, QueryType.PATTERN, 65, "file_pattern")

        base_name = None
        if partner and partner.name:
            base_name = clean_text(partner.name)
        elif transaction.partner:
            base_name = clean_text(transaction.partner)
        if base_name:
            add(f"{base_name} rechnung", QueryType.FALLBACK, 55, "fallback")
            add(f"{base_name} invoice", QueryType.FALLBACK, 52, "fallback")

        if transaction.name and transaction.name != transaction.partner:
            first = extract_first_word(transaction.name)
            if len(first) >= 3:
                add(first, QueryType.FALLBACK, 50, "transaction_name")
            add(clean_text(transaction.name), QueryType.FALLBACK, 45, "transaction_name")

        ranked = sorted(collected.values(), key=lambda entry: (-entry[0].score, entry[1]))
        return [query for query, _ in ranked[:limit]]


SuggestFn = Callable[[Transaction, Optional[Partner], int], list[str]]


class AssistedQueryGenerator(QueryGenerator):
    """
    Prefers queries from an external suggester (e.g. a language model),
    filtered for generic terms, then fills up with deterministic queries.

    Any failure of the suggester falls back to deterministic queries only.
    """

    def __init__(self, suggest: SuggestFn, max_queries: int = 8):
        super().__init__(max_queries)
        self.suggest = suggest

    def generate(
        self,
        transaction: Transaction,
        partner: Optional[Partner] = None,
        max_queries: Optional[int] = None,
    ) -> list[TypedQuery]:
        limit = max_queries if max_queries is not None else self.max_queries
        deterministic = super().generate(transaction, partner, limit)

        try:
            suggested = self.suggest(transaction, partner, limit) or []
        except Exception as e:
            logger.warning(f"Query suggester failed, using deterministic queries: {e}")
            return deterministic

        merged: list[TypedQuery] = []
        seen: set[str] = set()
        for rank, text in enumerate(suggested):
            normalized = re.sub(r"\s+", " ", str(text).strip()).lower()
            if not is_valid_query(normalized) or normalized in seen:
                continue
            seen.add(normalized)
            merged.append(
                TypedQuery(normalized, self._infer_type(normalized), max(1, 100 - rank), "assisted")
            )

        for query in deterministic:
            if query.query not in seen:
                seen.add(query.query)
                merged.append(query)

        return merged[:limit]

    @staticmethod
    def _infer_type(query: str) -> QueryType:
        if query.startswith("from:"):
            return QueryType.EMAIL_DOMAIN
        if extract_invoice_numbers(query):
            return QueryType.INVOICE_NUMBER
        return QueryType.COMPANY_NAME
