"""
Point-based scoring of a receipt file against bank transactions.

Components with the default FileMatchingConfig weights (before boosts):
    amount     0-40
    date       0-25
    partner    0-25
    iban       0-10
    reference  0-5
    hint       0-40 (precision search marker naming the transaction)
"""

from datetime import date, timedelta
from typing import Iterable, Optional
import logging
import re

from ..config import FileMatchingConfig
from ..models.results import AutoConnect, FileMatchOutcome, FileMatchScore, FileScoreBreakdown, Suggestion
from ..models.transaction import TaxFile, Transaction
from .similarity import normalize_iban, round_half_up

logger = logging.getLogger(__name__)

_NAME_SUFFIX_RE = re.compile(r"\b(?:gmbh|ag|kg|ohg|ug|e\.?k\.?|inc\.?|ltd\.?|llc|co\.?)(?=\s|$)", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Lowercase, drop common legal suffixes and collapse whitespace."""
    normalized = _NAME_SUFFIX_RE.sub(" ", name.lower())
    return re.sub(r"\s+", " ", normalized).strip()


def names_match(name1: Optional[str], name2: Optional[str]) -> int:
    """
    Compare two partner names as free text.

    Returns:
        25 for an exact match, 18 for containment, 15 for two or more
        shared words, 12 for one shared word when either name is short,
        else 0
    """
    if not name1 or not name2:
        return 0

    n1 = normalize_name(name1)
    n2 = normalize_name(name2)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 25
    if n1 in n2 or n2 in n1:
        return 18

    words1 = [w for w in n1.split(" ") if len(w) > 2]
    words2 = [w for w in n2.split(" ") if len(w) > 2]
    shared = [w for w in words1 if any(w == w2 or w in w2 or w2 in w for w2 in words2)]

    if len(shared) >= 2:
        return 15
    if shared and (len(words1) <= 2 or len(words2) <= 2):
        return 12
    return 0


def amount_score(
    file_amount: Optional[int],
    tx_amount: int,
    file_currency: Optional[str] = None,
    tx_currency: Optional[str] = None,
    config: Optional[FileMatchingConfig] = None,
) -> int:
    """Score amount agreement; tolerance is relative to the file amount."""
    config = config or FileMatchingConfig()
    if file_amount is None:
        return 0
    abs_file = abs(file_amount)
    abs_tx = abs(tx_amount)
    if abs_file == 0 or abs_tx == 0:
        return 0

    difference = abs(abs_file - abs_tx)
    if difference == 0:
        score = config.amount_exact_points
    else:
        for tolerance, points in config.amount_tiers:
            if difference <= abs_file * tolerance:
                score = points
                break
        else:
            return 0

    default = config.default_currency
    if (file_currency or default).upper() != (tx_currency or default).upper():
        score = round_half_up(score * config.currency_mismatch_factor)
    return score


def date_score(
    file_date: Optional[date],
    tx_date: Optional[date],
    config: Optional[FileMatchingConfig] = None,
) -> int:
    """Score date proximity in whole days."""
    config = config or FileMatchingConfig()
    if file_date is None or tx_date is None:
        return 0
    days = abs((file_date - tx_date).days)
    for max_days, points in config.date_tiers:
        if days <= max_days:
            return points
    return 0


def hint_score(match_confidence: Optional[int], config: Optional[FileMatchingConfig] = None) -> int:
    """Points for a precision search hint naming the transaction."""
    config = config or FileMatchingConfig()
    if match_confidence is not None:
        for min_confidence, points in config.hint_tiers:
            if match_confidence >= min_confidence:
                return points
    return config.hint_default_points


class TransactionFileScorer:
    """Scores and ranks candidate transactions for a file."""

    def __init__(self, config: Optional[FileMatchingConfig] = None):
        self.config = config or FileMatchingConfig()

    def score(
        self,
        file: TaxFile,
        transaction: Transaction,
        partner_aliases: Optional[list[str]] = None,
    ) -> FileMatchScore:
        """
        Score one (file, transaction) pair.

        Args:
            file: File with extracted fields
            transaction: Candidate transaction
            partner_aliases: Aliases of the file's assigned partner

        Returns:
            FileMatchScore with confidence capped at 100
        """
        config = self.config
        breakdown = FileScoreBreakdown()
        sources: list[str] = []
        top_date_points = max((points for _, points in config.date_tiers), default=0)

        breakdown.amount = amount_score(
            file.extracted_amount,
            transaction.amount,
            file.extracted_currency,
            transaction.currency,
            config,
        )
        if breakdown.amount:
            exact = breakdown.amount == config.amount_exact_points
            sources.append("amount_exact" if exact else "amount_close")

        breakdown.date = date_score(file.extracted_date, transaction.date, config)
        if breakdown.date:
            sources.append("date_exact" if breakdown.date == top_date_points else "date_close")

        breakdown.partner = self._partner_score(file, transaction, partner_aliases or [])
        if breakdown.partner:
            sources.append("partner")

        # Recurring invoices from the same partner differ mostly by month
        if breakdown.partner >= config.partner_strong_min and file.extracted_date is not None:
            if breakdown.date >= config.date_strong_min:
                breakdown.date = min(
                    config.date_boost_cap, round_half_up(breakdown.date * config.date_boost_factor)
                )
            elif breakdown.date <= config.date_weak_max:
                breakdown.partner = round_half_up(breakdown.partner * config.partner_discount_factor)

        file_iban = normalize_iban(file.extracted_iban)
        if file_iban and file_iban == normalize_iban(transaction.partner_iban):
            breakdown.iban = config.iban_points
            sources.append("iban")

        reference = (transaction.reference or "").strip()
        if file.extracted_text and len(reference) >= 3:
            if reference.lower() in file.extracted_text.lower():
                breakdown.reference = config.reference_points
                # An invoice number match outweighs date distance
                if breakdown.date < config.date_strong_min:
                    breakdown.date = min(top_date_points, breakdown.date + config.reference_date_bonus)
                sources.append("reference")

        hint = file.precision_search_hint
        if hint is not None and hint.transaction_id == transaction.id:
            breakdown.hint = hint_score(hint.match_confidence, config)
            sources.append("precision_hint")

        return FileMatchScore(
            transaction_id=transaction.id,
            confidence=max(0, min(100, breakdown.total)),
            breakdown=breakdown,
            match_sources=sources,
        )

    def _partner_score(
        self, file: TaxFile, transaction: Transaction, partner_aliases: list[str]
    ) -> int:
        if file.partner_id and file.partner_id == transaction.partner_id:
            return self.config.partner_id_points

        tx_name = transaction.name or transaction.partner or ""
        if not tx_name:
            return 0

        if file.extracted_partner:
            score = names_match(file.extracted_partner, tx_name)
            if score:
                return score

        for alias in partner_aliases:
            score = names_match(alias, tx_name)
            if score:
                return score
        return 0

    def candidate_window(self, file: TaxFile) -> Optional[tuple[date, date]]:
        """Date range of transactions worth scoring for a file."""
        if file.extracted_date is None:
            return None
        delta = timedelta(days=self.config.date_range_days)
        return file.extracted_date - delta, file.extracted_date + delta

    def rank(
        self,
        file: TaxFile,
        transactions: Iterable[Transaction],
        partner_aliases: Optional[list[str]] = None,
    ) -> list[FileMatchOutcome]:
        """
        Classify candidate transactions for a file.

        Transactions that rejected the file or are already linked to it are
        skipped. The single best pair at or above the auto-match threshold
        becomes an ``AutoConnect``; the rest above the suggestion floor are
        ``Suggestion`` entries, best first.

        Returns:
            At most one AutoConnect followed by up to ``max_suggestions``
            suggestions
        """
        scores = []
        for transaction in transactions:
            if file.id and file.id in transaction.rejected_file_ids:
                continue
            if transaction.id in file.transaction_ids:
                continue
            result = self.score(file, transaction, partner_aliases)
            if result.confidence >= self.config.suggestion_threshold:
                scores.append(result)

        scores.sort(key=lambda s: s.confidence, reverse=True)

        outcomes: list[FileMatchOutcome] = []
        if scores and scores[0].confidence >= self.config.auto_match_threshold:
            best = scores.pop(0)
            outcomes.append(AutoConnect(file.id, best.transaction_id, best))

        for result in scores[: self.config.max_suggestions]:
            outcomes.append(Suggestion(file.id, result.transaction_id, result))
        return outcomes
