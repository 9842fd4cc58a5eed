"""No-receipt category suggestions for transactions without files."""

from typing import Iterable, Mapping, Optional
import logging
import math

from ..config import CategoryMatchingConfig
from ..models.partner import Category
from ..models.results import CategorySuggestion
from ..models.transaction import Transaction
from .similarity import glob_match

logger = logging.getLogger(__name__)


def usage_boost(transaction_count: int, maximum: float = 10.0) -> float:
    """
    Confidence boost from how often a category has been used.

    Logarithmic, so the first uses count more than later ones: 0 -> 10
    uses adds about 5.2 points, 10 -> 100 only about 4.8 more.
    """
    if not transaction_count or transaction_count <= 0:
        return 0.0
    return min(math.log10(transaction_count + 1) * 5, maximum)


class CategoryClassifier:
    """Suggests recurring no-receipt categories for a transaction."""

    def __init__(self, config: Optional[CategoryMatchingConfig] = None):
        self.config = config or CategoryMatchingConfig()

    def is_eligible(self, transaction: Transaction) -> bool:
        """Only uncategorized transactions without files are classified."""
        return not transaction.no_receipt_category_id and not transaction.file_ids

    def should_auto_apply(self, confidence: float) -> bool:
        return confidence >= self.config.auto_apply_threshold

    def classify(
        self,
        transaction: Transaction,
        categories: Iterable[Category],
        partner_file_pattern_counts: Optional[Mapping[str, int]] = None,
    ) -> list[CategorySuggestion]:
        """
        Rank categories for a transaction.

        Args:
            transaction: Transaction to classify
            categories: The user's categories
            partner_file_pattern_counts: Number of known file source patterns
                per partner id; a partner listed with zero is a strong
                no-receipt signal

        Returns:
            Up to ``max_suggestions`` suggestions, best first
        """
        suggestions = []
        for category in categories:
            if category.template_id == self.config.receipt_lost_template_id:
                continue
            if not category.is_active:
                continue
            if transaction.id and transaction.id in category.manual_removals:
                continue

            suggestion = self._match_category(transaction, category, partner_file_pattern_counts)
            if suggestion:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions[: self.config.max_suggestions]

    def _match_category(
        self,
        transaction: Transaction,
        category: Category,
        partner_file_pattern_counts: Optional[Mapping[str, int]],
    ) -> Optional[CategorySuggestion]:
        cfg = self.config
        partner_match = bool(
            transaction.partner_id and transaction.partner_id in category.matched_partner_ids
        )
        pattern_confidence = self._best_pattern_confidence(transaction, category)

        if partner_match and pattern_confidence is not None:
            confidence = float(pattern_confidence + cfg.combined_match_bonus)
            source = "partner+pattern"
        elif partner_match:
            confidence = float(cfg.partner_match_confidence)
            source = "partner"
        elif pattern_confidence is not None:
            confidence = float(pattern_confidence)
            source = "pattern"
        else:
            return None

        if confidence <= 0:
            return None

        confidence += usage_boost(category.transaction_count, cfg.usage_boost_max)

        if partner_match and partner_file_pattern_counts is not None:
            if partner_file_pattern_counts.get(transaction.partner_id) == 0:
                confidence += cfg.no_file_patterns_boost

        confidence = min(100.0, confidence)
        if confidence < cfg.suggestion_threshold:
            return None

        return CategorySuggestion(
            category_id=category.id,
            category_name=category.name,
            confidence=confidence,
            source=source,
        )

    def _best_pattern_confidence(
        self, transaction: Transaction, category: Category
    ) -> Optional[int]:
        text = " ".join(
            f for f in (transaction.partner, transaction.name, transaction.reference) if f
        ).lower()
        if not text:
            return None

        best = None
        for learned in category.learned_patterns:
            if glob_match(learned.pattern, text):
                if best is None or learned.confidence > best:
                    best = learned.confidence
        return best
