"""
Transaction to partner matching.

Each partner is evaluated independently and contributes at most one
candidate (its strongest signal). Candidates are then ranked with user
partners preferred over global ones.
"""

from functools import cmp_to_key
from typing import Iterable, Optional
import logging

from ..config import PartnerMatchingConfig
from ..models.partner import Partner
from ..models.results import PartnerMatch
from ..models.transaction import MatchedBy, PartnerType, Transaction
from .similarity import (
    company_name_similarity,
    glob_match,
    match_pattern_flexible,
    normalize_iban,
    normalize_url,
    round_half_up,
)

logger = logging.getLogger(__name__)


def should_auto_apply(confidence: int, threshold: int = 89) -> bool:
    """Whether a partner match is strong enough to assign without review."""
    return confidence >= threshold


def resolve_partner_conflict(
    transaction_matched_by: Optional[MatchedBy],
    file_matched_by: Optional[MatchedBy],
) -> str:
    """
    Decide which side's partner wins when a file and its transaction disagree.

    Higher-trust assignments win (manual > auto > suggestion). On a tie of
    manual assignments the transaction wins; on any other tie the file wins,
    since its partner comes from document contents.

    Returns:
        "transaction" or "file"
    """
    tx_trust = transaction_matched_by.trust if transaction_matched_by else -1
    file_trust = file_matched_by.trust if file_matched_by else -1

    if tx_trust > file_trust:
        return "transaction"
    if file_trust > tx_trust:
        return "file"
    if transaction_matched_by == MatchedBy.MANUAL:
        return "transaction"
    return "file"


class PartnerMatcher:
    """Scores partners against a transaction using ranked signals."""

    def __init__(self, config: Optional[PartnerMatchingConfig] = None):
        """
        Initialize the matcher.

        Args:
            config: Partner confidence constants
        """
        self.config = config or PartnerMatchingConfig()

    def match(
        self,
        transaction: Transaction,
        user_partners: Iterable[Partner],
        global_partners: Iterable[Partner] = (),
    ) -> list[PartnerMatch]:
        """
        Rank partners for a transaction.

        Args:
            transaction: Transaction to resolve
            user_partners: Partners owned by the transaction's user
            global_partners: Shared partners

        Returns:
            Up to ``max_results`` matches, best first
        """
        results: list[PartnerMatch] = []

        for partner in user_partners:
            match = self._match_partner(transaction, partner, PartnerType.USER)
            if match:
                results.append(match)

        seen = {(r.partner_id, r.partner_type) for r in results}
        for partner in global_partners:
            match = self._match_partner(transaction, partner, PartnerType.GLOBAL)
            if match and (match.partner_id, match.partner_type) not in seen:
                results.append(match)
                seen.add((match.partner_id, match.partner_type))

        results.sort(key=cmp_to_key(self._compare))
        return results[: self.config.max_results]

    def _compare(self, a: PartnerMatch, b: PartnerMatch) -> int:
        """Order matches: above-threshold user partners always come first."""
        threshold = self.config.auto_apply_threshold
        a_above = a.confidence >= threshold
        b_above = b.confidence >= threshold

        if a_above and b_above:
            if a.is_user_partner != b.is_user_partner:
                return -1 if a.is_user_partner else 1
            return b.confidence - a.confidence

        if a_above != b_above:
            return -1 if a_above else 1

        if a.confidence != b.confidence:
            return b.confidence - a.confidence
        if a.is_user_partner != b.is_user_partner:
            return -1 if a.is_user_partner else 1
        return 0

    def _is_excluded(self, transaction: Transaction, partner: Partner) -> bool:
        if not partner.is_active:
            return True
        if transaction.id and transaction.id in partner.manual_removals:
            return True
        return partner.id in transaction.rejected_partner_ids

    def _match_partner(
        self, transaction: Transaction, partner: Partner, partner_type: PartnerType
    ) -> Optional[PartnerMatch]:
        """Return the strongest signal for one partner, if any."""
        if self._is_excluded(transaction, partner):
            return None

        def candidate(confidence: float, source: str) -> PartnerMatch:
            return PartnerMatch(
                partner_id=partner.id,
                partner_type=partner_type,
                partner_name=partner.name,
                confidence=max(0, min(100, round_half_up(confidence))),
                source=source,
            )

        # IBAN is definitive
        tx_iban = normalize_iban(transaction.partner_iban)
        if tx_iban and any(normalize_iban(iban) == tx_iban for iban in partner.ibans):
            return candidate(self.config.iban_confidence, "iban")

        candidates: list[PartnerMatch] = []
        name = transaction.name or None
        counterparty = transaction.partner or None
        reference = transaction.reference or None

        combined = " ".join(f for f in (name, counterparty, reference) if f).lower()
        for learned in partner.learned_patterns:
            if not match_pattern_flexible(learned.pattern, name, counterparty, reference):
                continue
            if any(glob_match(excl, combined) for excl in learned.exclude):
                continue
            candidates.append(candidate(learned.confidence, "pattern"))

        website = normalize_url(partner.website)
        if website:
            tx_text = f"{transaction.name or ''} {transaction.partner or ''}".lower()
            if website in tx_text:
                candidates.append(candidate(self.config.website_confidence, "website"))

        glob_aliases = [a for a in partner.aliases if "*" in a]
        plain_aliases = [a for a in partner.aliases if a and "*" not in a]

        for alias in glob_aliases:
            if glob_match(alias, counterparty) or glob_match(alias, name):
                candidates.append(candidate(self.config.glob_alias_confidence, "pattern"))
                break

        name_confidence = self._name_confidence(transaction, [partner.name, *plain_aliases])
        if name_confidence is not None:
            candidates.append(candidate(name_confidence, "name"))

        if not candidates:
            return None

        best = candidates[0]
        for current in candidates[1:]:
            if current.confidence > best.confidence:
                best = current
        return best

    def _name_confidence(self, transaction: Transaction, names: list[str]) -> Optional[float]:
        """
        Map the best fuzzy name similarity into a confidence.

        Name evidence alone is kept strictly below the auto-apply threshold.
        """
        cfg = self.config
        if transaction.partner:
            source_text = transaction.partner
            floor, ceiling = cfg.name_min_similarity, cfg.name_max_confidence
        elif transaction.name:
            source_text = transaction.name
            floor, ceiling = cfg.name_field_min_similarity, cfg.name_field_max_confidence
        else:
            return None

        best = max((company_name_similarity(source_text, n) for n in names if n), default=0)
        if best < floor:
            return None

        span = ceiling - cfg.name_base_confidence
        confidence = cfg.name_base_confidence + (best - floor) * span / (100 - floor)
        confidence = min(ceiling, confidence)
        return min(confidence, cfg.auto_apply_threshold - 1)
