"""
Matching engine applying matcher results to stored records.

The matchers are pure; this module loads transactions, partners, files and
categories from the document store, runs the matchers and writes back
suggestions and auto-applied links while respecting manual decisions.
"""

from typing import Iterable, Optional
import logging

from ..config import MatchConfig
from ..models.partner import Category, Partner
from ..models.results import AutoConnect, FileMatchOutcome, MatchingSummary, Suggestion
from ..models.transaction import (
    CategorySuggestionRecord,
    MatchedBy,
    PartnerSuggestion,
    PartnerType,
    TaxFile,
    Transaction,
    TransactionSuggestion,
)
from ..store import repository
from ..store.base import CATEGORIES, FILES, PARTNERS, TRANSACTIONS, DocumentStore
from ..utils.exceptions import DocumentNotFoundError
from .category_classifier import CategoryClassifier
from .file_scorer import TransactionFileScorer
from .partner_matcher import PartnerMatcher, resolve_partner_conflict, should_auto_apply

logger = logging.getLogger(__name__)


class MatchingEngine:
    """
    Runs partner, category and file matching against a document store.

    Manual assignments are never overwritten, and rejected links are never
    recreated.
    """

    def __init__(self, store: DocumentStore, config: Optional[MatchConfig] = None):
        """
        Initialize the matching engine.

        Args:
            store: Document store holding the user's records
            config: Matching configuration
        """
        self.store = store
        self.config = config or MatchConfig()
        self.partner_matcher = PartnerMatcher(self.config.partner)
        self.file_scorer = TransactionFileScorer(self.config.files)
        self.category_classifier = CategoryClassifier(self.config.categories)

    def _transactions(
        self, user_id: str, transaction_ids: Optional[Iterable[str]]
    ) -> list[Transaction]:
        if transaction_ids is None:
            return repository.query_models(
                self.store,
                TRANSACTIONS,
                Transaction,
                [("user_id", "==", user_id), ("is_complete", "==", False)],
                order_by="date",
                descending=True,
            )

        transactions = []
        for tx_id in transaction_ids:
            tx = repository.load(self.store, TRANSACTIONS, Transaction, tx_id)
            if tx is None:
                raise DocumentNotFoundError(f"Transaction not found: {tx_id}")
            transactions.append(tx)
        return transactions

    def _partners(self, user_id: str) -> tuple[list[Partner], list[Partner]]:
        user_partners = repository.query_models(
            self.store,
            PARTNERS,
            Partner,
            [("user_id", "==", user_id), ("partner_type", "==", PartnerType.USER.value)],
        )
        global_partners = repository.query_models(
            self.store, PARTNERS, Partner, [("partner_type", "==", PartnerType.GLOBAL.value)]
        )
        return user_partners, global_partners

    def match_partners(
        self, user_id: str, transaction_ids: Optional[Iterable[str]] = None
    ) -> MatchingSummary:
        """
        Suggest and auto-apply partners for transactions.

        Args:
            user_id: Owner of the transactions
            transaction_ids: Specific transactions; defaults to all incomplete

        Returns:
            MatchingSummary of the run
        """
        summary = MatchingSummary()
        user_partners, global_partners = self._partners(user_id)
        threshold = self.config.partner.auto_apply_threshold

        for tx in self._transactions(user_id, transaction_ids):
            if tx.partner_matched_by == MatchedBy.MANUAL:
                summary.skipped += 1
                continue
            summary.processed += 1

            matches = self.partner_matcher.match(tx, user_partners, global_partners)
            tx.partner_suggestions = [
                PartnerSuggestion(
                    partner_id=m.partner_id,
                    partner_type=m.partner_type,
                    confidence=m.confidence,
                    source=m.source,
                )
                for m in matches
            ]
            fields = ["partner_suggestions"]

            top = matches[0] if matches else None
            if top and should_auto_apply(top.confidence, threshold):
                tx.partner_id = top.partner_id
                tx.partner_type = top.partner_type
                tx.partner_match_confidence = top.confidence
                tx.partner_matched_by = MatchedBy.AUTO
                fields += ["partner_id", "partner_type", "partner_match_confidence", "partner_matched_by"]
                summary.auto_applied += 1
                logger.debug(f"Auto-applied partner {top.partner_name} to {tx.id} ({top.confidence})")
            elif matches:
                summary.with_suggestions += 1

            self.store.update(TRANSACTIONS, tx.id, repository.dump_fields(tx, *fields))

        logger.info(
            f"Partner matching for {user_id}: {summary.processed} processed, "
            f"{summary.auto_applied} auto-applied, {summary.with_suggestions} with suggestions"
        )
        return summary

    def match_categories(
        self, user_id: str, transaction_ids: Optional[Iterable[str]] = None
    ) -> MatchingSummary:
        """
        Suggest and auto-apply no-receipt categories.

        Only transactions without files and without a category are
        classified; applying a category completes the transaction.
        """
        summary = MatchingSummary()
        categories = repository.query_models(
            self.store, CATEGORIES, Category, [("user_id", "==", user_id)]
        )
        user_partners, _ = self._partners(user_id)
        pattern_counts = {p.id: len(p.file_source_patterns) for p in user_partners}

        for tx in self._transactions(user_id, transaction_ids):
            if tx.category_matched_by == MatchedBy.MANUAL or not self.category_classifier.is_eligible(tx):
                summary.skipped += 1
                continue
            summary.processed += 1

            suggestions = self.category_classifier.classify(tx, categories, pattern_counts)
            tx.category_suggestions = [
                CategorySuggestionRecord(
                    category_id=s.category_id, confidence=s.confidence, source=s.source
                )
                for s in suggestions
            ]
            fields = ["category_suggestions"]

            top = suggestions[0] if suggestions else None
            if top and self.category_classifier.should_auto_apply(top.confidence):
                tx.no_receipt_category_id = top.category_id
                tx.no_receipt_category_confidence = top.confidence
                tx.category_matched_by = MatchedBy.AUTO
                tx.is_complete = True
                fields += [
                    "no_receipt_category_id",
                    "no_receipt_category_confidence",
                    "category_matched_by",
                    "is_complete",
                ]
                summary.auto_applied += 1
                logger.debug(f"Auto-applied category {top.category_name} to {tx.id}")
            elif suggestions:
                summary.with_suggestions += 1

            self.store.update(TRANSACTIONS, tx.id, repository.dump_fields(tx, *fields))

        logger.info(
            f"Category matching for {user_id}: {summary.processed} processed, "
            f"{summary.auto_applied} auto-applied"
        )
        return summary

    def match_file(self, file_id: str) -> list[FileMatchOutcome]:
        """
        Match one extracted file against the user's transactions.

        The best pair at or above the auto-match threshold is connected on
        both sides; the remaining candidates are stored on the file as
        suggestions. A precision-search hint is consumed by the run.

        Args:
            file_id: File to match

        Returns:
            Outcomes in rank order; empty if the file is not ready

        Raises:
            DocumentNotFoundError: If the file does not exist
        """
        file = repository.load(self.store, FILES, TaxFile, file_id)
        if file is None:
            raise DocumentNotFoundError(f"File not found: {file_id}")
        if not file.extraction_complete or file.is_deleted:
            logger.debug(f"File {file_id} is not ready for matching")
            return []

        candidates = self._candidate_transactions(file)
        aliases = self._partner_aliases(file)
        outcomes = self.file_scorer.rank(file, candidates, aliases)
        by_id = {tx.id: tx for tx in candidates}

        suggestions: list[TransactionSuggestion] = []
        for outcome in outcomes:
            if isinstance(outcome, AutoConnect):
                self._connect(file, by_id[outcome.transaction_id], outcome)
            elif isinstance(outcome, Suggestion):
                suggestions.append(
                    TransactionSuggestion(
                        transaction_id=outcome.transaction_id,
                        confidence=outcome.score.confidence,
                        match_sources=outcome.score.match_sources,
                        breakdown=outcome.score.breakdown.as_dict(),
                    )
                )
            else:
                raise TypeError(f"Unexpected match outcome: {outcome!r}")

        file.transaction_suggestions = suggestions
        file.transaction_match_complete = True
        file.precision_search_hint = None
        self.store.update(
            FILES,
            file.id,
            repository.dump_fields(
                file,
                "transaction_ids",
                "transaction_suggestions",
                "transaction_match_complete",
                "precision_search_hint",
                "partner_id",
                "partner_type",
                "partner_match_confidence",
                "partner_matched_by",
            ),
        )
        return outcomes

    def match_pending_files(self, user_id: str) -> MatchingSummary:
        """Match every extracted file that still awaits transaction matching."""
        summary = MatchingSummary()
        files = repository.query_models(
            self.store,
            FILES,
            TaxFile,
            [
                ("user_id", "==", user_id),
                ("extraction_complete", "==", True),
                ("transaction_match_complete", "==", False),
            ],
        )
        for file in files:
            if file.is_deleted:
                summary.skipped += 1
                continue
            summary.processed += 1
            outcomes = self.match_file(file.id)
            if any(isinstance(o, AutoConnect) for o in outcomes):
                summary.auto_applied += 1
            elif outcomes:
                summary.with_suggestions += 1

        logger.info(
            f"File matching for {user_id}: {summary.processed} files, "
            f"{summary.auto_applied} connected, {summary.with_suggestions} with suggestions"
        )
        return summary

    def _candidate_transactions(self, file: TaxFile) -> list[Transaction]:
        filters = [("user_id", "==", file.user_id)]
        window = self.file_scorer.candidate_window(file)
        if window is None:
            return repository.query_models(
                self.store,
                TRANSACTIONS,
                Transaction,
                filters,
                order_by="date",
                descending=True,
                limit=self.config.files.fallback_candidate_limit,
            )

        start, end = window
        candidates = repository.query_models(
            self.store,
            TRANSACTIONS,
            Transaction,
            filters + [("date", ">=", start.isoformat()), ("date", "<=", end.isoformat())],
        )
        # A hinted transaction outside the window is still a candidate
        hint = file.precision_search_hint
        if hint is not None and all(tx.id != hint.transaction_id for tx in candidates):
            hinted = repository.load(self.store, TRANSACTIONS, Transaction, hint.transaction_id)
            if hinted is not None and hinted.user_id == file.user_id:
                candidates.append(hinted)
        return candidates

    def _partner_aliases(self, file: TaxFile) -> list[str]:
        partner = repository.load(self.store, PARTNERS, Partner, file.partner_id)
        if partner is None:
            return []
        return [partner.name, *[a for a in partner.aliases if "*" not in a]]

    def _connect(self, file: TaxFile, tx: Transaction, outcome: AutoConnect) -> None:
        """Link a file and a transaction and reconcile their partners."""
        if file.id not in tx.file_ids:
            tx.file_ids.append(file.id)
        if tx.id not in file.transaction_ids:
            file.transaction_ids.append(tx.id)
        tx.is_complete = True
        fields = ["file_ids", "is_complete"]

        if tx.partner_id and file.partner_id and tx.partner_id != file.partner_id:
            winner = resolve_partner_conflict(tx.partner_matched_by, file.partner_matched_by)
            if winner == "transaction":
                file.partner_id = tx.partner_id
                file.partner_type = tx.partner_type
                file.partner_match_confidence = tx.partner_match_confidence
                file.partner_matched_by = tx.partner_matched_by
            else:
                tx.partner_id = file.partner_id
                tx.partner_type = file.partner_type
                tx.partner_match_confidence = file.partner_match_confidence
                tx.partner_matched_by = file.partner_matched_by
                fields += ["partner_id", "partner_type", "partner_match_confidence", "partner_matched_by"]
            logger.info(f"Partner conflict between file {file.id} and {tx.id}: {winner} wins")
        elif file.partner_id is None and tx.partner_id:
            file.partner_id = tx.partner_id
            file.partner_type = tx.partner_type
            file.partner_match_confidence = tx.partner_match_confidence
            file.partner_matched_by = MatchedBy.AUTO

        self.store.update(TRANSACTIONS, tx.id, repository.dump_fields(tx, *fields))
        logger.info(
            f"Connected file {file.id} to transaction {tx.id} ({outcome.score.confidence})"
        )

    def generate_summary(self, user_id: str) -> dict[str, int]:
        """
        Count the user's transactions by resolution state.

        Returns:
            Totals keyed by state name
        """
        transactions = repository.query_models(
            self.store, TRANSACTIONS, Transaction, [("user_id", "==", user_id)]
        )
        summary = {
            "transactions": len(transactions),
            "complete": sum(1 for t in transactions if t.is_complete),
            "with_files": sum(1 for t in transactions if t.file_ids),
            "with_category": sum(1 for t in transactions if t.no_receipt_category_id),
            "with_partner": sum(1 for t in transactions if t.partner_id),
            "partner_auto": sum(1 for t in transactions if t.partner_matched_by == MatchedBy.AUTO),
            "partner_manual": sum(
                1 for t in transactions if t.partner_matched_by == MatchedBy.MANUAL
            ),
            "pending_suggestions": sum(
                1 for t in transactions if not t.partner_id and t.partner_suggestions
            ),
        }
        summary["incomplete"] = summary["transactions"] - summary["complete"]
        return summary
