"""Matchers, scorers and the matching engine."""

from .attachment_scorer import AttachmentEvidence, AttachmentScorer
from .category_classifier import CategoryClassifier, usage_boost
from .engine import MatchingEngine
from .file_scorer import TransactionFileScorer
from .partner_matcher import PartnerMatcher, resolve_partner_conflict, should_auto_apply
from .similarity import company_name_similarity, glob_match, normalized_similarity

__all__ = [
    "AttachmentEvidence",
    "AttachmentScorer",
    "CategoryClassifier",
    "usage_boost",
    "MatchingEngine",
    "TransactionFileScorer",
    "PartnerMatcher",
    "resolve_partner_conflict",
    "should_auto_apply",
    "company_name_similarity",
    "glob_match",
    "normalized_similarity",
]
