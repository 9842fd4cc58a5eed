"""Configuration loader and validation for matching and search settings."""

from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class PartnerMatchingConfig(BaseModel):
    """Confidence constants for transaction to partner matching."""

    auto_apply_threshold: int = 89
    iban_confidence: int = 100
    website_confidence: int = 90
    glob_alias_confidence: int = 90
    # Counterparty field: similarity floor and confidence ceiling
    name_min_similarity: int = 60
    name_max_confidence: int = 90
    # Transaction name field fallback, stricter floor and lower ceiling
    name_field_min_similarity: int = 70
    name_field_max_confidence: int = 85
    name_base_confidence: int = 60
    max_results: int = 3


class FileMatchingConfig(BaseModel):
    """Point thresholds and component weights for file to transaction scoring."""

    auto_match_threshold: int = 85
    suggestion_threshold: int = 50
    date_range_days: int = 30
    max_suggestions: int = 5
    fallback_candidate_limit: int = 200
    default_currency: str = "EUR"

    # Amount: exact points, then (relative tolerance, points) tiers
    amount_exact_points: int = 40
    amount_tiers: list[tuple[float, int]] = Field(
        default_factory=lambda: [(0.01, 38), (0.05, 30), (0.10, 20)]
    )
    currency_mismatch_factor: float = 0.5
    # Date: (max days apart, points) tiers
    date_tiers: list[tuple[int, int]] = Field(
        default_factory=lambda: [(0, 25), (3, 22), (7, 15), (14, 8), (30, 3)]
    )
    partner_id_points: int = 25
    # Same-partner recurring invoices
    partner_strong_min: int = 15
    date_strong_min: int = 15
    date_weak_max: int = 3
    date_boost_factor: float = 1.5
    date_boost_cap: int = 37
    partner_discount_factor: float = 0.6
    iban_points: int = 10
    reference_points: int = 5
    reference_date_bonus: int = 10
    # Precision search hint: (min hint confidence, points) tiers
    hint_tiers: list[tuple[int, int]] = Field(default_factory=lambda: [(50, 40), (25, 30)])
    hint_default_points: int = 25


class CategoryMatchingConfig(BaseModel):
    """Confidence constants for no-receipt category matching."""

    suggestion_threshold: int = 60
    auto_apply_threshold: int = 89
    partner_match_confidence: int = 89
    combined_match_bonus: int = 15
    max_suggestions: int = 3
    usage_boost_max: float = 10.0
    no_file_patterns_boost: int = 8
    receipt_lost_template_id: str = "receipt-lost"


class AttachmentScoringConfig(BaseModel):
    """Thresholds (percent) and signal weights (fractions) for attachment relevance."""

    match_threshold: int = 60
    auto_connect_threshold: int = 75
    likely_threshold: int = 40
    great_match_threshold: int = 75
    great_match_count: int = 2
    max_score: float = 0.95

    # Extracted file data: (relative difference, weight) tiers
    amount_exact_weight: float = 0.40
    amount_tiers: list[tuple[float, float]] = Field(
        default_factory=lambda: [(0.01, 0.38), (0.05, 0.30), (0.10, 0.20)]
    )
    amount_mismatch_ratio: float = 0.5
    amount_mismatch_factor: float = 0.4
    file_partner_weight: float = 0.20
    # (max days apart, weight) tiers
    file_date_tiers: list[tuple[int, float]] = Field(
        default_factory=lambda: [(0, 0.15), (3, 0.12), (7, 0.08), (14, 0.04)]
    )

    # Email and filename signals
    mime_type_weight: float = 0.15
    filename_keyword_weight: float = 0.25
    subject_keyword_weight: float = 0.15
    text_keyword_weight: float = 0.10
    amount_text_weight: float = 0.20
    partner_text_weight: float = 0.10
    invoice_text_weight: float = 0.10
    sender_domain_weight: float = 0.20
    learned_integration_weight: float = 0.10

    # Email date distance: (max days, multiplier) tiers and the floor beyond them
    date_before_tiers: list[tuple[int, float]] = Field(
        default_factory=lambda: [(14, 1.0), (30, 0.95), (60, 0.9), (90, 0.85), (180, 0.75)]
    )
    date_before_floor: float = 0.6
    date_after_tiers: list[tuple[int, float]] = Field(
        default_factory=lambda: [(7, 1.0), (14, 0.9), (30, 0.75), (60, 0.55), (90, 0.4)]
    )
    date_after_floor: float = 0.3


class SearchConfig(BaseModel):
    """Settings for the multi-strategy search queue processor."""

    processing_timeout_seconds: float = 240.0
    transactions_per_batch: int = 20
    strong_match_threshold: int = 85
    max_retries: int = 3
    queries_per_transaction: int = 3
    max_generated_queries: int = 8
    messages_per_query: int = 20
    email_date_range_days: int = 180
    partner_files_limit: int = 50
    amount_files_window_days: int = 90
    amount_files_limit: int = 100
    amount_files_top_candidates: int = 3
    mail_invoice_min_confidence: float = 0.7
    max_mailbox_accounts: int = 5
    strategies: list[str] = Field(
        default_factory=lambda: [
            "partner_files",
            "amount_files",
            "email_attachment",
            "email_invoice",
        ]
    )


class MailboxConfig(BaseModel):
    """Settings for outbound mailbox API calls."""

    api_base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    request_delay_seconds: float = 0.2
    request_jitter_seconds: float = 0.05
    timeout_seconds: float = 30.0


class StoreConfig(BaseModel):
    """Configuration for the document and blob stores."""

    backend: str = "memory"
    path: Optional[str] = None
    blob_directory: Optional[str] = None


class ReportConfig(BaseModel):
    """Configuration for the search history workbook."""

    filename_template: str = "search_history_{date}_{time}.xlsx"
    summary_sheet: str = "Search Jobs"
    attempts_sheet: str = "Attempt Log"
    failures_sheet: str = "Failed Jobs"


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class MatchConfig(BaseModel):
    """Main configuration model for matching and search."""

    partner: PartnerMatchingConfig = Field(default_factory=PartnerMatchingConfig)
    files: FileMatchingConfig = Field(default_factory=FileMatchingConfig)
    categories: CategoryMatchingConfig = Field(default_factory=CategoryMatchingConfig)
    attachments: AttachmentScoringConfig = Field(default_factory=AttachmentScoringConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    mailbox: MailboxConfig = Field(default_factory=MailboxConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return MatchConfig().model_dump(mode="json", exclude={"config_file_path"})


def load_config(config_path: Optional[Path] = None) -> MatchConfig:
    """
    Load configuration from a YAML file or use defaults.

    Values in the file are merged over the defaults, so a file only needs
    to name the settings it changes.

    Args:
        config_path: Optional path to YAML configuration file

    Returns:
        Validated MatchConfig object

    Raises:
        ConfigurationError: If the file is missing or cannot be parsed
    """
    config_dict = get_default_config()

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return MatchConfig(**config_dict)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary with values to override

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path where to write the configuration file
    """
    config = get_default_config()

    with open(output_path, "w", encoding="utf-8") as f:
        f.write("# Ledger matching and precision search configuration\n")
        f.write("# Confidence values are on a 0-100 scale\n\n")
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Generated default configuration: {output_path}")
