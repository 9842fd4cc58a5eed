import logging

import pytest

from ledger_match.config import MatchConfig, generate_default_config, load_config
from ledger_match.utils.exceptions import ConfigurationError
from ledger_match.utils.logging_config import setup_logging


def test_defaults():
    config = load_config()
    assert config == MatchConfig()
    assert config.partner.auto_apply_threshold == 89
    assert config.files.auto_match_threshold == 85
    assert config.search.processing_timeout_seconds == 240
    assert config.search.strategies == [
        "partner_files",
        "amount_files",
        "email_attachment",
        "email_invoice",
    ]
    assert config.config_file_path is None


def test_yaml_overrides_are_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "search:\n  transactions_per_batch: 5\nattachments:\n  match_threshold: 70\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.search.transactions_per_batch == 5
    assert config.search.max_retries == 3
    assert config.attachments.match_threshold == 70
    assert config.attachments.great_match_threshold == 75
    assert config.config_file_path == str(path)


@pytest.mark.parametrize(
    "content",
    ["search: [unclosed\n", "- just\n- a list\n", "search:\n  max_retries: many\n"],
)
def test_invalid_files(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.yaml")


def test_scoring_weights_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "files:\n"
        "  partner_id_points: 20\n"
        "  date_tiers:\n"
        "    - [0, 30]\n"
        "    - [5, 10]\n"
        "attachments:\n"
        "  sender_domain_weight: 0.3\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.files.partner_id_points == 20
    assert config.files.date_tiers == [(0, 30), (5, 10)]
    assert config.files.iban_points == 10
    assert config.attachments.sender_domain_weight == 0.3
    assert config.attachments.mime_type_weight == 0.15


def test_generated_config_loads(tmp_path):
    path = tmp_path / "config.yaml"
    generate_default_config(path)

    assert path.read_text(encoding="utf-8").startswith("#")
    assert load_config(path).model_dump(exclude={"config_file_path"}) == MatchConfig().model_dump(
        exclude={"config_file_path"}
    )


def test_setup_logging_replaces_handlers(tmp_path):
    log_file = tmp_path / "logs" / "match.log"
    setup_logging(logging.DEBUG)
    logger = setup_logging(logging.WARNING, log_file=log_file)

    assert logger.name == "ledger_match"
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 2
    assert log_file.parent.exists()
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
