from ledger_match.models.results import QueryType
from ledger_match.search.queries import (
    AssistedQueryGenerator,
    QueryGenerator,
    clean_text,
    extract_invoice_numbers,
    is_valid_query,
)

from factories import make_partner, make_transaction


def test_extract_invoice_numbers():
    numbers = extract_invoice_numbers("Zahlung RE-2024.014 danke")
    assert "RE-2024.014" in numbers
    assert "RE2024014" in numbers
    assert "2024-00123" in extract_invoice_numbers("Rechnung 2024-00123")
    assert extract_invoice_numbers("Kaffee") == []
    assert extract_invoice_numbers(None) == []


def test_long_number_next_to_hex_is_ignored():
    assert extract_invoice_numbers("Nr 98765432") == ["98765432"]
    assert extract_invoice_numbers("id ab98765432cd") == []


def test_clean_text():
    assert clean_text("PayPal *Spotify") == "Spotify"
    assert clean_text("Acme GmbH sagt danke 4711") == "Acme"
    assert clean_text("amazon.de") == "amazon"
    assert clean_text("") == ""


def test_is_valid_query():
    assert is_valid_query("acme")
    assert not is_valid_query("payment")
    assert not is_valid_query("money transfer")
    assert not is_valid_query("x")
    assert not is_valid_query("123e4567-e89b-12d3-a456-426614174000")


def test_generate_ranks_invoice_numbers_first():
    tx = make_transaction(reference="RE-2024.014")
    partner = make_partner(email_domains=["acme.de"])

    queries = QueryGenerator().generate(tx, partner)
    texts = [q.query for q in queries]

    assert queries[0].type == QueryType.INVOICE_NUMBER
    assert queries[0].score == 100
    assert "re-2024.014" in texts
    assert "from:acme.de" in texts
    assert "acme rechnung" in texts
    assert all(t == t.lower() for t in texts)
    assert len(texts) == len(set(texts))
    assert len(texts) <= 8
    assert [q.score for q in queries] == sorted((q.score for q in queries), reverse=True)


def test_generate_respects_limit():
    tx = make_transaction(reference="RE-2024.014")
    queries = QueryGenerator().generate(tx, make_partner(), max_queries=2)
    assert len(queries) == 2
    assert all(q.type == QueryType.INVOICE_NUMBER for q in queries)


def test_assisted_generator_filters_generic_terms():
    generator = AssistedQueryGenerator(lambda tx, partner, n: ["payment", "Acme Rechnung", "acme"])
    queries = generator.generate(make_transaction(), make_partner())
    texts = [q.query for q in queries]

    assert texts[0] == "acme rechnung"
    assert queries[0].source == "assisted"
    assert "payment" not in texts
    assert texts.count("acme") == 1


def test_assisted_generator_falls_back_on_error():
    def broken(tx, partner, n):
        raise RuntimeError("model unavailable")

    tx = make_transaction()
    partner = make_partner()
    queries = AssistedQueryGenerator(broken).generate(tx, partner)
    assert queries == QueryGenerator().generate(tx, partner)
