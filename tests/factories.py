"""Model factories and fakes shared by the tests."""

from datetime import date, datetime, timezone

from ledger_match.integrations.mailbox import MailboxClient, MailMessage
from ledger_match.models.partner import Category, Partner
from ledger_match.models.transaction import PartnerType, TaxFile, Transaction

USER_ID = "user-1"


def make_transaction(**overrides) -> Transaction:
    data = {
        "user_id": USER_ID,
        "date": date(2024, 3, 10),
        "amount": -4999,
        "currency": "EUR",
        "name": "ACME GMBH",
        "partner": "Acme GmbH",
    }
    data.update(overrides)
    return Transaction(**data)


def make_partner(**overrides) -> Partner:
    data = {"user_id": USER_ID, "partner_type": PartnerType.USER, "name": "Acme GmbH"}
    data.update(overrides)
    return Partner(**data)


def make_file(**overrides) -> TaxFile:
    data = {
        "user_id": USER_ID,
        "file_name": "invoice.pdf",
        "extraction_complete": True,
        "extracted_amount": 4999,
        "extracted_currency": "EUR",
        "extracted_date": date(2024, 3, 10),
    }
    data.update(overrides)
    return TaxFile(**data)


def make_category(**overrides) -> Category:
    data = {"user_id": USER_ID, "name": "Bank fees"}
    data.update(overrides)
    return Category(**data)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeMailbox(MailboxClient):
    """In-memory mailbox recording every call."""

    def __init__(self, integration_id="int-1", email="me@example.com", messages=None, attachments=None):
        self.integration_id = integration_id
        self.email = email
        self.messages: dict[str, MailMessage] = {m.message_id: m for m in messages or []}
        self.attachments: dict[tuple[str, str], bytes] = attachments or {}
        self.searches: list[str] = []
        self.downloads: list[tuple[str, str]] = []
        self.search_error = None
        self.closed = False

    def search(self, query, max_results=20):
        self.searches.append(query)
        if self.search_error is not None:
            raise self.search_error
        return list(self.messages)[:max_results]

    def get_message(self, message_id):
        return self.messages[message_id]

    def get_attachment(self, message_id, attachment_id):
        self.downloads.append((message_id, attachment_id))
        return self.attachments[(message_id, attachment_id)]

    def close(self):
        self.closed = True
