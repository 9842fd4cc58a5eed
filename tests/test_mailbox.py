import base64
from unittest.mock import MagicMock

import pytest
import requests

from ledger_match.integrations.mailbox import GmailClient, RateLimiter, parse_gmail_message
from ledger_match.integrations.pool import MailboxPool
from ledger_match.models.search import EmailIntegration, EmailToken
from ledger_match.store import repository
from ledger_match.store.base import EMAIL_INTEGRATIONS, EMAIL_TOKENS
from ledger_match.utils.exceptions import MailboxAuthError, MailboxError

from factories import USER_ID, FakeMailbox, utc


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _gmail_payload():
    return {
        "id": "m1",
        "threadId": "t1",
        "snippet": "Ihre Rechnung",
        "internalDate": "1710064800000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Rechnung RE-2024.014"},
                {"name": "From", "value": "Acme <billing@acme.de>"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64("Betrag 49,99 €")}},
                        {"mimeType": "text/html", "body": {"data": _b64("<p>Betrag</p>")}},
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "RE-2024.014.pdf",
                    "body": {"attachmentId": "a1", "size": 2048},
                },
            ],
        },
    }


def test_parse_gmail_message():
    message = parse_gmail_message(_gmail_payload())

    assert message.message_id == "m1"
    assert message.subject == "Rechnung RE-2024.014"
    assert message.sender == "Acme <billing@acme.de>"
    assert message.date == utc(2024, 3, 10, 10, 0)
    assert message.text_body == "Betrag 49,99 €"
    assert message.html_body == "<p>Betrag</p>"
    assert len(message.attachments) == 1
    attachment = message.attachments[0]
    assert attachment.attachment_id == "a1"
    assert attachment.size == 2048
    assert attachment.is_pdf and attachment.is_likely_receipt


def test_rate_limiter_spaces_calls():
    now = [100.0]
    sleeps = []
    limiter = RateLimiter(0.2, clock=lambda: now[0], sleep=sleeps.append)

    limiter.wait()
    now[0] += 0.05
    limiter.wait()
    now[0] += 1.0
    limiter.wait()

    assert sleeps == [pytest.approx(0.15)]


def _client(session):
    return GmailClient("int-1", "me@example.com", "token", session=session, rate_limiter=RateLimiter(0))


def _response(status_code, payload=None):
    response = MagicMock(status_code=status_code, text="error")
    response.json.return_value = payload or {}
    return response


def test_gmail_client_search():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(200, {"messages": [{"id": "m1"}, {"id": "m2"}]})

    client = _client(session)

    assert client.search("from:acme.de", max_results=5) == ["m1", "m2"]
    assert session.headers["Authorization"] == "Bearer token"
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"q": "from:acme.de", "maxResults": 5}


def test_gmail_client_attachment_download():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(200, {"data": _b64("%PDF-1.4")})
    assert _client(session).get_attachment("m1", "a1") == b"%PDF-1.4"

    session.get.return_value = _response(200, {})
    with pytest.raises(MailboxError):
        _client(session).get_attachment("m1", "a1")


def test_gmail_client_errors():
    session = MagicMock()
    session.headers = {}
    client = _client(session)

    session.get.return_value = _response(401)
    with pytest.raises(MailboxAuthError):
        client.search("acme")

    session.get.return_value = _response(500)
    with pytest.raises(MailboxError):
        client.search("acme")

    session.get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(MailboxError):
        client.search("acme")


def _add_integration(store, integration_id, expires_at=None, needs_reauth=False):
    repository.save(
        store,
        EMAIL_INTEGRATIONS,
        EmailIntegration(
            id=integration_id,
            user_id=USER_ID,
            email=f"{integration_id}@example.com",
            needs_reauth=needs_reauth,
        ),
    )
    repository.save(
        store,
        EMAIL_TOKENS,
        EmailToken(id=integration_id, user_id=USER_ID, access_token="tok", expires_at=expires_at),
    )


def test_pool_skips_expired_and_flagged_accounts(store):
    _add_integration(store, "ok")
    _add_integration(store, "expired", expires_at=utc(2024, 1, 1))
    _add_integration(store, "flagged", needs_reauth=True)
    built = []

    def factory(integration, token):
        client = FakeMailbox(integration.id, integration.email)
        built.append(client)
        return client

    with MailboxPool(store, factory, clock=lambda: utc(2024, 6, 1)) as pool:
        clients = pool.clients_for(USER_ID)
        assert [c.integration_id for c in clients] == ["ok"]
        # built once per user
        assert pool.clients_for(USER_ID) == clients

    expired = repository.load(store, EMAIL_INTEGRATIONS, EmailIntegration, "expired")
    assert expired.needs_reauth
    assert expired.last_error == "Access token expired"
    assert all(c.closed for c in built)


def test_pool_mark_needs_reauth_disables_client(store):
    _add_integration(store, "ok")
    pool = MailboxPool(store, lambda i, t: FakeMailbox(i.id, i.email))

    assert len(pool.clients_for(USER_ID)) == 1
    pool.mark_needs_reauth("ok", "token revoked")

    assert pool.clients_for(USER_ID) == []
    assert repository.load(store, EMAIL_INTEGRATIONS, EmailIntegration, "ok").needs_reauth
    pool.close()


def test_pool_caps_accounts(store):
    for i in range(4):
        _add_integration(store, f"acc{i}")
    pool = MailboxPool(store, lambda i, t: FakeMailbox(i.id, i.email), max_accounts=2)
    assert len(pool.clients_for(USER_ID)) == 2
