"""Per-job pool of mailbox clients."""

from datetime import datetime
from typing import Callable, Optional
import logging

from ..config import MailboxConfig
from ..models.base import utcnow
from ..models.search import EmailIntegration, EmailToken
from ..store import repository
from ..store.base import EMAIL_INTEGRATIONS, EMAIL_TOKENS, DocumentStore
from .mailbox import GmailClient, MailboxClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[EmailIntegration, EmailToken], MailboxClient]


def gmail_client_factory(config: Optional[MailboxConfig] = None) -> ClientFactory:
    """Factory building a GmailClient from stored credentials."""

    def factory(integration: EmailIntegration, token: EmailToken) -> MailboxClient:
        return GmailClient(integration.id, integration.email, token.access_token, config)

    return factory


class MailboxPool:
    """
    Mailbox clients for the duration of one queue job.

    Clients are created on first use per user and closed when the pool
    exits, so no connection or rate-limit state leaks between jobs.
    """

    def __init__(
        self,
        store: DocumentStore,
        client_factory: Optional[ClientFactory] = None,
        max_accounts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client_factory = client_factory or gmail_client_factory()
        self.max_accounts = max_accounts
        self._clock = clock
        self._clients: dict[str, list[MailboxClient]] = {}
        self._disabled: set[str] = set()

    def __enter__(self) -> "MailboxPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def clients_for(self, user_id: str) -> list[MailboxClient]:
        """
        Usable clients for a user's active mailbox integrations.

        Integrations flagged for reauth are skipped; an integration whose
        token has expired is flagged here and skipped.
        """
        if user_id not in self._clients:
            self._clients[user_id] = self._build_clients(user_id)
        return [c for c in self._clients[user_id] if c.integration_id not in self._disabled]

    def _build_clients(self, user_id: str) -> list[MailboxClient]:
        integrations = repository.query_models(
            self.store,
            EMAIL_INTEGRATIONS,
            EmailIntegration,
            [("user_id", "==", user_id), ("is_active", "==", True)],
        )

        clients: list[MailboxClient] = []
        for integration in integrations:
            if integration.needs_reauth:
                continue
            if len(clients) >= self.max_accounts:
                break

            token = repository.load(self.store, EMAIL_TOKENS, EmailToken, integration.id)
            if token is None:
                logger.warning(f"No token stored for mailbox {integration.email}")
                continue
            if token.expires_at is not None and token.expires_at <= self._clock():
                self.mark_needs_reauth(integration.id, "Access token expired")
                continue

            clients.append(self.client_factory(integration, token))

        logger.debug(f"Prepared {len(clients)} mailbox clients for user {user_id}")
        return clients

    def mark_needs_reauth(self, integration_id: str, reason: str) -> None:
        """Flag an integration so the user is asked to reconnect it."""
        self._disabled.add(integration_id)
        if self.store.get(EMAIL_INTEGRATIONS, integration_id) is None:
            return
        self.store.update(
            EMAIL_INTEGRATIONS,
            integration_id,
            {
                "needs_reauth": True,
                "last_error": reason,
                "reauth_requested_at": self._clock().isoformat(),
            },
        )
        logger.warning(f"Mailbox integration {integration_id} needs reauth: {reason}")

    def close(self) -> None:
        for clients in self._clients.values():
            for client in clients:
                client.close()
        self._clients.clear()
