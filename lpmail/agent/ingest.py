"""Ingestion pipeline — stores fetched emails and feeds new ones to the parser."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lpmail.mail.types import RawEmail
from lpmail.processing.answers import mark_thread_questions_answered
from lpmail.processing.suggested_contacts import record_suggested_contact

if TYPE_CHECKING:
    from lpmail.processing.orchestrator import ParsingOrchestrator
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    ingested: int = 0
    duplicates: int = 0
    parsed: int = 0
    suggested_contacts_added: int = 0
    answered: int = 0
    errors: list[str] = field(default_factory=list)


class EmailIngestor:
    """Stores a batch of fetched emails and parses the ones not seen before.

    Emails already stored under the same (organization, message id) are
    counted as duplicates and left alone. The deterministic parser is used
    unless use_ai is set, in which case the orchestrator's AI path (with its
    fallback) runs instead.

    Usage::

        ingestor = EmailIngestor(store, orchestrator)
        stats = await ingestor.ingest(emails)
    """

    def __init__(
        self,
        store: EmailStore,
        orchestrator: ParsingOrchestrator,
        use_ai: bool = False,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._use_ai = use_ai

    async def ingest(self, emails: list[RawEmail]) -> IngestStats:
        stats = IngestStats()
        new_by_org: dict[str, list[RawEmail]] = defaultdict(list)

        for email in emails:
            try:
                inserted = self._store.insert_raw_email(email)
            except Exception as exc:  # noqa: BLE001
                stats.errors.append(f"Insert failed for {email.message_id}: {exc}")
                logger.error("Insert failed for message %s: %s", email.message_id, exc)
                continue
            if inserted:
                stats.ingested += 1
                new_by_org[email.organization_id].append(email)
            else:
                stats.duplicates += 1

        logger.info(
            "Ingest: %d new email(s), %d duplicate(s)", stats.ingested, stats.duplicates
        )

        for organization_id, org_emails in new_by_org.items():
            await self._process_organization(organization_id, org_emails, stats)

        return stats

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _process_organization(
        self,
        organization_id: str,
        emails: list[RawEmail],
        stats: IngestStats,
    ) -> None:
        context = self._orchestrator.fetch_parsing_context(organization_id)
        team = {
            address.strip().lower()
            for address in self._store.get_connected_account_emails(organization_id)
        }

        for email in emails:
            try:
                result = await self._orchestrator.parse_email(
                    email, organization_id, context, use_ai=self._use_ai
                )
            except Exception as exc:  # noqa: BLE001
                stats.errors.append(f"Parse error for {email.message_id}: {exc}")
                logger.error("Parse error for email %s: %s", email.id, exc, exc_info=True)
                continue

            stats.parsed += 1
            if result.lp_matched or result.lp_created:
                continue
            if email.from_email.strip().lower() in team:
                continue

            outcome = record_suggested_contact(
                self._store, organization_id, email, result.extracted_lp
            )
            if outcome.added:
                stats.suggested_contacts_added += 1
                logger.info("Added suggested contact: %s", email.from_email)

        try:
            stats.answered += mark_thread_questions_answered(self._store, emails, organization_id)
        except Exception as exc:  # noqa: BLE001
            stats.errors.append(f"Answer detection failed for {organization_id}: {exc}")
            logger.error("Answer detection failed for org %s: %s", organization_id, exc)
