"""Reparse operations — single stored email, per-deal backfill and reparse-all.

The bulk operations re-run the full pipeline over a capped set of stored
emails, replacing each email's parsed row. Item failures are collected,
never raised. A wall-clock budget stops new work but keeps what finished.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lpmail.config import PipelineConfig
from lpmail.mail.types import RawEmail
from lpmail.processing.batch import ProgressCallback, process_in_batches
from lpmail.processing.types import ParseResult

if TYPE_CHECKING:
    from lpmail.processing.orchestrator import ParsingOrchestrator
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)

#: Only the first few error messages are returned, to keep summaries small.
MAX_REPORTED_ERRORS = 10


class DealNotFoundError(LookupError):
    """Raised when a deal does not exist or belongs to another organization."""


class RawEmailNotFoundError(LookupError):
    """Raised when a stored email does not exist or belongs to another organization."""


@dataclass(frozen=True)
class BackfillSummary:
    deal_id: str
    deal_name: str
    total: int
    processed: int
    matched: int
    errors: list[str] = field(default_factory=list)
    timed_out: bool = False


@dataclass(frozen=True)
class ReparseSummary:
    total: int
    processed: int
    succeeded: int
    failed: int
    errors: list[str] = field(default_factory=list)
    timed_out: bool = False


async def _reparse(
    orchestrator: ParsingOrchestrator,
    organization_id: str,
    emails: list[RawEmail],
    config: PipelineConfig,
    on_progress: ProgressCallback | None,
):
    context = orchestrator.fetch_parsing_context(organization_id)
    deadline = asyncio.get_running_loop().time() + config.bulk_timeout_seconds

    async def worker(email: RawEmail, index: int) -> ParseResult:
        return await orchestrator.parse_email(email, organization_id, context)

    return await process_in_batches(
        emails,
        worker,
        batch_size=config.batch_size,
        on_progress=on_progress,
        deadline=deadline,
    )


async def parse_stored_email(
    orchestrator: ParsingOrchestrator,
    store: EmailStore,
    email_id: str,
    organization_id: str | None = None,
    use_ai: bool = True,
) -> ParseResult:
    """Reparse a single stored email, replacing its parsed row.

    organization_id defaults to the email's own organization.

    Raises:
        RawEmailNotFoundError: if the email is missing or in another organization.
    """
    email = store.get_raw_email(email_id)
    if email is None or (organization_id and email.organization_id != organization_id):
        raise RawEmailNotFoundError(f"Email {email_id!r} not found")
    return await orchestrator.parse_email(email, email.organization_id, use_ai=use_ai)


async def backfill_deal(
    orchestrator: ParsingOrchestrator,
    store: EmailStore,
    organization_id: str,
    deal_id: str,
    config: PipelineConfig | None = None,
    on_progress: ProgressCallback | None = None,
) -> BackfillSummary:
    """Reparse the organization's recent emails to discover matches for one deal.

    Useful after a deal is created: emails parsed before it existed get their
    detected_deal_id filled in.

    Raises:
        DealNotFoundError: before any parsing, if the deal is not in the organization.
    """
    config = config or PipelineConfig()
    deal = store.get_deal(organization_id, deal_id)
    if deal is None:
        raise DealNotFoundError(f"Deal {deal_id!r} not found in organization {organization_id!r}")

    emails = store.get_raw_emails(organization_id, limit=config.reparse_limit)
    logger.info("Backfill for deal %s (%s): %d email(s)", deal.name, deal_id, len(emails))
    if not emails:
        return BackfillSummary(deal_id=deal_id, deal_name=deal.name, total=0, processed=0, matched=0)

    outcome = await _reparse(orchestrator, organization_id, emails, config, on_progress)

    matched = sum(1 for r in outcome.results if r.value.detected_deal_id == deal_id)
    errors = [f"{f.item.from_email}: {f.error}" for f in outcome.errors]
    for failure in outcome.errors:
        logger.error("Backfill: email %s failed: %s", failure.item.id, failure.error)

    logger.info(
        "Backfill complete: processed=%d matched=%d errors=%d skipped=%d",
        len(outcome.results),
        matched,
        len(errors),
        len(outcome.skipped),
    )
    return BackfillSummary(
        deal_id=deal_id,
        deal_name=deal.name,
        total=len(emails),
        processed=len(outcome.results),
        matched=matched,
        errors=errors[:MAX_REPORTED_ERRORS],
        timed_out=outcome.timed_out,
    )


async def reparse_all(
    orchestrator: ParsingOrchestrator,
    store: EmailStore,
    organization_id: str,
    config: PipelineConfig | None = None,
    on_progress: ProgressCallback | None = None,
) -> ReparseSummary:
    """Reparse emails last handled by the simple parser or that failed to parse."""
    config = config or PipelineConfig()
    emails = store.get_emails_for_reparse(organization_id, limit=config.reparse_limit)
    logger.info("Reparse-all: %d email(s) eligible", len(emails))
    if not emails:
        return ReparseSummary(total=0, processed=0, succeeded=0, failed=0)

    outcome = await _reparse(orchestrator, organization_id, emails, config, on_progress)

    errors = [f"Email {f.item.id}: {f.error}" for f in outcome.errors]
    for failure in outcome.errors:
        logger.error("Reparse: email %s failed: %s", failure.item.id, failure.error)

    return ReparseSummary(
        total=len(emails),
        processed=len(outcome.results),
        succeeded=len(outcome.results),
        failed=len(outcome.errors),
        errors=errors[:MAX_REPORTED_ERRORS],
        timed_out=outcome.timed_out,
    )
