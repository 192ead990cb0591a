"""Deterministic email parser — LP and deal matching with no network calls.

Used whenever the AI classifier is unavailable or fails, and as a cheap mode
for bulk backfills. It never judges intent: every row it writes is neutral.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lpmail.mail.types import RawEmail
from lpmail.processing.matcher import extract_lp_from_headers, match_deal, match_lp
from lpmail.processing.types import (
    Intent,
    ParsedEmail,
    ParsingContext,
    ParsingMethod,
    ProcessingStatus,
    SimpleParseResult,
    simple_confidence,
)
from lpmail.storage.db import StorageError
from lpmail.storage.models import Deal, LPContact

if TYPE_CHECKING:
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


def build_simple_parse(
    email: RawEmail,
    lps: list[LPContact],
    deals: list[Deal],
) -> tuple[ParsedEmail, SimpleParseResult]:
    """Compute the deterministic parse of an email without touching storage."""
    extracted = extract_lp_from_headers(email.from_email, email.from_name)
    lp_id = match_lp(email.from_email, lps)
    deal_id = match_deal(email.search_text, deals)

    parsed = ParsedEmail(
        email_id=email.id,
        processing_status=ProcessingStatus.SUCCESS,
        parsing_method=ParsingMethod.SIMPLE,
        intent=Intent.NEUTRAL,
        detected_lp_id=lp_id,
        detected_deal_id=deal_id,
        entities={"lp": extracted.to_dict(), "parsing_method": "regex"},
        confidence=simple_confidence(lp_id is not None, deal_id is not None),
    )
    result = SimpleParseResult(
        detected_lp_id=lp_id,
        detected_deal_id=deal_id,
        lp_matched=lp_id is not None,
        extracted_lp=extracted,
    )
    return parsed, result


class SimpleParser:
    """Parses one email at a time and persists the result.

    Storage failures are logged rather than raised, because a parsed row is
    supplementary data. Repeated failures are not hidden, though: the
    max_consecutive_write_failures-th failure in a row raises StorageError
    instead of being logged. Callers that must account for every write
    (bulk reparse) pass raise_on_write_error=True.

    Usage::

        parser = SimpleParser(store)
        result = await parser.parse(email, organization_id)
    """

    def __init__(
        self,
        store: EmailStore,
        *,
        lp_limit: int = 500,
        deal_limit: int = 100,
        forward_only_last_interaction: bool = True,
        max_consecutive_write_failures: int = 3,
    ) -> None:
        self._store = store
        self._lp_limit = lp_limit
        self._deal_limit = deal_limit
        self._forward_only = forward_only_last_interaction
        self._max_write_failures = max_consecutive_write_failures
        self._write_failures = 0

    def fetch_context(self, organization_id: str) -> ParsingContext:
        """Load the organization's LPs and draft/active deals."""
        return ParsingContext(
            organization_id=organization_id,
            lps=self._store.get_lp_contacts(organization_id, limit=self._lp_limit),
            deals=self._store.get_deals(organization_id, limit=self._deal_limit),
        )

    async def parse(
        self,
        email: RawEmail,
        organization_id: str,
        context: ParsingContext | None = None,
        *,
        raise_on_write_error: bool = False,
    ) -> SimpleParseResult:
        """Match the email to an LP and deal, store a neutral parsed row."""
        if context is None:
            context = self.fetch_context(organization_id)
        parsed, result = build_simple_parse(email, context.lps, context.deals)

        saved = False
        try:
            self._store.upsert_parsed_email(parsed)
        except StorageError as exc:
            self._write_failures += 1
            logger.error(
                "Simple parser failed to save email %s (%d consecutive failure(s)): %s",
                email.id,
                self._write_failures,
                exc,
            )
            if raise_on_write_error or self._write_failures >= self._max_write_failures:
                raise
        else:
            saved = True
            self._write_failures = 0

        if saved and result.detected_lp_id:
            self.record_interaction(result.detected_lp_id, email)

        logger.debug(
            "Simple parse email=%s lp=%s deal=%s",
            email.id,
            result.detected_lp_id,
            result.detected_deal_id,
        )
        return result

    def record_interaction(self, lp_id: str, email: RawEmail) -> None:
        """Bump the LP's last-interaction time to the email's received time."""
        try:
            self._store.update_lp_last_interaction(
                lp_id, email.received_at, forward_only=self._forward_only
            )
        except StorageError as exc:
            logger.error("Failed to update last interaction for LP %s: %s", lp_id, exc)
