"""Parsing orchestrator — AI classification with a deterministic fallback.

Every parsing attempt leaves exactly one parsed row for the email: when the
classifier is missing, times out, errors or returns garbage, the simple
parser's result is stored instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from lpmail.config import PipelineConfig
from lpmail.mail.types import RawEmail
from lpmail.processing.matcher import extract_lp_from_headers, match_deal, match_lp
from lpmail.processing.simple_parser import SimpleParser
from lpmail.processing.types import (
    SIMPLE_DEAL_MATCHED,
    SIMPLE_LP_MATCHED,
    Classification,
    Confidence,
    ExtractedLP,
    Intent,
    ParsedEmail,
    ParseResult,
    ParsingContext,
    ParsingMethod,
    ProcessingStatus,
)
from lpmail.storage.db import StorageError
from lpmail.storage.models import Deal, LPContact

if TYPE_CHECKING:
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


# ── Classifier interface ───────────────────────────────────────────────────────


@runtime_checkable
class Classifier(Protocol):
    """Interface for the remote intent classifier."""

    model_version: str

    async def classify(
        self,
        email: RawEmail,
        lps: list[LPContact],
        deals: list[Deal],
        relationship: LPContact | None = None,
    ) -> Classification:
        """Classify one email. May raise anything; callers fall back on failure."""
        ...


# ── Orchestrator ───────────────────────────────────────────────────────────────


class ParsingOrchestrator:
    """Decides per email between the AI classifier and the simple parser.

    All collaborators are passed in, so tests can substitute any of them.

    Usage::

        orchestrator = ParsingOrchestrator(store, classifier=IntentClassifier())
        context = orchestrator.fetch_parsing_context(org_id)
        result = await orchestrator.parse_email(email, org_id, context)
    """

    def __init__(
        self,
        store: EmailStore,
        classifier: Classifier | None = None,
        config: PipelineConfig | None = None,
        simple_parser: SimpleParser | None = None,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._config = config or PipelineConfig()
        self._simple = simple_parser or SimpleParser(
            store,
            lp_limit=self._config.lp_limit,
            deal_limit=self._config.deal_limit,
            forward_only_last_interaction=self._config.forward_only_last_interaction,
        )

    @property
    def ai_available(self) -> bool:
        return self._classifier is not None

    def fetch_parsing_context(self, organization_id: str) -> ParsingContext:
        """Load LP and deal candidates once, for reuse across many emails."""
        return self._simple.fetch_context(organization_id)

    async def parse_email(
        self,
        email: RawEmail,
        organization_id: str,
        context: ParsingContext | None = None,
        *,
        use_ai: bool = True,
    ) -> ParseResult:
        """Parse one email and upsert its parsed row.

        Classification failures never escape: they fall back to the simple
        parser. Storage failures do escape, as StorageError, so bulk callers
        can count them.
        """
        if context is None:
            context = self.fetch_parsing_context(organization_id)

        if not use_ai or self._classifier is None:
            return await self._parse_simple(email, organization_id, context, fell_back=False)

        try:
            sender_lp = _find_lp(match_lp(email.from_email, context.lps), context.lps)
            classification = await asyncio.wait_for(
                self._classifier.classify(email, context.lps, context.deals, sender_lp),
                timeout=self._config.classify_timeout_seconds,
            )
            parsed, result = self._build_ai_parse(email, context, classification)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "AI parsing failed for email %s, using simple parser: %s: %s",
                email.id,
                type(exc).__name__,
                exc,
            )
            return await self._parse_simple(email, organization_id, context, fell_back=True)

        self._store.upsert_parsed_email(parsed)
        if result.detected_lp_id:
            self._simple.record_interaction(result.detected_lp_id, email)

        logger.info(
            "email=%s method=ai intent=%s lp=%s deal=%s review=%s",
            email.id,
            result.intent.value if result.intent else "n/a",
            result.detected_lp_id,
            result.detected_deal_id,
            parsed.entities.get("needs_review"),
        )
        return result

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _parse_simple(
        self,
        email: RawEmail,
        organization_id: str,
        context: ParsingContext,
        fell_back: bool,
    ) -> ParseResult:
        try:
            simple = await self._simple.parse(
                email, organization_id, context, raise_on_write_error=True
            )
        except StorageError:
            raise
        except Exception as exc:
            self._record_failure(email, exc)
            raise

        return ParseResult(
            email_id=email.id,
            detected_lp_id=simple.detected_lp_id,
            detected_deal_id=simple.detected_deal_id,
            intent=Intent.NEUTRAL,
            parsing_method=ParsingMethod.SIMPLE,
            lp_matched=simple.lp_matched,
            extracted_lp=simple.extracted_lp,
            fell_back=fell_back,
        )

    def _build_ai_parse(
        self,
        email: RawEmail,
        context: ParsingContext,
        classification: Classification,
    ) -> tuple[ParsedEmail, ParseResult]:
        """Merge the model's answer with deterministic matching.

        Model ids are trusted only if they name a candidate. When the model
        finds no LP or deal, the deterministic match is used, so the AI path
        never detects less than the simple parser would.
        """
        c = classification
        lp_ids = {lp.id for lp in context.lps}
        deal_ids = {d.id for d in context.deals}

        lp_id = c.matched_lp_id if c.matched_lp_id in lp_ids else None
        lp_score = c.confidence.lp
        if lp_id is None:
            lp_id = match_lp(email.from_email, context.lps)
            if lp_id is not None:
                lp_score = max(lp_score, SIMPLE_LP_MATCHED)

        deal_id = c.matched_deal_id if c.matched_deal_id in deal_ids else None
        deal_score = c.confidence.deal
        if deal_id is None:
            deal_id = match_deal(email.search_text, context.deals)
            if deal_id is not None:
                deal_score = max(deal_score, SIMPLE_DEAL_MATCHED)

        intent = c.intent or Intent.NEUTRAL
        confidence = Confidence(
            lp=lp_score,
            deal=deal_score,
            intent=c.confidence.intent,
            amount=c.confidence.amount,
        )

        header_lp = extract_lp_from_headers(email.from_email, email.from_name)
        extracted = ExtractedLP(
            name=c.lp.name or header_lp.name,
            email=c.lp.email or header_lp.email,
            firm=c.lp.firm or header_lp.firm,
        )

        parsed = ParsedEmail(
            email_id=email.id,
            processing_status=ProcessingStatus.SUCCESS,
            parsing_method=ParsingMethod.AI,
            intent=intent,
            detected_lp_id=lp_id,
            detected_deal_id=deal_id,
            model_version=getattr(self._classifier, "model_version", None),
            entities={
                "lp": extracted.to_dict(),
                "deal": {"name": c.deal_name, "matched_deal_id": deal_id},
                "amount": c.commitment_amount,
                "questions": list(c.questions) if intent == Intent.QUESTION else [],
                "sentiment": c.sentiment,
                "has_wire_details": c.has_wire_details,
                "reasoning": c.reasoning,
                "needs_review": confidence.mean < self._config.confidence_threshold,
            },
            confidence=confidence,
        )
        result = ParseResult(
            email_id=email.id,
            detected_lp_id=lp_id,
            detected_deal_id=deal_id,
            intent=intent,
            parsing_method=ParsingMethod.AI,
            lp_matched=lp_id is not None,
            extracted_lp=extracted,
        )
        return parsed, result

    def _record_failure(self, email: RawEmail, exc: Exception) -> None:
        """Best-effort failed row, so reparse-all can pick the email up later."""
        failed = ParsedEmail(
            email_id=email.id,
            processing_status=ProcessingStatus.FAILED,
            parsing_method=ParsingMethod.SIMPLE,
            error_message=f"{type(exc).__name__}: {exc}",
        )
        try:
            self._store.upsert_parsed_email(failed)
        except StorageError as write_exc:
            logger.error("Could not record parse failure for email %s: %s", email.id, write_exc)


def _find_lp(lp_id: str | None, lps: list[LPContact]) -> LPContact | None:
    if lp_id is None:
        return None
    return next((lp for lp in lps if lp.id == lp_id), None)
