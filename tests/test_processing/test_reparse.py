"""Tests for single-email reparse, per-deal backfill and reparse-all."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from lpmail.config import PipelineConfig
from lpmail.mail.types import RawEmail
from lpmail.processing.orchestrator import ParsingOrchestrator
from lpmail.processing.reparse import (
    MAX_REPORTED_ERRORS,
    DealNotFoundError,
    RawEmailNotFoundError,
    backfill_deal,
    parse_stored_email,
    reparse_all,
)
from lpmail.processing.types import ParsedEmail, ParsingMethod, ProcessingStatus
from lpmail.storage.db import EmailStore

_BASE = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_email(n: int, subject: str = "Hello", from_email: str = "lp@x.com") -> RawEmail:
    return RawEmail(
        id=f"email_{n}",
        organization_id="org_1",
        account_id="acct_1",
        message_id=f"<msg_{n}@mail>",
        from_email=from_email,
        received_at=_BASE + timedelta(minutes=n),
        subject=subject,
        body_text="Some text",
    )


def seed(store: EmailStore, *emails: RawEmail) -> None:
    for e in emails:
        store.insert_raw_email(e)


def fake_orchestrator(store: EmailStore, error_for: set[str]) -> MagicMock:
    """An orchestrator whose parse_email fails for the given email ids."""
    real = ParsingOrchestrator(store)
    orch = MagicMock()
    orch.fetch_parsing_context.side_effect = real.fetch_parsing_context

    async def parse_email(email, organization_id, context=None, **kwargs):  # noqa: ANN001
        if email.id in error_for:
            raise RuntimeError("classifier exploded")
        return await real.parse_email(email, organization_id, context, **kwargs)

    orch.parse_email = AsyncMock(side_effect=parse_email)
    return orch


# ── backfill_deal ──────────────────────────────────────────────────────────────


class TestBackfillDeal:
    async def test_counts_matches_for_deal(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, make_email(1, "Project Falcon docs"), make_email(2, "Lunch?"), make_email(3, "re: project falcon"))

        summary = await backfill_deal(ParsingOrchestrator(store), store, "org_1", deal_id)

        assert summary.deal_name == "Project Falcon"
        assert summary.total == 3
        assert summary.processed == 3
        assert summary.matched == 2
        assert summary.errors == []
        assert summary.timed_out is False
        assert store.get_parsed_email("email_1").detected_deal_id == deal_id  # type: ignore[union-attr]

    async def test_deal_created_after_parse_is_discovered(self, store: EmailStore) -> None:
        seed(store, make_email(1, "Project Falcon docs"))
        orch = ParsingOrchestrator(store)
        await orch.parse_email(make_email(1, "Project Falcon docs"), "org_1")
        assert store.get_parsed_email("email_1").detected_deal_id is None  # type: ignore[union-attr]

        deal_id = store.add_deal("org_1", "Project Falcon")
        summary = await backfill_deal(orch, store, "org_1", deal_id)

        assert summary.matched == 1
        assert store.get_parsed_email("email_1").detected_deal_id == deal_id  # type: ignore[union-attr]

    async def test_unknown_deal_raises(self, store: EmailStore) -> None:
        with pytest.raises(DealNotFoundError):
            await backfill_deal(ParsingOrchestrator(store), store, "org_1", "nope")

    async def test_deal_from_other_org_raises(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_2", "Project Falcon")
        with pytest.raises(DealNotFoundError):
            await backfill_deal(ParsingOrchestrator(store), store, "org_1", deal_id)

    async def test_no_emails(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        summary = await backfill_deal(ParsingOrchestrator(store), store, "org_1", deal_id)
        assert summary.total == 0
        assert summary.processed == 0

    async def test_item_errors_collected(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, make_email(1, "Project Falcon"), make_email(2, "Project Falcon", "bad@x.com"))
        orch = fake_orchestrator(store, error_for={"email_2"})

        summary = await backfill_deal(orch, store, "org_1", deal_id)

        assert summary.processed == 1
        assert summary.matched == 1
        assert summary.errors == ["bad@x.com: classifier exploded"]

    async def test_context_fetched_once(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, *(make_email(n) for n in range(7)))
        orch = fake_orchestrator(store, error_for=set())

        await backfill_deal(orch, store, "org_1", deal_id, PipelineConfig(batch_size=3))

        assert orch.fetch_parsing_context.call_count == 1
        assert orch.parse_email.call_count == 7

    async def test_limit_applies(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, *(make_email(n) for n in range(5)))

        summary = await backfill_deal(
            ParsingOrchestrator(store), store, "org_1", deal_id, PipelineConfig(reparse_limit=2)
        )
        assert summary.total == 2

    async def test_timeout_keeps_partial_progress(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, *(make_email(n) for n in range(4)))
        real = ParsingOrchestrator(store)
        orch = MagicMock()
        orch.fetch_parsing_context.side_effect = real.fetch_parsing_context

        async def slow_parse(email, organization_id, context=None, **kwargs):  # noqa: ANN001
            await asyncio.sleep(0.05)
            return await real.parse_email(email, organization_id, context)

        orch.parse_email = AsyncMock(side_effect=slow_parse)
        config = PipelineConfig(batch_size=2, bulk_timeout_seconds=0.01)

        summary = await backfill_deal(orch, store, "org_1", deal_id, config)

        assert summary.timed_out is True
        assert summary.processed == 2
        assert summary.total == 4


# ── reparse_all ────────────────────────────────────────────────────────────────


class TestReparseAll:
    async def test_selects_simple_and_failed_rows(self, store: EmailStore) -> None:
        simple, ai_ok, failed, unparsed = (make_email(n) for n in range(4))
        seed(store, simple, ai_ok, failed, unparsed)
        for email, method, status in (
            (simple, ParsingMethod.SIMPLE, ProcessingStatus.SUCCESS),
            (ai_ok, ParsingMethod.AI, ProcessingStatus.SUCCESS),
            (failed, ParsingMethod.AI, ProcessingStatus.FAILED),
        ):
            store.upsert_parsed_email(
                ParsedEmail(email_id=email.id, processing_status=status, parsing_method=method)
            )

        orch = fake_orchestrator(store, error_for=set())
        summary = await reparse_all(orch, store, "org_1")

        reparsed = {call.args[0].id for call in orch.parse_email.call_args_list}
        assert reparsed == {simple.id, failed.id}
        assert summary.total == 2
        assert summary.succeeded == 2
        assert summary.failed == 0

    async def test_nothing_to_reparse(self, store: EmailStore) -> None:
        summary = await reparse_all(ParsingOrchestrator(store), store, "org_1")
        assert summary.total == 0
        assert summary.timed_out is False

    async def test_errors_capped(self, store: EmailStore) -> None:
        emails = [make_email(n) for n in range(12)]
        seed(store, *emails)
        for e in emails:
            store.upsert_parsed_email(
                ParsedEmail(
                    email_id=e.id,
                    processing_status=ProcessingStatus.SUCCESS,
                    parsing_method=ParsingMethod.SIMPLE,
                )
            )
        orch = fake_orchestrator(store, error_for={e.id for e in emails})

        summary = await reparse_all(orch, store, "org_1")

        assert summary.failed == 12
        assert summary.processed == 0
        assert len(summary.errors) == MAX_REPORTED_ERRORS
        assert summary.errors[0].startswith("Email email_")

    async def test_processed_counts_only_successes(self, store: EmailStore) -> None:
        emails = [make_email(n) for n in range(3)]
        seed(store, *emails)
        for e in emails:
            store.upsert_parsed_email(
                ParsedEmail(
                    email_id=e.id,
                    processing_status=ProcessingStatus.SUCCESS,
                    parsing_method=ParsingMethod.SIMPLE,
                )
            )
        orch = fake_orchestrator(store, error_for={"email_1"})

        summary = await reparse_all(orch, store, "org_1")

        assert summary.total == 3
        assert summary.processed == 2
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.errors == ["Email email_1: classifier exploded"]


# ── parse_stored_email ─────────────────────────────────────────────────────────


class TestParseStoredEmail:
    async def test_parses_by_id(self, store: EmailStore) -> None:
        deal_id = store.add_deal("org_1", "Project Falcon")
        seed(store, make_email(1, "Project Falcon docs"))

        result = await parse_stored_email(ParsingOrchestrator(store), store, "email_1")

        assert result.detected_deal_id == deal_id
        assert store.get_parsed_email("email_1") is not None

    async def test_missing_email_raises(self, store: EmailStore) -> None:
        with pytest.raises(RawEmailNotFoundError):
            await parse_stored_email(ParsingOrchestrator(store), store, "ghost")

    async def test_other_org_raises(self, store: EmailStore) -> None:
        seed(store, make_email(1))
        with pytest.raises(RawEmailNotFoundError):
            await parse_stored_email(ParsingOrchestrator(store), store, "email_1", "org_2")
        assert store.get_parsed_email("email_1") is None
