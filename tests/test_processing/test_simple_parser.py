"""Tests for the deterministic parser — real SQLite store, no network."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from lpmail.mail.types import RawEmail
from lpmail.processing.simple_parser import SimpleParser, build_simple_parse
from lpmail.processing.types import Intent, ParsingContext, ParsingMethod, ProcessingStatus
from lpmail.storage.db import EmailStore, StorageError, to_iso
from lpmail.storage.models import LPContact


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_email(**kwargs: object) -> RawEmail:
    defaults: dict[str, object] = dict(
        id="email_1",
        organization_id="org_1",
        account_id="acct_1",
        message_id="<msg_1@mail>",
        from_email="Jane@AcmeCap.com",
        from_name="Jane Doe",
        received_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
        thread_id="thread_1",
        subject="Re: Project Falcon",
        body_text="I'd like to commit $250k",
    )
    return RawEmail(**{**defaults, **kwargs})  # type: ignore[arg-type]


def seed(store: EmailStore, email: RawEmail) -> RawEmail:
    store.insert_raw_email(email)
    return email


@pytest.fixture
def lp_id(store: EmailStore) -> str:
    return store.add_lp_contact("org_1", "Jane Doe", "jane@acmecap.com", firm="Acme Capital")


@pytest.fixture
def deal_id(store: EmailStore) -> str:
    return store.add_deal("org_1", "Project Falcon", status="active")


# ── build_simple_parse ─────────────────────────────────────────────────────────


class TestBuildSimpleParse:
    def test_unknown_sender_gets_low_lp_confidence(self) -> None:
        email = make_email(from_email="x@unknownvc.com", from_name=None, subject="Hello", body_text="Hi")
        parsed, result = build_simple_parse(email, [], [])

        assert parsed.detected_lp_id is None
        assert parsed.detected_deal_id is None
        assert parsed.confidence.to_dict() == {"lp": 0.5, "deal": 0.0, "intent": 0.0, "amount": 0.0}
        assert result.extracted_lp.firm == "Unknownvc"
        assert result.lp_created is False

    def test_always_neutral_and_successful(self) -> None:
        parsed, _ = build_simple_parse(make_email(), [], [])
        assert parsed.intent == Intent.NEUTRAL
        assert parsed.processing_status == ProcessingStatus.SUCCESS
        assert parsed.parsing_method == ParsingMethod.SIMPLE
        assert parsed.entities["parsing_method"] == "regex"

    def test_entities_carry_header_identity(self) -> None:
        parsed, _ = build_simple_parse(make_email(), [], [])
        assert parsed.entities["lp"] == {
            "name": "Jane Doe",
            "email": "Jane@AcmeCap.com",
            "firm": "AcmeCap",
        }


# ── SimpleParser.parse ─────────────────────────────────────────────────────────


class TestSimpleParserParse:
    async def test_known_lp_and_deal_detected(
        self, store: EmailStore, lp_id: str, deal_id: str
    ) -> None:
        email = seed(store, make_email())
        result = await SimpleParser(store).parse(email, "org_1")

        assert result.detected_lp_id == lp_id
        assert result.detected_deal_id == deal_id
        assert result.lp_matched is True

        row = store.get_parsed_email(email.id)
        assert row is not None
        assert row.intent == "neutral"
        assert row.parsing_method == "simple-regex-v1"
        assert row.processing_status == "success"
        assert row.confidence_scores == {"lp": 1.0, "deal": 0.8, "intent": 0.0, "amount": 0.0}

    async def test_reparse_keeps_one_row(self, store: EmailStore, lp_id: str) -> None:
        email = seed(store, make_email())
        parser = SimpleParser(store)
        await parser.parse(email, "org_1")
        await parser.parse(email, "org_1")

        count = store._conn.execute(
            "SELECT COUNT(*) FROM parsed_emails WHERE email_id = ?", (email.id,)
        ).fetchone()[0]
        assert count == 1

    async def test_unknown_sender_creates_no_lp(self, store: EmailStore) -> None:
        email = seed(store, make_email(from_email="x@unknownvc.com"))
        result = await SimpleParser(store).parse(email, "org_1")

        assert result.lp_matched is False
        assert result.lp_created is False
        assert store.get_lp_contacts("org_1") == []

    async def test_matched_lp_last_interaction_updated(self, store: EmailStore, lp_id: str) -> None:
        email = seed(store, make_email())
        await SimpleParser(store).parse(email, "org_1")

        lp = store.get_lp_contact(lp_id)
        assert lp is not None
        assert lp.last_interaction_at == to_iso(email.received_at)

    async def test_older_email_does_not_regress_last_interaction(
        self, store: EmailStore, lp_id: str
    ) -> None:
        newer = seed(store, make_email())
        older = seed(
            store,
            make_email(
                id="email_0",
                message_id="<msg_0@mail>",
                received_at=datetime(2026, 1, 5, tzinfo=timezone.utc),
            ),
        )
        parser = SimpleParser(store)
        await parser.parse(newer, "org_1")
        await parser.parse(older, "org_1")

        lp = store.get_lp_contact(lp_id)
        assert lp is not None
        assert lp.last_interaction_at == to_iso(newer.received_at)

    async def test_overwrite_mode_follows_last_parsed(self, store: EmailStore, lp_id: str) -> None:
        newer = seed(store, make_email())
        older = seed(
            store,
            make_email(
                id="email_0",
                message_id="<msg_0@mail>",
                received_at=datetime(2026, 1, 5, tzinfo=timezone.utc),
            ),
        )
        parser = SimpleParser(store, forward_only_last_interaction=False)
        await parser.parse(newer, "org_1")
        await parser.parse(older, "org_1")

        lp = store.get_lp_contact(lp_id)
        assert lp is not None
        assert lp.last_interaction_at == to_iso(older.received_at)

    async def test_prefetched_context_is_used(self) -> None:
        store = MagicMock()
        lp = LPContact(id="lp_9", organization_id="org_1", name="Jane", email="jane@acmecap.com")
        context = ParsingContext(organization_id="org_1", lps=[lp], deals=[])

        result = await SimpleParser(store).parse(make_email(), "org_1", context)

        assert result.detected_lp_id == "lp_9"
        store.get_lp_contacts.assert_not_called()
        store.get_deals.assert_not_called()


class TestSimpleParserWriteFailures:
    def _failing_store(self) -> MagicMock:
        store = MagicMock()
        store.upsert_parsed_email.side_effect = StorageError("disk full")
        return store

    def _context(self) -> ParsingContext:
        return ParsingContext(organization_id="org_1")

    async def test_single_failure_is_logged_not_raised(self) -> None:
        parser = SimpleParser(self._failing_store())
        result = await parser.parse(make_email(), "org_1", self._context())
        assert result.detected_lp_id is None

    async def test_failed_write_skips_last_interaction(self) -> None:
        store = self._failing_store()
        context = ParsingContext(
            organization_id="org_1",
            lps=[LPContact(id="lp_1", organization_id="org_1", name="Jane Doe", email="jane@acmecap.com")],
        )
        parser = SimpleParser(store)

        result = await parser.parse(make_email(), "org_1", context)

        assert result.detected_lp_id == "lp_1"
        store.update_lp_last_interaction.assert_not_called()

    async def test_raise_on_write_error(self) -> None:
        parser = SimpleParser(self._failing_store())
        with pytest.raises(StorageError):
            await parser.parse(make_email(), "org_1", self._context(), raise_on_write_error=True)

    async def test_consecutive_failures_escalate(self) -> None:
        parser = SimpleParser(self._failing_store(), max_consecutive_write_failures=3)
        await parser.parse(make_email(), "org_1", self._context())
        await parser.parse(make_email(), "org_1", self._context())
        with pytest.raises(StorageError):
            await parser.parse(make_email(), "org_1", self._context())

    async def test_success_resets_failure_count(self) -> None:
        store = self._failing_store()
        parser = SimpleParser(store, max_consecutive_write_failures=2)
        await parser.parse(make_email(), "org_1", self._context())

        store.upsert_parsed_email.side_effect = None
        await parser.parse(make_email(), "org_1", self._context())

        store.upsert_parsed_email.side_effect = StorageError("disk full")
        result = await parser.parse(make_email(), "org_1", self._context())
        assert result.lp_matched is False
