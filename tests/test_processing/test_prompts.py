"""Tests for the classification prompt builder and tool schema."""

from datetime import datetime, timezone

from lpmail.mail.types import RawEmail
from lpmail.processing.prompts import (
    BODY_CHAR_LIMIT,
    CLASSIFICATION_TOOL,
    TOOL_NAME,
    build_messages,
    email_body_text,
    strip_html,
)
from lpmail.storage.models import Deal, LPContact


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_email(**kwargs: object) -> RawEmail:
    defaults: dict[str, object] = dict(
        id="email_1",
        organization_id="org_1",
        account_id="acct_1",
        message_id="<msg_1@mail>",
        from_email="jane@acmecap.com",
        from_name="Jane Doe",
        received_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
        subject="Re: Project Falcon",
        body_text="I'd like to commit $250k",
    )
    return RawEmail(**{**defaults, **kwargs})  # type: ignore[arg-type]


LP = LPContact(
    id="lp_1",
    organization_id="org_1",
    name="Jane Doe",
    email="jane@acmecap.com",
    firm="Acme Capital",
    special_fee_percent=1.5,
)
DEAL = Deal(
    id="deal_1",
    organization_id="org_1",
    name="Project Falcon",
    company_name="Falcon Robotics",
    status="active",
    fee_percent=2.0,
    carry_percent=20.0,
)


def content(*args: object, **kwargs: object) -> str:
    msgs = build_messages(*args, **kwargs)  # type: ignore[arg-type]
    return msgs[0]["content"]


# ── build_messages ──────────────────────────────────────────────────────────────


class TestBuildMessages:
    def test_returns_single_user_message(self) -> None:
        msgs = build_messages(make_email(), [], [])
        assert len(msgs) == 1
        assert msgs[0]["role"] == "user"

    def test_contains_sender_subject_and_body(self) -> None:
        text = content(make_email(), [], [])
        assert "jane@acmecap.com" in text
        assert "Re: Project Falcon" in text
        assert "I'd like to commit $250k" in text

    def test_lists_candidates_with_ids(self) -> None:
        text = content(make_email(), [LP], [DEAL])
        assert "[ID: lp_1]" in text
        assert "[ID: deal_1]" in text
        assert "Falcon Robotics" in text

    def test_deal_terms_included(self) -> None:
        text = content(make_email(), [], [DEAL])
        assert "fee 2%" in text
        assert "carry 20%" in text

    def test_empty_candidate_lists(self) -> None:
        text = content(make_email(), [], [])
        assert "No deals in database yet" in text
        assert "No LPs in database yet" in text

    def test_relationship_section_only_when_given(self) -> None:
        assert "## Relationship" not in content(make_email(), [LP], [])
        text = content(make_email(), [LP], [], LP)
        assert "## Relationship" in text
        assert "fee 1.5%" in text
        assert "carry standard" in text

    def test_body_truncated_at_limit(self) -> None:
        text = content(make_email(body_text="x" * (BODY_CHAR_LIMIT + 100)), [], [])
        assert "x" * BODY_CHAR_LIMIT in text
        assert "x" * (BODY_CHAR_LIMIT + 1) not in text
        assert "truncated" in text

    def test_no_truncation_marker_under_limit(self) -> None:
        text = content(make_email(body_text="x" * (BODY_CHAR_LIMIT - 1)), [], [])
        assert "truncated" not in text

    def test_instruction_names_the_tool(self) -> None:
        assert TOOL_NAME in content(make_email(), [], [])


class TestEmailBodyText:
    def test_prefers_plain_text(self) -> None:
        email = make_email(body_text="plain", body_html="<p>html</p>")
        assert email_body_text(email) == "plain"

    def test_falls_back_to_stripped_html(self) -> None:
        email = make_email(body_text=None, body_html="<p>Count me in for Falcon</p>")
        assert email_body_text(email) == "Count me in for Falcon"

    def test_empty_when_no_body(self) -> None:
        assert email_body_text(make_email(body_text=None)) == ""


class TestStripHtml:
    def test_plain_text_unchanged(self) -> None:
        assert strip_html("no markup here") == "no markup here"

    def test_tags_removed(self) -> None:
        assert strip_html("<div><b>Hello</b> <i>there</i></div>") == "Hello there"


class TestClassificationTool:
    def test_tool_name(self) -> None:
        assert CLASSIFICATION_TOOL["name"] == TOOL_NAME

    def test_intent_enum_allows_null(self) -> None:
        intent = CLASSIFICATION_TOOL["input_schema"]["properties"]["intent"]
        assert None in intent["enum"]
        assert "neutral" in intent["enum"]
