"""Anthropic tool definition and prompt builder for LP email classification."""

from html.parser import HTMLParser
from typing import Any

from lpmail.mail.types import RawEmail
from lpmail.storage.models import Deal, LPContact

# Maximum characters of email body sent to Haiku — applied after HTML stripping,
# so this represents actual text content rather than raw markup.
BODY_CHAR_LIMIT = 6_000

TOOL_NAME = "record_lp_email_classification"


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Minimal HTMLParser subclass that collects visible text nodes."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing useful,
    the original string is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        result = stripper.get_text()
        # Stripping away >90% of the content means the input was not really HTML.
        return result if len(result) > len(text) * 0.1 else text
    except Exception:  # noqa: BLE001
        return text


# ── Tool definition ────────────────────────────────────────────────────────────

_CONFIDENCE_FIELD: dict[str, Any] = {"type": "number", "minimum": 0, "maximum": 1}

#: Anthropic tool schema for structured LP email classification.
CLASSIFICATION_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Record the classification of an email from a limited partner.",
    "input_schema": {
        "type": "object",
        "properties": {
            "lp": {
                "type": "object",
                "properties": {
                    "name": {"type": ["string", "null"]},
                    "firm": {"type": ["string", "null"]},
                    "email": {"type": ["string", "null"]},
                    "matched_lp_id": {
                        "type": ["string", "null"],
                        "description": "ID from the Known LPs list, or null.",
                    },
                },
                "required": ["name", "firm", "email", "matched_lp_id"],
            },
            "deal": {
                "type": "object",
                "properties": {
                    "name": {"type": ["string", "null"]},
                    "matched_deal_id": {
                        "type": ["string", "null"],
                        "description": "ID from the Known Deals list, or null.",
                    },
                },
                "required": ["name", "matched_deal_id"],
            },
            "intent": {
                "type": ["string", "null"],
                "enum": ["interested", "committed", "declined", "question", "neutral", None],
                "description": "null for auto-replies and system notifications.",
            },
            "commitment_amount": {
                "type": ["number", "null"],
                "description": "Amount in USD ('500K' → 500000, '$1M' → 1000000).",
            },
            "sentiment": {
                "type": ["string", "null"],
                "enum": ["positive", "neutral", "negative", "urgent", None],
            },
            "questions": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Direct questions the LP asks, verbatim or lightly paraphrased.",
            },
            "has_wire_details": {"type": "boolean"},
            "confidence": {
                "type": "object",
                "properties": {
                    "lp": _CONFIDENCE_FIELD,
                    "deal": _CONFIDENCE_FIELD,
                    "intent": _CONFIDENCE_FIELD,
                    "amount": _CONFIDENCE_FIELD,
                },
                "required": ["lp", "deal", "intent", "amount"],
            },
            "reasoning": {"type": "string", "description": "One or two sentences."},
        },
        "required": [
            "lp",
            "deal",
            "intent",
            "commitment_amount",
            "sentiment",
            "questions",
            "has_wire_details",
            "confidence",
            "reasoning",
        ],
    },
}

_INSTRUCTIONS = """\
You classify emails a venture fund manager receives from LPs (limited partners).
Call record_lp_email_classification with your findings.

Intent definitions:
- interested: positive signal, not explicitly committed
- committed: explicit commitment to invest
- declined: explicit pass
- question: primarily asking questions without a clear commitment
- neutral: none of the above
Match LPs by email first, then by name or firm. Match deals by name, allowing
variations ("Acme Series B" = "the Acme opportunity"). Only use IDs from the
lists below; if the LP or deal is not listed, return null for the ID but still
extract the name. For auto-replies, out-of-office and system notifications set
intent to null and every confidence to 0."""


# ── Prompt builder ─────────────────────────────────────────────────────────────


def _format_percent(value: float | None) -> str:
    return f"{value:g}%" if value is not None else "standard"


def _deal_lines(deals: list[Deal]) -> str:
    if not deals:
        return "No deals in database yet"
    lines = []
    for d in deals:
        company = f" ({d.company_name})" if d.company_name else ""
        terms = ""
        if d.fee_percent is not None or d.carry_percent is not None:
            terms = f" fee {_format_percent(d.fee_percent)}, carry {_format_percent(d.carry_percent)}"
        lines.append(f"- {d.name}{company} [{d.status}]{terms} [ID: {d.id}]")
    return "\n".join(lines)


def _lp_lines(lps: list[LPContact]) -> str:
    if not lps:
        return "No LPs in database yet"
    return "\n".join(
        f"- {lp.name} ({lp.email})" + (f" - {lp.firm}" if lp.firm else "") + f" [ID: {lp.id}]"
        for lp in lps
    )


def _relationship_lines(lp: LPContact) -> str:
    return (
        f"The sender is known LP {lp.name}"
        + (f" of {lp.firm}" if lp.firm else "")
        + f". Special terms: fee {_format_percent(lp.special_fee_percent)}, "
        f"carry {_format_percent(lp.special_carry_percent)}."
    )


def email_body_text(email: RawEmail) -> str:
    """Plain-text body, falling back to the stripped HTML part."""
    if email.body_text:
        return email.body_text
    if email.body_html:
        return strip_html(email.body_html)
    return ""


def build_messages(
    email: RawEmail,
    lps: list[LPContact],
    deals: list[Deal],
    relationship: LPContact | None = None,
) -> list[dict[str, str]]:
    """Build the Anthropic messages list for classifying a single email.

    HTML is stripped from the body before truncation so the character limit
    applies to actual text content, not markup.
    """
    plain_body = email_body_text(email)
    body_preview = plain_body[:BODY_CHAR_LIMIT]
    truncated = len(plain_body) > BODY_CHAR_LIMIT

    sections = [
        _INSTRUCTIONS,
        "## Known Deals\n" + _deal_lines(deals),
        "## Known LPs\n" + _lp_lines(lps),
    ]
    if relationship is not None:
        sections.append("## Relationship\n" + _relationship_lines(relationship))

    content_lines = [
        f"From: {email.from_email}",
        f"From Name: {email.from_name or 'Unknown'}",
        f"Subject: {email.subject or '(no subject)'}",
        f"Date: {email.received_at.isoformat()}",
        "",
        body_preview or "(empty body)",
    ]
    if truncated:
        content_lines.append("\n[… email truncated …]")
    sections.append("## Email\n" + "\n".join(content_lines))

    return [{"role": "user", "content": "\n\n".join(sections)}]
