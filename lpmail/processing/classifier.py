"""Intent classifier — Haiku-powered classification of LP email."""

from __future__ import annotations

import logging
import os
from typing import Any

from anthropic import AsyncAnthropic
from anthropic.types import ToolUseBlock

from lpmail.mail.types import RawEmail
from lpmail.processing.prompts import CLASSIFICATION_TOOL, TOOL_NAME, build_messages
from lpmail.processing.types import Classification, Confidence, ExtractedLP, Intent
from lpmail.storage.models import Deal, LPContact

logger = logging.getLogger(__name__)

# Haiku: fast and cheap enough to run on every incoming email.
MODEL = "claude-haiku-4-5-20251001"
MODEL_VERSION = "claude-haiku-4.5-v1"
_MAX_TOKENS = 1024
_TEMPERATURE = 0.1


class ClassificationError(Exception):
    """Raised when Haiku fails to return a valid classification tool call."""


# ── Classifier ─────────────────────────────────────────────────────────────────


class IntentClassifier:
    """Sends a single email, plus LP/deal candidates, to Claude Haiku.

    Uses Anthropic's tool_use with a forced tool_choice so the response is
    always machine-readable — no JSON parsing, no markdown fences.

    Usage::

        classifier = IntentClassifier()
        classification = await classifier.classify(email, lps, deals)
    """

    model_version = MODEL_VERSION

    def __init__(self, api_key: str | None = None) -> None:
        self._client = AsyncAnthropic(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        )

    async def classify(
        self,
        email: RawEmail,
        lps: list[LPContact],
        deals: list[Deal],
        relationship: LPContact | None = None,
    ) -> Classification:
        """Classify a single email.

        Raises:
            ClassificationError: if Haiku does not return a well-formed tool call.
            anthropic.APIError: on transport, quota or server errors.
        """
        response = await self._client.messages.create(
            model=MODEL,
            max_tokens=_MAX_TOKENS,
            temperature=_TEMPERATURE,
            tools=[CLASSIFICATION_TOOL],  # type: ignore[list-item]
            tool_choice={"type": "tool", "name": TOOL_NAME},
            messages=build_messages(email, lps, deals, relationship),  # type: ignore[arg-type]
        )

        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == TOOL_NAME:
                return parse_classification(block.input)  # type: ignore[arg-type]

        raise ClassificationError(
            f"Haiku did not return a {TOOL_NAME} tool call "
            f"for email {email.id!r} (stop_reason={response.stop_reason!r})"
        )


# ── Parsing ────────────────────────────────────────────────────────────────────


def _optional_str(value: Any, name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ClassificationError(f"{name} must be a string or null, got {value!r}")
    return value.strip() or None


def _score(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClassificationError(f"confidence.{name} must be a number, got {value!r}")
    if not 0.0 <= float(value) <= 1.0:
        raise ClassificationError(f"confidence.{name} out of range: {value!r}")
    return float(value)


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict):
        raise ClassificationError(f"{key} must be an object, got {section!r}")
    return section


def parse_classification(data: dict[str, Any]) -> Classification:
    """Convert the raw tool-call input dict into a typed Classification.

    Raises:
        ClassificationError: on any missing or malformed field.
    """
    if not isinstance(data, dict):
        raise ClassificationError(f"tool input must be an object, got {type(data).__name__}")

    lp = _section(data, "lp")
    deal = _section(data, "deal")
    confidence = _section(data, "confidence")

    raw_intent = data.get("intent")
    try:
        intent = Intent(raw_intent) if raw_intent is not None else None
    except ValueError as exc:
        raise ClassificationError(f"unknown intent {raw_intent!r}") from exc

    amount = data.get("commitment_amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise ClassificationError(f"commitment_amount must be a number or null, got {amount!r}")

    questions = data.get("questions", [])
    if not isinstance(questions, list):
        raise ClassificationError(f"questions must be a list, got {questions!r}")

    return Classification(
        intent=intent,
        lp=ExtractedLP(
            name=_optional_str(lp.get("name"), "lp.name"),
            email=_optional_str(lp.get("email"), "lp.email"),
            firm=_optional_str(lp.get("firm"), "lp.firm"),
        ),
        matched_lp_id=_optional_str(lp.get("matched_lp_id"), "lp.matched_lp_id"),
        deal_name=_optional_str(deal.get("name"), "deal.name"),
        matched_deal_id=_optional_str(deal.get("matched_deal_id"), "deal.matched_deal_id"),
        commitment_amount=float(amount) if amount is not None else None,
        sentiment=_optional_str(data.get("sentiment"), "sentiment"),
        questions=[str(q).strip() for q in questions if str(q).strip()],
        has_wire_details=bool(data.get("has_wire_details", False)),
        confidence=Confidence(
            lp=_score(confidence.get("lp"), "lp"),
            deal=_score(confidence.get("deal"), "deal"),
            intent=_score(confidence.get("intent"), "intent"),
            amount=_score(confidence.get("amount", 0.0), "amount"),
        ),
        reasoning=str(data.get("reasoning") or ""),
    )
