"""Types for the email classification and entity-resolution pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lpmail.storage.models import Deal, LPContact


class Intent(str, Enum):
    """What the sender wants, relative to a deal."""

    INTERESTED = "interested"
    COMMITTED = "committed"
    DECLINED = "declined"
    QUESTION = "question"
    NEUTRAL = "neutral"


class ProcessingStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ParsingMethod(str, Enum):
    """Which classifier produced a parsed row."""

    AI = "ai"
    SIMPLE = "simple-regex-v1"


#: Deal statuses the matchers consider. Closed and cancelled deals never match.
MATCHABLE_DEAL_STATUSES: tuple[str, ...] = ("draft", "active")


# ── Confidence ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Confidence:
    """Per-field confidence scores, each in [0, 1]."""

    lp: float = 0.0
    deal: float = 0.0
    intent: float = 0.0
    amount: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "lp": self.lp,
            "deal": self.deal,
            "intent": self.intent,
            "amount": self.amount,
        }

    @property
    def mean(self) -> float:
        """Average of the lp, deal and intent scores (amount is often absent)."""
        return (self.lp + self.deal + self.intent) / 3


# The deterministic parser does not assess confidence; these are fixed markers.
SIMPLE_LP_MATCHED = 1.0
SIMPLE_LP_UNMATCHED = 0.5
SIMPLE_DEAL_MATCHED = 0.8
SIMPLE_DEAL_UNMATCHED = 0.0


def simple_confidence(lp_matched: bool, deal_matched: bool) -> Confidence:
    """Return the fixed confidence scores used by the deterministic parser."""
    return Confidence(
        lp=SIMPLE_LP_MATCHED if lp_matched else SIMPLE_LP_UNMATCHED,
        deal=SIMPLE_DEAL_MATCHED if deal_matched else SIMPLE_DEAL_UNMATCHED,
        intent=0.0,
        amount=0.0,
    )


# ── Entities ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractedLP:
    """Best guess at who the sender is, taken from headers or the model."""

    name: str | None
    email: str | None
    firm: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"name": self.name, "email": self.email, "firm": self.firm}


# ── Parsed record ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParsedEmail:
    """One parse outcome for one raw email — the upsert payload.

    Written by the simple parser and the orchestrator, keyed on email_id.
    Writing a second ParsedEmail for the same email_id replaces the first.
    """

    email_id: str
    processing_status: ProcessingStatus
    parsing_method: ParsingMethod
    intent: Intent | None = None
    detected_lp_id: str | None = None
    detected_deal_id: str | None = None
    model_version: str | None = None
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: Confidence = field(default_factory=Confidence)
    error_message: str | None = None


# ── Results ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SimpleParseResult:
    """What the deterministic parser tells its caller.

    lp_created is always False: LP records are only ever created by an
    explicit user action, never by parsing.
    """

    detected_lp_id: str | None
    detected_deal_id: str | None
    lp_matched: bool
    extracted_lp: ExtractedLP
    lp_created: bool = False


@dataclass(frozen=True)
class ParseResult:
    """What the orchestrator tells its caller about one email."""

    email_id: str
    detected_lp_id: str | None
    detected_deal_id: str | None
    intent: Intent | None
    parsing_method: ParsingMethod
    lp_matched: bool
    extracted_lp: ExtractedLP
    fell_back: bool = False
    lp_created: bool = False


@dataclass(frozen=True)
class Classification:
    """Structured output of the intent classifier for a single email."""

    intent: Intent | None
    lp: ExtractedLP
    matched_lp_id: str | None = None
    deal_name: str | None = None
    matched_deal_id: str | None = None
    commitment_amount: float | None = None
    sentiment: str | None = None
    questions: list[str] = field(default_factory=list)
    has_wire_details: bool = False
    confidence: Confidence = field(default_factory=Confidence)
    reasoning: str = ""


# ── Context ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParsingContext:
    """Candidate LPs and deals for one organization.

    Fetched once before a bulk run so each email does not refetch them.
    """

    organization_id: str
    lps: list[LPContact] = field(default_factory=list)
    deals: list[Deal] = field(default_factory=list)
