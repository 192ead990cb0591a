"""Deterministic entity matching — which LP sent an email, which deal it is about."""

import re
from collections.abc import Iterable

from lpmail.processing.types import MATCHABLE_DEAL_STATUSES, ExtractedLP
from lpmail.storage.models import Deal, LPContact

#: Consumer mail providers; a sender on one of these tells us nothing about a firm.
COMMON_EMAIL_DOMAINS: frozenset[str] = frozenset(
    {
        "gmail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "icloud.com",
        "aol.com",
        "mail.com",
        "protonmail.com",
        "live.com",
        "msn.com",
    }
)


def match_lp(from_email: str, known_lps: Iterable[LPContact]) -> str | None:
    """Return the id of the first LP whose address equals from_email, ignoring case."""
    if not isinstance(from_email, str):
        raise TypeError(f"from_email must be a str, got {type(from_email).__name__}")
    wanted = from_email.strip().lower()
    for lp in known_lps:
        if lp.email.lower() == wanted:
            return lp.id
    return None


def build_search_pattern(name: str) -> re.Pattern[str]:
    """Compile a whole-word, case-insensitive pattern for a deal or company name.

    The name is escaped, so its punctuation must appear literally in the text:
    "Acme, Inc." matches "Acme, Inc." but not "Acme Inc". The name must not
    touch a word character on either side, so "Acme" does not match
    "AcmeCorp". For names that start and end with a word character this is
    the same as wrapping them in \\b; unlike \\b it still lets a name ending
    in punctuation ("Acme, Inc.") match before a space or end of text.
    Surrounding whitespace in the name is ignored.
    """
    return re.compile(rf"(?<!\w){re.escape(name.strip())}(?!\w)", re.IGNORECASE)


def match_deal(search_text: str, known_deals: Iterable[Deal]) -> str | None:
    """Return the id of the first draft/active deal named in search_text.

    A deal matches when its name, or its company name if it has one, occurs
    as a whole word. Deals are tried in the order given and the first hit
    wins; no attempt is made to rank several matching deals.
    """
    if not isinstance(search_text, str):
        raise TypeError(f"search_text must be a str, got {type(search_text).__name__}")
    for deal in known_deals:
        if deal.status not in MATCHABLE_DEAL_STATUSES:
            continue
        names = [deal.name]
        if deal.company_name:
            names.append(deal.company_name)
        if any(n.strip() and build_search_pattern(n).search(search_text) for n in names):
            return deal.id
    return None


def is_common_email_domain(domain: str) -> bool:
    return domain.lower() in COMMON_EMAIL_DOMAINS


def guess_firm(from_email: str) -> str | None:
    """Guess a firm name from the sender's domain: "jane@acmecap.com" → "Acmecap"."""
    _, _, domain = from_email.partition("@")
    if not domain or is_common_email_domain(domain):
        return None
    label = domain.split(".")[0]
    return label[:1].upper() + label[1:] if label else None


def extract_lp_from_headers(from_email: str, from_name: str | None) -> ExtractedLP:
    """Build a provisional LP identity from the From header alone."""
    if not isinstance(from_email, str):
        raise TypeError(f"from_email must be a str, got {type(from_email).__name__}")
    return ExtractedLP(
        name=from_name or from_email.split("@")[0],
        email=from_email,
        firm=guess_firm(from_email),
    )
