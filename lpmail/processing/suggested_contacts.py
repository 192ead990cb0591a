"""Suggested contacts — unknown senders offered for promotion to LP contacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lpmail.mail.types import RawEmail
from lpmail.processing.types import ExtractedLP
from lpmail.storage.db import StorageError

if TYPE_CHECKING:
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuggestionOutcome:
    added: bool
    reason: str | None = None  # no_email | already_lp | dismissed | error


def record_suggested_contact(
    store: EmailStore,
    organization_id: str,
    email: RawEmail,
    extracted_lp: ExtractedLP | None = None,
) -> SuggestionOutcome:
    """Suggest the email's sender as a contact unless they are known or dismissed.

    The display name prefers the parser's extracted name, then the From
    header name, then the address itself. Storage errors are logged and
    reported as reason "error".
    """
    address = (email.from_email or "").strip()
    if not address:
        return SuggestionOutcome(added=False, reason="no_email")

    try:
        if store.get_lp_by_email(organization_id, address) is not None:
            return SuggestionOutcome(added=False, reason="already_lp")

        existing = store.get_suggested_contact(organization_id, address)
        if existing is not None and existing.is_dismissed:
            return SuggestionOutcome(added=False, reason="dismissed")

        name = (extracted_lp.name if extracted_lp else None) or email.from_name or address
        firm = extracted_lp.firm if extracted_lp else None
        store.upsert_suggested_contact(
            organization_id, address, name, firm=firm, source_email_id=email.id
        )
    except StorageError as exc:
        logger.error("Error upserting suggested contact %s: %s", address, exc)
        return SuggestionOutcome(added=False, reason="error")

    logger.debug("Suggested contact %s from email %s", address, email.id)
    return SuggestionOutcome(added=True)
