"""Answered-question detection from team replies in the same thread.

When someone on the team replies to an LP straight from their own mailbox,
without going through the drafted-response flow, the question they answered
is still open in the parsed data. After each ingestion batch this pass finds
threads that a connected mailbox has written into and closes every open
question in them, not only the one the reply addresses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from lpmail.mail.types import RawEmail

if TYPE_CHECKING:
    from lpmail.storage.db import EmailStore

logger = logging.getLogger(__name__)


def team_thread_ids(emails: Iterable[RawEmail], connected_emails: Iterable[str]) -> set[str]:
    """Return thread ids of emails sent from any connected mailbox."""
    team = {address.strip().lower() for address in connected_emails}
    return {
        email.thread_id
        for email in emails
        if email.thread_id and email.from_email.strip().lower() in team
    }


def mark_thread_questions_answered(
    store: EmailStore,
    ingested_emails: Iterable[RawEmail],
    organization_id: str,
) -> int:
    """Mark open questions answered in threads the team has replied to.

    Returns the number of parsed rows updated; zero is a normal outcome.
    """
    thread_ids = team_thread_ids(
        ingested_emails, store.get_connected_account_emails(organization_id)
    )
    if not thread_ids:
        return 0

    email_ids = store.get_thread_email_ids(organization_id, thread_ids)
    if not email_ids:
        return 0

    count = store.mark_questions_answered(email_ids)
    if count > 0:
        logger.info(
            "Marked %d question(s) as answered across %d thread(s)",
            count,
            len(thread_ids),
        )
    return count
