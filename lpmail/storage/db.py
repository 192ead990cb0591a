"""SQLite email store — raw emails, parsed results, LPs, deals, and accounts."""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lpmail.mail.types import RawEmail
from lpmail.processing.types import MATCHABLE_DEAL_STATUSES, ParsedEmail, ParsingMethod, ProcessingStatus
from lpmail.storage.models import (
    ALL_TABLES,
    Deal,
    LPContact,
    ParsedEmailRow,
    SuggestedContactRow,
)

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/lpmail.db")

# Keeps IN (...) lists well under SQLite's bound-parameter limit.
_IN_CHUNK = 500


class StorageError(Exception):
    """Raised when a write to the email store fails."""


def to_iso(value: datetime) -> str:
    """Normalise a datetime to a fixed-width UTC ISO string.

    Naive datetimes are taken to be UTC. The fixed width keeps stored
    timestamps comparable as plain strings inside SQL.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _new_id() -> str:
    return str(uuid.uuid4())


def _chunks(values: Sequence[str], size: int = _IN_CHUNK) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class EmailStore:
    """Wraps SQLite for everything the parsing pipeline reads and writes.

    Designed for single-threaded use from an async event loop — all calls are
    synchronous/blocking but fast. Concurrent reparse triggers stay correct
    because parsed rows are written with a single atomic upsert keyed on
    email_id, never with a read-then-write sequence.

    Usage::

        store = EmailStore()
        lps = store.get_lp_contacts(org_id, limit=500)
        store.upsert_parsed_email(parsed)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        if str(db_path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── Read API: contacts, deals, accounts ─────────────────────────────────────

    def get_lp_contacts(self, organization_id: str, limit: int = 500) -> list[LPContact]:
        """Return up to `limit` LP contacts for the organization, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM lp_contacts WHERE organization_id = ? ORDER BY rowid LIMIT ?",
            (organization_id, limit),
        ).fetchall()
        return [_lp_from_row(r) for r in rows]

    def get_lp_by_email(self, organization_id: str, email: str) -> LPContact | None:
        """Return the LP whose address matches `email` (case-insensitive)."""
        row = self._conn.execute(
            "SELECT * FROM lp_contacts WHERE organization_id = ? AND email = ?",
            (organization_id, email),
        ).fetchone()
        return _lp_from_row(row) if row else None

    def get_lp_contact(self, lp_id: str) -> LPContact | None:
        row = self._conn.execute("SELECT * FROM lp_contacts WHERE id = ?", (lp_id,)).fetchone()
        return _lp_from_row(row) if row else None

    def get_deals(
        self,
        organization_id: str,
        statuses: Sequence[str] = MATCHABLE_DEAL_STATUSES,
        limit: int = 100,
    ) -> list[Deal]:
        """Return up to `limit` deals in any of `statuses`, in insertion order.

        Insertion order is the tie-break the deal matcher relies on when two
        deal names appear in the same email.
        """
        placeholders = ", ".join("?" for _ in statuses)
        rows = self._conn.execute(
            f"SELECT * FROM deals WHERE organization_id = ? AND status IN ({placeholders}) "
            "ORDER BY rowid LIMIT ?",
            (organization_id, *statuses, limit),
        ).fetchall()
        return [_deal_from_row(r) for r in rows]

    def get_deal(self, organization_id: str, deal_id: str) -> Deal | None:
        """Return the deal only if it belongs to the organization."""
        row = self._conn.execute(
            "SELECT * FROM deals WHERE id = ? AND organization_id = ?",
            (deal_id, organization_id),
        ).fetchone()
        return _deal_from_row(row) if row else None

    def get_connected_account_emails(self, organization_id: str) -> list[str]:
        """Return addresses of the organization's active connected mailboxes."""
        rows = self._conn.execute(
            "SELECT email FROM connected_accounts WHERE organization_id = ? AND is_active = 1",
            (organization_id,),
        ).fetchall()
        return [r["email"] for r in rows]

    # ── Read API: emails ────────────────────────────────────────────────────────

    def get_raw_email(self, email_id: str) -> RawEmail | None:
        row = self._conn.execute("SELECT * FROM raw_emails WHERE id = ?", (email_id,)).fetchone()
        return _raw_from_row(row) if row else None

    def find_raw_email_by_message_id(self, organization_id: str, message_id: str) -> RawEmail | None:
        """Look up an ingested email by its provider message id."""
        row = self._conn.execute(
            "SELECT * FROM raw_emails WHERE organization_id = ? AND message_id = ?",
            (organization_id, message_id),
        ).fetchone()
        return _raw_from_row(row) if row else None

    def get_raw_emails(self, organization_id: str, limit: int = 500) -> list[RawEmail]:
        """Return the organization's most recent emails, newest first."""
        rows = self._conn.execute(
            "SELECT * FROM raw_emails WHERE organization_id = ? "
            "ORDER BY received_at DESC LIMIT ?",
            (organization_id, limit),
        ).fetchall()
        return [_raw_from_row(r) for r in rows]

    def get_emails_for_reparse(self, organization_id: str, limit: int = 500) -> list[RawEmail]:
        """Return emails last parsed by the deterministic parser or that failed."""
        rows = self._conn.execute(
            """SELECT r.* FROM raw_emails r
               JOIN parsed_emails p ON p.email_id = r.id
               WHERE r.organization_id = ?
                 AND (p.parsing_method = ? OR p.processing_status = ?)
               ORDER BY r.received_at DESC
               LIMIT ?""",
            (organization_id, ParsingMethod.SIMPLE.value, ProcessingStatus.FAILED.value, limit),
        ).fetchall()
        return [_raw_from_row(r) for r in rows]

    def get_thread_email_ids(self, organization_id: str, thread_ids: Iterable[str]) -> list[str]:
        """Return ids of every stored email in any of the given threads."""
        ids = list(thread_ids)
        found: list[str] = []
        for chunk in _chunks(ids):
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._conn.execute(
                f"SELECT id FROM raw_emails WHERE organization_id = ? "
                f"AND thread_id IN ({placeholders})",
                (organization_id, *chunk),
            ).fetchall()
            found.extend(r["id"] for r in rows)
        return found

    def get_parsed_email(self, email_id: str) -> ParsedEmailRow | None:
        row = self._conn.execute(
            "SELECT * FROM parsed_emails WHERE email_id = ?", (email_id,)
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["entities"] = json.loads(d["entities"])
        d["confidence_scores"] = json.loads(d["confidence_scores"])
        d["is_answered"] = bool(d["is_answered"])
        return ParsedEmailRow(**d)

    def get_suggested_contact(self, organization_id: str, email: str) -> SuggestedContactRow | None:
        row = self._conn.execute(
            "SELECT * FROM suggested_contacts WHERE organization_id = ? AND email = ?",
            (organization_id, email),
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["is_dismissed"] = bool(d["is_dismissed"])
        return SuggestedContactRow(**d)

    # ── Write API: parsing results ──────────────────────────────────────────────

    def upsert_parsed_email(self, parsed: ParsedEmail) -> None:
        """Insert or replace the single parsed row for parsed.email_id.

        Idempotent: re-parsing overwrites every derived field. is_answered
        survives only while the new intent is still a question, so a reparse
        never re-opens a question that a team reply already answered.

        Raises:
            StorageError: if the write fails.
        """
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO parsed_emails
                        (email_id, detected_lp_id, detected_deal_id, intent,
                         processing_status, parsing_method, model_version,
                         entities, confidence_scores, error_message, parsed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(email_id) DO UPDATE SET
                        detected_lp_id    = excluded.detected_lp_id,
                        detected_deal_id  = excluded.detected_deal_id,
                        intent            = excluded.intent,
                        processing_status = excluded.processing_status,
                        parsing_method    = excluded.parsing_method,
                        model_version     = excluded.model_version,
                        entities          = excluded.entities,
                        confidence_scores = excluded.confidence_scores,
                        error_message     = excluded.error_message,
                        parsed_at         = excluded.parsed_at,
                        is_answered       = CASE
                            WHEN excluded.intent = 'question' THEN parsed_emails.is_answered
                            ELSE 0
                        END
                    """,
                    (
                        parsed.email_id,
                        parsed.detected_lp_id,
                        parsed.detected_deal_id,
                        parsed.intent.value if parsed.intent else None,
                        parsed.processing_status.value,
                        parsed.parsing_method.value,
                        parsed.model_version,
                        json.dumps(parsed.entities),
                        json.dumps(parsed.confidence.to_dict()),
                        parsed.error_message,
                        to_iso(datetime.now(timezone.utc)),
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to save parse result for email {parsed.email_id!r}: {exc}"
            ) from exc

    def update_lp_last_interaction(
        self,
        lp_id: str,
        timestamp: datetime,
        forward_only: bool = True,
    ) -> bool:
        """Record an interaction with an LP. Returns True if the row changed.

        With forward_only the stored value only ever advances, so reparsing
        an old email cannot regress it. Without it the value is overwritten
        unconditionally.
        """
        ts = to_iso(timestamp)
        try:
            with self._conn:
                if forward_only:
                    cur = self._conn.execute(
                        "UPDATE lp_contacts SET last_interaction_at = ? WHERE id = ? "
                        "AND (last_interaction_at IS NULL OR last_interaction_at < ?)",
                        (ts, lp_id, ts),
                    )
                else:
                    cur = self._conn.execute(
                        "UPDATE lp_contacts SET last_interaction_at = ? WHERE id = ?",
                        (ts, lp_id),
                    )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to update LP {lp_id!r}: {exc}") from exc
        return cur.rowcount > 0

    def mark_questions_answered(self, email_ids: Iterable[str]) -> int:
        """Flag every open question among email_ids as answered. Returns the count."""
        ids = list(email_ids)
        updated = 0
        try:
            with self._conn:
                for chunk in _chunks(ids):
                    placeholders = ", ".join("?" for _ in chunk)
                    cur = self._conn.execute(
                        f"UPDATE parsed_emails SET is_answered = 1 "
                        f"WHERE email_id IN ({placeholders}) "
                        f"AND intent = 'question' AND is_answered = 0",
                        tuple(chunk),
                    )
                    updated += cur.rowcount
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to mark questions answered: {exc}") from exc
        return updated

    # ── Write API: ingestion and collaborators ──────────────────────────────────

    def insert_raw_email(self, email: RawEmail) -> bool:
        """Store a newly ingested email. Returns False if the message is already stored."""
        try:
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO raw_emails
                        (id, organization_id, account_id, message_id, thread_id,
                         from_email, from_name, to_emails, cc_emails, subject,
                         body_text, body_html, received_at, has_attachments)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(organization_id, message_id) DO NOTHING
                    """,
                    (
                        email.id,
                        email.organization_id,
                        email.account_id,
                        email.message_id,
                        email.thread_id,
                        email.from_email,
                        email.from_name,
                        json.dumps(email.to_emails),
                        json.dumps(email.cc_emails),
                        email.subject,
                        email.body_text,
                        email.body_html,
                        to_iso(email.received_at),
                        int(email.has_attachments),
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to store email {email.id!r}: {exc}") from exc
        return cur.rowcount > 0

    def upsert_suggested_contact(
        self,
        organization_id: str,
        email: str,
        name: str,
        firm: str | None = None,
        source_email_id: str | None = None,
    ) -> None:
        """Insert or refresh a suggested contact, keyed on (organization, email)."""
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO suggested_contacts
                        (id, organization_id, email, name, firm, source_email_id, is_dismissed)
                    VALUES (?, ?, ?, ?, ?, ?, 0)
                    ON CONFLICT(organization_id, email) DO UPDATE SET
                        name            = excluded.name,
                        firm            = excluded.firm,
                        source_email_id = excluded.source_email_id,
                        is_dismissed    = 0
                    """,
                    (_new_id(), organization_id, email, name, firm, source_email_id),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save suggested contact {email!r}: {exc}") from exc

    def dismiss_suggested_contact(self, organization_id: str, email: str) -> bool:
        """Hide a suggestion so later emails from the same sender do not re-add it."""
        try:
            with self._conn:
                cur = self._conn.execute(
                    "UPDATE suggested_contacts SET is_dismissed = 1 "
                    "WHERE organization_id = ? AND email = ?",
                    (organization_id, email),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to dismiss suggested contact {email!r}: {exc}") from exc
        return cur.rowcount > 0

    def add_lp_contact(
        self,
        organization_id: str,
        name: str,
        email: str,
        firm: str | None = None,
        special_fee_percent: float | None = None,
        special_carry_percent: float | None = None,
        last_interaction_at: datetime | None = None,
    ) -> str:
        """Create an LP contact (an explicit user action, never done by parsing)."""
        lp_id = _new_id()
        with self._conn:
            self._conn.execute(
                """INSERT INTO lp_contacts
                       (id, organization_id, name, email, firm, special_fee_percent,
                        special_carry_percent, last_interaction_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    lp_id,
                    organization_id,
                    name,
                    email,
                    firm,
                    special_fee_percent,
                    special_carry_percent,
                    to_iso(last_interaction_at) if last_interaction_at else None,
                ),
            )
        return lp_id

    def add_deal(
        self,
        organization_id: str,
        name: str,
        company_name: str | None = None,
        status: str = "active",
        fee_percent: float | None = None,
        carry_percent: float | None = None,
    ) -> str:
        deal_id = _new_id()
        with self._conn:
            self._conn.execute(
                """INSERT INTO deals
                       (id, organization_id, name, company_name, status, fee_percent, carry_percent)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (deal_id, organization_id, name, company_name, status, fee_percent, carry_percent),
            )
        return deal_id

    def add_connected_account(
        self,
        organization_id: str,
        email: str,
        provider: str = "gmail",
        is_active: bool = True,
    ) -> str:
        account_id = _new_id()
        with self._conn:
            self._conn.execute(
                "INSERT INTO connected_accounts (id, organization_id, email, provider, is_active) "
                "VALUES (?, ?, ?, ?, ?)",
                (account_id, organization_id, email, provider, int(is_active)),
            )
        return account_id

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)


def _lp_from_row(row: sqlite3.Row) -> LPContact:
    d = dict(row)
    d.pop("created_at", None)
    return LPContact(**d)


def _deal_from_row(row: sqlite3.Row) -> Deal:
    d = dict(row)
    d.pop("created_at", None)
    return Deal(**d)


def _raw_from_row(row: sqlite3.Row) -> RawEmail:
    d: dict[str, Any] = dict(row)
    d.pop("ingested_at", None)
    d["to_emails"] = json.loads(d["to_emails"])
    d["cc_emails"] = json.loads(d["cc_emails"])
    d["received_at"] = from_iso(d["received_at"])
    d["has_attachments"] = bool(d["has_attachments"])
    return RawEmail(**d)
