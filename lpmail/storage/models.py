"""SQLite table schemas and typed row types for the email store."""

from dataclasses import dataclass
from typing import Any


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_LP_CONTACTS = """
CREATE TABLE IF NOT EXISTS lp_contacts (
    id                    TEXT PRIMARY KEY,
    organization_id       TEXT NOT NULL,
    name                  TEXT NOT NULL,
    email                 TEXT NOT NULL COLLATE NOCASE,
    firm                  TEXT,
    special_fee_percent   REAL,
    special_carry_percent REAL,
    last_interaction_at   TEXT,
    created_at            TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE (organization_id, email)
)
"""

_CREATE_DEALS = """
CREATE TABLE IF NOT EXISTS deals (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    name            TEXT NOT NULL,
    company_name    TEXT,
    status          TEXT NOT NULL DEFAULT 'draft'
                    CHECK (status IN ('draft', 'active', 'closed', 'cancelled')),
    fee_percent     REAL,
    carry_percent   REAL,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
)
"""

_CREATE_CONNECTED_ACCOUNTS = """
CREATE TABLE IF NOT EXISTS connected_accounts (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    email           TEXT NOT NULL,
    provider        TEXT NOT NULL DEFAULT 'gmail',
    is_active       INTEGER NOT NULL DEFAULT 1
)
"""

_CREATE_RAW_EMAILS = """
CREATE TABLE IF NOT EXISTS raw_emails (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    account_id      TEXT NOT NULL,
    message_id      TEXT NOT NULL,
    thread_id       TEXT,
    from_email      TEXT NOT NULL,
    from_name       TEXT,
    to_emails       TEXT NOT NULL DEFAULT '[]',
    cc_emails       TEXT NOT NULL DEFAULT '[]',
    subject         TEXT,
    body_text       TEXT,
    body_html       TEXT,
    received_at     TEXT NOT NULL,
    has_attachments INTEGER NOT NULL DEFAULT 0,
    ingested_at     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE (organization_id, message_id)
)
"""

_CREATE_RAW_EMAILS_THREAD_INDEX = """
CREATE INDEX IF NOT EXISTS idx_raw_emails_thread
    ON raw_emails (organization_id, thread_id)
"""

# email_id is UNIQUE: the upsert target that keeps one parsed row per email.
_CREATE_PARSED_EMAILS = """
CREATE TABLE IF NOT EXISTS parsed_emails (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    email_id          TEXT NOT NULL UNIQUE,
    detected_lp_id    TEXT,
    detected_deal_id  TEXT,
    intent            TEXT CHECK (intent IN
                          ('interested', 'committed', 'declined', 'question', 'neutral')),
    processing_status TEXT NOT NULL CHECK (processing_status IN ('success', 'failed')),
    parsing_method    TEXT NOT NULL CHECK (parsing_method IN ('ai', 'simple-regex-v1')),
    model_version     TEXT,
    entities          TEXT NOT NULL DEFAULT '{}',
    confidence_scores TEXT NOT NULL DEFAULT '{}',
    is_answered       INTEGER NOT NULL DEFAULT 0,
    error_message     TEXT,
    parsed_at         TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    FOREIGN KEY (email_id) REFERENCES raw_emails(id)
)
"""

_CREATE_SUGGESTED_CONTACTS = """
CREATE TABLE IF NOT EXISTS suggested_contacts (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    email           TEXT NOT NULL COLLATE NOCASE,
    name            TEXT NOT NULL,
    firm            TEXT,
    source_email_id TEXT,
    is_dismissed    INTEGER NOT NULL DEFAULT 0,
    UNIQUE (organization_id, email)
)
"""

#: All DDL statements in creation order (respects FK dependencies).
ALL_TABLES: list[str] = [
    _CREATE_LP_CONTACTS,
    _CREATE_DEALS,
    _CREATE_CONNECTED_ACCOUNTS,
    _CREATE_RAW_EMAILS,
    _CREATE_RAW_EMAILS_THREAD_INDEX,
    _CREATE_PARSED_EMAILS,
    _CREATE_SUGGESTED_CONTACTS,
]


# ── Row types ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LPContact:
    """A known limited partner."""

    id: str
    organization_id: str
    name: str
    email: str
    firm: str | None = None
    special_fee_percent: float | None = None
    special_carry_percent: float | None = None
    last_interaction_at: str | None = None


@dataclass(frozen=True)
class Deal:
    """A fundraising campaign. Read-only as far as parsing is concerned."""

    id: str
    organization_id: str
    name: str
    company_name: str | None = None
    status: str = "draft"
    fee_percent: float | None = None
    carry_percent: float | None = None


@dataclass(frozen=True)
class ParsedEmailRow:
    """A row from the parsed_emails table, JSON columns decoded."""

    id: int
    email_id: str
    detected_lp_id: str | None
    detected_deal_id: str | None
    intent: str | None
    processing_status: str
    parsing_method: str
    model_version: str | None
    entities: dict[str, Any]
    confidence_scores: dict[str, float]
    is_answered: bool
    error_message: str | None
    parsed_at: str


@dataclass(frozen=True)
class SuggestedContactRow:
    """A row from the suggested_contacts table."""

    id: str
    organization_id: str
    email: str
    name: str
    firm: str | None
    source_email_id: str | None
    is_dismissed: bool
