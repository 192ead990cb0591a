"""Data types for ingested mail, shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_REQUIRED_FIELDS = ("id", "organization_id", "account_id", "message_id", "from_email", "received_at")


@dataclass(frozen=True)
class RawEmail:
    """An ingested message, exactly as the ingestion process stored it.

    The parsing pipeline only ever reads these — it never mutates a RawEmail.

    thread_id is optional because not every mailbox provider guarantees one.
    body_html is kept for messages that arrive without a text/plain part.
    """

    id: str
    organization_id: str
    account_id: str
    message_id: str
    from_email: str
    received_at: datetime
    thread_id: str | None = None
    from_name: str | None = None
    to_emails: list[str] = field(default_factory=list)
    cc_emails: list[str] = field(default_factory=list)
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    has_attachments: bool = False

    @property
    def search_text(self) -> str:
        """Subject and body joined, the text deal names are matched against."""
        return f"{self.subject or ''} {self.body_text or ''}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawEmail:
        """Build a RawEmail from a JSON object, as exported by a mailbox sync.

        received_at is an ISO-8601 string; a trailing "Z" and naive values
        are both read as UTC.

        Raises:
            ValueError: if a required field is missing or received_at is malformed.
        """
        missing = [name for name in _REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ValueError(f"Email record missing field(s): {', '.join(missing)}")

        received_at = datetime.fromisoformat(str(data["received_at"]).replace("Z", "+00:00"))
        if received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)

        return cls(
            id=str(data["id"]),
            organization_id=str(data["organization_id"]),
            account_id=str(data["account_id"]),
            message_id=str(data["message_id"]),
            from_email=str(data["from_email"]),
            received_at=received_at,
            thread_id=data.get("thread_id"),
            from_name=data.get("from_name"),
            to_emails=list(data.get("to_emails") or []),
            cc_emails=list(data.get("cc_emails") or []),
            subject=data.get("subject"),
            body_text=data.get("body_text"),
            body_html=data.get("body_html"),
            has_attachments=bool(data.get("has_attachments", False)),
        )
