"""Contact form submission and the admin message inbox."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from marketintel.data.client import run_query
from marketintel.errors import ValidationResult

logger = logging.getLogger(__name__)

TABLE = "contact_messages"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REQUIRED_FIELDS = ("name", "email", "message", "inquiry_type")
MESSAGE_STATUSES = ("new", "read", "replied", "closed")

_MESSAGE_COLUMNS = (
    "id, name, email, company, phone, inquiry_type, message, status, "
    "created_at, updated_at, user_id"
)

THANK_YOU = "Thank you for your message! We'll get back to you within 24 hours."


@dataclass
class ContactForm:
    name: str
    email: str
    inquiry_type: str
    message: str
    company: str = ""
    phone: str = ""


@dataclass
class MessageStats:
    """Inbox counts.

    Attributes:
        total: All messages.
        by_status: Count per status.
        by_inquiry_type: Count per inquiry type.
        recent: Messages received in the last seven days.
    """

    total: int
    by_status: dict[str, int]
    by_inquiry_type: dict[str, int]
    recent: int


def validate_contact_form(form: ContactForm) -> ValidationResult:
    """Check required fields and the email format."""
    errors = {
        f: "This field is required"
        for f in REQUIRED_FIELDS
        if not str(getattr(form, f) or "").strip()
    }
    if errors:
        return ValidationResult.rejected("Missing required fields", errors)
    if not EMAIL_PATTERN.match(form.email.strip()):
        return ValidationResult.rejected(
            "Invalid email format", {"email": "Enter a valid email address"},
        )
    return ValidationResult.accepted()


def submit_contact_form(
    backend: Any, form: ContactForm, user_id: str | None = None,
) -> tuple[ValidationResult, str | None]:
    """Validate and store a contact message.

    Returns:
        (result, message_id). A rejected form is returned without touching
        the backend; message_id is None in that case.

    Raises:
        BackendError: If the insert fails.
    """
    result = validate_contact_form(form)
    if not result.ok:
        return result, None

    rows = run_query(
        backend.table(TABLE).insert({
            "name": form.name.strip(),
            "email": form.email.strip().lower(),
            "company": form.company.strip() or None,
            "phone": form.phone.strip() or None,
            "inquiry_type": form.inquiry_type,
            "message": form.message.strip(),
            "user_id": user_id,
            "status": "new",
        }),
        "Contact message insert",
    )
    message_id = str(rows[0]["id"]) if rows and rows[0].get("id") is not None else None
    logger.info("Contact message %s received (%s)", message_id, form.inquiry_type)
    return ValidationResult(ok=True, message=THANK_YOU), message_id


def get_contact_messages(
    backend: Any,
    status: str | None = None,
    inquiry_type: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[dict[str, Any]]:
    """Messages, newest first, optionally filtered and paged."""
    query = backend.table(TABLE).select(_MESSAGE_COLUMNS).order("created_at", desc=True)
    if status:
        query = query.eq("status", status)
    if inquiry_type:
        query = query.eq("inquiry_type", inquiry_type)
    if offset:
        query = query.range(offset, offset + (limit or 10) - 1)
    elif limit:
        query = query.limit(limit)
    return run_query(query, "Contact message query")


def update_message_status(
    backend: Any, message_id: str, status: str,
) -> ValidationResult:
    """Set a message's status; unknown statuses are rejected.

    Raises:
        BackendError: If the update fails.
    """
    if status not in MESSAGE_STATUSES:
        return ValidationResult.rejected("Invalid status")
    run_query(
        backend.table(TABLE).update({"status": status}).eq("id", message_id),
        "Contact message update",
    )
    return ValidationResult.accepted()


def get_message_stats(backend: Any, now: datetime | None = None) -> MessageStats:
    rows = run_query(
        backend.table(TABLE).select("status, inquiry_type, created_at"),
        "Contact message stats query",
    )
    week_ago = (now or datetime.now(UTC)) - timedelta(days=7)

    recent = 0
    for row in rows:
        created = row.get("created_at")
        if not isinstance(created, str):
            continue
        try:
            stamp = datetime.fromisoformat(created.replace("Z", "+00:00"))
        except ValueError:
            continue
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=UTC)
        if stamp > week_ago:
            recent += 1

    return MessageStats(
        total=len(rows),
        by_status=dict(Counter(str(r.get("status")) for r in rows)),
        by_inquiry_type=dict(Counter(str(r.get("inquiry_type")) for r in rows)),
        recent=recent,
    )
