"""User activity log: recording, querying and display formatting."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from marketintel.data.client import run_query
from marketintel.data.models import parse_date

logger = logging.getLogger(__name__)

TABLE = "user_activity_logs"


class ActivityType(Enum):
    SEARCH = "SEARCH"
    VIEW_PROFILE = "VIEW_PROFILE"
    EXPORT_DATA = "EXPORT_DATA"
    CREATE_WATCHLIST = "CREATE_WATCHLIST"
    ADD_TO_WATCHLIST = "ADD_TO_WATCHLIST"
    SAVE_SEARCH = "SAVE_SEARCH"
    DOWNLOAD_REPORT = "DOWNLOAD_REPORT"
    API_CALL = "API_CALL"


ACTIVITY_LABELS: dict[str, str] = {
    "SEARCH": "Search",
    "VIEW_PROFILE": "Viewed Company Profile",
    "EXPORT_DATA": "Exported Data",
    "CREATE_WATCHLIST": "Created Watchlist",
    "ADD_TO_WATCHLIST": "Added to Watchlist",
    "SAVE_SEARCH": "Saved Search",
    "DOWNLOAD_REPORT": "Downloaded Report",
    "API_CALL": "API Call",
}


@dataclass
class ActivityStats:
    """Activity counts over a trailing window.

    Attributes:
        total_activities: Entries in the window.
        by_type: Count per activity type.
        by_day: Count per calendar day (ISO date).
        recent: The ten newest entries.
    """

    total_activities: int
    by_type: dict[str, int]
    by_day: dict[str, int]
    recent: list[dict[str, Any]]


def _new_activity_id(now: datetime) -> str:
    return f"activity-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return stamp if stamp.tzinfo else stamp.replace(tzinfo=UTC)


def log_activity(
    backend: Any,
    user_id: str,
    activity_type: ActivityType,
    company_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Insert one activity entry and return the stored row.

    Raises:
        BackendError: If the insert fails.
    """
    stamp = now or datetime.now(UTC)
    record: dict[str, Any] = {
        "id": _new_activity_id(stamp),
        "user_id": user_id,
        "activity_type": activity_type.value,
        "timestamp": stamp.isoformat(),
    }
    if company_id is not None:
        record["company_id"] = company_id
    if resource_type is not None:
        record["resource_type"] = resource_type
        record["resource_id"] = resource_id
    if details:
        record["details"] = details

    rows = run_query(backend.table(TABLE).insert(record), "Activity insert")
    logger.debug("Logged %s for %s", activity_type.value, user_id)
    return rows[0] if rows else record


def get_user_activity_logs(
    backend: Any,
    user_id: str,
    activity_type: ActivityType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Activity entries for a user, newest first, with the related company."""
    query = (
        backend.table(TABLE)
        .select("*, companies(id, name, sector, company_type)")
        .eq("user_id", user_id)
        .order("timestamp", desc=True)
    )
    if activity_type is not None:
        query = query.eq("activity_type", activity_type.value)
    if start is not None:
        query = query.gte("timestamp", start.isoformat())
    if end is not None:
        query = query.lte("timestamp", end.isoformat())
    if limit:
        query = query.limit(limit)
    return run_query(query, "Activity query")


def get_activity_stats(
    backend: Any, user_id: str, days: int = 30, now: datetime | None = None,
) -> ActivityStats:
    """Count a user's activity over the last *days* days."""
    start = (now or datetime.now(UTC)) - timedelta(days=days)
    rows = run_query(
        backend.table(TABLE)
        .select("activity_type, timestamp")
        .eq("user_id", user_id)
        .gte("timestamp", start.isoformat())
        .order("timestamp", desc=True),
        "Activity stats query",
    )

    by_type = Counter(str(r.get("activity_type")) for r in rows)
    by_day: Counter[str] = Counter()
    for r in rows:
        day = parse_date(r.get("timestamp"))
        if day is not None:
            by_day[day.isoformat()] += 1

    return ActivityStats(
        total_activities=len(rows),
        by_type=dict(by_type),
        by_day=dict(sorted(by_day.items())),
        recent=rows[:10],
    )


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''} ago"


def relative_time(timestamp: datetime, now: datetime) -> str:
    """Coarse "N units ago" text; months are 30-day blocks."""
    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return _plural(seconds // 60, "minute")
    if seconds < 86400:
        return _plural(seconds // 3600, "hour")
    if seconds < 2592000:
        return _plural(seconds // 86400, "day")
    return _plural(seconds // 2592000, "month")


def format_activity(activity: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Add ``label``, ``formatted_time`` and ``relative_time`` to an entry."""
    activity_type = str(activity.get("activity_type", ""))
    stamp = _parse_timestamp(activity.get("timestamp"))
    current = now or datetime.now(UTC)
    return {
        **activity,
        "label": ACTIVITY_LABELS.get(activity_type, activity_type),
        "formatted_time": stamp.strftime("%d %b %Y, %H:%M") if stamp else "",
        "relative_time": relative_time(stamp, current) if stamp else "",
    }
