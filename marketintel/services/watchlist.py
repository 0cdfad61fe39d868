"""Watchlists: named lists of companies a user follows."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from marketintel.data.client import run_query
from marketintel.errors import BackendError
from marketintel.services.activity import ActivityType, log_activity

logger = logging.getLogger(__name__)

_COMPANY_FIELDS = (
    "id, name, sector, company_type, market_cap, annual_revenue_range, "
    "is_listed, status"
)
_WATCHLIST_SELECT = (
    f"*, watchlist_companies(id, company_id, notes, added_at, "
    f"companies({_COMPANY_FIELDS}))"
)
_WATCHLIST_DETAIL_SELECT = (
    f"*, watchlist_companies(id, company_id, notes, added_at, "
    f"companies({_COMPANY_FIELDS}, logo_url, description))"
)


@dataclass
class WatchlistStats:
    total_watchlists: int
    total_companies: int
    watchlists: list[dict[str, Any]]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _record_activity(backend: Any, user_id: str, **kwargs: Any) -> None:
    """Log an activity entry; a logging failure never fails the caller."""
    try:
        log_activity(backend, user_id, **kwargs)
    except BackendError as e:
        logger.warning("Activity logging failed for %s: %s", user_id, e)


def get_user_watchlists(backend: Any, user_id: str) -> list[dict[str, Any]]:
    """All of a user's watchlists with their companies, newest first."""
    return run_query(
        backend.table("watchlists")
        .select(_WATCHLIST_SELECT)
        .eq("user_id", user_id)
        .order("created_at", desc=True),
        "Watchlist query",
    )


def get_watchlist(backend: Any, watchlist_id: str) -> dict[str, Any] | None:
    rows = run_query(
        backend.table("watchlists")
        .select(_WATCHLIST_DETAIL_SELECT)
        .eq("id", watchlist_id)
        .limit(1),
        "Watchlist query",
    )
    return rows[0] if rows else None


def create_watchlist(
    backend: Any, user_id: str, name: str, description: str = "",
) -> dict[str, Any]:
    """Create a watchlist and log CREATE_WATCHLIST.

    Raises:
        BackendError: If the insert fails.
    """
    watchlist_id = str(uuid.uuid4())
    now = _now_iso()
    rows = run_query(
        backend.table("watchlists").insert({
            "id": watchlist_id,
            "user_id": user_id,
            "name": name,
            "description": description,
            "created_at": now,
            "updated_at": now,
        }),
        "Watchlist insert",
    )
    _record_activity(
        backend, user_id,
        activity_type=ActivityType.CREATE_WATCHLIST,
        resource_type="watchlist",
        resource_id=watchlist_id,
    )
    logger.info("Created watchlist %r for %s", name, user_id)
    return rows[0] if rows else {"id": watchlist_id, "name": name}


def update_watchlist(
    backend: Any, watchlist_id: str, updates: dict[str, Any],
) -> dict[str, Any] | None:
    rows = run_query(
        backend.table("watchlists")
        .update({**updates, "updated_at": _now_iso()})
        .eq("id", watchlist_id),
        "Watchlist update",
    )
    return rows[0] if rows else None


def delete_watchlist(backend: Any, watchlist_id: str) -> None:
    """Delete a watchlist and its company entries."""
    run_query(
        backend.table("watchlist_companies").delete().eq("watchlist_id", watchlist_id),
        "Watchlist entries delete",
    )
    run_query(
        backend.table("watchlists").delete().eq("id", watchlist_id),
        "Watchlist delete",
    )
    logger.info("Deleted watchlist %s", watchlist_id)


def add_company(
    backend: Any, watchlist_id: str, company_id: str, notes: str = "",
) -> dict[str, Any]:
    """Add a company to a watchlist and log ADD_TO_WATCHLIST.

    Raises:
        BackendError: If the company is already in the watchlist or the
            insert fails.
    """
    existing = run_query(
        backend.table("watchlist_companies")
        .select("id")
        .eq("watchlist_id", watchlist_id)
        .eq("company_id", company_id)
        .limit(1),
        "Watchlist membership query",
    )
    if existing:
        raise BackendError("Company is already in this watchlist")

    entry_id = str(uuid.uuid4())
    rows = run_query(
        backend.table("watchlist_companies").insert({
            "id": entry_id,
            "watchlist_id": watchlist_id,
            "company_id": company_id,
            "notes": notes,
        }),
        "Watchlist entry insert",
    )

    owners = run_query(
        backend.table("watchlists").select("user_id").eq("id", watchlist_id).limit(1),
        "Watchlist owner query",
    )
    if owners and owners[0].get("user_id"):
        _record_activity(
            backend, str(owners[0]["user_id"]),
            activity_type=ActivityType.ADD_TO_WATCHLIST,
            company_id=company_id,
            resource_type="watchlist_company",
            resource_id=entry_id,
        )
    return rows[0] if rows else {"id": entry_id, "company_id": company_id}


def remove_company(backend: Any, watchlist_id: str, company_id: str) -> None:
    run_query(
        backend.table("watchlist_companies")
        .delete()
        .eq("watchlist_id", watchlist_id)
        .eq("company_id", company_id),
        "Watchlist entry delete",
    )


def update_company_notes(
    backend: Any, watchlist_id: str, company_id: str, notes: str,
) -> dict[str, Any] | None:
    rows = run_query(
        backend.table("watchlist_companies")
        .update({"notes": notes})
        .eq("watchlist_id", watchlist_id)
        .eq("company_id", company_id),
        "Watchlist notes update",
    )
    return rows[0] if rows else None


def watchlists_containing(
    backend: Any, user_id: str, company_id: str,
) -> list[dict[str, Any]]:
    """The user's watchlists that include *company_id*."""
    return run_query(
        backend.table("watchlist_companies")
        .select("watchlist_id, watchlists!inner(name)")
        .eq("company_id", company_id)
        .eq("watchlists.user_id", user_id),
        "Watchlist membership query",
    )


def get_watchlist_stats(backend: Any, user_id: str) -> WatchlistStats:
    rows = run_query(
        backend.table("watchlists")
        .select("id, name, watchlist_companies(count)")
        .eq("user_id", user_id),
        "Watchlist stats query",
    )
    total = 0
    for row in rows:
        counts = row.get("watchlist_companies") or []
        if counts:
            total += int(counts[0].get("count") or 0)
    return WatchlistStats(
        total_watchlists=len(rows), total_companies=total, watchlists=rows,
    )
