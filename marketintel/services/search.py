"""Company search: autocomplete, advanced filtered search and filter options."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from marketintel.config import ALL
from marketintel.data.client import run_counted_query, run_query
from marketintel.errors import BackendError
from marketintel.services.activity import ActivityType, log_activity

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2

# Separators and grouping in an or_() filter string.
_RESERVED_FILTER_CHARS = re.compile(r"[,()]")

_BASE_COLUMNS = (
    "id, name, sector, company_type, is_listed, market_cap, "
    "annual_revenue_range, logo_url, founded_date"
)
_ADVANCED_COLUMNS = (
    f"{_BASE_COLUMNS}, employee_count, employee_range, status, description"
)

# sort key -> (column, descending)
SORT_COLUMNS: dict[str, tuple[str, bool]] = {
    "name": ("name", False),
    "market_cap": ("market_cap", True),
    "founded_date": ("founded_date", True),
}


@dataclass
class SearchFilters:
    """Advanced search filters. Empty/"all" values apply no restriction."""

    query: str = ""
    sector: str = ALL
    company_type: str = ALL
    is_listed: bool | None = None
    revenue_range: str = ALL
    employee_range: str = ALL
    location: str = ""
    min_revenue: float | None = None
    max_revenue: float | None = None
    min_profit: float | None = None
    max_profit: float | None = None
    sort_by: str = "name"

    @property
    def has_financial_filter(self) -> bool:
        return any(
            v is not None
            for v in (self.min_revenue, self.max_revenue, self.min_profit, self.max_profit)
        )


@dataclass
class SearchPage:
    results: list[dict[str, Any]]
    total: int
    page: int
    limit: int


@dataclass
class FilterOptions:
    sectors: list[str] = field(default_factory=list)
    revenue_ranges: list[str] = field(default_factory=list)
    employee_ranges: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)


def _clean_term(text: str) -> str:
    """Lower-cased search text without the characters PostgREST filters reserve."""
    return " ".join(_RESERVED_FILTER_CHARS.sub(" ", text or "").split()).lower()


def _text_filter(term: str) -> str:
    return (
        f"name_lowercase.ilike.%{term}%,"
        f"sector.ilike.%{term}%,"
        f"cin.ilike.%{term}%"
    )


def autocomplete(backend: Any, text: str, limit: int = 6) -> list[dict[str, Any]]:
    """Active companies whose name, sector or CIN contains *text*.

    Returns an empty list for queries shorter than two characters.
    """
    term = _clean_term(text)
    if len(term) < MIN_QUERY_LENGTH:
        return []
    return run_query(
        backend.table("companies")
        .select(_BASE_COLUMNS)
        .or_(_text_filter(term))
        .eq("status", "ACTIVE")
        .order("name")
        .limit(limit),
        "Autocomplete query",
    )


def search_by_name(backend: Any, text: str, limit: int = 10) -> list[dict[str, Any]]:
    """Active companies whose name contains *text*, for the comparison picker."""
    if not text or len(text) < MIN_QUERY_LENGTH:
        return []
    return run_query(
        backend.table("companies")
        .select(
            "id, name, sector, company_type, market_cap, employee_count, "
            "founded_date, status"
        )
        .ilike("name", f"%{text}%")
        .eq("status", "ACTIVE")
        .limit(limit),
        "Company name search",
    )


def advanced_search(
    backend: Any,
    filters: SearchFilters,
    page: int = 1,
    limit: int = 20,
    user_id: str | None = None,
) -> SearchPage:
    """Filtered, sorted and paged company search.

    A non-empty text query from a signed-in user is logged as SEARCH
    activity; a logging failure does not fail the search.

    Raises:
        BackendError: If the search query fails.
    """
    term = filters.query.strip()
    if user_id and term:
        try:
            log_activity(
                backend, user_id, ActivityType.SEARCH,
                resource_type="company_search",
                details={"search_query": term},
            )
        except BackendError as e:
            logger.warning("Search activity logging failed: %s", e)

    columns = _ADVANCED_COLUMNS
    if filters.location.strip():
        columns += ", company_addresses!inner(state, city)"
    if filters.has_financial_filter:
        columns += ", financial_statements!inner(total_revenue, net_profit, financial_year)"

    query = (
        backend.table("companies")
        .select(columns, count="exact")
        .eq("status", "ACTIVE")
    )
    text = _clean_term(term)
    if text:
        query = query.or_(_text_filter(text))
    if filters.sector != ALL:
        query = query.eq("sector", filters.sector)
    if filters.company_type != ALL:
        query = query.eq("company_type", filters.company_type)
    if filters.is_listed is not None:
        query = query.eq("is_listed", filters.is_listed)
    if filters.revenue_range != ALL:
        query = query.eq("annual_revenue_range", filters.revenue_range)
    if filters.employee_range != ALL:
        query = query.eq("employee_range", filters.employee_range)
    if filters.location.strip():
        query = query.eq("company_addresses.state", filters.location.strip())
    if filters.min_revenue is not None:
        query = query.gte("financial_statements.total_revenue", filters.min_revenue)
    if filters.max_revenue is not None:
        query = query.lte("financial_statements.total_revenue", filters.max_revenue)
    if filters.min_profit is not None:
        query = query.gte("financial_statements.net_profit", filters.min_profit)
    if filters.max_profit is not None:
        query = query.lte("financial_statements.net_profit", filters.max_profit)

    column, descending = SORT_COLUMNS.get(filters.sort_by, SORT_COLUMNS["name"])
    offset = (page - 1) * limit
    query = query.order(column, desc=descending).range(offset, offset + limit - 1)

    rows, total = run_counted_query(query, "Advanced search")
    logger.info("Search %r matched %d companies", term, total)
    return SearchPage(results=rows, total=total, page=page, limit=limit)


def _distinct_sorted(rows: list[dict[str, Any]], key: str) -> list[str]:
    return sorted({str(r[key]) for r in rows if r.get(key)})


def get_filter_options(backend: Any) -> FilterOptions:
    """Distinct values offered in the search filter dropdowns."""

    def column_values(table: str, column: str, active_only: bool) -> list[str]:
        query = backend.table(table).select(column).not_.is_(column, "null")
        if active_only:
            query = query.eq("status", "ACTIVE")
        return _distinct_sorted(run_query(query, f"{column} options query"), column)

    return FilterOptions(
        sectors=column_values("companies", "sector", True),
        revenue_ranges=column_values("companies", "annual_revenue_range", True),
        employee_ranges=column_values("companies", "employee_range", True),
        locations=column_values("company_addresses", "state", False),
    )
