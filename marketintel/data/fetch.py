"""Row fetching for market analysis and company comparison.

The four market queries are independent of each other, so they are issued
together on a thread pool and awaited jointly. A failure in any one of them
aborts the whole fetch with a single MarketDataError.
"""

from __future__ import annotations

import calendar
import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pandas as pd

from marketintel.config import (
    ALL,
    FAR_PAST,
    AnalysisConfig,
    CompanySize,
    TimeRange,
)
from marketintel.data.client import run_query
from marketintel.data.models import Company
from marketintel.errors import MarketDataError

logger = logging.getLogger(__name__)

COMPANY_COLUMNS: tuple[str, ...] = (
    "id", "name", "sector", "company_type", "is_listed",
    "employee_count", "market_cap", "founded_date",
)
FUNDING_COLUMNS: tuple[str, ...] = (
    "amount_raised", "currency", "funding_date", "round_type",
    "company_name", "company_sector",
)
STATEMENT_COLUMNS: tuple[str, ...] = (
    "total_revenue", "net_profit", "financial_year",
    "company_name", "company_sector",
)
RECENT_COMPANY_COLUMNS: tuple[str, ...] = (
    "name", "sector", "founded_date", "market_cap",
)

_RANGE_MONTHS: dict[TimeRange, int] = {
    TimeRange.THREE_MONTHS: 3,
    TimeRange.SIX_MONTHS: 6,
    TimeRange.ONE_YEAR: 12,
    TimeRange.TWO_YEARS: 24,
    TimeRange.FIVE_YEARS: 60,
}

# Inclusive employee-count bounds; None = unbounded.
_SIZE_BOUNDS: dict[CompanySize, tuple[int | None, int | None]] = {
    CompanySize.ALL: (None, None),
    CompanySize.STARTUP: (None, 50),
    CompanySize.SMALL: (51, 200),
    CompanySize.MEDIUM: (201, 1000),
    CompanySize.LARGE: (1001, None),
}

_HYDRATED_SELECT = "*, financial_statements(*), funding_rounds(*), key_officials(*)"


@dataclass(frozen=True)
class MarketFilters:
    """Active filter combination of the market analysis page."""

    sector: str = ALL
    time_range: TimeRange = TimeRange.ONE_YEAR
    company_type: str = ALL
    company_size: CompanySize = CompanySize.ALL

    @classmethod
    def default(cls) -> MarketFilters:
        """all / 1year / all / all."""
        return cls()

    def slug(self) -> str:
        """Filter values joined for use in export filenames."""
        return "_".join([
            self.sector,
            self.time_range.value,
            self.company_type,
            self.company_size.value,
        ])

    def to_dict(self) -> dict[str, str]:
        return {
            "sector": self.sector,
            "time_range": self.time_range.value,
            "company_type": self.company_type,
            "company_size": self.company_size.value,
        }


@dataclass
class MarketRows:
    """Raw row sets backing one market snapshot.

    Attributes:
        companies: Active companies matching sector, type and size.
            Columns: COMPANY_COLUMNS.
        funding_rounds: Rounds since the time-range lower bound, newest
            first. Columns: FUNDING_COLUMNS.
        financial_statements: Statements for the trailing financial years.
            Columns: STATEMENT_COLUMNS.
        recent_companies: Companies founded in the trailing window, newest
            first. Columns: RECENT_COMPANY_COLUMNS.
    """

    companies: pd.DataFrame
    funding_rounds: pd.DataFrame
    financial_statements: pd.DataFrame
    recent_companies: pd.DataFrame


def _shift_months(moment: datetime, months: int) -> datetime:
    """Move *moment* back by *months* calendar months, clamping the day."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month0 = divmod(index, 12)
    month = month0 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def date_lower_bound(time_range: TimeRange, now: datetime) -> datetime:
    """Earliest timestamp included by a time-range filter.

    Args:
        time_range: Selected window.
        now: Reference time.

    Returns:
        ``now`` minus the window, or FAR_PAST for TimeRange.ALL.
    """
    if time_range is TimeRange.ALL:
        return FAR_PAST
    return _shift_months(now, _RANGE_MONTHS[time_range])


def size_bounds(company_size: CompanySize) -> tuple[int | None, int | None]:
    """Inclusive (min, max) employee bounds for a size bucket."""
    return _SIZE_BOUNDS[company_size]


def _flatten_company(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Lift the embedded ``companies`` object into company_name/company_sector."""
    flat: list[dict[str, Any]] = []
    for row in rows:
        embedded = row.get("companies") or {}
        if isinstance(embedded, list):
            embedded = embedded[0] if embedded else {}
        item = {k: v for k, v in row.items() if k != "companies"}
        item["company_name"] = embedded.get("name")
        item["company_sector"] = embedded.get("sector")
        flat.append(item)
    return flat


def _frame(rows: list[dict[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    """Rows to a DataFrame with a fixed column set (missing keys -> NaN)."""
    return pd.DataFrame(rows, columns=list(columns))


def _companies_query(backend: Any, filters: MarketFilters) -> Any:
    query = (
        backend.table("companies")
        .select(", ".join(COMPANY_COLUMNS))
        .eq("status", "ACTIVE")
    )
    if filters.sector != ALL:
        query = query.eq("sector", filters.sector)
    if filters.company_type != ALL:
        query = query.eq("company_type", filters.company_type)
    low, high = size_bounds(filters.company_size)
    if low is not None:
        query = query.gte("employee_count", low)
    if high is not None:
        query = query.lte("employee_count", high)
    return query


def _funding_query(backend: Any, filters: MarketFilters, now: datetime) -> Any:
    query = backend.table("funding_rounds").select(
        "amount_raised, currency, funding_date, round_type, "
        "companies!inner(name, sector)"
    )
    if filters.sector != ALL:
        query = query.eq("companies.sector", filters.sector)
    lower = date_lower_bound(filters.time_range, now)
    return query.gte("funding_date", lower.isoformat()).order(
        "funding_date", desc=True
    )


def _statements_query(
    backend: Any, filters: MarketFilters, config: AnalysisConfig, now: datetime,
) -> Any:
    query = backend.table("financial_statements").select(
        "total_revenue, net_profit, financial_year, companies!inner(sector, name)"
    )
    if filters.sector != ALL:
        query = query.eq("companies.sector", filters.sector)
    return query.gte("financial_year", now.year - config.financial_years_back)


def _recent_companies_query(
    backend: Any, filters: MarketFilters, config: AnalysisConfig, now: datetime,
) -> Any:
    query = (
        backend.table("companies")
        .select(", ".join(RECENT_COMPANY_COLUMNS))
        .eq("status", "ACTIVE")
    )
    if filters.sector != ALL:
        query = query.eq("sector", filters.sector)
    lower = date_lower_bound(config.recent_companies_window, now)
    return (
        query.gte("founded_date", lower.isoformat())
        .order("founded_date", desc=True)
        .limit(config.recent_companies_fetch_limit)
    )


def fetch_market_rows(
    backend: Any,
    filters: MarketFilters,
    config: AnalysisConfig,
    now: datetime,
) -> MarketRows:
    """Fetch the four market row sets concurrently.

    Args:
        backend: Backend client.
        filters: Active filter combination.
        config: Aggregation configuration (windows, limits, worker count).
        now: Reference time for date windows.

    Returns:
        MarketRows with all four row sets.

    Raises:
        MarketDataError: If any of the four queries fails. The first failure
            (in query order) is chained as the cause.
    """
    tasks: dict[str, Callable[[], list[dict[str, Any]]]] = {
        "companies": lambda: run_query(
            _companies_query(backend, filters), "Company query",
        ),
        "funding_rounds": lambda: run_query(
            _funding_query(backend, filters, now), "Funding round query",
        ),
        "financial_statements": lambda: run_query(
            _statements_query(backend, filters, config, now),
            "Financial statement query",
        ),
        "recent_companies": lambda: run_query(
            _recent_companies_query(backend, filters, config, now),
            "Recent company query",
        ),
    }

    results: dict[str, list[dict[str, Any]]] = {}
    failure: tuple[str, Exception] | None = None

    with ThreadPoolExecutor(max_workers=config.fetch_workers) as executor:
        futures = {name: executor.submit(task) for name, task in tasks.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:
                if failure is None:
                    failure = (name, e)

    if failure is not None:
        name, cause = failure
        raise MarketDataError(f"Failed to load market data ({name}): {cause}") from cause

    rows = MarketRows(
        companies=_frame(results["companies"], COMPANY_COLUMNS),
        funding_rounds=_frame(
            _flatten_company(results["funding_rounds"]), FUNDING_COLUMNS,
        ),
        financial_statements=_frame(
            _flatten_company(results["financial_statements"]), STATEMENT_COLUMNS,
        ),
        recent_companies=_frame(results["recent_companies"], RECENT_COMPANY_COLUMNS),
    )
    logger.info(
        "Fetched %d companies, %d funding rounds, %d statements, "
        "%d recent companies (%s)",
        len(rows.companies),
        len(rows.funding_rounds),
        len(rows.financial_statements),
        len(rows.recent_companies),
        filters.slug(),
    )
    return rows


def fetch_comparison_companies(
    backend: Any, company_ids: Sequence[str],
) -> list[Company]:
    """Load fully hydrated companies for comparison.

    Args:
        backend: Backend client.
        company_ids: Ids in display order.

    Returns:
        Companies in the order of *company_ids*. Ids the backend did not
        return are omitted.

    Raises:
        BackendError: If the query fails.
    """
    if not company_ids:
        return []

    rows = run_query(
        backend.table("companies")
        .select(_HYDRATED_SELECT)
        .in_("id", list(company_ids)),
        "Comparison query",
    )
    by_id = {str(row.get("id")): Company.from_row(row) for row in rows}

    missing = [cid for cid in company_ids if cid not in by_id]
    if missing:
        logger.warning("Companies not found: %s", ", ".join(missing))

    return [by_id[cid] for cid in company_ids if cid in by_id]


class RequestTracker:
    """Monotonic request ids for latest-wins result handling.

    Each refresh calls ``issue()`` before fetching and ``is_current()`` after;
    a result whose token has been superseded is discarded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = 0

    def issue(self) -> int:
        with self._lock:
            self._current += 1
            return self._current

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._current

    @property
    def current(self) -> int:
        with self._lock:
            return self._current
