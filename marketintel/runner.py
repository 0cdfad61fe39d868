"""Page orchestration for market analysis and company comparison.

Each runner owns the state one page shows: filters or selection, the latest
snapshot and a ViewState. Fetch failures are caught here, once, and turned
into the ERROR state with a message; retry() and reset_filters() recover.

Refreshes follow latest-wins: every refresh takes a token from a
RequestTracker and its result is applied only if no newer refresh has
started in the meantime.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from marketintel.analysis.comparison import ComparisonSet, ComparisonSnapshot
from marketintel.analysis.market import MarketSnapshot, aggregate_market
from marketintel.config import AnalysisConfig, ComparisonConfig
from marketintel.data.fetch import (
    MarketFilters,
    RequestTracker,
    fetch_comparison_companies,
    fetch_market_rows,
)
from marketintel.data.models import Company
from marketintel.errors import (
    AccessDeniedError,
    BackendError,
    MarketDataError,
    MarketIntelError,
    ValidationResult,
)
from marketintel.reports.export import (
    COMPARISON_REPORT,
    MARKET_REPORT,
    comparison_export_document,
    export_filename,
    market_export_document,
    write_export,
)
from marketintel.services.rbac import (
    Role,
    can_compare_companies,
    can_view_market_analysis,
    normalize_role,
)
from marketintel.services.search import search_by_name

logger = logging.getLogger(__name__)

MARKET_ERROR_MESSAGE = "Failed to load market data"
COMPARISON_ERROR_MESSAGE = "Failed to load comparison data"


class ViewState(Enum):
    LOCKED = "locked"
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MarketAnalysisRunner:
    """State and actions of the market analysis page.

    Args:
        backend: Backend client.
        role: Role of the signed-in user; anything below ENTERPRISE locks
            the page.
        config: Aggregation configuration.
        clock: Source of the reference time for date windows.
    """

    def __init__(
        self,
        backend: Any,
        role: Role | str | None,
        config: AnalysisConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self.role = normalize_role(role)
        self.config = config or AnalysisConfig()
        self._clock = clock
        self._tracker = RequestTracker()
        self._lock = threading.Lock()

        self.filters = MarketFilters.default()
        self.snapshot: MarketSnapshot | None = None
        self.snapshot_filters: MarketFilters | None = None
        self.error: str | None = None
        self.state = (
            ViewState.LOADING if can_view_market_analysis(self.role)
            else ViewState.LOCKED
        )

    def _require_access(self) -> None:
        if self.state is ViewState.LOCKED:
            raise AccessDeniedError(
                "Market Analysis is available for ENTERPRISE users only"
            )

    def refresh(self) -> bool:
        """Fetch and aggregate for the current filters.

        Returns:
            True when this refresh's result was applied; False when it
            failed or was superseded by a newer refresh.

        Raises:
            AccessDeniedError: If the role may not view the page.
        """
        self._require_access()
        with self._lock:
            token = self._tracker.issue()
            filters = self.filters
            self.state = ViewState.LOADING
            self.error = None

        now = self._clock()
        try:
            rows = fetch_market_rows(self._backend, filters, self.config, now)
            snapshot = aggregate_market(rows, filters.sector, self.config, now)
        except MarketDataError as e:
            with self._lock:
                if not self._tracker.is_current(token):
                    logger.debug("Discarding failed stale refresh %d", token)
                    return False
                logger.error("Market refresh failed: %s", e)
                self.snapshot = None
                self.snapshot_filters = None
                self.error = MARKET_ERROR_MESSAGE
                self.state = ViewState.ERROR
            return False

        with self._lock:
            if not self._tracker.is_current(token):
                logger.debug("Discarding stale refresh %d", token)
                return False
            self.snapshot = snapshot
            self.snapshot_filters = filters
            self.state = ViewState.EMPTY if snapshot.is_empty else ViewState.READY
        return True

    def set_filters(self, **changes: Any) -> bool:
        """Change one or more filters and recompute from scratch.

        Args:
            **changes: MarketFilters fields, e.g. ``sector="Fintech"``.
        """
        self._require_access()
        with self._lock:
            self.filters = replace(self.filters, **changes)
            self.snapshot = None
            self.snapshot_filters = None
        return self.refresh()

    def retry(self) -> bool:
        return self.refresh()

    def reset_filters(self) -> bool:
        """Return to the default filters and refresh."""
        self._require_access()
        with self._lock:
            self.filters = MarketFilters.default()
        return self.refresh()

    def export(self, output_dir: Path, now: datetime | None = None) -> Path:
        """Write the on-screen snapshot as JSON. Never refetches.

        Raises:
            MarketIntelError: If there is no snapshot to export.
        """
        self._require_access()
        snapshot, filters = self.snapshot, self.snapshot_filters
        if snapshot is None or filters is None:
            raise MarketIntelError("No market data to export")
        stamp = now or self._clock()
        document = market_export_document(snapshot, filters, stamp)
        filename = export_filename(MARKET_REPORT, filters.slug(), stamp)
        return write_export(document, output_dir, filename)


class ComparisonRunner:
    """State and actions of the company comparison page.

    Args:
        backend: Backend client.
        role: Role of the signed-in user; anything below ENTERPRISE locks
            the page.
        config: Selection limits and maturity thresholds.
        clock: Source of "today" for company ages.
    """

    def __init__(
        self,
        backend: Any,
        role: Role | str | None,
        config: ComparisonConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self.role = normalize_role(role)
        self.selection = ComparisonSet(config)
        self._clock = clock
        self.error: str | None = None
        self.state = (
            ViewState.EMPTY if can_compare_companies(self.role) else ViewState.LOCKED
        )

    def _require_access(self) -> None:
        if self.state is ViewState.LOCKED:
            raise AccessDeniedError(
                "Company Comparison is available for ENTERPRISE users only"
            )

    @property
    def snapshot(self) -> ComparisonSnapshot | None:
        return self.selection.snapshot

    def _today(self) -> date:
        return self._clock().date()

    def search(self, text: str) -> list[dict[str, Any]]:
        self._require_access()
        return search_by_name(self._backend, text)

    def add(self, company: Company) -> ValidationResult:
        """Add a company; a rejection is kept in ``error`` for display."""
        self._require_access()
        result = self.selection.add(company)
        self.error = None if result.ok else result.message
        if result.ok:
            self.state = ViewState.EMPTY
        return result

    def remove(self, company_id: str) -> ValidationResult:
        self._require_access()
        result = self.selection.remove(company_id)
        self.error = None
        self.state = ViewState.EMPTY
        return result

    def load(
        self, loader: Callable[[list[str]], list[Company]] | None = None,
    ) -> ComparisonSnapshot | None:
        """Fetch hydrated companies and build the comparison.

        Args:
            loader: Returns hydrated companies for the selected ids.
                Defaults to reading them from the backend.

        Returns:
            The snapshot, or None when fewer than two companies are
            selected or the fetch failed.
        """
        self._require_access()
        if not self.selection.is_ready:
            self.state = ViewState.EMPTY
            return None

        self.state = ViewState.LOADING
        self.error = None
        try:
            snapshot = self.selection.build(
                loader or (lambda ids: fetch_comparison_companies(self._backend, ids)),
                self._today(),
            )
        except BackendError as e:
            logger.error("Comparison load failed: %s", e)
            self.error = COMPARISON_ERROR_MESSAGE
            self.state = ViewState.ERROR
            return None

        self.state = ViewState.READY
        return snapshot

    def export(self, output_dir: Path, now: datetime | None = None) -> Path:
        """Write the current comparison as JSON. Never refetches.

        Raises:
            MarketIntelError: If no comparison has been built.
        """
        self._require_access()
        snapshot = self.selection.snapshot
        if snapshot is None:
            raise MarketIntelError("No comparison to export")
        stamp = now or self._clock()
        document = comparison_export_document(snapshot, stamp)
        return write_export(
            document, output_dir, export_filename(COMPARISON_REPORT, "", stamp),
        )
