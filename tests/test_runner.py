"""Tests for marketintel.runner."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from marketintel.data.fetch import (
    COMPANY_COLUMNS,
    FUNDING_COLUMNS,
    RECENT_COMPANY_COLUMNS,
    STATEMENT_COLUMNS,
    MarketRows,
)
from marketintel.data.models import Company, FinancialStatement
from marketintel.errors import (
    AccessDeniedError,
    BackendError,
    MarketDataError,
    MarketIntelError,
)
from marketintel.runner import (
    COMPARISON_ERROR_MESSAGE,
    MARKET_ERROR_MESSAGE,
    ComparisonRunner,
    MarketAnalysisRunner,
    ViewState,
)
from marketintel.services.rbac import Role

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_rows(*sectors: str) -> MarketRows:
    companies = [
        {
            "id": f"c{i}", "name": f"Co {i}", "sector": sector,
            "company_type": "Private", "is_listed": False,
            "employee_count": 20, "market_cap": 1e9, "founded_date": None,
        }
        for i, sector in enumerate(sectors)
    ]
    return MarketRows(
        companies=pd.DataFrame(companies, columns=list(COMPANY_COLUMNS)),
        funding_rounds=pd.DataFrame([], columns=list(FUNDING_COLUMNS)),
        financial_statements=pd.DataFrame([], columns=list(STATEMENT_COLUMNS)),
        recent_companies=pd.DataFrame([], columns=list(RECENT_COMPANY_COLUMNS)),
    )


def _make_runner(role: Role = Role.ENTERPRISE) -> MarketAnalysisRunner:
    return MarketAnalysisRunner(MagicMock(), role, clock=lambda: NOW)


def _make_company(company_id: str) -> Company:
    return Company(
        id=company_id,
        name=f"Company {company_id}",
        sector="Tech",
        company_type="Private",
        employee_count=120,
        market_cap=1e9,
        founded_date=date(2015, 1, 1),
        is_listed=False,
        status="ACTIVE",
        financial_statements=[FinancialStatement(2023, 2e8, 2e7)],
        funding_rounds=[],
    )


# ---------------------------------------------------------------------------
# Market analysis
# ---------------------------------------------------------------------------


class TestMarketAccess:
    @pytest.mark.parametrize("role", [Role.FREEMIUM, Role.PREMIUM])
    def test_locked_below_enterprise(self, role: Role) -> None:
        runner = _make_runner(role)
        assert runner.state is ViewState.LOCKED
        with pytest.raises(AccessDeniedError):
            runner.refresh()

    def test_admin_allowed(self) -> None:
        assert _make_runner(Role.ADMIN).state is ViewState.LOADING


class TestMarketRefresh:
    def test_ready_after_refresh(self) -> None:
        runner = _make_runner()
        with patch("marketintel.runner.fetch_market_rows", return_value=_make_rows("Tech")):
            assert runner.refresh()
        assert runner.state is ViewState.READY
        assert runner.snapshot.total_companies == 1
        assert runner.snapshot_filters == runner.filters

    def test_empty_result(self) -> None:
        runner = _make_runner()
        with patch("marketintel.runner.fetch_market_rows", return_value=_make_rows()):
            runner.refresh()
        assert runner.state is ViewState.EMPTY

    def test_failure_then_retry(self) -> None:
        runner = _make_runner()
        with patch(
            "marketintel.runner.fetch_market_rows",
            side_effect=MarketDataError("Company query failed"),
        ):
            assert not runner.refresh()
        assert runner.state is ViewState.ERROR
        assert runner.error == MARKET_ERROR_MESSAGE
        assert runner.snapshot is None

        with patch("marketintel.runner.fetch_market_rows", return_value=_make_rows("Tech")):
            assert runner.retry()
        assert runner.state is ViewState.READY
        assert runner.error is None

    def test_set_filters_passes_new_filters(self) -> None:
        runner = _make_runner()
        with patch(
            "marketintel.runner.fetch_market_rows", return_value=_make_rows("Fintech"),
        ) as fetch:
            runner.set_filters(sector="Fintech")
        assert fetch.call_args.args[1].sector == "Fintech"
        assert runner.snapshot.sector_filter == "Fintech"

    def test_stale_result_discarded(self) -> None:
        runner = _make_runner()
        calls: list[str] = []

        def fake_fetch(backend, filters, config, now):
            calls.append(filters.sector)
            if len(calls) == 1:
                # A newer filter change lands while the first fetch is in flight.
                runner.set_filters(sector="Fintech")
                return _make_rows("Tech", "Tech", "Tech")
            return _make_rows("Fintech")

        with patch("marketintel.runner.fetch_market_rows", side_effect=fake_fetch):
            applied = runner.refresh()

        assert not applied
        assert calls == ["all", "Fintech"]
        assert runner.snapshot_filters.sector == "Fintech"
        assert runner.snapshot.total_companies == 1
        assert runner.state is ViewState.READY

    def test_stale_failure_does_not_set_error(self) -> None:
        runner = _make_runner()

        def fake_fetch(backend, filters, config, now):
            if filters.sector == "all":
                runner.set_filters(sector="Fintech")
                raise MarketDataError("timeout")
            return _make_rows("Fintech")

        with patch("marketintel.runner.fetch_market_rows", side_effect=fake_fetch):
            runner.refresh()

        assert runner.state is ViewState.READY
        assert runner.error is None

    def test_reset_filters(self) -> None:
        runner = _make_runner()
        with patch("marketintel.runner.fetch_market_rows", return_value=_make_rows("Tech")):
            runner.set_filters(sector="Tech")
            runner.reset_filters()
        assert runner.filters.sector == "all"


class TestMarketExport:
    def test_export_uses_snapshot_without_refetch(self, tmp_path: Path) -> None:
        runner = _make_runner()
        with patch(
            "marketintel.runner.fetch_market_rows", return_value=_make_rows("Tech"),
        ) as fetch:
            runner.set_filters(sector="Tech")
            path = runner.export(tmp_path)

        assert fetch.call_count == 1
        assert path.name == "market_analysis_Tech_1year_all_all_2024-06-15.json"
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["summary"]["total_companies"] == 1

    def test_export_without_snapshot(self, tmp_path: Path) -> None:
        with pytest.raises(MarketIntelError, match="No market data"):
            _make_runner().export(tmp_path)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


class TestComparisonRunner:
    def test_locked_for_premium(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.PREMIUM)
        assert runner.state is ViewState.LOCKED
        with pytest.raises(AccessDeniedError):
            runner.add(_make_company("a"))

    def test_not_ready_with_one_company(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE, clock=lambda: NOW)
        runner.add(_make_company("a"))
        assert runner.load() is None
        assert runner.state is ViewState.EMPTY

    def test_capacity_error_kept(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE)
        for company_id in "abcd":
            assert runner.add(_make_company(company_id)).ok
        result = runner.add(_make_company("e"))
        assert not result.ok
        assert runner.error == result.message
        assert len(runner.selection) == 4

    def test_load_builds_snapshot(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE, clock=lambda: NOW)
        companies = [_make_company("a"), _make_company("b")]
        for company in companies:
            runner.add(company)
        with patch(
            "marketintel.runner.fetch_comparison_companies", return_value=companies,
        ) as fetch:
            snapshot = runner.load()
            runner.load()

        fetch.assert_called_once()
        assert fetch.call_args.args[1] == ["a", "b"]
        assert runner.state is ViewState.READY
        assert snapshot is runner.snapshot
        assert len(snapshot.companies) == 2

    def test_load_with_supplied_loader(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE, clock=lambda: NOW)
        companies = {c: _make_company(c) for c in "ab"}
        for company in companies.values():
            runner.add(company)
        with patch("marketintel.runner.fetch_comparison_companies") as fetch:
            snapshot = runner.load(lambda ids: [companies[i] for i in ids])

        fetch.assert_not_called()
        assert [c.id for c in snapshot.companies] == ["a", "b"]
        assert runner.state is ViewState.READY

    def test_load_failure(self) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE, clock=lambda: NOW)
        runner.add(_make_company("a"))
        runner.add(_make_company("b"))
        with patch(
            "marketintel.runner.fetch_comparison_companies",
            side_effect=BackendError("boom"),
        ):
            assert runner.load() is None
        assert runner.state is ViewState.ERROR
        assert runner.error == COMPARISON_ERROR_MESSAGE

    def test_export_requires_snapshot(self, tmp_path: Path) -> None:
        runner = ComparisonRunner(MagicMock(), Role.ENTERPRISE)
        with pytest.raises(MarketIntelError, match="No comparison"):
            runner.export(tmp_path)
