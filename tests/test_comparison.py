"""Tests for marketintel.analysis.comparison."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from marketintel.analysis.comparison import (
    CAPACITY_MESSAGE,
    DUPLICATE_MESSAGE,
    CompanyComparison,
    ComparisonSet,
    build_comparison,
    company_age_years,
    format_money,
    format_ratio,
    maturity_score,
)
from marketintel.config import ComparisonConfig
from marketintel.data.models import Company, FinancialStatement, FundingRound

TODAY = date(2024, 6, 15)


def _make_company(
    company_id: str = "c1",
    name: str | None = None,
    market_cap: float | None = 1e9,
    employees: int | None = 150,
    founded: date | None = date(2010, 1, 1),
    listed: bool = True,
    revenue: float | None = 5e8,
    profit: float | None = 5e7,
    funding: tuple[float, ...] = (1e7,),
    sector: str = "Tech",
    company_type: str = "Private",
) -> Company:
    statements = []
    if revenue is not None or profit is not None:
        statements.append(FinancialStatement(2023, revenue, profit))
    return Company(
        id=company_id,
        name=name or f"Company {company_id}",
        sector=sector,
        company_type=company_type,
        employee_count=employees,
        market_cap=market_cap,
        founded_date=founded,
        is_listed=listed,
        status="ACTIVE",
        financial_statements=statements,
        funding_rounds=[FundingRound(a, "Seed", None) for a in funding],
    )


def _compare(company: Company) -> CompanyComparison:
    return CompanyComparison.from_company(company, TODAY, ComparisonConfig())


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    @pytest.mark.parametrize("value, expected", [
        (None, "N/A"),
        (500.0, "₹500"),
        (2.5e3, "₹2.5K"),
        (3.3e6, "₹3.3M"),
        (2.5e9, "₹2.5B"),
        (1.2e12, "₹1.2T"),
    ])
    def test_format_money(self, value: float | None, expected: str) -> None:
        assert format_money(value) == expected

    def test_format_ratio(self) -> None:
        assert format_ratio(None) == "N/A"
        assert format_ratio(12.5, "%") == "12.50%"


# ---------------------------------------------------------------------------
# Per-company figures
# ---------------------------------------------------------------------------


class TestMaturity:
    def test_full_score(self) -> None:
        assert maturity_score(_make_company(), TODAY, ComparisonConfig()) == 10

    def test_zero_score(self) -> None:
        company = _make_company(
            listed=False, funding=(), employees=None, founded=None,
            revenue=None, profit=None,
        )
        assert maturity_score(company, TODAY, ComparisonConfig()) == 0

    def test_thresholds_are_strict(self) -> None:
        company = _make_company(
            listed=False, funding=(), employees=100, founded=date(2019, 12, 31),
            revenue=0.0,
        )
        assert maturity_score(company, TODAY, ComparisonConfig()) == 0

    def test_age_is_calendar_years(self) -> None:
        assert company_age_years(date(2019, 12, 31), TODAY) == 5
        assert company_age_years(None, TODAY) is None


class TestRatios:
    def test_zero_revenue_positive_profit(self) -> None:
        row = _compare(_make_company(market_cap=0.0, revenue=0.0, profit=500.0))
        assert format_ratio(row.profit_margin) == "N/A"
        assert format_ratio(row.pe_ratio) == "N/A"
        assert format_ratio(row.ps_ratio) == "N/A"

    def test_pe_needs_only_market_cap_and_profit(self) -> None:
        row = _compare(_make_company(market_cap=1e6, revenue=0.0, profit=500.0))
        assert row.pe_ratio == pytest.approx(2000.0)
        assert row.ps_ratio is None
        assert row.profit_margin is None

    def test_loss_making_company(self) -> None:
        row = _compare(_make_company(revenue=1000.0, profit=-100.0))
        assert row.profit_margin == pytest.approx(-10.0)
        assert row.pe_ratio is None
        assert row.roi is None

    def test_per_unit_ratios(self) -> None:
        row = _compare(_make_company(
            market_cap=3e9, employees=100, revenue=1e8, profit=1e7,
            funding=(2e7, 3e7), founded=date(2014, 5, 1),
        ))
        assert row.total_funding == 5e7
        assert row.funding_rounds == 2
        assert row.roi == pytest.approx(20.0)
        assert row.revenue_per_employee == pytest.approx(1e6)
        assert row.market_cap_per_employee == pytest.approx(3e7)
        assert row.funding_per_employee == pytest.approx(5e5)
        assert row.funding_per_round == pytest.approx(2.5e7)
        assert row.employees_per_year == pytest.approx(10.0)

    def test_missing_values_default_to_zero(self) -> None:
        row = _compare(_make_company(
            market_cap=None, employees=None, revenue=None, profit=None, funding=(),
        ))
        assert row.market_cap == 0.0
        assert row.employee_count == 0
        assert all(v is None for v in row.ratios().values())

    def test_uses_latest_statement(self) -> None:
        company = _make_company()
        company.financial_statements = [
            FinancialStatement(2023, 200.0, 20.0),
            FinancialStatement(2021, 100.0, 10.0),
        ]
        assert _compare(company).revenue == 200.0


# ---------------------------------------------------------------------------
# Cross-set figures
# ---------------------------------------------------------------------------


class TestBuildComparison:
    def test_metrics_and_summary(self) -> None:
        snapshot = build_comparison(
            [
                _make_company("a", market_cap=2e9, employees=100, funding=(1e7,)),
                _make_company("b", market_cap=1e9, employees=300, funding=(),
                              sector="Retail", company_type="Public"),
                _make_company("c", market_cap=5e8, employees=200, funding=(4e7,)),
            ],
            TODAY, ComparisonConfig(),
        )
        assert snapshot.metrics.highest_market_cap == 2e9
        assert snapshot.metrics.lowest_market_cap == 5e8
        assert snapshot.metrics.average_employees == pytest.approx(200.0)
        assert snapshot.metrics.total_funding == 5e7
        assert snapshot.summary.market_leader == "Company a"
        assert snapshot.summary.total_market_cap == 3.5e9
        assert snapshot.summary.sectors == ("Tech", "Retail")
        assert snapshot.summary.company_types == ("Private", "Public")

    def test_leader_tie_goes_to_later_company(self) -> None:
        snapshot = build_comparison(
            [_make_company("a", market_cap=1e9), _make_company("b", market_cap=1e9)],
            TODAY, ComparisonConfig(),
        )
        assert snapshot.summary.market_leader == "Company b"

    def test_to_dict_includes_ratios(self) -> None:
        snapshot = build_comparison(
            [_make_company("a"), _make_company("b")], TODAY, ComparisonConfig(),
        )
        data = snapshot.to_dict()
        assert [c["id"] for c in data["companies"]] == ["a", "b"]
        assert "pe_ratio" in data["companies"][0]["ratios"]
        assert data["summary"]["sectors"] == ["Tech"]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestComparisonSet:
    def test_capacity_is_enforced(self) -> None:
        selection = ComparisonSet()
        for i in range(4):
            assert selection.add(_make_company(str(i))).ok

        result = selection.add(_make_company("4"))
        assert not result.ok
        assert result.message == CAPACITY_MESSAGE.format(limit=4)
        assert "Maximum 4 companies" in result.message
        assert len(selection) == 4

    def test_duplicate_is_rejected(self) -> None:
        selection = ComparisonSet()
        selection.add(_make_company("a"))
        result = selection.add(_make_company("a"))
        assert result.message == DUPLICATE_MESSAGE
        assert selection.ids == ["a"]

    def test_remove_unknown(self) -> None:
        selection = ComparisonSet()
        assert not selection.remove("missing").ok

    def test_not_ready_below_two(self) -> None:
        selection = ComparisonSet()
        selection.add(_make_company("a"))
        loader = MagicMock()
        assert selection.build(loader, TODAY) is None
        loader.assert_not_called()

    def test_snapshot_cached_until_membership_changes(self) -> None:
        companies = {c.id: c for c in (
            _make_company("a"), _make_company("b"), _make_company("c"),
        )}
        loader = MagicMock(side_effect=lambda ids: [companies[i] for i in ids])
        selection = ComparisonSet()
        selection.add(companies["a"])
        selection.add(companies["b"])

        first = selection.build(loader, TODAY)
        assert selection.build(loader, TODAY) is first
        assert loader.call_count == 1

        selection.add(companies["c"])
        assert selection.snapshot is None
        rebuilt = selection.build(loader, TODAY)
        assert loader.call_count == 2
        assert [c.id for c in rebuilt.companies] == ["a", "b", "c"]

        selection.remove("c")
        assert selection.snapshot is None

    def test_clear(self) -> None:
        selection = ComparisonSet()
        selection.add(_make_company("a"))
        selection.clear()
        assert len(selection) == 0
        assert "a" not in selection
