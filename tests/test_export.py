"""Tests for marketintel.reports.export and the PDF context builder."""

from __future__ import annotations

from datetime import UTC, date, datetime
from pathlib import Path
from unittest.mock import patch

import pandas as pd
import pytest

from marketintel.analysis.comparison import build_comparison
from marketintel.analysis.market import MarketSnapshot, aggregate_market
from marketintel.config import AnalysisConfig, CompanySize, ComparisonConfig, TimeRange
from marketintel.data.fetch import (
    COMPANY_COLUMNS,
    FUNDING_COLUMNS,
    RECENT_COMPANY_COLUMNS,
    STATEMENT_COLUMNS,
    MarketFilters,
    MarketRows,
)
from marketintel.data.models import Company
from marketintel.reports.export import (
    COMPARISON_REPORT,
    MARKET_REPORT,
    comparison_export_document,
    export_filename,
    market_export_document,
    read_export,
    write_export,
)
from marketintel.reports.pdf import build_context

NOW = datetime(2024, 6, 15, 9, 30, tzinfo=UTC)
FILTERS = MarketFilters(sector="Tech", time_range=TimeRange.SIX_MONTHS)


def _make_snapshot() -> MarketSnapshot:
    rows = MarketRows(
        companies=pd.DataFrame([
            {"id": "1", "name": "Ääkkönen Oy", "sector": "Tech",
             "company_type": "Private", "is_listed": True, "employee_count": 10,
             "market_cap": 4e9, "founded_date": "2024-02-01"},
            {"id": "2", "name": "B", "sector": "Tech", "company_type": "Private",
             "is_listed": False, "employee_count": 20, "market_cap": 1e9,
             "founded_date": "2023-02-01"},
        ], columns=list(COMPANY_COLUMNS)),
        funding_rounds=pd.DataFrame([
            {"amount_raised": 3e6, "currency": "INR", "funding_date": "2024-05-01",
             "round_type": "Seed", "company_name": "Ääkkönen Oy",
             "company_sector": "Tech"},
        ], columns=list(FUNDING_COLUMNS)),
        financial_statements=pd.DataFrame([], columns=list(STATEMENT_COLUMNS)),
        recent_companies=pd.DataFrame([], columns=list(RECENT_COMPANY_COLUMNS)),
    )
    return aggregate_market(rows, "Tech", AnalysisConfig(), NOW)


class TestExportFilename:
    def test_market_filename(self) -> None:
        assert export_filename(MARKET_REPORT, FILTERS.slug(), NOW) == (
            "market_analysis_Tech_6months_all_all_2024-06-15.json"
        )

    def test_empty_slug_is_skipped(self) -> None:
        assert export_filename(COMPARISON_REPORT, "", NOW) == (
            "company_comparison_2024-06-15.json"
        )

    def test_unsafe_characters_replaced(self) -> None:
        slug = MarketFilters(sector="Media & Entertainment").slug()
        assert export_filename(MARKET_REPORT, slug, NOW) == (
            "market_analysis_Media---Entertainment_1year_all_all_2024-06-15.json"
        )


class TestMarketExport:
    def test_summary_matches_snapshot(self) -> None:
        snapshot = _make_snapshot()
        document = market_export_document(snapshot, FILTERS, NOW)

        assert document["generated_at"] == NOW.isoformat()
        assert document["filters"] == {
            "sector": "Tech",
            "time_range": "6months",
            "company_type": "all",
            "company_size": "all",
        }
        summary = document["summary"]
        assert summary["total_companies"] == 2
        assert summary["total_funding_billions"] == snapshot.total_funding_billions
        assert summary["average_valuation_millions"] == pytest.approx(3.0)
        assert summary["total_market_cap_all_companies"] == 5e9
        assert summary["active_sectors"] == 1
        assert summary["listed_companies"] == 1
        assert len(document["funding_trend"]) == 12
        assert document["company_growth"]["trend"] == "up"

    def test_round_trip_through_file(self, tmp_path: Path) -> None:
        snapshot = _make_snapshot()
        document = market_export_document(snapshot, FILTERS, NOW)
        filename = export_filename(MARKET_REPORT, FILTERS.slug(), NOW)

        path = write_export(document, tmp_path / "exports", filename)

        assert path.exists()
        assert read_export(path) == document
        assert "Ääkkönen Oy" in path.read_text(encoding="utf-8")

    def test_sector_with_path_separator(self, tmp_path: Path) -> None:
        filters = MarketFilters(sector="Food/Agri")
        document = market_export_document(_make_snapshot(), filters, NOW)
        filename = export_filename(MARKET_REPORT, filters.slug(), NOW)

        path = write_export(document, tmp_path, filename)

        assert filename == "market_analysis_Food-Agri_1year_all_all_2024-06-15.json"
        assert path.parent == tmp_path
        assert read_export(path)["filters"]["sector"] == "Food/Agri"


class TestComparisonExport:
    def test_document_shape(self, tmp_path: Path) -> None:
        snapshot = build_comparison(
            [
                Company(id="x", name="X", market_cap=2e9, employee_count=10),
                Company(id="y", name="Y", market_cap=1e9, employee_count=30),
            ],
            date(2024, 6, 15), ComparisonConfig(),
        )
        document = comparison_export_document(snapshot, NOW)

        assert document["timestamp"] == NOW.isoformat()
        assert document["filters"] == {"company_ids": ["x", "y"]}
        assert document["summary"]["market_leader"] == "X"
        assert document["metrics"]["average_employees"] == 20.0

        path = write_export(document, tmp_path, export_filename(COMPARISON_REPORT, "", NOW))
        assert read_export(path)["companies"][1]["name"] == "Y"


class TestPdfContext:
    def test_context_without_charts(self) -> None:
        snapshot = _make_snapshot()
        with patch("marketintel.reports.pdf._render_charts", return_value=[]):
            context = build_context(
                snapshot, MarketFilters(company_size=CompanySize.LARGE), NOW,
            )

        assert context["filters"]["company_size"] == "large"
        assert context["generated_at"] == "15 June 2024"
        assert ("Total Companies", "2") in context["summary"]
        assert context["deals"][0]["amount"] == "₹3.0M"
        assert context["trends"][0]["change"] == "N/A"
        assert context["is_empty"] is False
