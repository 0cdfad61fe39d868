"""Tests for marketintel.data.models."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from marketintel.data.models import (
    Company,
    FinancialStatement,
    FundingRound,
    parse_date,
    parse_decimal,
    parse_int,
)


def _make_row(**overrides: object) -> dict:
    row = {
        "id": "c1",
        "name": "Acme Ltd",
        "sector": "Tech",
        "company_type": "Private",
        "employee_count": "120",
        "market_cap": "2500000000.00",
        "founded_date": "2015-04-01",
        "is_listed": True,
        "status": "ACTIVE",
        "financial_statements": [
            {"financial_year": 2022, "total_revenue": "100", "net_profit": "10"},
            {"financial_year": 2023, "total_revenue": "150", "net_profit": "20"},
        ],
        "funding_rounds": [
            {"amount_raised": 5e6, "round_type": "Seed", "funding_date": "2016-01-10"},
        ],
        "key_officials": [{"name": "A. Director", "designation": "CEO"}],
    }
    row.update(overrides)
    return row


class TestParseDecimal:
    @pytest.mark.parametrize("value, expected", [
        (42, 42.0),
        ("1.5e3", 1500.0),
        ("  7.25 ", 7.25),
        (None, None),
        ("abc", None),
        (float("nan"), None),
        (float("inf"), None),
        (True, None),
    ])
    def test_values(self, value: object, expected: float | None) -> None:
        assert parse_decimal(value) == expected

    def test_parse_int_truncates(self) -> None:
        assert parse_int("99.9") == 99
        assert parse_int("") is None


class TestParseDate:
    def test_plain_date(self) -> None:
        assert parse_date("2024-03-05") == date(2024, 3, 5)

    def test_timestamp_with_zulu(self) -> None:
        assert parse_date("2024-03-05T23:10:00Z") == date(2024, 3, 5)

    def test_datetime_object(self) -> None:
        assert parse_date(datetime(2024, 1, 2, 3, 4)) == date(2024, 1, 2)

    @pytest.mark.parametrize("value", [None, "", "not a date", "2024-13-45"])
    def test_invalid(self, value: object) -> None:
        assert parse_date(value) is None


class TestCompany:
    def test_from_row_parses_nested(self) -> None:
        company = Company.from_row(_make_row())
        assert company.id == "c1"
        assert company.employee_count == 120
        assert company.market_cap == 2.5e9
        assert company.founded_date == date(2015, 4, 1)
        assert company.is_listed is True
        assert len(company.financial_statements) == 2
        assert company.funding_rounds[0].amount_raised == 5e6
        assert company.key_officials[0].designation == "CEO"

    def test_missing_fields_default(self) -> None:
        company = Company.from_row({"id": 7, "name": None})
        assert company.id == "7"
        assert company.name == ""
        assert company.market_cap is None
        assert company.is_listed is False
        assert company.funding_rounds == []

    def test_is_listed_requires_true(self) -> None:
        assert Company.from_row(_make_row(is_listed="yes")).is_listed is False

    def test_latest_statement_by_year_not_position(self) -> None:
        row = _make_row(financial_statements=[
            {"financial_year": 2023, "total_revenue": "150"},
            {"financial_year": 2021, "total_revenue": "90"},
            {"financial_year": None, "total_revenue": "999"},
        ])
        latest = Company.from_row(row).latest_statement()
        assert latest is not None
        assert latest.financial_year == 2023
        assert latest.revenue == 150.0

    def test_latest_statement_none_when_empty(self) -> None:
        assert Company.from_row(_make_row(financial_statements=[])).latest_statement() is None


class TestRelatedRecords:
    def test_statement_accepts_aliases(self) -> None:
        statement = FinancialStatement.from_row(
            {"financial_year": "2024", "revenue": 10, "profit": -2},
        )
        assert statement.financial_year == 2024
        assert statement.revenue == 10.0
        assert statement.net_profit == -2.0

    def test_round_blank_type_is_none(self) -> None:
        funding = FundingRound.from_row({"amount_raised": "x", "round_type": ""})
        assert funding.amount_raised is None
        assert funding.round_type is None
        assert funding.funding_date is None
