"""Record types read from the backend.

All records are parsed leniently: malformed numeric or date fields become
None instead of raising, so a single bad row never aborts a page.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)


def parse_decimal(value: object) -> float | None:
    """Parse a backend decimal (number or numeric string) to a finite float.

    Args:
        value: Raw field value. May be None, a number, or a string.

    Returns:
        Finite float, or None for null, NaN, infinite or non-numeric input.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.debug("Unparseable decimal %r", value)
        return None
    if not math.isfinite(f):
        return None
    return f


def parse_int(value: object) -> int | None:
    """Parse a count field, truncating decimals. None when unparseable."""
    f = parse_decimal(value)
    return int(f) if f is not None else None


def parse_date(value: object) -> date | None:
    """Parse an ISO-8601 date or timestamp string to a date.

    Args:
        value: "YYYY-MM-DD", a full ISO timestamp, a date, or None.

    Returns:
        The calendar date, or None when missing or malformed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.debug("Unparseable date %r", value)
        return None


def _text(value: object) -> str:
    return "" if value is None else str(value)


@dataclass
class FinancialStatement:
    """One financial year of a company's results."""

    financial_year: int | None
    revenue: float | None
    net_profit: float | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FinancialStatement:
        # The table stores total_revenue/net_profit; older selects alias them.
        revenue = row.get("total_revenue", row.get("revenue"))
        profit = row.get("net_profit", row.get("profit"))
        return cls(
            financial_year=parse_int(row.get("financial_year")),
            revenue=parse_decimal(revenue),
            net_profit=parse_decimal(profit),
        )


@dataclass
class FundingRound:
    """A single capital-raising event."""

    amount_raised: float | None
    round_type: str | None
    funding_date: date | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FundingRound:
        return cls(
            amount_raised=parse_decimal(row.get("amount_raised")),
            round_type=row.get("round_type") or None,
            funding_date=parse_date(row.get("funding_date")),
        )


@dataclass
class KeyOfficial:
    """A director or officer listed against a company."""

    name: str
    designation: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> KeyOfficial:
        return cls(
            name=_text(row.get("name")),
            designation=_text(row.get("designation")),
        )


@dataclass
class Company:
    """A company record, optionally hydrated with related rows.

    Attributes:
        id: Backend identifier.
        name: Display name.
        sector: Free-text sector. May be empty.
        company_type: Legal form or category.
        employee_count: Head count, None when unknown.
        market_cap: Market capitalisation, None when unknown.
        founded_date: Incorporation date.
        is_listed: True for publicly listed companies.
        status: Lifecycle status; only "ACTIVE" companies are analysed.
        financial_statements: Related statements, in backend order.
        funding_rounds: Related funding rounds.
        key_officials: Related officials.
    """

    id: str
    name: str
    sector: str = ""
    company_type: str = ""
    employee_count: int | None = None
    market_cap: float | None = None
    founded_date: date | None = None
    is_listed: bool = False
    status: str = ""
    financial_statements: list[FinancialStatement] = field(default_factory=list)
    funding_rounds: list[FundingRound] = field(default_factory=list)
    key_officials: list[KeyOfficial] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Company:
        """Build a Company from a backend row with optional nested arrays."""
        return cls(
            id=_text(row.get("id")),
            name=_text(row.get("name")),
            sector=_text(row.get("sector")),
            company_type=_text(row.get("company_type")),
            employee_count=parse_int(row.get("employee_count")),
            market_cap=parse_decimal(row.get("market_cap")),
            founded_date=parse_date(row.get("founded_date")),
            is_listed=row.get("is_listed") is True,
            status=_text(row.get("status")),
            financial_statements=[
                FinancialStatement.from_row(r)
                for r in row.get("financial_statements") or []
            ],
            funding_rounds=[
                FundingRound.from_row(r) for r in row.get("funding_rounds") or []
            ],
            key_officials=[
                KeyOfficial.from_row(r) for r in row.get("key_officials") or []
            ],
        )

    def latest_statement(self) -> FinancialStatement | None:
        """Return the statement with the most recent financial year.

        Statements without a year rank below any dated statement. Ties keep
        backend order.
        """
        if not self.financial_statements:
            return None
        ordered = sorted(
            self.financial_statements,
            key=lambda s: s.financial_year if s.financial_year is not None else -1,
            reverse=True,
        )
        return ordered[0]
