"""Side-by-side comparison of two to four companies.

ComparisonSet holds the selection. CompanyComparison holds per-company
figures and the derived ratios; every ratio returns None when its operands
do not qualify, and format_ratio/format_money render None as "N/A".
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

from marketintel.config import ComparisonConfig
from marketintel.data.models import Company
from marketintel.errors import ValidationResult

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

CAPACITY_MESSAGE = "Maximum {limit} companies can be compared at once"
DUPLICATE_MESSAGE = "Company already added to comparison"

# Maturity score weights
_LISTED_POINTS = 3
_FUNDED_POINTS = 2
_HEADCOUNT_POINTS = 2
_AGE_POINTS = 2
_REVENUE_POINTS = 1


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_ratio(value: float | None, suffix: str = "", decimals: int = 2) -> str:
    """Render a ratio, or "N/A" when it is undefined."""
    if value is None:
        return NOT_AVAILABLE
    return f"{value:,.{decimals}f}{suffix}"


def format_money(value: float | None, currency: str = "₹") -> str:
    """Render an amount with a K/M/B/T suffix, or "N/A" when undefined."""
    if value is None:
        return NOT_AVAILABLE
    magnitude = abs(value)
    for threshold, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if magnitude >= threshold:
            return f"{currency}{value / threshold:.1f}{suffix}"
    return f"{currency}{value:,.0f}"


def _ratio(
    numerator: float, denominator: float, scale: float = 1.0,
) -> float | None:
    """numerator / denominator * scale when both are positive, else None."""
    if numerator > 0 and denominator > 0:
        return numerator / denominator * scale
    return None


# ---------------------------------------------------------------------------
# Per-company figures
# ---------------------------------------------------------------------------


def company_age_years(founded: date | None, today: date) -> int | None:
    """Whole calendar years since founding, None when undated."""
    if founded is None:
        return None
    return today.year - founded.year


def maturity_score(
    company: Company, today: date, config: ComparisonConfig,
) -> int:
    """Deterministic 0-10 maturity heuristic.

    Points: listed +3, any funding round +2, more than
    ``mature_employee_threshold`` employees +2, older than
    ``mature_age_years`` +2, positive latest revenue +1.
    """
    score = 0
    if company.is_listed:
        score += _LISTED_POINTS
    if company.funding_rounds:
        score += _FUNDED_POINTS
    if (company.employee_count or 0) > config.mature_employee_threshold:
        score += _HEADCOUNT_POINTS
    age = company_age_years(company.founded_date, today)
    if age is not None and age > config.mature_age_years:
        score += _AGE_POINTS
    statement = company.latest_statement()
    if statement is not None and (statement.revenue or 0) > 0:
        score += _REVENUE_POINTS
    return score


@dataclass(frozen=True)
class CompanyComparison:
    """Comparison figures for one company.

    Missing numeric fields default to 0; revenue and profit come from the
    statement with the latest financial year.

    Attributes:
        id: Company id.
        name: Display name.
        sector: Sector.
        company_type: Company type.
        market_cap: Market cap, 0 when unknown.
        employee_count: Head count, 0 when unknown.
        founded_date: ISO date or None.
        is_listed: Listing flag.
        revenue: Latest revenue, 0 when unknown.
        profit: Latest net profit, 0 when unknown.
        total_funding: Sum of all funding round amounts.
        funding_rounds: Number of funding rounds.
        key_officials: Number of key officials.
        age_years: Calendar years since founding, None when undated.
        maturity_score: 0-10 heuristic.
    """

    id: str
    name: str
    sector: str
    company_type: str
    market_cap: float
    employee_count: int
    founded_date: str | None
    is_listed: bool
    revenue: float
    profit: float
    total_funding: float
    funding_rounds: int
    key_officials: int
    age_years: int | None
    maturity_score: int

    @classmethod
    def from_company(
        cls, company: Company, today: date, config: ComparisonConfig,
    ) -> CompanyComparison:
        statement = company.latest_statement()
        return cls(
            id=company.id,
            name=company.name,
            sector=company.sector,
            company_type=company.company_type,
            market_cap=company.market_cap or 0.0,
            employee_count=company.employee_count or 0,
            founded_date=(
                company.founded_date.isoformat() if company.founded_date else None
            ),
            is_listed=company.is_listed,
            revenue=(statement.revenue or 0.0) if statement else 0.0,
            profit=(statement.net_profit or 0.0) if statement else 0.0,
            total_funding=sum(r.amount_raised or 0.0 for r in company.funding_rounds),
            funding_rounds=len(company.funding_rounds),
            key_officials=len(company.key_officials),
            age_years=company_age_years(company.founded_date, today),
            maturity_score=maturity_score(company, today, config),
        )

    # -- Ratios ------------------------------------------------------------

    @property
    def profit_margin(self) -> float | None:
        """profit / revenue * 100; needs revenue > 0 and profit != 0."""
        if self.revenue > 0 and self.profit != 0:
            return self.profit / self.revenue * 100
        return None

    @property
    def pe_ratio(self) -> float | None:
        return _ratio(self.market_cap, self.profit)

    @property
    def ps_ratio(self) -> float | None:
        return _ratio(self.market_cap, self.revenue)

    @property
    def roi(self) -> float | None:
        """profit / total_funding * 100."""
        return _ratio(self.profit, self.total_funding, 100.0)

    @property
    def revenue_per_employee(self) -> float | None:
        return _ratio(self.revenue, self.employee_count)

    @property
    def market_cap_per_employee(self) -> float | None:
        return _ratio(self.market_cap, self.employee_count)

    @property
    def funding_per_employee(self) -> float | None:
        return _ratio(self.total_funding, self.employee_count)

    @property
    def funding_per_round(self) -> float | None:
        return _ratio(self.total_funding, self.funding_rounds)

    @property
    def employees_per_year(self) -> float | None:
        return _ratio(self.employee_count, self.age_years or 0)

    def ratios(self) -> dict[str, float | None]:
        return {
            "profit_margin": self.profit_margin,
            "pe_ratio": self.pe_ratio,
            "ps_ratio": self.ps_ratio,
            "roi": self.roi,
            "revenue_per_employee": self.revenue_per_employee,
            "market_cap_per_employee": self.market_cap_per_employee,
            "funding_per_employee": self.funding_per_employee,
            "funding_per_round": self.funding_per_round,
            "employees_per_year": self.employees_per_year,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "ratios": self.ratios()}


# ---------------------------------------------------------------------------
# Cross-set figures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComparisonMetrics:
    """Extrema and totals across the compared companies."""

    highest_market_cap: float
    lowest_market_cap: float
    average_employees: float
    total_funding: float
    total_companies: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ComparisonSummary:
    """Headline summary of a comparison.

    Attributes:
        market_leader: Name of the company with the largest market cap.
            Ties go to the later company.
        total_market_cap: Summed market cap.
        average_employees: Mean head count.
        total_funding: Summed funding.
        sectors: Distinct sectors, first-seen order.
        company_types: Distinct company types, first-seen order.
    """

    market_leader: str
    total_market_cap: float
    average_employees: float
    total_funding: float
    sectors: tuple[str, ...]
    company_types: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sectors"] = list(self.sectors)
        data["company_types"] = list(self.company_types)
        return data


@dataclass(frozen=True)
class ComparisonSnapshot:
    """Immutable result of one comparison build."""

    companies: tuple[CompanyComparison, ...]
    metrics: ComparisonMetrics
    summary: ComparisonSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "companies": [c.to_dict() for c in self.companies],
            "metrics": self.metrics.to_dict(),
            "summary": self.summary.to_dict(),
        }


def _distinct(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def comparison_metrics(companies: list[CompanyComparison]) -> ComparisonMetrics:
    """Cross-set extrema and totals. All zero for an empty list."""
    if not companies:
        return ComparisonMetrics(0.0, 0.0, 0.0, 0.0, 0)
    caps = [c.market_cap for c in companies]
    return ComparisonMetrics(
        highest_market_cap=max(caps),
        lowest_market_cap=min(caps),
        average_employees=sum(c.employee_count for c in companies) / len(companies),
        total_funding=sum(c.total_funding for c in companies),
        total_companies=len(companies),
    )


def comparison_summary(
    companies: list[CompanyComparison], metrics: ComparisonMetrics,
) -> ComparisonSummary:
    leader = ""
    if companies:
        best = companies[0]
        for current in companies[1:]:
            if not best.market_cap > current.market_cap:
                best = current
        leader = best.name

    return ComparisonSummary(
        market_leader=leader,
        total_market_cap=sum(c.market_cap for c in companies),
        average_employees=metrics.average_employees,
        total_funding=metrics.total_funding,
        sectors=_distinct(c.sector for c in companies),
        company_types=_distinct(c.company_type for c in companies),
    )


def build_comparison(
    companies: list[Company], today: date, config: ComparisonConfig,
) -> ComparisonSnapshot:
    """Build per-company figures, cross-set metrics and the summary.

    Args:
        companies: Fully hydrated companies, in display order.
        today: Reference date for company age.
        config: Maturity thresholds.

    Returns:
        ComparisonSnapshot.
    """
    rows = [CompanyComparison.from_company(c, today, config) for c in companies]
    metrics = comparison_metrics(rows)
    summary = comparison_summary(rows, metrics)
    logger.info(
        "Compared %d companies; leader %s", len(rows), summary.market_leader or "-",
    )
    return ComparisonSnapshot(
        companies=tuple(rows), metrics=metrics, summary=summary,
    )


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class ComparisonSet:
    """Ordered selection of companies to compare.

    Holds at most ``config.max_companies`` distinct ids. Rejected adds are
    reported through ValidationResult and leave the selection unchanged.
    Any membership change drops the cached snapshot.
    """

    def __init__(self, config: ComparisonConfig | None = None) -> None:
        self.config = config or ComparisonConfig()
        self._companies: list[Company] = []
        self._snapshot: ComparisonSnapshot | None = None

    def __len__(self) -> int:
        return len(self._companies)

    def __contains__(self, company_id: object) -> bool:
        return any(c.id == company_id for c in self._companies)

    @property
    def companies(self) -> tuple[Company, ...]:
        return tuple(self._companies)

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self._companies]

    @property
    def is_ready(self) -> bool:
        """True when enough companies are selected to compare."""
        return len(self._companies) >= self.config.min_companies

    @property
    def snapshot(self) -> ComparisonSnapshot | None:
        return self._snapshot

    def add(self, company: Company) -> ValidationResult:
        if len(self._companies) >= self.config.max_companies:
            return ValidationResult.rejected(
                CAPACITY_MESSAGE.format(limit=self.config.max_companies),
            )
        if company.id in self:
            return ValidationResult.rejected(DUPLICATE_MESSAGE)
        self._companies.append(company)
        self._snapshot = None
        return ValidationResult.accepted()

    def remove(self, company_id: str) -> ValidationResult:
        remaining = [c for c in self._companies if c.id != company_id]
        if len(remaining) == len(self._companies):
            return ValidationResult.rejected("Company is not in the comparison")
        self._companies = remaining
        self._snapshot = None
        return ValidationResult.accepted()

    def clear(self) -> None:
        self._companies = []
        self._snapshot = None

    def build(
        self,
        loader: Callable[[list[str]], list[Company]],
        today: date,
    ) -> ComparisonSnapshot | None:
        """Build (or return the cached) snapshot for the current selection.

        Args:
            loader: Returns fully hydrated companies for a list of ids.
            today: Reference date.

        Returns:
            The snapshot, or None when fewer than ``min_companies`` are
            selected.
        """
        if not self.is_ready:
            return None
        if self._snapshot is None:
            hydrated = loader(self.ids)
            self._snapshot = build_comparison(hydrated, today, self.config)
        return self._snapshot
