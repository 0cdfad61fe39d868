"""Market aggregation: sector summaries, funding trend and deal rankings.

Folds the four fetched row sets into an immutable MarketSnapshot. Every
numeric field is parsed leniently (nulls and non-numeric strings count as 0),
so malformed rows never abort a page. Companies with a blank sector are left
out of the per-sector grouping but still count towards the all-companies
market cap total.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd

from marketintel.config import ALL, AnalysisConfig
from marketintel.data.fetch import MarketRows
from marketintel.data.models import parse_decimal, parse_date

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
UNKNOWN = "Unknown"
OTHER_ROUND_TYPE = "Other"

_MILLION = 1_000_000
_BILLION = 1_000_000_000


# ---------------------------------------------------------------------------
# Snapshot records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SectorSummary:
    """Accumulated and derived figures for one sector.

    Attributes:
        sector: Trimmed sector name.
        company_count: Companies in the sector.
        total_market_cap: Summed market cap (nulls contribute 0).
        listed_count: Companies flagged as listed.
        total_employees: Summed employee count.
        average_market_cap: total_market_cap / company_count, 0 when empty.
        average_employees: total_employees / company_count, 0 when empty.
        listing_rate: listed_count / company_count * 100, 0 when empty.
    """

    sector: str
    company_count: int
    total_market_cap: float
    listed_count: int
    total_employees: float
    average_market_cap: float
    average_employees: float
    listing_rate: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FundingTrendPoint:
    """Summed funding for one calendar month."""

    month: str  # YYYY-MM
    amount_millions: float
    deal_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Deal:
    """A recent funding round with a positive amount."""

    company: str
    amount: float
    sector: str
    date: str | None
    round_type: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RoundTypeSummary:
    """Funding totals for one round type. Amounts in millions."""

    round_type: str
    count: int
    total_amount_millions: float
    average_amount_millions: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompanyGrowth:
    """Companies founded this calendar year against last year."""

    this_year: int
    last_year: int
    growth_pct: float

    @property
    def trend(self) -> str:
        return "up" if self.growth_pct >= 0 else "down"

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "trend": self.trend}


@dataclass(frozen=True)
class RecentCompany:
    """A recently founded company."""

    name: str
    sector: str
    founded_date: str | None
    market_cap: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MarketTrend:
    """One headline metric with its period-over-period change.

    Attributes:
        metric: Display name.
        value: Current value, already scaled to ``unit``.
        unit: "B", "M" or "" for plain counts.
        change: Percentage change, or None when there is no basis for one.
    """

    metric: str
    value: float
    unit: str
    change: float | None

    @property
    def trend(self) -> str | None:
        if self.change is None:
            return None
        return "up" if self.change >= 0 else "down"

    def display_value(self) -> str:
        if self.unit:
            return f"{self.value:,.1f}{self.unit}"
        return f"{self.value:,.0f}"

    def display_change(self) -> str:
        if self.change is None:
            return NOT_AVAILABLE
        return f"{self.change:+.1f}%"

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "trend": self.trend}


@dataclass(frozen=True)
class MarketSnapshot:
    """Immutable result of one market aggregation.

    Attributes:
        sector_filter: Sector filter the snapshot was computed for.
        total_companies: Companies matching the sector filter.
        total_market_cap_all_companies: Market cap over every fetched
            company, including blank-sector ones.
        total_funding_billions: Summed funding of all fetched rounds.
        average_deal_size_millions: Mean round size over all fetched rounds.
        active_sectors: Distinct non-blank sectors.
        listed_companies: Fetched companies flagged as listed.
        sector_distribution: Sector summaries, largest first, top N for
            the distribution chart.
        top_sectors: Sector summaries, largest first, top N for the summary
            panel.
        funding_trend: Dense monthly funding series, oldest first.
        recent_deals: Newest positive-amount rounds.
        funding_by_round_type: Round-type totals, largest first.
        company_growth: New companies this year against last year.
        recent_companies: Most recently founded companies.
        market_trends: Headline metrics.
    """

    sector_filter: str
    total_companies: int
    total_market_cap_all_companies: float
    total_funding_billions: float
    average_deal_size_millions: float
    active_sectors: int
    listed_companies: int
    sector_distribution: tuple[SectorSummary, ...]
    top_sectors: tuple[SectorSummary, ...]
    funding_trend: tuple[FundingTrendPoint, ...]
    recent_deals: tuple[Deal, ...]
    funding_by_round_type: tuple[RoundTypeSummary, ...]
    company_growth: CompanyGrowth
    recent_companies: tuple[RecentCompany, ...]
    market_trends: tuple[MarketTrend, ...]

    @property
    def is_empty(self) -> bool:
        """True when the filters matched no companies and no funding."""
        return (
            self.total_companies == 0
            and not self.sector_distribution
            and not self.recent_deals
            and self.total_funding_billions == 0
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sector_filter": self.sector_filter,
            "total_companies": self.total_companies,
            "total_market_cap_all_companies": self.total_market_cap_all_companies,
            "total_funding_billions": self.total_funding_billions,
            "average_deal_size_millions": self.average_deal_size_millions,
            "active_sectors": self.active_sectors,
            "listed_companies": self.listed_companies,
            "sector_distribution": [s.to_dict() for s in self.sector_distribution],
            "top_sectors": [s.to_dict() for s in self.top_sectors],
            "funding_trend": [p.to_dict() for p in self.funding_trend],
            "recent_deals": [d.to_dict() for d in self.recent_deals],
            "funding_by_round_type": [
                r.to_dict() for r in self.funding_by_round_type
            ],
            "company_growth": self.company_growth.to_dict(),
            "recent_companies": [c.to_dict() for c in self.recent_companies],
            "market_trends": [t.to_dict() for t in self.market_trends],
        }


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _numeric(values: pd.Series) -> pd.Series:
    """Coerce to finite floats; null, NaN, inf and junk become 0."""
    parsed = values.map(parse_decimal)
    return pd.to_numeric(parsed, errors="coerce").fillna(0.0).astype(float)


def _timestamps(values: pd.Series) -> pd.Series:
    """Parse ISO dates/timestamps to UTC datetimes; junk becomes NaT."""
    return pd.to_datetime(
        values.map(parse_date), errors="coerce", utc=True,
    )


def _label(value: object, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return fallback


def _is_true(value: object) -> bool:
    """Only a real boolean True counts as listed."""
    return isinstance(value, (bool, np.bool_)) and bool(value)


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


# ---------------------------------------------------------------------------
# Aggregation steps
# ---------------------------------------------------------------------------


def summarize_sector(
    sector: str,
    company_count: int,
    total_market_cap: float,
    listed_count: int,
    total_employees: float,
) -> SectorSummary:
    """Derive averages and listing rate from accumulated sector totals.

    Every derived value is 0 when ``company_count`` is 0.
    """
    if company_count > 0:
        average_market_cap = total_market_cap / company_count
        average_employees = total_employees / company_count
        listing_rate = listed_count / company_count * 100
    else:
        average_market_cap = 0.0
        average_employees = 0.0
        listing_rate = 0.0

    return SectorSummary(
        sector=sector,
        company_count=company_count,
        total_market_cap=float(total_market_cap),
        listed_count=listed_count,
        total_employees=float(total_employees),
        average_market_cap=float(average_market_cap),
        average_employees=float(average_employees),
        listing_rate=float(listing_rate),
    )


def _sector_summaries(companies: pd.DataFrame) -> list[SectorSummary]:
    """Group companies by trimmed sector; largest sector first.

    Ties keep first-appearance order.
    """
    if companies.empty:
        return []

    frame = pd.DataFrame({
        "sector": companies["sector"].map(
            lambda v: v.strip() if isinstance(v, str) else "",
        ),
        "market_cap": _numeric(companies["market_cap"]),
        "listed": companies["is_listed"].map(_is_true),
        "employees": np.trunc(_numeric(companies["employee_count"])),
    })
    frame = frame[frame["sector"] != ""]
    if frame.empty:
        return []

    grouped = frame.groupby("sector", sort=False).agg(
        company_count=("market_cap", "size"),
        total_market_cap=("market_cap", "sum"),
        listed_count=("listed", "sum"),
        total_employees=("employees", "sum"),
    )

    summaries = [
        summarize_sector(
            sector=str(sector),
            company_count=int(row["company_count"]),
            total_market_cap=float(row["total_market_cap"]),
            listed_count=int(row["listed_count"]),
            total_employees=float(row["total_employees"]),
        )
        for sector, row in grouped.iterrows()
    ]
    summaries.sort(key=lambda s: s.company_count, reverse=True)
    return summaries


def _funding_trend(
    rounds: pd.DataFrame, now: datetime, months: int,
) -> tuple[FundingTrendPoint, ...]:
    """Dense monthly funding totals for the trailing *months*, oldest first."""
    end_key = now.year * 12 + now.month - 1
    totals: dict[int, float] = {}
    counts: dict[int, int] = {}

    if not rounds.empty:
        stamps = _timestamps(rounds["funding_date"])
        amounts = _numeric(rounds["amount_raised"])
        valid = stamps.notna()
        keys = (stamps[valid].dt.year * 12 + stamps[valid].dt.month - 1).astype(int)
        by_month = amounts[valid].groupby(keys)
        totals = {int(k): float(v) for k, v in by_month.sum().items()}
        counts = {int(k): int(v) for k, v in by_month.size().items()}

    points = []
    for key in range(end_key - months + 1, end_key + 1):
        year, month0 = divmod(key, 12)
        points.append(FundingTrendPoint(
            month=f"{year:04d}-{month0 + 1:02d}",
            amount_millions=totals.get(key, 0.0) / _MILLION,
            deal_count=counts.get(key, 0),
        ))
    return tuple(points)


def _recent_deals(rounds: pd.DataFrame, limit: int) -> tuple[Deal, ...]:
    """Positive-amount rounds, newest first. Undated rounds sort last."""
    if rounds.empty:
        return ()

    frame = rounds.assign(
        _amount=_numeric(rounds["amount_raised"]),
        _stamp=_timestamps(rounds["funding_date"]),
    )
    frame = frame[frame["_amount"] > 0]
    frame = frame.sort_values(
        "_stamp", ascending=False, kind="stable", na_position="last",
    ).head(limit)

    return tuple(
        Deal(
            company=_label(row["company_name"], UNKNOWN),
            amount=float(row["_amount"]),
            sector=_label(row["company_sector"], UNKNOWN),
            date=None if pd.isna(row["_stamp"]) else row["_stamp"].date().isoformat(),
            round_type=_optional_text(row["round_type"]),
        )
        for _, row in frame.iterrows()
    )


def _funding_by_round_type(rounds: pd.DataFrame) -> tuple[RoundTypeSummary, ...]:
    """Group rounds by type ("Other" when missing); largest total first."""
    if rounds.empty:
        return ()

    frame = pd.DataFrame({
        "round_type": rounds["round_type"].map(
            lambda v: _label(v, OTHER_ROUND_TYPE),
        ),
        "amount": _numeric(rounds["amount_raised"]),
    })
    grouped = frame.groupby("round_type", sort=False)["amount"].agg(["size", "sum"])

    summaries = []
    for round_type, row in grouped.iterrows():
        count = int(row["size"])
        total = float(row["sum"])
        summaries.append(RoundTypeSummary(
            round_type=str(round_type),
            count=count,
            total_amount_millions=total / _MILLION,
            average_amount_millions=total / count / _MILLION if count > 0 else 0.0,
        ))
    summaries.sort(key=lambda s: s.total_amount_millions, reverse=True)
    return tuple(summaries)


def _company_growth(companies: pd.DataFrame, now: datetime) -> CompanyGrowth:
    """Year-over-year change in companies founded."""
    if companies.empty:
        return CompanyGrowth(this_year=0, last_year=0, growth_pct=0.0)

    years = _timestamps(companies["founded_date"]).dt.year
    this_year = int((years == now.year).sum())
    last_year = int((years == now.year - 1).sum())
    if last_year > 0:
        growth_pct = (this_year - last_year) / last_year * 100
    else:
        growth_pct = 0.0
    return CompanyGrowth(
        this_year=this_year, last_year=last_year, growth_pct=float(growth_pct),
    )


def _recent_companies(frame: pd.DataFrame, limit: int) -> tuple[RecentCompany, ...]:
    if frame.empty:
        return ()
    companies = []
    for _, row in frame.head(limit).iterrows():
        founded = parse_date(row["founded_date"])
        companies.append(RecentCompany(
            name=_label(row["name"], UNKNOWN),
            sector=_label(row["sector"], UNKNOWN),
            founded_date=founded.isoformat() if founded else None,
            market_cap=parse_decimal(row["market_cap"]),
        ))
    return tuple(companies)


def _count_in_sector(companies: pd.DataFrame, sector: str) -> int:
    """Companies matching the sector filter, case-insensitively."""
    if companies.empty:
        return 0
    if sector == ALL:
        return len(companies)
    wanted = sector.lower()
    return int(companies["sector"].map(
        lambda v: isinstance(v, str) and v.lower() == wanted,
    ).sum())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def aggregate_market(
    rows: MarketRows,
    sector: str,
    config: AnalysisConfig,
    now: datetime,
) -> MarketSnapshot:
    """Aggregate fetched rows into a market snapshot.

    Pure: identical rows, sector and ``now`` give an identical snapshot.

    Args:
        rows: Row sets from fetch_market_rows.
        sector: Active sector filter ("all" for none).
        config: Truncation points and window lengths.
        now: Reference time for the funding trend and growth years.

    Returns:
        MarketSnapshot.
    """
    companies = rows.companies
    rounds = rows.funding_rounds

    sectors = _sector_summaries(companies)

    total_market_cap = (
        float(_numeric(companies["market_cap"]).sum()) if not companies.empty else 0.0
    )
    listed = (
        int(companies["is_listed"].map(_is_true).sum())
        if not companies.empty else 0
    )

    total_funding = (
        float(_numeric(rounds["amount_raised"]).sum()) if not rounds.empty else 0.0
    )
    average_deal = total_funding / len(rounds) if len(rounds) > 0 else 0.0

    growth = _company_growth(companies, now)

    trends = (
        MarketTrend("Total Funding Raised", total_funding / _BILLION, "B", None),
        MarketTrend("Average Deal Size", average_deal / _MILLION, "M", None),
        MarketTrend("New Companies", float(growth.this_year), "", growth.growth_pct),
        MarketTrend("Listed Companies", float(listed), "", None),
    )

    snapshot = MarketSnapshot(
        sector_filter=sector,
        total_companies=_count_in_sector(companies, sector),
        total_market_cap_all_companies=total_market_cap,
        total_funding_billions=total_funding / _BILLION,
        average_deal_size_millions=average_deal / _MILLION,
        active_sectors=len(sectors),
        listed_companies=listed,
        sector_distribution=tuple(sectors[:config.distribution_top_n]),
        top_sectors=tuple(sectors[:config.summary_top_n]),
        funding_trend=_funding_trend(rounds, now, config.trend_months),
        recent_deals=_recent_deals(rounds, config.recent_deals_limit),
        funding_by_round_type=_funding_by_round_type(rounds),
        company_growth=growth,
        recent_companies=_recent_companies(
            rows.recent_companies, config.recent_companies_display_limit,
        ),
        market_trends=trends,
    )

    logger.info(
        "Aggregated %d companies into %d sectors; funding %.2fB over %d rounds",
        len(companies), len(sectors), snapshot.total_funding_billions, len(rounds),
    )
    return snapshot
