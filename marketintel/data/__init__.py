"""Backend access: record types, client and row fetching."""

from __future__ import annotations

from marketintel.data.client import create_backend, run_query
from marketintel.data.fetch import (
    MarketFilters,
    MarketRows,
    RequestTracker,
    fetch_comparison_companies,
    fetch_market_rows,
)
from marketintel.data.models import Company, FinancialStatement, FundingRound

__all__ = [
    "Company",
    "FinancialStatement",
    "FundingRound",
    "MarketFilters",
    "MarketRows",
    "RequestTracker",
    "create_backend",
    "fetch_comparison_companies",
    "fetch_market_rows",
    "run_query",
]
