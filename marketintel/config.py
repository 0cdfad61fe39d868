"""Configuration dataclasses."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

# Lower bound used for the "all" time range. Old enough to include every
# record the backend can hold.
FAR_PAST: datetime = datetime(1900, 1, 1, tzinfo=UTC)

# Filter value meaning "no restriction" for sector and company type.
ALL = "all"


class TimeRange(Enum):
    """Trailing windows offered by the market analysis filters."""

    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    ONE_YEAR = "1year"
    TWO_YEARS = "2years"
    FIVE_YEARS = "5years"
    ALL = "all"


class CompanySize(Enum):
    """Employee-count buckets offered by the market analysis filters."""

    ALL = "all"
    STARTUP = "startup"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class BackendConfig:
    """Connection settings for the managed backend."""

    url: str
    key: str

    @classmethod
    def from_env(cls) -> BackendConfig:
        """Read SUPABASE_URL and SUPABASE_KEY from the environment.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL", "")
        key = os.environ.get("SUPABASE_KEY", "")
        missing = [
            name for name, value in (("SUPABASE_URL", url), ("SUPABASE_KEY", key))
            if not value
        ]
        if missing:
            raise ValueError(
                f"Missing backend environment variables: {', '.join(missing)}"
            )
        return cls(url=url, key=key)


@dataclass
class AnalysisConfig:
    """Market aggregation parameters."""

    # Funding trend
    trend_months: int = 12

    # Sector rankings
    distribution_top_n: int = 8
    summary_top_n: int = 5

    # Deals and new companies
    recent_deals_limit: int = 10
    recent_companies_window: TimeRange = TimeRange.SIX_MONTHS
    recent_companies_fetch_limit: int = 10
    recent_companies_display_limit: int = 5

    # Financial statements newer than now.year - this are fetched
    financial_years_back: int = 2

    fetch_workers: int = 4


@dataclass
class ComparisonConfig:
    """Company comparison limits and maturity thresholds."""

    min_companies: int = 2
    max_companies: int = 4
    mature_employee_threshold: int = 100
    mature_age_years: int = 5


@dataclass
class ProfileCacheConfig:
    """Persistent profile cache location."""

    db_path: Path = Path.home() / ".marketintel" / "profile_cache.db"


@dataclass
class BillingConfig:
    """Payment server endpoints and checkout key."""

    api_base_url: str = "http://localhost:8000/api/razorpay"
    key_id: str = ""
    api_token: str | None = None
    currency: str = "INR"
    request_timeout: int = 30
    max_retries: int = 3
    backoff_factor: float = 1.0

    @classmethod
    def from_env(cls) -> BillingConfig:
        """Build from BILLING_API_URL, RAZORPAY_KEY_ID and BILLING_API_TOKEN."""
        config = cls()
        config.api_base_url = os.environ.get("BILLING_API_URL", config.api_base_url)
        config.key_id = os.environ.get("RAZORPAY_KEY_ID", "")
        config.api_token = os.environ.get("BILLING_API_TOKEN") or None
        return config
