"""Company comparison bar charts.

Three bar charts drawn from a ComparisonSnapshot: market cap, employees and
total funding. Each returns a matplotlib Figure; pass ``fig`` to redraw into
an existing figure, which is cleared first.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np
from matplotlib.figure import Figure

from marketintel.analysis.comparison import CompanyComparison, ComparisonSnapshot
from marketintel.charts.base import (
    VIRIDIS,
    draw_placeholder,
    format_large_number,
    prepare_axes,
)

logger = logging.getLogger(__name__)


def _bar_chart(
    snapshot: ComparisonSnapshot,
    title: str,
    ylabel: str,
    value: Callable[[CompanyComparison], float],
    label: Callable[[float], str],
    scale: float,
    fig: Figure | None,
) -> Figure:
    """Vertical bars, one per company, labelled with the formatted value."""
    companies = snapshot.companies
    if not companies:
        return draw_placeholder(fig, title, "No companies selected")

    fig, ax = prepare_axes(fig, (10, 6))
    raw = np.array([value(c) for c in companies], dtype=float)
    heights = raw / scale
    x = np.arange(len(companies))
    colours = VIRIDIS(np.linspace(0.15, 0.85, len(companies)))

    bars = ax.bar(x, heights, color=colours, edgecolor="white", linewidth=0.5)
    for bar, v in zip(bars, raw):
        ax.annotate(
            label(v),
            (bar.get_x() + bar.get_width() / 2, bar.get_height()),
            textcoords="offset points", xytext=(0, 4),
            ha="center", fontsize=9,
        )

    ax.set_xticks(x)
    ax.set_xticklabels([c.name for c in companies], fontsize=9,
                       rotation=20, ha="right")
    ax.set_ylabel(ylabel, fontsize=10)
    ax.set_ylim(bottom=0)
    ax.grid(axis="y", alpha=0.3)
    ax.set_title(title, fontsize=13, fontweight="bold")
    fig.tight_layout()
    return fig


def market_cap_bars(
    snapshot: ComparisonSnapshot, fig: Figure | None = None,
) -> Figure:
    """Market cap per company, in billions."""
    return _bar_chart(
        snapshot, "Market Capitalization", "Market Cap (₹ billions)",
        lambda c: c.market_cap, format_large_number, 1e9, fig,
    )


def employee_bars(
    snapshot: ComparisonSnapshot, fig: Figure | None = None,
) -> Figure:
    """Head count per company."""
    return _bar_chart(
        snapshot, "Employee Count", "Employees",
        lambda c: float(c.employee_count), lambda v: f"{v:,.0f}", 1.0, fig,
    )


def funding_bars(
    snapshot: ComparisonSnapshot, fig: Figure | None = None,
) -> Figure:
    """Total funding raised per company, in millions."""
    return _bar_chart(
        snapshot, "Total Funding Raised", "Funding (₹ millions)",
        lambda c: c.total_funding, format_large_number, 1e6, fig,
    )
