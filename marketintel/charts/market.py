"""Market analysis charts.

Four chart functions drawn from a MarketSnapshot. Each returns a matplotlib
Figure; pass ``fig`` to redraw into an existing figure, which is cleared
first. Value labels on the marks stand in for hover tooltips.
"""

from __future__ import annotations

import logging
from datetime import datetime

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from marketintel.analysis.market import MarketSnapshot
from marketintel.charts.base import (
    C0,
    C_FILL,
    draw_placeholder,
    format_large_number,
    prepare_axes,
)

logger = logging.getLogger(__name__)

HEATMAP_METRICS: tuple[str, ...] = (
    "Companies", "Market Cap", "Listing Rate", "Avg Employees",
)


# ---------------------------------------------------------------------------
# 1. Sector distribution pie
# ---------------------------------------------------------------------------


def sector_pie(snapshot: MarketSnapshot, fig: Figure | None = None) -> Figure:
    """Pie chart of company counts across the distribution sectors.

    Args:
        snapshot: Market snapshot.
        fig: Optional figure to redraw into.

    Returns:
        Matplotlib Figure.
    """
    title = "Sector Distribution"
    sectors = snapshot.sector_distribution
    if not sectors:
        return draw_placeholder(fig, title)

    fig, ax = prepare_axes(fig, (9, 7))
    counts = [s.company_count for s in sectors]
    colours = plt.get_cmap("viridis")(np.linspace(0.1, 0.9, len(sectors)))

    ax.pie(
        counts,
        labels=[f"{s.sector}\n({s.company_count})" for s in sectors],
        colors=colours,
        autopct="%1.1f%%",
        startangle=90,
        counterclock=False,
        wedgeprops={"edgecolor": "white", "linewidth": 1},
        textprops={"fontsize": 9},
    )
    ax.set_title(title, fontsize=13, fontweight="bold")
    ax.axis("equal")
    fig.tight_layout()
    return fig


# ---------------------------------------------------------------------------
# 2. Funding trend area + line
# ---------------------------------------------------------------------------


def funding_trend(snapshot: MarketSnapshot, fig: Figure | None = None) -> Figure:
    """Monthly funding (millions) as a filled area with a marked line.

    Args:
        snapshot: Market snapshot.
        fig: Optional figure to redraw into.

    Returns:
        Matplotlib Figure.
    """
    title = "Funding Trend (Last 12 Months)"
    points = snapshot.funding_trend
    if not points or snapshot.is_empty:
        return draw_placeholder(fig, title)

    fig, ax = prepare_axes(fig, (12, 6))
    x = np.arange(len(points))
    values = np.array([p.amount_millions for p in points], dtype=float)
    labels = [datetime.strptime(p.month, "%Y-%m").strftime("%b %y") for p in points]

    ax.fill_between(x, values, color=C_FILL, alpha=0.3)
    ax.plot(x, values, color=C0, linewidth=2, marker="o", markersize=5)

    for xi, v, p in zip(x, values, points):
        if v > 0:
            ax.annotate(
                f"{v:,.1f}M\n{p.deal_count} deals",
                (xi, v), textcoords="offset points", xytext=(0, 8),
                ha="center", fontsize=7,
            )

    ax.set_xticks(x)
    ax.set_xticklabels(labels, fontsize=9, rotation=45, ha="right")
    ax.set_ylabel("Funding (₹ millions)", fontsize=10)
    ax.set_ylim(bottom=0)
    ax.grid(axis="y", alpha=0.3)
    ax.set_title(title, fontsize=13, fontweight="bold")
    fig.tight_layout()
    return fig


# ---------------------------------------------------------------------------
# 3. Sector valuation bubble
# ---------------------------------------------------------------------------


def valuation_bubble(snapshot: MarketSnapshot, fig: Figure | None = None) -> Figure:
    """Bubble chart of sectors: companies vs average market cap.

    Bubble area scales with total market cap; colour encodes listing rate.

    Args:
        snapshot: Market snapshot.
        fig: Optional figure to redraw into.

    Returns:
        Matplotlib Figure.
    """
    title = "Sector Valuation"
    sectors = snapshot.sector_distribution
    if not sectors:
        return draw_placeholder(fig, title)

    fig, ax = prepare_axes(fig, (12, 8))
    counts = np.array([s.company_count for s in sectors], dtype=float)
    averages = np.array([s.average_market_cap for s in sectors], dtype=float) / 1e9
    totals = np.array([s.total_market_cap for s in sectors], dtype=float)
    rates = np.array([s.listing_rate for s in sectors], dtype=float)

    # Bubble sizes scaled between 80 and 1500
    t_min, t_max = totals.min(), totals.max()
    t_range = t_max - t_min if t_max != t_min else 1.0
    sizes = 80 + 1420 * (totals - t_min) / t_range

    scatter = ax.scatter(
        counts, averages, s=sizes, c=rates, cmap="viridis",
        vmin=0, vmax=100, alpha=0.75, edgecolors="white", linewidths=0.5,
    )
    for s, xi, yi in zip(sectors, counts, averages):
        ax.annotate(
            f"{s.sector}\n{format_large_number(s.total_market_cap)}",
            (xi, yi), textcoords="offset points", xytext=(0, 10),
            ha="center", fontsize=8,
        )

    cbar = fig.colorbar(scatter, ax=ax, pad=0.02)
    cbar.set_label("Listing Rate (%)", fontsize=9)
    ax.set_xlabel("Companies", fontsize=10)
    ax.set_ylabel("Average Market Cap (₹ billions)", fontsize=10)
    ax.grid(alpha=0.3)
    ax.set_title(title, fontsize=13, fontweight="bold")
    fig.tight_layout()
    return fig


# ---------------------------------------------------------------------------
# 4. Sector heatmap
# ---------------------------------------------------------------------------


def _heatmap_matrix(snapshot: MarketSnapshot) -> tuple[np.ndarray, np.ndarray]:
    """Raw and column-normalised (0-1) metric matrices for the top sectors."""
    raw = np.array(
        [
            [s.company_count, s.total_market_cap, s.listing_rate, s.average_employees]
            for s in snapshot.top_sectors
        ],
        dtype=float,
    )
    col_max = raw.max(axis=0)
    col_max[col_max == 0] = 1.0
    return raw, raw / col_max


def sector_heatmap(snapshot: MarketSnapshot, fig: Figure | None = None) -> Figure:
    """Heatmap of the top sectors across normalised metrics.

    Each column is scaled by its maximum so sectors compare within a
    metric; cells are labelled with the raw values.

    Args:
        snapshot: Market snapshot.
        fig: Optional figure to redraw into.

    Returns:
        Matplotlib Figure.
    """
    title = "Sector Performance Heatmap"
    sectors = snapshot.top_sectors
    if not sectors:
        return draw_placeholder(fig, title)

    raw, normalised = _heatmap_matrix(snapshot)
    fig, ax = prepare_axes(fig, (10, max(4, len(sectors) * 0.9)))

    image = ax.imshow(normalised, cmap="viridis", vmin=0, vmax=1, aspect="auto")

    for i in range(raw.shape[0]):
        cells = (
            f"{raw[i, 0]:.0f}",
            format_large_number(raw[i, 1]),
            f"{raw[i, 2]:.1f}%",
            f"{raw[i, 3]:,.0f}",
        )
        for j, text in enumerate(cells):
            colour = "white" if normalised[i, j] < 0.6 else "black"
            ax.text(j, i, text, ha="center", va="center", fontsize=9, color=colour)

    ax.set_xticks(np.arange(len(HEATMAP_METRICS)))
    ax.set_xticklabels(HEATMAP_METRICS, fontsize=9)
    ax.set_yticks(np.arange(len(sectors)))
    ax.set_yticklabels([s.sector for s in sectors], fontsize=9)
    cbar = fig.colorbar(image, ax=ax, pad=0.02)
    cbar.set_label("Relative to sector maximum", fontsize=9)
    ax.set_title(title, fontsize=13, fontweight="bold")
    fig.tight_layout()
    return fig
