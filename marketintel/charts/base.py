"""Figure setup shared by the market and comparison charts."""

from __future__ import annotations

import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.figure import Figure

# ---------------------------------------------------------------------------
# Colour palette (viridis samples)
# ---------------------------------------------------------------------------

VIRIDIS = plt.colormaps["viridis"]
C0 = VIRIDIS(0.2)
C1 = VIRIDIS(0.5)
C2 = VIRIDIS(0.8)
C_FILL = VIRIDIS(0.4)


def prepare_axes(
    fig: Figure | None, figsize: tuple[float, float],
) -> tuple[Figure, Axes]:
    """Return a figure with one fresh Axes.

    A supplied figure is cleared first so nothing from a previous draw
    survives.
    """
    if fig is None:
        fig, ax = plt.subplots(figsize=figsize)
        return fig, ax
    fig.clear()
    fig.set_size_inches(*figsize)
    return fig, fig.add_subplot(1, 1, 1)


def draw_placeholder(
    fig: Figure | None,
    title: str,
    message: str = "No data for the selected filters",
    figsize: tuple[float, float] = (10, 6),
) -> Figure:
    """Draw an empty-state message in place of a chart."""
    fig, ax = prepare_axes(fig, figsize)
    ax.text(0.5, 0.5, message, transform=ax.transAxes,
            ha="center", va="center", fontsize=14)
    ax.set_title(title)
    ax.set_axis_off()
    return fig


def format_large_number(value: float, currency: str = "₹") -> str:
    """Format a large amount with a B/M/K suffix for labels."""
    abs_val = abs(value)
    if abs_val >= 1e9:
        return f"{currency}{value / 1e9:.1f}B"
    if abs_val >= 1e6:
        return f"{currency}{value / 1e6:.1f}M"
    if abs_val >= 1e3:
        return f"{currency}{value / 1e3:.1f}K"
    return f"{currency}{value:,.0f}"
