"""PDF market report using Jinja2 templates and WeasyPrint.

Renders the market charts into a Jinja2 HTML template and converts the
result to PDF via WeasyPrint.
"""

from __future__ import annotations

import base64
import io
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jinja2
import matplotlib
import matplotlib.pyplot as plt
import weasyprint

from marketintel.analysis.comparison import format_money
from marketintel.charts.market import (
    funding_trend,
    sector_heatmap,
    sector_pie,
    valuation_bubble,
)

if TYPE_CHECKING:
    from matplotlib.figure import Figure

    from marketintel.analysis.market import MarketSnapshot
    from marketintel.data.fetch import MarketFilters

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


def generate_market_pdf(
    snapshot: MarketSnapshot,
    filters: MarketFilters,
    output_path: Path,
    generated_at: datetime | None = None,
) -> Path:
    """Generate a PDF market report from a snapshot.

    Args:
        snapshot: Market snapshot to report on.
        filters: Filters the snapshot was computed for.
        output_path: Destination path for the PDF file.
        generated_at: Report timestamp. Defaults to now.

    Returns:
        Path to the generated PDF file.
    """
    # Use non-interactive backend for rendering
    matplotlib.use("Agg")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    context = build_context(snapshot, filters, generated_at or datetime.now())

    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=True,
    )
    template = env.get_template("market_report.html")
    html_content = template.render(**context)

    pdf_doc = weasyprint.HTML(string=html_content).write_pdf()
    output_path.write_bytes(pdf_doc)

    logger.info("PDF report generated: %s", output_path)
    return output_path


def build_context(
    snapshot: MarketSnapshot,
    filters: MarketFilters,
    generated_at: datetime,
) -> dict[str, Any]:
    """Template context: summary tiles, trend rows, deals and chart images."""
    return {
        "title": "Market Analysis Report",
        "generated_at": generated_at.strftime("%d %B %Y"),
        "filters": filters.to_dict(),
        "summary": [
            ("Total Companies", f"{snapshot.total_companies:,}"),
            ("Total Funding", f"₹{snapshot.total_funding_billions:,.2f}B"),
            ("Average Deal Size", f"₹{snapshot.average_deal_size_millions:,.2f}M"),
            ("Active Sectors", str(snapshot.active_sectors)),
            ("Total Market Cap", format_money(snapshot.total_market_cap_all_companies)),
        ],
        "trends": [
            {
                "metric": t.metric,
                "value": t.display_value(),
                "change": t.display_change(),
                "trend": t.trend or "",
            }
            for t in snapshot.market_trends
        ],
        "deals": [
            {
                "company": d.company,
                "amount": format_money(d.amount),
                "sector": d.sector,
                "date": d.date or "N/A",
                "round_type": d.round_type or "N/A",
            }
            for d in snapshot.recent_deals
        ],
        "round_types": snapshot.funding_by_round_type,
        "charts": _render_charts(snapshot),
        "is_empty": snapshot.is_empty,
    }


def _render_charts(snapshot: MarketSnapshot) -> list[str]:
    """Render all market charts to base64 strings."""
    charts: list[str] = []
    for fn in (sector_pie, funding_trend, valuation_bubble, sector_heatmap):
        try:
            fig = fn(snapshot)
            charts.append(_fig_to_base64(fig))
        except Exception:
            logger.exception("Failed to render market chart %s", fn.__name__)
    return charts


def _fig_to_base64(fig: Figure) -> str:
    """Convert a matplotlib figure to a base64-encoded PNG string."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    result = base64.b64encode(buf.read()).decode("ascii")
    buf.close()
    return result
