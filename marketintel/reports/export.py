"""JSON export documents for market and comparison snapshots.

Export is a pure read of an already computed snapshot; nothing here
refetches or recomputes. The numbers written are exactly those the snapshot
holds, so reading the file back reproduces the on-screen summary.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from marketintel.analysis.comparison import ComparisonSnapshot
from marketintel.analysis.market import MarketSnapshot
from marketintel.data.fetch import MarketFilters

logger = logging.getLogger(__name__)

MARKET_REPORT = "market_analysis"
COMPARISON_REPORT = "company_comparison"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def market_export_document(
    snapshot: MarketSnapshot,
    filters: MarketFilters,
    generated_at: datetime,
) -> dict[str, Any]:
    """Build the market analysis export document.

    Args:
        snapshot: Snapshot currently on screen.
        filters: Filters the snapshot was computed for.
        generated_at: Export timestamp.

    Returns:
        JSON-ready dict with ``generated_at``, ``filters``, ``summary`` and
        the detail arrays.
    """
    return {
        "generated_at": generated_at.isoformat(),
        "filters": filters.to_dict(),
        "summary": {
            "total_companies": snapshot.total_companies,
            "total_funding_billions": snapshot.total_funding_billions,
            # Mean funding round size, in millions
            "average_valuation_millions": snapshot.average_deal_size_millions,
            "active_sectors": snapshot.active_sectors,
            "total_market_cap_all_companies": snapshot.total_market_cap_all_companies,
            "listed_companies": snapshot.listed_companies,
        },
        "sector_analysis": [s.to_dict() for s in snapshot.sector_distribution],
        "top_sectors": [s.to_dict() for s in snapshot.top_sectors],
        "funding_trend": [p.to_dict() for p in snapshot.funding_trend],
        "recent_deals": [d.to_dict() for d in snapshot.recent_deals],
        "market_trends": [t.to_dict() for t in snapshot.market_trends],
        "funding_by_round_type": [
            r.to_dict() for r in snapshot.funding_by_round_type
        ],
        "company_growth": snapshot.company_growth.to_dict(),
        "recent_companies": [c.to_dict() for c in snapshot.recent_companies],
    }


def comparison_export_document(
    snapshot: ComparisonSnapshot,
    generated_at: datetime,
) -> dict[str, Any]:
    """Build the company comparison export document."""
    data = snapshot.to_dict()
    return {
        "timestamp": generated_at.isoformat(),
        "filters": {"company_ids": [c.id for c in snapshot.companies]},
        "companies": data["companies"],
        "metrics": data["metrics"],
        "summary": data["summary"],
    }


def export_filename(
    report_type: str, filters_slug: str, generated_at: datetime,
) -> str:
    """``{report_type}_{filters}_{YYYY-MM-DD}.json``; empty slug is skipped.

    Characters outside ``[A-Za-z0-9._-]`` in the slug become ``-``, so free
    text sectors such as "Food/Agri" stay within the output directory.
    """
    parts = [report_type]
    if filters_slug:
        parts.append(_UNSAFE_FILENAME_CHARS.sub("-", filters_slug))
    parts.append(generated_at.strftime("%Y-%m-%d"))
    return "_".join(parts) + ".json"


def write_export(
    document: dict[str, Any], output_dir: Path, filename: str,
) -> Path:
    """Write *document* as indented UTF-8 JSON.

    Args:
        document: Export document.
        output_dir: Destination directory, created if missing.
        filename: File name within *output_dir*.

    Returns:
        Path to the written file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    path.write_text(
        json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8",
    )
    logger.info("Export written: %s", path)
    return path


def read_export(path: Path) -> dict[str, Any]:
    """Parse an export file written by write_export."""
    with open(path, encoding="utf-8") as f:
        document: dict[str, Any] = json.load(f)
    return document
