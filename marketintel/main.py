"""CLI entry point for the market intelligence tools."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import matplotlib

from marketintel.analysis.comparison import format_ratio
from marketintel.config import (
    ALL,
    AnalysisConfig,
    BackendConfig,
    CompanySize,
    ComparisonConfig,
    ProfileCacheConfig,
    TimeRange,
)
from marketintel.data.client import create_backend
from marketintel.data.fetch import fetch_comparison_companies
from marketintel.errors import MarketIntelError
from marketintel.runner import ComparisonRunner, MarketAnalysisRunner, ViewState
from marketintel.services.activity import (
    ActivityType,
    format_activity,
    get_activity_stats,
    get_user_activity_logs,
)
from marketintel.services.contact import get_contact_messages, get_message_stats
from marketintel.services.profile import ProfileStore, SessionUser, load_profile
from marketintel.services.rbac import Role, can_manage_contact_messages, normalize_role
from marketintel.services.search import SearchFilters, advanced_search
from marketintel.services.watchlist import get_user_watchlists

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="marketintel",
        description="Market intelligence: analysis, comparison and exports",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Options shared by every command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--user-id",
        default=None,
        help="Signed-in user id; the role is read from the user's profile",
    )
    common.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=None,
        help="Role override (default: from the user's profile, else FREEMIUM)",
    )
    common.add_argument(
        "--profile-cache",
        type=Path,
        default=None,
        help="Profile cache database (default: ~/.marketintel/profile_cache.db)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # market command
    market_parser = subparsers.add_parser(
        "market", parents=[common], help="Aggregate market data and export JSON",
    )
    market_parser.add_argument(
        "--sector", default=ALL, help="Sector filter (default: all)",
    )
    market_parser.add_argument(
        "--time-range",
        choices=[t.value for t in TimeRange],
        default=TimeRange.ONE_YEAR.value,
        help="Funding window (default: 1year)",
    )
    market_parser.add_argument(
        "--company-type", default=ALL, help="Company type filter (default: all)",
    )
    market_parser.add_argument(
        "--company-size",
        choices=[s.value for s in CompanySize],
        default=CompanySize.ALL.value,
        help="Employee-count bucket (default: all)",
    )
    market_parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output/market"),
        help="Output directory (default: output/market/)",
    )
    market_parser.add_argument(
        "--pdf", action="store_true", help="Also write a PDF report",
    )
    market_parser.add_argument(
        "--charts", action="store_true", help="Also write the charts as PNG",
    )

    # compare command
    compare_parser = subparsers.add_parser(
        "compare", parents=[common], help="Compare two to four companies",
    )
    compare_parser.add_argument(
        "company_ids", nargs="+", help="Company ids to compare",
    )
    compare_parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output/comparison"),
        help="Output directory (default: output/comparison/)",
    )
    compare_parser.add_argument(
        "--charts", action="store_true", help="Also write the charts as PNG",
    )

    # watchlists command
    subparsers.add_parser(
        "watchlists", parents=[common], help="List the user's watchlists",
    )

    # activity command
    activity_parser = subparsers.add_parser(
        "activity", parents=[common], help="Show the user's recent activity",
    )
    activity_parser.add_argument(
        "--type",
        choices=[a.value for a in ActivityType],
        default=None,
        help="Only this activity type",
    )
    activity_parser.add_argument(
        "--days", type=int, default=30, help="Stats window in days (default: 30)",
    )
    activity_parser.add_argument(
        "--limit", type=int, default=20, help="Entries to list (default: 20)",
    )

    # messages command
    messages_parser = subparsers.add_parser(
        "messages",
        parents=[common],
        help="List contact messages (ENTERPRISE and ADMIN)",
    )
    messages_parser.add_argument("--status", default=None, help="Status filter")
    messages_parser.add_argument(
        "--inquiry-type", default=None, help="Inquiry type filter",
    )
    messages_parser.add_argument(
        "--limit", type=int, default=20, help="Messages to list (default: 20)",
    )
    messages_parser.add_argument(
        "--offset", type=int, default=None, help="Paging offset",
    )

    # search command
    search_parser = subparsers.add_parser(
        "search", parents=[common], help="Search companies",
    )
    search_parser.add_argument("query", help="Name, sector or CIN text")
    search_parser.add_argument("--sector", default=ALL, help="Sector filter")
    search_parser.add_argument(
        "--company-type", default=ALL, help="Company type filter",
    )
    search_parser.add_argument(
        "--sort",
        choices=["name", "market_cap", "founded_date"],
        default="name",
        help="Sort order (default: name)",
    )
    search_parser.add_argument("--page", type=int, default=1, help="Result page")
    search_parser.add_argument(
        "--limit", type=int, default=20, help="Results per page (default: 20)",
    )

    return parser.parse_args(argv)


def _resolve_role(args: argparse.Namespace, backend: object) -> Role:
    """Role from --role, else from the user's profile, else FREEMIUM."""
    if args.role is not None:
        return normalize_role(args.role)
    if not args.user_id:
        return Role.FREEMIUM
    db_path = args.profile_cache or ProfileCacheConfig().db_path
    store = ProfileStore(db_path)
    profile = load_profile(backend, SessionUser(id=args.user_id), store)
    logger.debug("Profile %s has role %s", profile.id, profile.role.value)
    return profile.role


def _require_user(args: argparse.Namespace) -> str:
    if not args.user_id:
        raise MarketIntelError(f"--user-id is required for {args.command}")
    return args.user_id


def _save_figures(figures: dict[str, object], output_dir: Path) -> None:
    import matplotlib.pyplot as plt

    output_dir.mkdir(parents=True, exist_ok=True)
    for name, fig in figures.items():
        path = output_dir / f"{name}.png"
        fig.savefig(path, dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info("Chart written to %s", path)


def run_market(args: argparse.Namespace, backend: object, role: Role) -> None:
    """Execute the market command.

    Args:
        args: Parsed CLI arguments.
        backend: Backend client.
        role: Resolved role of the caller.
    """
    from marketintel.charts.market import (
        funding_trend,
        sector_heatmap,
        sector_pie,
        valuation_bubble,
    )
    from marketintel.reports.pdf import generate_market_pdf

    runner = MarketAnalysisRunner(backend, role, AnalysisConfig())
    runner.set_filters(
        sector=args.sector,
        time_range=TimeRange(args.time_range),
        company_type=args.company_type,
        company_size=CompanySize(args.company_size),
    )
    if runner.state is ViewState.ERROR:
        raise MarketIntelError(runner.error or "Market refresh failed")

    snapshot = runner.snapshot
    if runner.state is ViewState.EMPTY:
        logger.warning("No data for the selected filters")
    logger.info(
        "Sector %s: %d companies, %.2fB funding, %d active sectors",
        args.sector,
        snapshot.total_companies,
        snapshot.total_funding_billions,
        snapshot.active_sectors,
    )

    output_dir: Path = args.output_dir
    now = datetime.now(UTC)
    path = runner.export(output_dir, now)
    logger.info("Export written to %s", path)

    if args.pdf:
        pdf_path = output_dir / path.with_suffix(".pdf").name
        generate_market_pdf(snapshot, runner.snapshot_filters, pdf_path, now)

    if args.charts:
        matplotlib.use("Agg")
        _save_figures({
            "sector_distribution": sector_pie(snapshot),
            "funding_trend": funding_trend(snapshot),
            "valuation_vs_funding": valuation_bubble(snapshot),
            "sector_heatmap": sector_heatmap(snapshot),
        }, output_dir / "charts")


def run_compare(args: argparse.Namespace, backend: object, role: Role) -> None:
    """Execute the compare command.

    Args:
        args: Parsed CLI arguments.
        backend: Backend client.
        role: Resolved role of the caller.
    """
    from marketintel.charts.comparative import (
        employee_bars,
        funding_bars,
        market_cap_bars,
    )

    runner = ComparisonRunner(backend, role, ComparisonConfig())
    if runner.state is ViewState.LOCKED:
        raise MarketIntelError(
            "Company Comparison is available for ENTERPRISE users only"
        )

    companies = fetch_comparison_companies(backend, args.company_ids)
    found = {c.id for c in companies}
    missing = [i for i in args.company_ids if i not in found]
    if missing:
        logger.warning("Companies not found: %s", ", ".join(missing))

    for company in companies:
        result = runner.add(company)
        if not result.ok:
            logger.warning("%s: %s", company.name, result.message)

    # Already hydrated; build from these rows instead of reading them again.
    by_id = {c.id: c for c in companies}
    snapshot = runner.load(lambda ids: [by_id[i] for i in ids])
    if snapshot is None:
        raise MarketIntelError(
            runner.error or "Select at least two companies to compare"
        )

    for company in snapshot.companies:
        logger.info(
            "%s: maturity %d/10, P/E %s, ROI %s",
            company.name,
            company.maturity_score,
            format_ratio(company.pe_ratio, "x"),
            format_ratio(company.roi, "%"),
        )

    path = runner.export(args.output_dir)
    logger.info("Comparison written to %s", path)

    if args.charts:
        matplotlib.use("Agg")
        _save_figures({
            "market_cap": market_cap_bars(snapshot),
            "employees": employee_bars(snapshot),
            "funding": funding_bars(snapshot),
        }, args.output_dir / "charts")


def run_watchlists(args: argparse.Namespace, backend: object) -> None:
    user_id = _require_user(args)
    watchlists = get_user_watchlists(backend, user_id)
    for watchlist in watchlists:
        entries = watchlist.get("watchlist_companies") or []
        print(f"{watchlist.get('name')} ({len(entries)} companies)")
        for entry in entries:
            company = entry.get("companies") or {}
            print(f"  - {company.get('name', entry.get('company_id'))}")
    logger.info("%d watchlists for %s", len(watchlists), user_id)


def run_activity(args: argparse.Namespace, backend: object) -> None:
    user_id = _require_user(args)
    activity_type = ActivityType(args.type) if args.type else None
    entries = get_user_activity_logs(
        backend, user_id, activity_type=activity_type, limit=args.limit,
    )
    for entry in entries:
        formatted = format_activity(entry)
        print(f"{formatted['relative_time']:>16}  {formatted['label']}")

    stats = get_activity_stats(backend, user_id, days=args.days)
    logger.info(
        "%d activities in the last %d days", stats.total_activities, args.days,
    )


def run_messages(args: argparse.Namespace, backend: object, role: Role) -> None:
    if not can_manage_contact_messages(role):
        raise MarketIntelError(
            "Contact messages are available for ENTERPRISE and ADMIN users only"
        )
    messages = get_contact_messages(
        backend,
        status=args.status,
        inquiry_type=args.inquiry_type,
        limit=args.limit,
        offset=args.offset,
    )
    for message in messages:
        print(
            f"[{message.get('status')}] {message.get('created_at')} "
            f"{message.get('name')} <{message.get('email')}>: "
            f"{message.get('inquiry_type')}"
        )
    stats = get_message_stats(backend)
    logger.info("%d messages, %d in the last week", stats.total, stats.recent)


def run_search(args: argparse.Namespace, backend: object) -> None:
    filters = SearchFilters(
        query=args.query,
        sector=args.sector,
        company_type=args.company_type,
        sort_by=args.sort,
    )
    page = advanced_search(
        backend, filters, page=args.page, limit=args.limit, user_id=args.user_id,
    )
    for row in page.results:
        print(f"{row.get('id')}  {row.get('name')}  ({row.get('sector')})")
    logger.info(
        "Page %d: %d of %d results", page.page, len(page.results), page.total,
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).
    """
    args = _parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        backend = create_backend(BackendConfig.from_env())
        role = _resolve_role(args, backend)

        if args.command == "market":
            run_market(args, backend, role)
        elif args.command == "compare":
            run_compare(args, backend, role)
        elif args.command == "watchlists":
            run_watchlists(args, backend)
        elif args.command == "activity":
            run_activity(args, backend)
        elif args.command == "messages":
            run_messages(args, backend, role)
        elif args.command == "search":
            run_search(args, backend)
        else:
            logger.error("Unknown command: %s", args.command)
            sys.exit(1)
    except (MarketIntelError, ValueError) as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
