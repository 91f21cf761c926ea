"""
1.0 Main Orchestrator Module
Command-line entry point for the sitemap relay.

Key features:
- One check pass per `run` invocation (cron / scheduler friendly)
- Reports and monthly change logs written for every non-empty batch
- Feed management commands (add, remove, list)
- Debug commands to inspect or reset a feed's stored state

Usage:
    python -m sitemap_relay.main run
    python -m sitemap_relay.main add https://example.com/sitemap.xml
    python -m sitemap_relay.main add https://example.com/sitemap.xml --force
    python -m sitemap_relay.main status https://example.com/sitemap.xml
    python -m sitemap_relay.main reports --domain example.com
"""

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

from sitemap_relay.config import load_config, CONFIG_FILE_PATH
from sitemap_relay.context import AppContext, build_context
from sitemap_relay.errors import ConfigError
from sitemap_relay.models import ChangeBatch, SnapshotKind

logger = logging.getLogger(__name__)

SUNDAY = 6


def setup_logging(log_file: Optional[str] = None, level: int = logging.INFO) -> None:
    """1.1 Log to stderr and, when configured, to a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def run_monitoring(ctx: AppContext) -> ChangeBatch:
    """
    2.0 One full monitoring run.

    Flow:
    1. Check every monitored feed
    2. If anything changed: save a report, append to the change log,
       then acknowledge the batch so same-day re-runs do not repeat it.
       If the report cannot be saved nothing is acknowledged.
    3. On Sundays, expire old reports
    """
    batch = ctx.monitor.run_check_pass()

    if batch:
        report = ctx.reports.generate_report(batch)
        if report.get("success"):
            preview = ctx.reports.report_preview(batch)
            logger.info(f"Report {report.get('report_id')}: {preview['summary_text']}")
            ctx.change_log.write_batch(batch, run_ts=batch.started_at)
            ctx.monitor.acknowledge(batch)
        else:
            # Left unacknowledged: the next run today reports the same changes
            logger.error(f"Report not saved ({report.get('error')}), changes left pending for the next run")
    else:
        logger.info("No changes detected in this pass, no report generated")

    # 2.1 Weekly report cleanup
    if ctx.feed_store.clock().weekday() == SUNDAY:
        ctx.reports.cleanup_old_reports(int(ctx.config["report_retention_days"]))

    return batch


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Monitor sitemaps for newly published URLs"
    )
    parser.add_argument(
        "--config", "-c",
        default=CONFIG_FILE_PATH,
        help=f"Configuration file (default: {CONFIG_FILE_PATH})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Check every monitored feed once")

    add = sub.add_parser("add", help="Add a sitemap feed (or re-check an existing one)")
    add.add_argument("url")
    add.add_argument("--force", "-f", action="store_true", help="Ignore the once-per-day guard")

    remove = sub.add_parser("remove", help="Stop monitoring a sitemap feed")
    remove.add_argument("url")

    sub.add_parser("list", help="List monitored feeds")

    show = sub.add_parser("show", help="Print stored sitemap content")
    show.add_argument("url")
    show.add_argument(
        "--kind", "-k",
        choices=[kind.value for kind in SnapshotKind],
        default=SnapshotKind.CURRENT.value,
    )
    show.add_argument("--date", "-d", default=None, help="YYYYMMDD for --kind archive (default: today)")

    status = sub.add_parser("status", help="Show stored state for a feed")
    status.add_argument("url")

    reset = sub.add_parser("reset", help="Clear a feed's stored rotation state")
    reset.add_argument("url")

    reports = sub.add_parser("reports", help="List saved reports")
    reports.add_argument("--domain", default=None)
    reports.add_argument("--limit", "-n", type=int, default=20)

    cleanup = sub.add_parser("cleanup-reports", help="Delete old reports")
    cleanup.add_argument("--days", type=int, default=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    3.0 CLI entry point.
    """
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if not config:
        # load_config already logged the reason
        setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
        logger.error("Failed to load configuration. Exiting.")
        return 1

    setup_logging(config.get("log_file"), logging.DEBUG if args.verbose else logging.INFO)
    try:
        ctx = build_context(config)
    except ConfigError as e:
        logger.error(f"{e}. Exiting.")
        return 1
    store = ctx.feed_store

    if args.command == "run":
        batch = run_monitoring(ctx)
        return 0 if batch.errors == 0 else 2

    if args.command == "add":
        result = store.add_feed(args.url, force_update=args.force)
        _print_json(result.to_dict())
        return 0 if result.success else 1

    if args.command == "remove":
        result = store.remove_feed(args.url)
        _print_json({"success": result.success, "error_msg": result.error_msg})
        return 0 if result.success else 1

    if args.command == "list":
        _print_json(store.list_feeds())
        return 0

    if args.command == "show":
        content = store.get_content(args.url, SnapshotKind(args.kind), args.date)
        if content is None:
            logger.error(f"No {args.kind} content stored for {args.url}")
            return 1
        print(content)
        return 0

    if args.command == "status":
        _print_json(store.feed_status(args.url))
        return 0

    if args.command == "reset":
        _print_json({"url": args.url, "deleted_keys": store.reset_feed(args.url)})
        return 0

    if args.command == "reports":
        if args.domain:
            reports = ctx.reports.get_domain_reports(args.domain, args.limit)
        else:
            reports = ctx.reports.list_reports(args.limit)
        _print_json(reports)
        return 0

    if args.command == "cleanup-reports":
        days = args.days if args.days is not None else int(config["report_retention_days"])
        deleted = ctx.reports.cleanup_old_reports(days)
        _print_json({"deleted": deleted, "days_to_keep": days})
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
