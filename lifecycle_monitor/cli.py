import argparse
import asyncio
import sys
from typing import List, Optional

from lifecycle_monitor.config import (
    BATCH_LOAD_TIMEOUT_MS,
    BATCH_SIZE,
    POLL_INTERVAL_MS,
    WARM_RETURN_WAIT_MS,
    CachePolicy,
    MonitorConfig,
    parse_dashboards,
    parse_scenarios,
    parse_storage_seed,
)
from lifecycle_monitor.navigation import SCENARIOS, check_nav_threshold, run_navigation
from lifecycle_monitor.orchestrator import run_compliance, verify


def build_config(args: argparse.Namespace) -> MonitorConfig:
    options = {}
    if args.command == "cards":
        options.update(
            batch_size=args.batch_size,
            poll_interval_ms=args.poll_interval,
            batch_timeout_ms=args.timeout,
            warm_wait_ms=args.warm_wait,
        )
    else:
        options["dashboards"] = parse_dashboards(args.dashboards)
    return MonitorConfig(
        base_url=args.base_url,
        output_dir=args.output,
        headless=not args.headed,
        cache=CachePolicy(storage_seed=parse_storage_seed(args.storage_seed)),
        **options,
    )


async def main_async(args: argparse.Namespace) -> None:
    config = build_config(args)
    if args.command == "cards":
        report = await run_compliance(config)
        verify(report, config)
    else:
        scenarios = parse_scenarios(args.scenarios, SCENARIOS)
        report = await run_navigation(config, scenarios)
        check_nav_threshold(report)
    print("\n✅ Run complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Black-box UI lifecycle compliance monitor")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser, default_output: str) -> None:
        p.add_argument("base_url", help="Base URL of the running dashboard")
        p.add_argument("--output", "-o", default=default_output, help="Output directory")
        p.add_argument(
            "--storage-seed",
            help="Path to a JSON object of localStorage entries applied before any page script runs",
        )
        p.add_argument("--headed", action="store_true", help="Show the browser window")

    cards = sub.add_parser("cards", help="Cold/warm widget loading compliance run")
    add_common(cards, "./compliance-output")
    cards.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="Widgets per batch")
    cards.add_argument("--poll-interval", type=int, default=POLL_INTERVAL_MS, help="Sampling interval in ms")
    cards.add_argument("--timeout", type=int, default=BATCH_LOAD_TIMEOUT_MS, help="Per-batch hard timeout in ms")
    cards.add_argument("--warm-wait", type=int, default=WARM_RETURN_WAIT_MS, help="Warm return window in ms")

    nav = sub.add_parser("nav", help="Dashboard navigation timing run")
    add_common(nav, "./nav-output")
    nav.add_argument("--dashboards", help="Path to JSON list of {id, name, route} dashboards")
    nav.add_argument(
        "--scenarios",
        help=f"Comma-separated scenarios ({','.join(SCENARIOS)})",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(main_async(args))
    except AssertionError as exc:
        print(f"\n❌ Thresholds not met:\n{exc}")
        sys.exit(1)
    except Exception as exc:
        print(f"\n❌ Run failed: {exc}")
        sys.exit(2)


if __name__ == "__main__":
    main()
