#!/usr/bin/env python3
"""Script to run one budget-aware refresh cycle per provider (cron entry point)."""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config, get_provider_configs
from quotecache import init_db, run_all


def main(argv=None):
    parser = argparse.ArgumentParser(description="Refresh cached market quotes")
    parser.add_argument(
        'asset_class',
        nargs='?',
        default='all',
        choices=['all', 'crypto', 'stocks', 'commodities'],
        help="Asset class to refresh (default: all)"
    )
    parser.add_argument('--force', action='store_true', help="Ignore the minimum refresh interval")
    parser.add_argument('--sequential', action='store_true', help="Refresh providers one after another")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    configs = get_provider_configs()
    if args.asset_class != 'all':
        configs = {args.asset_class: configs[args.asset_class]}

    print("Initializing database...")
    init_db(Config.QUOTE_DB_PATH)

    print(f"\nRefreshing: {', '.join(configs)}{' (forced)' if args.force else ''}")
    reports = run_all(
        configs.values(),
        parallel=not args.sequential,
        db_path=Config.QUOTE_DB_PATH,
        force=args.force
    )

    any_failed = False
    for asset_class, report in reports.items():
        print(f"\n[{asset_class}] {report.provider}: {report.status}")
        if report.skipped:
            print(f"  Skipped: {report.skip_reason}")
            if report.next_eligible_at:
                print(f"  Next eligible: {report.next_eligible_at.isoformat()}")
            continue
        if report.warning:
            print(f"  Warning: {report.warning}")
        if report.error:
            print(f"  Error: {report.error}")
            any_failed = True
        calls = [c for c, made in report.calls_made.items() if made]
        print(f"  Updated: {report.updated}")
        print(f"  Failed: {report.failed}")
        print(f"  Calls made: {', '.join(calls) if calls else 'none'}")
        for err in report.errors[:20]:
            print(f"    {err['symbol']}: {err['reason']}")

    return 1 if any_failed else 0


if __name__ == "__main__":
    sys.exit(main())
