"""
CLI entry point for the farmer data aggregator.

Usage:
    python scripts/farmer_data.py --user-id user-123
    python scripts/farmer_data.py --user-id user-123 --max-history-days 90 --selected-field-id 5f1c...
    python scripts/farmer_data.py --user-id user-123 --mode completeness
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.config import Settings
from src.farmdata.aggregator import FarmerDataAggregator
from src.farmdata.errors import FarmDataError
from src.farmdata.models import SelectedField, SelectionContext


async def run(args) -> dict:
    settings = Settings.from_env()
    if args.database_url:
        settings.database_url = args.database_url

    aggregator = FarmerDataAggregator.from_settings(settings)
    try:
        if args.mode == "completeness":
            return await aggregator.get_data_completeness_summary(args.user_id)

        overrides = {"max_history_days": args.max_history_days} if args.max_history_days is not None else {}
        options = aggregator.default_options(
            include_historical_data=not args.no_history,
            require_all_data=args.require_all_data,
            **overrides,
        )
        context = SelectionContext(
            selected_field=SelectedField(id=args.selected_field_id) if args.selected_field_id else None,
        )
        result = await aggregator.get_farmer_data(args.user_id, options, context)
        return result.to_dict()
    finally:
        await aggregator.aclose()


def main():
    parser = argparse.ArgumentParser(
        description="Aggregate profile and environmental data for one farmer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/farmer_data.py --user-id user-123
  python scripts/farmer_data.py --user-id user-123 --no-history
  python scripts/farmer_data.py --user-id user-123 --mode completeness
        """,
    )
    parser.add_argument("--user-id", required=True, help="User whose farm to describe")
    parser.add_argument(
        "--mode", default="full",
        choices=["full", "completeness"],
        help="full: print the aggregated context; completeness: print the source summary",
    )
    parser.add_argument(
        "--max-history-days", type=int, default=None,
        help="NDVI lookback window in days, up to MAX_HISTORY_DAYS (default: DEFAULT_HISTORY_DAYS env var, else 30)",
    )
    parser.add_argument(
        "--no-history", action="store_true",
        help="Skip NDVI and soil data",
    )
    parser.add_argument(
        "--require-all-data", action="store_true",
        help="Fail when no coordinates can be resolved",
    )
    parser.add_argument(
        "--selected-field-id", default=None,
        help="Remote polygon id to use instead of resolving one",
    )
    parser.add_argument(
        "--database-url", default=None,
        help="SQLAlchemy async URL (default: DATABASE_URL env var)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        output = asyncio.run(run(args))
    except (FarmDataError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
