"""Run insight generation by hand, for one user or as the monthly sweep."""

import argparse
import asyncio
from datetime import datetime, timezone
import json
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from app.core.config import settings  # noqa: E402
from app.core.kv_store import close_kv_store  # noqa: E402
from app.core.logging_config import setup_logging  # noqa: E402
from app.domain.insights.services import build_insight_service, get_insight_service  # noqa: E402
from app.services.insight_scheduler import monthly_sweep_for  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate spending insights")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id", type=int, help="Generate for a single user")
    target.add_argument("--sweep", action="store_true", help="Run the monthly sweep")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the freshness window (single user only)",
    )
    parser.add_argument(
        "--as-of",
        type=lambda raw: datetime.fromisoformat(raw).replace(tzinfo=timezone.utc),
        help="Run as if the current UTC time were this date (YYYY-MM-DD)",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    if args.as_of is None:
        service = get_insight_service()
        sweep = monthly_sweep_for(service)
    else:
        as_of = args.as_of
        service = build_insight_service(clock=lambda: as_of)
        sweep = monthly_sweep_for(service, clock=lambda: as_of)

    try:
        if args.sweep:
            report = await sweep.run()
            print(json.dumps(report.to_payload(settings.INSIGHTS_ERROR_REPORT_LIMIT), indent=2))
            return

        insights = await service.generate_insights(
            args.user_id, force_regenerate=args.force
        )
        for insight in insights:
            print(f"[{insight.priority}] {insight.type}: {insight.title}")
        print(f"{len(insights)} insight(s) for user {args.user_id}")
    finally:
        await close_kv_store()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run(parse_args()))
