from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from trinity_api.core.database import session_scope
from trinity_api.services.funnel import TIMEFRAME_WINDOWS, FunnelAnalyticsService


logger = logging.getLogger("trinity.funnel_report_agent")


async def _run(timeframe: str, breakdown: bool, output: Path | None) -> None:
    async with session_scope() as session:
        service = FunnelAnalyticsService(session)
        report = await service.report(timeframe=timeframe, breakdown=breakdown)
        payload = report.model_dump(mode="json", by_alias=True)

    formatted = json.dumps(payload, ensure_ascii=False, indent=2)
    if output:
        output.write_text(formatted, encoding="utf-8")
        logger.info("Wrote funnel report to %s", output)
    else:
        print(formatted)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    parser = argparse.ArgumentParser(
        prog="trinity-funnel-report",
        description="Snapshot marketing funnel metrics and trends for growth reviews.",
    )
    parser.add_argument(
        "--timeframe",
        choices=sorted(TIMEFRAME_WINDOWS),
        default="30d",
        help="Window used for event counts and trends (default: 30d).",
    )
    parser.add_argument(
        "--breakdown",
        action="store_true",
        help="Include the synthetic per-day demo series.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional path to write the report as JSON.",
    )
    args = parser.parse_args()

    asyncio.run(_run(args.timeframe, args.breakdown, args.output))


if __name__ == "__main__":
    main()
