import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from ..config import get_settings
from ..store import SupabaseRecordStore
from .harvester import PlaywrightHarvester
from .pipeline import IngestionPipeline, RunSummary, build_targets

logger = logging.getLogger(__name__)


async def main(
    start: Optional[int] = None,
    end: Optional[int] = None,
    limit: Optional[int] = None,
    snapshot: Optional[Path] = None,
) -> RunSummary:
    settings = get_settings()
    targets = build_targets(
        settings.harvest_url_template,
        start if start is not None else settings.harvest_start_page,
        end if end is not None else settings.harvest_end_page,
        max_targets=limit if limit is not None else settings.harvest_max_targets,
    )
    if not targets:
        logger.info("[INIT] No targets in page range. Exiting.")
        return RunSummary()

    store = SupabaseRecordStore()
    async with PlaywrightHarvester(wait_timeout_ms=settings.harvest_wait_selector_ms) as harvester:
        pipeline = IngestionPipeline(
            harvester,
            store,
            concurrency=settings.harvest_concurrency,
            target_timeout=settings.harvest_target_timeout_s,
            retries=settings.harvest_retries,
            run_budget=settings.harvest_run_budget_s,
            snapshot_path=snapshot,
        )
        return await pipeline.run(targets)


if __name__ == "__main__":
    #   python -m catalog.scrape.run                      -> pages from settings
    #   python -m catalog.scrape.run --start 1 --end 5    -> first five listing pages
    parser = argparse.ArgumentParser(description="Harvest catalog listing pages into the record store.")
    parser.add_argument("--start", type=int, default=None, help="first listing page")
    parser.add_argument("--end", type=int, default=None, help="last listing page (inclusive)")
    parser.add_argument("--limit", type=int, default=None, help="maximum number of targets")
    parser.add_argument("--snapshot", type=Path, default=None, help="append written records to this JSONL file")
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    summary = asyncio.run(main(args.start, args.end, args.limit, args.snapshot))
    if summary.targets_total and not summary.targets_succeeded:
        sys.exit(1)
