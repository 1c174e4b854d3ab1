"""
Ingestion pipeline: harvest listing targets, normalize, upsert.

Targets are processed with a concurrency ceiling. Each fetch gets a hard
timeout and a bounded number of retries; a target that still fails is logged
and skipped, never failing the run. The whole run is bounded by a time budget,
after which unfinished targets are cancelled and the summary reports what was
written so far.

Re-running over overlapping targets is idempotent because the store upserts
on the natural key.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..errors import StoreFailure, UpstreamFailure, ValidationError
from ..models import Record, RecordDraft
from ..store import RecordStore
from .harvester import Harvester, TargetSkipped
from .normalizer import normalize
from .snapshot import append_jsonl

logger = logging.getLogger(__name__)


def build_targets(url_template: str, start_page: int, end_page: int, max_targets: Optional[int] = None) -> List[str]:
    """Paginated listing URLs, ``{page}`` substituted from start to end inclusive."""
    targets = [url_template.format(page=page) for page in range(start_page, end_page + 1)]
    if max_targets is not None:
        targets = targets[:max_targets]
    return targets


@dataclass
class RunSummary:
    targets_total: int = 0
    targets_succeeded: int = 0
    targets_failed: int = 0
    targets_skipped: int = 0
    drafts_seen: int = 0
    drafts_discarded: int = 0
    written: List[Record] = field(default_factory=list)
    failures: List[UpstreamFailure] = field(default_factory=list)
    budget_exhausted: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def targets_abandoned(self) -> int:
        done = self.targets_succeeded + self.targets_failed + self.targets_skipped
        return self.targets_total - done

    def as_log_dict(self) -> Dict:
        return {
            "targets": self.targets_total,
            "ok": self.targets_succeeded,
            "failed": self.targets_failed,
            "skipped": self.targets_skipped,
            "abandoned": self.targets_abandoned,
            "drafts": self.drafts_seen,
            "discarded": self.drafts_discarded,
            "written": len(self.written),
            "budget_exhausted": self.budget_exhausted,
        }


class IngestionPipeline:
    def __init__(
        self,
        harvester: Harvester,
        store: RecordStore,
        *,
        concurrency: int = 3,
        target_timeout: float = 45.0,
        retries: int = 2,
        run_budget: float = 900.0,
        retry_backoff: float = 1.0,
        snapshot_path: Optional[Path] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.harvester = harvester
        self.store = store
        self.concurrency = concurrency
        self.target_timeout = target_timeout
        self.retries = retries
        self.run_budget = run_budget
        self.retry_backoff = retry_backoff
        self.snapshot_path = snapshot_path
        self._running = False

    async def run(self, targets: Iterable[str]) -> RunSummary:
        # Overlapping runs stay correct (upsert is atomic) but burn harvest budget twice.
        if self._running:
            raise RuntimeError("An ingestion run is already in progress on this pipeline")
        self._running = True
        try:
            return await self._run(list(targets))
        finally:
            self._running = False

    async def _run(self, targets: List[str]) -> RunSummary:
        summary = RunSummary(targets_total=len(targets))
        logger.info("[INIT] %d targets, concurrency %d", len(targets), self.concurrency)
        sem = asyncio.Semaphore(self.concurrency)

        async def guarded(target: str):
            async with sem:
                await self._process_target(target, summary)

        tasks = [asyncio.create_task(guarded(t)) for t in targets]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.run_budget)
            if pending:
                summary.budget_exhausted = True
                logger.warning("[BUDGET] Run budget of %ss exhausted; cancelling %d targets", self.run_budget, len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        summary.finished_at = datetime.now(timezone.utc)
        if self.snapshot_path and summary.written:
            n = append_jsonl(self.snapshot_path, summary.written)
            logger.info("[SNAPSHOT] Saved %d records to %s", n, self.snapshot_path)
        logger.info("[DONE] %s", summary.as_log_dict())
        return summary

    async def _fetch(self, target: str, summary: RunSummary) -> Optional[List[Dict]]:
        for attempt in range(self.retries + 1):
            try:
                return await asyncio.wait_for(self.harvester.harvest(target), self.target_timeout)
            except TargetSkipped as exc:
                logger.info("[JOB] SKIP → %s (%s)", target, exc)
                summary.targets_skipped += 1
                return None
            except Exception as exc:
                reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else f"{type(exc).__name__}: {exc}"
                if attempt == self.retries:
                    logger.error("[JOB] ERR  → %s | giving up after %d attempts | %s", target, attempt + 1, reason)
                    summary.targets_failed += 1
                    summary.failures.append(UpstreamFailure(f"{target}: {reason}"))
                    return None
                logger.warning("[JOB] RETRY → %s | attempt %d failed | %s", target, attempt + 1, reason)
                await asyncio.sleep(self.retry_backoff * (attempt + 1))
        return None

    async def _upsert(self, draft: RecordDraft, summary: RunSummary) -> Record:
        pending = asyncio.ensure_future(asyncio.to_thread(self.store.upsert, draft))
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            # The worker thread commits regardless; account for the row before unwinding.
            try:
                summary.written.append(await pending)
            except (StoreFailure, ValidationError) as exc:
                logger.warning("[BUDGET] In-flight write for %s failed: %s", draft.natural_key, exc)
            raise

    async def _process_target(self, target: str, summary: RunSummary) -> None:
        logger.info("[JOB] FETCH → %s", target)
        raw_items = await self._fetch(target, summary)
        if raw_items is None:
            return

        written = 0
        for raw in raw_items:
            summary.drafts_seen += 1
            draft = normalize(raw, source_page=target)
            if draft is None:
                summary.drafts_discarded += 1
                continue
            try:
                record = await self._upsert(draft, summary)
            except ValidationError:
                summary.drafts_discarded += 1
                continue
            except StoreFailure:
                logger.error("[JOB] ERR  → %s | store failure, abandoning remaining items", target)
                summary.targets_failed += 1
                return
            summary.written.append(record)
            written += 1

        summary.targets_succeeded += 1
        logger.info("[JOB] OK   → %s | %d items, %d written", target, len(raw_items), written)
