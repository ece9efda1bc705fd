"""
Discovery orchestrator - round-robin over categories, chunked and resumable.

Per category turn:
    DISCOVER (until `chunk_size` new businesses or the queue runs out)
      -> RESOLVE_WEBSITES -> push + flush rows for businesses without a site
      -> ENRICH each business with a site, in discovery order -> FLUSH
      -> CHECKPOINT
then rotate to the next category with quota and work left. A round ends
when every active category has had a turn; the run ends when none are
active.

Each category owns a shuffled queue of WorkUnits (region x source x
locality) and a cursor. The queue order comes from a per-run seed stored
in the checkpoint, so a resumed run consumes the same sequence.
"""

import random
import re
import signal
import time
from typing import Dict, List, Optional

from loguru import logger

from infra.sink import OutputSink
from services.discovery.catalog import Region, tab_for
from services.discovery.checkpoint import CheckpointStore, JobControl
from services.discovery.config import PipelineConfig
from services.discovery.errors import TransportError
from services.discovery.models import CheckpointState, Entity, RawRecord, WorkUnit
from services.discovery.rate_gate import RateGate, SourceSkipped
from services.discovery.resolution import EntityResolver
from services.discovery.rows import entity_rows
from services.discovery.sources.base import PageFetcher, SourceAdapter
from services.discovery.stats import ErrorLog, RunStats, compute_stats
from services.enrichment.pipeline import EnrichmentPipeline
from services.enrichment.website_resolver import WebsiteResolver

PHASE_DISCOVER = "discover"
PHASE_ENRICH = "enrich"
PHASE_DONE = "done"


def dedup_key(name: str, locality: str, region: str) -> str:
    """Cheap first-pass key: name alnum | locality alpha | region alpha."""
    n = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    c = re.sub(r"[^a-z]", "", (locality or "").lower())
    s = re.sub(r"[^a-z]", "", (region or "").lower())
    return f"{n}|{c}|{s}"


def build_work_queues(
    categories: List[str],
    regions: List[Region],
    sources: List[str],
    seed: int,
) -> Dict[str, List[WorkUnit]]:
    queues = {}
    for category in categories:
        units = [
            WorkUnit(category=category, region=region.key, source=source, locality=locality)
            for region in regions
            for source in sources
            for locality in region.localities
        ]
        random.Random(f"{seed}:{category}").shuffle(units)
        queues[category] = units
    return queues


class Orchestrator:
    """Drives discovery, website resolution, enrichment and output for one run."""

    def __init__(
        self,
        config: PipelineConfig,
        regions: List[Region],
        categories: List[str],
        sources: Dict[str, SourceAdapter],
        fetcher: PageFetcher,
        website_resolver: WebsiteResolver,
        pipeline: EnrichmentPipeline,
        sink: OutputSink,
        store: CheckpointStore,
        control: JobControl,
        rate_gate: RateGate,
        errors: Optional[ErrorLog] = None,
        seed: Optional[int] = None,
    ):
        self.config = config
        self.regions = {r.key: r for r in regions}
        self.categories = list(categories)
        self.sources = sources
        self.fetcher = fetcher
        self.website_resolver = website_resolver
        self.pipeline = pipeline
        self.sink = sink
        self.store = store
        self.control = control
        self.rate_gate = rate_gate
        self.errors = errors or ErrorLog(config.error_log_size)
        self.seed = seed if seed is not None else random.randrange(1 << 30)

        self.resolver = EntityResolver()
        self.seen: set[str] = set()
        self.cat_counts: Dict[str, int] = {}
        self.cat_work_idx: Dict[str, int] = {}
        self.pending: List[int] = []
        self.phase = PHASE_DISCOVER
        self._emitted: List[int] = []
        self._last_dashboard = 0.0

    @property
    def entities(self) -> List[Entity]:
        return self.resolver.entities

    # ── State ────────────────────────────────────────────────────────

    def restore(self, state: CheckpointState) -> None:
        """Load a checkpoint. The seen-set is rebuilt from entities."""
        self.resolver = EntityResolver(list(state.entities))
        self.cat_counts = dict(state.cat_counts)
        self.cat_work_idx = dict(state.cat_work_idx)
        self.pending = [i for i in state.pending if 0 <= i < len(self.entities)]
        self._emitted = []
        self.phase = state.phase
        self.seed = state.seed
        self.seen = {dedup_key(e.name, e.locality, e.region) for e in self.entities}
        logger.info(
            f"Resuming: {len(self.entities)} businesses, {len(self.cat_counts)} categories tracked, "
            f"{len(self.pending)} pending output"
        )

    def snapshot(self) -> CheckpointState:
        return CheckpointState(
            entities=self.entities,
            cat_counts=dict(self.cat_counts),
            cat_work_idx=dict(self.cat_work_idx),
            phase=self.phase,
            regions=list(self.regions.keys()),
            categories=self.categories,
            sources=list(self.sources.keys()),
            seed=self.seed,
            pending=list(self.pending),
        )

    def checkpoint(self) -> None:
        self.store.save(self.snapshot())
        logger.debug(f"Checkpoint saved: {len(self.entities)} businesses")

    def emergency_save(self, signum: int, frame=None) -> None:
        """Signal handler: save now, then stop at the next safe point."""
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self.checkpoint()
        logger.warning(f"Emergency save ({name}): {len(self.entities)} businesses preserved")
        self.control.request_stop()

    def stats(self) -> RunStats:
        return compute_stats(self.entities, self.cat_counts, self.errors, phase=self.phase)

    # ── Output ───────────────────────────────────────────────────────

    def _tab(self, entity: Entity) -> str:
        return tab_for(entity.region_key, entity.region)

    def _settle_emitted(self) -> None:
        """Drop emitted entities from pending once the sink holds nothing back."""
        if self.sink.pending() == 0 and self._emitted:
            done = set(self._emitted)
            self.pending = [i for i in self.pending if i not in done]
            self._emitted = []

    async def _emit(self, index: int) -> None:
        entity = self.entities[index]
        await self.sink.append_rows(self._tab(entity), entity_rows(entity))
        self._emitted.append(index)
        self._settle_emitted()

    async def _flush(self) -> None:
        await self.sink.flush()
        self._settle_emitted()

    async def _maybe_dashboard(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_dashboard < self.config.dashboard_interval_s:
            return
        self._last_dashboard = now
        await self.sink.write_dashboard(self.stats())

    # ── Discovery ────────────────────────────────────────────────────

    async def _discover_unit(self, unit: WorkUnit) -> List[RawRecord]:
        adapter = self.sources[unit.source]
        region = self.regions[unit.region]
        return await self.rate_gate.call(
            unit.source,
            lambda: adapter.discover(self.fetcher, region, unit.category, unit.locality),
        )

    def _accept(self, record: RawRecord, region_key: str) -> Optional[int]:
        """Seen-key filter then entity resolution. Index of a new entity, or None."""
        key = dedup_key(record.name, record.locality, record.region)
        if key in self.seen:
            return None
        self.seen.add(key)
        entity, created = self.resolver.add(record, region_key=region_key)
        if not created:
            logger.debug(f"Merged '{record.name}' ({record.source}) into '{entity.name}'")
            return None
        return len(self.entities) - 1

    async def discover_chunk(self, category: str, queue: List[WorkUnit]) -> List[int]:
        """Consume work units until `chunk_size` new businesses, quota, or queue end."""
        chunk: List[int] = []
        quota = self.config.max_per_category
        i = self.cat_work_idx.get(category, 0)

        while i < len(queue) and len(chunk) < self.config.chunk_size:
            if self.control.stopped:
                break
            await self.control.wait_if_paused()

            unit = queue[i]
            self.cat_work_idx[category] = i + 1
            i += 1

            try:
                records = await self._discover_unit(unit)
            except SourceSkipped:
                logger.debug(f"{unit.source} skipped for {category}/{unit.locality} (circuit open)")
                continue
            except TransportError as e:
                self.errors.record(unit.source, f"{category}/{unit.locality}/{unit.region}: {e}")
                continue
            except Exception as e:
                logger.warning(f"{unit.source} failed for {category}/{unit.locality}: {e}")
                self.errors.record(unit.source, f"{category}/{unit.locality}/{unit.region}: {e}")
                continue

            new = 0
            for record in records:
                index = self._accept(record, unit.region)
                if index is None:
                    continue
                chunk.append(index)
                self.cat_counts[category] = self.cat_counts.get(category, 0) + 1
                new += 1
                if self.cat_counts[category] >= quota:
                    break

            if new:
                logger.debug(
                    f"{unit.source} '{category}' {unit.locality}, {unit.region}: +{new} new "
                    f"({self.cat_counts[category]} cat, {len(self.entities)} global)"
                )
            if self.cat_counts.get(category, 0) >= quota:
                logger.info(f"[{category}] hit cap: {quota}")
                break
        return chunk

    # ── Chunk processing ─────────────────────────────────────────────

    async def process_pending(self) -> bool:
        """Resolve websites, emit and enrich the pending chunk.

        Returns False if a stop arrived before the chunk finished.
        """
        # Rows already buffered in the sink wait there for the next push
        emitted = set(self._emitted)
        chunk = [i for i in self.pending if i not in emitted]
        if not chunk:
            return True
        self.phase = PHASE_ENRICH

        need_site = [i for i in chunk if not self.entities[i].website]
        if need_site:
            logger.info(f"Finding websites for {len(need_site)}/{len(chunk)}...")
            found = 0
            for i in need_site:
                if self.control.stopped:
                    return False
                try:
                    found += bool(await self.website_resolver.find_website(self.entities[i]))
                except Exception as e:
                    self.errors.record("Websites", f"{self.entities[i].name}: {e}")
            logger.info(f"Websites: {found}/{len(need_site)} found")

        no_site = [i for i in chunk if not self.entities[i].website]
        with_site = [i for i in chunk if self.entities[i].website]

        for i in no_site:
            await self._emit(i)
        await self._flush()
        if no_site:
            logger.debug(f"Pushed {len(no_site)} businesses without a website")

        for n, i in enumerate(with_site, 1):
            if self.control.stopped:
                await self._flush()
                return False
            await self.control.wait_if_paused()
            if self.control.stopped:
                await self._flush()
                return False

            entity = self.entities[i]
            logger.info(f"[{n}/{len(with_site)}] {entity.name} - {entity.website}")
            try:
                await self.pipeline.enrich(entity)
            except Exception as e:
                logger.warning(f"Enrichment failed: {entity.name}: {e}")
                self.errors.record("Enrich", f"{entity.name}: {e}")
            await self._emit(i)

        await self._flush()
        self.phase = PHASE_DISCOVER
        return True

    async def run_category_turn(self, category: str, queue: List[WorkUnit]) -> bool:
        logger.info(
            f"[{category}] {self.cat_counts.get(category, 0)}/{self.config.max_per_category}"
        )
        chunk = await self.discover_chunk(category, queue)
        self.pending.extend(chunk)

        if not chunk:
            logger.debug(f"[{category}] no new businesses this turn")
        else:
            logger.info(f"[{category}] discovered +{len(chunk)} -> {self.cat_counts.get(category, 0)} total")

        completed = await self.process_pending()
        self.checkpoint()
        await self._maybe_dashboard()
        return completed

    # ── Run ──────────────────────────────────────────────────────────

    async def run(self) -> bool:
        """Run until every category is done or a stop arrives.

        Returns True when the run completed, False when it stopped early.
        """
        for region in self.regions.values():
            await self.sink.ensure_tab(region.tab)
        await self._maybe_dashboard(force=True)

        # Finish a chunk interrupted by the previous run
        if self.pending and not await self.process_pending():
            self.checkpoint()
            return False

        queues = build_work_queues(
            self.categories, list(self.regions.values()), list(self.sources.keys()), self.seed,
        )
        order = list(self.categories)
        random.Random(self.seed).shuffle(order)
        t0 = time.monotonic()
        round_num = 0

        while True:
            active = [
                c for c in order
                if self.cat_counts.get(c, 0) < self.config.max_per_category
                and self.cat_work_idx.get(c, 0) < len(queues[c])
            ]
            if not active:
                break
            round_num += 1
            logger.info(
                f"━━━ ROUND {round_num}: {len(active)} active categories, "
                f"{len(self.entities)} total businesses ━━━"
            )

            for category in active:
                if self.control.stopped:
                    await self._flush()
                    self.checkpoint()
                    logger.warning("Stopped - progress saved")
                    return False
                await self.control.wait_if_paused()
                if self.control.stopped:
                    continue

                if not await self.run_category_turn(category, queues[category]):
                    logger.warning("Stopped - progress saved")
                    return False

        await self._flush()
        self.phase = PHASE_DONE
        await self._maybe_dashboard(force=True)
        self.store.clear()
        self._log_summary(time.monotonic() - t0)
        return True

    def _log_summary(self, elapsed: float) -> None:
        s = self.stats()
        at_cap = sum(1 for n in self.cat_counts.values() if n >= self.config.max_per_category)
        logger.info(
            f"\nDiscovery Complete:\n"
            f"  Businesses discovered: {s.total_entities}\n"
            f"  Categories with data:  {len(self.cat_counts)}/{len(self.categories)}\n"
            f"  Categories at cap:     {at_cap}\n"
            f"  Total contacts:        {s.emails_total}\n"
            f"  MX-verified emails:    {s.emails_verified}\n"
            f"  Pattern-inferred:      {s.emails_inferred}\n"
            f"  WHOIS contacts:        {s.emails_whois}\n"
            f"  With websites:         {s.websites_found}\n"
            f"  Social profiles:       {s.social_total}\n"
            f"  New businesses (<2yr): {s.new_businesses}\n"
            f"  Time: {int(elapsed // 3600)}h {int(elapsed % 3600 // 60)}m {int(elapsed % 60)}s"
        )
        top = sorted(self.cat_counts.items(), key=lambda kv: kv[1], reverse=True)[:10]
        for category, count in top:
            logger.info(f"  {category}: {count}")
