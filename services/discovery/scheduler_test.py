"""Tests for the discovery orchestrator."""

import signal
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from infra.sink import OutputSink, Row
from services.discovery.catalog import REGIONS
from services.discovery.checkpoint import CheckpointStore, JobControl
from services.discovery.config import PipelineConfig
from services.discovery.errors import BlockedError, SinkError, TransportError
from services.discovery.models import Entity, RawRecord, WorkUnit
from services.discovery.rate_gate import RateGate
from services.discovery.scheduler import Orchestrator, build_work_queues, dedup_key

AZ = REGIONS["AZ"].model_copy(update={"localities": ["Phoenix", "Tempe"]})
NAMES = ["Sunrise Bakery", "Desert Donuts", "Cactus Cupcakes", "Saguaro Sweets", "Copper Crumb"]


def raw(name: str, locality: str = "Phoenix", website: str = "", source: str = "yellowpages") -> RawRecord:
    return RawRecord(
        name=name, locality=locality, region="Arizona", website=website,
        category="bakery", source=source,
    )


class FakeSource:
    def __init__(self, name: str, by_locality: Optional[Dict[str, List[RawRecord]]] = None,
                 error: Optional[Exception] = None, on_call: Optional[Callable[[], None]] = None):
        self.name = name
        self.by_locality = by_locality or {}
        self.error = error
        self.on_call = on_call
        self.calls: List[str] = []

    async def discover(self, fetcher, region, category, locality):
        self.calls.append(locality)
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return list(self.by_locality.get(locality, []))


class FakeWebsiteResolver:
    def __init__(self, found: Optional[Dict[str, str]] = None, events: Optional[list] = None):
        self.found = found or {}
        self.events = events if events is not None else []

    async def find_website(self, entity: Entity):
        self.events.append(("website", entity.name))
        url = self.found.get(entity.name)
        if url:
            entity.website = url
        return url


class FakePipeline:
    def __init__(self, events: list, on_enrich: Optional[Callable[[Entity], None]] = None):
        self.events = events
        self.on_enrich = on_enrich

    async def enrich(self, entity: Entity) -> Entity:
        self.events.append(("enrich", entity.name))
        entity.enriched_at = "2026-01-01T00:00:00+00:00"
        if self.on_enrich:
            self.on_enrich(entity)
        return entity


class RecordingSink(OutputSink):
    def __init__(self, events: list, batch_size: int = 100):
        super().__init__(batch_size=batch_size)
        self.events = events
        self.tabs: List[str] = []

    async def open(self) -> None:
        pass

    async def ensure_tab(self, tab: str) -> None:
        self.tabs.append(tab)

    async def _push(self, tab: str, rows: List[Row]) -> None:
        self.events.append(("push", tab, [r[4] for r in rows]))

    def pushed_names(self) -> List[str]:
        return [name for e in self.events if e[0] == "push" for name in e[2]]


def make_orchestrator(tmp_path, sources, events, control=None, resolver=None, pipeline=None,
                      gate=None, **config):
    config.setdefault("max_per_category", 100)
    config.setdefault("chunk_size", 100)
    return Orchestrator(
        config=PipelineConfig(**config),
        regions=[AZ],
        categories=["bakery"],
        sources={s.name: s for s in sources},
        fetcher=object(),
        website_resolver=resolver or FakeWebsiteResolver(events=events),
        pipeline=pipeline or FakePipeline(events),
        sink=RecordingSink(events),
        store=CheckpointStore(tmp_path / ".discovery-state.json"),
        control=control or JobControl(poll_interval=0),
        rate_gate=gate or RateGate(sleep=AsyncMock()),
        seed=42,
    )


class TestHelpers:

    @pytest.mark.no_db
    def test_dedup_key(self):
        assert dedup_key("Joe's Pizza #2", "St. Louis", "Missouri") == "joespizza2|stlouis|missouri"
        assert dedup_key("JOE'S PIZZA 2", "st louis", "MISSOURI") == dedup_key("Joe's Pizza #2", "St. Louis", "Missouri")

    @pytest.mark.no_db
    def test_work_queues_cover_every_unit(self):
        queues = build_work_queues(["bakery", "florist"], [AZ], ["yellowpages", "yelp"], seed=7)
        assert set(queues) == {"bakery", "florist"}
        for category, units in queues.items():
            assert len(units) == 4
            assert {(u.source, u.locality) for u in units} == {
                ("yellowpages", "Phoenix"), ("yellowpages", "Tempe"),
                ("yelp", "Phoenix"), ("yelp", "Tempe"),
            }
            assert all(u.category == category and u.region == "AZ" for u in units)

    @pytest.mark.no_db
    def test_work_queues_are_seeded(self):
        regions = [REGIONS["AZ"], REGIONS["OH"]]
        sources = ["yellowpages", "yelp", "bbb"]
        a = build_work_queues(["bakery"], regions, sources, seed=123)
        b = build_work_queues(["bakery"], regions, sources, seed=123)
        c = build_work_queues(["bakery"], regions, sources, seed=124)
        assert a == b
        assert a != c


class TestDiscoverChunk:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_cursor_advances_before_fetch(self, tmp_path):
        seen_cursor = []
        events = []
        source = FakeSource("yellowpages", error=TransportError("yellowpages", "timeout"))
        orch = make_orchestrator(tmp_path, [source], events)
        source.on_call = lambda: seen_cursor.append(orch.cat_work_idx.get("bakery"))

        queue = [
            WorkUnit(category="bakery", region="AZ", source="yellowpages", locality="Phoenix"),
            WorkUnit(category="bakery", region="AZ", source="yellowpages", locality="Tempe"),
        ]
        chunk = await orch.discover_chunk("bakery", queue)

        assert chunk == []
        assert seen_cursor == [1, 2]
        assert orch.cat_work_idx["bakery"] == 2
        assert len(orch.errors) == 2

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_quota_caps_new_businesses(self, tmp_path):
        source = FakeSource("yellowpages", {"Phoenix": [raw(n) for n in NAMES]})
        orch = make_orchestrator(tmp_path, [source], [], max_per_category=3)

        queue = [
            WorkUnit(category="bakery", region="AZ", source="yellowpages", locality="Phoenix"),
            WorkUnit(category="bakery", region="AZ", source="yellowpages", locality="Tempe"),
        ]
        chunk = await orch.discover_chunk("bakery", queue)

        assert chunk == [0, 1, 2]
        assert orch.cat_counts["bakery"] == 3
        assert [e.name for e in orch.entities] == NAMES[:3]
        assert source.calls == ["Phoenix"]

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_repeat_sighting_is_not_counted(self, tmp_path):
        source = FakeSource("yellowpages", {
            "Phoenix": [raw("Sunrise Bakery")],
            "Tempe": [raw("SUNRISE BAKERY", locality="Phoenix"), raw("Sunrise Bakery Inc", locality="Tempe")],
        })
        orch = make_orchestrator(tmp_path, [source], [])

        queue = build_work_queues(["bakery"], [AZ], ["yellowpages"], seed=1)["bakery"]
        chunk = await orch.discover_chunk("bakery", queue)

        assert len(chunk) == 1
        assert len(orch.entities) == 1
        assert orch.cat_counts["bakery"] == 1


class TestRun:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_rows_without_website_are_pushed_before_enrichment(self, tmp_path):
        events = []
        source = FakeSource("yellowpages", {"Phoenix": [
            raw("Sunrise Bakery", website="https://www.sunrisebakery.com"),
            raw("Desert Donuts"),
            raw("Cactus Cupcakes"),
            raw("Saguaro Sweets"),
        ]})
        resolver = FakeWebsiteResolver({"Saguaro Sweets": "https://saguarosweets.com"}, events)
        orch = make_orchestrator(tmp_path, [source], events, resolver=resolver)

        completed = await orch.run()

        assert completed is True
        assert events == [
            ("website", "Desert Donuts"),
            ("website", "Cactus Cupcakes"),
            ("website", "Saguaro Sweets"),
            ("push", "Arizona", ["Desert Donuts", "Cactus Cupcakes"]),
            ("enrich", "Sunrise Bakery"),
            ("enrich", "Saguaro Sweets"),
            ("push", "Arizona", ["Sunrise Bakery", "Saguaro Sweets"]),
        ]
        assert orch.sink.tabs == ["Arizona"]
        assert orch.pending == []
        assert not orch.store.exists()

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_three_without_site_reach_sink_before_enriched_rows(self, tmp_path):
        events = []
        source = FakeSource("yellowpages", {"Phoenix": [
            raw("Sunrise Bakery", website="https://www.sunrisebakery.com"),
            raw("Desert Donuts"),
            raw("Cactus Cupcakes", website="https://cactuscupcakes.com"),
            raw("Saguaro Sweets"),
            raw("Copper Crumb"),
        ]})
        orch = make_orchestrator(tmp_path, [source], events)
        orch.sink.batch_size = 2

        await orch.run()

        pushed = orch.sink.pushed_names()
        assert sorted(pushed[:3]) == ["Copper Crumb", "Desert Donuts", "Saguaro Sweets"]
        assert pushed[3:] == ["Sunrise Bakery", "Cactus Cupcakes"]
        first_enrich = events.index(("enrich", "Sunrise Bakery"))
        no_site_pushes = [i for i, e in enumerate(events) if e[0] == "push" and "Copper Crumb" in e[2]]
        assert no_site_pushes[0] < first_enrich

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_open_breaker_skips_source_and_run_continues(self, tmp_path):
        localities = ["Phoenix", "Tempe", "Mesa", "Yuma"]
        region = AZ.model_copy(update={"localities": localities})
        yelp = FakeSource("yelp", error=BlockedError("yelp", "captcha"))
        yp = FakeSource("yellowpages", {loc: [raw(name, locality=loc)] for loc, name in zip(localities, NAMES)})
        gate = RateGate(failure_threshold=2, sleep=AsyncMock())
        orch = make_orchestrator(tmp_path, [yelp, yp], [], gate=gate)
        orch.regions = {"AZ": region}

        completed = await orch.run()

        assert completed is True
        assert len(yelp.calls) == 2
        assert gate.skipped["yelp"] == 2
        assert gate.blocked["yelp"] == 2
        assert sorted(yp.calls) == sorted(localities)
        assert len(orch.entities) == 4
        assert len(orch.errors) == 2

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_stop_before_start_saves_checkpoint(self, tmp_path):
        control = JobControl(poll_interval=0)
        control.request_stop()
        source = FakeSource("yellowpages", {"Phoenix": [raw("Sunrise Bakery")]})
        orch = make_orchestrator(tmp_path, [source], [], control=control)

        completed = await orch.run()

        assert completed is False
        assert source.calls == []
        assert orch.store.exists()

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_resume_after_stop_emits_each_business_once(self, tmp_path):
        records = {"Phoenix": [
            raw("Sunrise Bakery", website="https://www.sunrisebakery.com"),
            raw("Desert Donuts", website="https://desertdonuts.com"),
            raw("Cactus Cupcakes"),
        ]}

        first_events = []
        control = JobControl(poll_interval=0)
        stop_after_first = FakePipeline(first_events, on_enrich=lambda e: control.request_stop())
        first = make_orchestrator(
            tmp_path, [FakeSource("yellowpages", records)], first_events,
            control=control, pipeline=stop_after_first,
        )
        assert await first.run() is False
        assert first.sink.pushed_names() == ["Cactus Cupcakes", "Sunrise Bakery"]

        state = first.store.load()
        assert state.pending == [1]
        assert state.seed == 42

        second_events = []
        source = FakeSource("yellowpages", records)
        second = make_orchestrator(tmp_path, [source], second_events)
        second.restore(state)
        assert await second.run() is True

        assert second.sink.pushed_names() == ["Desert Donuts"]
        assert source.calls == []
        assert ("enrich", "Sunrise Bakery") not in second_events
        assert not second.store.exists()

    @pytest.mark.no_db
    def test_emergency_save(self, tmp_path):
        orch = make_orchestrator(tmp_path, [], [])
        orch.resolver.add(raw("Sunrise Bakery"), region_key="AZ")
        orch.cat_counts["bakery"] = 1

        orch.emergency_save(signal.SIGTERM)

        assert orch.control.stopped
        state = orch.store.load()
        assert [e.name for e in state.entities] == ["Sunrise Bakery"]
        assert state.cat_counts == {"bakery": 1}

    @pytest.mark.no_db
    def test_restore_rebuilds_seen_set(self, tmp_path):
        orch = make_orchestrator(tmp_path, [], [])
        orch.resolver.add(raw("Sunrise Bakery"), region_key="AZ")
        snapshot = orch.snapshot()

        restored = make_orchestrator(tmp_path, [], [])
        restored.restore(snapshot)

        assert restored.seen == {dedup_key("Sunrise Bakery", "Phoenix", "Arizona")}
        assert restored.seed == 42


class FlakySink(RecordingSink):
    """Fails the first `fail` pushes, keeping rows buffered."""

    def __init__(self, events: list, fail: int):
        super().__init__(events)
        self.fail = fail

    async def _push(self, tab: str, rows: List[Row]) -> None:
        if self.fail:
            self.fail -= 1
            raise SinkError("quota exceeded")
        await super()._push(tab, rows)


class TestSinkFailures:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_buffered_rows_are_not_processed_again(self, tmp_path):
        events = []
        source = FakeSource("yellowpages", {
            "Phoenix": [raw("Sunrise Bakery")],
            "Tempe": [raw("Desert Donuts", locality="Tempe")],
        })
        orch = make_orchestrator(tmp_path, [source], events, chunk_size=1)
        orch.sink = FlakySink(events, fail=2)

        assert await orch.run() is True

        assert sorted(orch.sink.pushed_names()) == ["Desert Donuts", "Sunrise Bakery"]
        lookups = [e for e in events if e[0] == "website"]
        assert sorted(lookups) == [("website", "Desert Donuts"), ("website", "Sunrise Bakery")]
        assert orch.sink.push_errors == 2
        assert orch.pending == []

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_unpushed_rows_stay_pending_in_checkpoint(self, tmp_path):
        events = []
        control = JobControl(poll_interval=0)
        source = FakeSource("yellowpages", {"Phoenix": [raw("Sunrise Bakery")]})
        resolver = FakeWebsiteResolver(events=events)
        orch = make_orchestrator(tmp_path, [source], events, control=control, resolver=resolver)
        orch.sink = FlakySink(events, fail=10)

        queue = [WorkUnit(category="bakery", region="AZ", source="yellowpages", locality="Phoenix")]
        await orch.run_category_turn("bakery", queue)

        state = orch.store.load()
        assert state.pending == [0]
        assert state.sources == ["yellowpages"]
        assert await orch.process_pending() is True
        assert [e for e in events if e[0] == "website"] == [("website", "Sunrise Bakery")]
