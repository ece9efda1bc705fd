"""Business discovery and enrichment - chunked, round-robin, resumable.

Discovers local businesses from directory sites, resolves their websites,
enriches each one with contacts, social profiles and domain age, and streams
rows to Google Sheets (or CSV) as each chunk finishes.

Usage:
    uv run python -m workflows.discover start --state ALL
    uv run python -m workflows.discover start --state AZ,NV --categories "plumber,electrician" --max 200
    uv run python -m workflows.discover pause | resume | stop | status | reset
    uv run python -m workflows.discover states
    uv run python -m workflows.discover cats
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import asyncio
import signal
from typing import List, Optional

from loguru import logger

from infra import slack
from infra.csv_sink import CsvSink
from infra.sheets import SheetsSink
from infra.sink import OutputSink
from lib.browser import BrowserFetcher
from lib.fetcher import HttpFetcher
from lib.mx import MxVerifier
from lib.rdap_client import RdapClient
from services.discovery.catalog import CATEGORIES, REGIONS, Region, resolve_categories, resolve_regions
from services.discovery.checkpoint import CheckpointStore, FileJobControl
from services.discovery.config import PipelineConfig
from services.discovery.errors import CheckpointCorrupt, SinkAuthError
from services.discovery.logging import RunLogger, configure_console
from services.discovery.models import CheckpointState
from services.discovery.rate_gate import RateGate
from services.discovery.scheduler import Orchestrator
from services.discovery.sources import get_source, list_sources
from services.discovery.stats import ErrorLog, compute_stats
from services.enrichment.pipeline import EnrichmentPipeline
from services.enrichment.website_resolver import WebsiteResolver


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_sink(config: PipelineConfig, errors: ErrorLog) -> OutputSink:
    if config.output == "csv":
        return CsvSink(config.csv_dir, batch_size=config.batch_size, on_error=errors.record)
    return SheetsSink(
        config.spreadsheet_id,
        config.credentials_path,
        batch_size=config.batch_size,
        on_error=errors.record,
    )


def sink_destination(config: PipelineConfig) -> str:
    if config.output == "csv":
        return config.csv_dir
    return f"https://docs.google.com/spreadsheets/d/{config.spreadsheet_id}"


def install_signal_handlers(orchestrator: Orchestrator) -> None:
    """First signal saves a checkpoint and requests stop; a second one exits."""
    received = []

    def handle(signum, frame):
        if received:
            logger.warning(f"Signal {signum} received again, exiting")
            raise SystemExit(130)
        received.append(signum)
        orchestrator.emergency_save(signum, frame)

    for name in ("SIGINT", "SIGTERM", "SIGHUP"):
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, handle)


def load_checkpoint(store: CheckpointStore) -> Optional[CheckpointState]:
    """Load saved progress. Exits with status 1 if it can't be decoded."""
    try:
        return store.load()
    except CheckpointCorrupt as e:
        logger.error(f"Checkpoint is unreadable: {e}")
        logger.error("Run 'reset' to discard it, or 'start --fresh'")
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


async def run_discovery(
    config: PipelineConfig,
    regions: List[Region],
    categories: List[str],
    fresh: bool = False,
    notify: bool = True,
) -> int:
    store = CheckpointStore(config.state_path)
    control = FileJobControl(config.pause_path, config.stop_path, poll_interval=config.pause_poll_s)
    control.clear()

    state = None
    if fresh:
        store.clear()
        logger.info("Fresh start: previous progress discarded")
    else:
        state = load_checkpoint(store)
    if state is not None:
        # Cursors only make sense against the selection that produced them
        if state.regions:
            regions = [REGIONS[k] for k in state.regions if k in REGIONS]
        if state.categories:
            categories = list(state.categories)
        if state.sources:
            config = config.model_copy(update={"sources": tuple(state.sources)})

    logger.info(
        f"States: {', '.join(r.key for r in regions)} | {len(categories)} categories | "
        f"max {config.max_per_category}/cat | chunk {config.chunk_size}"
    )

    errors = ErrorLog(config.error_log_size)
    sink = build_sink(config, errors)
    try:
        await sink.open()
    except SinkAuthError as e:
        logger.error(f"Output sink unavailable: {e}")
        return 1

    gate = RateGate(
        delay_ms=config.delay_ms,
        variance_ms=config.delay_variance_ms,
        failure_threshold=config.failure_threshold,
        blocked_cooldown_ms=config.blocked_cooldown_ms,
        blocked_variance_ms=config.blocked_variance_ms,
    )
    sources = {name: get_source(name)() for name in config.sources}

    try:
        async with BrowserFetcher(
            headless=config.headless, proxy=config.proxy_url, timeout=config.timeout_s,
        ) as browser, HttpFetcher(timeout=config.timeout_s, proxy=config.proxy_url) as http:
            website_resolver = WebsiteResolver(browser.fetch, pause=lambda: gate.pause("search"))
            pipeline = EnrichmentPipeline(
                pages=http,
                metadata=RdapClient(http.client, timeout=config.timeout_s),
                mail=MxVerifier(),
                max_pages=config.max_pages,
                page_pause=lambda: gate.pause(),
                should_stop=lambda: control.stopped,
            )
            orchestrator = Orchestrator(
                config=config,
                regions=regions,
                categories=categories,
                sources=sources,
                fetcher=browser,
                website_resolver=website_resolver,
                pipeline=pipeline,
                sink=sink,
                store=store,
                control=control,
                rate_gate=gate,
                errors=errors,
            )
            if state is not None:
                orchestrator.restore(state)
            install_signal_handlers(orchestrator)

            completed = await orchestrator.run()
    finally:
        await sink.close()

    stats = compute_stats(orchestrator.entities, orchestrator.cat_counts, errors)
    if not completed:
        logger.info("Run 'resume' to continue")
    if notify:
        slack.send_run_notification(stats, completed, sink_destination(config))
    return 0


# ---------------------------------------------------------------------------
# Job control commands
# ---------------------------------------------------------------------------


def show_status(config: PipelineConfig) -> None:
    store = CheckpointStore(config.state_path)
    control = FileJobControl(config.pause_path, config.stop_path)
    state = load_checkpoint(store)
    if state is None:
        print("\n  Status: IDLE\n")
        return

    label = "STOPPED" if control.stopped else "PAUSED" if control.paused else "RUNNING"
    stats = compute_stats(state.entities, state.cat_counts)
    print(f"\n  Status: {label}")
    print(f"  Phase: {state.phase}")
    print(f"  States: {', '.join(state.regions) or '-'}")
    print(f"  Discovered: {stats.total_entities:,}")
    print(f"  Categories tracked: {stats.categories_tracked}")
    print(f"  Enriched: {stats.enriched:,}")
    print(f"  Contacts: {stats.emails_total:,} ({stats.emails_verified:,} verified)")
    print(f"  Awaiting output: {len(state.pending)}")
    print(f"  Saved at: {state.saved_at or '-'}\n")


def list_states() -> None:
    print()
    for key, region in REGIONS.items():
        print(f"  {key} {region.name} - {', '.join(region.localities)}")
    print()


def list_categories() -> None:
    print(f"\n  {len(CATEGORIES)} Categories:")
    for i, category in enumerate(CATEGORIES, 1):
        print(f"  {i:>3}. {category}")
    print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Business discovery and enrichment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  uv run python -m workflows.discover start --state ALL
  uv run python -m workflows.discover start --state AZ --categories "plumber,roofing" --max 100
  uv run python -m workflows.discover start --state ALL --output csv --fresh

Environment:
  GOOGLE_SPREADSHEET_ID   - Required for --output sheets.
  GOOGLE_CREDENTIALS_PATH - Service account JSON (default: google-credentials.json).
  DELAY_MS, MAX_PAGES_PER_SITE, MAX_PER_CATEGORY, CHUNK_SIZE, PROXY_URL, DISCOVERY_STATE_DIR
  SLACK_WEBHOOK_URL       - Optional run notifications.
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    start = subparsers.add_parser("start", help="Start (or continue) a discovery run")
    start.add_argument("--state", required=True, help="ALL or comma-separated state keys")
    start.add_argument("--categories", help="Comma-separated categories (default: all)")
    start.add_argument(
        "--sources",
        help=f"Comma-separated directory sources (default: all of {', '.join(list_sources())})",
    )
    start.add_argument("--max", type=int, help="Max businesses per category")
    start.add_argument("--chunk", type=int, help="New businesses per category turn")
    start.add_argument("--fresh", action="store_true", help="Ignore saved progress")
    start.add_argument("--output", choices=["sheets", "csv"], default="sheets")
    start.add_argument("--csv-dir", help="Directory for --output csv")
    start.add_argument("--headful", action="store_true", help="Show the browser window")
    start.add_argument("--no-notify", action="store_true", help="Skip the Slack summary")
    start.add_argument("--debug", "-d", action="store_true")

    resume = subparsers.add_parser("resume", help="Clear pause/stop flags and continue saved run")
    resume.add_argument("--output", choices=["sheets", "csv"], default="sheets")
    resume.add_argument("--csv-dir", help="Directory for --output csv")
    resume.add_argument("--no-notify", action="store_true", help="Skip the Slack summary")
    resume.add_argument("--debug", "-d", action="store_true")

    subparsers.add_parser("pause", help="Signal a running job to pause")
    subparsers.add_parser("stop", help="Signal a running job to checkpoint and exit")
    subparsers.add_parser("status", help="Show saved progress")
    subparsers.add_parser("reset", help="Discard saved progress and flags")
    subparsers.add_parser("states", help="List available states")
    subparsers.add_parser("cats", help="List categories")
    return parser


def resolve_sources(selector: str) -> tuple[str, ...]:
    """Parse a comma-separated source list.

    Raises:
        ValueError: If a source is not registered
    """
    available = list_sources()
    names = tuple(s.strip().lower() for s in selector.split(",") if s.strip())
    unknown = [n for n in names if n not in available]
    if unknown:
        raise ValueError(f"Unknown source: {', '.join(unknown)}. Available: {', '.join(available)}")
    return names


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_env()
    update = {"output": args.output}
    if getattr(args, "max", None):
        update["max_per_category"] = args.max
    if getattr(args, "chunk", None):
        update["chunk_size"] = args.chunk
    if getattr(args, "csv_dir", None):
        update["csv_dir"] = args.csv_dir
    if getattr(args, "headful", False):
        update["headless"] = False
    if getattr(args, "sources", None):
        update["sources"] = resolve_sources(args.sources)
    return config.model_copy(update=update)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = PipelineConfig.from_env()
    control = FileJobControl(config.pause_path, config.stop_path)

    if args.command == "start":
        configure_console(args.debug)
        try:
            regions = resolve_regions(args.state)
            config = config_from_args(args)
        except ValueError as e:
            logger.error(str(e))
            return 1
        with RunLogger("discover"):
            return asyncio.run(run_discovery(
                config, regions, resolve_categories(args.categories),
                fresh=args.fresh, notify=not args.no_notify,
            ))

    if args.command == "resume":
        configure_console(args.debug)
        control.request_resume()
        state = load_checkpoint(CheckpointStore(config.state_path))
        if state is None:
            logger.warning("No saved state. Use 'start --state ALL'")
            return 0
        logger.info(f"Resuming phase '{state.phase}'")
        config = config_from_args(args)
        with RunLogger("discover"):
            return asyncio.run(run_discovery(
                config, list(REGIONS.values()), list(CATEGORIES), notify=not args.no_notify,
            ))

    if args.command == "pause":
        control.request_pause()
        logger.info("Pause signal sent")
    elif args.command == "stop":
        control.request_stop()
        logger.info("Stop signal sent")
    elif args.command == "status":
        show_status(config)
    elif args.command == "reset":
        CheckpointStore(config.state_path).clear()
        control.clear()
        logger.info("State cleared")
    elif args.command == "states":
        list_states()
    elif args.command == "cats":
        list_categories()
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
