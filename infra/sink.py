"""Buffered output sink base.

Rows are buffered per tab and pushed once a tab holds `batch_size` rows, or
on an explicit flush. A failed push keeps the rows buffered for the next
attempt and is reported through `on_error`.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from loguru import logger

from services.discovery.errors import SinkError
from services.discovery.stats import RunStats

Row = List[str]


class OutputSink(ABC):
    """Receives 18-column rows grouped by tab."""

    def __init__(
        self,
        batch_size: int = 10,
        on_error: Optional[Callable[[str, str], None]] = None,
    ):
        self.batch_size = batch_size
        self.on_error = on_error
        self.rows_pushed = 0
        self.push_errors = 0
        self._buffers: Dict[str, List[Row]] = {}

    @abstractmethod
    async def open(self) -> None:
        """Authorize and prepare the destination. Raises SinkAuthError."""
        pass

    @abstractmethod
    async def ensure_tab(self, tab: str) -> None:
        pass

    @abstractmethod
    async def _push(self, tab: str, rows: List[Row]) -> None:
        """Write rows to the destination. Raises SinkError on failure."""
        pass

    async def write_dashboard(self, stats: RunStats) -> None:
        """Render run stats. Optional for sinks without a dashboard."""
        return None

    def pending(self, tab: Optional[str] = None) -> int:
        if tab is not None:
            return len(self._buffers.get(tab, []))
        return sum(len(rows) for rows in self._buffers.values())

    async def append_rows(self, tab: str, rows: List[Row]) -> None:
        if not rows:
            return
        self._buffers.setdefault(tab, []).extend(rows)
        if len(self._buffers[tab]) >= self.batch_size:
            await self._flush_tab(tab)

    async def flush(self, tab: Optional[str] = None) -> None:
        tabs = [tab] if tab is not None else list(self._buffers.keys())
        for t in tabs:
            await self._flush_tab(t)

    async def _flush_tab(self, tab: str) -> None:
        rows = self._buffers.get(tab)
        if not rows:
            return
        try:
            await self._push(tab, rows)
        except SinkError as e:
            self.push_errors += 1
            logger.warning(f"Sink push to '{tab}' failed, {len(rows)} rows kept for retry: {e}")
            if self.on_error:
                self.on_error("Sink", str(e))
            return
        self.rows_pushed += len(rows)
        self._buffers[tab] = []
        logger.debug(f"Pushed {len(rows)} rows to '{tab}'")

    async def close(self) -> None:
        await self.flush()
