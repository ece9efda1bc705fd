"""CSV output sink: one file per tab, for runs without a spreadsheet."""

import csv
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from infra.sink import OutputSink, Row
from services.discovery.errors import SinkAuthError, SinkError
from services.discovery.rows import HEADERS


class CsvSink(OutputSink):
    def __init__(
        self,
        directory: str,
        batch_size: int = 10,
        on_error: Optional[Callable[[str, str], None]] = None,
    ):
        super().__init__(batch_size=batch_size, on_error=on_error)
        self.directory = Path(directory)

    def path_for(self, tab: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in tab)
        return self.directory / f"{safe}.csv"

    async def open(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkAuthError(f"Cannot create output directory {self.directory}: {e}") from e
        logger.info(f"Writing CSV output to {self.directory}")

    async def ensure_tab(self, tab: str) -> None:
        path = self.path_for(tab)
        if path.exists():
            return
        with path.open("w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(HEADERS)

    async def _push(self, tab: str, rows: List[Row]) -> None:
        path = self.path_for(tab)
        try:
            if not path.exists():
                await self.ensure_tab(tab)
            with path.open("a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerows(rows)
        except OSError as e:
            raise SinkError(f"{path}: {e}") from e
