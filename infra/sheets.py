"""Google Sheets output sink.

Uses a service account (GOOGLE_CREDENTIALS_PATH) and one tab per region plus
a Dashboard tab. gspread is synchronous, so calls run in the default executor.
"""

import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Callable, List, Optional

import gspread
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from loguru import logger

from infra.sink import OutputSink, Row
from services.discovery.errors import SinkAuthError, SinkError
from services.discovery.rows import HEADERS
from services.discovery.stats import RunStats

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
DASHBOARD_TAB = "Dashboard"
LAST_COLUMN = "R"


def dashboard_rows(stats: RunStats, updated_at: str) -> List[List[str]]:
    """Four-column dashboard layout."""
    rows = [
        ["BUSINESS DISCOVERY - LIVE DASHBOARD", "", "", ""],
        ["Last Updated", updated_at, "", ""],
        ["Current Phase", stats.phase, "", ""],
        ["", "", "", ""],
        ["=== DISCOVERY ===", "Found", "", ""],
    ]
    for source, count in sorted(stats.by_source.items()):
        rows.append([source, count, "", ""])
    rows += [
        ["Businesses (deduplicated)", stats.total_entities, "", ""],
        ["Categories tracked", stats.categories_tracked, "", ""],
        ["", "", "", ""],
        ["=== ENRICHMENT ===", "", "", ""],
        ["Businesses Enriched", stats.enriched, "", ""],
        ["Websites Found", stats.websites_found, "", ""],
        ["Websites Missing", stats.websites_missing, "", ""],
        ["", "", "", ""],
        ["=== CONTACTS ===", "", "", ""],
        ["Emails Found (total)", stats.emails_total, "", ""],
        ["MX Verified", stats.emails_verified, "", ""],
        ["Pattern Inferred", stats.emails_inferred, "", ""],
        ["WHOIS Contacts", stats.emails_whois, "", ""],
        ["Failed MX", stats.emails_no_mx, "", ""],
        ["", "", "", ""],
        ["=== SOCIAL MEDIA ===", "", "", ""],
        ["Facebook", stats.facebook, "", ""],
        ["Instagram", stats.instagram, "", ""],
        ["LinkedIn", stats.linkedin, "", ""],
        ["Twitter/X", stats.twitter, "", ""],
        ["", "", "", ""],
        ["=== BUSINESS AGE ===", "", "", ""],
        ["New Businesses (<2 yrs)", stats.new_businesses, "", ""],
        ["Established (2+ yrs)", stats.established_businesses, "", ""],
        ["", "", "", ""],
        ["=== PER-STATE RESULTS ===", "Discovered", "Contacts", "Verified"],
    ]
    for region, r in stats.by_region.items():
        rows.append([region, r.discovered, r.contacts, r.verified])
    rows += [
        ["", "", "", ""],
        [f"=== RECENT ERRORS (last {len(stats.recent_errors)}) ===", "", "", ""],
        ["Time", "Source", "Message", ""],
    ]
    for err in stats.recent_errors:
        rows.append([err.time, err.source, err.message, ""])
    return rows


class SheetsSink(OutputSink):
    """Appends rows to a Google spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        credentials_path: str,
        batch_size: int = 10,
        on_error: Optional[Callable[[str, str], None]] = None,
    ):
        super().__init__(batch_size=batch_size, on_error=on_error)
        self.spreadsheet_id = spreadsheet_id
        self.credentials_path = credentials_path
        self._spreadsheet = None

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    def _authorize(self):
        creds = Credentials.from_service_account_file(self.credentials_path, scopes=SCOPES)
        return gspread.authorize(creds).open_by_key(self.spreadsheet_id)

    async def open(self) -> None:
        if not self.spreadsheet_id:
            raise SinkAuthError("GOOGLE_SPREADSHEET_ID is not set")
        try:
            self._spreadsheet = await self._run(self._authorize)
        except (GoogleAuthError, gspread.exceptions.GSpreadException, OSError, ValueError) as e:
            raise SinkAuthError(f"Google Sheets auth failed: {e}") from e
        logger.info("Google Sheets authenticated")

    def _worksheet(self, tab: str, cols: int = 18):
        try:
            return self._spreadsheet.worksheet(tab)
        except gspread.exceptions.WorksheetNotFound:
            logger.info(f"Created tab: '{tab}'")
            return self._spreadsheet.add_worksheet(title=tab, rows=1000, cols=cols)

    def _setup_tab(self, tab: str) -> None:
        ws = self._worksheet(tab)
        header_range = f"A1:{LAST_COLUMN}1"
        ws.update(values=[HEADERS], range_name=header_range)
        ws.format(header_range, {"textFormat": {"bold": True}})
        ws.freeze(rows=1)

    async def ensure_tab(self, tab: str) -> None:
        try:
            await self._run(self._setup_tab, tab)
        except gspread.exceptions.GSpreadException as e:
            logger.error(f"Tab setup for '{tab}' failed: {e}")
            if self.on_error:
                self.on_error("Sheets", str(e))

    def _append(self, tab: str, rows: List[Row]) -> None:
        ws = self._spreadsheet.worksheet(tab)
        ws.append_rows(rows, value_input_option="RAW", insert_data_option="INSERT_ROWS")

    async def _push(self, tab: str, rows: List[Row]) -> None:
        if self._spreadsheet is None:
            raise SinkError("sink is not open")
        try:
            await self._run(self._append, tab, list(rows))
        except (gspread.exceptions.GSpreadException, GoogleAuthError, OSError) as e:
            raise SinkError(str(e)) from e

    def _write_dashboard(self, rows: List[List[str]]) -> None:
        ws = self._worksheet(DASHBOARD_TAB, cols=4)
        ws.clear()
        ws.update(values=rows, range_name="A1")

    async def write_dashboard(self, stats: RunStats) -> None:
        if self._spreadsheet is None:
            return
        updated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        try:
            await self._run(self._write_dashboard, dashboard_rows(stats, updated))
        except (gspread.exceptions.GSpreadException, OSError) as e:
            logger.warning(f"Dashboard update failed: {e}")
            if self.on_error:
                self.on_error("Dashboard", str(e))
