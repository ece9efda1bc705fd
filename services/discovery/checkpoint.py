"""
Checkpoint store and job control.

The checkpoint is one JSON document written atomically (temp file, then
os.replace). Pause and stop are sentinel files next to it so a second
process (`workflows/discover.py pause|stop`) can signal a running job.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from services.discovery.errors import CheckpointCorrupt
from services.discovery.models import CheckpointState


class CheckpointStore:
    """Durable storage for CheckpointState."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, state: CheckpointState) -> None:
        state.saved_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def load(self) -> Optional[CheckpointState]:
        """Load the last checkpoint.

        Raises:
            CheckpointCorrupt: If the file exists but can't be decoded
        """
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return CheckpointState.model_validate(raw)
        except (json.JSONDecodeError, ValidationError, UnicodeDecodeError) as e:
            raise CheckpointCorrupt(f"{self.path}: {e}") from e

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class JobControl:
    """In-memory pause/stop token checked at every suspension point."""

    def __init__(self, poll_interval: float = 2.0):
        self.poll_interval = poll_interval
        self._paused = False
        self._stopped = False

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def stopped(self) -> bool:
        return self._stopped

    def request_pause(self) -> None:
        self._paused = True

    def request_resume(self) -> None:
        self._paused = False

    def request_stop(self) -> None:
        self._stopped = True

    def clear(self) -> None:
        self._paused = False
        self._stopped = False

    async def wait_if_paused(self) -> None:
        """Block while paused. Returns early if a stop arrives."""
        if not self.paused:
            return
        logger.warning("PAUSED")
        while self.paused and not self.stopped:
            await asyncio.sleep(self.poll_interval)
        if not self.stopped:
            logger.info("RESUMED")


class FileJobControl(JobControl):
    """JobControl backed by sentinel files, so other processes can signal it."""

    def __init__(self, pause_path: Path, stop_path: Path, poll_interval: float = 2.0):
        super().__init__(poll_interval=poll_interval)
        self.pause_path = Path(pause_path)
        self.stop_path = Path(stop_path)

    @property
    def paused(self) -> bool:
        return self._paused or self.pause_path.exists()

    @property
    def stopped(self) -> bool:
        return self._stopped or self.stop_path.exists()

    def _touch(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(datetime.now(timezone.utc).isoformat(), encoding="utf-8")

    def request_pause(self) -> None:
        self._touch(self.pause_path)

    def request_resume(self) -> None:
        self._paused = False
        self.pause_path.unlink(missing_ok=True)
        self.stop_path.unlink(missing_ok=True)

    def request_stop(self) -> None:
        self._stopped = True
        self._touch(self.stop_path)

    def clear(self) -> None:
        super().clear()
        self.pause_path.unlink(missing_ok=True)
        self.stop_path.unlink(missing_ok=True)
