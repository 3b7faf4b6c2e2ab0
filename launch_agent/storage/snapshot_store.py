"""Process-wide snapshot store: named collectors, dirty flag, debounced atomic writes."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from launch_agent.storage.state_document import atomic_write_text, read_document, render_document

logger = logging.getLogger(__name__)

DOCUMENT_TITLE = "Launch Agent State"


class SnapshotStore:
    """Collects every engine's state into one Markdown document.

    ``mark_dirty`` schedules a write ``debounce_seconds`` later; ``flush``
    writes immediately and is awaited before irreversible actions. A failed
    write leaves the store dirty so the next debounce retries it.
    """

    def __init__(self, path: str | Path, debounce_seconds: float = 5.0, title: str = DOCUMENT_TITLE):
        self.path = Path(path)
        self.debounce_seconds = debounce_seconds
        self.title = title
        self.dirty = False
        self.writes = 0
        self._collectors: dict[str, Callable[[], Any]] = {}
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    def register(self, section: str, collector: Callable[[], Any]) -> None:
        self._collectors[section] = collector

    def load(self) -> dict[str, Any]:
        sections = read_document(self.path)
        if sections:
            logger.info("Loaded state sections: %s", ", ".join(sections))
        else:
            logger.info("No state document at %s, starting fresh", self.path)
        return sections

    def collect(self) -> dict[str, Any]:
        return {name: collector() for name, collector in self._collectors.items()}

    def mark_dirty(self) -> None:
        self.dirty = True
        if self._timer is not None and not self._timer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self.dirty:
            await self.flush()
            if self.dirty:
                # write failed, try again after another debounce
                self._timer = None
                self.mark_dirty()

    async def flush(self) -> bool:
        """Write the snapshot now. Returns False if the write failed."""
        async with self._lock:
            self.dirty = False
            text = render_document(self.title, self.collect())
            try:
                await asyncio.to_thread(atomic_write_text, self.path, text)
            except OSError as e:
                logger.error("State save failed: %s", e)
                self.dirty = True
                return False
            self.writes += 1
            logger.debug("State saved to %s", self.path)
            return True

    async def close(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
        self._timer = None
        await self.flush()
