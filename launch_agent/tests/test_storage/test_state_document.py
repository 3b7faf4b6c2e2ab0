"""Tests for the Markdown state document and the snapshot store."""

import asyncio
from pathlib import Path

from launch_agent.storage.snapshot_store import SnapshotStore
from launch_agent.storage.state_document import (
    atomic_write_text,
    parse_document,
    read_document,
    render_document,
)


class TestDocument:
    def test_render_parse(self):
        sections = {"Bid Strategies": [{"auction_address": "0xa", "attempts": 2}], "Empty": []}
        text = render_document("Launch Agent State", sections, saved_at="2026-01-01T00:00:00+00:00")
        assert text.startswith("# Launch Agent State\n")
        assert "_Last saved: 2026-01-01T00:00:00+00:00_" in text
        assert "## Bid Strategies\n```json\n" in text
        assert parse_document(text) == sections

    def test_corrupt_section_skipped(self):
        text = (
            "# State\n\n## Good\n```json\n[1, 2]\n```\n\n"
            "## Bad\n```json\n{not json\n```\n"
        )
        assert parse_document(text) == {"Good": [1, 2]}

    def test_missing_file_is_empty(self, tmp_path: Path):
        assert read_document(tmp_path / "none.md") == {}

    def test_atomic_write_leaves_no_temp(self, tmp_path: Path):
        target = tmp_path / "sub" / "state.md"
        atomic_write_text(target, "hello")
        assert target.read_text() == "hello"
        assert [p.name for p in target.parent.iterdir()] == ["state.md"]


class TestSnapshotStore:
    def test_flush_collects_every_section(self, tmp_path: Path):
        store = SnapshotStore(tmp_path / "state.md")
        store.register("A", lambda: [{"x": 1}])
        store.register("B", lambda: {"y": 2})

        assert asyncio.run(store.flush()) is True
        assert store.writes == 1
        assert not store.dirty
        assert read_document(store.path) == {"A": [{"x": 1}], "B": {"y": 2}}

    def test_failed_write_stays_dirty(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = SnapshotStore(blocker / "state.md")
        store.register("A", lambda: [])

        assert asyncio.run(store.flush()) is False
        assert store.dirty
        assert store.writes == 0

    def test_mark_dirty_debounces(self, tmp_path: Path):
        store = SnapshotStore(tmp_path / "state.md", debounce_seconds=0.05)
        counter = {"n": 0}

        def collect():
            counter["n"] += 1
            return counter["n"]

        store.register("Counter", collect)

        async def scenario():
            for _ in range(5):
                store.mark_dirty()
            await asyncio.sleep(0.2)

        asyncio.run(scenario())
        assert store.writes == 1
        assert not store.dirty

    def test_mark_dirty_outside_loop(self, tmp_path: Path):
        store = SnapshotStore(tmp_path / "state.md")
        store.mark_dirty()
        assert store.dirty
        assert not store.path.exists()

    def test_close_flushes(self, tmp_path: Path):
        store = SnapshotStore(tmp_path / "state.md", debounce_seconds=60)
        store.register("A", lambda: ["kept"])

        async def scenario():
            store.mark_dirty()
            await store.close()

        asyncio.run(scenario())
        assert read_document(store.path) == {"A": ["kept"]}

    def test_load(self, tmp_path: Path):
        path = tmp_path / "state.md"
        path.write_text(render_document("T", {"Exit Strategies": [{"a": 1}]}))
        assert SnapshotStore(path).load() == {"Exit Strategies": [{"a": 1}]}
