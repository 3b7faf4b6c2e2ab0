"""Markdown state document: one ``## Section`` heading plus one fenced json block each."""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from launch_agent.models.common import utc_now_iso

logger = logging.getLogger(__name__)

_SECTION_RE = re.compile(r"^## (.+?)\s*\n```json\n(.*?)```", re.MULTILINE | re.DOTALL)


def render_document(title: str, sections: dict[str, Any], saved_at: str | None = None) -> str:
    lines = [f"# {title}", "", f"_Last saved: {saved_at or utc_now_iso()}_", ""]
    for name, data in sections.items():
        lines.append(f"## {name}")
        lines.append("```json")
        lines.append(json.dumps(data, indent=2))
        lines.append("```")
        lines.append("")
    return "\n".join(lines)


def parse_document(text: str) -> dict[str, Any]:
    """Parse sections back out. A section whose JSON is unreadable is skipped."""
    result: dict[str, Any] = {}
    for match in _SECTION_RE.finditer(text):
        name = match.group(1).strip()
        try:
            result[name] = json.loads(match.group(2))
        except json.JSONDecodeError:
            logger.error("Failed to parse state section: %s", name)
    return result


def atomic_write_text(path: str | Path, text: str) -> None:
    """Write via temp file + fsync + replace in the same directory."""
    abs_path = str(path)
    state_dir = os.path.dirname(abs_path) or "."
    os.makedirs(state_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        prefix=f"{os.path.basename(abs_path)}.", suffix=".tmp", dir=state_dir, text=True
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, abs_path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def read_document(path: str | Path) -> dict[str, Any]:
    """Read and parse the document; a missing file is an empty state."""
    p = Path(path)
    if not p.exists():
        return {}
    return parse_document(p.read_text(encoding="utf-8"))
