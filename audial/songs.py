"""Markdown file format for saved compositions.

A song file holds a ``# title`` line, a ``created:`` timestamp line, an
optional ``prompt:`` line and one fenced ``strudel`` block with the code.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .errors import MissingSongCodeError

_LOGGER = logging.getLogger("audial.songs")

SONG_EXTENSION = ".md"
_HEADER_SCAN_LINES = 8
_SLUG_MAX = 60
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_SONG_CODE_BLOCK = re.compile(r"```(?:strudel)?\s*([\s\S]*?)```", re.IGNORECASE)
_CREATED_PREFIX = re.compile(r"^created:\s*", re.IGNORECASE)
_PROMPT_PREFIX = re.compile(r"^prompt:\s*", re.IGNORECASE)


class SongRecord(BaseModel):
    name: str
    created_at: str
    prompt: str | None = None
    code: str
    filename: str | None = None

    model_config = ConfigDict(frozen=True)


def slugify(value: str) -> str:
    return _NON_SLUG.sub("-", value.lower()).strip("-")[:_SLUG_MAX]


def normalize_prompt(prompt: str | None) -> str | None:
    if not prompt:
        return None
    cleaned = " ".join(prompt.split())
    return cleaned or None


def fallback_song_name(now: datetime) -> str:
    return f"song-{now.strftime('%Y%m%d-%H%M%S')}"


def song_filename(name: str, existing: set[str] | None = None, fallback: str = "song") -> str:
    base = slugify(name) or fallback
    taken = existing or set()
    attempt = 0
    while True:
        suffix = "" if attempt == 0 else f"-{attempt + 1}"
        filename = f"{base}{suffix}{SONG_EXTENSION}"
        if filename not in taken:
            return filename
        attempt += 1


def build_song_content(title: str, created_at: str, prompt: str | None, code: str) -> str:
    lines = [f"# {title}", f"created: {created_at}"]
    if prompt:
        lines.append(f"prompt: {prompt}")
    lines.extend(["", "```strudel", code.strip(), "```", ""])
    return "\n".join(lines)


def parse_song_content(content: str) -> SongRecord:
    name = ""
    created_at = ""
    prompt: str | None = None
    for line in content.splitlines()[:_HEADER_SCAN_LINES]:
        if not name and line.startswith("# "):
            name = line[2:].strip()
            continue
        if not created_at and _CREATED_PREFIX.match(line):
            created_at = _CREATED_PREFIX.sub("", line).strip()
            continue
        if prompt is None and _PROMPT_PREFIX.match(line):
            prompt = _PROMPT_PREFIX.sub("", line).strip() or None

    match = _SONG_CODE_BLOCK.search(content)
    code = match.group(1).strip() if match else content.strip()
    return SongRecord(name=name, created_at=created_at, prompt=prompt, code=code)


def save_song(
    directory: Path,
    code: str,
    *,
    name: str | None = None,
    prompt: str | None = None,
    now: datetime | None = None,
) -> Path:
    """Write ``code`` to a new song file in ``directory`` and return its path."""
    if not code.strip():
        raise MissingSongCodeError("Missing song code.")
    timestamp = now or datetime.now().astimezone()
    title = (name or "").strip() or fallback_song_name(timestamp)
    directory.mkdir(parents=True, exist_ok=True)
    existing = {path.name for path in directory.glob(f"*{SONG_EXTENSION}")}
    path = directory / song_filename(title, existing, fallback_song_name(timestamp))
    content = build_song_content(title, timestamp.isoformat(), normalize_prompt(prompt), code)
    path.write_text(content, encoding="utf-8")
    return path


def _parse_timestamp(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.astimezone()


def _read_song(path: Path) -> tuple[datetime, SongRecord]:
    parsed = parse_song_content(path.read_text(encoding="utf-8"))
    created = _parse_timestamp(parsed.created_at)
    created_at = parsed.created_at
    if created is None:
        # Missing or unreadable header: fall back to the file's mtime.
        created = datetime.fromtimestamp(path.stat().st_mtime).astimezone()
        created_at = created.isoformat()
    record = parsed.model_copy(
        update={"name": parsed.name or path.stem, "created_at": created_at, "filename": path.name}
    )
    return created, record


def list_songs(directory: Path) -> list[SongRecord]:
    """Return every saved song in ``directory``, newest first."""
    if not directory.is_dir():
        _LOGGER.debug("Song directory %s does not exist.", directory)
        return []
    songs = [
        _read_song(path)
        for path in directory.iterdir()
        if path.is_file() and path.name.endswith(SONG_EXTENSION)
    ]
    songs.sort(key=lambda item: item[0], reverse=True)
    return [record for _, record in songs]
