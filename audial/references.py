"""Optional reference dataset used to enrich generation prompts.

The dataset is a directory holding ``songs.jsonl`` (one song per line) and an
optional ``style_priors.json`` with a ``summary_bullets`` list. It is never
required: callers treat every failure here as "no reference material".
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

_LOGGER = logging.getLogger("audial.references")
REFERENCE_DATA_ENV = "AUDIAL_REFERENCE_DATA"
_SONGS_FILE = "songs.jsonl"
_STYLE_PRIORS_FILE = "style_priors.json"
_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class ReferenceSong(BaseModel):
    title: str
    author: str | None = None
    genres: tuple[str, ...] = ()
    moods: tuple[str, ...] = ()
    techniques: tuple[str, ...] = ()
    bpm: float | None = None
    code: str = ""

    model_config = ConfigDict(frozen=True, extra="ignore")

    def snippet(self, max_lines: int = 12) -> str:
        lines = [line for line in self.code.strip().split("\n") if line.strip()]
        return "\n".join(lines[:max_lines])

    def keywords(self) -> set[str]:
        text = " ".join((self.title, *self.genres, *self.moods, *self.techniques))
        return set(_TOKEN_PATTERN.findall(text.lower()))


class RetrievedReference(BaseModel):
    song: ReferenceSong
    score: int = 0
    diverse: bool = False

    model_config = ConfigDict(frozen=True)


class StylePriors(BaseModel):
    summary_bullets: tuple[str, ...] = Field(default=())

    model_config = ConfigDict(frozen=True, extra="ignore")


class ReferenceLibrary(Protocol):
    def retrieve(self, query: str, k: int = 3, diverse: int = 1) -> list[RetrievedReference]: ...

    def style_priors(self) -> StylePriors | None: ...


class JsonlReferenceLibrary:
    """Keyword-overlap retrieval over a small on-disk song collection."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._songs = self._load_songs(root / _SONGS_FILE)
        self._priors = self._load_priors(root / _STYLE_PRIORS_FILE)

    @staticmethod
    def _load_songs(path: Path) -> list[ReferenceSong]:
        songs: list[ReferenceSong] = []
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                songs.append(ReferenceSong.model_validate_json(line))
        return songs

    @staticmethod
    def _load_priors(path: Path) -> StylePriors | None:
        if not path.exists():
            return None
        return StylePriors.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def __len__(self) -> int:
        return len(self._songs)

    def style_priors(self) -> StylePriors | None:
        return self._priors

    def retrieve(self, query: str, k: int = 3, diverse: int = 1) -> list[RetrievedReference]:
        query_tokens = set(_TOKEN_PATTERN.findall(query.lower()))
        scored = sorted(
            (
                RetrievedReference(song=song, score=len(query_tokens & song.keywords()))
                for song in self._songs
            ),
            key=lambda ref: (-ref.score, ref.song.title),
        )
        top = [ref for ref in scored[:k] if ref.score > 0]
        if not top:
            return []

        chosen_genres = {genre for ref in top for genre in ref.song.genres}
        remaining = [ref for ref in scored if ref not in top]
        remaining.sort(key=lambda ref: (len(chosen_genres & set(ref.song.genres)), ref.song.title))
        exemplars = [
            ref.model_copy(update={"diverse": True}) for ref in remaining[: max(0, diverse)]
        ]
        return top + exemplars


def load_reference_library(path: str | Path | None = None) -> ReferenceLibrary | None:
    configured = path if path is not None else os.environ.get(REFERENCE_DATA_ENV)
    if not configured:
        return None
    root = Path(configured).expanduser()
    if not (root / _SONGS_FILE).exists():
        _LOGGER.debug("Reference data not found at %s; continuing without it.", root)
        return None
    return JsonlReferenceLibrary(root)
