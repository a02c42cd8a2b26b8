from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .job import JobKind


class CharacterSeed(BaseModel):
    id: str
    name: str
    summary: str | None = None
    role: str | None = None


def _has_url(value: str | None) -> bool:
    return isinstance(value, str) and bool(value.strip())


class PersistedCompletionSnapshot(BaseModel):
    """Durable facts about which artifacts exist for one show."""

    show_id: str
    blueprint: Mapping[str, Any] | None = None
    character_seeds: list[CharacterSeed] = Field(default_factory=list)
    character_docs: dict[str, Mapping[str, Any]] = Field(default_factory=dict)
    character_portraits: dict[str, str | None] = Field(default_factory=dict)
    character_videos: dict[str, list[str]] = Field(default_factory=dict)
    poster_url: str | None = None
    library_poster_url: str | None = None
    portrait_grid_url: str | None = None
    trailer_url: str | None = None
    updated_at: datetime | None = None

    @property
    def seed_count(self) -> int:
        return len(self.character_seeds)

    @property
    def seed_ids(self) -> list[str]:
        return [seed.id for seed in self.character_seeds]

    def has_artifact(self, kind: JobKind) -> bool:
        if kind is JobKind.show_blueprint:
            return bool(self.blueprint)
        if kind is JobKind.character_seed_set:
            return self.seed_count > 0
        if kind is JobKind.poster:
            return _has_url(self.poster_url)
        if kind is JobKind.library_poster:
            return _has_url(self.library_poster_url)
        if kind is JobKind.portrait_grid:
            return _has_url(self.portrait_grid_url)
        if kind is JobKind.trailer:
            return _has_url(self.trailer_url)
        total = self.seed_count
        return total > 0 and len(self.completed_characters(kind)) == total

    def completed_characters(self, kind: JobKind) -> set[str]:
        """Characters whose per-character artifact of ``kind`` is recorded."""
        if kind is JobKind.character_dossier:
            done = {cid for cid, doc in self.character_docs.items() if doc}
        elif kind is JobKind.portrait:
            done = {cid for cid, url in self.character_portraits.items() if _has_url(url)}
        elif kind is JobKind.video:
            done = {cid for cid, urls in self.character_videos.items() if urls}
        else:
            return set()
        if self.character_seeds:
            done &= set(self.seed_ids)
        return done

    def portrait_entries(self) -> list[tuple[CharacterSeed, str]]:
        """Seeds with a persisted portrait, in seed order."""
        entries = []
        for seed in self.character_seeds:
            url = self.character_portraits.get(seed.id)
            if _has_url(url):
                entries.append((seed, url))
        return entries


__all__ = ["CharacterSeed", "PersistedCompletionSnapshot"]
