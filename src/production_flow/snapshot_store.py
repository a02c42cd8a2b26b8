"""Persisted Completion Snapshot: reader, writer and the per-kind merge rules.

Writes are read-merge-write per show, so two writers touching different
characters of the same show never clobber each other's map entries.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Protocol

from .errors import ResultFormatError, ValidationError
from .models.job import FAN_OUT_KINDS, JobKind, TargetEntity
from .models.snapshot import CharacterSeed, PersistedCompletionSnapshot

logger = logging.getLogger(__name__)

_URL_FIELDS = {
    JobKind.poster: "poster_url",
    JobKind.library_poster: "library_poster_url",
    JobKind.portrait_grid: "portrait_grid_url",
    JobKind.trailer: "trailer_url",
}


class SnapshotStore(Protocol):
    def read(self, show_id: str) -> PersistedCompletionSnapshot:
        ...

    def record(self, target: TargetEntity, kind: JobKind, locator: str) -> PersistedCompletionSnapshot:
        ...

    def save(self, snapshot: PersistedCompletionSnapshot) -> None:
        ...


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _parse_document(locator: str, kind: JobKind) -> Any:
    try:
        return json.loads(locator)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ResultFormatError(f"{kind.value} output is not a JSON document") from exc


def parse_character_seeds(document: Any) -> list[CharacterSeed]:
    """Accept a bare list of characters or an object with a ``characters`` list."""
    if isinstance(document, dict):
        document = document.get("characters")
    if not isinstance(document, list):
        raise ResultFormatError("Character seed output does not contain a character list")

    seeds = []
    for index, entry in enumerate(document):
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or f"Character {index + 1}")
        seed_id = str(entry.get("id") or _slugify(name) or f"character-{index + 1}")
        seeds.append(
            CharacterSeed(id=seed_id, name=name, summary=entry.get("summary"), role=entry.get("role"))
        )
    if not seeds:
        raise ResultFormatError("Character seed output contains no characters")
    return seeds


def apply_artifact(
    snapshot: PersistedCompletionSnapshot,
    target: TargetEntity,
    kind: JobKind,
    locator: str,
) -> PersistedCompletionSnapshot:
    """Return a copy of ``snapshot`` with one artifact merged in."""
    if kind in FAN_OUT_KINDS and not target.character_id:
        raise ValidationError(f"{kind.value} artifacts need a character id")

    changes: dict[str, Any] = {"updated_at": datetime.utcnow()}
    if kind is JobKind.show_blueprint:
        document = _parse_document(locator, kind)
        if not isinstance(document, dict):
            raise ResultFormatError("Show blueprint output is not a JSON object")
        changes["blueprint"] = document
    elif kind is JobKind.character_seed_set:
        changes["character_seeds"] = parse_character_seeds(_parse_document(locator, kind))
    elif kind is JobKind.character_dossier:
        document = _parse_document(locator, kind)
        if not isinstance(document, dict):
            raise ResultFormatError("Character dossier output is not a JSON object")
        changes["character_docs"] = {**snapshot.character_docs, target.character_id: document}
    elif kind is JobKind.portrait:
        changes["character_portraits"] = {**snapshot.character_portraits, target.character_id: locator}
    elif kind is JobKind.video:
        existing = list(snapshot.character_videos.get(target.character_id, []))
        if locator not in existing:
            existing.append(locator)
        changes["character_videos"] = {**snapshot.character_videos, target.character_id: existing}
    else:
        changes[_URL_FIELDS[kind]] = locator
    return snapshot.model_copy(update=changes)


class InMemorySnapshotStore:
    """Process-local snapshot store with one lock per show."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, PersistedCompletionSnapshot] = {}
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, show_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[show_id]

    def read(self, show_id: str) -> PersistedCompletionSnapshot:
        with self._lock_for(show_id):
            snapshot = self._snapshots.get(show_id)
        return snapshot.model_copy(deep=True) if snapshot else PersistedCompletionSnapshot(show_id=show_id)

    def record(self, target: TargetEntity, kind: JobKind, locator: str) -> PersistedCompletionSnapshot:
        with self._lock_for(target.show_id):
            current = self._snapshots.get(target.show_id) or PersistedCompletionSnapshot(show_id=target.show_id)
            updated = apply_artifact(current, target, kind, locator)
            self._snapshots[target.show_id] = updated

        logger.info(
            "Recorded artifact",
            extra={"show_id": target.show_id, "kind": kind.value, "character_id": target.character_id},
        )
        return updated

    def save(self, snapshot: PersistedCompletionSnapshot) -> None:
        with self._lock_for(snapshot.show_id):
            self._snapshots[snapshot.show_id] = snapshot.model_copy(deep=True)


__all__ = [
    "InMemorySnapshotStore",
    "SnapshotStore",
    "apply_artifact",
    "parse_character_seeds",
]
