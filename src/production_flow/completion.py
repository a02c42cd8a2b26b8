from __future__ import annotations

from pydantic import BaseModel

from .models.job import JobKind
from .models.snapshot import PersistedCompletionSnapshot

TOTAL_ITEMS = 7


class CompletionStats(BaseModel):
    characters_built: int
    total_characters: int
    portraits_generated: int
    videos_generated: int
    has_poster: bool
    has_library_poster: bool
    has_portrait_grid: bool
    has_trailer: bool


class ShowCompletion(BaseModel):
    is_fully_complete: bool
    completion_percentage: int
    completed_items: list[str]
    missing_items: list[str]
    stats: CompletionStats


def _per_character(done: int, total: int, noun: str, verb: str, completed: list[str], missing: list[str]) -> bool:
    if total > 0 and done >= total:
        completed.append(f"All {total} {noun} {verb}")
        return True
    if done > 0:
        completed.append(f"{done}/{total} {noun} {verb}")
        missing.append(f"{total - done} {noun} still needed")
    elif total > 0:
        missing.append(f"{total} {noun} still needed")
    return False


def calculate_show_completion(snapshot: PersistedCompletionSnapshot) -> ShowCompletion:
    """Summarize which deliverables of a show exist.

    Seven items count towards the percentage: dossiers, portraits, hero
    poster, library poster, portrait grid, trailer, and at least one character
    video. Videos are optional for ``is_fully_complete``.
    """
    total = snapshot.seed_count
    built = len(snapshot.completed_characters(JobKind.character_dossier))
    portraits = len(snapshot.completed_characters(JobKind.portrait))
    videos = sum(len(urls) for urls in snapshot.character_videos.values())

    completed: list[str] = []
    missing: list[str] = []
    score = 0

    score += _per_character(built, total, "characters", "built", completed, missing)
    score += _per_character(portraits, total, "portraits", "generated", completed, missing)

    if videos > 0:
        completed.append(f"{videos} character videos")
        score += 1

    singles = (
        ("Hero poster", snapshot.has_artifact(JobKind.poster)),
        ("Library poster", snapshot.has_artifact(JobKind.library_poster)),
        ("Portrait grid", snapshot.has_artifact(JobKind.portrait_grid)),
        ("Trailer", snapshot.has_artifact(JobKind.trailer)),
    )
    for label, present in singles:
        if present:
            completed.append(label)
            score += 1
        else:
            missing.append(label)

    return ShowCompletion(
        is_fully_complete=not missing and total > 0,
        completion_percentage=round(score / TOTAL_ITEMS * 100) if total > 0 else 0,
        completed_items=completed,
        missing_items=missing,
        stats=CompletionStats(
            characters_built=built,
            total_characters=total,
            portraits_generated=portraits,
            videos_generated=videos,
            has_poster=singles[0][1],
            has_library_poster=singles[1][1],
            has_portrait_grid=singles[2][1],
            has_trailer=singles[3][1],
        ),
    )


__all__ = ["CompletionStats", "ShowCompletion", "calculate_show_completion"]
