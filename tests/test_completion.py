from production_flow.completion import calculate_show_completion
from production_flow.models.snapshot import CharacterSeed, PersistedCompletionSnapshot


def full_snapshot(**overrides) -> PersistedCompletionSnapshot:
    data = dict(
        show_id="s1",
        character_seeds=[CharacterSeed(id="c1", name="Ada"), CharacterSeed(id="c2", name="Grace")],
        character_docs={"c1": {"bio": "a"}, "c2": {"bio": "b"}},
        character_portraits={"c1": "https://cdn/c1.png", "c2": "https://cdn/c2.png"},
        character_videos={"c1": ["https://cdn/c1.mp4"]},
        poster_url="https://cdn/poster.png",
        library_poster_url="https://cdn/library.webp",
        portrait_grid_url="https://cdn/grid.png",
        trailer_url="https://cdn/trailer.mp4",
    )
    data.update(overrides)
    return PersistedCompletionSnapshot(**data)


def test_fully_complete_show():
    completion = calculate_show_completion(full_snapshot())

    assert completion.is_fully_complete
    assert completion.completion_percentage == 100
    assert completion.missing_items == []
    assert completion.stats.videos_generated == 1


def test_videos_are_optional_for_full_completion():
    completion = calculate_show_completion(full_snapshot(character_videos={}))

    assert completion.is_fully_complete
    assert completion.completion_percentage == 86


def test_partial_show_lists_missing_items():
    completion = calculate_show_completion(
        full_snapshot(character_portraits={"c1": "https://cdn/c1.png", "c2": None}, trailer_url="  ")
    )

    assert not completion.is_fully_complete
    assert "1 portraits still needed" in completion.missing_items
    assert "Trailer" in completion.missing_items
    assert "1/2 portraits generated" in completion.completed_items
    assert completion.completion_percentage == 71


def test_show_without_characters_is_zero_percent():
    completion = calculate_show_completion(PersistedCompletionSnapshot(show_id="s1", poster_url="https://cdn/p.png"))

    assert completion.completion_percentage == 0
    assert not completion.is_fully_complete
    assert completion.stats.has_poster
