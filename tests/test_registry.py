import pytest

from production_flow.errors import ValidationError
from production_flow.models.job import GenerationParameters, JobKind
from production_flow.providers.registry import (
    ADAPTERS,
    DEFAULT_ADAPTERS,
    ProviderAdapter,
    adapter_chain,
    ensure_parameter_valid,
    register_adapter,
)


def test_ensure_parameter_valid_prefers_requested_then_default_then_first():
    assert ensure_parameter_valid(12, (4, 8, 12), 8) == 12
    assert ensure_parameter_valid(10, (4, 8, 12), 8) == 8
    assert ensure_parameter_valid(10, (4, 8, 12), 6) == 4
    assert ensure_parameter_valid(None, (4, 8, 12)) == 4
    assert ensure_parameter_valid("16:9", ()) is None


def test_every_kind_has_a_default_adapter():
    for kind in JobKind:
        assert adapter_chain(kind), f"{kind.value} has no adapter"
    assert set(DEFAULT_ADAPTERS) == set(JobKind)


def test_sora_payload_coerces_unsupported_parameters():
    params = GenerationParameters(
        prompt="a detective in the rain",
        duration=10,
        aspect_ratio="16:9",
        reference_urls=["https://cdn.example/portrait.webp"],
    )
    request = ADAPTERS["openai/sora-2"].build_request(params)

    assert request.model_path == "openai/sora-2"
    assert request.payload == {
        "prompt": "a detective in the rain",
        "seconds": 8,
        "aspect_ratio": "portrait",
        "input_reference": "https://cdn.example/portrait.webp",
    }


def test_veo_payload_uses_fixed_constraints():
    params = GenerationParameters(prompt="trailer", duration=4, reference_urls=["a", "b"])
    payload = ADAPTERS["google/veo-3.1"].build_payload(params)

    assert payload["duration"] == 8
    assert payload["aspect_ratio"] == "16:9"
    assert payload["resolution"] == "1080p"
    assert payload["reference_images"] == ["a", "b"]
    assert payload["generate_audio"] is True


def test_unreferenced_trailer_adapter_drops_reference():
    adapter = ADAPTERS["openai/sora-2-unreferenced"]
    request = adapter.build_request(GenerationParameters(prompt="trailer", reference_urls=["ref"]))

    assert request.model_path == "openai/sora-2"
    assert "input_reference" not in request.payload
    assert request.payload["seconds"] == 12
    assert request.payload["aspect_ratio"] == "landscape"


def test_trailer_auto_model_expands_to_fallback_chain():
    chain = adapter_chain(JobKind.trailer)
    assert [adapter.id for adapter in chain] == [
        "openai/sora-2",
        "google/veo-3.1",
        "openai/sora-2-unreferenced",
    ]


def test_explicit_model_pins_single_adapter():
    chain = adapter_chain(JobKind.video, "openai/sora-2-pro")
    assert [adapter.id for adapter in chain] == ["openai/sora-2-pro"]


def test_unknown_or_incompatible_model_is_rejected():
    with pytest.raises(ValidationError):
        adapter_chain(JobKind.portrait, "acme/does-not-exist")
    with pytest.raises(ValidationError):
        adapter_chain(JobKind.portrait, "openai/sora-2")
    with pytest.raises(ValidationError):
        adapter_chain(JobKind.poster, "auto")


def test_registering_an_adapter_needs_no_orchestration_change():
    class StillAdapter(ProviderAdapter):
        id = "acme/still-1"
        kinds = frozenset({JobKind.poster})
        supported_aspect_ratios = ("2:3",)

        def build_payload(self, params):
            return {"text": params.prompt, "ratio": self.aspect_ratio(params)}

    register_adapter(StillAdapter())
    try:
        chain = adapter_chain(JobKind.poster, "acme/still-1")
        request = chain[0].build_request(GenerationParameters(prompt="poster", aspect_ratio="1:1"))
        assert request.payload == {"text": "poster", "ratio": "2:3"}
    finally:
        ADAPTERS.pop("acme/still-1", None)
