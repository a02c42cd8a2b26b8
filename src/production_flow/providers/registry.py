"""Provider adapters: declared constraints plus a request-shape builder per back end.

Orchestration only ever talks to :class:`ProviderAdapter`; adding a provider
means writing one subclass and registering it in :data:`ADAPTERS`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence, TypeVar

from pydantic import BaseModel, Field

from ..errors import ValidationError
from ..models.job import GenerationParameters, JobKind

T = TypeVar("T")

AUTO_MODEL = "auto"


class ProviderRequest(BaseModel):
    """What a back end needs to create one provider job."""

    adapter_id: str
    backend: str
    model_path: str
    payload: Mapping[str, Any] = Field(default_factory=dict)


def ensure_parameter_valid(requested: T | None, supported: Sequence[T], default: T | None = None) -> T | None:
    """Coerce ``requested`` onto ``supported`` instead of rejecting it.

    Falls back to ``default`` when it is itself supported, then to the first
    supported value. Returns None when the adapter declares no values.
    """
    if not supported:
        return None
    if requested is not None and requested in supported:
        return requested
    if default is not None and default in supported:
        return default
    return supported[0]


class ProviderAdapter(ABC):
    id: str
    backend: str = "replicate"
    model_path: str = ""
    kinds: frozenset[JobKind] = frozenset()
    supported_durations: tuple[int, ...] = ()
    supported_aspect_ratios: tuple[str, ...] = ()
    supported_resolutions: tuple[str, ...] = ()
    default_duration: int | None = None
    default_aspect_ratio: str | None = None
    requires_reference: bool = False

    def supports(self, kind: JobKind) -> bool:
        return kind in self.kinds

    def build_request(self, params: GenerationParameters) -> ProviderRequest:
        return ProviderRequest(
            adapter_id=self.id,
            backend=self.backend,
            model_path=self.model_path or self.id,
            payload=self.build_payload(params),
        )

    def duration(self, params: GenerationParameters) -> int | None:
        return ensure_parameter_valid(params.duration, self.supported_durations, self.default_duration)

    def aspect_ratio(self, params: GenerationParameters) -> str | None:
        return ensure_parameter_valid(params.aspect_ratio, self.supported_aspect_ratios, self.default_aspect_ratio)

    def resolution(self, params: GenerationParameters) -> str | None:
        return ensure_parameter_valid(params.resolution, self.supported_resolutions)

    @abstractmethod
    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        ...


def _first_reference(params: GenerationParameters) -> str | None:
    return params.reference_urls[0] if params.reference_urls else None


class GptImageAdapter(ProviderAdapter):
    id = "openai/gpt-image-1"
    kinds = frozenset({JobKind.portrait, JobKind.poster})
    supported_aspect_ratios = ("1:1", "3:2", "2:3")

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": params.prompt,
            "quality": "high",
            "aspect_ratio": self.aspect_ratio(params),
            "background": "auto",
            "number_of_images": 1,
            "moderation": "low",
        }
        if params.reference_urls:
            payload["input_images"] = list(params.reference_urls)
        return payload


class FluxProAdapter(ProviderAdapter):
    id = "black-forest-labs/flux-1.1-pro"
    kinds = frozenset({JobKind.library_poster, JobKind.poster})
    supported_aspect_ratios = ("9:16", "2:3", "1:1")

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": params.prompt,
            "prompt_strength": 0.85,
            "aspect_ratio": self.aspect_ratio(params),
            "output_format": "webp",
            "output_quality": 95,
            "safety_tolerance": 2,
        }
        reference = _first_reference(params)
        if reference:
            payload["image"] = reference
        return payload


class Sora2Adapter(ProviderAdapter):
    id = "openai/sora-2"
    kinds = frozenset({JobKind.video, JobKind.trailer})
    supported_durations = (4, 8, 12)
    supported_aspect_ratios = ("portrait", "landscape")
    default_duration = 8
    requires_reference = True

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        return {
            "prompt": params.prompt,
            "seconds": self.duration(params),
            "aspect_ratio": self.aspect_ratio(params),
            "input_reference": _first_reference(params),
        }


class Sora2ProAdapter(Sora2Adapter):
    id = "openai/sora-2-pro"
    supported_resolutions = ("standard", "high")

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        payload = super().build_payload(params)
        payload["resolution"] = self.resolution(params)
        return payload


class Sora2UnreferencedAdapter(Sora2Adapter):
    """Sora 2 without a reference image; last resort when references get flagged."""

    id = "openai/sora-2-unreferenced"
    model_path = "openai/sora-2"
    kinds = frozenset({JobKind.trailer})
    default_aspect_ratio = "landscape"
    default_duration = 12
    requires_reference = False

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        return {
            "prompt": params.prompt,
            "seconds": self.duration(params),
            "aspect_ratio": self.aspect_ratio(params),
        }


class Veo31Adapter(ProviderAdapter):
    id = "google/veo-3.1"
    kinds = frozenset({JobKind.trailer, JobKind.video})
    supported_durations = (8,)
    supported_aspect_ratios = ("16:9",)
    supported_resolutions = ("1080p",)
    requires_reference = True

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        return {
            "prompt": params.prompt,
            "reference_images": list(params.reference_urls),
            "aspect_ratio": self.aspect_ratio(params),
            "duration": self.duration(params),
            "resolution": self.resolution(params),
            "generate_audio": True,
        }


class VertexDocumentAdapter(ProviderAdapter):
    """JSON documents generated in-line by Vertex AI Gemini."""

    id = "vertex/gemini"
    backend = "vertex"
    kinds = frozenset({JobKind.show_blueprint, JobKind.character_seed_set, JobKind.character_dossier})

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        return {
            "prompt": params.prompt,
            "temperature": float(params.extra.get("temperature", 0.7)),
            "max_output_tokens": int(params.extra.get("max_output_tokens", 8192)),
        }


class GridCompositorAdapter(ProviderAdapter):
    """Assembles the portrait grid locally from persisted portraits."""

    id = "local/grid-compositor"
    backend = "compositor"
    kinds = frozenset({JobKind.portrait_grid})

    def build_payload(self, params: GenerationParameters) -> dict[str, Any]:
        return {"labels": bool(params.extra.get("labels", True))}


ADAPTERS: dict[str, ProviderAdapter] = {
    adapter.id: adapter
    for adapter in (
        GptImageAdapter(),
        FluxProAdapter(),
        Sora2Adapter(),
        Sora2ProAdapter(),
        Sora2UnreferencedAdapter(),
        Veo31Adapter(),
        VertexDocumentAdapter(),
        GridCompositorAdapter(),
    )
}

DEFAULT_ADAPTERS: dict[JobKind, str] = {
    JobKind.show_blueprint: VertexDocumentAdapter.id,
    JobKind.character_seed_set: VertexDocumentAdapter.id,
    JobKind.character_dossier: VertexDocumentAdapter.id,
    JobKind.portrait: GptImageAdapter.id,
    JobKind.video: Sora2Adapter.id,
    JobKind.poster: GptImageAdapter.id,
    JobKind.library_poster: FluxProAdapter.id,
    JobKind.portrait_grid: GridCompositorAdapter.id,
    JobKind.trailer: AUTO_MODEL,
}

# Adapters walked across outer-retry attempts when the caller asks for "auto".
FALLBACK_CHAINS: dict[JobKind, tuple[str, ...]] = {
    JobKind.trailer: (Sora2Adapter.id, Veo31Adapter.id, Sora2UnreferencedAdapter.id),
}


def register_adapter(adapter: ProviderAdapter) -> None:
    ADAPTERS[adapter.id] = adapter


def adapter_chain(kind: JobKind, model_id: str | None = None) -> tuple[ProviderAdapter, ...]:
    """Adapters to use for ``kind``, in attempt order.

    An explicit ``model_id`` pins a single adapter; otherwise the kind's
    default is used, expanding ``auto`` into its fallback chain.
    """
    selected = model_id or DEFAULT_ADAPTERS[kind]
    if selected == AUTO_MODEL:
        ids = FALLBACK_CHAINS.get(kind) or ()
        if not ids:
            raise ValidationError(f"No automatic model selection for {kind.value}.")
    else:
        ids = (selected,)

    chain = []
    for adapter_id in ids:
        adapter = ADAPTERS.get(adapter_id)
        if adapter is None:
            raise ValidationError(f"Unknown model '{adapter_id}'.")
        if not adapter.supports(kind):
            raise ValidationError(f"Model '{adapter_id}' cannot produce {kind.value}.")
        chain.append(adapter)
    return tuple(chain)


__all__ = [
    "ADAPTERS",
    "AUTO_MODEL",
    "DEFAULT_ADAPTERS",
    "FALLBACK_CHAINS",
    "ProviderAdapter",
    "ProviderRequest",
    "adapter_chain",
    "ensure_parameter_valid",
    "register_adapter",
]
