from __future__ import annotations

import json
import logging
from typing import Any

import vertexai
from vertexai.generative_models import GenerationConfig, GenerativeModel

from ..errors import ProviderError, ResultFormatError

logger = logging.getLogger(__name__)

DOCUMENT_INSTRUCTION = (
    "You write production documents for an animated show. "
    "Answer with a single JSON value and nothing else."
)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    first_newline = text.find("\n")
    body = text[first_newline + 1 :] if first_newline != -1 else text[3:]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


class VertexAIClient:
    """Gemini on Vertex AI, used for show blueprints, character seeds and dossiers."""

    def __init__(
        self,
        *,
        project_id: str,
        location: str = "us-central1",
        model_name: str = "gemini-1.5-pro",
    ) -> None:
        self.project_id = project_id
        self.location = location
        self.model_name = model_name

        vertexai.init(project=project_id, location=location)
        self.model = GenerativeModel(model_name, system_instruction=DOCUMENT_INSTRUCTION)

    def generate_json(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
    ) -> Any:
        """Generate one JSON document and return it parsed.

        Args:
            prompt: Document prompt, already filled in by the caller
            temperature: Sampling temperature (0.0 - 1.0)
            max_output_tokens: Maximum output tokens

        Returns:
            The decoded JSON value

        Raises:
            ProviderError: The model call failed or returned no text
            ResultFormatError: The text was not valid JSON
        """
        config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
        )
        try:
            response = self.model.generate_content(prompt, generation_config=config)
            text = response.text
        except Exception as exc:
            raise ProviderError(f"Vertex AI generation failed: {exc}") from exc

        logger.info(
            "Generated document with Vertex AI",
            extra={
                "model": self.model_name,
                "temperature": temperature,
                "prompt_length": len(prompt),
                "output_length": len(text),
            },
        )

        try:
            return json.loads(strip_code_fence(text))
        except json.JSONDecodeError as exc:
            logger.error(
                "Vertex AI returned malformed JSON",
                extra={"model": self.model_name, "response": text[:500]},
            )
            raise ResultFormatError(f"Invalid JSON document: {exc}") from exc


__all__ = ["VertexAIClient", "strip_code_fence"]
