from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from pydantic import BaseModel

from ..errors import ProviderError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})


class Prediction(BaseModel):
    """Provider-side handle for one prediction."""

    id: str
    status: str
    output: Any = None
    error: str | None = None
    model: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class ReplicateClient:
    """Minimal async client for the Replicate predictions API."""

    def __init__(
        self,
        *,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def create_prediction(self, model_path: str, payload: Mapping[str, Any]) -> Prediction:
        url = f"{self.base_url}/models/{model_path}/predictions"
        body = {"input": {key: value for key, value in payload.items() if value is not None}}
        response = await self._request("POST", url, json=body)
        prediction = Prediction.model_validate(response)
        logger.info(
            "Created prediction",
            extra={"prediction_id": prediction.id, "model": model_path, "provider_status": prediction.status},
        )
        return prediction

    async def get_prediction(self, prediction_id: str) -> Prediction:
        url = f"{self.base_url}/predictions/{prediction_id}"
        return Prediction.model_validate(await self._request("GET", url))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Replicate request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Replicate request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"Replicate returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError("Replicate returned a non-JSON body", status_code=response.status_code) from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body.get("title") or body)
    return str(body)


__all__ = ["Prediction", "ReplicateClient", "TERMINAL_STATUSES"]
