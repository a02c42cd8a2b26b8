from __future__ import annotations

import logging
import os

from google.cloud import secretmanager
from pydantic import BaseModel

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Runtime configuration resolved from the environment."""

    environment: str = "dev"
    project_id: str | None = None
    replicate_api_token: str | None = None
    replicate_base_url: str = "https://api.replicate.com/v1"
    vertex_location: str = "us-central1"
    vertex_model: str = "gemini-1.5-pro"
    poll_interval_seconds: float = 2.0
    max_polls: int = 150
    retry_max_attempts: int = 3
    retry_initial_delay: float = 5.0
    artifact_bucket: str | None = None
    pubsub_topic_generation_completed: str = "generation-completed"

    @property
    def is_dev(self) -> bool:
        return self.environment == "dev"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            environment=os.getenv("ENVIRONMENT", "dev"),
            project_id=os.getenv("PROJECT_ID"),
            replicate_api_token=os.getenv("REPLICATE_API_TOKEN"),
            replicate_base_url=os.getenv("REPLICATE_BASE_URL", "https://api.replicate.com/v1"),
            vertex_location=os.getenv("VERTEX_LOCATION", "us-central1"),
            vertex_model=os.getenv("VERTEX_MODEL", "gemini-1.5-pro"),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "2.0")),
            max_polls=int(os.getenv("MAX_POLLS", "150")),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            retry_initial_delay=float(os.getenv("RETRY_INITIAL_DELAY", "5.0")),
            artifact_bucket=os.getenv("ARTIFACT_BUCKET"),
            pubsub_topic_generation_completed=os.getenv(
                "PUBSUB_TOPIC_GENERATION_COMPLETED", "generation-completed"
            ),
        )

    def require_replicate_token(self) -> str:
        """Return the Replicate token, falling back to Secret Manager outside dev."""
        if self.replicate_api_token:
            return self.replicate_api_token
        if not self.is_dev and self.project_id:
            token = _get_secret(self.project_id, "replicate-api-token")
            if token:
                self.replicate_api_token = token
                return token
        raise ConfigurationError("Missing REPLICATE_API_TOKEN environment variable.")

    def require_project_id(self) -> str:
        if not self.project_id:
            raise ConfigurationError("Missing PROJECT_ID environment variable.")
        return self.project_id


def _get_secret(project_id: str, secret_id: str) -> str | None:
    """Fetch the latest version of a secret, or None when it is unavailable."""
    try:
        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project_id}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(name=name)
        return response.payload.data.decode("UTF-8")
    except Exception as exc:
        logger.warning(
            f"Failed to fetch secret {secret_id}: {exc}",
            exc_info=True,
        )
        return None


__all__ = ["Settings"]
