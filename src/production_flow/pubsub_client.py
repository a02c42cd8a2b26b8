from __future__ import annotations

import json
import logging
from typing import Any

from google.cloud import pubsub_v1

from .models.job import GenerationJob

logger = logging.getLogger(__name__)


class PubSubClient:
    """Publishes generation lifecycle events to Pub/Sub."""

    def __init__(
        self,
        project_id: str,
        *,
        completed_topic: str = "generation-completed",
        publish_timeout: float = 30.0,
    ) -> None:
        self.project_id = project_id
        self.completed_topic = completed_topic
        self.publish_timeout = publish_timeout
        self.publisher = pubsub_v1.PublisherClient()

    def publish(
        self,
        topic_id: str,
        message: dict[str, Any],
        *,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Publish a JSON payload and block until the broker acknowledges it.

        Returns the Pub/Sub message id.
        """
        topic_path = self.publisher.topic_path(self.project_id, topic_id)
        data = json.dumps(message, default=str).encode("utf-8")

        future = self.publisher.publish(topic_path, data, **(attributes or {}))
        message_id = future.result(timeout=self.publish_timeout)

        logger.info(
            "Published message to Pub/Sub",
            extra={"topic_id": topic_id, "message_id": message_id, "job_id": (attributes or {}).get("job_id")},
        )

        return message_id

    def publish_generation_completed(self, job: GenerationJob) -> str:
        """Announce that a job's artifact has been durably recorded."""
        message = completion_message(job)
        attributes = {
            "job_id": job.id,
            "kind": job.kind.value,
            "show_id": job.target.show_id,
            "event_type": "generation_completed",
        }
        return self.publish(self.completed_topic, message, attributes=attributes)


def completion_message(job: GenerationJob) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "kind": job.kind.value,
        "show_id": job.target.show_id,
        "character_id": job.target.character_id,
        "section_label": job.target.section_label,
        "attempts": job.attempts,
        "result_locator": job.result_locator,
    }


__all__ = ["PubSubClient", "completion_message"]
