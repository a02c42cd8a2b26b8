from __future__ import annotations

import logging
from typing import Any

from google.cloud import firestore

from .errors import GenerationError, PersistenceError
from .models.job import JobKind, TargetEntity
from .models.snapshot import PersistedCompletionSnapshot
from .snapshot_store import apply_artifact

logger = logging.getLogger(__name__)


class FirestoreSnapshotStore:
    """Firestore-backed snapshot store for production use.

    One document per show; every write runs inside a transaction so the
    read-merge-write of per-character maps is atomic per show.
    """

    COLLECTION_NAME = "shows"

    def __init__(self, project_id: str | None = None, *, client: firestore.Client | None = None) -> None:
        self._db = client or firestore.Client(project=project_id)
        self._collection = self._db.collection(self.COLLECTION_NAME)

    def read(self, show_id: str) -> PersistedCompletionSnapshot:
        doc = self._collection.document(show_id).get()
        if not doc.exists:
            return PersistedCompletionSnapshot(show_id=show_id)
        return self._from_firestore_dict(show_id, doc.to_dict())

    def record(self, target: TargetEntity, kind: JobKind, locator: str) -> PersistedCompletionSnapshot:
        doc_ref = self._collection.document(target.show_id)

        @firestore.transactional
        def merge(transaction: firestore.Transaction) -> PersistedCompletionSnapshot:
            doc = doc_ref.get(transaction=transaction)
            current = (
                self._from_firestore_dict(target.show_id, doc.to_dict())
                if doc.exists
                else PersistedCompletionSnapshot(show_id=target.show_id)
            )
            updated = apply_artifact(current, target, kind, locator)
            transaction.set(doc_ref, self._to_firestore_dict(updated))
            return updated

        try:
            updated = merge(self._db.transaction())
        except GenerationError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to record {kind.value} for show {target.show_id}: {exc}") from exc

        logger.info(
            "Recorded artifact",
            extra={"show_id": target.show_id, "kind": kind.value, "character_id": target.character_id},
        )
        return updated

    def save(self, snapshot: PersistedCompletionSnapshot) -> None:
        try:
            self._collection.document(snapshot.show_id).set(self._to_firestore_dict(snapshot))
        except Exception as exc:
            raise PersistenceError(f"Failed to save snapshot for show {snapshot.show_id}: {exc}") from exc

    def _to_firestore_dict(self, snapshot: PersistedCompletionSnapshot) -> dict[str, Any]:
        data = snapshot.model_dump(mode="json", exclude={"show_id", "updated_at"})
        data["updated_at"] = snapshot.updated_at
        return data

    def _from_firestore_dict(self, show_id: str, data: dict[str, Any]) -> PersistedCompletionSnapshot:
        return PersistedCompletionSnapshot.model_validate({**data, "show_id": show_id})


__all__ = ["FirestoreSnapshotStore"]
