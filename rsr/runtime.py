from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from threading import Lock

from .models import CatalogSource, CatalogSourceSpec, ObjectMeta, RegisterCatalogSourceRequest


class CatalogRegistry:
    """In-memory CatalogSource store backing the API.

    Objects are copied on the way in and out so a reconcile works on its own
    copy and only `save()` publishes the status it wrote.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self.sources: dict[tuple[str, str], CatalogSource] = {}
        self._reconcile_locks: dict[tuple[str, str], Lock] = {}

    def register(self, req: RegisterCatalogSourceRequest, now: datetime) -> CatalogSource:
        spec = CatalogSourceSpec(image=req.image, poll_interval=timedelta(seconds=req.poll_interval_s))
        key = (req.namespace, req.name)
        with self.lock:
            current = self.sources.get(key)
            if current is None:
                current = CatalogSource(
                    metadata=ObjectMeta(name=req.name, namespace=req.namespace, uid=str(uuid.uuid4()), creation_timestamp=now),
                    spec=spec,
                )
            else:
                current = current.model_copy(update={"spec": spec}, deep=True)
            self.sources[key] = current
            return current.model_copy(deep=True)

    def get(self, namespace: str, name: str) -> CatalogSource | None:
        with self.lock:
            src = self.sources.get((namespace, name))
            return src.model_copy(deep=True) if src else None

    def save(self, source: CatalogSource) -> None:
        """Publish the status of a reconciled copy. The stored spec wins over the copy's."""
        key = (source.namespace, source.name)
        with self.lock:
            current = self.sources.get(key)
            if current is None:
                return
            self.sources[key] = current.model_copy(update={"status": source.status.model_copy(deep=True)}, deep=True)

    def reconcile_lock(self, namespace: str, name: str) -> Lock:
        """Lock serializing get, reconcile and save for one source."""
        with self.lock:
            return self._reconcile_locks.setdefault((namespace, name), Lock())

    def list(self) -> list[CatalogSource]:
        with self.lock:
            return [s.model_copy(deep=True) for _, s in sorted(self.sources.items())]
