"""Object store interfaces used by the reconciler.

Reads go through an `ObjectLister` (typically backed by a cache) and writes
through an `ObjectClient`. Implementations raise `ObjectStoreError` when a
call fails and return None / [] for objects that do not exist.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Service, Workload


class ObjectLister(ABC):
    @abstractmethod
    def get_service(self, namespace: str, name: str) -> Service | None:
        ...

    @abstractmethod
    def list_workloads(self, namespace: str, selector: dict[str, str]) -> list[Workload]:
        """Workloads whose labels contain every key/value pair of `selector`."""
        ...

    @abstractmethod
    def get_workload(self, namespace: str, name: str) -> Workload | None:
        ...


class ObjectClient(ABC):
    @abstractmethod
    def create_workload(self, namespace: str, workload: Workload) -> Workload:
        """Create a workload.

        If `workload.metadata.name` is empty, a unique name is generated from
        `generate_name`. Returns the stored object.
        """
        ...

    @abstractmethod
    def delete_workload(self, namespace: str, name: str) -> None:
        ...

    @abstractmethod
    def create_service(self, namespace: str, service: Service) -> Service:
        ...

    @abstractmethod
    def delete_service(self, namespace: str, name: str) -> None:
        ...


def matches_selector(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in selector.items())
