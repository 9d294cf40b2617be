from __future__ import annotations

from .desired import desired_service, selector
from .errors import ObjectStoreError
from .events import log_event
from .models import CatalogSource, Service, Workload
from .store import ObjectLister


def current_service(lister: ObjectLister, source: CatalogSource) -> Service | None:
    """Cached service for the source; read errors count as absence."""
    name = desired_service(source).metadata.name
    try:
        return lister.get_service(source.namespace, name)
    except ObjectStoreError as e:
        log_event("WARN", f"couldn't find service {name} in cache: {e}", source=source.name, namespace=source.namespace)
        return None


def _list_workloads(lister: ObjectLister, source: CatalogSource) -> list[Workload]:
    try:
        return lister.list_workloads(source.namespace, selector(source))
    except ObjectStoreError as e:
        log_event("WARN", f"couldn't find workloads in cache: {e}", source=source.name, namespace=source.namespace)
        return []


def current_workloads(lister: ObjectLister, source: CatalogSource) -> list[Workload]:
    """Cached workloads matching the source selector; read errors count as absence."""
    workloads = _list_workloads(lister, source)
    if len(workloads) > 1:
        log_event(
            "WARN",
            f"multiple workloads found for selector {selector(source)}",
            source=source.name,
            namespace=source.namespace,
        )
    return workloads


def current_workloads_with_image(lister: ObjectLister, source: CatalogSource) -> list[Workload]:
    return [w for w in _list_workloads(lister, source) if w.image == source.spec.image]


def is_healthy(lister: ObjectLister, source: CatalogSource) -> bool:
    """Registry resources exist in the cache and a workload runs the declared image.

    Existence only; the registry protocol itself is not probed.
    """
    if not current_workloads_with_image(lister, source):
        return False
    return current_service(lister, source) is not None
