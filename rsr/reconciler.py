from __future__ import annotations

from .clock import Clock, RealClock
from .desired import desired_service, desired_workload
from .errors import ObjectStoreError, ResourceCreateError, ResourceDeleteError
from .events import log_event
from .freshness import FreshnessProber
from .health import current_service, current_workloads, current_workloads_with_image, is_healthy
from .models import CatalogSource, RegistryServiceStatus
from .store import ObjectClient, ObjectLister


class RegistryReconciler:
    """Converges the registry workload and service of a CatalogSource to its declared image.

    One call per source at a time; the caller persists the status written onto
    the source and requeues on error.
    """

    def __init__(
        self,
        lister: ObjectLister,
        client: ObjectClient,
        clock: Clock | None = None,
        prober: FreshnessProber | None = None,
    ):
        self.lister = lister
        self.client = client
        self.clock = clock or RealClock()
        self.prober = prober or FreshnessProber(lister, client, self.clock)

    def ensure_registry_server(self, source: CatalogSource) -> None:
        # No status yet: recreate everything so the objects are known to match.
        overwrite = source.status.registry_service is None
        # Replace the workload if nothing serves the declared image or the tag moved.
        overwrite_workload = (
            overwrite
            or not current_workloads_with_image(self.lister, source)
            or self.prober.needs_refresh(source)
        )

        self._ensure_workload(source, overwrite_workload)
        self._ensure_service(source, overwrite)

        if overwrite_workload:
            service = desired_service(source)
            source.status.registry_service = RegistryServiceStatus(
                created_at=self.clock.now(),
                protocol="grpc",
                service_name=service.metadata.name,
                service_namespace=source.namespace,
                port=str(service.spec.ports[0].port),
            )
            log_event("INFO", f"Registry server updated to image {source.spec.image}", source=source.name, namespace=source.namespace)

    def check_registry_server(self, source: CatalogSource) -> bool:
        return is_healthy(self.lister, source)

    def _ensure_workload(self, source: CatalogSource, overwrite: bool) -> None:
        existing = current_workloads(self.lister, source)
        if existing:
            if not overwrite:
                return
            for w in existing:
                try:
                    self.client.delete_workload(source.namespace, w.metadata.name)
                except ObjectStoreError as e:
                    raise ResourceDeleteError("workload", w.metadata.name) from e
                log_event("INFO", f"Deleted workload {w.metadata.name}", source=source.name, namespace=source.namespace)

        workload = desired_workload(source)
        try:
            created = self.client.create_workload(source.namespace, workload)
        except ObjectStoreError as e:
            raise ResourceCreateError("workload", workload.metadata.generate_name) from e
        log_event("INFO", f"Created workload {created.metadata.name}", source=source.name, namespace=source.namespace)

    def _ensure_service(self, source: CatalogSource, overwrite: bool) -> None:
        service = desired_service(source)
        if current_service(self.lister, source) is not None:
            if not overwrite:
                return
            try:
                self.client.delete_service(source.namespace, service.metadata.name)
            except ObjectStoreError as e:
                raise ResourceDeleteError("service", service.metadata.name) from e

        try:
            self.client.create_service(source.namespace, service)
        except ObjectStoreError as e:
            raise ResourceCreateError("service", service.metadata.name) from e
        log_event("INFO", f"Created service {service.metadata.name}", source=source.name, namespace=source.namespace)
