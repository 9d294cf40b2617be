"""Desired registry server objects derived from a CatalogSource.

Ownership is deliberately permissive: owner references are neither controller
references nor block owner deletion, so deleting a CatalogSource never waits
on a synchronous cascade.
"""
from __future__ import annotations

from .models import (
    CatalogSource,
    Container,
    ContainerPort,
    ObjectMeta,
    OwnerReference,
    Service,
    ServicePort,
    ServiceSpec,
    Workload,
    WorkloadSpec,
)
from .settings import settings

REGISTRY_CONTAINER_NAME = "registry-server"
PORT_NAME = "grpc"


def canonical_labels(source: CatalogSource) -> dict[str, str]:
    return {settings.catalog_label_key: source.name}


def selector(source: CatalogSource) -> dict[str, str]:
    return dict(canonical_labels(source))


def owner_reference(source: CatalogSource) -> OwnerReference:
    return OwnerReference(name=source.name, uid=source.metadata.uid, controller=False, block_owner_deletion=False)


def desired_service(source: CatalogSource) -> Service:
    return Service(
        metadata=ObjectMeta(
            name=source.name,
            namespace=source.namespace,
            owner_references=[owner_reference(source)],
        ),
        spec=ServiceSpec(
            ports=[ServicePort(name=PORT_NAME, port=settings.grpc_port, target_port=settings.grpc_port)],
            selector=canonical_labels(source),
        ),
    )


def desired_workload(source: CatalogSource) -> Workload:
    container = Container(
        name=REGISTRY_CONTAINER_NAME,
        image=source.spec.image,
        ports=[ContainerPort(name=PORT_NAME, container_port=settings.grpc_port)],
        readiness_delay_s=settings.readiness_delay_s,
        liveness_delay_s=settings.liveness_delay_s,
        image_pull_policy="Always" if settings.always_pull else "IfNotPresent",
    )
    return Workload(
        metadata=ObjectMeta(
            generate_name=f"{source.name}-",
            namespace=source.namespace,
            labels=canonical_labels(source),
            owner_references=[owner_reference(source)],
        ),
        spec=WorkloadSpec(containers=[container]),
    )


def probe_workload(source: CatalogSource) -> Workload:
    """Throwaway copy of the desired workload used to resolve the tag's current digest.

    The canonical label is removed so the service never selects it, and the
    image is always pulled so the tag is resolved against the registry.
    """
    workload = desired_workload(source)
    workload.metadata.labels.pop(settings.catalog_label_key, None)
    workload.spec.containers[0].image_pull_policy = "Always"
    return workload
