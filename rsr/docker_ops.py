"""Docker-backed object store.

Workloads are containers and services are bridge networks. Both carry `rsr.*`
labels so they can be re-discovered after restarts; any other label is an
object label. Workloads whose labels match a service selector are attached to
the service network under the service name, which is how traffic reaches them.
"""
from __future__ import annotations

import json
import re
import secrets
from datetime import datetime, timezone
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound, NotFound

from .clock import utc_now
from .errors import ObjectStoreError
from .events import log_event
from .models import (
    Container,
    ContainerPort,
    ObjectMeta,
    OwnerReference,
    Service,
    ServicePort,
    ServiceSpec,
    Workload,
    WorkloadSpec,
    WorkloadStatus,
)
from .settings import settings
from .store import ObjectClient, ObjectLister, matches_selector

LABEL_PREFIX = "rsr."
KIND_LABEL = "rsr.kind"
NAMESPACE_LABEL = "rsr.namespace"
NAME_LABEL = "rsr.name"
OWNER_LABEL = "rsr.owner"
OWNER_UID_LABEL = "rsr.owner-uid"
CONTAINER_LABEL = "rsr.container"
PORT_LABEL = "rsr.port"
PULL_POLICY_LABEL = "rsr.pull-policy"
SELECTOR_LABEL = "rsr.selector"

_DOCKER_TS_RE = re.compile(r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})?$")


def docker_name(kind: str, namespace: str, name: str) -> str:
    return f"rsr-{kind}-{namespace}-{name}"


def parse_docker_timestamp(raw: str | None) -> datetime:
    """Parse Docker's RFC 3339 timestamps (nanosecond precision) into aware datetimes."""
    if not raw:
        return utc_now()
    m = _DOCKER_TS_RE.match(raw.strip())
    if not m:
        return utc_now()
    frac = (m.group("frac") or "0")[:6].ljust(6, "0")
    tz = m.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    return datetime.fromisoformat(f"{m.group('base')}.{frac}{tz}").astimezone(timezone.utc)


def _object_labels(labels: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in labels.items() if not k.startswith(LABEL_PREFIX)}


def _owner_labels(owners: list[OwnerReference]) -> dict[str, str]:
    if not owners:
        return {}
    return {OWNER_LABEL: owners[0].name, OWNER_UID_LABEL: owners[0].uid}


def _owners_from_labels(labels: dict[str, str]) -> list[OwnerReference]:
    if OWNER_LABEL not in labels:
        return []
    return [OwnerReference(name=labels[OWNER_LABEL], uid=labels.get(OWNER_UID_LABEL, ""))]


class DockerObjectStore(ObjectLister, ObjectClient):
    def __init__(self, client: docker.DockerClient | None = None):
        self._docker = client

    def _client(self) -> docker.DockerClient:
        if self._docker is None:
            try:
                self._docker = docker.from_env()
            except DockerException as e:
                raise ObjectStoreError(f"Docker is not available: {e}") from e
        return self._docker

    def ensure_network(self) -> None:
        c = self._client()
        try:
            c.networks.get(settings.docker_network)
        except NotFound:
            c.networks.create(settings.docker_network, driver="bridge")
            log_event("INFO", f"Created docker network '{settings.docker_network}'.")

    # Workloads

    def list_workloads(self, namespace: str, selector: dict[str, str]) -> list[Workload]:
        filters: dict[str, Any] = {
            "label": [f"{KIND_LABEL}=workload", f"{NAMESPACE_LABEL}={namespace}"]
            + [f"{k}={v}" for k, v in selector.items()]
        }
        try:
            containers = self._client().containers.list(all=True, filters=filters)
            return [self._to_workload(x) for x in containers]
        except DockerException as e:
            raise ObjectStoreError(f"listing workloads in {namespace}: {e}") from e

    def get_workload(self, namespace: str, name: str) -> Workload | None:
        try:
            cont = self._client().containers.get(docker_name("workload", namespace, name))
            return self._to_workload(cont)
        except NotFound:
            return None
        except DockerException as e:
            raise ObjectStoreError(f"getting workload {namespace}/{name}: {e}") from e

    def create_workload(self, namespace: str, workload: Workload) -> Workload:
        """Run the workload's single container, pulling first when the pull policy is Always."""
        name = workload.metadata.name or f"{workload.metadata.generate_name}{secrets.token_hex(3)}"
        spec = workload.spec.containers[0]
        labels: dict[str, str] = {
            **workload.metadata.labels,
            **_owner_labels(workload.metadata.owner_references),
            KIND_LABEL: "workload",
            NAMESPACE_LABEL: namespace,
            NAME_LABEL: name,
            CONTAINER_LABEL: spec.name,
            PULL_POLICY_LABEL: spec.image_pull_policy,
        }
        if spec.ports:
            labels[PORT_LABEL] = str(spec.ports[0].container_port)

        try:
            self.ensure_network()
            c = self._client()
            if spec.image_pull_policy == "Always":
                c.images.pull(spec.image)
            cont = c.containers.run(
                spec.image,
                detach=True,
                name=docker_name("workload", namespace, name),
                labels=labels,
                network=settings.docker_network,
                # Replacement is driven by the reconciler, not by Docker.
                restart_policy={"Name": "no"},
            )
            for net in self._service_networks(namespace):
                net_labels = net.attrs.get("Labels") or {}
                selector = json.loads(net_labels.get(SELECTOR_LABEL, "{}"))
                if selector and matches_selector(workload.metadata.labels, selector):
                    net.connect(cont, aliases=[net_labels[NAME_LABEL]])
            cont.reload()
        except DockerException as e:
            raise ObjectStoreError(f"creating workload {namespace}/{name}: {e}") from e

        log_event("INFO", f"Started container {cont.name} from image {spec.image}", namespace=namespace)
        return self._to_workload(cont)

    def delete_workload(self, namespace: str, name: str) -> None:
        try:
            cont = self._client().containers.get(docker_name("workload", namespace, name))
            cont.remove(force=True)
        except NotFound:
            return
        except DockerException as e:
            raise ObjectStoreError(f"deleting workload {namespace}/{name}: {e}") from e

    def _to_workload(self, cont: Any) -> Workload:
        labels: dict[str, str] = dict(cont.labels or {})
        ports = []
        if PORT_LABEL in labels:
            ports.append(ContainerPort(name="grpc", container_port=int(labels[PORT_LABEL])))
        container = Container(
            name=labels.get(CONTAINER_LABEL, "registry-server"),
            image=cont.attrs.get("Config", {}).get("Image", ""),
            ports=ports,
            image_pull_policy=labels.get(PULL_POLICY_LABEL, "IfNotPresent"),
        )
        return Workload(
            metadata=ObjectMeta(
                name=labels.get(NAME_LABEL, cont.name),
                namespace=labels.get(NAMESPACE_LABEL, "default"),
                labels=_object_labels(labels),
                owner_references=_owners_from_labels(labels),
                creation_timestamp=parse_docker_timestamp(cont.attrs.get("Created")),
            ),
            spec=WorkloadSpec(containers=[container]),
            status=WorkloadStatus(image_id=self._repo_digest(cont)),
        )

    def _repo_digest(self, cont: Any) -> str:
        try:
            digests = cont.image.attrs.get("RepoDigests") or []
        except ImageNotFound:
            return ""
        return digests[0] if digests else ""

    # Services

    def get_service(self, namespace: str, name: str) -> Service | None:
        try:
            net = self._client().networks.get(docker_name("service", namespace, name))
            return self._to_service(net)
        except NotFound:
            return None
        except DockerException as e:
            raise ObjectStoreError(f"getting service {namespace}/{name}: {e}") from e

    def create_service(self, namespace: str, service: Service) -> Service:
        port = service.spec.ports[0]
        labels: dict[str, str] = {
            **service.metadata.labels,
            **_owner_labels(service.metadata.owner_references),
            KIND_LABEL: "service",
            NAMESPACE_LABEL: namespace,
            NAME_LABEL: service.metadata.name,
            PORT_LABEL: str(port.port),
            SELECTOR_LABEL: json.dumps(service.spec.selector, sort_keys=True),
        }
        try:
            c = self._client()
            net = c.networks.create(docker_name("service", namespace, service.metadata.name), driver="bridge", labels=labels)
            for cont in self._selected_containers(namespace, service.spec.selector):
                net.connect(cont, aliases=[service.metadata.name])
            net.reload()
        except DockerException as e:
            raise ObjectStoreError(f"creating service {namespace}/{service.metadata.name}: {e}") from e

        log_event("INFO", f"Created network for service {service.metadata.name}", namespace=namespace)
        return self._to_service(net)

    def delete_service(self, namespace: str, name: str) -> None:
        try:
            net = self._client().networks.get(docker_name("service", namespace, name))
            net.reload()
            for cont in net.containers:
                net.disconnect(cont, force=True)
            net.remove()
        except NotFound:
            return
        except DockerException as e:
            raise ObjectStoreError(f"deleting service {namespace}/{name}: {e}") from e

    def _service_networks(self, namespace: str) -> list[Any]:
        return self._client().networks.list(filters={"label": [f"{KIND_LABEL}=service", f"{NAMESPACE_LABEL}={namespace}"]})

    def _selected_containers(self, namespace: str, selector: dict[str, str]) -> list[Any]:
        if not selector:
            return []
        filters = {
            "label": [f"{KIND_LABEL}=workload", f"{NAMESPACE_LABEL}={namespace}"]
            + [f"{k}={v}" for k, v in selector.items()]
        }
        return self._client().containers.list(all=True, filters=filters)

    def _to_service(self, net: Any) -> Service:
        labels: dict[str, str] = dict(net.attrs.get("Labels") or {})
        port = int(labels.get(PORT_LABEL, settings.grpc_port))
        return Service(
            metadata=ObjectMeta(
                name=labels.get(NAME_LABEL, net.name),
                namespace=labels.get(NAMESPACE_LABEL, "default"),
                labels=_object_labels(labels),
                owner_references=_owners_from_labels(labels),
                creation_timestamp=parse_docker_timestamp(net.attrs.get("Created")),
            ),
            spec=ServiceSpec(
                ports=[ServicePort(name="grpc", port=port, target_port=port)],
                selector=json.loads(labels.get(SELECTOR_LABEL, "{}")),
            ),
        )
