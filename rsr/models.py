from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from .clock import utc_now


class OwnerReference(BaseModel):
    api_version: str = "operators.coreos.com/v1alpha1"
    kind: str = "CatalogSource"
    name: str
    uid: str = ""
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectMeta(BaseModel):
    name: str = ""
    generate_name: str = ""
    namespace: str = "default"
    uid: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    creation_timestamp: datetime = Field(default_factory=utc_now)


# CatalogSource


class CatalogSourceSpec(BaseModel):
    image: str = Field(..., description="Registry image (name:tag or name@digest)")
    poll_interval: timedelta | None = Field(None, description="How often to check the tag for a new digest")


class RegistryServiceStatus(BaseModel):
    created_at: datetime
    protocol: str = "grpc"
    service_name: str
    service_namespace: str
    port: str


class CatalogSourceStatus(BaseModel):
    registry_service: RegistryServiceStatus | None = None


class CatalogSource(BaseModel):
    metadata: ObjectMeta
    spec: CatalogSourceSpec
    status: CatalogSourceStatus = Field(default_factory=CatalogSourceStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# Workloads and services


class ContainerPort(BaseModel):
    name: str
    container_port: int


class Container(BaseModel):
    name: str
    image: str
    ports: list[ContainerPort] = Field(default_factory=list)
    readiness_delay_s: int = 0
    liveness_delay_s: int = 0
    image_pull_policy: str = "IfNotPresent"  # IfNotPresent|Always


class WorkloadSpec(BaseModel):
    containers: list[Container]


class WorkloadStatus(BaseModel):
    # Resolved image digest reported by the runtime; empty until known.
    image_id: str = ""


class Workload(BaseModel):
    metadata: ObjectMeta
    spec: WorkloadSpec
    status: WorkloadStatus = Field(default_factory=WorkloadStatus)

    @property
    def image(self) -> str:
        return self.spec.containers[0].image


class ServicePort(BaseModel):
    name: str
    port: int
    target_port: int


class ServiceSpec(BaseModel):
    ports: list[ServicePort]
    selector: dict[str, str] = Field(default_factory=dict)


class Service(BaseModel):
    metadata: ObjectMeta
    spec: ServiceSpec


# API payloads


class RegisterCatalogSourceRequest(BaseModel):
    name: str = Field(..., description="CatalogSource name (dns-safe)")
    namespace: str = Field("default")
    image: str = Field(..., description="Registry image reference")
    poll_interval_s: int = Field(0, ge=0, le=7 * 24 * 3600, description="0 disables digest polling")


class CRDVersionRequest(BaseModel):
    manifest: str | None = None


class CRDMigrationRequest(BaseModel):
    old_manifest: str
    new_manifest: str
