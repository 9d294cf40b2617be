"""CRD version detection and storage-migration decisions.

Two CRD schema variants exist on clusters (`apiextensions.k8s.io/v1` and the
deprecated `v1beta1`). Both expose the same two capabilities used here:

  - stored_versions(): versions the storage backend has ever persisted objects under
  - storage_versions(): versions flagged `storage: true` under `spec.versions`

so the migration decision is written once for either variant.
"""
from __future__ import annotations

from typing import Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ManifestError, UnsupportedVersionError

V1BETA1_VERSION = "v1beta1"
V1_VERSION = "v1"

SUPPORTED_CRD_VERSIONS = frozenset({V1BETA1_VERSION, V1_VERSION})


class _CRDModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CRDVersion(_CRDModel):
    name: str
    served: bool = True
    storage: bool = False


class CRDStatus(_CRDModel):
    stored_versions: list[str] = Field(default_factory=list, alias="storedVersions")


class CRDMetadata(_CRDModel):
    name: str = ""


class V1CRDSpec(_CRDModel):
    group: str = ""
    versions: list[CRDVersion] = Field(default_factory=list)


class V1Beta1CRDSpec(_CRDModel):
    group: str = ""
    # Legacy single-version field, superseded by `versions`.
    version: str | None = None
    versions: list[CRDVersion] = Field(default_factory=list)


class _CustomResourceDefinition(_CRDModel):
    kind: str = "CustomResourceDefinition"
    metadata: CRDMetadata = Field(default_factory=CRDMetadata)
    status: CRDStatus = Field(default_factory=CRDStatus)

    def versions(self) -> list[CRDVersion]:
        return list(self.spec.versions)  # type: ignore[attr-defined]

    def stored_versions(self) -> list[str]:
        return list(self.status.stored_versions)

    def storage_versions(self) -> list[str]:
        return [v.name for v in self.versions() if v.storage]


class CustomResourceDefinitionV1(_CustomResourceDefinition):
    api_version: Literal["apiextensions.k8s.io/v1"] = Field("apiextensions.k8s.io/v1", alias="apiVersion")
    spec: V1CRDSpec = Field(default_factory=V1CRDSpec)


class CustomResourceDefinitionV1Beta1(_CustomResourceDefinition):
    api_version: Literal["apiextensions.k8s.io/v1beta1"] = Field(
        "apiextensions.k8s.io/v1beta1", alias="apiVersion"
    )
    spec: V1Beta1CRDSpec = Field(default_factory=V1Beta1CRDSpec)

    def versions(self) -> list[CRDVersion]:
        if not self.spec.versions and self.spec.version:
            # The API server defaults a single-version CRD to one served storage version.
            return [CRDVersion(name=self.spec.version, served=True, storage=True)]
        return list(self.spec.versions)


CustomResourceDefinition = Union[CustomResourceDefinitionV1, CustomResourceDefinitionV1Beta1]


def _load_document(manifest: str | None) -> dict[str, Any]:
    if manifest is None:
        raise ManifestError("empty CRD manifest")
    try:
        # Only the first document is decoded; anything after it is ignored.
        doc = next(iter(yaml.safe_load_all(manifest)), None)
    except yaml.YAMLError as e:
        raise ManifestError(f"could not decode CRD manifest: {e}") from e
    if not isinstance(doc, dict):
        raise ManifestError("CRD manifest is not an object")
    return doc


def _version_of(api_version: Any) -> str:
    if not isinstance(api_version, str):
        return ""
    return api_version.rsplit("/", 1)[-1]


def detect_api_version(manifest: str | None) -> str:
    """Return the CRD schema version ("v1" or "v1beta1") declared by a YAML/JSON manifest."""
    doc = _load_document(manifest)
    version = _version_of(doc.get("apiVersion"))
    if version not in SUPPORTED_CRD_VERSIONS:
        raise UnsupportedVersionError(version)
    return version


def parse_crd(manifest: str | None) -> CustomResourceDefinition:
    version = detect_api_version(manifest)
    doc = _load_document(manifest)
    # Re-stamp the full group/version so a bare "v1" apiVersion still validates.
    doc = {**doc, "apiVersion": f"apiextensions.k8s.io/{version}"}
    model = CustomResourceDefinitionV1 if version == V1_VERSION else CustomResourceDefinitionV1Beta1
    try:
        return model.model_validate(doc)
    except ValidationError as e:
        raise ManifestError(f"invalid CRD manifest: {e}") from e


def needs_storage_migration(old_crd: CustomResourceDefinition, new_crd: CustomResourceDefinition) -> bool:
    """Decide whether changing old_crd into new_crd requires a storage migration pass.

    No migration is needed when any version the old CRD has stored objects under
    is still a storage version of the new CRD. Otherwise (including a brand-new
    CRD with no stored versions) a migration is needed.
    """
    old_stored = set(old_crd.stored_versions())
    new_storage = set(new_crd.storage_versions())
    return not (old_stored & new_storage)


def get_new_storage_version(crd: CustomResourceDefinition) -> str | None:
    """First version flagged as the storage version, or None."""
    for version in crd.versions():
        if version.storage:
            return version.name
    return None
