from __future__ import annotations


class ReconcilerError(Exception):
    pass


class ManifestError(ReconcilerError):
    pass


class UnsupportedVersionError(ReconcilerError):
    def __init__(self, version: str):
        super().__init__(f"CRD apiVersion from manifest not supported: {version!r}")
        self.version = version


class ObjectStoreError(ReconcilerError):
    """Raised by object store implementations when a read or write fails."""


class ResourceCreateError(ReconcilerError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"error creating {kind}: {name}")
        self.kind = kind
        self.name = name


class ResourceDeleteError(ReconcilerError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"error deleting {kind}: {name}")
        self.kind = kind
        self.name = name
