from __future__ import annotations

from contextlib import asynccontextmanager
from threading import Lock
from typing import Any

from fastapi import Depends, FastAPI, HTTPException

from rsr import events
from rsr.clock import RealClock
from rsr.crd import detect_api_version, get_new_storage_version, needs_storage_migration, parse_crd
from rsr.docker_ops import DockerObjectStore
from rsr.errors import ManifestError, ReconcilerError, UnsupportedVersionError
from rsr.models import CatalogSource, CRDMigrationRequest, CRDVersionRequest, RegisterCatalogSourceRequest
from rsr.reconciler import RegistryReconciler
from rsr.runtime import CatalogRegistry

registry = CatalogRegistry()
_reconciler: RegistryReconciler | None = None
_reconciler_lock = Lock()


def get_registry() -> CatalogRegistry:
    return registry


def get_reconciler() -> RegistryReconciler:
    global _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            store = DockerObjectStore()
            _reconciler = RegistryReconciler(store, store, RealClock())
        return _reconciler


@asynccontextmanager
async def lifespan(app: FastAPI):
    events.init_db()
    events.log_event("INFO", "Registry server reconciler API started")
    yield
    if _reconciler is not None:
        _reconciler.prober.stop()


app = FastAPI(title="Registry Server Reconciler", lifespan=lifespan)


def _source_or_404(reg: CatalogRegistry, namespace: str, name: str) -> CatalogSource:
    source = reg.get(namespace, name)
    if source is None:
        raise HTTPException(status_code=404, detail=f"unknown catalog source {namespace}/{name}")
    return source


@app.put("/catalogsources")
def register_catalog_source(
    req: RegisterCatalogSourceRequest,
    reg: CatalogRegistry = Depends(get_registry),
    reconciler: RegistryReconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    source = reg.register(req, reconciler.clock.now())
    events.log_event("INFO", f"Registered catalog source with image {req.image}", source=req.name, namespace=req.namespace)
    return source.model_dump(mode="json")


@app.get("/catalogsources")
def list_catalog_sources(reg: CatalogRegistry = Depends(get_registry)) -> list[dict[str, Any]]:
    return [s.model_dump(mode="json") for s in reg.list()]


@app.post("/catalogsources/{namespace}/{name}/reconcile")
def reconcile_catalog_source(
    namespace: str,
    name: str,
    reg: CatalogRegistry = Depends(get_registry),
    reconciler: RegistryReconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    # Handlers run on a threadpool; one reconcile per source at a time.
    with reg.reconcile_lock(namespace, name):
        source = _source_or_404(reg, namespace, name)
        try:
            reconciler.ensure_registry_server(source)
        except ReconcilerError as e:
            events.log_event("ERROR", f"Reconcile failed: {e}", source=name, namespace=namespace)
            raise HTTPException(status_code=502, detail=str(e))
        reg.save(source)
    return source.model_dump(mode="json")


@app.get("/catalogsources/{namespace}/{name}/health")
def catalog_source_health(
    namespace: str,
    name: str,
    reg: CatalogRegistry = Depends(get_registry),
    reconciler: RegistryReconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    source = _source_or_404(reg, namespace, name)
    return {"namespace": namespace, "name": name, "healthy": reconciler.check_registry_server(source)}


@app.post("/crds/version")
def crd_version(req: CRDVersionRequest) -> dict[str, str]:
    try:
        return {"version": detect_api_version(req.manifest)}
    except (ManifestError, UnsupportedVersionError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/crds/migration")
def crd_migration(req: CRDMigrationRequest) -> dict[str, Any]:
    try:
        old_crd = parse_crd(req.old_manifest)
        new_crd = parse_crd(req.new_manifest)
    except (ManifestError, UnsupportedVersionError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "migrate": needs_storage_migration(old_crd, new_crd),
        "storage_version": get_new_storage_version(new_crd),
    }


@app.get("/events")
def latest_events(limit: int = 50) -> list[dict[str, Any]]:
    return events.latest_events(limit=max(1, min(limit, 500)))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
