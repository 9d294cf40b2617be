import os as _os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import Event, Lock

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from rsr import events  # noqa: E402
from rsr.clock import Clock  # noqa: E402
from rsr.errors import ObjectStoreError  # noqa: E402
from rsr.models import (  # noqa: E402
    CatalogSource,
    CatalogSourceSpec,
    Container,
    ObjectMeta,
    Service,
    ServicePort,
    ServiceSpec,
    Workload,
    WorkloadSpec,
    WorkloadStatus,
)
from rsr.settings import settings  # noqa: E402
from rsr.store import ObjectClient, ObjectLister, matches_selector  # noqa: E402

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to; sleep() advances it instead of blocking."""

    def __init__(self, start: datetime = T0):
        self.current = start
        self.sleeps: list[float] = []
        self.on_sleep = None

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current = self.current + timedelta(seconds=seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


class FakeObjectStore(ObjectLister, ObjectClient):
    """In-memory object store.

    - digests: image -> digest reported by workloads created from that image
    - fail: operation names that raise ObjectStoreError
    - calls: (operation, name) for every successful mutation
    - probe_gate: when set, probe workload creation waits for it
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self._lock = Lock()
        self._seq = 0
        self.workloads: dict[tuple[str, str], Workload] = {}
        self.services: dict[tuple[str, str], Service] = {}
        self.digests: dict[str, str] = {}
        self.fail: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.probe_gate: Event | None = None

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise ObjectStoreError(f"{op} failed")

    def _generate_name(self, namespace, prefix) -> str:
        # Skips names already taken, like the API server's generateName retry.
        while True:
            self._seq += 1
            name = f"{prefix}{self._seq}"
            if (namespace, name) not in self.workloads:
                return name

    # seeding helpers (not recorded as calls)

    def add_workload(self, namespace, name, image, labels, digest="", created=None) -> Workload:
        w = Workload(
            metadata=ObjectMeta(name=name, namespace=namespace, labels=dict(labels), creation_timestamp=created or self.clock.now()),
            spec=WorkloadSpec(containers=[Container(name="registry-server", image=image)]),
            status=WorkloadStatus(image_id=digest),
        )
        self.workloads[(namespace, name)] = w
        return w

    def add_service(self, namespace, name, selector) -> Service:
        s = Service(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=ServiceSpec(ports=[ServicePort(name="grpc", port=50051, target_port=50051)], selector=dict(selector)),
        )
        self.services[(namespace, name)] = s
        return s

    def set_digest(self, namespace, name, digest) -> None:
        with self._lock:
            self.workloads[(namespace, name)].status.image_id = digest

    def probe_workloads(self) -> list[Workload]:
        with self._lock:
            return [w for w in self.workloads.values() if settings.catalog_label_key not in w.metadata.labels]

    # ObjectLister

    def get_service(self, namespace, name):
        self._check("get_service")
        with self._lock:
            s = self.services.get((namespace, name))
            return s.model_copy(deep=True) if s else None

    def list_workloads(self, namespace, selector):
        self._check("list_workloads")
        with self._lock:
            return [
                w.model_copy(deep=True)
                for (ns, _), w in self.workloads.items()
                if ns == namespace and matches_selector(w.metadata.labels, selector)
            ]

    def get_workload(self, namespace, name):
        self._check("get_workload")
        with self._lock:
            w = self.workloads.get((namespace, name))
            return w.model_copy(deep=True) if w else None

    # ObjectClient

    def create_workload(self, namespace, workload):
        if self.probe_gate is not None and settings.catalog_label_key not in workload.metadata.labels:
            self.probe_gate.wait(5)
        self._check("create_workload")
        with self._lock:
            name = workload.metadata.name or self._generate_name(namespace, workload.metadata.generate_name)
            if (namespace, name) in self.workloads:
                raise ObjectStoreError(f"workload {name} already exists")
            stored = workload.model_copy(deep=True)
            stored.metadata.name = name
            stored.metadata.namespace = namespace
            stored.metadata.creation_timestamp = self.clock.now()
            stored.status = WorkloadStatus(image_id=self.digests.get(workload.image, ""))
            self.workloads[(namespace, name)] = stored
            self.calls.append(("create_workload", name))
            return stored.model_copy(deep=True)

    def delete_workload(self, namespace, name):
        self._check("delete_workload")
        with self._lock:
            self.workloads.pop((namespace, name), None)
            self.calls.append(("delete_workload", name))

    def create_service(self, namespace, service):
        self._check("create_service")
        with self._lock:
            if (namespace, service.metadata.name) in self.services:
                raise ObjectStoreError(f"service {service.metadata.name} already exists")
            self.services[(namespace, service.metadata.name)] = service.model_copy(deep=True)
            self.calls.append(("create_service", service.metadata.name))
            return service.model_copy(deep=True)

    def delete_service(self, namespace, name):
        self._check("delete_service")
        with self._lock:
            self.services.pop((namespace, name), None)
            self.calls.append(("delete_service", name))


@pytest.fixture(autouse=True)
def isolated_events(tmp_path, monkeypatch):
    """Point the event journal at a per-test sqlite file."""
    monkeypatch.setattr(events, "settings", replace(settings, db_path=str(tmp_path / "events.db")))
    return events


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return FakeObjectStore(clock)


@pytest.fixture
def make_source(clock):
    def _make(name="operators", namespace="olm", image="quay.io/example/catalog:latest", poll_interval=None, status=None):
        src = CatalogSource(
            metadata=ObjectMeta(name=name, namespace=namespace, uid=f"uid-{name}", creation_timestamp=clock.now()),
            spec=CatalogSourceSpec(image=image, poll_interval=poll_interval),
        )
        if status is not None:
            src.status.registry_service = status
        return src

    return _make
