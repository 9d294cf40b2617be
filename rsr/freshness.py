"""Registry-side digest drift detection for mutable image tags.

A running workload pinned to a tag is never re-pulled on its own. To notice
that the tag now resolves to different content, a throwaway probe workload is
started with the same image (always pulled, not selected by the service) and
the digest it reports is compared with the digest of the serving instance.

Probing runs on a background thread and never blocks `needs_refresh`; results
are picked up by a later call.
"""
from __future__ import annotations

from concurrent.futures import Future
from datetime import datetime, timedelta
from threading import Event, Lock, Thread
from typing import Callable

from .clock import Clock
from .desired import probe_workload
from .errors import ObjectStoreError
from .events import log_event
from .health import current_workloads_with_image
from .models import CatalogSource, Workload
from .settings import settings
from .store import ObjectClient, ObjectLister

SourceKey = tuple[str, str]


def source_key(source: CatalogSource) -> SourceKey:
    return source.namespace, source.name


class ProbeTask:
    """Handle for one in-flight probe.

    The result slot holds exactly one value: the resolved digest, or None when
    the probe gave up. `poll()` never blocks.
    """

    def __init__(self, key: SourceKey, image: str):
        self.key = key
        self.image = image
        self.future: Future[str | None] = Future()
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self, target: Callable[[ProbeTask], None]) -> None:
        self._thr = Thread(target=target, args=(self,), daemon=True, name=f"probe-{self.key[0]}-{self.key[1]}")
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def done(self) -> bool:
        return self.future.done()

    def poll(self) -> str | None:
        if not self.future.done():
            return None
        return self.future.result()

    def resolve(self, digest: str | None) -> None:
        if not self.future.done():
            self.future.set_result(digest)

    def join(self, timeout: float | None = None) -> None:
        if self._thr is not None:
            self._thr.join(timeout)


class FreshnessProber:
    def __init__(
        self,
        lister: ObjectLister,
        client: ObjectClient,
        clock: Clock,
        attempts: int | None = None,
        backoff_s: float | None = None,
    ):
        self.lister = lister
        self.client = client
        self.clock = clock
        self.attempts = max(1, int(attempts if attempts is not None else settings.probe_attempts))
        self.backoff_s = max(0.0, float(backoff_s if backoff_s is not None else settings.probe_backoff_s))
        self._lock = Lock()
        self._last_checked: dict[SourceKey, datetime] = {}
        self._tasks: dict[SourceKey, ProbeTask] = {}

    def needs_refresh(self, source: CatalogSource) -> bool:
        """True when a finished probe reported a digest different from the serving one."""
        interval = source.spec.poll_interval
        if not interval:
            return False

        serving = self._serving_workload(source)
        if serving is None:
            return False

        key = source_key(source)
        now = self.clock.now()
        drifted = False
        with self._lock:
            task = self._tasks.get(key)
            if task is not None and task.done():
                del self._tasks[key]
                digest = task.poll()
                if task.image != source.spec.image:
                    # Probed an image the source no longer declares.
                    digest = None
                if digest and digest != serving.status.image_id:
                    log_event(
                        "INFO",
                        f"found new image digest {digest} for {source.spec.image}",
                        source=source.name,
                        namespace=source.namespace,
                    )
                    drifted = True
                task = None

            if task is None and not drifted and self._gate_open(key, serving, now, interval):
                self._last_checked[key] = now
                self._tasks[key] = self._start_probe(source)

        return drifted

    def in_flight(self, source: CatalogSource) -> ProbeTask | None:
        with self._lock:
            return self._tasks.get(source_key(source))

    def stop(self) -> None:
        """Signal every in-flight probe to give up before its next attempt."""
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for task in tasks:
            task.stop()

    def _gate_open(self, key: SourceKey, serving: Workload, now: datetime, interval: timedelta) -> bool:
        last = self._last_checked.get(key)
        if last is not None and now - last <= interval:
            return False
        # Don't probe right after a fresh deploy.
        return now - serving.metadata.creation_timestamp > interval

    def _serving_workload(self, source: CatalogSource) -> Workload | None:
        serving = current_workloads_with_image(self.lister, source)
        return serving[0] if serving else None

    def _start_probe(self, source: CatalogSource) -> ProbeTask:
        task = ProbeTask(source_key(source), source.spec.image)
        task.start(lambda t: self._run_probe(source, t))
        return task

    def _run_probe(self, source: CatalogSource, task: ProbeTask) -> None:
        try:
            digest = self._probe_digest(source, task)
            if not digest and not task.stopped:
                log_event("WARN", "couldn't resolve probe workload digest", source=source.name, namespace=source.namespace)
            task.resolve(digest or None)
        except Exception as e:
            log_event(
                "ERROR",
                f"Digest probe failed: {type(e).__name__}: {e}",
                source=source.name,
                namespace=source.namespace,
            )
        finally:
            task.resolve(None)

    def _probe_digest(self, source: CatalogSource, task: ProbeTask) -> str:
        try:
            created = self.client.create_workload(source.namespace, probe_workload(source))
        except ObjectStoreError as e:
            log_event("WARN", f"couldn't create probe workload: {e}", source=source.name, namespace=source.namespace)
            return ""

        current: Workload | None = created
        for attempt in range(self.attempts):
            if task.stopped:
                return ""
            if attempt > 0:
                current = self._refetch(source.namespace, created.metadata.name)
            digest = current.status.image_id if current is not None else ""
            if digest:
                return digest
            self.clock.sleep(self.backoff_s)
        return ""

    def _refetch(self, namespace: str, name: str) -> Workload | None:
        try:
            return self.lister.get_workload(namespace, name)
        except ObjectStoreError:
            return None
