from dataclasses import replace

from rsr import desired
from rsr.desired import canonical_labels, desired_service, desired_workload, probe_workload, selector
from rsr.settings import settings


def test_labels_and_selector(make_source):
    src = make_source(name="community")
    assert canonical_labels(src) == {settings.catalog_label_key: "community"}
    assert selector(src) == canonical_labels(src)


def test_desired_service(make_source):
    src = make_source()
    svc = desired_service(src)
    assert svc.metadata.name == src.name
    assert svc.metadata.namespace == src.namespace
    assert len(svc.spec.ports) == 1
    port = svc.spec.ports[0]
    assert (port.name, port.port, port.target_port) == ("grpc", 50051, 50051)
    assert svc.spec.selector == canonical_labels(src)


def test_desired_workload(make_source):
    src = make_source(image="quay.io/example/catalog:v2")
    w = desired_workload(src)
    assert w.metadata.name == ""
    assert w.metadata.generate_name == f"{src.name}-"
    assert w.metadata.labels == canonical_labels(src)
    assert len(w.spec.containers) == 1
    c = w.spec.containers[0]
    assert c.name == "registry-server"
    assert c.image == "quay.io/example/catalog:v2"
    assert c.readiness_delay_s == 5
    assert c.liveness_delay_s == 10
    assert c.ports[0].container_port == 50051


def test_owner_reference_is_permissive(make_source):
    src = make_source()
    for obj in (desired_service(src), desired_workload(src)):
        (ref,) = obj.metadata.owner_references
        assert ref.kind == "CatalogSource"
        assert ref.name == src.name
        assert ref.uid == src.metadata.uid
        assert ref.controller is False
        assert ref.block_owner_deletion is False


def test_probe_workload_is_not_selected(make_source):
    src = make_source()
    probe = probe_workload(src)
    assert settings.catalog_label_key not in probe.metadata.labels
    assert probe.spec.containers[0].image == src.spec.image
    assert probe.spec.containers[0].image_pull_policy == "Always"
    # the desired workload is unaffected
    assert desired_workload(src).metadata.labels == canonical_labels(src)


def test_registry_workload_pull_policy(make_source, monkeypatch):
    src = make_source()
    assert desired_workload(src).spec.containers[0].image_pull_policy == "IfNotPresent"

    monkeypatch.setattr(desired, "settings", replace(settings, always_pull=True))
    assert desired_workload(src).spec.containers[0].image_pull_policy == "Always"
    assert canonical_labels(src) == {settings.catalog_label_key: src.name}
