import json

import cli

OLD = """
apiVersion: apiextensions.k8s.io/v1beta1
kind: CustomResourceDefinition
spec:
  version: v1alpha1
status:
  storedVersions: [v1alpha1]
"""

NEW = """
{"apiVersion": "apiextensions.k8s.io/v1",
 "kind": "CustomResourceDefinition",
 "spec": {"versions": [{"name": "v1alpha1", "storage": true}, {"name": "v1", "storage": false}]}}
"""


def test_crd_version(tmp_path, capsys):
    path = tmp_path / "crd.yaml"
    path.write_text(OLD)
    assert cli.main(["crd-version", str(path)]) == 0
    assert json.loads(capsys.readouterr().out) == {"version": "v1beta1"}


def test_crd_version_unsupported(tmp_path, capsys):
    path = tmp_path / "crd.yaml"
    path.write_text("apiVersion: apiextensions.k8s.io/v2\n")
    assert cli.main(["crd-version", str(path)]) == 1
    assert "not supported" in capsys.readouterr().err


def test_crd_migration(tmp_path, capsys):
    old = tmp_path / "old.yaml"
    new = tmp_path / "new.json"
    old.write_text(OLD)
    new.write_text(NEW)
    assert cli.main(["crd-migration", str(old), str(new)]) == 0
    assert json.loads(capsys.readouterr().out) == {"migrate": False, "storage_version": "v1alpha1"}


def test_missing_manifest_file(tmp_path, capsys):
    assert cli.main(["crd-version", str(tmp_path / "nope.yaml")]) == 1
    assert "error" in capsys.readouterr().err
