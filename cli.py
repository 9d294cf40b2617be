from __future__ import annotations

import argparse
import json
import sys

import requests

from rsr.crd import detect_api_version, get_new_storage_version, needs_storage_migration, parse_crd
from rsr.errors import ManifestError, UnsupportedVersionError
from rsr.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Registry Server Reconciler CLI")
    p.add_argument("--api", default=settings.api_url, help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("sources", help="List catalog sources")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_reg = sub.add_parser("register", help="Register/update a catalog source")
    s_reg.add_argument("--name", required=True)
    s_reg.add_argument("--namespace", default="default")
    s_reg.add_argument("--image", required=True)
    s_reg.add_argument("--poll-interval-s", type=int, default=0, help="0 disables digest polling")

    for cmd, help_text in (("reconcile", "Reconcile a catalog source"), ("health", "Check a catalog source")):
        s = sub.add_parser(cmd, help=help_text)
        s.add_argument("--name", required=True)
        s.add_argument("--namespace", default="default")

    s_ver = sub.add_parser("crd-version", help="Print the CRD schema version of a manifest")
    s_ver.add_argument("manifest", help="Path to a YAML or JSON CRD manifest")

    s_mig = sub.add_parser("crd-migration", help="Check whether a CRD change needs a storage migration")
    s_mig.add_argument("old", help="Manifest of the CRD currently on the cluster")
    s_mig.add_argument("new", help="Manifest of the CRD about to be applied")

    args = p.parse_args(argv)

    # Local commands, no API needed.
    if args.cmd in {"crd-version", "crd-migration"}:
        try:
            if args.cmd == "crd-version":
                _print({"version": detect_api_version(_read(args.manifest))})
                return 0
            old_crd = parse_crd(_read(args.old))
            new_crd = parse_crd(_read(args.new))
        except (ManifestError, UnsupportedVersionError, OSError) as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
        _print({"migrate": needs_storage_migration(old_crd, new_crd), "storage_version": get_new_storage_version(new_crd)})
        return 0

    base = args.api.rstrip("/")

    if args.cmd == "sources":
        _print(requests.get(f"{base}/catalogsources", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "register":
        payload = {
            "name": args.name,
            "namespace": args.namespace,
            "image": args.image,
            "poll_interval_s": args.poll_interval_s,
        }
        r = requests.put(f"{base}/catalogsources", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/catalogsources/{args.namespace}/{args.name}/reconcile", timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "health":
        r = requests.get(f"{base}/catalogsources/{args.namespace}/{args.name}/health", timeout=10)
        _print(r.json())
        if not r.ok:
            return 1
        return 0 if r.json().get("healthy") else 3

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
