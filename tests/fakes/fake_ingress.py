"""
Fake ingress backend for testing.

Keeps an in-memory "cluster" of ingress objects so stale deletion can be
asserted without kubectl.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml

from launch_bundles.errors import IngressError
from launch_bundles.ingress import stale_ingress_names

__all__ = ["FakeIngressBackend"]


class FakeIngressBackend:
    """In-memory IngressBackend; ``fail_apply``/``fail_delete`` simulate tool failures."""

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.applied: List[List[Dict[str, Any]]] = []
        self.deleted: List[str] = []
        self.fail_apply = False
        self.fail_delete = False

    def apply_manifest(self, path: Path, generation: str) -> None:
        if self.fail_apply:
            raise IngressError("kubectl apply exited with 1")
        manifests = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
        self.applied.append(manifests)
        for manifest in manifests:
            self.objects[manifest["metadata"]["name"]] = manifest

    def delete_stale(self, generation: str) -> None:
        if self.fail_delete:
            raise IngressError("kubectl delete exited with 1")
        for name in stale_ingress_names(self.objects.values(), generation):
            del self.objects[name]
            self.deleted.append(name)

    @property
    def hosts(self) -> List[str]:
        return sorted(obj["spec"]["rules"][0]["host"] for obj in self.objects.values())
