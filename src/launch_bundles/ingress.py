"""
Kubernetes ingress reconciliation.

Every reconciliation pass mints a fresh generation id, applies one Ingress per
Active domain annotated with that id, then deletes every launch-managed
Ingress carrying a different id. New rules land before old ones are removed,
so both may coexist briefly; rules are idempotent routing declarations.

Failures are logged and reported in the returned result, never raised, and
never roll back registry or proxy state. External commands run without a
timeout.
"""
from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import yaml
from ulid import ULID

from .errors import IngressError

logger = logging.getLogger(__name__)

DEPLOY_ID_ANNOTATION = "launch.bundles/deploy-id"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "launch"
MANIFEST_NAME = "ingresses.yml"

__all__ = [
    "IngressBackend",
    "KubectlBackend",
    "IngressReconciler",
    "ReconcileResult",
    "ingress_name",
    "render_manifests",
    "stale_ingress_names",
]


def ingress_name(domain: str) -> str:
    """Kubernetes object name for ``domain`` (``*.example.com`` -> ``launch-wildcard.example.com``)."""
    name = domain.lower().replace("*", "wildcard")
    name = re.sub(r"[^a-z0-9.-]", "-", name).strip("-.")
    return f"launch-{name}"[:253]


def render_manifests(domains: Iterable[str], service: str, generation: str, *, port: int = 80) -> List[Dict[str, Any]]:
    """One Ingress manifest per domain, forwarding all paths to ``service``."""
    manifests = []
    for domain in sorted(set(domains)):
        manifests.append({
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": {
                "name": ingress_name(domain),
                "labels": {MANAGED_BY_LABEL: MANAGED_BY_VALUE},
                "annotations": {DEPLOY_ID_ANNOTATION: generation},
            },
            "spec": {
                "rules": [{
                    "host": domain,
                    "http": {
                        "paths": [{
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": {
                                "service": {
                                    "name": service,
                                    "port": {"number": port},
                                }
                            },
                        }]
                    },
                }]
            },
        })
    return manifests


@runtime_checkable
class IngressBackend(Protocol):
    """Cluster operations needed by the reconciler."""

    def apply_manifest(self, path: Path, generation: str) -> None:
        """
        Apply the manifests in ``path``.

        Raises:
            IngressError: If the cluster rejected the manifests
        """
        ...

    def delete_stale(self, generation: str) -> None:
        """
        Delete launch-managed ingresses whose generation differs from ``generation``.

        Raises:
            IngressError: If listing or deleting failed
        """
        ...


class KubectlBackend:
    """IngressBackend that shells out to ``kubectl``."""

    def __init__(self, kubectl: str = "kubectl", namespace: Optional[str] = None):
        self.kubectl = kubectl
        self.namespace = namespace

    def apply_manifest(self, path: Path, generation: str) -> None:
        logger.info(f"Applying ingress manifest {path} (generation {generation})")
        self._run(["apply", "-f", str(path)], path=path, generation=generation)

    def delete_stale(self, generation: str) -> None:
        listing = self._run(
            ["get", "ingress", "-l", f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}", "-o", "json"],
            generation=generation,
        )
        try:
            items = json.loads(listing or "{}").get("items", [])
        except json.JSONDecodeError as e:
            raise IngressError(f"unreadable ingress listing: {e}") from e

        stale = stale_ingress_names(items, generation)
        if not stale:
            logger.debug("No stale ingress resources")
            return

        logger.info(f"Deleting stale ingress resources: {', '.join(stale)}")
        self._run(["delete", "ingress", *stale], generation=generation)

    def _run(self, args: Sequence[str], *, generation: str, path: Optional[Path] = None) -> str:
        command = [self.kubectl, *args]
        if self.namespace:
            command += ["--namespace", self.namespace]

        env = dict(os.environ)
        env["LAUNCH_DEPLOY_ID"] = generation
        if path is not None:
            env["LAUNCH_INGRESS_PATH"] = str(path)

        try:
            completed = subprocess.run(command, env=env, capture_output=True, text=True)
        except OSError as e:
            raise IngressError(f"failed to run {command[0]}: {e}") from e

        if completed.returncode != 0:
            raise IngressError(
                f"{' '.join(command)} exited with {completed.returncode}: {completed.stderr.strip()}"
            )
        return completed.stdout


def stale_ingress_names(items: Iterable[Dict[str, Any]], generation: str) -> List[str]:
    """Names of listed ingress objects not tagged with ``generation``."""
    names = []
    for item in items:
        metadata = item.get("metadata", {})
        annotations = metadata.get("annotations") or {}
        if annotations.get(DEPLOY_ID_ANNOTATION) != generation and metadata.get("name"):
            names.append(metadata["name"])
    return sorted(names)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one ingress reconciliation pass."""
    generation: str
    domains: int
    ok: bool
    error: Optional[str] = None


class IngressReconciler:
    """Projects Active domains into generation-tagged Ingress manifests."""

    def __init__(self, service: str, backend: Optional[IngressBackend] = None, *, port: int = 80):
        self.service = service
        self.backend = backend or KubectlBackend()
        self.port = port

    def apply(self, domains: Iterable[str]) -> ReconcileResult:
        """Apply a new generation for ``domains`` and prune older generations."""
        generation = str(ULID())
        manifests = render_manifests(domains, self.service, generation, port=self.port)

        try:
            with tempfile.TemporaryDirectory(prefix="launch-ingress-") as tmp:
                if manifests:
                    path = Path(tmp) / MANIFEST_NAME
                    path.write_text(yaml.safe_dump_all(manifests, sort_keys=False), encoding="utf-8")
                    self.backend.apply_manifest(path, generation)
                self.backend.delete_stale(generation)
        except (IngressError, OSError) as e:
            logger.error(f"Ingress reconciliation {generation} failed: {e}")
            return ReconcileResult(generation=generation, domains=len(manifests), ok=False, error=str(e))

        logger.info(f"Ingress generation {generation} applied for {len(manifests)} domains")
        return ReconcileResult(generation=generation, domains=len(manifests), ok=True)
