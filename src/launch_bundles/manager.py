"""
Bundle registry and deploy pipeline.

The manager owns the in-memory status of every known bundle. A bundle is
either Active (unpacked into an ephemeral directory, compressed, routable) or
Failed (carrying the error description). The archive store, not this table,
is the durable source of truth: ``load_all`` rebuilds the table at startup by
redeploying every stored archive.

The manager does no locking; callers serialize mutations (see
``operations.facade.Operations``).
"""
from __future__ import annotations

import contextlib
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from ulid import ULID

from .compressor import Compressor
from .errors import DomainConflictError
from .models import ActiveView, BundleConfig, BundleView, FailedView, Statistics
from .proxy import HostRoute
from .storage.base import ArchiveStore

logger = logging.getLogger(__name__)

EXTRACTION_PREFIX = "launch-"

__all__ = ["ActiveBundle", "FailedBundle", "BundleStatus", "BundleManager"]


@dataclass
class ActiveBundle:
    """
    A deployed bundle.

    Owns its extraction directory: the directory exists exactly as long as
    this status is installed and is deleted by ``release`` (or at interpreter
    exit if never released).
    """
    root: tempfile.TemporaryDirectory
    config: BundleConfig
    stats: Statistics

    @property
    def path(self) -> Path:
        return Path(self.root.name)

    def release(self) -> None:
        self.root.cleanup()


@dataclass(frozen=True)
class FailedBundle:
    """A bundle whose last deploy failed."""
    error: str


BundleStatus = Union[ActiveBundle, FailedBundle]


def _unknown_status(status: object) -> TypeError:
    return TypeError(f"Unknown bundle status: {status!r}")


def to_view(status: BundleStatus) -> BundleView:
    """Public view of a bundle status."""
    if isinstance(status, ActiveBundle):
        return ActiveView(config=status.config, stats=status.stats)
    if isinstance(status, FailedBundle):
        return FailedView(error=status.error)
    raise _unknown_status(status)


class BundleManager:
    """In-memory bundle registry running the store -> verify -> unpack -> compress pipeline."""

    def __init__(self, store: ArchiveStore, compressor: Optional[Compressor] = None):
        self.store = store
        self.compressor = compressor or Compressor()
        self._bundles: Dict[ULID, BundleStatus] = {}

    def __len__(self) -> int:
        return len(self._bundles)

    def __contains__(self, bundle_id: ULID) -> bool:
        return bundle_id in self._bundles

    def status(self, bundle_id: ULID) -> Optional[BundleStatus]:
        return self._bundles.get(bundle_id)

    def is_active(self, bundle_id: ULID) -> bool:
        return isinstance(self._bundles.get(bundle_id), ActiveBundle)

    def load_all(self) -> None:
        """
        Redeploy every archive in the store.

        Per-bundle failures are recorded as Failed statuses and never abort
        the load; only a failure to enumerate the store propagates.
        """
        bundle_ids = self.store.enumerate()
        logger.info(f"Loading {len(bundle_ids)} stored bundles")

        for bundle_id in bundle_ids:
            try:
                self.deploy(bundle_id)
            except Exception:
                # deploy() already recorded and logged the failure
                continue

    def deploy(self, bundle_id: ULID) -> ActiveView:
        """
        Deploy the stored archive for ``bundle_id``.

        On success the new Active status replaces the previous one in a single
        step and the previous extraction directory is released afterwards. On
        failure the bundle is marked Failed with the error description and the
        error is re-raised; Active bundles under other identifiers are never
        touched.

        Raises:
            BundleNotFoundError: If no archive or no config member exists
            MalformedBundleError: If the archive or its config is unusable
            DomainConflictError: If another Active bundle holds the domain
            OSError: For I/O errors while unpacking or compressing
        """
        try:
            bundle = self._build(bundle_id)
        except Exception as e:
            error = str(e) or type(e).__name__
            self._install(bundle_id, FailedBundle(error=error))
            logger.warning(f"Bundle {bundle_id} failed to deploy: {error}")
            raise

        self._install(bundle_id, bundle)
        logger.info(
            f"Deployed bundle {bundle_id} ({bundle.config.name}) at {bundle.config.domain}: "
            f"{bundle.stats.size} bytes, {bundle.stats.compressible} compressible"
        )
        return ActiveView(config=bundle.config, stats=bundle.stats)

    def _build(self, bundle_id: ULID) -> ActiveBundle:
        config = self.store.metadata(bundle_id)
        self._verify(bundle_id, config)

        with contextlib.ExitStack() as stack:
            root = tempfile.TemporaryDirectory(prefix=EXTRACTION_PREFIX)
            stack.callback(root.cleanup)

            path = Path(root.name)
            self.store.unpack(bundle_id, path)
            stats = self.compressor.compress(path, config.compress)

            # Ownership of the directory moves to the Active status
            stack.pop_all()

        return ActiveBundle(root=root, config=config, stats=stats)

    def _verify(self, bundle_id: ULID, config: BundleConfig) -> None:
        for other_id, status in self._bundles.items():
            if other_id == bundle_id or not isinstance(status, ActiveBundle):
                continue
            if status.config.domain == config.domain:
                raise DomainConflictError(config.domain, str(other_id))

    def _install(self, bundle_id: ULID, status: BundleStatus) -> None:
        previous = self._bundles.get(bundle_id)
        self._bundles[bundle_id] = status
        if isinstance(previous, ActiveBundle) and previous is not status:
            previous.release()

    def remove(self, bundle_id: ULID) -> bool:
        """
        Drop ``bundle_id`` from the registry, releasing its directory if Active.

        The stored archive is left alone. Returns False if the id was unknown.
        """
        status = self._bundles.pop(bundle_id, None)
        if status is None:
            return False
        if isinstance(status, ActiveBundle):
            status.release()
        logger.info(f"Removed bundle {bundle_id}")
        return True

    def bundles(self) -> Dict[ULID, BundleView]:
        """Public views of all bundles, ordered by identifier."""
        return {bundle_id: to_view(self._bundles[bundle_id]) for bundle_id in sorted(self._bundles)}

    def hosts(self) -> List[HostRoute]:
        """Routing facts for every Active bundle."""
        hosts = []
        for status in self._bundles.values():
            if isinstance(status, ActiveBundle):
                hosts.append(HostRoute(
                    domain=status.config.domain,
                    root=status.path,
                    algorithms=tuple(self.compressor.algorithms),
                    fallback=status.config.fallback,
                ))
            elif not isinstance(status, FailedBundle):
                raise _unknown_status(status)
        return sorted(hosts, key=lambda h: h.domain)

    def domains(self) -> List[str]:
        """Domains claimed by Active bundles."""
        domains = set()
        for status in self._bundles.values():
            if isinstance(status, ActiveBundle):
                domains.add(status.config.domain)
            elif not isinstance(status, FailedBundle):
                raise _unknown_status(status)
        return sorted(domains)

    def close(self) -> None:
        """Release every extraction directory and clear the registry."""
        for status in self._bundles.values():
            if isinstance(status, ActiveBundle):
                status.release()
        self._bundles.clear()
