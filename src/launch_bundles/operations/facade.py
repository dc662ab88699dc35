"""
Operations Facade - Application service layer.

Provides a clean interface between the HTTP boundary and the deploy core,
centralizing request orchestration (store -> deploy -> reconfigure proxy ->
reconfigure ingress) and serialization of mutating requests while keeping
route handlers thin and testable.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from ulid import ULID

from ..compressor import Compressor
from ..errors import ProxyReconcileError
from ..ingress import IngressReconciler, ReconcileResult
from ..manager import BundleManager
from ..models import ActiveView, BundleView
from ..proxy import CaddyConfig, ProxyAdminClient
from ..settings import Settings
from ..storage.base import ArchiveStore, ByteStream
from ..storage.filesystem import FileArchiveStore

logger = logging.getLogger(__name__)


class Operations:
    """
    Application service facade for the control server.

    Design Notes: Request serialization

    Every mutating request runs end to end under a single lock, so the
    domain-uniqueness check in ``BundleManager.deploy`` and the following
    reconciliations observe a consistent registry even when the transport
    handles connections concurrently. Reads take the same lock and therefore
    never see a half-applied request.

    Reconciliation is best-effort and sequential: the proxy is reconfigured
    first and its failure is surfaced to the caller; ingress failures are only
    logged. Neither rolls back registry state.
    """

    def __init__(self, settings: Settings, *,
                 store: Optional[ArchiveStore] = None,
                 compressor: Optional[Compressor] = None,
                 manager: Optional[BundleManager] = None,
                 proxy: Optional[ProxyAdminClient] = None,
                 ingress: Optional[IngressReconciler] = None):
        """
        Initialize Operations facade.

        Args:
            settings: Server configuration
            store: Archive store (default: filesystem store at settings.storage_dir)
            compressor: Compression engine (default: zstd + gzip)
            manager: Bundle registry (default: built from store and compressor)
            proxy: Caddy admin client (default: from settings)
            ingress: Ingress reconciler (default: kubectl-backed when
                settings.kube_service is set, otherwise disabled)
        """
        self.settings = settings

        if manager is None:
            store = store or FileArchiveStore(settings.storage_dir)
            compressor = compressor or Compressor(min_size=settings.min_compress_size)
            manager = BundleManager(store, compressor)
        self.manager = manager
        self.store = manager.store

        self.proxy = proxy or ProxyAdminClient.from_settings(settings)

        if ingress is None and settings.kube_service:
            ingress = IngressReconciler(settings.kube_service)
        self.ingress = ingress

        self._lock = threading.Lock()

    def startup(self) -> None:
        """
        Rebuild the registry from the archive store and push initial routing.

        A proxy that stays unreachable is logged; the server still starts and
        the next mutating request retries the push.
        """
        with self._lock:
            self.manager.load_all()
            try:
                self.reconcile_proxy()
            except ProxyReconcileError as e:
                logger.error(f"Initial proxy configuration failed: {e}")
            self.reconcile_ingress()

    def list_bundles(self) -> Dict[str, BundleView]:
        """Public views of all bundles keyed by identifier string."""
        with self._lock:
            return {str(bundle_id): view for bundle_id, view in self.manager.bundles().items()}

    def upload(self, bundle_id: ULID, data: ByteStream) -> ActiveView:
        """
        Store an uploaded archive and deploy it.

        Raises:
            OSError: If the archive could not be stored (registry unchanged)
            LaunchError: If the deploy failed (bundle now Failed) or the proxy
                rejected the new configuration
        """
        with self._lock:
            self.store.add(bundle_id, data)
            was_active = self.manager.is_active(bundle_id)

            try:
                view = self.manager.deploy(bundle_id)
            except Exception:
                # A previously Active bundle lost its directory; stop routing to it
                if was_active:
                    self._reconcile_after_failure()
                raise

            self.reconcile_proxy()
            self.reconcile_ingress()
            return view

    def delete(self, bundle_id: ULID) -> None:
        """
        Remove a bundle's archive and registry entry, then reconcile.

        Raises:
            OSError: If the archive could not be removed
            ProxyReconcileError: If the proxy rejected the new configuration
        """
        with self._lock:
            self.store.remove(bundle_id)
            self.manager.remove(bundle_id)
            self.reconcile_proxy()
            self.reconcile_ingress()

    def reconcile_proxy(self) -> None:
        """Push the current Active set to Caddy (retried)."""
        config = CaddyConfig.from_settings(self.settings, self.manager.hosts())
        self.proxy.load(config.to_json())

    def reconcile_ingress(self) -> Optional[ReconcileResult]:
        """Push the current Active domains to the cluster; no-op without ingress mode."""
        if self.ingress is None:
            return None
        return self.ingress.apply(self.manager.domains())

    def _reconcile_after_failure(self) -> None:
        try:
            self.reconcile_proxy()
        except ProxyReconcileError as e:
            logger.error(f"Proxy reconfiguration after failed deploy also failed: {e}")
        self.reconcile_ingress()

    def close(self) -> None:
        """Release all extraction directories and close the proxy client."""
        with self._lock:
            self.manager.close()
            self.proxy.close()
