"""
Tests for the Operations facade.

Covers request orchestration (store -> deploy -> proxy -> ingress), failure
propagation rules, and startup/shutdown.
"""
from __future__ import annotations

import io

import pytest
from ulid import ULID

from launch_bundles.errors import DomainConflictError, MalformedBundleError, ProxyReconcileError
from launch_bundles.models import ActiveView, FailedView
from launch_bundles.operations import Operations

from .fakes import FakeProxyAdmin
from .helpers.archives import bundle_config, make_archive


def _archive(domain="a.example", **config):
    return io.BytesIO(make_archive(config=bundle_config(domain, **config)))


class TestUpload:
    """Test the upload pipeline."""

    def test_upload_deploys_and_reconciles(self, ops, proxy):
        bundle_id = ULID()

        view = ops.upload(bundle_id, _archive())

        assert isinstance(view, ActiveView)
        assert ops.store.path(bundle_id).exists()
        assert proxy.hosts() == ["a.example"]
        assert list(ops.list_bundles()) == [str(bundle_id)]

    def test_conflict_recorded_and_raised(self, ops, proxy):
        first, second = ULID(), ULID()
        ops.upload(first, _archive("a.example"))
        loads = len(proxy.loads)

        with pytest.raises(DomainConflictError):
            ops.upload(second, _archive("a.example"))

        bundles = ops.list_bundles()
        assert isinstance(bundles[str(first)], ActiveView)
        assert isinstance(bundles[str(second)], FailedView)
        assert len(proxy.loads) == loads

    def test_failed_redeploy_drops_route(self, ops, proxy):
        """Test that an Active bundle replaced by a broken archive stops being routed."""
        bundle_id = ULID()
        ops.upload(bundle_id, _archive())

        with pytest.raises(MalformedBundleError):
            ops.upload(bundle_id, io.BytesIO(b"garbage"))

        assert proxy.hosts() == []
        assert isinstance(ops.list_bundles()[str(bundle_id)], FailedView)

    def test_proxy_failure_propagates_without_rollback(self, settings, manager):
        proxy = FakeProxyAdmin(fail=True)
        ops = Operations(settings, manager=manager, proxy=proxy)
        bundle_id = ULID()

        with pytest.raises(ProxyReconcileError):
            ops.upload(bundle_id, _archive())

        assert manager.is_active(bundle_id)
        assert proxy.attempted

    def test_storage_failure_leaves_registry_unchanged(self, ops, monkeypatch):
        def full_disk(bundle_id, data):
            raise OSError("no space left on device")

        monkeypatch.setattr(ops.store, "add", full_disk)
        bundle_id = ULID()

        with pytest.raises(OSError):
            ops.upload(bundle_id, _archive())

        assert ops.list_bundles() == {}


class TestDelete:

    def test_delete_removes_everything(self, ops, proxy):
        bundle_id = ULID()
        ops.upload(bundle_id, _archive())

        ops.delete(bundle_id)

        assert ops.list_bundles() == {}
        assert not ops.store.path(bundle_id).exists()
        assert proxy.hosts() == []

    def test_delete_unknown_is_idempotent(self, ops, proxy):
        ops.delete(ULID())
        assert proxy.hosts() == []

    def test_delete_failed_bundle(self, ops):
        bundle_id = ULID()
        with pytest.raises(MalformedBundleError):
            ops.upload(bundle_id, io.BytesIO(b"garbage"))

        ops.delete(bundle_id)
        assert ops.list_bundles() == {}


class TestIngress:

    def test_ingress_follows_active_domains(self, cluster_ops, ingress_backend):
        first, second = ULID(), ULID()
        cluster_ops.upload(first, _archive("a.example"))
        cluster_ops.upload(second, _archive("b.example"))
        assert ingress_backend.hosts == ["a.example", "b.example"]

        cluster_ops.delete(first)
        assert ingress_backend.hosts == ["b.example"]

    def test_ingress_failure_not_surfaced(self, cluster_ops, ingress_backend):
        ingress_backend.fail_apply = True
        view = cluster_ops.upload(ULID(), _archive())
        assert view.config.domain == "a.example"

    def test_ingress_disabled_without_service(self, settings, manager, proxy):
        assert Operations(settings, manager=manager, proxy=proxy).ingress is None

    def test_ingress_enabled_by_service(self, settings, manager, proxy):
        from dataclasses import replace
        ops = Operations(replace(settings, kube_service="web"), manager=manager, proxy=proxy)
        assert ops.ingress is not None
        assert ops.ingress.service == "web"


class TestLifecycle:

    def test_startup_loads_store_and_reconciles(self, ops, store, proxy):
        bundle_id = ULID()
        store.add(bundle_id, _archive())

        ops.startup()

        assert isinstance(ops.list_bundles()[str(bundle_id)], ActiveView)
        assert proxy.hosts() == ["a.example"]

    def test_startup_survives_proxy_failure(self, settings, manager, caplog):
        ops = Operations(settings, manager=manager, proxy=FakeProxyAdmin(fail=True))
        ops.startup()
        assert "Initial proxy configuration failed" in caplog.text

    def test_close_releases_directories(self, ops, proxy):
        bundle_id = ULID()
        ops.upload(bundle_id, _archive())
        path = ops.manager.status(bundle_id).path

        ops.close()

        assert not path.exists()
        assert proxy.closed

    def test_default_wiring(self, settings):
        ops = Operations(settings, proxy=FakeProxyAdmin())
        assert ops.store.root.as_posix() == settings.storage_dir
        assert ops.manager.compressor.min_size == settings.min_compress_size
