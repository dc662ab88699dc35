"""Root pytest configuration for launch-bundles tests."""
from __future__ import annotations

from pathlib import Path

import pytest
from ulid import ULID

from launch_bundles.compressor import Compressor
from launch_bundles.ingress import IngressReconciler
from launch_bundles.manager import BundleManager
from launch_bundles.operations import Operations
from launch_bundles.settings import Settings
from launch_bundles.storage import FileArchiveStore

from .fakes import FakeIngressBackend, FakeProxyAdmin


# Keep tests independent of the developer's environment
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Clear LAUNCH_* variables for every test."""
    import os
    for key in list(os.environ):
        if key.startswith("LAUNCH_"):
            monkeypatch.delenv(key)


@pytest.fixture
def storage_dir(tmp_path) -> Path:
    return tmp_path / "bundles"


@pytest.fixture
def settings(storage_dir, tmp_path):
    """Standard test settings."""
    return Settings(
        storage_dir=str(storage_dir),
        proxy_dir=str(tmp_path / "caddy"),
        proxy_attempts=1,
        proxy_delay_s=0.0,
    )


@pytest.fixture
def store(storage_dir):
    return FileArchiveStore(storage_dir)


@pytest.fixture
def compressor():
    return Compressor(min_size=0)


@pytest.fixture
def manager(store, compressor):
    bundles = BundleManager(store, compressor)
    yield bundles
    bundles.close()


@pytest.fixture
def proxy():
    return FakeProxyAdmin()


@pytest.fixture
def ingress_backend():
    return FakeIngressBackend()


@pytest.fixture
def ops(settings, manager, proxy):
    """Operations facade with a fake proxy and ingress disabled."""
    return Operations(settings, manager=manager, proxy=proxy)


@pytest.fixture
def cluster_ops(settings, manager, proxy, ingress_backend):
    """Operations facade with a fake proxy and a fake cluster."""
    return Operations(
        settings,
        manager=manager,
        proxy=proxy,
        ingress=IngressReconciler("web", backend=ingress_backend),
    )


@pytest.fixture
def new_id():
    """Factory for fresh bundle ids."""
    return lambda: ULID()
