"""
End-to-end tests for the control server HTTP API.

Drives the FastAPI app through ``TestClient`` with a real archive store and
compressor, and a fake proxy admin client.
"""
from __future__ import annotations

import gzip
import os

import pytest
from fastapi.testclient import TestClient
from ulid import ULID

from launch_bundles import server
from launch_bundles.compressor import Compressor
from launch_bundles.manager import BundleManager
from launch_bundles.operations import Operations
from launch_bundles.server import create_app
from launch_bundles.storage import FileArchiveStore

from .fakes import FakeProxyAdmin
from .helpers.archives import COMPRESSIBLE_TEXT, bundle_config, make_archive


def _serve(settings, proxy):
    ops = Operations(settings, manager=BundleManager(FileArchiveStore(settings.storage_dir), Compressor(min_size=0)),
                     proxy=proxy)
    return TestClient(create_app(ops))


@pytest.fixture
def client(settings, proxy):
    with _serve(settings, proxy) as test_client:
        yield test_client


def _upload(client, bundle_id, domain="a.example"):
    return client.post(f"/bundle/{bundle_id}", content=make_archive(config=bundle_config(domain)))


class TestRoutes:
    """Test each route in isolation."""

    def test_empty_listing(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {}

    def test_upload_returns_active_view(self, client):
        bundle_id = ULID()

        response = _upload(client, bundle_id)

        assert response.status_code == 200
        body = response.json()
        assert body["config"] == {
            "name": "site", "domain": "a.example", "compress": ["html", "js", "css"], "fallback": None,
        }
        assert body["stats"]["size"] == len(COMPRESSIBLE_TEXT)
        assert body["stats"]["compressible"] == len(COMPRESSIBLE_TEXT)
        assert set(body["stats"]["compressed"]) == {"zstd", "gzip"}

    def test_malformed_upload(self, client):
        bundle_id = ULID()

        response = client.post(f"/bundle/{bundle_id}", content=b"not an archive")

        assert response.status_code == 500
        assert response.json()["error"] == "malformed"
        assert response.json()["message"]
        assert client.get("/").json()[str(bundle_id)]["error"]

    def test_truncated_gzip_upload_is_malformed(self, client):
        data = gzip.compress(make_archive(files={"noise.bin": os.urandom(64 * 1024)}, config=bundle_config()), mtime=0)

        response = client.post(f"/bundle/{ULID()}", content=data[: len(data) // 2])

        assert response.status_code == 500
        assert response.json()["error"] == "malformed"

    def test_delete(self, client):
        bundle_id = ULID()
        _upload(client, bundle_id)

        response = client.delete(f"/bundle/{bundle_id}")

        assert response.status_code == 200
        assert response.json() == {"deleted": str(bundle_id)}
        assert client.get("/").json() == {}

    @pytest.mark.parametrize("method,path", [
        ("GET", "/nope"),
        ("GET", f"/bundle/{ULID()}"),
        ("PUT", f"/bundle/{ULID()}"),
        ("POST", "/bundle/not-a-ulid"),
        ("DELETE", "/bundle/not-a-ulid"),
        ("POST", "/"),
    ])
    def test_unknown_routes_are_404(self, client, method, path):
        response = client.request(method, path)
        assert response.status_code == 404

    def test_large_upload_spools_off_event_loop(self, client, monkeypatch):
        """Test that a body larger than the in-memory spool is written from the threadpool."""
        dispatched = []
        real = server.run_in_threadpool

        async def recording(func, *args, **kwargs):
            dispatched.append(getattr(func, "__name__", ""))
            return await real(func, *args, **kwargs)

        monkeypatch.setattr(server, "SPOOL_MAX_SIZE", 1024)
        monkeypatch.setattr(server, "run_in_threadpool", recording)
        files = {"index.html": COMPRESSIBLE_TEXT, "big.bin": os.urandom(64 * 1024)}

        response = client.post(f"/bundle/{ULID()}", content=make_archive(files=files, config=bundle_config()))

        assert response.status_code == 200
        assert response.json()["stats"]["size"] == len(COMPRESSIBLE_TEXT) + 64 * 1024
        assert "write" in dispatched
        assert "upload" in dispatched

    def test_proxy_failure_is_500(self, settings):
        with _serve(settings, FakeProxyAdmin(fail=True)) as client:
            response = _upload(client, ULID())
        assert response.status_code == 500
        assert response.json()["error"] == "proxy"


class TestScenarios:
    """End-to-end scenarios across requests and restarts."""

    def test_domain_conflict(self, client):
        """Upload, then a second id claiming the same domain is rejected."""
        id1, id2 = ULID(), ULID()

        assert _upload(client, id1).status_code == 200
        listing = client.get("/").json()
        assert list(listing) == [str(id1)]
        assert listing[str(id1)]["config"]["domain"] == "a.example"

        response = _upload(client, id2)
        assert response.status_code == 500
        assert response.json()["error"] == "domain_conflict"
        assert str(id1) in response.json()["message"]

        listing = client.get("/").json()
        assert listing[str(id1)]["config"]["domain"] == "a.example"
        assert "error" in listing[str(id2)]

    def test_delete_reconfigures_proxy_with_no_hosts(self, client, proxy):
        id1 = ULID()
        _upload(client, id1)
        assert proxy.hosts() == ["a.example"]

        assert client.delete(f"/bundle/{id1}").status_code == 200

        assert client.get("/").json() == {}
        assert proxy.hosts() == []

    def test_restart_with_valid_and_corrupt_archives(self, settings, store):
        good, corrupt = ULID(), ULID()
        valid = make_archive(config=bundle_config("a.example"))
        store.add(good, [valid])
        store.add(corrupt, [valid[:300]])

        proxy = FakeProxyAdmin()
        with _serve(settings, proxy) as client:
            listing = client.get("/").json()

        assert sorted(listing) == sorted([str(good), str(corrupt)])
        assert listing[str(good)]["config"]["domain"] == "a.example"
        assert listing[str(corrupt)]["error"]
        assert proxy.hosts() == ["a.example"]

    def test_listing_sorted_by_id(self, client):
        ids = [ULID() for _ in range(3)]
        for index, bundle_id in enumerate(ids):
            _upload(client, bundle_id, domain=f"site{index}.example")

        assert list(client.get("/").json()) == [str(i) for i in sorted(ids)]

    def test_shutdown_releases_directories(self, settings, proxy):
        bundle_id = ULID()
        with _serve(settings, proxy) as client:
            _upload(client, bundle_id)
            host = proxy.last["apps"]["http"]["servers"]["srv0"]["routes"][0]["handle"][0]["routes"][0]
            path = host["handle"][0]["routes"][0]["handle"][0]["root"]

        assert not os.path.exists(path)
