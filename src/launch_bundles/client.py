"""
Control server client and project configuration.

``LaunchClient`` speaks the control server's HTTP API; ``ProjectConfig`` is
the ``launch.json`` file that pins a project to one deployment id.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional

import httpx
from pydantic import BaseModel, Field, field_validator
from ulid import ULID

from .errors import RemoteError
from .models import (
    DEFAULT_COMPRESS_EXTENSIONS,
    ActiveView,
    BundleConfig,
    BundleView,
    parse_bundle_id,
    parse_bundle_view,
)

logger = logging.getLogger(__name__)

PROJECT_FILE = "launch.json"
DEFAULT_ENDPOINT = "http://localhost:8088"
UPLOAD_CHUNK_SIZE = 1024 * 1024

__all__ = ["LaunchClient", "ProjectConfig", "find_project_root", "PROJECT_FILE", "DEFAULT_ENDPOINT"]


def find_project_root(start: Optional[Path] = None) -> Path:
    """Nearest ancestor of ``start`` (default: cwd) holding ``.git``, else ``start`` itself."""
    start = (start or Path.cwd()).resolve()
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    return start


class ProjectConfig(BaseModel):
    """
    Contents of ``launch.json``.

    The bundle configuration fields are stored flat next to the deployment
    id and the build root (relative to the project root).
    """
    id: str = Field(..., description="Deployment id, fixed at init")
    root: str = Field(default=".", description="Directory to pack, relative to the project root")
    name: str
    domain: str
    compress: List[str] = Field(default_factory=lambda: list(DEFAULT_COMPRESS_EXTENSIONS))
    fallback: Optional[str] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return str(parse_bundle_id(v))

    @classmethod
    def create(cls, name: str, domain: str, *, root: str = ".", fallback: Optional[str] = None) -> ProjectConfig:
        """New project config with a fresh deployment id; validates the bundle fields."""
        config = BundleConfig(name=name, domain=domain, compress=list(DEFAULT_COMPRESS_EXTENSIONS), fallback=fallback)
        return cls(id=str(ULID()), root=root, **config.model_dump())

    @property
    def bundle_id(self) -> ULID:
        return parse_bundle_id(self.id)

    def bundle_config(self) -> BundleConfig:
        return BundleConfig(name=self.name, domain=self.domain, compress=self.compress, fallback=self.fallback)

    @classmethod
    def load(cls, project_root: Path) -> ProjectConfig:
        """
        Read ``launch.json`` from ``project_root``.

        Raises:
            FileNotFoundError: If the project was never initialized
            ValueError: If the file is not valid JSON or fails validation
        """
        path = project_root / PROJECT_FILE
        if not path.exists():
            raise FileNotFoundError(f"{path} not found; run 'launch init' first")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"{path} is not valid JSON: {e}") from e
        return cls.model_validate(data)

    def save(self, project_root: Path) -> Path:
        path = project_root / PROJECT_FILE
        path.write_text(json.dumps(self.model_dump(), indent=2) + "\n", encoding="utf-8")
        return path


class LaunchClient:
    """
    HTTP client for the control server API.

    Server-side failures surface as ``RemoteError`` carrying the server's
    error kind; transport failures stay ``httpx.HTTPError``.
    """

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, *, timeout_s: float = 300.0,
                 client: Optional[httpx.Client] = None):
        self.endpoint = endpoint.rstrip("/")
        # Uploads block until compression and reconciliation finish server-side
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            headers={"User-Agent": "launch-bundles/0.1.0"},
        )

    def list(self) -> Dict[str, BundleView]:
        """All deployments keyed by id string."""
        data = self._request("GET", "/")
        return {bundle_id: parse_bundle_view(view) for bundle_id, view in data.items()}

    def upload(self, bundle_id: ULID, archive: BinaryIO) -> ActiveView:
        """Upload ``archive`` as the bundle for ``bundle_id`` and return its Active view."""
        data = self._request(
            "POST",
            f"/bundle/{bundle_id}",
            content=_chunks(archive),
            headers={"Content-Type": "application/x-tar"},
        )
        return ActiveView.model_validate(data)

    def delete(self, bundle_id: ULID) -> None:
        self._request("DELETE", f"/bundle/{bundle_id}")

    def _request(self, method: str, url: str, **kwargs) -> dict:
        logger.debug(f"{method} {self.endpoint}{url}")
        response = self.client.request(method, f"{self.endpoint}{url}", **kwargs)

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        default_kind = "not_found" if response.status_code == 404 else "internal"
        raise RemoteError(
            body.get("message") or response.text or f"HTTP {response.status_code}",
            kind=body.get("error") or default_kind,
            status_code=response.status_code,
        )

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _chunks(fileobj: BinaryIO) -> Iterator[bytes]:
    while True:
        chunk = fileobj.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk
