"""
Data models for bundle deployment.

These Pydantic models define the JSON contracts shared by the client and the
control server: the bundle configuration embedded in every archive, the
statistics computed per deploy, and the public per-bundle view returned by
the HTTP API.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator
from ulid import ULID

from .settings import is_valid_domain

# Name of the metadata member at the root of every bundle archive
CONFIG_MEMBER = "launch.config"

DEFAULT_COMPRESS_EXTENSIONS = ["html", "js", "json", "css", "woff", "woff2", "svg"]


class Algorithm(str, Enum):
    """Precompression algorithms, declared best-ratio first."""
    ZSTD = "zstd"
    GZIP = "gzip"

    @property
    def extension(self) -> str:
        """Suffix appended to the original file name for the side-car."""
        return {Algorithm.ZSTD: "zst", Algorithm.GZIP: "gz"}[self]

    @property
    def encoding(self) -> str:
        """Caddy ``precompressed`` module name for this algorithm."""
        return self.value


DEFAULT_ALGORITHMS = [Algorithm.ZSTD, Algorithm.GZIP]


def parse_bundle_id(value: str) -> ULID:
    """
    Parse a bundle identifier.

    Raises:
        ValueError: If ``value`` is not a valid ULID string
    """
    try:
        return ULID.from_str(value.strip())
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid bundle id: {value!r}") from e


class BundleConfig(BaseModel):
    """
    Client-authored bundle configuration.

    Stored as ``launch.config`` inside each uploaded archive; replaced
    wholesale when an archive is re-uploaded under the same identifier.
    """
    name: str = Field(..., description="Friendly name for the bundle")
    domain: str = Field(..., description="Host (or *. wildcard) the bundle is served at")
    compress: List[str] = Field(default_factory=list, description="File extensions to precompress")
    fallback: Optional[str] = Field(default=None, description="Path served when nothing else matches")

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip().lower()
        if not is_valid_domain(v):
            raise ValueError(f"invalid domain: {v!r}")
        return v

    @field_validator("compress")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        extensions = []
        for ext in v:
            ext = ext.strip().lstrip(".").lower()
            if ext and ext not in extensions:
                extensions.append(ext)
        return extensions

    @field_validator("fallback")
    @classmethod
    def validate_fallback(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        return v if v.startswith("/") else f"/{v}"


class Statistics(BaseModel):
    """Per-deploy size statistics, recomputed on every deploy."""
    size: int = Field(default=0, description="Total bytes of all files")
    compressible: int = Field(default=0, description="Total bytes of files eligible for compression")
    compressed: Dict[Algorithm, int] = Field(default_factory=dict, description="Compressed bytes by algorithm")

    def savings(self, algorithm: Algorithm) -> Optional[float]:
        """Fraction of the total bundle size saved when serving ``algorithm`` side-cars."""
        if algorithm not in self.compressed or self.size == 0:
            return None
        return (self.compressible - self.compressed[algorithm]) / self.size


class ActiveView(BaseModel):
    """Public view of an Active bundle."""
    config: BundleConfig
    stats: Statistics


class FailedView(BaseModel):
    """Public view of a Failed bundle."""
    error: str


BundleView = Union[ActiveView, FailedView]


def parse_bundle_view(data: Mapping[str, Any]) -> BundleView:
    """Parse a public bundle view; Failed views are recognized by their ``error`` key."""
    if "error" in data:
        return FailedView.model_validate(data)
    return ActiveView.model_validate(data)


__all__ = [
    "CONFIG_MEMBER",
    "DEFAULT_COMPRESS_EXTENSIONS",
    "Algorithm",
    "DEFAULT_ALGORITHMS",
    "parse_bundle_id",
    "BundleConfig",
    "Statistics",
    "ActiveView",
    "FailedView",
    "BundleView",
    "parse_bundle_view",
]
