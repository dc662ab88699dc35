"""
Settings and configuration for the Launch control server.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables once at server startup.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

__all__ = ["Settings", "TlsSettings", "create_settings_from_env", "DEFAULT_PORT"]

DEFAULT_PORT = 8088

_DOMAIN_PATTERN = re.compile(
    r"^(?:\*\.)?(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)


def is_valid_domain(domain: str) -> bool:
    """Check that ``domain`` is a hostname or a ``*.``-prefixed wildcard hostname."""
    return bool(domain) and len(domain) <= 253 and bool(_DOMAIN_PATTERN.match(domain))


@dataclass(frozen=True)
class TlsSettings:
    """
    ACME automation settings for the proxy.

    token: Cloudflare API token used for the DNS-01 challenge
    email: ACME account email
    staging: Use the Let's Encrypt staging CA instead of production
    """
    token: str
    email: str
    staging: bool = False

    def __post_init__(self):
        if not self.token:
            raise ValueError("TLS token is required")
        if not self.email or "@" not in self.email:
            raise ValueError(f"Invalid TLS account email: {self.email!r}")


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for the control server.

    Storage:
        storage_dir: Directory holding one archive per bundle
        min_compress_size: Files smaller than this are never precompressed

    Proxy (Caddy):
        domains: Domains served by the proxy (also used as TLS subjects)
        proxy_endpoint: Caddy admin API base URL
        proxy_dir: Caddy's certificate/storage directory
        http_timeout_s: Timeout for a single admin API request
        proxy_attempts: Attempts before a config push is reported as failed
        proxy_delay_s: Fixed delay between attempts
        tls: Optional ACME automation settings

    Cluster:
        kube_service: Service the ingress rules forward to; enables ingress mode

    Server:
        port: Control server listening port
        log_level: Root logging level name
    """
    storage_dir: str = "/var/www/bundles"
    domains: List[str] = field(default_factory=list)
    proxy_endpoint: str = "http://localhost:2019"
    proxy_dir: str = "/etc/caddy"
    http_timeout_s: float = 10.0
    proxy_attempts: int = 10
    proxy_delay_s: float = 0.25
    tls: Optional[TlsSettings] = None
    kube_service: Optional[str] = None
    port: int = DEFAULT_PORT
    min_compress_size: int = 1400
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.storage_dir:
            raise ValueError("storage_dir is required")

        if not re.match(r"^https?://[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$", self.proxy_endpoint or ""):
            raise ValueError(f"Invalid proxy_endpoint format: {self.proxy_endpoint}")

        for domain in self.domains:
            if not is_valid_domain(domain):
                raise ValueError(f"Invalid domain: {domain!r}")

        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.proxy_attempts < 1:
            raise ValueError(f"proxy_attempts must be at least 1, got {self.proxy_attempts}")

        if self.proxy_delay_s < 0:
            raise ValueError(f"proxy_delay_s must be non-negative, got {self.proxy_delay_s}")

        if self.min_compress_size < 0:
            raise ValueError(f"min_compress_size must be non-negative, got {self.min_compress_size}")

        if self.kube_service is not None and not self.kube_service:
            raise ValueError("kube_service must not be empty when set")

    @property
    def ingress_enabled(self) -> bool:
        return self.kube_service is not None


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        Storage:
        - LAUNCH_STORAGE_DIR (default: /var/www/bundles)
        - LAUNCH_MIN_COMPRESS_SIZE (default: 1400)

        Proxy:
        - LAUNCH_DOMAINS (comma separated, default: none)
        - LAUNCH_PROXY_ENDPOINT (default: http://localhost:2019)
        - LAUNCH_PROXY_DIR (default: /etc/caddy)
        - LAUNCH_HTTP_TIMEOUT (default: 10.0)
        - LAUNCH_PROXY_ATTEMPTS (default: 10)
        - LAUNCH_PROXY_DELAY (default: 0.25)
        - LAUNCH_TLS_TOKEN, LAUNCH_TLS_EMAIL (optional, both or neither)
        - LAUNCH_TLS_STAGING (default: false)

        Cluster:
        - LAUNCH_SERVICE (optional, enables ingress reconciliation)

        Server:
        - LAUNCH_PORT (default: 8088)
        - LAUNCH_LOG_LEVEL (default: INFO)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    domains = [d.strip() for d in os.getenv("LAUNCH_DOMAINS", "").split(",") if d.strip()]

    tls_token = os.getenv("LAUNCH_TLS_TOKEN")
    tls_email = os.getenv("LAUNCH_TLS_EMAIL")
    if bool(tls_token) != bool(tls_email):
        raise ValueError("LAUNCH_TLS_TOKEN and LAUNCH_TLS_EMAIL must be set together")

    tls = None
    if tls_token and tls_email:
        tls = TlsSettings(
            token=tls_token,
            email=tls_email,
            staging=str_to_bool(os.getenv("LAUNCH_TLS_STAGING", "false")),
        )

    return Settings(
        storage_dir=os.getenv("LAUNCH_STORAGE_DIR", "/var/www/bundles"),
        domains=domains,
        proxy_endpoint=os.getenv("LAUNCH_PROXY_ENDPOINT", "http://localhost:2019"),
        proxy_dir=os.getenv("LAUNCH_PROXY_DIR", "/etc/caddy"),
        http_timeout_s=get_float("LAUNCH_HTTP_TIMEOUT", 10.0),
        proxy_attempts=get_int("LAUNCH_PROXY_ATTEMPTS", 10),
        proxy_delay_s=get_float("LAUNCH_PROXY_DELAY", 0.25),
        tls=tls,
        kube_service=os.getenv("LAUNCH_SERVICE") or None,
        port=get_int("LAUNCH_PORT", DEFAULT_PORT),
        min_compress_size=get_int("LAUNCH_MIN_COMPRESS_SIZE", 1400),
        log_level=os.getenv("LAUNCH_LOG_LEVEL", "INFO").upper(),
    )
