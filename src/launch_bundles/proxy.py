"""
Caddy configuration synthesis and admin API client.

Projects the set of Active bundles into a complete Caddy JSON configuration
and replaces the running configuration through the admin API's ``/load``
endpoint. Caddy may reject a load momentarily while it starts, so pushes are
retried a fixed number of times with a fixed delay.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .errors import ProxyReconcileError
from .models import Algorithm
from .settings import Settings, TlsSettings

logger = logging.getLogger(__name__)

LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
DNS_RESOLVERS = ["1.1.1.1"]

__all__ = ["HostRoute", "CaddyConfig", "ProxyAdminClient", "LETSENCRYPT_PRODUCTION", "LETSENCRYPT_STAGING"]


@dataclass(frozen=True)
class HostRoute:
    """Routing facts for one Active bundle."""
    domain: str
    root: Path
    algorithms: Sequence[Algorithm] = ()
    fallback: Optional[str] = None


@dataclass(frozen=True)
class CaddyConfig:
    """
    Declarative Caddy configuration for a set of hosts.

    ``domains`` are the served domains matched by the single top-level route
    and used as TLS subjects; when empty, the hosts' own domains are used.
    """
    hosts: Sequence[HostRoute]
    storage_dir: str
    domains: Sequence[str] = field(default_factory=list)
    tls: Optional[TlsSettings] = None

    @classmethod
    def from_settings(cls, settings: Settings, hosts: Sequence[HostRoute]) -> CaddyConfig:
        return cls(hosts=hosts, storage_dir=settings.proxy_dir, domains=settings.domains, tls=settings.tls)

    @property
    def port(self) -> int:
        return 443 if self.tls is not None else 80

    @property
    def served_domains(self) -> List[str]:
        if self.domains:
            return list(self.domains)
        return sorted({host.domain for host in self.hosts})

    def to_json(self) -> Dict[str, Any]:
        """Render the full configuration document."""
        apps: Dict[str, Any] = {"http": self._http_app()}
        if self.tls is not None:
            apps["tls"] = _tls_app(self.tls, self.served_domains)

        return {
            "storage": {
                "module": "file_system",
                "root": str(self.storage_dir),
            },
            "apps": apps,
        }

    def _http_app(self) -> Dict[str, Any]:
        routes = [_host_route(host) for host in sorted(self.hosts, key=lambda h: h.domain)]

        return {
            "servers": {
                "srv0": {
                    "listen": [f":{self.port}"],
                    "routes": [{
                        "handle": [{
                            "handler": "subroute",
                            "routes": routes,
                        }],
                        "match": [{
                            "host": self.served_domains,
                        }],
                        "terminal": True,
                    }],
                }
            }
        }


def _host_route(host: HostRoute) -> Dict[str, Any]:
    routes = [_root_route(host.root)]
    if host.fallback:
        routes.append(_fallback_route(host.fallback))
    routes.append(_file_server_route(host.algorithms))

    return {
        "handle": [{
            "handler": "subroute",
            "routes": routes,
        }],
        "match": [{
            "host": [host.domain],
        }],
    }


def _root_route(root: Path) -> Dict[str, Any]:
    return {
        "handle": [{
            "handler": "vars",
            "root": str(root),
        }]
    }


def _fallback_route(fallback: str) -> Dict[str, Any]:
    """Rewrite requests that match neither a file nor a directory index to ``fallback``."""
    return {
        "handle": [{
            "handler": "rewrite",
            "uri": "{http.matchers.file.relative}",
        }],
        "match": [{
            "file": {
                "try_files": [
                    "{http.request.uri.path}",
                    "{http.request.uri.path}/index.html",
                    fallback,
                ]
            }
        }],
    }


def _file_server_route(algorithms: Sequence[Algorithm]) -> Dict[str, Any]:
    encodings = [algorithm.encoding for algorithm in algorithms]
    return {
        "handle": [{
            "handler": "file_server",
            "precompressed": {encoding: {} for encoding in encodings},
            "precompressed_order": encodings,
        }]
    }


def _tls_app(tls: TlsSettings, subjects: Sequence[str]) -> Dict[str, Any]:
    return {
        "automation": {
            "policies": [{
                "subjects": list(subjects),
                "issuers": [{
                    "module": "acme",
                    "email": tls.email,
                    "ca": LETSENCRYPT_STAGING if tls.staging else LETSENCRYPT_PRODUCTION,
                    "challenges": {
                        "dns": {
                            "provider": {
                                "name": "cloudflare",
                                "api_token": tls.token,
                            },
                            "resolvers": DNS_RESOLVERS,
                        }
                    },
                }],
            }]
        }
    }


class ProxyAdminClient:
    """
    HTTP client for the Caddy admin API.

    ``load`` replaces the whole running configuration. Transport errors and
    non-2xx responses count as failed attempts; after ``attempts`` failures
    the last error is surfaced as ``ProxyReconcileError``.
    """

    def __init__(self, endpoint: str, *, timeout_s: float = 10.0, attempts: int = 10,
                 delay_s: float = 0.25, client: Optional[httpx.Client] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        self.endpoint = endpoint.rstrip("/")
        self.attempts = attempts
        self.delay_s = delay_s
        self._sleep = sleep
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            headers={"User-Agent": "launch-bundles/0.1.0"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ProxyAdminClient:
        return cls(
            settings.proxy_endpoint,
            timeout_s=settings.http_timeout_s,
            attempts=settings.proxy_attempts,
            delay_s=settings.proxy_delay_s,
        )

    def load(self, document: Dict[str, Any]) -> None:
        """
        Submit ``document`` as the full Caddy configuration.

        Raises:
            ProxyReconcileError: If every attempt failed
        """
        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay_s),
            retry=retry_if_exception_type(httpx.HTTPError),
            before_sleep=self._log_attempt,
            reraise=True,
            **retry_kwargs,
        )

        try:
            for attempt in retrying:
                with attempt:
                    self._post_load(document)
        except httpx.HTTPError as e:
            logger.error(f"Caddy rejected configuration after {self.attempts} attempts: {e}")
            raise ProxyReconcileError(
                f"failed to load proxy configuration after {self.attempts} attempts: {e}",
                attempts=self.attempts,
            ) from e

    def _post_load(self, document: Dict[str, Any]) -> None:
        response = self.client.post(f"{self.endpoint}/load", json=document)
        if response.is_error:
            logger.debug(f"Caddy /load returned {response.status_code}: {response.text}")
        response.raise_for_status()

    def _log_attempt(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(f"Proxy config attempt {state.attempt_number}/{self.attempts} failed: {error}")

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
