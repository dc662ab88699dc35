"""
Launch error classes.

Provides a clear taxonomy of errors that can occur while deploying bundles.
Input errors (missing or malformed archives, domain conflicts) end up as a
Failed bundle status; storage errors stay plain ``OSError``; reconciliation
errors are raised for the proxy and only logged for the ingress layer.
"""
from __future__ import annotations


class LaunchError(Exception):
    """Base class for all Launch errors."""
    pass


class BundleNotFoundError(LaunchError, FileNotFoundError):
    """
    Bundle archive or its metadata member does not exist.

    Raised when:
    - No archive is stored under the requested identifier
    - The archive has no ``launch.config`` member
    """
    pass


class MalformedBundleError(LaunchError):
    """
    Archive content cannot be used.

    Raised when:
    - The archive is not a readable tar container (truncated, corrupt)
    - ``launch.config`` is not valid JSON or fails validation
    - A member would be extracted outside the destination directory
    """
    pass


class DomainConflictError(LaunchError):
    """Another Active bundle already claims the requested domain."""

    def __init__(self, domain: str, holder: str):
        super().__init__(f"domain {domain} already in use by bundle {holder}")
        self.domain = domain
        self.holder = holder


class ProxyReconcileError(LaunchError):
    """
    The proxy admin API rejected the configuration on every attempt.

    Carries the number of attempts made; the last underlying error is chained
    as ``__cause__``.
    """

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class IngressError(LaunchError):
    """Cluster tooling failed while applying or pruning ingress manifests."""
    pass


class RemoteError(LaunchError):
    """
    The control server answered a client request with an error.

    ``kind`` is the server-side error kind (``domain_conflict``, ``malformed``,
    ...), so callers can tell failures apart without parsing the message.
    """

    def __init__(self, message: str, kind: str = "internal", status_code: int = 500):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


__all__ = [
    "LaunchError",
    "BundleNotFoundError",
    "MalformedBundleError",
    "DomainConflictError",
    "ProxyReconcileError",
    "IngressError",
    "RemoteError",
]
