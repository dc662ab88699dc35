"""
Launch Bundles.

Deploys static web bundles: archives are uploaded to a control server, which
stores them, unpacks and precompresses their assets, and reconfigures Caddy
(and optionally a Kubernetes ingress layer) so each bundle is served at its
configured domain.
"""
from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
