# Fake implementations for testing

from .fake_ingress import FakeIngressBackend
from .fake_proxy import FakeProxyAdmin

__all__ = ["FakeIngressBackend", "FakeProxyAdmin"]
