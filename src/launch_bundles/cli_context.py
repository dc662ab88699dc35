"""
CLI Context for managing client dependencies.

Provides a clean way to manage CLI-level dependencies like the control server
client, avoiding global state and enabling proper dependency injection.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .client import DEFAULT_ENDPOINT, LaunchClient


@dataclass
class CLIContext:
    """
    Shared context for client CLI commands.

    The client is created on first access and reused for the rest of the
    command, so tests can inject a client wired to an in-process server.
    """
    endpoint: str = DEFAULT_ENDPOINT
    _client: Optional[LaunchClient] = None

    @property
    def client(self) -> LaunchClient:
        if self._client is None:
            self._client = LaunchClient(self.endpoint)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
