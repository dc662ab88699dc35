"""
Error mapping utilities.

Provides centralized exception-to-kind mapping for HTTP error bodies, and
kind-to-exit-code mapping for the client CLI, so every surface reports the
same taxonomy.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, TypeVar

import typer

T = TypeVar('T')

# Exception class name -> error kind; matched along the MRO
ERROR_KINDS = {
    "BundleNotFoundError": "not_found",
    "MalformedBundleError": "malformed",
    "DomainConflictError": "domain_conflict",
    "ProxyReconcileError": "proxy",
    "IngressError": "ingress",
    "ValidationError": "invalid",
    "ValueError": "invalid",
    "HTTPError": "transport",
    "FileNotFoundError": "not_found",
    "OSError": "storage",
}

EXIT_CODES = {
    "not_found": 1,
    "invalid": 2,
    "transport": 3,
    "internal": 3,
    "malformed": 4,
    "domain_conflict": 5,
    "proxy": 6,
    "ingress": 6,
    "storage": 7,
}

MESSAGES = {
    "not_found": "Not found",
    "invalid": "Invalid input",
    "transport": "Could not reach the launch server",
    "internal": "Deployment failed",
    "malformed": "Bundle archive is malformed",
    "domain_conflict": "Domain is already taken by another deployment",
    "proxy": "Deployed, but the proxy rejected the new configuration",
    "ingress": "Ingress reconciliation failed",
    "storage": "Server storage error",
}


def error_kind(exc: BaseException) -> str:
    """
    Map exception to a stable error kind.

    Exceptions carrying a ``kind`` attribute (client-side ``RemoteError``)
    keep it; otherwise the first class along the MRO with a known name wins,
    and anything else is ``internal``.
    """
    kind = getattr(exc, "kind", None)
    if isinstance(kind, str):
        return kind

    for cls in type(exc).__mro__:
        if cls.__name__ in ERROR_KINDS:
            return ERROR_KINDS[cls.__name__]
    return "internal"


def error_body(exc: BaseException) -> Dict[str, Any]:
    """JSON body for an HTTP error response."""
    return {"error": error_kind(exc), "message": str(exc) or type(exc).__name__}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns exit codes:
    - 1: Bundle not found
    - 2: Invalid input
    - 3: Transport or unknown error
    - 4: Malformed bundle archive
    - 5: Domain conflict
    - 6: Proxy or ingress reconciliation failure
    - 7: Server storage error

    Args:
        exc: Exception to map

    Returns:
        Exit code, with 3 as fallback for unknown exceptions
    """
    return EXIT_CODES.get(error_kind(exc), 3)


def describe(exc: BaseException) -> str:
    """Readable one-line description for CLI output."""
    kind = error_kind(exc)
    headline = MESSAGES.get(kind, MESSAGES["internal"])
    detail = str(exc)
    return f"{headline}: {detail}" if detail else headline


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit. This centralizes error handling so
    CLI commands don't need individual try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e
