"""
Operations package - Application service layer between the HTTP/CLI
surfaces and the deploy core.

This package provides the Operations facade that serializes and orchestrates
control-server requests, centralizes error mapping, and handles CLI output
formatting.
"""
from .facade import Operations
from .mappers import error_body, error_kind, exit_code_for, run_and_exit

__all__ = ["Operations", "error_body", "error_kind", "exit_code_for", "run_and_exit"]
