"""
Launch CLI

Implements the client and server verbs:
- server: Run the control server
- init: Write launch.json for the current project
- list/ls: List deployments on the control server
- it: Pack the build root and deploy it
- deorbit: Delete a deployment
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .cli_context import CLIContext
from .client import DEFAULT_ENDPOINT, PROJECT_FILE, ProjectConfig, find_project_root
from .models import parse_bundle_id
from .operations import run_and_exit
from .operations.printers import (
    print_bundles, print_deorbit_summary, print_deploy_summary, print_init_summary
)
from .packing import pack_bundle
from .settings import create_settings_from_env

app = typer.Typer(name="launch", help="Deploy static sites behind Caddy", no_args_is_help=True)


@app.callback()
def main_callback(
    ctx: typer.Context,
    endpoint: str = typer.Option(DEFAULT_ENDPOINT, "--endpoint", envvar="LAUNCH_ENDPOINT",
                                 help="Control server URL"),
) -> None:
    # Tests may pre-populate ctx.obj with a context wired to an in-process server
    if not isinstance(ctx.obj, CLIContext):
        ctx.obj = CLIContext(endpoint=endpoint)
        ctx.call_on_close(ctx.obj.close)


@app.command()
def server() -> None:
    """Run the control server (configured through LAUNCH_* environment variables)."""

    def _server() -> None:
        settings = create_settings_from_env()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        # Imported here so client-only installs never load the server stack
        from .server import run_server
        run_server(settings)

    run_and_exit(_server)


@app.command()
def init(
    name: str = typer.Argument(..., help="Friendly deployment name"),
    domain: str = typer.Argument(..., help="Domain to serve the site at"),
    root: str = typer.Option(".", "--root", help="Build directory, relative to the project root"),
    fallback: Optional[str] = typer.Option(None, "--fallback", help="Path served when nothing else matches"),
    force: bool = typer.Option(False, "--force", help=f"Overwrite an existing {PROJECT_FILE}"),
) -> None:
    """Write launch.json with a fresh deployment id."""

    def _init() -> None:
        project_root = find_project_root()
        if (project_root / PROJECT_FILE).exists() and not force:
            raise ValueError(f"{project_root / PROJECT_FILE} already exists; use --force to overwrite")

        project = ProjectConfig.create(name, domain, root=root, fallback=fallback)
        path = project.save(project_root)
        print_init_summary(str(path), project.id)

    run_and_exit(_init)


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List deployments."""

    def _list() -> None:
        print_bundles(ctx.obj.client.list())

    run_and_exit(_list)


@app.command("ls", hidden=True)
def ls_command(ctx: typer.Context) -> None:
    """List deployments (alias for list)."""
    list_command(ctx)


@app.command()
def it(ctx: typer.Context) -> None:
    """Pack the build directory and launch it."""

    def _it() -> None:
        project_root = find_project_root()
        project = ProjectConfig.load(project_root)
        src_dir = (project_root / project.root).resolve()

        with pack_bundle(src_dir, project.bundle_config()) as archive:
            view = ctx.obj.client.upload(project.bundle_id, archive)
        print_deploy_summary(project.id, view)

    run_and_exit(_it)


@app.command()
def deorbit(
    ctx: typer.Context,
    bundle_id: Optional[str] = typer.Argument(None, help=f"Deployment id (default: from {PROJECT_FILE})"),
) -> None:
    """Delete a deployment."""

    def _deorbit() -> None:
        if bundle_id is not None:
            target = parse_bundle_id(bundle_id)
        else:
            target = ProjectConfig.load(find_project_root()).bundle_id

        ctx.obj.client.delete(target)
        print_deorbit_summary(str(target))

    run_and_exit(_deorbit)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
