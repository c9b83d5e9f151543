"""CLI commands for the svrx plugin package manager.

Accessed via: ``svrx plugin <subcommand>``
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console()


def _get_registry(config):
    from svrx.package_manager import NpmRegistryClient
    return NpmRegistryClient(config)


def _get_package_manager(
    plugin: str,
    core_version: str,
    version: Optional[str] = None,
    path: Optional[Path] = None,
):
    """Build a package manager from the environment (``SVRX_DIR``, ``SVRX_REGISTRY_URL``)."""
    from svrx.config import SvrxConfig
    from svrx.package_manager import create_package_manager
    config = SvrxConfig()
    return create_package_manager(
        plugin,
        core_version,
        version=version,
        path=path,
        config=config,
        registry=_get_registry(config),
    )


async def _resolve(plugin: str, core_version: str, version: Optional[str], path: Optional[Path]):
    from svrx.exceptions import SvrxError
    from pydantic import ValidationError
    try:
        pm = _get_package_manager(plugin, core_version, version=version, path=path)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task(f"Resolving plugin {plugin}...", total=None)
            return await pm.load()
    except (SvrxError, ValidationError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)


# ─── load ────────────────────────────────────────────────────────────────────


def plugin_load(
    plugin: str = typer.Argument(..., help="Plugin name without the svrx-plugin- prefix (e.g. 'hello')."),
    core_version: str = typer.Option(..., "--core-version", "-c", help="Version of the running svrx."),
    version: Optional[str] = typer.Option(None, "--version", "-v", help="Exact version or range."),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Load from a local package directory."),
):
    """Resolve a plugin for the running svrx, installing it if needed.

    Examples:

        svrx plugin load hello --core-version 1.0.0

        svrx plugin load hello -c 1.0.0 --version 1.0.1

        svrx plugin load mine -c 1.0.0 --path ./svrx-plugin-mine
    """
    handle = asyncio.run(_resolve(plugin, core_version, version, path))
    table = Table("Name", "Version", "Path")
    table.add_row(handle.name, handle.version or "-", str(handle.path))
    console.print(table)


# ─── install ─────────────────────────────────────────────────────────────────


def plugin_install(
    plugin: str = typer.Argument(..., help="Plugin name without the svrx-plugin- prefix."),
    core_version: str = typer.Option(..., "--core-version", "-c", help="Version of the running svrx."),
    version: Optional[str] = typer.Option(None, "--version", "-v", help="Exact version or range."),
):
    """Download and install a plugin into the local cache.

    Without ``--version`` the newest release that supports the given svrx is installed.

    Example:

        svrx plugin install demo --core-version 0.0.3
    """
    handle = asyncio.run(_resolve(plugin, core_version, version, None))
    console.print(
        f"[green]✓[/green] Successfully installed [bold]{handle.name}@{handle.version}[/bold] "
        f"at {handle.path}"
    )


# ─── ls ──────────────────────────────────────────────────────────────────────


def plugin_ls(
    plugin: str = typer.Argument(..., help="Plugin name without the svrx-plugin- prefix."),
    core_version: Optional[str] = typer.Option(
        None, "--core-version", "-c", help="Mark the best fit for this svrx version."
    ),
):
    """List versions of a plugin installed in the local cache."""
    from svrx.config import SvrxConfig
    from svrx.exceptions import RegistryNotFound, RegistryUnavailable
    from svrx.package_manager import LocalStore, best_fit

    config = SvrxConfig()
    snapshot = LocalStore(plugin, config.plugins_dir).snapshot()

    if not snapshot.entries:
        console.print(f"[dim]There is no version of plugin {plugin} installed.[/dim]")
        console.print(f'You can install the latest one using: "svrx plugin install {plugin} -c <svrx version>".')
        return

    best = best_fit(snapshot.entries, core_version) if core_version else None
    versions = snapshot.versions()
    ranges = {e.version: e.svrx_range for e in snapshot.entries}

    table = Table("Version", "svrx", "")
    for v in versions:
        table.add_row(v, ranges.get(v) or "*", "[green]best fit[/green]" if v == best else "")
    console.print(f"Versions of plugin {plugin} installed:\n")
    console.print(table)

    async def _latest():
        return await _get_registry(config).fetch_tags(plugin)

    try:
        tags = asyncio.run(_latest())
    except (RegistryNotFound, RegistryUnavailable) as exc:
        console.print(f"[dim]Could not check the registry: {exc}[/dim]")
        return
    latest = tags.get("latest")
    if latest and latest not in versions:
        console.print(
            f'There is a new version of plugin {plugin} ({latest}), '
            f'run "svrx plugin install {plugin} -v {latest}" to install it.'
        )


# ─── ls-remote ───────────────────────────────────────────────────────────────


def plugin_ls_remote(
    plugin: str = typer.Argument(..., help="Plugin name without the svrx-plugin- prefix."),
):
    """List published versions and dist-tags of a plugin."""
    from svrx.exceptions import SvrxError
    from svrx.package_manager import semver

    async def _run():
        from svrx.config import SvrxConfig
        registry = _get_registry(SvrxConfig())
        with Progress(
            SpinnerColumn(),
            TextColumn(f"Looking for versions of {plugin}..."),
            transient=True,
        ) as progress:
            progress.add_task("", total=None)
            entries = await registry.fetch_versions(plugin)
            tags = await registry.fetch_tags(plugin)
        return semver.sort_entries(entries), tags

    try:
        entries, tags = asyncio.run(_run())
    except SvrxError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    table = Table("Version", "svrx")
    for entry in reversed(entries):
        table.add_row(entry.version, entry.svrx_range or "*")
    console.print(f"Available versions of plugin {plugin}:\n")
    console.print(table)

    if tags:
        console.print("\nTags:\n")
        for tag, version in tags.items():
            console.print(f"{tag}: {version}")
