"""svrx CLI — Typer application."""

import logging

import typer
from rich.console import Console

from svrx.version import __version__

app = typer.Typer(
    name="svrx",
    help="svrx — plugin package manager for the svrx dev server.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", is_eager=True, help="Show version"),
    verbose: bool = typer.Option(False, "--verbose", help="Log resolution details"),
):
    """svrx CLI."""
    if version:
        console.print(f"svrx package manager v{__version__}")
        raise typer.Exit()

    from svrx.config import SvrxConfig
    level = "DEBUG" if verbose else SvrxConfig().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Plugin package manager ─────────────────────────────────────────────────────
from svrx.cli.commands import plugin as plugin_cmd  # noqa: E402

plugin_app = typer.Typer(name="plugin", help="Resolve and install svrx plugins.")
plugin_app.command("load", help="Resolve a plugin for the running svrx and print its location")(plugin_cmd.plugin_load)
plugin_app.command("install", help="Download and install a plugin into the local cache")(plugin_cmd.plugin_install)
plugin_app.command("ls", help="List plugin versions installed locally")(plugin_cmd.plugin_ls)
plugin_app.command("ls-remote", help="List plugin versions available for install")(plugin_cmd.plugin_ls_remote)
app.add_typer(plugin_app)


if __name__ == "__main__":
    app()
