"""CLI entry point for phabdigest.

Commands:
  extract  — reconcile a revision's comments and suggestions into Markdown
  cookies  — show which Firefox profile provides the session cookies
"""

from __future__ import annotations

import importlib.metadata

import click

from phabdigest_cli.commands.cookies import cookies_cmd
from phabdigest_cli.commands.extract import extract_cmd
from phabdigest_cli.log import setup_logging


@click.group()
@click.version_option(
    version=importlib.metadata.version("phabdigest"),
    prog_name="phabdigest",
)
@click.option(
    "--config",
    "config_path",
    default=".phabdigest.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PHABDIGEST_CONFIG",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug).")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: int):
    """Extract Phabricator review comments, including code suggestions, as Markdown."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(extract_cmd)
main.add_command(cookies_cmd)
