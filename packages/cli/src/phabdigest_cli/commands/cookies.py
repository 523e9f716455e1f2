"""cookies command — show which Firefox profile would supply session cookies."""

from __future__ import annotations

from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from phabdigest_core.config import load_config
from phabdigest_core.utils.revision import cookie_domain
from phabdigest_store.firefox import FirefoxCookieStore
from phabdigest_store.profiles import select_profile

console = Console()


def mask(value: str, visible: int = 4) -> str:
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * min(len(value) - visible, 12)


@click.command("cookies")
@click.option("--domain", default=None, help="Cookie domain (default: host of the configured base URL).")
@click.pass_context
def cookies_cmd(ctx, domain: str | None):
    """Show Firefox profiles and the session cookies they hold for a domain.

    Useful when code suggestions are missing from `phabdigest extract`
    output: the profile marked as selected is the one extract would use.
    Cookie values are masked.
    """
    config_path = ctx.obj.get("config_path", ".phabdigest.yml") if ctx.obj else ".phabdigest.yml"
    config = load_config(config_path)
    domain = domain or config.get("cookie_domain") or cookie_domain(config["base_url"])

    profiles = FirefoxCookieStore().scan(domain)
    if not profiles:
        console.print("[yellow]No Firefox profiles with a cookie database found.[/yellow]")
        return

    selected = select_profile(profiles)

    table = Table(title=f"Firefox Profiles — {domain}", show_header=True, header_style="bold cyan")
    table.add_column("Profile", style="bold")
    table.add_column("Last Modified", width=20)
    table.add_column("Cookies", justify="right", width=8)
    table.add_column("Selected", width=8)

    for profile in profiles:
        table.add_row(
            profile.path.name,
            datetime.fromtimestamp(profile.mtime).strftime("%Y-%m-%d %H:%M:%S"),
            str(len(profile.cookies)),
            "[green]yes[/green]" if profile is selected else "",
        )
    console.print(table)

    if selected is None:
        console.print(
            f"[yellow]No profile has cookies for {domain}. "
            "Log in with Firefox or set PHABRICATOR_COOKIES.[/yellow]"
        )
        return

    detail = Table(title=f"Cookies — {selected.path.name}", show_header=True, header_style="bold cyan")
    detail.add_column("Name", style="bold")
    detail.add_column("Host")
    detail.add_column("Value")
    for cookie in sorted(selected.cookies, key=lambda c: c.name):
        detail.add_row(cookie.name, cookie.host, mask(cookie.value))
    console.print(detail)
