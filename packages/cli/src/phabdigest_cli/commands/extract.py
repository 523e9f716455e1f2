"""extract command — turn a Differential revision's discussion into Markdown."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console

from phabdigest_cli.auth import resolve_api_token
from phabdigest_core.config import load_config
from phabdigest_core.errors import PhabdigestError
from phabdigest_core.extractor import CommentExtractor
from phabdigest_core.phab.changeset import cookie_header
from phabdigest_core.phab.conduit import ConduitClient
from phabdigest_core.pipeline import render_markdown
from phabdigest_core.utils.revision import cookie_domain, parse_revision_id, parse_revision_url
from phabdigest_store.base import CookieStoreError
from phabdigest_store.resolver import resolve_cookies

logger = logging.getLogger(__name__)
console = Console(stderr=True)


def _resolve_target(url: str | None, diff_id: str | None, base_url: str) -> tuple[str, int]:
    if url:
        try:
            return parse_revision_url(url)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--url")
    if diff_id:
        try:
            return base_url, parse_revision_id(diff_id)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--diff-id")
    raise click.UsageError("Either --url or --diff-id must be provided.")


@click.command("extract")
@click.option("--url", default=None, help="Full revision URL, e.g. https://phabricator.services.mozilla.com/D12345.")
@click.option("--diff-id", "diff_id", default=None, help="Revision id, with or without the 'D' prefix.")
@click.option("--base-url", default=None, help="Phabricator base URL (or PHABRICATOR_BASE_URL). Ignored with --url.")
@click.option("--token", default=None, help="Conduit API token (or PHABRICATOR_TOKEN, or ~/.arcrc).")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write Markdown to this file instead of stdout.",
)
@click.option("--include-done", is_flag=True, help="Include comments marked as done, flagged [DONE].")
@click.option("--no-suggestions", is_flag=True, help="Skip scraping code suggestions (no cookies needed).")
@click.option("--cookies", "cookie_string", default=None, help="Manual cookies 'phsid=...; phusr=...'.")
@click.option("--workers", type=click.IntRange(1, 32), default=None, help="Concurrent changeset fetches.")
@click.option("--show-actions", is_flag=True, help="Append a section listing review actions (accept, reject...).")
@click.pass_context
def extract_cmd(
    ctx,
    url: str | None,
    diff_id: str | None,
    base_url: str | None,
    token: str | None,
    output: Path | None,
    include_done: bool,
    no_suggestions: bool,
    cookie_string: str | None,
    workers: int | None,
    show_actions: bool,
):
    """Extract review comments from a Differential revision as Markdown.

    General comments come first, then inline comments grouped by file, each
    section in chronological order. Code suggestions, which Conduit does not
    expose, are scraped from the rendered changeset using your Firefox
    session cookies.

    \b
    Environment variables:
      PHABRICATOR_TOKEN     Conduit API token (fallback: ~/.arcrc)
      PHABRICATOR_BASE_URL  Default base URL for --diff-id
      PHABRICATOR_COOKIES   Cookies used when Firefox has none
    """
    config_path = ctx.obj.get("config_path", ".phabdigest.yml") if ctx.obj else ".phabdigest.yml"
    config = load_config(
        config_path,
        cli_overrides={
            "base_url": base_url,
            "include_done": include_done or None,
            "suggestions": False if no_suggestions else None,
            "cookies": cookie_string,
            "max_workers": workers,
            "show_review_actions": show_actions or None,
            "api_token": token,
        },
    )

    site, revision_id = _resolve_target(url, diff_id, config["base_url"])

    api_token = config.get("api_token") or resolve_api_token(site)
    if not api_token:
        raise click.UsageError(
            "No Conduit API token found. Use --token, set PHABRICATOR_TOKEN, or run `arc install-certificate`.\n"
            f"Create a token at {site}/settings/panel/apitokens/"
        )

    cookies: str | None = None
    if config["suggestions"]:
        domain = config.get("cookie_domain") or cookie_domain(site)
        with console.status(f"Looking for {domain} session cookies..."):
            try:
                found = resolve_cookies(domain, override=config.get("cookies"))
            except CookieStoreError as e:
                logger.warning("Could not read browser cookies: %s", e)
                found = None
        if found:
            cookies = cookie_header(found)
        else:
            console.print(
                f"[yellow]No session cookies for {domain}: code suggestions will be missing. "
                "Log in with Firefox or set PHABRICATOR_COOKIES.[/yellow]"
            )

    try:
        with console.status(f"Extracting D{revision_id}...") as status:
            extractor = CommentExtractor(
                ConduitClient(site, api_token, timeout=config["timeout"]),
                cookies=cookies,
                include_done=config["include_done"],
                max_workers=config["max_workers"],
                timeout=config["timeout"],
                fetch_suggestions=bool(config["suggestions"]),
                on_progress=status.update,
            )
            document = extractor.run(revision_id)
    except PhabdigestError as e:
        raise click.ClickException(str(e))

    markdown = render_markdown(document, show_actions=bool(config["show_review_actions"]))

    if output is not None:
        output.write_text(markdown + "\n", encoding="utf-8")
        console.print(f"[green]Comments extracted and saved to {output}[/green]")
    else:
        click.echo(markdown)
