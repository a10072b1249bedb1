"""
ZapIt CLI - Manage and apply persistent page mutations.
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

console = Console()

COLOR_KEYS = ("backgroundColor", "color")


def _config(ctx):
    return ctx.obj["config"]


def _repository(ctx):
    from zapit.store.rule_repository import JsonStorage, RuleRepository
    return RuleRepository(JsonStorage(_config(ctx).storage_path))


def _run(coro):
    return asyncio.run(coro)


def _url_for(target: str) -> str:
    """Accept either a full URL or a bare hostname."""
    return target if "://" in target else f"https://{target}/"


@click.group()
@click.version_option(package_name="zapit", prog_name="zapit")
@click.option("--storage", default=None, help="Rule storage file (default: ~/.zapit/storage.json)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, storage, verbose):
    """⚡ ZapIt - Persistent page mutations

    Remove, restyle or rewrite elements and keep the change on every visit.
    """
    from zapit.core.orchestrator import ZapItConfig

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    config = ZapItConfig.from_env()
    if storage:
        config.storage_path = storage
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@cli.group()
def rules():
    """Inspect and edit stored rules."""


@rules.command("list")
@click.argument("target", required=False)
@click.pass_context
def list_rules(ctx, target):
    """
    List rules for a site, or every site with rules.

    \b
    Examples:

        zapit rules list example.com

        zapit rules list
    """
    from zapit.core.rule import hostname_of

    repository = _repository(ctx)

    if not target:
        hostnames = _run(repository.hostnames())
        if not hostnames:
            console.print("[dim]No rules stored.[/dim]")
            return
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Hostname", style="blue")
        table.add_column("Rules", justify="right")
        for hostname in hostnames:
            table.add_row(hostname, str(len(_run(repository.list(hostname)))))
        console.print(table)
        return

    hostname = hostname_of(_url_for(target))
    stored = _run(repository.list(hostname))
    if not stored:
        console.print(f"[dim]No rules for {hostname}.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan", title=hostname)
    table.add_column("ID", style="dim")
    table.add_column("Action", style="green")
    table.add_column("Selector", style="yellow", max_width=40)
    table.add_column("Payload", max_width=40)
    table.add_column("Created", style="dim")
    for rule in stored:
        if rule.styles:
            payload = ", ".join(f"{k}: {v}" for k, v in rule.styles.items())
        else:
            payload = (rule.new_text or "")[:40]
        table.add_row(rule.id or "", rule.action.value, rule.selector, payload, (rule.created or "")[:19])
    console.print(table)


def _save(ctx, url, rule_data):
    from zapit.core.messaging import Sender
    from zapit.core.orchestrator import ApplyOrchestrator

    orchestrator = ApplyOrchestrator(repository=_repository(ctx), config=_config(ctx))
    response = _run(orchestrator.handle_message(
        {"action": "saveRule", "rule": rule_data},
        Sender(url=_url_for(url)),
    ))
    if "error" in response:
        console.print(f"[red]❌ Error: {response['error']}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✅ Rule saved:[/green] {response['rule']['id']}")


@rules.command("add-remove")
@click.argument("url")
@click.argument("selector")
@click.pass_context
def add_remove(ctx, url, selector):
    """Hide every element matching SELECTOR on URL's site."""
    _save(ctx, url, {"selector": selector, "action": "remove", "styles": {}})


@rules.command("add-style")
@click.argument("url")
@click.argument("selector")
@click.option("--style", "-s", "styles", multiple=True, required=True,
              help="Property and value, e.g. -s backgroundColor=#ffcc00")
@click.pass_context
def add_style(ctx, url, selector, styles):
    """
    Restyle every element matching SELECTOR.

    \b
    Example:

        zapit rules add-style example.com ".ad-banner" -s backgroundColor=#000 -s color=#fff
    """
    from zapit.layers.sense.style_values import rgb_to_hex

    payload = {}
    for item in styles:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected property=value, got {item!r}", param_hint="--style")
        key, value = key.strip(), value.strip()
        if key in COLOR_KEYS and value.startswith("rgb"):
            value = rgb_to_hex(value)
        payload[key] = value
    _save(ctx, url, {"selector": selector, "action": "style", "styles": payload})


@rules.command("add-text")
@click.argument("url")
@click.argument("selector")
@click.argument("new_text")
@click.option("--original", default="", help="Markup the element had when the rule was written")
@click.pass_context
def add_text(ctx, url, selector, new_text, original):
    """Replace the markup of every element matching SELECTOR."""
    _save(ctx, url, {
        "selector": selector,
        "action": "editText",
        "styles": {},
        "originalText": original,
        "newText": new_text,
    })


@rules.command("delete")
@click.argument("url")
@click.argument("rule_id")
@click.pass_context
def delete_rule(ctx, url, rule_id):
    """Delete one rule by id."""
    from zapit.core.messaging import Sender
    from zapit.core.orchestrator import ApplyOrchestrator

    orchestrator = ApplyOrchestrator(repository=_repository(ctx), config=_config(ctx))
    response = _run(orchestrator.handle_message(
        {"action": "deleteRule", "ruleId": rule_id},
        Sender(url=_url_for(url)),
    ))
    if "error" in response:
        console.print(f"[red]❌ Error: {response['error']}[/red]")
        raise SystemExit(1)
    if response.get("removed"):
        console.print(f"[green]✅ Rule {rule_id} deleted.[/green]")
    else:
        console.print(f"[yellow]⚠️ No rule {rule_id} found.[/yellow]")


@rules.command("clear")
@click.argument("url")
@click.confirmation_option(prompt="Delete every rule for this site?")
@click.pass_context
def clear_rules(ctx, url):
    """Delete every rule for URL's site."""
    from zapit.core.messaging import Sender
    from zapit.core.orchestrator import ApplyOrchestrator
    from zapit.core.rule import hostname_of

    hostname = hostname_of(_url_for(url))
    orchestrator = ApplyOrchestrator(repository=_repository(ctx), config=_config(ctx))
    response = _run(orchestrator.handle_message({"action": "clearRules"}, Sender(url=_url_for(url))))
    if "error" in response:
        console.print(f"[red]❌ Error: {response['error']}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✅ All rules cleared for {hostname}.[/green]")


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("html_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--url", required=True, help="URL the page was saved from (selects the rule set)")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the result here instead of stdout")
@click.pass_context
def render(ctx, html_file, url, output):
    """
    Apply stored rules to a saved HTML page.

    \b
    Example:

        zapit render page.html --url https://example.com/news -o clean.html
    """
    from zapit.core.rule import hostname_of
    from zapit.layers.action.rule_engine import RuleEngine
    from zapit.layers.sense.document import SoupDocument

    document = SoupDocument.from_html(html_file.read_text(encoding="utf-8"))
    stored = _run(_repository(ctx).list(hostname_of(url)))
    engine = RuleEngine(document)
    report = engine.apply_all(stored)
    engine.snapshots.forget(document)

    for outcome in report.failed:
        console.print(f"[yellow]⚠️ Skipped {outcome.rule.selector}: {outcome.error}[/yellow]")

    html = document.to_html()
    if output:
        output.write_text(html, encoding="utf-8")
        console.print(f"[green]✅ {len(report.outcomes)} rules, {report.matched} elements → {output}[/green]")
    else:
        click.echo(html)


@cli.command()
@click.argument("html_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("css")
def selector(html_file, css):
    """
    Show the selector ZapIt would store for each element matching CSS.

    \b
    Example:

        zapit selector page.html "ul > li"
    """
    from zapit.core.errors import InvalidSelectorError
    from zapit.layers.sense.document import SoupDocument, describe_element
    from zapit.layers.sense.selector_codec import query, synthesize

    document = SoupDocument.from_html(html_file.read_text(encoding="utf-8"))
    try:
        elements = query(document, css)
    except InvalidSelectorError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        raise SystemExit(1)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Element", style="blue", max_width=40)
    table.add_column("Selector", style="yellow")
    table.add_column("Matches", justify="right")
    for index, element in enumerate(elements, 1):
        synthesized = synthesize(element)
        table.add_row(str(index), describe_element(element), synthesized, str(len(query(document, synthesized))))
    console.print(table)


@cli.command("open")
@click.argument("url")
@click.option("--headless/--headed", default=None, help="Run browser in headless mode")
@click.pass_context
def open_page(ctx, url, headless):
    """
    Open URL in Chrome with its stored rules applied.

    Example:

        zapit open "https://example.com/news"
    """
    from zapit.core.live_session import LiveSession

    config = _config(ctx)
    if headless is not None:
        config.headless = headless

    console.print(Panel.fit(
        f"[bold blue]⚡ ZapIt[/bold blue]\n"
        f"[dim]{url}[/dim]",
        border_style="blue"
    ))

    async def session_run():
        async with LiveSession(config) as session:
            result = await session.visit(url)
            if result is None:
                console.print("[dim]No rules for this site.[/dim]")
            elif not result.delivered:
                console.print(f"[yellow]⚠️ Page never became ready after {result.attempts} attempts.[/yellow]")
            else:
                report = session.agent.last_report
                console.print(f"[green]✅ Applied {len(report.outcomes)} rules to {report.matched} elements.[/green]")
            if not config.headless:
                await asyncio.to_thread(click.pause, "Press any key to close the browser...")

    _run(session_run())


@cli.command("edit-mode")
@click.argument("state", required=False, type=click.Choice(["on", "off"]))
@click.pass_context
def edit_mode(ctx, state):
    """Show or set the global edit-mode flag."""
    repository = _repository(ctx)
    if state is None:
        enabled = _run(repository.get_edit_mode())
        console.print(f"Edit mode: {'[green]on[/green]' if enabled else '[dim]off[/dim]'}")
        return
    _run(repository.set_edit_mode(state == "on"))
    console.print(f"[green]✅ Edit mode {state}.[/green]")


@cli.command()
def version():
    """Show version information."""
    from zapit import __version__
    console.print(f"ZapIt v{__version__}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
