"""kidguard CLI: operator entry point for content moderation."""

import asyncio
import mimetypes
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kidguard import __version__

console = Console()

SURFACES = ["comment", "chat", "post"]


def _settings(ctx: click.Context):
    from kidguard.config import load_settings

    return load_settings(ctx.obj.get("config") if ctx.obj else None)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", default=None, type=click.Path(dir_okay=False), help="YAML settings file")
@click.pass_context
def main(ctx: click.Context, config: str | None):
    """kidguard: content moderation for a platform for minors.

    Check text and images the way the publishing paths do, inspect strike
    and suspension state, and browse the moderation journal.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ── Normalize ────────────────────────────────────────────────────────


@main.command()
@click.argument("text")
def normalize(text: str):
    """Show the matching variants the text filter sees for TEXT."""
    from kidguard.moderation.normalizer import normalize as normalize_text

    result = normalize_text(text)
    table = Table(title="Normalized text")
    table.add_column("Variant", style="cyan")
    table.add_column("Value")
    table.add_row("source", result.source)
    table.add_row("spaced", result.spaced)
    table.add_row("tight", result.tight)
    console.print(table)


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.argument("text")
@click.option("--user", "-u", "user_id", required=True, help="Author user id")
@click.option("--surface", "-s", default="comment", type=click.Choice(SURFACES))
@click.pass_context
def check(ctx: click.Context, text: str, user_id: str, surface: str):
    """Run TEXT through the gateway as USER would publish it.

    A blocked text records a strike, exactly as the publishing path does.
    """
    from kidguard.services import build_gateway

    gateway = build_gateway(_settings(ctx))
    result = gateway.check_text(text, surface, user_id)

    if result.allowed:
        console.print("[green]Allowed[/]")
        return

    console.print(f"[red]Blocked:[/] {result.reason}")
    if result.categories:
        console.print(f"  Categories: {', '.join(result.categories)}")
    if result.strikes is not None:
        console.print(f"  Strikes in window: {result.strikes}")
    if result.suspended and result.suspended_until:
        console.print(f"  [yellow]Suspended until {result.suspended_until.isoformat()}[/]")
    raise SystemExit(1)


@main.command("check-image")
@click.argument("source")
@click.option("--user", "-u", "user_id", required=True, help="Author user id")
@click.option("--surface", "-s", default="post", type=click.Choice(SURFACES))
@click.pass_context
def check_image(ctx: click.Context, source: str, user_id: str, surface: str):
    """Moderate an image given as a URL or a local file path."""
    from kidguard.moderation.models import ImageSource
    from kidguard.services import build_gateway

    path = Path(source)
    if path.is_file():
        content_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        image = ImageSource(data=path.read_bytes(), content_type=content_type)
    else:
        image = ImageSource(url=source)

    gateway = build_gateway(_settings(ctx))
    result = asyncio.run(gateway.check_image(image, surface, user_id))

    if result.fallback:
        console.print("[yellow]Vision service unavailable; failure policy applied[/]")
    if result.allowed:
        console.print("[green]Allowed[/]")
        return
    console.print(f"[red]Blocked:[/] {result.reason or 'contenido no permitido'}")
    if result.categories:
        console.print(f"  Categories: {', '.join(result.categories)}")
    raise SystemExit(1)


# ── Strikes & suspension ─────────────────────────────────────────────


@main.command()
@click.argument("user_id")
@click.pass_context
def status(ctx: click.Context, user_id: str):
    """Show strikes in the current window and suspension state for USER_ID."""
    from kidguard.moderation.gateway import utcnow
    from kidguard.services import build_gateway

    gateway = build_gateway(_settings(ctx))
    now = utcnow()
    current = gateway.is_suspended(user_id, now)
    strikes = gateway.ledger.recent_strikes(user_id, now)

    lines = [f"User: {user_id}", f"Strikes in window: {len(strikes)}/{gateway.suspensions.threshold}"]
    if current.suspended and current.until:
        lines.append(f"[red]Suspended[/] until {current.until.isoformat()} ({current.format_remaining(now)})")
    else:
        lines.append("[green]Active[/]")
    console.print(Panel("\n".join(lines), title="Moderation status"))

    if strikes:
        table = Table(title="Recent strikes")
        table.add_column("When", style="dim")
        table.add_column("Surface")
        table.add_column("Categories", style="cyan")
        table.add_column("Reason")
        for s in strikes:
            table.add_row(s.timestamp.strftime("%Y-%m-%d %H:%M"), s.surface.value, ", ".join(s.categories), s.reason[:60])
        console.print(table)


@main.command()
@click.argument("user_id")
@click.option("--reset-strikes", is_flag=True, help="Also forget the user's strikes")
@click.pass_context
def lift(ctx: click.Context, user_id: str, reset_strikes: bool):
    """End USER_ID's suspension early."""
    from kidguard.services import build_gateway

    gateway = build_gateway(_settings(ctx))
    lifted = gateway.suspensions.lift(user_id)
    if reset_strikes:
        gateway.ledger.reset(user_id)

    if lifted:
        console.print(f"[green]Suspension lifted for {user_id}[/]")
    else:
        console.print(f"[yellow]{user_id} was not suspended[/]")


# ── Journal ──────────────────────────────────────────────────────────


@main.command()
@click.option("--user", "-u", "user_id", default=None, help="Filter by user id")
@click.option("--kind", default=None, type=click.Choice(["text", "image"]))
@click.option("--blocked", is_flag=True, help="Only blocked content")
@click.option("--fallback", is_flag=True, help="Only decisions taken while the service was down")
@click.option("--limit", "-n", default=20, show_default=True)
@click.pass_context
def events(ctx: click.Context, user_id: str | None, kind: str | None, blocked: bool, fallback: bool, limit: int):
    """List recent moderation decisions, newest first."""
    from kidguard.moderation.events import ModerationEventLog

    log = ModerationEventLog(_settings(ctx).events_dir)
    found = log.get_events(
        user_id=user_id,
        kind=kind,
        allowed=False if blocked else None,
        fallback=True if fallback else None,
        limit=limit,
    )

    if not found:
        console.print("[yellow]No moderation events found.[/]")
        return

    table = Table(title=f"Moderation events ({len(found)})")
    table.add_column("When", style="dim")
    table.add_column("User", style="cyan")
    table.add_column("Kind")
    table.add_column("Result")
    table.add_column("Categories")
    table.add_column("Snippet")
    for e in found:
        result = "[green]allowed[/]" if e.allowed else "[red]blocked[/]"
        if e.fallback:
            result += " [yellow](fallback)[/]"
        table.add_row(e.timestamp[:19], e.user_id, e.kind, result, ", ".join(e.categories), e.snippet[:40])
    console.print(table)


if __name__ == "__main__":
    main()
