"""CLI entry point for grindboard.

Commands:
  grindboard daily                — Refresh stale profiles, then snapshot every group
  grindboard refresh --group      — Manually refresh one group's members
  grindboard snapshot             — Rebuild today's snapshots without fetching
  grindboard snapshots --group    — List a group's stored snapshots
  grindboard leaderboard --group  — Show a group's live leaderboard
  grindboard gainers --group      — Show a group's top gainers
  grindboard history USERNAME     — Show a profile's daily samples
  grindboard register NAMES...    — Validate and register usernames
  grindboard group create|add|remove|list|prune — Group bookkeeping
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import sys
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from grindboard.config import TrackerConfig, load_config
from grindboard.connectors.leetcode import LeetCodeClient
from grindboard.engine.results import Failed, ItemResult, RunSummary, Skipped, Success
from grindboard.engine.tracker import GroupNotFoundError, ProfileNotFoundError, StatsTracker
from grindboard.leaderboard.scoring import UNRANKED_SENTINEL
from grindboard.observability.logger import configure_logging, get_logger
from grindboard.storage.database import Database

load_dotenv()

console = Console()
log = get_logger(__name__)

T = TypeVar("T")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine from sync CLI."""
    return asyncio.run(coro)


def _open_db(cfg: TrackerConfig) -> Database:
    db = Database(cfg.storage)
    db.connect()
    return db


async def _with_tracker(cfg: TrackerConfig, fn: Callable[[StatsTracker, Database], Awaitable[T]]) -> T:
    db = _open_db(cfg)
    client = LeetCodeClient(cfg.client)
    try:
        return await fn(StatsTracker(cfg, db, client), db)
    finally:
        await client.close()
        db.close()


def _parse_date(value: Optional[str]) -> Optional[dt.date]:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}")


def _fmt_rank(ranking: int) -> str:
    return "—" if ranking >= UNRANKED_SENTINEL else f"{ranking:,}"


def _print_results(title: str, results: list[ItemResult]) -> RunSummary:
    summary = RunSummary.from_results(results)
    table = Table(title=f"{title} ({summary.succeeded} ok, {summary.failed} failed, {summary.skipped} skipped)")
    table.add_column("Key", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="dim", max_width=60)
    for r in results:
        if isinstance(r, Failed):
            table.add_row(r.key, "[red]failed[/red]", f"{r.kind.value}: {r.reason}")
        elif isinstance(r, Skipped):
            table.add_row(r.key, "[yellow]skipped[/yellow]", r.reason)
        else:
            table.add_row(r.key, "[green]success[/green]", "")
    console.print(table)
    return summary


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """grindboard — LeetCode group leaderboards."""
    ctx.ensure_object(dict)
    cfg = load_config(config_path)
    ctx.obj["config"] = cfg
    configure_logging(
        level=cfg.observability.log_level,
        fmt=cfg.observability.log_format,
        log_file=cfg.observability.log_file,
        force=True,
    )


# ─── DAILY ───────────────────────────────────────────────────────────

@cli.command()
@click.option(
    "--date", "date_str", default=None,
    help="UTC day to process (YYYY-MM-DD); past days rebuild snapshots without fetching",
)
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
@click.pass_context
def daily(ctx: click.Context, date_str: str | None, as_json: bool) -> None:
    """Refresh profiles missing today's sample, then snapshot all groups."""
    cfg: TrackerConfig = ctx.obj["config"]
    day = _parse_date(date_str)

    report = _run(_with_tracker(cfg, lambda t, _db: t.run_daily(day)))

    if as_json:
        console.print_json(json.dumps(report.to_dict(), default=str))
        return

    _print_results("👤 Profiles", report.profiles)
    _print_results("📸 Snapshots", report.snapshots)
    console.print(f"Run [dim]{report.run_id}[/dim] finished in {report.duration_secs:.1f}s")


# ─── REFRESH ─────────────────────────────────────────────────────────

@cli.command()
@click.option("--group", "group_id", required=True, type=int, help="Group ID")
@click.pass_context
def refresh(ctx: click.Context, group_id: int) -> None:
    """Manually refresh every member of one group."""
    cfg: TrackerConfig = ctx.obj["config"]
    try:
        results = _run(_with_tracker(cfg, lambda t, _db: t.refresh_group(group_id)))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    _print_results(f"🔄 Group {group_id} refresh", results)


# ─── SNAPSHOT ────────────────────────────────────────────────────────

@cli.command()
@click.option("--group", "group_id", default=None, type=int, help="Only this group")
@click.option("--date", "date_str", default=None, help="UTC day to write (YYYY-MM-DD)")
@click.pass_context
def snapshot(ctx: click.Context, group_id: int | None, date_str: str | None) -> None:
    """Rebuild snapshots from stored samples without fetching."""
    cfg: TrackerConfig = ctx.obj["config"]
    day = _parse_date(date_str)

    async def _snapshot(tracker: StatsTracker, db: Database) -> list[ItemResult]:
        if group_id is None:
            groups = db.list_groups()
        else:
            group = db.get_group(group_id)
            if group is None:
                raise GroupNotFoundError(f"group {group_id} not found")
            groups = [group]
        return await tracker.build_snapshots(groups, day)

    try:
        results = _run(_with_tracker(cfg, _snapshot))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    _print_results("📸 Snapshots", results)


@cli.command()
@click.option("--group", "group_id", required=True, type=int, help="Group ID")
@click.option("--limit", default=None, type=int, help="Number of days to list")
@click.pass_context
def snapshots(ctx: click.Context, group_id: int, limit: int | None) -> None:
    """List a group's stored snapshots, newest first."""
    cfg: TrackerConfig = ctx.obj["config"]

    async def _snapshots(tracker: StatsTracker, db: Database) -> Any:
        return tracker.snapshot_history(group_id, limit)

    try:
        records = _run(_with_tracker(cfg, _snapshots))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    table = Table(title=f"📚 Group {group_id} Snapshots")
    table.add_column("Date", style="dim")
    table.add_column("Members", justify="right")
    table.add_column("Leader", style="cyan")
    table.add_column("Top gainer", style="green")
    table.add_column("Updated", style="dim")

    for rec in records:
        leader = rec.leaderboard[0]
        top = rec.gainers[0] if rec.gainers else None
        table.add_row(
            rec.date.isoformat(),
            str(len(rec.leaderboard)),
            f"{leader.username} ({leader.ranking_points:,})",
            f"{top.username} (+{top.problems_gained})" if top else "—",
            rec.updated_at[:19],
        )

    console.print(table)


# ─── LEADERBOARD ─────────────────────────────────────────────────────

@cli.command()
@click.option("--group", "group_id", required=True, type=int, help="Group ID")
@click.pass_context
def leaderboard(ctx: click.Context, group_id: int) -> None:
    """Show a group's live leaderboard."""
    cfg: TrackerConfig = ctx.obj["config"]

    async def _leaderboard(tracker: StatsTracker, db: Database) -> Any:
        return tracker.group_leaderboard(group_id)

    try:
        entries = _run(_with_tracker(cfg, _leaderboard))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    table = Table(title=f"🏆 Group {group_id} Leaderboard")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Username", style="cyan")
    table.add_column("Points", justify="right", style="bold green")
    table.add_column("Solved", justify="right")
    table.add_column("E/M/H", justify="right")
    table.add_column("Rank", justify="right")
    table.add_column("Rating", justify="right", style="yellow")
    table.add_column("Updated", style="dim")

    for i, e in enumerate(entries, 1):
        table.add_row(
            str(i),
            e.username,
            f"{e.ranking_points:,}",
            str(e.total_solved),
            f"{e.easy_solved}/{e.medium_solved}/{e.hard_solved}",
            _fmt_rank(e.ranking),
            str(e.contest_rating or "—"),
            e.last_updated.isoformat() if e.last_updated else "never",
        )

    console.print(table)


# ─── GAINERS ─────────────────────────────────────────────────────────

@cli.command()
@click.option("--group", "group_id", required=True, type=int, help="Group ID")
@click.option("--days", default=None, type=int, help="Window length in days")
@click.option("--all", "show_all", is_flag=True, help="Include members with no gain")
@click.pass_context
def gainers(ctx: click.Context, group_id: int, days: int | None, show_all: bool) -> None:
    """Show a group's top gainers over a trailing window."""
    cfg: TrackerConfig = ctx.obj["config"]

    async def _gainers(tracker: StatsTracker, db: Database) -> Any:
        return tracker.group_gainers(group_id, days=days)

    try:
        report = _run(_with_tracker(cfg, _gainers))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--days")

    window = days or cfg.leaderboard.gainers_window_days
    rows = report.all_members if show_all else report.active
    table = Table(title=f"📈 Group {group_id} Gainers (last {window} days)")
    table.add_column("Username", style="cyan")
    table.add_column("Gained", justify="right", style="bold green")
    table.add_column("Rank Δ", justify="right")
    table.add_column("Solved", justify="right")
    table.add_column("Rank", justify="right")

    for g in rows:
        delta = f"+{g.rank_improved:,}" if g.rank_improved > 0 else f"{g.rank_improved:,}"
        table.add_row(
            g.username,
            f"+{g.problems_gained}",
            delta,
            str(g.current_solved),
            _fmt_rank(g.current_rank),
        )

    console.print(table)
    if not rows:
        console.print("[dim]No activity in this window.[/dim]")


# ─── HISTORY ─────────────────────────────────────────────────────────

@cli.command()
@click.argument("username")
@click.option("--days", default=None, type=int, help="How many days back")
@click.pass_context
def history(ctx: click.Context, username: str, days: int | None) -> None:
    """Show a profile's daily stat samples."""
    cfg: TrackerConfig = ctx.obj["config"]

    async def _history(tracker: StatsTracker, db: Database) -> Any:
        return tracker.profile_history(username, days=days)

    try:
        samples = _run(_with_tracker(cfg, _history))
    except ProfileNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    table = Table(title=f"🗓  {username} — {len(samples)} samples")
    table.add_column("Date", style="dim")
    table.add_column("Solved", justify="right", style="bold")
    table.add_column("E/M/H", justify="right")
    table.add_column("Rank", justify="right")
    table.add_column("Rating", justify="right", style="yellow")
    table.add_column("Points", justify="right", style="green")

    for s in samples:
        table.add_row(
            s.date.isoformat(),
            str(s.total_solved),
            f"{s.easy_solved}/{s.medium_solved}/{s.hard_solved}",
            _fmt_rank(s.ranking),
            str(s.contest_rating or "—"),
            f"{s.ranking_points or 0:,}",
        )

    console.print(table)


# ─── REGISTER ────────────────────────────────────────────────────────

@cli.command()
@click.argument("usernames", nargs=-1, required=True)
@click.option("--group", "group_id", default=None, type=int, help="Also add them to this group")
@click.pass_context
def register(ctx: click.Context, usernames: tuple[str, ...], group_id: int | None) -> None:
    """Validate usernames remotely and register them as profiles."""
    cfg: TrackerConfig = ctx.obj["config"]

    async def _register(tracker: StatsTracker, db: Database) -> list[ItemResult]:
        if group_id is not None and db.get_group(group_id) is None:
            raise GroupNotFoundError(f"group {group_id} not found")
        results = await tracker.register_profiles(usernames)
        if group_id is not None:
            for r in results:
                if isinstance(r, Failed):
                    continue
                profile = r.data if isinstance(r, Success) else db.get_profile(r.key)
                if profile is not None:
                    db.add_member(group_id, profile.id)
        return results

    try:
        results = _run(_with_tracker(cfg, _register))
    except GroupNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    summary = _print_results("📝 Registration", results)
    if summary.failed:
        sys.exit(1)


# ─── GROUPS ──────────────────────────────────────────────────────────

@cli.group()
def group() -> None:
    """Group bookkeeping."""


@group.command("create")
@click.argument("name")
@click.pass_context
def group_create(ctx: click.Context, name: str) -> None:
    """Create a group."""
    db = _open_db(ctx.obj["config"])
    try:
        g = db.create_group(name)
    finally:
        db.close()
    console.print(f"[green]✓ Created group {g.id}:[/green] {g.name}")


@group.command("add")
@click.argument("group_id", type=int)
@click.argument("usernames", nargs=-1, required=True)
@click.pass_context
def group_add(ctx: click.Context, group_id: int, usernames: tuple[str, ...]) -> None:
    """Add registered profiles to a group."""
    db = _open_db(ctx.obj["config"])
    try:
        if db.get_group(group_id) is None:
            console.print(f"[red]❌ group {group_id} not found[/red]")
            sys.exit(1)
        for name in usernames:
            profile = db.get_profile(name.strip())
            if profile is None:
                console.print(f"[yellow]⚠ {name} is not registered, skipping[/yellow]")
                continue
            db.add_member(group_id, profile.id)
            console.print(f"[green]✓[/green] {profile.username}")
    finally:
        db.close()


@group.command("remove")
@click.argument("group_id", type=int)
@click.argument("usernames", nargs=-1, required=True)
@click.pass_context
def group_remove(ctx: click.Context, group_id: int, usernames: tuple[str, ...]) -> None:
    """Remove profiles from a group."""
    db = _open_db(ctx.obj["config"])
    try:
        for name in usernames:
            profile = db.get_profile(name.strip())
            if profile is not None:
                db.remove_member(group_id, profile.id)
                console.print(f"[green]✓ removed[/green] {profile.username}")
    finally:
        db.close()


@group.command("list")
@click.pass_context
def group_list(ctx: click.Context) -> None:
    """List groups with member and snapshot counts."""
    db = _open_db(ctx.obj["config"])
    try:
        table = Table(title="👥 Groups")
        table.add_column("ID", justify="right", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Members", justify="right")
        table.add_column("Snapshots", justify="right")
        for g in db.list_groups():
            table.add_row(str(g.id), g.name, str(g.member_count), str(db.count_snapshots(g.id)))
    finally:
        db.close()
    console.print(table)


@group.command("prune")
@click.pass_context
def group_prune(ctx: click.Context) -> None:
    """Delete profiles that no group references."""
    db = _open_db(ctx.obj["config"])
    try:
        removed = db.delete_unreferenced_profiles()
    finally:
        db.close()
    console.print(f"Pruned {removed} profile(s)")


if __name__ == "__main__":
    cli()
