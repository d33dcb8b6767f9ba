"""
prio - developer CLI for the incremental priority engine.

Every command loads a JSON graph snapshot into an in-memory graph, wires the
engine around it and prints the result with rich tables. Durable state
(preferences, shield history) lives in the SQLite state store.

Usage:
    prio scope graph.json doc            # Scope of a root, in queue order
    prio build-cache graph.json          # Cold-start build, ranked records
    prio shield graph.json --scope doc   # KB and scope shields
    prio next graph.json -n 10           # Simulate 10 scheduling steps
    prio set-priority graph.json n1 20   # Manual priority + propagation
    prio distribution graph.json doc     # Priority histogram of a document
    prio review graph.json -s doc -n 20  # Priority review of due items and cards
    prio history                         # Saved shield history
"""

from __future__ import annotations

import asyncio
import random
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from priority_engine.cache.percentiles import priority_distribution
from priority_engine.engine import PriorityEngine
from priority_engine.graph.memory import InMemoryGraph
from priority_engine.models import ItemType, PriorityRecord, QueueMode, ShieldRecord
from priority_engine.scheduler.preferences import NO_CARDS, NO_ITEMS, CardsPerItem
from priority_engine.scheduler.queue import Continue, QueueInfo
from priority_engine.scheduler.review import ReviewKind
from priority_engine.shield.history import ShieldHistory
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="prio",
    help="Incremental priority engine - priority resolution and review scheduling",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

SnapshotArg = Annotated[
    Path,
    typer.Argument(exists=True, dir_okay=False, readable=True, help="JSON graph snapshot"),
]
DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="State database path (defaults to settings)"),
]
KbOption = Annotated[
    str | None,
    typer.Option("--kb", help="Knowledge base id for shield history"),
]


def _settings(db: Path | None, kb: str | None) -> Settings:
    update: dict[str, object] = {}
    if db is not None:
        update["state_db_path"] = db
    if kb is not None:
        update["knowledge_base_id"] = kb
    return get_settings().model_copy(update=update)


@asynccontextmanager
async def _engine(
    snapshot: Path,
    settings: Settings,
    rng: random.Random | None = None,
) -> AsyncIterator[PriorityEngine]:
    graph = InMemoryGraph.from_file(snapshot)
    store = StateStore(settings.state_db_path)
    engine = PriorityEngine.create(graph, store, settings, rng=rng)
    try:
        await engine.start()
        await engine.cache.wait_for_deferred()
        yield engine
    finally:
        await engine.aclose()


def _fmt(value: object) -> str:
    return "-" if value is None else str(value)


def _shield_row(table: Table, item_type: ItemType, population: str, record: ShieldRecord | None) -> None:
    if record is None:
        table.add_row(item_type.value, population, "-", "-", "0")
        return
    table.add_row(
        item_type.value,
        population,
        _fmt(record.absolute),
        f"{record.percentile}%" if record.percentile is not None else "-",
        str(record.universe_size),
    )


# =============================================================================
# Scope
# =============================================================================


@app.command()
def scope(
    snapshot: SnapshotArg,
    root: Annotated[str, typer.Argument(help="Root node id")],
    document: Annotated[
        bool, typer.Option("--document", "-d", help="Document scope (no context or referencing nodes)")
    ] = False,
    db: DbOption = None,
) -> None:
    """Show the scope of a root node in queue order."""
    asyncio.run(_scope(snapshot, root, document, _settings(db, None)))


async def _scope(snapshot: Path, root: str, document: bool, settings: Settings) -> None:
    async with _engine(snapshot, settings) as engine:
        if document:
            members = await engine.scope.build_document_scope(root)
        else:
            members = await engine.scope.build_scope(root)
        ordered = await engine.scope.ordered_scope(root, members)

        if not ordered:
            console.print(f"[yellow]Scope of {root} is empty[/]")
            return

        table = Table(title=f"Scope of {root} ({len(ordered)} nodes)")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Node", style="cyan")
        table.add_column("Text")
        table.add_column("Incremental", justify="center")
        for i, node_id in enumerate(ordered, 1):
            node = await engine.graph.find(node_id)
            is_item = await engine.incremental.get(node_id) is not None
            table.add_row(str(i), node_id, node.text if node else "", "✓" if is_item else "")
        console.print(table)


# =============================================================================
# Cache
# =============================================================================


@app.command("build-cache")
def build_cache(
    snapshot: SnapshotArg,
    top: Annotated[int, typer.Option("--top", "-n", help="Rows to show")] = 20,
    db: DbOption = None,
) -> None:
    """Run a cold-start cache build and show the ranked records."""
    asyncio.run(_build_cache(snapshot, top, _settings(db, None)))


async def _build_cache(snapshot: Path, top: int, settings: Settings) -> None:
    config = settings.get_cache_config()
    console.print(
        Panel(
            "\n".join(f"{name}: {value}" for name, value in config.items()),
            title="Cache settings",
            border_style="cyan",
        )
    )
    async with _engine(snapshot, settings) as engine:
        records = await engine.cache.records()
        _print_records(records[:top], f"Priority cache ({len(records)} records)")


def _print_records(records: list[PriorityRecord], title: str) -> None:
    table = Table(title=title)
    table.add_column("Node", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Source")
    table.add_column("KB %", justify="right")
    table.add_column("Units", justify="right")
    table.add_column("Due", justify="right")
    for record in records:
        table.add_row(
            record.node_id,
            str(record.priority),
            record.source.value,
            _fmt(record.kb_percentile),
            str(record.review_unit_count),
            str(record.due_unit_count),
        )
    console.print(table)


@app.command("set-priority")
def set_priority(
    snapshot: SnapshotArg,
    node_id: Annotated[str, typer.Argument(help="Node to update")],
    priority: Annotated[int, typer.Argument(min=0, max=100, help="New priority (0 = most important)")],
    no_propagate: Annotated[
        bool, typer.Option("--no-propagate", help="Do not update inheriting descendants")
    ] = False,
    db: DbOption = None,
) -> None:
    """Set a manual priority on a snapshot node and show its effect."""
    asyncio.run(_set_priority(snapshot, node_id, priority, not no_propagate, _settings(db, None)))


async def _set_priority(
    snapshot: Path,
    node_id: str,
    priority: int,
    propagate: bool,
    settings: Settings,
) -> None:
    async with _engine(snapshot, settings) as engine:
        record = await engine.maintenance.set_manual_priority(node_id, priority, propagate=propagate)
        if record is None:
            console.print(f"[red]Node {node_id} not found[/]")
            raise typer.Exit(1)
        await engine.cache.flush_now(force_heavy=True)
        _print_records(await engine.cache.records(), f"Priority cache after setting {node_id} = {priority}")


@app.command()
def pretag(
    snapshot: SnapshotArg,
    db: DbOption = None,
) -> None:
    """Run the bulk pre-tagging pass over a snapshot."""
    asyncio.run(_pretag(snapshot, _settings(db, None)))


async def _pretag(snapshot: Path, settings: Settings) -> None:
    async with _engine(snapshot, settings) as engine:
        stats = await engine.maintenance.update_all_priorities()
        table = Table(title="Pre-tagging")
        table.add_column("Metric")
        table.add_column("Count", justify="right")
        for name in ("total", "processed", "tagged", "changed", "skipped_manual", "errors"):
            table.add_row(name.replace("_", " "), str(getattr(stats, name)))
        console.print(table)


# =============================================================================
# Shield
# =============================================================================


@app.command()
def shield(
    snapshot: SnapshotArg,
    scope_root: Annotated[str | None, typer.Option("--scope", "-s", help="Scope root node id")] = None,
    save: Annotated[bool, typer.Option("--save", help="Save today's shields to history")] = False,
    db: DbOption = None,
    kb: KbOption = None,
) -> None:
    """Show the priority shield for both item types."""
    asyncio.run(_shield(snapshot, scope_root, save, _settings(db, kb)))


async def _shield(snapshot: Path, scope_root: str | None, save: bool, settings: Settings) -> None:
    async with _engine(snapshot, settings) as engine:
        members = await engine.scope.build_scope(scope_root) if scope_root else None
        incremental = await engine.shields.incremental_status(members)
        card = await engine.shields.card_status(members)

        table = Table(title="Priority shield")
        table.add_column("Type", style="cyan")
        table.add_column("Population")
        table.add_column("Top miss", justify="right")
        table.add_column("Percentile", justify="right")
        table.add_column("Universe", justify="right")
        _shield_row(table, ItemType.INCREMENTAL, "KB", incremental.kb)
        _shield_row(table, ItemType.CARD, "KB", card.kb)
        if scope_root:
            _shield_row(table, ItemType.INCREMENTAL, scope_root, incremental.doc)
            _shield_row(table, ItemType.CARD, scope_root, card.doc)
        console.print(table)

        if save:
            for status, kb_key, doc_key in (
                (incremental, keys.INCREMENTAL_SHIELD_HISTORY, keys.INCREMENTAL_DOC_SHIELD_HISTORY),
                (card, keys.CARD_SHIELD_HISTORY, keys.CARD_DOC_SHIELD_HISTORY),
            ):
                if status.kb is not None:
                    await engine.history.save_kb(kb_key, status.kb)
                if status.doc is not None and scope_root:
                    await engine.history.save_scoped(doc_key, scope_root, status.doc)
            console.print("[green]Shields saved[/]")


@app.command()
def history(
    scope_root: Annotated[str | None, typer.Option("--scope", "-s", help="Scope root node id")] = None,
    db: DbOption = None,
    kb: KbOption = None,
) -> None:
    """Show saved shield history."""
    asyncio.run(_history(scope_root, _settings(db, kb)))


async def _history(scope_root: str | None, settings: Settings) -> None:
    store = StateStore(settings.state_db_path)
    try:
        shield_history = ShieldHistory(store, settings)
        table = Table(title=f"Shield history ({scope_root or 'KB'} @ {shield_history.kb_id})")
        table.add_column("Date", style="cyan")
        table.add_column("Type")
        table.add_column("Top miss", justify="right")
        table.add_column("Percentile", justify="right")

        for item_type, kb_key, doc_key in (
            (ItemType.INCREMENTAL, keys.INCREMENTAL_SHIELD_HISTORY, keys.INCREMENTAL_DOC_SHIELD_HISTORY),
            (ItemType.CARD, keys.CARD_SHIELD_HISTORY, keys.CARD_DOC_SHIELD_HISTORY),
        ):
            if scope_root:
                series = await shield_history.scoped_series(doc_key, scope_root)
            else:
                series = await shield_history.kb_series(kb_key)
            for day, record in series:
                table.add_row(day, item_type.value, _fmt(record.absolute), _fmt(record.percentile))

        if table.row_count == 0:
            console.print("[yellow]No shield history saved yet[/]")
        else:
            console.print(table)
    finally:
        store.close()


# =============================================================================
# Distribution
# =============================================================================


@app.command()
def distribution(
    snapshot: SnapshotArg,
    document: Annotated[str, typer.Argument(help="Document node id")],
    relative: Annotated[bool, typer.Option("--relative", "-r", help="Bin by KB-wide percentile")] = False,
    db: DbOption = None,
) -> None:
    """Histogram of a document's item priorities."""
    asyncio.run(_distribution(snapshot, document, relative, _settings(db, None)))


async def _distribution(snapshot: Path, document: str, relative: bool, settings: Settings) -> None:
    async with _engine(snapshot, settings) as engine:
        members = await engine.scope.build_document_scope(document)
        all_items = await engine.incremental.all()
        all_records = await engine.cache.records()
        result = priority_distribution(
            [item for item in all_items if item.node_id in members],
            [record for record in all_records if record.node_id in members],
            all_items,
            all_records,
        )

        bins = result.bins_kb_relative if relative else result.bins
        table = Table(title=f"{'KB percentile' if relative else 'Priority'} distribution of {document}")
        table.add_column("Range", style="cyan")
        table.add_column("Incremental", justify="right")
        table.add_column("Cards", justify="right")
        for bin_ in bins:
            if bin_.incremental or bin_.card:
                table.add_row(bin_.label, str(bin_.incremental), str(bin_.card))
        console.print(table)


# =============================================================================
# Scheduling
# =============================================================================


@app.command("next")
def next_items(
    snapshot: SnapshotArg,
    steps: Annotated[int, typer.Option("--steps", "-n", min=1, help="Scheduling steps to simulate")] = 10,
    sub_queue: Annotated[str | None, typer.Option("--sub-queue", "-q", help="Queue root node id")] = None,
    mode: Annotated[QueueMode, typer.Option("--mode", "-m", help="Queue mode")] = QueueMode.SRS,
    cards_per_item: Annotated[
        int | None, typer.Option("--cards-per-item", "-k", min=0, help="Cards between incremental items")
    ] = None,
    seed: Annotated[int | None, typer.Option("--seed", help="Random seed for shuffling")] = None,
    db: DbOption = None,
    kb: KbOption = None,
) -> None:
    """
    Simulate a review session.

    Card turns review the most important due card not yet seen; the session
    exit saves today's shields.
    """
    settings = _settings(db, kb)
    asyncio.run(_next(snapshot, steps, sub_queue, mode, cards_per_item, random.Random(seed), settings))


async def _next(
    snapshot: Path,
    steps: int,
    sub_queue: str | None,
    mode: QueueMode,
    cards_per_item: int | None,
    rng: random.Random,
    settings: Settings,
) -> None:
    async with _engine(snapshot, settings, rng=rng) as engine:
        if cards_per_item is not None:
            await engine.preferences.set_cards_per_item(cards_per_item)

        await engine.session.enter(sub_queue)
        scope_ids = set(await engine.store.get_session(keys.CURRENT_SCOPE_IDS) or [])

        table = Table(title=f"Review session ({sub_queue or 'whole KB'}, {mode.value})")
        table.add_column("Step", justify="right", style="dim")
        table.add_column("Shows")
        table.add_column("Node", style="cyan")
        table.add_column("Priority", justify="right")

        info = QueueInfo(sub_queue_id=sub_queue, mode=mode)
        for step in range(1, steps + 1):
            result = await engine.scheduler.select_next(info)
            if isinstance(result, Continue):
                card = await _next_card(engine, scope_ids if sub_queue else None)
                if card is None:
                    table.add_row(str(step), f"card ({result.reason})", "-", "-")
                else:
                    await engine.session.mark_card_seen(card.node_id)
                    table.add_row(str(step), "card", card.node_id, str(card.priority))
            else:
                table.add_row(str(step), "[bold]incremental[/]", result.node_id, str(result.priority))
        console.print(table)

        summary = await engine.session.exit()
        console.print(
            f"Shields: incremental {_fmt(summary.incremental.kb and summary.incremental.kb.percentile)}%, "
            f"card {_fmt(summary.card.kb and summary.card.kb.percentile)}%"
        )


async def _next_card(engine: PriorityEngine, scope_ids: set[str] | None) -> PriorityRecord | None:
    seen = set(await engine.store.get_session(keys.SEEN_CARDS, []))
    due = await engine.cache.due_records(scope_ids)
    for record in sorted(due, key=lambda r: r.priority):
        if record.node_id not in seen:
            return record
    return None


# =============================================================================
# Priority Review
# =============================================================================


def _parse_card_ratio(value: str | None) -> CardsPerItem | None:
    if value is None or value in (NO_CARDS, NO_ITEMS):
        return value
    try:
        ratio = int(value)
    except ValueError:
        raise typer.BadParameter(f"expected a number, '{NO_CARDS}' or '{NO_ITEMS}', got {value!r}") from None
    if ratio < 0:
        raise typer.BadParameter("card ratio must not be negative")
    return ratio


@app.command()
def review(
    snapshot: SnapshotArg,
    scope_root: Annotated[str | None, typer.Option("--scope", "-s", help="Scope root node id")] = None,
    count: Annotated[int, typer.Option("--count", "-n", min=1, help="Maximum entries")] = 20,
    card_ratio: Annotated[
        str | None,
        typer.Option("--card-ratio", "-k", help=f"Cards per incremental item, '{NO_CARDS}' or '{NO_ITEMS}'"),
    ] = None,
    seed: Annotated[int | None, typer.Option("--seed", help="Random seed for shuffling")] = None,
    db: DbOption = None,
) -> None:
    """
    Pick a priority review: due items and cards, most important first.

    Without --scope the whole knowledge base is used. The card ratio
    defaults to the stored cards-per-item preference.
    """
    ratio = _parse_card_ratio(card_ratio)
    asyncio.run(_review(snapshot, scope_root, count, ratio, random.Random(seed), _settings(db, None)))


async def _review(
    snapshot: Path,
    scope_root: str | None,
    count: int,
    card_ratio: CardsPerItem | None,
    rng: random.Random,
    settings: Settings,
) -> None:
    async with _engine(snapshot, settings, rng=rng) as engine:
        selection = await engine.review.select(scope_root, count, card_ratio)

    console.print(
        Panel(
            "\n".join(
                [
                    f"Scope: {scope_root or 'Full Knowledge Base'}",
                    f"Scope size: {selection.item_scope_size} incremental items, "
                    f"{selection.card_scope_size} card nodes, {selection.card_count} cards",
                    f"Selected: {len(selection.entries)} ({len(selection.item_entries)} incremental, "
                    f"{len(selection.card_entries)} card nodes)",
                    f"Randomness: incremental {round(selection.item_randomness * 100)}%, "
                    f"cards {round(selection.card_randomness * 100)}%",
                ]
            ),
            title="Priority review",
            border_style="cyan",
        )
    )
    if not selection.entries:
        console.print("[yellow]Nothing due in this scope[/]")
        return

    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Kind")
    table.add_column("Node", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Percentile", justify="right")
    for position, entry in enumerate(selection.entries, start=1):
        kind = "[bold]INC[/]" if entry.kind is ReviewKind.INCREMENTAL else "FC"
        table.add_row(str(position), kind, entry.node_id, str(entry.priority), f"{entry.percentile}%")
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Incremental priority engine developer tools."""
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")


def run() -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")
    app()


if __name__ == "__main__":
    run()
