"""CLI entrypoint for notegraph."""

from __future__ import annotations

import functools
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from notegraph.batch import CancelToken
from notegraph.config import EngineConfig, load_config
from notegraph.dedup import summarize_groups
from notegraph.engine import CorrelationEngine
from notegraph.errors import NotegraphError
from notegraph.graph import graph_stats, graph_to_dict
from notegraph.images import ImageResolver
from notegraph.vault import VaultNoteStore

console = Console()


def _setup_logging(verbose: bool) -> None:
    logger = logging.getLogger("notegraph")
    logger.handlers.clear()
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def engine_options(func):
    """Options shared by every command that runs the engine."""

    @click.argument("vault", type=click.Path(exists=True, file_okay=False))
    @click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="YAML file with engine options.",
    )
    @click.option("--edge-threshold", type=float, default=None, help="Minimum score for a graph edge.")
    @click.option("--timeout", type=float, default=None, help="Give up after this many seconds.")
    @click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
    @functools.wraps(func)
    def wrapper(vault, config_path, edge_threshold, timeout, verbose, **kwargs):
        _setup_logging(verbose)
        try:
            config = load_config(config_path) if config_path else EngineConfig()
            config = config.with_overrides(edge_threshold=edge_threshold)
            with console.status("Loading vault..."):
                store = VaultNoteStore(vault)
            engine = CorrelationEngine(config, resolver=ImageResolver(store.path))
            cancel = CancelToken(timeout) if timeout is not None else None
            return func(store=store, engine=engine, cancel=cancel, **kwargs)
        except NotegraphError as exc:
            raise click.ClickException(exc.message) from exc

    return wrapper


@click.group()
def main():
    """notegraph — find duplicate, related and clustered notes."""


@main.command()
@engine_options
@click.option("--json", "as_json", is_flag=True, help="Print the graph as JSON.")
def graph(store, engine, cancel, as_json: bool):
    """Build the relationship graph of the vault."""
    notes = store.list_notes()
    with console.status("Scoring note pairs..."):
        G = engine.build_graph(notes, cancel=cancel)

    if as_json:
        click.echo(json.dumps(graph_to_dict(G), indent=2, ensure_ascii=False))
        return

    stats = graph_stats(G)
    console.print(
        f"Graph: [bold]{stats['notes']}[/bold] notes, [bold]{stats['edges']}[/bold] edges "
        f"(threshold {engine.config.edge_threshold:.2f})"
    )
    if not stats["edges"]:
        console.print("[yellow]No related notes found.[/yellow]")
        return

    table = Table(title="Strongest Relationships", show_lines=True)
    table.add_column("Note A", style="cyan")
    table.add_column("Note B", style="cyan")
    table.add_column("Score", justify="right", style="bold green")
    table.add_column("Signal")

    edges = sorted(G.edges(data=True), key=lambda e: (-e[2]["weight"], min(e[0], e[1])))
    for a, b, data in edges[:20]:
        table.add_row(G.nodes[a]["title"], G.nodes[b]["title"], f"{data['weight']:.3f}", data["kind"])
    console.print(table)


@main.command()
@engine_options
def clusters(store, engine, cancel):
    """Group the vault's notes into topic clusters."""
    notes = store.list_notes()
    with console.status("Scoring note pairs..."):
        G = engine.build_graph(notes, cancel=cancel)
    found = engine.extract_clusters(G)

    if not found:
        console.print("[yellow]The vault has no notes.[/yellow]")
        return

    for cluster in found:
        console.print(
            f"\n[bold]{cluster.name}[/bold]  ({cluster.size} notes, cohesion {cluster.cohesion:.3f})"
        )
        if cluster.tags:
            console.print(f"  Tags: {', '.join(cluster.tags)}")
        if cluster.keywords:
            console.print(f"  Keywords: {', '.join(cluster.keywords)}")
        titles = [G.nodes[nid]["title"] for nid in cluster.note_ids[:5]]
        suffix = f" (+{cluster.size - 5} more)" if cluster.size > 5 else ""
        console.print(f"  Notes: {', '.join(titles)}{suffix}")


@main.command()
@engine_options
@click.argument("note_id")
@click.option("-k", "--top-k", "k", type=int, default=None, help="Number of related notes.")
def related(store, engine, cancel, note_id: str, k: int | None):
    """Show the notes most related to NOTE_ID."""
    store.get_note(note_id)
    notes = store.list_notes()
    with console.status("Scoring note pairs..."):
        G = engine.build_graph(notes, cancel=cancel)
    results = engine.find_related(G, note_id, k)

    if not results:
        console.print(f"[yellow]No notes related to {note_id}.[/yellow]")
        return

    table = Table(title=f"Related to {G.nodes[note_id]['title']}")
    table.add_column("#", style="dim", width=4)
    table.add_column("Note", style="cyan")
    table.add_column("Id", style="dim")
    table.add_column("Score", justify="right", style="bold green")
    table.add_column("Why")
    table.add_column("Shared tags", style="magenta")
    for i, r in enumerate(results, 1):
        table.add_row(
            str(i),
            G.nodes[r.note_id]["title"],
            r.note_id,
            f"{r.score:.3f}",
            r.description,
            ", ".join(r.common_tags),
        )
    console.print(table)


@main.command()
@engine_options
@click.option("--threshold", type=float, default=None, help="Minimum score for duplicates.")
@click.option("--limit", type=int, default=None, help="Show at most this many groups.")
def duplicates(store, engine, cancel, threshold: float | None, limit: int | None):
    """Find groups of near-duplicate notes."""
    notes = store.list_notes()
    if len(notes) < 2:
        console.print("[yellow]Need at least 2 notes to find duplicates.[/yellow]")
        return

    with console.status("Scanning for duplicates..."):
        groups = engine.find_duplicates(notes, threshold, cancel=cancel, limit=limit)

    console.print(summarize_groups(groups, len(notes)))
    for i, group in enumerate(groups, 1):
        table = Table(title=f"Group {i} ({group.suggested_action})")
        table.add_column("Id", style="dim")
        table.add_column("Note", style="cyan")
        table.add_column("Created")
        for nid in group.note_ids:
            note = store.get_note(nid)
            table.add_row(nid, note.title, note.created_at.date().isoformat())
        console.print(table)


@main.command()
@engine_options
def stats(store, engine, cancel):
    """Print statistics about the vault's relationship graph."""
    notes = store.list_notes()
    G = engine.build_graph(notes, cancel=cancel)
    summary = graph_stats(G)

    console.print(f"Notes: {summary['notes']}")
    console.print(f"Tagged notes: {sum(1 for n in notes if n.tags)}")
    console.print(f"Notes with images: {sum(1 for n in notes if n.image_ref is not None)}")
    console.print(f"Relationships: {summary['edges']}")
    console.print(f"Connected components: {summary['components']}")
    console.print(f"Isolated notes: {summary['isolated']}")
    if summary["edges"] > 0:
        console.print(f"Graph density: {summary['density']:.4f}")


if __name__ == "__main__":
    main()
