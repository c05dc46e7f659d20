"""CLI entry point for the cluster intelligence engine."""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import load_config

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--user", "-u", "user_id", default=1, show_default=True, help="Owner of the clusters")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, user_id, verbose):
    """Cluster Intelligence - organize collections into healthy clusters."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["user_id"] = user_id
    ctx.obj["verbose"] = verbose


def _get_config(ctx) -> dict:
    config = load_config(ctx.obj.get("config_path"))
    level = "DEBUG" if ctx.obj.get("verbose") else config.get("logging", {}).get("level", "INFO")
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
    return config


def _get_service(ctx):
    from .service import build_service

    return build_service(_get_config(ctx))


def _unwrap(result: dict):
    """Return the envelope's data, or print the error and exit non-zero."""
    if not result["success"]:
        console.print(f"[red]{result['error']}[/] [dim]({result['code']})[/]")
        sys.exit(1)
    return result["data"]


@cli.command()
@click.pass_context
def clusters(ctx):
    """List clusters with their size."""
    service = _get_service(ctx)
    data = _unwrap(service.get_user_clusters(ctx.obj["user_id"]))

    if not data:
        console.print("[yellow]No clusters yet. Try 'clusterintel auto-cluster <collection-id>'.[/]")
        return

    table = Table(title="Clusters")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Collections", justify="right", style="green")
    table.add_column("Health", justify="right")
    for c in data:
        health = c["health_metrics"].get("health_score")
        table.add_row(str(c["id"]), c["name"], c["cluster_type"], str(c["collection_count"]),
                      f"{health:.2f}" if health is not None else "-")
    console.print(table)


@cli.command()
@click.argument("collection_id", type=int)
@click.option("--max-clusters", default=None, type=int, help="Upper bound on k")
@click.option("--min-size", default=None, type=int, help="Smallest cluster kept")
@click.pass_context
def analyze(ctx, collection_id, max_clusters, min_size):
    """Cluster the documents of one collection by embedding."""
    service = _get_service(ctx)
    console.print(f"[blue]Clustering collection {collection_id}...[/]")
    data = _unwrap(service.get_content_based_clusters(collection_id, ctx.obj["user_id"], max_clusters, min_size))

    if not data["clusters"]:
        console.print(f"[yellow]Not enough vectors to cluster ({data['total_documents']} found).[/]")
        return

    console.print(f"[green]✓ {len(data['clusters'])} cluster(s) over {data['total_documents']} document(s)[/]")
    if data["invalid_vectors_filtered"]:
        console.print(f"  [dim]({data['invalid_vectors_filtered']} vector(s) with mismatched dimensions skipped)[/]")

    table = Table(title="Content Clusters")
    table.add_column("#", style="dim", width=3)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Cohesion", justify="right", style="green")
    table.add_column("Documents", max_width=60)
    for c in data["clusters"]:
        docs = ", ".join(d["filename"] for d in c["documents"][:3])
        table.add_row(str(c["id"] + 1), c["name"], str(c["size"]), f"{c['stats']['cohesion']:.3f}", docs)
    console.print(table)


@cli.command("auto-cluster")
@click.argument("collection_id", type=int)
@click.pass_context
def auto_cluster(ctx, collection_id):
    """Create clusters for an unclustered collection."""
    service = _get_service(ctx)
    data = _unwrap(service.auto_generate_cluster_for_collection(collection_id, ctx.obj["user_id"]))
    main = data["main_cluster"]
    if data["created"]:
        console.print(f"[green]✓ Created {len(data['created'])} cluster(s)[/]")
    console.print(f"  Collection {collection_id} → {main['name']} (#{main['id']})")


@cli.command()
@click.option("--no-save", is_flag=True, help="Do not store the health snapshot")
@click.pass_context
def health(ctx, no_save):
    """Score the health of every cluster."""
    service = _get_service(ctx)
    report = _unwrap(service.analyze_cluster_health(ctx.obj["user_id"], save=not no_save))

    console.print(f"\n[bold]Overall health: {report['health_score']:.2f}[/]")
    if report["clusters"]:
        table = Table(title="Cluster Health")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Status")
        table.add_column("Issues", max_width=50)
        colors = {"healthy": "green", "fair": "yellow", "poor": "orange3", "critical": "red"}
        for c in report["clusters"]:
            color = colors.get(c["status"], "white")
            table.add_row(str(c["cluster_id"]), c["cluster_name"], f"{c['health_score']:.2f}",
                          f"[{color}]{c['status']}[/]", "; ".join(c["issues"]))
        console.print(table)

    for rec in report["recommendations"]:
        console.print(f"  → {rec}")
    for item in report["action_items"]:
        console.print(f"  [dim][{item['priority']}][/] {item['cluster_name']}: {item['action']}")


@cli.command()
@click.argument("cluster_id", type=int)
@click.option("--max-clusters", default=3, show_default=True, help="Upper bound on new clusters")
@click.option("--min-collections", default=2, show_default=True, help="Minimum collections per new cluster")
@click.option("--preserve-original", is_flag=True, help="Keep leftover collections in the original cluster")
@click.pass_context
def split(ctx, cluster_id, max_clusters, min_collections, preserve_original):
    """Split a cluster by collection-name similarity."""
    service = _get_service(ctx)
    data = _unwrap(service.split_cluster(
        cluster_id, ctx.obj["user_id"],
        max_clusters_after_split=max_clusters,
        min_collections_per_cluster=min_collections,
        preserve_original=preserve_original,
    ))
    if not data["success"]:
        console.print(f"[yellow]Not split: {data['message']}[/]")
        for s in data["suggestions"]:
            console.print(f"  → {s}")
        return

    console.print(f"[green]✓ Split into {len(data['new_clusters'])} cluster(s)[/]")
    for c in data["new_clusters"]:
        console.print(f"  {c['name']} (#{c['id']}): {c['collection_count']} collection(s)")
    if data["original_retained"]:
        console.print(f"  [dim]Original kept with {len(data['retained_collection_ids'])} collection(s)[/]")


@cli.command()
@click.argument("cluster_ids", type=int, nargs=-1, required=True)
@click.option("--name", default=None, help="Name of the merged cluster")
@click.option("--description", default=None, help="Description of the merged cluster")
@click.pass_context
def merge(ctx, cluster_ids, name, description):
    """Merge two or more clusters."""
    service = _get_service(ctx)
    data = _unwrap(service.merge_clusters(list(cluster_ids), ctx.obj["user_id"], name, description))
    if not data["success"]:
        console.print(f"[yellow]Not merged: {data['message']}[/]")
        console.print(f"  Compatibility {data['compatibility']:.2f}, minimum {data['min_similarity']:.2f}")
        for s in data["suggestions"]:
            console.print(f"  → {s}")
        return

    merged = data["merged_cluster"]
    console.print(f"[green]✓ Merged into {merged['name']} (#{merged['id']}) "
                  f"with {merged['collection_count']} collection(s)[/]")


@cli.command()
@click.option("--max-size", default=None, type=int, help="Largest acceptable cluster")
@click.option("--min-size", default=None, type=int, help="Smallest acceptable cluster")
@click.option("--threshold", default=None, type=float, help="Similarity needed to move or merge")
@click.option("--dry-run", is_flag=True, help="Only show what would change")
@click.pass_context
def rebalance(ctx, max_size, min_size, threshold, dry_run):
    """Split, merge and move collections until clusters are balanced."""
    service = _get_service(ctx)
    data = _unwrap(service.rebalance_clusters(
        ctx.obj["user_id"],
        max_cluster_size=max_size,
        min_cluster_size=min_size,
        similarity_threshold=threshold,
        dry_run=dry_run,
    ))
    if not data["success"]:
        console.print(f"[yellow]{data['message']}[/]")
        return

    analysis = data["analysis"]
    if not analysis["needs_rebalancing"]:
        console.print(f"[green]✓ {data['message']}[/]")
        return

    proposed = analysis["proposed_changes"]
    console.print(f"[bold]Proposed:[/] {proposed['splits']} split(s), {proposed['merges']} merge(s), "
                  f"{proposed['moves']} move(s)")
    for move in analysis["suggested_moves"]:
        console.print(f"  {move['collection_name']}: {move['from_cluster_name']} → "
                      f"{move['target_cluster_name']} [dim]({move['reason']})[/]")
    if dry_run:
        console.print("[dim]Dry run, nothing changed.[/]")
        return

    summary = data["summary"]
    console.print(f"[green]✓ Applied {summary['total_changes']} change(s): {summary['splits']} split(s), "
                  f"{summary['merges']} merge(s), {summary['moves']} move(s)[/]")


@cli.command()
@click.pass_context
def overlaps(ctx):
    """Show cluster pairs with overlapping collections."""
    service = _get_service(ctx)
    data = _unwrap(service.get_cluster_overlaps(ctx.obj["user_id"]))

    if not data["overlaps"]:
        console.print(f"[yellow]{data['summary'].get('message', 'No significant overlaps.')}[/]")
        return

    table = Table(title="Cluster Overlaps")
    table.add_column("Cluster A", style="cyan")
    table.add_column("Cluster B", style="cyan")
    table.add_column("Similarity", justify="right", style="green")
    table.add_column("Type")
    for o in data["overlaps"]:
        table.add_row(o["cluster_a"]["name"], o["cluster_b"]["name"], f"{o['similarity']:.3f}", o["overlap_type"])
    console.print(table)
    for rec in data["summary"]["recommendations"]:
        console.print(f"  → {rec}")


@cli.command()
@click.option("--threshold", default=None, type=float, help="Cosine similarity to a centroid")
@click.option("--limit", "-n", default=None, type=int, help="Number of results")
@click.pass_context
def bridges(ctx, threshold, limit):
    """Find documents that sit between clusters."""
    service = _get_service(ctx)
    data = _unwrap(service.get_bridge_documents(ctx.obj["user_id"], threshold, limit))

    if not data["bridge_documents"]:
        console.print("[yellow]No bridge documents found.[/]")
        return

    table = Table(title="Bridge Documents")
    table.add_column("Document", style="cyan")
    table.add_column("Clusters")
    table.add_column("Score", justify="right", style="green")
    for b in data["bridge_documents"]:
        table.add_row(b["filename"], " ↔ ".join(b["cluster_names"]), f"{b['bridge_score']:.3f}")
    console.print(table)
    for item in data["action_items"]:
        console.print(f"  [dim][{item['priority']}][/] {item['cluster_name']}: {item['action']}")


@cli.command()
@click.option("--threshold", default=None, type=float, help="Cosine similarity between documents")
@click.pass_context
def duplicates(ctx, threshold):
    """Find near-duplicate documents in different clusters."""
    service = _get_service(ctx)
    data = _unwrap(service.get_cross_cluster_duplicates(ctx.obj["user_id"], threshold))

    if not data["duplications"]:
        console.print("[yellow]No duplicates found.[/]")
        return

    table = Table(title="Cross-Cluster Duplicates")
    table.add_column("Document", style="cyan")
    table.add_column("Duplicate", style="cyan")
    table.add_column("Clusters")
    table.add_column("Similarity", justify="right", style="green")
    for d in data["duplications"]:
        table.add_row(d["source_filename"], d["target_filename"],
                      f"{d['source_cluster_name']} ↔ {d['target_cluster_name']}", f"{d['similarity']:.3f}")
    console.print(table)
    for rec in data["summary"]["recommendations"]:
        console.print(f"  → {rec}")


@cli.command()
@click.argument("collection_id", type=int)
@click.option("--threshold", default=None, type=float, help="Name similarity needed")
@click.pass_context
def related(ctx, collection_id, threshold):
    """List collections related to a collection."""
    service = _get_service(ctx)
    data = _unwrap(service.find_related_collections(collection_id, ctx.obj["user_id"], threshold))

    if not data:
        console.print("[yellow]No related collections.[/]")
        return
    for r in data:
        console.print(f"  [cyan]{r['name']}[/] (#{r['collection_id']}) [green]{r['similarity']:.2f}[/]")


@cli.command()
@click.argument("collection_id", type=int)
@click.option("--accept", "accept_id", default=None, type=int, help="Accept a pending suggestion by id")
@click.option("--dismiss", "dismiss_id", default=None, type=int, help="Dismiss a pending suggestion by id")
@click.pass_context
def suggest(ctx, collection_id, accept_id, dismiss_id):
    """Suggest clusters for a collection, or act on a suggestion."""
    service = _get_service(ctx)
    user_id = ctx.obj["user_id"]

    if accept_id is not None:
        data = _unwrap(service.accept_suggestion(accept_id, user_id))
        console.print(f"[green]✓ Collection {data['collection_id']} moved to cluster #{data['to_cluster_id']}[/]")
        return
    if dismiss_id is not None:
        _unwrap(service.dismiss_suggestion(dismiss_id, user_id))
        console.print(f"[green]✓ Suggestion {dismiss_id} dismissed[/]")
        return

    data = _unwrap(service.get_cluster_suggestions(collection_id, user_id))
    table = Table(title=f"Suggestions for collection {collection_id}")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Type")
    table.add_column("Target", style="cyan")
    table.add_column("Confidence", justify="right", style="green")
    table.add_column("Reasoning", max_width=60)
    for s in data:
        target = s["suggested_name"] or f"#{s['cluster_id']}"
        table.add_row(str(s["id"]), s["type"], target, f"{s['confidence']:.2f}", s["reasoning"] or "")
    console.print(table)


@cli.command()
@click.option("--type", "event_type", default=None, help="Only events of this type")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of events")
@click.pass_context
def events(ctx, event_type, limit):
    """Show the audit trail of topology changes."""
    service = _get_service(ctx)
    data = _unwrap(service.get_cluster_events(ctx.obj["user_id"], event_type, limit))

    if not data:
        console.print("[yellow]No events recorded.[/]")
        return

    table = Table(title="Cluster Events")
    table.add_column("When", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("OK")
    table.add_column("Sources")
    table.add_column("Targets")
    table.add_column("Reason", max_width=50)
    for e in data:
        ok = "[green]✓[/]" if e["success"] else "[red]✗[/]"
        table.add_row(e["created_at"][:19], e["event_type"], ok,
                      ",".join(map(str, e["source_cluster_ids"])),
                      ",".join(map(str, e["target_cluster_ids"])),
                      e["error_message"] or e["trigger_reason"] or "")
    console.print(table)


if __name__ == "__main__":
    cli()
