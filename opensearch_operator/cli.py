"""Main CLI entry point for the OpenSearch operator."""

import threading
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from opensearch_operator.config import OperatorConfig
from opensearch_operator.exceptions import (
    ConfigurationError,
    InvalidSpec,
    OperatorError,
    TransientInfraError,
)
from opensearch_operator.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="opensearch-operator",
    help="Reconciliation and rolling upgrades for OpenSearch clusters on Kubernetes",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


def _load_config(config_path: str | None, namespace: str | None = None) -> OperatorConfig:
    try:
        config = OperatorConfig.load(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e.message}")
        if e.details:
            console.print(f"\n{e.details}")
        raise typer.Exit(code=1)
    if namespace:
        config.namespace = namespace
    return config


def build_controller(config: OperatorConfig, store):
    """Wire a cluster controller to a Kubernetes-backed store."""
    from opensearch_operator.admin import AdminClient
    from opensearch_operator.controller import ClusterController
    from opensearch_operator.kube import SecretCredentials

    admin = AdminClient(
        SecretCredentials(store.core),
        scheme=config.admin_scheme,
        verify_tls=config.verify_tls,
        timeout=config.request_timeout_seconds,
        drain_timeout=config.drain_timeout_seconds,
        poll_interval=config.drain_poll_seconds,
    )
    return ClusterController(
        store,
        probe=admin,
        drainer=admin,
        plan_workers=config.plan_workers,
        poll_seconds=config.poll_seconds,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from opensearch_operator import __version__

    typer.echo(f"opensearch-operator version {__version__}")


@app.command()
def render(
    cluster_file: str = typer.Argument(..., help="Path to an OpenSearchCluster manifest"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table or yaml"),
) -> None:
    """
    Show the child resources a cluster manifest compiles to.

    Nothing is sent to Kubernetes; this is the desired state the operator
    would converge the cluster to.
    """
    from opensearch_operator.compiler import compile_cluster
    from opensearch_operator.kube import to_manifest
    from opensearch_operator.models.cluster import OpenSearchCluster

    if output not in ("table", "yaml"):
        console.print(f"[red]Error:[/red] Unknown output format '{output}'")
        raise typer.Exit(code=1)

    path = Path(cluster_file)
    if not path.exists():
        console.print(f"[red]Error:[/red] Cluster manifest not found: {path}")
        raise typer.Exit(code=1)

    try:
        cluster = OpenSearchCluster.load(str(path))
        resources = compile_cluster(cluster)
    except yaml.YAMLError as e:
        console.print(f"[red]Error:[/red] Invalid YAML in {path}: {e}")
        raise typer.Exit(code=1)
    except ValidationError as e:
        console.print("[red]Validation Error:[/red]")
        for error in e.errors():
            field = ".".join(str(x) for x in error["loc"])
            console.print(f"  - {field}: {error['msg']}")
        raise typer.Exit(code=1)
    except InvalidSpec as e:
        console.print(f"[red]Invalid Spec:[/red] {e.message}")
        if e.details:
            console.print(f"\n{e.details}")
        raise typer.Exit(code=1)

    if output == "yaml":
        typer.echo(yaml.safe_dump_all([to_manifest(r) for r in resources], sort_keys=False))
        return

    table = Table(title=f"Resources for {cluster.key}")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Replicas", justify="right")
    table.add_column("Image", style="green")

    for resource in resources:
        replicas = resource.spec.get("replicas")
        table.add_row(
            resource.kind,
            resource.name,
            "" if replicas is None else str(replicas),
            resource.image or "",
        )

    console.print(table)
    console.print(f"\n[bold]Total resources:[/bold] {len(resources)}")


@app.command()
def reconcile(
    namespace: str = typer.Argument(..., help="Namespace of the cluster"),
    name: str = typer.Argument(..., help="Name of the cluster"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Operator config file"),
) -> None:
    """
    Run a single reconciliation pass for one cluster.

    Useful for debugging: the pass is exactly what the control loop would do
    the next time it looks at this cluster.
    """
    from opensearch_operator.kube import KubernetesStore, load_kube_config

    config = _load_config(config_path)
    try:
        load_kube_config()
        store = KubernetesStore()
        controller = build_controller(config, store)
        result = controller.reconcile_key(namespace, name)
    except TransientInfraError as e:
        console.print(f"[yellow]Transient error:[/yellow] {e.message}")
        console.print("Retry the pass once the API server is reachable")
        raise typer.Exit(code=1)
    except OperatorError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        if e.details:
            console.print(f"\n{e.details}")
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"Unexpected error during reconcile: {e}", exc_info=True)
        console.print(f"[red]Unexpected error:[/red] {e}")
        console.print("\nRun with --verbose --log-file debug.log for more details")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Reconciled {namespace}/{name}")
    console.print(f"  Writes: {result.writes}")
    if result.requeue:
        after = f" in {result.requeue_after:.0f}s" if result.requeue_after else ""
        console.print(f"  Needs another pass{after}")
    for error in result.errors:
        console.print(f"  [yellow]Warning:[/yellow] {error.message}")


@app.command()
def run(
    config_path: str | None = typer.Option(None, "--config", "-c", help="Operator config file"),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Only watch this namespace"
    ),
) -> None:
    """
    Run the operator control loop until interrupted.
    """
    from opensearch_operator.kube import KubernetesStore, Watcher, load_kube_config
    from opensearch_operator.loop import ControlLoop, WorkQueue

    config = _load_config(config_path, namespace)
    try:
        load_kube_config()
        store = KubernetesStore()
        controller = build_controller(config, store)
        clusters = store.list_clusters(config.namespace)
    except OperatorError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Error:[/red] Could not connect to Kubernetes: {e}")
        raise typer.Exit(code=1)

    queue = WorkQueue(config.backoff_base_seconds, config.backoff_max_seconds)
    loop = ControlLoop(
        controller, queue, workers=config.workers, resync_seconds=config.resync_seconds
    )
    watcher = Watcher(store, loop.enqueue, config.namespace)

    for cluster in clusters:
        loop.enqueue(cluster.key)
    scope = config.namespace or "all namespaces"
    console.print(f"Watching {len(clusters)} clusters in {scope}")

    loop.start()
    watcher.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down[/yellow]")
        watcher.stop()
        loop.stop()
        raise typer.Exit(code=130)


if __name__ == "__main__":
    app()
