"""
infrasynth CLI entry point.
"""
import json
import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from infrasynth import __version__
from infrasynth.cache import ProbeCache, TopologyCache
from infrasynth.config import EnvironmentStore, Settings, load_settings
from infrasynth.console import ON_CONFLICT_CHOICES
from infrasynth.console import Console as Prompter
from infrasynth.errors import InfrasynthError, UserAbortError
from infrasynth.exposure import ExposureSelector
from infrasynth.merge import MergeResult, merge
from infrasynth.models.topology import Topology
from infrasynth.naming import resource_token
from infrasynth.renderers.engine import synthesize

_BANNER = r"""
  _        __                           _   _
 (_)_ __  / _|_ __ __ _ ___ _   _ _ __ | |_| |__
 | | '_ \| |_| '__/ _` / __| | | | '_ \| __| '_ \
 | | | | |  _| | | (_| \__ \ |_| | | | | |_| | | |
 |_|_| |_|_| |_|  \__,_|___/\__, |_| |_|\__|_| |_|
                            |___/
"""

_ACTION_COLORS = {
    "created": "green",
    "overwritten": "yellow",
    "unchanged": "dim",
    "kept": "cyan",
    "conflict": "red",
}


def _print_banner(no_color: bool = False) -> None:
    c = Console(stderr=True, no_color=no_color)
    c.print(f"[bold blue]{_BANNER}[/bold blue]")
    c.print(f"  [dim]app topology to infrastructure-as-code[/dim]   [dim]v{__version__}[/dim]\n")


def _source_root(path: str, root: Optional[str]) -> str:
    if root:
        return os.path.abspath(root)
    path = os.path.abspath(path)
    return path if os.path.isdir(path) else os.path.dirname(path)


def _settings(root: str, **overrides) -> Settings:
    settings = load_settings(root)
    for key, value in overrides.items():
        if value is not None:
            setattr(settings, key, value)
    return settings


def _load_topology(ctx: click.Context, path: str, stderr: Console) -> Topology:
    """Probe and discover `path` through the per-invocation caches."""
    obj = ctx.ensure_object(dict)
    probes = obj.setdefault("probes", ProbeCache())
    topologies = obj.setdefault("topologies", TopologyCache())

    with stderr.status("[bold]Looking for an app host manifest…"):
        importable = probes.get(path)
    if not importable:
        stderr.print(f"[red]No app host manifest with services found at[/red] {path}")
        sys.exit(2)

    with stderr.status("[bold]Reading topology…"):
        topology = topologies.get(path)
    stderr.print(
        f"Found [bold]{len(topology)}[/bold] resources "
        f"([bold]{len(topology.services())}[/bold] services) in {topology.source}"
    )
    return topology


def _fail(stderr: Console, exc: InfrasynthError) -> None:
    if isinstance(exc, UserAbortError):
        stderr.print(f"[yellow]Aborted:[/yellow] {escape(str(exc))}")
        sys.exit(1)
    stderr.print(f"[red]Error:[/red] {escape(str(exc))}")
    sys.exit(2)


def _print_merge_table(result: MergeResult, dest: str, no_color: bool) -> None:
    tbl = Table(title=f"Files in {dest}", show_header=True, header_style="bold")
    tbl.add_column("File")
    tbl.add_column("Action", width=12)
    for path, action in result.rows():
        color = _ACTION_COLORS.get(action, "") if not no_color else ""
        tbl.add_row(path, f"[{color}]{action}[/{color}]" if color else action)
    Console(stderr=True, no_color=no_color).print(tbl)


def _print_resource_table(topology: Topology, no_color: bool) -> None:
    tbl = Table(title="Topology", show_header=True, header_style="bold")
    tbl.add_column("Resource", width=24)
    tbl.add_column("Kind", width=14)
    tbl.add_column("Type", width=24)
    tbl.add_column("Bindings")
    tbl.add_column("Depends on")
    for r in topology.resources:
        bindings = ", ".join(
            f"{b.name}:{b.target_port if b.target_port is not None else '?'}{' (external)' if b.external else ''}"
            for b in r.bindings
        )
        tbl.add_row(r.name, r.kind.value, r.resource_type, bindings, ", ".join(topology.dependencies(r.name)))
    for p in topology.parameters:
        tbl.add_row(p.name, "parameter", "secret" if p.secret else "", "", "")
    Console(stderr=True, no_color=no_color).print(tbl)


def _topology_json(topology: Topology) -> str:
    doc = {
        "source": topology.source,
        "resources": [
            {
                "name": r.name,
                "kind": r.kind.value,
                "type": r.resource_type,
                "bindings": [
                    {"name": b.name, "scheme": b.scheme, "targetPort": b.target_port, "external": b.external}
                    for b in r.bindings
                ],
                "dependsOn": topology.dependencies(r.name),
            }
            for r in topology.resources
        ],
        "parameters": [{"name": p.name, "secret": p.secret} for p in topology.parameters],
    }
    return json.dumps(doc, indent=2)


_path_argument = click.argument("path", required=False, default=".", type=click.Path())
_environment_option = click.option(
    "--environment", "-e",
    envvar="AZURE_ENV_NAME",
    default=None,
    help="Environment name (default: from infrasynth.yaml, else 'dev').",
)
_root_option = click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="Project root holding .infrasynth/ (default: the manifest's directory).",
)
_service_option = click.option(
    "--service",
    default=None,
    help="Service name the exposure decisions are stored under.",
)
_no_prompt_option = click.option(
    "--no-prompt",
    is_flag=True,
    default=False,
    help="Fail instead of asking when a decision is missing.",
)
_no_color_option = click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable rich terminal color output.",
)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__)
@click.pass_context
def cli(ctx):
    """infrasynth: turn an app topology manifest into deployable infrastructure-as-code."""
    ctx.ensure_object(dict)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


@cli.command()
@_path_argument
@_environment_option
@_root_option
@click.option(
    "--output", "-o",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory to merge the generated files into (default: the project root).",
)
@click.option(
    "--scope",
    envvar="AZURE_SUBSCRIPTION_ID",
    default=None,
    help="Deployment scope used to seed globally unique names.",
)
@_service_option
@click.option(
    "--min-replicas",
    type=click.IntRange(min=0),
    default=None,
    help="Minimum replica count for every service.",
)
@_no_prompt_option
@click.option(
    "--on-conflict",
    type=click.Choice(ON_CONFLICT_CHOICES, case_sensitive=False),
    default="prompt",
    show_default=True,
    help="What to do with existing files that differ from the generated ones.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show what would be written without touching the destination.",
)
@_no_color_option
@click.pass_context
def synth(
    ctx,
    path: str,
    environment: Optional[str],
    root: Optional[str],
    output: Optional[str],
    scope: Optional[str],
    service: Optional[str],
    min_replicas: Optional[int],
    no_prompt: bool,
    on_conflict: str,
    dry_run: bool,
    no_color: bool,
) -> None:
    """
    Generate infrastructure for the app topology at PATH.

    PATH is a manifest file or a directory containing one (default: '.').
    """
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    root = _source_root(path, root)
    settings = _settings(
        root,
        environment=environment,
        scope=scope,
        service=service,
        min_replicas=min_replicas,
        output=output,
    )
    prompter = Prompter(no_prompt=no_prompt, no_color=no_color, on_conflict=on_conflict.lower())

    try:
        # 1. Discover
        topology = _load_topology(ctx, path, stderr)

        # 2. Exposure
        store = EnvironmentStore(root, settings.environment)
        exposed = ExposureSelector(store, prompter, settings.service).select(topology)
        stderr.print(
            "Exposed to the Internet: "
            + (", ".join(f"[bold]{n}[/bold]" for n in exposed) if exposed else "[dim]none[/dim]")
        )

        # 3. Synthesize
        seed = f"{settings.scope or 'local'}/{settings.environment}"
        with stderr.status("[bold]Synthesizing templates…"):
            tree = synthesize(
                topology,
                resource_token(seed),
                root=root,
                min_replicas=settings.min_replicas,
                project_name=settings.service,
            )
        stderr.print(f"Generated [bold]{len(tree)}[/bold] files for environment [bold]{settings.environment}[/bold].")

        # 4. Merge
        dest = os.path.abspath(settings.output or root)
        result = merge(tree, dest, prompter.resolve_conflicts, dry_run=dry_run)
    except InfrasynthError as exc:
        _fail(stderr, exc)
        return

    _print_merge_table(result, dest, no_color)
    if dry_run:
        stderr.print("[dim]Dry run: nothing was written.[/dim]")
    else:
        stderr.print(f"Wrote [bold]{len(result.written)}[/bold] file(s) to [bold]{dest}[/bold]")
    sys.exit(0)


@cli.command()
@_path_argument
@click.option(
    "--json", "as_json",
    is_flag=True,
    default=False,
    help="Print the topology as JSON on stdout.",
)
@_no_color_option
@click.pass_context
def inspect(ctx, path: str, as_json: bool, no_color: bool) -> None:
    """Show the resources, bindings and parameters found at PATH."""
    stderr = Console(stderr=True, no_color=no_color)
    try:
        topology = _load_topology(ctx, path, stderr)
    except InfrasynthError as exc:
        _fail(stderr, exc)
        return

    if as_json:
        click.echo(_topology_json(topology))
    else:
        _print_resource_table(topology, no_color)
    sys.exit(0)


@cli.command()
@_path_argument
@_environment_option
@_root_option
@_service_option
@_no_prompt_option
@_no_color_option
@click.pass_context
def expose(
    ctx,
    path: str,
    environment: Optional[str],
    root: Optional[str],
    service: Optional[str],
    no_prompt: bool,
    no_color: bool,
) -> None:
    """Forget the stored exposure choices and select again."""
    stderr = Console(stderr=True, no_color=no_color)
    root = _source_root(path, root)
    settings = _settings(root, environment=environment, service=service)
    prompter = Prompter(no_prompt=no_prompt, no_color=no_color)

    try:
        topology = _load_topology(ctx, path, stderr)
        selector = ExposureSelector(EnvironmentStore(root, settings.environment), prompter, settings.service)
        if selector.reset():
            stderr.print("[dim]Cleared previous exposure choices.[/dim]")
        exposed = selector.select(topology)
    except InfrasynthError as exc:
        _fail(stderr, exc)
        return

    stderr.print(
        "Exposed to the Internet: "
        + (", ".join(f"[bold]{n}[/bold]" for n in exposed) if exposed else "[dim]none[/dim]")
    )
    sys.exit(0)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
