"""Configuration CLI commands: validate and graph."""

import json
from pathlib import Path

import click

from fieldlogic.config.loader import ConfigLoader, FormConfig, iter_nodes
from fieldlogic.config.validator import validate_config_file
from fieldlogic.engine.dependencies import DependencyResolver
from fieldlogic.engine.graph import DependencyGraph, compile_entries
from fieldlogic.engine.scope import build_specs
from fieldlogic.errors import ConfigurationError


def build_graph(config: FormConfig) -> DependencyGraph:
    return DependencyGraph(compile_entries(build_specs(config.fields), DependencyResolver()))


def _load(path: Path) -> tuple[FormConfig, DependencyGraph]:
    try:
        config = ConfigLoader().load_file(path)
        return config, build_graph(config)
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        raise SystemExit(1)


@click.group()
def config():
    """Form configuration commands."""
    pass


@config.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(path: Path):
    """Validate a form configuration (JSON Schema, logic rules, dependency cycles)."""
    # ── Schema (JSON Schema) validation ─────────────────────────────────────
    issues = validate_config_file(path)
    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    errors = [i for i in issues if i.severity == "error"]
    if errors:
        click.echo(click.style(f"\n{len(errors)} schema error(s) found", fg="red", bold=True))
        raise SystemExit(1)

    # ── Semantic validation ─────────────────────────────────────────────────
    form, graph = _load(path)
    nodes = list(iter_nodes(form.fields))
    entries = sum(len(node.logic) for node in nodes)
    click.echo(
        f"Loaded {len(nodes)} fields, {entries} logic entries, "
        f"{len(form.schemas)} schemas, {len(graph.entries)} derivations"
    )
    for left, right in graph.bidirectional_pairs():
        click.echo(f"  ↔ bidirectional pair: {left} <-> {right}")

    click.echo(click.style("\nConfiguration is valid.", fg="green", bold=True))


@config.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the graph as JSON.")
def graph(path: Path, as_json: bool):
    """Show derivation evaluation order and bidirectional pairs."""
    _, dependency_graph = _load(path)
    data = dependency_graph.to_dict()

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    if not data["order"]:
        click.echo("No derivations.")
        return

    click.echo("Evaluation order:\n")
    for item in data["order"]:
        depends = ", ".join(item["dependsOn"]) or "-"
        click.echo(f"  {item['rank']:>3}  {item['field']}  <- {depends}")

    if data["bidirectionalPairs"]:
        click.echo("\nBidirectional pairs:")
        for left, right in data["bidirectionalPairs"]:
            click.echo(f"  {left} <-> {right}")
