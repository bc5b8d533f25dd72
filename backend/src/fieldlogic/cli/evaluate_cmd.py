"""Evaluate a form configuration against values and print the resolved state."""

import asyncio
import importlib
import json
from pathlib import Path
from typing import Any

import click

from fieldlogic.config.loader import ConfigLoader
from fieldlogic.config.validator import read_document
from fieldlogic.engine.form import FormEngine
from fieldlogic.errors import ConfigurationError
from fieldlogic.registry import FunctionRegistry
from fieldlogic.settings import Settings


def _read_data(path: Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    data = read_document(path)
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a mapping")
    return data


def _import_registry(target: str | None) -> FunctionRegistry | None:
    """Import a FunctionRegistry given as `package.module:attribute`."""
    if target is None:
        return None
    module_name, _, attribute = target.partition(":")
    registry = getattr(importlib.import_module(module_name), attribute or "registry")
    if not isinstance(registry, FunctionRegistry):
        raise click.BadParameter(f"{target} is not a FunctionRegistry")
    return registry


async def _evaluate(engine: FormEngine) -> dict[str, Any]:
    try:
        await engine.settle()
        return {
            "value": engine.value,
            "valid": engine.valid,
            "errors": engine.errors(),
            "states": {path: s.to_dict() for path, s in engine.field_states().items()},
            "diagnostics": [d.to_dict() for d in engine.diagnostics],
        }
    finally:
        await engine.close()


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--values",
    "values_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON or YAML file with field values.",
)
@click.option(
    "--external",
    "external_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON or YAML file with external data.",
)
@click.option(
    "--registry",
    "registry_target",
    default=None,
    help="FunctionRegistry to use, as package.module:attribute.",
)
def evaluate(
    path: Path,
    values_path: Path | None,
    external_path: Path | None,
    registry_target: str | None,
):
    """Resolve values, field states and error messages for a configuration."""
    try:
        engine = FormEngine(
            ConfigLoader().load_file(path),
            registry=_import_registry(registry_target),
            initial_value=_read_data(values_path),
            external_data=_read_data(external_path),
            settings=Settings.from_env(),
        )
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        raise SystemExit(1)

    result = asyncio.run(_evaluate(engine))
    click.echo(json.dumps(result, indent=2, default=str))
