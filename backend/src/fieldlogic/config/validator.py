"""
config/validator.py: JSON Schema checks for fieldlogic form configurations.

Documents are checked against the bundled Draft 2020-12 schemas in
``schemas/`` before the loader turns them into FieldNode trees. The loader
rejects a document on its first issue; the CLI and API report all of them.

Usage:
    from fieldlogic.config.validator import validate_config_file

    for issue in validate_config_file(Path("forms/order.yaml")):
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).parent / "schemas"
FORM_SCHEMA = "form.schema.json"


@dataclass
class ValidationIssue:
    file: Path | None
    message: str
    path: str = ""  # e.g. "fields[0].logic[1]"
    severity: str = "error"

    def __str__(self) -> str:
        where = str(self.file) if self.file else "<config>"
        if self.path:
            where = f"{where} at {self.path}"
        return f"[{self.severity.upper()}] {where}: {self.message}"


@lru_cache(maxsize=1)
def _form_validator() -> Draft202012Validator:
    """Compile the form schema once, resolving $refs into its sibling files."""
    schemas = {
        schema_file.name: json.loads(schema_file.read_text())
        for schema_file in sorted(SCHEMAS_DIR.glob("*.schema.json"))
    }
    registry = Registry().with_resources(
        (schema["$id"], DRAFT202012.create_resource(schema)) for schema in schemas.values()
    )
    return Draft202012Validator(schemas[FORM_SCHEMA], registry=registry)


def _location(error: ValidationError) -> str:
    location = ""
    for part in error.absolute_path:
        if isinstance(part, int):
            location += f"[{part}]"
        else:
            location += f".{part}" if location else str(part)
    return location


def validate_document(doc: Any, *, file: Path | None = None) -> list[ValidationIssue]:
    """Check a parsed document. Returns the issues found, ordered by location."""
    errors = sorted(_form_validator().iter_errors(doc), key=lambda e: [str(p) for p in e.path])
    return [ValidationIssue(file, error.message, _location(error)) for error in errors]


def read_document(path: Path) -> Any:
    """Parse a ``.json`` file as JSON and anything else as YAML."""
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def validate_config_file(path: Path) -> list[ValidationIssue]:
    """Parse and check one configuration file.

    Unparseable and empty files come back as a single issue instead of an
    exception, so a batch of files can be checked in one pass.
    """
    try:
        doc = read_document(path)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        return [ValidationIssue(path, f"Parse error: {exc}")]
    if doc is None:
        return [ValidationIssue(path, "File is empty or contains only whitespace")]

    issues = validate_document(doc, file=path)
    logger.debug("Validated %s: %d issue(s)", path, len(issues))
    return issues
