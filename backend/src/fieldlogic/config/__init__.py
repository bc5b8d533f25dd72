"""Form configuration model and loading."""

from fieldlogic.config.loader import (
    BUTTON_TYPES,
    CONTAINER_TYPES,
    Condition,
    ConfigLoader,
    FieldNode,
    FormConfig,
    LogicEntry,
    SchemaApplication,
    SchemaDefinition,
    ValidatorConfig,
    iter_nodes,
)
from fieldlogic.config.validator import (
    ValidationIssue,
    read_document,
    validate_config_file,
    validate_document,
)

__all__ = [
    "BUTTON_TYPES",
    "CONTAINER_TYPES",
    "Condition",
    "ConfigLoader",
    "FieldNode",
    "FormConfig",
    "LogicEntry",
    "SchemaApplication",
    "SchemaDefinition",
    "ValidatorConfig",
    "iter_nodes",
    "ValidationIssue",
    "read_document",
    "validate_config_file",
    "validate_document",
]
