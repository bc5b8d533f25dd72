"""Load form configurations from dicts, JSON or YAML into immutable FieldNode trees."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fieldlogic.config.validator import read_document, validate_document
from fieldlogic.errors import (
    ConfigurationError,
    ExpressionSyntaxError,
    IllegalLogicError,
    PropertyPathError,
)
from fieldlogic.expressions import (
    CONTEXT_VARIABLES,
    ExpressionFunctions,
    LexerError,
    ParseError,
    default_functions,
    parse,
    referenced_functions,
    referenced_identifiers,
)

logger = logging.getLogger(__name__)

CONTAINER_TYPES = frozenset({"group", "row", "array", "page"})
# group and array add a level to the form value; row and page are layout only
NESTING_TYPES = frozenset({"group", "array"})
BUTTON_TYPES = frozenset(
    {"button", "submit", "next", "previous", "addArrayItem", "removeArrayItem"}
)

STATE_LOGIC_TYPES = ("hidden", "disabled", "readonly", "required")
LOGIC_TYPES = STATE_LOGIC_TYPES + ("derivation", "propertyDerivation")
CONTAINER_LOGIC_TYPES = frozenset({"hidden"})
BUTTON_LOGIC_TYPES = frozenset({"hidden", "disabled"})

TRIGGERS = ("onChange", "debounced")

BUILTIN_VALIDATOR_TYPES = ("required", "email", "min", "max", "minLength", "maxLength", "pattern")
VALIDATOR_TYPES = BUILTIN_VALIDATOR_TYPES + ("custom", "customAsync", "customHttp")
ASYNC_VALIDATOR_TYPES = frozenset({"customAsync", "customHttp"})

CONDITION_OPERATORS = (
    "equals",
    "notEquals",
    "greater",
    "greaterOrEqual",
    "less",
    "lessOrEqual",
    "contains",
    "startsWith",
    "endsWith",
    "matches",
)
FORM_STATE_PREDICATES = frozenset({"formInvalid", "formSubmitting", "pageInvalid"})

SCHEMA_APPLICATION_TYPES = ("apply", "applyWhen")

MAX_PROPERTY_DEPTH = 2


@dataclass(frozen=True)
class Condition:
    """A boolean condition tree.

    `type` is one of fieldValue, javascript, and, or, literal, or a form-state
    predicate (formInvalid, formSubmitting, pageInvalid).
    """

    type: str
    field_path: str | None = None
    operator: str | None = None
    value: Any = None
    expression: str | None = None
    conditions: tuple["Condition", ...] = ()


@dataclass(frozen=True)
class LogicEntry:
    """A declarative rule attached to a field.

    At most one of value / expression / function_name is the source;
    `has_value` distinguishes a static `value: null` from no value.
    """

    type: str
    condition: Condition | None = None
    value: Any = None
    has_value: bool = False
    expression: str | None = None
    function_name: str | None = None
    depends_on: tuple[str, ...] | None = None
    trigger: str = "onChange"
    debounce_ms: int | None = None
    target_property: str | None = None
    debug_name: str | None = None
    stop_on_user_override: bool = False
    re_engage_on_dependency_change: bool = False

    @property
    def source(self) -> str | None:
        if self.has_value:
            return "value"
        if self.expression is not None:
            return "expression"
        if self.function_name is not None:
            return "function"
        return None

    @property
    def debounced(self) -> bool:
        return self.trigger == "debounced"


@dataclass(frozen=True)
class ValidatorConfig:
    """Validator definition from configuration."""

    type: str
    value: Any = None
    expression: str | None = None
    when: Condition | None = None
    function_name: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    kind: str | None = None
    error_params: dict[str, str] = field(default_factory=dict)
    depends_on: tuple[str, ...] | None = None

    @property
    def is_async(self) -> bool:
        return self.type in ASYNC_VALIDATOR_TYPES


@dataclass(frozen=True)
class SchemaDefinition:
    """A named, reusable bundle of validators."""

    name: str
    validators: tuple[ValidatorConfig, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class SchemaApplication:
    """Applies a named schema to a field, optionally under a condition."""

    type: str
    schema: str
    condition: Condition | None = None


@dataclass(frozen=True)
class FieldNode:
    """A node in the configuration tree, either a leaf field or a container."""

    key: str
    type: str
    children: tuple["FieldNode", ...] = ()
    logic: tuple[LogicEntry, ...] = ()
    validators: tuple[ValidatorConfig, ...] = ()
    schemas: tuple[SchemaApplication, ...] = ()
    default: Any = None
    props: dict[str, Any] = field(default_factory=dict)
    validation_messages: dict[str, str] = field(default_factory=dict)
    hidden: bool = False
    disabled: bool = False
    readonly: bool = False
    required: bool = False

    @property
    def is_container(self) -> bool:
        return self.type in CONTAINER_TYPES

    @property
    def is_button(self) -> bool:
        return self.type in BUTTON_TYPES

    @property
    def is_array(self) -> bool:
        return self.type == "array"

    @property
    def nests_value(self) -> bool:
        return self.type in NESTING_TYPES

    @property
    def holds_value(self) -> bool:
        return not self.is_container and not self.is_button


@dataclass(frozen=True)
class FormConfig:
    fields: tuple[FieldNode, ...]
    schemas: dict[str, SchemaDefinition] = field(default_factory=dict)
    default_validation_messages: dict[str, str] = field(default_factory=dict)


class ConfigLoader:
    """Builds a FormConfig from a configuration document.

    Structural problems are reported against the bundled JSON Schema first;
    semantic problems (logic matrix, property paths, expression syntax) raise
    the matching ConfigurationError subclass.

    Usage:
        config = ConfigLoader().load_file(Path("forms/order.yaml"))
    """

    def __init__(self, functions: ExpressionFunctions | None = None):
        self.functions = functions if functions is not None else default_functions()

    def load_file(self, path: Path) -> FormConfig:
        """Load a JSON or YAML configuration file, chosen by suffix."""
        data = read_document(path)
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} does not contain a configuration mapping")
        return self.load_dict(data)

    def load_dict(self, data: dict[str, Any]) -> FormConfig:
        """Validate and convert a configuration mapping."""
        issues = validate_document(data)
        if issues:
            first = issues[0]
            raise ConfigurationError(first.message, first.path or None)

        schemas: dict[str, SchemaDefinition] = {}
        for schema_data in self._schema_entries(data.get("schemas", [])):
            schema = self._resolve_schema(schema_data, "schemas")
            schemas[schema.name] = schema

        fields = self._resolve_children(data.get("fields", []), "fields", schemas)

        config = FormConfig(
            fields=fields,
            schemas=schemas,
            default_validation_messages=dict(data.get("defaultValidationMessages", {})),
        )
        logger.debug("Loaded form configuration with %d top-level fields", len(fields))
        return config

    # -------------------------------------------------------------------------
    # Fields
    # -------------------------------------------------------------------------

    def _resolve_children(
        self,
        items: list[dict[str, Any]],
        path: str,
        schemas: dict[str, SchemaDefinition],
    ) -> tuple[FieldNode, ...]:
        nodes = tuple(
            self._resolve_field(item, f"{path}[{i}]", schemas) for i, item in enumerate(items)
        )
        self._check_unique_keys(nodes, path)
        return nodes

    def _check_unique_keys(self, nodes: tuple[FieldNode, ...], path: str) -> None:
        """Keys must be unique in the value scope, where rows and pages are transparent."""
        seen: set[str] = set()
        stack = list(nodes)
        while stack:
            node = stack.pop(0)
            if node.type in ("row", "page"):
                stack[0:0] = list(node.children)
            if node.key in seen:
                raise ConfigurationError(f"Duplicate field key '{node.key}'", path)
            seen.add(node.key)

    def _resolve_field(
        self,
        data: dict[str, Any],
        path: str,
        schemas: dict[str, SchemaDefinition],
    ) -> FieldNode:
        key = data["key"]
        field_type = data.get("type", "input")
        path = f"{path}({key})"

        children = self._resolve_children(data.get("fields", []), path, schemas)

        logic = [self._resolve_logic(entry, f"{path}.logic[{i}]")
                 for i, entry in enumerate(data.get("logic", []))]
        if "derivation" in data:
            logic.append(self._resolve_logic(
                {"type": "derivation", "expression": data["derivation"]}, f"{path}.derivation"
            ))

        validators = [self._resolve_validator(v, f"{path}.validators[{i}]")
                      for i, v in enumerate(data.get("validators", []))]
        validators.extend(self._shorthand_validators(data, path))

        applications = []
        for i, item in enumerate(data.get("schemas", [])):
            applications.append(
                self._resolve_application(item, f"{path}.schemas[{i}]", schemas)
            )

        node = FieldNode(
            key=key,
            type=field_type,
            children=children,
            logic=tuple(logic),
            validators=tuple(validators),
            schemas=tuple(applications),
            default=data.get("value"),
            props=dict(data.get("props", {})),
            validation_messages=dict(data.get("validationMessages", {})),
            hidden=bool(data.get("hidden", False)),
            disabled=bool(data.get("disabled", False)),
            readonly=bool(data.get("readonly", False)),
            required=data.get("required") is True,
        )
        self._check_logic_matrix(node, path)
        return node

    def _shorthand_validators(self, data: dict[str, Any], path: str) -> list[ValidatorConfig]:
        """Turn `email: true`, `min: 0`, `pattern: ...` keys into validators.

        `required: true` is a static flag, not a validator: the required check
        follows the field's required state so required logic can toggle it.
        """
        validators = []
        for name in BUILTIN_VALIDATOR_TYPES:
            if name == "required" or name not in data:
                continue
            value = data[name]
            if name == "email":
                if value is True:
                    validators.append(ValidatorConfig(type="email"))
                continue
            validators.append(ValidatorConfig(type=name, value=value))
        return validators

    def _check_logic_matrix(self, node: FieldNode, path: str) -> None:
        if node.is_container:
            allowed = CONTAINER_LOGIC_TYPES
            kind = f"container type '{node.type}'"
        elif node.is_button:
            allowed = BUTTON_LOGIC_TYPES
            kind = f"button type '{node.type}'"
        else:
            allowed = frozenset(LOGIC_TYPES)
            kind = f"field type '{node.type}'"

        for entry in node.logic:
            if entry.type not in allowed:
                raise IllegalLogicError(
                    f"Logic type '{entry.type}' is not allowed on {kind}", path
                )
            if not node.is_button and _uses_form_state(entry.condition):
                raise IllegalLogicError(
                    "Form-state conditions are only allowed on button fields", path
                )

        if not node.holds_value and (node.validators or node.schemas):
            raise IllegalLogicError(f"Validators are not allowed on {kind}", path)

    # -------------------------------------------------------------------------
    # Logic entries
    # -------------------------------------------------------------------------

    def _resolve_logic(self, data: dict[str, Any], path: str) -> LogicEntry:
        logic_type = data["type"]
        if logic_type not in LOGIC_TYPES:
            raise ConfigurationError(f"Unknown logic type '{logic_type}'", path)

        sources = [name for name in ("value", "expression", "functionName") if name in data]
        if len(sources) > 1:
            raise ConfigurationError(
                f"Logic entry has more than one source: {', '.join(sources)}", path
            )
        if logic_type in ("derivation", "propertyDerivation") and not sources:
            raise ConfigurationError(
                f"'{logic_type}' needs one of value, expression or functionName", path
            )
        if logic_type in STATE_LOGIC_TYPES and not sources and "condition" not in data:
            raise ConfigurationError(
                f"'{logic_type}' needs a condition or a source", path
            )

        target = data.get("targetProperty")
        if logic_type == "propertyDerivation":
            _check_property_path(target, path)
        elif target is not None:
            raise ConfigurationError("targetProperty is only valid on propertyDerivation", path)

        trigger = data.get("trigger", "onChange")
        if trigger not in TRIGGERS:
            raise ConfigurationError(f"Unknown trigger '{trigger}'", path)

        expression = data.get("expression")
        if expression is not None:
            self._check_expression(expression, f"{path}.expression")

        stop = data.get("stopOnUserOverride", False)
        re_engage = data.get("reEngageOnDependencyChange", False)
        if logic_type != "derivation" and (stop or re_engage):
            raise ConfigurationError(
                "stopOnUserOverride and reEngageOnDependencyChange are only valid on derivation",
                path,
            )
        if re_engage and not stop:
            logger.warning(
                "%s: reEngageOnDependencyChange has no effect without stopOnUserOverride", path
            )

        depends_on = data.get("dependsOn")

        return LogicEntry(
            type=logic_type,
            condition=self._resolve_condition(data.get("condition"), f"{path}.condition"),
            value=data.get("value"),
            has_value="value" in data,
            expression=expression,
            function_name=data.get("functionName"),
            depends_on=tuple(depends_on) if depends_on is not None else None,
            trigger=trigger,
            debounce_ms=data.get("debounceMs"),
            target_property=target,
            debug_name=data.get("debugName"),
            stop_on_user_override=stop,
            re_engage_on_dependency_change=re_engage,
        )

    def _resolve_condition(self, data: Any, path: str) -> Condition | None:
        if data is None:
            return None
        if isinstance(data, bool):
            return Condition(type="literal", value=data)
        if isinstance(data, str):
            # A bare string is a javascript condition
            self._check_expression(data, path)
            return Condition(type="javascript", expression=data)

        condition_type = data["type"]
        if condition_type == "fieldValue":
            operator = data.get("operator", "equals")
            if operator not in CONDITION_OPERATORS:
                raise ConfigurationError(f"Unknown condition operator '{operator}'", path)
            return Condition(
                type="fieldValue",
                field_path=data["fieldPath"],
                operator=operator,
                value=data.get("value"),
            )
        if condition_type == "javascript":
            self._check_expression(data["expression"], path)
            return Condition(type="javascript", expression=data["expression"])
        if condition_type in ("and", "or"):
            return Condition(
                type=condition_type,
                conditions=tuple(
                    self._resolve_condition(c, f"{path}.conditions[{i}]")
                    for i, c in enumerate(data.get("conditions", []))
                ),
            )
        if condition_type == "literal":
            return Condition(type="literal", value=bool(data.get("value")))
        if condition_type in FORM_STATE_PREDICATES:
            return Condition(type=condition_type)
        raise ConfigurationError(f"Unknown condition type '{condition_type}'", path)

    def _check_expression(self, expression: str, path: str) -> None:
        """Reject expressions that do not parse or reach outside the sandbox."""
        try:
            ast = parse(expression)
        except (LexerError, ParseError) as e:
            raise ExpressionSyntaxError(f"Invalid expression {expression!r}: {e}", path) from e

        unknown = referenced_identifiers(ast) - CONTEXT_VARIABLES
        if unknown:
            raise ExpressionSyntaxError(
                f"Expression {expression!r} references unknown names: "
                + ", ".join(sorted(unknown)),
                path,
            )

        missing = {name for name in referenced_functions(ast) if name not in self.functions}
        if missing:
            raise ExpressionSyntaxError(
                f"Expression {expression!r} calls unknown functions: "
                + ", ".join(sorted(missing)),
                path,
            )

    # -------------------------------------------------------------------------
    # Validators and schemas
    # -------------------------------------------------------------------------

    def _resolve_validator(self, data: dict[str, Any], path: str) -> ValidatorConfig:
        validator_type = data["type"]
        if validator_type not in VALIDATOR_TYPES:
            raise ConfigurationError(f"Unknown validator type '{validator_type}'", path)

        if validator_type in ASYNC_VALIDATOR_TYPES and not data.get("functionName"):
            raise ConfigurationError(f"'{validator_type}' needs a functionName", path)
        if validator_type == "custom" and not (
            data.get("functionName") or data.get("expression")
        ):
            raise ConfigurationError("'custom' needs an expression or functionName", path)

        expression = data.get("expression")
        if expression is not None:
            self._check_expression(expression, f"{path}.expression")
        error_params = dict(data.get("errorParams", {}))
        depends_on = data.get("dependsOn")
        for name, param_expression in error_params.items():
            self._check_expression(param_expression, f"{path}.errorParams.{name}")

        return ValidatorConfig(
            type=validator_type,
            value=data.get("value"),
            expression=expression,
            when=self._resolve_condition(data.get("when"), f"{path}.when"),
            function_name=data.get("functionName"),
            params=dict(data.get("params", {})),
            kind=data.get("kind"),
            error_params=error_params,
            depends_on=tuple(depends_on) if depends_on is not None else None,
        )

    def _schema_entries(self, data: Any) -> list[dict[str, Any]]:
        # Accept a list of definitions or a mapping of name -> validators
        if isinstance(data, dict):
            return [{"name": name, "validators": validators} for name, validators in data.items()]
        return list(data)

    def _resolve_schema(self, data: dict[str, Any], path: str) -> SchemaDefinition:
        name = data["name"]
        return SchemaDefinition(
            name=name,
            validators=tuple(
                self._resolve_validator(v, f"{path}({name}).validators[{i}]")
                for i, v in enumerate(data.get("validators", []))
            ),
            description=data.get("description", ""),
        )

    def _resolve_application(
        self,
        data: dict[str, Any],
        path: str,
        schemas: dict[str, SchemaDefinition],
    ) -> SchemaApplication:
        application_type = data.get("type", "apply")
        if application_type not in SCHEMA_APPLICATION_TYPES:
            raise ConfigurationError(
                f"Unknown schema application type '{application_type}'", path
            )

        schema = data["schema"]
        if isinstance(schema, dict):
            definition = self._resolve_schema(schema, path)
            existing = schemas.get(definition.name)
            if existing is not None and existing != definition:
                raise ConfigurationError(
                    f"Schema '{definition.name}' is defined twice with different validators",
                    path,
                )
            schemas[definition.name] = definition
            schema = definition.name
        elif schema not in schemas:
            raise ConfigurationError(f"Unknown schema '{schema}'", path)

        condition = self._resolve_condition(data.get("condition"), f"{path}.condition")
        if application_type == "applyWhen" and condition is None:
            raise ConfigurationError("'applyWhen' needs a condition", path)

        return SchemaApplication(type=application_type, schema=schema, condition=condition)


def _check_property_path(target: Any, path: str) -> None:
    if not isinstance(target, str) or not target:
        raise PropertyPathError("propertyDerivation needs a targetProperty", path)
    segments = target.split(".")
    if any(not s for s in segments):
        raise PropertyPathError(f"Malformed targetProperty '{target}'", path)
    if len(segments) > MAX_PROPERTY_DEPTH:
        raise PropertyPathError(
            f"targetProperty '{target}' is deeper than {MAX_PROPERTY_DEPTH} levels", path
        )


def _uses_form_state(condition: Condition | None) -> bool:
    if condition is None:
        return False
    if condition.type in FORM_STATE_PREDICATES:
        return True
    return any(_uses_form_state(c) for c in condition.conditions)


def iter_nodes(nodes: tuple[FieldNode, ...]):
    """Yield every node in the tree, depth first."""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)
