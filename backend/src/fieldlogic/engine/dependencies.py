"""Dependency resolution for logic entries and validators.

For each entry the resolver returns the values that, when changed, require
the entry to be evaluated again:

1. An explicit `dependsOn` list is used verbatim, scoped to the array item.
2. Otherwise the expression is scanned for `formValue.*`, `rootFormValue.*`
   and `externalData.*` reads.
3. A function entry without `dependsOn` depends on nothing (see
   fieldlogic.registry for the contract).

Condition dependencies are always added. Validators add their `dependsOn`
to whatever their `when`, `expression` and `errorParams` read, since a
validator function may read other fields through `ValidatorContext.value_of`.
"""

from fieldlogic.config.loader import Condition, FieldNode, FormConfig, LogicEntry, ValidatorConfig
from fieldlogic.engine import paths
from fieldlogic.expressions import (
    ASTNode,
    FORM,
    Dependency,
    extract_dependencies,
    parse,
    parse_dependency,
)


class DependencyResolver:
    """Resolves and caches dependencies and parsed expressions."""

    def __init__(self) -> None:
        self._asts: dict[str, ASTNode] = {}

    def ast(self, expression: str) -> ASTNode:
        """Parse an expression once and reuse the AST."""
        cached = self._asts.get(expression)
        if cached is None:
            cached = parse(expression)
            self._asts[expression] = cached
        return cached

    def for_entry(self, entry: LogicEntry, field_template: str) -> list[Dependency]:
        if entry.depends_on is not None:
            found = [parse_dependency(d) for d in entry.depends_on]
        elif entry.expression is not None:
            found = extract_dependencies(self.ast(entry.expression), field_template)
        else:
            found = []
        found.extend(self.for_condition(entry.condition, field_template))
        return _unique(found)

    def for_condition(self, condition: Condition | None, field_template: str) -> list[Dependency]:
        if condition is None:
            return []
        if condition.type == "fieldValue":
            return [parse_dependency(condition.field_path or "")]
        if condition.type == "javascript":
            return extract_dependencies(self.ast(condition.expression or ""), field_template)
        found: list[Dependency] = []
        for child in condition.conditions:
            found.extend(self.for_condition(child, field_template))
        return found

    def for_validator(self, validator: ValidatorConfig, field_template: str) -> list[Dependency]:
        found = self.for_condition(validator.when, field_template)
        if validator.depends_on is not None:
            found.extend(parse_dependency(d) for d in validator.depends_on)
        expressions = [validator.expression, *validator.error_params.values()]
        for expression in expressions:
            if expression:
                found.extend(extract_dependencies(self.ast(expression), field_template))
        return found

    def for_validation(
        self, node: FieldNode, config: FormConfig, field_template: str
    ) -> list[Dependency]:
        """Everything a field's validation reads besides its own value."""
        found: list[Dependency] = []
        for validator in node.validators:
            found.extend(self.for_validator(validator, field_template))
        for application in node.schemas:
            found.extend(self.for_condition(application.condition, field_template))
            for validator in config.schemas[application.schema].validators:
                found.extend(self.for_validator(validator, field_template))
        return _unique(found)


def template_path(dependency: Dependency, scope_template: str) -> str:
    """Template path of a form dependency for an entry in the given scope."""
    if dependency.absolute:
        return dependency.path
    return paths.join(scope_template, dependency.path)


def concrete_path(dependency: Dependency, scope: str, indices: tuple[int, ...]) -> str:
    """Concrete path of a form dependency for one entry instance."""
    if dependency.absolute:
        return paths.instantiate(dependency.path, indices)
    return paths.join(scope, dependency.path)


def _unique(dependencies: list[Dependency]) -> list[Dependency]:
    return list(dict.fromkeys(dependencies))


def is_form(dependency: Dependency) -> bool:
    return dependency.source == FORM
