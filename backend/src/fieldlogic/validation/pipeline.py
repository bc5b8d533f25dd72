"""Validation pipeline for one field instance.

The effective validator set is the field's own validators followed by the
validators of every applicable schema, de-duplicated by schema name and
recomputed from scratch on each run, so applying a schema twice or
re-evaluating a guard never stacks validators.

Sync order:
1. required (static flag, required logic, or a `required` validator whose
   `when` holds); an empty required field reports only `required`
2. built-ins, skipped for empty values
3. custom expression / function validators

Async validators run separately, and only when the sync pass found nothing.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from fieldlogic.config.loader import FieldNode, FormConfig, ValidatorConfig, iter_nodes
from fieldlogic.engine import paths
from fieldlogic.engine.conditions import ConditionEvaluator
from fieldlogic.engine.dependencies import DependencyResolver
from fieldlogic.errors import ConfigurationError
from fieldlogic.expressions import EvaluationContext, Evaluator, ExpressionFunctions, to_bool
from fieldlogic.registry import FunctionRegistry
from fieldlogic.validation import validators as builtins
from fieldlogic.validation.context import ValidatorContext
from fieldlogic.validation.http import HttpValidator
from fieldlogic.validation.types import ValidationOutcome

logger = logging.getLogger(__name__)

# (field path, validator label, message)
ErrorReporter = Callable[[str, str, str], None]


def normalize_result(result: Any, path: str, default_kind: str) -> list[ValidationOutcome]:
    """Turn a validator function result into outcomes for the validated field.

    Accepts None/True (valid), False (default kind), a kind string, a mapping
    with `kind` (other keys become params) or a list of those.
    """
    if result is None or result is True:
        return []
    if result is False:
        return [ValidationOutcome(default_kind, path)]
    if isinstance(result, str):
        return [ValidationOutcome(result, path)]
    if isinstance(result, Mapping):
        params = {k: v for k, v in result.items() if k != "kind"}
        return [ValidationOutcome(str(result.get("kind") or default_kind), path, params)]
    if isinstance(result, (list, tuple)):
        outcomes: list[ValidationOutcome] = []
        for item in result:
            outcomes.extend(normalize_result(item, path, default_kind))
        return outcomes
    raise TypeError(f"Unsupported validator result {result!r}")


def _label(validator: ValidatorConfig) -> str:
    return validator.function_name or validator.kind or validator.type


class ValidationPipeline:
    def __init__(
        self,
        config: FormConfig,
        registry: FunctionRegistry,
        functions: ExpressionFunctions,
        conditions: ConditionEvaluator,
        resolver: DependencyResolver,
        report: ErrorReporter | None = None,
    ):
        self.config = config
        self.registry = registry
        self.functions = functions
        self.conditions = conditions
        self.resolver = resolver
        self.report = report

    def check_functions(self) -> None:
        """Resolve every validator functionName up front.

        Raises:
            UnresolvedFunctionError: If a name is not registered
        """
        validators = [
            v for node in iter_nodes(self.config.fields) for v in node.validators
        ] + [v for schema in self.config.schemas.values() for v in schema.validators]
        for validator in validators:
            if not validator.function_name:
                continue
            if validator.type == "custom":
                self.registry.validators.get(validator.function_name)
            elif validator.type == "customAsync":
                self.registry.async_validators.get(validator.function_name)
            elif validator.type == "customHttp":
                fn = self.registry.async_validators.get(validator.function_name)
                if not isinstance(fn, HttpValidator):
                    raise ConfigurationError(
                        f"customHttp validator '{validator.function_name}' "
                        "must be registered as an HttpValidator"
                    )

    @staticmethod
    def contexts(
        field_path: str,
        scope: str,
        root: Mapping[str, Any],
        external: Mapping[str, Any] | None = None,
    ) -> tuple[ValidatorContext, EvaluationContext]:
        """The validator view and the expression view of one field instance.

        Validator functions get the narrow ValidatorContext; `when`,
        `expression` and `errorParams` are evaluated in the EvaluationContext.
        """
        external = external if external is not None else {}
        scoped = paths.get_in(root, scope) if scope else root
        return (
            ValidatorContext(field_path, scope, root, external),
            EvaluationContext(
                form_value=scoped if isinstance(scoped, Mapping) else {},
                field_value=paths.get_in(root, field_path),
                field_path=field_path,
                external_data=external,
                root_form_value=root,
            ),
        )

    def effective_validators(
        self, node: FieldNode, context: EvaluationContext
    ) -> list[ValidatorConfig]:
        """Own validators plus those of every applicable schema, each schema once."""
        validators = list(node.validators)
        applied: set[str] = set()
        for application in node.schemas:
            if application.schema in applied:
                continue
            if application.type == "applyWhen" and not self.conditions.evaluate(
                application.condition, context
            ):
                continue
            applied.add(application.schema)
            validators.extend(self.config.schemas[application.schema].validators)
        return validators

    def validate(
        self,
        node: FieldNode,
        ctx: ValidatorContext,
        context: EvaluationContext,
        required: bool,
    ) -> list[ValidationOutcome]:
        """Run the synchronous validators for one field instance."""
        path = ctx.field_path
        value = ctx.value()
        active = [
            v
            for v in self.effective_validators(node, context)
            if not v.is_async and self.conditions.evaluate(v.when, context)
        ]

        if required or any(v.type == "required" for v in active):
            missing = builtins.check_required(value, path)
            if missing is not None:
                return [missing]

        empty = builtins.is_empty(value)
        outcomes: list[ValidationOutcome] = []
        for validator in active:
            if validator.type == "required":
                continue
            try:
                if validator.type == "custom":
                    outcomes.extend(self._custom(validator, ctx, context))
                elif not empty:
                    outcome = self._builtin(validator, value, path, context)
                    if outcome is not None:
                        outcomes.append(outcome)
            except Exception as e:
                logger.error("Validator '%s' on '%s' failed: %s", _label(validator), path, e)
                if self.report is not None:
                    self.report(path, _label(validator), str(e))
        return outcomes

    def _builtin(
        self,
        validator: ValidatorConfig,
        value: Any,
        path: str,
        context: EvaluationContext,
    ) -> ValidationOutcome | None:
        if validator.type == "email":
            return builtins.check_email(value, path)
        bound = validator.value
        if validator.expression is not None:
            bound = Evaluator(context, self.functions).evaluate(
                self.resolver.ast(validator.expression)
            )
        return builtins.BOUND_CHECKS[validator.type](value, bound, path)

    def _custom(
        self,
        validator: ValidatorConfig,
        ctx: ValidatorContext,
        context: EvaluationContext,
    ) -> list[ValidationOutcome]:
        kind = validator.kind or "custom"
        if validator.expression is not None:
            evaluator = Evaluator(context, self.functions)
            if to_bool(evaluator.evaluate(self.resolver.ast(validator.expression))):
                return []
            params = {
                name: evaluator.evaluate(self.resolver.ast(expression))
                for name, expression in validator.error_params.items()
            }
            return [ValidationOutcome(kind, ctx.field_path, params)]

        fn = self.registry.validators.get(validator.function_name or "")
        return normalize_result(fn(ctx, dict(validator.params)), ctx.field_path, kind)

    def async_validators(
        self, node: FieldNode, context: EvaluationContext
    ) -> list[ValidatorConfig]:
        return [
            v
            for v in self.effective_validators(node, context)
            if v.is_async and self.conditions.evaluate(v.when, context)
        ]

    async def validate_async(
        self,
        validators: list[ValidatorConfig],
        ctx: ValidatorContext,
        client: httpx.AsyncClient,
    ) -> list[ValidationOutcome]:
        """Run async validators. Failures are logged and treated as valid."""
        outcomes: list[ValidationOutcome] = []
        for validator in validators:
            fn = self.registry.async_validators.get(validator.function_name or "")
            params = dict(validator.params)
            try:
                if isinstance(fn, HttpValidator):
                    result = await fn.run(client, ctx, params)
                else:
                    result = await fn(ctx, params)
            except Exception as e:
                logger.warning(
                    "Async validator '%s' on '%s' failed open: %s",
                    _label(validator),
                    ctx.field_path,
                    e,
                )
                if self.report is not None:
                    self.report(ctx.field_path, _label(validator), str(e))
                continue
            outcomes.extend(
                normalize_result(result, ctx.field_path, validator.kind or "custom")
            )
        return outcomes
