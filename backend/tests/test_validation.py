"""Tests for validators, message resolution and the validation pipeline."""

import httpx
import pytest

from fieldlogic.config import ConfigLoader
from fieldlogic.engine import ConditionEvaluator, DependencyResolver
from fieldlogic.errors import ConfigurationError
from fieldlogic.expressions import default_functions
from fieldlogic.registry import FunctionRegistry
from fieldlogic.validation import (
    EMAIL_PATTERN,
    HttpValidator,
    MessageResolver,
    ValidationOutcome,
    ValidationPipeline,
    ValidatorContext,
    is_empty,
    normalize_result,
)
from fieldlogic.validation import validators
from fieldlogic.validation.messages import interpolate, kind_to_text


# =============================================================================
# Built-in checks
# =============================================================================


class TestBuiltinChecks:
    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty("  ")
        assert is_empty([])
        assert not is_empty(0)
        assert not is_empty(False)

    def test_required(self):
        assert validators.check_required("", "name") == ValidationOutcome("required", "name")
        assert validators.check_required("x", "name") is None

    def test_email(self):
        assert EMAIL_PATTERN.match("ada@example.com")
        assert validators.check_email("not-an-email", "email").kind == "email"
        assert validators.check_email("ada@example.com", "email") is None

    def test_min_max(self):
        outcome = validators.check_min(3, 5, "qty")

        assert outcome.kind == "min"
        assert outcome.params == {"min": 5, "actual": 3}
        assert validators.check_max("12", 10, "qty").kind == "max"
        assert validators.check_min("abc", 5, "qty") is None

    def test_lengths(self):
        outcome = validators.check_min_length("abc", 8, "pw")

        assert outcome.params == {"requiredLength": 8, "actualLength": 3}
        assert validators.check_max_length(["a", "b"], 1, "tags").kind == "maxLength"
        assert validators.check_min_length(5, 8, "pw") is None

    def test_pattern_must_match_whole_value(self):
        assert validators.check_pattern("abc123", "[a-z]+", "code").kind == "pattern"
        assert validators.check_pattern("abc", "[a-z]+", "code") is None

    def test_invalid_pattern_is_skipped(self):
        assert validators.check_pattern("abc", "(", "code") is None


# =============================================================================
# Messages
# =============================================================================


class TestMessages:
    def test_kind_to_text(self):
        assert kind_to_text("usernameTaken") == "Username taken"
        assert kind_to_text("password_mismatch") == "Password mismatch"

    def test_interpolate_keeps_unknown_placeholders(self):
        assert interpolate("At least {{ min }} ({{unit}})", {"min": 3}) == "At least 3 ({{unit}})"

    def test_resolution_order(self):
        resolver = MessageResolver({"required": "Form default"})
        outcome = ValidationOutcome("required", "name")

        assert resolver.resolve(outcome, {"required": "Field message"}) == "Field message"
        assert resolver.resolve(outcome) == "Form default"
        assert MessageResolver().resolve(outcome) == "This field is required"

    def test_builtin_default_interpolated(self):
        outcome = ValidationOutcome("minLength", "pw", {"requiredLength": 8, "actualLength": 3})

        assert MessageResolver().resolve(outcome) == "Must be at least 8 characters"

    def test_unknown_kind_falls_back_to_kind_text(self):
        assert MessageResolver().resolve(ValidationOutcome("passwordMismatch", "c")) == (
            "Password mismatch"
        )


# =============================================================================
# Result normalization
# =============================================================================


class TestNormalizeResult:
    def test_valid_results(self):
        assert normalize_result(None, "a", "custom") == []
        assert normalize_result(True, "a", "custom") == []

    def test_false_uses_default_kind(self):
        assert normalize_result(False, "a", "tooBig") == [ValidationOutcome("tooBig", "a")]

    def test_kind_string(self):
        assert normalize_result("taken", "a", "custom") == [ValidationOutcome("taken", "a")]

    def test_mapping_params(self):
        outcomes = normalize_result({"kind": "tooFew", "min": 2}, "a", "custom")

        assert outcomes == [ValidationOutcome("tooFew", "a", {"min": 2})]

    def test_list(self):
        assert len(normalize_result(["a", {"kind": "b"}], "x", "custom")) == 2

    def test_unsupported(self):
        with pytest.raises(TypeError):
            normalize_result(42, "a", "custom")


# =============================================================================
# Pipeline
# =============================================================================


def make_pipeline(data, registry=None):
    config = ConfigLoader().load_dict(data)
    functions = default_functions()
    resolver = DependencyResolver()
    pipeline = ValidationPipeline(
        config,
        registry or FunctionRegistry(),
        functions,
        ConditionEvaluator(functions, resolver),
        resolver,
    )
    return config, pipeline


def ctx_for(path, value, scope=""):
    return ValidatorContext(field_path=path, scope=scope, root_value=value)


def check(pipeline, node, path, value, required=False):
    ctx, context = pipeline.contexts(path, "", value)
    return pipeline.validate(node, ctx, context, required)


class TestValidatorContext:
    def test_scoped_reads(self):
        ctx = ctx_for(
            "addresses.1.street",
            {"country": "US", "addresses": [{"street": "A"}, {"street": "B"}]},
            scope="addresses.1",
        )

        assert ctx.value() == "B"
        assert ctx.value_of("street") == "B"
        assert ctx.value_of("$root.country") == "US"
        assert not hasattr(ctx, "form_value")
        assert not hasattr(ctx, "root_value")

    def test_pipeline_contexts_share_scope(self):
        ctx, context = ValidationPipeline.contexts(
            "addresses.1.street",
            "addresses.1",
            {"addresses": [{"street": "A"}, {"street": "B"}]},
        )

        assert ctx.value() == "B"
        assert context.form_value == {"street": "B"}
        assert context.field_value == "B"


class TestPipeline:
    def test_required_short_circuits(self):
        config, pipeline = make_pipeline(
            {"fields": [{"key": "pw", "minLength": 8, "pattern": "[0-9]+"}]}
        )

        outcomes = check(pipeline, config.fields[0], "pw", {"pw": ""}, required=True)

        assert [o.kind for o in outcomes] == ["required"]

    def test_empty_optional_field_skips_builtins(self):
        config, pipeline = make_pipeline({"fields": [{"key": "pw", "minLength": 8}]})

        assert check(pipeline, config.fields[0], "pw", {"pw": None}, False) == []

    def test_builtins_collect_all_failures(self):
        config, pipeline = make_pipeline(
            {"fields": [{"key": "pw", "minLength": 8, "pattern": "[0-9]+"}]}
        )

        outcomes = check(pipeline, config.fields[0], "pw", {"pw": "abc"}, False)

        assert [o.kind for o in outcomes] == ["minLength", "pattern"]

    def test_required_validator_with_when(self):
        config, pipeline = make_pipeline({
            "fields": [
                {"key": "contactMethod"},
                {
                    "key": "phone",
                    "validators": [
                        {
                            "type": "required",
                            "when": {"type": "fieldValue", "fieldPath": "contactMethod", "value": "phone"},
                        }
                    ],
                },
            ]
        })
        phone = config.fields[1]

        assert check(pipeline, phone, "phone", {"contactMethod": "email"}, False) == []
        outcomes = check(pipeline, phone, "phone", {"contactMethod": "phone"}, False)
        assert [o.kind for o in outcomes] == ["required"]

    def test_dynamic_bound(self):
        config, pipeline = make_pipeline({
            "fields": [
                {"key": "minimum"},
                {"key": "amount", "validators": [{"type": "min", "expression": "formValue.minimum"}]},
            ]
        })

        outcomes = check(pipeline, config.fields[1], "amount", {"minimum": 10, "amount": 5}, False)

        assert outcomes[0].params == {"min": 10, "actual": 5}

    def test_custom_expression_with_error_params(self):
        config, pipeline = make_pipeline({
            "fields": [
                {"key": "password"},
                {
                    "key": "confirmPassword",
                    "validators": [
                        {
                            "type": "custom",
                            "expression": "fieldValue == formValue.password",
                            "kind": "passwordMismatch",
                            "errorParams": {"expected": "len(formValue.password)"},
                        }
                    ],
                },
            ]
        })
        node = config.fields[1]

        outcomes = check(pipeline, node, "confirmPassword", {"password": "secret", "confirmPassword": "x"}, False)

        assert outcomes == [ValidationOutcome("passwordMismatch", "confirmPassword", {"expected": 6})]

    def test_custom_runs_on_empty_value(self):
        config, pipeline = make_pipeline({
            "fields": [
                {"key": "a", "validators": [{"type": "custom", "expression": "fieldValue != null"}]}
            ]
        })

        outcomes = check(pipeline, config.fields[0], "a", {"a": None}, False)

        assert [o.kind for o in outcomes] == ["custom"]

    def test_custom_function(self):
        registry = FunctionRegistry()

        @registry.validator("even")
        def even(ctx, params):
            return None if ctx.value() % params["divisor"] == 0 else {"kind": "notEven", "value": ctx.value()}

        config, pipeline = make_pipeline(
            {
                "fields": [
                    {
                        "key": "n",
                        "validators": [{"type": "custom", "functionName": "even", "params": {"divisor": 2}}],
                    }
                ]
            },
            registry,
        )

        outcomes = check(pipeline, config.fields[0], "n", {"n": 3}, False)

        assert outcomes == [ValidationOutcome("notEven", "n", {"value": 3})]

    def test_failing_validator_is_reported(self):
        registry = FunctionRegistry()
        reports = []

        @registry.validator("broken")
        def broken(ctx, params):
            raise RuntimeError("boom")

        config, pipeline = make_pipeline(
            {"fields": [{"key": "a", "validators": [{"type": "custom", "functionName": "broken"}]}]},
            registry,
        )
        pipeline.report = lambda *args: reports.append(args)

        assert check(pipeline, config.fields[0], "a", {"a": 1}, False) == []
        assert reports == [("a", "broken", "boom")]

    def test_schema_applied_twice_runs_once(self):
        config, pipeline = make_pipeline({
            "schemas": {"password": [{"type": "minLength", "value": 8}]},
            "fields": [
                {"key": "pw", "schemas": [{"schema": "password"}, {"schema": "password"}]}
            ],
        })

        outcomes = check(pipeline, config.fields[0], "pw", {"pw": "abc"}, False)

        assert [o.kind for o in outcomes] == ["minLength"]

    def test_apply_when(self):
        config, pipeline = make_pipeline({
            "schemas": {"strict": [{"type": "minLength", "value": 12}]},
            "fields": [
                {"key": "admin"},
                {
                    "key": "pw",
                    "schemas": [
                        {"type": "applyWhen", "schema": "strict", "condition": "formValue.admin"}
                    ],
                },
            ],
        })
        pw = config.fields[1]

        assert check(pipeline, pw, "pw", {"admin": False, "pw": "short"}, False) == []
        outcomes = check(pipeline, pw, "pw", {"admin": True, "pw": "short"}, False)
        assert [o.kind for o in outcomes] == ["minLength"]

    def test_check_functions_requires_http_validator(self):
        registry = FunctionRegistry()

        @registry.async_validator("lookup")
        async def lookup(ctx, params):
            return None

        config, pipeline = make_pipeline(
            {"fields": [{"key": "a", "validators": [{"type": "customHttp", "functionName": "lookup"}]}]},
            registry,
        )

        with pytest.raises(ConfigurationError, match="HttpValidator"):
            pipeline.check_functions()


class TestAsyncPipeline:
    @pytest.mark.asyncio
    async def test_async_validators_selected_separately(self):
        registry = FunctionRegistry()

        @registry.async_validator("taken")
        async def taken(ctx, params):
            return "usernameTaken" if ctx.value() == "admin" else None

        config, pipeline = make_pipeline(
            {"fields": [{"key": "username", "validators": [{"type": "customAsync", "functionName": "taken"}]}]},
            registry,
        )
        node = config.fields[0]
        ctx, context = pipeline.contexts("username", "", {"username": "admin"})

        assert pipeline.validate(node, ctx, context, False) == []
        selected = pipeline.async_validators(node, context)
        async with httpx.AsyncClient() as client:
            outcomes = await pipeline.validate_async(selected, ctx, client)

        assert outcomes == [ValidationOutcome("usernameTaken", "username")]

    @pytest.mark.asyncio
    async def test_async_failure_fails_open(self):
        registry = FunctionRegistry()
        reports = []

        @registry.async_validator("flaky")
        async def flaky(ctx, params):
            raise ConnectionError("unreachable")

        config, pipeline = make_pipeline(
            {"fields": [{"key": "a", "validators": [{"type": "customAsync", "functionName": "flaky"}]}]},
            registry,
        )
        pipeline.report = lambda *args: reports.append(args)
        ctx, context = pipeline.contexts("a", "", {"a": "x"})

        async with httpx.AsyncClient() as client:
            outcomes = await pipeline.validate_async(
                pipeline.async_validators(config.fields[0], context), ctx, client
            )

        assert outcomes == []
        assert reports[0][:2] == ("a", "flaky")


class TestHttpValidator:
    @pytest.mark.asyncio
    async def test_maps_response(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"available": False})

        validator = HttpValidator(
            url="/api/users/check",
            body=lambda ctx, params: {"username": ctx.value()},
            map_response=lambda data, ctx: None if data["available"] else "usernameTaken",
        )
        ctx = ctx_for("username", {"username": "ada"})

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test"
        ) as client:
            result = await validator.run(client, ctx, {})

        assert result == "usernameTaken"
        assert requests[0].url.params["username"] == "ada"

    @pytest.mark.asyncio
    async def test_post_sends_json(self):
        bodies = []

        def handler(request):
            bodies.append(request.content)
            return httpx.Response(200, json={"ok": True})

        validator = HttpValidator(
            url=lambda ctx, params: f"/api/check/{params['kind']}",
            method="post",
            body=lambda ctx, params: {"value": ctx.value()},
        )

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test"
        ) as client:
            result = await validator.run(client, ctx_for("a", {"a": 1}), {"kind": "vat"})

        assert result is None
        assert b'"value"' in bodies[0]

    @pytest.mark.asyncio
    async def test_server_error_fails_open(self):
        validator = HttpValidator(url="/check", map_response=lambda data, ctx: "invalid")

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
            base_url="http://test",
        ) as client:
            result = await validator.run(client, ctx_for("a", {"a": 1}), {})

        assert result is None

    @pytest.mark.asyncio
    async def test_on_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        validator = HttpValidator(url="/check", on_error=lambda error, ctx: "serviceUnavailable")

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test"
        ) as client:
            result = await validator.run(client, ctx_for("a", {"a": 1}), {})

        assert result == "serviceUnavailable"
