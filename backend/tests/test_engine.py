"""Tests for FormEngine: derivations, field state, arrays and lifecycle."""

import asyncio

import pytest

from fieldlogic import (
    ConfigLoader,
    DependencyCycleError,
    DerivationConflictError,
    FormEngine,
    FunctionRegistry,
    Settings,
    UnresolvedFunctionError,
)


def make_engine(fields, registry=None, form=None, **kwargs):
    config = ConfigLoader().load_dict({"fields": fields, **(form or {})})
    return FormEngine(config, registry, **kwargs)


INVOICE = [
    {"key": "quantity", "type": "number"},
    {"key": "unitPrice", "type": "number"},
    {"key": "subtotal", "derivation": "formValue.quantity * formValue.unitPrice"},
    {"key": "tax", "derivation": "round(formValue.subtotal * 0.1, 2)"},
    {"key": "total", "derivation": "formValue.subtotal + formValue.tax"},
]

CURRENCY = [
    {"key": "amountUSD", "derivation": "formValue.amountEUR / externalData.rate"},
    {"key": "amountEUR", "derivation": "formValue.amountUSD * externalData.rate"},
]

ADDRESSES = [
    {"key": "country", "value": "US"},
    {
        "key": "addresses",
        "type": "array",
        "fields": [
            {"key": "street"},
            {"key": "hasApartment", "value": False},
            {
                "key": "apartment",
                "required": True,
                "logic": [
                    {
                        "type": "hidden",
                        "condition": {"type": "fieldValue", "fieldPath": "hasApartment", "value": False},
                    }
                ],
            },
        ],
    },
]


# =============================================================================
# Derivations
# =============================================================================


class TestDerivations:
    def test_chain_resolves_in_one_change(self):
        engine = make_engine(INVOICE)

        engine.set_values({"quantity": 2, "unitPrice": 50})

        assert engine.get_value("subtotal") == 100
        assert engine.get_value("tax") == 10
        assert engine.get_value("total") == 110

    def test_each_derivation_runs_once_per_change(self):
        registry = FunctionRegistry()
        calls = []

        @registry.derivation("sumTotal")
        def sum_total(ctx):
            calls.append(dict(ctx.form_value))
            subtotal, tax = ctx.form_value["subtotal"], ctx.form_value["tax"]
            return None if subtotal is None or tax is None else subtotal + tax

        fields = INVOICE[:4] + [
            {
                "key": "total",
                "logic": [
                    {"type": "derivation", "functionName": "sumTotal", "dependsOn": ["subtotal", "tax"]}
                ],
            }
        ]
        engine = make_engine(fields, registry)
        calls.clear()

        engine.set_values({"quantity": 2, "unitPrice": 50})

        assert len(calls) == 1
        assert calls[0]["tax"] == 10
        assert engine.get_value("total") == 110

    def test_initial_values_are_derived(self):
        engine = make_engine(INVOICE, initial_value={"quantity": 3, "unitPrice": 10})

        assert engine.get_value("total") == 33

    def test_blank_inputs_derive_null(self):
        engine = make_engine(INVOICE, initial_value={"quantity": 3, "unitPrice": 10})

        engine.set_value("unitPrice", "")

        assert engine.get_value("subtotal") is None
        assert engine.get_value("total") is None

    def test_bidirectional_pair_settles(self):
        engine = make_engine(CURRENCY, external_data={"rate": 1.1})

        engine.set_value("amountUSD", 100)

        assert engine.get_value("amountUSD") == 100
        assert engine.get_value("amountEUR") == pytest.approx(110)

        engine.set_value("amountEUR", 55)

        assert engine.get_value("amountUSD") == pytest.approx(50)
        assert engine.get_value("amountEUR") == 55
        assert engine.diagnostics == []

    def test_external_change_reruns_dependents(self):
        engine = make_engine(CURRENCY, external_data={"rate": 1.1})
        engine.set_value("amountUSD", 50)

        engine.update_external_data({"rate": 1.2})

        assert engine.get_value("amountEUR") == pytest.approx(60)
        assert engine.get_value("amountUSD") == pytest.approx(50)

    def test_non_convergence_freezes_pair(self):
        engine = make_engine(
            [
                {"key": "a", "derivation": "formValue.b + 1"},
                {"key": "b", "derivation": "formValue.a + 1"},
                {"key": "other"},
            ],
            settings=Settings(max_iterations=5),
        )
        seen = []
        engine.events.on("diagnostic", seen.append)

        engine.set_value("a", 1)

        assert [d.kind for d in engine.diagnostics] == ["non_convergence"]
        assert seen == engine.diagnostics
        frozen_b = engine.get_value("b")

        # A change inside the frozen pair does not restart it
        engine.set_value("a", 1)
        assert engine.get_value("b") == frozen_b
        assert len(engine.diagnostics) == 1

        # A change outside the pair thaws it
        engine.set_value("other", "x")
        engine.set_value("a", 1)
        assert len(engine.diagnostics) == 2

    def test_failing_expression_records_diagnostic(self):
        engine = make_engine(
            [
                {"key": "b", "value": 0},
                {"key": "a", "derivation": "10 / formValue.b"},
            ]
        )

        assert engine.diagnostics[0].kind == "error"
        assert engine.diagnostics[0].entry == "a#0"
        assert engine.get_value("a") is None

        engine.set_value("b", 2)

        assert engine.get_value("a") == 5

    def test_conditional_derivations(self):
        engine = make_engine([
            {"key": "mode"},
            {
                "key": "fee",
                "logic": [
                    {"type": "derivation", "value": 5, "condition": {"type": "fieldValue", "fieldPath": "mode", "value": "express"}},
                    {"type": "derivation", "value": 0, "condition": {"type": "fieldValue", "fieldPath": "mode", "value": "standard"}},
                ],
            },
        ])

        engine.set_value("mode", "express")
        assert engine.get_value("fee") == 5

        engine.set_value("mode", "standard")
        assert engine.get_value("fee") == 0

    def test_conflicting_derivations(self):
        engine = make_engine([
            {"key": "mode"},
            {
                "key": "fee",
                "logic": [
                    {"type": "derivation", "value": 5, "condition": "formValue.mode == 'a'"},
                    {"type": "derivation", "value": 0, "condition": "formValue.mode != 'b'"},
                ],
            },
        ])

        with pytest.raises(DerivationConflictError):
            engine.set_value("mode", "a")

    def test_function_without_depends_on_runs_on_reevaluate(self):
        registry = FunctionRegistry()
        calls = []

        @registry.derivation("stamp")
        def stamp(ctx):
            calls.append(1)
            return len(calls)

        engine = make_engine(
            [
                {"key": "stamp", "logic": [{"type": "derivation", "functionName": "stamp"}]},
                {"key": "name"},
            ],
            registry,
        )
        assert engine.get_value("stamp") == 1

        engine.set_value("name", "Ada")
        assert engine.get_value("stamp") == 1

        engine.reevaluate()
        assert engine.get_value("stamp") == 2

    def test_debounced_derivation_waits_for_flush(self):
        engine = make_engine([
            {"key": "search"},
            {
                "key": "echo",
                "logic": [
                    {
                        "type": "derivation",
                        "expression": "formValue.search + '!'",
                        "trigger": "debounced",
                        "debounceMs": 300,
                    }
                ],
            },
        ])

        engine.set_value("search", "abc")
        assert engine.get_value("echo") is None

        assert engine.flush_debounced() == 1
        assert engine.get_value("echo") == "abc!"

    @pytest.mark.asyncio
    async def test_debounced_derivation_fires_on_loop(self):
        engine = make_engine([
            {"key": "search"},
            {
                "key": "echo",
                "logic": [
                    {
                        "type": "derivation",
                        "expression": "formValue.search + '!'",
                        "trigger": "debounced",
                        "debounceMs": 10,
                    }
                ],
            },
        ])

        engine.set_value("search", "a")
        engine.set_value("search", "ab")
        await asyncio.sleep(0.05)

        assert engine.get_value("echo") == "ab!"
        await engine.close()

    def test_tax_rate_field_drives_tax(self):
        engine = make_engine([
            *INVOICE[:3],
            {"key": "taxRate", "type": "number"},
            {"key": "tax", "derivation": "formValue.subtotal * formValue.taxRate / 100"},
            INVOICE[4],
        ])

        engine.set_values({"quantity": 4, "unitPrice": 50, "taxRate": 8})

        assert engine.get_value("subtotal") == 200
        assert engine.get_value("tax") == 16
        assert engine.get_value("total") == 216

        engine.set_value("taxRate", 10)

        assert engine.get_value("subtotal") == 200
        assert engine.get_value("tax") == 20
        assert engine.get_value("total") == 220

    def test_rounded_currency_pair_is_stable(self):
        engine = make_engine([
            {"key": "amountUSD", "derivation": "round(formValue.amountEUR / 1.1, 2)"},
            {"key": "amountEUR", "derivation": "round(formValue.amountUSD * 1.1, 2)"},
            {"key": "note"},
        ])

        engine.set_value("amountUSD", 100)

        assert engine.get_value("amountUSD") == 100
        assert engine.get_value("amountEUR") == 110
        assert engine.diagnostics == []

        changed = []
        engine.events.on("fieldStateChanged", lambda path, state: changed.append(path))
        engine.set_value("note", "unrelated")

        assert engine.get_value("amountUSD") == 100
        assert engine.get_value("amountEUR") == 110
        assert changed == ["note"]
        assert engine.diagnostics == []

    def test_debounced_non_convergence_freezes_pair(self):
        debounced = {"trigger": "debounced", "debounceMs": 10}
        engine = make_engine(
            [
                {"key": "a", "logic": [{"type": "derivation", "expression": "formValue.b + 1", **debounced}]},
                {"key": "b", "logic": [{"type": "derivation", "expression": "formValue.a + 1", **debounced}]},
                {"key": "other"},
            ],
            settings=Settings(max_iterations=3),
        )

        engine.set_value("a", 1)

        # b, a, b, a, b, a, then b over the limit
        assert engine.flush_debounced() == 7
        assert [d.kind for d in engine.diagnostics] == ["non_convergence"]
        assert engine.get_value("a") == 7
        assert engine.get_value("b") == 6
        assert engine.flush_debounced() == 0

        # A user change outside the pair starts the count again
        engine.set_value("other", "x")
        engine.set_value("a", 1)

        assert engine.flush_debounced() == 7
        assert [d.kind for d in engine.diagnostics] == ["non_convergence"] * 2

    @pytest.mark.asyncio
    async def test_debounced_non_convergence_stops_on_loop(self):
        debounced = {"trigger": "debounced", "debounceMs": 1}
        engine = make_engine(
            [
                {"key": "a", "logic": [{"type": "derivation", "expression": "formValue.b + 1", **debounced}]},
                {"key": "b", "logic": [{"type": "derivation", "expression": "formValue.a + 1", **debounced}]},
            ],
            settings=Settings(max_iterations=3),
        )

        engine.set_value("a", 1)
        await asyncio.sleep(0.2)

        assert [d.kind for d in engine.diagnostics] == ["non_convergence"]
        assert engine.flush_debounced() == 0
        await engine.close()


class TestUserOverride:
    @staticmethod
    def tax_fields(**flags):
        return [
            *INVOICE[:3],
            {
                "key": "tax",
                "logic": [{"type": "derivation", "expression": "formValue.subtotal / 10", **flags}],
            },
        ]

    def test_without_flag_dependency_change_overwrites(self):
        engine = make_engine(self.tax_fields())
        engine.set_values({"quantity": 1, "unitPrice": 100})

        engine.set_value("tax", 5)
        assert engine.get_value("tax") == 5

        engine.set_value("quantity", 2)
        assert engine.get_value("tax") == 20

    def test_stop_on_user_override(self):
        engine = make_engine(self.tax_fields(stopOnUserOverride=True))
        engine.set_values({"quantity": 1, "unitPrice": 100})
        assert engine.get_value("tax") == 10

        engine.set_value("tax", 5)
        engine.set_value("quantity", 2)

        assert engine.get_value("subtotal") == 200
        assert engine.get_value("tax") == 5

    def test_reset_hands_field_back(self):
        engine = make_engine(
            self.tax_fields(stopOnUserOverride=True),
            initial_value={"quantity": 1, "unitPrice": 100},
        )
        engine.set_value("tax", 5)

        engine.reset()
        assert engine.get_value("tax") == 10

        engine.set_value("quantity", 3)
        assert engine.get_value("tax") == 30

    def test_re_engage_on_dependency_change(self):
        engine = make_engine(
            self.tax_fields(stopOnUserOverride=True, reEngageOnDependencyChange=True)
        )
        engine.set_values({"quantity": 1, "unitPrice": 100})

        engine.set_value("tax", 5)
        assert engine.get_value("tax") == 5

        # subtotal is derived; its write re-engages tax
        engine.set_value("quantity", 2)
        assert engine.get_value("tax") == 20

        engine.set_value("tax", 7)
        engine.set_value("unitPrice", 100)
        assert engine.get_value("tax") == 7

    def test_override_in_same_change_as_dependency(self):
        engine = make_engine(
            [
                {"key": "subtotal", "type": "number"},
                {
                    "key": "tax",
                    "logic": [
                        {
                            "type": "derivation",
                            "expression": "formValue.subtotal / 10",
                            "stopOnUserOverride": True,
                            "reEngageOnDependencyChange": True,
                        }
                    ],
                },
            ]
        )

        engine.set_values({"subtotal": 300, "tax": 1})

        assert engine.get_value("tax") == 1

        engine.set_value("subtotal", 400)
        assert engine.get_value("tax") == 40


class TestConstructionErrors:
    def test_unresolved_function(self):
        with pytest.raises(UnresolvedFunctionError):
            make_engine([{"key": "a", "logic": [{"type": "derivation", "functionName": "missing"}]}])

    def test_unresolved_validator(self):
        with pytest.raises(UnresolvedFunctionError):
            make_engine([
                {"key": "a", "validators": [{"type": "custom", "functionName": "missing"}]}
            ])

    def test_cycle(self):
        with pytest.raises(DependencyCycleError):
            make_engine([
                {"key": "a", "derivation": "formValue.b"},
                {"key": "b", "derivation": "formValue.c"},
                {"key": "c", "derivation": "formValue.a"},
            ])


# =============================================================================
# Field state
# =============================================================================


class TestFieldState:
    def test_flags_follow_conditions(self):
        engine = make_engine([
            {"key": "locked"},
            {
                "key": "code",
                "required": True,
                "logic": [
                    {"type": "disabled", "condition": "formValue.locked"},
                    {"type": "readonly", "condition": "formValue.locked == 'soft'"},
                ],
            },
        ])

        assert engine.field_state("code").required is True
        assert [e.kind for e in engine.field_state("code").errors] == ["required"]

        engine.set_value("locked", True)
        state = engine.field_state("code")

        assert state.disabled is True
        assert state.readonly is False
        assert state.errors == ()
        assert engine.valid

    def test_required_logic(self):
        engine = make_engine([
            {"key": "contactMethod"},
            {
                "key": "phone",
                "logic": [
                    {
                        "type": "required",
                        "condition": {"type": "fieldValue", "fieldPath": "contactMethod", "value": "phone"},
                    }
                ],
            },
        ])
        assert engine.valid

        engine.set_value("contactMethod", "phone")

        assert engine.field_state("phone").required is True
        assert engine.errors() == {"phone": ["This field is required"]}

    def test_hidden_container_suppresses_child_errors(self):
        engine = make_engine([
            {"key": "sameAsBilling"},
            {
                "key": "shipping",
                "type": "group",
                "logic": [{"type": "hidden", "condition": "formValue.sameAsBilling == true"}],
                "fields": [{"key": "street", "required": True}],
            },
        ])
        assert not engine.valid

        engine.set_value("sameAsBilling", True)

        assert engine.field_state("shipping").hidden is True
        assert engine.field_state("shipping.street").errors == ()
        assert engine.valid

    def test_external_data_condition(self):
        engine = make_engine(
            [{"key": "discount", "logic": [{"type": "hidden", "condition": "!externalData.features.discounts"}]}],
            external_data={"features": {"discounts": False}},
        )
        assert engine.field_state("discount").hidden is True

        engine.set_external_data({"features": {"discounts": True}})

        assert engine.field_state("discount").hidden is False
        assert engine.external_data["features"] == {"discounts": True}

    def test_property_derivations(self):
        engine = make_engine(
            [
                {
                    "key": "amount",
                    "props": {"label": "Amount", "hint": {"text": "Enter an amount", "color": "grey"}},
                    "logic": [
                        {
                            "type": "propertyDerivation",
                            "targetProperty": "label",
                            "expression": "'Amount (' + externalData.currency + ')'",
                        },
                        {
                            "type": "propertyDerivation",
                            "targetProperty": "hint.text",
                            "value": "Large amount",
                            "condition": "formValue.amount > 1000",
                        },
                    ],
                }
            ],
            external_data={"currency": "EUR"},
        )
        props = engine.field_state("amount").properties
        assert props["label"] == "Amount (EUR)"
        assert props["hint"] == {"text": "Enter an amount", "color": "grey"}

        engine.set_value("amount", 5000)
        assert engine.field_state("amount").properties["hint"]["text"] == "Large amount"

        engine.update_external_data({"currency": "USD"})
        assert engine.field_state("amount").properties["label"] == "Amount (USD)"

        engine.set_value("amount", 10)
        assert engine.field_state("amount").properties["hint"]["text"] == "Enter an amount"

    def test_validation_depends_on_other_field(self):
        engine = make_engine([
            {"key": "password"},
            {
                "key": "confirmPassword",
                "validationMessages": {"passwordMismatch": "Passwords do not match"},
                "validators": [
                    {
                        "type": "custom",
                        "expression": "fieldValue == formValue.password",
                        "kind": "passwordMismatch",
                    }
                ],
            },
        ])

        engine.set_value("confirmPassword", "secret")
        assert engine.errors() == {"confirmPassword": ["Passwords do not match"]}

        engine.set_value("password", "secret")
        assert engine.errors() == {}

    def test_function_validator_depends_on_other_field(self):
        registry = FunctionRegistry()

        @registry.validator("matchesPassword")
        def matches_password(ctx, params):
            return None if ctx.value() == ctx.value_of("password") else "passwordMismatch"

        engine = make_engine(
            [
                {"key": "password"},
                {
                    "key": "confirmPassword",
                    "validationMessages": {"passwordMismatch": "Passwords do not match"},
                    "validators": [
                        {"type": "custom", "functionName": "matchesPassword", "dependsOn": ["password"]}
                    ],
                },
            ],
            registry,
        )

        engine.set_value("confirmPassword", "secret")
        assert engine.errors() == {"confirmPassword": ["Passwords do not match"]}

        engine.set_value("password", "secret")
        assert engine.errors() == {}

        engine.set_value("password", "changed")
        assert engine.errors() == {"confirmPassword": ["Passwords do not match"]}
        assert engine.field_state("password").errors == ()

    def test_mismatch_stays_on_confirm_field(self):
        engine = make_engine([
            {"key": "password"},
            {
                "key": "confirmPassword",
                "validators": [
                    {
                        "type": "custom",
                        "expression": "fieldValue == formValue.password",
                        "kind": "passwordMismatch",
                    }
                ],
            },
        ])

        engine.set_value("confirmPassword", "secret")
        engine.set_value("password", "other")

        assert list(engine.errors()) == ["confirmPassword"]
        assert engine.field_state("password").errors == ()
        assert [e.field_path for e in engine.field_state("confirmPassword").errors] == [
            "confirmPassword"
        ]

    def test_default_messages_from_config(self):
        engine = make_engine(
            [{"key": "name", "required": True}, {"key": "code", "minLength": 3}],
            form={"defaultValidationMessages": {"required": "Please fill in"}},
        )

        engine.set_value("code", "ab")

        assert engine.errors() == {
            "name": ["Please fill in"],
            "code": ["Must be at least 3 characters"],
        }

    def test_schema_guard_toggling_does_not_stack(self):
        engine = make_engine(
            [
                {"key": "admin"},
                {
                    "key": "pw",
                    "schemas": [
                        {"type": "applyWhen", "schema": "strict", "condition": "formValue.admin"},
                        {"type": "applyWhen", "schema": "strict", "condition": "formValue.admin"},
                    ],
                },
            ],
            form={"schemas": {"strict": [{"type": "minLength", "value": 12}]}},
            initial_value={"pw": "short"},
        )

        for admin in (True, False, True):
            engine.set_value("admin", admin)

        assert [e.kind for e in engine.field_state("pw").errors] == ["minLength"]

    def test_state_to_dict(self):
        engine = make_engine([{"key": "code", "minLength": 3}], initial_value={"code": "ab"})

        data = engine.field_state("code").to_dict()

        assert data["value"] == "ab"
        assert data["errors"] == [
            {"kind": "minLength", "fieldPath": "code", "params": {"requiredLength": 3, "actualLength": 2}}
        ]
        assert data["messages"] == ["Must be at least 3 characters"]

    def test_state_changed_events(self):
        engine = make_engine(INVOICE)
        changed = []
        engine.events.on("fieldStateChanged", lambda path, state: changed.append(path))

        engine.set_values({"quantity": 2, "unitPrice": 5})

        assert {"quantity", "unitPrice", "subtotal", "tax", "total"} <= set(changed)

        changed.clear()
        engine.set_value("quantity", 2)
        assert changed == []

    def test_unknown_paths(self):
        engine = make_engine(INVOICE)

        with pytest.raises(ValueError):
            engine.set_value("nope", 1)
        with pytest.raises(ValueError):
            engine.field_state("nope")


# =============================================================================
# Groups and arrays
# =============================================================================


class TestStructure:
    def test_rows_do_not_nest_values(self):
        engine = make_engine([
            {"key": "names", "type": "row", "fields": [{"key": "first"}, {"key": "last"}]},
        ])

        engine.set_value("first", "Ada")

        assert engine.value == {"first": "Ada", "last": None}

    def test_group_value(self):
        engine = make_engine([
            {"key": "contact", "type": "group", "fields": [{"key": "email", "email": True}]},
        ])

        engine.set_value("contact", {"email": "not-an-email"})

        assert engine.get_value("contact.email") == "not-an-email"
        assert engine.errors() == {"contact.email": ["Please enter a valid email address"]}

    def test_array_items_are_isolated(self):
        engine = make_engine(
            ADDRESSES, initial_value={"addresses": [{"street": "A"}, {"street": "B"}]}
        )
        assert engine.field_state("addresses.0.apartment").hidden is True
        assert engine.field_state("addresses.1.apartment").hidden is True
        assert engine.valid

        engine.set_value("addresses.1.hasApartment", True)

        assert engine.field_state("addresses.0.apartment").hidden is True
        assert engine.field_state("addresses.1.apartment").hidden is False
        assert engine.errors() == {"addresses.1.apartment": ["This field is required"]}

    def test_add_array_item(self):
        engine = make_engine(ADDRESSES, initial_value={"addresses": [{"street": "A"}]})

        index = engine.add_array_item("addresses", {"street": "C"})

        assert index == 1
        assert engine.get_value("addresses.1") == {
            "street": "C",
            "hasApartment": False,
            "apartment": None,
        }
        assert engine.field_state("addresses.1.apartment").hidden is True

    def test_insert_array_item_at_index(self):
        engine = make_engine(ADDRESSES, initial_value={"addresses": [{"street": "A"}]})

        engine.add_array_item("addresses", {"street": "first"}, index=0)

        assert [a["street"] for a in engine.get_value("addresses")] == ["first", "A"]

    def test_remove_array_item_rebinds_state(self):
        engine = make_engine(
            ADDRESSES, initial_value={"addresses": [{"street": "A"}, {"street": "B"}]}
        )
        engine.set_value("addresses.1.hasApartment", True)

        engine.remove_array_item("addresses", 0)

        assert engine.get_value("addresses") == [
            {"street": "B", "hasApartment": True, "apartment": None}
        ]
        assert engine.field_state("addresses.0.apartment").hidden is False
        with pytest.raises(ValueError):
            engine.field_state("addresses.1.apartment")

    def test_remove_missing_item(self):
        engine = make_engine(ADDRESSES)

        with pytest.raises(IndexError):
            engine.remove_array_item("addresses", 0)

    def test_item_derivations_use_item_scope(self):
        engine = make_engine(
            [
                {"key": "discount", "value": 0.5},
                {
                    "key": "items",
                    "type": "array",
                    "fields": [
                        {"key": "qty"},
                        {"key": "price"},
                        {
                            "key": "lineTotal",
                            "derivation": "formValue.qty * formValue.price * (1 - rootFormValue.discount)",
                        },
                    ],
                },
            ],
            initial_value={"items": [{"qty": 2, "price": 10}, {"qty": 1, "price": 4}]},
        )

        assert engine.get_value("items.0.lineTotal") == 10
        assert engine.get_value("items.1.lineTotal") == 2

        engine.set_value("discount", 0)

        assert engine.get_value("items.0.lineTotal") == 20
        assert engine.get_value("items.1.lineTotal") == 4

    def test_array_inside_group_uses_item_scope(self):
        engine = make_engine(
            [
                {
                    "key": "order",
                    "type": "group",
                    "fields": [
                        {"key": "reference"},
                        {
                            "key": "lines",
                            "type": "array",
                            "fields": [
                                {"key": "qty"},
                                {"key": "price"},
                                {"key": "total", "derivation": "formValue.qty * formValue.price"},
                            ],
                        },
                    ],
                }
            ],
            initial_value={"order": {"lines": [{"qty": 2, "price": 10}, {"qty": 1, "price": 4}]}},
        )

        assert engine.get_value("order.lines.0.total") == 20
        assert engine.get_value("order.lines.1.total") == 4

        engine.set_value("order.lines.1.qty", 3)

        assert engine.get_value("order.lines.0.total") == 20
        assert engine.get_value("order.lines.1.total") == 12

        index = engine.add_array_item("order.lines", {"qty": 5, "price": 2})

        assert engine.get_value(f"order.lines.{index}.total") == 10
        assert engine.get_value("order.lines.1.total") == 12
        assert engine.diagnostics == []


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    def test_reset_restores_initial_value(self):
        engine = make_engine(INVOICE, initial_value={"quantity": 2, "unitPrice": 50})
        events = []
        engine.events.on("reset", lambda: events.append("reset"))
        engine.set_value("quantity", 5)

        engine.reset()

        assert engine.get_value("quantity") == 2
        assert engine.get_value("total") == 110
        assert events == ["reset"]

    def test_clear_empties_everything(self):
        engine = make_engine(
            ADDRESSES, initial_value={"addresses": [{"street": "A"}]}
        )
        events = []
        engine.events.on("clear", lambda: events.append("clear"))

        engine.clear()

        assert engine.value == {"country": None, "addresses": []}
        assert events == ["clear"]
        with pytest.raises(ValueError):
            engine.field_state("addresses.0.street")

    @pytest.mark.asyncio
    async def test_submit_valid_form(self):
        engine = make_engine(
            [
                {"key": "name", "required": True},
                {
                    "key": "save",
                    "type": "submit",
                    "logic": [
                        {
                            "type": "disabled",
                            "condition": {
                                "type": "or",
                                "conditions": [{"type": "formInvalid"}, {"type": "formSubmitting"}],
                            },
                        }
                    ],
                },
            ]
        )
        assert engine.field_state("save").disabled is True

        engine.set_value("name", "Ada")
        assert engine.field_state("save").disabled is False

        submitted = []
        during = []

        async def handler(value):
            during.append(engine.field_state("save").disabled)
            submitted.append(value)

        assert await engine.submit(handler) is True
        assert submitted == [{"name": "Ada"}]
        assert during == [True]
        assert engine.field_state("save").disabled is False
        assert engine.submitting is False

    @pytest.mark.asyncio
    async def test_submit_invalid_form(self):
        engine = make_engine([{"key": "name", "required": True}])
        events = []
        engine.events.on("submit", events.append)

        assert await engine.submit() is False
        assert events == []

    def test_page_invalid(self):
        engine = make_engine([
            {
                "key": "page1",
                "type": "page",
                "fields": [
                    {"key": "name", "required": True},
                    {
                        "key": "next",
                        "type": "next",
                        "logic": [{"type": "disabled", "condition": {"type": "pageInvalid"}}],
                    },
                ],
            },
            {"key": "page2", "type": "page", "fields": [{"key": "age", "required": True}]},
        ])
        assert engine.field_state("next").disabled is True

        engine.set_value("name", "Ada")

        assert engine.field_state("next").disabled is False
        assert not engine.valid
