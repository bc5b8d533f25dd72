"""Tests for fieldlogic CLI commands."""

import json

import pytest
import yaml
from click.testing import CliRunner

from fieldlogic.cli.main import cli

INVOICE = {
    "fields": [
        {"key": "quantity", "type": "number", "required": True},
        {"key": "unitPrice", "type": "number"},
        {"key": "subtotal", "derivation": "formValue.quantity * formValue.unitPrice"},
        {"key": "tax", "derivation": "round(formValue.subtotal * 0.1, 2)"},
        {"key": "total", "derivation": "formValue.subtotal + formValue.tax"},
    ]
}

CURRENCY = {
    "fields": [
        {"key": "amountUSD", "derivation": "formValue.amountEUR / externalData.rate"},
        {"key": "amountEUR", "derivation": "formValue.amountUSD * externalData.rate"},
    ]
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def write_config(tmp_path):
    def write(data, name="form.yaml"):
        path = tmp_path / name
        if name.endswith(".json"):
            path.write_text(json.dumps(data))
        else:
            path.write_text(yaml.safe_dump(data))
        return path

    return write


class TestConfigValidate:
    def test_valid_config(self, runner, write_config):
        result = runner.invoke(cli, ["config", "validate", str(write_config(INVOICE))])

        assert result.exit_code == 0
        assert "Loaded 5 fields, 3 logic entries, 0 schemas, 3 derivations" in result.output
        assert "Configuration is valid." in result.output

    def test_reports_bidirectional_pairs(self, runner, write_config):
        result = runner.invoke(cli, ["config", "validate", str(write_config(CURRENCY))])

        assert result.exit_code == 0
        assert "amountEUR <-> amountUSD" in result.output

    def test_schema_errors(self, runner, write_config):
        path = write_config({"fields": [{"type": "input"}]})

        result = runner.invoke(cli, ["config", "validate", str(path)])

        assert result.exit_code == 1
        assert "schema error(s) found" in result.output

    def test_semantic_errors(self, runner, write_config):
        path = write_config({
            "fields": [
                {
                    "key": "address",
                    "type": "group",
                    "logic": [{"type": "derivation", "value": 1}],
                    "fields": [{"key": "street"}],
                }
            ]
        })

        result = runner.invoke(cli, ["config", "validate", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output
        assert "not allowed on container type 'group'" in result.output

    def test_cycle(self, runner, write_config):
        path = write_config({
            "fields": [
                {"key": "a", "derivation": "formValue.b"},
                {"key": "b", "derivation": "formValue.c"},
                {"key": "c", "derivation": "formValue.a"},
            ]
        })

        result = runner.invoke(cli, ["config", "validate", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["config", "validate", str(tmp_path / "nope.yaml")])

        assert result.exit_code != 0


class TestConfigGraph:
    def test_text_output(self, runner, write_config):
        result = runner.invoke(cli, ["config", "graph", str(write_config(INVOICE))])

        assert result.exit_code == 0
        assert "Evaluation order:" in result.output
        fields = [line.split()[1] for line in result.output.splitlines() if "<-" in line]
        assert fields == ["subtotal", "tax", "total"]

    def test_json_output(self, runner, write_config):
        result = runner.invoke(
            cli, ["config", "graph", "--json", str(write_config(CURRENCY, "form.json"))]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [item["field"] for item in data["order"]] == ["amountEUR", "amountUSD"]
        assert data["bidirectionalPairs"] == [["amountEUR", "amountUSD"]]

    def test_no_derivations(self, runner, write_config):
        result = runner.invoke(
            cli, ["config", "graph", str(write_config({"fields": [{"key": "name"}]}))]
        )

        assert result.exit_code == 0
        assert "No derivations." in result.output


class TestEvaluate:
    def test_with_values(self, runner, write_config, tmp_path):
        values = tmp_path / "values.json"
        values.write_text(json.dumps({"quantity": 2, "unitPrice": 50}))

        result = runner.invoke(
            cli, ["evaluate", str(write_config(INVOICE)), "--values", str(values)]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["value"]["total"] == 110
        assert data["valid"] is True
        assert data["states"]["total"]["value"] == 110

    def test_reports_errors(self, runner, write_config):
        result = runner.invoke(cli, ["evaluate", str(write_config(INVOICE))])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["errors"] == {"quantity": ["This field is required"]}

    def test_external_data(self, runner, write_config, tmp_path):
        values = tmp_path / "values.yaml"
        values.write_text(yaml.safe_dump({"amountUSD": 100}))
        external = tmp_path / "external.yaml"
        external.write_text(yaml.safe_dump({"rate": 2}))

        result = runner.invoke(
            cli,
            [
                "evaluate",
                str(write_config(CURRENCY)),
                "--values",
                str(values),
                "--external",
                str(external),
            ],
        )

        assert result.exit_code == 0
        assert json.loads(result.stdout)["value"] == {"amountUSD": 100, "amountEUR": 200}

    def test_values_must_be_mapping(self, runner, write_config, tmp_path):
        values = tmp_path / "values.json"
        values.write_text("[1, 2]")

        result = runner.invoke(
            cli, ["evaluate", str(write_config(INVOICE)), "--values", str(values)]
        )

        assert result.exit_code != 0

    def test_bad_registry_target(self, runner, write_config):
        result = runner.invoke(
            cli, ["evaluate", str(write_config(INVOICE)), "--registry", "json:dumps"]
        )

        assert result.exit_code != 0
