"""Unit tests for cli.py - convergectl command line."""

import json

import pytest
from click.testing import CliRunner
from unittest.mock import AsyncMock, patch

from cli import cli
from controller import EntryResult, ManifestEntry
from outcomes import ClassifiedOutcome
from reconciler import ReconcileResult
from resources.cdr_organization import CDROrganization

MANIFEST = """\
- kind: CDROrganization
  spec:
    org_id: org-1
    name: Hospital One
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / "manifest.yaml"
    path.write_text(MANIFEST)
    return str(path)


def entry_result(success=True, action="created", **kwargs):
    entry = ManifestEntry("CDROrganization", {"org_id": "org-1", "name": "Hospital One"})
    if success:
        result = ReconcileResult(success=True, action=action, identifier="org-1", **kwargs)
    else:
        result = ReconcileResult(
            success=False,
            outcome=ClassifiedOutcome.permanent(
                "forbidden", status_code=403, operation="create CDROrganization"
            ),
        )
    return EntryResult(entry, result, 0.1)


class TestDiffCommand:
    """Tests for the diff command."""

    def test_prints_patch(self, runner, tmp_path):
        before = tmp_path / "before.json"
        after = tmp_path / "after.yaml"
        before.write_text('{"name": "One", "partOf": {"reference": "Organization/a"}}')
        after.write_text("name: Two\n")

        result = runner.invoke(cli, ["diff", str(before), str(after)])

        assert result.exit_code == 0
        assert json.loads(result.output) == [
            {"op": "replace", "path": "/name", "value": "Two"},
            {"op": "remove", "path": "/partOf"},
        ]

    def test_identical_documents(self, runner, tmp_path):
        path = tmp_path / "doc.yaml"
        path.write_text("name: One\n")

        result = runner.invoke(cli, ["diff", str(path), str(path)])

        assert result.exit_code == 0
        assert json.loads(result.output) == []


class TestApplyCommand:
    """Tests for the apply command."""

    def test_apply_prints_table(self, runner, manifest):
        reconcile = AsyncMock(return_value=[entry_result()])
        with patch("cli._reconcile", reconcile):
            result = runner.invoke(cli, ["--base-url", "https://cdr.example.com", "apply", manifest])

        assert result.exit_code == 0
        assert "CDROrganization" in result.output
        assert "created" in result.output
        assert "org-1" in result.output
        config, action, entries = reconcile.call_args.args
        assert action == "apply"
        assert config.api.base_url == "https://cdr.example.com"
        assert entries[0].spec["name"] == "Hospital One"

    def test_failure_exits_non_zero(self, runner, manifest):
        with patch("cli._reconcile", AsyncMock(return_value=[entry_result(success=False)])):
            result = runner.invoke(cli, ["--base-url", "https://cdr.example.com", "apply", manifest])

        assert result.exit_code == 1
        assert "failed" in result.output
        assert "forbidden" in result.output

    def test_missing_base_url(self, runner, manifest):
        result = runner.invoke(cli, ["apply", manifest], env={"API_BASE_URL": ""})

        assert result.exit_code == 2
        assert "API_BASE_URL" in result.output

    def test_invalid_manifest(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- name: no kind\n")

        result = runner.invoke(cli, ["--base-url", "https://x", "apply", str(path)])

        assert result.exit_code == 1
        assert "Invalid manifest" in result.output

    def test_empty_manifest(self, runner, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        result = runner.invoke(cli, ["--base-url", "https://x", "apply", str(path)])

        assert result.exit_code == 0
        assert "No resources" in result.output


class TestGetCommand:
    """Tests for the get command."""

    def test_json_output(self, runner, manifest):
        state = CDROrganization(id="org-1", name="Hospital One")
        results = [entry_result(action="read", state=state)]
        with patch("cli._reconcile", AsyncMock(return_value=results)):
            result = runner.invoke(
                cli, ["--base-url", "https://x", "get", manifest, "-o", "json"]
            )

        assert result.exit_code == 0
        assert '"resourceType": "Organization"' in result.output
        assert '"action": "read"' in result.output


class TestDeleteCommand:
    """Tests for the delete command."""

    def test_delete_with_purge(self, runner, manifest):
        reconcile = AsyncMock(return_value=[entry_result(action="purged")])
        with patch("cli._reconcile", reconcile):
            result = runner.invoke(
                cli, ["--base-url", "https://x", "delete", manifest, "--purge", "--yes"]
            )

        assert result.exit_code == 0
        assert "purged" in result.output
        assert reconcile.call_args.args[1] == "delete"
        assert reconcile.call_args.kwargs == {"purge": True}

    def test_delete_requires_confirmation(self, runner, manifest):
        reconcile = AsyncMock(return_value=[])
        with patch("cli._reconcile", reconcile):
            result = runner.invoke(cli, ["--base-url", "https://x", "delete", manifest], input="n\n")

        assert result.exit_code == 1
        reconcile.assert_not_called()
