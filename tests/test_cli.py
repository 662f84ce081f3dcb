"""
Tests for the CLI interface.
"""
import json
import os
import tempfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from usage_ledger.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from usage_ledger.core.errors import IngestionError
from usage_ledger.core.pipeline import DataPointFailure, IngestionResult
from usage_ledger.storage.repository import SQLiteTelemetryStore

runner = CliRunner()

PAYLOAD = {
    "resourceMetrics": [{
        "resource": {"attributes": [
            {"key": "session.id", "value": {"stringValue": "S1"}},
            {"key": "user.id", "value": {"stringValue": "U1"}},
        ]},
        "scopeMetrics": [{"metrics": [{
            "name": "claude_code.cost.usage",
            "sum": {"isMonotonic": True, "dataPoints": [
                {"asDouble": 0.15, "timeUnixNano": "1734567890000000000"},
            ]},
        }]}],
    }]
}


@pytest.fixture(autouse=True)
def mock_logging():
    """Keep the CLI from reconfiguring the root logger during tests."""
    with patch('usage_ledger.cli.main.configure_logging') as mock:
        yield mock


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


def _write_json(directory, data, filename="payload.json"):
    path = os.path.join(directory, filename)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f)
    return path


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage Ledger" in result.output

    def test_init_creates_database(self, workdir):
        db_path = os.path.join(workdir, "ledger.db")
        result = runner.invoke(app, ["--db-path", db_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(db_path)

    def test_ingest_then_show_session(self, workdir):
        db_path = os.path.join(workdir, "ledger.db")
        payload_path = _write_json(workdir, PAYLOAD)

        result = runner.invoke(app, ["--db-path", db_path, "ingest", payload_path])
        assert result.exit_code == EXIT_CODE_PASS
        assert "OTLP Payload" in result.output
        assert "Synthetic messages: 1" in result.output
        assert "All data points processed" in result.output

        session = SQLiteTelemetryStore(db_path).get_session("S1")
        assert session.total_cost == pytest.approx(0.15)

        result = runner.invoke(app, ["--db-path", db_path, "session", "S1"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Total cost: $0.1500" in result.output
        assert "Messages" in result.output

    def test_session_not_found(self, workdir):
        db_path = os.path.join(workdir, "ledger.db")
        runner.invoke(app, ["--db-path", db_path, "init"])

        result = runner.invoke(app, ["--db-path", db_path, "session", "missing"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Session not found" in result.output

    def test_ingest_invalid_json(self, workdir):
        path = os.path.join(workdir, "broken.json")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("{not json")

        result = runner.invoke(app, ["--db-path", os.path.join(workdir, "ledger.db"), "ingest", path])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Cannot read payload" in result.output

    def test_ingest_non_object_payload(self, workdir):
        path = _write_json(workdir, [1, 2, 3])

        result = runner.invoke(app, ["--db-path", os.path.join(workdir, "ledger.db"), "ingest", path])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Payload must be a JSON object" in result.output

    def test_ingest_reports_failures(self, workdir):
        payload_path = _write_json(workdir, PAYLOAD)
        failed = IngestionResult(
            resource_blocks=1,
            data_points=1,
            raw_metrics_recorded=1,
            failures=[DataPointFailure(0, "claude_code.cost.usage", "aggregate", "disk full")],
        )

        with patch('usage_ledger.cli.main.IngestionPipeline') as mock_pipeline:
            mock_pipeline.return_value.ingest.side_effect = IngestionError(failed)
            result = runner.invoke(app, ["--db-path", os.path.join(workdir, "ledger.db"), "ingest", payload_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "[aggregate]" in result.output
        assert "disk full" in result.output
        assert "All data points processed" not in result.output

    def test_invalid_config_file(self, workdir):
        config_path = os.path.join(workdir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("surprise: key\n")

        result = runner.invoke(app, ["--config", config_path, "init"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_config_file_sets_log_level(self, workdir, mock_logging):
        config_path = os.path.join(workdir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write(f"db_path: {os.path.join(workdir, 'cfg.db')}\nlog_level: warning\n")

        result = runner.invoke(app, ["--config", config_path, "init"])
        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(os.path.join(workdir, "cfg.db"))
        mock_logging.assert_called_once_with(30)
