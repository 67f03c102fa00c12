"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from cli.client.base import JobRelayError
from cli.main import app
from cli.utils.config_manager import ConfigManager

JOB = {
    "id": "8f7c2a6e-2b7e-4c1e-9a53-0a5b0f3d9e11",
    "name": "sendEmail",
    "data": {"recipient": "a@b.com", "subject": "Hi"},
    "status": "active",
    "result": None,
    "createdAt": "2026-01-01T00:00:00Z",
    "completedAt": None,
    "failedAt": None,
}


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock API client"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


@pytest.fixture
def config_manager(tmp_path):
    """Config manager writing to a temporary directory"""
    manager = ConfigManager(config_dir=tmp_path)
    with patch("cli.commands.config.config", manager), patch(
        "cli.commands.jobs.config", manager
    ), patch("cli.main.config_manager", manager):
        yield manager


class TestMainCommands:
    """Test main CLI commands"""

    def test_version_option(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Job Relay CLI v1.0.0" in result.stdout

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Job Relay CLI" in result.stdout

    @patch("cli.main.JobRelayClient")
    def test_status_healthy(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.health_check.return_value = {
            "ok": True,
            "version": "1.0.0",
            "environment": "development",
            "database": {"connected": True},
            "queue": {"reachable": True, "depth": 3},
            "worker": None,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Healthy" in result.stdout
        assert "3" in result.stdout

    @patch("cli.main.JobRelayClient")
    def test_status_connection_failure(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.health_check.side_effect = JobRelayError("Connection refused")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout

    @patch("api.v1.jobs.runner.run_worker")
    def test_worker_once(self, mock_run_worker, runner):
        async def fake_run_worker(settings, once=False):
            assert settings.job_concurrency == 4
            return 2

        mock_run_worker.side_effect = fake_run_worker

        result = runner.invoke(app, ["worker", "--once", "--concurrency", "4"])

        assert result.exit_code == 0
        assert "Processed 2 jobs" in result.stdout


class TestJobsCommands:
    """Test job lifecycle commands"""

    @patch("cli.commands.jobs.JobRelayClient")
    def test_create(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.create_job.return_value = JOB
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            app,
            ["jobs", "create", "sendEmail", "--data", '{"recipient": "a@b.com", "subject": "Hi"}'],
        )

        assert result.exit_code == 0
        mock_client.create_job.assert_called_once_with(
            "sendEmail", {"recipient": "a@b.com", "subject": "Hi"}
        )
        assert JOB["id"] in result.stdout

    @pytest.mark.parametrize("data", ["not json", "[1, 2]"])
    def test_create_rejects_bad_data(self, runner, data, config_manager):
        result = runner.invoke(app, ["jobs", "create", "sendEmail", "--data", data])

        assert result.exit_code == 1

    @patch("cli.commands.jobs.JobRelayClient")
    def test_create_api_error(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.create_job.side_effect = JobRelayError("Unknown job type: sendFax", 400)
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "create", "sendFax"])

        assert result.exit_code == 1
        assert "Unknown job type" in result.stdout

    @patch("cli.commands.jobs.JobRelayClient")
    def test_list(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.list_jobs.return_value = [JOB, {**JOB, "id": "other", "status": "failed"}]
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "list", "--status", "failed", "--limit", "5"])

        assert result.exit_code == 0
        mock_client.list_jobs.assert_called_once_with(status="failed", limit=5)
        assert "Showing 2 jobs" in result.stdout

    @patch("cli.commands.jobs.JobRelayClient")
    def test_list_empty(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.list_jobs.return_value = []
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout
        mock_client.list_jobs.assert_called_once_with(status=None, limit=20)

    @patch("cli.commands.jobs.JobRelayClient")
    def test_show(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.get_job.return_value = JOB
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "show", JOB["id"]])

        assert result.exit_code == 0
        assert "sendEmail" in result.stdout

    @patch("cli.commands.jobs.JobRelayClient")
    def test_retry_conflict(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.retry_job.side_effect = JobRelayError("Job is active, expected failed", 400)
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "retry", JOB["id"]])

        assert result.exit_code == 1
        assert "expected failed" in result.stdout

    @patch("cli.commands.jobs.JobRelayClient")
    def test_delete_with_yes(self, mock_client_class, runner, mock_client, config_manager):
        mock_client.delete_job.return_value = JOB
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "delete", JOB["id"], "--yes"])

        assert result.exit_code == 0
        mock_client.delete_job.assert_called_once_with(JOB["id"])

    @patch("cli.commands.jobs.JobRelayClient")
    def test_delete_cancelled(self, mock_client_class, runner, mock_client, config_manager):
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "delete", JOB["id"]], input="n\n")

        assert result.exit_code == 0
        assert "cancelled" in result.stdout
        mock_client.delete_job.assert_not_called()


class TestConfigCommands:
    """Test configuration commands"""

    def test_set_and_get(self, runner, config_manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://jobs:9000"])
        assert result.exit_code == 0
        assert config_manager.get("api.base_url") == "http://jobs:9000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert "http://jobs:9000" in result.stdout

    def test_set_rejects_bad_url(self, runner, config_manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs:9000"])
        assert result.exit_code == 1

    def test_set_numeric_values(self, runner, config_manager):
        assert runner.invoke(app, ["config", "set", "api.timeout", "abc"]).exit_code == 1

        result = runner.invoke(app, ["config", "set", "api.timeout", "10"])
        assert result.exit_code == 0
        assert config_manager.get("api.timeout") == 10

    def test_show_masks_token(self, runner, config_manager):
        config_manager.set("api.token", "s3cret")

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "s3cret" not in result.stdout

    def test_reset(self, runner, config_manager):
        config_manager.set("display.jobs_per_page", 99)

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert config_manager.get("display.jobs_per_page") == 20


class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "missing")

        assert manager.get("api.base_url") == "http://localhost:8000"
        assert not (tmp_path / "missing").exists()

    def test_nested_values_merge_with_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.set("api.headers.X-User-ID", "alice")

        reloaded = ConfigManager(config_dir=tmp_path)

        assert reloaded.get("api.headers.X-User-ID") == "alice"
        assert reloaded.get("api.timeout") == 30
