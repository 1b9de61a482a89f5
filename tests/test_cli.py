"""Tests for CLI commands"""

import json
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from cli.client.base import StudyJobsError
from cli.client.endpoints import StudyJobsClient
from cli.main import app
from cli.utils.config_manager import ConfigManager, config


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the shared CLI config at a temporary directory"""
    monkeypatch.setattr(config, "config_dir", tmp_path)
    monkeypatch.setattr(config, "config_file", tmp_path / "config.yaml")
    return config


def make_mock_client(**methods):
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in methods.items():
        if isinstance(value, Exception):
            getattr(client, name).side_effect = value
        else:
            getattr(client, name).return_value = value
    return client


JOB = {
    "id": "5b1f6c1e-2a7d-4c55-9c3e-0f1a2b3c4d5e",
    "type": "content_generation",
    "status": "pending",
    "attempts": 0,
    "max_attempts": 3,
    "priority": 0,
    "created_at": "2026-01-05T09:00:00+00:00",
    "result": None,
    "error": None,
}


class TestMainCommands:
    """Test main CLI commands"""

    @patch("cli.main.StudyJobsClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        mock_client_class.return_value = make_mock_client(
            health_check={
                "ok": True,
                "version": "1.0.0",
                "environment": "development",
                "queue": {"queue_depth": 4, "stale_jobs_count": 0},
            }
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout

    @patch("cli.main.StudyJobsClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command with connection failure"""
        mock_client_class.return_value = make_mock_client(
            health_check=StudyJobsError("Connection failed")
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test job commands"""

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_enqueue(self, mock_client_class, runner):
        """Test enqueueing a job with a JSON payload"""
        client = make_mock_client(create_job=JOB)
        mock_client_class.return_value = client

        result = runner.invoke(
            app,
            [
                "jobs",
                "enqueue",
                "content_generation",
                "--payload",
                json.dumps({"message_id": "m1"}),
                "--priority",
                "2",
            ],
        )

        assert result.exit_code == 0
        assert "enqueued" in result.stdout
        client.create_job.assert_called_once_with(
            "content_generation", {"message_id": "m1"}, 2
        )

    def test_enqueue_rejects_bad_json(self, runner):
        """Test that malformed payloads never reach the API"""
        result = runner.invoke(app, ["jobs", "enqueue", "content_generation", "-p", "{oops"])

        assert result.exit_code == 1
        assert "not valid JSON" in result.stdout

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_enqueue_rate_limited(self, mock_client_class, runner):
        """Test the rate limit message"""
        mock_client_class.return_value = make_mock_client(
            create_job=StudyJobsError(
                "API Error 429", status_code=429, details={"retry_after": 120}
            )
        )

        result = runner.invoke(app, ["jobs", "enqueue", "content_generation"])

        assert result.exit_code == 1
        assert "Rate limited, retry in 120s" in result.stdout

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_list_empty(self, mock_client_class, runner):
        """Test listing when there are no jobs"""
        client = make_mock_client(list_jobs={"jobs": [], "count": 0})
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "list", "--status", "failed"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout
        client.list_jobs.assert_called_once_with(type=None, status="failed", limit=20)

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_list_jobs(self, mock_client_class, runner):
        """Test listing jobs renders a table"""
        mock_client_class.return_value = make_mock_client(
            list_jobs={"jobs": [JOB], "count": 1}
        )

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert JOB["id"][:8] in result.stdout

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_stats(self, mock_client_class, runner):
        """Test job statistics panel"""
        mock_client_class.return_value = make_mock_client(
            get_job_stats={
                "total_jobs": 7,
                "by_status": {"pending": 2, "completed": 5},
                "by_type": {"content_generation": 7},
                "queue_depth": 2,
                "failed_last_hour": 0,
            }
        )

        result = runner.invoke(app, ["jobs", "stats"])

        assert result.exit_code == 0
        assert "Total jobs" in result.stdout
        assert "content_generation: 7" in result.stdout

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_show_missing_job(self, mock_client_class, runner):
        """Test showing a job the API does not know"""
        mock_client_class.return_value = make_mock_client(
            get_job=StudyJobsError("API Error 404: Job not found", status_code=404)
        )

        result = runner.invoke(app, ["jobs", "show", "nope"])

        assert result.exit_code == 1
        assert "Failed to get job" in result.stdout

    @patch("cli.commands.jobs.time.sleep")
    @patch("cli.commands.jobs.StudyJobsClient")
    def test_wait_until_completed(self, mock_client_class, mock_sleep, runner):
        """Test polling until the job finishes"""
        client = make_mock_client()
        client.get_job.side_effect = [
            JOB,
            {**JOB, "status": "processing", "attempts": 1},
            {**JOB, "status": "completed", "attempts": 1, "result": {"count": 2}},
        ]
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "wait", JOB["id"], "--interval", "0.01"])

        assert result.exit_code == 0
        assert client.get_job.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_wait_failed_job_exits_nonzero(self, mock_client_class, runner):
        """Test that waiting on a failed job reports failure"""
        mock_client_class.return_value = make_mock_client(
            get_job={**JOB, "status": "failed", "attempts": 3, "error": "boom"}
        )

        result = runner.invoke(app, ["jobs", "wait", JOB["id"]])

        assert result.exit_code == 1

    @patch("cli.commands.jobs.StudyJobsClient")
    def test_retry(self, mock_client_class, runner):
        """Test retrying a failed job"""
        mock_client_class.return_value = make_mock_client(
            retry_job={**JOB, "id": "new-job-id"}
        )

        result = runner.invoke(app, ["jobs", "retry", JOB["id"]])

        assert result.exit_code == 0
        assert "new-job-id" in result.stdout


class TestWorkerCommands:
    """Test in-process worker commands"""

    @patch("cli.commands.worker._process_once", new_callable=AsyncMock)
    def test_process_once_without_jobs(self, mock_process, runner):
        mock_process.return_value = []

        result = runner.invoke(app, ["process-once"])

        assert result.exit_code == 0
        assert "No eligible jobs" in result.stdout
        mock_process.assert_awaited_once_with(1)

    @patch("cli.commands.worker._process_once", new_callable=AsyncMock)
    def test_process_once_prints_results(self, mock_process, runner):
        mock_process.return_value = [{**JOB, "status": "completed", "attempts": 1}]

        result = runner.invoke(app, ["process-once", "-n", "5"])

        assert result.exit_code == 0
        assert JOB["id"][:8] in result.stdout
        mock_process.assert_awaited_once_with(5)

    @patch("cli.commands.worker._recover_stale", new_callable=AsyncMock)
    def test_recover_stale(self, mock_recover, runner):
        mock_recover.return_value = 2

        result = runner.invoke(app, ["recover-stale"])

        assert result.exit_code == 0
        assert "Recovered 2 stale job(s)" in result.stdout


class TestConfigCommands:
    """Test configuration commands"""

    def test_set_and_get(self, runner, isolated_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://jobs:9000"])
        assert result.exit_code == 0

        assert isolated_config.get("api.base_url") == "http://jobs:9000"
        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert "http://jobs:9000" in result.stdout

    def test_set_rejects_bad_url(self, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs:9000"])

        assert result.exit_code == 1
        assert "must start with http" in result.stdout

    def test_dev_mode_sets_user(self, runner, isolated_config):
        result = runner.invoke(app, ["config", "dev-mode", "alice"])

        assert result.exit_code == 0
        assert isolated_config.get("api.user_id") == "alice"


class TestClient:
    """Test the HTTP client against a mock transport"""

    def test_user_header_and_envelope(self, isolated_config):
        isolated_config.set("api.user_id", "alice")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["user"] = request.headers.get("X-User-ID")
            seen["path"] = request.url.path
            return httpx.Response(201, json={"ok": True, "data": JOB})

        with StudyJobsClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as client:
            job = client.create_job("content_generation", {"message_id": "m1"})

        assert job == JOB
        assert seen == {"user": "alice", "path": "/v1/jobs"}

    def test_error_details_are_kept(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                json={
                    "ok": False,
                    "error": {
                        "message": "Rate limit exceeded. Try again later.",
                        "code": 429,
                        "details": {"retry_after": 30},
                    },
                },
            )

        with StudyJobsClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(StudyJobsError) as exc_info:
                client.get_rate_limit("content_generation")

        assert exc_info.value.status_code == 429
        assert exc_info.value.details == {"retry_after": 30}


def test_config_manager_defaults(tmp_path):
    """Test defaults when no config file exists"""
    manager = ConfigManager(tmp_path / "cfg")

    assert manager.get("jobs.list_limit") == 20
    assert manager.get("missing.key", "fallback") == "fallback"
    assert not (tmp_path / "cfg").exists()
