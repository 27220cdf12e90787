"""CLI tests (Typer CliRunner)."""
from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from typer.testing import CliRunner

from adapters.console_api import BearerTokenAuthenticator, ConsoleClient
from cli import doctor
from cli import main as cli_main
from core.config import SetupInformation
from core.domain.models import PollOutcome
from core.errors import ConfigurationError, DeadlineExceeded

runner = CliRunner()

SETUP = SetupInformation(
    api_key="key",
    identity_url="https://iam.example.test/identity/token",
    service_url="https://console.example.test",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("IAM_API_KEY", "IAM_IDENTITY_URL", "IBP_SERVICE_INSTANCE_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def captured_poll(monkeypatch):
    calls: list[tuple] = []
    outcome = {"value": PollOutcome(succeeded=True, elapsed=timedelta(seconds=1), attempts=1)}

    def fake_await(endpoint, per_request_timeout, overall_deadline, **kwargs):
        calls.append((endpoint, per_request_timeout, overall_deadline, kwargs))
        return outcome["value"]

    monkeypatch.setattr(cli_main, "await_availability", fake_await)
    return calls, outcome


class TestWait:
    def test_success(self, captured_poll):
        calls, _ = captured_poll
        result = runner.invoke(
            cli_main.app,
            ["--log-level", "WARNING", "wait", "https://ca.example.test:7054/", "--request-timeout", "2", "--deadline", "10"],
        )
        assert result.exit_code == 0, result.output
        endpoint, per_request, deadline, kwargs = calls[0]
        assert endpoint == "https://ca.example.test:7054/cainfo"
        assert (per_request, deadline) == (2.0, 10.0)
        assert kwargs["verify"] is True

    def test_defaults_come_from_settings(self, captured_poll, monkeypatch):
        monkeypatch.setenv("IBP_PROVISION_POLL_DEADLINE_SECONDS", "30")
        calls, _ = captured_poll
        result = runner.invoke(cli_main.app, ["wait", "https://svc.example.test", "--path", ""])
        assert result.exit_code == 0, result.output
        endpoint, per_request, deadline, _ = calls[0]
        assert endpoint == "https://svc.example.test"
        assert (per_request, deadline) == (5.0, 30.0)

    def test_failure_exits_non_zero(self, captured_poll):
        _, outcome = captured_poll
        outcome["value"] = PollOutcome(
            succeeded=False,
            elapsed=timedelta(seconds=10),
            attempts=2,
            last_error=DeadlineExceeded("deadline of 10s exceeded"),
        )
        result = runner.invoke(cli_main.app, ["wait", "https://ca.example.test:7054"])
        assert result.exit_code == 1

    def test_unreadable_ca_cert(self, captured_poll, tmp_path):
        calls, _ = captured_poll
        bad = tmp_path / "bad.pem"
        bad.write_text("not a certificate", encoding="utf-8")
        result = runner.invoke(cli_main.app, ["wait", "https://ca.example.test:7054", "--ca-cert", str(bad)])
        assert result.exit_code == 1
        assert "ERROR" in result.output
        assert calls == []

    def test_invalid_configuration(self):
        result = runner.invoke(
            cli_main.app,
            ["wait", "https://ca.example.test:7054", "--request-timeout", "5", "--deadline", "5"],
        )
        assert result.exit_code == 1
        assert "ERROR" in result.output


class TestComponents:
    @pytest.fixture
    def console_requests(self, monkeypatch):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={"components": [{"id": "org1ca", "display_name": "Org1 CA", "type": "fabric-ca", "tags": ["dev"]}]},
            )

        def from_setup(setup, *, settings=None):
            http = httpx.Client(transport=httpx.MockTransport(handler))
            return ConsoleClient(setup.service_url, BearerTokenAuthenticator("tok"), http_client=http)

        monkeypatch.setattr(cli_main, "load_setup_information", lambda settings: SETUP)
        monkeypatch.setattr(cli_main.ConsoleClient, "from_setup", staticmethod(from_setup))
        return requests

    def test_list(self, console_requests):
        result = runner.invoke(cli_main.app, ["components", "list"])
        assert result.exit_code == 0, result.output
        assert "org1ca" in result.output
        assert console_requests[0].url.path == "/ak/api/v3/components"

    def test_purge_requires_confirmation(self, console_requests):
        result = runner.invoke(cli_main.app, ["components", "purge"], input="n\n")
        assert result.exit_code == 1
        assert console_requests == []

    def test_purge_with_yes(self, console_requests):
        result = runner.invoke(cli_main.app, ["components", "purge", "--yes"])
        assert result.exit_code == 0, result.output
        assert console_requests[0].method == "DELETE"
        assert console_requests[0].url.path == "/ak/api/v3/kubernetes/components/purge"

    def test_missing_setup_information(self, monkeypatch):
        def missing(settings):
            raise ConfigurationError("problem reading the setup file env/dev.json")

        monkeypatch.setattr(cli_main, "load_setup_information", missing)
        result = runner.invoke(cli_main.app, ["components", "list"])
        assert result.exit_code == 1
        assert "problem reading" in result.output


class TestDoctor:
    def test_reports_missing_setup(self, monkeypatch):
        def missing(settings):
            raise ConfigurationError("problem reading the setup file env/dev.json")

        monkeypatch.setattr(doctor, "load_setup_information", missing)
        result = runner.invoke(cli_main.app, ["doctor", "run"])
        assert result.exit_code == 1
        assert "Setup info" in result.output

    def test_reports_reachability(self, monkeypatch):
        monkeypatch.setattr(doctor, "load_setup_information", lambda settings: SETUP)
        monkeypatch.setattr(doctor, "_check_http", lambda url, settings: (True, "HTTP 200"))
        result = runner.invoke(cli_main.app, ["doctor", "run"])
        assert result.exit_code == 0, result.output
        assert "IAM reachable" in result.output
