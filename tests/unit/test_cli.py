"""Tests for the CLI."""

import httpx
import pytest
from typer.testing import CliRunner
from unittest.mock import patch

from quotaguard import __version__
from quotaguard.cli.main import app
from quotaguard.queue.dispatcher import RequestDispatcher
from quotaguard.queue.rate_limiter import RateLimiter


@pytest.fixture
def runner():
    return CliRunner()


def make_dispatcher(clock, handler):
    def factory():
        return RequestDispatcher(
            rate_limiter=RateLimiter(clock=clock, sleep=clock.sleep),
            transport=httpx.MockTransport(handler),
        )

    return factory


class TestCommands:
    """Tests for CLI commands."""

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config(self, runner):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "limiter.max_retries" in result.output
        assert "dispatcher.credentials_param" in result.output

    def test_fetch_prints_json(self, runner, clock):
        def handler(request):
            return httpx.Response(200, json={"symbol": "AAPL", "apikey": request.url.params.get("apikey")})

        with patch("quotaguard.cli.main.get_dispatcher", make_dispatcher(clock, handler)), \
                patch("quotaguard.cli.main.setup_logging"):
            result = runner.invoke(
                app,
                ["fetch", "https://api.test/v3/quote/AAPL", "--api-key", "k1", "--raw"],
            )

        assert result.exit_code == 0
        assert '"symbol": "AAPL"' in result.output
        assert '"apikey": "k1"' in result.output

    def test_fetch_reports_errors(self, runner, clock):
        def handler(request):
            return httpx.Response(500)

        with patch("quotaguard.cli.main.get_dispatcher", make_dispatcher(clock, handler)), \
                patch("quotaguard.cli.main.setup_logging"):
            result = runner.invoke(app, ["fetch", "https://api.test/v3/quote/AAPL"])

        assert result.exit_code == 1
        assert "API call failed" in result.output
        assert "Dispatch Statistics" in result.output
