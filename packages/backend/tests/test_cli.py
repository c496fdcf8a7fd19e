"""CLI tests — commands run against the app in-process via ASGITransport."""

import httpx
import pytest
from click.testing import CliRunner

from chatrelay.cli import main as cli
from chatrelay.events.types import MESSAGE_IN


@pytest.fixture()
def runner(app, relay, monkeypatch):
    app.state.relay = relay
    monkeypatch.setattr(
        cli,
        "_client",
        lambda: httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test"),
    )
    return CliRunner()


def test_publish_command_posts_chat_message(runner, relay):
    seen = []
    relay.engine.bind(MESSAGE_IN, seen.append)

    result = runner.invoke(cli.main, ["publish", "programming", "hello", "-s", "Mona", "-u", "u1"])

    assert result.exit_code == 0, result.output
    assert "Sent to programming" in result.output
    [message] = seen
    assert message.origin == "u1"
    assert message.payload["sender"] == "Mona"


def test_emit_command_reports_delivery(runner):
    result = runner.invoke(cli.main, ["emit", "programming", "headline", '{"title": "x"}'])
    assert result.exit_code == 0, result.output
    assert "0/0 delivered" in result.output


def test_emit_rejects_bad_json(runner):
    result = runner.invoke(cli.main, ["emit", "programming", "headline", "{nope"])
    assert result.exit_code == 1
    assert "not valid JSON" in result.output


def test_channels_command_when_empty(runner):
    result = runner.invoke(cli.main, ["channels"])
    assert result.exit_code == 0
    assert "No occupied channels." in result.output


def test_channel_command(runner):
    result = runner.invoke(cli.main, ["channel", "programming"])
    assert result.exit_code == 0
    assert "programming: empty, 0 subscriber(s)" in result.output


def test_ws_url_follows_api_url(monkeypatch):
    monkeypatch.setenv("CHATRELAY_API_URL", "https://chat.example.com/")
    assert cli._ws_url() == "wss://chat.example.com/ws"
