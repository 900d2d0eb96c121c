#!/usr/bin/env python3
"""
Tests for the command line entry point.

The completion client is replaced with a fake so no network is involved;
settings live in a temporary file.
"""

import json
from unittest.mock import patch

import pytest

from ai_completer import __main__ as cli
from ai_completer.llm.exceptions import EmptyResponseError, TransportError


class FakeClient:
    """Stands in for CompletionClient inside the CLI."""

    instances: list["FakeClient"] = []
    rewrite_result = "Rewritten."
    error: Exception | None = None
    models = ["m2", "m1"]

    def __init__(self, settings_provider, *, config=None):
        self.settings_provider = settings_provider
        self.requests = []
        FakeClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def rewrite_streaming(self, request, provider, model, on_update):
        self.requests.append((request, provider, model))
        if self.error is not None:
            raise self.error
        on_update(self.rewrite_result[:4], False)
        on_update(self.rewrite_result, True)
        return self.rewrite_result

    async def test_connection(self, provider, model):
        self.requests.append((None, provider, model))
        if self.error is not None:
            raise self.error

    async def list_models(self, provider):
        if self.error is not None:
            raise self.error
        return list(self.models)


@pytest.fixture(autouse=True)
def fake_client():
    FakeClient.instances = []
    FakeClient.error = None
    with patch.object(cli, "CompletionClient", FakeClient):
        yield FakeClient


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "providers": [
            {"id": "p1", "name": "One", "apiKey": "k", "models": ["m1", "m2"]},
            {"id": "p2", "name": "Two", "apiKey": "k", "models": []},
        ],
        "activeProviderId": "p1",
        "activeModel": "m1",
        "maxContextCharacters": 5,
    }), encoding="utf-8")
    return path


def test_rewrite_to_stdout(tmp_path, settings_file, capsys):
    note = tmp_path / "note.md"
    note.write_text("Before. Middle part. After.", encoding="utf-8")

    code = cli.main(["--settings", str(settings_file), "rewrite", str(note), "--start", "8", "--end", "20"])

    assert code == cli.EXIT_OK
    out, err = capsys.readouterr()
    assert out == "Rewritten.\n"
    assert "Rewr" in err

    request, provider, model = FakeClient.instances[0].requests[0]
    assert request.selected_text == "Middle part."
    assert request.before_text == "ore."
    assert request.after_text == "Afte"
    assert request.note_title == "note"
    assert request.instructions == cli.FALLBACK_INSTRUCTIONS
    assert (provider.id, model) == ("p1", "m1")
    assert note.read_text(encoding="utf-8") == "Before. Middle part. After."


def test_rewrite_in_place(tmp_path, settings_file):
    note = tmp_path / "note.md"
    note.write_text("Before. Middle part. After.", encoding="utf-8")

    code = cli.main([
        "--settings", str(settings_file), "rewrite", str(note),
        "--start", "8", "--end", "20", "--in-place", "-i", "Shorter",
    ])

    assert code == cli.EXIT_OK
    assert note.read_text(encoding="utf-8") == "Before. Rewritten. After."
    assert FakeClient.instances[0].requests[0][0].instructions == "Shorter"


def test_provider_and_model_overrides(tmp_path, settings_file):
    note = tmp_path / "note.md"
    note.write_text("text", encoding="utf-8")

    cli.main(["--settings", str(settings_file), "--provider", "p2", "--model", "free-model", "rewrite", str(note)])

    _, provider, model = FakeClient.instances[0].requests[0]
    assert provider.id == "p2"
    assert model == "free-model"


def test_unknown_provider_fails(tmp_path, settings_file, capsys):
    code = cli.main(["--settings", str(settings_file), "--provider", "nope", "test"])
    assert code == cli.EXIT_FAILED
    assert "Request failed: Unknown provider 'nope'." in capsys.readouterr().err


def test_blank_selection_is_rejected(tmp_path, settings_file, capsys):
    note = tmp_path / "note.md"
    note.write_text("   \n", encoding="utf-8")

    code = cli.main(["--settings", str(settings_file), "rewrite", str(note)])

    assert code == cli.EXIT_FAILED
    assert "selected text is empty" in capsys.readouterr().err
    assert FakeClient.instances[0].requests == []


def test_transport_error_exit_code(tmp_path, settings_file, capsys):
    FakeClient.error = TransportError("Request failed (500): boom")
    code = cli.main(["--settings", str(settings_file), "test"])
    assert code == cli.EXIT_FAILED
    assert "Request failed: Request failed (500): boom" in capsys.readouterr().err


def test_empty_response_exit_code(tmp_path, settings_file):
    FakeClient.error = EmptyResponseError("The AI response was empty. Please try again.")
    note = tmp_path / "note.md"
    note.write_text("text", encoding="utf-8")
    assert cli.main(["--settings", str(settings_file), "rewrite", str(note)]) == cli.EXIT_EMPTY


def test_models_save(settings_file, capsys):
    code = cli.main(["--settings", str(settings_file), "models", "--save"])

    assert code == cli.EXIT_OK
    assert capsys.readouterr().out.splitlines() == ["m2", "m1"]
    saved = json.loads(settings_file.read_text(encoding="utf-8"))
    provider = next(p for p in saved["providers"] if p["id"] == "p1")
    assert provider["models"] == ["m2", "m1"]
    assert provider["last_model_sync"]


def test_test_command_success(settings_file, capsys):
    assert cli.main(["--settings", str(settings_file), "test"]) == cli.EXIT_OK
    assert "Connection to One (m1) succeeded." in capsys.readouterr().out
