import json

from genrelay import cli
from genrelay.chain import AllProvidersFailed, Attempt, ChainResult
from genrelay.providers.types import Capability
from genrelay.settings import load_settings


def test_check_config_ok(tmp_path, capsys):
    p = tmp_path / "chains.json"
    p.write_text(json.dumps({"text-to-image": ["pixabay"], "chat-completion": ["lookup"]}), encoding="utf-8")
    assert cli.main(["check-config", str(p)]) == 0
    assert "OK: 2 capability chain(s)" in capsys.readouterr().out


def test_check_config_invalid(tmp_path, capsys):
    p = tmp_path / "chains.json"
    p.write_text(json.dumps({"text-to-cake": ["pixabay"]}), encoding="utf-8")
    assert cli.main(["check-config", str(p)]) == 1
    assert "is invalid" in capsys.readouterr().err


def test_providers_lists_chains(monkeypatch, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: load_settings({}))
    assert cli.main(["providers"]) == 0
    out = capsys.readouterr().out
    assert "chat-completion" in out
    assert "lookup" in out
    assert "pixabay (off)" in out


def test_run_unknown_capability(capsys):
    assert cli.cmd_run("text-to-cake", "x") == 2
    assert "Unknown capability" in capsys.readouterr().err


def test_run_prints_result(monkeypatch, capsys):
    calls = []

    class FakeExecutor:
        async def execute(self, capability, data, sink=None):
            calls.append((capability, data))
            return ChainResult(capability, "lookup", "Lalibela is a town", [Attempt("lookup", True)])

    class FakeRegistry:
        def __init__(self, settings):
            pass

        def build_executor(self):
            return FakeExecutor()

    monkeypatch.setattr(cli, "load_settings", lambda: load_settings({}))
    monkeypatch.setattr(cli, "ProviderRegistry", FakeRegistry)
    assert cli.cmd_run("chat-completion", "Lalibela", model="mistral") == 0
    assert capsys.readouterr().out.strip() == "Lalibela is a town"
    assert calls == [(Capability.CHAT_COMPLETION, {"prompt": "Lalibela", "context": "user: Lalibela", "model": "mistral"})]


def test_run_reports_exhausted_chain(monkeypatch, capsys):
    class FakeExecutor:
        async def execute(self, capability, data, sink=None):
            return AllProvidersFailed(capability, None, [Attempt("pixabay", False, 3, "no matching images", "ProviderUnavailable")])

    class FakeRegistry:
        def __init__(self, settings):
            pass

        def build_executor(self):
            return FakeExecutor()

    monkeypatch.setattr(cli, "load_settings", lambda: load_settings({}))
    monkeypatch.setattr(cli, "ProviderRegistry", FakeRegistry)
    assert cli.cmd_run("text-to-image", "cat") == 1
    err = capsys.readouterr().err
    assert "pixabay: ProviderUnavailable: no matching images" in err