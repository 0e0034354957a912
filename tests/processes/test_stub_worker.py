"""Tests for the built-in stub worker."""

import io
import json
import signal

import pytest

from agentctl.processes import stub_worker


def _records(out: str) -> list[dict]:
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_steps_in_order_with_unnamed_placeholder(capsys):
    stub_worker.run({"steps": [{"name": "fetch"}, {}]})
    records = _records(capsys.readouterr().out)

    assert [r["type"] for r in records] == ["start", "step", "step", "complete"]
    assert "1/2" in records[1]["message"] and "fetch" in records[1]["message"]
    assert "2/2" in records[2]["message"] and "Unnamed" in records[2]["message"]
    assert records[2]["data"] == {"index": 2, "total": 2, "name": "Unnamed"}


def test_no_steps(capsys):
    stub_worker.run({"name": "empty"})
    records = _records(capsys.readouterr().out)

    assert [r["type"] for r in records] == ["start", "complete"]
    assert "empty" in records[0]["message"]


def test_every_record_has_wire_shape(capsys):
    stub_worker.run({"name": "demo", "steps": [{"name": "a"}]})
    for record in _records(capsys.readouterr().out):
        assert set(record) == {"type", "message", "data", "timestamp"}


@pytest.fixture
def no_signals(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda *args: None)


def test_main_reads_config_from_stdin(monkeypatch, capsys, no_signals):
    monkeypatch.delenv("AGENT_CONFIG", raising=False)
    monkeypatch.delenv("AGENTCTL_CONFIG_ENV_VAR", raising=False)
    monkeypatch.setattr("sys.stdin", io.StringIO('{"steps": [{"name": "only"}]}'))

    assert stub_worker.main() == 0
    records = _records(capsys.readouterr().out)
    assert records[1]["message"] == "Step 1/1: only"


def test_main_prefers_environment(monkeypatch, capsys, no_signals):
    monkeypatch.setenv("AGENTCTL_CONFIG_ENV_VAR", "MY_AGENT")
    monkeypatch.setenv("MY_AGENT", '{"steps": [{}, {}, {}]}')
    monkeypatch.setattr("sys.stdin", io.StringIO("not read"))

    assert stub_worker.main() == 0
    records = _records(capsys.readouterr().out)
    assert [r["type"] for r in records].count("step") == 3


def test_main_reports_malformed_config(monkeypatch, capsys, no_signals):
    monkeypatch.setenv("AGENT_CONFIG", "{broken")
    monkeypatch.delenv("AGENTCTL_CONFIG_ENV_VAR", raising=False)

    assert stub_worker.main() == 1
    records = _records(capsys.readouterr().out)
    assert len(records) == 1
    assert records[0]["type"] == "error"
    assert "Failed to parse agent config" in records[0]["message"]
