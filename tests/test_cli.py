"""Tests for CLI parser options and command wiring."""

from __future__ import annotations

import json
from concurrent.futures import Future

import pytest

from painflow import cli
from painflow.cli import _EtaProgressPrinter, build_parser, main
from painflow.control import RunController
from painflow.pipeline import AnalysisOrchestrator, AnalysisOutcome
from painflow.schemas import AnalysisProgress, AnalysisStatus


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"database_url: sqlite:///{(tmp_path / 'cli.db').as_posix()}\nlog_level: WARNING\n",
        encoding="utf-8",
    )
    return str(path)


def _run(config_path: str, *argv: str) -> None:
    main(["--config", config_path, *argv])


def test_analyze_parser_defaults_to_full_mode():
    args = build_parser().parse_args(["analyze", "--flow-id", "abc"])
    assert args.command == "analyze"
    assert args.flow_id == "abc"
    assert args.mode == "full"


def test_analyze_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["analyze", "--flow-id", "abc", "--mode", "partial"])


def test_ingest_paste_requires_exactly_one_source():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["ingest-paste", "--flow-id", "abc"])
    args = build_parser().parse_args(["ingest-paste", "--flow-id", "abc", "--file", "notes.txt"])
    assert args.file == "notes.txt"
    assert args.text is None


def test_doctor_parser_accepts_network_check_flag():
    args = build_parser().parse_args(["doctor", "--network-check"])
    assert args.command == "doctor"
    assert args.network_check is True


def test_merge_parser_requires_both_ids():
    args = build_parser().parse_args(
        ["merge-clusters", "--flow-id", "f", "--source-id", "s", "--target-id", "t"]
    )
    assert (args.source_id, args.target_id) == ("s", "t")


def test_progress_printer_prints_once_per_batch(capsys):
    printer = _EtaProgressPrinter("analyze")
    progress = AnalysisProgress(batch=1, total_batches=3, items_processed=50, total_items=120)
    printer(progress)
    printer(progress)
    printer(AnalysisProgress(batch=3, total_batches=3, items_processed=120, total_items=120))

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert "batch 1/3 (33%)" in lines[0]
    assert "items 50/120" in lines[0]
    assert "batch 3/3 (100%)" in lines[1]


def test_flow_lifecycle_through_cli(config_path, capsys):
    _run(config_path, "create-flow", "--name", "Invoicing")
    created = capsys.readouterr().out
    flow_id = created.split()[2]

    _run(config_path, "ingest-paste", "--flow-id", flow_id, "--text", "Slow exports\n\nLost invoices")
    assert "Added 2 items" in capsys.readouterr().out

    _run(config_path, "list-flows", "--json")
    flows = json.loads(capsys.readouterr().out)
    assert [(flow["id"], flow["items_count"]) for flow in flows] == [(flow_id, 2)]

    _run(config_path, "status", "--flow-id", flow_id, "--json")
    status = json.loads(capsys.readouterr().out)
    assert status["status"] == "idle"
    assert status["new_data_available"] is True


def test_precondition_errors_exit_non_zero(config_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        _run(config_path, "delete-flow", "--flow-id", "missing")
    assert exc_info.value.code == 1
    assert "Error [flow_not_found]" in capsys.readouterr().out


def test_analyze_runs_to_completion(config_path, capsys, monkeypatch):
    class _Client:
        def complete_json(self, *, system_prompt: str, user_prompt: str, **kwargs) -> dict:
            item_id = user_prompt.split("#1 id=")[1].split()[0]
            return {
                "clusters": [
                    {
                        "label": "Slow exports",
                        "pain": "Exports take forever",
                        "quotes": [{"sourceId": item_id, "quote": "Slow exports"}],
                        "scores": {"total": 0.8},
                    }
                ]
            }

    def build(settings, session_factory, controller):
        return AnalysisOrchestrator(
            session_factory=session_factory,
            llm_client=_Client(),
            controller=controller,
            settings=settings,
            health_check=lambda: True,
        )

    monkeypatch.setattr(cli, "_build_orchestrator", build)

    _run(config_path, "create-flow", "--name", "Invoicing")
    flow_id = capsys.readouterr().out.split()[2]
    _run(config_path, "ingest-paste", "--flow-id", flow_id, "--text", "Slow exports")
    capsys.readouterr()

    _run(config_path, "analyze", "--flow-id", flow_id)
    out = capsys.readouterr().out
    assert "Analysis succeeded." in out
    assert "Clusters created:   1" in out

    _run(config_path, "list-clusters", "--flow-id", flow_id, "--json")
    clusters = json.loads(capsys.readouterr().out)
    assert [cluster["label"] for cluster in clusters] == ["Slow exports"]
    assert clusters[0]["member_count"] == 1


def test_ctrl_c_after_run_finished_still_returns_outcome(
    session_factory, make_flow, capsys, monkeypatch
):
    flow_id, _ = make_flow(status=AnalysisStatus.SUCCEEDED)
    outcome = AnalysisOutcome(
        flow_id=flow_id,
        run_id="run-1",
        status=AnalysisStatus.SUCCEEDED,
        items_analyzed=3,
        batches_processed=1,
        duration_ms=10,
    )
    future: Future = Future()
    future.set_result(outcome)
    calls = []

    def fake_wait(futures, timeout=None):
        calls.append(timeout)
        if len(calls) == 1:
            raise KeyboardInterrupt
        return set(futures), set()

    monkeypatch.setattr(cli, "wait", fake_wait)

    result = cli._wait_for_outcome(future, session_factory, RunController(), flow_id)

    assert result is outcome
    assert len(calls) == 2
    assert "Cancel requested" in capsys.readouterr().out


def test_validate_items_reports_failure(tmp_path, config_path, capsys):
    path = tmp_path / "items.jsonl"
    path.write_text('{"text": "ok"}\n{broken\n', encoding="utf-8")

    with pytest.raises(SystemExit) as exc_info:
        _run(config_path, "validate-items", "--input", str(path))

    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "Valid items:     1" in out
    assert "[invalid_json]" in out
