# tests/test_cli.py
import json

import pytest

from siem.cli import main


@pytest.fixture
def log_file(tmp_path, sample_log):
    path = tmp_path / "sample_security.log"
    path.write_text(sample_log, encoding="utf-8")
    return path


@pytest.fixture
def db_args(tmp_path):
    return ["--db", str(tmp_path / "cli.db")]


def test_rules_lists_default_rules(capsys):
    assert main(["rules"]) == 0
    out = capsys.readouterr().out
    assert "brute-force-ssh" in out
    assert len(out.strip().splitlines()) == 10


def test_analyze_prints_detections(log_file, capsys):
    assert main(["analyze", str(log_file)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["file"] == "sample_security.log"
    assert data["total_lines"] == 25
    assert "brute-force-ssh" in {d["rule_id"] for d in data["detections"]}


def test_ingest_then_stats_and_delete(log_file, db_args, capsys):
    assert main(db_args + ["ingest", str(log_file), "--score"]) == 0
    data = json.loads(capsys.readouterr().out)
    generated = data["summary"]["alerts_generated"]
    assert generated > 0
    assert len(data["risk_scores"]) == generated

    assert main(db_args + ["ingest", str(log_file)]) == 0
    again = json.loads(capsys.readouterr().out)
    assert again["summary"]["skipped_duplicates"] == generated

    assert main(db_args + ["stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["by_file"] == {"sample_security.log": generated}

    assert main(db_args + ["delete", "sample_security.log"]) == 0
    assert f"Deleted {generated} alerts" in capsys.readouterr().out


def test_score_missing_alert(db_args):
    assert main(db_args + ["score", "999"]) == 1


def test_rejects_unsupported_file(tmp_path):
    bad = tmp_path / "data.csv"
    bad.write_text("x", encoding="utf-8")
    with pytest.raises(SystemExit):
        main(["analyze", str(bad)])


def test_missing_rule_directory(tmp_path):
    assert main(["--rules", str(tmp_path / "none"), "rules"]) == 2


def test_no_command_prints_help(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out
