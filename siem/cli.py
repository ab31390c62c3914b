#!/usr/bin/env python3
"""
Watchtower command line interface.

Runs the log detection, alert ingestion and risk scoring pipeline against
a local alerts database.
"""
import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from .config import load_settings
from .detection import LogDetectionEngine
from .log_ingestor import AlertIngestor, read_log_file, validate_log_file
from .risk_scoring import RiskScorer
from .rule_engine import RuleEngine, RuleLoadError
from .storage import SQLiteStorage, StoreError


def _detection_to_dict(detection) -> dict:
    return {
        "rule_id": detection.rule.id,
        "rule_name": detection.rule.name,
        "severity": detection.severity,
        "risk_score": detection.risk_score,
        "metadata": detection.aggregated_metadata,
    }


def _load_file(path: str) -> str:
    ok, error = validate_log_file(path)
    if not ok:
        raise SystemExit(f"error: {error}")
    return read_log_file(path)


def _open_storage(args) -> SQLiteStorage:
    storage = SQLiteStorage(db_path=args.db)
    storage.connect()
    storage.init_db()
    return storage


def cmd_rules(args, rules: RuleEngine) -> int:
    for rule in rules:
        print(f"{rule.id:<24} {rule.severity:<9} {rule.risk_score:>3}  {rule.name}")
    return 0


def cmd_analyze(args, rules: RuleEngine) -> int:
    content = _load_file(args.file)
    result = LogDetectionEngine(rules).parse(content, Path(args.file).name)
    print(json.dumps({
        "file": result.file_name,
        "total_lines": result.total_lines,
        "processing_time_ms": round(result.processing_time, 2),
        "detections": [_detection_to_dict(d) for d in result.detections],
    }, indent=2))
    return 0


def cmd_ingest(args, rules: RuleEngine) -> int:
    content = _load_file(args.file)
    file_name = Path(args.file).name
    result = LogDetectionEngine(rules).parse(content, file_name)

    storage = _open_storage(args)
    try:
        ingestor = AlertIngestor(storage)

        def progress(current: int, total: int) -> None:
            print(f"[{current}/{total}] processed", file=sys.stderr)

        summary = ingestor.ingest(result.detections, file_name, on_progress=progress)
        output = {"summary": asdict(summary)}

        if args.score and summary.alert_ids:
            scored = RiskScorer(storage).score_many(summary.alert_ids)
            output["risk_scores"] = {
                str(alert_id): asdict(r) if r else None for alert_id, r in scored.items()
            }
    finally:
        storage.close()

    print(json.dumps(output, indent=2))
    return 0


def cmd_score(args, rules: RuleEngine) -> int:
    storage = _open_storage(args)
    try:
        result = RiskScorer(storage).score(args.alert_id)
    finally:
        storage.close()
    if result is None:
        print(f"Alert {args.alert_id} not found", file=sys.stderr)
        return 1
    print(json.dumps(asdict(result), indent=2))
    return 0


def cmd_delete(args, rules: RuleEngine) -> int:
    storage = _open_storage(args)
    try:
        deleted = AlertIngestor(storage).delete_log_alerts(args.file_name)
    finally:
        storage.close()
    print(f"Deleted {deleted} alerts for {args.file_name}")
    return 0


def cmd_stats(args, rules: RuleEngine) -> int:
    storage = _open_storage(args)
    try:
        stats = AlertIngestor(storage).get_log_alert_stats()
    finally:
        storage.close()
    print(json.dumps(stats, indent=2))
    return 0


COMMANDS = {
    "rules": cmd_rules,
    "analyze": cmd_analyze,
    "ingest": cmd_ingest,
    "score": cmd_score,
    "delete": cmd_delete,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    settings = load_settings()
    parser = argparse.ArgumentParser(
        prog="watchtower",
        description="Watchtower - log threat detection and alert risk scoring",
    )
    parser.add_argument("--db", default=settings.db_path, help="SQLite alerts database")
    parser.add_argument("--rules", default=settings.rule_dir, help="Directory of YAML detection rules")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("rules", help="List loaded detection rules")

    analyze_parser = subparsers.add_parser("analyze", help="Scan a log file and print detections")
    analyze_parser.add_argument("file", help="Log file to analyze (.log or .txt)")

    ingest_parser = subparsers.add_parser("ingest", help="Scan a log file and store alerts")
    ingest_parser.add_argument("file", help="Log file to ingest (.log or .txt)")
    ingest_parser.add_argument("--score", action="store_true", help="Risk score every new alert")

    score_parser = subparsers.add_parser("score", help="Recompute the risk score of an alert")
    score_parser.add_argument("alert_id", type=int)

    delete_parser = subparsers.add_parser("delete", help="Delete the alerts created from a log file")
    delete_parser.add_argument("file_name", help="File name as it was ingested")

    subparsers.add_parser("stats", help="Log alert counts by file and severity")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else load_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 2

    try:
        rules = RuleEngine.from_directory(args.rules)
        return command(args, rules)
    except RuleLoadError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except StoreError as e:
        print(f"error: alert store failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
