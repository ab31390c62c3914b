# siem/detection.py

import logging
import time
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .models import DetectionRule, LogDetection, LogEntry, LogMatch, ParsedLogResult
from .parsers import (
    extract_data_size,
    extract_ips,
    extract_timestamp,
    parse_timestamp,
    split_log_lines,
)
from .rule_engine import RuleEngine
from .severity import clamp_score, severity_from_score

logger = logging.getLogger(__name__)

TOP_IP_LIMIT = 10

# (match count must exceed, bonus), cumulative
FREQUENCY_BONUSES = [(10, 10), (50, 10), (100, 10)]
IP_DIVERSITY_MIN = 5
IP_DIVERSITY_BONUS = 5
BURST_WINDOW = timedelta(hours=1)
BURST_MIN_MATCHES = 5
BURST_BONUS = 10


def calculate_dynamic_risk_score(base_score: int, matches: List[LogMatch]) -> int:
    """
    Raise a rule's base score using frequency, IP diversity and time concentration.
    """
    score = base_score
    count = len(matches)

    for threshold, bonus in FREQUENCY_BONUSES:
        if count > threshold:
            score += bonus

    unique_ips = {ip for m in matches for ip in m.extracted_data.get("ips", [])}
    if len(unique_ips) > IP_DIVERSITY_MIN:
        score += IP_DIVERSITY_BONUS

    # only timestamps that parse count towards the span
    times = [t for t in (parse_timestamp(m.timestamp) for m in matches) if t is not None]
    if len(times) > 1:
        span = max(times) - min(times)
        if span < BURST_WINDOW and count > BURST_MIN_MATCHES:
            score += BURST_BONUS

    return clamp_score(score)


def aggregate_metadata(matches: List[LogMatch]) -> Dict[str, Any]:
    all_ips = [ip for m in matches for ip in m.extracted_data.get("ips", [])]
    frequency = Counter(all_ips)

    # sorted() is stable and Counter keeps first-seen order, so ties keep it
    top_ips = sorted(frequency.items(), key=lambda item: item[1], reverse=True)

    return {
        "total_occurrences": len(matches),
        "unique_ips": len(frequency),
        "top_ips": [{"ip": ip, "count": count} for ip, count in top_ips[:TOP_IP_LIMIT]],
        "affected_lines": [m.line_number for m in matches],
        "time_range": {
            "first": matches[0].timestamp if matches else None,
            "last": matches[-1].timestamp if matches else None,
        },
    }


def build_match(entry: LogEntry) -> LogMatch:
    timestamp = entry.timestamp or extract_timestamp(entry.raw_line)
    return LogMatch(
        line_number=entry.line_number,
        raw_line=entry.raw_line,
        timestamp=timestamp,
        extracted_data={
            "ips": extract_ips(entry.raw_line),
            "data_size": extract_data_size(entry.raw_line),
            "timestamp": timestamp,
        },
    )


class LogDetectionEngine:
    """
    Scans raw log text against a rule table and aggregates the hits per rule.

    parse() has no side effects; only the wall-clock timestamp fallback
    makes two runs over the same text differ.
    """

    def __init__(self, rule_engine: Optional[RuleEngine] = None):
        self.rule_engine = rule_engine if rule_engine is not None else RuleEngine.default()

    def detect_rule(self, rule: DetectionRule, entries: List[LogEntry]) -> Optional[LogDetection]:
        matches = [build_match(e) for e in entries if rule.pattern.search(e.raw_line)]
        if not matches:
            return None

        risk_score = calculate_dynamic_risk_score(rule.risk_score, matches)
        return LogDetection(
            rule=rule,
            matches=matches,
            severity=severity_from_score(risk_score),
            risk_score=risk_score,
            aggregated_metadata=aggregate_metadata(matches),
        )

    def parse(self, content: str, file_name: str) -> ParsedLogResult:
        start = time.perf_counter()
        entries = split_log_lines(content)

        detections: List[LogDetection] = []
        for rule in self.rule_engine:
            detection = self.detect_rule(rule, entries)
            if detection is None:
                continue
            logger.debug(
                "Rule %s matched %d lines in %s (score %d)",
                rule.id, len(detection.matches), file_name, detection.risk_score,
            )
            detections.append(detection)

        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            "Parsed %s: %d lines, %d detections in %.1f ms",
            file_name, len(entries), len(detections), elapsed,
        )
        return ParsedLogResult(
            file_name=file_name,
            total_lines=len(entries),
            detections=detections,
            processing_time=elapsed,
        )


def parse_log_file(content: str, file_name: str, rule_engine: Optional[RuleEngine] = None) -> ParsedLogResult:
    return LogDetectionEngine(rule_engine).parse(content, file_name)
