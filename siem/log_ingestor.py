# siem/log_ingestor.py
import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import load_settings
from .models import AlertPayload, LogDetection, ProcessingSummary
from .storage import SQLiteStorage, StoreError, utcnow

logger = logging.getLogger(__name__)

TITLE_PREFIX = "[Log] "
SOURCE_PREFIX = "Log Analysis: "

SUPPORTED_EXTENSIONS = (".log", ".txt")

SAMPLE_LOG_COUNT = 3
AFFECTED_LINE_PREVIEW = 5

ProgressCallback = Callable[[int, int], None]


def alert_title(detection: LogDetection) -> str:
    return f"{TITLE_PREFIX}{detection.rule.name}"


def alert_source(file_name: str) -> str:
    return f"{SOURCE_PREFIX}{file_name}"


def validate_log_file(path, max_size: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """Check extension and size before a file is read."""
    path = Path(path)
    if max_size is None:
        max_size = load_settings().max_log_file_bytes

    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        return False, (
            "Invalid file type. Accepted formats: " + ", ".join(SUPPORTED_EXTENSIONS)
        )
    if not path.is_file():
        return False, f"File not found: {path}"

    size = path.stat().st_size
    if size > max_size:
        return False, f"File too large. Maximum size: {max_size // (1024 * 1024)}MB"
    if size == 0:
        return False, "File is empty"
    return True, None


def read_log_file(path) -> str:
    with Path(path).open("r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _format_description(detection: LogDetection) -> str:
    rule = detection.rule
    meta = detection.aggregated_metadata
    top_ips = meta.get("top_ips") or []
    affected = meta.get("affected_lines") or []

    parts = [
        rule.description,
        "\n**Detection Summary:**",
        f"- Occurrences: {meta.get('total_occurrences', len(detection.matches))}",
        f"- Unique IPs: {meta.get('unique_ips', 0)}",
        f"- Risk Score: {detection.risk_score}/100",
    ]
    if top_ips:
        ip_lines = "\n".join(f"  - {item['ip']} ({item['count']} times)" for item in top_ips)
        parts.append(f"\n**Top Source IPs:**\n{ip_lines}")

    preview = ", ".join(str(n) for n in affected[:AFFECTED_LINE_PREVIEW])
    more = "..." if len(affected) > AFFECTED_LINE_PREVIEW else ""
    parts.append(f"\n**Affected Log Lines:** {preview}{more}")

    sample = detection.matches[0].raw_line if detection.matches else ""
    parts.append(f"\n**Sample Log Entry:**\n```\n{sample}\n```")
    return "\n".join(parts)


def detection_to_alert(detection: LogDetection, file_name: str) -> AlertPayload:
    """Convert a log detection to the alert row stored for it."""
    rule = detection.rule
    meta = detection.aggregated_metadata

    raw_data: Dict[str, Any] = {
        "source_type": "log_ingestion",
        "log_file": file_name,
        "rule_id": rule.id,
        "rule_name": rule.name,
        "category": rule.category,
        "mitre_attack": list(rule.mitre_attack),
        "risk_score": detection.risk_score,
        "detection_count": meta.get("total_occurrences", len(detection.matches)),
        "unique_ips": meta.get("unique_ips", 0),
        "top_ips": meta.get("top_ips", []),
        "affected_lines": meta.get("affected_lines", []),
        "time_range": meta.get("time_range", {}),
        "sample_logs": [
            {
                "line_number": m.line_number,
                "content": m.raw_line,
                "timestamp": m.timestamp,
            }
            for m in detection.matches[:SAMPLE_LOG_COUNT]
        ],
    }

    # fields read by the correlation checks in risk_scoring
    if raw_data["top_ips"]:
        raw_data["source_ip"] = raw_data["top_ips"][0]["ip"]
    sizes = [m.extracted_data.get("data_size") for m in detection.matches]
    sizes = [s for s in sizes if s]
    if sizes:
        raw_data["transfer_size_mb"] = round(sum(sizes) / (1024 * 1024), 2)

    return AlertPayload(
        title=alert_title(detection),
        description=_format_description(detection),
        source=alert_source(file_name),
        severity=detection.severity,
        status="pending",
        raw_data=raw_data,
        resolution_method=" → ".join(rule.recommended_actions),
    )


class AlertIngestor:
    """
    Turns detections into alerts in the store, one at a time.

    Detections are handled strictly in order with a pause between inserts, so
    every duplicate check sees the alerts inserted earlier in the same batch.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        delay: Optional[float] = None,
        dedup_window: Optional[timedelta] = None,
    ) -> None:
        settings = load_settings()
        self.storage = storage
        self.delay = settings.insert_delay_seconds if delay is None else delay
        if dedup_window is None:
            dedup_window = timedelta(hours=settings.dedup_window_hours)
        self.dedup_window = dedup_window

    def is_duplicate(self, title: str, source: str, now: datetime) -> bool:
        try:
            existing = self.storage.find_recent_alert(title, source, now - self.dedup_window)
        except StoreError as e:
            # unknown is treated as new; the insert reports its own failure
            logger.warning("Duplicate check failed for %s (%s): %s", title, source, e)
            return False
        return existing is not None

    def insert_alert(self, payload: AlertPayload) -> Optional[int]:
        """Insert one alert; returns its id, or None when the store refused it."""
        logger.debug(
            "Inserting alert: title=%s source=%s severity=%s",
            payload.title, payload.source, payload.severity,
        )
        try:
            alert_id = self.storage.insert_alert(payload)
        except StoreError as e:
            logger.error("Error inserting alert %s: %s", payload.title, e)
            return None
        logger.info("Inserted alert %s with id %s", payload.title, alert_id)
        return alert_id

    def ingest(
        self,
        detections: List[LogDetection],
        file_name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessingSummary:
        start = time.perf_counter()
        summary = ProcessingSummary(
            total_lines=sum(len(d.matches) for d in detections),
        )
        source = alert_source(file_name)
        total = len(detections)

        logger.info("Processing %d detections from %s", total, file_name)

        for index, detection in enumerate(detections, start=1):
            title = alert_title(detection)

            if self.is_duplicate(title, source, utcnow()):
                logger.info(
                    "Skipping duplicate alert: %s for %s (existing alert within %s)",
                    detection.rule.name, file_name, self.dedup_window,
                )
                summary.skipped_duplicates += 1
            else:
                alert_id = self.insert_alert(detection_to_alert(detection, file_name))
                if alert_id is None:
                    summary.failed_inserts += 1
                else:
                    summary.alert_ids.append(alert_id)
                    self._count_severity(summary, detection.severity)

                if self.delay and index < total:
                    time.sleep(self.delay)

            if on_progress is not None:
                on_progress(index, total)

        summary.alerts_generated = len(summary.alert_ids)
        self.verify_inserted(summary.alert_ids)
        summary.processing_time = (time.perf_counter() - start) * 1000

        logger.info(
            "Processing summary for %s: generated=%d duplicates=%d failed=%d total=%d",
            file_name, summary.alerts_generated, summary.skipped_duplicates,
            summary.failed_inserts, total,
        )
        return summary

    @staticmethod
    def _count_severity(summary: ProcessingSummary, severity: str) -> None:
        if severity == "critical":
            summary.critical_alerts += 1
        elif severity == "high":
            summary.high_alerts += 1
        elif severity == "medium":
            summary.medium_alerts += 1
        elif severity == "low":
            summary.low_alerts += 1

    def verify_inserted(self, alert_ids: List[int]) -> int:
        """Re-read inserted alerts and report how many are visible."""
        if not alert_ids:
            return 0
        try:
            rows = self.storage.fetch_alerts_by_ids(alert_ids)
        except StoreError as e:
            logger.error("Error verifying alerts: %s", e)
            return 0
        logger.info("Verified %d/%d alerts in database", len(rows), len(alert_ids))
        for row in rows:
            logger.debug("  - %s (%s) - ID: %s", row["title"], row["severity"], row["id"])
        return len(rows)

    def delete_log_alerts(self, file_name: str) -> int:
        """Delete the alerts created from one log file; returns how many went."""
        try:
            deleted = self.storage.delete_alerts_by_source(alert_source(file_name))
        except StoreError as e:
            logger.error("Error deleting log alerts for %s: %s", file_name, e)
            return 0
        logger.info("Deleted %d alerts for %s", deleted, file_name)
        return deleted

    def get_log_alert_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"total": 0, "by_file": {}, "by_severity": {}}
        try:
            rows = self.storage.count_by_source_and_severity(SOURCE_PREFIX.rstrip())
        except StoreError as e:
            logger.error("Error getting log alert stats: %s", e)
            return stats

        for row in rows:
            file_name = row["source"].replace(SOURCE_PREFIX, "", 1)
            count = row["count"]
            stats["total"] += count
            stats["by_file"][file_name] = stats["by_file"].get(file_name, 0) + count
            severity = row["severity"]
            stats["by_severity"][severity] = stats["by_severity"].get(severity, 0) + count
        return stats

    def validate_connection(self) -> bool:
        try:
            self.storage.ping()
        except StoreError as e:
            logger.warning("Alert store unavailable: %s", e)
            return False
        return True
