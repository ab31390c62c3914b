# siem/risk_scoring.py
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import load_settings
from .models import RiskAdjustment, RiskScoringResult
from .severity import ESCALATION_THRESHOLD, base_score_for_severity, clamp_score, severity_from_score
from .storage import SQLiteStorage, StoreError, utcnow

logger = logging.getLogger(__name__)

IP_REPUTATION_MIN_ALERTS = 2
IP_REPUTATION_BONUS = 20

ATTACK_COMBINATION_LOOKBACK = 50
ATTACK_COMBINATION_BONUS = 25

EXFILTRATION_THRESHOLD_MB = 100
EXFILTRATION_BONUS = 30

REPEATED_SOURCE_MIN_ALERTS = 3
REPEATED_SOURCE_BONUS = 15

Check = Callable[[Dict[str, Any], datetime], Optional[RiskAdjustment]]


def alert_source_ip(alert: Dict[str, Any]) -> Optional[str]:
    raw = alert.get("raw_data") or {}
    return raw.get("source_ip") or raw.get("ip")


def alert_mentions_ip(alert: Dict[str, Any], ip: str) -> bool:
    raw = alert.get("raw_data") or {}
    return ip in (raw.get("source_ip"), raw.get("ip"))


def base_score(alert: Dict[str, Any]) -> int:
    """Precomputed raw_data risk_score if there is one, else the severity default."""
    value = (alert.get("raw_data") or {}).get("risk_score")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return clamp_score(value)
    return base_score_for_severity(alert.get("severity", ""))


def _has_brute_force(title: str) -> bool:
    return "brute" in title.lower()


def _has_injection(title: str) -> bool:
    title = title.lower()
    return "sql" in title or "injection" in title


class RiskScorer:
    """
    Re-scores a stored alert by correlating it with recent alerts.

    The four checks read the store independently and run side by side; they
    share one `now` and their adjustments are reported in check order.
    """

    def __init__(self, storage: SQLiteStorage, window: Optional[timedelta] = None) -> None:
        self.storage = storage
        if window is None:
            window = timedelta(hours=load_settings().correlation_window_hours)
        self.window = window
        self.checks: List[Check] = [
            self.check_ip_reputation,
            self.check_attack_combination,
            self.check_data_exfiltration,
            self.check_time_based_escalation,
        ]

    def check_ip_reputation(self, alert: Dict[str, Any], now: datetime) -> Optional[RiskAdjustment]:
        source_ip = alert_source_ip(alert)
        if not source_ip:
            return None

        related = self.storage.fetch_alerts_since(now - self.window, exclude_id=alert["id"])
        same_ip = [a for a in related if alert_mentions_ip(a, source_ip)]
        if len(same_ip) < IP_REPUTATION_MIN_ALERTS:
            return None
        return RiskAdjustment(
            reason=(
                f"Multiple alerts ({len(same_ip) + 1}) from same IP "
                f"({source_ip}) in last hour"
            ),
            adjustment=IP_REPUTATION_BONUS,
            pattern="ip_reputation",
        )

    def check_attack_combination(self, alert: Dict[str, Any], now: datetime) -> Optional[RiskAdjustment]:
        recent = self.storage.fetch_alerts_since(
            now - self.window, limit=ATTACK_COMBINATION_LOOKBACK
        )
        titles = [alert.get("title") or ""] + [a.get("title") or "" for a in recent]

        if any(_has_brute_force(t) for t in titles) and any(_has_injection(t) for t in titles):
            return RiskAdjustment(
                reason="Multi-stage attack detected: Brute force + SQL injection combination",
                adjustment=ATTACK_COMBINATION_BONUS,
                pattern="attack_combination",
            )
        return None

    def check_data_exfiltration(self, alert: Dict[str, Any], now: datetime) -> Optional[RiskAdjustment]:
        title = (alert.get("title") or "").lower()
        if "exfiltration" not in title and "data transfer" not in title:
            return None

        size_mb = (alert.get("raw_data") or {}).get("transfer_size_mb") or 0
        try:
            size_mb = float(size_mb)
        except (TypeError, ValueError):
            return None
        if size_mb <= EXFILTRATION_THRESHOLD_MB:
            return None
        return RiskAdjustment(
            reason=f"Large data transfer detected: {size_mb:g}MB exceeds threshold",
            adjustment=EXFILTRATION_BONUS,
            pattern="data_exfiltration",
        )

    def check_time_based_escalation(self, alert: Dict[str, Any], now: datetime) -> Optional[RiskAdjustment]:
        source = alert.get("source")
        if not source:
            return None
        recent = self.storage.fetch_alerts_since(
            now - self.window, exclude_id=alert["id"], source=source
        )
        if len(recent) < REPEATED_SOURCE_MIN_ALERTS:
            return None
        return RiskAdjustment(
            reason=f"Repeated alerts from {source}: {len(recent) + 1} alerts in last hour",
            adjustment=REPEATED_SOURCE_BONUS,
            pattern="time_based_escalation",
        )

    def _run_check(self, check: Check, alert: Dict[str, Any], now: datetime) -> Optional[RiskAdjustment]:
        try:
            return check(alert, now)
        except StoreError as e:
            logger.warning("Risk check %s skipped for alert %s: %s", check.__name__, alert["id"], e)
            return None

    def collect_adjustments(self, alert: Dict[str, Any], now: datetime) -> List[RiskAdjustment]:
        with ThreadPoolExecutor(max_workers=len(self.checks)) as pool:
            futures = [pool.submit(self._run_check, check, alert, now) for check in self.checks]
            results = [f.result() for f in futures]
        return [r for r in results if r is not None]

    def score(self, alert_id: int, now: Optional[datetime] = None) -> Optional[RiskScoringResult]:
        """
        Recompute the risk score of one alert.

        Returns None when the alert does not exist or cannot be read.
        """
        now = now or utcnow()
        try:
            alert = self.storage.fetch_alert(alert_id)
        except StoreError as e:
            logger.error("Error fetching alert %s for risk scoring: %s", alert_id, e)
            return None
        if alert is None:
            logger.info("Alert %s not found for risk scoring", alert_id)
            return None

        original = base_score(alert)
        adjustments = self.collect_adjustments(alert, now)
        adjusted = clamp_score(original + sum(a.adjustment for a in adjustments))

        should_escalate = adjusted >= ESCALATION_THRESHOLD and original < ESCALATION_THRESHOLD
        result = RiskScoringResult(
            original_score=original,
            adjusted_score=adjusted,
            adjustments=adjustments,
            should_escalate=should_escalate,
            new_severity=severity_from_score(adjusted) if should_escalate else None,
        )

        if adjustments:
            logger.info(
                "Risk score for alert %s adjusted %d -> %d", alert_id, original, adjusted
            )
            self.save_adjustment(alert_id, result, now)
        return result

    def save_adjustment(self, alert_id: int, result: RiskScoringResult, now: datetime) -> None:
        record = {
            "original_score": result.original_score,
            "adjusted_score": result.adjusted_score,
            "adjustments": [asdict(a) for a in result.adjustments],
            "escalated": result.should_escalate,
            "new_severity": result.new_severity,
            "timestamp": now.isoformat(),
        }
        try:
            self.storage.merge_raw_data(alert_id, {"risk_adjustment": record})
        except StoreError as e:
            logger.error("Error updating risk metadata for alert %s: %s", alert_id, e)

    def score_many(self, alert_ids: Iterable[int], now: Optional[datetime] = None) -> Dict[int, Optional[RiskScoringResult]]:
        now = now or utcnow()
        return {alert_id: self.score(alert_id, now=now) for alert_id in alert_ids}
