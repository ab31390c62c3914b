# siem/severity.py
from typing import Dict, List, Tuple

SEVERITIES: List[str] = ["critical", "high", "medium", "low", "info"]

# lowest score that still maps to each severity, checked top down
SEVERITY_THRESHOLDS: List[Tuple[int, str]] = [
    (90, "critical"),
    (70, "high"),
    (50, "medium"),
    (30, "low"),
]

BASE_SEVERITY_SCORES: Dict[str, int] = {
    "critical": 90,
    "high": 70,
    "medium": 50,
    "low": 30,
    "info": 10,
}

DEFAULT_BASE_SCORE = 50

ESCALATION_THRESHOLD = 70


def clamp_score(score: float) -> int:
    """Round a score and keep it inside 0-100."""
    return int(min(100, max(0, round(score))))


def severity_from_score(score: float) -> str:
    """
    Map a 0-100 risk score to a severity.

    Used both when a detection is scored and when an alert is re-scored,
    so the two never disagree.
    """
    for threshold, severity in SEVERITY_THRESHOLDS:
        if score >= threshold:
            return severity
    return "info"


def base_score_for_severity(severity: str) -> int:
    return BASE_SEVERITY_SCORES.get((severity or "").lower(), DEFAULT_BASE_SCORE)
