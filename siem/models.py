# models
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class DetectionRule:
    id: str
    name: str
    description: str
    pattern: re.Pattern
    severity: str = "medium"
    risk_score: int = 50      # base score, 0-100
    category: str = ""
    mitre_attack: Tuple[str, ...] = ()
    recommended_actions: Tuple[str, ...] = ()


@dataclass
class LogEntry:
    line_number: int          # 1-based, counted over non-blank lines only
    raw_line: str
    timestamp: str = ""


@dataclass
class LogMatch:
    line_number: int
    raw_line: str
    timestamp: str
    # ips, data_size (bytes or None), timestamp
    extracted_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LogDetection:
    rule: DetectionRule
    matches: List[LogMatch]
    severity: str
    risk_score: int
    aggregated_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedLogResult:
    file_name: str
    total_lines: int
    detections: List[LogDetection]
    processing_time: float = 0.0    # milliseconds


@dataclass
class AlertPayload:
    title: str
    description: str
    source: str
    severity: str
    status: str = "pending"
    raw_data: Dict[str, Any] = field(default_factory=dict)
    resolution_method: str = ""


@dataclass
class ProcessingSummary:
    total_lines: int = 0
    alerts_generated: int = 0
    skipped_duplicates: int = 0
    critical_alerts: int = 0
    high_alerts: int = 0
    medium_alerts: int = 0
    low_alerts: int = 0
    processing_time: float = 0.0
    failed_inserts: int = 0
    alert_ids: List[int] = field(default_factory=list)


@dataclass
class RiskAdjustment:
    reason: str
    adjustment: int
    pattern: str


@dataclass
class RiskScoringResult:
    original_score: int
    adjusted_score: int
    adjustments: List[RiskAdjustment] = field(default_factory=list)
    should_escalate: bool = False
    new_severity: Optional[str] = None
