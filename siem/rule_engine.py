# siem/rule_engine.py

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .models import DetectionRule
from .severity import SEVERITIES

logger = logging.getLogger(__name__)

# Packaged rule set: Watchtower/siem/rules
DEFAULT_RULE_DIR = Path(os.path.dirname(__file__)) / "rules"

REQUIRED_FIELDS = ("id", "name", "pattern", "severity", "risk_score")


class RuleLoadError(Exception):
    """Raised when a rule directory cannot be used at all."""


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return (str(value),)


def build_rule(data: Dict[str, Any]) -> DetectionRule:
    """
    Turn one rule mapping into a DetectionRule.

    Raises ValueError when the mapping cannot describe a usable rule.
    """
    missing = [f for f in REQUIRED_FIELDS if f not in data]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    severity = str(data["severity"]).lower()
    if severity not in SEVERITIES:
        raise ValueError(f"unknown severity {data['severity']!r}")

    try:
        risk_score = int(data["risk_score"])
    except (TypeError, ValueError):
        raise ValueError(f"risk_score must be an integer, got {data['risk_score']!r}")
    if not 0 <= risk_score <= 100:
        raise ValueError(f"risk_score out of range: {risk_score}")

    try:
        pattern = re.compile(str(data["pattern"]), re.IGNORECASE)
    except re.error as e:
        raise ValueError(f"invalid regex: {e}")

    return DetectionRule(
        id=str(data["id"]),
        name=str(data["name"]),
        description=str(data.get("description", "")),
        pattern=pattern,
        severity=severity,
        risk_score=risk_score,
        category=str(data.get("category", "")),
        mitre_attack=_as_tuple(data.get("mitre_attack")),
        recommended_actions=_as_tuple(data.get("recommended_actions")),
    )


def load_rule_file(path: Path) -> List[Dict[str, Any]]:
    """Read one YAML file holding either a single rule or a `rules:` list."""
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data:
        logger.warning("Skipping empty rule file: %s", path.name)
        return []
    if not isinstance(data, dict):
        logger.warning("Skipping non dict rule file: %s", path.name)
        return []

    if "rules" in data:
        items = data.get("rules") or []
        if not isinstance(items, list):
            logger.warning("Skipping rule file with non list 'rules': %s", path.name)
            return []
        return [item for item in items if isinstance(item, dict)]
    return [data]


class RuleEngine:
    """
    Immutable table of detection rules.

    Build one from a directory of YAML files with from_directory(), or pass
    DetectionRule objects directly (handy for tests with custom rule sets).
    """

    def __init__(self, rules: Iterable[DetectionRule]):
        self.rules: Tuple[DetectionRule, ...] = tuple(rules)
        self._by_id = {rule.id: rule for rule in self.rules}

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def get(self, rule_id: str) -> Optional[DetectionRule]:
        return self._by_id.get(rule_id)

    def match_line(self, line: str) -> List[DetectionRule]:
        """Return the rules whose pattern matches the given line."""
        return [rule for rule in self.rules if rule.pattern.search(line)]

    @classmethod
    def from_directory(cls, rule_dir) -> "RuleEngine":
        """Load all YAML rules from the rules directory."""
        rule_dir = Path(rule_dir)
        if not rule_dir.is_dir():
            raise RuleLoadError(f"Rule directory does not exist: {rule_dir}")

        rules: List[DetectionRule] = []
        seen = set()
        files = sorted(
            p for p in rule_dir.iterdir() if p.suffix in (".yaml", ".yml")
        )
        for path in files:
            try:
                items = load_rule_file(path)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Error loading rule file %s: %s", path.name, e)
                continue

            for data in items:
                try:
                    rule = build_rule(data)
                except ValueError as e:
                    logger.warning(
                        "Skipping rule %s in %s: %s", data.get("id"), path.name, e
                    )
                    continue
                if rule.id in seen:
                    logger.warning("Skipping duplicate rule id %s in %s", rule.id, path.name)
                    continue
                seen.add(rule.id)
                rules.append(rule)
                logger.debug("Loaded rule from %s: %s", path.name, rule.id)

        logger.info("Loaded %d detection rules from %s", len(rules), rule_dir)
        return cls(rules)

    @classmethod
    def default(cls) -> "RuleEngine":
        return _default_engine()


@lru_cache(maxsize=1)
def _default_engine() -> RuleEngine:
    return RuleEngine.from_directory(DEFAULT_RULE_DIR)
