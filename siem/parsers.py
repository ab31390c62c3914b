# siem/parsers.py
import re
from datetime import datetime, timezone
from typing import List, Optional

from .models import LogEntry

LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")

IPV4_RE = re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b")

# Timestamp formats, tried in this order
ISO8601_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?"
)
COMMON_LOG_RE = re.compile(r"\d{2}/\w{3}/\d{4}:\d{2}:\d{2}:\d{2}")
SYSLOG_RE = re.compile(r"\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}")

DATA_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(bytes?|kb|mb|gb|tb)", re.IGNORECASE)

SIZE_MULTIPLIERS = {
    "byte": 1,
    "bytes": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
}


def split_log_lines(content: str) -> List[LogEntry]:
    """
    Split raw log text into LogEntry objects.

    Blank lines are dropped before numbering, so line_number is the position
    among non-blank lines and not the line in the original file.
    """
    entries: List[LogEntry] = []
    for raw in LINE_SPLIT_RE.split(content):
        if not raw.strip():
            continue
        entries.append(
            LogEntry(
                line_number=len(entries) + 1,
                raw_line=raw,
                timestamp=extract_timestamp(raw),
            )
        )
    return entries


def extract_ips(line: str) -> List[str]:
    return IPV4_RE.findall(line)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_timestamp(line: str) -> str:
    """
    Return the first timestamp found in the line as written in the log.

    Falls back to the current time when no known format is present, so the
    result is not always the event time.
    """
    for pattern in (ISO8601_RE, COMMON_LOG_RE, SYSLOG_RE):
        m = pattern.search(line)
        if m:
            return m.group(0)
    return now_iso()


def extract_data_size(line: str) -> Optional[int]:
    """Parse '<number> <unit>' into a byte count using 1024 multipliers."""
    m = DATA_SIZE_RE.search(line)
    if not m:
        return None
    value = float(m.group(1))
    unit = m.group(2).lower()
    return int(round(value * SIZE_MULTIPLIERS.get(unit, 1)))


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Turn an extracted timestamp string into an aware datetime.

    Returns None when the string is not a valid date. Naive values are
    treated as UTC.
    """
    if not value:
        return None
    text = value.strip()

    parsed: Optional[datetime] = None
    if ISO8601_RE.fullmatch(text):
        normalized = text.replace(" ", "T", 1)
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        # +0000 -> +00:00
        normalized = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", normalized)
        # fromisoformat wants exactly six fraction digits before 3.11
        normalized = re.sub(r"\.(\d+)", lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized)
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
    elif COMMON_LOG_RE.fullmatch(text):
        try:
            parsed = datetime.strptime(text, "%d/%b/%Y:%H:%M:%S")
        except ValueError:
            return None
    elif SYSLOG_RE.fullmatch(text):
        # syslog lines carry no year; a leap year keeps Feb 29 valid
        try:
            parsed = datetime.strptime("2000 " + " ".join(text.split()), "%Y %b %d %H:%M:%S")
        except ValueError:
            return None
    else:
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
