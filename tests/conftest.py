# tests/conftest.py
from datetime import timedelta

import pytest

from siem.models import AlertPayload
from siem.storage import SQLiteStorage, utcnow

SAMPLE_LOG = """
2024-02-12 10:15:23 [AUTH] Failed password for admin from 203.0.113.45 port 22
2024-02-12 10:15:25 [AUTH] Failed password for root from 203.0.113.45 port 22
2024-02-12 10:15:27 [AUTH] Failed password for admin from 203.0.113.45 port 22
2024-02-12 10:15:29 [AUTH] Failed login attempt from 203.0.113.45
2024-02-12 10:15:31 [AUTH] Authentication failure for user root from 203.0.113.45
2024-02-12 10:20:15 [WEB] GET /search?q=' OR 1=1-- from 198.51.100.23
2024-02-12 10:20:18 [WEB] POST /login?username=admin' OR '1'='1 from 198.51.100.23
2024-02-12 10:20:22 [WEB] GET /api/users?id=1 UNION SELECT * FROM passwords from 198.51.100.23
2024-02-12 10:25:00 [AV] Detected ransomware signature in C:\\Temp\\malicious.exe
2024-02-12 10:25:05 [EDR] Trojan.Generic found on WORKSTATION-05
2024-02-12 10:25:10 [AV] Backdoor detected in system32 folder
2024-02-12 10:30:00 [FIREWALL] Outbound connection: 5.2 GB transferred to 104.24.104.24
2024-02-12 10:30:15 [DLP] Large data upload detected: 3500 MB sent to external cloud
2024-02-12 10:35:00 [AUDIT] User jdoe executed sudo su root on SERVER-01
2024-02-12 10:35:05 [SECURITY] Privilege escalation attempt detected for user hacker
2024-02-12 10:40:00 [IDS] Port scan detected from 192.0.2.100
2024-02-12 10:40:02 [IDS] Reconnaissance activity: nmap scan from 192.0.2.100
2024-02-12 10:45:00 [WEB] 403 Forbidden - User unauthorized_user attempting /admin
2024-02-12 10:45:05 [API] 401 Unauthorized - Access denied to /api/secrets
2024-02-12 10:45:10 [AUTH] Permission denied for user guest accessing /confidential
2024-02-12 10:50:00 [EDR] Mimikatz activity detected on WORKSTATION-12
2024-02-12 10:50:05 [SECURITY] Password dump attempt from lsass.exe
2024-02-12 11:00:00 [INFO] User alice logged in successfully
2024-02-12 11:00:05 [INFO] Application started normally
2024-02-12 11:00:10 [INFO] Database connection established
"""


def brute_force_lines(count: int, ip: str = "203.0.113.45") -> str:
    return "\n".join(
        f"2024-02-12 10:15:{i:02d} [AUTH] Failed password for admin from {ip} port 22"
        for i in range(count)
    )


@pytest.fixture
def failed_passwords():
    """Factory for `count` failed SSH password lines within the same minute."""
    return brute_force_lines


@pytest.fixture
def sample_log() -> str:
    return SAMPLE_LOG


@pytest.fixture
def storage(tmp_path):
    store = SQLiteStorage(db_path=str(tmp_path / "alerts.db"), timeout=1.0)
    store.connect()
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def add_alert(storage):
    """Insert an alert created `minutes_ago` minutes in the past and return its id."""

    def _add(
        title="Test alert",
        source="Firewall",
        severity="medium",
        raw_data=None,
        minutes_ago=0,
    ) -> int:
        payload = AlertPayload(
            title=title,
            description="",
            source=source,
            severity=severity,
            raw_data=raw_data or {},
        )
        created_at = utcnow() - timedelta(minutes=minutes_ago)
        return storage.insert_alert(payload, created_at=created_at)

    return _add
