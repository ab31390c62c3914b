# tests/test_parsers.py
from datetime import datetime, timedelta, timezone

from siem.parsers import (
    extract_data_size,
    extract_ips,
    extract_timestamp,
    parse_timestamp,
    split_log_lines,
)


def test_failed_login_line_extraction():
    line = (
        "Jan  1 10:15:32 server1 sshd[12345]: Failed password for "
        "invalid user admin from 192.168.1.10 port 54321 ssh2"
    )
    assert extract_ips(line) == ["192.168.1.10"]
    assert extract_timestamp(line) == "Jan  1 10:15:32"
    assert extract_data_size(line) is None


def test_split_skips_blank_lines_and_renumbers():
    content = "first\r\n\n   \nsecond\rthird\n"
    entries = split_log_lines(content)
    assert [e.raw_line for e in entries] == ["first", "second", "third"]
    assert [e.line_number for e in entries] == [1, 2, 3]


def test_split_empty_content():
    assert split_log_lines("") == []
    assert split_log_lines("\n\n  \n") == []


def test_extract_multiple_ips():
    line = "conn 10.1.2.3 -> 172.16.0.9 via 10.1.2.3"
    assert extract_ips(line) == ["10.1.2.3", "172.16.0.9", "10.1.2.3"]
    assert extract_ips("no address here") == []


def test_extract_timestamp_prefers_iso():
    line = '2024-02-12T10:15:23Z 10.0.0.5 - - [12/Feb/2024:10:15:23 +0000] "GET /"'
    assert extract_timestamp(line) == "2024-02-12T10:15:23Z"


def test_extract_timestamp_common_log():
    line = '10.0.0.5 - - [12/Feb/2024:10:15:23 +0000] "GET / HTTP/1.1" 200 512'
    assert extract_timestamp(line) == "12/Feb/2024:10:15:23"


def test_extract_timestamp_falls_back_to_now():
    before = datetime.now(timezone.utc)
    value = extract_timestamp("no time in this line")
    parsed = parse_timestamp(value)
    assert parsed is not None
    assert before - timedelta(seconds=1) <= parsed <= datetime.now(timezone.utc) + timedelta(seconds=1)


def test_extract_data_size_units():
    assert extract_data_size("sent 512 bytes") == 512
    assert extract_data_size("sent 1 byte") == 1
    assert extract_data_size("2 KB uploaded") == 2048
    assert extract_data_size("3500 MB sent") == 3500 * 1024 ** 2
    assert extract_data_size("5.2 GB transferred") == round(5.2 * 1024 ** 3)
    assert extract_data_size("1tb archive") == 1024 ** 4


def test_parse_timestamp_formats():
    iso = parse_timestamp("2024-02-12 10:15:23")
    assert iso == datetime(2024, 2, 12, 10, 15, 23, tzinfo=timezone.utc)

    offset = parse_timestamp("2024-02-12T12:15:23+0200")
    assert offset == iso

    common = parse_timestamp("12/Feb/2024:10:15:23")
    assert common == iso

    syslog = parse_timestamp("Feb 12 10:15:23")
    assert (syslog.month, syslog.day, syslog.hour) == (2, 12, 10)


def test_parse_timestamp_short_fraction():
    parsed = parse_timestamp("2024-02-12 10:15:23.12")
    assert parsed == datetime(2024, 2, 12, 10, 15, 23, 120000, tzinfo=timezone.utc)

    long_fraction = parse_timestamp("2024-02-12T10:15:23.1234567Z")
    assert long_fraction == datetime(2024, 2, 12, 10, 15, 23, 123456, tzinfo=timezone.utc)


def test_parse_timestamp_invalid():
    assert parse_timestamp("") is None
    assert parse_timestamp("2024-13-45 99:99:99") is None
    assert parse_timestamp("Foo 99 10:15:23") is None
    assert parse_timestamp("yesterday") is None
