"""Shared fixtures: a sample Enhanced Monitoring record and offline boto3 clients."""

from __future__ import annotations

import copy
from typing import Any, Dict

import boto3
import pytest

import rds_top


SAMPLE_RECORD: Dict[str, Any] = {
    "engine": "MYSQL",
    "instanceID": "mydb",
    "instanceResourceID": "db-ABCDEFGHIJKL",
    "timestamp": "2019-09-12T13:05:00Z",
    "version": 1,
    "uptime": "10 days, 3:04:05",
    "numVCPUs": 2,
    "loadAverageMinute": {"one": 0.5, "five": 0.25, "fifteen": 0.1},
    "tasks": {"total": 100, "running": 2, "sleeping": 98, "stopped": 0, "zombie": 0, "blocked": 0},
    "cpuUtilization": {
        "user": 10.5, "system": 2.25, "nice": 0.0, "idle": 86.0,
        "wait": 1.0, "steal": 0.25, "guest": 0.0, "irq": 0.0, "total": 14.0,
    },
    "memory": {
        "total": 1048576, "free": 524288, "cached": 102400, "buffers": 2048,
        "active": 400000, "inactive": 100000, "dirty": 12,
    },
    "swap": {"total": 2048, "free": 1024, "cached": 37.5},
    "network": [{"interface": "eth0", "rx": 1234.9, "tx": 567}],
    "diskIO": [
        {
            "device": "rdsdev", "tps": 1.5, "rrqmPS": 0, "wrqmPS": 2, "writeKbPS": 3.25,
            "readKbPS": 4, "avgReqSz": 5, "avgQueueLen": 0.01, "await": 0.5, "util": 1.234,
        }
    ],
    "processList": [
        {"vss": 1000, "name": "mysqld", "tgid": 10, "parentID": 1, "memoryUsedPc": 40.0,
         "cpuUsedPc": 1.5, "id": 10, "rss": 500},
        {"vss": 200, "name": "OS processes", "tgid": 0, "parentID": 0, "memoryUsedPc": 2.5,
         "cpuUsedPc": 7.25, "id": 0, "rss": 100},
        {"vss": 300, "name": "RDS processes", "tgid": 0, "parentID": 0, "memoryUsedPc": 10.0,
         "cpuUsedPc": 0.5, "id": 0, "rss": 150},
    ],
}


@pytest.fixture
def record() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_RECORD)


@pytest.fixture(autouse=True)
def plain_output(monkeypatch: pytest.MonkeyPatch) -> None:
    """Every test starts in plain-text mode; main() may flip the flag."""
    monkeypatch.setattr(rds_top, "_MD_MODE", False)


@pytest.fixture
def offline_session() -> boto3.Session:
    return boto3.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )


@pytest.fixture
def rds_client(offline_session: boto3.Session) -> Any:
    return offline_session.client("rds")


@pytest.fixture
def logs_client(offline_session: boto3.Session) -> Any:
    return offline_session.client("logs")


@pytest.fixture
def empty_aws_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Point boto3 at empty config files so no local profile or region leaks in."""
    for var in ("AWS_PROFILE", "AWS_DEFAULT_PROFILE", "AWS_REGION", "AWS_DEFAULT_REGION"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "credentials"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
