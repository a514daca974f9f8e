#!/usr/bin/env python3
# Copyright 2026 Christopher Grigor
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
rds_top - a top-like snapshot of an RDS instance

Fetches the most recent RDS Enhanced Monitoring record for one instance
from CloudWatch Logs and prints system, network, disk I/O and process
statistics in the style of the Linux ``top`` command.

Usage:
  rds-top rds-instance
  rds-top --start-time=$(date -v-13d +%s) rds-instance
  rds-top --sort-by-mem rds-instance | grep -v 'idle$'
"""

import argparse
import json
import logging
import math
import re
import signal
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, NoReturn, TextIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from tabulate import tabulate


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output context: set to True via --md flag to emit Markdown
# ---------------------------------------------------------------------------
_MD_MODE: bool = False


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
LOG_GROUP_NAME = "RDSOSMetrics"
LOG_EVENT_LIMIT = 1
KIB_PER_MIB = 1024

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PROCESS_HEADERS = ("PID", "PPID", "VSS", "RSS", "%CPU", "%MEM", "COMMAND")
PROCESS_ROW_FORMAT = "{:<6} {:<6} {:<8} {:<8} {:<6} {:<6} {}"

NETWORK_HEADERS = ("interface", "rx", "tx")
DISK_HEADERS = (
    "device", "tps", "rrqm/s", "wrqm/s", "wKB/S", "rKB/S",
    "avgrq-sz", "avgqu-sz", "await", "%util",
)

_RFC3339_RE = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(\.[0-9]+)?(Z|[+-][0-9]{2}:[0-9]{2})"
)
_EPOCH_RE = re.compile(r"[+-]?[0-9]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class RDSTopError(Exception):
    """Base class for every failure rds-top reports to the user."""


class UsageError(RDSTopError):
    pass


class SessionError(RDSTopError):
    pass


class InstanceNotFoundError(RDSTopError):
    pass


class ServiceError(RDSTopError):
    pass


class PayloadParseError(RDSTopError):
    pass


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RDSTopOptions:
    instance_id: str
    start_time: int = 0
    sort_by_mem: bool = False
    profile: str | None = None
    region: str | None = None
    markdown: bool = False
    verbose: bool = False


@dataclass
class Process:
    """One entry of the Enhanced Monitoring ``processList`` array."""
    pid: int = 0
    parent_pid: int = 0
    vss: int = 0
    rss: int = 0
    cpu_used_pc: float = 0.0
    memory_used_pc: float = 0.0
    name: str = ""

    @classmethod
    def from_dict(cls, entry: Any) -> "Process":
        """
        Decode one process entry.  Absent keys and nulls take the zero
        value; a value of the wrong JSON type raises PayloadParseError.
        """
        if entry is None:
            return cls()
        if not isinstance(entry, dict):
            raise PayloadParseError(f"process entry is not an object: {entry!r}")
        return cls(
            pid=_strict_int(entry, "id"),
            parent_pid=_strict_int(entry, "parentID"),
            vss=_strict_int(entry, "vss"),
            rss=_strict_int(entry, "rss"),
            cpu_used_pc=_strict_float(entry, "cpuUsedPc"),
            memory_used_pc=_strict_float(entry, "memoryUsedPc"),
            name=_strict_str(entry, "name"),
        )

    def to_row(self) -> tuple:
        return (
            str(self.pid),
            str(self.parent_pid),
            str(self.vss),
            str(self.rss),
            f"{self.cpu_used_pc:.2f}",
            f"{self.memory_used_pc:.2f}",
            self.name,
        )


def _strict_int(entry: dict, key: str) -> int:
    value = entry.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadParseError(f"field {key!r} is not an integer: {value!r}")
    return value


def _strict_float(entry: dict, key: str) -> float:
    value = entry.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadParseError(f"field {key!r} is not a number: {value!r}")
    return float(value)


def _strict_str(entry: dict, key: str) -> str:
    value = entry.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise PayloadParseError(f"field {key!r} is not a string: {value!r}")
    return value


# ---------------------------------------------------------------------------
# Signal handler
# ---------------------------------------------------------------------------
def signal_handler(sig: int, frame: Any) -> None:
    print("\nInterrupted.", file=sys.stderr)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------
class _OptionsParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _OptionsParser(
        prog="rds-top",
        allow_abbrev=False,
        description="Show RDS Enhanced Monitoring statistics like the Linux top command.",
    )
    parser.add_argument(
        "--start-time",
        default="",
        metavar="t",
        help="Optional: Specify the start time in seconds since the Unix epoch",
    )
    parser.add_argument(
        "--sort-by-mem",
        action="store_true",
        help="Optional: Sorts output by memory. Default is to sort by CPU",
    )
    parser.add_argument("--profile", help="Optional: AWS named profile to use")
    parser.add_argument("--region", help="Optional: AWS region of the instance")
    parser.add_argument(
        "--md",
        action="store_true",
        help="Optional: Emit the report as Markdown",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Optional: Log AWS request details to stderr",
    )
    parser.add_argument("instance_ids", nargs="*", metavar="rds_instance_id")
    return parser


def parse_options(argv: list[str]) -> RDSTopOptions:
    args = build_parser().parse_args(argv)

    if len(args.instance_ids) != 1:
        raise UsageError("invalid number of arguments")
    instance_id = args.instance_ids[0]
    if not instance_id:
        raise UsageError("instance identifier must not be empty")

    start_time = 0
    if args.start_time != "":
        if not _EPOCH_RE.fullmatch(args.start_time):
            raise UsageError("invalid start time format")
        start_time = int(args.start_time)
        if not -(2 ** 63) <= start_time < 2 ** 63:
            raise UsageError("invalid start time format")

    return RDSTopOptions(
        instance_id=instance_id,
        start_time=start_time,
        sort_by_mem=args.sort_by_mem,
        profile=args.profile,
        region=args.region,
        markdown=args.md,
        verbose=args.verbose,
    )


def usage(stream: TextIO | None = None) -> None:
    build_parser().print_help(stream or sys.stderr)


# ---------------------------------------------------------------------------
# AWS session
# ---------------------------------------------------------------------------
def create_session(profile: str | None = None, region: str | None = None) -> boto3.Session:
    try:
        return boto3.Session(profile_name=profile, region_name=region)
    except BotoCoreError as exc:
        raise SessionError(str(exc)) from exc


def create_clients(session: boto3.Session) -> tuple[Any, Any]:
    """Return the (rds, logs) clients, both bound to ``session``."""
    try:
        return session.client("rds"), session.client("logs")
    except BotoCoreError as exc:
        raise SessionError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Monitoring record fetcher
# ---------------------------------------------------------------------------
def get_resource_id(instance_id: str, rds_client: Any) -> str:
    """
    Resolve the instance name to its DbiResourceId.  Enhanced Monitoring
    log streams are named after the resource id, which survives renames.
    """
    try:
        resp = rds_client.describe_db_instances(DBInstanceIdentifier=instance_id)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "DBInstanceNotFound":
            raise InstanceNotFoundError(f"no DB instances found: {instance_id}") from exc
        raise ServiceError(str(exc)) from exc
    except NoCredentialsError as exc:
        raise SessionError(str(exc)) from exc
    except BotoCoreError as exc:
        raise ServiceError(str(exc)) from exc

    instances = resp.get("DBInstances", [])
    if not instances:
        raise InstanceNotFoundError(f"no DB instances found: {instance_id}")

    resource_id = instances[0]["DbiResourceId"]
    logger.debug("instance %s has resource id %s", instance_id, resource_id)
    return resource_id


def build_logs_parameters(resource_id: str, start_time: int) -> dict:
    params: dict[str, Any] = {
        "logGroupName": LOG_GROUP_NAME,
        "logStreamName": resource_id,
        "limit": LOG_EVENT_LIMIT,
    }
    if start_time > 0:
        params["startTime"] = start_time * 1000
        params["startFromHead"] = True
    return params


def get_log_events(params: dict, logs_client: Any) -> str:
    logger.debug("get_log_events %s", params)
    try:
        resp = logs_client.get_log_events(**params)
    except NoCredentialsError as exc:
        raise SessionError(str(exc)) from exc
    except (ClientError, BotoCoreError) as exc:
        raise ServiceError(str(exc)) from exc

    events = resp.get("events", [])
    logger.debug("received %d log event(s)", len(events))
    return "".join(event.get("message", "") for event in events)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------
def parse_payload(message: str) -> dict:
    if not message:
        raise PayloadParseError("no Enhanced Monitoring records returned")
    try:
        doc = json.loads(message)
    except ValueError as exc:
        raise PayloadParseError(str(exc)) from exc
    if not isinstance(doc, dict):
        raise PayloadParseError("monitoring record is not a JSON object")
    return doc


def _get(doc: Any, path: str) -> Any:
    for key in path.split("."):
        if not isinstance(doc, dict):
            return None
        doc = doc.get(key)
    return doc


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _as_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _as_float(value)
    return int(number) if math.isfinite(number) else 0


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def parse_rfc3339(text: str) -> datetime:
    match = _RFC3339_RE.fullmatch(text)
    if not match:
        raise PayloadParseError(f"cannot parse {text!r} as RFC 3339")
    year, month, day, hour, minute, second = (int(g) for g in match.group(1, 2, 3, 4, 5, 6))
    fraction, zone = match.group(7), match.group(8)
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        if offset >= timedelta(hours=24):
            raise PayloadParseError(f"cannot parse {text!r} as RFC 3339: bad offset")
        tz = timezone(sign * offset)
    micro = int((fraction[1:] + "000000")[:6]) if fraction else 0
    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError as exc:
        raise PayloadParseError(f"cannot parse {text!r} as RFC 3339: {exc}") from exc


def format_rfc3339(ts: datetime) -> str:
    offset = ts.utcoffset() or timedelta(0)
    base = ts.strftime("%Y-%m-%dT%H:%M:%S")
    if not offset:
        return base + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{base}{sign}{hours:02d}:{minutes:02d}"


# ---------------------------------------------------------------------------
# Core display helpers
# ---------------------------------------------------------------------------
def print_result(title: str, table: list, headers: tuple = ()) -> None:
    if not table:
        return
    print(f"\n### {title}\n")
    print(tabulate(table, headers, tablefmt="github", disable_numparse=True))


# ---------------------------------------------------------------------------
# Report sections
# ---------------------------------------------------------------------------
def system_stats_lines(doc: dict) -> list[str]:
    timestamp = parse_rfc3339(_as_str(_get(doc, "timestamp")))

    def f(path: str) -> float:
        return _as_float(_get(doc, path))

    def i(path: str) -> int:
        return _as_int(_get(doc, path))

    mem_total, mem_free = f("memory.total"), f("memory.free")
    return [
        f"{_as_str(_get(doc, 'instanceID'))} - {format_rfc3339(timestamp)} - "
        f"{_as_str(_get(doc, 'uptime'))} up, load average: "
        f"{f('loadAverageMinute.one'):.2f}, {f('loadAverageMinute.five'):.2f}, "
        f"{f('loadAverageMinute.fifteen'):.2f}",
        f"Tasks: {i('tasks.total')} total, {i('tasks.running')} running, "
        f"{i('tasks.sleeping')} sleeping, {i('tasks.stopped')} stopped, "
        f"{i('tasks.zombie')} zombie",
        f"%Cpu(s): {f('cpuUtilization.user'):.2f} us, {f('cpuUtilization.system'):.2f} sy, "
        f"{f('cpuUtilization.nice'):.2f} ni, {f('cpuUtilization.idle'):.2f} id, "
        f"{f('cpuUtilization.wait'):.2f} wa, {f('cpuUtilization.steal'):.2f} st",
        f"MiB Mem: {mem_total / KIB_PER_MIB:.2f} total, {mem_free / KIB_PER_MIB:.2f} free, "
        f"{(mem_total - mem_free) / KIB_PER_MIB:.2f} used, "
        f"{(f('memory.cached') + f('memory.buffers')) / KIB_PER_MIB:.2f} buff/cache",
        # swap.cached is printed as reported, without the MiB conversion
        f"MiB Swap: {f('swap.total') / KIB_PER_MIB:.2f} total, "
        f"{f('swap.free') / KIB_PER_MIB:.2f} free, {f('swap.cached'):.2f} cached",
    ]


def print_system_stats(doc: dict) -> None:
    try:
        lines = system_stats_lines(doc)
    except PayloadParseError as exc:
        print(f"Error parsing timestamp: {exc}", file=sys.stderr)
        return

    if _MD_MODE:
        print("### System\n")
        print("```text")
        print("\n".join(lines))
        print("```")
    else:
        print("\n".join(lines))


def network_rows(doc: dict) -> list[tuple]:
    return [
        (_as_str(_get(n, "interface")), _as_int(_get(n, "rx")), _as_int(_get(n, "tx")))
        for n in _as_list(_get(doc, "network"))
    ]


def print_network_stats(doc: dict) -> None:
    rows = network_rows(doc)
    if _MD_MODE:
        print_result("Network", [(name, str(rx), str(tx)) for name, rx, tx in rows], NETWORK_HEADERS)
        return
    for name, rx, tx in rows:
        print(f"Net {name}: {rx} rx, {tx} tx")


_DISK_FIELDS = (
    "tps", "rrqmPS", "wrqmPS", "writeKbPS", "readKbPS",
    "avgReqSz", "avgQueueLen", "await", "util",
)


def disk_io_rows(doc: dict) -> list[tuple]:
    return [
        (_as_str(_get(d, "device")),) + tuple(_as_float(_get(d, key)) for key in _DISK_FIELDS)
        for d in _as_list(_get(doc, "diskIO"))
    ]


def print_disk_io_stats(doc: dict) -> None:
    rows = disk_io_rows(doc)
    if _MD_MODE:
        table = [(row[0],) + tuple(f"{v:.2f}" for v in row[1:]) for row in rows]
        print_result("Disk I/O", table, DISK_HEADERS)
        return
    for device, tps, rrqm, wrqm, wkb, rkb, avgrq, avgqu, await_, util in rows:
        print(
            f"Disk {device}: {tps:.2f} tps, {rrqm:.2f} rrqm/s, {wrqm:.2f} wrqm/s, "
            f"{wkb:.2f} wKB/S, {rkb:.2f} rKB/S, {avgrq:.2f} avgrq-sz, "
            f"{avgqu:.2f} avgqu-sz, {await_:.2f} await, {util:.2f} %util"
        )


def decode_processes(doc: dict) -> list[Process]:
    processes = []
    for entry in _as_list(_get(doc, "processList")):
        try:
            processes.append(Process.from_dict(entry))
        except PayloadParseError as exc:
            logger.warning("skipping process entry: %s", exc)
    return processes


def sort_processes(processes: list[Process], sort_by_mem: bool = False) -> list[Process]:
    # No de-duplication: RDS reports the top CPU and top memory consumers,
    # which can list the same process twice.
    if sort_by_mem:
        return sorted(processes, key=lambda p: p.memory_used_pc, reverse=True)
    return sorted(processes, key=lambda p: p.cpu_used_pc, reverse=True)


def print_process_list(doc: dict, sort_by_mem: bool = False) -> None:
    processes = sort_processes(decode_processes(doc), sort_by_mem)
    rows = [p.to_row() for p in processes]

    if _MD_MODE:
        print("### Processes\n")
        print(tabulate(rows, PROCESS_HEADERS, tablefmt="github", disable_numparse=True))
        return

    print(PROCESS_ROW_FORMAT.format(*PROCESS_HEADERS))
    for row in rows:
        print(PROCESS_ROW_FORMAT.format(*row))


def print_report(doc: dict, sort_by_mem: bool = False) -> None:
    print_system_stats(doc)
    print()

    print_network_stats(doc)
    print_disk_io_stats(doc)

    print()
    print_process_list(doc, sort_by_mem)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def _fail(prefix: str, exc: Exception) -> NoReturn:
    print(f"{prefix}: {exc}", file=sys.stderr)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    global _MD_MODE

    try:
        options = parse_options(sys.argv[1:] if argv is None else argv)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        usage()
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )
    _MD_MODE = options.markdown

    try:
        session = create_session(options.profile, options.region)
        rds_client, logs_client = create_clients(session)
    except SessionError as exc:
        _fail("Error creating AWS session", exc)

    try:
        resource_id = get_resource_id(options.instance_id, rds_client)
    except SessionError as exc:
        _fail("Error creating AWS session", exc)
    except RDSTopError as exc:
        _fail("Error getting resource ID", exc)

    params = build_logs_parameters(resource_id, options.start_time)

    try:
        message_json = get_log_events(params, logs_client)
    except SessionError as exc:
        _fail("Error creating AWS session", exc)
    except RDSTopError as exc:
        _fail("Error getting log events", exc)

    try:
        doc = parse_payload(message_json)
    except PayloadParseError as exc:
        # an empty record still renders the section skeleton
        logger.warning("unreadable monitoring record: %s", exc)
        doc = {}

    print_report(doc, options.sort_by_mem)


if __name__ == "__main__":
    main()
