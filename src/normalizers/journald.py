from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from normalizers.base import BaseLogParser, LogRecord, format_timestamp, program_pid

logger = logging.getLogger(__name__)

# Tried in priority order: RFC3339 with offset, local time, local time with fraction.
_TIMESTAMP_FORMATS = (
    ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"),
    ("%Y-%m-%dT%H:%M:%S",),
    ("%Y-%m-%dT%H:%M:%S.%f",),
)

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_rfc3339ish(value: str) -> datetime:
    """
    Parses an RFC3339-like timestamp, keeping its wall-clock value.

    Falls back to the current time when no layout matches.
    """
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    # strptime's %f accepts at most microseconds.
    candidate = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6], candidate, count=1)

    for layouts in _TIMESTAMP_FORMATS:
        for layout in layouts:
            try:
                return datetime.strptime(candidate, layout)
            except ValueError:
                continue

    logger.debug(f"Unparseable journald timestamp {value!r}, using current time")
    return datetime.now()


class JournaldParser(BaseLogParser):
    """
    Parses `journalctl -o short-iso` style exports:

        2025-01-01T10:30:15.123+00:00 hostname program[pid]: message
    """

    log_type = "journald"
    pattern = re.compile(
        r"^(?P<ts>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)\s+"
        r"(?P<host>\S+)\s+"
        r"(?P<program>\S+):\s*"
        r"(?P<message>.*)$"
    )

    def build_record(self, match: re.Match) -> Optional[LogRecord]:
        return LogRecord(
            timestamp=format_timestamp(parse_rfc3339ish(match.group("ts"))),
            hostname=match.group("host"),
            program=match.group("program"),
            pid=program_pid(match.group("program")),
            message=match.group("message"),
            category="process",
            product="linux",
            service="journald",
        )
