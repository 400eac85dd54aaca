from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from normalizers.base import BaseLogParser, LogRecord, format_timestamp, program_pid

logger = logging.getLogger(__name__)


class SyslogParser(BaseLogParser):
    """
    Parses classic BSD syslog lines:

        Jan  2 15:04:05 hostname program[pid]: message

    The timestamp carries no year, so the current local year is assumed.
    """

    log_type = "syslog"
    pattern = re.compile(
        r"^(?P<ts>\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+"
        r"(?P<host>\S+)\s+"
        r"(?P<program>\S+):\s*"
        r"(?P<message>.*)$"
    )

    def _parse_timestamp(self, stamp: str) -> datetime:
        stamp = " ".join(stamp.split())
        try:
            return datetime.strptime(f"{datetime.now().year} {stamp}", "%Y %b %d %H:%M:%S")
        except ValueError:
            pass

        # Unknown month name or Feb 29 outside a leap year: keep the time of day only.
        time_part = stamp.rsplit(" ", 1)[-1]
        try:
            return datetime.strptime(time_part, "%H:%M:%S")
        except ValueError:
            logger.debug(f"Unparseable syslog timestamp {stamp!r}")
            return datetime(1900, 1, 1)

    def build_record(self, match: re.Match) -> Optional[LogRecord]:
        return LogRecord(
            timestamp=format_timestamp(self._parse_timestamp(match.group("ts"))),
            hostname=match.group("host"),
            program=match.group("program"),
            pid=program_pid(match.group("program")),
            message=match.group("message"),
            category="process",
            product="linux",
            service="syslog",
        )
