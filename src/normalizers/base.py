from __future__ import annotations

import io
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Dict, List, Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
_PROGRAM_PID_RE = re.compile(r"\[(\d+)\]$")


class LogFileError(OSError):
    """Raised when a log source cannot be opened or read."""


class UnsupportedLogTypeError(ValueError):
    """Raised when no parser exists for the requested log type."""


@dataclass
class LogRecord:
    timestamp: str
    hostname: str
    program: str
    pid: str
    message: str
    category: str
    product: str
    service: str
    fields: Dict[str, str] = field(default_factory=dict)
    matched_rules: List[str] = field(default_factory=list)

    def append_continuation(self, line: str) -> None:
        self.message = f"{self.message} {line}"


def format_timestamp(value: datetime) -> str:
    """Render a datetime as the canonical millisecond ISO-8601 string (wall clock, no offset)."""
    return f"{value.strftime(TIMESTAMP_FORMAT)}.{value.microsecond // 1000:03d}"


def program_pid(program: str) -> str:
    """Returns the pid from a trailing `[pid]` on the program token, or an empty string."""
    match = _PROGRAM_PID_RE.search(program)
    return match.group(1) if match else ""


class BaseLogParser:
    """
    Line-oriented parser shared by every supported log format.

    Subclasses provide `pattern` and `build_record`. Lines that do not match
    the pattern are folded into the previous record's message, or dropped
    when no record has been produced yet.
    """

    log_type: str = ""
    pattern: re.Pattern

    def build_record(self, match: re.Match) -> Optional[LogRecord]:
        raise NotImplementedError

    def parse_line(self, line: str) -> Optional[LogRecord]:
        match = self.pattern.match(line)
        if not match:
            return None
        return self.build_record(match)

    def parse(self, stream: BinaryIO) -> List[LogRecord]:
        records: List[LogRecord] = []
        dropped = 0

        text = io.TextIOWrapper(stream, encoding="utf-8", errors="replace", newline=None)
        try:
            for raw_line in text:
                line = raw_line.rstrip("\r\n")
                if not line.strip():
                    continue

                record = self.parse_line(line)
                if record is not None:
                    records.append(record)
                elif records:
                    records[-1].append_continuation(line)
                else:
                    dropped += 1
        finally:
            # Leave the caller's stream open; the wrapper would close it otherwise.
            text.detach()

        if dropped:
            logger.debug(f"Dropped {dropped} leading {self.log_type} line(s) with no record to attach to")
        return records

    def parse_file(self, path: str) -> List[LogRecord]:
        if not os.path.exists(path):
            raise LogFileError(f"Log file does not exist: {path}")
        try:
            with open(path, "rb") as f:
                records = self.parse(f)
        except OSError as e:
            raise LogFileError(f"Failed to read log file {path}: {e}") from e

        logger.debug(f"Parsed {len(records)} {self.log_type} record(s) from {path}")
        return records
