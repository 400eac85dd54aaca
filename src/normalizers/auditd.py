from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, Optional

from normalizers.base import BaseLogParser, LogRecord, format_timestamp

logger = logging.getLogger(__name__)

AUDIT_HOSTNAME = "localhost"
AUDIT_PROGRAM = "auditd"

_FIELD_RE = re.compile(r"(\w+)=(\S+)")


def extract_audit_fields(text: str) -> Dict[str, str]:
    """Collects `key=value` tokens, stripping surrounding double quotes from values."""
    fields: Dict[str, str] = {}
    for key, value in _FIELD_RE.findall(text):
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        fields[key] = value
    return fields


class AuditdParser(BaseLogParser):
    """
    Parses Linux audit log lines:

        type=SYSCALL msg=audit(1640999999.123:456): arch=c000003e syscall=59 ...

    Audit records carry no hostname or program, so fixed placeholders are used.
    The audit serial number is stored as the pid.
    """

    log_type = "auditd"
    pattern = re.compile(
        r"^type=(?P<type>\S+)\s+msg=audit\((?P<epoch>\d+\.\d+):(?P<seq>\d+)\):\s*(?P<rest>.*)$"
    )

    def build_record(self, match: re.Match) -> Optional[LogRecord]:
        rest = match.group("rest")
        try:
            ts = datetime.fromtimestamp(int(float(match.group("epoch"))))
        except (OverflowError, OSError, ValueError):
            logger.debug(f"Audit epoch out of range: {match.group('epoch')!r}")
            ts = datetime.fromtimestamp(0)

        fields = {"type": match.group("type")}
        fields.update(extract_audit_fields(rest))

        return LogRecord(
            timestamp=format_timestamp(ts),
            hostname=AUDIT_HOSTNAME,
            program=AUDIT_PROGRAM,
            pid=match.group("seq"),
            message=rest,
            category="audit",
            product="linux",
            service="auditd",
            fields=fields,
        )
