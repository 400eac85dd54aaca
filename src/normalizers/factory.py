from typing import Dict, Type

from normalizers.auditd import AuditdParser
from normalizers.base import BaseLogParser, UnsupportedLogTypeError
from normalizers.journald import JournaldParser
from normalizers.syslog import SyslogParser

PARSERS: Dict[str, Type[BaseLogParser]] = {
    "syslog": SyslogParser,
    "journald": JournaldParser,
    "auditd": AuditdParser,
}

DEFAULT_LOG_PATHS: Dict[str, str] = {
    "syslog": "/var/log/messages",
    "journald": "/var/log/journal",
    "auditd": "/var/log/audit/audit.log",
}


def get_parser(log_type: str) -> BaseLogParser:
    key = str(log_type or "").strip().lower()
    parser_cls = PARSERS.get(key)
    if parser_cls is None:
        raise UnsupportedLogTypeError(f"Unsupported log type: {log_type!r}")
    return parser_cls()


def default_log_path(log_type: str) -> str:
    """Conventional location of each log type, syslog's when the type is unknown."""
    return DEFAULT_LOG_PATHS.get(str(log_type or "").strip().lower(), DEFAULT_LOG_PATHS["syslog"])
