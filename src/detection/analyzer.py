from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from detection.engine import DetectionEngine
from normalizers.base import LogFileError, LogRecord, UnsupportedLogTypeError
from normalizers.factory import get_parser

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Outcome of analyzing one log file."""
    log_file: str
    log_type: str
    records: List[LogRecord] = field(default_factory=list)
    total_records: int = 0
    match_count: int = 0
    process_time: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AnalysisSummary:
    results: List[AnalysisResult] = field(default_factory=list)
    total_time: float = 0.0

    @property
    def total_files(self) -> int:
        return len(self.results)

    @property
    def processed_files(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed_files(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def total_records(self) -> int:
        return sum(r.total_records for r in self.results)

    @property
    def total_matches(self) -> int:
        return sum(r.match_count for r in self.results if r.ok)

    def matched_records(self) -> List[LogRecord]:
        return [record for r in self.results if r.ok for record in r.records if record.matched_rules]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "processed_files": self.processed_files,
            "failed_files": self.failed_files,
            "total_records": self.total_records,
            "total_matches": self.total_matches,
            "total_time": round(self.total_time, 3),
        }


class LogAnalyzer:
    """
    Runs the normalize-then-detect pipeline over explicitly named log files.

    A failure is confined to the file that caused it and recorded on that
    file's result.
    """

    def __init__(self, engine: DetectionEngine, only_matched: bool = True):
        self.engine = engine
        self.only_matched = only_matched

    def analyze_records(self, records: Iterable[LogRecord]) -> List[LogRecord]:
        annotated = self.engine.annotate_all(records)
        if self.only_matched:
            return [record for record in annotated if record.matched_rules]
        return annotated

    def analyze_file(self, log_file: str, log_type: str) -> AnalysisResult:
        start = time.monotonic()
        result = AnalysisResult(log_file=log_file, log_type=log_type)

        try:
            parser = get_parser(log_type)
            records = parser.parse_file(log_file)
        except (UnsupportedLogTypeError, LogFileError) as e:
            result.error = str(e)
            result.process_time = time.monotonic() - start
            logger.error(f"Failed to analyze {log_file}: {e}")
            return result

        result.total_records = len(records)
        result.records = self.analyze_records(records)
        result.match_count = sum(1 for record in result.records if record.matched_rules)
        result.process_time = time.monotonic() - start

        logger.info(
            f"Analyzed {log_file} ({log_type}): {result.total_records} records, "
            f"{result.match_count} matches in {result.process_time:.3f}s"
        )
        return result

    def analyze_files(self, targets: Iterable[Tuple[str, str]]) -> AnalysisSummary:
        """Analyzes each `(path, log_type)` pair in order."""
        start = time.monotonic()
        summary = AnalysisSummary()

        for log_file, log_type in targets:
            summary.results.append(self.analyze_file(log_file, log_type))

        summary.total_time = time.monotonic() - start
        logger.info(
            f"Analysis completed: {summary.processed_files} processed, {summary.failed_files} failed, "
            f"{summary.total_matches} total matches in {summary.total_time:.3f}s"
        )
        return summary
