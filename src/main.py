import sys
import re
import yaml
import os
import logging
from typing import Dict, Any, List, Tuple

from detection.analyzer import LogAnalyzer
from detection.engine import DetectionEngine
from normalizers.factory import default_log_path

_ENV_VAR_RE = re.compile(r'\$\{([^}]+)\}')


def setup_logging(config: Dict[str, Any]):
    """Configure logging based on config."""
    log_config = config.get('logging') or {}
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_file = log_config.get('file')

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        # Create log directory if needed
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def load_config(path: str) -> Dict[str, Any]:
    """Load YAML configuration file with environment variable expansion."""
    with open(path, 'r') as f:
        content = f.read()

    # Expand environment variables (${VAR_NAME} format)
    def expand_env_var(match):
        var_name = match.group(1)
        return os.environ.get(var_name, '')

    content = _ENV_VAR_RE.sub(expand_env_var, content)

    return yaml.safe_load(content) or {}


def analysis_targets(config: Dict[str, Any]) -> List[Tuple[str, str]]:
    """Build (path, log_type) pairs from the 'analysis.files' section."""
    targets = []
    for entry in (config.get('analysis') or {}).get('files') or []:
        if isinstance(entry, str):
            entry = {'path': entry}
        if not isinstance(entry, dict):
            continue
        log_type = str(entry.get('type') or 'syslog').strip().lower()
        path = entry.get('path') or default_log_path(log_type)
        targets.append((str(path), log_type))
    return targets


def main():
    config_path = os.environ.get('CONFIG_PATH', 'config/config.yaml')

    if not os.path.exists(config_path):
        print(f"Error: Config file not found at {config_path}")
        sys.exit(1)

    config = load_config(config_path)

    setup_logging(config)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Starting Linux log analysis")
    logger.info("=" * 60)

    engine = DetectionEngine(config.get('rules') or {})
    logger.info(f"Detection engine initialized: {engine.get_stats()}")

    if not engine.rules:
        logger.warning("No detection rules loaded; nothing will match")

    analysis_config = config.get('analysis') or {}
    analyzer = LogAnalyzer(engine, only_matched=analysis_config.get('only_matched', True))

    targets = analysis_targets(config)
    if not targets:
        logger.warning("No log files configured under 'analysis.files'")
        return 0

    summary = analyzer.analyze_files(targets)

    for record in summary.matched_records():
        logger.info(
            f"[{record.timestamp}] {record.hostname} {record.program}: "
            f"{record.message} -> {', '.join(record.matched_rules)}"
        )

    logger.info(f"Summary: {summary.get_stats()}")
    return 1 if summary.failed_files and not summary.processed_files else 0


if __name__ == '__main__':
    sys.exit(main())
