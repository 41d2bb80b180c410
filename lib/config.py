#!/usr/bin/env python3
"""
lib/config.py - Run configuration

Loaded once from YAML at startup and passed explicitly to every component.
RunConfig is frozen: nothing mutates configuration during a run. CLI
overrides are merged in before the value is built.

Example (config_external.yaml):
    source_dir: /data/encoded
    dest_dir: /data/plain
    download_dir: /data/tmp
    username: me@example.com
    password: secret
    login_url: https://decoder.example/login
    decoder_url: https://decoder.example/decoder/ic11php74
    progress_file: output/decode_progress.json
    report_file: output/missing_files_report.json
    max_retries: 3
    delay_between_files: 2
    timeouts:
      results: 120
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import yaml

from lib.constants import (
    DEFAULT_TIMEOUTS, DEFAULT_MAX_RETRIES, DEFAULT_DELAY_BETWEEN_FILES,
)

REQUIRED_KEYS = ('source_dir', 'dest_dir', 'login_url', 'decoder_url')
PATH_KEYS = ('source_dir', 'dest_dir', 'download_dir', 'progress_file', 'report_file')


class ConfigError(ValueError):
    """Configuration file missing, unreadable, or incomplete"""


@dataclass(frozen=True)
class Timeouts:
    """Remote wait bounds, in seconds"""
    page_load: float = DEFAULT_TIMEOUTS['page_load']
    element: float = DEFAULT_TIMEOUTS['element']
    login: float = DEFAULT_TIMEOUTS['login']
    results: float = DEFAULT_TIMEOUTS['results']
    download: float = DEFAULT_TIMEOUTS['download']


@dataclass(frozen=True)
class RunConfig:
    source_dir: Path
    dest_dir: Path
    login_url: str
    decoder_url: str
    download_dir: Path = Path('output/downloads')
    progress_file: Path = Path('output/decode_progress.json')
    report_file: Path = Path('output/missing_files_report.json')
    username: str = ''
    password: str = ''
    max_retries: int = DEFAULT_MAX_RETRIES
    delay_between_files: float = DEFAULT_DELAY_BETWEEN_FILES
    headless: bool = False
    direct_download_fallback: bool = True
    timeouts: Timeouts = field(default_factory=Timeouts)


def config_from_dict(data: Dict) -> RunConfig:
    """Build a RunConfig from a parsed YAML mapping"""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    missing = [k for k in REQUIRED_KEYS if not data.get(k)]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    values = {k: v for k, v in data.items() if v is not None}
    for key in PATH_KEYS:
        if values.get(key):
            values[key] = Path(values[key])

    timeouts = values.pop('timeouts', None) or {}
    timeout_names = {f.name for f in fields(Timeouts)}
    bad = sorted(set(timeouts) - timeout_names)
    if bad:
        raise ConfigError(f"Unknown timeout keys: {', '.join(bad)}")

    try:
        values['timeouts'] = Timeouts(**{k: float(v) for k, v in timeouts.items()})
        if 'max_retries' in values:
            values['max_retries'] = max(1, int(values['max_retries']))
        if 'delay_between_files' in values:
            values['delay_between_files'] = float(values['delay_between_files'])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e

    return RunConfig(**values)


def load_config(config_path: Path, overrides: Optional[Dict] = None) -> RunConfig:
    """Load configuration from YAML file, applying CLI overrides"""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a YAML mapping")

    # CLI paths may stand in for required keys missing from the file
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = str(value) if isinstance(value, Path) else value

    return config_from_dict(data)
