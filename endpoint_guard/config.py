"""
Configuration for Endpoint Guard.

Configuration is a tree of dataclasses with working defaults. A JSON or
YAML file may override any subset of it; unknown keys are rejected so a
typo never silently disables protection. A few environment variables take
precedence over the file:

    ENDPOINT_GUARD_DATA_DIR        base directory for quarantine, history, logs
    ENDPOINT_GUARD_QUARANTINE_KEY  quarantine encryption key
    ENDPOINT_GUARD_LOG_LEVEL       logging level name

Example (YAML):

    exclusions:
      max_file_size: 104857600
    detection:
      heuristic_sensitivity: strict
    quarantine:
      retention_days: 14
"""

import dataclasses
import json
import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil
import yaml

from .constants import BufferSizes, DEFAULT_QUARANTINE_KEY, ScanDefaults, Timeouts
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == 'win32'

ENV_DATA_DIR = "ENDPOINT_GUARD_DATA_DIR"
ENV_QUARANTINE_KEY = "ENDPOINT_GUARD_QUARANTINE_KEY"
ENV_LOG_LEVEL = "ENDPOINT_GUARD_LOG_LEVEL"


class Sensitivity(Enum):
    """Heuristic sensitivity tier; each maps to a score cutoff."""
    LENIENT = "lenient"
    STANDARD = "standard"
    STRICT = "strict"

    @classmethod
    def parse(cls, value) -> "Sensitivity":
        """Accept tier names and the low/medium/high aliases."""
        if isinstance(value, cls):
            return value
        aliases = {"low": cls.LENIENT, "medium": cls.STANDARD, "high": cls.STRICT}
        text = str(value).strip().lower()
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            raise ConfigError(f"Unknown heuristic sensitivity: {value!r}")


def _home(*parts: str) -> str:
    return str(Path.home().joinpath(*parts))


def default_full_scan_roots() -> List[str]:
    """Mount points of local disks, falling back to the filesystem root."""
    try:
        roots = [p.mountpoint for p in psutil.disk_partitions(all=False)]
    except (OSError, RuntimeError) as e:
        logger.warning(f"Could not enumerate disk partitions: {e}")
        roots = []
    return sorted(set(roots)) or [os.path.abspath(os.sep)]


def _default_excluded_paths() -> List[str]:
    if IS_WINDOWS:
        return ['C:\\Windows\\WinSxS', 'C:\\$Recycle.Bin']
    return ['/proc', '/sys', '/dev', '/run']


@dataclass
class PathsConfig:
    data_dir: str = field(default_factory=lambda: _home('.endpoint-guard'))
    quarantine_dir: str = ""
    database: str = ""
    log_dir: str = ""

    def __post_init__(self):
        self.data_dir = os.path.abspath(os.path.expanduser(self.data_dir))
        if not self.quarantine_dir:
            self.quarantine_dir = os.path.join(self.data_dir, 'quarantine')
        if not self.database:
            self.database = os.path.join(self.data_dir, 'history.sqlite3')
        if not self.log_dir:
            self.log_dir = os.path.join(self.data_dir, 'logs')
        self.quarantine_dir = os.path.abspath(os.path.expanduser(self.quarantine_dir))
        self.log_dir = os.path.abspath(os.path.expanduser(self.log_dir))
        if self.database != ':memory:':
            self.database = os.path.abspath(os.path.expanduser(self.database))


@dataclass
class ScanPathsConfig:
    quick: List[str] = field(default_factory=lambda: [
        _home('Downloads'),
        _home('Desktop'),
        _home('Documents'),
        tempfile.gettempdir(),
    ])
    full: List[str] = field(default_factory=default_full_scan_roots)


@dataclass
class ExclusionConfig:
    paths: List[str] = field(default_factory=_default_excluded_paths)
    extensions: List[str] = field(default_factory=lambda: [
        '.txt', '.md', '.pdf', '.jpg', '.jpeg', '.png', '.gif', '.bmp',
        '.mp3', '.mp4', '.avi', '.mkv', '.mov',
    ])
    max_file_size: int = BufferSizes.MAX_FILE_SIZE

    def __post_init__(self):
        self.extensions = [
            (ext if ext.startswith('.') else '.' + ext).lower() for ext in self.extensions
        ]
        if self.max_file_size <= 0:
            raise ConfigError("exclusions.max_file_size must be positive")


@dataclass
class DetectionConfig:
    enable_signature_scanning: bool = True
    enable_heuristic_analysis: bool = True
    heuristic_sensitivity: Sensitivity = Sensitivity.STANDARD
    pattern_scan_extensions: List[str] = field(default_factory=lambda: [
        '.exe', '.dll', '.bat', '.cmd', '.ps1', '.psm1', '.vbs', '.vbe',
        '.js', '.jse', '.jar', '.scr', '.com', '.hta', '.wsf', '.sh',
    ])
    pattern_scan_limit: int = BufferSizes.PATTERN_SCAN_LIMIT
    progress_every: int = ScanDefaults.PROGRESS_EVERY_FILES

    def __post_init__(self):
        self.heuristic_sensitivity = Sensitivity.parse(self.heuristic_sensitivity)
        self.pattern_scan_extensions = [ext.lower() for ext in self.pattern_scan_extensions]
        if self.progress_every < 1:
            raise ConfigError("detection.progress_every must be at least 1")


@dataclass
class QuarantineConfig:
    # Must be replaced per deployment; key management is out of scope here
    encryption_key: str = DEFAULT_QUARANTINE_KEY
    retention_days: int = ScanDefaults.RETENTION_DAYS
    secure_delete: bool = False
    restore_fallback_dir: str = ""

    def __post_init__(self):
        if not self.encryption_key:
            raise ConfigError("quarantine.encryption_key must not be empty")
        if self.retention_days < 0:
            raise ConfigError("quarantine.retention_days must not be negative")
        if not self.restore_fallback_dir:
            desktop = _home('Desktop')
            self.restore_fallback_dir = desktop if os.path.isdir(desktop) else str(Path.home())


@dataclass
class RealtimeConfig:
    watch_paths: List[str] = field(default_factory=lambda: [
        _home('Downloads'),
        _home('Desktop'),
        _home('Documents'),
        tempfile.gettempdir(),
    ])
    settle_delay: float = Timeouts.WRITE_SETTLE_DELAY
    settle_max_wait: float = Timeouts.WRITE_SETTLE_MAX_WAIT
    auto_quarantine_heuristic: bool = True
    ignored_names: List[str] = field(default_factory=lambda: ['.git', 'node_modules'])


@dataclass
class UpdateConfig:
    update_url: Optional[str] = None
    timeout: float = Timeouts.SIGNATURE_UPDATE
    retries: int = 2


@dataclass
class LoggingConfig:
    level: str = "INFO"
    max_file_size: int = BufferSizes.LOG_FILE_MAX
    max_files: int = BufferSizes.LOG_FILE_BACKUPS
    console: bool = True

    def __post_init__(self):
        self.level = str(self.level).upper()
        if not isinstance(logging.getLevelName(self.level), int):
            raise ConfigError(f"Unknown log level: {self.level!r}")


_SECTIONS = {
    'paths': PathsConfig,
    'scan_paths': ScanPathsConfig,
    'exclusions': ExclusionConfig,
    'detection': DetectionConfig,
    'quarantine': QuarantineConfig,
    'realtime': RealtimeConfig,
    'updates': UpdateConfig,
    'logging': LoggingConfig,
}


@dataclass
class GuardConfig:
    """Complete agent configuration."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    scan_paths: ScanPathsConfig = field(default_factory=ScanPathsConfig)
    exclusions: ExclusionConfig = field(default_factory=ExclusionConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    quarantine: QuarantineConfig = field(default_factory=QuarantineConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    updates: UpdateConfig = field(default_factory=UpdateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuardConfig":
        """Build a configuration from a (possibly partial) nested dict."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigError(f"Section '{name}' must be a mapping")
            known = {f.name for f in dataclasses.fields(section_cls)}
            bad = set(values) - known
            if bad:
                raise ConfigError(f"Unknown keys in '{name}': {sorted(bad)}")
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigError(f"Invalid values in '{name}': {e}")
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        result = dataclasses.asdict(self)
        result['detection']['heuristic_sensitivity'] = self.detection.heuristic_sensitivity.value
        return result

    @property
    def uses_default_key(self) -> bool:
        return self.quarantine.encryption_key == DEFAULT_QUARANTINE_KEY


def _read_config_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith(('.yaml', '.yml')):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse configuration {path}: {e}")
    return data or {}


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> GuardConfig:
    """
    Load configuration from an optional file plus environment overrides.

    Args:
        path: JSON (.json) or YAML (.yaml/.yml) file, or None for defaults
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The validated GuardConfig
    """
    env = os.environ if environ is None else environ
    data = _read_config_file(path) if path else {}

    if env.get(ENV_DATA_DIR):
        # A relocated data dir moves every derived path unless set explicitly
        data.setdefault('paths', {})['data_dir'] = env[ENV_DATA_DIR]
    if env.get(ENV_QUARANTINE_KEY):
        data.setdefault('quarantine', {})['encryption_key'] = env[ENV_QUARANTINE_KEY]
    if env.get(ENV_LOG_LEVEL):
        data.setdefault('logging', {})['level'] = env[ENV_LOG_LEVEL]

    config = GuardConfig.from_dict(data)
    if config.uses_default_key:
        logger.warning(
            "Quarantine encryption key is the shipped placeholder. "
            f"Set {ENV_QUARANTINE_KEY} or quarantine.encryption_key before deployment."
        )
    return config
