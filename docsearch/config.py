"""
Pipeline Settings - Configuration Management

Manages settings for the processing pipeline and search engine:
- Storage locations (database, rendered page images)
- Worker pool size
- OCR defaults (language, rasterization DPI, tesseract executable)
- Search snippet sizing

Precedence: defaults < JSON settings file < DOCSEARCH_* environment variables
"""

import json
import logging
import os
import platform
from dataclasses import dataclass, asdict, fields
from functools import lru_cache
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "DOCSEARCH_"


def get_data_dir() -> Path:
    """
    Get the application data directory based on platform.

    Returns:
        Path to the DocSearch directory in the user's application data folder
    """
    system = platform.system()

    if system == "Windows":
        base_path = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
    elif system == "Darwin":  # macOS
        base_path = Path.home() / 'Library' / 'Application Support'
    else:  # Linux and others
        base_path = Path.home() / '.local' / 'share'

    return base_path / 'DocSearch'


@dataclass
class PipelineSettings:
    """User-configurable pipeline settings."""

    # Storage
    data_dir: Optional[str] = None  # None for platform default
    database_path: Optional[str] = None  # None for <data_dir>/docsearch.db
    pages_dir: Optional[str] = None  # None to render next to the source file

    # Dispatch
    worker_concurrency: int = 2

    # OCR
    default_language: str = "eng"
    rasterize_dpi: int = 300
    tesseract_cmd: Optional[str] = None  # None to use tesseract from PATH

    # Search
    snippet_radius: int = 100
    snippet_fallback_length: int = 200
    search_default_limit: int = 10

    # Logging
    log_level: str = "INFO"

    def resolved_data_dir(self) -> Path:
        return Path(self.data_dir) if self.data_dir else get_data_dir()

    def resolved_database_path(self) -> Path:
        if self.database_path:
            return Path(self.database_path)
        return self.resolved_data_dir() / 'docsearch.db'

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for JSON"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PipelineSettings':
        """Build from a dict, ignoring keys this version does not know"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the field default"""
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def apply_env_overrides(settings: PipelineSettings,
                        environ: Optional[Dict[str, str]] = None) -> PipelineSettings:
    """
    Override settings from DOCSEARCH_<FIELD> environment variables.

    Args:
        settings: Settings to update in place
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The same settings instance
    """
    environ = os.environ if environ is None else environ
    defaults = PipelineSettings()

    for f in fields(PipelineSettings):
        key = ENV_PREFIX + f.name.upper()
        if key not in environ:
            continue
        try:
            value = _coerce(environ[key], getattr(defaults, f.name))
        except ValueError:
            logger.warning(f"Ignoring invalid value for {key}: {environ[key]!r}")
            continue
        setattr(settings, f.name, value)
        logger.debug(f"Setting {f.name} overridden from environment")

    return settings


class SettingsManager:
    """
    Reads and writes PipelineSettings as a JSON file.

    A missing file is created with defaults; an unreadable one is logged
    and replaced in memory by defaults.
    """

    def __init__(self, settings_file: Optional[Path] = None):
        """
        Args:
            settings_file: JSON file (default <data dir>/config/settings.json)
        """
        if settings_file is None:
            self.settings_file = get_data_dir() / "config" / "settings.json"
        else:
            self.settings_file = Path(settings_file)

        self.settings = PipelineSettings()
        self.load()

        logger.debug(f"Pipeline settings file: {self.settings_file}")

    def load(self) -> bool:
        """Returns True when the file existed and parsed"""
        try:
            if self.settings_file.exists():
                data = json.loads(self.settings_file.read_text(encoding="utf-8"))

                self.settings = PipelineSettings.from_dict(data)
                logger.info(f"Pipeline settings read from {self.settings_file}")
                return True
            else:
                logger.info(f"{self.settings_file} not found, writing defaults")
                self.save()
                return False

        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Unreadable settings file {self.settings_file}, using defaults: {e}", exc_info=True)
            self.settings = PipelineSettings()
            return False

    def save(self) -> bool:
        """Write current settings; returns False if the file could not be written"""
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)

            self.settings_file.write_text(
                json.dumps(self.settings.to_dict(), indent=2), encoding="utf-8"
            )

            logger.info(f"Pipeline settings written to {self.settings_file}")
            return True

        except OSError as e:
            logger.error(f"Could not write {self.settings_file}: {e}", exc_info=True)
            return False

    def get(self) -> PipelineSettings:
        """Current settings"""
        return self.settings


@lru_cache(maxsize=None)
def get_settings() -> PipelineSettings:
    """
    Get process-wide settings.

    Reads the file named by DOCSEARCH_SETTINGS_FILE when set, otherwise uses
    defaults; environment overrides are applied last.
    """
    settings_file = os.environ.get(ENV_PREFIX + "SETTINGS_FILE")
    if settings_file:
        settings = SettingsManager(Path(settings_file)).get()
    else:
        settings = PipelineSettings()
    return apply_env_overrides(settings)


def reset_settings() -> None:
    """Drop the cached settings (tests)"""
    get_settings.cache_clear()
