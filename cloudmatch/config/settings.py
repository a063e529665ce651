"""
Settings for cloudmatch

Values come from three layers, later ones winning:

1. Dataclass defaults below
2. A YAML file (explicit --config path, ~/.cloudmatch/config.yaml,
   config/config.yaml or ./config.yaml; the first one found is used)
3. Environment variables, including those in a local .env file

Sections:
- netease: service base URL, request timeout, User-Agent, debug tracing
- login: QR poll interval and the local session expiry window
- catalog: cloud drive page size
- logging: console/file logging
- security: where the session record and config file live

Settings are plain values. The service objects get them explicitly when
they are built (see cloudmatch.app.build_services).
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, fields
from dotenv import load_dotenv

from ..utils.exceptions import ConfigError
from ..utils.logger import get_logger

# Load environment variables from .env file if present
load_dotenv()

logger = get_logger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass
class NeteaseConfig:
    """
    NetEase Cloud Music service settings

    base_url can point at a self-hosted API proxy. debug writes every
    request and response to the log file (cookie values are masked).
    """
    base_url: str = "https://music.163.com"
    request_timeout: int = 30
    user_agent: str = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) cloudmatch/1.0"
    debug: bool = False


@dataclass
class LoginConfig:
    """QR login polling and session lifetime"""
    poll_interval: float = 3.0
    session_expiry_days: int = 30


@dataclass
class CatalogConfig:
    """Cloud drive paging"""
    page_size: int = 200


@dataclass
class LoggingConfig:
    """
    Console and file logging

    file is relative to the config directory unless absolute; empty means
    console only.
    """
    level: str = "INFO"
    file: str = ""
    max_size: str = "10MB"
    backup_count: int = 3
    console_output: bool = True
    colored_output: bool = True


@dataclass
class SecurityConfig:
    """
    Storage locations

    The session file holds the login cookie and is written owner-only.
    """
    session_storage_path: str = "~/.cloudmatch/session.json"
    config_directory: str = "~/.cloudmatch/"


def _coerce(value: Any, default: Any) -> Any:
    """Convert a YAML/env value to the type of the field's default"""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, str):
        return "" if value is None else str(value)
    return value


class Settings:
    """
    All cloudmatch settings, one attribute per section

    Example:
        settings = Settings()
        settings.catalog.page_size = 50
        if settings.validate():
            settings.save_config()
    """

    def __init__(self, config_path: Optional[str] = None, load_files: bool = True):
        """
        Args:
            config_path: YAML file to read before the default locations
            load_files: When False only defaults and environment variables are used
        """
        self.config_path = config_path
        self.config_dir = Path.home() / ".cloudmatch"

        self.netease = NeteaseConfig()
        self.login = LoginConfig()
        self.catalog = CatalogConfig()
        self.logging = LoggingConfig()
        self.security = SecurityConfig()

        if load_files:
            self._load_config()
        self._load_environment_variables()

    def _sections(self) -> Dict[str, Any]:
        return {
            'netease': self.netease,
            'login': self.login,
            'catalog': self.catalog,
            'logging': self.logging,
            'security': self.security,
        }

    def _load_config(self) -> None:
        """Read the first YAML file found and apply it"""
        candidates = [
            self.config_path,
            self.config_dir / "config.yaml",
            Path("config/config.yaml"),
            Path("config.yaml")
        ]

        for candidate in candidates:
            if not candidate or not Path(candidate).exists():
                continue
            try:
                with open(candidate, 'r', encoding='utf-8') as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {candidate}: {e}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"Ignoring {candidate}: top level is not a mapping")
                continue
            logger.debug(f"Loaded configuration from {candidate}")
            self._apply_config(data)
            return

    def _apply_config(self, config_data: Dict[str, Any]) -> None:
        """
        Copy known keys from a {section: {key: value}} mapping onto the sections

        Unknown sections and keys are ignored. Values are converted to the
        field's type; a value that cannot be converted keeps the default.
        """
        sections = self._sections()

        for section_name, values in config_data.items():
            section = sections.get(section_name)
            if section is None or not isinstance(values, dict):
                logger.debug(f"Ignoring config section {section_name!r}")
                continue

            known = {f.name for f in fields(section)}
            for key, value in values.items():
                if key not in known:
                    logger.debug(f"Ignoring unknown setting {section_name}.{key}")
                    continue
                self._set(section, f"{section_name}.{key}", key, value)

    @staticmethod
    def _set(section: Any, label: str, key: str, value: Any) -> None:
        try:
            setattr(section, key, _coerce(value, getattr(section, key)))
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {label}: {value!r}, keeping {getattr(section, key)!r}")

    def _load_environment_variables(self) -> None:
        """Apply CLOUDMATCH_* / NETEASE_* environment overrides"""
        env_mappings = {
            'NETEASE_BASE_URL': (self.netease, 'base_url'),
            'CLOUDMATCH_DEBUG': (self.netease, 'debug'),
            'CLOUDMATCH_POLL_INTERVAL': (self.login, 'poll_interval'),
            'CLOUDMATCH_PAGE_SIZE': (self.catalog, 'page_size'),
            'CLOUDMATCH_LOG_LEVEL': (self.logging, 'level'),
            'CLOUDMATCH_SESSION_PATH': (self.security, 'session_storage_path'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                self._set(section, env_var, key, value)

    def get_config_directory(self) -> Path:
        """Config directory with ~ expanded"""
        return Path(self.security.config_directory).expanduser()

    def get_session_storage_path(self) -> Path:
        """Session file path with ~ expanded"""
        return Path(self.security.session_storage_path).expanduser()

    def save_config(self, path: Optional[str] = None) -> Path:
        """
        Write all sections to a YAML file

        Args:
            path: Target file, defaults to config.yaml in the config directory

        Returns:
            The path written

        Raises:
            ConfigError: If the file cannot be written
        """
        target = Path(path) if path else self.get_config_directory() / "config.yaml"
        config_data = {name: asdict(section) for name, section in self._sections().items()}

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, 'w', encoding='utf-8') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            raise ConfigError(f"Failed to save config to {target}: {e}", details={'path': str(target)})

        logger.debug(f"Configuration saved to {target}")
        return target

    def validate(self) -> bool:
        """
        Check value ranges, logging every problem found

        Returns:
            True when all values are usable
        """
        errors = []

        if not str(self.netease.base_url).startswith(('http://', 'https://')):
            errors.append(f"Invalid base URL: {self.netease.base_url}")

        if self.netease.request_timeout <= 0:
            errors.append(f"Request timeout must be positive: {self.netease.request_timeout}")

        if self.login.poll_interval <= 0:
            errors.append(f"Poll interval must be positive: {self.login.poll_interval}")

        if self.login.session_expiry_days <= 0:
            errors.append(f"Session expiry must be at least one day: {self.login.session_expiry_days}")

        if self.catalog.page_size < 1:
            errors.append(f"Invalid page size: {self.catalog.page_size}")

        if self.logging.level.upper() not in LOG_LEVELS:
            errors.append(f"Invalid log level: {self.logging.level}")

        for error in errors:
            logger.error(f"Configuration error: {error}")
        return not errors

    def __str__(self) -> str:
        return (
            f"Settings(service={self.netease.base_url}, poll={self.login.poll_interval}s, "
            f"page_size={self.catalog.page_size}, session={self.security.session_storage_path})"
        )


# Created on first use so importing the module has no side effects on disk
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings, creating it on first call"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """
    Replace the process-wide Settings with a freshly loaded one

    Args:
        config_path: YAML file to read first

    Returns:
        The new Settings instance
    """
    global _settings
    _settings = Settings(config_path)
    return _settings
