"""
Static configuration management for relaybot.

Purpose
-------
Provides centralized static configuration loaded from environment variables
and an optional YAML file, with sensible defaults, type validation and
bounds checking. All values are fixed at startup.

Responsibilities
----------------
- Load configuration from environment variables with .env support
- Overlay values from ``config/relaybot.yaml`` (or ``RELAYBOT_CONFIG_FILE``)
- Provide type-safe access to all configuration values
- Validate critical settings on startup and report every problem at once
- Track which values came from the environment, YAML or defaults

Non-Responsibilities
--------------------
- Secrets management (use environment variables)
- Runtime configuration changes
- Constructing components (each component has its own ``from_config()``)

Architecture Notes
------------------
- Singleton pattern via class methods (no instantiation)
- Loaded (never validated) on module import so tests can import freely;
  ``relaybot.main`` calls ``Config.validate()`` before anything starts
- Precedence: environment variable > YAML overlay > built-in default
- YAML sections are for readability only: ``dispatch.max_concurrent_commands``
  and ``MAX_CONCURRENT_COMMANDS`` name the same setting
- Out-of-range or unparsable values fall back to the default with a warning

Configuration Categories
------------------------
1. Discord: token, registration target, gateway intents
2. Dispatch: concurrency limit, command timeout, admission timeout
3. Lifecycle: ready ceiling, disconnect grace period
4. Resilience: retry attempts/backoff, circuit breaker
5. Health: memory threshold, latency threshold, HTTP endpoint
6. Environment: environment type, debug mode, logging

Dependencies
------------
- python-dotenv: Environment variable loading
- PyYAML: Optional file overlay
"""

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from relaybot.core.config.errors import ConfigValidationError

# Load environment variables from .env file
load_dotenv()

# Plain stdlib logger: the structured logging stack is configured from Config
_log = logging.getLogger(__name__)


# ============================================================================
# Enums and Constants
# ============================================================================


class Environment(Enum):
    """Deployment environment types."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """
        Parse environment string safely with fallback.

        Example
        -------
        >>> Environment.from_string("production") == Environment.PRODUCTION
        True
        >>> Environment.from_string("invalid") == Environment.DEVELOPMENT
        True
        """
        try:
            return cls(value.lower())
        except ValueError:
            _log.warning(f"Unknown environment '{value}', defaulting to development")
            return cls.DEVELOPMENT


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ============================================================================
# Configuration Metrics Tracker
# ============================================================================


class _ConfigLoadMetrics:
    """
    Internal metrics tracker for configuration loading.

    Tracks where each value came from (environment, yaml or default) and any
    validation errors encountered while parsing.
    """

    def __init__(self) -> None:
        self.sources: Dict[str, str] = {}
        self.validation_errors: Dict[str, str] = {}
        self.last_reload: Optional[str] = None

    def record_source(self, key: str, source: str) -> None:
        self.sources[key] = source

    def record_validation_error(self, key: str, error: str) -> None:
        self.validation_errors[key] = error

    def get_summary(self) -> Dict[str, Any]:
        """Get configuration loading summary."""
        return {
            "total_configs": len(self.sources),
            "from_environment": sum(1 for s in self.sources.values() if s == "env"),
            "from_yaml": sum(1 for s in self.sources.values() if s == "yaml"),
            "from_defaults": sum(1 for s in self.sources.values() if s == "default"),
            "validation_errors": len(self.validation_errors),
            "last_reload": self.last_reload,
        }


# ============================================================================
# YAML Overlay
# ============================================================================


def _load_yaml_overlay(path: Path) -> Dict[str, Any]:
    """
    Load a YAML config file and flatten it into UPPER_CASE setting names.

    Top-level scalars are taken as-is; one level of sections is flattened
    (``health_checks: {memory_threshold_mb: 512}`` becomes
    ``MEMORY_THRESHOLD_MB``). A missing file yields an empty overlay.
    """
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        _log.warning(f"Failed to load config file {path}: {e}")
        return {}

    if not isinstance(data, dict):
        _log.warning(f"Config file {path} must contain a mapping, ignoring")
        return {}

    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flat[str(sub_key).upper()] = sub_value
        else:
            flat[str(key).upper()] = value
    return flat


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Centralized static configuration for relaybot.

    Usage
    -----
    >>> Config.load()
    >>> Config.MAX_CONCURRENT_COMMANDS
    10
    >>> Config.validate()  # raises ConfigValidationError on bad settings
    >>> summary = Config.get_config_summary()
    """

    # =========================================================================
    # Internal State
    # =========================================================================

    _metrics: Optional[_ConfigLoadMetrics] = None
    _overlay: Dict[str, Any] = {}

    PROJECT_ROOT = Path(__file__).resolve().parents[3]
    CONFIG_FILE: Path = PROJECT_ROOT / "config" / "relaybot.yaml"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"

    # =========================================================================
    # Discord Configuration
    # =========================================================================

    DISCORD_TOKEN: str = ""
    DISCORD_DEV_GUILD_ID: Optional[int] = None
    REGISTER_COMMANDS_GLOBALLY: bool = False
    USE_GUILD_MEMBERS_INTENT: bool = False
    USE_MESSAGE_CONTENT_INTENT: bool = False
    USE_PRESENCE_INTENT: bool = False

    # =========================================================================
    # Dispatch
    # =========================================================================

    MAX_CONCURRENT_COMMANDS: int = 10
    COMMAND_TIMEOUT_SECONDS: int = 30
    ADMISSION_TIMEOUT_SECONDS: float = 1.0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    READY_TIMEOUT_SECONDS: int = 120
    DISCONNECT_GRACE_SECONDS: int = 10

    # =========================================================================
    # Resilience
    # =========================================================================

    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 30_000
    RETRY_EXPONENTIAL_BACKOFF: bool = True

    CIRCUIT_BREAKER_ENABLED: bool = True
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_BREAK_SECONDS: int = 30

    # =========================================================================
    # Health
    # =========================================================================

    HEALTH_CHECKS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT_SECONDS: int = 10
    HEALTH_SERVER_HOST: str = "0.0.0.0"
    HEALTH_SERVER_PORT: int = 8080
    MEMORY_THRESHOLD_MB: int = 512
    LATENCY_DEGRADED_MS: int = 1000

    # =========================================================================
    # Environment / Logging
    # =========================================================================

    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_RETAINED_FILES: int = 30

    # =========================================================================
    # Bot Metadata
    # =========================================================================

    BOT_NAME: str = "relaybot"
    BOT_VERSION: str = "0.0.1"

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @classmethod
    def _init_metrics(cls) -> None:
        if cls._metrics is None:
            cls._metrics = _ConfigLoadMetrics()

    @classmethod
    def _raw(cls, key: str) -> Optional[str]:
        """Return the raw string for ``key`` (env first, then YAML), or None."""
        cls._init_metrics()

        if key in os.environ:
            cls._metrics.record_source(key, "env")
            return os.environ[key]

        value = cls._overlay.get(key)
        if value is not None:
            cls._metrics.record_source(key, "yaml")
            return str(value)

        cls._metrics.record_source(key, "default")
        return None

    @classmethod
    def _reject(cls, key: str, error: str) -> None:
        _log.warning(error)
        cls._metrics.record_validation_error(key, error)

    @classmethod
    def _safe_int(
        cls,
        key: str,
        default: int,
        min_val: Optional[int] = None,
        max_val: Optional[int] = None,
    ) -> int:
        """
        Safely parse an integer setting with bounds validation.

        Parameters
        ----------
        key:
            Setting name.
        default:
            Value used when unset, unparsable or out of bounds.
        min_val:
            Minimum allowed value (inclusive).
        max_val:
            Maximum allowed value (inclusive).

        Example
        -------
        >>> Config._safe_int("MAX_CONCURRENT_COMMANDS", 10, min_val=1, max_val=100)
        10
        """
        raw_value = cls._raw(key)
        if raw_value is None:
            return default

        try:
            value = int(raw_value)
        except ValueError:
            cls._reject(key, f"{key}='{raw_value}' is not a valid integer, using default {default}")
            return default

        if min_val is not None and value < min_val:
            cls._reject(key, f"{key}={value} is below minimum {min_val}, using default {default}")
            return default

        if max_val is not None and value > max_val:
            cls._reject(key, f"{key}={value} exceeds maximum {max_val}, using default {default}")
            return default

        return value

    @classmethod
    def _safe_float(
        cls,
        key: str,
        default: float,
        min_val: Optional[float] = None,
        max_val: Optional[float] = None,
    ) -> float:
        """Safely parse a float setting with bounds validation."""
        raw_value = cls._raw(key)
        if raw_value is None:
            return default

        try:
            value = float(raw_value)
        except ValueError:
            cls._reject(key, f"{key}='{raw_value}' is not a valid number, using default {default}")
            return default

        if (min_val is not None and value < min_val) or (max_val is not None and value > max_val):
            cls._reject(
                key,
                f"{key}={value} is outside [{min_val}, {max_val}], using default {default}",
            )
            return default

        return value

    @classmethod
    def _safe_bool(cls, key: str, default: bool) -> bool:
        """
        Safely parse a boolean setting.

        Recognizes: true/false, yes/no, 1/0, on/off (case-insensitive).
        """
        raw_value = cls._raw(key)
        if raw_value is None:
            return default

        normalized = raw_value.lower().strip()
        if normalized in {"true", "yes", "1", "on"}:
            return True
        if normalized in {"false", "no", "0", "off"}:
            return False

        cls._reject(key, f"{key}='{raw_value}' is not a valid boolean, using default {default}")
        return default

    @classmethod
    def _safe_optional_bool(cls, key: str) -> Optional[bool]:
        if cls._raw(key) is None:
            return None
        return cls._safe_bool(key, False)

    @classmethod
    def _safe_str(cls, key: str, default: str) -> str:
        raw_value = cls._raw(key)
        return raw_value if raw_value is not None else default

    @classmethod
    def _safe_optional_int(cls, key: str) -> Optional[int]:
        """
        Safely parse an optional integer setting.

        Returns None when unset, empty or invalid.
        """
        raw_value = cls._raw(key)
        if raw_value is None or raw_value.strip() == "":
            return None

        try:
            return int(raw_value)
        except ValueError:
            cls._reject(key, f"{key}='{raw_value}' is not a valid integer, ignoring")
            return None

    # =========================================================================
    # Configuration Loading
    # =========================================================================

    @classmethod
    def load(cls) -> None:
        """
        Load all configuration from the environment and YAML overlay.

        Never raises: invalid values fall back to defaults and are recorded
        in the load metrics. Call ``validate()`` to enforce required values.
        """
        cls._metrics = _ConfigLoadMetrics()

        config_file = os.getenv("RELAYBOT_CONFIG_FILE")
        cls.CONFIG_FILE = Path(config_file) if config_file else cls.PROJECT_ROOT / "config" / "relaybot.yaml"
        cls._overlay = _load_yaml_overlay(cls.CONFIG_FILE)

        # Discord
        cls.DISCORD_TOKEN = cls._safe_str("DISCORD_TOKEN", "")
        cls.DISCORD_DEV_GUILD_ID = cls._safe_optional_int("DISCORD_DEV_GUILD_ID")
        cls.REGISTER_COMMANDS_GLOBALLY = cls._safe_bool("REGISTER_COMMANDS_GLOBALLY", False)
        cls.USE_GUILD_MEMBERS_INTENT = cls._safe_bool("USE_GUILD_MEMBERS_INTENT", False)
        cls.USE_MESSAGE_CONTENT_INTENT = cls._safe_bool("USE_MESSAGE_CONTENT_INTENT", False)
        cls.USE_PRESENCE_INTENT = cls._safe_bool("USE_PRESENCE_INTENT", False)

        # Dispatch
        cls.MAX_CONCURRENT_COMMANDS = cls._safe_int(
            "MAX_CONCURRENT_COMMANDS", 10, min_val=1, max_val=100
        )
        cls.COMMAND_TIMEOUT_SECONDS = cls._safe_int(
            "COMMAND_TIMEOUT_SECONDS", 30, min_val=1, max_val=300
        )
        cls.ADMISSION_TIMEOUT_SECONDS = cls._safe_float(
            "ADMISSION_TIMEOUT_SECONDS", 1.0, min_val=0.0, max_val=60.0
        )

        # Lifecycle
        cls.READY_TIMEOUT_SECONDS = cls._safe_int(
            "READY_TIMEOUT_SECONDS", 120, min_val=1, max_val=3600
        )
        cls.DISCONNECT_GRACE_SECONDS = cls._safe_int(
            "DISCONNECT_GRACE_SECONDS", 10, min_val=0, max_val=300
        )

        # Resilience
        cls.RETRY_MAX_ATTEMPTS = cls._safe_int("RETRY_MAX_ATTEMPTS", 3, min_val=1, max_val=10)
        cls.RETRY_DELAY_MS = cls._safe_int("RETRY_DELAY_MS", 1000, min_val=100, max_val=30_000)
        cls.RETRY_MAX_DELAY_MS = cls._safe_int(
            "RETRY_MAX_DELAY_MS", 30_000, min_val=100, max_val=300_000
        )
        cls.RETRY_EXPONENTIAL_BACKOFF = cls._safe_bool("RETRY_EXPONENTIAL_BACKOFF", True)
        cls.CIRCUIT_BREAKER_ENABLED = cls._safe_bool("CIRCUIT_BREAKER_ENABLED", True)
        cls.CIRCUIT_BREAKER_FAILURE_THRESHOLD = cls._safe_int(
            "CIRCUIT_BREAKER_FAILURE_THRESHOLD", 5, min_val=1, max_val=100
        )
        cls.CIRCUIT_BREAKER_BREAK_SECONDS = cls._safe_int(
            "CIRCUIT_BREAKER_BREAK_SECONDS", 30, min_val=10, max_val=600
        )

        # Health
        cls.HEALTH_CHECKS_ENABLED = cls._safe_bool("HEALTH_CHECKS_ENABLED", True)
        cls.HEALTH_CHECK_TIMEOUT_SECONDS = cls._safe_int(
            "HEALTH_CHECK_TIMEOUT_SECONDS", 10, min_val=1, max_val=60
        )
        cls.HEALTH_SERVER_HOST = cls._safe_str("HEALTH_SERVER_HOST", "0.0.0.0")
        cls.HEALTH_SERVER_PORT = cls._safe_int("HEALTH_SERVER_PORT", 8080, min_val=1, max_val=65535)
        cls.MEMORY_THRESHOLD_MB = cls._safe_int(
            "MEMORY_THRESHOLD_MB", 512, min_val=100, max_val=10_000
        )
        cls.LATENCY_DEGRADED_MS = cls._safe_int(
            "LATENCY_DEGRADED_MS", 1000, min_val=1, max_val=60_000
        )

        # Environment / Logging
        cls.ENVIRONMENT = Environment.from_string(cls._safe_str("ENVIRONMENT", "development")).value
        cls.DEBUG = cls._safe_bool("DEBUG", False)
        cls.LOG_LEVEL = cls._safe_str("LOG_LEVEL", "INFO").upper()
        cls.LOG_JSON = cls._safe_optional_bool("LOG_JSON")
        cls.LOG_RETAINED_FILES = cls._safe_int("LOG_RETAINED_FILES", 30, min_val=1, max_val=365)
        logs_dir = cls._safe_str("LOGS_DIR", "")
        cls.LOGS_DIR = Path(logs_dir) if logs_dir else cls.PROJECT_ROOT / "logs"

        # Bot Metadata
        cls.BOT_VERSION = cls._safe_str("BOT_VERSION", "0.0.1")

        cls._metrics.last_reload = datetime.now(timezone.utc).isoformat()

    @classmethod
    def validate(cls) -> None:
        """
        Load and validate critical configuration values.

        Raises
        ------
        ConfigValidationError
            Listing every problem found: missing bot token, or no command
            registration target (neither global nor a dev guild).
        """
        cls.load()

        problems: List[str] = []

        if not cls.DISCORD_TOKEN.strip():
            problems.append("DISCORD_TOKEN is required")

        if not cls.REGISTER_COMMANDS_GLOBALLY and cls.DISCORD_DEV_GUILD_ID is None:
            problems.append(
                "Either REGISTER_COMMANDS_GLOBALLY must be true or DISCORD_DEV_GUILD_ID must be set"
            )

        if cls.LOG_LEVEL not in VALID_LOG_LEVELS:
            _log.warning(f"Invalid LOG_LEVEL '{cls.LOG_LEVEL}', using INFO")
            cls.LOG_LEVEL = "INFO"

        if cls.is_production() and cls.DEBUG:
            _log.warning("DEBUG mode enabled in production!")

        if problems:
            raise ConfigValidationError(
                "Configuration validation failed: " + "; ".join(problems),
                problems=problems,
            )

        summary = cls._metrics.get_summary() if cls._metrics else {}
        _log.info(f"Configuration loaded: {summary}")
        if cls._metrics and cls._metrics.validation_errors:
            _log.warning(f"Configuration warnings: {cls._metrics.validation_errors}")

    # =========================================================================
    # Environment Checks
    # =========================================================================

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT.lower() == Environment.PRODUCTION.value

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT.lower() == Environment.DEVELOPMENT.value

    # =========================================================================
    # Metrics & Summary
    # =========================================================================

    @classmethod
    def get_metrics(cls) -> Optional[_ConfigLoadMetrics]:
        return cls._metrics

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """
        Get non-sensitive configuration summary for debugging.

        Example
        -------
        >>> Config.get_config_summary()["discord_token_set"]
        True
        """
        return {
            "environment": cls.ENVIRONMENT,
            "debug": cls.DEBUG,
            "log_level": cls.LOG_LEVEL,
            "config_file": str(cls.CONFIG_FILE),
            "discord_token_set": bool(cls.DISCORD_TOKEN),
            "register_commands_globally": cls.REGISTER_COMMANDS_GLOBALLY,
            "dev_guild_id": cls.DISCORD_DEV_GUILD_ID,
            "max_concurrent_commands": cls.MAX_CONCURRENT_COMMANDS,
            "command_timeout_seconds": cls.COMMAND_TIMEOUT_SECONDS,
            "retry_max_attempts": cls.RETRY_MAX_ATTEMPTS,
            "circuit_breaker_enabled": cls.CIRCUIT_BREAKER_ENABLED,
            "memory_threshold_mb": cls.MEMORY_THRESHOLD_MB,
            "health_checks_enabled": cls.HEALTH_CHECKS_ENABLED,
            "bot_version": cls.BOT_VERSION,
        }


Config.load()
