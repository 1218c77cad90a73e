"""
Configuration subsystem for relaybot.

Architecture
------------
- **config.py**: Static configuration from environment variables and an
  optional YAML overlay
- **errors.py**: Configuration exception hierarchy
"""

from relaybot.core.config.config import Config, Environment
from relaybot.core.config.errors import ConfigError, ConfigValidationError

__all__ = [
    "Config",
    "Environment",
    "ConfigError",
    "ConfigValidationError",
]
