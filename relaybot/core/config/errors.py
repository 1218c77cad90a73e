"""
Configuration error hierarchy for relaybot.

Purpose
-------
Provide configuration-specific exceptions with clear error classification.

Exception Hierarchy
-------------------
ConfigError (base)
└── ConfigValidationError (missing values, out-of-range component settings)
"""

from typing import List, Optional


class ConfigError(Exception):
    """
    Base exception for all configuration-related errors.

    Example
    -------
    >>> try:
    ...     Config.validate()
    ... except ConfigError as e:
    ...     logger.error(f"Config operation failed: {e}")
    """
    pass


class ConfigValidationError(ConfigError):
    """
    Raised when configuration validation fails.

    This exception is raised when:
    - Required values are missing (bot token)
    - No command registration target is configured
    - A component is constructed with an out-of-range setting

    Every problem found is collected in ``problems`` so operators can fix
    them in one pass.

    Example
    -------
    >>> try:
    ...     Config.validate()
    ... except ConfigValidationError as e:
    ...     for problem in e.problems:
    ...         print(problem)
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None) -> None:
        self.problems: List[str] = list(problems) if problems else [message]
        super().__init__(message)


__all__ = ["ConfigError", "ConfigValidationError"]
