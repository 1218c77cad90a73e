"""
Core infrastructure layer for relaybot.

Purpose
-------
Group the infrastructure subsystems the bot layer builds on:

- Configuration (Config, ConfigValidationError)
- Logging (structured logging, LogContext)
- Resilience (RetryPolicy, CircuitBreaker)
- Infrastructure exceptions (RelayInfrastructureException hierarchy)
- Application wiring (ApplicationContext)

Design Decisions
----------------
- This module is intentionally thin: no logic, no I/O, no re-exports.
  Import from the subpackages directly so that importing `relaybot.core`
  never drags in Discord or aiohttp.
"""
