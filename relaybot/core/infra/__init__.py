"""
Infrastructure orchestration: component construction, run loop and teardown.
"""

from relaybot.core.infra.application_context import ApplicationContext, GatewayFactory

__all__ = ["ApplicationContext", "GatewayFactory"]
