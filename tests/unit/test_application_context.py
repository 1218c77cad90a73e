"""
Unit tests for ApplicationContext wiring, run and shutdown.

The discord gateway is replaced through the gateway factory with the
in-memory FakeGateway, so the whole stack runs without a network.
"""

import asyncio

import pytest

from relaybot.bot.lifecycle import LifecycleSettings
from relaybot.bot.registry import RegistrationTarget
from relaybot.core.exceptions import ConnectFailedError
from relaybot.core.infra.application_context import ApplicationContext
from relaybot.core.resilience.retry_policy import PassthroughPolicy
from relaybot.domain.models import LifecycleState
from relaybot.gateway.events import InteractionReceived
from relaybot.health.server import HealthServer
from tests.conftest import FakeGateway, FakeHandle


async def _until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class GatewayBox:
    """Gateway factory that remembers the gateway it built."""

    def __init__(self, auto_ready=True):
        self.auto_ready = auto_ready
        self.gateway = None

    def __call__(self, interactions, connection_events):
        self.gateway = FakeGateway(connection_events=connection_events, auto_ready=self.auto_ready)
        return self.gateway


@pytest.fixture
def box():
    return GatewayBox()


@pytest.fixture
def context(box):
    settings = LifecycleSettings(
        registration_target=RegistrationTarget.guild(42),
        ready_timeout_seconds=1.0,
        ready_poll_interval_seconds=0.01,
        disconnect_grace_seconds=0.05,
        version="1.0.0",
    )
    return ApplicationContext(
        gateway_factory=box,
        policy=PassthroughPolicy(),
        settings=settings,
        enable_health_server=False,
    )


@pytest.mark.unit
class TestInitialization:
    @pytest.mark.asyncio
    async def test_components_wired(self, context, box):
        await context.initialize()

        assert context.is_initialized
        assert context.gateway is box.gateway
        assert "utility ping" in context.registry
        assert context.health.names == ["bot", "connection", "memory"]
        assert context.health_server is None

    @pytest.mark.asyncio
    async def test_initialize_twice_rejected(self, context):
        await context.initialize()

        with pytest.raises(RuntimeError):
            await context.initialize()

    @pytest.mark.asyncio
    async def test_factory_failure_wrapped(self):
        def broken(interactions, connection_events):
            raise ValueError("no token")

        context = ApplicationContext(gateway_factory=broken, enable_health_server=False)

        with pytest.raises(RuntimeError) as exc_info:
            await context.initialize()

        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_run_requires_initialize(self, context):
        with pytest.raises(RuntimeError):
            await context.run()


@pytest.mark.unit
class TestRun:
    @pytest.mark.asyncio
    async def test_full_session(self, context, box, make_request):
        await context.initialize()
        runner = asyncio.create_task(context.run())

        await _until(lambda: box.gateway.registered)
        payloads, guild_id = box.gateway.registered[0]
        assert guild_id == 42
        assert payloads[0]["name"] == "utility"

        handle = FakeHandle()
        context.interactions.publish(
            InteractionReceived(
                request=make_request("utility echo", options={"text": "hi there"}),
                handle=handle,
            )
        )
        await _until(lambda: handle.sent)
        assert handle.last.content == "🔄 **Echo:** hi there"

        context.request_shutdown("test complete")
        await asyncio.wait_for(runner, timeout=5.0)

        assert context.coordinator.state == LifecycleState.STOPPED
        assert box.gateway.calls[-2:] == ["logout", "disconnect"]
        assert context.statistics.commands_executed == 1
        assert context.interactions.closed

    @pytest.mark.asyncio
    async def test_startup_failure_propagates_after_teardown(self, context, box):
        await context.initialize()
        box.gateway.fail("login", ConnectFailedError("bad token", is_retryable=False))

        with pytest.raises(ConnectFailedError):
            await asyncio.wait_for(context.run(), timeout=5.0)

        assert context.coordinator.state == LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, context, box):
        await context.initialize()

        await context.shutdown()
        await context.shutdown()

        assert box.gateway.calls == []

    @pytest.mark.asyncio
    async def test_health_server_bind_failure_tolerated(self, box, mocker):
        mocker.patch.object(HealthServer, "start", side_effect=OSError("address in use"))
        context = ApplicationContext(
            gateway_factory=box,
            policy=PassthroughPolicy(),
            settings=LifecycleSettings(
                registration_target=RegistrationTarget.global_(),
                ready_timeout_seconds=1.0,
                ready_poll_interval_seconds=0.01,
            ),
            enable_health_server=True,
        )
        await context.initialize()
        assert context.health_server is not None

        runner = asyncio.create_task(context.run())
        await _until(lambda: box.gateway.registered)

        assert context.health_server is None
        context.request_shutdown("test complete")
        await asyncio.wait_for(runner, timeout=5.0)

