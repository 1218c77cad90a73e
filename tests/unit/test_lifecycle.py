"""
Unit tests for LifecycleCoordinator.

Covers start/stop ordering, ready waiting, command registration, connection
loss escalation and hosting shutdown requests.
"""

import asyncio

import pytest

from relaybot.bot.lifecycle import LifecycleCoordinator, LifecycleSettings
from relaybot.bot.registry import FunctionHandler, RegistrationTarget
from relaybot.core.exceptions import (
    ConnectFailedError,
    LifecycleError,
    ReadyTimeoutError,
    RegistrationFailedError,
)
from relaybot.core.resilience.retry_policy import RetryPolicy
from relaybot.domain.models import LifecycleState
from relaybot.gateway.events import ConnectionState, ConnectionStateChanged, EventChannel, GatewayReady
from tests.conftest import FakeGateway


async def _noop(request, context):
    return None


async def _until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def _settings(**overrides):
    values = dict(
        registration_target=RegistrationTarget.global_(),
        ready_timeout_seconds=1.0,
        ready_poll_interval_seconds=0.01,
        disconnect_grace_seconds=0.05,
        version="9.9.9",
    )
    values.update(overrides)
    return LifecycleSettings(**values)


@pytest.fixture
def shutdown_reasons():
    return []


@pytest.fixture
def coordinator(fake_gateway, tracker, registry, statistics, shutdown_reasons):
    registry.register("utility ping", FunctionHandler(_noop))
    return LifecycleCoordinator(
        fake_gateway,
        tracker,
        registry,
        statistics,
        settings=_settings(),
        shutdown_requester=shutdown_reasons.append,
        memory_probe=lambda: 1024,
    )


def _make_running(coordinator, fake_gateway):
    coordinator.handle_event(GatewayReady(user_name="relaybot", guild_count=1))
    fake_gateway.connection_state = ConnectionState.CONNECTED


@pytest.mark.unit
class TestStart:
    @pytest.mark.asyncio
    async def test_start_logs_in_then_connects(self, coordinator, fake_gateway):
        await coordinator.start()

        assert fake_gateway.calls == ["login", "connect"]
        assert coordinator.state == LifecycleState.STARTING
        assert coordinator.startup_metrics.connect_ms >= 0

    @pytest.mark.asyncio
    async def test_start_when_not_stopped_is_noop(self, coordinator, fake_gateway):
        await coordinator.start()
        await coordinator.start()

        assert fake_gateway.calls == ["login", "connect"]

    @pytest.mark.asyncio
    async def test_login_failure_moves_to_error(self, coordinator, fake_gateway, tracker):
        fake_gateway.fail("login", OSError("dns"))

        with pytest.raises(ConnectFailedError):
            await coordinator.start()

        assert coordinator.state == LifecycleState.ERROR
        assert isinstance(tracker.last_change.cause, OSError)

    @pytest.mark.asyncio
    async def test_startup_failure_does_not_request_shutdown(self, coordinator, fake_gateway, shutdown_reasons):
        """Only RUNNING -> ERROR triggers the hosting shutdown."""
        fake_gateway.fail("connect", OSError("refused"))

        with pytest.raises(ConnectFailedError):
            await coordinator.start()

        assert shutdown_reasons == []

    @pytest.mark.asyncio
    async def test_transient_login_failure_retried(self, fake_gateway, tracker, registry, statistics):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.5, jitter=False, sleep=fake_sleep)
        coordinator = LifecycleCoordinator(
            fake_gateway, tracker, registry, statistics, settings=_settings(), policy=policy
        )
        fake_gateway.fail("login", OSError("flaky"), OSError("flaky"))

        await coordinator.start()

        assert fake_gateway.calls == ["login", "login", "login", "connect"]
        assert sleeps == [0.5, 1.0]
        assert coordinator.state == LifecycleState.STARTING

    @pytest.mark.asyncio
    async def test_permanent_login_failure_not_retried(self, fake_gateway, tracker, registry, statistics):
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.001, jitter=False)
        coordinator = LifecycleCoordinator(
            fake_gateway, tracker, registry, statistics, settings=_settings(), policy=policy
        )
        fake_gateway.fail("login", ConnectFailedError("bad token", is_retryable=False))

        with pytest.raises(ConnectFailedError):
            await coordinator.start()

        assert fake_gateway.calls == ["login"]


@pytest.mark.unit
class TestReady:
    @pytest.mark.asyncio
    async def test_ready_event_moves_to_running(self, coordinator):
        await coordinator.start()
        coordinator.handle_event(GatewayReady(user_name="relaybot", guild_count=2))

        assert coordinator.state == LifecycleState.RUNNING
        await coordinator.wait_until_running()

    @pytest.mark.asyncio
    async def test_ready_while_stopped_is_ignored(self, coordinator):
        coordinator.handle_event(GatewayReady())

        assert coordinator.state == LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_wait_until_running_times_out(self, coordinator):
        await coordinator.start()

        with pytest.raises(ReadyTimeoutError):
            await coordinator.wait_until_running(timeout=0.05, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_wait_until_running_fails_fast_on_error(self, coordinator):
        await coordinator.start()
        coordinator.handle_event(
            ConnectionStateChanged(ConnectionState.DISCONNECTED, RuntimeError("handshake"))
        )

        assert coordinator.state == LifecycleState.ERROR
        with pytest.raises(LifecycleError):
            await coordinator.wait_until_running()


@pytest.mark.unit
class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_requires_running(self, coordinator):
        with pytest.raises(LifecycleError):
            await coordinator.register_commands()

    @pytest.mark.asyncio
    async def test_register_publishes_to_target(self, coordinator, fake_gateway):
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        await coordinator.register_commands()

        payloads, guild_id = fake_gateway.registered[0]
        assert guild_id is None
        assert payloads[0]["name"] == "utility"

    @pytest.mark.asyncio
    async def test_no_target_skips_registration(self, fake_gateway, tracker, registry, statistics):
        coordinator = LifecycleCoordinator(
            fake_gateway,
            tracker,
            registry,
            statistics,
            settings=_settings(registration_target=None),
        )
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        await coordinator.register_commands()

        assert fake_gateway.registered == []


@pytest.mark.unit
class TestConnectionLoss:
    @pytest.mark.asyncio
    async def test_disconnect_without_grace_is_fatal(
        self, fake_gateway, tracker, registry, statistics, shutdown_reasons
    ):
        coordinator = LifecycleCoordinator(
            fake_gateway,
            tracker,
            registry,
            statistics,
            settings=_settings(disconnect_grace_seconds=0),
            shutdown_requester=shutdown_reasons.append,
        )
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        coordinator.handle_event(fake_gateway.simulate_disconnect(RuntimeError("socket closed")))

        assert coordinator.state == LifecycleState.ERROR
        assert coordinator.shutdown_requested
        assert len(shutdown_reasons) == 1

    @pytest.mark.asyncio
    async def test_reconnect_within_grace_keeps_running(self, coordinator, fake_gateway, shutdown_reasons):
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        coordinator.handle_event(fake_gateway.simulate_disconnect())
        fake_gateway.connection_state = ConnectionState.CONNECTED
        coordinator.handle_event(ConnectionStateChanged(ConnectionState.CONNECTED))
        await asyncio.sleep(0.1)

        assert coordinator.state == LifecycleState.RUNNING
        assert shutdown_reasons == []

    @pytest.mark.asyncio
    async def test_disconnect_past_grace_escalates(self, coordinator, fake_gateway, shutdown_reasons):
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        coordinator.handle_event(fake_gateway.simulate_disconnect())
        assert coordinator.state == LifecycleState.RUNNING

        await _until(lambda: coordinator.state == LifecycleState.ERROR)
        assert len(shutdown_reasons) == 1
        assert "error state" in coordinator.shutdown_reason

    @pytest.mark.asyncio
    async def test_shutdown_requested_only_once(self, coordinator, shutdown_reasons):
        coordinator.request_shutdown("first")
        coordinator.request_shutdown("second")

        assert shutdown_reasons == ["first"]
        assert await coordinator.wait_for_shutdown() == "first"


@pytest.mark.unit
class TestStop:
    @pytest.mark.asyncio
    async def test_stop_from_running(self, coordinator, fake_gateway, tracker):
        states = []
        tracker.subscribe(lambda c: states.append(c.new))
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        await coordinator.stop()

        assert states[-2:] == [LifecycleState.STOPPING, LifecycleState.STOPPED]
        assert fake_gateway.calls[-2:] == ["logout", "disconnect"]

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, coordinator, fake_gateway):
        await coordinator.stop()

        assert fake_gateway.calls == []
        assert coordinator.state == LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_from_error_goes_to_stopped(self, coordinator, fake_gateway):
        fake_gateway.fail("login", OSError("dns"))
        with pytest.raises(ConnectFailedError):
            await coordinator.start()

        await coordinator.stop()

        assert coordinator.state == LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_teardown_failure_moves_to_error(self, coordinator, fake_gateway):
        await coordinator.start()
        _make_running(coordinator, fake_gateway)
        fake_gateway.fail("logout", RuntimeError("http 500"))

        with pytest.raises(RuntimeError):
            await coordinator.stop()

        assert coordinator.state == LifecycleState.ERROR


@pytest.mark.unit
class TestRun:
    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, tracker, registry, statistics):
        events = EventChannel("connection-events")
        gateway = FakeGateway(connection_events=events, auto_ready=True)
        registry.register("utility ping", FunctionHandler(_noop))
        coordinator = LifecycleCoordinator(gateway, tracker, registry, statistics, settings=_settings())

        pump = asyncio.create_task(coordinator.pump_events(events))
        runner = asyncio.create_task(coordinator.run())

        await _until(lambda: gateway.registered)
        assert coordinator.state == LifecycleState.RUNNING

        coordinator.request_shutdown("test finished")
        await asyncio.wait_for(runner, timeout=1.0)
        await coordinator.stop()

        events.close()
        await pump
        assert coordinator.state == LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_run_failure_requests_shutdown(self, coordinator, fake_gateway):
        fake_gateway.fail("connect", OSError("refused"))

        with pytest.raises(ConnectFailedError):
            await coordinator.run()

        assert coordinator.shutdown_requested

    @pytest.mark.asyncio
    async def test_registration_failure_moves_to_error(self, tracker, registry, statistics, shutdown_reasons):
        events = EventChannel("connection-events")
        gateway = FakeGateway(connection_events=events, auto_ready=True)
        gateway.fail("register", RuntimeError("http 500"))
        registry.register("utility ping", FunctionHandler(_noop))
        coordinator = LifecycleCoordinator(
            gateway,
            tracker,
            registry,
            statistics,
            settings=_settings(),
            shutdown_requester=shutdown_reasons.append,
        )
        pump = asyncio.create_task(coordinator.pump_events(events))

        with pytest.raises(RegistrationFailedError):
            await asyncio.wait_for(coordinator.run(), timeout=1.0)

        assert coordinator.state == LifecycleState.ERROR
        assert isinstance(tracker.last_change.cause, RegistrationFailedError)
        assert len(shutdown_reasons) == 1

        events.close()
        await pump

    @pytest.mark.asyncio
    async def test_ready_timeout_moves_to_error(self, fake_gateway, tracker, registry, statistics, shutdown_reasons):
        coordinator = LifecycleCoordinator(
            fake_gateway,
            tracker,
            registry,
            statistics,
            settings=_settings(ready_timeout_seconds=0.05),
            shutdown_requester=shutdown_reasons.append,
        )

        with pytest.raises(ReadyTimeoutError):
            await coordinator.run()

        assert coordinator.state == LifecycleState.ERROR
        assert shutdown_reasons == ["startup failed: ReadyTimeoutError"]


@pytest.mark.unit
class TestStatistics:
    @pytest.mark.asyncio
    async def test_statistics_reflect_state(self, coordinator, fake_gateway):
        await coordinator.start()
        _make_running(coordinator, fake_gateway)

        stats = coordinator.get_statistics()

        assert stats.status == LifecycleState.RUNNING
        assert stats.version == "9.9.9"
        assert stats.memory_bytes == 1024
        assert stats.guild_count == 3
