"""
Unit tests for ConcurrencyGate.
"""

import asyncio

import pytest

from relaybot.bot.gate import ConcurrencyGate
from relaybot.core.config.errors import ConfigValidationError
from relaybot.domain.exceptions import AdmissionRejectedError


@pytest.mark.unit
class TestConstruction:
    @pytest.mark.parametrize("capacity", [0, 101, -5])
    def test_capacity_out_of_range(self, capacity):
        with pytest.raises(ConfigValidationError):
            ConcurrencyGate(capacity=capacity)

    @pytest.mark.parametrize("capacity", [1, 100])
    def test_capacity_bounds_accepted(self, capacity):
        assert ConcurrencyGate(capacity=capacity).capacity == capacity


@pytest.mark.unit
class TestAdmission:
    """Permit acquisition and release."""

    @pytest.mark.asyncio
    async def test_acquire_until_full_then_reject(self, gate):
        first = await gate.try_acquire()
        second = await gate.try_acquire()
        third = await gate.try_acquire(timeout=0.01)

        assert first is not None and second is not None
        assert third is None
        assert gate.in_flight == 2
        assert gate.rejected_count == 1

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, gate):
        permit = await gate.try_acquire()
        permit.release()
        permit.release()

        assert gate.in_flight == 0
        assert gate.available == 2

    @pytest.mark.asyncio
    async def test_waiter_admitted_when_permit_frees(self):
        gate = ConcurrencyGate(capacity=1, default_timeout=1.0)
        held = await gate.try_acquire()

        waiter = asyncio.create_task(gate.try_acquire())
        await asyncio.sleep(0.01)
        held.release()
        permit = await waiter

        assert permit is not None
        assert gate.in_flight == 1

    @pytest.mark.asyncio
    async def test_admit_releases_on_exception(self, gate):
        with pytest.raises(RuntimeError):
            async with gate.admit():
                assert gate.in_flight == 1
                raise RuntimeError("handler failed")

        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_admit_raises_when_full(self, gate):
        async with gate.admit(), gate.admit():
            with pytest.raises(AdmissionRejectedError):
                async with gate.admit(timeout=0.01):
                    pass

    @pytest.mark.asyncio
    async def test_detached_permit_outlives_scope(self, gate):
        async with gate.admit() as permit:
            permit.detach()

        assert gate.in_flight == 1
        assert not permit.released

        permit.release()
        permit.release()
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_detached_permit_context_manager(self, gate):
        permit = await gate.try_acquire()
        async with permit:
            permit.detach()

        assert gate.in_flight == 1
        permit.release()
        assert gate.available == gate.capacity

    @pytest.mark.asyncio
    async def test_peak_in_flight_tracked(self, gate):
        async with gate.admit():
            async with gate.admit():
                pass

        assert gate.peak_in_flight == 2
        assert gate.in_flight == 0
