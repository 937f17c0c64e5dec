"""Unit tests for ExpirySweeper."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from schemas.models.otp import OTPRecord, Purpose
from services.otp_sweeper import ExpirySweeper


def _record(identity, issued_at, ttl=600) -> OTPRecord:
    return OTPRecord(
        record_id=identity,
        identity=identity,
        purpose=Purpose.EMAIL_VERIFICATION,
        code_hash="h" * 64,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=ttl),
    )


class TestExpirySweeper:
    def test_rejects_non_positive_interval(self, store):
        with pytest.raises(ValueError):
            ExpirySweeper(store, interval_seconds=0)

    async def test_run_once_removes_only_expired(self, store, clock):
        await store.put(_record("old@example.com", clock.now - timedelta(minutes=11)))
        await store.put(_record("new@example.com", clock.now))
        sweeper = ExpirySweeper(store, clock=clock)
        assert await sweeper.run_once() == 1
        assert await store.get("new@example.com", Purpose.EMAIL_VERIFICATION) is not None

    async def test_does_not_sweep_unexpired_record_mid_verification(self, otp_service, store, notifier, clock):
        await otp_service.request_code("user@example.com", Purpose.EMAIL_VERIFICATION)
        clock.advance(599)
        await ExpirySweeper(store, clock=clock).run_once()
        credential = await otp_service.verify_code(
            "user@example.com", notifier.last_code(), Purpose.EMAIL_VERIFICATION
        )
        assert credential.purpose == Purpose.EMAIL_VERIFICATION

    async def test_start_and_stop(self, mocker):
        store = mocker.MagicMock()
        store.sweep_expired = AsyncMock(return_value=2)
        sweeper = ExpirySweeper(store, interval_seconds=0.01)
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert not sweeper.running
        assert store.sweep_expired.await_count >= 1

    async def test_start_is_idempotent(self, store):
        sweeper = ExpirySweeper(store, interval_seconds=60)
        sweeper.start()
        task = sweeper._task
        sweeper.start()
        assert sweeper._task is task
        await sweeper.stop()

    async def test_failing_sweep_keeps_loop_alive(self, mocker):
        store = mocker.MagicMock()
        calls = []

        def sweep(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("db down")
            return 0

        store.sweep_expired = AsyncMock(side_effect=sweep)
        sweeper = ExpirySweeper(store, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.06)
        assert sweeper.running
        await sweeper.stop()
        assert store.sweep_expired.await_count >= 2

    async def test_stop_without_start(self, store):
        await ExpirySweeper(store).stop()
