"""
Background expiry sweeper.

Periodically asks the credential store to drop expired and consumed
records. Runs as an asyncio task owned by the app lifespan; a failed pass
is logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from infrastructure.otp_store.protocol import CredentialStore
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger

log = get_logger(__name__)


class ExpirySweeper:
    def __init__(
        self,
        store: CredentialStore,
        interval_seconds: float = 300.0,
        clock: Clock = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        removed = await self._store.sweep_expired(self._clock())
        if removed:
            log.info("otp_sweep_completed", removed=removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("otp_sweep_failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="otp-expiry-sweeper")
        log.info("otp_sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("otp_sweeper_stopped")
