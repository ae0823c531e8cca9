import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, suppress

from app.api.modules.registration.models import RegistrationAlert
from app.api.modules.registration.services.blocks.block_store import BlockStore
from app.api.modules.registration.services.core.config import ProtectionConfigProvider
from app.api.modules.registration.services.core.ports import ProtectionUnitOfWork
from app.api.modules.registration.services.detection.detector import (
    AttackPatternDetector,
)
from app.settings import RegistrationConfig

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], AbstractAsyncContextManager[ProtectionUnitOfWork]]


class AttackPatternMonitor:
    """Background driver for the detector.

    Scans every ``detector_interval_seconds`` and earlier once
    ``detector_volume_trigger`` attempts were recorded since the last scan.
    Each pass also refreshes the protection snapshot from the flag store and
    sweeps expired IP blocks.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        settings: RegistrationConfig,
        config_provider: ProtectionConfigProvider,
    ):
        self._uow_factory = uow_factory
        self._settings = settings
        self._config_provider = config_provider
        self._wake = asyncio.Event()
        self._pending = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify_attempt(self) -> None:
        self._pending += 1
        if self._pending >= self._settings.detector_volume_trigger:
            self._wake.set()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="attack-pattern-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            with suppress(TimeoutError):
                await asyncio.wait_for(
                    self._wake.wait(),
                    timeout=self._settings.detector_interval_seconds,
                )
            self._wake.clear()
            self._pending = 0
            await self.run_once()

    async def run_once(self) -> list[RegistrationAlert]:
        try:
            async with self._uow_factory() as uow:
                await self._config_provider.load(uow.flags)
                alerts = await AttackPatternDetector(uow, self._settings).detect()
                await BlockStore(uow).purge_expired()
        except Exception:
            logger.exception("Attack pattern scan failed")
            return []
        return alerts


__all__ = ("AttackPatternMonitor", "UnitOfWorkFactory")
