# backend/app/services/slots/binding.py
"""
Reactive availability binding.

Ties one consumer's window to the store, the calculator and the
multiplexer, and keeps a live AvailabilityResult:

  bind(window)  → register key, query once
  feed event    → refresh() re-queries
  bind(other)   → re-register only if the key changed
  close()       → unregister; late results are dropped

Store errors never escape: they resolve to the optimistic value.
"""

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .calculator import AvailabilityResult, Ok, compute_availability, resolve
from .config import AvailabilityConfig, get_availability_config
from .multiplexer import ChangeFeedMultiplexer, SubscriptionHandle
from .windows import AvailabilityWindow

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityBinding:
    """Live availability value for one consumer."""

    def __init__(
        self,
        multiplexer: ChangeFeedMultiplexer,
        store,
        config: AvailabilityConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_update: Optional[Callable[[AvailabilityResult], Any]] = None,
        timeout: float | None = None,
    ):
        self.multiplexer = multiplexer
        self.store = store
        self.config = config or get_availability_config()
        self.clock = clock
        self.on_update = on_update
        self.timeout = timeout

        self.window: AvailabilityWindow | None = None
        self.value: AvailabilityResult | None = None
        self._handle: SubscriptionHandle | None = None
        self._generation = 0
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def loading(self) -> bool:
        return self.value is None or self.value.loading

    async def bind(self, window: AvailabilityWindow) -> AvailabilityResult:
        """
        Point the binding at window and compute its value.

        Same key as before → recompute only. New key → swap subscription.
        """
        if not self._alive:
            raise RuntimeError("binding is closed")

        old_key = self._handle.key if self._handle else None
        self.window = window
        self._generation += 1
        self.value = AvailabilityResult(window.total_slots, 0, loading=True)

        if old_key != window.key:
            if self._handle is not None:
                handle, self._handle = self._handle, None
                await self.multiplexer.unregister(handle)
            self._handle = await self.multiplexer.register(window.key, window.spot_id, self._on_change)
            if not self._alive:
                # closed while registering
                await self.multiplexer.unregister(self._handle)
                self._handle = None
                return self.value

        return await self.refresh()

    async def refresh(self) -> AvailabilityResult:
        """Re-query and update the value (unless closed or rebound meanwhile)."""
        if not self._alive or self.window is None:
            return self.value
        generation = self._generation
        window = self.window.at(self.clock())

        result = await compute_availability(self.store, window, self.config, self.timeout)

        if not self._alive or generation != self._generation:
            logger.debug(f"Dropping stale availability result for {window.key}")
            return self.value

        if not isinstance(result, Ok):
            logger.warning(f"Availability for {window.key} unknown, showing all {window.total_slots} slots free")
        self.value = resolve(result, window.total_slots)
        await self._emit(self.value)
        return self.value

    async def close(self) -> None:
        """Stop updates and release the feed subscription."""
        if not self._alive:
            return
        self._alive = False
        handle, self._handle = self._handle, None
        if handle is not None:
            await self.multiplexer.unregister(handle)

    async def __aenter__(self) -> "AvailabilityBinding":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _on_change(self):
        if not self._alive:
            return None
        return self.refresh()

    async def _emit(self, value: AvailabilityResult) -> None:
        if self.on_update is None:
            return
        try:
            result = self.on_update(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Availability update handler failed")
