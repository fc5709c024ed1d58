"""Cooperative countdown for timed attempts.

One asyncio task per controller. Every tick it sleeps, decrements the remaining
budget and reports it; when the budget hits zero it switches to EXPIRED and
fires the expiry callback once. The sleep function is injectable so tests can
drive the clock without waiting.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .settings import settings

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Any]
ExpireCallback = Callable[[], Any]


class CountdownState(str, Enum):
	IDLE = "idle"
	RUNNING = "running"
	EXPIRED = "expired"
	CANCELLED = "cancelled"


async def _call(callback: Optional[Callable[..., Any]], *args: Any) -> None:
	if callback is None:
		return
	result = callback(*args)
	if inspect.isawaitable(result):
		await result


class CountdownController:
	def __init__(
		self,
		*,
		tick_seconds: Optional[float] = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.tick_seconds = settings.countdown_tick_seconds if tick_seconds is None else tick_seconds
		self._sleep = sleep
		self.state = CountdownState.IDLE
		self.remaining: Optional[int] = None
		self._task: Optional[asyncio.Task] = None

	@property
	def task(self) -> Optional[asyncio.Task]:
		return self._task

	def start(self, budget_seconds: int, on_tick: Optional[TickCallback], on_expire: ExpireCallback) -> asyncio.Task:
		if self.state is not CountdownState.IDLE:
			raise RuntimeError(f"countdown already {self.state.value}; a controller runs once")
		if budget_seconds <= 0:
			raise ValueError("countdown budget must be positive")
		self.remaining = int(budget_seconds)
		self.state = CountdownState.RUNNING
		self._task = asyncio.get_running_loop().create_task(self._run(on_tick, on_expire))
		return self._task

	async def _run(self, on_tick: Optional[TickCallback], on_expire: ExpireCallback) -> None:
		while self.state is CountdownState.RUNNING:
			await self._sleep(self.tick_seconds)
			if self.state is not CountdownState.RUNNING:
				return
			self.remaining -= 1
			await _call(on_tick, self.remaining)
			if self.remaining <= 0 and self.state is CountdownState.RUNNING:
				self.state = CountdownState.EXPIRED
				logger.debug("countdown expired")
				await _call(on_expire)
				return

	def cancel(self) -> bool:
		"""Stop a running countdown. Returns False (and does nothing) in any other state."""
		if self.state is not CountdownState.RUNNING:
			return False
		self.state = CountdownState.CANCELLED
		task = self._task
		try:
			current = asyncio.current_task()
		except RuntimeError:
			current = None
		if task is not None and not task.done() and task is not current:
			task.cancel()
		return True
