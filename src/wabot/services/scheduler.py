from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from wabot.services.logger_service import LoggerService
from wabot.transport import ConnectionClosedError

TaskFactory = Callable[[], Awaitable[None]]


class Scheduler:
    """Keyed background tasks owned by the bot lifecycle. Re-arming a key replaces its timer."""

    def __init__(self, logger: LoggerService) -> None:
        self.logger = logger
        self._tasks: dict[str, asyncio.Task] = {}
        self._stopped = False

    def call_later(self, key: str, delay_sec: float, fn: TaskFactory) -> asyncio.Task | None:
        if self._stopped:
            return None
        self.cancel(key)

        async def worker() -> None:
            try:
                await asyncio.sleep(max(0.0, delay_sec))
                await self._run_guarded(key, fn)
            except asyncio.CancelledError:
                return
            finally:
                if self._tasks.get(key) is asyncio.current_task():
                    self._tasks.pop(key, None)

        task = asyncio.create_task(worker(), name=f"scheduled-{key}")
        self._tasks[key] = task
        return task

    def every(self, key: str, interval_sec: float, fn: TaskFactory) -> asyncio.Task | None:
        if self._stopped:
            return None
        self.cancel(key)

        async def worker() -> None:
            try:
                while True:
                    await asyncio.sleep(max(0.1, interval_sec))
                    await self._run_guarded(key, fn)
            except asyncio.CancelledError:
                return

        task = asyncio.create_task(worker(), name=f"every-{key}")
        self._tasks[key] = task
        return task

    def spawn(self, key: str, fn: TaskFactory) -> asyncio.Task | None:
        """Run a long-lived coroutine (autosave, the webhook consumer) under the same lifecycle."""
        if self._stopped:
            return None
        self.cancel(key)

        async def worker() -> None:
            try:
                await self._run_guarded(key, fn)
            except asyncio.CancelledError:
                return

        task = asyncio.create_task(worker(), name=f"spawn-{key}")
        self._tasks[key] = task
        return task

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_prefix(self, prefix: str) -> int:
        keys = [key for key in self._tasks if key.startswith(prefix)]
        return sum(1 for key in keys if self.cancel(key))

    def active_keys(self) -> list[str]:
        return sorted(key for key, task in self._tasks.items() if not task.done())

    async def stop(self) -> None:
        self._stopped = True
        tasks = [task for task in self._tasks.values() if not task.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_guarded(self, key: str, fn: TaskFactory) -> None:
        try:
            await fn()
        except asyncio.CancelledError:
            raise
        except ConnectionClosedError:
            return
        except Exception as exc:  # noqa: BLE001
            self.logger.error("scheduler.task_failed", key=key, error=str(exc)[:300])
