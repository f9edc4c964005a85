"""Worker lifecycle shared by the metering, charger and control workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from .const import PUBLISH_TIMEOUT, STOP_TIMEOUT
from .exceptions import WorkerStopTimeout

T = TypeVar("T")


class StopRequested(Exception):
    """Raised inside a worker when a wait was preempted by stop/shutdown."""


class Worker:
    """An asyncio task with a quit signal, a shared shutdown and a closed signal.

    Subclasses implement ``_setup`` (baseline fetch, may raise), ``_run``
    (steady-state loop) and ``_teardown`` (release the external connection).
    ``stop()`` asks the worker to quit and waits for ``closed`` with a timeout.
    """

    name = "worker"

    def __init__(
        self,
        shutdown: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._shutdown = shutdown if shutdown is not None else asyncio.Event()
        self._quit = asyncio.Event()
        self._closed = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.publish_timeout = PUBLISH_TIMEOUT
        self.log = logger or logging.getLogger(__name__)

    @property
    def closed(self) -> asyncio.Event:
        """Event that is set once the worker loop has exited."""
        return self._closed

    @property
    def stopping(self) -> bool:
        return self._quit.is_set() or self._shutdown.is_set()

    async def start(self) -> None:
        """Run setup, then launch the worker loop as a background task.

        Errors raised by setup propagate and the loop is never started.
        """
        try:
            await self._setup()
        except Exception:
            await self._teardown()
            self._closed.set()
            raise
        self._task = asyncio.create_task(self._main(), name=self.name)

    async def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Ask the worker to quit and wait for it to close.

        Raises:
            WorkerStopTimeout: the worker did not close within ``timeout``.
        """
        self._quit.set()
        if self._task is None:
            self._closed.set()
            return
        try:
            await asyncio.wait_for(self._closed.wait(), timeout)
        except asyncio.TimeoutError:
            raise WorkerStopTimeout(
                f"timeout waiting for {self.name} worker to exit"
            ) from None

    async def _main(self) -> None:
        try:
            await self._run()
        except StopRequested:
            pass
        except Exception:
            self.log.exception("%s worker crashed", self.name)
        finally:
            try:
                await self._teardown()
            finally:
                self._closed.set()
                self.log.debug("%s worker closed", self.name)

    async def _setup(self) -> None:
        pass

    async def _run(self) -> None:
        raise NotImplementedError

    async def _teardown(self) -> None:
        pass

    async def _until_stopped(self, aw: Awaitable[T], timeout: float | None = None) -> T:
        """Await ``aw`` unless stop or shutdown comes first.

        Raises:
            StopRequested: the worker was asked to stop while waiting.
            asyncio.TimeoutError: ``timeout`` elapsed first.
        """
        task = asyncio.ensure_future(aw)
        quit_wait = asyncio.ensure_future(self._quit.wait())
        shutdown_wait = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {task, quit_wait, shutdown_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            quit_wait.cancel()
            shutdown_wait.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        if done:
            raise StopRequested()
        raise asyncio.TimeoutError()

    async def _sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early on stop/shutdown."""
        await self._until_stopped(asyncio.sleep(delay))

    async def _publish(self, queue: asyncio.Queue, item: Any) -> bool:
        """Put ``item`` on ``queue``, giving up after the publish timeout."""
        try:
            await self._until_stopped(queue.put(item), timeout=self.publish_timeout)
        except asyncio.TimeoutError:
            self.log.warning(
                "failed to send %s state after %.0f seconds, dropping it",
                self.name,
                self.publish_timeout,
            )
            return False
        return True
