"""
Shared event loop for synchronous callers.

Callers outside asyncio (C extensions, GUI threads, plain scripts) cannot
await the discovery engine. DiscoveryRuntime runs a single asyncio loop on
a background thread and lets them block on coroutines scheduled there.
The loop starts on the first acquire() and is torn down when the last
holder calls release().
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)

THREAD_NAME = "lan-discovery"


class DiscoveryRuntime:
    """Reference-counted asyncio loop running on its own thread."""

    _instance: Optional["DiscoveryRuntime"] = None
    _instance_lock = threading.Lock()

    @classmethod
    def get(cls) -> "DiscoveryRuntime":
        """Return the process-wide runtime, creating it on first use."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refcount = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def acquire(self) -> None:
        """Take a reference, starting the loop thread if this is the first one."""
        with self._lock:
            if self._refcount == 0:
                self._start()
            self._refcount += 1

    def release(self) -> None:
        """Drop a reference; the last one stops the loop and joins the thread."""
        with self._lock:
            if self._refcount == 0:
                logger.warning("DiscoveryRuntime.release() without matching acquire()")
                return
            self._refcount -= 1
            if self._refcount == 0:
                self._shutdown()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        loop = self._loop
        if loop is None:
            coro.close()
            raise RuntimeError("DiscoveryRuntime is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run a coroutine on the loop and block the calling thread for its result."""
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("DiscoveryRuntime.run() called from the loop thread")
        return self.submit(coro).result()

    def _start(self) -> None:
        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def run_loop() -> None:
            asyncio.set_event_loop(loop)
            loop.call_soon(ready.set)
            loop.run_forever()

        self._loop = loop
        self._thread = threading.Thread(target=run_loop, name=THREAD_NAME, daemon=True)
        self._thread.start()
        ready.wait()
        logger.debug("Discovery runtime started")

    def _shutdown(self) -> None:
        loop, thread = self._loop, self._thread
        self._loop = None
        self._thread = None

        # Anything still scheduled (loops of engines nobody stopped) is dropped here
        async def cancel_pending() -> None:
            pending = [
                t for t in asyncio.all_tasks() if t is not asyncio.current_task()
            ]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        asyncio.run_coroutine_threadsafe(cancel_pending(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        logger.debug("Discovery runtime stopped")
