"""
Best-effort, non-blocking audit emission.

`record()` only enqueues; a background task hands events to the sink with a
bounded timeout. A slow or failing sink costs audit rows, never request
latency or a changed authorization decision. Counters in `stats()` let
operators notice a failing sink.
"""
import asyncio
from typing import Dict, Optional

from app.features.audit.events import AuditEvent, AuditSink, AuditSinkUnavailable
from app.utils import get_logger


log = get_logger(__name__)


class AuditEmitter:
    """
    Queue-backed audit emitter.

    Args:
        sink: Destination for events
        max_queue: Events buffered before new ones are dropped
        timeout: Seconds allowed for one sink write
    """

    def __init__(self, sink: AuditSink, max_queue: int = 1000, timeout: float = 2.0):
        self.sink = sink
        self.timeout = timeout
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._worker: Optional[asyncio.Task] = None
        self._counters: Dict[str, int] = {"recorded": 0, "written": 0, "failed": 0, "dropped": 0}

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def record(self, event: AuditEvent) -> None:
        """Hand an event over for writing. Never blocks, never raises."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._counters["dropped"] += 1
            log.warning(
                "Audit queue full, dropping event %s %s reason=%s",
                event.method, event.path, event.reason,
            )
            return
        except Exception:
            self._counters["dropped"] += 1
            log.exception("Could not enqueue audit event")
            return
        self._counters["recorded"] += 1

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await asyncio.wait_for(self.sink.write(event), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._counters["failed"] += 1
            log.error("Audit sink timed out after %.1fs for %s %s", self.timeout, event.method, event.path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._counters["failed"] += 1
            if not isinstance(e, AuditSinkUnavailable):
                e = AuditSinkUnavailable(str(e))
            log.error("Audit sink unavailable: %s", e)
        else:
            self._counters["written"] += 1

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the background writer on the running event loop."""
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())
        log.info("Audit emitter started")

    async def flush(self) -> None:
        """Write out everything queued so far."""
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Drain the queue and stop the background writer."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            log.info("Audit emitter stopped")

    def stats(self) -> Dict[str, int]:
        return {**self._counters, "pending": self._queue.qsize()}
