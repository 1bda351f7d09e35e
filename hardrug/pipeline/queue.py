"""Single-consumer task pipeline.

Decouples the per-event fast path from slow verification work:

    submit() ──► FIFO deque ──► one consumer loop ──► processor(task)
                                                        │
    drain_findings() ◄── staging list (lock) ◄──────────┘

Exactly one task is in flight at a time; the consumer idles with a bounded
sleep when the queue is empty. Failures are contained to their task.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from hardrug.core.config import get_settings
from hardrug.core.logging import task_context
from hardrug.core.types import ContractCreationEvent, Finding

if TYPE_CHECKING:
    from hardrug.analyzer.classifier import ContractProfile

logger = logging.getLogger(__name__)


@dataclass
class PendingTask:
    """One contract awaiting verification.

    ``source`` and ``profile`` are set when the fast path already had the
    source text; otherwise the worker fetches and classifies it.
    """
    event: ContractCreationEvent
    contract_address: str
    source: str | None = None
    constructor_args: bytes | None = None
    profile: ContractProfile | None = None
    entry_hint: str | None = None


TaskProcessor = Callable[[PendingTask], Awaitable[list[Finding]]]


class TaskPipeline:
    """FIFO queue + findings staging owned by a single background consumer."""

    def __init__(self, processor: TaskProcessor, poll_interval: float | None = None) -> None:
        self._processor = processor
        self._poll_interval = (
            poll_interval if poll_interval is not None else get_settings().queue_poll_interval
        )
        self._queue: deque[PendingTask] = deque()
        self._findings: list[Finding] = []
        self._lock = threading.Lock()
        self._consumer: asyncio.Task | None = None
        self.processed = 0

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def submit(self, task: PendingTask) -> int:
        """Append ``task`` to the tail of the queue; returns the new length."""
        self._queue.append(task)
        length = len(self._queue)
        logger.info(
            "Queued %s", task.contract_address,
            extra={**task_context(task.event, task.contract_address), "queue_length": length},
        )
        return length

    def start_consumer(self) -> asyncio.Task:
        """Start the consumer loop on the running event loop (idempotent)."""
        if self.is_running:
            return self._consumer
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        logger.info("Task consumer started")
        return self._consumer

    async def shutdown(self) -> None:
        """Cancel the consumer loop. Queued tasks are left in place."""
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    def stage_findings(self, findings: list[Finding]) -> None:
        if not findings:
            return
        with self._lock:
            self._findings.extend(findings)

    def drain_findings(self) -> list[Finding]:
        """Swap out and return everything staged since the last drain."""
        with self._lock:
            drained, self._findings = self._findings, []
        return drained

    async def process_next(self) -> bool:
        """Pop and process the head task. Returns False when the queue is empty."""
        if not self._queue:
            return False
        task = self._queue.popleft()
        ctx = task_context(task.event, task.contract_address)
        try:
            findings = await self._processor(task)
        except Exception:
            logger.exception("Task for %s failed", task.contract_address, extra=ctx)
            findings = []
        finally:
            self.processed += 1
        self.stage_findings(findings)
        return True

    async def _consume(self) -> None:
        while True:
            if await self.process_next():
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(self._poll_interval)
