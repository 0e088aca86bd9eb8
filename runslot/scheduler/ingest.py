"""
Event ingestion.

Trigger events are validated, fanned out to the pipelines they target, and
pushed onto per-worker queues. Every work item of one slot is routed to the
same worker, so events for a key are admitted in arrival order while
unrelated keys are admitted in parallel.
"""

import queue
import zlib
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Union

from runslot.utils.logging import get_logger
from runslot.scheduler.scheduler import RunScheduler
from runslot.scheduler.models import PipelineKind, RunHandle, TriggerEvent

log = get_logger("ingest")

_STOP = object()


@dataclass(frozen=True)
class WorkItem:
    event: TriggerEvent
    pipeline: PipelineKind


class EventQueue:
    """
    Queue stage in front of a RunScheduler.

    put() returns as soon as the event is queued; consumer threads perform
    the admission. start() and stop() bound the lifetime of the consumers.
    """

    def __init__(self,
                 scheduler: RunScheduler,
                 workers: int = 4,
                 on_admitted: Optional[Callable[[RunHandle], None]] = None,
                 ):
        """
        :param scheduler: Scheduler that admits queued work.
        :param workers: Number of consumer threads (at least 1).
        :param on_admitted: Optional callback receiving each admitted handle.
        """
        self.scheduler = scheduler
        self.on_admitted = on_admitted
        self._queues: List[queue.Queue] = [queue.Queue() for _ in range(max(1, workers))]
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self._threads:
            return
        for i, q in enumerate(self._queues):
            thread = threading.Thread(target=self._consume, args=(q,), name=f"ingest-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        log.debug(f"Started {len(self._threads)} ingestion worker(s)")

    def stop(self, timeout: float = 5.0) -> None:
        """
        Let the workers drain their queues, then stop them.
        """
        for q in self._queues:
            q.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        log.debug("Ingestion workers stopped")

    def put(self,
            event: Union[TriggerEvent, Mapping],
            pipelines: Optional[Iterable[Union[PipelineKind, str]]] = None,
            ) -> List[PipelineKind]:
        """
        Queue an event for the given pipelines (all pipelines by default).

        :param event: A TriggerEvent or a mapping accepted by TriggerEvent.from_dict.
        :param pipelines: Pipeline kinds the event targets.
        :return: The pipeline kinds the event was queued for.
        :raises UnknownEventError: If the event type is not recognized.
        :raises UnknownPipelineError: If a pipeline kind is not known.
        """
        if not isinstance(event, TriggerEvent):
            event = TriggerEvent.from_dict(event)

        kinds = [PipelineKind.parse(p) for p in pipelines] if pipelines else list(self.scheduler.pipelines)
        for kind in kinds:
            key = self.scheduler.key_for(event, kind)
            self._route(key, kind).put(WorkItem(event, kind))
        log.debug(f"Queued {event.event_type.value} on {event.branch_ref} for {[k.value for k in kinds]}")
        return kinds

    def pending(self) -> int:
        return sum(q.qsize() for q in self._queues)

    def join(self) -> None:
        """
        Block until every queued item has been admitted.
        """
        for q in self._queues:
            q.join()

    def _route(self, key: str, kind: PipelineKind) -> queue.Queue:
        slot = f"{key}|{kind.value}".encode()
        return self._queues[zlib.crc32(slot) % len(self._queues)]

    def _consume(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is _STOP:
                    return
                handle = self.scheduler.submit(item.event, item.pipeline)
                if self.on_admitted is not None:
                    self.on_admitted(handle)
            except Exception as e:
                log.error(f"Failed to admit {item.pipeline.value} run for {item.event.branch_ref}: {e}")
            finally:
                q.task_done()
