"""
Active run table.

Maps a (concurrency key, pipeline kind) slot to the one run currently
active in it. The table owns the per-slot locks that callers must hold
while reading and replacing a slot's entry.
"""

import threading
from typing import ContextManager, Dict, List, Optional, Tuple

from runslot.utils.lock import KeyedLock
from runslot.scheduler.models import PipelineKind, Run

Slot = Tuple[str, PipelineKind]


class ActiveRunTable:
    """
    In-memory table of active runs.

    Constructed empty when a scheduler starts and cleared when it shuts
    down. Slot locks are independent, so runs of unrelated branches never
    wait on each other; an internal guard only keeps the dictionary itself
    consistent for snapshots.
    """

    def __init__(self):
        self._runs: Dict[Slot, Run] = {}
        self._guard = threading.Lock()
        self._locks = KeyedLock()

    def lock(self, slot: Slot) -> ContextManager[None]:
        """
        Lock one slot for a read-modify-write of its entry.
        """
        return self._locks.hold(slot)

    def get(self, slot: Slot) -> Optional[Run]:
        with self._guard:
            return self._runs.get(slot)

    def put(self, run: Run) -> None:
        with self._guard:
            self._runs[run.slot] = run

    def pop(self, slot: Slot) -> Optional[Run]:
        with self._guard:
            return self._runs.pop(slot, None)

    def find(self, run_id: str) -> Optional[Run]:
        """
        Look up an active run by id.
        """
        with self._guard:
            for run in self._runs.values():
                if run.run_id == run_id:
                    return run
        return None

    def snapshot(self) -> List[Run]:
        """
        Active runs, oldest submission first.
        """
        with self._guard:
            runs = list(self._runs.values())
        return sorted(runs, key=lambda r: r.submitted_at)

    def clear(self) -> List[Run]:
        """
        Drop every entry and return the runs that were active.
        """
        with self._guard:
            runs = list(self._runs.values())
            self._runs.clear()
        return runs

    def __len__(self) -> int:
        with self._guard:
            return len(self._runs)

    def __contains__(self, slot: Slot) -> bool:
        with self._guard:
            return slot in self._runs
