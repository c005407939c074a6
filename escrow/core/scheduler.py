"""
Auto-Release Scheduler (in-process)
-----------------------------------
Keeps at most one pending firing per contract and calls the bound fire
callback once its deadline passes. The timer set is a derived index: the
source of truth is the persisted `auto_release_deadline`, and the engine's
recovery scan rebuilds this set after a restart.

cancel() is confirmed, not best-effort: it removes the entry, waits for any
in-flight firing of the same contract to finish and drops whatever that
firing re-armed, so once it returns no firing for that contract can still
take effect.
"""
import heapq
import itertools
import threading
from typing import Callable, Dict, List, Optional, Tuple

from escrow.observability.logging import log
from escrow.utils.time import now_ms


class AutoReleaseScheduler:
    def __init__(self, fire: Optional[Callable[[str], object]] = None, *,
                 clock: Callable[[], int] = now_ms, poll_interval_sec: float = 30.0):
        self._fire = fire
        self._clock = clock
        self._poll = max(0.05, float(poll_interval_sec))
        self._cond = threading.Condition()
        # contract_id -> (deadline_ms, seq); heap rows not matching this map are stale
        self._entries: Dict[str, Tuple[int, int]] = {}
        self._heap: List[Tuple[int, int, str]] = []
        self._seq = itertools.count()
        # contract_id -> ident of the thread currently firing it
        self._firing: Dict[str, int] = {}
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    def bind(self, fire: Callable[[str], object]) -> None:
        self._fire = fire

    def arm(self, contract_id: str, deadline_ms: int) -> None:
        """Schedule exactly one firing; re-arming replaces the previous deadline."""
        with self._cond:
            seq = next(self._seq)
            self._entries[contract_id] = (int(deadline_ms), seq)
            heapq.heappush(self._heap, (int(deadline_ms), seq, contract_id))
            self._cond.notify_all()
        log(event="auto_release_armed", contractId=contract_id, deadline=int(deadline_ms))

    def cancel(self, contract_id: str) -> bool:
        """Remove a pending firing. Safe if never armed or already fired."""
        me = threading.get_ident()
        with self._cond:
            removed = self._entries.pop(contract_id, None) is not None
            # A firing running on this very thread is the caller itself; nothing to wait for.
            while self._firing.get(contract_id) not in (None, me):
                self._cond.wait()
            # The firing we waited on may have re-armed the contract
            if self._entries.pop(contract_id, None) is not None:
                removed = True
            self._cond.notify_all()
        if removed:
            log(event="auto_release_cancelled", contractId=contract_id)
        return removed

    def is_armed(self, contract_id: str) -> bool:
        with self._cond:
            return contract_id in self._entries

    def deadline_for(self, contract_id: str) -> Optional[int]:
        with self._cond:
            entry = self._entries.get(contract_id)
            return entry[0] if entry else None

    def pending(self) -> Dict[str, int]:
        with self._cond:
            return {cid: d for cid, (d, _) in self._entries.items()}

    def _pop_due(self, now: int) -> Optional[str]:
        # caller holds self._cond
        while self._heap and self._heap[0][0] <= now:
            deadline, seq, cid = heapq.heappop(self._heap)
            if self._entries.get(cid) != (deadline, seq):
                continue
            del self._entries[cid]
            self._firing[cid] = threading.get_ident()
            return cid
        return None

    def _next_wait(self) -> float:
        # caller holds self._cond
        while self._heap:
            deadline, seq, cid = self._heap[0]
            if self._entries.get(cid) == (deadline, seq):
                return min(self._poll, max(0.0, (deadline - self._clock()) / 1000.0))
            heapq.heappop(self._heap)
        return self._poll

    def run_due(self, now: Optional[int] = None) -> List[str]:
        """Fire every entry whose deadline is <= now, one at a time. Returns fired ids."""
        fired = []
        while True:
            with self._cond:
                cid = self._pop_due(int(now if now is not None else self._clock()))
            if cid is None:
                return fired
            try:
                if self._fire is not None:
                    self._fire(cid)
                fired.append(cid)
            except Exception as e:
                log(event="auto_release_fire_error", level="error", contractId=cid,
                    errorType=type(e).__name__, error=str(e)[:300])
            finally:
                with self._cond:
                    self._firing.pop(cid, None)
                    self._cond.notify_all()

    def _loop(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                wait = self._next_wait()
                if wait > 0:
                    self._cond.wait(timeout=wait)
                if self._stopping:
                    return
            self.run_due()

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._loop, name="auto-release", daemon=True)
            self._thread.start()
        log(event="auto_release_scheduler_started")

    def stop(self, timeout: float = 5.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self._thread = None
        log(event="auto_release_scheduler_stopped")
