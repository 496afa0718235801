# live vote state: snapshot + pushed events -> one merged record per vote id
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from .config import MAX_TRACKED_VOTES, RECONCILE_DEBOUNCE
from .models import VoteRecord, VoteStatus, VoteUpdateEvent

logger = logging.getLogger(__name__)

Observer = Callable[[VoteRecord], None]

TRACKABLE = {VoteStatus.PENDING, VoteStatus.UPCOMING, VoteStatus.ACTIVE}


def _precedence(current: VoteStatus, incoming: VoteStatus) -> VoteStatus:
    if incoming is VoteStatus.CLOSED or current is VoteStatus.CLOSED:
        return VoteStatus.CLOSED
    if incoming is VoteStatus.VOTED or current is VoteStatus.VOTED:
        return VoteStatus.VOTED
    if current is VoteStatus.PENDING:
        return VoteStatus.PENDING
    return incoming


# (current, incoming) -> merged; Closed absorbs everything
TRANSITIONS: Dict[tuple, VoteStatus] = {
    (current, incoming): _precedence(current, incoming) for current in VoteStatus for incoming in VoteStatus
}


def merge_status(current: VoteStatus, incoming: Optional[VoteStatus]) -> VoteStatus:
    if incoming is None:
        return current
    return TRANSITIONS[(current, incoming)]


def merge(current: Optional[VoteRecord], event: VoteUpdateEvent) -> Optional[VoteRecord]:
    """
    Apply one event to a record. Non-status fields present on the event
    overwrite; status goes through the precedence table.
    An event without status cannot create a record and yields None.
    """
    if current is None:
        if event.status is None:
            return None
        return VoteRecord(id=event.id, status=event.status, **event.field_updates())
    if event.id != current.id:
        raise ValueError(f"event for {event.id} applied to record {current.id}")
    update = event.field_updates()
    update["status"] = merge_status(current.status, event.status)
    return current.model_copy(update=update)


def derive_status(record: VoteRecord, has_voted: bool = False, is_whitelisted: Optional[bool] = None) -> VoteStatus:
    """Per-viewer status on top of the ledger's time-based one."""
    if record.is_cancelled or record.status is VoteStatus.CLOSED:
        return VoteStatus.CLOSED
    if has_voted:
        return VoteStatus.VOTED
    if is_whitelisted and record.status is VoteStatus.ACTIVE:
        return VoteStatus.PENDING
    return record.status


class _Tracker:
    def __init__(self, vote_id: str):
        self.vote_id = vote_id
        self.queue: "asyncio.Queue[VoteUpdateEvent]" = asyncio.Queue()
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None


class VoteStatusReconciler:
    """
    Owns the vote id -> merged record map.

    Each tracked vote gets its own task that debounces pushed events and
    folds each batch, in arrival order, into the record under a per-vote
    lock. cancel() stops a tracker synchronously: once it returns, no
    further merge or publish happens for that id.
    """

    def __init__(self, ledger=None, debounce: float = RECONCILE_DEBOUNCE, max_tracked: int = MAX_TRACKED_VOTES):
        self.ledger = ledger
        self.debounce = debounce
        self.max_tracked = max_tracked
        self.records: Dict[str, VoteRecord] = {}
        self._trackers: Dict[str, _Tracker] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._observers: Dict[Optional[str], List[Observer]] = {}

    # ----------- observers -----------

    def subscribe(self, callback: Observer, vote_id: Optional[str] = None) -> Callable[[], None]:
        """Register for merged records of one vote, or of all votes. Returns the unsubscribe function."""
        self._observers.setdefault(vote_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._observers.get(vote_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _publish(self, record: VoteRecord) -> None:
        for callback in list(self._observers.get(record.id, [])) + list(self._observers.get(None, [])):
            try:
                callback(record)
            except Exception:
                logger.exception("observer failed for vote %s", record.id)

    def _lock_for(self, vote_id: str) -> asyncio.Lock:
        lock = self._locks.get(vote_id)
        if lock is None:
            lock = self._locks[vote_id] = asyncio.Lock()
        return lock

    def _drop_lock(self, vote_id: str) -> None:
        lock = self._locks.get(vote_id)
        if vote_id not in self._trackers and lock is not None and not lock.locked():
            del self._locks[vote_id]

    # ----------- snapshot -----------

    def _absorb(self, record: VoteRecord) -> VoteRecord:
        current = self.records.get(record.id)
        merged = record if current is None else merge(current, VoteUpdateEvent.from_record(record))
        self.records[record.id] = merged
        self._publish(merged)
        return merged

    def load_snapshot(self, records: Iterable[VoteRecord]) -> List[VoteRecord]:
        """
        Seed records for new ids. Ids already held go through the merge rule
        like any event, so a stale snapshot cannot reopen a Closed vote.
        """
        return [self._absorb(record) for record in records]

    async def fetch_snapshot(self, vote_ids: Iterable[str], viewer: Optional[str] = None) -> List[VoteRecord]:
        """
        Read the given votes from the ledger, apply the viewer's voted flag
        and load the result. Votes that fail to load are logged and left out.
        """
        if self.ledger is None:
            raise RuntimeError("fetch_snapshot needs a ledger client")
        ids = list(dict.fromkeys(vote_ids))
        results = await asyncio.gather(*(self._read_one(vote_id, viewer) for vote_id in ids), return_exceptions=True)
        records: List[VoteRecord] = []
        for vote_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("could not load vote %s: %s", vote_id, result)
                continue
            if result is None:
                continue
            async with self._lock_for(vote_id):
                records.append(self._absorb(result))
            self._drop_lock(vote_id)
        return records

    async def _read_one(self, vote_id: str, viewer: Optional[str]) -> Optional[VoteRecord]:
        record = await self.ledger.get_vote(vote_id)
        if record is None:
            return None
        voted = bool(viewer) and await self.ledger.has_voted(viewer, vote_id)
        return record.model_copy(update={"status": derive_status(record, voted, record.is_whitelisted)})

    # ----------- push tracking -----------

    def is_tracked(self, vote_id: str) -> bool:
        return vote_id in self._trackers

    @property
    def tracked(self) -> List[str]:
        return list(self._trackers)

    def track(self, vote_id: str) -> bool:
        """
        Start push tracking for a vote. Returns False when the vote is not in a
        trackable status or the working set is full; such votes are kept
        current only through refresh().
        """
        if vote_id in self._trackers:
            return True
        record = self.records.get(vote_id)
        if record is not None and record.status not in TRACKABLE:
            logger.debug("vote %s is %s, not tracking", vote_id, record.status.value)
            return False
        if len(self._trackers) >= self.max_tracked:
            logger.warning("tracking cap of %d reached, vote %s is refresh-only", self.max_tracked, vote_id)
            return False
        tracker = _Tracker(vote_id)
        tracker.task = asyncio.get_running_loop().create_task(self._run(tracker))
        self._trackers[vote_id] = tracker
        logger.info("tracking vote %s (%d/%d)", vote_id, len(self._trackers), self.max_tracked)
        return True

    def track_snapshot(self) -> List[str]:
        """Track the trackable snapshot votes, in snapshot order, up to the cap."""
        return [vote_id for vote_id, record in self.records.items() if record.status in TRACKABLE and self.track(vote_id)]

    def push(self, event: VoteUpdateEvent) -> bool:
        tracker = self._trackers.get(event.id)
        if tracker is None or tracker.cancelled:
            return False
        tracker.queue.put_nowait(event)
        return True

    def cancel(self, vote_id: str) -> None:
        tracker = self._trackers.pop(vote_id, None)
        if tracker is None:
            return
        tracker.cancelled = True
        if tracker.task is not None:
            tracker.task.cancel()
        self._drop_lock(vote_id)
        logger.info("stopped tracking vote %s", vote_id)

    async def close(self) -> None:
        trackers = list(self._trackers.values())
        for vote_id in list(self._trackers):
            self.cancel(vote_id)
        tasks = [t.task for t in trackers if t.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, tracker: _Tracker) -> None:
        queue = tracker.queue
        while not tracker.cancelled:
            batch = [await queue.get()]
            # window opens at the first event of a burst
            await asyncio.sleep(self.debounce)
            while not queue.empty():
                batch.append(queue.get_nowait())
            await self._apply(tracker, batch)

    async def _apply(self, tracker: _Tracker, batch: List[VoteUpdateEvent]) -> None:
        async with self._lock_for(tracker.vote_id):
            if tracker.cancelled:
                return
            merged = self.records.get(tracker.vote_id)
            for event in batch:
                merged = merge(merged, event)
            if merged is None:
                logger.debug("dropping %d status-less events for unknown vote %s", len(batch), tracker.vote_id)
                return
            self.records[tracker.vote_id] = merged
            self._publish(merged)
            if merged.status not in TRACKABLE:
                # finished votes give their slot back; the loop exits on the flag
                tracker.cancelled = True
                self._trackers.pop(tracker.vote_id, None)
                logger.info("vote %s is %s, stopped tracking", tracker.vote_id, merged.status.value)
        if tracker.cancelled:
            self._drop_lock(tracker.vote_id)

    # ----------- explicit re-fetch -----------

    async def refresh(self, vote_id: str) -> Optional[VoteRecord]:
        """Re-read one vote from the ledger and merge it like any other event."""
        if self.ledger is None:
            raise RuntimeError("refresh needs a ledger client")
        fresh = await self.ledger.get_vote(vote_id)
        if fresh is None:
            return self.records.get(vote_id)
        async with self._lock_for(vote_id):
            merged = self._absorb(fresh)
        self._drop_lock(vote_id)
        return merged
