# ledger event polling -> VoteUpdateEvents for the reconciler
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import EVENT_POLL_INTERVAL, PACKAGE_ID
from .errors import LedgerError
from .ledger import event_type
from .models import VoteStatus, VoteUpdateEvent

logger = logging.getLogger(__name__)

FEED_EVENTS = ("VoteCreated", "VoteCast", "VoteClosed", "VoteCancelled")
_TERMINAL_EVENTS = {"VoteClosed", "VoteCancelled"}


class LedgerEventFeed:
    """
    Polls the voting program's events and pushes them into a reconciler.

    Close and cancel events become status-only Closed updates. Anything else
    triggers one re-read of the vote; a VoteCast sent by the viewer also
    marks the vote Voted. Events for votes the reconciler is not tracking
    are skipped.
    """

    def __init__(
        self,
        ledger,
        reconciler,
        viewer: Optional[str] = None,
        interval: float = EVENT_POLL_INTERVAL,
        package_id: str = PACKAGE_ID,
        page_size: int = 50,
    ):
        self.ledger = ledger
        self.reconciler = reconciler
        self.viewer = viewer.lower() if viewer else None
        self.interval = interval
        self.package_id = package_id
        self.page_size = page_size
        self.cursors: Dict[str, Optional[Dict[str, Any]]] = {name: None for name in FEED_EVENTS}
        self._primed = False

    def _filter(self, name: str) -> Dict[str, Any]:
        return {"MoveEventType": event_type(name, self.package_id)}

    async def prime(self) -> None:
        """Start every cursor at the newest existing event so history is not replayed."""
        for name in FEED_EVENTS:
            events, _ = await self.ledger.query_events(self._filter(name), limit=1, descending=True)
            if events:
                self.cursors[name] = events[0].get("id")
        self._primed = True

    async def poll_once(self) -> List[VoteUpdateEvent]:
        if not self._primed:
            await self.prime()

        updates: List[VoteUpdateEvent] = []
        reread: Dict[str, bool] = {}  # vote id -> viewer voted
        for name in FEED_EVENTS:
            events, self.cursors[name] = await self.ledger.query_events(
                self._filter(name), cursor=self.cursors[name], limit=self.page_size
            )
            for event in events:
                parsed = event.get("parsedJson") or {}
                vote_id = parsed.get("vote_id")
                if not vote_id or not self.reconciler.is_tracked(vote_id):
                    continue
                if name in _TERMINAL_EVENTS:
                    updates.append(VoteUpdateEvent(id=vote_id, status=VoteStatus.CLOSED))
                    continue
                own = name == "VoteCast" and self.viewer is not None and str(parsed.get("voter", "")).lower() == self.viewer
                reread[vote_id] = reread.get(vote_id, False) or own

        for vote_id, own in reread.items():
            record = await self.ledger.get_vote(vote_id)
            if record is None:
                continue
            update = VoteUpdateEvent.from_record(record)
            if own:
                update = update.model_copy(update={"status": VoteStatus.VOTED})
            updates.append(update)

        for update in updates:
            self.reconciler.push(update)
        if updates:
            logger.debug("feed pushed %d updates", len(updates))
        return updates

    async def run(self) -> None:
        """Loop in background until cancelled; a failed poll is logged and retried next tick."""
        while True:
            try:
                await self.poll_once()
            except (LedgerError, httpx.HTTPError) as exc:
                logger.warning("event poll failed: %s", exc)
            await asyncio.sleep(self.interval)
