"""
Background delivery of queued responses

Recording never waits on the network: answers land in the local queue and a
sync pass drains it with bounded exponential backoff. Each pass ends in one
of three statuses: ``synced`` (queue empty), ``partial`` (items left for the
next attempt) or ``offline`` (no connectivity, nothing attempted).
"""
import asyncio
import enum
import logging
from typing import Callable, Optional

import httpx

from ..config import Settings, get_settings
from .queue import OfflineQueue, QueuedResponse

logger = logging.getLogger(__name__)


class SyncStatus(enum.Enum):
    SYNCED = "synced"
    PENDING = "pending"
    OFFLINE = "offline"
    SYNCING = "syncing"
    PARTIAL = "partial"


# Client errors that will not succeed on retry; the item is dropped
PERMANENT_STATUSES = {400, 404, 422}


def create_client(settings: Optional[Settings] = None, **kwargs) -> httpx.AsyncClient:
    """HTTP client pointed at the API with the configured request timeout"""
    settings = settings or get_settings()
    return httpx.AsyncClient(base_url=settings.api_base_url, timeout=settings.request_timeout_seconds, **kwargs)


class ResponseSyncer:
    def __init__(self, queue: OfflineQueue, client: httpx.AsyncClient, settings: Optional[Settings] = None,
                 is_online: Callable[[], bool] = None, sleep=asyncio.sleep):
        self.queue = queue
        self.client = client
        self.settings = settings or get_settings()
        self.is_online = is_online or (lambda: True)
        self._sleep = sleep
        self._status = SyncStatus.SYNCED if len(queue) == 0 else SyncStatus.PENDING
        self._listeners = []
        self._stopped = False
        # Created on first use inside the loop that runs the syncer
        self._lock = None
        self._wake = None

    def _primitives(self):
        if self._lock is None:
            self._lock = asyncio.Lock()
            self._wake = asyncio.Event()
        return self._lock, self._wake

    @property
    def status(self) -> SyncStatus:
        return self._status

    def subscribe(self, listener: Callable[[SyncStatus], None]):
        self._listeners.append(listener)

    def _set_status(self, status: SyncStatus):
        if status != self._status:
            self._status = status
            for listener in self._listeners:
                listener(status)

    def mark_pending(self):
        if self._status not in (SyncStatus.SYNCING, SyncStatus.OFFLINE):
            self._set_status(SyncStatus.PENDING)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.settings.sync_max_delay_seconds, self.settings.sync_base_delay_seconds * (2 ** attempt))

    async def _deliver(self, item: QueuedResponse) -> bool:
        """Send one item, retrying transient failures; True once the item has left the queue"""
        error = None
        for attempt in range(self.settings.sync_max_attempts):
            try:
                response = await self.client.post("/responses", json=item.to_request())
            except httpx.TransportError as e:
                error = f"{type(e).__name__}: {e}"
            else:
                if response.is_success:
                    self.queue.remove(item)
                    return True
                if response.status_code in PERMANENT_STATUSES:
                    logger.warning("Dropping queued response participant=%s slide=%s: HTTP %s",
                                   item.participant_id, item.slide_id, response.status_code)
                    self.queue.remove(item)
                    return True
                error = f"HTTP {response.status_code}"

            if attempt < self.settings.sync_max_attempts - 1:
                await self._sleep(self.backoff_delay(attempt))

        logger.info("Response participant=%s slide=%s still queued: %s", item.participant_id, item.slide_id, error)
        self.queue.record_failure(item, error)
        return False

    async def _drain(self):
        for item in self.queue.pending():
            await self._deliver(item)

    async def sync_pass(self) -> SyncStatus:
        lock, _ = self._primitives()
        async with lock:
            if len(self.queue) == 0:
                self._set_status(SyncStatus.SYNCED)
                return self._status
            if not self.is_online():
                self._set_status(SyncStatus.OFFLINE)
                return self._status

            self._set_status(SyncStatus.SYNCING)
            try:
                await asyncio.wait_for(self._drain(), timeout=self.settings.sync_pass_timeout_seconds)
            except asyncio.TimeoutError:
                logger.info("Sync pass timed out with %d responses left", len(self.queue))

            self._set_status(SyncStatus.SYNCED if len(self.queue) == 0 else SyncStatus.PARTIAL)
            return self._status

    def notify_online(self):
        """Connectivity came back; run a pass now instead of waiting for the interval"""
        if self._wake is not None:
            self._wake.set()

    def stop(self):
        self._stopped = True
        if self._wake is not None:
            self._wake.set()

    async def run_forever(self):
        _, wake = self._primitives()
        while not self._stopped:
            await self.sync_pass()
            try:
                await asyncio.wait_for(wake.wait(), timeout=self.settings.sync_interval_seconds)
            except asyncio.TimeoutError:
                pass
            wake.clear()


class ResponseRecorder:
    """Fire-and-forget answer recording for the playback UI"""

    def __init__(self, queue: OfflineQueue, syncer: ResponseSyncer):
        self.queue = queue
        self.syncer = syncer
        self._task = None
        self._again = False

    def record(self, participant_id, slide_id, answer) -> SyncStatus:
        self.queue.enqueue(participant_id, slide_id, answer)
        self.syncer.mark_pending()
        self._schedule()
        return SyncStatus.PENDING

    def _schedule(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; run_forever or the next record() picks the item up
            return
        if self._task is not None and not self._task.done():
            self._again = True
            return
        self._task = loop.create_task(self._run())

    async def _run(self):
        while True:
            self._again = False
            await self.syncer.sync_pass()
            if not self._again:
                return

    async def drain(self):
        """Wait for any scheduled sync to finish"""
        if self._task is not None:
            await self._task
