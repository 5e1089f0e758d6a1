"""
Publish Dispatcher

Fires scheduled posts once their time has come:
- Scans for due posts (pending and past scheduled_for, or queued with an
  expired lease / retry delay)
- Claims each one with a conditional update so concurrent workers never
  publish the same post twice
- Publishes via the Threads Graph API
- Retries transient provider errors with exponential backoff, up to
  dispatch_max_attempts, then marks the post failed

Runs as a background thread inside the API process (DISPATCHER_ENABLED=true)
or standalone via scripts/run_dispatcher.py.
"""

import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import SessionLocal
from ..logging_config import dispatcher_logger, timed
from ..services import posts as post_store
from ..timeutils import utc_now, isoformat_z
from .threads_api import ThreadsClient


@dataclass
class DispatchSummary:
    """Counts for one dispatch cycle"""
    started_at: str
    due: int = 0
    claimed: int = 0
    published: int = 0
    retrying: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    post_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class PublishDispatcher:
    """Periodically publishes due posts"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client_factory: Callable[[], ThreadsClient] = ThreadsClient,
        interval_seconds: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.interval_seconds = interval_seconds or settings.dispatch_interval_seconds
        self.batch_size = batch_size or settings.dispatch_batch_size
        self.lease_seconds = settings.dispatch_lease_seconds
        self.running = False
        self.last_summary: Optional[DispatchSummary] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @timed(dispatcher_logger)
    def run_once(
        self,
        now: Optional[datetime] = None,
        db: Optional[Session] = None,
        client: Optional[ThreadsClient] = None,
    ) -> DispatchSummary:
        """Run a single dispatch cycle and return what happened"""
        now = now or utc_now()
        summary = DispatchSummary(started_at=isoformat_z(now))
        client = client or self.client_factory()

        owns_session = db is None
        db = db or self.session_factory()
        try:
            due_posts = post_store.find_due_posts(db, now, self.batch_size)
            summary.due = len(due_posts)

            for post in due_posts:
                post_id = post.id
                log = dispatcher_logger.bind(post_id=post_id, cycle=summary.started_at)
                # Lease starts at the claim, not at the start of the cycle
                claimed_at = max(now, utc_now())
                if not post_store.claim_post(db, post_id, claimed_at, self.lease_seconds):
                    log.debug("Post already claimed, skipping")
                    summary.skipped += 1
                    continue

                summary.claimed += 1
                summary.post_ids.append(post_id)
                db.refresh(post)

                try:
                    outcome = post_store.deliver(db, post, client, claimed_at, allow_retry=True)
                except Exception as e:
                    # Post stays queued; its lease expiry makes it due again
                    db.rollback()
                    summary.errors += 1
                    log.error("Unexpected error publishing post", error=e)
                    continue

                if outcome == post_store.PUBLISHED:
                    summary.published += 1
                elif outcome == post_store.RETRY:
                    summary.retrying += 1
                elif outcome == post_store.LEASE_LOST:
                    summary.skipped += 1
                else:
                    summary.failed += 1
        finally:
            if owns_session:
                db.close()

        if summary.due:
            dispatcher_logger.info("Dispatch cycle finished", **summary.to_dict())
        self.last_summary = summary
        return summary

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                dispatcher_logger.error("Dispatch cycle failed", error=e)
            self._stop_event.wait(self.interval_seconds)

    def start_background(self) -> bool:
        """Start dispatching in a background thread (non-blocking for FastAPI)"""
        if self.running:
            return False

        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="publish-dispatcher")
        self._thread.start()

        dispatcher_logger.info(
            "Publish dispatcher started",
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
        )
        return True

    def stop(self, timeout: float = 10.0) -> bool:
        """Stop dispatching and wait for the current cycle to finish"""
        if not self.running:
            return False

        self.running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        dispatcher_logger.info("Publish dispatcher stopped")
        return True

    def get_status(self) -> dict:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "batch_size": self.batch_size,
            "last_cycle": self.last_summary.to_dict() if self.last_summary else None,
        }


# Global dispatcher instance (initialized lazily)
_dispatcher: Optional[PublishDispatcher] = None


def get_dispatcher() -> PublishDispatcher:
    """Get or create the global dispatcher instance"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = PublishDispatcher()
    return _dispatcher
