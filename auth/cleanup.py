"""
auth/cleanup.py -- Scheduled purge of revoked and expired sessions.

The purge is storage hygiene only: a revoked or expired row already fails
validation, so when (or whether) it runs never changes an auth outcome. That
is why run_once() may overlap live traffic freely, and why an overlapping
second purge is simply skipped instead of queued.

Usage:
    janitor = SessionJanitor(session_store, interval_seconds=3600)
    task = asyncio.create_task(janitor.run_forever())   # app startup
    task.cancel()                                         # app shutdown

    janitor.run_once()                                    # CLI / tests
"""

from __future__ import annotations

import asyncio
import logging
import threading

from auth.protocols import SessionRepository

logger = logging.getLogger("catalogauth.auth.cleanup")


class SessionJanitor:
    def __init__(self, sessions: SessionRepository, interval_seconds: float = 3600) -> None:
        self.sessions = sessions
        self.interval_seconds = interval_seconds
        self._lock = threading.Lock()

    def run_once(self) -> int | None:
        """Purge once. Returns rows removed, or None if a purge was already running."""
        if not self._lock.acquire(blocking=False):
            logger.debug("Session purge already in progress; skipping")
            return None
        try:
            removed = self.sessions.delete_expired_or_revoked()
        finally:
            self._lock.release()
        if removed:
            logger.info("Purged %d revoked/expired session(s)", removed)
        return removed

    async def run_forever(self) -> None:
        """Purge every interval_seconds until cancelled.

        The store call runs in a worker thread so a slow purge never stalls
        the event loop. Any failed purge is logged and retried next interval;
        CancelledError from task.cancel() propagates out of asyncio.sleep and
        ends the loop.
        """
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Session purge failed; retrying in %ss", self.interval_seconds)
