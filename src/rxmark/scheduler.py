"""Notification scheduler — coalesces writes and runs watcher passes.

A write marks its scope pending and, if it was not already pending, posts
one callback to the microtask queue. However many writes land before that
callback runs, the scope gets exactly one notification pass.

Writes made by a watcher *during* a pass for the same scope are governed by
the engine's re-entrancy policy:

- skip:  the write applies, but no further pass is requested for it.
- defer: one follow-up pass is posted after the current pass completes;
         more writes during the current pass collapse into that one.

Neither policy recurses: passes never start from inside another pass for
the same scope, so call-stack depth stays bounded.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Hashable
from typing import Any, Callable

from rxmark.config import Reentrancy

logger = logging.getLogger("rxmark.scheduler")

Watcher = Callable[[], None]
PostFn = Callable[[Callable[[], None]], Any]


class MicrotaskQueue:
    """End-of-turn callback queue.

    With a running asyncio loop, callbacks go through ``loop.call_soon``.
    Without one they are queued until run_pending() drains them. A custom
    post function (e.g. a UI framework's "call on next turn") replaces both.
    """

    __slots__ = ("_post", "_queue", "_draining")

    def __init__(self, post: PostFn | None = None) -> None:
        self._post = post
        self._queue: deque[Callable[[], None]] = deque()
        self._draining = False

    def post(self, callback: Callable[[], None]) -> None:
        if self._post is not None:
            self._post(callback)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queue.append(callback)
        else:
            loop.call_soon(callback)

    def run_pending(self) -> int:
        """Run queued callbacks, including ones posted while draining.

        Returns the number of callbacks run. Re-entrant calls return 0;
        the outer drain picks up anything they would have run.
        """
        if self._draining:
            return 0
        self._draining = True
        ran = 0
        try:
            while self._queue:
                callback = self._queue.popleft()
                callback()
                ran += 1
        finally:
            self._draining = False
        return ran

    def __len__(self) -> int:
        return len(self._queue)


class Scheduler:
    """Per-scope watcher sets, pending markers and re-entrancy policy."""

    def __init__(
        self,
        policy: Reentrancy = Reentrancy.SKIP,
        queue: MicrotaskQueue | None = None,
        *,
        debug: bool = False,
        describe: Callable[[Hashable], Any] | None = None,
    ) -> None:
        self._policy = Reentrancy(policy)
        self._queue = queue if queue is not None else MicrotaskQueue()
        self._debug = debug
        self._describe = describe
        self._watchers: dict[Hashable, dict[Watcher, None]] = {}
        self._pending: set[Hashable] = set()
        self._running: set[Hashable] = set()
        self._deferred: set[Hashable] = set()

    @property
    def policy(self) -> Reentrancy:
        return self._policy

    @property
    def queue(self) -> MicrotaskQueue:
        return self._queue

    # --- Watchers ---

    def add_watcher(self, key: Hashable, watcher: Watcher) -> Callable[[], None]:
        """Register watcher for key. Returns an idempotent unsubscribe."""
        watchers = self._watchers.setdefault(key, {})
        watchers[watcher] = None

        def _unsubscribe() -> None:
            current = self._watchers.get(key)
            if current is not None:
                current.pop(watcher, None)

        return _unsubscribe

    def watcher_count(self, key: Hashable) -> int:
        return len(self._watchers.get(key, ()))

    def drop(self, key: Hashable) -> None:
        """Forget everything about key: watchers, pending and deferred markers."""
        self._watchers.pop(key, None)
        self._pending.discard(key)
        self._deferred.discard(key)

    # --- Scheduling ---

    def request(self, key: Hashable) -> None:
        """A write happened on key. Coalesces into at most one posted pass."""
        if key in self._running:
            if self._policy is Reentrancy.DEFER:
                self._deferred.add(key)
            return
        if key in self._pending:
            return
        self._pending.add(key)
        self._queue.post(lambda: self._run_scheduled(key))

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def pending_count(self) -> int:
        """Number of scopes waiting for a pass. Useful for testing."""
        return len(self._pending)

    def _run_scheduled(self, key: Hashable) -> None:
        # Already drained by a forced flush.
        if key not in self._pending:
            return
        self._pending.discard(key)
        self.notify(key)

    def flush(self, key: Hashable) -> None:
        """Run key's pending pass now. No-op when nothing is pending."""
        if key in self._pending:
            self._pending.discard(key)
            self.notify(key)

    def notify(self, key: Hashable) -> None:
        """Run every watcher for key in registration order.

        Watcher exceptions are logged, never propagated, so one failing
        watcher cannot block its siblings. Unsubscribing during a pass
        affects future passes only.
        """
        watchers = self._watchers.get(key)
        if not watchers:
            return
        if self._debug:
            state = self._describe(key) if self._describe is not None else None
            logger.debug("notify %r: %d watcher(s), state=%r", key, len(watchers), state)

        self._running.add(key)
        try:
            for watcher in list(watchers):
                try:
                    watcher()
                except Exception:
                    logger.exception("Watcher %r failed for scope %r", watcher, key)
        finally:
            self._running.discard(key)

        if key in self._deferred:
            self._deferred.discard(key)
            self.request(key)
