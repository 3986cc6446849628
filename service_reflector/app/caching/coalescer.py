"""
Single-flight coalescing of origin fetches.

When many callers ask for the same uncached key at once, only the first
(the leader) talks to the origin. Everybody else (followers) awaits the
leader's ticket and receives the very same result object.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from shared.logging import get_logger

from service_reflector.app.domain.results import Failure, FailureKind, UpstreamResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class Role(Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


@dataclass
class InFlightTicket:
    """One outstanding origin fetch for a cache key."""

    key: str
    future: "asyncio.Future[UpstreamResult]"
    created_at: float
    deadline: float
    waiters: int = 1

    def expired(self, now: float) -> bool:
        return now >= self.deadline


@dataclass(frozen=True)
class Acquisition:
    role: Role
    ticket: InFlightTicket

    @property
    def is_leader(self) -> bool:
        return self.role is Role.LEADER


class Coalescer:
    """Keeps at most one in-flight ticket per cache key.

    Every ticket carries a deadline. Waiters past it receive an
    ``UPSTREAM_TIMEOUT`` failure and the ticket is abandoned, so the next
    caller for that key becomes a fresh leader instead of queueing behind a
    hung fetch.
    """

    def __init__(
        self,
        wait_timeout: float = 15.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if wait_timeout <= 0:
            raise ValueError("wait_timeout must be positive")
        self.wait_timeout = wait_timeout
        self.logger = get_logger("reflector.coalescer")
        self.metrics = metrics
        self._clock = clock
        self._tickets: Dict[str, InFlightTicket] = {}
        self._lock = threading.Lock()
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._stats = {
            "initiated": 0,
            "coalesced": 0,
            "timeouts": 0,
            "abandoned": 0,
        }

    def acquire(self, key: str) -> Acquisition:
        """Join the in-flight ticket for ``key`` or open a new one as leader."""
        loop = asyncio.get_running_loop()
        now = self._clock()
        with self._lock:
            ticket = self._tickets.get(key)
            if ticket is not None and not ticket.future.done() and not ticket.expired(now):
                ticket.waiters += 1
                self._stats["coalesced"] += 1
                self.logger.debug("Joined in-flight fetch", key=key, waiters=ticket.waiters)
                return Acquisition(Role.FOLLOWER, ticket)

            if ticket is not None:
                # Past its deadline or already resolved without cleanup.
                del self._tickets[key]
                self._stats["abandoned"] += 1
                self.logger.warning("Abandoned stale in-flight ticket", key=key, waiters=ticket.waiters)

            ticket = InFlightTicket(
                key=key,
                future=loop.create_future(),
                created_at=now,
                deadline=now + self.wait_timeout,
            )
            self._tickets[key] = ticket
            self._stats["initiated"] += 1

        self.logger.debug("Leading new fetch", key=key)
        return Acquisition(Role.LEADER, ticket)

    def publish(self, ticket: InFlightTicket, result: UpstreamResult) -> bool:
        """Resolve ``ticket`` with ``result``; only the first call has effect."""
        with self._lock:
            if self._tickets.get(ticket.key) is ticket:
                del self._tickets[ticket.key]

        if ticket.future.done():
            self.logger.debug("Ticket already resolved", key=ticket.key)
            return False

        ticket.future.set_result(result)
        if ticket.waiters > 1:
            self.logger.info("Coalesced origin fetch", key=ticket.key, waiters=ticket.waiters)
        return True

    def abandon(self, ticket: InFlightTicket) -> None:
        """Forget ``ticket`` so a later caller can lead a new fetch."""
        with self._lock:
            if self._tickets.get(ticket.key) is ticket:
                del self._tickets[ticket.key]
                self._stats["abandoned"] += 1

    async def wait(self, ticket: InFlightTicket) -> UpstreamResult:
        """Await the ticket's result, bounded by its deadline.

        The underlying future is shielded: a cancelled waiter (a client that
        hung up) never cancels the fetch other waiters depend on.
        """
        if ticket.future.done():
            return ticket.future.result()

        remaining = ticket.deadline - self._clock()
        try:
            if remaining <= 0:
                raise asyncio.TimeoutError()
            return await asyncio.wait_for(asyncio.shield(ticket.future), timeout=remaining)
        except asyncio.TimeoutError:
            self.abandon(ticket)
            with self._lock:
                self._stats["timeouts"] += 1
            self.logger.warning("Timed out waiting for in-flight fetch", key=ticket.key, wait_timeout=self.wait_timeout)
            return Failure(
                FailureKind.UPSTREAM_TIMEOUT,
                f"No origin response within {self.wait_timeout:g}s",
            )

    async def run(
        self,
        key: str,
        fetch: Callable[[], Awaitable[UpstreamResult]],
    ) -> Tuple[UpstreamResult, Role]:
        """Fetch ``key`` through the single-flight gate.

        The leader's ``fetch`` runs in its own task; leader and followers
        then wait on the same ticket.
        """
        acquisition = self.acquire(key)
        if acquisition.is_leader:
            task = asyncio.create_task(self._lead(acquisition.ticket, fetch))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif self.metrics:
            self.metrics.increment_counter("reflector_coalesced_requests_total", endpoint=key.split("?", 1)[0])

        result = await self.wait(acquisition.ticket)
        return result, acquisition.role

    async def _lead(self, ticket: InFlightTicket, fetch: Callable[[], Awaitable[UpstreamResult]]) -> None:
        result: UpstreamResult = Failure(FailureKind.INTERNAL, "fetch did not complete")
        try:
            result = await fetch()
        except asyncio.CancelledError:
            result = Failure(FailureKind.INTERNAL, "fetch cancelled")
            raise
        except Exception as exc:
            self.logger.error("Leader fetch raised", key=ticket.key, error=str(exc), exc_info=True)
            result = Failure(FailureKind.INTERNAL, str(exc))
        finally:
            self.publish(ticket, result)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._tickets)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "in_flight": len(self._tickets),
                "keys": sorted(self._tickets),
            }

    async def close(self) -> None:
        """Cancel leader fetches still running at shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
