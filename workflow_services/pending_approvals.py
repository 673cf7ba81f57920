"""
workflow_services.pending_approvals -- Pending-approval query service.

Responsibility:
    Asynchronous read path listing the approval chains waiting on one
    principal (a pending step at the chain's current level), with
    optional fixed-interval polling, a ``skip`` switch and manual refetch.
    Feeds inbox views and badge counts.

Architecture position:
    Services layer.  The only asyncio component.  Reads through an
    injected async ``fetcher``; ``store_fetcher`` adapts the synchronous
    ``WorkflowStore`` by running it in a worker thread.

Invariants enforced:
    - Every fetch is tagged with a per-instance, monotonically increasing
      sequence number.  Only the most recently issued fetch may write
      state; an older response that resolves late is discarded.
    - Stopping cancels only the scheduler.  In-flight fetches run to
      completion and are then subject to the sequence check.
    - Independent query instances never share counters or state.

Failure modes:
    - Fetch failures are captured in ``state.error`` and logged; the
      poller keeps running and retries on the next tick.
    - ``start()`` outside a running event loop raises RuntimeError
      (from ``asyncio.create_task``).
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from workflow_config import WorkflowConfigurationSet, build_poll_interval
from workflow_engines.approval_chain import is_awaiting_principal
from workflow_kernel.domain.approval import ApprovalChain
from workflow_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.pending_approvals")

Fetcher = Callable[[str], Awaitable[Sequence[ApprovalChain]]]

BADGE_OVERFLOW = 99


@dataclass(frozen=True)
class PendingApprovalsState:
    loading: bool = False
    error: Exception | None = None
    approvals: tuple[ApprovalChain, ...] = ()

    @property
    def count(self) -> int:
        return len(self.approvals)


@dataclass(frozen=True)
class PendingBadge:
    count: int
    loading: bool
    has_error: bool
    text: str


def get_pending_badge(state: PendingApprovalsState) -> PendingBadge:
    """Badge data: "99+" above 99, the count when positive, "" otherwise."""
    count = state.count
    if count > BADGE_OVERFLOW:
        text = f"{BADGE_OVERFLOW}+"
    elif count > 0:
        text = str(count)
    else:
        text = ""
    return PendingBadge(
        count=count, loading=state.loading, has_error=state.error is not None, text=text,
    )


class PendingApprovalsQuery:
    """Approvals awaiting one principal, kept fresh by optional polling.

    Usage::

        async with PendingApprovalsQuery(fetcher, "mgr-001", poll_interval=30) as query:
            ...
            badge = get_pending_badge(query.state)
    """

    def __init__(
        self,
        fetcher: Fetcher,
        principal_id: str,
        *,
        poll_interval: float = 0,
        skip: bool = False,
    ):
        if poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {poll_interval}")
        self._fetcher = fetcher
        self._principal_id = principal_id
        self._poll_interval = poll_interval
        self._skip = skip
        self._sequence = 0
        self._state = PendingApprovalsState()
        self._poll_task: asyncio.Task | None = None
        self._stopped_pollers: list[asyncio.Task] = []
        self._in_flight: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfigurationSet,
        fetcher: Fetcher,
        principal_id: str,
        *,
        skip: bool = False,
    ) -> PendingApprovalsQuery:
        """Query polling at the configuration set's pending-approvals interval."""
        return cls(fetcher, principal_id, poll_interval=build_poll_interval(config), skip=skip)

    @property
    def state(self) -> PendingApprovalsState:
        return self._state

    @property
    def principal_id(self) -> str:
        return self._principal_id

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def skip(self) -> bool:
        return self._skip

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def latest_sequence(self) -> int:
        return self._sequence

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def refetch(self) -> PendingApprovalsState:
        """Fetch now.  Returns the state after this fetch settles.

        A fetch overtaken by a newer one leaves state untouched.
        """
        self._sequence += 1
        sequence = self._sequence
        self._state = PendingApprovalsState(
            loading=True, error=None, approvals=self._state.approvals,
        )

        with LogContext.bind(actor_id=self._principal_id):
            try:
                chains = await self._fetcher(self._principal_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                if self._is_stale(sequence):
                    return self._state
                logger.warning(
                    "pending_approvals_fetch_failed",
                    extra={"sequence": sequence, "error": str(exc), "error_type": type(exc).__name__},
                )
                self._state = PendingApprovalsState(
                    loading=False, error=exc, approvals=self._state.approvals,
                )
                return self._state

            if self._is_stale(sequence):
                return self._state

            approvals = tuple(c for c in chains if is_awaiting_principal(c, self._principal_id))
            self._state = PendingApprovalsState(loading=False, error=None, approvals=approvals)
            logger.debug(
                "pending_approvals_fetched",
                extra={"sequence": sequence, "count": len(approvals)},
            )
            return self._state

    def _is_stale(self, sequence: int) -> bool:
        if sequence == self._sequence:
            return False
        logger.debug(
            "pending_approvals_stale_response_discarded",
            extra={"sequence": sequence, "latest_sequence": self._sequence},
        )
        return True

    def _spawn_fetch(self) -> asyncio.Task:
        task = asyncio.create_task(self.refetch())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    # -------------------------------------------------------------------------
    # Polling lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Issue the initial fetch and begin polling (if configured).

        No-op while ``skip`` is set or polling is already running.
        """
        if self._skip or self.is_polling:
            return
        self._spawn_fetch()
        if self._poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._spawn_fetch()

    def stop(self) -> None:
        """Stop scheduling polls.  In-flight fetches are left to finish."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._stopped_pollers = [t for t in self._stopped_pollers if not t.done()]
            self._stopped_pollers.append(self._poll_task)
            self._poll_task = None

    def set_skip(self, skip: bool) -> None:
        """Suspend (True) or resume (False) fetching and polling."""
        if skip == self._skip:
            return
        self._skip = skip
        if skip:
            self.stop()
        else:
            self.start()

    async def aclose(self) -> None:
        """Stop polling and wait for outstanding fetches to settle."""
        self.stop()
        pollers, self._stopped_pollers = self._stopped_pollers, []
        for poller in pollers:
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def __aenter__(self) -> PendingApprovalsQuery:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


def store_fetcher(store: Any) -> Fetcher:
    """Adapt a synchronous store exposing ``find_pending_chains_for_principal``."""

    async def _fetch(principal_id: str) -> Sequence[ApprovalChain]:
        return await asyncio.to_thread(store.find_pending_chains_for_principal, principal_id)

    return _fetch
