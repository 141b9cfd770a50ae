"""
Adaptive polling for queue-like queries (downloads, subscription tasks).

``PollingController`` is a pure policy: given the query state it decides
whether to poll again and after how long, and whether a failed fetch should be
retried. ``Poller`` applies that policy on the event loop and reacts to the app
moving between foreground/background and the screen gaining/losing focus.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, Sequence, TypeVar

from .errors import AppError, AppErrorCode
from .types import DownloadStatusResponse


logger = logging.getLogger("mytube_client")

T = TypeVar("T")

MIN_INTERVAL_MS = 1000
JITTER_RATIO = 0.2
RATE_LIMIT_INTERVAL_MS = 60000
MAX_POLL_RETRIES = 5
RETRY_STEPS_MS = (2000, 5000, 10000, 20000, 60000)

# Payload policy: last payload -> base interval in ms, or None when idle
IntervalPolicy = Callable[[Any], Optional[int]]


class PollAction(str, Enum):
    SCHEDULE = "SCHEDULE"
    # nothing to watch right now; poll again only on refetch or lifecycle change
    IDLE = "IDLE"
    # screen not eligible (background or unfocused)
    PAUSE = "PAUSE"
    # auth failure; polling would only repeat it
    STOP = "STOP"


@dataclass(frozen=True)
class PollDecision:
    action: PollAction
    delay_ms: Optional[int] = None


@dataclass(frozen=True)
class PollState:
    """Ephemeral per-query state, rebuilt on screen mount."""

    foreground: bool = True
    focused: bool = True
    last_error: Optional[AppError] = None
    last_payload: Any = None
    consecutive_failures: int = 0

    @property
    def eligible(self) -> bool:
        return self.foreground and self.focused


def jittered_interval_ms(base_ms: int, rng: Optional[random.Random] = None) -> int:
    """Apply uniform +/-20% jitter with a 1 s floor."""
    factor = 1 - JITTER_RATIO + (rng or random).random() * 2 * JITTER_RATIO
    return max(MIN_INTERVAL_MS, int(round(base_ms * factor)))


def retry_delay_ms(attempt: int, steps: Sequence[int] = RETRY_STEPS_MS) -> int:
    """Escalating retry delay for the ``attempt``-th retry (0-based), capped."""
    index = max(0, min(len(steps) - 1, attempt))
    return steps[index]


def should_stop_polling(error: Optional[AppError]) -> bool:
    return error is not None and error.is_auth_error


def is_transient_polling_error(error: Optional[AppError]) -> bool:
    if error is None:
        return True
    return error.code in (AppErrorCode.NETWORK, AppErrorCode.SERVER)


class PollingController:
    """Decides the next poll for a query from its state."""

    def __init__(
        self,
        max_retries: int = MAX_POLL_RETRIES,
        retry_steps_ms: Sequence[int] = RETRY_STEPS_MS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._max_retries = max_retries
        self._retry_steps_ms = tuple(retry_steps_ms)
        self._rng = rng

    def next_poll(self, state: PollState, interval_policy: IntervalPolicy) -> PollDecision:
        if not state.eligible:
            return PollDecision(PollAction.PAUSE)

        error = state.last_error
        if should_stop_polling(error):
            return PollDecision(PollAction.STOP)
        if error is not None and error.code == AppErrorCode.RATE_LIMIT:
            if error.retry_after_ms is not None:
                return PollDecision(
                    PollAction.SCHEDULE, max(MIN_INTERVAL_MS, error.retry_after_ms)
                )
            return PollDecision(
                PollAction.SCHEDULE, jittered_interval_ms(RATE_LIMIT_INTERVAL_MS, self._rng)
            )

        base_ms = interval_policy(state.last_payload)
        if base_ms is None:
            return PollDecision(PollAction.IDLE)
        return PollDecision(PollAction.SCHEDULE, jittered_interval_ms(base_ms, self._rng))

    def should_retry(self, state: PollState) -> bool:
        """Retry a failed fetch only for transient errors while eligible."""
        if not state.eligible:
            return False
        error = state.last_error
        if should_stop_polling(error):
            return False
        if error is not None and error.code == AppErrorCode.RATE_LIMIT:
            return False
        if not is_transient_polling_error(error):
            return False
        return state.consecutive_failures <= self._max_retries

    def retry_delay_ms(self, state: PollState) -> int:
        return retry_delay_ms(state.consecutive_failures - 1, self._retry_steps_ms)


# =============================================================================
# Payload Policies
# =============================================================================

def download_status_interval(payload: Any) -> Optional[int]:
    """Poll every 2 s while downloads are active or queued; idle otherwise."""
    if payload is None:
        return None
    status = payload if isinstance(payload, DownloadStatusResponse) else DownloadStatusResponse.from_dict(payload)
    return 2000 if status.has_work else None


def queue_aware_interval(
    has_queue_work: Callable[[], bool], busy_ms: int = 5000, idle_ms: int = 30000
) -> IntervalPolicy:
    """Policy for queries that follow another query's queue (download history)."""

    def policy(payload: Any) -> Optional[int]:
        return busy_ms if has_queue_work() else idle_ms

    return policy


def _task_status(task: Any) -> str:
    status = task.get("status") if isinstance(task, Mapping) else None
    if status in ("active", "paused", "completed", "cancelled"):
        return status
    return "unknown"


def subscription_tasks_interval(payload: Any) -> Optional[int]:
    """10 s while any task is live (active or paused), else 60 s."""
    tasks = payload if isinstance(payload, list) else []
    has_live_task = any(_task_status(task) in ("active", "paused") for task in tasks)
    return 10000 if has_live_task else 60000


def fixed_interval(interval_ms: int) -> IntervalPolicy:
    def policy(payload: Any) -> Optional[int]:
        return interval_ms

    return policy


subscriptions_interval = fixed_interval(30000)


# =============================================================================
# Poller
# =============================================================================

class Poller(Generic[T]):
    """
    Runs one polled query on the event loop.

    Becoming eligible again (app resumed while focused, or screen focused
    while in the foreground) triggers an immediate refetch before
    interval-based scheduling resumes.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval_policy: IntervalPolicy,
        controller: Optional[PollingController] = None,
        name: str = "query",
        foreground: bool = True,
        focused: bool = True,
    ) -> None:
        self._fetch = fetch
        self._interval_policy = interval_policy
        self._controller = controller or PollingController()
        self._name = name
        self._state = PollState(foreground=foreground, focused=focused)
        self._wake = asyncio.Event()
        self._task: Optional["asyncio.Task[None]"] = None
        self.fetch_count = 0
        self.last_decision: Optional[PollDecision] = None

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def data(self) -> Optional[T]:
        return self._state.last_payload

    @property
    def error(self) -> Optional[AppError]:
        return self._state.last_error

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def set_foreground(self, foreground: bool) -> None:
        self._set_eligibility(foreground=foreground)

    def set_focused(self, focused: bool) -> None:
        self._set_eligibility(focused=focused)

    def _set_eligibility(self, **changes: bool) -> None:
        was_eligible = self._state.eligible
        self._state = replace(self._state, **changes)
        if self._state.eligible != was_eligible:
            self._state = replace(self._state, consecutive_failures=0)
            logger.debug("Poller %s eligible=%s", self._name, self._state.eligible)
        if self._state.eligible and not was_eligible:
            self._wake.set()

    async def refetch(self) -> None:
        """Fetch once, retrying transient failures per the controller."""
        while True:
            self.fetch_count += 1
            try:
                payload = await self._fetch()
            except AppError as error:
                self._record_failure(error)
            else:
                self._state = replace(
                    self._state, last_payload=payload, last_error=None, consecutive_failures=0
                )
                return

            if not self._controller.should_retry(self._state):
                return
            await asyncio.sleep(self._controller.retry_delay_ms(self._state) / 1000)
            # focus or foreground may have been lost during the backoff
            if not self._controller.should_retry(self._state):
                return

    def _record_failure(self, error: AppError) -> None:
        self._state = replace(
            self._state,
            last_error=error,
            consecutive_failures=self._state.consecutive_failures + 1,
        )
        logger.debug(
            "Poller %s fetch failed (%s, failures=%d)",
            self._name, error.code.value, self._state.consecutive_failures,
        )

    async def _run(self) -> None:
        while True:
            self._wake.clear()
            if self._state.eligible:
                await self.refetch()

            decision = self._controller.next_poll(self._state, self._interval_policy)
            self.last_decision = decision
            if decision.action == PollAction.STOP:
                logger.debug("Poller %s stopped after %s", self._name, self._state.last_error)
                return

            timeout = None
            if decision.action == PollAction.SCHEDULE and decision.delay_ms is not None:
                timeout = decision.delay_ms / 1000
            try:
                await asyncio.wait_for(self._wake.wait(), timeout)
            except asyncio.TimeoutError:
                pass
