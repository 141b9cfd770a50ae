"""
Tests for adaptive polling.
"""

import asyncio
import random
from typing import Any, List

import pytest

from mytube_client import AppError, AppErrorCode
from mytube_client.polling import (
    MIN_INTERVAL_MS,
    RETRY_STEPS_MS,
    PollAction,
    Poller,
    PollingController,
    PollState,
    download_status_interval,
    fixed_interval,
    jittered_interval_ms,
    queue_aware_interval,
    retry_delay_ms,
    subscription_tasks_interval,
    subscriptions_interval,
)
from mytube_client.types import DownloadStatusResponse


def network_error() -> AppError:
    return AppError(AppErrorCode.NETWORK, "Network error")


def idle_policy(payload: Any) -> None:
    return None


# =============================================================================
# Jitter and Retry Delays
# =============================================================================

class TestJitter:
    """Tests for jittered_interval_ms."""

    @pytest.mark.parametrize("base", [1000, 2000, 5000, 30000, 60000])
    def test_within_bounds(self, base):
        """Every sample stays in [max(1000, 0.8*base), 1.2*base]."""
        rng = random.Random(base)
        lower = max(MIN_INTERVAL_MS, int(base * 0.8))
        upper = int(base * 1.2)

        samples = [jittered_interval_ms(base, rng) for _ in range(500)]

        assert all(lower <= s <= upper for s in samples)
        assert len(set(samples)) > 1

    def test_floor_for_small_base(self):
        rng = random.Random(3)
        assert all(jittered_interval_ms(200, rng) == MIN_INTERVAL_MS for _ in range(50))


class TestRetryDelay:
    """Tests for the escalating retry schedule."""

    def test_schedule(self):
        assert [retry_delay_ms(i) for i in range(5)] == list(RETRY_STEPS_MS)

    def test_capped_at_last_step(self):
        assert retry_delay_ms(12) == 60000

    def test_negative_attempt_uses_first_step(self):
        assert retry_delay_ms(-1) == 2000


# =============================================================================
# Controller Decisions
# =============================================================================

class TestPollingController:
    """Tests for next_poll and should_retry."""

    @pytest.fixture
    def controller(self) -> PollingController:
        return PollingController(rng=random.Random(42))

    def test_background_pauses(self, controller: PollingController):
        decision = controller.next_poll(PollState(foreground=False), fixed_interval(5000))
        assert decision.action == PollAction.PAUSE

    def test_unfocused_pauses(self, controller: PollingController):
        decision = controller.next_poll(PollState(focused=False), fixed_interval(5000))
        assert decision.action == PollAction.PAUSE

    @pytest.mark.parametrize("code", [AppErrorCode.UNAUTHENTICATED, AppErrorCode.FORBIDDEN])
    def test_auth_error_stops(self, controller: PollingController, code):
        state = PollState(last_error=AppError(code, "auth"))
        assert controller.next_poll(state, fixed_interval(5000)).action == PollAction.STOP

    def test_rate_limit_honors_retry_after(self, controller: PollingController):
        error = AppError(AppErrorCode.RATE_LIMIT, "slow down", http_status=429, retry_after_ms=90000)
        decision = controller.next_poll(PollState(last_error=error), fixed_interval(2000))

        assert decision.action == PollAction.SCHEDULE
        assert decision.delay_ms == 90000

    def test_rate_limit_retry_after_floor(self, controller: PollingController):
        error = AppError(AppErrorCode.RATE_LIMIT, "slow down", http_status=429, retry_after_ms=0)
        decision = controller.next_poll(PollState(last_error=error), fixed_interval(2000))

        assert decision.delay_ms == MIN_INTERVAL_MS

    def test_rate_limit_without_retry_after(self, controller: PollingController):
        error = AppError(AppErrorCode.RATE_LIMIT, "slow down", http_status=429)
        decision = controller.next_poll(PollState(last_error=error), fixed_interval(2000))

        assert decision.action == PollAction.SCHEDULE
        assert 48000 <= decision.delay_ms <= 72000

    def test_idle_payload(self, controller: PollingController):
        state = PollState(last_payload=DownloadStatusResponse())
        assert controller.next_poll(state, download_status_interval).action == PollAction.IDLE

    def test_active_payload(self, controller: PollingController):
        state = PollState(last_payload={"activeDownloads": [{"id": "d1"}], "queuedDownloads": []})
        decision = controller.next_poll(state, download_status_interval)

        assert decision.action == PollAction.SCHEDULE
        assert 1600 <= decision.delay_ms <= 2400

    def test_transient_error_keeps_payload_policy(self, controller: PollingController):
        state = PollState(last_error=network_error(), last_payload=[{"status": "active"}])
        decision = controller.next_poll(state, subscription_tasks_interval)

        assert decision.action == PollAction.SCHEDULE
        assert 8000 <= decision.delay_ms <= 12000

    def test_retries_transient_errors_up_to_limit(self, controller: PollingController):
        for failures in range(1, 6):
            state = PollState(last_error=network_error(), consecutive_failures=failures)
            assert controller.should_retry(state) is True

        state = PollState(last_error=network_error(), consecutive_failures=6)
        assert controller.should_retry(state) is False

    @pytest.mark.parametrize(
        "code",
        [
            AppErrorCode.UNAUTHENTICATED,
            AppErrorCode.FORBIDDEN,
            AppErrorCode.RATE_LIMIT,
            AppErrorCode.VALIDATION,
            AppErrorCode.NOT_FOUND,
        ],
    )
    def test_no_retry_for_non_transient(self, controller: PollingController, code):
        state = PollState(last_error=AppError(code, "no"), consecutive_failures=1)
        assert controller.should_retry(state) is False

    def test_no_retry_in_background(self, controller: PollingController):
        state = PollState(foreground=False, last_error=network_error(), consecutive_failures=1)
        assert controller.should_retry(state) is False

    def test_retry_delay_follows_failures(self, controller: PollingController):
        delays = [
            controller.retry_delay_ms(PollState(consecutive_failures=n)) for n in range(1, 8)
        ]
        assert delays == [2000, 5000, 10000, 20000, 60000, 60000, 60000]


# =============================================================================
# Payload Policies
# =============================================================================

class TestIntervalPolicies:
    """Tests for per-screen interval policies."""

    def test_download_status(self):
        assert download_status_interval(None) is None
        assert download_status_interval({"activeDownloads": [], "queuedDownloads": [{"id": "q"}]}) == 2000
        assert download_status_interval({"activeDownloads": []}) is None
        assert download_status_interval(DownloadStatusResponse(active_downloads=[{"id": "a"}])) == 2000

    def test_queue_aware(self):
        busy = [True]
        policy = queue_aware_interval(lambda: busy[0])

        assert policy([]) == 5000
        busy[0] = False
        assert policy([]) == 30000

    @pytest.mark.parametrize(
        "tasks, expected",
        [
            ([{"status": "active"}], 10000),
            ([{"status": "completed"}, {"status": "paused"}], 10000),
            ([{"status": "completed"}, {"status": "cancelled"}], 60000),
            ([{"status": "exploded"}], 60000),
            ([], 60000),
            (None, 60000),
        ],
    )
    def test_subscription_tasks(self, tasks, expected):
        assert subscription_tasks_interval(tasks) == expected

    def test_subscriptions_fixed(self):
        assert subscriptions_interval(None) == 30000
        assert subscriptions_interval([{"id": "s"}]) == 30000


# =============================================================================
# Poller
# =============================================================================

class TestPoller:
    """Tests for the event-loop poller."""

    @pytest.fixture
    def fast_controller(self) -> PollingController:
        return PollingController(retry_steps_ms=(0,), rng=random.Random(1))

    @pytest.mark.asyncio
    async def test_refetch_retries_transient_failures(self, fast_controller: PollingController):
        outcomes: List[Any] = [network_error(), network_error(), {"queuedDownloads": []}]

        async def fetch():
            result = outcomes.pop(0)
            if isinstance(result, AppError):
                raise result
            return result

        poller = Poller(fetch, download_status_interval, fast_controller)
        await poller.refetch()

        assert poller.fetch_count == 3
        assert poller.data == {"queuedDownloads": []}
        assert poller.error is None
        assert poller.state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_refetch_gives_up_after_max_retries(self):
        controller = PollingController(max_retries=2, retry_steps_ms=(0,))

        async def fetch():
            raise network_error()

        poller = Poller(fetch, idle_policy, controller)
        await poller.refetch()

        assert poller.fetch_count == 3
        assert poller.error.code == AppErrorCode.NETWORK
        assert poller.state.consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, fast_controller: PollingController):
        async def fetch():
            raise AppError(AppErrorCode.UNAUTHENTICATED, "Authentication required", http_status=401)

        poller = Poller(fetch, idle_policy, fast_controller)
        await poller.refetch()

        assert poller.fetch_count == 1

    @pytest.mark.asyncio
    async def test_non_app_errors_propagate(self, fast_controller: PollingController):
        async def fetch():
            raise KeyError("bug")

        poller = Poller(fetch, idle_policy, fast_controller)

        with pytest.raises(KeyError):
            await poller.refetch()

    @pytest.mark.asyncio
    async def test_resume_triggers_immediate_refetch(self, fast_controller: PollingController):
        fetched = asyncio.Event()
        count = 0

        async def fetch():
            nonlocal count
            count += 1
            fetched.set()
            return {"activeDownloads": []}

        poller = Poller(fetch, download_status_interval, fast_controller, name="downloads")
        poller.start()
        await asyncio.wait_for(fetched.wait(), 1)
        fetched.clear()

        poller.set_foreground(False)
        poller.set_foreground(True)
        await asyncio.wait_for(fetched.wait(), 1)

        assert count == 2
        await poller.stop()
        assert not poller.running

    @pytest.mark.asyncio
    async def test_paused_until_focused(self, fast_controller: PollingController):
        fetched = asyncio.Event()

        async def fetch():
            fetched.set()
            return []

        poller = Poller(fetch, subscriptions_interval, fast_controller, focused=False)
        poller.start()
        await asyncio.sleep(0.01)

        assert poller.fetch_count == 0
        assert poller.last_decision.action == PollAction.PAUSE

        poller.set_focused(True)
        await asyncio.wait_for(fetched.wait(), 1)

        assert poller.fetch_count == 1
        await poller.stop()

    @pytest.mark.asyncio
    async def test_stops_on_auth_error(self, fast_controller: PollingController):
        async def fetch():
            raise AppError(AppErrorCode.FORBIDDEN, "Forbidden", http_status=403)

        poller = Poller(fetch, subscriptions_interval, fast_controller)
        poller.start()
        for _ in range(100):
            if not poller.running:
                break
            await asyncio.sleep(0)

        assert not poller.running
        assert poller.last_decision.action == PollAction.STOP
        await poller.stop()

    @pytest.mark.asyncio
    async def test_eligibility_change_resets_failures(self):
        async def fetch():
            raise network_error()

        poller = Poller(fetch, idle_policy, PollingController(max_retries=3, retry_steps_ms=(0,)))
        await poller.refetch()
        assert poller.state.consecutive_failures == 4

        poller.set_focused(False)

        assert poller.state.consecutive_failures == 0
        assert not poller.state.eligible

    @pytest.mark.asyncio
    async def test_focus_lost_during_backoff_skips_retry(self):
        failed = asyncio.Event()

        async def fetch():
            failed.set()
            raise network_error()

        poller = Poller(fetch, idle_policy, PollingController(retry_steps_ms=(50,)))
        refetch = asyncio.ensure_future(poller.refetch())
        await failed.wait()

        poller.set_focused(False)
        await refetch

        assert poller.fetch_count == 1
        assert poller.error.code == AppErrorCode.NETWORK
