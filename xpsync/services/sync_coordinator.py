"""
Synchronization coordinator.

Decides when the local GamificationStore talks to the EduGame API:
- Applies every XP gain optimistically before any network round trip
- Debounces bursts of XP grants into one gateway call carrying their sum
- Rate-limits profile and streak re-syncs (calls inside the window are dropped)
- Reconciles the store with authoritative replies and republishes events
- Converts every gateway failure into a failure OperationResult

The coordinator is the store's only writer. All rate-limit and sequencing
state lives on the instance, so independent sessions never interfere.
"""

import asyncio
import itertools
import logging
import time
import uuid
from typing import Any, Callable, Optional

from xpsync.core.coercion import to_non_negative_int, to_str, utc_now_iso
from xpsync.core.config import Settings, get_settings
from xpsync.core.constants import FALLBACK_XP_SOURCE, MAX_XP_AMOUNT
from xpsync.core.exceptions import failure_result
from xpsync.core.logging_config import set_session_id
from xpsync.core.posthog import capture
from xpsync.models.gamification import (
    AddXPResponse,
    ChallengeSubmission,
    CurrentStats,
    EventKind,
    ForceSyncData,
    GamificationEvent,
    GamificationState,
    LevelProgress,
    NoStreakFreezesError,
    OperationResult,
    ServerStats,
    SyncMetrics,
)
from xpsync.services.event_bus import EventBus, Listener
from xpsync.services.gateway import StatsGateway
from xpsync.services.scheduler import DeferredTask
from xpsync.services.store import GamificationStore

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Single-writer orchestrator between GamificationStore and StatsGateway."""

    def __init__(
        self,
        gateway: Optional[StatsGateway] = None,
        store: Optional[GamificationStore] = None,
        event_bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
        user_id: Optional[str] = None,
    ):
        self._settings = settings or get_settings()
        self._owns_gateway = gateway is None
        self._gateway = gateway or StatsGateway(settings=self._settings)
        self.store = store or GamificationStore()
        self.events = event_bus or EventBus()
        self._clock = clock or time.monotonic
        self._user_id = user_id
        self._session_id = uuid.uuid4().hex[:12]

        self._metrics = SyncMetrics()

        # Rate-limit bookkeeping, one window per workflow type
        self._last_xp_sync_at: Optional[float] = None
        self._last_profile_sync_at: Optional[float] = None
        self._last_streak_update_at: Optional[float] = None

        # Debounced XP grants waiting for the next gateway call
        self._debouncer = DeferredTask("xp-sync")
        self._pending_amount = 0
        self._pending_source = FALLBACK_XP_SOURCE
        self._pending_metadata: dict = {}
        self._xp_in_flight = 0
        self._last_deferred_result: Optional[OperationResult] = None

        # Latest-request-wins reconciliation
        self._request_seq = itertools.count(1)
        self._applied_seq = 0

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def state(self) -> GamificationState:
        return self.store.state

    @property
    def has_pending_xp(self) -> bool:
        return self._debouncer.pending

    def get_current_stats(self) -> CurrentStats:
        return self.store.get_current_stats()

    def get_level_progress(self) -> LevelProgress:
        return self.store.get_level_progress()

    def get_sync_metrics(self) -> SyncMetrics:
        return self._metrics.model_copy()

    def reset_sync_metrics(self) -> None:
        self._metrics = SyncMetrics()

    def register_listener(self, callback: Listener) -> Callable[[], None]:
        return self.events.register(callback)

    def set_online(self, is_online: bool) -> None:
        """Connectivity signal from the host; independent of sync outcomes."""
        self.store.set_connectivity(bool(is_online))
        logger.info("Connectivity changed: %s", self.store.state.connectivity.value)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def start(self, profile: Optional[Any] = None) -> OperationResult:
        """Begin a session from the last known profile, then pull fresh stats.

        The follow-up fetch only happens if the last profile sync is older
        than initial_sync_interval_seconds.
        """
        self._bind_log_context()
        if profile is not None:
            self.store.initialize(profile)
            logger.info("Initialized gamification state from cached profile")

        if self._within_window(
            self._last_profile_sync_at, self._settings.initial_sync_interval_seconds
        ):
            return OperationResult.ok(self.store.state, skipped=True)
        return await self.sync_from_backend()

    async def flush(self) -> Optional[OperationResult]:
        """Send any debounced XP now and wait for in-flight XP syncs."""
        ran = await self._debouncer.run_now()
        await self._debouncer.wait()
        return self._last_deferred_result if ran else None

    async def aclose(self, flush: bool = True) -> None:
        """End the session: optionally flush pending XP, then release resources."""
        if flush:
            await self.flush()
        await self._debouncer.aclose()
        if self._owns_gateway:
            await self._gateway.aclose()

    async def __aenter__(self) -> "SyncCoordinator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # =========================================================================
    # XP grants
    # =========================================================================

    async def request_add_xp(
        self, amount: Any, source: Any = "manual", metadata: Optional[dict] = None
    ) -> OperationResult:
        """Apply an XP gain locally and sync it now or after the debounce delay.

        Returns the optimistic XPGainOutcome as data when the call is
        deferred, the AddXPResponse when synced immediately, or a failure
        (local_only=True when the gain stands unconfirmed).
        """
        self._bind_log_context()
        outcome = self.store.apply_optimistic_xp_gain(amount, source)
        if not outcome.success:
            return outcome

        gain = outcome.data
        logger.info(
            "Optimistic XP gain +%d (%s), total=%d",
            gain.amount,
            gain.source,
            gain.new_total,
            extra={"amount": gain.amount, "source": gain.source},
        )

        if self._should_defer_xp_sync():
            self._pending_amount += gain.amount
            self._pending_source = gain.source
            self._pending_metadata = dict(metadata) if isinstance(metadata, dict) else {}
            self._debouncer.arm(self._settings.xp_debounce_seconds, self._flush_pending_xp)
            logger.debug("XP sync deferred, %d XP pending", self._pending_amount)
            return OperationResult.ok(gain, deferred=True, message="XP added locally, syncing...")

        return await self._sync_xp(gain.amount, gain.source, metadata)

    def _should_defer_xp_sync(self) -> bool:
        return (
            self._debouncer.pending
            or self._xp_in_flight > 0
            or self._within_window(self._last_xp_sync_at, self._settings.xp_sync_interval_seconds)
        )

    async def _flush_pending_xp(self) -> None:
        amount = self._pending_amount
        source = self._pending_source
        metadata = self._pending_metadata
        self._pending_amount = 0
        self._pending_source = FALLBACK_XP_SOURCE
        self._pending_metadata = {}

        result: Optional[OperationResult] = None
        # Each request to the API is capped; larger bursts go out in chunks
        while amount > 0:
            chunk = min(amount, MAX_XP_AMOUNT)
            amount -= chunk
            result = await self._sync_xp(chunk, source, metadata)
            if not result.success:
                break
        self._last_deferred_result = result

        if amount > 0:
            # Unsent chunks ride along with the next grant
            logger.warning("Deferred XP sync stopped, %d XP left unsent", amount)
            if self._pending_amount == 0:
                self._pending_source = source
                self._pending_metadata = metadata
            self._pending_amount += amount

    async def _sync_xp(self, amount: int, source: str, metadata: Optional[dict]) -> OperationResult:
        seq = next(self._request_seq)
        started = self._clock()
        previous_rank = self.store.state.rank

        self.store.begin_sync()
        self._xp_in_flight += 1
        try:
            response: AddXPResponse = await self._gateway.add_experience_points(
                amount, source, metadata
            )
        except Exception as e:
            self._record_attempt(False, started)
            self.store.record_error(str(e))
            logger.warning("XP sync failed, keeping optimistic value: %s", e)
            capture(self._user_id, "xp_sync_failed", {"amount": amount, "source": source})
            return failure_result(e, local_only=True)
        finally:
            self.store.end_sync()
            self._xp_in_flight -= 1

        self._record_attempt(True, started)
        self._last_xp_sync_at = self._clock()
        self.store.clear_error()
        capture(self._user_id, "xp_sync_succeeded", {"amount": amount, "source": source})

        if not self._reconcile(seq, response.stats, only_provided=True):
            return OperationResult.ok(response, message="Stale response ignored")

        stats = self.store.state
        leveled_up = response.leveled_up
        self._publish(
            kind=EventKind.XP_ADDED,
            amount=amount,
            source=source,
            new_total=stats.total_xp,
            new_level=stats.level,
            new_rank=stats.rank,
            leveled_up=leveled_up,
        )
        if leveled_up:
            self._publish(
                kind=EventKind.LEVEL_UP,
                source=source,
                new_total=stats.total_xp,
                new_level=stats.level,
                leveled_up=True,
            )
        if response.rank_improved or (
            "rank" in response.stats.model_fields_set and stats.rank < previous_rank
        ):
            self._publish(
                kind=EventKind.RANK_IMPROVED,
                new_total=stats.total_xp,
                new_level=stats.level,
                new_rank=stats.rank,
            )

        logger.info("XP synced: total=%d level=%d", stats.total_xp, stats.level)
        return OperationResult.ok(response)

    # =========================================================================
    # Profile sync
    # =========================================================================

    async def sync_from_backend(self, snapshot: Optional[Any] = None) -> OperationResult:
        """Re-sync the whole profile; dropped if the last one was recent.

        A supplied snapshot is used instead of fetching /users/profile.
        """
        self._bind_log_context()
        if self._within_window(
            self._last_profile_sync_at, self._settings.profile_sync_interval_seconds
        ):
            logger.debug("Skipping profile sync - too frequent")
            return OperationResult.ok(
                None, skipped=True, message="Sync skipped - too frequent"
            )

        seq = next(self._request_seq)
        started = self._clock()
        self.store.begin_sync()
        try:
            if snapshot is not None:
                stats = ServerStats.coerce(snapshot)
            else:
                stats = await self._gateway.fetch_profile()
        except Exception as e:
            self._record_attempt(False, started)
            self.store.record_error(str(e))
            logger.warning("Profile sync failed: %s", e)
            return failure_result(e)
        finally:
            self.store.end_sync()

        self._record_attempt(True, started)
        self._last_profile_sync_at = self._clock()
        self.store.clear_error()
        self._reconcile(seq, stats)
        return OperationResult.ok(stats)

    async def force_sync(self) -> OperationResult:
        """User-initiated refresh: bypass rate limits and pull everything.

        Profile, dashboard and achievement check are fetched concurrently.
        Succeeds if the profile fetch succeeds, whatever the others do.
        """
        self._bind_log_context()
        logger.info("Force syncing all data (rate limiting bypassed)")
        seq = next(self._request_seq)
        started = self._clock()

        self.store.begin_sync()
        try:
            profile, dashboard, achievements = await asyncio.gather(
                self._gateway.fetch_profile(),
                self._gateway.fetch_dashboard(),
                self._gateway.check_achievements(),
                return_exceptions=True,
            )
        finally:
            self.store.end_sync()

        if isinstance(profile, BaseException):
            self._record_attempt(False, started)
            self.store.record_error(str(profile))
            logger.warning("Force sync failed: %s", profile)
            return failure_result(profile)

        if isinstance(dashboard, BaseException):
            logger.warning("Force sync: dashboard fetch failed: %s", dashboard)
            dashboard = None
        if isinstance(achievements, BaseException):
            logger.warning("Force sync: achievement check failed: %s", achievements)
            achievements = None

        self._record_attempt(True, started)
        self._last_profile_sync_at = self._clock()
        self.store.clear_error()
        self._reconcile(seq, profile)
        capture(
            self._user_id,
            "force_sync_completed",
            {"partial": dashboard is None or achievements is None},
        )

        return OperationResult.ok(
            ForceSyncData(profile=profile, dashboard=dashboard, achievements=achievements)
        )

    # =========================================================================
    # Streaks
    # =========================================================================

    async def use_streak_freeze(self) -> OperationResult:
        """Spend one streak freeze; checked locally before calling the API."""
        self._bind_log_context()
        if self.store.state.streak_freeze_count <= 0:
            return OperationResult.fail("No streak freezes available", "NO_STREAK_FREEZES")

        seq = next(self._request_seq)
        started = self._clock()
        self.store.begin_sync()
        try:
            response = await self._gateway.use_streak_freeze()
        except NoStreakFreezesError as e:
            self._record_attempt(False, started)
            # Server is authoritative: none left
            self._reconcile(seq, {"streak_freeze_count": 0}, only_provided=True)
            return failure_result(e)
        except Exception as e:
            self._record_attempt(False, started)
            self.store.record_error(str(e))
            logger.warning("Streak freeze failed: %s", e)
            return failure_result(e)
        finally:
            self.store.end_sync()

        self._record_attempt(True, started)
        if "streak_freeze_count" in response.stats.model_fields_set:
            self._reconcile(seq, response.stats, only_provided=True)
        else:
            self.store.apply_streak_freeze_locally()

        remaining = self.store.state.streak_freeze_count
        logger.info("Streak freeze used, %d remaining", remaining)
        return OperationResult.ok(remaining)

    async def update_streak(self) -> OperationResult:
        """Ask the API to recompute the streak; dropped if done recently."""
        self._bind_log_context()
        if self._within_window(
            self._last_streak_update_at, self._settings.streak_update_interval_seconds
        ):
            logger.debug("Skipping streak update - too frequent")
            return OperationResult.ok(
                None, skipped=True, message="Streak update skipped - too frequent"
            )

        seq = next(self._request_seq)
        started = self._clock()
        self.store.begin_sync()
        try:
            response = await self._gateway.update_streak()
        except Exception as e:
            self._record_attempt(False, started)
            self.store.record_error(str(e))
            logger.warning("Streak update failed: %s", e)
            return failure_result(e)
        finally:
            self.store.end_sync()

        self._record_attempt(True, started)
        self._last_streak_update_at = self._clock()
        provided = response.stats.model_fields_set
        streak_values = {
            name: getattr(response.stats, name)
            for name in ("current_streak", "longest_streak")
            if name in provided
        }
        self._reconcile(seq, streak_values, only_provided=True)
        return OperationResult.ok(response.stats)

    # =========================================================================
    # Challenges and achievements
    # =========================================================================

    async def submit_challenge(
        self, challenge_id: str, answers: list, time_spent_seconds: int
    ) -> OperationResult:
        """Submit answers, reconcile the returned stats and announce the result."""
        self._bind_log_context()
        seq = next(self._request_seq)
        started = self._clock()
        previous_total = self.store.state.total_xp

        self.store.begin_sync()
        try:
            submission: ChallengeSubmission = await self._gateway.submit_challenge(
                challenge_id, answers, time_spent_seconds
            )
        except Exception as e:
            self._record_attempt(False, started)
            self.store.record_error(str(e))
            logger.warning("Challenge submission failed for %s: %s", challenge_id, e)
            return failure_result(e)
        finally:
            self.store.end_sync()

        self._record_attempt(True, started)
        if submission.user_stats.model_fields_set:
            self._reconcile(seq, submission.user_stats, only_provided=True)
        elif submission.xp_gained > 0:
            self.store.apply_optimistic_xp_gain(
                min(submission.xp_gained, MAX_XP_AMOUNT), "challenge"
            )

        stats = self.store.state
        common = {
            "amount": submission.xp_gained,
            "source": "challenge",
            "new_total": stats.total_xp,
            "new_level": stats.level,
            "new_rank": stats.rank,
            "leveled_up": submission.leveled_up,
        }
        self._publish(
            kind=EventKind.CHALLENGE_COMPLETED,
            challenge_id=submission.challenge_id,
            score=submission.score,
            achievements=submission.achievements_unlocked,
            **common,
        )
        if submission.xp_gained > 0:
            self._publish(kind=EventKind.XP_ADDED, **common)
        if submission.leveled_up:
            self._publish(kind=EventKind.LEVEL_UP, **common)
        if submission.achievements_unlocked:
            self._publish(
                kind=EventKind.ACHIEVEMENT_UNLOCKED,
                source="challenge",
                new_total=stats.total_xp,
                new_level=stats.level,
                achievements=submission.achievements_unlocked,
            )

        logger.info(
            "Challenge %s submitted: score=%d xp=%d (total %d -> %d)",
            submission.challenge_id,
            submission.score,
            submission.xp_gained,
            previous_total,
            stats.total_xp,
        )
        return OperationResult.ok(submission)

    def handle_challenge_completed(self, payload: Any) -> OperationResult:
        """Apply a challenge completion reported by another producer."""
        if not isinstance(payload, dict):
            logger.warning("Invalid challenge completion event data: %r", payload)
            return OperationResult.fail(
                "Invalid challenge completion event data", "VALIDATION_REJECTED"
            )

        xp_gained = to_non_negative_int(payload.get("xpGained", payload.get("amount")))
        if xp_gained <= 0:
            return OperationResult.ok(None, skipped=True)

        outcome = self.store.apply_optimistic_xp_gain(xp_gained, "challenge")
        if not outcome.success:
            return outcome

        self._publish(
            kind=EventKind.CHALLENGE_COMPLETED,
            amount=xp_gained,
            source="challenge",
            challenge_id=to_str(payload.get("challengeId")),
            score=payload.get("score"),
            new_total=outcome.data.new_total,
            new_level=outcome.data.new_level,
            leveled_up=outcome.data.leveled_up,
        )
        return outcome

    def handle_achievement_unlocked(self, payload: Any) -> OperationResult:
        """Apply the XP rewards of achievements unlocked elsewhere."""
        achievements = payload.get("achievements") if isinstance(payload, dict) else None
        if not isinstance(achievements, list):
            logger.warning("Invalid achievement unlock event data: %r", payload)
            return OperationResult.fail(
                "Invalid achievement unlock event data", "VALIDATION_REJECTED"
            )

        achievement_xp = 0
        for achievement in achievements:
            rewards = achievement.get("rewards") if isinstance(achievement, dict) else None
            if isinstance(rewards, dict):
                achievement_xp += to_non_negative_int(rewards.get("xp"))
        if achievement_xp <= 0:
            return OperationResult.ok(None, skipped=True)

        outcome = self.store.apply_optimistic_xp_gain(achievement_xp, "achievement")
        if not outcome.success:
            return outcome

        self._publish(
            kind=EventKind.ACHIEVEMENT_UNLOCKED,
            amount=achievement_xp,
            source="achievement",
            achievements=achievements,
            new_total=outcome.data.new_total,
            new_level=outcome.data.new_level,
            leveled_up=outcome.data.leveled_up,
        )
        return outcome

    # =========================================================================
    # Helpers
    # =========================================================================

    def _within_window(self, last_at: Optional[float], window: float) -> bool:
        return last_at is not None and self._clock() - last_at < window

    def _reconcile(self, seq: int, values: Any, only_provided: bool = False) -> bool:
        """Apply authoritative values unless a newer request already did."""
        if self._settings.discard_stale_responses and seq < self._applied_seq:
            logger.info(
                "Discarding stale reconciliation (request %d, latest applied %d)",
                seq,
                self._applied_seq,
            )
            return False
        self._applied_seq = max(self._applied_seq, seq)
        self.store.reconcile_with_server(values, only_provided=only_provided)
        return True

    def _record_attempt(self, success: bool, started: float) -> None:
        self._metrics = SyncMetrics(
            total_sync_attempts=self._metrics.total_sync_attempts + 1,
            successful_sync_attempts=self._metrics.successful_sync_attempts + (1 if success else 0),
            last_sync_duration_ms=max(0, int((self._clock() - started) * 1000)),
            last_sync_at=utc_now_iso(),
        )

    def _publish(self, **fields: Any) -> None:
        self.events.publish(GamificationEvent(**fields))

    def _bind_log_context(self) -> None:
        set_session_id(self._session_id)
