"""
Local gamification store.

Holds the client's best-known GamificationState and applies pure,
synchronous transitions to it. Operations never raise: invalid input
produces a failure OperationResult, malformed server data is coerced.
The store has a single writer (SyncCoordinator); readers get copies.
"""

import logging
from typing import Any, Optional

from xpsync.core.coercion import utc_now_iso
from xpsync.core.constants import MAX_XP_AMOUNT, MIN_XP_AMOUNT, XP_PER_LEVEL
from xpsync.models.gamification import (
    STAT_FIELDS,
    Connectivity,
    CurrentStats,
    GamificationState,
    LevelProgress,
    LocalMutation,
    OperationResult,
    ServerStats,
    XPGainOutcome,
    level_for_xp,
    normalize_source,
)

logger = logging.getLogger(__name__)


def validate_xp_amount(amount: Any) -> Optional[int]:
    """Return amount as int if it is an integer in [1, 1000], else None."""
    if isinstance(amount, bool):
        return None
    if isinstance(amount, float):
        if not amount.is_integer():
            return None
        amount = int(amount)
    if not isinstance(amount, int):
        return None
    if amount < MIN_XP_AMOUNT or amount > MAX_XP_AMOUNT:
        return None
    return amount


class GamificationStore:
    """In-memory, single-writer container for GamificationState."""

    def __init__(self, initial: Optional[Any] = None):
        self._state = GamificationState()
        if initial is not None:
            self.initialize(initial)

    @property
    def state(self) -> GamificationState:
        """Deep copy of the current state."""
        return self._state.model_copy(deep=True)

    # =========================================================================
    # Snapshot / reconciliation
    # =========================================================================

    def initialize(self, server_snapshot: Any) -> OperationResult:
        """Replace the whole state with a coerced server snapshot.

        Connectivity is an environment signal and survives re-initialization.
        """
        stats = ServerStats.coerce(server_snapshot)
        self._state = GamificationState(
            **stats.model_dump(),
            connectivity=self._state.connectivity,
            last_updated=utc_now_iso(),
        )
        return OperationResult.ok(stats)

    def reconcile_with_server(
        self, server_values: Any, only_provided: bool = False
    ) -> OperationResult:
        """Overwrite the authoritative fields with server values.

        With only_provided, fields absent from the server payload keep their
        local value (for replies that carry a subset, e.g. a streak update).
        Does not touch connectivity, pending_sync_count or last_error.
        """
        stats = ServerStats.coerce(server_values)
        fields = STAT_FIELDS
        if only_provided:
            fields = tuple(f for f in STAT_FIELDS if f in stats.model_fields_set)

        now = utc_now_iso()
        updates = {name: getattr(stats, name) for name in fields}
        updates.update(last_sync_timestamp=now, last_updated=now)
        self._state = self._state.model_copy(update=updates)
        return OperationResult.ok(stats)

    # =========================================================================
    # Optimistic mutations
    # =========================================================================

    def apply_optimistic_xp_gain(self, amount: Any, source: Any = "manual") -> OperationResult:
        """Add XP locally before server confirmation.

        Amount outside [1, 1000] is rejected without mutation. An unknown
        source is coerced to "manual".
        """
        valid_amount = validate_xp_amount(amount)
        if valid_amount is None:
            logger.warning("Rejected optimistic XP gain: invalid amount %r", amount)
            return OperationResult.fail(
                f"XP amount must be an integer between {MIN_XP_AMOUNT} and {MAX_XP_AMOUNT}",
                "VALIDATION_REJECTED",
            )

        valid_source, coerced = normalize_source(source)
        if coerced:
            logger.warning("Unknown XP source %r, defaulting to %s", source, valid_source)

        previous = self._state
        new_total = previous.total_xp + valid_amount
        new_level = level_for_xp(new_total)
        leveled_up = new_level > previous.level
        now = utc_now_iso()

        self._state = previous.model_copy(
            update={
                "total_xp": new_total,
                "level": new_level,
                "weekly_progress": previous.weekly_progress + valid_amount,
                "leveled_up": leveled_up,
                "last_local_mutation": LocalMutation(
                    amount=valid_amount, source=valid_source, timestamp=now
                ),
                "last_updated": now,
            }
        )

        return OperationResult.ok(
            XPGainOutcome(
                amount=valid_amount,
                source=valid_source,
                previous_total=previous.total_xp,
                new_total=new_total,
                previous_level=previous.level,
                new_level=new_level,
                leveled_up=leveled_up,
            )
        )

    def apply_streak_freeze_locally(self) -> OperationResult:
        """Consume one streak freeze; fails without mutation if none are left."""
        if self._state.streak_freeze_count <= 0:
            return OperationResult.fail("No streak freezes available", "NO_STREAK_FREEZES")

        remaining = self._state.streak_freeze_count - 1
        self._state = self._state.model_copy(
            update={"streak_freeze_count": remaining, "last_updated": utc_now_iso()}
        )
        return OperationResult.ok(remaining)

    # =========================================================================
    # Sync bookkeeping
    # =========================================================================

    def set_connectivity(self, online: bool) -> None:
        status = Connectivity.CONNECTED if online else Connectivity.DISCONNECTED
        self._state = self._state.model_copy(update={"connectivity": status})

    def begin_sync(self) -> None:
        self._state = self._state.model_copy(
            update={"pending_sync_count": self._state.pending_sync_count + 1}
        )

    def end_sync(self) -> None:
        self._state = self._state.model_copy(
            update={"pending_sync_count": max(0, self._state.pending_sync_count - 1)}
        )

    def record_error(self, message: str) -> None:
        self._state = self._state.model_copy(update={"last_error": str(message or "")})

    def clear_error(self) -> None:
        self._state = self._state.model_copy(update={"last_error": None})

    # =========================================================================
    # Reads
    # =========================================================================

    def get_level_progress(self) -> LevelProgress:
        current_level_xp = self._state.total_xp % XP_PER_LEVEL
        return LevelProgress(
            current_level_xp=current_level_xp,
            required_xp=XP_PER_LEVEL,
            percentage=current_level_xp / XP_PER_LEVEL * 100,
            xp_to_next_level=XP_PER_LEVEL - current_level_xp,
        )

    def get_current_stats(self) -> CurrentStats:
        state = self._state
        return CurrentStats(
            total_xp=state.total_xp,
            level=state.level,
            current_streak=state.current_streak,
            longest_streak=state.longest_streak,
            rank=state.rank,
            weekly_progress=state.weekly_progress,
            weekly_goal=state.weekly_goal,
            streak_freeze_count=state.streak_freeze_count,
            level_progress=self.get_level_progress(),
            connectivity=state.connectivity,
            pending_sync_count=state.pending_sync_count,
            last_updated=state.last_updated,
            last_error=state.last_error,
        )
