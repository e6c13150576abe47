"""Unit tests for GamificationStore.

Tests:
- initialize() - coercion, connectivity preserved
- apply_optimistic_xp_gain() - level math, validation, source coercion
- apply_streak_freeze_locally() - decrement, exhausted
- reconcile_with_server() - full and partial, idempotence
- sync bookkeeping and read helpers
"""

import json

import pytest

from xpsync.models.gamification import Connectivity, GamificationState
from xpsync.services.store import GamificationStore, validate_xp_amount

TIMESTAMP_FIELDS = {"last_sync_timestamp", "last_updated"}


def _without_timestamps(state: GamificationState) -> dict:
    return state.model_dump(exclude=TIMESTAMP_FIELDS)


# =============================================================================
# validate_xp_amount()
# =============================================================================


class TestValidateXPAmount:
    @pytest.mark.parametrize("amount,expected", [(1, 1), (1000, 1000), (50.0, 50)])
    def test_accepts_integers_in_range(self, amount, expected):
        assert validate_xp_amount(amount) == expected

    @pytest.mark.parametrize("amount", [0, -5, 1001, 2.5, "50", None, True])
    def test_rejects_everything_else(self, amount):
        assert validate_xp_amount(amount) is None


# =============================================================================
# initialize()
# =============================================================================


class TestInitialize:
    def test_empty_store_defaults(self):
        state = GamificationStore().state
        assert state.total_xp == 0
        assert state.level == 1
        assert state.rank == 999
        assert state.weekly_goal == 1000
        assert state.connectivity is Connectivity.CONNECTED

    def test_negative_streak_coerced(self):
        store = GamificationStore()
        store.initialize({"currentStreak": -5, "totalXP": "250"})

        assert store.state.current_streak == 0
        assert store.state.total_xp == 250
        assert store.state.last_updated is not None

    def test_negative_total_xp_coerced(self):
        store = GamificationStore()
        store.initialize({"totalXP": -5})

        assert store.state.total_xp == 0
        assert store.state.level == 1

    def test_huge_total_xp_kept(self):
        store = GamificationStore()
        store.initialize(json.loads('{"totalXP": 1' + "0" * 400 + "}"))

        assert store.state.total_xp == 10**400

    def test_keeps_connectivity(self):
        store = GamificationStore()
        store.set_connectivity(False)
        store.initialize({"totalXP": 10})
        assert store.state.connectivity is Connectivity.DISCONNECTED

    def test_state_is_a_copy(self, store):
        snapshot = store.state
        snapshot.total_xp = 99999
        assert store.state.total_xp == 100


# =============================================================================
# apply_optimistic_xp_gain()
# =============================================================================


class TestApplyOptimisticXPGain:
    def test_adds_xp_and_weekly_progress(self, store):
        result = store.apply_optimistic_xp_gain(50, "quiz")

        assert result.success is True
        assert result.data.previous_total == 100
        assert result.data.new_total == 150
        state = store.state
        assert state.total_xp == 150
        assert state.weekly_progress == 150
        assert state.leveled_up is False
        assert state.last_local_mutation.amount == 50
        assert state.last_local_mutation.source == "quiz"

    def test_crossing_level_boundary(self):
        store = GamificationStore({"totalXP": 950, "level": 1})
        result = store.apply_optimistic_xp_gain(100, "challenge")

        assert result.data.leveled_up is True
        assert result.data.new_level == 2
        state = store.state
        assert state.total_xp == 1050
        assert state.level == 2
        assert state.leveled_up is True

    @pytest.mark.parametrize("amount", [0, -10, 1001, 12.5, "abc"])
    def test_invalid_amount_rejected_without_mutation(self, store, amount):
        before = store.state
        result = store.apply_optimistic_xp_gain(amount, "quiz")

        assert result.success is False
        assert result.code == "VALIDATION_REJECTED"
        assert store.state == before

    def test_unknown_source_coerced(self, store, caplog):
        with caplog.at_level("WARNING", logger="xpsync.services.store"):
            result = store.apply_optimistic_xp_gain(10, "cheat_code")

        assert result.success is True
        assert result.data.source == "manual"
        assert "Unknown XP source" in caplog.text

    def test_source_alias(self, store):
        result = store.apply_optimistic_xp_gain(10, "challenge_completion")
        assert result.data.source == "challenge"


# =============================================================================
# apply_streak_freeze_locally()
# =============================================================================


class TestApplyStreakFreezeLocally:
    def test_decrements(self, store):
        result = store.apply_streak_freeze_locally()
        assert result.success is True
        assert result.data == 0
        assert store.state.streak_freeze_count == 0

    def test_exhausting_freezes(self):
        store = GamificationStore({"streakFreezes": 3})

        remaining = [store.apply_streak_freeze_locally().data for _ in range(3)]
        result = store.apply_streak_freeze_locally()

        assert remaining == [2, 1, 0]
        assert result.success is False
        assert result.code == "NO_STREAK_FREEZES"
        assert store.state.streak_freeze_count == 0

    def test_no_freezes_left(self):
        store = GamificationStore({"streakFreezes": 0})
        result = store.apply_streak_freeze_locally()

        assert result.success is False
        assert result.code == "NO_STREAK_FREEZES"
        assert store.state.streak_freeze_count == 0


# =============================================================================
# reconcile_with_server()
# =============================================================================


class TestReconcileWithServer:
    def test_overwrites_optimistic_value(self, store):
        store.apply_optimistic_xp_gain(50, "quiz")
        store.reconcile_with_server({"totalXP": 140, "level": 1, "rank": 40})

        state = store.state
        assert state.total_xp == 140
        assert state.rank == 40
        assert state.last_sync_timestamp is not None

    def test_full_reconcile_resets_missing_fields(self, store):
        store.reconcile_with_server({"totalXP": 300})
        assert store.state.current_streak == 0
        assert store.state.rank == 999

    def test_partial_reconcile_keeps_missing_fields(self, store):
        store.reconcile_with_server({"currentStreak": 9}, only_provided=True)

        state = store.state
        assert state.current_streak == 9
        assert state.total_xp == 100
        assert state.rank == 50

    def test_idempotent(self, store):
        payload = {"totalXP": 1200, "level": 2, "currentStreak": 5, "rank": 3}
        store.reconcile_with_server(payload)
        once = _without_timestamps(store.state)
        store.reconcile_with_server(payload)
        assert _without_timestamps(store.state) == once

    def test_leaves_sync_bookkeeping_alone(self, store):
        store.begin_sync()
        store.record_error("boom")
        store.set_connectivity(False)
        store.reconcile_with_server({"totalXP": 1})

        state = store.state
        assert state.pending_sync_count == 1
        assert state.last_error == "boom"
        assert state.connectivity is Connectivity.DISCONNECTED


# =============================================================================
# Bookkeeping / reads
# =============================================================================


class TestBookkeeping:
    def test_pending_sync_count_never_negative(self, store):
        store.begin_sync()
        store.end_sync()
        store.end_sync()
        assert store.state.pending_sync_count == 0

    def test_error_roundtrip(self, store):
        store.record_error("API unreachable")
        assert store.state.last_error == "API unreachable"
        store.clear_error()
        assert store.state.last_error is None


class TestReads:
    def test_level_progress(self):
        store = GamificationStore({"totalXP": 2250})
        progress = store.get_level_progress()

        assert progress.current_level_xp == 250
        assert progress.required_xp == 1000
        assert progress.percentage == 25.0
        assert progress.xp_to_next_level == 750

    def test_current_stats(self, store):
        stats = store.get_current_stats()
        assert stats.total_xp == 100
        assert stats.streak_freeze_count == 1
        assert stats.level_progress.current_level_xp == 100
        assert stats.connectivity is Connectivity.CONNECTED
