"""Shared pytest fixtures for test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from xpsync.core.config import Settings
from xpsync.models.gamification import (
    AddXPResponse,
    ServerStats,
    StreakFreezeResponse,
    StreakUpdateResponse,
)
from xpsync.services.event_bus import EventBus
from xpsync.services.gateway import StatsGateway
from xpsync.services.store import GamificationStore


class FakeClock:
    """Manually advanced monotonic clock for rate-limit windows."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Settings / Clock
# =============================================================================


@pytest.fixture
def settings():
    """Settings with a tiny debounce delay and no .env lookup."""
    return Settings(
        _env_file=None,
        api_base_url="http://edugame.test/api",
        api_token="test-token",
        xp_debounce_seconds=0.01,
    )


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Store / Bus / Gateway
# =============================================================================


@pytest.fixture
def store():
    """Store starting from a level-1 user with one streak freeze."""
    return GamificationStore(
        {
            "totalXP": 100,
            "level": 1,
            "currentStreak": 3,
            "longestStreak": 7,
            "rank": 50,
            "weeklyProgress": 100,
            "weeklyGoal": 1000,
            "streakFreezes": 1,
        }
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorded_events(bus):
    """Every event published on the bus, in order."""
    events = []
    bus.register(events.append)
    return events


@pytest.fixture
def mock_gateway():
    """StatsGateway double whose add-XP call echoes a running server total.

    The server total starts at 100 (matching the store fixture) and
    advances by every amount received.
    """
    gateway = MagicMock(spec=StatsGateway)
    server = {"total": 100}

    async def add_xp(amount, source="manual", metadata=None):
        previous_level = server["total"] // 1000 + 1
        server["total"] += amount
        level = server["total"] // 1000 + 1
        return AddXPResponse.from_payload(
            {
                "totalXP": server["total"],
                "level": level,
                "xpAdded": amount,
                "leveledUp": level > previous_level,
            }
        )

    gateway.server = server
    gateway.add_experience_points = AsyncMock(side_effect=add_xp)
    gateway.fetch_profile = AsyncMock(
        side_effect=lambda: ServerStats.coerce({"totalXP": server["total"], "rank": 50})
    )
    gateway.fetch_dashboard = AsyncMock(return_value={"recentActivity": []})
    gateway.check_achievements = AsyncMock(return_value={"newAchievements": []})
    gateway.use_streak_freeze = AsyncMock(
        return_value=StreakFreezeResponse.from_payload({"remainingFreezes": 0})
    )
    gateway.update_streak = AsyncMock(
        return_value=StreakUpdateResponse.from_payload(
            {"gameData": {"currentStreak": 4, "longestStreak": 7}}
        )
    )
    gateway.submit_challenge = AsyncMock()
    gateway.aclose = AsyncMock()
    return gateway
