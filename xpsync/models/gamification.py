"""
Gamification models for the XP synchronizer.

Covers:
- Local gamification state and the records derived from it
- Server payloads (coerced, never rejected)
- Normalized events published to listeners
- Operation results and domain exceptions
"""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from xpsync.core.coercion import (
    to_bool,
    to_int,
    to_non_negative_int,
    to_positive_int,
    to_str,
    utc_now_iso,
)
from xpsync.core.constants import (
    DEFAULT_LEVEL,
    DEFAULT_RANK,
    DEFAULT_WEEKLY_GOAL,
    FALLBACK_XP_SOURCE,
    VALID_XP_SOURCES,
    XP_PER_LEVEL,
    XP_SOURCE_ALIASES,
)


class Connectivity(str, Enum):
    """Network reachability as reported by the host environment."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class EventKind(str, Enum):
    """Kinds of events published on the event bus."""

    XP_ADDED = "xp_added"
    CHALLENGE_COMPLETED = "challenge_completed"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    LEVEL_UP = "level_up"
    RANK_IMPROVED = "rank_improved"


# Names used by the web client's event channel
EVENT_KIND_ALIASES = {
    "challenge_completion": EventKind.CHALLENGE_COMPLETED,
    "achievement_unlock": EventKind.ACHIEVEMENT_UNLOCKED,
}


def normalize_source(source: Any) -> tuple[str, bool]:
    """Map a requested XP source onto the API whitelist.

    Returns (source, was_coerced). Aliases are not counted as coercions.
    """
    text = to_str(source)
    if text in XP_SOURCE_ALIASES:
        return XP_SOURCE_ALIASES[text], False
    if text in VALID_XP_SOURCES:
        return text, False
    return FALLBACK_XP_SOURCE, True


def level_for_xp(total_xp: int) -> int:
    """Level under the local rule: one level per XP_PER_LEVEL points."""
    return total_xp // XP_PER_LEVEL + 1


# =============================================================================
# Server Payloads
# =============================================================================

_STAT_DEFAULTS = {
    "total_xp": 0,
    "level": DEFAULT_LEVEL,
    "current_streak": 0,
    "longest_streak": 0,
    "rank": DEFAULT_RANK,
    "weekly_progress": 0,
    "weekly_goal": DEFAULT_WEEKLY_GOAL,
    "streak_freeze_count": 0,
}

STAT_FIELDS = tuple(_STAT_DEFAULTS)


class ServerStats(BaseModel):
    """Authoritative gamification values as reported by the API.

    Every field is coerced; malformed or missing values fall back to the
    documented defaults instead of failing validation. ``model_fields_set``
    records which values the server actually sent.
    """

    model_config = ConfigDict(extra="ignore")

    total_xp: int = Field(0, validation_alias=AliasChoices("total_xp", "totalXP"))
    level: int = Field(DEFAULT_LEVEL, validation_alias=AliasChoices("level", "newLevel"))
    current_streak: int = Field(
        0, validation_alias=AliasChoices("current_streak", "currentStreak")
    )
    longest_streak: int = Field(
        0, validation_alias=AliasChoices("longest_streak", "longestStreak")
    )
    rank: int = Field(DEFAULT_RANK, validation_alias=AliasChoices("rank", "newRank"))
    weekly_progress: int = Field(
        0, validation_alias=AliasChoices("weekly_progress", "weeklyProgress")
    )
    weekly_goal: int = Field(
        DEFAULT_WEEKLY_GOAL, validation_alias=AliasChoices("weekly_goal", "weeklyGoal")
    )
    streak_freeze_count: int = Field(
        0,
        validation_alias=AliasChoices(
            "streak_freeze_count", "streakFreezes", "streakFreezeCount", "remainingFreezes"
        ),
    )

    @field_validator(
        "total_xp",
        "current_streak",
        "longest_streak",
        "weekly_progress",
        "weekly_goal",
        "streak_freeze_count",
        mode="before",
    )
    @classmethod
    def _coerce_counter(cls, value: Any, info) -> int:
        return to_non_negative_int(value, _STAT_DEFAULTS[info.field_name])

    @field_validator("level", "rank", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any, info) -> int:
        return to_positive_int(value, _STAT_DEFAULTS[info.field_name])

    @classmethod
    def coerce(cls, payload: Any) -> "ServerStats":
        """Build from a dict, another ServerStats or None (all defaults)."""
        if isinstance(payload, ServerStats):
            return payload
        if not isinstance(payload, dict):
            return cls()
        return cls.model_validate(payload)


class AddXPResponse(BaseModel):
    """Reply to POST /users/xp."""

    stats: ServerStats
    xp_added: int = 0
    leveled_up: bool = False
    rank_improved: bool = False

    @classmethod
    def from_payload(cls, data: Any) -> "AddXPResponse":
        data = data if isinstance(data, dict) else {}
        game_data = data.get("gameData") if isinstance(data.get("gameData"), dict) else {}
        stat_keys = {k: v for k, v in data.items() if k != "gameData"}
        rank_data = data.get("rankData") if isinstance(data.get("rankData"), dict) else {}
        return cls(
            stats=ServerStats.coerce({**game_data, **stat_keys}),
            xp_added=to_non_negative_int(data.get("xpAdded")),
            leveled_up=to_bool(data.get("leveledUp")),
            rank_improved=to_bool(rank_data.get("rankImproved")),
        )


class ChallengeSubmission(BaseModel):
    """Reply to POST /challenges/{id}/submit."""

    challenge_id: str
    score: int = 0
    xp_gained: int = 0
    leveled_up: bool = False
    user_stats: ServerStats = Field(default_factory=ServerStats)
    achievements_unlocked: list[dict] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, challenge_id: str, data: Any) -> "ChallengeSubmission":
        data = data if isinstance(data, dict) else {}
        achievements = data.get("achievementsUnlocked")
        return cls(
            challenge_id=challenge_id,
            score=to_non_negative_int(data.get("score")),
            xp_gained=to_non_negative_int(data.get("xpGained")),
            leveled_up=to_bool(data.get("leveledUp")),
            user_stats=ServerStats.coerce(data.get("userStats")),
            achievements_unlocked=[a for a in achievements if isinstance(a, dict)]
            if isinstance(achievements, list)
            else [],
        )


class StreakFreezeResponse(BaseModel):
    """Reply to POST /users/use-streak-freeze."""

    stats: ServerStats

    @property
    def streak_freeze_count(self) -> int:
        return self.stats.streak_freeze_count

    @classmethod
    def from_payload(cls, data: Any) -> "StreakFreezeResponse":
        data = data if isinstance(data, dict) else {}
        game_data = data.get("gameData") if isinstance(data.get("gameData"), dict) else {}
        merged = dict(game_data)
        if "remainingFreezes" in data:
            merged["streakFreezes"] = data["remainingFreezes"]
        return cls(stats=ServerStats.coerce(merged))


class StreakUpdateResponse(BaseModel):
    """Reply to POST /users/update-streak."""

    stats: ServerStats

    @classmethod
    def from_payload(cls, data: Any) -> "StreakUpdateResponse":
        data = data if isinstance(data, dict) else {}
        return cls(stats=ServerStats.coerce(data.get("gameData")))


class ForceSyncData(BaseModel):
    """Aggregated result of a forced multi-resource sync."""

    profile: Optional[ServerStats] = None
    dashboard: Optional[dict] = None
    achievements: Optional[dict] = None


# =============================================================================
# Local State
# =============================================================================


class LocalMutation(BaseModel):
    """Most recent optimistic change, for display and debugging."""

    amount: int
    source: str
    timestamp: str = Field(default_factory=utc_now_iso)


class GamificationState(BaseModel):
    """The client's best-known view of a user's gamification stats."""

    total_xp: int = 0
    level: int = DEFAULT_LEVEL
    current_streak: int = 0
    longest_streak: int = 0
    rank: int = DEFAULT_RANK
    weekly_progress: int = 0
    weekly_goal: int = DEFAULT_WEEKLY_GOAL
    streak_freeze_count: int = 0
    connectivity: Connectivity = Connectivity.CONNECTED
    pending_sync_count: int = 0
    leveled_up: bool = False
    last_local_mutation: Optional[LocalMutation] = None
    last_sync_timestamp: Optional[str] = None
    last_updated: Optional[str] = None
    last_error: Optional[str] = None


class LevelProgress(BaseModel):
    """Progress through the current level."""

    current_level_xp: int
    required_xp: int = XP_PER_LEVEL
    percentage: float
    xp_to_next_level: int


class CurrentStats(BaseModel):
    """Flat read-only snapshot for UI surfaces."""

    total_xp: int
    level: int
    current_streak: int
    longest_streak: int
    rank: int
    weekly_progress: int
    weekly_goal: int
    streak_freeze_count: int
    level_progress: LevelProgress
    connectivity: Connectivity
    pending_sync_count: int
    last_updated: Optional[str] = None
    last_error: Optional[str] = None


class XPGainOutcome(BaseModel):
    """What an optimistic XP gain changed."""

    amount: int
    source: str
    previous_total: int
    new_total: int
    previous_level: int
    new_level: int
    leveled_up: bool


class SyncMetrics(BaseModel):
    """Auxiliary sync counters; not used for correctness."""

    total_sync_attempts: int = 0
    successful_sync_attempts: int = 0
    last_sync_duration_ms: int = 0
    last_sync_at: Optional[str] = None


class OperationResult(BaseModel):
    """Uniform success/failure shape returned by store and coordinator."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    local_only: bool = False  # applied locally, server not confirmed
    deferred: bool = False  # gateway call scheduled by the debouncer
    skipped: bool = False  # dropped inside a rate-limit window

    @classmethod
    def ok(cls, data: Any = None, **kwargs) -> "OperationResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: str, code: str, **kwargs) -> "OperationResult":
        return cls(success=False, error=error, code=code, **kwargs)


# =============================================================================
# Events
# =============================================================================


class GamificationEvent(BaseModel):
    """Normalized event delivered to listeners.

    Producer data is coerced field by field so a malformed payload cannot
    crash a consumer. Totals are absolute (authoritative when known).
    """

    model_config = ConfigDict(extra="ignore")

    kind: EventKind = Field(validation_alias=AliasChoices("kind", "type"))
    amount: int = 0
    source: str = ""
    new_total: int = Field(0, validation_alias=AliasChoices("new_total", "newTotal"))
    new_level: int = Field(
        DEFAULT_LEVEL, validation_alias=AliasChoices("new_level", "newLevel")
    )
    new_rank: int = Field(DEFAULT_RANK, validation_alias=AliasChoices("new_rank", "newRank"))
    leveled_up: bool = Field(False, validation_alias=AliasChoices("leveled_up", "leveledUp"))
    challenge_id: str = Field("", validation_alias=AliasChoices("challenge_id", "challengeId"))
    score: int = 0
    achievements: list[dict] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now_iso)

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> Any:
        if isinstance(value, EventKind):
            return value
        text = to_str(value)
        return EVENT_KIND_ALIASES.get(text, text)

    @field_validator("amount", "new_total", "score", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int:
        return to_int(value)

    @field_validator("new_level", mode="before")
    @classmethod
    def _coerce_level(cls, value: Any) -> int:
        return to_positive_int(value, DEFAULT_LEVEL)

    @field_validator("new_rank", mode="before")
    @classmethod
    def _coerce_rank(cls, value: Any) -> int:
        return to_positive_int(value, DEFAULT_RANK)

    @field_validator("source", "challenge_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return to_str(value)

    @field_validator("leveled_up", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        return to_bool(value)

    @field_validator("achievements", mode="before")
    @classmethod
    def _coerce_achievements(cls, value: Any) -> list:
        if not isinstance(value, (list, tuple)):
            return []
        return [dict(item) for item in value if isinstance(item, dict)]

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> str:
        return to_str(value) or utc_now_iso()

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Observers needing exactly-once feedback dedupe on this key."""
        return self.kind.value, self.timestamp


# =============================================================================
# Exceptions
# =============================================================================


class GamificationError(Exception):
    """Base exception for XP synchronizer errors."""

    pass


class ValidationRejection(GamificationError):
    """Caller supplied a value outside the accepted range."""

    def __init__(self, message: str, code: str = "VALIDATION_REJECTED"):
        self.code = code
        super().__init__(message)


class GatewayError(GamificationError):
    """The EduGame API rejected the call or returned an unusable reply."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransientNetworkError(GatewayError):
    """API unreachable, timed out or returned a server error."""

    pass


class AuthenticationError(GatewayError):
    """API reports the session as invalid."""

    pass


class NoStreakFreezesError(GatewayError):
    """API reports that no streak freezes are left."""

    pass
