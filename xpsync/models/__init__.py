"""Pydantic models for the XP synchronizer."""

from xpsync.models.gamification import (
    AddXPResponse,
    AuthenticationError,
    ChallengeSubmission,
    Connectivity,
    CurrentStats,
    EventKind,
    ForceSyncData,
    GamificationError,
    GamificationEvent,
    GamificationState,
    GatewayError,
    LevelProgress,
    LocalMutation,
    NoStreakFreezesError,
    OperationResult,
    ServerStats,
    StreakFreezeResponse,
    StreakUpdateResponse,
    SyncMetrics,
    TransientNetworkError,
    ValidationRejection,
    XPGainOutcome,
)

__all__ = [
    # State models
    "Connectivity",
    "CurrentStats",
    "GamificationState",
    "LevelProgress",
    "LocalMutation",
    "SyncMetrics",
    "XPGainOutcome",
    # Server payloads
    "AddXPResponse",
    "ChallengeSubmission",
    "ForceSyncData",
    "ServerStats",
    "StreakFreezeResponse",
    "StreakUpdateResponse",
    # Events and results
    "EventKind",
    "GamificationEvent",
    "OperationResult",
    # Exceptions
    "AuthenticationError",
    "GamificationError",
    "GatewayError",
    "NoStreakFreezesError",
    "TransientNetworkError",
    "ValidationRejection",
]
