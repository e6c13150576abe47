"""
Application constants for the EduGame XP synchronizer.

Centralizes leveling rules, validation bounds and fallback values that must
agree with the EduGame API.
"""

# Leveling (level = total_xp // XP_PER_LEVEL + 1)
XP_PER_LEVEL = 1000
DEFAULT_LEVEL = 1

# XP grant bounds accepted by POST /users/xp
MIN_XP_AMOUNT = 1
MAX_XP_AMOUNT = 1000

# Sources accepted by the API. Anything else is coerced to FALLBACK_XP_SOURCE.
VALID_XP_SOURCES = (
    "challenge",
    "course",
    "quiz",
    "practice",
    "achievement",
    "daily_login",
    "streak_bonus",
    "manual",
    "batch",
)
FALLBACK_XP_SOURCE = "manual"
XP_SOURCE_ALIASES = {
    "challenge_completion": "challenge",
}

# Placeholders for missing or malformed server values
DEFAULT_RANK = 999  # "unknown" rank
DEFAULT_WEEKLY_GOAL = 1000

# Metadata accepted alongside an XP grant
METADATA_STRING_FIELDS = ("challengeId", "challengeTitle", "challengeCategory")
METADATA_NUMBER_FIELDS = ("score", "timeSpent", "correctAnswers", "totalQuestions")
CHALLENGE_TITLE_MAX_LENGTH = 100

# Challenge submission
DEFAULT_ANSWER_TIME_SECONDS = 30

# Rate-limit windows (seconds); overridable through Settings
XP_SYNC_INTERVAL_SECONDS = 1.0
XP_DEBOUNCE_SECONDS = 1.0
PROFILE_SYNC_INTERVAL_SECONDS = 10.0
INITIAL_SYNC_INTERVAL_SECONDS = 30.0
STREAK_UPDATE_INTERVAL_SECONDS = 5.0

# Server message returned when the user has no freezes left
NO_STREAK_FREEZES_MESSAGE = "No streak freezes available"
