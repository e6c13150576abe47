"""
HTTP client for the EduGame stats API.

Wraps an httpx.AsyncClient and turns every reply into a coerced model.
Transport problems and error statuses are raised as GatewayError
subclasses; SyncCoordinator converts them to failure results.
"""

import logging
from typing import Any, Optional

import httpx

from xpsync.core.coercion import to_int, to_str
from xpsync.core.config import Settings, get_settings
from xpsync.core.constants import (
    CHALLENGE_TITLE_MAX_LENGTH,
    DEFAULT_ANSWER_TIME_SECONDS,
    MAX_XP_AMOUNT,
    METADATA_NUMBER_FIELDS,
    METADATA_STRING_FIELDS,
    MIN_XP_AMOUNT,
    NO_STREAK_FREEZES_MESSAGE,
)
from xpsync.models.gamification import (
    AddXPResponse,
    AuthenticationError,
    ChallengeSubmission,
    GatewayError,
    NoStreakFreezesError,
    ServerStats,
    StreakFreezeResponse,
    StreakUpdateResponse,
    TransientNetworkError,
    ValidationRejection,
    normalize_source,
)
from xpsync.services.store import validate_xp_amount

logger = logging.getLogger(__name__)


def clean_metadata(metadata: Any) -> dict:
    """Keep only the metadata fields the API accepts, with safe types."""
    if not isinstance(metadata, dict):
        return {}

    cleaned: dict = {}
    for key in METADATA_STRING_FIELDS:
        value = metadata.get(key)
        if isinstance(value, str) and value:
            cleaned[key] = value
    if "challengeTitle" in cleaned:
        cleaned["challengeTitle"] = cleaned["challengeTitle"][:CHALLENGE_TITLE_MAX_LENGTH]
    for key in METADATA_NUMBER_FIELDS:
        if metadata.get(key) is not None:
            cleaned[key] = to_int(metadata[key])
    return cleaned


def clean_answers(answers: list) -> list[dict]:
    """Normalize submitted answers; the list position is the fallback index."""
    cleaned = []
    for index, answer in enumerate(answers):
        answer = answer if isinstance(answer, dict) else {}
        question_index = answer.get("questionIndex")
        cleaned.append(
            {
                "questionIndex": to_int(question_index) if question_index is not None else index,
                "selectedAnswer": to_str(answer.get("selectedAnswer")),
                "timeSpent": to_int(answer.get("timeSpent"), DEFAULT_ANSWER_TIME_SECONDS),
            }
        )
    return cleaned


class StatsGateway:
    """Client for the EduGame user / challenge / achievement endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
    ):
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._token = token if token is not None else self._settings.api_token

    def set_token(self, token: Optional[str]) -> None:
        """Replace the bearer token (after login / refresh)."""
        self._token = token or ""

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.api_base_url.rstrip("/") + "/",
                timeout=self._settings.request_timeout_seconds,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying client if this gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def fetch_profile(self) -> ServerStats:
        """GET /users/profile -> authoritative stats from data.gameData."""
        data = await self._request("GET", "users/profile")
        game_data = data.get("gameData") if isinstance(data, dict) else None
        return ServerStats.coerce(game_data)

    async def add_experience_points(
        self, amount: int, source: str = "manual", metadata: Optional[dict] = None
    ) -> AddXPResponse:
        """POST /users/xp."""
        valid_amount = validate_xp_amount(amount)
        if valid_amount is None:
            raise ValidationRejection(
                f"XP amount must be an integer between {MIN_XP_AMOUNT} and {MAX_XP_AMOUNT}"
            )
        valid_source, _ = normalize_source(source)

        data = await self._request(
            "POST",
            "users/xp",
            json={
                "amount": valid_amount,
                "source": valid_source,
                "metadata": clean_metadata(metadata),
            },
        )
        return AddXPResponse.from_payload(data)

    async def submit_challenge(
        self, challenge_id: str, answers: list, time_spent_seconds: int
    ) -> ChallengeSubmission:
        """POST /challenges/{id}/submit."""
        if not challenge_id:
            raise ValidationRejection("Challenge ID is required")
        if not isinstance(answers, list):
            raise ValidationRejection("Answers must be a list")

        time_spent = to_int(time_spent_seconds)
        if time_spent < 1:
            time_spent = DEFAULT_ANSWER_TIME_SECONDS

        data = await self._request(
            "POST",
            f"challenges/{challenge_id}/submit",
            json={"answers": clean_answers(answers), "timeSpent": time_spent},
        )
        return ChallengeSubmission.from_payload(str(challenge_id), data)

    async def use_streak_freeze(self) -> StreakFreezeResponse:
        """POST /users/use-streak-freeze."""
        try:
            data = await self._request("POST", "users/use-streak-freeze")
        except GatewayError as e:
            if type(e) is GatewayError and NO_STREAK_FREEZES_MESSAGE.lower() in str(e).lower():
                raise NoStreakFreezesError(str(e), e.status_code) from e
            raise
        return StreakFreezeResponse.from_payload(data)

    async def update_streak(self) -> StreakUpdateResponse:
        """POST /users/update-streak."""
        data = await self._request("POST", "users/update-streak")
        return StreakUpdateResponse.from_payload(data)

    async def fetch_dashboard(self) -> dict:
        """GET /user-data/dashboard."""
        data = await self._request("GET", "user-data/dashboard")
        return data if isinstance(data, dict) else {}

    async def check_achievements(self) -> dict:
        """POST /user-data/check-achievements."""
        data = await self._request("POST", "user-data/check-achievements")
        return data if isinstance(data, dict) else {}

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, method: str, endpoint: str, json: Optional[dict] = None) -> Any:
        """Issue a request and return the body's "data" member.

        Raises:
            TransientNetworkError: unreachable, timeout, 429 or 5xx
            AuthenticationError: 401 / 403
            GatewayError: any other error status or success=false body
        """
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.debug("API call: %s /%s", method, endpoint)
        try:
            response = await self._get_client().request(
                method, endpoint, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request to /{endpoint} timed out") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Network error calling /{endpoint}: {e}") from e

        body = self._parse_body(response)
        status = response.status_code

        if response.is_error:
            message = self._error_message(body, f"HTTP {status}")
            logger.warning(
                "API error on %s /%s: %s",
                method,
                endpoint,
                message,
                extra={"endpoint": endpoint, "status_code": status},
            )
            if status in (401, 403):
                raise AuthenticationError(message, status)
            if status == 429 or status >= 500:
                raise TransientNetworkError(message, status)
            raise GatewayError(message, status)

        if not isinstance(body, dict):
            raise GatewayError(f"Unexpected response body from /{endpoint}", status)
        if body.get("success") is False:
            raise GatewayError(self._error_message(body, "Request failed"), status)

        return body.get("data")

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(body: Any, fallback: str) -> str:
        if isinstance(body, dict):
            for key in ("message", "error"):
                if body.get(key):
                    return str(body[key])
        return fallback
