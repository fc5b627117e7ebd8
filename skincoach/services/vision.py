from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional, Sequence

import httpx

from skincoach.errors import AnalysisError, UpstreamTimeoutError
from skincoach.models import SkinProfile
from skincoach.services.images import ImagePayload
from skincoach.services.prompts import (
    FALLBACK_SYSTEM_PROMPT,
    FALLBACK_USER_PROMPT,
    PRIMARY_SYSTEM_PROMPT,
    PRIMARY_USER_PROMPT,
    with_user_text,
)
from skincoach.services.response_validator import parse_profile
from skincoach.services.safety import sanitize
from skincoach.services.vision_client import VisionClient, VisionClientError


logger = logging.getLogger("skincoach.vision")

REFUSAL_MARKERS = ("I'm sorry, I can't assist", "I cannot", "I'm not able")


@dataclass(frozen=True)
class Strategy:
    name: str
    model: str
    system_prompt: str
    user_prompt: str


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("primary", "gpt-4o-mini", PRIMARY_SYSTEM_PROMPT, PRIMARY_USER_PROMPT),
    Strategy("primary", "gpt-4o", PRIMARY_SYSTEM_PROMPT, PRIMARY_USER_PROMPT),
    Strategy("fallback", "gpt-4o-mini", FALLBACK_SYSTEM_PROMPT, FALLBACK_USER_PROMPT),
    Strategy("fallback", "gpt-4o", FALLBACK_SYSTEM_PROMPT, FALLBACK_USER_PROMPT),
)


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    SOFT_REFUSAL = "soft_refusal"
    HARD_ERROR = "hard_error"


@dataclass(frozen=True)
class Attempt:
    index: int
    strategy: Strategy
    outcome: Outcome
    text: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class StrategyResult:
    raw_text: str
    strategy: Strategy
    attempts: tuple[Attempt, ...]

    @property
    def strategy_index(self) -> int:
        return self.attempts[-1].index


def is_refusal(text: Optional[str]) -> bool:
    if not text or not text.strip():
        return True
    normalized = text.replace("’", "'")
    return any(marker in normalized for marker in REFUSAL_MARKERS)


class VisionAnalyzer:
    def __init__(self, client: VisionClient, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> None:
        if not strategies:
            raise ValueError("at least one strategy is required")
        self._client = client
        self._strategies = tuple(strategies)

    @property
    def strategies(self) -> tuple[Strategy, ...]:
        return self._strategies

    async def _attempt(self, index: int, strategy: Strategy, image: ImagePayload, user_text: Optional[str]) -> Attempt:
        logger.info("vision_strategy_try index=%d name=%s model=%s", index + 1, strategy.name, strategy.model)
        try:
            text = await self._client.complete(
                model=strategy.model,
                system_prompt=strategy.system_prompt,
                user_prompt=with_user_text(strategy.user_prompt, user_text),
                image_data_url=image.as_data_url(),
            )
        except (httpx.HTTPError, VisionClientError) as exc:
            logger.error("vision_strategy_failed index=%d model=%s err=%s", index + 1, strategy.model, exc)
            return Attempt(index, strategy, Outcome.HARD_ERROR, error=exc)

        if is_refusal(text):
            logger.warning("vision_strategy_refused index=%d model=%s", index + 1, strategy.model)
            return Attempt(index, strategy, Outcome.SOFT_REFUSAL, text=text)

        logger.info("vision_strategy_accepted index=%d model=%s chars=%d", index + 1, strategy.model, len(text))
        return Attempt(index, strategy, Outcome.ACCEPTED, text=text)

    async def run_strategies(self, image: ImagePayload, *, user_text: Optional[str] = None) -> StrategyResult:
        """Try each strategy in order and return the first non-refusing reply.

        A transport error on the final strategy propagates (timeouts as
        ``UpstreamTimeoutError``); refusals never do.
        """

        attempts: list[Attempt] = []
        last_index = len(self._strategies) - 1
        for index, strategy in enumerate(self._strategies):
            attempt = await self._attempt(index, strategy, image, user_text)
            attempts.append(attempt)

            if attempt.outcome is Outcome.ACCEPTED:
                return StrategyResult(raw_text=attempt.text or "", strategy=strategy, attempts=tuple(attempts))

            if attempt.outcome is Outcome.HARD_ERROR and index == last_index:
                if isinstance(attempt.error, httpx.TimeoutException):
                    raise UpstreamTimeoutError(f"vision model timed out ({strategy.model})") from attempt.error
                raise AnalysisError(f"vision model call failed ({strategy.model}): {attempt.error}") from attempt.error

        raise AnalysisError("all strategies refused/failed")

    async def analyze(self, image: ImagePayload, *, user_text: Optional[str] = None) -> SkinProfile:
        result = await self.run_strategies(image, user_text=user_text)
        logger.info(
            "vision_strategy_used index=%d name=%s tries=%d",
            result.strategy_index + 1,
            result.strategy.name,
            len(result.attempts),
        )
        profile = parse_profile(result.raw_text)
        return sanitize(profile)
