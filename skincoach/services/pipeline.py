from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from skincoach.errors import InvalidTransitionError, RecommendationError, describe_failure
from skincoach.models import CatalogEntry, Consultation, ConsultationStatus, RecommendationResult, SkinProfile
from skincoach.services.catalog import CatalogProvider
from skincoach.services.images import ImagePayload, validate_image
from skincoach.services.recommendation import RecommendationEngine
from skincoach.services.retry_policy import RETRY_POLICY, RetryBudget, RetryRule
from skincoach.services.vision import VisionAnalyzer
from skincoach.store.consultation_store import ConsultationStore


logger = logging.getLogger("skincoach.pipeline")

SleepFn = Callable[[float], Awaitable[None]]


class ConsultationPipeline:
    """Runs analysis and recommendation for one consultation at a time per id.

    Failures are classified with the retry table; retryable ones are retried
    in-process after their backoff, everything else (and exhausted budgets)
    ends the consultation as ``failed``. Nothing is re-raised past ``run``.
    """

    def __init__(
        self,
        *,
        store: ConsultationStore,
        analyzer: VisionAnalyzer,
        engine: RecommendationEngine,
        catalog: CatalogProvider,
        policy: Sequence[RetryRule] = RETRY_POLICY,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._engine = engine
        self._catalog = catalog
        self._policy = tuple(policy)
        self._sleep = sleep
        self._active: set[str] = set()
        self._active_lock = asyncio.Lock()

    async def submit(
        self, data: bytes, *, content_type: Optional[str] = None, user_text: Optional[str] = None
    ) -> tuple[Consultation, ImagePayload]:
        """Validate the photo and create a pending consultation.

        Raises ``ValidationError`` before anything is stored.
        """

        image = validate_image(data, content_type)
        text = (user_text or "").strip() or None
        consultation = await self._store.create(Consultation(user_text=text))
        logger.info("consultation_created id=%s bytes=%d", consultation.id, image.size)
        return consultation, image

    async def _claim(self, consultation_id: str) -> bool:
        async with self._active_lock:
            if consultation_id in self._active:
                return False
            self._active.add(consultation_id)
            return True

    async def _release(self, consultation_id: str) -> None:
        async with self._active_lock:
            self._active.discard(consultation_id)

    def is_active(self, consultation_id: str) -> bool:
        return consultation_id in self._active

    async def recommend(self, profile: SkinProfile) -> RecommendationResult:
        catalog: list[CatalogEntry] = await self._catalog.list_entries()
        return self._engine.recommend(profile, catalog)

    async def _attempt(self, image: ImagePayload, user_text: Optional[str]) -> tuple[SkinProfile, RecommendationResult]:
        profile = await self._analyzer.analyze(image, user_text=user_text)
        try:
            recommendation = await self.recommend(profile)
        except RecommendationError:
            raise
        except Exception as exc:
            raise RecommendationError(str(exc)) from exc
        return profile, recommendation

    async def run(self, consultation_id: str, image: ImagePayload) -> Optional[Consultation]:
        if not await self._claim(consultation_id):
            logger.warning("pipeline_run_skipped id=%s reason=already_running", consultation_id)
            return None
        try:
            return await self._run_claimed(consultation_id, image)
        finally:
            await self._release(consultation_id)

    async def _run_claimed(self, consultation_id: str, image: ImagePayload) -> Optional[Consultation]:
        try:
            consultation = await self._store.advance(consultation_id, ConsultationStatus.ANALYZING)
        except InvalidTransitionError as exc:
            logger.warning("pipeline_run_skipped id=%s reason=%s", consultation_id, exc)
            return None

        logger.info("pipeline_started id=%s", consultation.id)
        budget = RetryBudget(self._policy)
        attempt = 0

        while True:
            attempt += 1
            try:
                profile, recommendation = await self._attempt(image, consultation.user_text)
            except Exception as exc:
                rule, class_attempts, delay = budget.record(exc)
                if delay is not None:
                    logger.warning(
                        "pipeline_attempt_failed id=%s attempt=%d error=%s class_attempts=%d/%d retry_in_s=%.1f err=%s",
                        consultation_id,
                        attempt,
                        rule.key,
                        class_attempts,
                        rule.max_attempts,
                        delay,
                        exc,
                    )
                    await self._sleep(delay)
                    continue

                message = describe_failure(exc)
                if rule.retryable:
                    logger.error("pipeline_failed id=%s reason=retries_exhausted error=%s msg=%s", consultation_id, rule.key, message)
                elif rule.error is Exception:
                    logger.exception("pipeline_failed id=%s reason=unexpected msg=%s", consultation_id, message)
                else:
                    logger.error("pipeline_failed id=%s reason=terminal error=%s msg=%s", consultation_id, rule.key, message)
                return await self._store.advance(
                    consultation_id,
                    ConsultationStatus.FAILED,
                    error_message=message,
                    attempts=attempt,
                )

            completed = await self._store.advance(
                consultation_id,
                ConsultationStatus.COMPLETED,
                skin_profile=profile,
                recommendation=recommendation,
                attempts=attempt,
            )
            logger.info("pipeline_completed id=%s attempts=%d", consultation_id, attempt)
            return completed


class PipelineDispatcher:
    """Schedules pipeline runs as background tasks and keeps them referenced."""

    def __init__(self, pipeline: ConsultationPipeline) -> None:
        self._pipeline = pipeline
        self._tasks: set[asyncio.Task] = set()

    async def _run_logged(self, consultation_id: str, image: ImagePayload) -> Optional[Consultation]:
        try:
            return await self._pipeline.run(consultation_id, image)
        except Exception:
            logger.exception("pipeline_state_not_persisted id=%s", consultation_id)
            return None

    def dispatch(self, consultation_id: str, image: ImagePayload) -> asyncio.Task:
        task = asyncio.create_task(self._run_logged(consultation_id, image), name=f"consultation:{consultation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
