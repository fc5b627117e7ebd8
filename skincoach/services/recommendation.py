from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Iterable, Sequence

from skincoach.errors import RecommendationError
from skincoach.models import (
    MAX_PICKS_PER_CATEGORY,
    CatalogEntry,
    Category,
    Concern,
    ProductPick,
    RecommendationResult,
    SkinProfile,
    SkinType,
)


logger = logging.getLogger("skincoach.recommendation")

NO_FACE_RATIONALE = (
    "No facial skin detected in the uploaded image. Please upload a clear photo of your face to receive "
    "personalized skincare product recommendations."
)
GENERIC_RATIONALE = "These products are selected based on general skin health principles and quality ingredients."
RATIONALE_PREFIX = "Based on your skin analysis, we've chosen products with "
RATIONALE_SUFFIX = ". Start slowly with new products and always patch test first."

MAX_COMEDOGENIC_FOR_ACNE = 2
FRAGRANCE_MARKERS = ("fragrance", "parfum")


class StageMode(str, Enum):
    # HARD always applies; PREFER falls back to the prior pool when it empties it.
    HARD = "hard"
    PREFER = "prefer"


Predicate = Callable[[CatalogEntry], bool]


@dataclass(frozen=True)
class FilterStage:
    name: str
    predicate: Predicate
    mode: StageMode


@dataclass(frozen=True)
class StageTrace:
    name: str
    before: int
    after: int
    reverted: bool


def apply_stages(
    pool: Sequence[CatalogEntry], stages: Iterable[FilterStage]
) -> tuple[list[CatalogEntry], list[StageTrace]]:
    current = list(pool)
    trace: list[StageTrace] = []
    for stage in stages:
        narrowed = [entry for entry in current if stage.predicate(entry)]
        reverted = stage.mode is StageMode.PREFER and not narrowed and bool(current)
        trace.append(StageTrace(stage.name, len(current), len(narrowed), reverted))
        if not reverted:
            current = narrowed
    return current, trace


def has_ingredient(entry: CatalogEntry, keywords: Sequence[str]) -> bool:
    return any(keyword in ingredient for ingredient in entry.ingredients for keyword in keywords)


def _ingredient_stage(name: str, keywords: Sequence[str]) -> FilterStage:
    return FilterStage(name, lambda entry: has_ingredient(entry, keywords), StageMode.PREFER)


def _texture_stage(name: str, keywords: Sequence[str]) -> FilterStage:
    def predicate(entry: CatalogEntry) -> bool:
        lowered_name = entry.name.lower()
        return any(k in lowered_name for k in keywords) or has_ingredient(entry, keywords)

    return FilterStage(name, predicate, StageMode.PREFER)


def _acne_safe(entry: CatalogEntry) -> bool:
    return entry.comedogenic_rating is None or entry.comedogenic_rating <= MAX_COMEDOGENIC_FOR_ACNE


def _fragrance_free(entry: CatalogEntry) -> bool:
    return not has_ingredient(entry, FRAGRANCE_MARKERS)


HARD_SAFETY_STAGES: tuple[tuple[Concern, FilterStage], ...] = (
    (Concern.ACNE, FilterStage("acne_low_comedogenic", _acne_safe, StageMode.HARD)),
    (Concern.SENSITIVITY, FilterStage("sensitivity_fragrance_free", _fragrance_free, StageMode.HARD)),
)

# Applied in this order, one stage per concern present.
AFFINITY_STAGES: tuple[tuple[Concern, FilterStage], ...] = (
    (Concern.REDNESS, _ingredient_stage("redness_soothing", ("niacinamide", "aloe", "chamomile", "centella"))),
    (
        Concern.HYPERPIGMENTATION,
        _ingredient_stage(
            "hyperpigmentation_brightening", ("vitamin c", "ascorbic", "retinol", "alpha arbutin", "kojic acid")
        ),
    ),
    (Concern.OILINESS, _ingredient_stage("oiliness_oil_control", ("salicylic acid", "niacinamide", "zinc"))),
    (Concern.DRYNESS, _ingredient_stage("dryness_hydrating", ("hyaluronic acid", "ceramide", "glycerin", "squalane"))),
)

TEXTURE_STAGES: dict[SkinType, FilterStage] = {
    SkinType.OILY: _texture_stage("moisturizer_gel_texture", ("gel", "oil-free", "oil free", "dimethicone")),
    SkinType.DRY: _texture_stage("moisturizer_rich_texture", ("cream", "rich", "ceramide", "shea butter")),
}

RATIONALE_FRAGMENTS: tuple[tuple[Concern, str], ...] = (
    (Concern.ACNE, "non-comedogenic formulas to prevent clogged pores"),
    (Concern.SENSITIVITY, "fragrance-free and gentle ingredients to minimize irritation"),
    (Concern.REDNESS, "soothing ingredients like niacinamide to calm visible redness"),
    (Concern.HYPERPIGMENTATION, "brightening actives to help even skin tone"),
    (Concern.OILINESS, "oil-controlling ingredients to manage shine"),
    (Concern.DRYNESS, "hydrating ingredients to restore moisture"),
)
CAUTION_FRAGMENT = "gentle formulations recommended due to the noticeable intensity of some concerns"


def build_stages(profile: SkinProfile, category: Category) -> list[FilterStage]:
    concerns = set(profile.concerns)
    stages: list[FilterStage] = []

    if concerns:
        stages.append(
            FilterStage(
                "concern_match",
                lambda entry: bool(concerns.intersection(entry.concern_tags)),
                StageMode.PREFER,
            )
        )

    stages.extend(stage for concern, stage in HARD_SAFETY_STAGES if concern in concerns)
    stages.extend(stage for concern, stage in AFFINITY_STAGES if concern in concerns)

    if category is Category.MOISTURIZER and profile.skin_type in TEXTURE_STAGES:
        stages.append(TEXTURE_STAGES[profile.skin_type])

    return stages


def build_rationale(profile: SkinProfile) -> str:
    if not profile.concerns:
        return GENERIC_RATIONALE

    parts: list[str] = []
    if profile.skin_type is not SkinType.UNKNOWN:
        parts.append(f"suitability for {profile.skin_type.value} skin")
    parts.extend(text for concern, text in RATIONALE_FRAGMENTS if profile.has_concern(concern))
    if profile.has_top_tier_severity:
        parts.append(CAUTION_FRAGMENT)

    return f"{RATIONALE_PREFIX}{', '.join(parts)}{RATIONALE_SUFFIX}"


class RecommendationEngine:
    """Rule-based product selection over a read-only catalog snapshot."""

    def __init__(self, *, max_picks: int = MAX_PICKS_PER_CATEGORY) -> None:
        self._max_picks = max(1, min(max_picks, MAX_PICKS_PER_CATEGORY))

    def picks_for_category(
        self, profile: SkinProfile, category: Category, catalog: Sequence[CatalogEntry]
    ) -> list[ProductPick]:
        pool = [entry for entry in catalog if entry.category is category]
        pool, trace = apply_stages(pool, build_stages(profile, category))
        for step in trace:
            logger.debug(
                "recommendation_stage category=%s stage=%s before=%d after=%d reverted=%s",
                category.value,
                step.name,
                step.before,
                step.after,
                step.reverted,
            )
        return [entry.to_pick() for entry in pool[: self._max_picks]]

    def recommend(self, profile: SkinProfile, catalog: Sequence[CatalogEntry]) -> RecommendationResult:
        if not profile.face_detected:
            return RecommendationResult(picks={}, rationale=NO_FACE_RATIONALE)

        try:
            picks: dict[Category, list[ProductPick]] = {}
            for category in Category:
                selected = self.picks_for_category(profile, category, catalog)
                if selected:
                    picks[category] = selected
            result = RecommendationResult(picks=picks, rationale=build_rationale(profile))
        except (TypeError, ValueError, AttributeError) as exc:
            raise RecommendationError(f"engine failed on catalog snapshot: {exc}") from exc

        logger.info(
            "recommendation_generated categories=%s total_picks=%d",
            ",".join(c.value for c in result.picks) or "none",
            sum(len(v) for v in result.picks.values()),
        )
        return result
