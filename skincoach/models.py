from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from skincoach.errors import InvalidTransitionError


SCHEMA_VERSION = "0.1"
MAX_PICKS_PER_CATEGORY = 3


class SkinType(str, Enum):
    DRY = "dry"
    OILY = "oily"
    COMBINATION = "combination"
    NORMAL = "normal"
    UNKNOWN = "unknown"


class Concern(str, Enum):
    ACNE = "acne"
    REDNESS = "redness"
    DRYNESS = "dryness"
    OILINESS = "oiliness"
    HYPERPIGMENTATION = "hyperpigmentation"
    SENSITIVITY = "sensitivity"


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    NOTICEABLE = "noticeable"

    @property
    def is_top_tier(self) -> bool:
        return self is Severity.NOTICEABLE


class Category(str, Enum):
    CLEANSER = "cleanser"
    SERUM = "serum"
    MOISTURIZER = "moisturizer"
    SUNSCREEN = "sunscreen"
    SPOT_TREATMENT = "spot_treatment"


class ConsultationStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ConsultationStatus.COMPLETED, ConsultationStatus.FAILED}


ALLOWED_TRANSITIONS: dict[ConsultationStatus, frozenset[ConsultationStatus]] = {
    ConsultationStatus.PENDING: frozenset({ConsultationStatus.ANALYZING}),
    ConsultationStatus.ANALYZING: frozenset({ConsultationStatus.COMPLETED, ConsultationStatus.FAILED}),
    ConsultationStatus.COMPLETED: frozenset(),
    ConsultationStatus.FAILED: frozenset(),
}


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _dedupe(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    out: list[Any] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class SkinProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    face_detected: bool
    skin_type: SkinType
    concerns: list[Concern] = Field(default_factory=list)
    severity: dict[Concern, Severity] = Field(default_factory=dict)
    notes: str = ""

    @field_validator("concerns")
    @classmethod
    def _unique_concerns(cls, value: list[Concern]) -> list[Concern]:
        return _dedupe(value)

    @model_validator(mode="after")
    def _severity_keys_are_concerns(self) -> "SkinProfile":
        extra = [c.value for c in self.severity if c not in self.concerns]
        if extra:
            raise ValueError(f"severity keys not listed in concerns: {', '.join(extra)}")
        return self

    def has_concern(self, concern: Concern) -> bool:
        return concern in self.concerns

    @property
    def has_top_tier_severity(self) -> bool:
        return any(level.is_top_tier for level in self.severity.values())


class CatalogEntry(BaseModel):
    """One product as published by the external catalog service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Union[int, str]
    name: str = Field(min_length=1)
    brand: str = Field(min_length=1)
    category: Category
    price: float = Field(gt=0)
    currency: str = "USD"
    comedogenic_rating: Optional[int] = Field(default=None, ge=0, le=5)
    ingredients: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("ingredients", "key_ingredients"),
    )
    concern_tags: list[Concern] = Field(
        default_factory=list,
        validation_alias=AliasChoices("concern_tags", "skin_concerns"),
    )
    product_url: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("ingredients", mode="before")
    @classmethod
    def _normalize_ingredients(cls, value: Any) -> Any:
        value = _split_csv(value)
        if value is None:
            return []
        if isinstance(value, list):
            return _dedupe([str(v).strip().lower() for v in value if str(v).strip()])
        return value

    @field_validator("concern_tags", mode="before")
    @classmethod
    def _normalize_concern_tags(cls, value: Any) -> Any:
        value = _split_csv(value)
        if value is None:
            return []
        if isinstance(value, list):
            return _dedupe([v.strip().lower() if isinstance(v, str) else v for v in value])
        return value

    def to_pick(self) -> "ProductPick":
        return ProductPick(
            name=self.name,
            brand=self.brand,
            price=self.price,
            url=self.product_url,
            image=self.image_url,
            tags=list(self.concern_tags),
        )


class ProductPick(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    brand: str
    price: float
    url: Optional[str] = None
    image: Optional[str] = None
    tags: list[Concern] = Field(default_factory=list)


class RecommendationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    picks: dict[Category, list[ProductPick]] = Field(default_factory=dict)
    rationale: str

    @field_validator("picks")
    @classmethod
    def _bounded_non_empty_picks(cls, value: dict[Category, list[ProductPick]]) -> dict[Category, list[ProductPick]]:
        for category, items in value.items():
            if not items:
                raise ValueError(f"category {category.value} present without picks")
            if len(items) > MAX_PICKS_PER_CATEGORY:
                raise ValueError(f"category {category.value} has more than {MAX_PICKS_PER_CATEGORY} picks")
        return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Consultation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schema_version: str = Field(default=SCHEMA_VERSION)
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: ConsultationStatus = ConsultationStatus.PENDING
    skin_profile: Optional[SkinProfile] = None
    recommendation: Optional[RecommendationResult] = None
    error_message: Optional[str] = None
    user_text: Optional[str] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def advance(
        self,
        status: ConsultationStatus,
        *,
        skin_profile: Optional[SkinProfile] = None,
        recommendation: Optional[RecommendationResult] = None,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> "Consultation":
        """Return a copy moved to ``status``.

        Terminal states accept no further transitions. ``completed`` must carry
        both the profile and the recommendation; ``failed`` must carry a
        non-empty message. Stored results are replaced, never merged, so a
        retried run leaves exactly one outcome behind.
        """

        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"consultation {self.id} cannot move from {self.status.value} to {status.value}"
            )

        update: dict[str, Any] = {"status": status, "updated_at": _utcnow()}
        if attempts is not None:
            update["attempts"] = attempts

        if status is ConsultationStatus.COMPLETED:
            if skin_profile is None or recommendation is None:
                raise InvalidTransitionError("completed consultation requires a profile and a recommendation")
            update.update(skin_profile=skin_profile, recommendation=recommendation, error_message=None)
        elif status is ConsultationStatus.FAILED:
            message = (error_message or "").strip()
            if not message:
                raise InvalidTransitionError("failed consultation requires an error message")
            update.update(skin_profile=None, recommendation=None, error_message=message)

        return self.model_copy(update=update)

    def status_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "analysis": self.skin_profile.model_dump(mode="json") if self.skin_profile else None,
            "recommendations": self.recommendation.model_dump(mode="json") if self.recommendation else None,
            "error_message": self.error_message,
        }
