"""Value objects shared across the engine.

Dashboard payloads arrive as camelCase dicts; ``from_dict`` constructors map
them onto frozen dataclasses and tolerate missing optional fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClickReason(str, Enum):
    NOT_FOUND = "not-found"
    ZERO_BOUNDING_BOX = "zero-bounding-box"
    CSS_HIDDEN = "css-hidden"
    CLICK_FAILED = "click-failed"
    MAX_RETRIES = "max-retries"


RETRYABLE_REASONS = frozenset({
    ClickReason.NOT_FOUND,
    ClickReason.ZERO_BOUNDING_BOX,
    ClickReason.CSS_HIDDEN,
    ClickReason.CLICK_FAILED,
})


@dataclass
class Interactability:
    interactable: bool
    reason: Optional[ClickReason] = None


@dataclass
class ClickAttemptResult:
    """Outcome of one run of the click protocol.  Never raised."""
    success: bool
    reason: Optional[ClickReason] = None
    popup: Any = None  # playwright Page opened by the click
    navigated: bool = False


@dataclass(frozen=True)
class Activity:
    title: str
    offer_id: Optional[str] = None
    name: Optional[str] = None
    complete: bool = False
    point_progress_max: int = 0
    promotion_type: str = ""
    destination_url: Optional[str] = None
    exclusive_locked_feature_status: Optional[str] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Activity":
        def _int(value) -> int:
            try:
                return int(value)
            except (TypeError, ValueError):
                return 0

        return cls(
            title=str(data.get("title") or ""),
            offer_id=data.get("offerId") or None,
            name=data.get("name") or None,
            complete=bool(data.get("complete", False)),
            point_progress_max=_int(data.get("pointProgressMax")),
            promotion_type=str(data.get("promotionType") or ""),
            destination_url=data.get("destinationUrl") or None,
            exclusive_locked_feature_status=data.get("exclusiveLockedFeatureStatus") or None,
            description=str(data.get("description") or ""),
        )

    @property
    def is_rewarded(self) -> bool:
        return self.point_progress_max > 0

    @property
    def is_locked(self) -> bool:
        return self.exclusive_locked_feature_status == "locked"


@dataclass(frozen=True)
class PunchCard:
    name: str = ""
    parent_promotion: Optional[Activity] = None
    child_promotions: tuple[Activity, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PunchCard":
        parent = data.get("parentPromotion")
        return cls(
            name=str(data.get("name") or ""),
            parent_promotion=Activity.from_dict(parent) if parent else None,
            child_promotions=tuple(Activity.from_dict(c) for c in data.get("childPromotions") or []),
        )

    @property
    def is_uncompleted(self) -> bool:
        return self.parent_promotion is not None and not self.parent_promotion.complete


@dataclass
class DashboardData:
    daily_set_promotions: dict[str, list[Activity]] = field(default_factory=dict)
    more_promotions: list[Activity] = field(default_factory=list)
    promotional_item: Optional[Activity] = None
    punch_cards: list[PunchCard] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DashboardData":
        item = data.get("promotionalItem")
        return cls(
            daily_set_promotions={
                day: [Activity.from_dict(a) for a in items or []]
                for day, items in (data.get("dailySetPromotions") or {}).items()
            },
            more_promotions=[Activity.from_dict(a) for a in data.get("morePromotions") or []],
            promotional_item=Activity.from_dict(item) if item else None,
            punch_cards=[PunchCard.from_dict(p) for p in data.get("punchCards") or []],
        )


# ---------------------------------------------------------------------------
# Quiz state
# ---------------------------------------------------------------------------

class QuizState(BaseModel):
    """Quiz progress as exposed by the page.

    The payload is untrusted and possibly stale: numbers may arrive as
    strings, keys may be missing, and extra keys are kept but ignored.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    max_questions: Optional[int] = Field(None, alias="maxQuestions")
    correctly_answered_count: Optional[int] = Field(None, alias="CorrectlyAnsweredQuestionCount")
    number_of_options: Optional[int] = Field(None, alias="numberOfOptions")
    correct_answer: Optional[str] = Field(None, alias="correctAnswer")
    current_question_number: Optional[int] = Field(None, alias="currentQuestionNumber")
    earned_credits: Optional[int] = Field(None, alias="earnedCredits")
    max_credits: Optional[int] = Field(None, alias="maxCredits")

    @field_validator(
        "max_questions",
        "correctly_answered_count",
        "number_of_options",
        "current_question_number",
        "earned_credits",
        "max_credits",
        mode="before",
    )
    @classmethod
    def _lenient_int(cls, value):
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(float(str(value).strip()))
        except (ValueError, OverflowError):
            return None

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _as_text(cls, value):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def questions_remaining(self) -> Optional[int]:
        """Remaining questions, or None when the count cannot be established."""
        if self.max_questions is None:
            return None
        answered = self.correctly_answered_count or 0
        return max(self.max_questions - answered, 0)
