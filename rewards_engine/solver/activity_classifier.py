"""Map an activity descriptor to the handler kind that can complete it."""

from __future__ import annotations

from enum import Enum

from rewards_engine.models import Activity

POLL_URL_HINT = "pollscenarioid"
SEARCH_ON_BING_HINT = "exploreonbing"


class ActivityKind(Enum):
    POLL = "Poll"
    ABC = "ABC"
    THIS_OR_THAT = "ThisOrThat"
    QUIZ = "Quiz"
    URL_REWARD = "UrlReward"
    SEARCH_ON_BING = "SearchOnBing"
    UNSUPPORTED = "Unsupported"

    @property
    def label(self) -> str:
        return self.value


def classify_activity(activity: Activity) -> ActivityKind:
    promotion = activity.promotion_type.lower()
    url = (activity.destination_url or "").lower()

    if promotion == "quiz":
        if activity.point_progress_max == 10:
            return ActivityKind.POLL if POLL_URL_HINT in url else ActivityKind.ABC
        if activity.point_progress_max == 50:
            return ActivityKind.THIS_OR_THAT
        return ActivityKind.QUIZ

    if promotion == "urlreward":
        name = (activity.name or "").lower()
        if SEARCH_ON_BING_HINT in name or SEARCH_ON_BING_HINT in url:
            return ActivityKind.SEARCH_ON_BING
        return ActivityKind.URL_REWARD

    return ActivityKind.UNSUPPORTED


def type_label(activity: Activity) -> str:
    return classify_activity(activity).label
