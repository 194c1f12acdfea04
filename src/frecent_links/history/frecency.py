"""Frecency: a score blending how often and how recently a page was visited."""

from __future__ import annotations

import math

from frecent_links.history.clock import VisitClock
from frecent_links.history.models import Transition, UrlRecord, Visit

DAY_US = 24 * 60 * 60 * 1_000_000

# Only the most recent visits are scored; the rest count through visit_count.
MAX_SAMPLED_VISITS = 10

# (max age in days, weight). Visits older than the last cutoff weigh OLDEST_WEIGHT.
AGE_BUCKETS = ((4, 100), (14, 70), (31, 50), (90, 30))
OLDEST_WEIGHT = 10

TRANSITION_BONUS = {
    Transition.TYPED: 2000,
    Transition.LINK: 100,
    Transition.BOOKMARK: 75,
}


class FrecencyEngine:
    """Compute page frecency from its visits as of the clock's current time."""

    def __init__(self, clock: VisitClock | None = None):
        self.clock = clock or VisitClock()

    def recompute(self, record: UrlRecord) -> int:
        if not record.visits:
            return 0
        now = self.clock.now()
        sampled = sorted(record.visits, key=lambda v: v.visit_time, reverse=True)
        sampled = sampled[:MAX_SAMPLED_VISITS]
        points = sum(self.visit_points(v, now) for v in sampled)
        return math.ceil(record.visit_count * math.ceil(points) / len(sampled))

    @staticmethod
    def visit_points(visit: Visit, now: int) -> float:
        bonus = TRANSITION_BONUS.get(visit.transition, 0)
        return age_weight(now - visit.visit_time) * bonus / 100


def age_weight(age_us: int) -> int:
    age_days = max(0, age_us) / DAY_US
    for max_days, weight in AGE_BUCKETS:
        if age_days <= max_days:
            return weight
    return OLDEST_WEIGHT
