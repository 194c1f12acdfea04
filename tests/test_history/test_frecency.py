"""Tests for frecency computation."""

from frecent_links.history.clock import VisitClock
from frecent_links.history.frecency import DAY_US, FrecencyEngine, age_weight
from frecent_links.history.models import Transition, UrlRecord, Visit

NOW_S = 1_700_000_000.0
NOW_US = int(NOW_S * 1_000_000)


def _engine():
    return FrecencyEngine(VisitClock(time_func=lambda: NOW_S))


def _record(*visits):
    record = UrlRecord(url="https://example.com", title="", frecency=-1, last_visit_time=0)
    for days_ago, transition in visits:
        record.visits.append(
            Visit(
                url=record.url,
                title="",
                visit_time=NOW_US - int(days_ago * DAY_US),
                transition=transition,
            )
        )
    return record


def test_no_visits_scores_zero():
    assert _engine().recompute(_record()) == 0


def test_single_visit_scores():
    engine = _engine()
    assert engine.recompute(_record((0, Transition.TYPED))) == 2000
    assert engine.recompute(_record((0, Transition.LINK))) == 100
    assert engine.recompute(_record((0, Transition.BOOKMARK))) == 75
    assert engine.recompute(_record((0, Transition.EMBED))) == 0


def test_typed_outranks_link():
    engine = _engine()
    for days in (0, 10, 60, 400):
        typed = engine.recompute(_record((days, Transition.TYPED)))
        link = engine.recompute(_record((days, Transition.LINK)))
        assert typed > link


def test_age_buckets():
    assert age_weight(0) == 100
    assert age_weight(2 * DAY_US) == 100
    assert age_weight(10 * DAY_US) == 70
    assert age_weight(20 * DAY_US) == 50
    assert age_weight(60 * DAY_US) == 30
    assert age_weight(365 * DAY_US) == 10
    # Visits in the future count as fresh.
    assert age_weight(-DAY_US) == 100


def test_older_never_scores_higher():
    engine = _engine()
    scores = [engine.recompute(_record((days, Transition.LINK))) for days in (0, 5, 20, 45, 120)]
    assert scores == sorted(scores, reverse=True)


def test_two_days_old_typed_ties_with_today():
    engine = _engine()
    assert engine.recompute(_record((0, Transition.TYPED))) == engine.recompute(
        _record((2, Transition.TYPED))
    )


def test_more_visits_raise_score():
    engine = _engine()
    one = engine.recompute(_record((0, Transition.LINK)))
    two = engine.recompute(_record((0, Transition.LINK), (30, Transition.LINK)))
    assert two > one
    assert two == 150


def test_only_recent_visits_are_sampled():
    engine = _engine()
    visits = [(0, Transition.LINK)] * 10 + [(365, Transition.TYPED)] * 2
    # 10 sampled LINK visits average 100 points, scaled by 12 visits.
    assert engine.recompute(_record(*visits)) == 1200
