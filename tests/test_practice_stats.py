from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from golfimprover.models import EffortScores
from golfimprover.services.practice_stats import (
    KeywordDrillClassifier,
    calculate_practice_streak,
    category_score,
    compute_auto_suggested_scores,
    dashboard_stats,
    dominant_focus,
    handicap_progress,
    month_bounds,
    month_name,
    previous_month,
    recap_note,
)


def _log(day: int, month: int = 5, **extra):
    return {'date': datetime(2024, month, day, 15, tzinfo=timezone.utc).isoformat(), **extra}


def test_streak_counts_consecutive_days_ending_today() -> None:
    logs = [_log(8), _log(10), _log(9), _log(9), _log(6)]

    assert calculate_practice_streak(logs, date(2024, 5, 10)) == 3


def test_streak_may_end_yesterday() -> None:
    logs = [_log(9), _log(8)]

    assert calculate_practice_streak(logs, date(2024, 5, 10)) == 2


def test_streak_breaks_when_latest_log_is_older_than_yesterday() -> None:
    logs = [_log(7), _log(6), _log(5)]

    assert calculate_practice_streak(logs, date(2024, 5, 10)) == 0


def test_streak_without_logs_is_zero() -> None:
    assert calculate_practice_streak([], date(2024, 5, 10)) == 0


def test_handicap_progress_halfway_to_lower_target() -> None:
    progress = handicap_progress(18.5, 14.2, 9.9)

    assert progress.percentage == pytest.approx(50.0)
    assert progress.has_improved is True
    assert progress.change == pytest.approx(4.3)


def test_handicap_progress_is_clamped() -> None:
    assert handicap_progress(18.0, 20.0, 10.0).percentage == 0.0
    assert handicap_progress(18.0, 8.0, 10.0).percentage == 100.0


def test_handicap_progress_with_no_distance() -> None:
    assert handicap_progress(12.0, 12.0, 12.0).percentage == 100.0
    assert handicap_progress(12.0, 13.0, 12.0).percentage == 0.0


@pytest.mark.parametrize(
    'name, expected',
    [
        ('Gate Putting Drill', 'puttingWork'),
        ('Green reading with chips', 'puttingWork'),
        ('Bunker blast', 'shortGameWork'),
        ('Driver tempo', 'fullSwingWork'),
        ('Pre-shot routine', 'mentalGame'),
        ('Core strength circuit', 'strengthTraining'),
        ('Hip stretch', 'mobilityExercises'),
        ('Tee Height Test', None),
    ],
)
def test_keyword_classifier(name, expected) -> None:
    assert KeywordDrillClassifier().classify(name) == expected


def test_category_score_bounds() -> None:
    assert category_score(0, 15) == 1
    assert category_score(4, 15) == 2
    assert category_score(15, 15) == 5
    assert category_score(40, 15) == 5


def test_auto_scores_for_empty_month_are_all_ones() -> None:
    scores = compute_auto_suggested_scores([])

    assert scores == EffortScores()


def test_auto_scores_count_drills_and_sessions() -> None:
    logs = [
        _log(day, drills=[{'name': 'Ladder putting'}, {'name': 'Chip and run'}])
        for day in range(1, 11)
    ]

    scores = compute_auto_suggested_scores(logs)

    assert scores.puttingWork == 4
    assert scores.shortGameWork == 4
    assert scores.fullSwingWork == 1
    assert scores.practiceSessions == 3
    for value in scores.model_dump().values():
        assert 1 <= value <= 5


def test_dominant_focus_prefers_first_on_tie() -> None:
    scores = EffortScores(practiceSessions=5, shortGameWork=3, puttingWork=3)

    assert dominant_focus(scores) == 'shortGameWork'


def test_recap_note_templates() -> None:
    assert recap_note('puttingWork', -0.5).startswith('Great progress this month! Your focus on putting')
    assert recap_note('mentalGame', -0.1).startswith('Solid month of improvement. Your mental game')
    assert recap_note('unknown', 0.2).startswith(
        'This month was challenging. Despite working on flexibility and mobility'
    )


def test_month_helpers() -> None:
    start, end = month_bounds('2024-02')

    assert start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert (end.year, end.month, end.day) == (2024, 2, 29)
    assert previous_month('2024-01') == '2023-12'
    assert month_name('2024-03') == 'March 2024'
    with pytest.raises(ValueError):
        previous_month('2024-13')


def test_dashboard_stats_combines_logs_profile_and_goal() -> None:
    logs = [_log(10, duration=45), _log(9, duration=30), _log(20, month=4, duration=60)]
    profile = {'handicap': 14.2}
    goals = [
        {'title': 'Hit more fairways', 'targetValue': 60},
        {'title': 'Reduce Handicap', 'startValue': 18.5, 'targetValue': 9.9},
    ]

    stats = dashboard_stats(logs, profile, goals, date(2024, 5, 10))

    assert stats.sessionsThisMonth == 2
    assert stats.totalTimeThisMonth == 75
    assert stats.currentStreak == 2
    assert stats.handicapProgress == pytest.approx(50.0)
    assert stats.hasImproved is True


def test_dashboard_stats_without_goal() -> None:
    stats = dashboard_stats([], None, [], date(2024, 5, 10)).to_dict()

    assert stats['handicapProgress'] == 0.0
    assert stats['currentStreak'] == 0
