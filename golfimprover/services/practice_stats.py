"""Practice statistics: streaks, handicap progress and suggested effort scores."""

from __future__ import annotations

import math
from calendar import monthrange
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..models import EFFORT_CATEGORIES, EffortScores, parse_iso, validate_month

# Expected monthly volume that earns a 5 in each category.
MAX_SESSIONS_PER_MONTH = 20
CATEGORY_EXPECTED_MAX: Dict[str, int] = {
    'fullSwingWork': 15,
    'shortGameWork': 15,
    'puttingWork': 15,
    'mentalGame': 10,
    'strengthTraining': 12,
    'mobilityExercises': 12,
}

FOCUS_AREA_NAMES: Dict[str, str] = {
    'fullSwingWork': 'full swing',
    'shortGameWork': 'short game',
    'puttingWork': 'putting',
    'mentalGame': 'mental game',
    'strengthTraining': 'strength training',
    'mobilityExercises': 'flexibility and mobility',
}


# --- Months -------------------------------------------------------------

def parse_month(month: str) -> Tuple[int, int]:
    validate_month(month)
    year, month_num = month.split('-')
    return int(year), int(month_num)


def format_month(value: date) -> str:
    return f'{value.year:04d}-{value.month:02d}'


def previous_month(month: str) -> str:
    year, month_num = parse_month(month)
    if month_num == 1:
        return f'{year - 1:04d}-12'
    return f'{year:04d}-{month_num - 1:02d}'


def month_bounds(month: str) -> Tuple[datetime, datetime]:
    """Return the first and last instants of ``month`` in UTC."""

    year, month_num = parse_month(month)
    last_day = monthrange(year, month_num)[1]
    start = datetime(year, month_num, 1, tzinfo=timezone.utc)
    end = datetime(year, month_num, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end


def month_name(month: str) -> str:
    year, month_num = parse_month(month)
    return date(year, month_num, 1).strftime('%B %Y')


def _log_day(log: Mapping[str, Any]) -> Optional[date]:
    moment = parse_iso(log.get('date'))
    return moment.date() if moment else None


# --- Streaks ----------------------------------------------------------------

def calculate_practice_streak(logs: Iterable[Mapping[str, Any]], today: date) -> int:
    """Count consecutive practice days ending today or yesterday.

    A most recent log older than yesterday breaks the streak. Several logs on
    the same day count once.
    """

    days = sorted({day for day in (_log_day(log) for log in logs) if day is not None}, reverse=True)
    if not days:
        return 0

    if (today - days[0]).days > 1:
        return 0

    streak = 1
    current = days[0]
    for day in days[1:]:
        if day == current - timedelta(days=1):
            streak += 1
            current = day
        else:
            break
    return streak


# --- Handicap progress ------------------------------------------------------

@dataclass(frozen=True)
class HandicapProgress:
    percentage: float
    has_improved: bool
    change: float


def handicap_progress(start: float, current: float, target: float) -> HandicapProgress:
    """Share of the distance from ``start`` to ``target`` covered, clamped to [0, 100].

    A target below the start means the golfer is trying to lower the value.
    """

    if target < start:
        needed = start - target
        travelled = start - current
        has_improved = current < start
    else:
        needed = target - start
        travelled = current - start
        has_improved = current > start

    if needed == 0:
        percentage = 100.0 if current == target else 0.0
    else:
        percentage = min(100.0, max(0.0, travelled / needed * 100))
    return HandicapProgress(percentage=percentage, has_improved=has_improved, change=travelled)


# --- Drill classification ---------------------------------------------------

class DrillClassifier:
    """Maps a drill name to an effort category."""

    def classify(self, drill_name: str) -> Optional[str]:
        """Return the effort category for a drill name, or ``None``."""
        raise NotImplementedError


class KeywordDrillClassifier(DrillClassifier):
    """Substring matching on drill names; the first matching category wins."""

    DEFAULT_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
        ('puttingWork', ('putt', 'green')),
        ('shortGameWork', ('chip', 'pitch', 'bunker')),
        ('fullSwingWork', ('swing', 'drive', 'iron')),
        ('mentalGame', ('mental', 'routine', 'visualization')),
        ('strengthTraining', ('strength', 'fitness')),
        ('mobilityExercises', ('mobility', 'stretch')),
    )

    def __init__(self, keywords: Optional[Sequence[Tuple[str, Sequence[str]]]] = None) -> None:
        self._keywords = tuple(
            (category, tuple(word.lower() for word in words))
            for category, words in (keywords or self.DEFAULT_KEYWORDS)
        )

    def classify(self, drill_name: str) -> Optional[str]:
        name = (drill_name or '').lower()
        for category, words in self._keywords:
            if any(word in name for word in words):
                return category
        return None


# --- Effort scores ----------------------------------------------------------

def category_score(count: int, expected_max: int) -> int:
    return min(5, max(1, math.ceil(count / (expected_max / 5))))


def count_drill_categories(
    logs: Iterable[Mapping[str, Any]], classifier: Optional[DrillClassifier] = None
) -> Dict[str, int]:
    classifier = classifier or KeywordDrillClassifier()
    counts = {category: 0 for category in CATEGORY_EXPECTED_MAX}
    for log in logs:
        for drill in log.get('drills') or []:
            name = drill.get('name') if isinstance(drill, Mapping) else None
            category = classifier.classify(name or '')
            if category in counts:
                counts[category] += 1
    return counts


def compute_auto_suggested_scores(
    logs: Sequence[Mapping[str, Any]], classifier: Optional[DrillClassifier] = None
) -> EffortScores:
    """Suggest 1-5 effort scores for a month of practice logs."""

    counts = count_drill_categories(logs, classifier)
    scores = {
        category: category_score(counts[category], expected)
        for category, expected in CATEGORY_EXPECTED_MAX.items()
    }
    scores['practiceSessions'] = category_score(len(logs), MAX_SESSIONS_PER_MONTH)
    return EffortScores(**scores)


def dominant_focus(scores: EffortScores) -> str:
    """Highest scoring practice category; ties go to the earlier category."""

    values = scores.model_dump()
    categories = [category for category in EFFORT_CATEGORIES if category != 'practiceSessions']
    return max(categories, key=lambda category: values[category])


def recap_note(focus_area: str, handicap_change: float) -> str:
    """Canned recap sentence; a negative change means the handicap went down."""

    area = FOCUS_AREA_NAMES.get(focus_area, 'flexibility and mobility')
    if handicap_change < -0.3:
        return f'Great progress this month! Your focus on {area} is really paying off. Keep up the good work!'
    if handicap_change < 0:
        return f"Solid month of improvement. Your {area} work is showing progress, but there's still room to grow."
    return (
        f'This month was challenging. Despite working on {area}, you may need to adjust your '
        "practice approach. Don't get discouraged!"
    )


# --- Dashboard --------------------------------------------------------------

@dataclass(frozen=True)
class DashboardStats:
    sessionsThisMonth: int = 0
    totalTimeThisMonth: int = 0
    currentStreak: int = 0
    handicapProgress: float = 0.0
    hasImproved: bool = False
    handicapChange: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def find_handicap_goal(goals: Iterable[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    for goal in goals:
        if 'handicap' in str(goal.get('title', '')).lower():
            return goal
    return None


def dashboard_stats(
    logs: Sequence[Mapping[str, Any]],
    profile: Optional[Mapping[str, Any]],
    goals: Sequence[Mapping[str, Any]],
    today: date,
) -> DashboardStats:
    this_month = logs_in_month(logs, format_month(today))
    total_time = 0
    for log in this_month:
        try:
            total_time += int(log.get('duration') or 0)
        except (TypeError, ValueError):
            continue

    progress = HandicapProgress(percentage=0.0, has_improved=False, change=0.0)
    handicap = (profile or {}).get('handicap')
    goal = find_handicap_goal(goals)
    if goal is not None and handicap is not None and goal.get('targetValue') is not None:
        start = goal.get('startValue')
        if start is None:
            start = handicap
        progress = handicap_progress(float(start), float(handicap), float(goal['targetValue']))

    return DashboardStats(
        sessionsThisMonth=len(this_month),
        totalTimeThisMonth=total_time,
        currentStreak=calculate_practice_streak(logs, today),
        handicapProgress=progress.percentage,
        hasImproved=progress.has_improved,
        handicapChange=progress.change,
    )


def logs_in_month(logs: Iterable[Mapping[str, Any]], month: str) -> List[Mapping[str, Any]]:
    year, month_num = parse_month(month)
    selected = []
    for log in logs:
        day = _log_day(log)
        if day is not None and (day.year, day.month) == (year, month_num):
            selected.append(log)
    return selected
