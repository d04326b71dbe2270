"""Demo data: six months of plans, practice logs, recaps and goals for one user."""

from __future__ import annotations

import logging
import random
from calendar import monthrange
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import Drill, EffortScores, Goal, MonthlyRecap, PracticeLog, PracticePlan, PracticeSession
from .practice_stats import FOCUS_AREA_NAMES, format_month, month_name, recap_note
from .storage_service import StorageService

logger = logging.getLogger(__name__)

FOCUS_AREAS = [
    'Driver Accuracy',
    'Iron Control',
    'Short Game',
    'Putting',
    'Bunker Play',
    'Course Management',
    'Mental Game',
    'Full Swing',
    'Distance Control',
    'Wedge Play',
]

LOCATIONS = [
    'Driving Range',
    'Practice Green',
    'Short Game Area',
    'Indoor Facility',
    'Home',
    'Golf Course',
    'Simulator',
]

DRILLS: Dict[str, List[Dict[str, str]]] = {
    'Driver': [
        {'name': 'Tee Height Drill', 'description': 'Hit 10 drives with different tee heights to find optimal launch', 'goal': 'Find optimal tee height for driver', 'duration': '15 minutes'},
        {'name': 'Alignment Stick Path Drill', 'description': 'Place alignment sticks to create a proper swing path corridor', 'goal': 'Eliminate slice by improving swing path', 'duration': '20 minutes'},
        {'name': '3-2-1 Driver Drill', 'description': 'Hit 3 shots at 70% power, 2 at 85%, 1 at full power, repeat', 'goal': 'Build control before power', 'duration': '20 minutes'},
    ],
    'Iron': [
        {'name': 'Clock Face Drill', 'description': "Practice different length backswings (7, 9, and 11 o'clock positions)", 'goal': 'Improve distance control with partial swings', 'duration': '20 minutes'},
        {'name': 'One-Handed Iron Shots', 'description': 'Hit shots with just your lead hand, then just trail hand', 'goal': 'Improve hand coordination and feel', 'duration': '15 minutes'},
        {'name': 'Target Practice', 'description': 'Pick specific targets at different distances and hit 5 shots to each', 'goal': 'Improve accuracy and target focus', 'duration': '25 minutes'},
    ],
    'Putting': [
        {'name': 'Gate Drill', 'description': 'Set up tees as a gate just wider than putter head, practice putting through gate', 'goal': 'Improve putter face alignment', 'duration': '15 minutes'},
        {'name': 'Circle Drill', 'description': 'Place 6 balls in a circle around hole at 3-foot distance, make all to move on', 'goal': 'Build confidence on short putts', 'duration': '20 minutes'},
        {'name': 'Ladder Drill', 'description': 'Place balls at 10, 20, 30, 40 feet, focus on distance control', 'goal': 'Improve distance control on long putts', 'duration': '20 minutes'},
    ],
    'Short Game': [
        {'name': 'Landing Zone Practice', 'description': 'Pick landing spots for chips/pitches and land the ball on those spots', 'goal': 'Improve precision with landing zones', 'duration': '20 minutes'},
        {'name': 'Up-and-Down Challenge', 'description': 'Place 10 balls around the green and try to get up and down from each', 'goal': 'Improve scrambling ability', 'duration': '30 minutes'},
        {'name': 'Three Club Challenge', 'description': 'Use only 3 clubs to play shots from various positions', 'goal': 'Build creativity and adaptability', 'duration': '25 minutes'},
    ],
    'Bunker': [
        {'name': 'Line in Sand Drill', 'description': 'Draw a line in the sand and strike the sand behind it', 'goal': 'Control entry point in sand', 'duration': '15 minutes'},
        {'name': 'Different Lies Practice', 'description': 'Practice from uphill, downhill, and buried lies in bunker', 'goal': 'Handle varied bunker scenarios', 'duration': '20 minutes'},
    ],
    'Mental': [
        {'name': 'Pre-Shot Routine Practice', 'description': 'Develop and consistently execute a pre-shot routine for each shot', 'goal': 'Build consistency through routine', 'duration': '15 minutes'},
        {'name': 'Visualization Exercise', 'description': 'Before each shot, clearly visualize the entire shot from start to finish', 'goal': 'Improve mental imagery and focus', 'duration': '10 minutes'},
    ],
}

SESSION_TEMPLATES = [
    {'day': 'Monday', 'focus': 'Full Swing Technique', 'duration': '60 minutes', 'location': 'Driving Range',
     'warmup': '5 minutes of stretching, 5 minutes of half-swing practice with 8-iron',
     'drills': DRILLS['Driver'][:2] + DRILLS['Iron'][:1]},
    {'day': 'Wednesday', 'focus': 'Short Game Improvement', 'duration': '60 minutes', 'location': 'Short Game Area',
     'warmup': '5 minutes of stretching, 5 minutes of putting to warm up touch',
     'drills': DRILLS['Short Game'][:2] + DRILLS['Bunker'][:1]},
    {'day': 'Friday', 'focus': 'Putting Precision', 'duration': '45 minutes', 'location': 'Practice Green',
     'warmup': '5 minutes of gentle stretching, 5 minutes of very short putts to build confidence',
     'drills': DRILLS['Putting']},
    {'day': 'Saturday', 'focus': 'Complete Game Practice', 'duration': '90 minutes', 'location': 'Golf Course',
     'warmup': '10 minutes of dynamic stretching and short swings with multiple clubs',
     'drills': [DRILLS[name][0] for name in ('Driver', 'Iron', 'Short Game', 'Putting', 'Mental')]},
]

ACTIVITY_CATEGORIES = {
    'mental': ('Mental Game Exercise', 'focus and concentration'),
    'strength': ('Golf-Specific Strength Workout', 'core and rotational strength'),
    'mobility': ('Flexibility & Mobility Routine', 'hip and shoulder mobility'),
    'meditation': ('Pre-Round Visualization Session', 'mental imagery and course strategy'),
    'cardio': ('Cardio Fitness Training', 'overall fitness and endurance'),
}

GOAL_TEMPLATES = [
    ('Reduce Handicap', 'Work on lowering my handicap through consistent practice', None, 15.0, 'handicap'),
    ('Improve Putting', 'Reduce average putts per round', 36, 30, 'putting'),
    ('Increase Driving Accuracy', 'Hit more fairways off the tee', 40, 65, 'driving'),
    ('Practice Consistency', 'Practice at least 3 times per week', 1, 3, 'practice'),
    ('Improve Mental Game', 'Complete mental training exercises weekly', 0, 2, 'mental'),
]


def _add_months(value: date, months: int) -> date:
    index = value.year * 12 + value.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def _random_day(rng: random.Random, month_start: date) -> datetime:
    last_day = monthrange(month_start.year, month_start.month)[1]
    day = rng.randint(1, last_day)
    return datetime(month_start.year, month_start.month, day, rng.randint(7, 19), tzinfo=timezone.utc)


def _as_drill(template: Dict[str, str], completed: Optional[bool] = None) -> Drill:
    return Drill(completed=completed, **template)


def _practice_plan(rng: random.Random, month_start: date) -> PracticePlan:
    ai_generated = rng.random() > 0.3
    focus = rng.choice(FOCUS_AREAS)
    end = _add_months(month_start, 1)
    sessions = [
        PracticeSession(
            day=template['day'],
            focus=template['focus'],
            duration=template['duration'],
            location=template['location'],
            warmup=template['warmup'],
            drills=[_as_drill(drill) for drill in template['drills']],
        )
        for template in rng.sample(SESSION_TEMPLATES, rng.randint(2, len(SESSION_TEMPLATES)))
    ]
    label = 'AI-Generated' if ai_generated else 'Custom'
    return PracticePlan(
        title=f"{month_start.strftime('%B')} {label} Practice Plan",
        description=f'A structured plan focusing on improving {focus.lower()}.',
        goal=f'Improve {focus.lower()} to lower scores',
        focusAreas=[focus],
        sessions=sessions,
        timePerSession=rng.choice([45, 60, 90]),
        aiGenerated=ai_generated,
        startDate=datetime(month_start.year, month_start.month, 1, tzinfo=timezone.utc),
        endDate=datetime(end.year, end.month, 1, tzinfo=timezone.utc),
        createdAt=datetime(month_start.year, month_start.month, 1, tzinfo=timezone.utc),
    )


def _structured_log(rng: random.Random, when: datetime, plan_id: Optional[str]) -> PracticeLog:
    template = rng.choice(SESSION_TEMPLATES)
    drills = [_as_drill(drill, completed=rng.random() > 0.2) for drill in template['drills']]
    return PracticeLog(
        type='structured',
        sessionTitle=template['focus'],
        notes=f"Worked through the {template['focus'].lower()} session at the {rng.choice(LOCATIONS).lower()}.",
        rating=rng.randint(2, 5),
        duration=rng.randint(30, 90),
        drills=drills,
        planId=plan_id,
        date=when,
        createdAt=when,
    )


def _activity_log(rng: random.Random, when: datetime) -> PracticeLog:
    categories = rng.sample(sorted(ACTIVITY_CATEGORIES), rng.randint(1, 2))
    title, focus = ACTIVITY_CATEGORIES[categories[0]]
    return PracticeLog(
        type='activity',
        sessionTitle=title,
        notes=f'Completed {title.lower()} to support my golf game. Focused on {focus}.',
        rating=rng.randint(3, 5),
        duration=rng.randint(10, 59),
        categories=categories,
        date=when,
        createdAt=when,
    )


def _monthly_recap(rng: random.Random, month: str, handicap: float) -> MonthlyRecap:
    values = {'practiceSessions': rng.randint(3, 5)}
    for category in FOCUS_AREA_NAMES:
        values[category] = rng.randint(1, 5)
    focus = rng.choice(list(FOCUS_AREA_NAMES))
    values[focus] = min(5, values[focus] + rng.randint(1, 2))
    scores = EffortScores(**values)

    change = rng.random() * 0.7 - 0.5
    return MonthlyRecap(
        month=month,
        effortScores=scores,
        autoSuggestedScores=scores,
        handicapStartOfMonth=handicap,
        handicapEndOfMonth=round(max(0.0, handicap + change), 1),
        notes=recap_note(focus, change),
        autoGenerated=True,
        userReviewed=rng.random() > 0.3,
    )


def _goals(rng: random.Random, start: date, initial_handicap: float, months_passed: int) -> List[Goal]:
    goals = []
    for title, description, current, target, category in GOAL_TEMPLATES:
        start_value = initial_handicap if current is None else float(current)
        progress = (rng.random() * 0.15 + 0.1) * months_passed
        change = abs((target - start_value) * progress)
        if category == 'handicap':
            value = max(target, start_value - change)
        else:
            value = min(target, start_value + change)
        target_month = _add_months(start, rng.randint(3, 6))
        goals.append(
            Goal(
                title=title,
                description=description,
                category=category,
                startValue=start_value,
                currentValue=round(value, 1),
                targetValue=float(target),
                targetDate=datetime(target_month.year, target_month.month, 1, tzinfo=timezone.utc),
                createdAt=datetime(start.year, start.month, 1, tzinfo=timezone.utc),
            )
        )
    return goals


def populate_six_months_data(
    storage: StorageService,
    user_id: str,
    initial_handicap: float = 18.5,
    rng: Optional[random.Random] = None,
    clear_existing: bool = True,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Seed the six months before ``today`` with realistic practice history."""

    rng = rng or random.Random()
    today = today or datetime.now(timezone.utc).date()
    if clear_existing:
        storage.reset_user_tutorial(user_id, clear_data=True)

    start = _add_months(date(today.year, today.month, 1), -6)
    handicap = initial_handicap
    counts = {'plans': 0, 'logs': 0, 'recaps': 0, 'goals': 0}

    for offset in range(6):
        month_start = _add_months(start, offset)
        month = format_month(month_start)
        logger.info('Generating mock data for %s', month_name(month))

        plan_id = None
        if offset == 0 or rng.random() > 0.2:
            plan_id = storage.save_practice_plan(user_id, _practice_plan(rng, month_start))
            counts['plans'] += 1

        for _ in range(rng.randint(8, 16)):
            when = _random_day(rng, month_start)
            if rng.random() > 0.3:
                linked = plan_id if rng.random() > 0.4 else None
                storage.log_practice_session(user_id, _structured_log(rng, when, linked))
            else:
                storage.log_practice_session(user_id, _activity_log(rng, when))
            counts['logs'] += 1

        recap = _monthly_recap(rng, month, handicap)
        storage.save_monthly_recap(user_id, recap)
        counts['recaps'] += 1
        handicap = recap.handicapEndOfMonth

    for goal in _goals(rng, start, initial_handicap, 6):
        storage.add_goal(user_id, goal)
        counts['goals'] += 1

    storage.update_user_profile(user_id, {'handicap': handicap, 'hasCompletedTutorial': True})
    logger.info('Populated mock data for %s: %s', user_id, counts)
    return {'success': True, 'message': 'Successfully populated 6 months of data', 'counts': counts}
