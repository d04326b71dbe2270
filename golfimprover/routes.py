from __future__ import annotations

import json
import logging
import queue
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

from flask import Blueprint, Response, current_app, g, request, session
from pydantic import ValidationError

from .errors import StorageError
from .models import EffortScores, Feedback, Goal, MonthlyRecap, PracticeLog, PracticePlan, parse_iso
from .services.auth_service import OAUTH_PROVIDERS, AuthSession
from .services.mock_data import populate_six_months_data
from .services.practice_stats import dashboard_stats, logs_in_month
from .utils.auth import AuthError, verify_bearer_secret

main_bp = Blueprint('main', __name__)

logger = logging.getLogger(__name__)

STREAM_KEEPALIVE_SECONDS = 15


# --- Request helpers ----------------------------------------------------------

def _auth_session() -> AuthSession:
    """Authentication state for this request, restored from the server-side session."""

    auth_session = AuthSession(current_app.auth_service)
    auth_session.resolve(session.get('user'))
    return auth_session


def login_required(view):
    """Decorator answering 401 JSON unless a user is signed in."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        try:
            g.user = _auth_session().require_user()
        except AuthError:
            return {'error': 'Unauthorized'}, 401
        return view(*args, **kwargs)

    return wrapped


def _user_id() -> str:
    return g.user['id']


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _remember_user(user: Dict[str, Any]) -> None:
    session['user'] = user
    session.modified = True


# --- Error translation --------------------------------------------------------

@main_bp.errorhandler(StorageError)
def handle_storage_error(exc: StorageError):
    return {'error': str(exc)}, 500


@main_bp.errorhandler(AuthError)
def handle_auth_error(exc: AuthError):
    return {'error': exc.user_message, 'code': exc.code}, exc.status_code


@main_bp.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    return {
        'error': 'Invalid request',
        'details': exc.errors(include_url=False, include_context=False, include_input=False),
    }, 400


@main_bp.app_errorhandler(404)
def handle_not_found(exc):
    return {'error': 'Not found'}, 404


@main_bp.app_errorhandler(405)
def handle_method_not_allowed(exc):
    return {'error': 'Method not allowed'}, 405


# --- Service endpoints --------------------------------------------------------

@main_bp.route('/api/admin/generate-recaps', methods=['POST'])
def admin_generate_recaps():
    try:
        verify_bearer_secret(request.headers.get('Authorization'), current_app.settings.admin_api_key)
    except AuthError:
        logger.warning('admin.generate_recaps.unauthorized')
        return {'error': 'Unauthorized'}, 401

    month = _payload().get('month')
    try:
        summary = current_app.recap_service.generate_monthly_recaps(month)
    except ValueError as exc:
        return {'error': str(exc)}, 400
    except Exception as exc:
        logger.exception('admin.generate_recaps.error')
        return {'error': str(exc)}, 500

    return {'success': True, **summary}


@main_bp.route('/api/cron/monthly-recaps')
def cron_monthly_recaps():
    try:
        verify_bearer_secret(request.headers.get('Authorization'), current_app.settings.cron_secret)
    except AuthError:
        logger.warning('cron.monthly_recaps.unauthorized')
        return {'error': 'Unauthorized'}, 401

    try:
        summary = current_app.recap_service.generate_monthly_recaps()
    except Exception as exc:
        logger.exception('cron.monthly_recaps.error')
        return {'error': str(exc)}, 500
    return {'success': True, **summary}


@main_bp.route('/api/admin/feedback')
def admin_list_feedback():
    try:
        verify_bearer_secret(request.headers.get('Authorization'), current_app.settings.admin_api_key)
    except AuthError:
        logger.warning('admin.feedback.unauthorized')
        return {'error': 'Unauthorized'}, 401

    status = request.args.get('status') or None
    return {'feedback': current_app.storage_service.get_feedback(status)}


@main_bp.route('/api/openai', methods=['POST'])
def generate_content():
    payload = _payload()
    prompt = payload.get('prompt')
    content_type = payload.get('type')
    if not prompt:
        return {'error': 'Prompt is required'}, 400

    try:
        response = current_app.ai_service.complete_json(prompt, content_type or 'content')
    except Exception as exc:
        logger.error('openai.generate_content.error: %s', exc)
        return {'error': f'Failed to generate content: {exc}'}, 500

    return {'response': response, 'type': content_type}


# --- Authentication -----------------------------------------------------------

@main_bp.route('/api/auth/signup', methods=['POST'])
def signup():
    payload = _payload()
    user = _auth_session().sign_up(
        payload.get('email', ''), payload.get('password', ''), payload.get('name')
    )
    _remember_user(user)
    return {'user': user}, 201


@main_bp.route('/api/auth/login', methods=['POST'])
def login():
    payload = _payload()
    user = _auth_session().sign_in(payload.get('email', ''), payload.get('password', ''))
    _remember_user(user)
    return {'user': user}


@main_bp.route('/api/auth/logout', methods=['POST'])
def logout():
    _auth_session().logout()
    session.clear()
    return {'success': True}


@main_bp.route('/api/auth/oauth/<provider>')
def oauth_start(provider: str):
    if provider not in OAUTH_PROVIDERS:
        return {'error': 'Unsupported provider'}, 404

    auth_session = _auth_session()
    redirect_to = request.args.get('redirect_to')
    if provider == 'google':
        return auth_session.sign_in_with_google(redirect_to)
    return auth_session.sign_in_with_apple(redirect_to)


@main_bp.route('/api/auth/session')
def current_session():
    auth_session = _auth_session()
    return {'user': auth_session.current_user, 'loading': auth_session.loading}


# --- Profile ------------------------------------------------------------------

@main_bp.route('/api/profile')
@login_required
def get_profile():
    profile = current_app.storage_service.get_user_profile(_user_id())
    if profile is None:
        return {'error': 'Profile not found'}, 404
    return {'profile': profile}


@main_bp.route('/api/profile', methods=['PATCH'])
@login_required
def update_profile():
    payload = _payload()
    changes: Dict[str, Any] = {'name': payload.get('name')}
    if payload.get('handicap') not in (None, ''):
        try:
            handicap = float(payload['handicap'])
        except (TypeError, ValueError):
            return {'error': 'Handicap must be a number'}, 400
        if not -10 <= handicap <= 54:
            return {'error': 'Handicap must be between -10 and 54'}, 400
        changes['handicap'] = handicap

    storage = current_app.storage_service
    storage.update_user_profile(_user_id(), changes)
    if changes.get('name'):
        _remember_user({**g.user, 'name': changes['name']})
    return {'profile': storage.get_user_profile(_user_id())}


@main_bp.route('/api/profile/tutorial/complete', methods=['POST'])
@login_required
def complete_tutorial():
    current_app.storage_service.update_user_profile(_user_id(), {'hasCompletedTutorial': True})
    return {'success': True}


@main_bp.route('/api/profile/tutorial/reset', methods=['POST'])
@login_required
def reset_tutorial():
    clear_data = bool(_payload().get('clearData'))
    current_app.storage_service.reset_user_tutorial(_user_id(), clear_data=clear_data)
    logger.info('profile.tutorial_reset', extra={'user_id': _user_id(), 'clear_data': clear_data})
    return {'success': True}


@main_bp.route('/api/profile/mock-data', methods=['POST'])
@login_required
def generate_mock_data():
    payload = _payload()
    try:
        initial_handicap = float(payload.get('initialHandicap', 18.5))
    except (TypeError, ValueError):
        return {'error': 'initialHandicap must be a number'}, 400
    result = populate_six_months_data(
        current_app.storage_service,
        _user_id(),
        initial_handicap=initial_handicap,
        clear_existing=payload.get('clearExisting', True) is not False,
    )
    return result, 201


# --- Goals --------------------------------------------------------------------

@main_bp.route('/api/goals')
@login_required
def list_goals():
    return {'goals': current_app.storage_service.get_user_goals(_user_id())}


@main_bp.route('/api/goals', methods=['POST'])
@login_required
def create_goal():
    goal = Goal.model_validate(_payload())
    if goal.startValue is None and goal.currentValue is not None:
        goal = goal.model_copy(update={'startValue': goal.currentValue})
    goal_id = current_app.storage_service.add_goal(_user_id(), goal)
    return {'id': goal_id}, 201


# --- Practice plans -----------------------------------------------------------

@main_bp.route('/api/practice/plans')
@login_required
def list_practice_plans():
    return {'plans': current_app.storage_service.get_user_practice_plans(_user_id())}


@main_bp.route('/api/practice/plans', methods=['POST'])
@login_required
def create_practice_plan():
    plan = PracticePlan.model_validate(_payload())
    plan_id = current_app.storage_service.save_practice_plan(_user_id(), plan)
    return {'id': plan_id}, 201


@main_bp.route('/api/practice/plans/<plan_id>')
@login_required
def get_practice_plan(plan_id: str):
    plan = current_app.storage_service.get_practice_plan(_user_id(), plan_id)
    if plan is None:
        return {'error': 'Practice plan not found'}, 404
    return {'plan': plan}


@main_bp.route('/api/practice/plans/generate', methods=['POST'])
@login_required
def generate_practice_plan():
    payload = _payload()
    storage = current_app.storage_service

    handicap = payload.get('handicap')
    if handicap is None:
        handicap = (storage.get_user_profile(_user_id()) or {}).get('handicap')
    if handicap is None:
        return {'error': 'Handicap is required'}, 400

    try:
        sessions_per_week = int(payload.get('sessionsPerWeek', 3))
        time_per_session = int(payload.get('timePerSession', 60))
    except (TypeError, ValueError):
        return {'error': 'sessionsPerWeek and timePerSession must be numbers'}, 400

    start_date = parse_iso(payload.get('startDate')) or datetime.now(timezone.utc)
    end_date = parse_iso(payload.get('endDate')) or start_date + timedelta(days=7)
    if end_date < start_date:
        return {'error': 'endDate must not be before startDate'}, 400

    result = current_app.ai_service.generate_practice_plan(
        handicap=handicap,
        sessions_per_week=sessions_per_week,
        description=payload.get('description', ''),
        time_availability=payload.get('timeAvailability', ''),
        focus_area=payload.get('focusArea') or 'Mixed',
        end_date=payload.get('endDate'),
    )
    if result.error or result.parsed_data is None:
        logger.warning('practice.generate_plan.failed', extra={'user_id': _user_id(), 'error': result.error})
        return {'error': result.error or 'No plan returned', 'response': result.response}, 502

    plan = current_app.ai_service.practice_plan_document(
        result.parsed_data, time_per_session, start_date, end_date
    )
    plan_id = storage.save_practice_plan(_user_id(), plan)
    return {'id': plan_id, 'plan': plan.to_document()}, 201


# --- Practice logs ------------------------------------------------------------

@main_bp.route('/api/practice/logs')
@login_required
def list_practice_logs():
    return {'logs': current_app.storage_service.get_user_practice_logs(_user_id())}


@main_bp.route('/api/practice/logs', methods=['POST'])
@login_required
def create_practice_log():
    payload = _payload()
    draft_notes = bool(payload.pop('generateNotes', False))
    log = PracticeLog.model_validate(payload)

    if draft_notes and not log.notes:
        category = (log.categories or [log.sessionTitle])[0]
        result = current_app.ai_service.generate_practice_log_content(
            category, log.duration, log.rating or 3
        )
        if result.parsed_data:
            log = log.model_copy(update={'notes': str(result.parsed_data.get('session_summary', ''))})

    log_id = current_app.storage_service.log_practice_session(_user_id(), log)
    return {'id': log_id, 'notes': log.notes}, 201


# --- Monthly recaps -----------------------------------------------------------

@main_bp.route('/api/recaps')
@login_required
def list_recaps():
    limit = request.args.get('limit', type=int)
    return {'recaps': current_app.storage_service.get_user_monthly_recaps(_user_id(), limit=limit)}


@main_bp.route('/api/recaps/<month>')
@login_required
def get_recap(month: str):
    try:
        recap = current_app.storage_service.get_monthly_recap_by_month(_user_id(), month)
    except ValueError as exc:
        return {'error': str(exc)}, 400
    if recap is None:
        return {'error': 'Recap not found'}, 404
    return {'recap': recap}


@main_bp.route('/api/recaps', methods=['POST'])
@login_required
def save_recap():
    recap = MonthlyRecap.model_validate(_payload())
    recap_id, created = current_app.storage_service.save_monthly_recap(_user_id(), recap)
    return {'id': recap_id, 'created': created}, 201 if created else 200


@main_bp.route('/api/recaps/<month>/confirm', methods=['POST'])
@login_required
def confirm_recap(month: str):
    payload = _payload()
    scores = EffortScores.model_validate(payload.get('effortScores') or {})
    try:
        recap_id = current_app.storage_service.confirm_monthly_recap(
            _user_id(), month, scores.to_document(), payload.get('notes')
        )
    except ValueError as exc:
        return {'error': str(exc)}, 400
    if recap_id is None:
        return {'error': 'Recap not found'}, 404
    return {'id': recap_id, 'userReviewed': True}


@main_bp.route('/api/recaps/<month>/generate', methods=['POST'])
@login_required
def generate_recap(month: str):
    recap_service = current_app.recap_service
    if _payload().get('refresh'):
        try:
            return recap_service.manual_generate_recap(_user_id(), month)
        except ValueError as exc:
            return {'error': str(exc)}, 400
        except LookupError as exc:
            return {'error': str(exc)}, 404

    result = recap_service.generate_user_monthly_recap(_user_id(), month)
    if result['success']:
        return result, 201
    if result.get('recapId'):
        return result, 409
    return result, 400


@main_bp.route('/api/recaps/<month>/narrative', methods=['POST'])
@login_required
def recap_narrative(month: str):
    storage = current_app.storage_service
    try:
        recap = storage.get_monthly_recap_by_month(_user_id(), month)
    except ValueError as exc:
        return {'error': str(exc)}, 400
    if recap is None:
        return {'error': 'Recap not found'}, 404

    completed = len(logs_in_month(storage.get_user_practice_logs(_user_id()), month))
    try:
        scheduled = int(_payload().get('scheduledSessions', completed))
    except (TypeError, ValueError):
        return {'error': 'scheduledSessions must be a number'}, 400

    result = current_app.ai_service.generate_monthly_recap(
        completed_sessions=completed,
        scheduled_sessions=scheduled,
        effort_scores=recap.get('effortScores') or {},
        start_handicap=recap.get('handicapStartOfMonth'),
        end_handicap=recap.get('handicapEndOfMonth'),
    )
    return result.to_dict(), 200 if result.error is None else 502


# --- Notifications ------------------------------------------------------------

@main_bp.route('/api/notifications')
@login_required
def list_notifications():
    limit = request.args.get('limit', type=int)
    return {'notifications': current_app.storage_service.get_notifications(_user_id(), limit=limit)}


@main_bp.route('/api/notifications/<notification_id>/read', methods=['POST'])
@login_required
def mark_notification_read(notification_id: str):
    current_app.storage_service.mark_notification_read(_user_id(), notification_id)
    return {'success': True}


@main_bp.route('/api/notifications/read-all', methods=['POST'])
@login_required
def mark_all_notifications_read():
    updated = current_app.storage_service.mark_all_notifications_read(_user_id())
    return {'success': True, 'updated': updated}


@main_bp.route('/api/notifications/stream')
@login_required
def notification_stream():
    """Server-sent events: the full notification list on every change.

    Changes are pushed by the document store's in-process ``watch``, so only
    writes made by this server process reach the stream. Notifications written
    elsewhere (the cron invocation on a Supabase backend, for instance) show up
    on the next ``GET /api/notifications`` or when the client reconnects.
    """

    storage = current_app.storage_service
    user_id = _user_id()
    updates: 'queue.Queue[list]' = queue.Queue()
    unsubscribe = storage.subscribe_notifications(user_id, updates.put)

    def events():
        try:
            while True:
                try:
                    snapshot = updates.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ': keepalive\n\n'
                    continue
                unread = sum(1 for item in snapshot if not item.get('read'))
                yield f"data: {json.dumps({'notifications': snapshot, 'unread': unread})}\n\n"
        finally:
            unsubscribe()

    response = Response(events(), mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-store'
    response.headers['X-Accel-Buffering'] = 'no'
    return response


# --- Feedback & dashboard -----------------------------------------------------

@main_bp.route('/api/feedback', methods=['POST'])
def submit_feedback():
    user: Optional[Dict[str, Any]] = session.get('user')
    payload = _payload()
    feedback = Feedback.model_validate(
        {
            'type': payload.get('type', 'general'),
            'message': payload.get('message', ''),
            'deviceInfo': payload.get('deviceInfo') or request.headers.get('User-Agent'),
            'userId': user.get('id') if user else None,
            'userEmail': user.get('email') if user else None,
        }
    )
    feedback_id = current_app.storage_service.add_feedback(feedback)
    return {'id': feedback_id}, 201


@main_bp.route('/api/dashboard')
@login_required
def dashboard():
    storage = current_app.storage_service
    user_id = _user_id()
    logs = storage.get_user_practice_logs(user_id)
    stats = dashboard_stats(
        logs,
        storage.get_user_profile(user_id),
        storage.get_user_goals(user_id),
        datetime.now(timezone.utc).date(),
    )
    return {'stats': stats.to_dict(), 'recentLogs': logs[:5]}
