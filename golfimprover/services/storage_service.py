from __future__ import annotations

import logging
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import StorageError
from ..models import (
    Feedback,
    Goal,
    MonthlyRecap,
    Notification,
    PracticeLog,
    PracticePlan,
    jsonable,
    to_iso,
    utcnow,
    validate_month,
)
from .document_store import DocumentStore

logger = logging.getLogger(__name__)

USER_COLLECTIONS = ('goals', 'practicePlans', 'practiceLogs', 'monthlyRecaps', 'notifications', 'feedback')
DEFAULT_TEST_HANDICAP = 18.5


def _store_operation(description: str):
    """Log store failures and re-raise them as :class:`StorageError`."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapped(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except (StorageError, ValueError):
                raise
            except Exception as exc:
                logger.error('Error %s: %s', description, exc, exc_info=True)
                raise StorageError(f'Error {description}') from exc

        return wrapped

    return decorator


def _without_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in jsonable(data).items() if value is not None}


def _without_empty(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in _without_none(data).items() if value != ''}


class StorageService:
    """Per-entity read and write operations over the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def store(self) -> DocumentStore:
        return self._store

    # --- User profiles ------------------------------------------------------

    @_store_operation('creating/updating user profile')
    def create_user_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        """Create the profile, or merge the supplied fields into an existing one."""

        profile = _without_none(data)
        profile.setdefault('hasCompletedTutorial', False)
        path = self._user_path(user_id)
        if self._store.get(path) is not None:
            logger.info('Profile exists for %s, updating', user_id)
            self._store.update(path, profile)
            return
        profile.setdefault('createdAt', to_iso(utcnow()))
        logger.info('Creating new profile for %s', user_id)
        self._store.set(path, profile)

    @_store_operation('reading user profile')
    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._store.get(self._user_path(user_id))

    @_store_operation('updating user profile')
    def update_user_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        """Upsert the profile without letting empty values overwrite stored ones."""

        clean = _without_empty(data)
        clean.pop('id', None)
        if not clean:
            logger.info('No valid data to update for %s', user_id)
            return

        path = self._user_path(user_id)
        if self._store.get(path) is None:
            clean.setdefault('createdAt', to_iso(utcnow()))
            self._store.set(path, clean)
        else:
            self._store.update(path, clean)

    @_store_operation('listing users')
    def list_user_ids(self) -> List[str]:
        return self._store.list_ids('users')

    # --- Goals --------------------------------------------------------------

    @_store_operation('adding goal')
    def add_goal(self, user_id: str, goal: Goal) -> str:
        return self._store.add(self._collection(user_id, 'goals'), goal.to_document())

    @_store_operation('reading goals')
    def get_user_goals(self, user_id: str) -> List[Dict[str, Any]]:
        return self._store.query(self._collection(user_id, 'goals'), order_by=[('createdAt', True)])

    # --- Practice plans -----------------------------------------------------

    @_store_operation('saving practice plan')
    def save_practice_plan(self, user_id: str, plan: PracticePlan) -> str:
        return self._store.add(self._collection(user_id, 'practicePlans'), plan.to_document())

    @_store_operation('reading practice plans')
    def get_user_practice_plans(self, user_id: str) -> List[Dict[str, Any]]:
        return self._store.query(
            self._collection(user_id, 'practicePlans'), order_by=[('createdAt', True)]
        )

    @_store_operation('reading practice plan')
    def get_practice_plan(self, user_id: str, plan_id: str) -> Optional[Dict[str, Any]]:
        return self._store.get(f"{self._collection(user_id, 'practicePlans')}/{plan_id}")

    # --- Practice logs ------------------------------------------------------

    @_store_operation('logging practice session')
    def log_practice_session(self, user_id: str, log: PracticeLog) -> str:
        return self._store.add(self._collection(user_id, 'practiceLogs'), log.to_document())

    @_store_operation('reading practice logs')
    def get_user_practice_logs(self, user_id: str) -> List[Dict[str, Any]]:
        return self._store.query(self._collection(user_id, 'practiceLogs'), order_by=[('date', True)])

    @_store_operation('reading practice logs for range')
    def get_practice_logs_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Dict[str, Any]]:
        return self._store.query(
            self._collection(user_id, 'practiceLogs'),
            where=[('date', '>=', to_iso(start)), ('date', '<=', to_iso(end))],
            order_by=[('date', True)],
        )

    # --- Monthly recaps -----------------------------------------------------

    @_store_operation('saving monthly recap')
    def save_monthly_recap(self, user_id: str, recap: MonthlyRecap) -> Tuple[str, bool]:
        """Insert the recap for its month, or merge it into the existing one.

        Returns ``(recap_id, created)``.
        """

        document = recap.to_document()
        recap_id, created = self._store.create_if_absent(
            self._collection(user_id, 'monthlyRecaps'), 'month', recap.month, document
        )
        if not created:
            # Merge supplied, non-empty fields only.
            update = _without_empty(
                {key: document[key] for key in recap.model_fields_set if key in document}
            )
            update.pop('createdAt', None)
            update['updatedAt'] = to_iso(utcnow())
            self._store.update(f"{self._collection(user_id, 'monthlyRecaps')}/{recap_id}", update)
        return recap_id, created

    @_store_operation('inserting monthly recap')
    def insert_monthly_recap_if_absent(self, user_id: str, recap: MonthlyRecap) -> Tuple[str, bool]:
        """Store the recap only when its month has none yet."""

        return self._store.create_if_absent(
            self._collection(user_id, 'monthlyRecaps'), 'month', recap.month, recap.to_document()
        )

    @_store_operation('updating monthly recap')
    def update_monthly_recap(self, user_id: str, recap_id: str, data: Dict[str, Any]) -> None:
        update = _without_none(data)
        update['updatedAt'] = to_iso(utcnow())
        self._store.update(f"{self._collection(user_id, 'monthlyRecaps')}/{recap_id}", update)

    @_store_operation('reading monthly recaps')
    def get_user_monthly_recaps(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._store.query(
            self._collection(user_id, 'monthlyRecaps'),
            order_by=[('month', True), ('createdAt', True)],
            limit=limit,
        )

    @_store_operation('reading monthly recap')
    def get_monthly_recap_by_month(self, user_id: str, month: str) -> Optional[Dict[str, Any]]:
        validate_month(month)
        results = self._store.query(
            self._collection(user_id, 'monthlyRecaps'), where=[('month', '==', month)], limit=1
        )
        return results[0] if results else None

    @_store_operation('confirming monthly recap')
    def confirm_monthly_recap(
        self,
        user_id: str,
        month: str,
        effort_scores: Dict[str, int],
        notes: Optional[str] = None,
    ) -> Optional[str]:
        """Record the user's reviewed scores; ``None`` when the month has no recap."""

        existing = self.get_monthly_recap_by_month(user_id, month)
        if existing is None:
            return None
        self.update_monthly_recap(
            user_id,
            existing['id'],
            {'effortScores': effort_scores, 'notes': notes, 'userReviewed': True},
        )
        return existing['id']

    # --- Notifications ------------------------------------------------------

    @_store_operation('adding notification')
    def add_notification(self, user_id: str, notification: Notification) -> str:
        return self._store.add(self._collection(user_id, 'notifications'), notification.to_document())

    @_store_operation('reading notifications')
    def get_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._store.query(
            self._collection(user_id, 'notifications'), order_by=[('timestamp', True)], limit=limit
        )

    @_store_operation('marking notification read')
    def mark_notification_read(self, user_id: str, notification_id: str) -> None:
        self._store.update(
            f"{self._collection(user_id, 'notifications')}/{notification_id}", {'read': True}
        )

    @_store_operation('marking notifications read')
    def mark_all_notifications_read(self, user_id: str) -> int:
        unread = self._store.query(
            self._collection(user_id, 'notifications'), where=[('read', '==', False)]
        )
        for item in unread:
            self._store.update(f"{self._collection(user_id, 'notifications')}/{item['id']}", {'read': True})
        return len(unread)

    def subscribe_notifications(
        self, user_id: str, callback: Callable[[List[Dict[str, Any]]], None]
    ) -> Callable[[], None]:
        """Push the user's notifications, newest first, on every change."""

        return self._store.watch(
            self._collection(user_id, 'notifications'), callback, order_by=[('timestamp', True)]
        )

    # --- Feedback -----------------------------------------------------------

    @_store_operation('adding feedback')
    def add_feedback(self, feedback: Feedback) -> str:
        document = feedback.to_document()
        if feedback.userId:
            self._store.add(self._collection(feedback.userId, 'feedback'), document)
        return self._store.add('feedback', document)

    @_store_operation('getting feedback')
    def get_feedback(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        where = [('status', '==', status)] if status else []
        return self._store.query('feedback', where=where, order_by=[('createdAt', True)])

    # --- Tutorial -----------------------------------------------------------

    @_store_operation('resetting user tutorial and data')
    def reset_user_tutorial(self, user_id: str, clear_data: bool = False) -> None:
        self.update_user_profile(user_id, {'hasCompletedTutorial': False})
        if not clear_data:
            return

        for name in USER_COLLECTIONS:
            collection = self._collection(user_id, name)
            for doc in self._store.query(collection):
                self._store.delete(f"{collection}/{doc['id']}")

        self.update_user_profile(
            user_id,
            {
                'hasCompletedTutorial': False,
                'handicap': DEFAULT_TEST_HANDICAP,
                'createdAt': to_iso(utcnow()),
            },
        )

    # --- Private helpers -------------------------------------------------

    @staticmethod
    def _user_path(user_id: str) -> str:
        if not user_id or '/' in user_id:
            raise ValueError('Invalid user id')
        return f'users/{user_id}'

    def _collection(self, user_id: str, name: str) -> str:
        return f'{self._user_path(user_id)}/{name}'
