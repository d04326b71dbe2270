"""Monthly recap generation: the scheduled batch job and its single-user variants."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo

from ..config import RecapJobConfig
from ..errors import GolfImproverError
from ..models import EffortScores, MonthlyRecap, Notification, validate_month
from .mailer import Mailer
from .practice_stats import (
    compute_auto_suggested_scores,
    dominant_focus,
    format_month,
    month_bounds,
    month_name,
    previous_month,
    recap_note,
)
from .storage_service import StorageService

logger = logging.getLogger(__name__)

DEFAULT_HANDICAP = 18.0

CREATED = 'created'
SKIPPED = 'skipped'
FAILED = 'failed'


class RecapService:
    """Builds monthly recaps from practice logs and notifies the golfer."""

    def __init__(
        self,
        storage: StorageService,
        mailer: Optional[Mailer] = None,
        config: Optional[RecapJobConfig] = None,
    ) -> None:
        self._storage = storage
        self._config = config or RecapJobConfig()
        self._mailer = mailer or Mailer(app_url=self._config.app_url)

    def default_month(self, now: Optional[datetime] = None) -> str:
        """The calendar month before ``now`` in the configured timezone."""

        local_now = (now or datetime.now(ZoneInfo(self._config.timezone))).astimezone(
            ZoneInfo(self._config.timezone)
        )
        return previous_month(format_month(local_now.date()))

    # --- Batch job ------------------------------------------------------------

    def generate_monthly_recaps(self, month: Optional[str] = None) -> Dict[str, Any]:
        """Create the recap for ``month`` for every user who does not have one yet.

        One user's failure is logged and counted; it never stops the others.
        """

        month = validate_month(month) if month else self.default_month()
        user_ids = self._storage.list_user_ids()
        logger.info('Generating %s recaps for %d users', month, len(user_ids))

        outcomes = asyncio.run(self._process_users(user_ids, month))
        summary = {
            'month': month,
            'recapsGenerated': outcomes.count(CREATED),
            'skipped': outcomes.count(SKIPPED),
            'failed': outcomes.count(FAILED),
        }
        logger.info('Monthly recap generation completed: %s', summary)
        return summary

    async def _process_users(self, user_ids, month: str):
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))

        async def run_one(user_id: str) -> str:
            async with semaphore:
                try:
                    return await asyncio.to_thread(self._generate_for_user, user_id, month)
                except Exception:
                    logger.exception('Error processing user %s', user_id)
                    return FAILED

        return await asyncio.gather(*(run_one(user_id) for user_id in user_ids))

    def _generate_for_user(self, user_id: str, month: str) -> str:
        profile = self._storage.get_user_profile(user_id)
        if profile is None:
            return SKIPPED

        if self._storage.get_monthly_recap_by_month(user_id, month) is not None:
            logger.info('Monthly recap for %s already exists for user %s', month, user_id)
            return SKIPPED

        scores = self._suggested_scores(user_id, month)

        current = profile.get('handicap')
        if current is None:
            logger.info('Skipping recap for user %s - no handicap data', user_id)
            return SKIPPED
        current = float(current)

        last_recap = self._storage.get_monthly_recap_by_month(user_id, previous_month(month))
        start = float(last_recap['handicapEndOfMonth']) if last_recap else current

        recap = MonthlyRecap(
            month=month,
            effortScores=scores,
            autoSuggestedScores=scores,
            handicapStartOfMonth=start,
            handicapEndOfMonth=current,
            notes=recap_note(dominant_focus(scores), current - start),
            autoGenerated=True,
            userReviewed=False,
        )
        _, created = self._storage.insert_monthly_recap_if_absent(user_id, recap)
        if not created:
            logger.info('Recap for %s was created concurrently for user %s', month, user_id)
            return SKIPPED

        logger.info('Created monthly recap for user %s for %s', user_id, month)
        self._notify_recap_ready(user_id, profile, month)
        return CREATED

    # --- Single-user variants --------------------------------------------

    def manual_generate_recap(self, user_id: str, month: str) -> Dict[str, Any]:
        """Regenerate one user's recap; an existing recap gets fresh suggestions.

        Raises ``ValueError`` for a malformed month and ``LookupError`` when the
        user has no profile.
        """

        validate_month(month)
        profile = self._storage.get_user_profile(user_id)
        if profile is None:
            raise LookupError('User data not found')

        scores = self._suggested_scores(user_id, month)
        existing = self._storage.get_monthly_recap_by_month(user_id, month)
        if existing is not None:
            recap_id, created = existing['id'], False
        else:
            handicap = self._handicap_or_default(profile)
            recap_id, created = self._storage.insert_monthly_recap_if_absent(
                user_id,
                MonthlyRecap(
                    month=month,
                    effortScores=scores,
                    autoSuggestedScores=scores,
                    handicapStartOfMonth=handicap,
                    handicapEndOfMonth=handicap,
                    notes='',
                    autoGenerated=True,
                ),
            )

        if created:
            self._add_recap_notification(user_id, month)
        else:
            self._storage.update_monthly_recap(
                user_id, recap_id, {'autoSuggestedScores': scores.to_document()}
            )

        return {'success': True, 'recapId': recap_id, 'month': month, 'created': created}

    def generate_user_monthly_recap(self, user_id: str, month: str) -> Dict[str, Any]:
        """Golfer-initiated recap; refuses when the month already has one."""

        try:
            validate_month(month)
        except ValueError as exc:
            return {'success': False, 'message': str(exc), 'recapId': None}

        try:
            existing = self._storage.get_monthly_recap_by_month(user_id, month)
            if existing is not None:
                return {
                    'success': False,
                    'message': 'A recap for this month already exists',
                    'recapId': existing['id'],
                }

            scores = self._suggested_scores(user_id, month)
            profile = self._storage.get_user_profile(user_id)
            if profile is None:
                return {'success': False, 'message': 'User profile not found', 'recapId': None}

            handicap = self._handicap_or_default(profile)
            recap_id, created = self._storage.insert_monthly_recap_if_absent(
                user_id,
                MonthlyRecap(
                    month=month,
                    effortScores=scores,
                    autoSuggestedScores=scores,
                    handicapStartOfMonth=handicap,
                    handicapEndOfMonth=handicap,
                    notes='',
                    autoGenerated=True,
                    userReviewed=False,
                ),
            )
            if not created:
                return {
                    'success': False,
                    'message': 'A recap for this month already exists',
                    'recapId': recap_id,
                }

            self._storage.add_notification(
                user_id,
                Notification(
                    title='Monthly Recap Ready',
                    message=(
                        f'Your monthly recap for {month_name(month)} is ready. '
                        'Review and confirm your effort scores.'
                    ),
                    type='recap',
                    link=f'/recap/{month}',
                ),
            )
        except GolfImproverError as exc:
            logger.error('Error generating user monthly recap for %s: %s', user_id, exc)
            return {'success': False, 'message': f'Error: {exc}', 'recapId': None}

        return {'success': True, 'message': 'Recap generated successfully', 'recapId': recap_id}

    # --- Private helpers -------------------------------------------------

    def _suggested_scores(self, user_id: str, month: str) -> EffortScores:
        start, end = month_bounds(month)
        logs = self._storage.get_practice_logs_between(user_id, start, end)
        return compute_auto_suggested_scores(logs)

    @staticmethod
    def _handicap_or_default(profile: Mapping[str, Any]) -> float:
        handicap = profile.get('handicap')
        return float(handicap) if handicap is not None else DEFAULT_HANDICAP

    def _notify_recap_ready(self, user_id: str, profile: Mapping[str, Any], month: str) -> None:
        email = profile.get('email')
        if email:
            name = profile.get('name') or profile.get('displayName') or 'Golfer'
            self._mailer.send_recap_ready(email, name, month, month_name(month))

        try:
            self._add_recap_notification(user_id, month)
        except GolfImproverError:
            logger.warning('In-app notification failed for user %s', user_id, exc_info=True)

    def _add_recap_notification(self, user_id: str, month: str) -> None:
        name = month_name(month)
        self._storage.add_notification(
            user_id,
            Notification(
                title=f'{name} Recap Ready',
                message=f'Your monthly golf improvement recap for {name} is now available. Check it out!',
                type='recap',
                link=f'/recap/{month}',
            ),
        )
        logger.info('In-app notification sent to user %s', user_id)
