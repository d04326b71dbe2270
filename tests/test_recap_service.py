from __future__ import annotations

import smtplib
from datetime import datetime, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import MagicMock, patch

from golfimprover.config import MailConfig, RecapJobConfig
from golfimprover.models import Drill, MonthlyRecap, EffortScores, PracticeLog
from golfimprover.services.document_store import LocalDocumentStore
from golfimprover.services.mailer import Mailer
from golfimprover.services.recap_service import RecapService
from golfimprover.services.storage_service import StorageService


class RecapServiceTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.storage = StorageService(LocalDocumentStore(Path(self.tmpdir.name)))
        self.mailer = MagicMock(spec=Mailer)
        self.service = RecapService(self.storage, self.mailer, RecapJobConfig(max_concurrency=2))

    def _log(self, user_id: str, day: int, drills=()) -> None:
        self.storage.log_practice_session(
            user_id,
            PracticeLog(
                sessionTitle='Range',
                duration=45,
                drills=[Drill(name=name) for name in drills],
                date=datetime(2024, 5, day, 18, tzinfo=timezone.utc),
            ),
        )

    def test_batch_creates_recap_and_notifies(self) -> None:
        self.storage.create_user_profile('u1', {'email': 'pat@example.com', 'name': 'Pat', 'handicap': 14.2})
        self.storage.save_monthly_recap(
            'u1',
            MonthlyRecap(month='2024-04', effortScores=EffortScores(), handicapStartOfMonth=15.0, handicapEndOfMonth=14.8),
        )
        for day in range(1, 7):
            self._log('u1', day, drills=['Ladder putting', 'Gate putt'])

        summary = self.service.generate_monthly_recaps('2024-05')

        self.assertEqual({'month': '2024-05', 'recapsGenerated': 1, 'skipped': 0, 'failed': 0}, summary)
        recap = self.storage.get_monthly_recap_by_month('u1', '2024-05')
        self.assertTrue(recap['autoGenerated'])
        self.assertFalse(recap['userReviewed'])
        self.assertEqual(14.8, recap['handicapStartOfMonth'])
        self.assertEqual(14.2, recap['handicapEndOfMonth'])
        self.assertEqual(4, recap['effortScores']['puttingWork'])
        self.assertEqual(recap['effortScores'], recap['autoSuggestedScores'])
        self.assertTrue(recap['notes'].startswith('Great progress this month! Your focus on putting'))

        self.mailer.send_recap_ready.assert_called_once_with('pat@example.com', 'Pat', '2024-05', 'May 2024')
        notifications = self.storage.get_notifications('u1')
        self.assertEqual('May 2024 Recap Ready', notifications[0]['title'])
        self.assertEqual('/recap/2024-05', notifications[0]['link'])
        self.assertEqual('recap', notifications[0]['type'])

    def test_batch_is_idempotent_and_skips_users_without_handicap(self) -> None:
        self.storage.create_user_profile('u1', {'email': 'a@example.com', 'handicap': 10.0})
        self.storage.create_user_profile('u2', {'email': 'b@example.com'})

        first = self.service.generate_monthly_recaps('2024-05')
        second = self.service.generate_monthly_recaps('2024-05')

        self.assertEqual(1, first['recapsGenerated'])
        self.assertEqual(1, first['skipped'])
        self.assertEqual(0, second['recapsGenerated'])
        self.assertEqual(2, second['skipped'])
        self.assertEqual(1, len(self.storage.get_user_monthly_recaps('u1')))
        self.assertEqual([], self.storage.get_user_monthly_recaps('u2'))
        self.assertEqual(1, self.mailer.send_recap_ready.call_count)

    def test_one_failing_user_does_not_stop_the_batch(self) -> None:
        for user_id in ('u1', 'u2', 'u3'):
            self.storage.create_user_profile(user_id, {'email': f'{user_id}@example.com', 'handicap': 12.0})

        original = self.storage.get_practice_logs_between

        def flaky(user_id, start, end):
            if user_id == 'u2':
                raise RuntimeError('store unavailable')
            return original(user_id, start, end)

        with patch.object(self.storage, 'get_practice_logs_between', side_effect=flaky):
            summary = self.service.generate_monthly_recaps('2024-05')

        self.assertEqual(2, summary['recapsGenerated'])
        self.assertEqual(1, summary['failed'])
        self.assertIsNone(self.storage.get_monthly_recap_by_month('u2', '2024-05'))

    def test_default_month_is_previous_month_in_job_timezone(self) -> None:
        # 03:00 UTC on June 1st is still May 31st in New York.
        now = datetime(2024, 6, 1, 3, tzinfo=timezone.utc)

        self.assertEqual('2024-04', self.service.default_month(now))
        self.assertEqual('2024-05', self.service.default_month(datetime(2024, 6, 1, 12, tzinfo=timezone.utc)))

    def test_manual_generation_updates_existing_recap(self) -> None:
        self.storage.create_user_profile('u1', {'email': 'a@example.com', 'handicap': 11.0})

        created = self.service.manual_generate_recap('u1', '2024-05')
        self._log('u1', 3, drills=['Chip ladder', 'Pitch to target', 'Bunker exit', 'Chip and run'])
        refreshed = self.service.manual_generate_recap('u1', '2024-05')

        self.assertTrue(created['created'])
        self.assertFalse(refreshed['created'])
        self.assertEqual(created['recapId'], refreshed['recapId'])
        recap = self.storage.get_monthly_recap_by_month('u1', '2024-05')
        self.assertEqual(2, recap['autoSuggestedScores']['shortGameWork'])
        self.assertEqual(1, recap['effortScores']['shortGameWork'])
        self.assertIn('updatedAt', recap)
        self.assertEqual(1, len(self.storage.get_notifications('u1')))

    def test_manual_generation_validates_input(self) -> None:
        with self.assertRaises(ValueError):
            self.service.manual_generate_recap('u1', '05-2024')
        with self.assertRaises(LookupError):
            self.service.manual_generate_recap('ghost', '2024-05')

    def test_user_generated_recap_refuses_duplicates(self) -> None:
        self.storage.create_user_profile('u1', {'email': 'a@example.com'})

        first = self.service.generate_user_monthly_recap('u1', '2024-05')
        second = self.service.generate_user_monthly_recap('u1', '2024-05')

        self.assertTrue(first['success'])
        self.assertEqual('Recap generated successfully', first['message'])
        self.assertFalse(second['success'])
        self.assertEqual('A recap for this month already exists', second['message'])
        self.assertEqual(first['recapId'], second['recapId'])
        recap = self.storage.get_monthly_recap_by_month('u1', '2024-05')
        self.assertEqual(18.0, recap['handicapStartOfMonth'])
        self.assertEqual('Monthly Recap Ready', self.storage.get_notifications('u1')[0]['title'])

    def test_user_generated_recap_reports_bad_month(self) -> None:
        result = self.service.generate_user_monthly_recap('u1', '2024-5')

        self.assertFalse(result['success'])
        self.assertEqual('Invalid month format. Use YYYY-MM', result['message'])


class MailerTests(TestCase):
    def test_disabled_without_host(self) -> None:
        with patch('golfimprover.services.mailer.smtplib.SMTP') as mock_smtp:
            sent = Mailer(MailConfig()).send_recap_ready('pat@example.com', 'Pat', '2024-05', 'May 2024')

        self.assertFalse(sent)
        mock_smtp.assert_not_called()

    def test_sends_recap_email(self) -> None:
        config = MailConfig(host='smtp.example.com', username='bot', password='pw')
        with patch('golfimprover.services.mailer.smtplib.SMTP') as mock_smtp:
            sent = Mailer(config, app_url='https://golf.example').send_recap_ready(
                'pat@example.com', 'Pat', '2024-05', 'May 2024'
            )

        self.assertTrue(sent)
        smtp = mock_smtp.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with('bot', 'pw')
        message = smtp.send_message.call_args[0][0]
        self.assertEqual('Your May 2024 Golf Improvement Recap is Ready!', message['Subject'])
        self.assertIn('https://golf.example/recap/2024-05', message.get_body(('plain',)).get_content())

    def test_delivery_failure_returns_false(self) -> None:
        config = MailConfig(host='smtp.example.com', use_tls=False)
        with patch('golfimprover.services.mailer.smtplib.SMTP', side_effect=smtplib.SMTPConnectError(421, b'busy')):
            sent = Mailer(config).send_recap_ready('pat@example.com', 'Pat', '2024-05', 'May 2024')

        self.assertFalse(sent)

    def test_html_body_escapes_the_golfer_name(self) -> None:
        message = Mailer(MailConfig(host='smtp.example.com')).build_recap_ready(
            'pat@example.com', '<b>Pat</b>', '2024-05', 'May 2024'
        )

        html_body = message.get_body(('html',)).get_content()
        self.assertIn('Hi &lt;b&gt;Pat&lt;/b&gt;,', html_body)
        self.assertNotIn('<b>Pat</b>', html_body)
