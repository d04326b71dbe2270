from __future__ import annotations

import random
from datetime import date
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

from golfimprover.services.document_store import LocalDocumentStore
from golfimprover.services.mock_data import populate_six_months_data
from golfimprover.services.practice_stats import find_handicap_goal
from golfimprover.services.storage_service import StorageService


class MockDataTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.storage = StorageService(LocalDocumentStore(Path(self.tmpdir.name)))
        self.storage.create_user_profile('u1', {'email': 'pat@example.com'})

    def test_populates_six_months_of_history(self) -> None:
        result = populate_six_months_data(
            self.storage, 'u1', initial_handicap=20.0, rng=random.Random(7), today=date(2024, 7, 15)
        )

        self.assertTrue(result['success'])
        recaps = self.storage.get_user_monthly_recaps('u1')
        self.assertEqual(
            ['2024-06', '2024-05', '2024-04', '2024-03', '2024-02', '2024-01'],
            [recap['month'] for recap in recaps],
        )
        self.assertEqual(20.0, recaps[-1]['handicapStartOfMonth'])
        for newer, older in zip(recaps, recaps[1:]):
            self.assertEqual(older['handicapEndOfMonth'], newer['handicapStartOfMonth'])

        logs = self.storage.get_user_practice_logs('u1')
        self.assertTrue(48 <= len(logs) <= 96)
        self.assertEqual(result['counts']['logs'], len(logs))
        self.assertTrue(all(log['date'] < '2024-07' for log in logs))

        goals = self.storage.get_user_goals('u1')
        self.assertEqual(5, len(goals))
        self.assertEqual(20.0, find_handicap_goal(goals)['startValue'])

        profile = self.storage.get_user_profile('u1')
        self.assertTrue(profile['hasCompletedTutorial'])
        self.assertEqual(recaps[0]['handicapEndOfMonth'], profile['handicap'])

    def test_existing_data_is_replaced_by_default(self) -> None:
        populate_six_months_data(self.storage, 'u1', rng=random.Random(1), today=date(2024, 7, 1))
        populate_six_months_data(self.storage, 'u1', rng=random.Random(2), today=date(2024, 7, 1))

        self.assertEqual(6, len(self.storage.get_user_monthly_recaps('u1')))
        self.assertEqual(5, len(self.storage.get_user_goals('u1')))
