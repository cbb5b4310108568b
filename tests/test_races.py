import sys
import unittest
from datetime import date
from unittest.mock import AsyncMock, MagicMock
from pathlib import Path

APIHELPERS_SRC = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(APIHELPERS_SRC))

from shared_runsignup.models import Address, Race
from shared_runsignup.races import (
    RaceClient,
    RaceStatus,
    format_race_date,
    race_location,
    race_status,
)


def race(next_date=None, last_date=None, race_id=1, city='', state=''):
    return Race(race_id=race_id, name=f"Race {race_id}", next_date=next_date,
                last_date=last_date, address=Address(city=city, state=state))


def race_item(race_id, next_date, **extra):
    return {'race': dict(race_id=race_id, name=f"Race {race_id}", next_date=next_date, **extra)}


class TestRaceStatus(unittest.TestCase):
    TODAY = date(2026, 10, 19)

    def test_live_window_is_inclusive(self):
        self.assertEqual(race_status(race('10/19/2026', '10/19/2026'), self.TODAY), RaceStatus.LIVE)
        self.assertEqual(race_status(race('10/17/2026', '10/19/2026'), self.TODAY), RaceStatus.LIVE)
        self.assertEqual(race_status(race('10/19/2026', '10/21/2026'), self.TODAY), RaceStatus.LIVE)

    def test_upcoming(self):
        self.assertEqual(race_status(race('10/20/2026', '10/20/2026'), self.TODAY), RaceStatus.UPCOMING)

    def test_past(self):
        self.assertEqual(race_status(race('10/17/2026', '10/18/2026'), self.TODAY), RaceStatus.PAST)

    def test_unparsable_dates_count_as_upcoming(self):
        self.assertEqual(race_status(race('soon', '10/18/2026'), self.TODAY), RaceStatus.UPCOMING)
        self.assertEqual(race_status(race(None, None), self.TODAY), RaceStatus.UPCOMING)

    def test_iso_dates_accepted(self):
        self.assertEqual(race_status(race('2026-10-01', '2026-10-02'), self.TODAY), RaceStatus.PAST)


class TestFormatting(unittest.TestCase):
    def test_format_race_date(self):
        self.assertEqual(format_race_date(race('03/07/2027')), "03/07")

    def test_format_race_date_placeholder(self):
        self.assertEqual(format_race_date(race(None)), "TBA")
        self.assertEqual(format_race_date(race('13/45/2026')), "TBA")

    def test_race_location(self):
        self.assertEqual(race_location(race(city='Boston', state='MA')), "Boston, MA")
        self.assertEqual(race_location(race(city='Boston')), "Boston")
        self.assertEqual(race_location(race()), "Location TBA")

    def test_client_exposes_helpers(self):
        self.assertEqual(RaceClient.status(race('01/01/2020', '01/01/2020')), RaceStatus.PAST)


class TestRaceClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.transport = MagicMock()
        self.transport.get = AsyncMock()
        self.client = RaceClient(self.transport)

    async def test_list_params_and_local_sort(self):
        self.transport.get.return_value = {
            'races': [
                race_item(2, '11/02/2026'),
                race_item(3, None),
                race_item(1, '10/25/2026'),
            ],
            'total_count': 40,
        }

        today = date.today().isoformat()
        result = await self.client.list(search='5k', zipcode='02134', radius=10,
                                        start_date=today, sort_direction='asc')

        self.assertEqual([r.race_id for r in result.races], [1, 2, 3])
        self.assertEqual(result.total, 40)
        path, params = self.transport.get.call_args[0]
        self.assertEqual(path, '/races')
        self.assertEqual(params['start_date'], today)
        self.assertEqual(params['sort'], 'date ASC')
        self.assertEqual(params['search'], '5k')
        self.assertEqual(params['zipcode'], '02134')
        self.assertEqual(params['radius'], 10)
        self.assertNotIn('city', params)

    async def test_list_descending(self):
        self.transport.get.return_value = {
            'races': [race_item(1, '10/25/2026'), race_item(2, '11/02/2026')],
        }

        result = await self.client.list(sort_direction='DESC')

        self.assertEqual([r.race_id for r in result.races], [2, 1])
        self.assertEqual(result.total, 2)

    async def test_list_rejects_bad_sort(self):
        with self.assertRaises(ValueError):
            await self.client.list(sort_direction='sideways')
        self.transport.get.assert_not_called()

    async def test_list_missing_races_is_empty(self):
        self.transport.get.return_value = {}

        result = await self.client.list()

        self.assertEqual(result.races, [])
        self.assertEqual(result.total, 0)

    async def test_details_unwraps_nested_race(self):
        self.transport.get.return_value = {
            'race': {'race': {
                'race_id': 12,
                'name': 'Harbor 10K',
                'address': {'city': 'Salem', 'state': 'MA'},
                'is_registration_open': 'T',
                'events': [{'event_id': 100, 'name': '10K', 'registration_available': 'T',
                            'online_registration_available': 'T', 'max_registrations': '50',
                            'num_registrations': '48'}],
            }}
        }

        result = await self.client.details(12)

        self.assertEqual(result.name, 'Harbor 10K')
        self.assertTrue(result.is_registration_open)
        self.assertEqual(result.events[0].spots_remaining, 2)
        self.assertTrue(result.events[0].is_open)
        self.assertEqual(self.transport.get.call_args[0], ('/race/12', {'events': 'T'}))

    async def test_is_registration_open_uses_events(self):
        self.transport.get.return_value = {'race': {
            'race_id': 12, 'name': 'x', 'is_registration_open': 'T',
            'events': [{'event_id': 1, 'registration_available': 'F'}],
        }}

        self.assertFalse(await self.client.is_registration_open(12))

    async def test_near_queries_upcoming_within_radius(self):
        self.transport.get.return_value = {'races': []}

        await self.client.near('02134', radius_miles=25)

        params = self.transport.get.call_args[0][1]
        self.assertEqual(params['zipcode'], '02134')
        self.assertEqual(params['radius'], 25)
        self.assertEqual(params['start_date'], date.today().isoformat())
        self.assertEqual(params['sort'], 'date ASC')

    async def test_upcoming_starts_today_ascending(self):
        self.transport.get.return_value = {'races': [
            race_item(2, '12/01/2026'),
            race_item(1, '11/01/2026'),
        ]}

        races = await self.client.upcoming(limit=5, state='MA')

        self.assertEqual([r.race_id for r in races], [1, 2])
        path, params = self.transport.get.call_args[0]
        self.assertEqual(path, '/races')
        self.assertEqual(params['start_date'], date.today().isoformat())
        self.assertEqual(params['sort'], 'date ASC')
        self.assertEqual(params['results_per_page'], 5)
        self.assertEqual(params['state'], 'MA')
        self.assertNotIn('end_date', params)

    async def test_participants(self):
        self.transport.get.return_value = {
            'participants': [{'registration_id': 3, 'event_id': 4, 'bib_num': 101,
                              'user': {'user_id': 9, 'first_name': 'Ada'}}],
        }

        result = await self.client.participants(12, event_id=4)

        self.assertEqual(result.total, 1)
        self.assertEqual(result.participants[0].bib_num, '101')
        self.assertEqual(result.participants[0].user.first_name, 'Ada')


if __name__ == '__main__':
    unittest.main()
