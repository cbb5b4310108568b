import sys
import unittest
from unittest.mock import AsyncMock, MagicMock
from pathlib import Path

APIHELPERS_SRC = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(APIHELPERS_SRC))

from shared_runsignup.exceptions import ApiError, TransportError
from shared_runsignup.models import PhotoAlbum, RacePhoto
from shared_runsignup.photos import (
    PhotoClient,
    album_cover_url,
    format_photo_date,
    group_by_album,
    photo_url,
)


def photo_item(photo_id, album_id=1, uploaded_ts=0, bibs=None):
    return {
        'photo_id': photo_id,
        'album_id': album_id,
        'uploaded_ts': uploaded_ts,
        'bibs': bibs or [],
        'thumbnail': {'image_url': f'https://img/{photo_id}/t.jpg', 'width': 100, 'height': 75},
        'large': {'image_url': f'https://img/{photo_id}/l.jpg', 'width': 1200, 'height': 900},
        'original': {'image_url': f'https://img/{photo_id}/o.jpg', 'width': 4000, 'height': 3000},
    }


class TestPhotoHelpers(unittest.TestCase):
    def setUp(self):
        self.photo = RacePhoto.from_api(photo_item(7, uploaded_ts=1792396800, bibs=[101, '102']))

    def test_photo_url_variants(self):
        self.assertEqual(photo_url(self.photo, 'thumbnail'), 'https://img/7/t.jpg')
        self.assertEqual(photo_url(self.photo), 'https://img/7/l.jpg')
        self.assertEqual(photo_url(self.photo, 'original'), 'https://img/7/o.jpg')

    def test_photo_url_unknown_size(self):
        with self.assertRaises(ValueError):
            photo_url(self.photo, 'huge')

    def test_bibs_are_strings(self):
        self.assertEqual(self.photo.bibs, ['101', '102'])

    def test_format_photo_date(self):
        self.assertEqual(format_photo_date(self.photo), 'October 19, 2026')

    def test_group_by_album(self):
        photos = [RacePhoto.from_api(photo_item(i, album_id=i % 2)) for i in range(1, 5)]

        grouped = group_by_album(photos)

        self.assertEqual([p.photo_id for p in grouped[1]], [1, 3])
        self.assertEqual([p.photo_id for p in grouped[0]], [2, 4])

    def test_album_cover_url(self):
        album = PhotoAlbum.from_api({'album_id': 1, 'album_name': 'Finish', 'race_id': 3,
                                     'cover_photo': photo_item(9)})
        self.assertEqual(album_cover_url(album), 'https://img/9/t.jpg')
        self.assertIsNone(album_cover_url(PhotoAlbum(album_id=2, album_name='Empty', race_id=3)))


class TestPhotoClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.transport = MagicMock()
        self.transport.get = AsyncMock()
        self.client = PhotoClient(self.transport)

    async def test_race_photos(self):
        self.transport.get.return_value = {'photos': [photo_item(1), photo_item(2)], 'total_count': 30}

        page = await self.client.race_photos(5, album_id=3)

        self.assertEqual(page.total, 30)
        self.assertEqual(len(page.photos), 2)
        path, params = self.transport.get.call_args[0]
        self.assertEqual(path, '/rest/v2/photos/get-race-photos.json')
        self.assertEqual(params['generic_photo_album_id'], 3)
        self.assertEqual(params['include_participant_uploads'], 'T')

    async def test_no_photos_error_is_empty_page(self):
        self.transport.get.side_effect = ApiError(404, "No photos found for this race")

        page = await self.client.race_photos(5)

        self.assertEqual(page.photos, [])
        self.assertEqual(page.total, 0)
        self.assertFalse(await self.client.has_photos(5))

    async def test_other_errors_propagate(self):
        self.transport.get.side_effect = ApiError(401, "Key authentication failed")

        with self.assertRaises(ApiError):
            await self.client.race_photos(5)

    async def test_missing_photos_key_is_empty(self):
        self.transport.get.return_value = {}

        page = await self.client.race_photos(5)

        self.assertEqual(page.photos, [])
        self.assertEqual(page.total, 0)

    async def test_race_albums(self):
        self.transport.get.return_value = {'albums': [
            {'album_id': 1, 'album_name': 'Start', 'race_id': 5, 'photo_count': '12'},
        ]}

        albums = await self.client.race_albums(5)

        self.assertEqual(albums[0].photo_count, 12)
        self.assertEqual(self.transport.get.call_args[0][0], '/rest/race/5/photo-albums.json')

    async def test_search_by_participant(self):
        self.transport.get.side_effect = [
            {'participants': [{'bib_num': '101'}]},
            {'photos': [photo_item(1, bibs=['101'])]},
        ]

        photos = await self.client.search_by_participant(5, 'Ada', 'Lovelace')

        self.assertEqual([p.photo_id for p in photos], [1])
        self.assertEqual(self.transport.get.call_args[0][1]['bib_num'], 101)

    async def test_search_by_participant_not_found(self):
        self.transport.get.return_value = {'participants': []}

        self.assertEqual(await self.client.search_by_participant(5, 'No', 'Body'), [])
        self.assertEqual(self.transport.get.await_count, 1)

    async def test_recent_photos_skips_failed_race(self):
        async def fake_get(path, params=None):
            if params['race_id'] == 2:
                raise TransportError("timed out")
            race_id = params['race_id']
            return {'photos': [photo_item(race_id * 10 + i, uploaded_ts=race_id * 100 + i)
                               for i in range(3)]}

        self.transport.get.side_effect = fake_get

        photos = await self.client.recent_photos([1, 2, 3], limit=4)

        self.assertEqual([p.photo_id for p in photos], [32, 31, 30, 12])

    async def test_recent_photos_no_races(self):
        self.assertEqual(await self.client.recent_photos([]), [])
        self.transport.get.assert_not_called()

    async def test_photo_details_missing(self):
        self.transport.get.return_value = {}

        self.assertIsNone(await self.client.photo_details(99))


if __name__ == '__main__':
    unittest.main()
