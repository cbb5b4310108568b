"""
RunSignUp race photos and albums
"""
import asyncio
import logging
import math
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import ApiError
from .models import PhotoAlbum, PhotoPage, RacePhoto
from .transport import ApiTransport

logger = logging.getLogger(__name__)

PHOTOS_ENDPOINT = '/rest/v2/photos/get-race-photos.json'
PHOTO_SIZES = ('thumbnail', 'large', 'original')

# Error messages the photo endpoints use when a race simply has none
_NO_PHOTOS_MARKERS = ('no photos', 'no results')


def _is_no_photos(error: ApiError) -> bool:
    message = error.message.lower()
    return any(marker in message for marker in _NO_PHOTOS_MARKERS)


def photo_url(photo: RacePhoto, size: str = 'large') -> str:
    """URL of the requested image variant; no network access"""
    if size not in PHOTO_SIZES:
        raise ValueError(f"Unknown photo size {size!r}, expected one of {', '.join(PHOTO_SIZES)}")
    return getattr(photo, size).image_url


def format_photo_date(photo: RacePhoto) -> str:
    uploaded = datetime.fromtimestamp(photo.uploaded_ts, tz=timezone.utc)
    return f"{uploaded:%B} {uploaded.day}, {uploaded.year}"


def group_by_album(photos: Iterable[RacePhoto]) -> Dict[int, List[RacePhoto]]:
    grouped: Dict[int, List[RacePhoto]] = defaultdict(list)
    for photo in photos:
        grouped[photo.album_id].append(photo)
    return dict(grouped)


def album_cover_url(album: PhotoAlbum) -> Optional[str]:
    return photo_url(album.cover_photo, 'thumbnail') if album.cover_photo else None


class PhotoClient:
    """Read-only photo access; photo endpoints use the partner key"""

    photo_url = staticmethod(photo_url)
    format_photo_date = staticmethod(format_photo_date)
    group_by_album = staticmethod(group_by_album)
    album_cover_url = staticmethod(album_cover_url)

    def __init__(self, transport: ApiTransport):
        self.transport = transport

    async def _photo_page(self, params: Dict[str, Any]) -> PhotoPage:
        try:
            response = await self.transport.get(PHOTOS_ENDPOINT, params)
        except ApiError as e:
            if _is_no_photos(e):
                logger.debug(f"No photos for race {params.get('race_id')}: {e.message}")
                return PhotoPage(photos=[], total=0)
            raise

        items = response.get('photos') if isinstance(response, dict) else None
        photos = [RacePhoto.from_api(item) for item in items or []]
        total = response.get('total_count') if isinstance(response, dict) else None
        return PhotoPage(photos=photos, total=int(total or len(photos)))

    async def race_photos(self, race_id: int, album_id: Optional[int] = None,
                          race_event_days_id: Optional[int] = None, page: int = 1, num: int = 100,
                          uploaded_since: Optional[int] = None,
                          include_participant_uploads: bool = True) -> PhotoPage:
        params = {
            'race_id': race_id,
            'page': page,
            'num': num,
            'include_participant_uploads': 'T' if include_participant_uploads else 'F',
            'generic_photo_album_id': album_id,
            'race_event_days_id': race_event_days_id,
            'uploaded_since_timestamp': uploaded_since,
        }
        return await self._photo_page(params)

    async def album_photos(self, race_id: int, album_id: int, page: int = 1,
                           per_page: int = 50) -> List[RacePhoto]:
        result = await self.race_photos(race_id, album_id=album_id, page=page, num=per_page)
        return result.photos

    async def race_albums(self, race_id: int) -> List[PhotoAlbum]:
        response = await self.transport.get(f'/rest/race/{race_id}/photo-albums.json')
        albums = response.get('albums') if isinstance(response, dict) else None
        return [PhotoAlbum.from_api(item) for item in albums or []]

    async def photos_by_bib(self, race_id: int, bib_number: int, page: int = 1) -> List[RacePhoto]:
        result = await self._photo_page({
            'race_id': race_id,
            'bib_num': bib_number,
            'page': page,
            'num': 100,
        })
        return result.photos

    async def search_by_participant(self, race_id: int, first_name: str,
                                    last_name: str) -> List[RacePhoto]:
        """Find a participant's bib, then their photos"""
        response = await self.transport.get(
            f'/rest/race/{race_id}/participants.json',
            {'search': f"{first_name} {last_name}".strip(), 'results_per_page': 1},
        )
        participants = response.get('participants') if isinstance(response, dict) else None
        if not participants:
            return []

        bib = participants[0].get('bib_num')
        try:
            bib_number = int(bib)
        except (TypeError, ValueError):
            return []
        return await self.photos_by_bib(race_id, bib_number)

    async def recent_photos(self, race_ids: List[int], limit: int = 20) -> List[RacePhoto]:
        """Newest photos across several races; a failing race is skipped"""
        if not race_ids:
            return []

        per_race = math.ceil(limit / len(race_ids))
        results = await asyncio.gather(
            *(self.race_photos(race_id, num=per_race) for race_id in race_ids),
            return_exceptions=True,
        )

        photos: List[RacePhoto] = []
        for race_id, result in zip(race_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to fetch photos for race {race_id}: {result}")
                continue
            photos.extend(result.photos)

        photos.sort(key=lambda p: p.uploaded_ts, reverse=True)
        return photos[:limit]

    async def photo_details(self, photo_id: int) -> Optional[RacePhoto]:
        response = await self.transport.get(f'/rest/v2/photos/{photo_id}.json')
        if not isinstance(response, dict) or not response.get('photo'):
            return None
        return RacePhoto.from_api(response['photo'])

    async def has_photos(self, race_id: int) -> bool:
        result = await self.race_photos(race_id, num=1, page=1)
        return result.total > 0

    async def photo_stats(self, race_id: int) -> Dict[str, int]:
        seven_days_ago = int(time.time()) - 7 * 24 * 60 * 60
        photos, albums, recent = await asyncio.gather(
            self.race_photos(race_id, num=1),
            self.race_albums(race_id),
            self.race_photos(race_id, num=1, uploaded_since=seven_days_ago),
        )
        return {
            'total_photos': photos.total,
            'total_albums': len(albums),
            'recent_upload_count': recent.total,
        }
