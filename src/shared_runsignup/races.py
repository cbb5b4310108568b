"""
RunSignUp race listings, details and participants
"""
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .dates import parse_race_date
from .models import ParticipantList, Race, RaceEvent, RaceListResult, RaceParticipant
from .transport import ApiTransport

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = 'TBA'
LOCATION_PLACEHOLDER = 'Location TBA'


class RaceStatus(str, Enum):
    LIVE = 'live'
    UPCOMING = 'upcoming'
    PAST = 'past'


def race_status(race: Race, today: Optional[date] = None) -> RaceStatus:
    """Live when today falls in [next_date, last_date]; unparsable dates count as upcoming"""
    next_date = parse_race_date(race.next_date)
    last_date = parse_race_date(race.last_date)
    if next_date is None or last_date is None:
        return RaceStatus.UPCOMING

    today = today or date.today()
    if next_date <= today <= last_date:
        return RaceStatus.LIVE
    if today < next_date:
        return RaceStatus.UPCOMING
    return RaceStatus.PAST


def format_race_date(race: Race) -> str:
    """MM/DD for display, or TBA"""
    parsed = parse_race_date(race.next_date)
    if parsed is None:
        return DATE_PLACEHOLDER
    return f"{parsed.month:02d}/{parsed.day:02d}"


def race_location(race: Race) -> str:
    parts = [p for p in (race.address.city, race.address.state) if p]
    return ', '.join(parts) if parts else LOCATION_PLACEHOLDER


def _sort_by_next_date(races: List[Race], descending: bool) -> List[Race]:
    dated = [r for r in races if parse_race_date(r.next_date) is not None]
    undated = [r for r in races if parse_race_date(r.next_date) is None]
    dated.sort(key=lambda r: parse_race_date(r.next_date), reverse=descending)
    return dated + undated


class RaceClient:
    """Race queries; public listings authenticate with the partner key when available"""

    status = staticmethod(race_status)
    format_race_date = staticmethod(format_race_date)
    race_location = staticmethod(race_location)

    def __init__(self, transport: ApiTransport):
        self.transport = transport

    async def list(self, search: Optional[str] = None, city: Optional[str] = None,
                   state: Optional[str] = None, zipcode: Optional[str] = None,
                   radius: Optional[int] = None, start_date: Optional[str] = None,
                   end_date: Optional[str] = None, page: int = 1, results_per_page: int = 25,
                   events: bool = False, sort_direction: Optional[str] = None) -> RaceListResult:
        params: Dict[str, Any] = {
            'page': page,
            'results_per_page': results_per_page,
            'events': 'T' if events else 'F',
        }
        if search:
            params['search'] = search
        if city:
            params['city'] = city
        if state:
            params['state'] = state
        if zipcode:
            params['zipcode'] = zipcode
        if radius:
            params['radius'] = radius
        if start_date:
            params['start_date'] = start_date
        if end_date:
            params['end_date'] = end_date
        if sort_direction:
            direction = sort_direction.lower()
            if direction not in ('asc', 'desc'):
                raise ValueError(f"sort_direction must be 'asc' or 'desc', got {sort_direction!r}")
            # API expects the full sort string, e.g. "date ASC"
            params['sort'] = f"date {direction.upper()}"

        response = await self.transport.get('/races', params)

        # Each item nests the race under a 'race' key
        items = response.get('races') if isinstance(response, dict) else None
        races = [Race.from_api(item) for item in items or []]
        if sort_direction:
            races = _sort_by_next_date(races, descending=sort_direction.lower() == 'desc')

        total = response.get('total_count') if isinstance(response, dict) else None
        return RaceListResult(races=races, total=int(total or len(races)))

    async def details(self, race_id: int, include_events: bool = True) -> Race:
        params = {'events': 'T'} if include_events else {}
        response = await self.transport.get(f'/race/{race_id}', params)
        # Response nests as { race: { race: {...} } }
        return Race.from_api(response)

    async def search(self, query: str, limit: int = 25) -> List[Race]:
        result = await self.list(search=query, results_per_page=limit, events=True)
        return result.races

    async def upcoming(self, limit: int = 10, city: Optional[str] = None,
                       state: Optional[str] = None, zipcode: Optional[str] = None,
                       radius: Optional[int] = None) -> List[Race]:
        result = await self.list(
            start_date=date.today().isoformat(),
            results_per_page=limit,
            events=True,
            sort_direction='asc',
            city=city,
            state=state,
            zipcode=zipcode,
            radius=radius,
        )
        return result.races

    async def live(self, limit: int = 10) -> List[Race]:
        today = date.today().isoformat()
        result = await self.list(start_date=today, end_date=today, results_per_page=limit, events=True)
        return result.races

    async def past(self, limit: int = 10, days_back: int = 90) -> List[Race]:
        today = date.today()
        result = await self.list(
            start_date=(today - timedelta(days=days_back)).isoformat(),
            end_date=(today - timedelta(days=1)).isoformat(),
            results_per_page=limit,
            events=True,
            sort_direction='desc',
        )
        return result.races

    async def near(self, zipcode: str, radius_miles: int = 50, limit: int = 25) -> List[Race]:
        result = await self.list(
            zipcode=zipcode,
            radius=radius_miles,
            start_date=date.today().isoformat(),
            results_per_page=limit,
            events=True,
            sort_direction='asc',
        )
        return result.races

    async def events(self, race_id: int) -> List[RaceEvent]:
        race = await self.details(race_id, include_events=True)
        return race.events

    async def is_registration_open(self, race_id: int) -> bool:
        race = await self.details(race_id, include_events=True)
        if race.events:
            return any(event.is_open for event in race.events)
        return race.is_registration_open

    async def participants(self, race_id: int, event_id: Optional[int] = None, page: int = 1,
                           results_per_page: int = 100, search: Optional[str] = None,
                           modified_after: Optional[int] = None) -> ParticipantList:
        params: Dict[str, Any] = {
            'page': page,
            'results_per_page': results_per_page,
            'event_id': event_id,
            'search': search,
            'modified_after_timestamp': modified_after,
        }
        response = await self.transport.get(f'/race/{race_id}/participants', params)
        items = response.get('participants') if isinstance(response, dict) else None
        participants = [RaceParticipant.from_api(item) for item in items or []]
        total = response.get('total_count') if isinstance(response, dict) else None
        return ParticipantList(participants=participants, total=int(total or len(participants)))
