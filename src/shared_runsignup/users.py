"""
RunSignUp user information and the user's registrations
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from .dates import date_sort_key
from .exceptions import AuthInvalidError, RunSignUpError
from .models import LinkedIdentity, Registration, UserProfile
from .transport import ApiTransport

logger = logging.getLogger(__name__)


class UserClient:
    def __init__(self, transport: ApiTransport):
        self.transport = transport

    async def me(self) -> LinkedIdentity:
        """
        Identity of the user who granted the current token.

        Tries the OAuth userinfo endpoint first, then the REST one. If both
        fail the first error is raised.
        """
        try:
            response = await self.transport.get('/Profile/OAuth2/UserInfo')
            return LinkedIdentity.from_api(response)
        except AuthInvalidError:
            # Credentials are gone; the fallback would go out without a bearer
            raise
        except RunSignUpError as e:
            logger.warning(f"OAuth userinfo lookup failed: {e}")
            try:
                response = await self.transport.get('/rest/user/me')
                return LinkedIdentity.from_api(response)
            except RunSignUpError as e2:
                logger.warning(f"Alternative user endpoint also failed: {e2}")
                raise e

    async def info(self, user_id: int) -> UserProfile:
        response = await self.transport.get(f'/rest/user/{user_id}.json')
        return UserProfile.from_api(response)

    async def registrations(self, user_id: int, include_upcoming: Optional[bool] = None,
                            include_past: Optional[bool] = None, page: int = 1,
                            results_per_page: int = 25) -> List[Registration]:
        params: Dict[str, Any] = {
            'page': page,
            'results_per_page': results_per_page,
        }

        # Filter by date only when exactly one side is requested
        today = date.today().isoformat()
        if include_upcoming is True and include_past is False:
            params['start_date'] = today
        elif include_past is True and include_upcoming is False:
            params['end_date'] = today

        response = await self.transport.get(f'/rest/user/{user_id}/registrations.json', params)
        items = response.get('registrations') if isinstance(response, dict) else None
        return [Registration.from_api(item) for item in items or []]

    async def upcoming_registrations(self, user_id: int, limit: int = 10) -> List[Registration]:
        """Sorted by race date, earliest first"""
        registrations = await self.registrations(
            user_id, include_upcoming=True, include_past=False, results_per_page=limit
        )
        return sorted(registrations, key=lambda r: date_sort_key(r.race_date))

    async def past_registrations(self, user_id: int, limit: int = 10) -> List[Registration]:
        """Sorted by race date, most recent first"""
        registrations = await self.registrations(
            user_id, include_upcoming=False, include_past=True, results_per_page=limit
        )
        return sorted(registrations, key=lambda r: date_sort_key(r.race_date), reverse=True)

    async def update_info(self, user_id: int, updates: Dict[str, Any]) -> UserProfile:
        if 'user_id' in updates:
            updates = {k: v for k, v in updates.items() if k != 'user_id'}
        response = await self.transport.post(f'/rest/user/{user_id}.json', updates)
        return UserProfile.from_api(response)

    async def search_by_email(self, email: str) -> Optional[UserProfile]:
        response = await self.transport.get('/rest/users/search.json', {'email': email})
        users = response.get('users') if isinstance(response, dict) else None
        if not users:
            return None
        return UserProfile.from_api(users[0])

    async def registration_details(self, race_id: int, registration_id: int) -> Registration:
        response = await self.transport.get(
            f'/rest/race/{race_id}/registration/{registration_id}.json'
        )
        return Registration.from_api(response)

    async def cancel_registration(self, race_id: int, registration_id: int,
                                  reason: Optional[str] = None) -> bool:
        await self.transport.post(
            f'/rest/race/{race_id}/registration/{registration_id}/cancel.json',
            {'reason': reason},
        )
        return True

    async def transfer_registration(self, race_id: int, registration_id: int,
                                    target_event_id: int) -> Registration:
        response = await self.transport.post(
            f'/rest/race/{race_id}/switch-participant-events.json',
            {'registration_id': registration_id, 'event_id': target_event_id},
        )
        return Registration.from_api(response)
