"""
Integration facade that ties the signed-in app user to a RunSignUp account.

UI code constructs one facade per signed-in user and drives it through the
action coroutines; every action returns an ``IntegrationState`` snapshot.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

import requests

from .auth import AuthManager, Authorizer
from .config import TOKEN_EXPIRED_ERROR_CODE, Config, ConfigurationError, get_config
from .exceptions import (
    ApiError,
    AuthInvalidError,
    AuthorizationError,
    NotLinkedError,
    RunSignUpError,
)
from .models import (
    AuthorizationOutcome,
    LinkedIdentity,
    Race,
    Registration,
    RegistrationRequest,
    UserProfile,
)
from .photos import PhotoClient
from .races import RaceClient
from .registrations import RegistrationClient
from .token_store import TokenStore
from .transport import ApiTransport
from .users import UserClient

logger = logging.getLogger(__name__)

# Keys written onto the app user's profile metadata
LINK_MARKER_KEY = 'runSignUpUserId'
LINK_EMAIL_KEY = 'runSignUpEmail'

LIMITED_ACCESS_INFO = 'Full API access requires RunSignUp partner/affiliate credentials.'
RELINK_MESSAGE = 'Session expired. Please link your account again.'


class LinkStatus(str, Enum):
    NOT_LINKED = 'not_linked'
    LINKED_LIMITED = 'linked_limited'
    LINKED_FULL = 'linked_full'


@dataclass
class AppUser:
    """The identity signed in to the app (not the RunSignUp account)"""
    user_id: str
    email: str = ''
    first_name: str = ''
    last_name: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def linked_user_id(self) -> Optional[int]:
        value = self.metadata.get(LINK_MARKER_KEY)
        try:
            return int(value) if value else None
        except (TypeError, ValueError):
            return None


class ProfileStore(Protocol):
    """Writes the linkage marker onto the app user's profile record"""

    async def save_linkage(self, app_user: AppUser, identity: LinkedIdentity) -> None:
        ...

    async def clear_linkage(self, app_user: AppUser) -> None:
        ...


@dataclass
class IntegrationState:
    link_status: LinkStatus = LinkStatus.NOT_LINKED
    is_loading: bool = False
    error: Optional[str] = None
    admin_info: Optional[str] = None  # shown to admins only
    needs_relink: bool = False
    identity: Optional[LinkedIdentity] = None
    profile: Optional[UserProfile] = None
    upcoming_registrations: List[Registration] = field(default_factory=list)
    past_registrations: List[Registration] = field(default_factory=list)
    nearby_races: List[Race] = field(default_factory=list)

    @property
    def is_linked(self) -> bool:
        return self.link_status is not LinkStatus.NOT_LINKED

    @property
    def runsignup_user_id(self) -> Optional[int]:
        return self.identity.user_id if self.identity else None


class RunSignUpIntegration:
    def __init__(self, auth: AuthManager, users: UserClient, races: RaceClient,
                 registrations: RegistrationClient, photos: Optional[PhotoClient] = None,
                 profile_store: Optional[ProfileStore] = None, app_user: Optional[AppUser] = None):
        self.auth = auth
        self.users = users
        self.races = races
        self.registrations = registrations
        self.photos = photos
        self.profile_store = profile_store
        self.app_user = app_user

        self._state = IntegrationState()
        self._link_task: Optional[asyncio.Task] = None

        linked_id = app_user.linked_user_id if app_user else None
        if linked_id:
            self._state.link_status = LinkStatus.LINKED_LIMITED
            self._state.identity = LinkedIdentity(
                user_id=linked_id,
                email=str(app_user.metadata.get(LINK_EMAIL_KEY) or ''),
            )

    @classmethod
    def create(cls, token_store: TokenStore, authorizer: Optional[Authorizer] = None,
               app_user: Optional[AppUser] = None, profile_store: Optional[ProfileStore] = None,
               config: Optional[Config] = None,
               session: Optional[requests.Session] = None) -> 'RunSignUpIntegration':
        """Wire up the auth manager, transport and domain clients"""
        config = config or get_config()
        auth = AuthManager(token_store, authorizer=authorizer, config=config, session=session)
        transport = ApiTransport(auth=auth, config=config, session=session)
        return cls(
            auth=auth,
            users=UserClient(transport),
            races=RaceClient(transport),
            registrations=RegistrationClient(transport),
            photos=PhotoClient(transport),
            profile_store=profile_store,
            app_user=app_user,
        )

    @property
    def state(self) -> IntegrationState:
        return self._snapshot()

    def _snapshot(self) -> IntegrationState:
        return replace(
            self._state,
            upcoming_registrations=list(self._state.upcoming_registrations),
            past_registrations=list(self._state.past_registrations),
            nearby_races=list(self._state.nearby_races),
        )

    def _require_relink(self, error: Exception):
        logger.warning(f"Credentials rejected, account must be re-linked: {error}")
        self._state = IntegrationState(needs_relink=True, error=RELINK_MESSAGE)

    # -------------------------------------------------------------------------
    # Linkage
    # -------------------------------------------------------------------------

    async def check_link_status(self) -> IntegrationState:
        """Restore linkage from the profile marker, then try a detail fetch"""
        linked_id = self.app_user.linked_user_id if self.app_user else None
        if not linked_id:
            logger.info("User is not linked (no runSignUpUserId in metadata)")
            self._state.link_status = LinkStatus.NOT_LINKED
            return self._snapshot()

        if self._state.identity is None or self._state.identity.user_id != linked_id:
            self._state.identity = LinkedIdentity(
                user_id=linked_id,
                email=str(self.app_user.metadata.get(LINK_EMAIL_KEY) or ''),
            )
        self._state.link_status = LinkStatus.LINKED_LIMITED

        if self._state.identity.is_placeholder:
            self._state.admin_info = LIMITED_ACCESS_INFO
            return self._snapshot()

        await self._load_details(linked_id)
        return self._snapshot()

    async def link_account(self) -> IntegrationState:
        """Link the app user to RunSignUp; concurrent calls share one flow"""
        if self.app_user is None:
            self._state.error = 'No user logged in'
            return self._snapshot()

        if self._link_task is not None and not self._link_task.done():
            logger.info("Link already in progress, joining it")
            return await asyncio.shield(self._link_task)

        if self._state.is_linked:
            return self._snapshot()

        self._link_task = asyncio.get_running_loop().create_task(self._link())
        return await asyncio.shield(self._link_task)

    async def _link(self) -> IntegrationState:
        self._state.is_loading = True
        self._state.error = None

        try:
            result = await self.auth.authorize()
            if result.outcome is AuthorizationOutcome.CANCELLED:
                logger.info("Link cancelled by user")
                self._state.is_loading = False
                return self._snapshot()
            if result.outcome is AuthorizationOutcome.ERROR:
                raise AuthorizationError(f"Authorization error: {result.error}")

            if result.access_token:
                self.auth.accept_implicit_token(result.params)
            else:
                await self.auth.exchange_code_for_token(result.code)

            identity = await self._resolve_identity()
        except AuthInvalidError as e:
            self._require_relink(e)
            return self._snapshot()
        except (RunSignUpError, ConfigurationError) as e:
            logger.error(f"Link account error: {e}")
            self._state.is_loading = False
            self._state.error = str(e) or 'Failed to link account'
            return self._snapshot()

        try:
            if self.profile_store is not None:
                await self.profile_store.save_linkage(self.app_user, identity)
        except Exception as e:
            # Credentials without a profile marker would be orphaned
            logger.error(f"Saving linkage failed, discarding credentials: {e}")
            await self.auth.logout()
            self._state.error = 'Failed to link account'
            raise
        finally:
            self._state.is_loading = False

        self.app_user.metadata[LINK_MARKER_KEY] = identity.user_id
        self.app_user.metadata[LINK_EMAIL_KEY] = identity.email

        self._state.identity = identity
        self._state.profile = None
        self._state.link_status = LinkStatus.LINKED_LIMITED
        self._state.needs_relink = False

        if identity.is_placeholder:
            self._state.admin_info = LIMITED_ACCESS_INFO
            return self._snapshot()

        await self._load_details(identity.user_id)
        return self._snapshot()

    async def _resolve_identity(self) -> LinkedIdentity:
        token_identity = self.auth.token_identity
        if token_identity is not None and not token_identity.is_placeholder:
            return token_identity
        try:
            return await self.users.me()
        except AuthInvalidError:
            raise
        except RunSignUpError as e:
            logger.warning(f"Could not fetch user info, account linked with OAuth only: {e}")
            return LinkedIdentity.placeholder()

    async def _load_details(self, user_id: int, with_registrations: bool = True):
        try:
            profile = await self.users.info(user_id)
        except AuthInvalidError as e:
            self._require_relink(e)
            return
        except RunSignUpError as e:
            logger.warning(f"Could not fetch detailed user info: {e}")
            self._state.link_status = LinkStatus.LINKED_LIMITED
            return

        self._state.profile = profile
        self._state.link_status = LinkStatus.LINKED_FULL
        if with_registrations:
            await self.fetch_registrations()

    async def unlink_account(self) -> IntegrationState:
        await self.auth.logout()
        if self.app_user is not None:
            if self.profile_store is not None:
                await self.profile_store.clear_linkage(self.app_user)
            self.app_user.metadata.pop(LINK_MARKER_KEY, None)
            self.app_user.metadata.pop(LINK_EMAIL_KEY, None)
        self._state = IntegrationState()
        return self._snapshot()

    async def refresh_token(self) -> IntegrationState:
        try:
            await self.auth.refresh_token()
        except AuthInvalidError as e:
            self._require_relink(e)
        except RunSignUpError as e:
            logger.error(f"Refresh token error: {e}")
            self._state.error = 'Failed to refresh session'
        return self._snapshot()

    # -------------------------------------------------------------------------
    # User data
    # -------------------------------------------------------------------------

    async def fetch_user_info(self) -> IntegrationState:
        identity = self._state.identity
        if not self._state.is_linked or identity is None or identity.is_placeholder:
            return self._snapshot()
        await self._load_details(identity.user_id, with_registrations=False)
        return self._snapshot()

    async def fetch_registrations(self) -> IntegrationState:
        identity = self._state.identity
        # Placeholder identities cannot see registrations; don't send doomed requests
        if not self._state.is_linked or identity is None or identity.is_placeholder:
            logger.info("Skipping registration fetch - no valid user ID")
            return self._snapshot()

        self._state.is_loading = True
        try:
            upcoming, past = await asyncio.gather(
                self.users.upcoming_registrations(identity.user_id),
                self.users.past_registrations(identity.user_id),
            )
        except AuthInvalidError as e:
            self._require_relink(e)
            return self._snapshot()
        except ApiError as e:
            if e.code == TOKEN_EXPIRED_ERROR_CODE or 'key authentication failed' in e.message.lower():
                logger.warning("Cannot fetch registrations: partner API keys required")
                self._state.admin_info = 'Full API access requires RunSignUp partner status.'
                self._state.link_status = LinkStatus.LINKED_LIMITED
            else:
                logger.error(f"Fetch registrations error: {e}")
                self._state.error = 'Failed to fetch registrations'
            self._state.is_loading = False
            return self._snapshot()
        except RunSignUpError as e:
            logger.error(f"Fetch registrations error: {e}")
            self._state.error = 'Failed to fetch registrations'
            self._state.is_loading = False
            return self._snapshot()

        self._state.upcoming_registrations = upcoming
        self._state.past_registrations = past
        self._state.is_loading = False
        return self._snapshot()

    # -------------------------------------------------------------------------
    # Races
    # -------------------------------------------------------------------------

    async def fetch_nearby_races(self, zipcode: Optional[str] = None, radius: int = 50) -> IntegrationState:
        profile = self._state.profile
        zipcode = zipcode or (profile.address.zipcode if profile else None)

        self._state.is_loading = True
        try:
            if zipcode:
                races = await self.races.near(zipcode, radius)
            else:
                races = await self.races.upcoming()
        except AuthInvalidError as e:
            self._require_relink(e)
            return self._snapshot()
        except RunSignUpError as e:
            logger.error(f"Fetch nearby races error: {e}")
            self._state.error = 'Failed to fetch races'
            self._state.is_loading = False
            return self._snapshot()

        self._state.nearby_races = races
        self._state.is_loading = False
        return self._snapshot()

    async def search_races(self, query: str) -> List[Race]:
        try:
            return await self.races.search(query)
        except RunSignUpError as e:
            logger.error(f"Search races error: {e}")
            self._state.error = 'Failed to search races'
            return []

    async def register_for_race(self, race_id: int, event_id: int,
                                data: Union[RegistrationRequest, Mapping[str, Any], None] = None) -> Registration:
        if not self._state.is_linked:
            raise NotLinkedError('User not linked to RunSignUp')

        payload = dict(vars(data)) if isinstance(data, RegistrationRequest) else dict(data or {})
        self._fill_identity(payload)

        self._state.is_loading = True
        try:
            registration = await self.registrations.register(race_id, event_id, payload)
        except AuthInvalidError as e:
            self._require_relink(e)
            raise
        except RunSignUpError as e:
            logger.error(f"Register for race error: {e}")
            self._state.error = str(e) or 'Failed to register for race'
            raise
        finally:
            self._state.is_loading = False

        logger.info("Registration successful, refreshing registrations")
        await self.fetch_registrations()
        return registration

    def _fill_identity(self, payload: Dict[str, Any]):
        """Prefer the RunSignUp profile, then a real linked identity, then the app user"""
        sources: List[Any] = []
        if self._state.profile is not None:
            sources.append(self._state.profile)
        if self._state.identity is not None and not self._state.identity.is_placeholder:
            sources.append(self._state.identity)
        if self.app_user is not None:
            sources.append(self.app_user)

        for name in ('first_name', 'last_name', 'email'):
            if str(payload.get(name) or '').strip():
                continue
            for source in sources:
                value = getattr(source, name, '')
                if value:
                    payload[name] = value
                    break

        profile = self._state.profile
        if profile is not None:
            if not payload.get('dob') and profile.dob:
                payload['dob'] = profile.dob
            if not payload.get('gender') and profile.gender:
                payload['gender'] = profile.gender
