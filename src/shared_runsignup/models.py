"""
Data models for RunSignUp API payloads
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

PLACEHOLDER_USER_ID = 1
PLACEHOLDER_EMAIL = 'oauth@linked.user'


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool:
    # RunSignUp sends most flags as 'T'/'F'
    if isinstance(value, str):
        return value.strip().upper() in ('T', 'TRUE', '1', 'Y', 'YES')
    return bool(value)


def _str(value: Any) -> str:
    return '' if value is None else str(value)


def _unwrap(data: Any, key: str) -> Dict[str, Any]:
    """Peel ``{key: {key: {...}}}`` nesting down to the innermost record"""
    while isinstance(data, dict) and isinstance(data.get(key), dict):
        data = data[key]
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class Credential:
    """OAuth credential; access token and expiry are always replaced together"""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    @classmethod
    def issue(cls, access_token: str, expires_in: int, refresh_token: Optional[str] = None,
              now: Optional[datetime] = None) -> 'Credential':
        now = now or datetime.now(timezone.utc)
        return cls(
            access_token=access_token,
            expires_at=now + timedelta(seconds=expires_in),
            refresh_token=refresh_token or None,
        )

    @classmethod
    def from_token_response(cls, data: Dict[str, Any], default_expires_in: int = 3600,
                            now: Optional[datetime] = None) -> 'Credential':
        return cls.issue(
            access_token=data['access_token'],
            expires_in=_int(data.get('expires_in'), default_expires_in),
            refresh_token=data.get('refresh_token'),
            now=now,
        )


@dataclass
class LinkedIdentity:
    """Minimal RunSignUp identity obtained once authorization completes"""
    user_id: int
    email: str
    first_name: str = ''
    last_name: str = ''

    @property
    def is_placeholder(self) -> bool:
        return self.user_id <= PLACEHOLDER_USER_ID

    @classmethod
    def placeholder(cls) -> 'LinkedIdentity':
        """Identity used when the account is linked but detail lookups are denied"""
        return cls(
            user_id=PLACEHOLDER_USER_ID,
            email=PLACEHOLDER_EMAIL,
            first_name='RunSignUp',
            last_name='User',
        )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'LinkedIdentity':
        data = _unwrap(data, 'user')
        return cls(
            user_id=_int(data.get('user_id')),
            email=_str(data.get('email')),
            first_name=_str(data.get('first_name')),
            last_name=_str(data.get('last_name')),
        )


@dataclass
class Address:
    street: str = ''
    city: str = ''
    state: str = ''
    zipcode: str = ''
    country_code: str = ''

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> 'Address':
        data = data or {}
        return cls(
            street=_str(data.get('street')),
            city=_str(data.get('city')),
            state=_str(data.get('state')),
            zipcode=_str(data.get('zipcode')),
            country_code=_str(data.get('country_code')),
        )


@dataclass
class UserProfile:
    """Full RunSignUp user record"""
    user_id: int
    first_name: str
    last_name: str
    email: str
    address: Address = field(default_factory=Address)
    middle_name: Optional[str] = None
    dob: Optional[str] = None  # YYYY-MM-DD
    gender: Optional[str] = None  # M, F or O
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None

    def to_identity(self) -> LinkedIdentity:
        return LinkedIdentity(
            user_id=self.user_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
        )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'UserProfile':
        data = _unwrap(data, 'user')
        return cls(
            user_id=_int(data.get('user_id')),
            first_name=_str(data.get('first_name')),
            last_name=_str(data.get('last_name')),
            email=_str(data.get('email')),
            address=Address.from_api(data.get('address')),
            middle_name=data.get('middle_name'),
            dob=data.get('dob'),
            gender=data.get('gender'),
            phone=data.get('phone'),
            profile_image_url=data.get('profile_image_url'),
        )


@dataclass
class RaceEvent:
    """Event within a race; never fetched on its own"""
    event_id: int
    name: str
    distance: Optional[str] = None
    distance_unit: Optional[str] = None
    start_time: Optional[str] = None
    registration_opens: Optional[str] = None
    registration_closes: Optional[str] = None
    online_registration_available: bool = False
    registration_available: bool = False
    max_registrations: Optional[int] = None
    num_registrations: Optional[int] = None
    price: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.online_registration_available and self.registration_available

    @property
    def spots_remaining(self) -> Optional[int]:
        if self.max_registrations is None:
            return None
        return max(self.max_registrations - (self.num_registrations or 0), 0)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RaceEvent':
        data = _unwrap(data, 'event')
        return cls(
            event_id=_int(data.get('event_id')),
            name=_str(data.get('name')),
            distance=data.get('distance'),
            distance_unit=data.get('distance_unit'),
            start_time=data.get('start_time'),
            registration_opens=data.get('registration_opens'),
            registration_closes=data.get('registration_closes'),
            online_registration_available=_bool(data.get('online_registration_available')),
            registration_available=_bool(data.get('registration_available')),
            max_registrations=_opt_int(data.get('max_registrations')),
            num_registrations=_opt_int(data.get('num_registrations')),
            price=data.get('price'),
        )


@dataclass
class Race:
    """Race snapshot; dates arrive as MM/DD/YYYY strings"""
    race_id: int
    name: str
    address: Address = field(default_factory=Address)
    next_date: Optional[str] = None
    last_date: Optional[str] = None
    last_end_date: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    events: List[RaceEvent] = field(default_factory=list)
    is_registration_open: bool = False
    contact_email: Optional[str] = None
    fundraising_enabled: bool = False
    fundraising_goal: Optional[float] = None
    fundraising_raised: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Race':
        data = _unwrap(data, 'race')
        return cls(
            race_id=_int(data.get('race_id')),
            name=_str(data.get('name')),
            address=Address.from_api(data.get('address')),
            next_date=data.get('next_date'),
            last_date=data.get('last_date'),
            last_end_date=data.get('last_end_date'),
            description=data.get('description'),
            url=data.get('url'),
            logo_url=data.get('logo_url'),
            banner_url=data.get('banner_url'),
            events=[RaceEvent.from_api(e) for e in data.get('events') or []],
            is_registration_open=_bool(data.get('is_registration_open')),
            contact_email=data.get('contact_email'),
            fundraising_enabled=_bool(data.get('fundraising_enabled')),
            fundraising_goal=_opt_float(data.get('fundraising_goal')),
            fundraising_raised=_opt_float(data.get('fundraising_raised')),
        )


@dataclass
class RaceListResult:
    races: List[Race]
    total: int


@dataclass
class RaceParticipant:
    registration_id: int
    event_id: int
    user: LinkedIdentity
    bib_num: Optional[str] = None
    chip_num: Optional[str] = None
    age: Optional[int] = None
    registration_date: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RaceParticipant':
        return cls(
            registration_id=_int(data.get('registration_id')),
            event_id=_int(data.get('event_id')),
            user=LinkedIdentity.from_api(data.get('user') or {}),
            bib_num=_str(data['bib_num']) if data.get('bib_num') else None,
            chip_num=data.get('chip_num'),
            age=_opt_int(data.get('age')),
            registration_date=data.get('registration_date'),
        )


@dataclass
class ParticipantList:
    participants: List[RaceParticipant]
    total: int


class RegistrationStatus(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    TRANSFERRED = 'transferred'
    PENDING_PAYMENT = 'pending_payment'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value: Any) -> 'RegistrationStatus':
        try:
            return cls(_str(value).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Registration:
    """Server-authoritative registration record; race/event referenced by id"""
    registration_id: int
    race_id: int
    event_id: int
    status: RegistrationStatus
    user: Optional[LinkedIdentity] = None
    race_name: str = ''
    event_name: str = ''
    race_date: Optional[str] = None
    registration_date: Optional[str] = None
    bib_num: Optional[str] = None
    payment_required: bool = False
    payment_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Registration':
        record = _unwrap(data, 'registration')
        user = record.get('user')
        return cls(
            registration_id=_int(record.get('registration_id', data.get('registration_id'))),
            race_id=_int(record.get('race_id')),
            event_id=_int(record.get('event_id')),
            status=RegistrationStatus.parse(record.get('status')),
            user=LinkedIdentity.from_api(user) if isinstance(user, dict) else None,
            race_name=_str(record.get('race_name')),
            event_name=_str(record.get('event_name')),
            race_date=record.get('race_date'),
            registration_date=record.get('registration_date'),
            bib_num=_str(record['bib_num']) if record.get('bib_num') else None,
            payment_required=_bool(data.get('payment_required', record.get('payment_required'))),
            payment_url=data.get('payment_url') or record.get('payment_url'),
        )


@dataclass
class RegistrationRequest:
    """Sign-up payload for a race event"""
    first_name: str
    last_name: str
    email: str
    dob: Optional[str] = None  # YYYY-MM-DD
    gender: Optional[str] = None
    event_id: Optional[int] = None
    address: Optional[Address] = None
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    tshirt_size: Optional[str] = None
    bib_number: Optional[str] = None
    team_id: Optional[int] = None
    team_name: Optional[str] = None
    coupon_code: Optional[str] = None
    donation_amount: Optional[float] = None
    offline_payment: bool = False
    custom_questions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'RegistrationRequest':
        known = {name for name in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        address = kwargs.get('address')
        if isinstance(address, dict):
            kwargs['address'] = Address.from_api(address)
        for name in ('first_name', 'last_name', 'email'):
            kwargs[name] = _str(kwargs.get(name))
        return cls(**kwargs)

    def to_form(self) -> Dict[str, Any]:
        """Flatten to the field names the registration endpoints expect"""
        form: Dict[str, Any] = {
            'first_name': self.first_name.strip(),
            'last_name': self.last_name.strip(),
            'email': self.email.strip(),
            'dob': self.dob,
            'gender': self.gender,
            'event_id': self.event_id,
        }

        if self.address:
            if self.address.street:
                form['address_street'] = self.address.street
            if self.address.city:
                form['address_city'] = self.address.city
            if self.address.state:
                form['address_state'] = self.address.state
            if self.address.zipcode:
                form['address_zipcode'] = self.address.zipcode
            if self.address.country_code:
                form['address_country'] = self.address.country_code

        optional = {
            'phone': self.phone,
            'emergency_contact_name': self.emergency_contact_name,
            'emergency_contact_phone': self.emergency_contact_phone,
            'tshirt_size': self.tshirt_size,
            'bib_num': self.bib_number,
            'team_id': self.team_id,
            'team_name': self.team_name,
            'coupon_code': self.coupon_code,
            'donation_amount': self.donation_amount,
        }
        form.update({k: v for k, v in optional.items() if v})
        if self.offline_payment:
            form['offline_payment'] = 'T'

        form.update(self.custom_questions)
        return {k: v for k, v in form.items() if v is not None}


@dataclass
class PhotoImage:
    image_url: str = ''
    width: int = 0
    height: int = 0

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> 'PhotoImage':
        data = data or {}
        return cls(
            image_url=_str(data.get('image_url')),
            width=_int(data.get('width')),
            height=_int(data.get('height')),
        )


@dataclass
class RacePhoto:
    """Read-only race photo with three image variants"""
    photo_id: int
    album_id: int
    thumbnail: PhotoImage
    large: PhotoImage
    original: PhotoImage
    uploaded_ts: int = 0  # Unix timestamp
    bibs: List[str] = field(default_factory=list)
    race_event_days_id: Optional[int] = None
    uploaded_filename: Optional[str] = None
    photographer_name: Optional[str] = None
    caption: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RacePhoto':
        data = _unwrap(data, 'photo')
        return cls(
            photo_id=_int(data.get('photo_id')),
            album_id=_int(data.get('album_id')),
            thumbnail=PhotoImage.from_api(data.get('thumbnail')),
            large=PhotoImage.from_api(data.get('large')),
            original=PhotoImage.from_api(data.get('original')),
            uploaded_ts=_int(data.get('uploaded_ts')),
            bibs=[_str(b) for b in data.get('bibs') or []],
            race_event_days_id=_opt_int(data.get('race_event_days_id')),
            uploaded_filename=data.get('uploaded_filename'),
            photographer_name=data.get('photographer_name'),
            caption=data.get('caption'),
        )


@dataclass
class PhotoAlbum:
    album_id: int
    album_name: str
    race_id: int
    photo_count: int = 0
    race_event_days_id: Optional[int] = None
    created_date: Optional[str] = None
    is_public: bool = True
    cover_photo: Optional[RacePhoto] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'PhotoAlbum':
        data = _unwrap(data, 'album')
        cover = data.get('cover_photo')
        return cls(
            album_id=_int(data.get('album_id')),
            album_name=_str(data.get('album_name')),
            race_id=_int(data.get('race_id')),
            photo_count=_int(data.get('photo_count')),
            race_event_days_id=_opt_int(data.get('race_event_days_id')),
            created_date=data.get('created_date'),
            is_public=_bool(data.get('is_public', True)),
            cover_photo=RacePhoto.from_api(cover) if isinstance(cover, dict) else None,
        )


@dataclass
class PhotoPage:
    photos: List[RacePhoto]
    total: int


class AuthorizationOutcome(str, Enum):
    SUCCESS = 'success'
    CANCELLED = 'cancelled'
    ERROR = 'error'


@dataclass
class AuthorizationResult:
    """How an interactive authorization flow resolved"""
    outcome: AuthorizationOutcome
    params: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def code(self) -> Optional[str]:
        return self.params.get('code')

    @property
    def access_token(self) -> Optional[str]:
        return self.params.get('access_token')
