"""
RunSignUp race registration and sign-up helpers
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Union

from .exceptions import ValidationError
from .models import Registration, RegistrationRequest
from .transport import ApiTransport

logger = logging.getLogger(__name__)

DEFAULT_TSHIRT_SIZES = ['XS', 'S', 'M', 'L', 'XL', 'XXL']

REQUIRED_IDENTITY_FIELDS = ('first_name', 'last_name', 'email')


def validate_identity(data: Mapping[str, Any]):
    """Reject blank identity fields before a request is sent"""
    missing = [name for name in REQUIRED_IDENTITY_FIELDS if not str(data.get(name) or '').strip()]
    if missing:
        raise ValidationError(f"Missing required registration fields: {', '.join(missing)}")
    if '@' not in str(data['email']):
        raise ValidationError(f"Invalid email address: {data['email']}")


class RegistrationClient:
    def __init__(self, transport: ApiTransport):
        self.transport = transport

    async def register(self, race_id: int, event_id: int,
                       data: Union[RegistrationRequest, Mapping[str, Any]]) -> Registration:
        """Register a participant for a race event"""
        request = data if isinstance(data, RegistrationRequest) else RegistrationRequest.from_mapping(dict(data))
        validate_identity(vars(request))
        request = replace(request, event_id=event_id)

        logger.info(f"Registering {request.email} for race {race_id} event {event_id}")
        response = await self.transport.post(f'/race/{race_id}/registration/add', request.to_form())

        registration = Registration.from_api(response)
        # The add endpoint does not always echo the ids back
        if not registration.race_id:
            registration.race_id = race_id
        if not registration.event_id:
            registration.event_id = event_id
        return registration

    async def update_registration(self, race_id: int, registration_id: int,
                                  updates: Mapping[str, Any]) -> Registration:
        form = {k: v for k, v in updates.items() if v is not None}
        response = await self.transport.post(
            f'/race/{race_id}/registration/{registration_id}/update', form
        )
        return Registration.from_api(response)

    async def registration_fields(self, race_id: int, event_id: int) -> Dict[str, Any]:
        response = await self.transport.get(f'/race/{race_id}/event/{event_id}/registration-fields')
        fields = dict(response or {})
        fields.setdefault('custom_questions', [])
        return fields

    async def event_pricing(self, race_id: int, event_id: int) -> Dict[str, Any]:
        response = await self.transport.get(f'/race/{race_id}/event/{event_id}/pricing')
        return response.get('pricing', response) if isinstance(response, dict) else response

    async def validate_coupon(self, race_id: int, event_id: int, coupon_code: str) -> Dict[str, Any]:
        if not coupon_code.strip():
            raise ValidationError("Coupon code is empty")
        return await self.transport.get(
            f'/race/{race_id}/event/{event_id}/validate-coupon', {'coupon_code': coupon_code}
        )

    async def check_availability(self, race_id: int, event_id: int) -> Dict[str, Any]:
        return await self.transport.get(f'/race/{race_id}/event/{event_id}/availability')

    async def registration_status(self, race_id: int, registration_id: int) -> Dict[str, Any]:
        return await self.transport.get(f'/race/{race_id}/registration/{registration_id}/status')

    async def add_to_waitlist(self, race_id: int, event_id: int,
                              user_data: Mapping[str, Any]) -> Dict[str, Any]:
        validate_identity(user_data)
        body = {name: str(user_data[name]).strip() for name in REQUIRED_IDENTITY_FIELDS}
        return await self.transport.post(f'/race/{race_id}/event/{event_id}/waitlist/add', body)

    async def tshirt_sizes(self, race_id: int) -> List[str]:
        response = await self.transport.get(f'/race/{race_id}/tshirt-sizes')
        sizes = response.get('sizes') if isinstance(response, dict) else None
        return list(sizes) if sizes else list(DEFAULT_TSHIRT_SIZES)

    async def calculate_cost(self, race_id: int, event_id: int, coupon_code: Optional[str] = None,
                             donation_amount: Optional[float] = None,
                             processing_fee_paid_by_user: Optional[bool] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {'event_id': event_id}
        if coupon_code:
            params['coupon_code'] = coupon_code
        if donation_amount:
            params['donation_amount'] = donation_amount
        if processing_fee_paid_by_user is not None:
            params['processing_fee_paid_by_user'] = 'T' if processing_fee_paid_by_user else 'F'
        return await self.transport.get(f'/race/{race_id}/calculate-cost', params)

    async def payment_url(self, race_id: int, registration_id: int) -> Optional[str]:
        response = await self.transport.get(
            f'/race/{race_id}/registration/{registration_id}/payment-url'
        )
        return response.get('payment_url') if isinstance(response, dict) else None

    async def verify_eligibility(self, race_id: int, event_id: int, email: str) -> Dict[str, Any]:
        if not email.strip():
            raise ValidationError("Email is required to verify eligibility")
        return await self.transport.get(
            f'/race/{race_id}/event/{event_id}/verify-eligibility', {'email': email}
        )
