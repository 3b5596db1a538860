"""
Client identity resolution.

Clients are matched within a business by email OR phone. A booking for an
unknown identity creates the client; a known client gets any newly supplied
contact fields merged in. Runs inside the booking scope so the client and the
appointment commit together.
"""

import logging
from uuid import UUID, uuid4

import phonenumbers
from pydantic import BaseModel, EmailStr, model_validator

from booking.errors import BookingValidationError
from database.models import Client
from database.repository import BookingUnit

logger = logging.getLogger(__name__)


class ClientIdentity(BaseModel):
    name: str
    email: EmailStr | None = None
    phone: str | None = None

    @model_validator(mode="after")
    def require_contact(self) -> "ClientIdentity":
        if not self.email and not self.phone:
            raise ValueError("email or phone is required")
        return self


def normalize_phone(phone: str, region: str) -> str | None:
    """
    Normalize phone number to E.164 format.

    Args:
        phone: Phone number in any format
        region: Default region for numbers without country code (e.g. "AR")

    Returns:
        E.164 formatted phone number (e.g., "+5491123456789") or None if invalid
    """
    try:
        parsed = phonenumbers.parse(phone, region)
        if not phonenumbers.is_valid_number(parsed):
            logger.warning(f"Invalid phone number: {phone}")
            return None
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException as e:
        logger.warning(f"Failed to parse phone number '{phone}': {e}")
        return None


def normalized_identity(identity: ClientIdentity, region: str) -> ClientIdentity:
    """Copy of identity with a lowercased email and an E.164 phone."""
    phone = None
    if identity.phone:
        phone = normalize_phone(identity.phone, region)
        if phone is None:
            raise BookingValidationError(
                "Número de teléfono inválido",
                error_code="INVALID_PHONE",
                details={"phone": identity.phone},
            )
    email = identity.email.lower() if identity.email else None
    return identity.model_copy(update={"email": email, "phone": phone})


async def upsert_client(unit: BookingUnit, business_id: UUID, identity: ClientIdentity) -> Client:
    """Find the business's client by email or phone, creating it if missing."""
    client = await unit.find_client(business_id, identity.email, identity.phone)
    if client is None:
        client = Client(
            id=uuid4(),
            business_id=business_id,
            name=identity.name,
            email=identity.email,
            phone=identity.phone,
        )
        await unit.add_client(client)
        logger.info("Client created", extra={"business_id": str(business_id)})
        return client

    changed = False
    if identity.email and not client.email:
        client.email = identity.email
        changed = True
    if identity.phone and not client.phone:
        client.phone = identity.phone
        changed = True
    if identity.name and identity.name != client.name:
        client.name = identity.name
        changed = True
    if changed:
        await unit.save(client)
    return client
