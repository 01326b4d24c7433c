"""Builds the scan identity from a stored (encrypted) user profile."""

import json
import logging
from typing import Optional, Protocol

from engine.models.user import UserProfile
from sources.base import Address, IdentityProfile

logger = logging.getLogger(__name__)


class Decryptor(Protocol):
    def decrypt(self, value: str) -> str:
        ...


class PlaintextDecryptor:
    """For profiles stored without field encryption."""

    def decrypt(self, value: str) -> str:
        return value


_default_decryptor: Decryptor = PlaintextDecryptor()


def get_decryptor() -> Decryptor:
    return _default_decryptor


def _decrypt_field(profile: UserProfile, field_name: str, decryptor: Decryptor) -> Optional[str]:
    value = getattr(profile, field_name)
    if not value:
        return None
    try:
        return decryptor.decrypt(value)
    except Exception:
        # Never log the value
        logger.warning("Could not decrypt profile field %s, treating it as absent", field_name)
        return None


def _decrypt_list(profile: UserProfile, field_name: str, decryptor: Decryptor) -> list:
    raw = _decrypt_field(profile, field_name, decryptor)
    if raw is None:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Profile field %s is not valid JSON, treating it as absent", field_name)
        return []
    if not isinstance(parsed, list):
        logger.warning("Profile field %s is not a list, treating it as absent", field_name)
        return []
    return parsed


def _to_address(item) -> Optional[Address]:
    if isinstance(item, str):
        return Address(street=item)
    if not isinstance(item, dict):
        return None
    return Address(
        street=item.get("street") or "",
        city=item.get("city") or "",
        state=item.get("state") or "",
        zip_code=item.get("zip_code") or item.get("zipCode") or item.get("zip") or "",
        country=item.get("country") or "US",
    )


def prepare_identity(profile: UserProfile, decryptor: Optional[Decryptor] = None) -> IdentityProfile:
    """Decrypt every profile field independently into an immutable identity.

    A field that fails to decrypt or parse is left out; the scan goes ahead
    with whatever remains.
    """
    decryptor = decryptor or get_decryptor()

    def strings(field_name):
        return tuple(str(v).strip() for v in _decrypt_list(profile, field_name, decryptor) if v and str(v).strip())

    addresses = tuple(
        a for a in (_to_address(item) for item in _decrypt_list(profile, "addresses", decryptor)) if a
    )
    full_name = _decrypt_field(profile, "full_name", decryptor)

    return IdentityProfile(
        full_name=full_name.strip() if full_name else None,
        aliases=strings("aliases"),
        emails=strings("emails"),
        phones=strings("phones"),
        addresses=addresses,
        date_of_birth=_decrypt_field(profile, "date_of_birth", decryptor),
        usernames=strings("usernames"),
    )
