"""Coach profile view-model built from the settings records."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Iterable, Optional

from pydantic import BaseModel

from fittrack_api import SettingsApi
from logger import get_logger
from normalizer import find_record

logger = get_logger("profile")

# field -> record keys tried in order
FALLBACKS = {
    "name": ("name", "company_name"),
    "email": ("email",),
    "phone": ("phone",),
    "image": ("image", "logo_url"),
    "role": ("role",),
    "notification_count": ("notification_count", "unread_notifications"),
}


class UserProfile(BaseModel):
    name: str = "Guest User"
    email: str = ""
    phone: str = ""
    image: str = "/images/profile.jpg"
    role: str = "user"
    notification_count: int = 0


def _first_value(records: list, keys: tuple) -> Optional[object]:
    for record in records:
        for key in keys:
            value = record.get(key)
            if value not in (None, ""):
                return value
    return None


def profile_from_records(
    records: Iterable, base: Optional[UserProfile] = None
) -> UserProfile:
    """Merge the profile and company records over ``base``.

    The record tagged ``type == "profile"`` wins, falling back to the first
    record; a ``type == "company"`` record fills whatever it lacks.
    """
    records = [
        r["settings"] if isinstance(r.get("settings"), Mapping) else r
        for r in records
        if isinstance(r, Mapping)
    ]
    base = base or UserProfile()
    primary = find_record(records, type="profile")
    if primary is None:
        return base
    sources = [primary]
    company = find_record(records, type="company")
    if company is not None and company is not primary and company.get("type") == "company":
        sources.append(company)

    values = base.model_dump()
    for field, keys in FALLBACKS.items():
        value = _first_value(sources, keys)
        if value is None:
            continue
        if field == "notification_count":
            try:
                value = int(value)
            except (TypeError, ValueError):
                continue
        else:
            value = str(value)
        values[field] = value
    return UserProfile(**values)


def settings_payload(profile: UserProfile) -> dict:
    return {
        "company_name": profile.name,
        "email": profile.email,
        "phone": profile.phone,
        "logo_url": profile.image,
    }


class ProfileService:
    """Loads and saves the coach profile through the settings operations."""

    def __init__(self, settings: SettingsApi) -> None:
        self.settings = settings
        self.profile = UserProfile()

    async def load(self) -> UserProfile:
        records = await self.settings.get()
        self.profile = profile_from_records(records, self.profile)
        return self.profile

    def update(self, **changes) -> UserProfile:
        self.profile = self.profile.model_copy(update=changes)
        return self.profile

    async def save(self, profile: Optional[UserProfile] = None) -> None:
        profile = profile or self.profile
        resp = await self.settings.set(settings_payload(profile))
        if not resp.success:
            logger.error("Error saving profile: %r", resp.data)
            raise ValueError("Failed to save profile")
        self.profile = profile
