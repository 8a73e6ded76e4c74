"""
Identity helpers used by the messaging and offer services.

The marketplace role and display fields are resolved once here, at the
boundary, so the rest of the code never has to sniff user objects.
"""
from __future__ import annotations

from .models import UserProfile


def get_profile(user) -> UserProfile:
    profile = getattr(user, "profile", None)
    if profile is None:
        profile, _ = UserProfile.objects.get_or_create(user=user)
    return profile


def get_role(user) -> str:
    return get_profile(user).role


def display_name(user) -> str:
    """Best-effort printable name for a user."""
    if user is None:
        return ""
    profile = getattr(user, "profile", None)
    name = (getattr(profile, "full_name", "") or user.get_full_name() or user.username or "").strip()
    return name or f"User {user.pk}"


def avatar_url(user) -> str:
    profile = getattr(user, "profile", None)
    return getattr(profile, "avatar_url", "") or ""
