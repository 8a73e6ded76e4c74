"""
Models for the users app.

Identity and authentication are owned by Django's built-in `auth.User`
and SimpleJWT.  The only thing the negotiation core needs on top of that
is the marketplace role (brand or creator) plus a couple of display
fields, kept on a one-to-one `UserProfile` that is created automatically
via signals.
"""
from django.contrib.auth.models import User
from django.db import models


class UserProfile(models.Model):
    """Marketplace role and display data for a user."""

    ROLE_BRAND = "brand"
    ROLE_CREATOR = "creator"
    ROLE_CHOICES = [
        (ROLE_BRAND, "Brand"),
        (ROLE_CREATOR, "Creator"),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_CREATOR)
    full_name = models.CharField(max_length=255, blank=True)
    avatar_url = models.URLField(max_length=500, blank=True)

    def __str__(self) -> str:
        return f"Profile<{self.user.username}:{self.role}>"

    class Meta:
        indexes = [
            models.Index(fields=["role"], name="userprofile_role_idx"),
        ]
