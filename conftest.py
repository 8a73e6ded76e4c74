"""
Common test fixtures for Django REST Framework API tests.

Provides fixtures for creating a brand, a creator and an outsider user
and for authenticating a client for each with a JWT token.  Also provides
a conversation fixture and an offer factory used in the messaging,
offers, payments and realtime tests.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth.models import User
from django.test import Client
from django.utils import timezone

from messaging.services import get_or_create_conversation
from offers.models import Offer
from users.models import UserProfile

PASSWORD = "pass12345"


def make_user(username, role, full_name=""):
    user = User.objects.create_user(username=username, password=PASSWORD, email=f"{username}@example.com")
    profile = user.profile
    profile.role = role
    profile.full_name = full_name
    profile.save()
    return user


def jwt_client(username):
    client = Client()
    resp = client.post(
        "/api/auth/token/",
        {"username": username, "password": PASSWORD},
        content_type="application/json",
    )
    assert resp.status_code == 200
    client.defaults["HTTP_AUTHORIZATION"] = f"Bearer {resp.json()['access']}"
    return client


@pytest.fixture
def brand(db):
    """Create a test user with the brand role."""
    return make_user("brand1", UserProfile.ROLE_BRAND, "Acme Brand")


@pytest.fixture
def creator(db):
    """Create a test user with the creator role."""
    return make_user("creator1", UserProfile.ROLE_CREATOR, "Cara Creator")


@pytest.fixture
def outsider(db):
    """Create a user who is not part of the test conversation."""
    return make_user("outsider", UserProfile.ROLE_CREATOR)


@pytest.fixture
def brand_client(brand):
    """Authenticate a client as the brand using JWT tokens."""
    return jwt_client(brand.username)


@pytest.fixture
def creator_client(creator):
    """Authenticate a client as the creator using JWT tokens."""
    return jwt_client(creator.username)


@pytest.fixture
def outsider_client(outsider):
    """Authenticate a client as the outsider using JWT tokens."""
    return jwt_client(outsider.username)


@pytest.fixture
def conversation(brand, creator):
    """Create the conversation between the brand and the creator."""
    conv, _ = get_or_create_conversation(brand, creator)
    return conv


@pytest.fixture
def make_offer(conversation, brand, creator):
    """Create an offer row directly, bypassing the service validation."""

    def _make(sender=None, recipient=None, **overrides):
        sender = sender or brand
        recipient = recipient or (creator if sender == brand else brand)
        fields = {
            "conversation": conversation,
            "sender": sender,
            "recipient": recipient,
            "type": Offer.TYPE_BRAND_TO_CREATOR if sender == brand else Offer.TYPE_CREATOR_TO_BRAND,
            "service": "Instagram reel",
            "description": "One 30s reel",
            "deliverables": ["1 reel", "3 stories"],
            "terms": "Usage rights 6 months",
            "price": Decimal("500.00"),
            "currency": "USD",
            "delivery_time": 7,
            "revisions": 2,
            "valid_until": timezone.now() + timedelta(days=7),
        }
        fields.update(overrides)
        return Offer.objects.create(**fields)

    return _make


@pytest.fixture
def events(monkeypatch):
    """Record realtime broadcasts as (conversation_id, event, payload)."""
    sent = []

    def _record(conversation_id, event, payload):
        sent.append((conversation_id, event, payload))

    monkeypatch.setattr("realtime.services.broadcast", _record)
    return sent
