"""
Tests for the offer state machine and its REST surface.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from common.exceptions import (
    AlreadyActedUpon,
    InvalidOfferFields,
    InvalidTransition,
    NotRecipient,
    NotSender,
    OfferExpired,
)
from offers import services
from offers.models import Offer


def offer_fields(**overrides):
    fields = {
        "service": "YouTube integration",
        "description": "60s mid-roll",
        "deliverables": ["1 video"],
        "terms": "Net 30",
        "price": Decimal("500"),
        "currency": "USD",
        "delivery_time": 7,
        "revisions": 2,
        "valid_until": timezone.now() + timedelta(days=7),
    }
    fields.update(overrides)
    return fields


# ---------- create ----------

@pytest.mark.django_db
def test_create_offer_derives_type_from_role(conversation, brand, creator, events):
    offer = services.create_offer(conversation, brand, creator, offer_fields())
    assert offer.type == Offer.TYPE_BRAND_TO_CREATOR
    assert offer.status == Offer.STATUS_PENDING
    assert events[-1][1] == "new_offer"
    assert events[-1][2]["offer"]["id"] == offer.id

    reverse = services.create_offer(conversation, creator, brand, offer_fields())
    assert reverse.type == Offer.TYPE_CREATOR_TO_BRAND


@pytest.mark.django_db
@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"price": Decimal("0")}, "price"),
        ({"price": Decimal("-10")}, "price"),
        ({"delivery_time": 0}, "delivery_time"),
        ({"revisions": -1}, "revisions"),
        ({"valid_until": timezone.now() - timedelta(seconds=1)}, "valid_until"),
        ({"type": Offer.TYPE_CREATOR_TO_BRAND}, "type"),
    ],
)
def test_create_offer_validation(conversation, brand, creator, overrides, field):
    with pytest.raises(InvalidOfferFields) as exc:
        services.create_offer(conversation, brand, creator, offer_fields(**overrides))
    assert field in exc.value.fields
    assert Offer.objects.count() == 0


@pytest.mark.django_db
def test_round_trip_keeps_field_values(brand_client, conversation, creator, events):
    valid_until = (timezone.now() + timedelta(days=7)).replace(microsecond=0)
    resp = brand_client.post(
        "/api/offers/",
        {
            "conversation_id": conversation.id,
            "recipient_id": creator.id,
            "service": "Reel",
            "price": 500,
            "delivery_time": 7,
            "revisions": 2,
            "currency": "USD",
            "valid_until": valid_until.isoformat(),
            "deliverables": ["1 reel"],
        },
        content_type="application/json",
    )
    assert resp.status_code == 201
    offer_id = resp.json()["id"]

    fetched = brand_client.get(f"/api/offers/{offer_id}/").json()
    assert Decimal(fetched["price"]) == Decimal("500")
    assert fetched["delivery_time"] == 7
    assert fetched["revisions"] == 2
    assert fetched["currency"] == "USD"
    assert fetched["status"] == "pending"
    assert fetched["type"] == "brand_to_creator"
    offer = Offer.objects.get(pk=offer_id)
    assert offer.valid_until == valid_until


@pytest.mark.django_db
def test_recipient_can_be_an_object_reference(brand_client, conversation, creator, events):
    resp = brand_client.post(
        "/api/offers/",
        {
            "conversation_id": conversation.id,
            "recipient_id": {"id": creator.id, "username": creator.username},
            "service": "Reel",
            "price": "250.00",
            "delivery_time": 3,
            "valid_until": (timezone.now() + timedelta(days=1)).isoformat(),
        },
        content_type="application/json",
    )
    assert resp.status_code == 201
    assert resp.json()["recipient_id"] == creator.id


@pytest.mark.django_db
def test_create_offer_endpoint_reports_fields(brand_client, conversation, creator):
    resp = brand_client.post(
        "/api/offers/",
        {
            "conversation_id": conversation.id,
            "recipient_id": creator.id,
            "service": "Reel",
            "price": 0,
            "delivery_time": 7,
            "valid_until": (timezone.now() + timedelta(days=1)).isoformat(),
        },
        content_type="application/json",
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_offer_fields"
    assert "price" in resp.json()["fields"]


# ---------- recipient transitions ----------

@pytest.mark.django_db
def test_only_recipient_may_act(make_offer, brand, events):
    offer = make_offer()
    with pytest.raises(NotRecipient):
        services.accept_offer(offer, brand)
    with pytest.raises(NotRecipient):
        services.reject_offer(offer, brand)
    with pytest.raises(NotRecipient):
        services.counter_offer(offer, brand, {"price": 600, "delivery_time": 5})
    offer.refresh_from_db()
    assert offer.status == Offer.STATUS_PENDING


@pytest.mark.django_db
def test_reject_is_terminal(make_offer, creator, events):
    offer = make_offer()
    rejected = services.reject_offer(offer, creator)
    assert rejected.status == Offer.STATUS_REJECTED
    assert events[-1][1] == "offer_updated"

    with pytest.raises(InvalidTransition):
        services.accept_offer(offer, creator)


@pytest.mark.django_db
def test_accept_then_reject_only_one_succeeds(make_offer, creator, events):
    offer = make_offer()
    accepted = services.accept_offer(offer, creator)
    assert accepted.status == Offer.STATUS_ACCEPTED

    with pytest.raises(InvalidTransition) as exc:
        services.reject_offer(offer, creator)
    assert isinstance(exc.value, AlreadyActedUpon)
    assert exc.value.extra["offer"]["status"] == "accepted"
    offer.refresh_from_db()
    assert offer.status == Offer.STATUS_ACCEPTED


@pytest.mark.django_db
def test_compare_and_swap_loser_gets_invalid_transition(make_offer, creator, events, monkeypatch):
    offer = make_offer()
    real_reload = services._reload
    calls = {"n": 0}

    def stale_then_real(o):
        # first read sees "pending"; meanwhile another request rejects it
        calls["n"] += 1
        loaded = real_reload(o)
        if calls["n"] == 1:
            Offer.objects.filter(pk=loaded.pk).update(status=Offer.STATUS_REJECTED)
        return loaded

    monkeypatch.setattr(services, "_reload", stale_then_real)
    with pytest.raises(InvalidTransition) as exc:
        services.accept_offer(offer, creator)
    assert not isinstance(exc.value, OfferExpired)
    assert exc.value.extra["offer"]["status"] == "rejected"
    assert Offer.objects.get(pk=offer.pk).status == Offer.STATUS_REJECTED


@pytest.mark.django_db
@pytest.mark.parametrize("action", ["accept", "reject", "counter"])
def test_expired_offer_cannot_transition(make_offer, creator, events, action):
    offer = make_offer(valid_until=timezone.now() - timedelta(seconds=1))
    assert offer.status == Offer.STATUS_PENDING
    assert offer.effective_status == Offer.STATUS_EXPIRED

    with pytest.raises(OfferExpired) as exc:
        if action == "accept":
            services.accept_offer(offer, creator)
        elif action == "reject":
            services.reject_offer(offer, creator)
        else:
            services.counter_offer(offer, creator, {"price": 600, "delivery_time": 5})
    assert exc.value.extra["offer"]["status"] == "expired"
    offer.refresh_from_db()
    assert offer.status == Offer.STATUS_PENDING
    assert events == []


@pytest.mark.django_db
def test_expired_accept_endpoint_returns_current_offer(make_offer, creator_client):
    offer = make_offer(valid_until=timezone.now() - timedelta(seconds=1))
    resp = creator_client.post(f"/api/offers/{offer.id}/accept/")
    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "offer_expired"
    assert body["offer"]["id"] == offer.id
    assert body["offer"]["stored_status"] == "pending"


@pytest.mark.django_db
def test_counter_validation(make_offer, creator):
    offer = make_offer()
    with pytest.raises(InvalidOfferFields) as exc:
        services.counter_offer(offer, creator, {"price": 0, "delivery_time": 0, "revisions": -1})
    assert set(exc.value.fields) == {"price", "delivery_time", "revisions"}


# ---------- counter / accept-counter ----------

@pytest.mark.django_db
def test_happy_path_negotiation(make_offer, brand, creator, events):
    o1 = make_offer()
    countered = services.counter_offer(
        o1, creator, {"price": Decimal("600"), "delivery_time": 10, "revisions": 3, "terms": "Net 15", "message": "Bit more?"}
    )
    assert countered.status == Offer.STATUS_COUNTERED
    assert Decimal(countered.counter_offer["price"]) == Decimal("600")

    o2 = services.accept_counter(o1, brand)

    o1.refresh_from_db()
    assert o1.status == Offer.STATUS_COUNTERED
    assert o2.pk != o1.pk
    assert o2.status == Offer.STATUS_PENDING
    assert o2.type == Offer.TYPE_CREATOR_TO_BRAND
    assert o2.price == Decimal("600.00")
    assert o2.delivery_time == 10
    assert o2.revisions == 3
    assert o2.terms == "Net 15"
    assert o2.deliverables == o1.deliverables
    assert o2.service == o1.service
    assert o2.currency == o1.currency
    assert o2.sender_id == creator.id
    assert o2.recipient_id == brand.id
    assert o2.parent_id == o1.id
    assert o2.valid_until > timezone.now() + timedelta(days=6)

    kinds = [e[1] for e in events]
    assert kinds[-2:] == ["offer_updated", "new_offer"]


@pytest.mark.django_db
def test_only_sender_may_accept_counter(make_offer, creator):
    offer = make_offer()
    services.counter_offer(offer, creator, {"price": 600, "delivery_time": 5})
    with pytest.raises(NotSender):
        services.accept_counter(offer, creator)


@pytest.mark.django_db
def test_accept_counter_requires_countered(make_offer, brand):
    offer = make_offer()
    with pytest.raises(InvalidTransition):
        services.accept_counter(offer, brand)


@pytest.mark.django_db
def test_accept_counter_twice_is_rejected(make_offer, brand, creator):
    offer = make_offer()
    services.counter_offer(offer, creator, {"price": 600, "delivery_time": 5})
    services.accept_counter(offer, brand)

    with pytest.raises(AlreadyActedUpon):
        services.accept_counter(offer, brand)
    assert Offer.objects.filter(parent=offer).count() == 1


@pytest.mark.django_db
def test_counter_validity_is_configurable(make_offer, brand, creator, settings):
    settings.OFFER_COUNTER_VALIDITY_DAYS = 2
    offer = make_offer()
    services.counter_offer(offer, creator, {"price": 600, "delivery_time": 5})
    new_offer = services.accept_counter(offer, brand)
    assert new_offer.valid_until < timezone.now() + timedelta(days=2, minutes=1)


@pytest.mark.django_db
def test_counter_flow_over_http(make_offer, brand_client, creator_client):
    offer = make_offer()
    resp = creator_client.post(
        f"/api/offers/{offer.id}/counter/",
        {"price": "600.00", "delivery_time": 9, "revisions": 1, "terms": "", "message": "Counter"},
        content_type="application/json",
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "countered"
    assert resp.json()["counter_offer"]["message"] == "Counter"

    resp = brand_client.post(f"/api/offers/{offer.id}/accept-counter/")
    assert resp.status_code == 201
    body = resp.json()
    assert body["type"] == "creator_to_brand"
    assert body["status"] == "pending"
    assert body["parent_id"] == offer.id

    again = brand_client.post(f"/api/offers/{offer.id}/accept-counter/")
    assert again.status_code == 409
    assert again.json()["code"] == "already_acted_upon"


# ---------- expiry sweep & listings ----------

@pytest.mark.django_db
def test_expire_offers_persists_status(make_offer, events):
    stale = make_offer(valid_until=timezone.now() - timedelta(minutes=1))
    fresh = make_offer()

    assert services.expire_offers() == 1
    stale.refresh_from_db()
    fresh.refresh_from_db()
    assert stale.status == Offer.STATUS_EXPIRED
    assert fresh.status == Offer.STATUS_PENDING
    assert events[-1][1] == "offer_updated"
    assert services.expire_offers() == 0


@pytest.mark.django_db
def test_expire_task_runs_the_sweep(make_offer):
    from offers.tasks import expire_stale_offers

    make_offer(valid_until=timezone.now() - timedelta(minutes=1))
    assert expire_stale_offers() == 1


@pytest.mark.django_db
def test_conversation_offers_listed_oldest_first(conversation, make_offer, brand_client, outsider_client):
    first = make_offer()
    second = make_offer()
    resp = brand_client.get(f"/api/messaging/conversations/{conversation.id}/offers/")
    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [first.id, second.id]

    assert outsider_client.get(f"/api/messaging/conversations/{conversation.id}/offers/").status_code == 403


@pytest.mark.django_db
def test_my_offers_filters(make_offer, creator, creator_client):
    pending = make_offer()
    expired = make_offer(valid_until=timezone.now() - timedelta(minutes=1))
    mine = make_offer(sender=creator)

    resp = creator_client.get("/api/offers/?status=pending")
    ids = {o["id"] for o in resp.json()["results"]}
    assert ids == {pending.id, mine.id}

    resp = creator_client.get("/api/offers/?status=expired")
    assert [o["id"] for o in resp.json()["results"]] == [expired.id]

    resp = creator_client.get("/api/offers/?type=creator_to_brand")
    assert [o["id"] for o in resp.json()["results"]] == [mine.id]


@pytest.mark.django_db
def test_outsider_cannot_see_offer(make_offer, outsider_client):
    offer = make_offer()
    resp = outsider_client.get(f"/api/offers/{offer.id}/")
    assert resp.status_code == 403
