"""
Views for the offers app.

    POST /api/offers/                           create
    GET  /api/offers/?status=&type=             offers I sent or received
    GET  /api/offers/{id}/
    POST /api/offers/{id}/accept/
    POST /api/offers/{id}/reject/
    POST /api/offers/{id}/counter/              {price, delivery_time, revisions, terms, message}
    POST /api/offers/{id}/accept-counter/       -> the newly created offer
    GET  /api/messaging/conversations/{id}/offers/
"""
from __future__ import annotations

import logging

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from common.exceptions import InvalidOfferFields
from common.pagination import DefaultPagination
from messaging import services as messaging
from messaging.models import Conversation

from . import services
from .models import Offer
from .serializers import CounterOfferSerializer, CreateOfferSerializer, OfferSerializer

logger = logging.getLogger(__name__)


def _validated(serializer_class, data) -> dict:
    ser = serializer_class(data=data)
    if not ser.is_valid():
        raise InvalidOfferFields(fields=ser.errors)
    return ser.validated_data


class OfferViewSet(viewsets.GenericViewSet):
    serializer_class = OfferSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = DefaultPagination

    def _offer(self, pk) -> Offer:
        try:
            return services.get_offer(pk, self.request.user)
        except Offer.DoesNotExist:
            raise NotFound("Offer not found.")

    def list(self, request, *args, **kwargs):
        qs = services.list_user_offers(
            request.user,
            status=request.query_params.get("status") or None,
            type=request.query_params.get("type") or None,
        )
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(qs, many=True).data)

    def retrieve(self, request, pk=None):
        return Response(self.get_serializer(self._offer(pk)).data)

    def create(self, request, *args, **kwargs):
        data = dict(_validated(CreateOfferSerializer, request.data))
        recipient = data.pop("recipient_id")
        conversation_id = data.pop("conversation_id", None)
        if conversation_id is None:
            conv, _ = messaging.get_or_create_conversation(request.user, recipient)
        else:
            try:
                conv = messaging.get_conversation_for(conversation_id, request.user)
            except Conversation.DoesNotExist:
                raise NotFound("Conversation not found.")
        offer = services.create_offer(conv, request.user, recipient, data)
        return Response(self.get_serializer(offer).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        offer = services.accept_offer(self._offer(pk), request.user)
        return Response(self.get_serializer(offer).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        offer = services.reject_offer(self._offer(pk), request.user)
        return Response(self.get_serializer(offer).data)

    @action(detail=True, methods=["post"], url_path="counter")
    def counter(self, request, pk=None):
        offer = self._offer(pk)
        counter = _validated(CounterOfferSerializer, request.data)
        offer = services.counter_offer(offer, request.user, counter)
        return Response(self.get_serializer(offer).data)

    @action(detail=True, methods=["post"], url_path="accept-counter")
    def accept_counter(self, request, pk=None):
        new_offer = services.accept_counter(self._offer(pk), request.user)
        return Response(self.get_serializer(new_offer).data, status=status.HTTP_201_CREATED)


class ConversationOffersView(APIView):
    """GET /api/messaging/conversations/{id}/offers/ (oldest first)"""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, conversation_id: int):
        try:
            conv = messaging.get_conversation_for(conversation_id, request.user)
        except Conversation.DoesNotExist:
            raise NotFound("Conversation not found.")
        offers = services.list_offers(conv, request.user)
        return Response(OfferSerializer(offers, many=True).data)
