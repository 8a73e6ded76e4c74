"""
Views for the messaging app.

Expose RESTful endpoints for the 1:1 brand/creator conversations and
their messages.  Authentication is required for all endpoints; the
participant check lives in the service layer so the websocket consumer
enforces the same rules.
"""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .models import Conversation
from .permissions import IsConversationParticipant
from .serializers import (
    ArchiveSerializer,
    AttachmentSerializer,
    ConversationSerializer,
    MessageSerializer,
    SendMessageSerializer,
    StartConversationSerializer,
    UploadSerializer,
)
from .uploads import store_attachment

logger = logging.getLogger(__name__)

User = get_user_model()


class ConversationViewSet(viewsets.GenericViewSet):
    """
    GET    /conversations/              list mine (?archived=true|false)
    POST   /conversations/              {recipient_id} -> get or create
    GET    /conversations/{id}/
    DELETE /conversations/{id}/         hide for me
    POST   /conversations/{id}/archive/ {archived}
    """

    serializer_class = ConversationSerializer
    permission_classes = [permissions.IsAuthenticated, IsConversationParticipant]
    pagination_class = None

    def get_queryset(self):
        return Conversation.objects.select_related(
            "user1__profile", "user2__profile", "last_message"
        )

    def list(self, request, *args, **kwargs):
        archived = request.query_params.get("archived")
        if archived is not None:
            archived = archived.lower() in ("1", "true", "yes")
        qs = services.list_conversations(request.user, archived=archived)
        return Response(self.get_serializer(qs, many=True).data)

    def retrieve(self, request, *args, **kwargs):
        return Response(self.get_serializer(self.get_object()).data)

    def create(self, request, *args, **kwargs):
        ser = StartConversationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        recipient = get_object_or_404(User, pk=ser.validated_data["recipient_id"])
        conv, created = services.get_or_create_conversation(request.user, recipient)
        conv = self.get_queryset().get(pk=conv.pk)
        return Response(
            self.get_serializer(conv).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def destroy(self, request, *args, **kwargs):
        services.delete_conversation(self.get_object(), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="archive")
    def archive(self, request, pk=None):
        ser = ArchiveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conv = services.archive_conversation(self.get_object(), request.user, ser.validated_data["archived"])
        return Response(self.get_serializer(conv).data)


class ConversationMessagesView(APIView):
    """
    GET  /conversations/{id}/messages/?page=N   (page 1 = most recent)
    POST /conversations/{id}/messages/          {content?, file?, client_id?}
    """

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, conversation_id: int):
        conv = _conversation_or_404(conversation_id, request.user)
        try:
            page = max(int(request.query_params.get("page", 1)), 1)
        except (TypeError, ValueError):
            page = 1
        messages, has_more = services.list_messages(conv, request.user, page=page)
        return Response({
            "results": MessageSerializer(messages, many=True).data,
            "page": page,
            "has_more": has_more,
        })

    def post(self, request, conversation_id: int):
        conv = _conversation_or_404(conversation_id, request.user)
        ser = SendMessageSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        message, created = services.send_message(
            conv,
            request.user,
            content=data.get("content"),
            file=data.get("file"),
            client_id=data.get("client_id") or None,
            type=data.get("type"),
        )
        return Response(
            MessageSerializer(message).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class MarkReadView(APIView):
    """POST /conversations/{id}/read/"""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, conversation_id: int):
        conv = _conversation_or_404(conversation_id, request.user)
        return Response(services.mark_read(conv, request.user))


class UnreadCountView(APIView):
    """GET /unread-count/ -> {"unread_count": N}"""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response({"unread_count": services.total_unread(request.user)})


class UploadView(APIView):
    """POST /uploads/ (multipart "file") -> {"url", "name", "mime_type"}"""

    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        ser = UploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        ref = store_attachment(ser.validated_data["file"], request.user)
        return Response(AttachmentSerializer(ref).data, status=status.HTTP_201_CREATED)


def _conversation_or_404(conversation_id, user) -> Conversation:
    try:
        return services.get_conversation_for(conversation_id, user)
    except Conversation.DoesNotExist:
        raise NotFound("Conversation not found.")
