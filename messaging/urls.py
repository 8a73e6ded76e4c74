# messaging/urls.py
"""
URL configuration for the messaging app.

Defines REST endpoints for conversations and nested message resources.
These routes are included under the ``/api/messaging/`` prefix at the
project level.
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from offers.views import ConversationOffersView

from .views import (
    ConversationMessagesView,
    ConversationViewSet,
    MarkReadView,
    UnreadCountView,
    UploadView,
)

app_name = "messaging"

router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

urlpatterns = [
    # router routes (list/create/retrieve/destroy/archive on /conversations/)
    path("", include(router.urls)),

    # nested messages under a conversation
    path(
        "conversations/<int:conversation_id>/messages/",
        ConversationMessagesView.as_view(),
        name="conversation-messages",
    ),
    path(
        "conversations/<int:conversation_id>/read/",
        MarkReadView.as_view(),
        name="conversation-read",
    ),
    path(
        "conversations/<int:conversation_id>/offers/",
        ConversationOffersView.as_view(),
        name="conversation-offers",
    ),
    path("unread-count/", UnreadCountView.as_view(), name="unread-count"),
    path("uploads/", UploadView.as_view(), name="upload"),
]
