"""
Custom permission classes for the messaging app.

Only the two participants of a conversation may read or write it.
"""
from rest_framework.permissions import BasePermission

from common.exceptions import NotParticipant


class IsConversationParticipant(BasePermission):
    """Object permission; raises NotParticipant so the body carries its code."""

    def has_object_permission(self, request, view, obj):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        conv = getattr(obj, "conversation", obj)
        if not conv.has_participant(user.id):
            raise NotParticipant()
        return True
