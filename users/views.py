"""
Identity endpoints for the users app.

Token issue/refresh is delegated to SimpleJWT; this module only exposes
the authenticated caller's identity (id + marketplace role).
"""
from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import MeSerializer


class MeView(APIView):
    """GET /api/auth/me/"""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(MeSerializer(request.user).data)
