from django.conf import settings
from django.shortcuts import redirect


def index(request):
    # The chat UI lives in the SPA; the backend only serves the API
    return redirect(settings.FRONTEND_URL)
