"""
URL configuration for the negotiation messaging backend.
All API endpoints live under the `/api/` prefix.  Token endpoints are
nested under `/api/auth/`.
"""

from django.contrib import admin
from django.urls import include, path
from django.views.generic import RedirectView
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from django.conf import settings
from django.conf.urls.static import static

from marketplace_backend.views import index


urlpatterns = [
    path("", index, name="index"),
    path("admin/", admin.site.urls),

    path("api/", RedirectView.as_view(pattern_name="swagger-ui", permanent=False)),

    # Swagger
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),

    path("api/auth/", include("users.urls")),
    path("api/messaging/", include("messaging.urls")),
    path("api/", include("offers.urls")),
]

if settings.DEBUG and getattr(settings, "MEDIA_URL", "").startswith("/"):
    # Only serve MEDIA_URL via Django if it's a local path (avoid trying to serve S3)
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
