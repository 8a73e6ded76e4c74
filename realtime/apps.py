from django.apps import AppConfig


class RealtimeConfig(AppConfig):
    """Configuration for the realtime app.

    The realtime app is the best-effort fan-out layer: it owns the
    per-conversation rooms on the channel layer and the websocket
    consumer that joins/leaves them.  It holds no models; anything a
    client misses while disconnected is recovered by re-fetching over
    REST, never by replaying the bus.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "realtime"
