from .settings import *
import os
from dotenv import load_dotenv
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

DEBUG = False
SECRET_KEY = os.environ["DJANGO_SECRET_KEY"]
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(',')
CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(',')

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [REDIS_URL],
        },
    }
}

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)

# Engine tunables can be overridden per deployment
RIDE_OFFER_TIMEOUT_SECONDS = int(os.getenv("RIDE_OFFER_TIMEOUT_SECONDS", RIDE_OFFER_TIMEOUT_SECONDS))
RIDE_OFFER_MONITOR_INTERVAL = int(os.getenv("RIDE_OFFER_MONITOR_INTERVAL", RIDE_OFFER_MONITOR_INTERVAL))
DRIVER_LOCATION_STALE_SECONDS = int(os.getenv("DRIVER_LOCATION_STALE_SECONDS", DRIVER_LOCATION_STALE_SECONDS))
MATCHING_MAX_SESSION_SECONDS = int(os.getenv("MATCHING_MAX_SESSION_SECONDS", MATCHING_MAX_SESSION_SECONDS))
MATCHING_MAX_ACTIVE_SESSIONS = int(os.getenv("MATCHING_MAX_ACTIVE_SESSIONS", MATCHING_MAX_ACTIVE_SESSIONS))
