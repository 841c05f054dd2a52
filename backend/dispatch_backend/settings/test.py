from .settings import *

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# Write-through tasks run inline so tests can assert on rows
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

# Tests drive the timeout sweep themselves
ENABLE_OFFER_TIMEOUT_MONITOR = False
LOCATION_PERSIST_INTERVAL_SECONDS = 0

LOGGING["loggers"]["services"]["level"] = "WARNING"
LOGGING["loggers"]["rides"]["level"] = "WARNING"
