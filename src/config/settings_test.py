"""Settings for the pytest run: SQLite, local-memory cache, eager Celery."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from config.settings import *  # noqa: E402,F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "storefront-tests",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

BKASH_ENABLED = False
BKASH_MOCK = False
BKASH_WEBHOOK_SECRET = "test-bkash-webhook-secret"
PAYMENT_WEBHOOK_SECRET = "test-payment-webhook-secret"
WEBHOOK_SEEN_EVENT_BACKEND = "database"
FRONTEND_URL = "http://frontend.test"
