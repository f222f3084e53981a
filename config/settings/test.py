# config/settings/test.py
from .base import *  # noqa

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["loggers"]["hb_core"]["level"] = "WARNING"  # noqa: F405
LOGGING["loggers"]["hb_core"]["propagate"] = True  # noqa: F405
