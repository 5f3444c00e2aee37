# config/settings/test.py
from .base import *  # noqa

SECRET_KEY = "test-secret-key"
SIMPLE_JWT["SIGNING_KEY"] = SECRET_KEY

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["loggers"]["hp_core"]["level"] = "DEBUG"
LOGGING["loggers"]["hp_core"]["propagate"] = True
