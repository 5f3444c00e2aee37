# config/settings/base.py
from pathlib import Path
import os
from dotenv import load_dotenv
from datetime import timedelta


BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "unsafe-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    # Django
    "django.contrib.auth",
    "django.contrib.contenttypes",

    # Third-party
    "rest_framework",
    "rest_framework_simplejwt",

    # Domain apps
    "hp_core.common.apps.CommonConfig",
    "hp_core.iam.apps.IamConfig",
    "hp_core.records.apps.RecordsConfig",
    "hp_core.lifecycle.apps.LifecycleConfig",
    "hp_core.audit",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "hp"),
        "USER": os.getenv("DB_USER", "hp"),
        "PASSWORD": os.getenv("DB_PASSWORD", "hp"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "hp_core.iam.auth.PrincipalJWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    # Standard error envelope, GuardError mapping
    "EXCEPTION_HANDLER": "hp_core.common.api.exceptions.api_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=10),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=14),
    "USER_ID_CLAIM": "user_id",
    "SIGNING_KEY": os.getenv("JWT_SIGNING_KEY", SECRET_KEY),
}

HP_GUARD = {
    "ROLE_CLAIM": os.getenv("HP_GUARD_ROLE_CLAIM", "role"),
    "DEFAULT_TIMEOUT_MS": int(os.getenv("HP_GUARD_TIMEOUT_MS", "5000")),
    "AUDIT_DENIED_ACTIONS": ("delete", "soft_delete", "hard_delete", "export"),
    "AUDIT_ALLOWED_READ_ACTIONS": ("export",),
}

LOG_LEVEL = os.getenv("DJANGO_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "loggers": {
        "hp_core": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "django.db.backends": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
}
