# config/settings/prod.py
from .base import *  # noqa

DEBUG = False
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "").split(",") if h]

SIMPLE_JWT["ACCESS_TOKEN_LIFETIME"] = timedelta(minutes=5)
HP_GUARD["DEFAULT_TIMEOUT_MS"] = int(os.getenv("HP_GUARD_TIMEOUT_MS", "3000"))
