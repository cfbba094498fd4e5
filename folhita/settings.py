import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "folhita-catalogo-dev-only")
DEBUG = os.environ.get("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [host for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "catalogo",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "folhita.urls"
WSGI_APPLICATION = "folhita.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

# No models: the database only exists because the test runner expects one.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}
SESSION_ENGINE = "django.contrib.sessions.backends.cache"
MESSAGE_STORAGE = "django.contrib.messages.storage.session.SessionStorage"

LANGUAGE_CODE = "pt-br"
TIME_ZONE = os.environ.get("TIME_ZONE", "America/Bahia")
USE_I18N = False
USE_TZ = False

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CNPJ_LOOKUP_URL = os.environ.get("CNPJ_LOOKUP_URL", "https://brasilapi.com.br/api/cnpj/v1/{cnpj}")
CNPJ_LOOKUP_TIMEOUT = float(os.environ.get("CNPJ_LOOKUP_TIMEOUT", "10"))
# Seconds after which an unfinished render no longer blocks a new one.
PROPOSAL_RENDER_STALE_AFTER = float(os.environ.get("PROPOSAL_RENDER_STALE_AFTER", "60"))
# Seconds past the lookup timeout before an unfinished lookup no longer blocks.
BUSY_FLAG_MARGIN = float(os.environ.get("BUSY_FLAG_MARGIN", "5"))
# Brand logo drawn on the cover; no logo is drawn when unset.
FOLHITA_LOGO_PATH = os.environ.get("FOLHITA_LOGO_PATH", "")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "catalogo": {
            "handlers": ["console"],
            "level": os.environ.get("CATALOGO_LOG_LEVEL", "INFO"),
        },
    },
}
