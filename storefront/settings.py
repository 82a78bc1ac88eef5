"""
Django settings for storefront project.

Values come from the environment; the defaults target local development
and the test suite (SQLite, database notification sink).
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'storefront-insecure-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', False)

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'commerce.apps.CommerceConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'storefront.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'storefront.asgi.application'

if os.environ.get('POSTGRES_DB'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ['POSTGRES_DB'],
            'USER': os.environ.get('POSTGRES_USER', 'postgres'),
            'PASSWORD': os.environ.get('POSTGRES_PASSWORD', ''),
            'HOST': os.environ.get('POSTGRES_HOST', 'localhost'),
            'PORT': os.environ.get('POSTGRES_PORT', '5432'),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'commerce.utils.logging.JsonFormatter',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
    },
    'loggers': {
        'commerce': {
            'handlers': ['console'],
            'level': os.environ.get('STOREFRONT_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# KPay mobile money gateway
KPAY_BASE_URL = os.environ.get('KPAY_BASE_URL', 'https://pay.esicia.com/')
KPAY_USERNAME = os.environ.get('KPAY_USERNAME', '')
KPAY_PASSWORD = os.environ.get('KPAY_PASSWORD', '')
KPAY_RETAILER_ID = os.environ.get('KPAY_RETAILER_ID', '')
KPAY_ENVIRONMENT = os.environ.get('KPAY_ENVIRONMENT', 'sandbox')
KPAY_WEBHOOK_URL = os.environ.get('KPAY_WEBHOOK_URL', '')
KPAY_REDIRECT_URL = os.environ.get('KPAY_REDIRECT_URL', '')
KPAY_TIMEOUT_SECONDS = float(os.environ.get('KPAY_TIMEOUT_SECONDS', '15'))

# Notification delivery: "database" writes Notification rows,
# "http" POSTs to NOTIFICATIONS_ENDPOINT.
NOTIFICATION_SINK = os.environ.get('NOTIFICATION_SINK', 'database')
NOTIFICATIONS_ENDPOINT = os.environ.get('NOTIFICATIONS_ENDPOINT', '')

STOREFRONT = {
    'REFUND_WINDOW_HOURS': 24,
    'NOTIFICATION_THROTTLE_SECONDS': 10,
    'RESTOCK_REQUIRES_DELIVERY': env_bool('STOREFRONT_RESTOCK_REQUIRES_DELIVERY', True),
    'DEFAULT_CURRENCY': 'RWF',
    'BUSINESS_UTC_OFFSET_HOURS': 2,
    'ORDERS_OFF_START': '21:30',
    'ORDERS_OFF_END': '09:00',
    'OUTBOX_MAX_RETRIES': 5,
    'PAYMENT_REFERENCE_PREFIX': 'STOREFRONT',
}
