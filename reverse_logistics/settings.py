"""
Reverse Logistics - Partner Return Webhooks
Django Settings Configuration
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Security
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-change-this')
DEBUG = os.getenv('DEBUG', 'True') == 'True'
ALLOWED_HOSTS = ['*']


# ============================================================
# APPLICATION DEFINITION
# ============================================================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third party apps
    'rest_framework',           # Django REST Framework for APIs
    'drf_spectacular',          # Auto-generated API documentation

    # Our apps
    'returns',                  # Return shipment tracking + partner webhooks
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'reverse_logistics.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'reverse_logistics.wsgi.application'


# ============================================================
# DATABASE CONFIGURATION
# ============================================================
# SQLite for local development. Any Django backend works; the webhook
# engine only relies on unique constraints and conditional UPDATEs.

DATABASES = {
    'default': {
        'ENGINE': os.getenv('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.getenv('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': os.getenv('DB_USER', ''),
        'PASSWORD': os.getenv('DB_PASSWORD', ''),
        'HOST': os.getenv('DB_HOST', ''),
        'PORT': os.getenv('DB_PORT', ''),
    }
}


# ============================================================
# PASSWORD VALIDATION
# ============================================================

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# ============================================================
# INTERNATIONALIZATION
# ============================================================

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'Asia/Kathmandu')
USE_I18N = True
USE_TZ = True


# ============================================================
# STATIC FILES
# ============================================================

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# ============================================================
# DJANGO REST FRAMEWORK
# ============================================================

REST_FRAMEWORK = {
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 20,

    # Default throttle rates (the partner webhook opts out)
    'DEFAULT_THROTTLE_CLASSES': [
        'rest_framework.throttling.UserRateThrottle',
    ],
    'DEFAULT_THROTTLE_RATES': {
        'user': '100/hour',
    },

    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ],

    # OpenAPI schema generation
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'Reverse Logistics API',
    'DESCRIPTION': 'Return shipment tracking and partner status webhooks',
    'VERSION': '1.0.0',
}


# ============================================================
# CACHE CONFIGURATION
# ============================================================
# Only used by DRF throttling

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'reverse-logistics-cache',
        'TIMEOUT': 300,
    }
}


# ============================================================
# CELERY CONFIGURATION
# ============================================================
# Used for the periodic inspection SLA escalation job

CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://127.0.0.1:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_BROKER_URL', 'redis://127.0.0.1:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

# Retry configuration for transient failures
CELERY_TASK_ACKS_LATE = True
CELERY_TASK_REJECT_ON_WORKER_LOST = True

CELERY_BEAT_SCHEDULE = {
    'escalate-overdue-return-inspections': {
        'task': 'returns.tasks.escalate_overdue_inspections',
        'schedule': 60 * 60,  # hourly
    },
}


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

LOG_DIR = BASE_DIR / 'logs'
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
        'file': {
            'class': 'logging.FileHandler',
            'filename': LOG_DIR / 'returns.log',
            'formatter': 'json',
        },
    },
    'loggers': {
        'returns': {
            'handlers': ['console', 'file'],
            'level': os.getenv('RETURNS_LOG_LEVEL', 'INFO'),
            'propagate': True,
        },
    },
}


# ============================================================
# PARTNER WEBHOOK CONFIGURATION
# ============================================================
# Business rules for reconciling partner return-shipment events

RETURNS_WEBHOOK = {
    # Shared secret expected in TOKEN_HEADER. Empty = no partner auth.
    'SECRET': os.getenv('SHIPPING_INTERNAL_TOKEN', '').strip(),
    'TOKEN_HEADER': 'X-Internal-Token',

    # Seller inspection window, counted from the partner's delivery time
    'INSPECTION_SLA_HOURS': int(os.getenv('RETURN_INSPECTION_SLA_HOURS', '72')),

    # ISO timestamp prefix used in content hashes ('YYYY-MM-DDTHH' = hourly)
    'HASH_TIMESTAMP_CHARS': 13,

    # Compare-and-set retries when another writer changes the return
    'MAX_TRANSITION_ATTEMPTS': 5,

    # is_legal(current_status, proposed_status, actor_role) -> bool
    'TRANSITION_ORACLE': 'returns.transitions.can_transition_return_status',

    # Inspection SLA escalation job
    'SLA_ESCALATION_MAX_LEVEL': 3,
    'SLA_ESCALATION_COOLDOWN_HOURS': 20,
    'SLA_ESCALATION_BATCH_SIZE': 200,
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
