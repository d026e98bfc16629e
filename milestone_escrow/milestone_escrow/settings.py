"""
Django settings for the milestone escrow engine.

Values are read from the environment (and an optional ``.env`` file next to
``manage.py``) through django-environ.
"""
import os
from decimal import Decimal
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
)
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

SECRET_KEY = env('SECRET_KEY', default='django-insecure-milestone-escrow-dev-key')
DEBUG = env('DEBUG')
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['localhost', '127.0.0.1'])

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'auditlog',

    'accounts',
    'projects',
    'escrow',
    'disputes',
    'payments',
    'notifications',
]

DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
    # SQLite ignores select_for_update; each atomic block takes the write lock up front
    DATABASES['default'].setdefault('OPTIONS', {}).update({
        'transaction_mode': 'IMMEDIATE',
        'timeout': env.int('SQLITE_BUSY_TIMEOUT', default=20),
    })
    # Shared-cache in-memory databases raise on lock contention instead of waiting
    DATABASES['default'].setdefault('TEST', {}).setdefault('NAME', str(BASE_DIR / 'test_db.sqlite3'))

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
AUTH_USER_MODEL = 'accounts.CustomUser'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_TZ = True

SITE_NAME = env('SITE_NAME', default='Milestone Escrow')
DEFAULT_FROM_EMAIL = env('DEFAULT_FROM_EMAIL', default='no-reply@localhost')


# Escrow engine

DEFAULT_CURRENCY = env('DEFAULT_CURRENCY', default='USD')
AUTO_APPROVAL_GRACE_DAYS = env.int('AUTO_APPROVAL_GRACE_DAYS', default=7)
DEFAULT_MAX_REVISIONS = env.int('DEFAULT_MAX_REVISIONS', default=3)

# (lower, upper) hours before the auto-approval deadline in which the payer is warned
AUTO_APPROVAL_WARNING_WINDOW_HOURS = tuple(
    env.list('AUTO_APPROVAL_WARNING_WINDOW_HOURS', cast=int, default=[24, 48])
)
AUTO_APPROVAL_SWEEP_INTERVAL_SECONDS = env.int('AUTO_APPROVAL_SWEEP_INTERVAL_SECONDS', default=3600)

# Fee schedule. Payer fees are charged on top of each deposit, the payee fee
# is deducted from the payout when a milestone is released.
PLATFORM_FEE_RATE = Decimal(env('PLATFORM_FEE_RATE', default='0.019'))
PROCESSING_FEE_RATE = Decimal(env('PROCESSING_FEE_RATE', default='0'))
PAYEE_FEE_RATE = Decimal(env('PAYEE_FEE_RATE', default='0.036'))

# Minor units charged to the party raising a dispute
DISPUTE_FEE_AMOUNT = env.int('DISPUTE_FEE_AMOUNT', default=2500)

# A mediation is escalated once it has run this long or seen more messages than this
DISPUTE_MEDIATION_TIMEOUT_HOURS = env.int('DISPUTE_MEDIATION_TIMEOUT_HOURS', default=24)
DISPUTE_MEDIATION_MESSAGE_LIMIT = env.int('DISPUTE_MEDIATION_MESSAGE_LIMIT', default=10)

PAYMENT_GATEWAY = env('PAYMENT_GATEWAY', default='local')
NOTIFICATION_SINK = env('NOTIFICATION_SINK', default='logging')

STRIPE_SECRET_KEY = env('STRIPE_SECRET_KEY', default='')
STRIPE_CURRENCY = env('STRIPE_CURRENCY', default='usd')


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': env('LOG_LEVEL', default='INFO'),
    },
    'loggers': {
        'audit': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'alerts': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
    },
}
