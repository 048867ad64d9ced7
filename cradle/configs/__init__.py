#!/usr/bin/env python

"""
    Configurations for Cradle

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('CRADLE_HOST', 'localhost')
PORT = int(os.environ.get('CRADLE_PORT', 8080))
WORKERS = int(os.environ.get('CRADLE_WORKERS', 1))
DEBUG = bool(int(os.environ.get('CRADLE_DEBUG', 0)))
LOG_LEVEL = os.environ.get('CRADLE_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('CRADLE_SSL_CRT')
SSL_KEY = os.environ.get('CRADLE_SSL_KEY')

# Shared secret expected from the periodic expiration invoker
CRON_SECRET = os.environ.get('CRON_SECRET')

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'cradle'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    os.environ.get('DB_URI') or
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Waitlist engine defaults
DEFAULT_OFFER_WINDOW_HOURS = int(os.environ.get('CRADLE_OFFER_WINDOW_HOURS', 48))
DEFAULT_MAX_OFFER_ATTEMPTS = int(os.environ.get('CRADLE_MAX_OFFER_ATTEMPTS', 3))
SIGNIFICANT_POSITION_CHANGE = int(os.environ.get('CRADLE_SIGNIFICANT_POSITION_CHANGE', 3))

# Throughput assumptions used when a cohort has no offer history yet
DEFAULT_OFFERS_PER_MONTH = float(os.environ.get('CRADLE_OFFERS_PER_MONTH', 2))
DEFAULT_ACCEPTANCE_RATE = float(os.environ.get('CRADLE_ACCEPTANCE_RATE', 0.7))
SEASONAL_ADJUSTMENT = float(os.environ.get('CRADLE_SEASONAL_ADJUSTMENT', 1.0))
HISTORY_DAYS = int(os.environ.get('CRADLE_HISTORY_DAYS', 180))

# Offers expiring within this many hours get a single reminder
REMINDER_WINDOW_HOURS = (
    int(os.environ.get('CRADLE_REMINDER_MIN_HOURS', 23)),
    int(os.environ.get('CRADLE_REMINDER_MAX_HOURS', 25)),
)

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'LOG_LEVEL', 'OPTIONS', 'DB_URI', 'DB_CONFIG',
    'TESTING', 'CRON_SECRET', 'DEFAULT_OFFER_WINDOW_HOURS', 'DEFAULT_MAX_OFFER_ATTEMPTS',
    'SIGNIFICANT_POSITION_CHANGE', 'DEFAULT_OFFERS_PER_MONTH', 'DEFAULT_ACCEPTANCE_RATE',
    'SEASONAL_ADJUSTMENT', 'HISTORY_DAYS', 'REMINDER_WINDOW_HOURS',
]
