"""
Settings for the test run: SQLite, eager Celery, no rate limiting.
"""
from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test.sqlite3',  # noqa: F405
        'TEST': {'NAME': BASE_DIR / 'test_db.sqlite3'},  # noqa: F405
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

RATE_LIMIT_ENABLED = False
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

SITE_BASE_URL = 'http://testserver'
CHECKOUT_SUCCESS_URL = 'http://testserver/checkout/success'
CHECKOUT_FAILURE_URL = 'http://testserver/checkout/failed'

ESEWA_SECRET_KEY = '8gBm/:&EnhH.1/q'
ESEWA_PRODUCT_CODE = 'EPAYTEST'
KHALTI_SECRET_KEY = 'test-khalti-secret'
