import os

from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

# TEST_DB_ENGINE points the suite at a server database with row locks
if os.getenv('TEST_DB_ENGINE'):
    DATABASES = {
        'default': {
            'ENGINE': os.getenv('TEST_DB_ENGINE'),
            'NAME': os.getenv('TEST_DB_NAME', 'marketplace'),
            'USER': os.getenv('TEST_DB_USER', ''),
            'PASSWORD': os.getenv('TEST_DB_PASSWORD', ''),
            'HOST': os.getenv('TEST_DB_HOST', ''),
            'PORT': os.getenv('TEST_DB_PORT', ''),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',
        }
    }

ALLOWED_HOSTS = ['testserver']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
EMAIL_FAIL_SILENTLY = False
PAYMENTS_ADMIN_EMAILS = 'admin@example.com'

RAZORPAY_BASE_URL = 'https://gateway.test/v1'
RAZORPAY_KEY_ID = 'rzp_test_key'
RAZORPAY_KEY_SECRET = 'test-key-secret'
RAZORPAY_WEBHOOK_SECRET = 'test-webhook-secret'

PAYOUT_MINIMUM_AMOUNT = '500'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
