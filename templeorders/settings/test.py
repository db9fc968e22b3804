from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

RAZORPAY_KEY_ID = 'rzp_test_key'
RAZORPAY_KEY_SECRET = 'rzp_test_secret'
RAZORPAY_KEYS_FILE = ''
RAZORPAY_BASE_URL = 'https://gateway.test'
RAZORPAY_WEBHOOK_SECRET = 'whsec_test'
RAZORPAY_WEBHOOK_ALLOW_UNSIGNED = False

EVENT_BOOKING_SERVICE_URL = 'https://bookings.test'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {'null': {'class': 'logging.NullHandler'}},
    'loggers': {
        'payments': {'handlers': ['null'], 'level': 'DEBUG'},
        'orders': {'handlers': ['null'], 'level': 'DEBUG'},
    },
}
