"""
Django settings for academy_erp project.

Scope:
- Academy tenants, classes, weekly schedules and rosters
- Closure calendar (global, class and teacher closures)
- Tuition billing periods with per-session lifecycle and amount recalculation
"""
import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in {'1', 'true', 'yes'}
SECRET_KEY = os.getenv(
    'DJANGO_SECRET_KEY',
    'change-this-secret-key-in-production-8b2d41f07c3e4a9c9d1f6e2a5b7c0d34',
)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]


INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'apps.core.academies.apps.AcademiesConfig',
    'apps.core.academics.apps.AcademicsConfig',
    'apps.core.closures.apps.ClosuresConfig',
    'apps.core.tuition.apps.TuitionConfig',
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


ROOT_URLCONF = 'academy_erp.urls'

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

WSGI_APPLICATION = 'academy_erp.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('DJANGO_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}


LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'Asia/Seoul')
USE_I18N = True
USE_TZ = True


STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


CSRF_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = not DEBUG


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('TUITION_LOG_LEVEL', 'INFO').upper(),
            'propagate': False,
        },
    },
}


TUITION_GENERATION_HORIZON_DAYS = int(os.getenv('TUITION_GENERATION_HORIZON_DAYS', '100'))
TUITION_ALIGNMENT_WINDOW_DAYS = int(os.getenv('TUITION_ALIGNMENT_WINDOW_DAYS', '7'))
TUITION_ALIGNMENT_CANDIDATE_LIMIT = int(os.getenv('TUITION_ALIGNMENT_CANDIDATE_LIMIT', '5'))
TUITION_DEFAULT_SESSIONS_PER_MONTH = int(os.getenv('TUITION_DEFAULT_SESSIONS_PER_MONTH', '8'))
