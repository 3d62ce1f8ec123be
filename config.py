import os
from dotenv import load_dotenv

load_dotenv()
if os.environ.get('APP_ENV') == 'development':
    load_dotenv('.env.development', override=True)


class Config:
    SECRET_KEY = os.environ.get('SESSION_SECRET') or os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    GOOGLE_APPLICATION_CREDENTIALS = os.environ.get('GOOGLE_APPLICATION_CREDENTIALS')
    FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID')
    STUDIO_TIMEZONE = os.environ.get('STUDIO_TIMEZONE', 'America/Halifax')
    REMINDER_WINDOW_MINUTES = int(os.environ.get('REMINDER_WINDOW_MINUTES', 30))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    WTF_CSRF_ENABLED = False


class TestConfig(Config):
    TESTING = True
    STUDIO_TIMEZONE = 'UTC'
