import os
from datetime import timedelta


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY')

    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)

    MONGO_USERNAME = os.getenv('MONGO_USERNAME')
    MONGO_PASSWORD = os.getenv('MONGO_PASSWORD')
    MONGO_HOST = os.getenv('MONGO_HOST', 'localhost')
    MONGO_PORT = int(os.getenv('MONGO_PORT', 27017))
    MONGO_DB_NAME = os.getenv('MONGO_DB_NAME')

    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 0))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD')
    REDIS_URL = os.getenv('REDIS_URL')

    # 외부 협력 서비스
    OTP_SERVICE_URL = os.getenv('OTP_SERVICE_URL')
    CONTRACT_SERVICE_URL = os.getenv('CONTRACT_SERVICE_URL', 'http://localhost:8080')
    STORAGE_SERVICE_URL = os.getenv('STORAGE_SERVICE_URL', os.getenv('CONTRACT_SERVICE_URL', 'http://localhost:8080'))
    HTTP_TIMEOUT_SECONDS = float(os.getenv('HTTP_TIMEOUT_SECONDS', 10))

    # 서명 사가
    OTP_TTL_SECONDS = int(os.getenv('OTP_TTL_SECONDS', 300))
    OTP_RESEND_COOLDOWN_SECONDS = int(os.getenv('OTP_RESEND_COOLDOWN_SECONDS', 60))
    OTP_CODE_LENGTH = 6
    SIGNING_SESSION_TTL_SECONDS = int(os.getenv('SIGNING_SESSION_TTL_SECONDS', 1800))
    SIGNATURE_MAX_BYTES = 5 * 1024 * 1024
    SIGNATURE_FONT_PATH = os.getenv('SIGNATURE_FONT_PATH')
    LESSOR_DISPLAY_NAME = os.getenv('LESSOR_DISPLAY_NAME', 'EZStay Property Management')
    SAGA_LOG_RETENTION_DAYS = int(os.getenv('SAGA_LOG_RETENTION_DAYS', 90))

    SMTP_SERVER = os.getenv('SMTP_SERVER', 'smtp.gmail.com')
    SMTP_PORT = int(os.getenv('SMTP_PORT', 465))
    SMTP_USERNAME = os.getenv('SMTP_USERNAME')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD')
    SMTP_FROM_EMAIL = os.getenv('SMTP_FROM_EMAIL')

    SENTRY_DSN = os.getenv('SENTRY_DSN')
    SENTRY_ENVIRONMENT = os.getenv('SENTRY_ENVIRONMENT', 'development')
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv('SENTRY_TRACES_SAMPLE_RATE', 1.0))

    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    DEBUG = False
    LOG_LEVEL = 'WARNING'


class TestingConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = 'test-secret'
    MONGO_DB_NAME = None
    REDIS_URL = None
    OTP_SERVICE_URL = None
    CONTRACT_SERVICE_URL = 'http://contract.test'
    STORAGE_SERVICE_URL = 'http://storage.test'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
