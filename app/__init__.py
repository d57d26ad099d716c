"""
EZStay Contract Signing Service
Flask 기반 계약 전자 서명 (OTP 인증 사가) 백엔드
"""

from flask import Flask
from flask_cors import CORS
from pymongo import MongoClient
from pymongo.errors import PyMongoError
import redis
import logging
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from common.extensions import socketio, api
import common.extensions as extensions
from common.utils.logging_utils import setup_logger


def create_app(config_name='default'):
    """
    Application Factory Pattern
    """
    app = Flask(__name__)

    from common.config.config import config
    config_class = config.get(config_name, config['default'])
    app.config.from_object(config_class)

    app.json.ensure_ascii = False

    if app.config.get('SENTRY_DSN'):
        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[
                FlaskIntegration(),
                RedisIntegration(),
            ],
            environment=app.config.get('SENTRY_ENVIRONMENT', 'development'),
            traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 1.0),
            send_default_pii=False,
            attach_stacktrace=True,
        )

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'))
    logger = setup_logger(app, log_level, log_to_file=not app.config.get('TESTING'))

    if not app.config.get('TESTING'):
        missing = [k for k in ('JWT_SECRET_KEY', 'CONTRACT_SERVICE_URL', 'STORAGE_SERVICE_URL') if not app.config.get(k)]
        if missing:
            raise RuntimeError(f"필수 환경변수 누락: {missing}")

    app.config['API_TITLE'] = 'EZStay Signing API'
    app.config['API_VERSION'] = 'v1'
    app.config['OPENAPI_VERSION'] = '3.0.3'
    app.config['OPENAPI_URL_PREFIX'] = '/'
    app.config['OPENAPI_SWAGGER_UI_PATH'] = '/swagger'
    app.config['OPENAPI_SWAGGER_UI_URL'] = 'https://cdn.jsdelivr.net/npm/swagger-ui-dist/'

    # JWT Bearer 토큰 인증을 위한 보안 스킴 설정
    app.config['API_SPEC_OPTIONS'] = {
        'components': {
            'securitySchemes': {
                'BearerAuth': {
                    'type': 'http',
                    'scheme': 'bearer',
                    'bearerFormat': 'JWT',
                    'description': 'JWT 액세스 토큰을 입력하세요 (Bearer 접두어 없이)'
                }
            }
        }
    }

    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         allow_headers=["Content-Type", "Authorization", "Accept", "X-Requested-With", "X-Client-Session-Id"],
         expose_headers=["Authorization", "Content-Type"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
         max_age=3600)

    socketio.init_app(app)
    api.init_app(app)

    if app.config.get('MONGO_DB_NAME'):
        _init_mongo(app, logger)

    if not app.config.get('TESTING'):
        _init_redis(app, logger)

        from common.scheduler import init_scheduler
        init_scheduler(app)

    from app.routes.base import base_blueprint
    from app.routes.signing import signing_blueprint

    api.register_blueprint(base_blueprint)
    api.register_blueprint(signing_blueprint)

    from common.exception.error_handler import register_error_handlers
    register_error_handlers(app)

    from app.sockets import signing_socket

    return app


def _init_mongo(app, logger):
    mongo_host = app.config.get('MONGO_HOST', 'localhost')
    mongo_port = app.config.get('MONGO_PORT', 27017)
    mongo_username = app.config.get('MONGO_USERNAME')
    mongo_password = app.config.get('MONGO_PASSWORD')

    if mongo_username and mongo_password:
        from urllib.parse import quote_plus
        mongo_uri = f"mongodb://{quote_plus(mongo_username)}:{quote_plus(mongo_password)}@{mongo_host}:{mongo_port}/"
    else:
        mongo_uri = f"mongodb://{mongo_host}:{mongo_port}/"

    logger.info(f"MongoDB 연결 시도: {mongo_host}:{mongo_port}")

    try:
        mongo_connection = MongoClient(
            mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000
        )
        mongo_connection.admin.command('ping')
        logger.info(f"MongoDB 연결 성공: {mongo_host}:{mongo_port}")

        extensions.mongo_client = mongo_connection
        extensions.mongo_db = mongo_connection[app.config['MONGO_DB_NAME']]

    except PyMongoError as e:
        #NOTE: 연결 실패 시 감사 로그 없이 사가만 동작
        logger.error(f"MongoDB 연결 실패: {e}")
        logger.warning("서명 사가 감사 로그가 비활성화됩니다")
        extensions.mongo_client = None
        extensions.mongo_db = None


def _init_redis(app, logger):
    try:
        if app.config.get('REDIS_URL'):
            logger.info("Redis 연결 시도: REDIS_URL 사용")
            extensions.redis_client = redis.from_url(
                app.config['REDIS_URL'],
                decode_responses=True,
                socket_connect_timeout=5
            )
        else:
            redis_host = app.config.get('REDIS_HOST', 'localhost')
            redis_port = app.config.get('REDIS_PORT', 6379)
            redis_db = app.config.get('REDIS_DB', 0)
            redis_password = app.config.get('REDIS_PASSWORD')

            if redis_password == "":
                redis_password = None

            logger.info(f"Redis 연결 시도: {redis_host}:{redis_port} (db={redis_db}, 인증={'설정됨' if redis_password else '없음'})")

            extensions.redis_client = redis.Redis(
                host=redis_host,
                port=redis_port,
                db=redis_db,
                password=redis_password,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )

        extensions.redis_client.ping()
        logger.info("Redis 연결 성공")

    except redis.AuthenticationError as e:
        logger.warning(f"Redis 인증 실패: {e}")
        logger.warning("Redis 설정에서 REDIS_PASSWORD를 확인하세요")
        extensions.redis_client = None
    except redis.RedisError as e:
        logger.warning(f"Redis 연결 실패: {e}")
        logger.warning("서명 세션은 프로세스 메모리에, OTP 내장 발급기는 비활성화됩니다")
        extensions.redis_client = None
